"""In-memory implementations of the storage protocols.

Useful for tests and single-process deployments. Every read and write copies the
stored record, so callers never share mutable state with the store.
"""

from __future__ import annotations

from copy import deepcopy
from typing import TYPE_CHECKING, Any

from litestar_flows.core.definition import FlowDefinition
from litestar_flows.core.types import ExecutionStatus
from litestar_flows.engine.backend import StorageBackend
from litestar_flows.exceptions import (
    ContactNotFoundError,
    DuplicateTriggerError,
    ExecutionNotFoundError,
    FlowNotFoundError,
    StorageConflictError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from litestar_flows.core.context import ExecutionContext, ExecutionLogEntry, ScheduledResume
    from litestar_flows.core.definition import Edge, Flow, Node
    from litestar_flows.core.models import Contact
    from litestar_flows.core.types import FlowStatus, NodeType, WaitKind

__all__ = (
    "InMemoryContactStore",
    "InMemoryEffectLedger",
    "InMemoryExecutionLogStore",
    "InMemoryExecutionStore",
    "InMemoryFlowStore",
    "InMemoryScheduleStore",
    "memory_backend",
)


class InMemoryFlowStore:
    """Flows and graphs held in dictionaries."""

    def __init__(self) -> None:
        self._flows: dict[UUID, Flow] = {}
        self._graphs: dict[UUID, tuple[list[Node], list[Edge]]] = {}

    async def create_flow(self, flow: Flow) -> Flow:
        self._flows[flow.id] = deepcopy(flow)
        self._graphs.setdefault(flow.id, ([], []))
        return deepcopy(flow)

    async def get_flow(self, flow_id: UUID) -> Flow:
        try:
            return deepcopy(self._flows[flow_id])
        except KeyError as e:
            raise FlowNotFoundError(flow_id) from e

    async def list_flows(
        self,
        organization_id: str | None = None,
        status: FlowStatus | None = None,
    ) -> list[Flow]:
        flows = [
            flow
            for flow in self._flows.values()
            if (organization_id is None or flow.organization_id == organization_id)
            and (status is None or flow.status == status)
        ]
        return [deepcopy(flow) for flow in sorted(flows, key=lambda f: f.created_at)]

    async def update_flow(self, flow: Flow) -> Flow:
        if flow.id not in self._flows:
            raise FlowNotFoundError(flow.id)
        self._flows[flow.id] = deepcopy(flow)
        return deepcopy(flow)

    async def delete_flow(self, flow_id: UUID) -> None:
        if self._flows.pop(flow_id, None) is None:
            raise FlowNotFoundError(flow_id)
        self._graphs.pop(flow_id, None)

    async def save_graph(self, flow_id: UUID, nodes: Sequence[Node], edges: Sequence[Edge]) -> None:
        if flow_id not in self._flows:
            raise FlowNotFoundError(flow_id)
        self._graphs[flow_id] = (deepcopy(list(nodes)), deepcopy(list(edges)))

    async def load_graph(self, flow_id: UUID) -> FlowDefinition:
        flow = await self.get_flow(flow_id)
        nodes, edges = self._graphs.get(flow_id, ([], []))
        return FlowDefinition(flow=flow, nodes=deepcopy(nodes), edges=deepcopy(edges))

    async def find_triggerable(self, organization_id: str, trigger_type: NodeType) -> list[Flow]:
        return [
            deepcopy(flow)
            for flow in self._flows.values()
            if flow.organization_id == organization_id and flow.trigger_type == trigger_type and flow.is_triggerable
        ]

    async def record_outcome(self, flow_id: UUID, status: ExecutionStatus) -> None:
        flow = self._flows.get(flow_id)
        if flow is None:
            return
        flow.total_executions += 1
        if status is ExecutionStatus.COMPLETED:
            flow.successful_executions += 1
        elif status is ExecutionStatus.FAILED:
            flow.failed_executions += 1

    async def touch_last_execution(self, flow_id: UUID, at: datetime) -> None:
        flow = self._flows.get(flow_id)
        if flow is not None:
            flow.last_execution_at = at


class InMemoryExecutionStore:
    """Execution contexts with an index of open contexts per (contact, flow)."""

    def __init__(self) -> None:
        self._contexts: dict[UUID, ExecutionContext] = {}
        self._open: dict[tuple[UUID, UUID], UUID] = {}

    async def create_if_absent(self, context: ExecutionContext) -> ExecutionContext:
        key = (context.contact_id, context.flow_id)
        if key in self._open:
            raise DuplicateTriggerError(context.flow_id, context.contact_id)
        self._contexts[context.id] = deepcopy(context)
        if not context.is_terminal:
            self._open[key] = context.id
        return deepcopy(context)

    async def get(self, execution_id: UUID) -> ExecutionContext:
        try:
            return deepcopy(self._contexts[execution_id])
        except KeyError as e:
            raise ExecutionNotFoundError(execution_id) from e

    async def update(self, context: ExecutionContext, expected_status: ExecutionStatus) -> bool:
        stored = self._contexts.get(context.id)
        if stored is None:
            raise ExecutionNotFoundError(context.id)
        if stored.status != expected_status:
            return False
        self._contexts[context.id] = deepcopy(context)
        if context.is_terminal:
            self._open.pop((context.contact_id, context.flow_id), None)
        return True

    async def find_waiting(self, contact_id: UUID, kind: WaitKind) -> list[ExecutionContext]:
        return self._select(
            lambda c: c.contact_id == contact_id and c.status.is_waiting and c.wait is not None and c.wait.kind == kind
        )

    async def find_open(self, contact_id: UUID) -> list[ExecutionContext]:
        return self._select(lambda c: c.contact_id == contact_id and not c.is_terminal)

    async def last_finished(self, flow_id: UUID, contact_id: UUID) -> ExecutionContext | None:
        finished = self._select(lambda c: c.flow_id == flow_id and c.contact_id == contact_id and c.is_terminal)
        return max(finished, key=lambda c: c.completed_at or c.updated_at, default=None)

    async def list_for_flow(
        self,
        flow_id: UUID,
        status: ExecutionStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ExecutionContext]:
        contexts = self._select(lambda c: c.flow_id == flow_id and (status is None or c.status == status))
        contexts.sort(key=lambda c: c.started_at, reverse=True)
        return contexts[offset : offset + limit]

    async def list_for_contact(self, contact_id: UUID) -> list[ExecutionContext]:
        contexts = self._select(lambda c: c.contact_id == contact_id)
        contexts.sort(key=lambda c: c.started_at, reverse=True)
        return contexts

    def _select(self, predicate: Any) -> list[ExecutionContext]:
        return [deepcopy(context) for context in self._contexts.values() if predicate(context)]


class InMemoryExecutionLogStore:
    def __init__(self) -> None:
        self._entries: list[ExecutionLogEntry] = []

    async def append(self, entry: ExecutionLogEntry) -> None:
        self._entries.append(deepcopy(entry))

    async def list_for_execution(self, execution_id: UUID) -> list[ExecutionLogEntry]:
        return [deepcopy(entry) for entry in self._entries if entry.execution_id == execution_id]


class InMemoryScheduleStore:
    def __init__(self) -> None:
        self._resumes: dict[UUID, ScheduledResume] = {}

    async def add(self, resume: ScheduledResume) -> None:
        self._resumes[resume.id] = deepcopy(resume)

    async def due(self, now: datetime, limit: int) -> list[ScheduledResume]:
        due = sorted((r for r in self._resumes.values() if r.due_at <= now), key=lambda r: r.due_at)
        return [deepcopy(resume) for resume in due[:limit]]

    async def delete(self, resume_id: UUID) -> None:
        self._resumes.pop(resume_id, None)

    async def delete_for_execution(self, execution_id: UUID) -> None:
        for resume_id in [r.id for r in self._resumes.values() if r.execution_id == execution_id]:
            del self._resumes[resume_id]

    def __len__(self) -> int:
        return len(self._resumes)


class InMemoryContactStore:
    """Contacts with optimistic versioning."""

    def __init__(self, contacts: Sequence[Contact] = ()) -> None:
        self._contacts: dict[UUID, Contact] = {}
        for contact in contacts:
            self.add(contact)

    def add(self, contact: Contact) -> Contact:
        """Seed a contact, replacing any stored record with the same ID."""
        self._contacts[contact.id] = deepcopy(contact)
        return contact

    async def get(self, contact_id: UUID) -> Contact:
        try:
            return deepcopy(self._contacts[contact_id])
        except KeyError as e:
            raise ContactNotFoundError(contact_id) from e

    async def save(self, contact: Contact, expected_version: int) -> Contact:
        stored = self._contacts.get(contact.id)
        if stored is None:
            raise ContactNotFoundError(contact.id)
        if stored.version != expected_version:
            raise StorageConflictError("contact", contact.id)
        contact.version = expected_version + 1
        self._contacts[contact.id] = deepcopy(contact)
        return deepcopy(contact)


class InMemoryEffectLedger:
    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        record = self._records.get(key)
        return deepcopy(record) if record is not None else None

    async def record(self, key: str, output: dict[str, Any]) -> None:
        self._records.setdefault(key, deepcopy(output))

    def __contains__(self, key: object) -> bool:
        return key in self._records


def memory_backend(contacts: Sequence[Contact] = ()) -> StorageBackend:
    """Build a backend of fresh in-memory stores.

    Args:
        contacts: Contacts to seed the contact store with.
    """
    return StorageBackend(
        flows=InMemoryFlowStore(),
        executions=InMemoryExecutionStore(),
        logs=InMemoryExecutionLogStore(),
        schedules=InMemoryScheduleStore(),
        contacts=InMemoryContactStore(contacts),
        ledger=InMemoryEffectLedger(),
    )
