"""Storage and collaborator protocols.

The engine only talks to storage and to the outside world through these
Protocol-based interfaces. :mod:`litestar_flows.engine.memory` implements the stores
in process; :mod:`litestar_flows.db.stores` implements them on SQLAlchemy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from litestar_flows.core.context import ExecutionContext, ExecutionLogEntry, ScheduledResume
    from litestar_flows.core.definition import Edge, Flow, FlowDefinition, Node
    from litestar_flows.core.models import Contact, OutboundMessage, WebhookRequest, WebhookResponse
    from litestar_flows.core.types import ExecutionStatus, FlowStatus, NodeType, WaitKind

__all__ = (
    "ContactStore",
    "EffectLedger",
    "ExecutionLogStore",
    "ExecutionStore",
    "FlowStore",
    "MessageTransport",
    "ScheduleStore",
    "WebhookCaller",
)


@runtime_checkable
class FlowStore(Protocol):
    """Persistence of flows and their node/edge graphs.

    ``save_graph`` replaces the whole graph atomically: a concurrent ``load_graph``
    sees either the old graph or the new one, never a mix.
    """

    async def create_flow(self, flow: Flow) -> Flow: ...

    async def get_flow(self, flow_id: UUID) -> Flow:
        """Get a flow.

        Raises:
            FlowNotFoundError: If the flow does not exist.
        """
        ...

    async def list_flows(
        self,
        organization_id: str | None = None,
        status: FlowStatus | None = None,
    ) -> list[Flow]: ...

    async def update_flow(self, flow: Flow) -> Flow: ...

    async def delete_flow(self, flow_id: UUID) -> None: ...

    async def save_graph(self, flow_id: UUID, nodes: Sequence[Node], edges: Sequence[Edge]) -> None: ...

    async def load_graph(self, flow_id: UUID) -> FlowDefinition: ...

    async def find_triggerable(self, organization_id: str, trigger_type: NodeType) -> list[Flow]:
        """List active, switched-on flows of an organization with the given trigger type."""
        ...

    async def record_outcome(self, flow_id: UUID, status: ExecutionStatus) -> None:
        """Atomically increment the flow's counters for a terminal execution."""
        ...

    async def touch_last_execution(self, flow_id: UUID, at: datetime) -> None: ...


@runtime_checkable
class ExecutionStore(Protocol):
    """Persistence of execution contexts.

    Enforces at most one non-terminal context per (contact, flow).
    """

    async def create_if_absent(self, context: ExecutionContext) -> ExecutionContext:
        """Insert a context unless the contact already has an open one for the flow.

        Raises:
            DuplicateTriggerError: If an open context exists.
        """
        ...

    async def get(self, execution_id: UUID) -> ExecutionContext:
        """Get a context.

        Raises:
            ExecutionNotFoundError: If the context does not exist.
        """
        ...

    async def update(self, context: ExecutionContext, expected_status: ExecutionStatus) -> bool:
        """Compare-and-set write.

        Returns:
            False if the stored status no longer equals ``expected_status``. Nothing
            is written in that case.
        """
        ...

    async def find_waiting(self, contact_id: UUID, kind: WaitKind) -> list[ExecutionContext]: ...

    async def find_open(self, contact_id: UUID) -> list[ExecutionContext]: ...

    async def last_finished(self, flow_id: UUID, contact_id: UUID) -> ExecutionContext | None: ...

    async def list_for_flow(
        self,
        flow_id: UUID,
        status: ExecutionStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ExecutionContext]: ...

    async def list_for_contact(self, contact_id: UUID) -> list[ExecutionContext]: ...


@runtime_checkable
class ExecutionLogStore(Protocol):
    async def append(self, entry: ExecutionLogEntry) -> None: ...

    async def list_for_execution(self, execution_id: UUID) -> list[ExecutionLogEntry]: ...


@runtime_checkable
class ScheduleStore(Protocol):
    """Durable storage of scheduled resumes."""

    async def add(self, resume: ScheduledResume) -> None: ...

    async def due(self, now: datetime, limit: int) -> list[ScheduledResume]: ...

    async def delete(self, resume_id: UUID) -> None: ...

    async def delete_for_execution(self, execution_id: UUID) -> None: ...


@runtime_checkable
class ContactStore(Protocol):
    """The CRM's contact records, with optimistic versioning."""

    async def get(self, contact_id: UUID) -> Contact:
        """Get a contact.

        Raises:
            ContactNotFoundError: If the contact does not exist.
        """
        ...

    async def save(self, contact: Contact, expected_version: int) -> Contact:
        """Write a contact if its stored version still equals ``expected_version``.

        Raises:
            StorageConflictError: If the stored version moved on.
        """
        ...


@runtime_checkable
class EffectLedger(Protocol):
    """Record of applied side effects keyed by idempotency key."""

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def record(self, key: str, output: dict[str, Any]) -> None: ...


@runtime_checkable
class MessageTransport(Protocol):
    async def send(self, message: OutboundMessage) -> str:
        """Send a message.

        Returns:
            The provider's delivery ID.

        Raises:
            RateLimitedError: Retryable throttling.
            InvalidRecipientError: The recipient cannot be messaged.
            ProviderError: Any other provider failure.
        """
        ...


@runtime_checkable
class WebhookCaller(Protocol):
    async def call(self, request: WebhookRequest) -> WebhookResponse:
        """Perform an HTTP call.

        Raises:
            WebhookTimeoutError: The call exceeded its timeout.
            WebhookConnectionError: The target could not be reached.
        """
        ...
