"""SQLAlchemy implementations of the storage protocols.

Every operation runs in its own session and transaction, so stores can be shared by
concurrent engine tasks. ``save_graph`` replaces nodes and edges inside a single
transaction: readers see either the old graph or the new one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError

from litestar_flows.core.context import ExecutionContext, ExecutionLogEntry, ScheduledResume, WaitState
from litestar_flows.core.definition import Edge, Flow, FlowDefinition, Node
from litestar_flows.core.models import Contact
from litestar_flows.db.models import (
    ContactModel,
    EffectLedgerModel,
    ExecutionContextModel,
    ExecutionLogModel,
    FlowEdgeModel,
    FlowModel,
    FlowNodeModel,
    ScheduledResumeModel,
)
from litestar_flows.db.repositories import (
    ContactRepository,
    EffectLedgerRepository,
    ExecutionContextRepository,
    ExecutionLogRepository,
    FlowEdgeRepository,
    FlowNodeRepository,
    FlowRepository,
    ScheduledResumeRepository,
)
from litestar_flows.engine.backend import StorageBackend
from litestar_flows.exceptions import (
    ContactNotFoundError,
    DuplicateTriggerError,
    ExecutionNotFoundError,
    FlowNotFoundError,
    GraphInvalidError,
    StorageConflictError,
)

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from litestar_flows.core.types import ExecutionStatus, FlowStatus, NodeType, WaitKind

__all__ = [
    "SQLAlchemyContactStore",
    "SQLAlchemyEffectLedger",
    "SQLAlchemyExecutionLogStore",
    "SQLAlchemyExecutionStore",
    "SQLAlchemyFlowStore",
    "SQLAlchemyScheduleStore",
    "sqlalchemy_backend",
]


def _flow(model: FlowModel) -> Flow:
    return Flow(
        id=model.id,
        organization_id=model.organization_id,
        name=model.name,
        description=model.description,
        status=model.status,
        is_active=model.is_active,
        trigger_type=model.trigger_type,
        trigger_config=dict(model.trigger_config or {}),
        whatsapp_account_id=model.whatsapp_account_id,
        total_executions=model.total_executions,
        successful_executions=model.successful_executions,
        failed_executions=model.failed_executions,
        last_execution_at=model.last_execution_at,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _flow_values(flow: Flow) -> dict[str, Any]:
    return {
        "organization_id": flow.organization_id,
        "name": flow.name,
        "description": flow.description,
        "status": flow.status,
        "is_active": flow.is_active,
        "trigger_type": flow.trigger_type,
        "trigger_config": dict(flow.trigger_config),
        "whatsapp_account_id": flow.whatsapp_account_id,
    }


def _active_key(context: ExecutionContext) -> str | None:
    return None if context.is_terminal else f"{context.contact_id}:{context.flow_id}"


def _context(model: ExecutionContextModel) -> ExecutionContext:
    return ExecutionContext(
        id=model.id,
        flow_id=model.flow_id,
        contact_id=model.contact_id,
        organization_id=model.organization_id,
        current_node_id=model.current_node_id,
        flow_context=dict(model.flow_context or {}),
        flow_paused=model.flow_paused,
        status=model.status,
        wait=WaitState.from_dict(model.wait) if model.wait else None,
        resume_at=model.resume_at,
        step_epoch=model.step_epoch,
        trigger_data=dict(model.trigger_data or {}),
        error_kind=model.error_kind,
        error=model.error,
        started_at=model.started_at,
        completed_at=model.completed_at,
        updated_at=model.updated_at,
    )


def _context_values(context: ExecutionContext) -> dict[str, Any]:
    return {
        "current_node_id": context.current_node_id,
        "active_key": _active_key(context),
        "status": context.status,
        "flow_context": dict(context.flow_context),
        "flow_paused": context.flow_paused,
        "wait": context.wait.to_dict() if context.wait else None,
        "resume_at": context.resume_at,
        "step_epoch": context.step_epoch,
        "trigger_data": dict(context.trigger_data),
        "error_kind": context.error_kind,
        "error": context.error,
        "completed_at": context.completed_at,
    }


def _contact(model: ContactModel) -> Contact:
    return Contact(
        id=model.id,
        organization_id=model.organization_id,
        phone_number=model.phone_number,
        name=model.name,
        email=model.email,
        tags=list(model.tags or []),
        custom_fields=dict(model.custom_fields or {}),
        current_flow_id=model.current_flow_id,
        current_node_id=model.current_node_id,
        version=model.version,
    )


class _SessionStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker


class SQLAlchemyFlowStore(_SessionStore):
    """Flows and their node and edge tables."""

    async def create_flow(self, flow: Flow) -> Flow:
        async with self.session_maker() as session, session.begin():
            model = FlowModel(id=flow.id, **_flow_values(flow))
            session.add(model)
            await session.flush()
            await session.refresh(model)
            return _flow(model)

    async def get_flow(self, flow_id: UUID) -> Flow:
        async with self.session_maker() as session:
            return _flow(await self._get(FlowRepository(session=session), flow_id))

    @staticmethod
    async def _get(repo: FlowRepository, flow_id: UUID) -> FlowModel:
        model = await repo.get_one_or_none(id=flow_id)
        if model is None:
            raise FlowNotFoundError(flow_id)
        return model

    async def list_flows(
        self,
        organization_id: str | None = None,
        status: FlowStatus | None = None,
    ) -> list[Flow]:
        async with self.session_maker() as session:
            models = await FlowRepository(session=session).list_filtered(organization_id, status)
            return [_flow(model) for model in models]

    async def update_flow(self, flow: Flow) -> Flow:
        async with self.session_maker() as session, session.begin():
            model = await self._get(FlowRepository(session=session), flow.id)
            for key, value in _flow_values(flow).items():
                setattr(model, key, value)
            await session.flush()
            await session.refresh(model)
            return _flow(model)

    async def delete_flow(self, flow_id: UUID) -> None:
        async with self.session_maker() as session, session.begin():
            model = await self._get(FlowRepository(session=session), flow_id)
            await FlowEdgeRepository(session=session).delete_for_flow(flow_id)
            await FlowNodeRepository(session=session).delete_for_flow(flow_id)
            await session.delete(model)

    async def save_graph(self, flow_id: UUID, nodes: Sequence[Node], edges: Sequence[Edge]) -> None:
        try:
            await self._replace_graph(flow_id, nodes, edges)
        except IntegrityError as e:
            raise GraphInvalidError(["Node IDs must be unique within a flow"]) from e

    async def _replace_graph(self, flow_id: UUID, nodes: Sequence[Node], edges: Sequence[Edge]) -> None:
        async with self.session_maker() as session, session.begin():
            await self._get(FlowRepository(session=session), flow_id)
            node_repo = FlowNodeRepository(session=session)
            edge_repo = FlowEdgeRepository(session=session)
            await edge_repo.delete_for_flow(flow_id)
            await node_repo.delete_for_flow(flow_id)
            session.add_all(
                FlowNodeModel(
                    flow_id=flow_id,
                    node_key=node.id,
                    node_type=node.type,
                    name=node.name,
                    config=dict(node.config),
                    position_x=node.position_x,
                    position_y=node.position_y,
                    position=position,
                )
                for position, node in enumerate(nodes)
            )
            session.add_all(
                FlowEdgeModel(
                    flow_id=flow_id,
                    edge_key=edge.id,
                    source_key=edge.source_node_id,
                    target_key=edge.target_node_id,
                    source_handle=edge.source_handle,
                    label=edge.label,
                    position=position,
                )
                for position, edge in enumerate(edges)
            )

    async def load_graph(self, flow_id: UUID) -> FlowDefinition:
        async with self.session_maker() as session, session.begin():
            flow = _flow(await self._get(FlowRepository(session=session), flow_id))
            nodes = [
                Node(
                    id=model.node_key,
                    type=model.node_type,
                    config=dict(model.config or {}),
                    name=model.name,
                    position_x=model.position_x,
                    position_y=model.position_y,
                )
                for model in await FlowNodeRepository(session=session).for_flow(flow_id)
            ]
            edges = [
                Edge(
                    id=model.edge_key,
                    source_node_id=model.source_key,
                    target_node_id=model.target_key,
                    source_handle=model.source_handle,
                    label=model.label,
                )
                for model in await FlowEdgeRepository(session=session).for_flow(flow_id)
            ]
            return FlowDefinition(flow=flow, nodes=nodes, edges=edges)

    async def find_triggerable(self, organization_id: str, trigger_type: NodeType) -> list[Flow]:
        async with self.session_maker() as session:
            models = await FlowRepository(session=session).find_triggerable(organization_id, trigger_type)
            return [_flow(model) for model in models]

    async def record_outcome(self, flow_id: UUID, status: ExecutionStatus) -> None:
        async with self.session_maker() as session, session.begin():
            await FlowRepository(session=session).increment_counters(flow_id, status)

    async def touch_last_execution(self, flow_id: UUID, at: datetime) -> None:
        async with self.session_maker() as session, session.begin():
            await FlowRepository(session=session).touch_last_execution(flow_id, at)


class SQLAlchemyExecutionStore(_SessionStore):
    """Execution contexts. The unique ``active_key`` backs insert-if-absent."""

    async def create_if_absent(self, context: ExecutionContext) -> ExecutionContext:
        try:
            async with self.session_maker() as session, session.begin():
                model = ExecutionContextModel(
                    id=context.id,
                    flow_id=context.flow_id,
                    contact_id=context.contact_id,
                    organization_id=context.organization_id,
                    started_at=context.started_at,
                    **_context_values(context),
                )
                session.add(model)
                await session.flush()
                await session.refresh(model)
                return _context(model)
        except IntegrityError as e:
            raise DuplicateTriggerError(context.flow_id, context.contact_id) from e

    async def get(self, execution_id: UUID) -> ExecutionContext:
        async with self.session_maker() as session:
            model = await ExecutionContextRepository(session=session).get_one_or_none(id=execution_id)
            if model is None:
                raise ExecutionNotFoundError(execution_id)
            return _context(model)

    async def update(self, context: ExecutionContext, expected_status: ExecutionStatus) -> bool:
        async with self.session_maker() as session, session.begin():
            repo = ExecutionContextRepository(session=session)
            updated = await repo.compare_and_set(context.id, expected_status, _context_values(context))
            if not updated and await repo.get_one_or_none(id=context.id) is None:
                raise ExecutionNotFoundError(context.id)
            return updated

    async def find_waiting(self, contact_id: UUID, kind: WaitKind) -> list[ExecutionContext]:
        async with self.session_maker() as session:
            models = await ExecutionContextRepository(session=session).find_waiting(contact_id)
            contexts = [_context(model) for model in models]
        return [context for context in contexts if context.wait is not None and context.wait.kind == kind]

    async def find_open(self, contact_id: UUID) -> list[ExecutionContext]:
        async with self.session_maker() as session:
            return [_context(model) for model in await ExecutionContextRepository(session=session).find_open(contact_id)]

    async def last_finished(self, flow_id: UUID, contact_id: UUID) -> ExecutionContext | None:
        async with self.session_maker() as session:
            model = await ExecutionContextRepository(session=session).last_finished(flow_id, contact_id)
            return _context(model) if model is not None else None

    async def list_for_flow(
        self,
        flow_id: UUID,
        status: ExecutionStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ExecutionContext]:
        async with self.session_maker() as session:
            repo = ExecutionContextRepository(session=session)
            return [_context(model) for model in await repo.find_by_flow(flow_id, status, limit, offset)]

    async def list_for_contact(self, contact_id: UUID) -> list[ExecutionContext]:
        async with self.session_maker() as session:
            repo = ExecutionContextRepository(session=session)
            return [_context(model) for model in await repo.find_by_contact(contact_id)]


class SQLAlchemyExecutionLogStore(_SessionStore):
    async def append(self, entry: ExecutionLogEntry) -> None:
        async with self.session_maker() as session, session.begin():
            repo = ExecutionLogRepository(session=session)
            session.add(
                ExecutionLogModel(
                    id=entry.id,
                    execution_id=entry.execution_id,
                    node_id=entry.node_id,
                    node_type=entry.node_type,
                    status=entry.status,
                    input_data=entry.input,
                    output_data=entry.output,
                    error=entry.error,
                    timestamp=entry.timestamp,
                    sequence=await repo.next_sequence(entry.execution_id),
                )
            )

    async def list_for_execution(self, execution_id: UUID) -> list[ExecutionLogEntry]:
        async with self.session_maker() as session:
            models = await ExecutionLogRepository(session=session).for_execution(execution_id)
            return [
                ExecutionLogEntry(
                    id=model.id,
                    execution_id=model.execution_id,
                    node_id=model.node_id,
                    node_type=model.node_type,
                    status=model.status,
                    input=dict(model.input_data or {}),
                    output=dict(model.output_data or {}),
                    error=model.error,
                    timestamp=model.timestamp,
                )
                for model in models
            ]


class SQLAlchemyScheduleStore(_SessionStore):
    async def add(self, resume: ScheduledResume) -> None:
        async with self.session_maker() as session, session.begin():
            session.add(
                ScheduledResumeModel(
                    id=resume.id,
                    execution_id=resume.execution_id,
                    due_at=resume.due_at,
                    token=resume.token,
                )
            )

    async def due(self, now: datetime, limit: int) -> list[ScheduledResume]:
        async with self.session_maker() as session:
            models = await ScheduledResumeRepository(session=session).due(now, limit)
            return [
                ScheduledResume(id=model.id, execution_id=model.execution_id, due_at=model.due_at, token=model.token)
                for model in models
            ]

    async def delete(self, resume_id: UUID) -> None:
        async with self.session_maker() as session, session.begin():
            await ScheduledResumeRepository(session=session).delete_by_id(resume_id)

    async def delete_for_execution(self, execution_id: UUID) -> None:
        async with self.session_maker() as session, session.begin():
            await ScheduledResumeRepository(session=session).delete_for_execution(execution_id)


class SQLAlchemyContactStore(_SessionStore):
    """Contacts with an optimistic version check on save."""

    async def add(self, contact: Contact) -> Contact:
        """Insert a contact record."""
        async with self.session_maker() as session, session.begin():
            session.add(
                ContactModel(
                    id=contact.id,
                    organization_id=contact.organization_id,
                    phone_number=contact.phone_number,
                    name=contact.name,
                    email=contact.email,
                    tags=list(contact.tags),
                    custom_fields=dict(contact.custom_fields),
                    current_flow_id=contact.current_flow_id,
                    current_node_id=contact.current_node_id,
                    version=contact.version,
                )
            )
        return contact

    async def get(self, contact_id: UUID) -> Contact:
        async with self.session_maker() as session:
            model = await ContactRepository(session=session).get_one_or_none(id=contact_id)
            if model is None:
                raise ContactNotFoundError(contact_id)
            return _contact(model)

    async def save(self, contact: Contact, expected_version: int) -> Contact:
        values = {
            "name": contact.name,
            "email": contact.email,
            "tags": list(contact.tags),
            "custom_fields": dict(contact.custom_fields),
            "current_flow_id": contact.current_flow_id,
            "current_node_id": contact.current_node_id,
        }
        async with self.session_maker() as session, session.begin():
            repo = ContactRepository(session=session)
            if not await repo.save_versioned(contact.id, expected_version, values):
                if await repo.get_one_or_none(id=contact.id) is None:
                    raise ContactNotFoundError(contact.id)
                raise StorageConflictError("contact", contact.id)
        contact.version = expected_version + 1
        return contact


class SQLAlchemyEffectLedger(_SessionStore):
    async def get(self, key: str) -> dict[str, Any] | None:
        async with self.session_maker() as session:
            model = await EffectLedgerRepository(session=session).get_by_key(key)
            return dict(model.output) if model is not None else None

    async def record(self, key: str, output: dict[str, Any]) -> None:
        try:
            async with self.session_maker() as session, session.begin():
                session.add(EffectLedgerModel(key=key, output=dict(output)))
        except IntegrityError:
            # First record for a key wins.
            return


def sqlalchemy_backend(session_maker: async_sessionmaker[AsyncSession]) -> StorageBackend:
    """Build a backend of SQLAlchemy stores sharing one session factory.

    Example:
        >>> engine = create_async_engine("postgresql+asyncpg://...")
        >>> backend = sqlalchemy_backend(async_sessionmaker(engine, expire_on_commit=False))
    """
    return StorageBackend(
        flows=SQLAlchemyFlowStore(session_maker),
        executions=SQLAlchemyExecutionStore(session_maker),
        logs=SQLAlchemyExecutionLogStore(session_maker),
        schedules=SQLAlchemyScheduleStore(session_maker),
        contacts=SQLAlchemyContactStore(session_maker),
        ledger=SQLAlchemyEffectLedger(session_maker),
    )
