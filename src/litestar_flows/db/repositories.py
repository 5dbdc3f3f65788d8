"""Repository implementations for flow persistence.

This module provides async repositories for the flow models using
advanced-alchemy's repository pattern. Compare-and-set writes are issued as
conditional UPDATE statements so they stay atomic without row locks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any
from uuid import UUID

from advanced_alchemy.filters import LimitOffset, OrderBy
from advanced_alchemy.repository import SQLAlchemyAsyncRepository
from sqlalchemy import and_, delete, func, select, update

from litestar_flows.core.types import TERMINAL_STATUSES, WAITING_STATUSES, ExecutionStatus, FlowStatus
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

if TYPE_CHECKING:
    from collections.abc import Sequence

    from litestar_flows.core.types import NodeType

__all__ = [
    "ContactRepository",
    "EffectLedgerRepository",
    "ExecutionContextRepository",
    "ExecutionLogRepository",
    "FlowEdgeRepository",
    "FlowNodeRepository",
    "FlowRepository",
    "ScheduledResumeRepository",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowRepository(SQLAlchemyAsyncRepository[FlowModel]):
    """Repository for flows, including the counter updates of finished executions."""

    model_type = FlowModel

    async def list_filtered(
        self,
        organization_id: str | None = None,
        status: FlowStatus | None = None,
    ) -> Sequence[FlowModel]:
        """List flows with optional organization and status filters, oldest first."""
        conditions = []
        if organization_id is not None:
            conditions.append(FlowModel.organization_id == organization_id)
        if status is not None:
            conditions.append(FlowModel.status == status)
        stmt = select(FlowModel).where(*conditions).order_by(FlowModel.created_at)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_triggerable(self, organization_id: str, trigger_type: NodeType) -> Sequence[FlowModel]:
        """Find active, switched-on flows of an organization by trigger type."""
        stmt = select(FlowModel).where(
            and_(
                FlowModel.organization_id == organization_id,
                FlowModel.trigger_type == trigger_type,
                FlowModel.status == FlowStatus.ACTIVE,
                FlowModel.is_active == True,  # noqa: E712
            )
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def increment_counters(self, flow_id: UUID, status: ExecutionStatus) -> None:
        """Atomically count a terminal execution.

        Args:
            flow_id: The flow.
            status: The execution's terminal status.
        """
        values: dict[str, Any] = {"total_executions": FlowModel.total_executions + 1}
        if status is ExecutionStatus.COMPLETED:
            values["successful_executions"] = FlowModel.successful_executions + 1
        elif status is ExecutionStatus.FAILED:
            values["failed_executions"] = FlowModel.failed_executions + 1
        await self.session.execute(update(FlowModel).where(FlowModel.id == flow_id).values(**values))

    async def touch_last_execution(self, flow_id: UUID, at: datetime) -> None:
        await self.session.execute(update(FlowModel).where(FlowModel.id == flow_id).values(last_execution_at=at))


class FlowNodeRepository(SQLAlchemyAsyncRepository[FlowNodeModel]):
    model_type = FlowNodeModel

    async def for_flow(self, flow_id: UUID) -> Sequence[FlowNodeModel]:
        stmt = select(FlowNodeModel).where(FlowNodeModel.flow_id == flow_id).order_by(FlowNodeModel.position)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def delete_for_flow(self, flow_id: UUID) -> None:
        await self.session.execute(delete(FlowNodeModel).where(FlowNodeModel.flow_id == flow_id))


class FlowEdgeRepository(SQLAlchemyAsyncRepository[FlowEdgeModel]):
    model_type = FlowEdgeModel

    async def for_flow(self, flow_id: UUID) -> Sequence[FlowEdgeModel]:
        stmt = select(FlowEdgeModel).where(FlowEdgeModel.flow_id == flow_id).order_by(FlowEdgeModel.position)
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def delete_for_flow(self, flow_id: UUID) -> None:
        await self.session.execute(delete(FlowEdgeModel).where(FlowEdgeModel.flow_id == flow_id))


class ExecutionContextRepository(SQLAlchemyAsyncRepository[ExecutionContextModel]):
    """Repository for execution contexts.

    Provides the compare-and-set update and the per-contact queries the engine
    routes events with.
    """

    model_type = ExecutionContextModel

    async def compare_and_set(self, execution_id: UUID, expected: ExecutionStatus, values: dict[str, Any]) -> bool:
        """Update a context only if its status still equals ``expected``.

        Returns:
            True if a row was updated.
        """
        stmt = (
            update(ExecutionContextModel)
            .where(and_(ExecutionContextModel.id == execution_id, ExecutionContextModel.status == expected))
            .values(**values, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def find_waiting(self, contact_id: UUID) -> Sequence[ExecutionContextModel]:
        stmt = (
            select(ExecutionContextModel)
            .where(
                and_(
                    ExecutionContextModel.contact_id == contact_id,
                    ExecutionContextModel.status.in_(list(WAITING_STATUSES)),
                )
            )
            .order_by(ExecutionContextModel.started_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def find_open(self, contact_id: UUID) -> Sequence[ExecutionContextModel]:
        stmt = (
            select(ExecutionContextModel)
            .where(
                and_(
                    ExecutionContextModel.contact_id == contact_id,
                    ExecutionContextModel.status.not_in(list(TERMINAL_STATUSES)),
                )
            )
            .order_by(ExecutionContextModel.started_at)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def last_finished(self, flow_id: UUID, contact_id: UUID) -> ExecutionContextModel | None:
        stmt = (
            select(ExecutionContextModel)
            .where(
                and_(
                    ExecutionContextModel.flow_id == flow_id,
                    ExecutionContextModel.contact_id == contact_id,
                    ExecutionContextModel.status.in_(list(TERMINAL_STATUSES)),
                )
            )
            .order_by(ExecutionContextModel.completed_at.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_flow(
        self,
        flow_id: UUID,
        status: ExecutionStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[ExecutionContextModel]:
        """Find contexts of a flow, newest first."""
        conditions: dict[str, Any] = {"flow_id": flow_id}
        if status is not None:
            conditions["status"] = status
        return await self.list(
            LimitOffset(limit=limit, offset=offset),
            OrderBy(field_name="started_at", sort_order="desc"),
            **conditions,
        )

    async def find_by_contact(self, contact_id: UUID) -> Sequence[ExecutionContextModel]:
        return await self.list(OrderBy(field_name="started_at", sort_order="desc"), contact_id=contact_id)


class ExecutionLogRepository(SQLAlchemyAsyncRepository[ExecutionLogModel]):
    model_type = ExecutionLogModel

    async def next_sequence(self, execution_id: UUID) -> int:
        stmt = select(func.count()).select_from(ExecutionLogModel).where(ExecutionLogModel.execution_id == execution_id)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def for_execution(self, execution_id: UUID) -> Sequence[ExecutionLogModel]:
        stmt = (
            select(ExecutionLogModel)
            .where(ExecutionLogModel.execution_id == execution_id)
            .order_by(ExecutionLogModel.sequence, ExecutionLogModel.timestamp)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()


class ScheduledResumeRepository(SQLAlchemyAsyncRepository[ScheduledResumeModel]):
    model_type = ScheduledResumeModel

    async def due(self, now: datetime, limit: int) -> Sequence[ScheduledResumeModel]:
        stmt = (
            select(ScheduledResumeModel)
            .where(ScheduledResumeModel.due_at <= now)
            .order_by(ScheduledResumeModel.due_at)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def delete_by_id(self, resume_id: UUID) -> None:
        await self.session.execute(delete(ScheduledResumeModel).where(ScheduledResumeModel.id == resume_id))

    async def delete_for_execution(self, execution_id: UUID) -> None:
        await self.session.execute(
            delete(ScheduledResumeModel).where(ScheduledResumeModel.execution_id == execution_id)
        )


class ContactRepository(SQLAlchemyAsyncRepository[ContactModel]):
    model_type = ContactModel

    async def save_versioned(self, contact_id: UUID, expected_version: int, values: dict[str, Any]) -> bool:
        """Write a contact if its version still equals ``expected_version``, bumping it.

        Returns:
            True if the row was updated.
        """
        stmt = (
            update(ContactModel)
            .where(and_(ContactModel.id == contact_id, ContactModel.version == expected_version))
            .values(**values, version=expected_version + 1, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1


class EffectLedgerRepository(SQLAlchemyAsyncRepository[EffectLedgerModel]):
    model_type = EffectLedgerModel

    async def get_by_key(self, key: str) -> EffectLedgerModel | None:
        return await self.get_one_or_none(key=key)
