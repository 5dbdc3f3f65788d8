"""SQLAlchemy models for flow persistence.

This module defines the database models backing the storage protocols:
- FlowModel: Flow metadata, trigger sync and counters
- FlowNodeModel / FlowEdgeModel: The flow graph as plain node and edge tables
- ExecutionContextModel: Per-contact execution state
- ExecutionLogModel: Append-only step and side-effect audit trail
- ScheduledResumeModel: Durable delayed resumes
- ContactModel: CRM contacts with an optimistic version column
- EffectLedgerModel: Applied side effects keyed by idempotency key
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from advanced_alchemy.base import UUIDAuditBase
from advanced_alchemy.types import DateTimeUTC
from sqlalchemy import JSON, Enum, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from litestar_flows.core.types import ExecutionStatus, FlowStatus, LogStatus, NodeType

__all__ = [
    "ContactModel",
    "EffectLedgerModel",
    "ExecutionContextModel",
    "ExecutionLogModel",
    "FlowEdgeModel",
    "FlowModel",
    "FlowNodeModel",
    "ScheduledResumeModel",
]


# Cross-database JSON type: uses JSONB for PostgreSQL, JSON for others (SQLite, MySQL, etc.)
JSONType = JSON().with_variant(JSONB, "postgresql")


class FlowModel(UUIDAuditBase):
    """Persisted flow.

    Attributes:
        organization_id: Owning organization.
        name: Display name.
        description: Optional description.
        status: Lifecycle status.
        is_active: Operator toggle.
        trigger_type: Trigger node type, synced on activation.
        trigger_config: Trigger node config, synced on activation.
        whatsapp_account_id: Optional WhatsApp account binding.
        total_executions: Terminal executions.
        successful_executions: Completed executions.
        failed_executions: Failed executions.
        last_execution_at: When the flow last fired.
    """

    __tablename__ = "flows"
    __table_args__ = (
        Index("ix_flows_organization_trigger", "organization_id", "trigger_type", "status"),
    )

    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[FlowStatus] = mapped_column(
        Enum(FlowStatus, native_enum=False, length=50),
        default=FlowStatus.DRAFT,
    )
    is_active: Mapped[bool] = mapped_column(default=False)
    trigger_type: Mapped[NodeType | None] = mapped_column(
        Enum(NodeType, native_enum=False, length=50),
        nullable=True,
    )
    trigger_config: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    whatsapp_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_executions: Mapped[int] = mapped_column(Integer, default=0)
    successful_executions: Mapped[int] = mapped_column(Integer, default=0)
    failed_executions: Mapped[int] = mapped_column(Integer, default=0)
    last_execution_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)

    # Relationships
    nodes: Mapped[list[FlowNodeModel]] = relationship(
        back_populates="flow",
        lazy="noload",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    edges: Mapped[list[FlowEdgeModel]] = relationship(
        back_populates="flow",
        lazy="noload",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class FlowNodeModel(UUIDAuditBase):
    """A node of a flow graph.

    Attributes:
        flow_id: Owning flow.
        node_key: Editor-assigned ID, unique within the flow.
        node_type: The node type.
        name: Optional display label.
        config: Raw config document.
        position_x: Canvas position.
        position_y: Canvas position.
        position: Insertion order of the node in the saved graph.
    """

    __tablename__ = "flow_nodes"
    __table_args__ = (UniqueConstraint("flow_id", "node_key", name="uq_flow_nodes_flow_key"),)

    flow_id: Mapped[UUID] = mapped_column(ForeignKey("flows.id", ondelete="CASCADE"), index=True)
    node_key: Mapped[str] = mapped_column(String(255))
    node_type: Mapped[NodeType] = mapped_column(Enum(NodeType, native_enum=False, length=50))
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    config: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    position_x: Mapped[float] = mapped_column(Float, default=0.0)
    position_y: Mapped[float] = mapped_column(Float, default=0.0)
    position: Mapped[int] = mapped_column(Integer, default=0)

    flow: Mapped[FlowModel] = relationship(back_populates="nodes", lazy="noload")


class FlowEdgeModel(UUIDAuditBase):
    """An edge of a flow graph.

    Attributes:
        flow_id: Owning flow.
        edge_key: Editor-assigned ID.
        source_key: Source node key.
        target_key: Target node key.
        source_handle: Output handle of the source node.
        label: Optional display label.
        position: Insertion order, preserved so the first edge of a handle wins.
    """

    __tablename__ = "flow_edges"

    flow_id: Mapped[UUID] = mapped_column(ForeignKey("flows.id", ondelete="CASCADE"), index=True)
    edge_key: Mapped[str] = mapped_column(String(255))
    source_key: Mapped[str] = mapped_column(String(255))
    target_key: Mapped[str] = mapped_column(String(255))
    source_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position: Mapped[int] = mapped_column(Integer, default=0)

    flow: Mapped[FlowModel] = relationship(back_populates="edges", lazy="noload")


class ExecutionContextModel(UUIDAuditBase):
    """Persisted execution context.

    ``active_key`` holds ``"<contact_id>:<flow_id>"`` while the context is open and
    NULL once terminal. Its unique index enforces one open context per contact and
    flow at the database level.
    """

    __tablename__ = "flow_executions"
    __table_args__ = (
        Index("ix_flow_executions_contact_status", "contact_id", "status"),
        Index("ix_flow_executions_flow_status", "flow_id", "status"),
    )

    flow_id: Mapped[UUID] = mapped_column(ForeignKey("flows.id", ondelete="CASCADE"))
    contact_id: Mapped[UUID] = mapped_column(index=True)
    organization_id: Mapped[str] = mapped_column(String(255))
    active_key: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    current_node_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(ExecutionStatus, native_enum=False, length=50),
        default=ExecutionStatus.RUNNING,
    )
    flow_context: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    flow_paused: Mapped[bool] = mapped_column(default=False)
    wait: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    resume_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)
    step_epoch: Mapped[int] = mapped_column(Integer, default=0)
    trigger_data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    error_kind: Mapped[str | None] = mapped_column(String(100), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTimeUTC(timezone=True), nullable=True)


class ExecutionLogModel(UUIDAuditBase):
    """One execution log entry."""

    __tablename__ = "flow_execution_logs"
    __table_args__ = (Index("ix_flow_execution_logs_execution_ts", "execution_id", "timestamp"),)

    execution_id: Mapped[UUID] = mapped_column(ForeignKey("flow_executions.id", ondelete="CASCADE"))
    node_id: Mapped[str] = mapped_column(String(255))
    node_type: Mapped[NodeType | None] = mapped_column(Enum(NodeType, native_enum=False, length=50), nullable=True)
    status: Mapped[LogStatus] = mapped_column(Enum(LogStatus, native_enum=False, length=50))
    input_data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    output_data: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True))
    sequence: Mapped[int] = mapped_column(Integer, default=0)


class ScheduledResumeModel(UUIDAuditBase):
    """A durable scheduled resume."""

    __tablename__ = "flow_scheduled_resumes"

    execution_id: Mapped[UUID] = mapped_column(ForeignKey("flow_executions.id", ondelete="CASCADE"), index=True)
    due_at: Mapped[datetime] = mapped_column(DateTimeUTC(timezone=True), index=True)
    token: Mapped[int] = mapped_column(Integer)


class ContactModel(UUIDAuditBase):
    """A CRM contact.

    ``version`` is compared and bumped by an explicit conditional UPDATE in the
    contact store.
    """

    __tablename__ = "contacts"

    organization_id: Mapped[str] = mapped_column(String(255), index=True)
    phone_number: Mapped[str] = mapped_column(String(50), index=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSONType, default=list)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
    current_flow_id: Mapped[UUID | None] = mapped_column(nullable=True)
    current_node_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)


class EffectLedgerModel(UUIDAuditBase):
    """An applied side effect keyed by its idempotency key."""

    __tablename__ = "flow_effect_ledger"

    key: Mapped[str] = mapped_column(String(255), unique=True)
    output: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict)
