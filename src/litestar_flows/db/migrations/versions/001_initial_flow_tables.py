"""Initial flow tables.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-17
"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("sa_orm_sentinel", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create flow, graph, execution and contact tables."""
    # Create flows table
    op.create_table(
        "flows",
        *_audit_columns(),
        sa.Column("organization_id", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("trigger_type", sa.String(length=50), nullable=True),
        sa.Column("trigger_config", sa.JSON(), nullable=False),
        sa.Column("whatsapp_account_id", sa.String(length=255), nullable=True),
        sa.Column("total_executions", sa.Integer(), nullable=False),
        sa.Column("successful_executions", sa.Integer(), nullable=False),
        sa.Column("failed_executions", sa.Integer(), nullable=False),
        sa.Column("last_execution_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_flows_organization_id", "flows", ["organization_id"])
    op.create_index("ix_flows_organization_trigger", "flows", ["organization_id", "trigger_type", "status"])

    # Create graph tables
    op.create_table(
        "flow_nodes",
        *_audit_columns(),
        sa.Column("flow_id", sa.Uuid(), nullable=False),
        sa.Column("node_key", sa.String(length=255), nullable=False),
        sa.Column("node_type", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("position_x", sa.Float(), nullable=False),
        sa.Column("position_y", sa.Float(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["flow_id"], ["flows.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("flow_id", "node_key", name="uq_flow_nodes_flow_key"),
    )
    op.create_index("ix_flow_nodes_flow_id", "flow_nodes", ["flow_id"])

    op.create_table(
        "flow_edges",
        *_audit_columns(),
        sa.Column("flow_id", sa.Uuid(), nullable=False),
        sa.Column("edge_key", sa.String(length=255), nullable=False),
        sa.Column("source_key", sa.String(length=255), nullable=False),
        sa.Column("target_key", sa.String(length=255), nullable=False),
        sa.Column("source_handle", sa.String(length=255), nullable=True),
        sa.Column("label", sa.String(length=255), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["flow_id"], ["flows.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_flow_edges_flow_id", "flow_edges", ["flow_id"])

    # Create flow_executions table
    op.create_table(
        "flow_executions",
        *_audit_columns(),
        sa.Column("flow_id", sa.Uuid(), nullable=False),
        sa.Column("contact_id", sa.Uuid(), nullable=False),
        sa.Column("organization_id", sa.String(length=255), nullable=False),
        sa.Column("active_key", sa.String(length=100), nullable=True),
        sa.Column("current_node_id", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("flow_context", sa.JSON(), nullable=False),
        sa.Column("flow_paused", sa.Boolean(), nullable=False),
        sa.Column("wait", sa.JSON(), nullable=True),
        sa.Column("resume_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("step_epoch", sa.Integer(), nullable=False),
        sa.Column("trigger_data", sa.JSON(), nullable=False),
        sa.Column("error_kind", sa.String(length=100), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["flow_id"], ["flows.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("active_key"),
    )
    op.create_index("ix_flow_executions_contact_id", "flow_executions", ["contact_id"])
    op.create_index("ix_flow_executions_contact_status", "flow_executions", ["contact_id", "status"])
    op.create_index("ix_flow_executions_flow_status", "flow_executions", ["flow_id", "status"])

    op.create_table(
        "flow_execution_logs",
        *_audit_columns(),
        sa.Column("execution_id", sa.Uuid(), nullable=False),
        sa.Column("node_id", sa.String(length=255), nullable=False),
        sa.Column("node_type", sa.String(length=50), nullable=True),
        sa.Column("status", sa.String(length=50), nullable=False),
        sa.Column("input_data", sa.JSON(), nullable=False),
        sa.Column("output_data", sa.JSON(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["execution_id"], ["flow_executions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_flow_execution_logs_execution_ts", "flow_execution_logs", ["execution_id", "timestamp"])

    op.create_table(
        "flow_scheduled_resumes",
        *_audit_columns(),
        sa.Column("execution_id", sa.Uuid(), nullable=False),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("token", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["execution_id"], ["flow_executions.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_flow_scheduled_resumes_execution_id", "flow_scheduled_resumes", ["execution_id"])
    op.create_index("ix_flow_scheduled_resumes_due_at", "flow_scheduled_resumes", ["due_at"])

    # Create contacts and the effect ledger
    op.create_table(
        "contacts",
        *_audit_columns(),
        sa.Column("organization_id", sa.String(length=255), nullable=False),
        sa.Column("phone_number", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("custom_fields", sa.JSON(), nullable=False),
        sa.Column("current_flow_id", sa.Uuid(), nullable=True),
        sa.Column("current_node_id", sa.String(length=255), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_contacts_organization_id", "contacts", ["organization_id"])
    op.create_index("ix_contacts_phone_number", "contacts", ["phone_number"])

    op.create_table(
        "flow_effect_ledger",
        *_audit_columns(),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("output", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key"),
    )


def downgrade() -> None:
    """Drop flow tables."""
    op.drop_table("flow_effect_ledger")
    op.drop_table("contacts")
    op.drop_table("flow_scheduled_resumes")
    op.drop_table("flow_execution_logs")
    op.drop_table("flow_executions")
    op.drop_table("flow_edges")
    op.drop_table("flow_nodes")
    op.drop_table("flows")
