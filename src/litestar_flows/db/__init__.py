"""Database persistence layer for litestar-flows.

This module provides SQLAlchemy models, repositories and storage protocol
implementations for persisting flows, execution contexts and contacts.
"""

from __future__ import annotations

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
from litestar_flows.db.stores import (
    SQLAlchemyContactStore,
    SQLAlchemyEffectLedger,
    SQLAlchemyExecutionLogStore,
    SQLAlchemyExecutionStore,
    SQLAlchemyFlowStore,
    SQLAlchemyScheduleStore,
    sqlalchemy_backend,
)

__all__ = [
    "ContactModel",
    "ContactRepository",
    "EffectLedgerModel",
    "EffectLedgerRepository",
    "ExecutionContextModel",
    "ExecutionContextRepository",
    "ExecutionLogModel",
    "ExecutionLogRepository",
    "FlowEdgeModel",
    "FlowEdgeRepository",
    "FlowModel",
    "FlowNodeModel",
    "FlowNodeRepository",
    "FlowRepository",
    "SQLAlchemyContactStore",
    "SQLAlchemyEffectLedger",
    "SQLAlchemyExecutionLogStore",
    "SQLAlchemyExecutionStore",
    "SQLAlchemyFlowStore",
    "SQLAlchemyScheduleStore",
    "ScheduledResumeModel",
    "ScheduledResumeRepository",
    "sqlalchemy_backend",
]
