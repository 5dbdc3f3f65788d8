"""Bundle of the stores an engine runs on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from litestar_flows.core.protocols import (
        ContactStore,
        EffectLedger,
        ExecutionLogStore,
        ExecutionStore,
        FlowStore,
        ScheduleStore,
    )

__all__ = ("StorageBackend",)


@dataclass
class StorageBackend:
    """Every store the engine and the flow manager need.

    Build one with :func:`litestar_flows.engine.memory.memory_backend` or
    :func:`litestar_flows.db.stores.sqlalchemy_backend`.
    """

    flows: FlowStore
    executions: ExecutionStore
    logs: ExecutionLogStore
    schedules: ScheduleStore
    contacts: ContactStore
    ledger: EffectLedger
