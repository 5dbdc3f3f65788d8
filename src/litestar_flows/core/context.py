"""Execution context for flow runs.

An :class:`ExecutionContext` is the durable record of one contact's progress through
one flow. It is mutated exclusively by the engine and persisted after every step, so
a suspended context holds no in-memory state and can be rehydrated by any process.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from litestar_flows.core.types import ExecutionStatus, LogStatus, NodeType, WaitKind

__all__ = ("ExecutionContext", "ExecutionLogEntry", "ScheduledResume", "WaitState", "idempotency_key")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def idempotency_key(execution_id: UUID, node_id: str, step_epoch: int) -> str:
    """Build the key that dedupes a node's side effect across retries and redeliveries."""
    return f"{execution_id}:{node_id}:{step_epoch}"


@dataclass
class WaitState:
    """What a suspended context is waiting for.

    Attributes:
        kind: The kind of event that resumes the context.
        node_id: The node that suspended.
        options: Button texts accepted by a button wait, in configured order.
    """

    kind: WaitKind
    node_id: str
    options: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "node_id": self.node_id, "options": list(self.options)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WaitState:
        return cls(kind=WaitKind(data["kind"]), node_id=data["node_id"], options=list(data.get("options", [])))


@dataclass
class ExecutionContext:
    """Durable per-contact progress record through a flow.

    Attributes:
        flow_id: The flow being executed.
        contact_id: The contact travelling through the flow.
        organization_id: Owning organization, copied from the flow.
        current_node_id: Node to evaluate next, or the suspending node while waiting.
            ``None`` once completed.
        id: Unique identifier.
        flow_context: Variables captured along the path.
        flow_paused: Set while a human operator owns the conversation.
        status: Current status.
        wait: Pending wait while suspended.
        resume_at: Due time of a pending scheduled resume.
        step_epoch: Incremented on every step. Part of idempotency keys and resume tokens.
        trigger_data: Data of the event that started the execution.
        error_kind: Error kind when failed, e.g. ``UnhandledBranch``.
        error: Error detail when failed or the cancellation reason.
        started_at: When the execution was created.
        completed_at: When the execution reached a terminal state.
    """

    flow_id: UUID
    contact_id: UUID
    organization_id: str
    current_node_id: str | None = None
    id: UUID = field(default_factory=uuid4)
    flow_context: dict[str, Any] = field(default_factory=dict)
    flow_paused: bool = False
    status: ExecutionStatus = ExecutionStatus.RUNNING
    wait: WaitState | None = None
    resume_at: datetime | None = None
    step_epoch: int = 0
    trigger_data: dict[str, Any] = field(default_factory=dict)
    error_kind: str | None = None
    error: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def get(self, key: str, default: Any = None) -> Any:
        """Get a variable from the flow context.

        Args:
            key: The variable name.
            default: Returned when the variable is not set.

        Returns:
            The variable value or ``default``.
        """
        return self.flow_context.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.flow_context[key] = value

    def clear_wait(self) -> None:
        """Forget any pending suspension."""
        self.wait = None
        self.resume_at = None
        self.flow_paused = False


@dataclass
class ExecutionLogEntry:
    """Immutable record of one step or side effect of an execution.

    Append-only. The engine writes these but never reads them back.
    """

    execution_id: UUID
    node_id: str
    node_type: NodeType | None
    status: LogStatus
    input: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScheduledResume:
    """A durable request to resume a waiting execution at a due time.

    Attributes:
        execution_id: The context to resume.
        due_at: Earliest time to fire.
        token: The context's ``step_epoch`` when scheduled. A resume with a stale
            token is ignored.
    """

    execution_id: UUID
    due_at: datetime
    token: int
    id: UUID = field(default_factory=uuid4)
