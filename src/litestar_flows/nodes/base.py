"""Base classes for node types.

Every node type is a :class:`NodeSpec` subclass bound to a pydantic config model. The
engine never inspects raw config fields: it parses the node's config through the spec,
asks it for an :class:`NodeOutcome` and acts on that outcome.

Condition specs are pure. Action specs may request exactly one side effect per step,
which the engine hands to the action dispatcher.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from litestar_flows.core.templating import render, render_value
from litestar_flows.core.types import DEFAULT_HANDLE, NO_MATCH_HANDLE, NodeCategory, NodeType, WaitKind

if TYPE_CHECKING:
    from litestar_flows.core.context import ExecutionContext
    from litestar_flows.core.events import FlowEvent
    from litestar_flows.core.models import Contact, SideEffect

__all__ = (
    "NodeConfig",
    "NodeContext",
    "NodeOutcome",
    "NodeSpec",
    "ResumeSignal",
    "Suspension",
    "TriggerSpec",
    "match_option",
)

ConfigT = TypeVar("ConfigT", bound="NodeConfig")


class NodeConfig(BaseModel):
    """Base model for node configuration documents.

    Accepts the editor's camelCase keys as well as snake_case field names, and keeps
    unknown keys so editor-only data survives a round trip.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


@dataclass(frozen=True)
class NodeContext:
    """Read-only view handed to node specs.

    Attributes:
        execution: The execution context being stepped.
        contact: The contact, freshly loaded for this step.
        now: Current time.
        whatsapp_account_id: Sending account when the flow is bound to one.
    """

    execution: ExecutionContext
    contact: Contact
    now: datetime
    whatsapp_account_id: str | None = None

    @property
    def variables(self) -> dict[str, Any]:
        return self.execution.flow_context

    def render(self, text: str) -> str:
        """Substitute contact and variable placeholders in ``text``."""
        return render(text, self.contact, self.variables)

    def render_value(self, value: Any) -> Any:
        return render_value(value, self.contact, self.variables)


@dataclass(frozen=True)
class Suspension:
    """Request to suspend the context on the current node.

    Attributes:
        kind: What resumes the context.
        resume_at: When set, the scheduler resumes the context at this time.
        options: Accepted button texts for a button wait, in configured order.
    """

    kind: WaitKind
    resume_at: datetime | None = None
    options: tuple[str, ...] = ()


@dataclass(frozen=True)
class ResumeSignal:
    """Why a suspended context is being resumed.

    Attributes:
        kind: The wait kind being satisfied. ``TIMER`` for scheduler callbacks.
        data: Event data merged into the flow context.
        button_text: Clicked button text for button waits.
        text: Inbound message text for reply waits.
    """

    kind: WaitKind
    data: dict[str, Any] = field(default_factory=dict)
    button_text: str | None = None
    text: str | None = None


@dataclass
class NodeOutcome:
    """The result of evaluating or resuming a node.

    Attributes:
        handle: Output to follow next.
        effect: Side effect to dispatch before advancing.
        patch: Variables merged into the flow context.
        suspension: Suspend on this node instead of advancing.
        terminal: Complete the context.
        observed: The value a branching node matched against, for error reporting.
    """

    handle: str = DEFAULT_HANDLE
    effect: SideEffect | None = None
    patch: dict[str, Any] = field(default_factory=dict)
    suspension: Suspension | None = None
    terminal: bool = False
    observed: str | None = None


def match_option(options: Sequence[tuple[str, str]], observed: str | None) -> str:
    """Resolve an observed button text to an output handle.

    Exact, case-sensitive comparison against the option texts in configured order.
    The first match wins.

    Args:
        options: ``(text, handle)`` pairs in configured order.
        observed: The clicked button text.

    Returns:
        The matching handle, or :data:`NO_MATCH_HANDLE`.
    """
    if observed is not None:
        for text, handle in options:
            if text == observed:
                return handle
    return NO_MATCH_HANDLE


class NodeSpec(Generic[ConfigT]):
    """Behavior of one node type.

    Subclasses set :attr:`node_type` and :attr:`config_model` and implement
    :meth:`evaluate`. Suspending types also override :meth:`resume`.
    """

    node_type: ClassVar[NodeType]
    config_model: ClassVar[type[NodeConfig]] = NodeConfig
    suspends: ClassVar[bool] = False
    """Whether evaluating the node always suspends the context."""
    accepts_no_match: ClassVar[bool] = False
    """Whether the node may carry an optional :data:`NO_MATCH_HANDLE` edge."""

    @property
    def category(self) -> NodeCategory:
        return self.node_type.category

    def parse_config(self, raw: dict[str, Any]) -> ConfigT:
        """Validate a raw config document.

        Raises:
            pydantic.ValidationError: If the document violates the schema.
        """
        return self.config_model.model_validate(raw)  # type: ignore[return-value]

    def handles(self, config: ConfigT) -> tuple[str, ...]:
        """Output handles an edge may leave from."""
        return (DEFAULT_HANDLE,)

    def required_handles(self, config: ConfigT) -> tuple[str, ...]:
        """Output handles that must have an edge before activation."""
        return ()

    def allowed_handles(self, config: ConfigT) -> tuple[str, ...]:
        handles = self.handles(config)
        if self.accepts_no_match:
            handles = (*handles, NO_MATCH_HANDLE)
        return handles

    def is_suspending(self, config: ConfigT) -> bool:
        """Whether evaluating the node suspends the context.

        Cycles are only allowed through suspending nodes.
        """
        return self.suspends

    def evaluate(self, ctx: NodeContext, config: ConfigT) -> NodeOutcome:
        raise NotImplementedError

    def resume(self, ctx: NodeContext, config: ConfigT, signal: ResumeSignal) -> NodeOutcome:
        """Decide where a suspended context continues."""
        return NodeOutcome(patch=dict(signal.data))

    def apply_result(self, config: ConfigT, result: dict[str, Any]) -> dict[str, Any]:
        """Turn the dispatched side effect's result into variables."""
        return {}


class TriggerSpec(NodeSpec[ConfigT]):
    """Entry node of a flow.

    Evaluating a trigger copies the starting event's data into the flow context.
    """

    def matches(self, config: ConfigT, event: FlowEvent) -> bool:
        """Whether an inbound event fires a flow with this trigger."""
        return True

    def evaluate(self, ctx: NodeContext, config: ConfigT) -> NodeOutcome:
        patch = {key: value for key, value in ctx.execution.trigger_data.items() if key != "event" and value is not None}
        return NodeOutcome(patch=patch)
