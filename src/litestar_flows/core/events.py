"""Inbound events delivered to the flow engine.

Events are produced by the CRM's webhook receiver and inbox. Each one either resumes
a suspended execution context of the contact or, when nothing was waiting for it,
fires every active flow whose trigger matches.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar
from uuid import UUID

from litestar_flows.core.types import NodeType, WaitKind

__all__ = ("ButtonClicked", "ContactCreated", "FlowEvent", "MessageReceived", "WebhookReceived")


@dataclass(frozen=True, kw_only=True)
class FlowEvent:
    """Base class for inbound events.

    Attributes:
        organization_id: Organization the contact belongs to.
        contact_id: The contact the event concerns.
        whatsapp_account_id: WhatsApp account that received the event, when known.
    """

    trigger_types: ClassVar[tuple[NodeType, ...]] = ()
    """Trigger node types this event can fire."""
    resumes: ClassVar[WaitKind | None] = None
    """Kind of wait this event can resume."""

    organization_id: str
    contact_id: UUID
    whatsapp_account_id: str | None = None

    def targets(self, flow_id: UUID) -> bool:
        """Whether the event may fire the given flow."""
        return True

    def trigger_data(self) -> dict[str, Any]:
        """Data stored on an execution context started by this event."""
        return {"event": type(self).__name__}

    def accepts_wait(self, execution_id: UUID, node_id: str) -> bool:
        """Whether a context suspended on ``node_id`` is the one this event answers."""
        return True


@dataclass(frozen=True, kw_only=True)
class ButtonClicked(FlowEvent):
    """A contact clicked a reply button.

    Attributes:
        button_text: The visible button text. Branch matching uses this value.
        button_id: The button payload ID, when the provider supplies it.
        execution_id: The awaiting execution context, when known.
        node_id: The node that sent the buttons, when known.
    """

    trigger_types: ClassVar[tuple[NodeType, ...]] = (NodeType.TRIGGER_BUTTON_CLICK,)
    resumes: ClassVar[WaitKind | None] = WaitKind.BUTTON

    button_text: str
    button_id: str | None = None
    execution_id: UUID | None = None
    node_id: str | None = None

    def trigger_data(self) -> dict[str, Any]:
        return {**super().trigger_data(), "button_text": self.button_text, "button_id": self.button_id}

    def accepts_wait(self, execution_id: UUID, node_id: str) -> bool:
        if self.execution_id is not None and self.execution_id != execution_id:
            return False
        return self.node_id is None or self.node_id == node_id


@dataclass(frozen=True, kw_only=True)
class MessageReceived(FlowEvent):
    """A contact sent a message.

    Attributes:
        text: Message text, empty for media without caption.
        message_id: Provider message ID.
    """

    trigger_types: ClassVar[tuple[NodeType, ...]] = (NodeType.TRIGGER_KEYWORD, NodeType.TRIGGER_MESSAGE)
    resumes: ClassVar[WaitKind | None] = WaitKind.REPLY

    text: str = ""
    message_id: str | None = None

    def trigger_data(self) -> dict[str, Any]:
        return {**super().trigger_data(), "message": self.text, "message_id": self.message_id}


@dataclass(frozen=True, kw_only=True)
class WebhookReceived(FlowEvent):
    """An external system called the webhook URL of a flow.

    Attributes:
        flow_id: The flow addressed by the webhook URL.
        payload: The request body.
    """

    trigger_types: ClassVar[tuple[NodeType, ...]] = (NodeType.TRIGGER_WEBHOOK,)

    flow_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)

    def targets(self, flow_id: UUID) -> bool:
        return flow_id == self.flow_id

    def trigger_data(self) -> dict[str, Any]:
        return {**super().trigger_data(), "webhook": dict(self.payload)}


@dataclass(frozen=True, kw_only=True)
class ContactCreated(FlowEvent):
    """A contact was added to the CRM."""

    trigger_types: ClassVar[tuple[NodeType, ...]] = (NodeType.TRIGGER_CONTACT_CREATED,)
