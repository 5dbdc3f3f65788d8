"""Collaborator data exchanged between the engine and the outside world.

Contacts come from the CRM's contact store. Outbound messages, webhook requests and
contact mutations are the three side effects a node may request; each carries its
:class:`EffectKind` so the dispatcher can pick the matching handler and retry policy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum, auto
from typing import Any, ClassVar, TypeAlias
from uuid import UUID

from litestar_flows.core.types import EffectKind

__all__ = (
    "Contact",
    "ContactMutation",
    "MutationOperation",
    "OutboundMessage",
    "SideEffect",
    "WebhookRequest",
    "WebhookResponse",
)


@dataclass
class Contact:
    """A CRM contact as seen by the flow engine.

    Attributes:
        id: Unique identifier.
        organization_id: Owning organization.
        phone_number: WhatsApp number in international format.
        name: Display name.
        email: Optional email address.
        tags: Tag set, kept in insertion order.
        custom_fields: Free-form fields editable by flows.
        current_flow_id: Flow the contact is currently travelling through.
        current_node_id: Node of that flow the contact is on.
        version: Optimistic concurrency version, bumped on every save.
    """

    id: UUID
    organization_id: str
    phone_number: str
    name: str | None = None
    email: str | None = None
    tags: list[str] = field(default_factory=list)
    custom_fields: dict[str, Any] = field(default_factory=dict)
    current_flow_id: UUID | None = None
    current_node_id: str | None = None
    version: int = 1

    @property
    def first_name(self) -> str:
        return (self.name or "").split(" ", 1)[0]

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags


class MutationOperation(StrEnum):
    ADD_TAG = auto()
    REMOVE_TAG = auto()
    SET_FIELD = auto()


@dataclass(frozen=True)
class ContactMutation:
    """A tag or field change applied to a contact.

    Attributes:
        operation: What to change.
        key: The tag, or the field name.
        value: New field value for ``SET_FIELD``.
    """

    kind: ClassVar[EffectKind] = EffectKind.CONTACT

    operation: MutationOperation
    key: str
    value: Any = None

    def apply(self, contact: Contact) -> bool:
        """Apply the mutation in place.

        Args:
            contact: The contact to change.

        Returns:
            True if the contact changed.
        """
        if self.operation is MutationOperation.ADD_TAG:
            if contact.has_tag(self.key):
                return False
            contact.tags.append(self.key)
            return True
        if self.operation is MutationOperation.REMOVE_TAG:
            if not contact.has_tag(self.key):
                return False
            contact.tags = [tag for tag in contact.tags if tag != self.key]
            return True
        if self.key in ("name", "email"):
            if getattr(contact, self.key) == self.value:
                return False
            setattr(contact, self.key, self.value)
            return True
        if self.key in contact.custom_fields and contact.custom_fields[self.key] == self.value:
            return False
        contact.custom_fields[self.key] = self.value
        return True

    def describe(self) -> dict[str, Any]:
        return {"operation": self.operation.value, "key": self.key, "value": self.value}


@dataclass(frozen=True)
class OutboundMessage:
    """A WhatsApp message to send.

    Attributes:
        to: Recipient phone number.
        message_type: Cloud API message type (``text``, ``template``, ``interactive``,
            ``image``, ``video``, ``document``, ``audio``).
        content: The type-specific object of the Cloud API payload.
        contact_id: The recipient contact.
        whatsapp_account_id: Sending account when the flow is bound to one.
    """

    kind: ClassVar[EffectKind] = EffectKind.MESSAGE

    to: str
    message_type: str
    content: dict[str, Any]
    contact_id: UUID | None = None
    whatsapp_account_id: str | None = None

    def describe(self) -> dict[str, Any]:
        return {"to": self.to, "type": self.message_type, self.message_type: self.content}


@dataclass(frozen=True)
class WebhookRequest:
    """An outbound HTTP call requested by a webhook node."""

    kind: ClassVar[EffectKind] = EffectKind.WEBHOOK

    url: str
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None
    timeout: float | None = None

    def describe(self) -> dict[str, Any]:
        return {"url": self.url, "method": self.method, "headers": dict(self.headers), "body": self.body}


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    body: Any = None


SideEffect: TypeAlias = OutboundMessage | WebhookRequest | ContactMutation
