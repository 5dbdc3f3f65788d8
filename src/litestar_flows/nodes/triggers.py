"""Trigger node types.

A flow has exactly one trigger node. Its type and config are copied onto the flow at
activation so inbound events can be matched without loading graphs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator

from litestar_flows.core.events import ButtonClicked, MessageReceived
from litestar_flows.core.types import NodeType
from litestar_flows.nodes.base import NodeConfig, TriggerSpec

if TYPE_CHECKING:
    from litestar_flows.core.events import FlowEvent

__all__ = (
    "ButtonClickTrigger",
    "ButtonClickTriggerConfig",
    "ContactCreatedTrigger",
    "KeywordTrigger",
    "KeywordTriggerConfig",
    "MessageTrigger",
    "TriggerConfig",
    "WebhookTrigger",
)


class TriggerConfig(NodeConfig):
    """Settings shared by every trigger.

    Attributes:
        allow_reentry: Whether a contact may run the flow again once a previous
            execution finished.
        reentry_cooldown_minutes: Minimum minutes between the end of a contact's
            previous execution and a new one.
    """

    allow_reentry: bool = True
    reentry_cooldown_minutes: int | None = Field(default=None, ge=0)


class ButtonClickTriggerConfig(TriggerConfig):
    """Fire on button clicks, optionally only for one button."""

    button_text: str | None = None
    button_id: str | None = None


class KeywordTriggerConfig(TriggerConfig):
    """Fire on inbound messages containing one of the keywords.

    Attributes:
        keywords: Keywords compared case-insensitively.
        exact_match: Require the whole trimmed message to equal a keyword.
    """

    keywords: list[str] = Field(min_length=1)
    exact_match: bool = False

    @field_validator("keywords")
    @classmethod
    def strip_keywords(cls, value: list[str]) -> list[str]:
        keywords = [keyword.strip() for keyword in value if keyword.strip()]
        if not keywords:
            msg = "at least one non-blank keyword is required"
            raise ValueError(msg)
        return keywords


class ButtonClickTrigger(TriggerSpec[ButtonClickTriggerConfig]):
    node_type = NodeType.TRIGGER_BUTTON_CLICK
    config_model = ButtonClickTriggerConfig

    def matches(self, config: ButtonClickTriggerConfig, event: FlowEvent) -> bool:
        if not isinstance(event, ButtonClicked):
            return False
        if config.button_id is not None and config.button_id != event.button_id:
            return False
        return config.button_text is None or config.button_text == event.button_text


class KeywordTrigger(TriggerSpec[KeywordTriggerConfig]):
    node_type = NodeType.TRIGGER_KEYWORD
    config_model = KeywordTriggerConfig

    def matches(self, config: KeywordTriggerConfig, event: FlowEvent) -> bool:
        if not isinstance(event, MessageReceived):
            return False
        text = event.text.strip().lower()
        if not text:
            return False
        keywords = [keyword.lower() for keyword in config.keywords]
        if config.exact_match:
            return text in keywords
        return any(keyword in text for keyword in keywords)


class WebhookTrigger(TriggerSpec[TriggerConfig]):
    node_type = NodeType.TRIGGER_WEBHOOK
    config_model = TriggerConfig


class MessageTrigger(TriggerSpec[TriggerConfig]):
    node_type = NodeType.TRIGGER_MESSAGE
    config_model = TriggerConfig


class ContactCreatedTrigger(TriggerSpec[TriggerConfig]):
    node_type = NodeType.TRIGGER_CONTACT_CREATED
    config_model = TriggerConfig
