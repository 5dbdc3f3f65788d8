"""Message action node types.

Each node renders its text through the contact and flow variables and requests one
:class:`~litestar_flows.core.models.OutboundMessage` whose content is the
type-specific object of a WhatsApp Cloud API message payload.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator, model_validator

from litestar_flows.core.models import OutboundMessage
from litestar_flows.core.types import DEFAULT_HANDLE, NodeType, WaitKind
from litestar_flows.nodes.base import (
    NodeConfig,
    NodeContext,
    NodeOutcome,
    NodeSpec,
    ResumeSignal,
    Suspension,
    match_option,
)

__all__ = (
    "CtaUrl",
    "InteractiveButton",
    "ListItem",
    "ListSection",
    "MediaType",
    "SendButtonsConfig",
    "SendButtonsNode",
    "SendCtaUrlConfig",
    "SendCtaUrlNode",
    "SendListConfig",
    "SendListNode",
    "SendMediaConfig",
    "SendMediaNode",
    "SendTemplateConfig",
    "SendTemplateNode",
    "SendTextConfig",
    "SendTextNode",
    "TemplateButton",
)


class SendTextConfig(NodeConfig):
    message: str = Field(min_length=1)
    preview_url: bool = False


class TemplateButton(NodeConfig):
    """A quick-reply button of an approved template.

    Attributes:
        id: Payload ID. Also the output handle when waiting for the response.
        text: Visible button text, matched against clicks.
        type: Template button type.
    """

    id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    type: str = "QUICK_REPLY"


class SendTemplateConfig(NodeConfig):
    """Send an approved template.

    Attributes:
        template_name: Template name as approved by Meta.
        template_id: Internal template ID, used as the name when no name is set.
        template_language: Language code.
        template_variables: Body parameters, rendered before sending.
        header_image_url: Image for templates with an image header.
        waba_id: WhatsApp Business Account that owns the template.
        wait_for_button_response: Suspend until one of the buttons is clicked.
        template_buttons: Buttons of the template, in display order.
    """

    template_name: str | None = None
    template_id: str | None = None
    template_language: str = "pt_BR"
    template_variables: list[str] = Field(default_factory=list)
    header_image_url: str | None = None
    waba_id: str | None = None
    wait_for_button_response: bool = False
    template_buttons: list[TemplateButton] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_template(self) -> SendTemplateConfig:
        if not (self.template_name or self.template_id):
            msg = "templateName or templateId is required"
            raise ValueError(msg)
        if self.wait_for_button_response:
            if not self.template_buttons:
                msg = "waiting for a button response requires templateButtons"
                raise ValueError(msg)
            ids = [button.id for button in self.template_buttons]
            if len(set(ids)) != len(ids):
                msg = "template button ids must be unique"
                raise ValueError(msg)
        return self


class InteractiveButton(NodeConfig):
    id: str = Field(min_length=1)
    text: str = Field(min_length=1, max_length=20)


class SendButtonsConfig(NodeConfig):
    body: str = Field(min_length=1)
    buttons: list[InteractiveButton] = Field(min_length=1, max_length=3)
    header: str | None = None
    footer: str | None = None


class ListItem(NodeConfig):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=24)
    description: str | None = None


class ListSection(NodeConfig):
    title: str = Field(min_length=1)
    items: list[ListItem] = Field(min_length=1)


class SendListConfig(NodeConfig):
    body: str = Field(min_length=1)
    button_text: str = Field(min_length=1, max_length=20)
    sections: list[ListSection] = Field(min_length=1, max_length=10)
    header: str | None = None
    footer: str | None = None


class MediaType(StrEnum):
    IMAGE = "image"
    VIDEO = "video"
    DOCUMENT = "document"
    AUDIO = "audio"


class SendMediaConfig(NodeConfig):
    media_url: str = Field(min_length=1)
    media_type: MediaType = MediaType.IMAGE
    caption: str | None = None
    filename: str | None = None

    @field_validator("media_url")
    @classmethod
    def check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://", "{{")):
            msg = "mediaUrl must be an http(s) URL"
            raise ValueError(msg)
        return value


class CtaUrl(NodeConfig):
    body_text: str = Field(min_length=1)
    button_text: str = Field(min_length=1, max_length=20)
    url: str = Field(min_length=1)
    header_text: str | None = None
    footer_text: str | None = None


class SendCtaUrlConfig(NodeConfig):
    cta_url: CtaUrl


class MessageNode(NodeSpec[Any]):
    """Shared plumbing for message nodes."""

    def message(self, ctx: NodeContext, message_type: str, content: dict[str, Any]) -> OutboundMessage:
        return OutboundMessage(
            to=ctx.contact.phone_number,
            message_type=message_type,
            content=content,
            contact_id=ctx.contact.id,
            whatsapp_account_id=ctx.whatsapp_account_id,
        )

    def apply_result(self, config: Any, result: dict[str, Any]) -> dict[str, Any]:
        if "delivery_id" in result:
            return {"last_message_id": result["delivery_id"]}
        return {}


def _interactive(ctx: NodeContext, kind: str, body: str, header: str | None, footer: str | None) -> dict[str, Any]:
    content: dict[str, Any] = {"type": kind, "body": {"text": ctx.render(body)}}
    if header:
        content["header"] = {"type": "text", "text": ctx.render(header)}
    if footer:
        content["footer"] = {"text": ctx.render(footer)}
    return content


class SendTextNode(MessageNode):
    node_type = NodeType.ACTION_SEND_TEXT
    config_model = SendTextConfig

    def evaluate(self, ctx: NodeContext, config: SendTextConfig) -> NodeOutcome:
        content = {"body": ctx.render(config.message), "preview_url": config.preview_url}
        return NodeOutcome(effect=self.message(ctx, "text", content))


class SendTemplateNode(MessageNode):
    """Send a template, optionally waiting for one of its buttons to be clicked.

    When waiting, the node exposes one output per template button, keyed by button
    ID, plus an optional ``no_match`` output.
    """

    node_type = NodeType.ACTION_SEND_TEMPLATE
    config_model = SendTemplateConfig
    accepts_no_match = True

    def handles(self, config: SendTemplateConfig) -> tuple[str, ...]:
        if config.wait_for_button_response:
            return tuple(button.id for button in config.template_buttons)
        return (DEFAULT_HANDLE,)

    def required_handles(self, config: SendTemplateConfig) -> tuple[str, ...]:
        if config.wait_for_button_response:
            return self.handles(config)
        return ()

    def allowed_handles(self, config: SendTemplateConfig) -> tuple[str, ...]:
        if config.wait_for_button_response:
            return super().allowed_handles(config)
        return (DEFAULT_HANDLE,)

    def is_suspending(self, config: SendTemplateConfig) -> bool:
        return config.wait_for_button_response

    def evaluate(self, ctx: NodeContext, config: SendTemplateConfig) -> NodeOutcome:
        components: list[dict[str, Any]] = []
        if config.header_image_url:
            components.append(
                {
                    "type": "header",
                    "parameters": [{"type": "image", "image": {"link": ctx.render(config.header_image_url)}}],
                }
            )
        if config.template_variables:
            components.append(
                {
                    "type": "body",
                    "parameters": [{"type": "text", "text": ctx.render(value)} for value in config.template_variables],
                }
            )
        for index, button in enumerate(config.template_buttons):
            if button.type.upper() == "QUICK_REPLY":
                components.append(
                    {
                        "type": "button",
                        "sub_type": "quick_reply",
                        "index": str(index),
                        "parameters": [{"type": "payload", "payload": button.id}],
                    }
                )
        content: dict[str, Any] = {
            "name": config.template_name or config.template_id,
            "language": {"code": config.template_language},
        }
        if components:
            content["components"] = components

        outcome = NodeOutcome(effect=self.message(ctx, "template", content))
        if config.wait_for_button_response:
            options = tuple(button.text for button in config.template_buttons)
            outcome.suspension = Suspension(kind=WaitKind.BUTTON, options=options)
        return outcome

    def resume(self, ctx: NodeContext, config: SendTemplateConfig, signal: ResumeSignal) -> NodeOutcome:
        options = [(button.text, button.id) for button in config.template_buttons]
        handle = match_option(options, signal.button_text)
        patch = {**signal.data, "button_text": signal.button_text}
        return NodeOutcome(handle=handle, patch=patch, observed=signal.button_text)


class SendButtonsNode(MessageNode):
    node_type = NodeType.ACTION_SEND_BUTTONS
    config_model = SendButtonsConfig

    def evaluate(self, ctx: NodeContext, config: SendButtonsConfig) -> NodeOutcome:
        content = _interactive(ctx, "button", config.body, config.header, config.footer)
        content["action"] = {
            "buttons": [
                {"type": "reply", "reply": {"id": button.id, "title": ctx.render(button.text)}}
                for button in config.buttons
            ]
        }
        return NodeOutcome(effect=self.message(ctx, "interactive", content))


class SendListNode(MessageNode):
    node_type = NodeType.ACTION_SEND_LIST
    config_model = SendListConfig

    def evaluate(self, ctx: NodeContext, config: SendListConfig) -> NodeOutcome:
        content = _interactive(ctx, "list", config.body, config.header, config.footer)
        sections = []
        for section in config.sections:
            rows = []
            for item in section.items:
                row = {"id": item.id, "title": ctx.render(item.title)}
                if item.description:
                    row["description"] = ctx.render(item.description)
                rows.append(row)
            sections.append({"title": ctx.render(section.title), "rows": rows})
        content["action"] = {"button": config.button_text, "sections": sections}
        return NodeOutcome(effect=self.message(ctx, "interactive", content))


class SendMediaNode(MessageNode):
    node_type = NodeType.ACTION_SEND_MEDIA
    config_model = SendMediaConfig

    def evaluate(self, ctx: NodeContext, config: SendMediaConfig) -> NodeOutcome:
        content: dict[str, Any] = {"link": ctx.render(config.media_url)}
        if config.caption and config.media_type is not MediaType.AUDIO:
            content["caption"] = ctx.render(config.caption)
        if config.filename and config.media_type is MediaType.DOCUMENT:
            content["filename"] = config.filename
        return NodeOutcome(effect=self.message(ctx, config.media_type.value, content))


class SendCtaUrlNode(MessageNode):
    node_type = NodeType.ACTION_SEND_CTA_URL
    config_model = SendCtaUrlConfig

    def evaluate(self, ctx: NodeContext, config: SendCtaUrlConfig) -> NodeOutcome:
        cta = config.cta_url
        content = _interactive(ctx, "cta_url", cta.body_text, cta.header_text, cta.footer_text)
        content["action"] = {
            "name": "cta_url",
            "parameters": {"display_text": ctx.render(cta.button_text), "url": ctx.render(cta.url)},
        }
        return NodeOutcome(effect=self.message(ctx, "interactive", content))
