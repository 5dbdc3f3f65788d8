"""Data and control action node types.

Tag and field nodes request a :class:`~litestar_flows.core.models.ContactMutation`,
which the dispatcher applies exactly once per step. Delay, wait-for-reply and
transfer-to-human suspend the context; end completes it.
"""

from __future__ import annotations

from datetime import timedelta
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from litestar_flows.core.models import ContactMutation, MutationOperation, WebhookRequest
from litestar_flows.core.templating import lookup_path
from litestar_flows.core.types import NodeType, WaitKind
from litestar_flows.nodes.base import NodeConfig, NodeContext, NodeOutcome, NodeSpec, ResumeSignal, Suspension

__all__ = (
    "AddTagNode",
    "DelayConfig",
    "DelayNode",
    "Duration",
    "DurationUnit",
    "EndNode",
    "HttpMethod",
    "RemoveTagNode",
    "TagConfig",
    "TransferHumanConfig",
    "TransferHumanNode",
    "UpdateFieldConfig",
    "UpdateFieldNode",
    "WaitReplyConfig",
    "WaitReplyNode",
    "WebhookConfig",
    "WebhookNode",
)


class DurationUnit(StrEnum):
    SECONDS = "seconds"
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


class Duration(NodeConfig):
    amount: int = Field(ge=1)
    unit: DurationUnit = DurationUnit.MINUTES

    def to_timedelta(self) -> timedelta:
        return timedelta(**{self.unit.value: self.amount})


class TagConfig(NodeConfig):
    tag: str = Field(min_length=1)


class UpdateFieldConfig(NodeConfig):
    """Set a contact field.

    Attributes:
        field: ``name``, ``email`` or a custom field key.
        value: New value. Strings are rendered with placeholders.
    """

    field: str = Field(min_length=1)
    value: Any = None


class HttpMethod(StrEnum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"


class WebhookConfig(NodeConfig):
    """Call an external HTTP endpoint.

    Attributes:
        url: Target URL, placeholders allowed.
        method: HTTP method.
        headers: Extra request headers.
        request_body: JSON body. Defaults to the contact and the flow variables.
        response_mapping: Flow variable name to dotted path in the JSON response.
        timeout_seconds: Overrides the engine's default webhook timeout.
    """

    url: str = Field(min_length=1)
    method: HttpMethod = HttpMethod.POST
    headers: dict[str, str] = Field(default_factory=dict)
    request_body: dict[str, Any] | None = None
    response_mapping: dict[str, str] = Field(default_factory=dict)
    timeout_seconds: float | None = Field(default=None, gt=0)

    @field_validator("url")
    @classmethod
    def check_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            msg = "url must be an http(s) URL"
            raise ValueError(msg)
        return value


class DelayConfig(Duration):
    pass


class WaitReplyConfig(NodeConfig):
    """Wait for the contact's next message.

    Attributes:
        variable: Flow variable receiving the reply text.
        timeout: Give up waiting after this long and continue with
            ``reply_timed_out`` set.
    """

    variable: str = Field(default="last_reply", min_length=1)
    timeout: Duration | None = None


class TransferHumanConfig(NodeConfig):
    note: str | None = None


class AddTagNode(NodeSpec[TagConfig]):
    node_type = NodeType.ACTION_ADD_TAG
    config_model = TagConfig

    def evaluate(self, ctx: NodeContext, config: TagConfig) -> NodeOutcome:
        return NodeOutcome(effect=ContactMutation(MutationOperation.ADD_TAG, ctx.render(config.tag)))


class RemoveTagNode(NodeSpec[TagConfig]):
    node_type = NodeType.ACTION_REMOVE_TAG
    config_model = TagConfig

    def evaluate(self, ctx: NodeContext, config: TagConfig) -> NodeOutcome:
        return NodeOutcome(effect=ContactMutation(MutationOperation.REMOVE_TAG, ctx.render(config.tag)))


class UpdateFieldNode(NodeSpec[UpdateFieldConfig]):
    node_type = NodeType.ACTION_UPDATE_FIELD
    config_model = UpdateFieldConfig

    def evaluate(self, ctx: NodeContext, config: UpdateFieldConfig) -> NodeOutcome:
        mutation = ContactMutation(MutationOperation.SET_FIELD, config.field, ctx.render_value(config.value))
        return NodeOutcome(effect=mutation)


class WebhookNode(NodeSpec[WebhookConfig]):
    node_type = NodeType.ACTION_WEBHOOK
    config_model = WebhookConfig

    def evaluate(self, ctx: NodeContext, config: WebhookConfig) -> NodeOutcome:
        body: Any = None
        if config.method is not HttpMethod.GET:
            if config.request_body is not None:
                body = ctx.render_value(config.request_body)
            else:
                contact = ctx.contact
                body = {
                    "contact": {
                        "id": str(contact.id),
                        "name": contact.name,
                        "phone_number": contact.phone_number,
                        "email": contact.email,
                        "tags": list(contact.tags),
                        "custom_fields": dict(contact.custom_fields),
                    },
                    "execution_id": str(ctx.execution.id),
                    "flow_id": str(ctx.execution.flow_id),
                    "variables": dict(ctx.variables),
                }
        request = WebhookRequest(
            url=ctx.render(config.url),
            method=config.method.value,
            headers={key: ctx.render(value) for key, value in config.headers.items()},
            body=body,
            timeout=config.timeout_seconds,
        )
        return NodeOutcome(effect=request)

    def apply_result(self, config: WebhookConfig, result: dict[str, Any]) -> dict[str, Any]:
        body = result.get("body")
        patch: dict[str, Any] = {"webhook_status": result.get("status_code")}
        for variable, path in config.response_mapping.items():
            patch[variable] = lookup_path(body, path)
        return patch


class DelayNode(NodeSpec[DelayConfig]):
    node_type = NodeType.ACTION_DELAY
    config_model = DelayConfig
    suspends = True

    def evaluate(self, ctx: NodeContext, config: DelayConfig) -> NodeOutcome:
        resume_at = ctx.now + config.to_timedelta()
        return NodeOutcome(suspension=Suspension(kind=WaitKind.TIMER, resume_at=resume_at))


class WaitReplyNode(NodeSpec[WaitReplyConfig]):
    node_type = NodeType.ACTION_WAIT_REPLY
    config_model = WaitReplyConfig
    suspends = True

    def evaluate(self, ctx: NodeContext, config: WaitReplyConfig) -> NodeOutcome:
        resume_at = ctx.now + config.timeout.to_timedelta() if config.timeout else None
        return NodeOutcome(suspension=Suspension(kind=WaitKind.REPLY, resume_at=resume_at))

    def resume(self, ctx: NodeContext, config: WaitReplyConfig, signal: ResumeSignal) -> NodeOutcome:
        if signal.kind is WaitKind.TIMER:
            return NodeOutcome(patch={"reply_timed_out": True})
        return NodeOutcome(patch={**signal.data, config.variable: signal.text, "reply_timed_out": False})


class TransferHumanNode(NodeSpec[TransferHumanConfig]):
    """Hand the conversation to an operator until they release it."""

    node_type = NodeType.ACTION_TRANSFER_HUMAN
    config_model = TransferHumanConfig
    suspends = True

    def evaluate(self, ctx: NodeContext, config: TransferHumanConfig) -> NodeOutcome:
        patch = {"transfer_note": ctx.render(config.note)} if config.note else {}
        return NodeOutcome(patch=patch, suspension=Suspension(kind=WaitKind.HUMAN))


class EndNode(NodeSpec[NodeConfig]):
    node_type = NodeType.ACTION_END

    def handles(self, config: NodeConfig) -> tuple[str, ...]:
        return ()

    def evaluate(self, ctx: NodeContext, config: NodeConfig) -> NodeOutcome:
        return NodeOutcome(terminal=True)
