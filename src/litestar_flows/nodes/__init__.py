"""Built-in node types."""

from __future__ import annotations

from litestar_flows.nodes.actions import (
    AddTagNode,
    DelayNode,
    EndNode,
    RemoveTagNode,
    TransferHumanNode,
    UpdateFieldNode,
    WaitReplyNode,
    WebhookNode,
)
from litestar_flows.nodes.base import (
    NodeConfig,
    NodeContext,
    NodeOutcome,
    NodeSpec,
    ResumeSignal,
    Suspension,
    TriggerSpec,
    match_option,
)
from litestar_flows.nodes.conditions import ButtonCondition, DayCondition, FieldCondition, TagCondition, TimeCondition
from litestar_flows.nodes.messages import (
    SendButtonsNode,
    SendCtaUrlNode,
    SendListNode,
    SendMediaNode,
    SendTemplateNode,
    SendTextNode,
)
from litestar_flows.nodes.triggers import (
    ButtonClickTrigger,
    ContactCreatedTrigger,
    KeywordTrigger,
    MessageTrigger,
    WebhookTrigger,
)

__all__ = (
    "BUILTIN_NODE_SPECS",
    "NodeConfig",
    "NodeContext",
    "NodeOutcome",
    "NodeSpec",
    "ResumeSignal",
    "Suspension",
    "TriggerSpec",
    "match_option",
)

BUILTIN_NODE_SPECS: tuple[type[NodeSpec], ...] = (
    ButtonClickTrigger,
    KeywordTrigger,
    WebhookTrigger,
    MessageTrigger,
    ContactCreatedTrigger,
    ButtonCondition,
    TagCondition,
    FieldCondition,
    TimeCondition,
    DayCondition,
    SendTextNode,
    SendTemplateNode,
    SendButtonsNode,
    SendListNode,
    SendMediaNode,
    SendCtaUrlNode,
    AddTagNode,
    RemoveTagNode,
    UpdateFieldNode,
    WebhookNode,
    DelayNode,
    WaitReplyNode,
    TransferHumanNode,
    EndNode,
)
"""One spec per :class:`~litestar_flows.core.types.NodeType`."""
