"""Core domain types of litestar-flows."""

from __future__ import annotations

from litestar_flows.core.context import ExecutionContext, ExecutionLogEntry, ScheduledResume, WaitState
from litestar_flows.core.definition import Edge, Flow, FlowDefinition, Node
from litestar_flows.core.events import ButtonClicked, ContactCreated, FlowEvent, MessageReceived, WebhookReceived
from litestar_flows.core.models import (
    Contact,
    ContactMutation,
    MutationOperation,
    OutboundMessage,
    WebhookRequest,
    WebhookResponse,
)
from litestar_flows.core.types import (
    DEFAULT_HANDLE,
    FALSE_HANDLE,
    NO_MATCH_HANDLE,
    TRUE_HANDLE,
    EffectKind,
    ExecutionStatus,
    FlowStatus,
    LogStatus,
    NodeCategory,
    NodeType,
    WaitKind,
)

__all__ = (
    "DEFAULT_HANDLE",
    "FALSE_HANDLE",
    "NO_MATCH_HANDLE",
    "TRUE_HANDLE",
    "ButtonClicked",
    "Contact",
    "ContactCreated",
    "ContactMutation",
    "Edge",
    "EffectKind",
    "ExecutionContext",
    "ExecutionLogEntry",
    "ExecutionStatus",
    "Flow",
    "FlowDefinition",
    "FlowEvent",
    "FlowStatus",
    "LogStatus",
    "MessageReceived",
    "MutationOperation",
    "Node",
    "NodeCategory",
    "NodeType",
    "OutboundMessage",
    "ScheduledResume",
    "WaitKind",
    "WaitState",
    "WebhookReceived",
    "WebhookRequest",
    "WebhookResponse",
)
