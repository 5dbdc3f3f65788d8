"""Litestar Flows - WhatsApp CRM flow automation for Litestar.

This package runs visual automation flows for a WhatsApp CRM: persisted graphs of
trigger, condition and action nodes that react to inbound events, branch on contact
state and button clicks, send WhatsApp messages, call webhooks, mutate contacts and
suspend for delays or replies.

Key Features:
    - Node/edge graphs validated before activation
    - A closed, typed set of node kinds with pydantic config schemas
    - Durable execution contexts with suspension and scheduled resumes
    - Retrying, idempotent side-effect dispatch
    - In-memory and SQLAlchemy storage backends
    - REST API through a Litestar plugin

Example:
    >>> from litestar_flows import FlowEngine, FlowManager, memory_backend
    >>>
    >>> backend = memory_backend(contacts=[contact])
    >>> manager = FlowManager(backend.flows)
    >>> engine = FlowEngine(backend, transport=my_transport)
    >>> flow = await manager.create_flow("org-1", "Welcome")
    >>> await manager.save_graph(flow.id, nodes, edges)
    >>> await manager.activate(flow.id)
    >>> await engine.handle_event(MessageReceived(organization_id="org-1", contact_id=contact.id, text="hi"))
"""

from __future__ import annotations

from litestar_flows.__metadata__ import __project__, __version__
from litestar_flows.config import EngineConfig, RetryPolicy
from litestar_flows.core.events import ButtonClicked, ContactCreated, FlowEvent, MessageReceived, WebhookReceived
from litestar_flows.engine.engine import FlowEngine
from litestar_flows.engine.manager import FlowManager
from litestar_flows.engine.memory import memory_backend
from litestar_flows.exceptions import (
    ConfigInvalidError,
    ContactNotFoundError,
    DuplicateTriggerError,
    ExecutionNotFoundError,
    FlowNotFoundError,
    FlowsError,
    GraphInvalidError,
    InvalidRecipientError,
    InvalidTransitionError,
    ProviderError,
    RateLimitedError,
    SideEffectFailedError,
    StepLimitExceededError,
    StorageConflictError,
    UnhandledBranchError,
    UnknownNodeTypeError,
    WebhookConnectionError,
    WebhookTimeoutError,
)
from litestar_flows.log import configure_logging
from litestar_flows.plugin import FlowsPlugin, FlowsPluginConfig

__all__ = (
    "ButtonClicked",
    "ConfigInvalidError",
    "ContactCreated",
    "ContactNotFoundError",
    "DuplicateTriggerError",
    "EngineConfig",
    "ExecutionNotFoundError",
    "FlowEngine",
    "FlowEvent",
    "FlowManager",
    "FlowNotFoundError",
    "FlowsError",
    "FlowsPlugin",
    "FlowsPluginConfig",
    "GraphInvalidError",
    "InvalidRecipientError",
    "InvalidTransitionError",
    "MessageReceived",
    "ProviderError",
    "RateLimitedError",
    "RetryPolicy",
    "SideEffectFailedError",
    "StepLimitExceededError",
    "StorageConflictError",
    "UnhandledBranchError",
    "UnknownNodeTypeError",
    "WebhookConnectionError",
    "WebhookReceived",
    "WebhookTimeoutError",
    "__project__",
    "__version__",
    "configure_logging",
    "memory_backend",
)
