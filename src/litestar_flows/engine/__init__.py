"""Flow execution engine and its collaborators."""

from __future__ import annotations

from litestar_flows.engine.backend import StorageBackend
from litestar_flows.engine.dispatcher import ActionDispatcher
from litestar_flows.engine.engine import FlowEngine
from litestar_flows.engine.graph import FlowGraph
from litestar_flows.engine.manager import FlowManager
from litestar_flows.engine.memory import memory_backend
from litestar_flows.engine.registry import NodeTypeRegistry
from litestar_flows.engine.scheduler import Scheduler
from litestar_flows.engine.transport import CloudApiTransport, HttpxWebhookCaller
from litestar_flows.engine.validator import GraphValidator

__all__ = (
    "ActionDispatcher",
    "CloudApiTransport",
    "FlowEngine",
    "FlowGraph",
    "FlowManager",
    "GraphValidator",
    "HttpxWebhookCaller",
    "NodeTypeRegistry",
    "Scheduler",
    "StorageBackend",
    "memory_backend",
)
