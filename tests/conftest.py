"""Shared test fixtures for litestar-flows test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import pytest

from litestar_flows.config import EngineConfig, RetryPolicy
from litestar_flows.core.definition import Edge, Node
from litestar_flows.core.models import Contact, WebhookResponse
from litestar_flows.core.types import NodeType
from litestar_flows.engine.engine import FlowEngine
from litestar_flows.engine.manager import FlowManager
from litestar_flows.engine.memory import memory_backend

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from litestar_flows.core.definition import Flow
    from litestar_flows.core.models import OutboundMessage, WebhookRequest
    from litestar_flows.engine.backend import StorageBackend


ORG = "org-1"


class FakeClock:
    """A settable clock for engine and scheduler tests."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingTransport:
    """Message transport that records sends and can be told to fail first."""

    def __init__(self) -> None:
        self.sent: list[OutboundMessage] = []
        self.failures: list[Exception] = []
        self.calls = 0

    async def send(self, message: OutboundMessage) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append(message)
        return f"wamid.{len(self.sent)}"


class StubWebhookCaller:
    """Webhook caller returning queued responses, or raising queued exceptions."""

    def __init__(self) -> None:
        self.requests: list[WebhookRequest] = []
        self.responses: list[WebhookResponse | Exception] = []
        self.delay: float = 0.0

    async def call(self, request: WebhookRequest) -> WebhookResponse:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        item = self.responses.pop(0) if self.responses else WebhookResponse(status_code=200, body={})
        if isinstance(item, Exception):
            raise item
        return item


def make_node(node_id: str, node_type: NodeType, **config: Any) -> Node:
    """Build a node with a config given as keyword arguments."""
    return Node(id=node_id, type=node_type, config=config)


def make_edge(source: str, target: str, handle: str | None = None) -> Edge:
    return Edge(source_node_id=source, target_node_id=target, source_handle=handle)


def chain(*node_ids: str) -> list[Edge]:
    """Default-handle edges linking the nodes in order."""
    return [make_edge(source, target) for source, target in zip(node_ids, node_ids[1:])]


@pytest.fixture
def clock() -> FakeClock:
    """Clock fixed on a Saturday at noon UTC."""
    return FakeClock(datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def contact() -> Contact:
    """Create a sample CRM contact."""
    return Contact(
        id=uuid4(),
        organization_id=ORG,
        phone_number="5511999990000",
        name="Maria Silva",
        tags=["lead"],
        custom_fields={"city": "Recife"},
    )


@pytest.fixture
def backend(contact: Contact) -> StorageBackend:
    return memory_backend(contacts=[contact])


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def webhooks() -> StubWebhookCaller:
    return StubWebhookCaller()


@pytest.fixture
def engine_config() -> EngineConfig:
    """Engine config with zero backoff so retries do not slow the suite down."""
    fast = RetryPolicy(max_attempts=3, backoff=0, max_backoff=0)
    return EngineConfig(
        message_retry=fast,
        webhook_retry=fast,
        contact_retry=fast,
        storage_retry=fast,
    )


@pytest.fixture
def engine(
    backend: StorageBackend,
    transport: RecordingTransport,
    webhooks: StubWebhookCaller,
    engine_config: EngineConfig,
    clock: FakeClock,
) -> FlowEngine:
    """Create a flow engine on in-memory storage running steps inline."""
    return FlowEngine(backend, transport, webhooks, config=engine_config, clock=clock)


@pytest.fixture
def manager(backend: StorageBackend) -> FlowManager:
    return FlowManager(backend.flows)


@pytest.fixture
def active_flow(manager: FlowManager) -> Callable[..., Awaitable[Flow]]:
    """Factory creating, saving and activating a flow.

    Returns:
        Coroutine function taking nodes and edges plus ``create_flow`` keyword arguments.
    """

    async def build(nodes: Sequence[Node], edges: Sequence[Edge], name: str = "Test flow", **kwargs: Any) -> Flow:
        flow = await manager.create_flow(kwargs.pop("organization_id", ORG), name, **kwargs)
        await manager.save_graph(flow.id, nodes, edges)
        return await manager.activate(flow.id)

    return build
