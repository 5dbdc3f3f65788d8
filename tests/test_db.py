"""Integration tests for the SQLAlchemy persistence layer.

Runs the storage protocol implementations and the engine against an async SQLite
in-memory database.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from litestar_flows.core.context import ExecutionContext, ExecutionLogEntry, ScheduledResume, WaitState
from litestar_flows.core.definition import Flow
from litestar_flows.core.events import ButtonClicked
from litestar_flows.core.models import Contact
from litestar_flows.core.types import ExecutionStatus, FlowStatus, LogStatus, NodeType, WaitKind
from litestar_flows.db.models import FlowModel
from litestar_flows.db.stores import sqlalchemy_backend
from litestar_flows.engine.engine import FlowEngine
from litestar_flows.engine.manager import FlowManager
from litestar_flows.exceptions import (
    ContactNotFoundError,
    DuplicateTriggerError,
    ExecutionNotFoundError,
    FlowNotFoundError,
    GraphInvalidError,
    StorageConflictError,
)
from tests.conftest import ORG, chain, make_edge, make_node

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from litestar_flows.config import EngineConfig
    from litestar_flows.engine.backend import StorageBackend
    from tests.conftest import FakeClock, RecordingTransport, StubWebhookCaller

NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
    """Create an async SQLite in-memory engine with every table created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    # Enable foreign keys for SQLite
    @event.listens_for(engine.sync_engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(FlowModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def sql_backend(session_maker: async_sessionmaker[AsyncSession], contact: Contact) -> StorageBackend:
    """SQLAlchemy backend seeded with the sample contact."""
    backend = sqlalchemy_backend(session_maker)
    await backend.contacts.add(contact)
    return backend


@pytest.fixture
async def stored_flow(sql_backend: StorageBackend) -> Flow:
    return await sql_backend.flows.create_flow(Flow(organization_id=ORG, name="Welcome"))


def open_context(flow: Flow, contact: Contact, **kwargs: object) -> ExecutionContext:
    return ExecutionContext(
        flow_id=flow.id,
        contact_id=contact.id,
        organization_id=ORG,
        current_node_id="trigger",
        started_at=NOW,
        **kwargs,  # type: ignore[arg-type]
    )


# =============================================================================
# Flow Store Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestSQLAlchemyFlowStore:
    """Tests for SQLAlchemyFlowStore."""

    async def test_create_and_get(self, sql_backend: StorageBackend, stored_flow: Flow) -> None:
        flow = await sql_backend.flows.get_flow(stored_flow.id)

        assert flow.name == "Welcome"
        assert flow.status is FlowStatus.DRAFT
        assert flow.total_executions == 0

        with pytest.raises(FlowNotFoundError):
            await sql_backend.flows.get_flow(uuid4())

    async def test_graph_round_trip_keeps_edge_order(self, sql_backend: StorageBackend, stored_flow: Flow) -> None:
        nodes = [
            make_node("trigger", NodeType.TRIGGER_MESSAGE),
            make_node("check", NodeType.CONDITION_TAG, tag="vip"),
            make_node("end", NodeType.ACTION_END),
        ]
        nodes[1].name = "VIP?"
        nodes[1].position_x = 120.5
        edges = [make_edge("trigger", "check"), make_edge("check", "end", "true"), make_edge("check", "end", "false")]

        await sql_backend.flows.save_graph(stored_flow.id, nodes, edges)
        definition = await sql_backend.flows.load_graph(stored_flow.id)

        assert definition.nodes == nodes
        assert [(e.id, e.source_handle) for e in definition.edges] == [(e.id, e.source_handle) for e in edges]

    async def test_save_graph_replaces_previous_graph(self, sql_backend: StorageBackend, stored_flow: Flow) -> None:
        await sql_backend.flows.save_graph(stored_flow.id, [make_node("a", NodeType.ACTION_END)], [])
        await sql_backend.flows.save_graph(stored_flow.id, [make_node("b", NodeType.ACTION_END)], [])

        definition = await sql_backend.flows.load_graph(stored_flow.id)
        assert [node.id for node in definition.nodes] == ["b"]

    async def test_duplicate_node_ids_are_rejected(self, sql_backend: StorageBackend, stored_flow: Flow) -> None:
        await sql_backend.flows.save_graph(stored_flow.id, [make_node("a", NodeType.ACTION_END)], [])
        twice = [make_node("x", NodeType.ACTION_END), make_node("x", NodeType.ACTION_END)]

        with pytest.raises(GraphInvalidError):
            await sql_backend.flows.save_graph(stored_flow.id, twice, [])

        definition = await sql_backend.flows.load_graph(stored_flow.id)
        assert [node.id for node in definition.nodes] == ["a"]

    async def test_find_triggerable_and_counters(self, sql_backend: StorageBackend, stored_flow: Flow) -> None:
        stored_flow.status = FlowStatus.ACTIVE
        stored_flow.is_active = True
        stored_flow.trigger_type = NodeType.TRIGGER_MESSAGE
        await sql_backend.flows.update_flow(stored_flow)

        assert [f.id for f in await sql_backend.flows.find_triggerable(ORG, NodeType.TRIGGER_MESSAGE)] == [stored_flow.id]
        assert await sql_backend.flows.find_triggerable(ORG, NodeType.TRIGGER_KEYWORD) == []
        assert await sql_backend.flows.find_triggerable("org-2", NodeType.TRIGGER_MESSAGE) == []

        await sql_backend.flows.record_outcome(stored_flow.id, ExecutionStatus.COMPLETED)
        await sql_backend.flows.record_outcome(stored_flow.id, ExecutionStatus.FAILED)
        await sql_backend.flows.record_outcome(stored_flow.id, ExecutionStatus.CANCELLED)
        await sql_backend.flows.touch_last_execution(stored_flow.id, NOW)

        flow = await sql_backend.flows.get_flow(stored_flow.id)
        assert (flow.total_executions, flow.successful_executions, flow.failed_executions) == (3, 1, 1)
        assert flow.last_execution_at == NOW

    async def test_list_and_delete(self, sql_backend: StorageBackend, stored_flow: Flow) -> None:
        other = await sql_backend.flows.create_flow(Flow(organization_id="org-2", name="Other"))

        assert [f.id for f in await sql_backend.flows.list_flows(ORG)] == [stored_flow.id]
        assert len(await sql_backend.flows.list_flows()) == 2

        await sql_backend.flows.delete_flow(other.id)
        with pytest.raises(FlowNotFoundError):
            await sql_backend.flows.get_flow(other.id)


# =============================================================================
# Execution Store Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestSQLAlchemyExecutionStore:
    """Tests for SQLAlchemyExecutionStore."""

    async def test_insert_if_absent(self, sql_backend: StorageBackend, stored_flow: Flow, contact: Contact) -> None:
        created = await sql_backend.executions.create_if_absent(open_context(stored_flow, contact))

        with pytest.raises(DuplicateTriggerError):
            await sql_backend.executions.create_if_absent(open_context(stored_flow, contact))

        created.status = ExecutionStatus.COMPLETED
        created.completed_at = NOW
        assert await sql_backend.executions.update(created, ExecutionStatus.RUNNING)

        again = await sql_backend.executions.create_if_absent(open_context(stored_flow, contact))
        assert again.id != created.id

    async def test_compare_and_set(self, sql_backend: StorageBackend, stored_flow: Flow, contact: Contact) -> None:
        context = await sql_backend.executions.create_if_absent(open_context(stored_flow, contact))
        context.status = ExecutionStatus.WAITING_EXTERNAL
        context.wait = WaitState(kind=WaitKind.BUTTON, node_id="offer", options=["Sim", "Não"])
        context.flow_context = {"button_text": None, "nested": {"a": [1, 2]}}
        context.step_epoch = 4

        assert await sql_backend.executions.update(context, ExecutionStatus.RUNNING)
        assert not await sql_backend.executions.update(context, ExecutionStatus.RUNNING)

        stored = await sql_backend.executions.get(context.id)
        assert stored.status is ExecutionStatus.WAITING_EXTERNAL
        assert stored.wait == context.wait
        assert stored.flow_context == context.flow_context
        assert stored.step_epoch == 4
        assert stored.started_at == NOW

        missing = open_context(stored_flow, contact)
        with pytest.raises(ExecutionNotFoundError):
            await sql_backend.executions.update(missing, ExecutionStatus.RUNNING)
        with pytest.raises(ExecutionNotFoundError):
            await sql_backend.executions.get(missing.id)

    async def test_contact_queries(self, sql_backend: StorageBackend, stored_flow: Flow, contact: Contact) -> None:
        other_flow = await sql_backend.flows.create_flow(Flow(organization_id=ORG, name="Other"))
        waiting = await sql_backend.executions.create_if_absent(open_context(stored_flow, contact))
        waiting.status = ExecutionStatus.WAITING_EXTERNAL
        waiting.wait = WaitState(kind=WaitKind.REPLY, node_id="ask")
        await sql_backend.executions.update(waiting, ExecutionStatus.RUNNING)
        done = await sql_backend.executions.create_if_absent(open_context(other_flow, contact))
        done.status = ExecutionStatus.FAILED
        done.completed_at = NOW
        await sql_backend.executions.update(done, ExecutionStatus.RUNNING)

        assert [c.id for c in await sql_backend.executions.find_waiting(contact.id, WaitKind.REPLY)] == [waiting.id]
        assert await sql_backend.executions.find_waiting(contact.id, WaitKind.BUTTON) == []
        assert [c.id for c in await sql_backend.executions.find_open(contact.id)] == [waiting.id]
        assert (await sql_backend.executions.last_finished(other_flow.id, contact.id)).id == done.id
        assert await sql_backend.executions.last_finished(stored_flow.id, contact.id) is None
        assert len(await sql_backend.executions.list_for_contact(contact.id)) == 2
        failed = await sql_backend.executions.list_for_flow(other_flow.id, status=ExecutionStatus.FAILED)
        assert [c.id for c in failed] == [done.id]


# =============================================================================
# Log, Schedule, Contact and Ledger Store Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestSQLAlchemySupportStores:
    """Tests for the log, schedule, contact and ledger stores."""

    async def test_log_keeps_append_order(
        self, sql_backend: StorageBackend, stored_flow: Flow, contact: Contact
    ) -> None:
        context = await sql_backend.executions.create_if_absent(open_context(stored_flow, contact))
        for node_id in ("trigger", "send", "send", "end"):
            entry = ExecutionLogEntry(
                execution_id=context.id,
                node_id=node_id,
                node_type=None,
                status=LogStatus.SUCCESS,
                input={"node": node_id},
                timestamp=NOW,
            )
            await sql_backend.logs.append(entry)

        entries = await sql_backend.logs.list_for_execution(context.id)
        assert [entry.node_id for entry in entries] == ["trigger", "send", "send", "end"]
        assert entries[0].input == {"node": "trigger"}

    async def test_schedules(self, sql_backend: StorageBackend, stored_flow: Flow, contact: Contact) -> None:
        context = await sql_backend.executions.create_if_absent(open_context(stored_flow, contact))
        late = ScheduledResume(execution_id=context.id, due_at=NOW + timedelta(hours=2), token=2)
        early = ScheduledResume(execution_id=context.id, due_at=NOW + timedelta(hours=1), token=1)
        await sql_backend.schedules.add(late)
        await sql_backend.schedules.add(early)

        assert await sql_backend.schedules.due(NOW, 10) == []
        due = await sql_backend.schedules.due(NOW + timedelta(hours=3), 10)
        assert [(r.id, r.token) for r in due] == [(early.id, 1), (late.id, 2)]
        assert due[0].due_at == early.due_at

        await sql_backend.schedules.delete(early.id)
        assert [r.id for r in await sql_backend.schedules.due(NOW + timedelta(hours=3), 10)] == [late.id]
        await sql_backend.schedules.delete_for_execution(context.id)
        assert await sql_backend.schedules.due(NOW + timedelta(hours=3), 10) == []

    async def test_contact_versioning(self, sql_backend: StorageBackend, contact: Contact) -> None:
        stored = await sql_backend.contacts.get(contact.id)
        stored.tags.append("vip")

        saved = await sql_backend.contacts.save(stored, expected_version=stored.version)

        assert saved.version == contact.version + 1
        assert (await sql_backend.contacts.get(contact.id)).tags == ["lead", "vip"]
        with pytest.raises(StorageConflictError):
            await sql_backend.contacts.save(stored, expected_version=contact.version)
        with pytest.raises(ContactNotFoundError):
            await sql_backend.contacts.get(uuid4())

    async def test_ledger_first_write_wins(self, sql_backend: StorageBackend) -> None:
        assert await sql_backend.ledger.get("exec:node:1") is None

        await sql_backend.ledger.record("exec:node:1", {"changed": True})
        await sql_backend.ledger.record("exec:node:1", {"changed": False})

        assert await sql_backend.ledger.get("exec:node:1") == {"changed": True}


# =============================================================================
# Engine on SQLAlchemy Tests
# =============================================================================


@pytest.mark.integration
@pytest.mark.asyncio
class TestEngineOnSQLAlchemy:
    """Runs whole flows against the SQLAlchemy backend."""

    @pytest.fixture
    def sql_engine(
        self,
        sql_backend: StorageBackend,
        transport: RecordingTransport,
        webhooks: StubWebhookCaller,
        engine_config: EngineConfig,
        clock: FakeClock,
    ) -> FlowEngine:
        return FlowEngine(sql_backend, transport, webhooks, config=engine_config, clock=clock)

    async def test_button_flow(
        self,
        sql_engine: FlowEngine,
        sql_backend: StorageBackend,
        contact: Contact,
        transport: RecordingTransport,
    ) -> None:
        manager = FlowManager(sql_backend.flows)
        flow = await manager.create_flow(ORG, "Promo")
        await manager.save_graph(
            flow.id,
            [
                make_node("trigger", NodeType.TRIGGER_MESSAGE),
                make_node(
                    "offer",
                    NodeType.ACTION_SEND_TEMPLATE,
                    templateName="promo",
                    waitForButtonResponse=True,
                    templateButtons=[{"id": "yes", "text": "Sim"}, {"id": "no", "text": "Não"}],
                ),
                make_node("tag", NodeType.ACTION_ADD_TAG, tag="interessado"),
                make_node("end", NodeType.ACTION_END),
            ],
            [
                make_edge("trigger", "offer"),
                make_edge("offer", "tag", "yes"),
                make_edge("offer", "end", "no"),
                make_edge("tag", "end"),
            ],
        )
        await manager.activate(flow.id)

        waiting = await sql_engine.trigger(flow.id, contact.id)
        assert waiting.status is ExecutionStatus.WAITING_EXTERNAL
        assert (await sql_backend.contacts.get(contact.id)).current_node_id == "offer"

        [context] = await sql_engine.handle_event(
            ButtonClicked(organization_id=ORG, contact_id=contact.id, button_text="Sim")
        )

        assert context.status is ExecutionStatus.COMPLETED
        assert transport.sent[0].content["name"] == "promo"
        stored_contact = await sql_backend.contacts.get(contact.id)
        assert "interessado" in stored_contact.tags
        assert stored_contact.current_flow_id is None
        log = await sql_engine.get_execution_log(context.id)
        assert [entry.node_id for entry in log] == ["trigger", "offer", "offer", "offer", "tag", "tag", "end"]
        stored_flow = await sql_backend.flows.get_flow(flow.id)
        assert (stored_flow.total_executions, stored_flow.successful_executions) == (1, 1)

    async def test_delay_survives_in_storage(
        self,
        sql_engine: FlowEngine,
        sql_backend: StorageBackend,
        contact: Contact,
        transport: RecordingTransport,
        webhooks: StubWebhookCaller,
        engine_config: EngineConfig,
        clock: FakeClock,
    ) -> None:
        manager = FlowManager(sql_backend.flows)
        flow = await manager.create_flow(ORG, "Follow-up")
        await manager.save_graph(
            flow.id,
            [
                make_node("trigger", NodeType.TRIGGER_CONTACT_CREATED),
                make_node("delay", NodeType.ACTION_DELAY, amount=1, unit="days"),
                make_node("send", NodeType.ACTION_SEND_TEXT, message="Oi de novo, {{first_name}}"),
            ],
            chain("trigger", "delay", "send"),
        )
        await manager.activate(flow.id)
        context = await sql_engine.trigger(flow.id, contact.id)
        assert context.status is ExecutionStatus.WAITING_TIMER

        # A fresh engine on the same database picks the resume up.
        restarted = FlowEngine(sql_backend, transport, webhooks, config=engine_config, clock=clock)
        assert await restarted.scheduler.tick(clock.advance(hours=23)) == 0
        assert await restarted.scheduler.tick(clock.advance(hours=1)) == 1

        finished = await restarted.get_execution(context.id)
        assert finished.status is ExecutionStatus.COMPLETED
        assert [m.content["body"] for m in transport.sent] == ["Oi de novo, Maria"]
        assert await sql_backend.schedules.due(clock.advance(days=1), 10) == []
