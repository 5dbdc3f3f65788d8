"""Tests for flow lifecycle management."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from litestar_flows.core.types import ExecutionStatus, FlowStatus, NodeType
from litestar_flows.exceptions import ConfigInvalidError, FlowNotFoundError, GraphInvalidError
from tests.conftest import ORG, chain, make_node

if TYPE_CHECKING:
    from litestar_flows.engine.backend import StorageBackend
    from litestar_flows.engine.manager import FlowManager

WELCOME = [
    make_node("trigger", NodeType.TRIGGER_KEYWORD, keywords=["oi"], allowReentry=False),
    make_node("send", NodeType.ACTION_SEND_TEXT, message="Bem-vindo!"),
    make_node("end", NodeType.ACTION_END),
]
WELCOME_EDGES = chain("trigger", "send", "end")


@pytest.mark.unit
@pytest.mark.asyncio
class TestFlowManager:
    """Tests for FlowManager."""

    async def test_create_and_list(self, manager: FlowManager) -> None:
        flow = await manager.create_flow(ORG, "Boas-vindas", description="Primeiro contato")
        await manager.create_flow("org-2", "Outra")

        assert flow.status is FlowStatus.DRAFT
        assert not flow.is_active
        assert [f.id for f in await manager.list_flows(ORG)] == [flow.id]
        assert len(await manager.list_flows()) == 2
        assert await manager.list_flows(ORG, FlowStatus.ACTIVE) == []

    async def test_update_metadata(self, manager: FlowManager) -> None:
        flow = await manager.create_flow(ORG, "Old")

        updated = await manager.update_flow(flow.id, name="New", whatsapp_account_id="acc-1")

        assert (updated.name, updated.whatsapp_account_id) == ("New", "acc-1")
        with pytest.raises(ValueError, match="status"):
            await manager.update_flow(flow.id, status=FlowStatus.ACTIVE)

    async def test_draft_accepts_incomplete_graph(self, manager: FlowManager) -> None:
        flow = await manager.create_flow(ORG, "Draft")

        definition = await manager.save_graph(flow.id, [make_node("send", NodeType.ACTION_SEND_TEXT)], [])

        assert [node.id for node in definition.nodes] == ["send"]
        assert await manager.validate(flow.id) == ["Node 'send': message: Field required"]
        with pytest.raises(ConfigInvalidError):
            await manager.activate(flow.id)

    async def test_activate_syncs_trigger(self, manager: FlowManager) -> None:
        flow = await manager.create_flow(ORG, "Welcome")
        await manager.save_graph(flow.id, WELCOME, WELCOME_EDGES)

        assert await manager.validate(flow.id) == []
        active = await manager.activate(flow.id)

        assert active.status is FlowStatus.ACTIVE
        assert active.is_triggerable
        assert active.trigger_type is NodeType.TRIGGER_KEYWORD
        assert active.trigger_config == {"keywords": ["oi"], "allowReentry": False}

    async def test_activate_rejects_invalid_graph(self, manager: FlowManager) -> None:
        flow = await manager.create_flow(ORG, "Broken")
        await manager.save_graph(flow.id, WELCOME, WELCOME_EDGES[:1])

        with pytest.raises(GraphInvalidError) as exc_info:
            await manager.activate(flow.id)

        assert "Node 'end' (action_end) has no incoming edge" in exc_info.value.errors
        assert (await manager.get_flow(flow.id)).status is FlowStatus.DRAFT

    async def test_active_flow_only_accepts_valid_graphs(self, manager: FlowManager) -> None:
        flow = await manager.create_flow(ORG, "Live")
        await manager.save_graph(flow.id, WELCOME, WELCOME_EDGES)
        await manager.activate(flow.id)

        with pytest.raises(GraphInvalidError):
            await manager.save_graph(flow.id, WELCOME, [])

        stored = await manager.load_graph(flow.id)
        assert len(stored.edges) == 2

        retargeted = [make_node("trigger", NodeType.TRIGGER_MESSAGE), *WELCOME[1:]]
        await manager.save_graph(flow.id, retargeted, WELCOME_EDGES)
        assert (await manager.get_flow(flow.id)).trigger_type is NodeType.TRIGGER_MESSAGE

    async def test_pause(self, manager: FlowManager) -> None:
        flow = await manager.create_flow(ORG, "Live")
        await manager.save_graph(flow.id, WELCOME, WELCOME_EDGES)
        await manager.activate(flow.id)

        paused = await manager.pause(flow.id)

        assert paused.status is FlowStatus.PAUSED
        assert not paused.is_triggerable

    async def test_duplicate(self, manager: FlowManager, backend: StorageBackend) -> None:
        flow = await manager.create_flow(ORG, "Welcome", whatsapp_account_id="acc-1")
        original = await manager.save_graph(flow.id, WELCOME, WELCOME_EDGES)
        await manager.activate(flow.id)
        await backend.flows.record_outcome(flow.id, ExecutionStatus.COMPLETED)

        copy = await manager.duplicate(flow.id)

        assert copy.flow.id != flow.id
        assert copy.flow.name == "Welcome (copy)"
        assert copy.flow.status is FlowStatus.DRAFT
        assert copy.flow.whatsapp_account_id == "acc-1"
        assert copy.flow.total_executions == 0
        assert [node.id for node in copy.nodes] == [node.id for node in original.nodes]
        assert {edge.id for edge in copy.edges}.isdisjoint(edge.id for edge in original.edges)
        assert [(e.source_node_id, e.target_node_id) for e in copy.edges] == [
            (e.source_node_id, e.target_node_id) for e in original.edges
        ]

        named = await manager.duplicate(flow.id, name="Welcome v2")
        assert named.flow.name == "Welcome v2"

    async def test_delete(self, manager: FlowManager) -> None:
        flow = await manager.create_flow(ORG, "Temp")

        await manager.delete_flow(flow.id)

        with pytest.raises(FlowNotFoundError):
            await manager.get_flow(flow.id)
        with pytest.raises(FlowNotFoundError):
            await manager.delete_flow(flow.id)
