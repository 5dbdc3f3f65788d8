"""Flow lifecycle management: editing, validation, activation and duplication."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog

from litestar_flows.core.definition import Flow, FlowDefinition
from litestar_flows.core.types import FlowStatus
from litestar_flows.engine.graph import FlowGraph
from litestar_flows.engine.validator import GraphValidator

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from litestar_flows.core.definition import Edge, Node
    from litestar_flows.core.protocols import FlowStore

__all__ = ("FlowManager",)

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowManager:
    """Manages flow definitions on top of a :class:`FlowStore`.

    Editing a graph never affects running contexts beyond what the next loaded graph
    says. An active flow only accepts graphs that pass validation.

    Example:
        >>> manager = FlowManager(backend.flows)
        >>> flow = await manager.create_flow("org-1", "Welcome")
        >>> await manager.save_graph(flow.id, nodes, edges)
        >>> await manager.activate(flow.id)
    """

    def __init__(self, store: FlowStore, validator: GraphValidator | None = None) -> None:
        self.store = store
        self.validator = validator or GraphValidator()

    async def create_flow(
        self,
        organization_id: str,
        name: str,
        *,
        description: str | None = None,
        whatsapp_account_id: str | None = None,
    ) -> Flow:
        """Create a draft flow with an empty graph."""
        flow = Flow(
            organization_id=organization_id,
            name=name,
            description=description,
            whatsapp_account_id=whatsapp_account_id,
        )
        flow = await self.store.create_flow(flow)
        logger.info("flow_created", flow_id=str(flow.id), organization_id=organization_id)
        return flow

    async def get_flow(self, flow_id: UUID) -> Flow:
        return await self.store.get_flow(flow_id)

    async def list_flows(self, organization_id: str | None = None, status: FlowStatus | None = None) -> list[Flow]:
        return await self.store.list_flows(organization_id, status)

    async def update_flow(self, flow_id: UUID, **changes: Any) -> Flow:
        """Change a flow's metadata.

        Args:
            flow_id: The flow to change.
            **changes: Any of ``name``, ``description``, ``whatsapp_account_id``.

        Returns:
            The updated flow.
        """
        allowed = {"name", "description", "whatsapp_account_id"}
        unknown = set(changes) - allowed
        if unknown:
            msg = f"Cannot update flow field(s): {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        flow = await self.store.get_flow(flow_id)
        flow = replace(flow, **changes, updated_at=_utcnow())
        return await self.store.update_flow(flow)

    async def delete_flow(self, flow_id: UUID) -> None:
        await self.store.delete_flow(flow_id)
        logger.info("flow_deleted", flow_id=str(flow_id))

    async def save_graph(self, flow_id: UUID, nodes: Sequence[Node], edges: Sequence[Edge]) -> FlowDefinition:
        """Replace a flow's graph.

        Raises:
            FlowNotFoundError: If the flow does not exist.
            ConfigInvalidError: If the flow is active and a node config is invalid.
            GraphInvalidError: If the flow is active and the graph is invalid.
        """
        flow = await self.store.get_flow(flow_id)
        definition = FlowDefinition(flow=flow, nodes=list(nodes), edges=list(edges))
        if flow.status is FlowStatus.ACTIVE:
            graph = self.validator.validate(definition)
            flow = self._sync_trigger(flow, graph)
        await self.store.save_graph(flow_id, nodes, edges)
        flow.updated_at = _utcnow()
        await self.store.update_flow(flow)
        logger.info("flow_graph_saved", flow_id=str(flow_id), nodes=len(nodes), edges=len(edges))
        return await self.store.load_graph(flow_id)

    async def load_graph(self, flow_id: UUID) -> FlowDefinition:
        return await self.store.load_graph(flow_id)

    async def validate(self, flow_id: UUID) -> list[str]:
        """Dry-run validation of a stored flow.

        Returns:
            Every config and structural error, empty when the flow could be activated.
        """
        return self.validator.check(await self.store.load_graph(flow_id))

    async def activate(self, flow_id: UUID) -> Flow:
        """Validate a flow and make it eligible to fire.

        The trigger node's type and config are copied onto the flow so inbound events
        can find it without loading graphs.

        Raises:
            ConfigInvalidError: If any node config is invalid.
            GraphInvalidError: If the graph is structurally invalid.
        """
        definition = await self.store.load_graph(flow_id)
        graph = self.validator.validate(definition)
        flow = self._sync_trigger(definition.flow, graph)
        flow.status = FlowStatus.ACTIVE
        flow.is_active = True
        flow.updated_at = _utcnow()
        flow = await self.store.update_flow(flow)
        logger.info("flow_activated", flow_id=str(flow_id), trigger_type=flow.trigger_type)
        return flow

    async def pause(self, flow_id: UUID) -> Flow:
        """Stop a flow from firing. Running contexts continue."""
        flow = await self.store.get_flow(flow_id)
        flow.status = FlowStatus.PAUSED
        flow.is_active = False
        flow.updated_at = _utcnow()
        flow = await self.store.update_flow(flow)
        logger.info("flow_paused", flow_id=str(flow_id))
        return flow

    async def duplicate(self, flow_id: UUID, name: str | None = None) -> FlowDefinition:
        """Copy a flow and its graph into a new draft with reset counters."""
        source = await self.store.load_graph(flow_id)
        copy = Flow(
            organization_id=source.flow.organization_id,
            name=name or f"{source.flow.name} (copy)",
            description=source.flow.description,
            whatsapp_account_id=source.flow.whatsapp_account_id,
            trigger_type=source.flow.trigger_type,
            trigger_config=dict(source.flow.trigger_config),
        )
        copy = await self.store.create_flow(copy)
        nodes, edges = source.copy_graph()
        await self.store.save_graph(copy.id, nodes, edges)
        logger.info("flow_duplicated", flow_id=str(flow_id), copy_id=str(copy.id))
        return await self.store.load_graph(copy.id)

    @staticmethod
    def _sync_trigger(flow: Flow, graph: FlowGraph) -> Flow:
        trigger = graph.trigger
        if trigger is not None:
            flow.trigger_type = trigger.type
            flow.trigger_config = dict(trigger.config)
        return flow
