"""Flow definition structures.

A flow is stored as plain node and edge tables. :class:`FlowDefinition` bundles a
flow with its graph as loaded in one round trip by the flow store.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from litestar_flows.core.types import DEFAULT_HANDLE, FlowStatus, NodeType

__all__ = ("Edge", "Flow", "FlowDefinition", "Node")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Flow:
    """One automation definition.

    Attributes:
        organization_id: Owning organization. Events only fire flows of their organization.
        name: Display name.
        id: Unique identifier.
        description: Optional description.
        status: Lifecycle status.
        is_active: Operator toggle. A flow fires only when ``status`` is active and this is set.
        trigger_type: Type of the flow's trigger node, synced on activation.
        trigger_config: Configuration of the trigger node, synced on activation.
        whatsapp_account_id: When set, only events from this WhatsApp account fire the flow.
        total_executions: Executions that reached a terminal state.
        successful_executions: Executions that completed.
        failed_executions: Executions that failed.
        last_execution_at: When the flow last fired.
    """

    organization_id: str
    name: str
    id: UUID = field(default_factory=uuid4)
    description: str | None = None
    status: FlowStatus = FlowStatus.DRAFT
    is_active: bool = False
    trigger_type: NodeType | None = None
    trigger_config: dict[str, Any] = field(default_factory=dict)
    whatsapp_account_id: str | None = None
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    last_execution_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_triggerable(self) -> bool:
        """Whether new executions may start."""
        return self.status == FlowStatus.ACTIVE and self.is_active


@dataclass
class Node:
    """A typed step of a flow.

    Attributes:
        id: Key assigned by the editor, unique within the flow.
        type: The node type.
        config: Raw configuration document, validated against the type's schema.
        name: Optional display label.
        position_x: Editor canvas position.
        position_y: Editor canvas position.
    """

    id: str
    type: NodeType
    config: dict[str, Any] = field(default_factory=dict)
    name: str | None = None
    position_x: float = 0.0
    position_y: float = 0.0


@dataclass
class Edge:
    """A directed connection leaving a node from one of its handles.

    Attributes:
        source_node_id: Node the edge leaves from.
        target_node_id: Node the edge enters.
        source_handle: Named output of the source node. ``None`` means the default output.
        label: Optional display label.
        id: Unique identifier.
    """

    source_node_id: str
    target_node_id: str
    source_handle: str | None = None
    label: str | None = None
    id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def handle(self) -> str:
        """The normalized output handle."""
        return self.source_handle or DEFAULT_HANDLE


@dataclass
class FlowDefinition:
    """A flow together with its complete graph."""

    flow: Flow
    nodes: list[Node] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def get_node(self, node_id: str) -> Node | None:
        return next((node for node in self.nodes if node.id == node_id), None)

    def copy_graph(self) -> tuple[list[Node], list[Edge]]:
        """Copy nodes and edges, giving each edge a fresh ID.

        Returns:
            The copied nodes and edges, safe to save under another flow.
        """
        nodes = [replace(node, config=deepcopy(node.config)) for node in self.nodes]
        edges = [replace(edge, id=uuid4().hex) for edge in self.edges]
        return nodes, edges
