"""Flow graph navigation.

The graph is an arena of nodes keyed by ID plus adjacency lists, with a precomputed
``(node_id, handle) -> target`` index so the engine resolves a branch with one dict
lookup.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from litestar_flows.core.definition import Edge, FlowDefinition, Node

__all__ = ("FlowGraph",)


class FlowGraph:
    """Graph representation of a flow.

    Edges whose endpoints are not nodes of the flow are kept in
    :attr:`dangling_edges` and left out of the adjacency lists.

    Attributes:
        nodes: Map of node ID to node.
        edges: All edges in definition order.
        dangling_edges: Edges referencing a node that does not exist.
        _adjacency: Node ID to outgoing edges.
        _reverse_adjacency: Node ID to IDs of predecessor nodes.
        _index: ``(node_id, handle)`` to target node ID. The first edge wins.
    """

    def __init__(self, nodes: Iterable[Node], edges: Iterable[Edge]) -> None:
        self.nodes: dict[str, Node] = {}
        for node in nodes:
            self.nodes.setdefault(node.id, node)
        self.edges: list[Edge] = list(edges)
        self.dangling_edges: list[Edge] = []
        self._adjacency: dict[str, list[Edge]] = {node_id: [] for node_id in self.nodes}
        self._reverse_adjacency: dict[str, list[str]] = {node_id: [] for node_id in self.nodes}
        self._index: dict[tuple[str, str], str] = {}
        self._build()

    def _build(self) -> None:
        for edge in self.edges:
            if edge.source_node_id not in self.nodes or edge.target_node_id not in self.nodes:
                self.dangling_edges.append(edge)
                continue
            self._adjacency[edge.source_node_id].append(edge)
            self._reverse_adjacency[edge.target_node_id].append(edge.source_node_id)
            self._index.setdefault((edge.source_node_id, edge.handle), edge.target_node_id)

    @classmethod
    def from_definition(cls, definition: FlowDefinition) -> FlowGraph:
        return cls(definition.nodes, definition.edges)

    def get_node(self, node_id: str) -> Node | None:
        return self.nodes.get(node_id)

    def resolve(self, node_id: str, handle: str) -> str | None:
        """Get the node an output handle leads to.

        Args:
            node_id: The source node.
            handle: The output handle.

        Returns:
            The target node ID, or ``None`` when no edge leaves from that handle.
        """
        return self._index.get((node_id, handle))

    def outgoing(self, node_id: str) -> list[Edge]:
        return self._adjacency.get(node_id, [])

    def predecessors(self, node_id: str) -> list[str]:
        return self._reverse_adjacency.get(node_id, [])

    def trigger_nodes(self) -> list[Node]:
        return [node for node in self.nodes.values() if node.type.is_trigger]

    @property
    def trigger(self) -> Node | None:
        """The single trigger node, or ``None`` when there is not exactly one."""
        triggers = self.trigger_nodes()
        return triggers[0] if len(triggers) == 1 else None

    def reachable_from(self, start: str) -> set[str]:
        """Get all node IDs reachable from ``start``, including itself."""
        if start not in self.nodes:
            return set()
        seen = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for edge in self._adjacency[current]:
                if edge.target_node_id not in seen:
                    seen.add(edge.target_node_id)
                    queue.append(edge.target_node_id)
        return seen

    def find_cycle(self, follow: Callable[[Node], bool]) -> list[str] | None:
        """Find a cycle using only edges leaving nodes accepted by ``follow``.

        Args:
            follow: Predicate selecting the nodes whose outgoing edges are traversed.

        Returns:
            Node IDs forming a cycle, in order, or ``None`` if there is none.
        """
        white, grey, black = 0, 1, 2
        color = dict.fromkeys(self.nodes, white)

        for root in self.nodes:
            if color[root] != white:
                continue
            path: list[str] = []
            stack: list[tuple[str, Iterator[Edge]]] = []

            def push(node_id: str) -> None:
                color[node_id] = grey
                path.append(node_id)
                edges = self._adjacency[node_id] if follow(self.nodes[node_id]) else []
                stack.append((node_id, iter(edges)))

            push(root)
            while stack:
                node_id, edges = stack[-1]
                edge = next(edges, None)
                if edge is None:
                    color[node_id] = black
                    path.pop()
                    stack.pop()
                    continue
                target = edge.target_node_id
                if color[target] == grey:
                    return path[path.index(target) :]
                if color[target] == white:
                    push(target)
        return None
