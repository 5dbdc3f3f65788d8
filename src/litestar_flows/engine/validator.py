"""Activation-time validation of flow graphs.

Node configs are checked first; a flow with any invalid config fails with
:class:`ConfigInvalidError` before structural rules run, since handles depend on
config. Structural problems are collected together and raised as one
:class:`GraphInvalidError`.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any

import structlog

from litestar_flows.engine.graph import FlowGraph
from litestar_flows.engine.registry import NodeTypeRegistry
from litestar_flows.exceptions import ConfigInvalidError, GraphInvalidError, UnknownNodeTypeError

if TYPE_CHECKING:
    from litestar_flows.core.definition import FlowDefinition, Node

__all__ = ("GraphValidator",)

logger = structlog.get_logger(__name__)


class GraphValidator:
    """Validates flow graphs before activation.

    Rules:
        - every edge references nodes of the same flow
        - exactly one trigger node, with no incoming edge
        - every non-trigger node has at least one incoming edge
        - every node is reachable from the trigger
        - edges leave from handles their source node declares, one edge per handle
        - every required named output (true/false, each button option) has an edge
        - ``end`` nodes have no outgoing edges
        - no cycle made only of non-suspending nodes

    Example:
        >>> validator = GraphValidator(NodeTypeRegistry.default())
        >>> graph = validator.validate(definition)
        >>> graph.resolve("condition_1", "true")
        'send_1'
    """

    def __init__(self, registry: NodeTypeRegistry | None = None) -> None:
        self.registry = registry or NodeTypeRegistry.default()

    def parse_configs(self, definition: FlowDefinition) -> dict[str, Any]:
        """Parse every node config.

        Returns:
            Map of node ID to parsed config.

        Raises:
            ConfigInvalidError: Listing every invalid node.
        """
        configs: dict[str, Any] = {}
        errors: dict[str, list[str]] = {}
        for node in definition.nodes:
            try:
                configs[node.id] = self.registry.parse_config(node)
            except ConfigInvalidError as e:
                for node_id, messages in e.errors.items():
                    errors.setdefault(node_id, []).extend(messages)
            except UnknownNodeTypeError as e:
                errors.setdefault(node.id, []).append(str(e))
        if errors:
            raise ConfigInvalidError(errors)
        return configs

    def structural_errors(self, definition: FlowDefinition, configs: dict[str, Any]) -> list[str]:
        """Check the structural rules.

        Args:
            definition: The flow and its graph.
            configs: Parsed configs from :meth:`parse_configs`.

        Returns:
            Error messages, empty when the graph is valid.
        """
        graph = FlowGraph.from_definition(definition)
        errors: list[str] = []

        duplicates = [node_id for node_id, count in Counter(n.id for n in definition.nodes).items() if count > 1]
        errors.extend(f"Node ID '{node_id}' is used more than once" for node_id in duplicates)

        for edge in graph.dangling_edges:
            missing = [n for n in (edge.source_node_id, edge.target_node_id) if n not in graph.nodes]
            errors.append(f"Edge '{edge.id}' references missing node(s): {', '.join(missing)}")

        triggers = graph.trigger_nodes()
        if len(triggers) != 1:
            errors.append(f"Flow must have exactly one trigger node, found {len(triggers)}")
        for trigger in triggers:
            if graph.predecessors(trigger.id):
                errors.append(f"Trigger node '{trigger.id}' cannot have incoming edges")

        for node in graph.nodes.values():
            if not node.type.is_trigger and not graph.predecessors(node.id):
                errors.append(f"Node '{node.id}' ({node.type}) has no incoming edge")

        for node in graph.nodes.values():
            errors.extend(self._handle_errors(graph, node, configs[node.id]))

        if len(triggers) == 1:
            reachable = graph.reachable_from(triggers[0].id)
            errors.extend(
                f"Node '{node_id}' is unreachable from the trigger"
                for node_id in graph.nodes
                if node_id not in reachable
            )

        cycle = graph.find_cycle(lambda node: not self._suspends(node, configs[node.id]))
        if cycle:
            loop = " -> ".join([*cycle, cycle[0]])
            errors.append(f"Cycle without a wait or delay: {loop}")

        return errors

    def _suspends(self, node: Node, config: Any) -> bool:
        return self.registry.get(node.type).is_suspending(config)

    def _handle_errors(self, graph: FlowGraph, node: Node, config: Any) -> list[str]:
        spec = self.registry.get(node.type)
        allowed = spec.allowed_handles(config)
        errors = []
        handle_counts = Counter(edge.handle for edge in graph.outgoing(node.id))

        if not allowed and handle_counts:
            errors.append(f"Node '{node.id}' ({node.type}) cannot have outgoing edges")
            return errors

        for handle, count in handle_counts.items():
            if handle not in allowed:
                errors.append(f"Node '{node.id}' has an edge from unknown output '{handle}'")
            elif count > 1:
                errors.append(f"Node '{node.id}' has {count} edges leaving output '{handle}'")

        errors.extend(
            f"Node '{node.id}' is missing an edge for output '{handle}'"
            for handle in spec.required_handles(config)
            if handle not in handle_counts
        )
        return errors

    def check(self, definition: FlowDefinition) -> list[str]:
        """Dry-run validation.

        Returns:
            Every config and structural error as readable lines.
        """
        try:
            configs = self.parse_configs(definition)
        except ConfigInvalidError as e:
            return e.as_list()
        return self.structural_errors(definition, configs)

    def validate(self, definition: FlowDefinition) -> FlowGraph:
        """Validate a flow for activation.

        Args:
            definition: The flow and its graph.

        Returns:
            The graph with its branch index.

        Raises:
            ConfigInvalidError: If any node config is invalid.
            GraphInvalidError: If any structural rule is violated.
        """
        configs = self.parse_configs(definition)
        errors = self.structural_errors(definition, configs)
        if errors:
            logger.info("flow_graph_invalid", flow_id=str(definition.flow.id), errors=errors)
            raise GraphInvalidError(errors)
        return FlowGraph.from_definition(definition)
