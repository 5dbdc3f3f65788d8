"""Node type registry.

Maps every :class:`~litestar_flows.core.types.NodeType` to the spec implementing it
and turns pydantic validation failures into :class:`ConfigInvalidError`.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from litestar_flows.exceptions import ConfigInvalidError, UnknownNodeTypeError
from litestar_flows.nodes import BUILTIN_NODE_SPECS, TriggerSpec

if TYPE_CHECKING:
    from litestar_flows.core.definition import Node
    from litestar_flows.core.types import NodeType
    from litestar_flows.nodes.base import NodeSpec

__all__ = ("NodeTypeRegistry", "format_validation_error")


def format_validation_error(error: ValidationError) -> list[str]:
    """Render pydantic errors as ``location: message`` lines."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


class NodeTypeRegistry:
    """Registry of node specs keyed by node type.

    Attributes:
        _specs: Map of node type to the spec instance handling it.

    Example:
        >>> registry = NodeTypeRegistry.default()
        >>> spec = registry.get(NodeType.ACTION_SEND_TEXT)
        >>> config = registry.parse_config(node)
    """

    def __init__(self) -> None:
        self._specs: dict[NodeType, NodeSpec[Any]] = {}

    @classmethod
    def default(cls) -> NodeTypeRegistry:
        """Create a registry holding every built-in node type."""
        registry = cls()
        for spec_class in BUILTIN_NODE_SPECS:
            registry.register(spec_class())
        return registry

    def register(self, spec: NodeSpec[Any]) -> None:
        """Register a spec, replacing any previous spec for the same type.

        Args:
            spec: The node spec instance.
        """
        self._specs[spec.node_type] = spec

    def get(self, node_type: NodeType) -> NodeSpec[Any]:
        """Get the spec for a node type.

        Raises:
            UnknownNodeTypeError: If no spec is registered for the type.
        """
        try:
            return self._specs[node_type]
        except KeyError as e:
            raise UnknownNodeTypeError(str(node_type)) from e

    def get_trigger(self, node_type: NodeType) -> TriggerSpec[Any]:
        spec = self.get(node_type)
        if not isinstance(spec, TriggerSpec):
            raise UnknownNodeTypeError(f"{node_type} (not a trigger)")
        return spec

    def parse_config(self, node: Node) -> Any:
        """Validate a node's config against its type's schema.

        Args:
            node: The node to validate.

        Returns:
            The parsed config model.

        Raises:
            ConfigInvalidError: If the config violates the schema.
            UnknownNodeTypeError: If the node type is not registered.
        """
        spec = self.get(node.type)
        try:
            return spec.parse_config(node.config)
        except ValidationError as e:
            raise ConfigInvalidError({node.id: format_validation_error(e)}) from e

    def list_types(self) -> list[NodeType]:
        return list(self._specs)

    def __contains__(self, node_type: object) -> bool:
        return node_type in self._specs
