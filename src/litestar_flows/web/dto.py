"""Data Transfer Objects for the flows web API.

This module defines DTOs for serializing and deserializing flows, graphs,
execution contexts and inbound events in REST API requests and responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from litestar_flows.core.definition import Edge, Node
from litestar_flows.core.types import NodeType

if TYPE_CHECKING:
    from litestar_flows.core.context import ExecutionContext, ExecutionLogEntry
    from litestar_flows.core.definition import Flow, FlowDefinition

__all__ = [
    "ButtonClickDTO",
    "CancelDTO",
    "ContactCreatedDTO",
    "CreateFlowDTO",
    "DuplicateFlowDTO",
    "EdgeDTO",
    "ExecutionDTO",
    "ExecutionLogEntryDTO",
    "FlowDTO",
    "GraphDTO",
    "MessageDTO",
    "NodeDTO",
    "ReleaseDTO",
    "ValidationDTO",
    "WebhookEventDTO",
]


@dataclass
class CreateFlowDTO:
    """DTO for creating a flow.

    Attributes:
        organization_id: Owning organization.
        name: Display name.
        description: Optional description.
        whatsapp_account_id: Optional WhatsApp account binding.
    """

    organization_id: str
    name: str
    description: str | None = None
    whatsapp_account_id: str | None = None


@dataclass
class DuplicateFlowDTO:
    name: str | None = None


@dataclass
class FlowDTO:
    """DTO for flow metadata and counters."""

    id: UUID
    organization_id: str
    name: str
    description: str | None
    status: str
    is_active: bool
    trigger_type: str | None
    trigger_config: dict[str, Any]
    whatsapp_account_id: str | None
    total_executions: int
    successful_executions: int
    failed_executions: int
    last_execution_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_flow(cls, flow: Flow) -> FlowDTO:
        return cls(
            id=flow.id,
            organization_id=flow.organization_id,
            name=flow.name,
            description=flow.description,
            status=flow.status.value,
            is_active=flow.is_active,
            trigger_type=flow.trigger_type.value if flow.trigger_type else None,
            trigger_config=flow.trigger_config,
            whatsapp_account_id=flow.whatsapp_account_id,
            total_executions=flow.total_executions,
            successful_executions=flow.successful_executions,
            failed_executions=flow.failed_executions,
            last_execution_at=flow.last_execution_at,
            created_at=flow.created_at,
            updated_at=flow.updated_at,
        )


@dataclass
class NodeDTO:
    """DTO for a graph node.

    Attributes:
        id: Editor-assigned key, unique within the flow.
        type: Node type string, e.g. ``action_send_text``.
        config: Raw config document.
        name: Optional display label.
        position_x: Canvas position.
        position_y: Canvas position.
    """

    id: str
    type: NodeType
    config: dict[str, Any] = field(default_factory=dict)
    name: str | None = None
    position_x: float = 0.0
    position_y: float = 0.0

    def to_node(self) -> Node:
        return Node(
            id=self.id,
            type=self.type,
            config=dict(self.config),
            name=self.name,
            position_x=self.position_x,
            position_y=self.position_y,
        )


@dataclass
class EdgeDTO:
    """DTO for a graph edge. A missing ``source_handle`` means the default output."""

    source_node_id: str
    target_node_id: str
    source_handle: str | None = None
    label: str | None = None
    id: str | None = None

    def to_edge(self) -> Edge:
        edge = Edge(
            source_node_id=self.source_node_id,
            target_node_id=self.target_node_id,
            source_handle=self.source_handle,
            label=self.label,
        )
        if self.id:
            edge.id = self.id
        return edge


@dataclass
class GraphDTO:
    """DTO for a complete flow graph."""

    nodes: list[NodeDTO] = field(default_factory=list)
    edges: list[EdgeDTO] = field(default_factory=list)
    flow: FlowDTO | None = None

    @classmethod
    def from_definition(cls, definition: FlowDefinition) -> GraphDTO:
        return cls(
            flow=FlowDTO.from_flow(definition.flow),
            nodes=[
                NodeDTO(
                    id=node.id,
                    type=node.type,
                    config=node.config,
                    name=node.name,
                    position_x=node.position_x,
                    position_y=node.position_y,
                )
                for node in definition.nodes
            ],
            edges=[
                EdgeDTO(
                    id=edge.id,
                    source_node_id=edge.source_node_id,
                    target_node_id=edge.target_node_id,
                    source_handle=edge.source_handle,
                    label=edge.label,
                )
                for edge in definition.edges
            ],
        )


@dataclass
class ValidationDTO:
    """DTO for a dry-run validation result."""

    valid: bool
    errors: list[str]


@dataclass
class ExecutionDTO:
    """DTO for an execution context.

    Attributes:
        id: Execution ID.
        flow_id: The flow being executed.
        contact_id: The contact travelling through the flow.
        status: Current status.
        current_node_id: Current or waiting node.
        waiting_for: Wait kind while suspended.
        resume_at: Due time of a pending scheduled resume.
        flow_paused: Whether a human operator owns the conversation.
        flow_context: Captured variables.
        error_kind: Error kind when failed.
        error: Error detail or cancellation reason.
        started_at: When the execution started.
        completed_at: When the execution finished.
    """

    id: UUID
    flow_id: UUID
    contact_id: UUID
    status: str
    current_node_id: str | None
    waiting_for: str | None
    resume_at: datetime | None
    flow_paused: bool
    flow_context: dict[str, Any]
    error_kind: str | None
    error: str | None
    started_at: datetime
    completed_at: datetime | None

    @classmethod
    def from_context(cls, context: ExecutionContext) -> ExecutionDTO:
        return cls(
            id=context.id,
            flow_id=context.flow_id,
            contact_id=context.contact_id,
            status=context.status.value,
            current_node_id=context.current_node_id,
            waiting_for=context.wait.kind.value if context.wait else None,
            resume_at=context.resume_at,
            flow_paused=context.flow_paused,
            flow_context=context.flow_context,
            error_kind=context.error_kind,
            error=context.error,
            started_at=context.started_at,
            completed_at=context.completed_at,
        )


@dataclass
class ExecutionLogEntryDTO:
    id: UUID
    node_id: str
    node_type: str | None
    status: str
    input: dict[str, Any]
    output: dict[str, Any]
    error: str | None
    timestamp: datetime

    @classmethod
    def from_entry(cls, entry: ExecutionLogEntry) -> ExecutionLogEntryDTO:
        return cls(
            id=entry.id,
            node_id=entry.node_id,
            node_type=entry.node_type.value if entry.node_type else None,
            status=entry.status.value,
            input=entry.input,
            output=entry.output,
            error=entry.error,
            timestamp=entry.timestamp,
        )


@dataclass
class CancelDTO:
    reason: str | None = None


@dataclass
class ReleaseDTO:
    """DTO for ending a human handoff. ``data`` is merged into the flow context."""

    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ButtonClickDTO:
    organization_id: str
    contact_id: UUID
    button_text: str
    button_id: str | None = None
    execution_id: UUID | None = None
    node_id: str | None = None
    whatsapp_account_id: str | None = None


@dataclass
class MessageDTO:
    organization_id: str
    contact_id: UUID
    text: str
    message_id: str | None = None
    whatsapp_account_id: str | None = None


@dataclass
class WebhookEventDTO:
    organization_id: str
    contact_id: UUID
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class ContactCreatedDTO:
    organization_id: str
    contact_id: UUID
    whatsapp_account_id: str | None = None
