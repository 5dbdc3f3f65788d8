"""REST API controllers for flow automation.

This module provides three controller classes:
- FlowController: Create, edit, validate and activate flows and their graphs
- ExecutionController: Inspect, cancel and release execution contexts
- EventController: Deliver inbound CRM events to the engine
"""

from __future__ import annotations

from typing import ClassVar
from uuid import UUID

from litestar import Controller, delete, get, post, put
from litestar.params import Parameter
from litestar.status_codes import HTTP_200_OK

from litestar_flows.core.events import ButtonClicked, ContactCreated, MessageReceived, WebhookReceived
from litestar_flows.core.types import ExecutionStatus, FlowStatus
from litestar_flows.engine.engine import FlowEngine  # noqa: TC001 - needed for DI
from litestar_flows.engine.manager import FlowManager  # noqa: TC001 - needed for DI
from litestar_flows.web.dto import (
    ButtonClickDTO,
    CancelDTO,
    ContactCreatedDTO,
    CreateFlowDTO,
    DuplicateFlowDTO,
    ExecutionDTO,
    ExecutionLogEntryDTO,
    FlowDTO,
    GraphDTO,
    MessageDTO,
    ReleaseDTO,
    ValidationDTO,
    WebhookEventDTO,
)

__all__ = [
    "EventController",
    "ExecutionController",
    "FlowController",
]


class FlowController(Controller):
    """API controller for flows and their graphs.

    Tags: Flows
    """

    path = "/flows"
    tags: ClassVar[list[str]] = ["Flows"]

    @post("/")
    async def create_flow(self, data: CreateFlowDTO, flow_manager: FlowManager) -> FlowDTO:
        """Create a draft flow with an empty graph.

        Args:
            data: Flow metadata.
            flow_manager: Injected flow manager.

        Returns:
            The created flow.
        """
        flow = await flow_manager.create_flow(
            data.organization_id,
            data.name,
            description=data.description,
            whatsapp_account_id=data.whatsapp_account_id,
        )
        return FlowDTO.from_flow(flow)

    @get("/")
    async def list_flows(
        self,
        flow_manager: FlowManager,
        organization_id: str | None = Parameter(
            default=None,
            description="Filter by organization",
        ),
        status: FlowStatus | None = Parameter(
            default=None,
            description="Filter by lifecycle status",
        ),
    ) -> list[FlowDTO]:
        """List flows with optional filtering."""
        flows = await flow_manager.list_flows(organization_id, status)
        return [FlowDTO.from_flow(flow) for flow in flows]

    @get("/{flow_id:uuid}")
    async def get_flow(self, flow_id: UUID, flow_manager: FlowManager) -> FlowDTO:
        """Get a flow.

        Raises:
            FlowNotFoundError: Mapped to 404.
        """
        return FlowDTO.from_flow(await flow_manager.get_flow(flow_id))

    @delete("/{flow_id:uuid}")
    async def delete_flow(self, flow_id: UUID, flow_manager: FlowManager) -> None:
        await flow_manager.delete_flow(flow_id)

    @get("/{flow_id:uuid}/graph")
    async def get_graph(self, flow_id: UUID, flow_manager: FlowManager) -> GraphDTO:
        """Get a flow with its nodes and edges."""
        return GraphDTO.from_definition(await flow_manager.load_graph(flow_id))

    @put("/{flow_id:uuid}/graph")
    async def save_graph(self, flow_id: UUID, data: GraphDTO, flow_manager: FlowManager) -> GraphDTO:
        """Replace a flow's graph.

        Graphs of active flows must pass validation.

        Args:
            flow_id: The flow ID.
            data: The complete new graph.
            flow_manager: Injected flow manager.

        Returns:
            The stored graph.
        """
        definition = await flow_manager.save_graph(
            flow_id,
            [node.to_node() for node in data.nodes],
            [edge.to_edge() for edge in data.edges],
        )
        return GraphDTO.from_definition(definition)

    @get("/{flow_id:uuid}/validation")
    async def validate_flow(self, flow_id: UUID, flow_manager: FlowManager) -> ValidationDTO:
        """Dry-run validation of the stored graph."""
        errors = await flow_manager.validate(flow_id)
        return ValidationDTO(valid=not errors, errors=errors)

    @post("/{flow_id:uuid}/activate", status_code=HTTP_200_OK)
    async def activate_flow(self, flow_id: UUID, flow_manager: FlowManager) -> FlowDTO:
        """Validate and activate a flow.

        Raises:
            GraphInvalidError: Mapped to 422 with every structural error.
            ConfigInvalidError: Mapped to 422 with every config error.
        """
        return FlowDTO.from_flow(await flow_manager.activate(flow_id))

    @post("/{flow_id:uuid}/pause", status_code=HTTP_200_OK)
    async def pause_flow(self, flow_id: UUID, flow_manager: FlowManager) -> FlowDTO:
        return FlowDTO.from_flow(await flow_manager.pause(flow_id))

    @post("/{flow_id:uuid}/duplicate")
    async def duplicate_flow(
        self,
        flow_id: UUID,
        flow_manager: FlowManager,
        data: DuplicateFlowDTO | None = None,
    ) -> GraphDTO:
        """Copy a flow and its graph into a new draft."""
        definition = await flow_manager.duplicate(flow_id, name=data.name if data else None)
        return GraphDTO.from_definition(definition)

    @get("/{flow_id:uuid}/executions")
    async def list_executions(
        self,
        flow_id: UUID,
        flow_engine: FlowEngine,
        status: ExecutionStatus | None = Parameter(
            default=None,
            description="Filter by execution status",
        ),
        limit: int = Parameter(
            default=50,
            le=100,
            description="Maximum number of results",
        ),
        offset: int = Parameter(
            default=0,
            ge=0,
            description="Number of results to skip",
        ),
    ) -> list[ExecutionDTO]:
        """List a flow's executions, newest first."""
        contexts = await flow_engine.list_executions(flow_id, status=status, limit=limit, offset=offset)
        return [ExecutionDTO.from_context(context) for context in contexts]


class ExecutionController(Controller):
    """API controller for execution contexts.

    Tags: Flow Executions
    """

    path = "/executions"
    tags: ClassVar[list[str]] = ["Flow Executions"]

    @get("/{execution_id:uuid}")
    async def get_execution(self, execution_id: UUID, flow_engine: FlowEngine) -> ExecutionDTO:
        return ExecutionDTO.from_context(await flow_engine.get_execution(execution_id))

    @get("/{execution_id:uuid}/log")
    async def get_execution_log(self, execution_id: UUID, flow_engine: FlowEngine) -> list[ExecutionLogEntryDTO]:
        """Get the step and side-effect log of an execution, oldest first."""
        entries = await flow_engine.get_execution_log(execution_id)
        return [ExecutionLogEntryDTO.from_entry(entry) for entry in entries]

    @post("/{execution_id:uuid}/cancel", status_code=HTTP_200_OK)
    async def cancel_execution(
        self,
        execution_id: UUID,
        flow_engine: FlowEngine,
        data: CancelDTO | None = None,
    ) -> ExecutionDTO:
        """Cancel a non-terminal execution.

        Raises:
            InvalidTransitionError: Mapped to 409 when the execution already finished.
        """
        reason = data.reason if data and data.reason else "Cancelled by operator"
        return ExecutionDTO.from_context(await flow_engine.cancel(execution_id, reason))

    @post("/{execution_id:uuid}/release", status_code=HTTP_200_OK)
    async def release_execution(
        self,
        execution_id: UUID,
        flow_engine: FlowEngine,
        data: ReleaseDTO | None = None,
    ) -> ExecutionDTO:
        """End a human handoff and continue the flow."""
        context = await flow_engine.release(execution_id, data.data if data else None)
        return ExecutionDTO.from_context(context)

    @get("/contacts/{contact_id:uuid}")
    async def get_contact_executions(
        self,
        contact_id: UUID,
        flow_engine: FlowEngine,
        open_only: bool = Parameter(
            default=False,
            description="Only return non-terminal executions",
        ),
    ) -> list[ExecutionDTO]:
        """Per-contact execution status."""
        contexts = await flow_engine.get_contact_executions(contact_id, open_only=open_only)
        return [ExecutionDTO.from_context(context) for context in contexts]

    @post("/contacts/{contact_id:uuid}/cancel", status_code=HTTP_200_OK)
    async def cancel_contact_executions(
        self,
        contact_id: UUID,
        flow_engine: FlowEngine,
        data: CancelDTO | None = None,
    ) -> list[ExecutionDTO]:
        """Cancel every open execution of a contact."""
        reason = data.reason if data and data.reason else "Stopped by operator"
        contexts = await flow_engine.cancel_for_contact(contact_id, reason)
        return [ExecutionDTO.from_context(context) for context in contexts]


class EventController(Controller):
    """API controller receiving inbound CRM events.

    Each endpoint returns the executions the event resumed or started.

    Tags: Flow Events
    """

    path = "/events"
    tags: ClassVar[list[str]] = ["Flow Events"]

    @post("/button-click", status_code=HTTP_200_OK)
    async def button_click(self, data: ButtonClickDTO, flow_engine: FlowEngine) -> list[ExecutionDTO]:
        event = ButtonClicked(
            organization_id=data.organization_id,
            contact_id=data.contact_id,
            whatsapp_account_id=data.whatsapp_account_id,
            button_text=data.button_text,
            button_id=data.button_id,
            execution_id=data.execution_id,
            node_id=data.node_id,
        )
        return [ExecutionDTO.from_context(context) for context in await flow_engine.handle_event(event)]

    @post("/message", status_code=HTTP_200_OK)
    async def message(self, data: MessageDTO, flow_engine: FlowEngine) -> list[ExecutionDTO]:
        event = MessageReceived(
            organization_id=data.organization_id,
            contact_id=data.contact_id,
            whatsapp_account_id=data.whatsapp_account_id,
            text=data.text,
            message_id=data.message_id,
        )
        return [ExecutionDTO.from_context(context) for context in await flow_engine.handle_event(event)]

    @post("/webhook/{flow_id:uuid}", status_code=HTTP_200_OK)
    async def webhook(self, flow_id: UUID, data: WebhookEventDTO, flow_engine: FlowEngine) -> list[ExecutionDTO]:
        """Fire the webhook trigger of one flow."""
        event = WebhookReceived(
            organization_id=data.organization_id,
            contact_id=data.contact_id,
            flow_id=flow_id,
            payload=data.payload,
        )
        return [ExecutionDTO.from_context(context) for context in await flow_engine.handle_event(event)]

    @post("/contact-created", status_code=HTTP_200_OK)
    async def contact_created(self, data: ContactCreatedDTO, flow_engine: FlowEngine) -> list[ExecutionDTO]:
        event = ContactCreated(
            organization_id=data.organization_id,
            contact_id=data.contact_id,
            whatsapp_account_id=data.whatsapp_account_id,
        )
        return [ExecutionDTO.from_context(context) for context in await flow_engine.handle_event(event)]
