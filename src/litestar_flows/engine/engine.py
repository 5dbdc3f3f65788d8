"""The flow execution engine.

:class:`FlowEngine` drives execution contexts through flow graphs as a persisted state
machine::

    trigger ──> running ──┬──> waiting_external ──(event)──> running
                          ├──> waiting_timer ──(scheduler)──> running
                          ├──> completed
                          ├──> failed
                          └──> cancelled (operator, from any non-terminal state)

A suspended context holds no task or lock. It is rehydrated from storage by the
event or scheduler callback that resumes it. Steps of one context run under a
per-context lock and every write is a compare-and-set on the expected status, so an
operator cancellation racing a running step wins and stops the loop.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError

from litestar_flows.config import EngineConfig
from litestar_flows.core.context import ExecutionContext, ExecutionLogEntry, WaitState
from litestar_flows.core.types import NO_MATCH_HANDLE, ExecutionStatus, LogStatus, WaitKind
from litestar_flows.engine.dispatcher import ActionDispatcher, retrying
from litestar_flows.engine.graph import FlowGraph
from litestar_flows.engine.locks import KeyedLock
from litestar_flows.engine.pool import WorkerPool
from litestar_flows.engine.registry import NodeTypeRegistry
from litestar_flows.engine.scheduler import Scheduler
from litestar_flows.engine.transport import HttpxWebhookCaller
from litestar_flows.exceptions import (
    DuplicateTriggerError,
    FlowsError,
    GraphInvalidError,
    InvalidTransitionError,
    StepLimitExceededError,
    StorageConflictError,
    UnhandledBranchError,
)
from litestar_flows.nodes.base import NodeContext, NodeOutcome, ResumeSignal, Suspension
from litestar_flows.nodes.triggers import TriggerConfig

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from uuid import UUID

    from litestar_flows.core.definition import Flow, Node
    from litestar_flows.core.events import FlowEvent
    from litestar_flows.core.protocols import ExecutionStore, FlowStore, MessageTransport, WebhookCaller
    from litestar_flows.engine.backend import StorageBackend

__all__ = ("FlowEngine",)

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowEngine:
    """Executes flows for contacts.

    Attributes:
        backend: The stores the engine runs on.
        registry: Node type registry.
        config: Engine tunables.
        dispatcher: Side-effect dispatcher.
        scheduler: Durable scheduler calling :meth:`resume_timer`.
        pool: Worker pool, when runs are queued instead of awaited inline.

    Example:
        >>> engine = FlowEngine(memory_backend(), transport=CloudApiTransport(...))
        >>> context = await engine.trigger(flow.id, contact.id)
        >>> await engine.handle_event(ButtonClicked(organization_id="org", contact_id=contact.id, button_text="Yes"))
    """

    def __init__(
        self,
        backend: StorageBackend,
        transport: MessageTransport,
        webhooks: WebhookCaller | None = None,
        *,
        registry: NodeTypeRegistry | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        use_worker_pool: bool = False,
    ) -> None:
        """Initialize the engine.

        Args:
            backend: The stores to run on.
            transport: WhatsApp message transport.
            webhooks: Webhook caller. Defaults to an httpx based caller.
            registry: Node type registry. Defaults to the built-in node types.
            config: Engine tunables.
            clock: Source of the current time.
            use_worker_pool: Queue runs on a worker pool started by :meth:`start`
                instead of running them inline.
        """
        self.backend = backend
        self.registry = registry or NodeTypeRegistry.default()
        self.config = config or EngineConfig()
        self.clock = clock or _utcnow
        self.dispatcher = ActionDispatcher(
            transport=transport,
            webhooks=webhooks or HttpxWebhookCaller(),
            contacts=backend.contacts,
            ledger=backend.ledger,
            logs=backend.logs,
            config=self.config,
        )
        self.scheduler = Scheduler(
            backend.schedules,
            self.resume_timer,
            poll_interval=self.config.scheduler_poll_interval,
            batch_size=self.config.scheduler_batch_size,
        )
        self.pool = WorkerPool(self.run, size=self.config.worker_count) if use_worker_pool else None
        self._locks = KeyedLock()

    @property
    def flows(self) -> FlowStore:
        return self.backend.flows

    @property
    def executions(self) -> ExecutionStore:
        return self.backend.executions

    async def start(self) -> None:
        """Start the scheduler loop and the worker pool."""
        await self.scheduler.start()
        if self.pool is not None:
            await self.pool.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        if self.pool is not None:
            await self.pool.stop()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def trigger(
        self,
        flow_id: UUID,
        contact_id: UUID,
        trigger_data: dict[str, Any] | None = None,
    ) -> ExecutionContext | None:
        """Start a flow for a contact.

        Args:
            flow_id: The flow to start.
            contact_id: The contact entering the flow.
            trigger_data: Data of the triggering event, copied into the flow context.

        Returns:
            The new execution context after its first run, or ``None`` when the flow
            is not active, the re-entry policy refuses a new run, or the contact
            already has an open execution of the flow.

        Raises:
            FlowNotFoundError: If the flow does not exist.
            ContactNotFoundError: If the contact does not exist.
        """
        log = logger.bind(flow_id=str(flow_id), contact_id=str(contact_id))
        definition = await self.flows.load_graph(flow_id)
        flow = definition.flow
        if not flow.is_triggerable:
            log.info("trigger_ignored_flow_inactive", status=flow.status)
            return None

        trigger_node = FlowGraph.from_definition(definition).trigger
        if trigger_node is None:
            raise GraphInvalidError([f"Flow '{flow.id}' has no single trigger node"])

        now = self.clock()
        if not await self._reentry_allowed(flow, contact_id, now):
            log.info("trigger_ignored_reentry_policy")
            return None

        contact = await self.backend.contacts.get(contact_id)
        context = ExecutionContext(
            flow_id=flow.id,
            contact_id=contact.id,
            organization_id=flow.organization_id,
            current_node_id=trigger_node.id,
            trigger_data=dict(trigger_data or {}),
            started_at=now,
            updated_at=now,
        )
        try:
            context = await self._storage(self.executions.create_if_absent, context)
        except DuplicateTriggerError:
            log.info("duplicate_trigger_ignored")
            return None

        await self._storage(self.flows.touch_last_execution, flow.id, now)
        await self._mirror_position(context)
        log.info("execution_started", execution_id=str(context.id), trigger_node=trigger_node.id)
        return await self._enqueue(context.id)

    async def handle_event(self, event: FlowEvent) -> list[ExecutionContext]:
        """Route an inbound event.

        The event first resumes the contact's suspended contexts waiting for it. Only
        when it resumed nothing does it fire matching flows, and not while a human
        operator owns one of the contact's conversations.

        Args:
            event: The inbound event.

        Returns:
            The resumed or newly started execution contexts.
        """
        log = logger.bind(event=type(event).__name__, contact_id=str(event.contact_id))
        resumed = await self._resume_waiting(event)
        if resumed:
            log.info("event_resumed_executions", count=len(resumed))
            return resumed

        open_contexts = await self.executions.find_open(event.contact_id)
        if any(context.flow_paused for context in open_contexts):
            log.info("event_ignored_human_handoff")
            return []

        started: list[ExecutionContext] = []
        for trigger_type in event.trigger_types:
            spec = self.registry.get_trigger(trigger_type)
            for flow in await self.flows.find_triggerable(event.organization_id, trigger_type):
                if not event.targets(flow.id):
                    continue
                if flow.whatsapp_account_id and event.whatsapp_account_id not in (None, flow.whatsapp_account_id):
                    continue
                try:
                    config = spec.parse_config(flow.trigger_config)
                except ValidationError:
                    log.warning("trigger_config_invalid", flow_id=str(flow.id))
                    continue
                if not spec.matches(config, event):
                    continue
                context = await self.trigger(flow.id, event.contact_id, event.trigger_data())
                if context is not None:
                    started.append(context)
        return started

    async def resume_timer(self, execution_id: UUID, token: int) -> ExecutionContext | None:
        """Scheduler callback for a due resume.

        A no-op unless the context is still waiting on the suspension identified by
        ``token``, so duplicate deliveries resume at most once.

        Args:
            execution_id: The waiting context.
            token: The ``step_epoch`` recorded when the resume was scheduled.

        Returns:
            The context after resuming, or ``None`` if nothing happened.
        """
        return await self._resume(execution_id, ResumeSignal(kind=WaitKind.TIMER), token=token)

    async def release(self, execution_id: UUID, data: dict[str, Any] | None = None) -> ExecutionContext:
        """End a human handoff and continue the flow.

        Args:
            execution_id: The context paused by a transfer-to-human node.
            data: Variables to merge into the flow context.

        Returns:
            The context after resuming.

        Raises:
            InvalidTransitionError: If the context is not waiting for an operator.
        """
        context = await self._resume(execution_id, ResumeSignal(kind=WaitKind.HUMAN, data=dict(data or {})))
        if context is None:
            current = await self.executions.get(execution_id)
            raise InvalidTransitionError(execution_id, current.status, "release")
        return context

    async def cancel(self, execution_id: UUID, reason: str = "Cancelled by operator") -> ExecutionContext:
        """Cancel a non-terminal execution.

        Safe on suspended contexts: pending scheduled resumes are dropped. Side effects
        of steps that already ran are not rolled back.

        Raises:
            ExecutionNotFoundError: If the context does not exist.
            InvalidTransitionError: If the context is already terminal.
        """

        async def flip() -> ExecutionContext:
            context = await self.executions.get(execution_id)
            if context.is_terminal:
                raise InvalidTransitionError(execution_id, context.status, ExecutionStatus.CANCELLED)
            expected = context.status
            context.status = ExecutionStatus.CANCELLED
            context.error = reason
            context.completed_at = context.updated_at = self.clock()
            context.clear_wait()
            if not await self.executions.update(context, expected):
                raise StorageConflictError("execution", execution_id)
            return context

        context = await self._storage(flip)
        logger.info("execution_cancelled", execution_id=str(execution_id), reason=reason)
        await self._on_terminal(context)
        return context

    async def cancel_for_contact(self, contact_id: UUID, reason: str = "Stopped by operator") -> list[ExecutionContext]:
        """Cancel every open execution of a contact.

        Returns:
            The cancelled contexts.
        """
        cancelled = []
        for context in await self.executions.find_open(contact_id):
            try:
                cancelled.append(await self.cancel(context.id, reason))
            except InvalidTransitionError:
                logger.debug("execution_finished_before_cancel", execution_id=str(context.id))
        return cancelled

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_execution(self, execution_id: UUID) -> ExecutionContext:
        return await self.executions.get(execution_id)

    async def get_execution_log(self, execution_id: UUID) -> list[ExecutionLogEntry]:
        """Get the execution log of a context, oldest first.

        Raises:
            ExecutionNotFoundError: If the context does not exist.
        """
        await self.executions.get(execution_id)
        return await self.backend.logs.list_for_execution(execution_id)

    async def list_executions(
        self,
        flow_id: UUID,
        status: ExecutionStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[ExecutionContext]:
        await self.flows.get_flow(flow_id)
        return await self.executions.list_for_flow(flow_id, status=status, limit=limit, offset=offset)

    async def get_contact_executions(self, contact_id: UUID, *, open_only: bool = False) -> list[ExecutionContext]:
        """Per-contact execution status."""
        if open_only:
            return await self.executions.find_open(contact_id)
        return await self.executions.list_for_contact(contact_id)

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    async def run(self, execution_id: UUID) -> ExecutionContext:
        """Step a running context until it suspends or terminates.

        Args:
            execution_id: The context to run.

        Returns:
            The context in its resulting state.
        """
        async with self._locks.acquire(execution_id):
            context = await self.executions.get(execution_id)
            if context.status is not ExecutionStatus.RUNNING:
                return context
            definition = await self.flows.load_graph(context.flow_id)
            graph = FlowGraph.from_definition(definition)

            steps = 0
            while context.status is ExecutionStatus.RUNNING:
                if steps >= self.config.max_steps_per_run:
                    return await self._fail(context, StepLimitExceededError(context.id, self.config.max_steps_per_run))
                steps += 1
                context = await self._step(context, graph, definition.flow)
            return context

    async def _step(self, context: ExecutionContext, graph: FlowGraph, flow: Flow) -> ExecutionContext:
        node = graph.get_node(context.current_node_id) if context.current_node_id else None
        if node is None:
            error = GraphInvalidError([f"Node '{context.current_node_id}' does not exist"])
            return await self._fail(context, error)

        log = logger.bind(execution_id=str(context.id), node_id=node.id, node_type=node.type.value)
        try:
            spec = self.registry.get(node.type)
            config = self.registry.parse_config(node)
            contact = await self.backend.contacts.get(context.contact_id)
            node_context = NodeContext(context, contact, self.clock(), flow.whatsapp_account_id)
            outcome = spec.evaluate(node_context, config)
            result: dict[str, Any] = {}
            if outcome.effect is not None:
                result = await self.dispatcher.dispatch(outcome.effect, execution=context, node=node)
            patch = {**outcome.patch, **spec.apply_result(config, result)}
        except FlowsError as e:
            log.info("step_failed", error=str(e))
            return await self._fail(context, e, node)
        except Exception as e:
            log.exception("step_crashed")
            return await self._fail(context, e, node)

        context.flow_context.update(patch)
        context.step_epoch += 1
        await self._log(
            context,
            node,
            LogStatus.SUCCESS,
            input=config.model_dump(mode="json", by_alias=True, exclude_none=True),
            output={"handle": None if outcome.terminal or outcome.suspension else outcome.handle, "patch": patch},
        )
        log.debug("step_completed", handle=outcome.handle)

        if outcome.terminal:
            return await self._finish(context, ExecutionStatus.COMPLETED)
        if outcome.suspension is not None:
            return await self._suspend(context, node, outcome.suspension)
        return await self._advance(context, graph, node, outcome)

    async def _advance(
        self,
        context: ExecutionContext,
        graph: FlowGraph,
        node: Node,
        outcome: NodeOutcome,
    ) -> ExecutionContext:
        target = graph.resolve(node.id, outcome.handle)
        if target is None:
            if outcome.handle == NO_MATCH_HANDLE:
                return await self._fail(context, UnhandledBranchError(node.id, outcome.observed), node)
            return await self._finish(context, ExecutionStatus.COMPLETED)
        context.current_node_id = target
        return await self._save(context, ExecutionStatus.RUNNING)

    async def _suspend(self, context: ExecutionContext, node: Node, suspension: Suspension) -> ExecutionContext:
        context.wait = WaitState(kind=suspension.kind, node_id=node.id, options=list(suspension.options))
        context.resume_at = suspension.resume_at
        context.flow_paused = suspension.kind is WaitKind.HUMAN
        if suspension.kind is WaitKind.TIMER:
            context.status = ExecutionStatus.WAITING_TIMER
        else:
            context.status = ExecutionStatus.WAITING_EXTERNAL

        # Written before the context so a waiting_timer row always has a resume.
        # A resume left behind by a failed save is ignored when it fires.
        if suspension.resume_at is not None:
            await self._storage(self.scheduler.schedule_resume, context.id, suspension.resume_at, context.step_epoch)
        saved = await self._save(context, ExecutionStatus.RUNNING)
        if saved is not context:
            return saved
        await self._mirror_position(context)
        logger.info(
            "execution_suspended",
            execution_id=str(context.id),
            node_id=node.id,
            wait=suspension.kind.value,
            resume_at=suspension.resume_at.isoformat() if suspension.resume_at else None,
        )
        return context

    async def _resume(
        self,
        execution_id: UUID,
        signal: ResumeSignal,
        token: int | None = None,
    ) -> ExecutionContext | None:
        async with self._locks.acquire(execution_id):
            context = await self.executions.get(execution_id)
            wait = context.wait
            if not context.status.is_waiting or wait is None:
                return None
            if token is not None and token != context.step_epoch:
                return None
            if signal.kind is WaitKind.TIMER:
                if context.resume_at is None:
                    return None
            elif signal.kind is not wait.kind:
                return None

            definition = await self.flows.load_graph(context.flow_id)
            graph = FlowGraph.from_definition(definition)
            node = graph.get_node(wait.node_id)
            if node is None:
                return await self._fail(context, GraphInvalidError([f"Node '{wait.node_id}' does not exist"]))

            try:
                spec = self.registry.get(node.type)
                config = self.registry.parse_config(node)
                contact = await self.backend.contacts.get(context.contact_id)
                node_context = NodeContext(context, contact, self.clock(), definition.flow.whatsapp_account_id)
                outcome = spec.resume(node_context, config, signal)
            except FlowsError as e:
                return await self._fail(context, e, node)

            expected = context.status
            context.flow_context.update(outcome.patch)
            context.clear_wait()
            context.status = ExecutionStatus.RUNNING
            context.step_epoch += 1
            saved = await self._save(context, expected)
            if saved is not context:
                return None

            await self._storage(self.scheduler.cancel, context.id)
            await self._log(
                context,
                node,
                LogStatus.SUCCESS,
                input={"resumed_by": signal.kind.value},
                output={"handle": outcome.handle, "patch": outcome.patch},
            )
            logger.info("execution_resumed", execution_id=str(context.id), node_id=node.id, by=signal.kind.value)
            context = await self._advance(context, graph, node, outcome)

        if context.status is ExecutionStatus.RUNNING:
            return await self._enqueue(context.id)
        return context

    async def _resume_waiting(self, event: FlowEvent) -> list[ExecutionContext]:
        if event.resumes is None:
            return []
        data = {key: value for key, value in event.trigger_data().items() if key != "event"}
        signal = ResumeSignal(
            kind=event.resumes,
            data=data,
            button_text=data.get("button_text"),
            text=data.get("message"),
        )
        resumed = []
        for context in await self.executions.find_waiting(event.contact_id, event.resumes):
            if context.organization_id != event.organization_id or context.wait is None:
                continue
            if not event.accepts_wait(context.id, context.wait.node_id):
                continue
            result = await self._resume(context.id, signal)
            if result is not None:
                resumed.append(result)
        return resumed

    # ------------------------------------------------------------------
    # Transitions and persistence
    # ------------------------------------------------------------------

    async def _fail(self, context: ExecutionContext, error: Exception, node: Node | None = None) -> ExecutionContext:
        context.error_kind = error.kind if isinstance(error, FlowsError) else "InternalError"
        context.error = str(error)
        await self._log(
            context,
            node,
            LogStatus.ERROR,
            output={"error_kind": context.error_kind},
            error=context.error,
        )
        logger.warning(
            "execution_failed",
            execution_id=str(context.id),
            node_id=node.id if node else context.current_node_id,
            error_kind=context.error_kind,
            error=context.error,
        )
        return await self._finish(context, ExecutionStatus.FAILED)

    async def _finish(self, context: ExecutionContext, status: ExecutionStatus) -> ExecutionContext:
        expected = context.status
        context.status = status
        context.completed_at = self.clock()
        context.clear_wait()
        if status is ExecutionStatus.COMPLETED:
            context.current_node_id = None
        saved = await self._save(context, expected)
        if saved is context:
            await self._on_terminal(context)
        return saved

    async def _on_terminal(self, context: ExecutionContext) -> None:
        await self._storage(self.flows.record_outcome, context.flow_id, context.status)
        await self._storage(self.scheduler.cancel, context.id)
        await self._mirror_position(context, clear=True)
        logger.info("execution_finished", execution_id=str(context.id), status=context.status.value)

    async def _save(self, context: ExecutionContext, expected: ExecutionStatus) -> ExecutionContext:
        """Compare-and-set write.

        Returns:
            ``context`` itself when written, otherwise the concurrently stored state.
        """
        context.updated_at = self.clock()
        if await self._storage(self.executions.update, context, expected):
            return context
        current = await self.executions.get(context.id)
        logger.info(
            "execution_changed_concurrently",
            execution_id=str(context.id),
            expected=expected.value,
            actual=current.status.value,
        )
        return current

    async def _storage(self, operation: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        async for attempt in retrying(
            self.config.storage_retry,
            retry=lambda exc: isinstance(exc, StorageConflictError),
        ):
            with attempt:
                result = await operation(*args)
        return result

    async def _enqueue(self, execution_id: UUID) -> ExecutionContext:
        if self.pool is not None and self.pool.running:
            await self.pool.submit(execution_id)
            return await self.executions.get(execution_id)
        return await self.run(execution_id)

    async def _reentry_allowed(self, flow: Flow, contact_id: UUID, now: datetime) -> bool:
        previous = await self.executions.last_finished(flow.id, contact_id)
        if previous is None:
            return True
        policy = TriggerConfig.model_validate(flow.trigger_config)
        if not policy.allow_reentry:
            return False
        if policy.reentry_cooldown_minutes and previous.completed_at is not None:
            return now - previous.completed_at >= timedelta(minutes=policy.reentry_cooldown_minutes)
        return True

    async def _mirror_position(self, context: ExecutionContext, *, clear: bool = False) -> None:
        try:
            await self.dispatcher.update_position(
                context.contact_id,
                context.flow_id,
                context.current_node_id,
                clear=clear,
            )
        except FlowsError as e:
            logger.warning("contact_position_update_failed", contact_id=str(context.contact_id), error=str(e))

    async def _log(
        self,
        context: ExecutionContext,
        node: Node | None,
        status: LogStatus,
        *,
        input: dict[str, Any] | None = None,  # noqa: A002
        output: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        entry = ExecutionLogEntry(
            execution_id=context.id,
            node_id=node.id if node else (context.current_node_id or ""),
            node_type=node.type if node else None,
            status=status,
            input=input or {},
            output=output or {},
            error=error,
        )
        await self.backend.logs.append(entry)
