"""Action dispatcher.

Every externally visible side effect requested by a node goes through
:class:`ActionDispatcher`, which

- retries transient failures with a policy chosen by effect kind,
- raises :class:`SideEffectFailedError` once a failure is permanent or retries run out,
- applies contact mutations exactly once per step using an idempotency ledger, under
  a per-contact lock with optimistic version checks,
- writes an audit entry to the execution log for every dispatch.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import TYPE_CHECKING, Any

import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from litestar_flows.config import EngineConfig, RetryPolicy
from litestar_flows.core.context import ExecutionLogEntry, idempotency_key
from litestar_flows.core.types import EffectKind, LogStatus
from litestar_flows.engine.locks import KeyedLock
from litestar_flows.exceptions import FlowsError, ProviderError, SideEffectFailedError, WebhookTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from uuid import UUID

    from tenacity import RetryCallState

    from litestar_flows.core.context import ExecutionContext
    from litestar_flows.core.definition import Node
    from litestar_flows.core.models import ContactMutation, OutboundMessage, SideEffect, WebhookRequest
    from litestar_flows.core.protocols import (
        ContactStore,
        EffectLedger,
        ExecutionLogStore,
        MessageTransport,
        WebhookCaller,
    )

__all__ = ("ActionDispatcher", "is_transient", "retrying")

logger = structlog.get_logger(__name__)


def is_transient(exc: BaseException) -> bool:
    """Whether an exception is a retryable flows error."""
    return isinstance(exc, FlowsError) and exc.retryable


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "retrying_after_transient_error",
        attempt=retry_state.attempt_number,
        error=str(exc),
        sleep=retry_state.next_action.sleep if retry_state.next_action else None,
    )


def retrying(policy: RetryPolicy, retry: Callable[[BaseException], bool] = is_transient) -> AsyncRetrying:
    """Build a tenacity controller for a retry policy.

    Args:
        policy: Attempts and backoff.
        retry: Predicate selecting the exceptions worth another attempt.

    Returns:
        An ``AsyncRetrying`` that re-raises the last exception when giving up.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.backoff, max=policy.max_backoff),
        retry=retry_if_exception(retry),
        before_sleep=_log_retry,
        reraise=True,
    )


class ActionDispatcher:
    """Executes node side effects with retries, idempotency and auditing.

    Attributes:
        transport: Sends WhatsApp messages.
        webhooks: Performs webhook calls.
        contacts: Contact store for tag and field mutations.
        ledger: Records applied contact mutations by idempotency key.
        logs: Execution log receiving audit entries.
        config: Retry policies and the default webhook timeout.
    """

    def __init__(
        self,
        transport: MessageTransport,
        webhooks: WebhookCaller,
        contacts: ContactStore,
        ledger: EffectLedger,
        logs: ExecutionLogStore,
        config: EngineConfig | None = None,
    ) -> None:
        self.transport = transport
        self.webhooks = webhooks
        self.contacts = contacts
        self.ledger = ledger
        self.logs = logs
        self.config = config or EngineConfig()
        self._contact_locks = KeyedLock()
        self._policies: dict[EffectKind, RetryPolicy] = {
            EffectKind.MESSAGE: self.config.message_retry,
            EffectKind.WEBHOOK: self.config.webhook_retry,
            EffectKind.CONTACT: self.config.contact_retry,
        }
        self._handlers: dict[EffectKind, Callable[[Any, str, ExecutionContext], Awaitable[dict[str, Any]]]] = {
            EffectKind.MESSAGE: self._send_message,
            EffectKind.WEBHOOK: self._call_webhook,
            EffectKind.CONTACT: self._mutate_contact,
        }

    async def dispatch(self, effect: SideEffect, *, execution: ExecutionContext, node: Node) -> dict[str, Any]:
        """Perform one side effect for a step.

        Args:
            effect: The requested side effect.
            execution: The context being stepped. Its ``step_epoch`` scopes the
                idempotency key.
            node: The node requesting the effect.

        Returns:
            The effect's result, e.g. ``{"delivery_id": ...}`` for messages.

        Raises:
            SideEffectFailedError: On a permanent failure or when retries run out.
        """
        kind = effect.kind
        key = idempotency_key(execution.id, node.id, execution.step_epoch)
        handler = self._handlers[kind]
        attempts = 0
        log = logger.bind(execution_id=str(execution.id), node_id=node.id, effect=kind.value)

        try:
            async for attempt in retrying(self._policies[kind]):
                with attempt:
                    attempts += 1
                    result = await handler(effect, key, execution)
        except FlowsError as e:
            log.warning("side_effect_failed", attempts=attempts, error=str(e))
            await self._audit(execution, node, effect, key, LogStatus.ERROR, {"attempts": attempts}, str(e))
            raise SideEffectFailedError(kind.value, node.id, attempts, str(e)) from e

        log.debug("side_effect_dispatched", attempts=attempts)
        await self._audit(execution, node, effect, key, LogStatus.SUCCESS, {**result, "attempts": attempts})
        return result

    async def _audit(
        self,
        execution: ExecutionContext,
        node: Node,
        effect: SideEffect,
        key: str,
        status: LogStatus,
        output: dict[str, Any],
        error: str | None = None,
    ) -> None:
        entry = ExecutionLogEntry(
            execution_id=execution.id,
            node_id=node.id,
            node_type=node.type,
            status=status,
            input={"effect": effect.kind.value, "idempotency_key": key, **effect.describe()},
            output=output,
            error=error,
        )
        await self.logs.append(entry)

    async def _send_message(self, message: OutboundMessage, key: str, execution: ExecutionContext) -> dict[str, Any]:
        delivery_id = await self.transport.send(message)
        return {"delivery_id": delivery_id}

    async def _call_webhook(self, request: WebhookRequest, key: str, execution: ExecutionContext) -> dict[str, Any]:
        timeout = request.timeout or self.config.webhook_timeout
        request = replace(request, timeout=timeout)
        try:
            async with asyncio.timeout(timeout):
                response = await self.webhooks.call(request)
        except TimeoutError as e:
            raise WebhookTimeoutError(request.url, timeout) from e
        if response.status_code >= 400:
            msg = f"Webhook '{request.url}' returned HTTP {response.status_code}"
            raise ProviderError(msg, status_code=response.status_code)
        return {"status_code": response.status_code, "body": response.body}

    async def _mutate_contact(self, mutation: ContactMutation, key: str, execution: ExecutionContext) -> dict[str, Any]:
        async with self._contact_locks.acquire(execution.contact_id):
            recorded = await self.ledger.get(key)
            if recorded is not None:
                return {**recorded, "replayed": True}
            contact = await self.contacts.get(execution.contact_id)
            expected_version = contact.version
            changed = mutation.apply(contact)
            if changed:
                await self.contacts.save(contact, expected_version=expected_version)
            output = {**mutation.describe(), "changed": changed}
            await self.ledger.record(key, output)
            return output

    async def update_position(self, contact_id: UUID, flow_id: UUID, node_id: str | None, *, clear: bool = False) -> None:
        """Mirror a contact's position in a flow onto the contact record.

        Args:
            contact_id: The contact.
            flow_id: The flow the contact is in.
            node_id: The node the contact is on.
            clear: Clear the position instead, but only if it still points at ``flow_id``.
        """
        async with self._contact_locks.acquire(contact_id):
            async for attempt in retrying(self.config.contact_retry):
                with attempt:
                    contact = await self.contacts.get(contact_id)
                    if clear:
                        if contact.current_flow_id != flow_id:
                            return
                        contact.current_flow_id, contact.current_node_id = None, None
                    else:
                        contact.current_flow_id, contact.current_node_id = flow_id, node_id
                    await self.contacts.save(contact, expected_version=contact.version)
