"""Tests for the action dispatcher."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from litestar_flows.config import EngineConfig, RetryPolicy
from litestar_flows.core.context import ExecutionContext
from litestar_flows.core.models import (
    ContactMutation,
    MutationOperation,
    OutboundMessage,
    WebhookRequest,
    WebhookResponse,
)
from litestar_flows.core.types import LogStatus, NodeType
from litestar_flows.engine.dispatcher import ActionDispatcher, is_transient
from litestar_flows.exceptions import (
    InvalidRecipientError,
    ProviderError,
    RateLimitedError,
    SideEffectFailedError,
    WebhookConnectionError,
)
from tests.conftest import ORG, RecordingTransport, StubWebhookCaller, make_node

if TYPE_CHECKING:
    from litestar_flows.core.models import Contact
    from litestar_flows.engine.backend import StorageBackend


@pytest.fixture
def dispatcher(
    backend: StorageBackend,
    transport: RecordingTransport,
    webhooks: StubWebhookCaller,
    engine_config: EngineConfig,
) -> ActionDispatcher:
    return ActionDispatcher(
        transport=transport,
        webhooks=webhooks,
        contacts=backend.contacts,
        ledger=backend.ledger,
        logs=backend.logs,
        config=engine_config,
    )


@pytest.fixture
def execution(contact: Contact) -> ExecutionContext:
    return ExecutionContext(flow_id=uuid4(), contact_id=contact.id, organization_id=ORG, step_epoch=3)


TAG_NODE = make_node("tag", NodeType.ACTION_ADD_TAG, tag="vip")
SEND_NODE = make_node("send", NodeType.ACTION_SEND_TEXT, message="Oi")
HOOK_NODE = make_node("hook", NodeType.ACTION_WEBHOOK, url="https://crm.example.com/hook")


def text_message(contact: Contact) -> OutboundMessage:
    return OutboundMessage(to=contact.phone_number, message_type="text", content={"body": "Oi"})


@pytest.mark.unit
def test_is_transient() -> None:
    assert is_transient(RateLimitedError())
    assert is_transient(ProviderError("boom", status_code=502))
    assert not is_transient(ProviderError("nope", status_code=400))
    assert not is_transient(ValueError("not a flows error"))


@pytest.mark.unit
@pytest.mark.asyncio
class TestContactMutations:
    """Tests for exactly-once contact mutations."""

    async def test_mutation_is_applied_once_per_key(
        self,
        dispatcher: ActionDispatcher,
        execution: ExecutionContext,
        backend: StorageBackend,
        contact: Contact,
    ) -> None:
        mutation = ContactMutation(MutationOperation.ADD_TAG, "vip")

        first = await dispatcher.dispatch(mutation, execution=execution, node=TAG_NODE)
        replay = await dispatcher.dispatch(mutation, execution=execution, node=TAG_NODE)

        assert first == {"operation": "add_tag", "key": "vip", "value": None, "changed": True}
        assert replay == {**first, "replayed": True}
        stored = await backend.contacts.get(contact.id)
        assert stored.tags == ["lead", "vip"]
        assert stored.version == contact.version + 1
        assert f"{execution.id}:tag:3" in backend.ledger

    async def test_new_step_epoch_applies_again(
        self,
        dispatcher: ActionDispatcher,
        execution: ExecutionContext,
        backend: StorageBackend,
        contact: Contact,
    ) -> None:
        set_city = ContactMutation(MutationOperation.SET_FIELD, "city", "Olinda")
        await dispatcher.dispatch(set_city, execution=execution, node=TAG_NODE)
        execution.step_epoch += 1
        result = await dispatcher.dispatch(set_city, execution=execution, node=TAG_NODE)

        assert result["changed"] is False
        assert (await backend.contacts.get(contact.id)).custom_fields == {"city": "Olinda"}

    async def test_concurrent_mutations_of_one_contact(
        self,
        dispatcher: ActionDispatcher,
        backend: StorageBackend,
        contact: Contact,
    ) -> None:
        contexts = [ExecutionContext(flow_id=uuid4(), contact_id=contact.id, organization_id=ORG) for _ in range(5)]
        await asyncio.gather(
            *(
                dispatcher.dispatch(ContactMutation(MutationOperation.ADD_TAG, f"t{i}"), execution=ctx, node=TAG_NODE)
                for i, ctx in enumerate(contexts)
            )
        )

        stored = await backend.contacts.get(contact.id)
        assert sorted(stored.tags) == ["lead", "t0", "t1", "t2", "t3", "t4"]

    async def test_update_position(
        self, dispatcher: ActionDispatcher, backend: StorageBackend, contact: Contact
    ) -> None:
        flow_id, other_flow = uuid4(), uuid4()
        await dispatcher.update_position(contact.id, flow_id, "menu")
        stored = await backend.contacts.get(contact.id)
        assert (stored.current_flow_id, stored.current_node_id) == (flow_id, "menu")

        await dispatcher.update_position(contact.id, other_flow, None, clear=True)
        assert (await backend.contacts.get(contact.id)).current_flow_id == flow_id

        await dispatcher.update_position(contact.id, flow_id, None, clear=True)
        stored = await backend.contacts.get(contact.id)
        assert (stored.current_flow_id, stored.current_node_id) == (None, None)


@pytest.mark.unit
@pytest.mark.asyncio
class TestMessages:
    """Tests for message dispatch."""

    async def test_send_returns_delivery_id_and_audits(
        self,
        dispatcher: ActionDispatcher,
        execution: ExecutionContext,
        backend: StorageBackend,
        contact: Contact,
    ) -> None:
        result = await dispatcher.dispatch(text_message(contact), execution=execution, node=SEND_NODE)

        assert result == {"delivery_id": "wamid.1"}
        [entry] = await backend.logs.list_for_execution(execution.id)
        assert entry.status is LogStatus.SUCCESS
        assert entry.input["text"] == {"body": "Oi"}
        assert entry.output == {"delivery_id": "wamid.1", "attempts": 1}

    async def test_rate_limits_are_retried(
        self,
        dispatcher: ActionDispatcher,
        execution: ExecutionContext,
        transport: RecordingTransport,
        contact: Contact,
    ) -> None:
        transport.failures = [RateLimitedError(), ProviderError("bad gateway", status_code=502)]

        result = await dispatcher.dispatch(text_message(contact), execution=execution, node=SEND_NODE)

        assert result == {"delivery_id": "wamid.1"}
        assert transport.calls == 3

    async def test_retries_run_out(
        self,
        dispatcher: ActionDispatcher,
        execution: ExecutionContext,
        transport: RecordingTransport,
        backend: StorageBackend,
        contact: Contact,
    ) -> None:
        transport.failures = [RateLimitedError() for _ in range(3)]

        with pytest.raises(SideEffectFailedError) as exc_info:
            await dispatcher.dispatch(text_message(contact), execution=execution, node=SEND_NODE)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.__cause__, RateLimitedError)
        [entry] = await backend.logs.list_for_execution(execution.id)
        assert entry.status is LogStatus.ERROR
        assert entry.output == {"attempts": 3}

    async def test_permanent_failure_is_not_retried(
        self,
        dispatcher: ActionDispatcher,
        execution: ExecutionContext,
        transport: RecordingTransport,
        contact: Contact,
    ) -> None:
        transport.failures = [InvalidRecipientError(contact.phone_number)]

        with pytest.raises(SideEffectFailedError, match="after 1 attempt:"):
            await dispatcher.dispatch(text_message(contact), execution=execution, node=SEND_NODE)
        assert transport.calls == 1


@pytest.mark.unit
@pytest.mark.asyncio
class TestWebhooks:
    """Tests for webhook dispatch."""

    async def test_success(
        self, dispatcher: ActionDispatcher, execution: ExecutionContext, webhooks: StubWebhookCaller
    ) -> None:
        webhooks.responses.append(WebhookResponse(status_code=201, body={"id": 9}))

        result = await dispatcher.dispatch(
            WebhookRequest(url="https://crm.example.com/hook", body={"a": 1}), execution=execution, node=HOOK_NODE
        )

        assert result == {"status_code": 201, "body": {"id": 9}}
        assert webhooks.requests[0].timeout == dispatcher.config.webhook_timeout

    async def test_client_error_fails_without_retry(
        self, dispatcher: ActionDispatcher, execution: ExecutionContext, webhooks: StubWebhookCaller
    ) -> None:
        webhooks.responses.append(WebhookResponse(status_code=404, body="not found"))

        with pytest.raises(SideEffectFailedError, match="HTTP 404") as exc_info:
            await dispatcher.dispatch(WebhookRequest(url="https://crm.example.com/hook"), execution=execution, node=HOOK_NODE)

        assert exc_info.value.attempts == 1
        assert len(webhooks.requests) == 1

    async def test_server_errors_are_retried(
        self, dispatcher: ActionDispatcher, execution: ExecutionContext, webhooks: StubWebhookCaller
    ) -> None:
        webhooks.responses.extend(WebhookResponse(status_code=503) for _ in range(3))

        with pytest.raises(SideEffectFailedError) as exc_info:
            await dispatcher.dispatch(WebhookRequest(url="https://crm.example.com/hook"), execution=execution, node=HOOK_NODE)

        assert exc_info.value.attempts == 3
        assert len(webhooks.requests) == 3

    async def test_connection_error_then_success(
        self, dispatcher: ActionDispatcher, execution: ExecutionContext, webhooks: StubWebhookCaller
    ) -> None:
        webhooks.responses.extend(
            [WebhookConnectionError("https://crm.example.com/hook", "refused"), WebhookResponse(status_code=200)]
        )

        result = await dispatcher.dispatch(
            WebhookRequest(url="https://crm.example.com/hook"), execution=execution, node=HOOK_NODE
        )

        assert result["status_code"] == 200
        assert len(webhooks.requests) == 2

    async def test_timeout(
        self, dispatcher: ActionDispatcher, execution: ExecutionContext, webhooks: StubWebhookCaller
    ) -> None:
        webhooks.delay = 1.0

        with pytest.raises(SideEffectFailedError, match="timed out") as exc_info:
            await dispatcher.dispatch(
                WebhookRequest(url="https://crm.example.com/slow", timeout=0.01), execution=execution, node=HOOK_NODE
            )

        assert exc_info.value.attempts == 3


@pytest.mark.unit
def test_retry_policy_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError, match="at least 1"):
        RetryPolicy(max_attempts=0)
