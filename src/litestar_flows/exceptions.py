"""Exception hierarchy for litestar-flows."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from uuid import UUID

__all__ = (
    "ConfigInvalidError",
    "ContactNotFoundError",
    "DuplicateTriggerError",
    "ExecutionNotFoundError",
    "FlowNotFoundError",
    "FlowsError",
    "GraphInvalidError",
    "InvalidRecipientError",
    "InvalidTransitionError",
    "ProviderError",
    "RateLimitedError",
    "SideEffectFailedError",
    "StepLimitExceededError",
    "StorageConflictError",
    "UnhandledBranchError",
    "UnknownNodeTypeError",
    "WebhookConnectionError",
    "WebhookTimeoutError",
)


class FlowsError(Exception):
    """Base exception for all litestar-flows errors.

    Attributes:
        retryable: Whether the failure is transient. The action dispatcher and the
            engine's storage retry only retry errors that set this flag.
    """

    retryable: bool = False

    @property
    def kind(self) -> str:
        """Short error kind recorded on failed execution contexts."""
        return type(self).__name__.removesuffix("Error")


class FlowNotFoundError(FlowsError):
    """Raised when a flow does not exist.

    Attributes:
        flow_id: The ID of the flow that was not found.
    """

    def __init__(self, flow_id: UUID) -> None:
        self.flow_id = flow_id
        super().__init__(f"Flow '{flow_id}' not found")


class ExecutionNotFoundError(FlowsError):
    """Raised when an execution context does not exist.

    Attributes:
        execution_id: The ID of the execution context that was not found.
    """

    def __init__(self, execution_id: UUID) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' not found")


class ContactNotFoundError(FlowsError):
    """Raised when the contact store has no record for a contact.

    Attributes:
        contact_id: The ID of the missing contact.
    """

    def __init__(self, contact_id: UUID) -> None:
        self.contact_id = contact_id
        super().__init__(f"Contact '{contact_id}' not found")


class StorageConflictError(FlowsError):
    """Raised when a write lost a race with a concurrent writer.

    The engine retries these transparently with exponential backoff before letting
    them surface to the caller.

    Attributes:
        entity: Name of the record type that conflicted.
        entity_id: Identifier of the conflicting record.
    """

    retryable = True

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"Concurrent modification of {entity} '{entity_id}'")


class GraphInvalidError(FlowsError):
    """Raised when a flow graph fails structural validation.

    Blocks activation and never reaches a running contact.

    Attributes:
        errors: Every structural problem found, in detection order.
    """

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        summary = "; ".join(self.errors[:5])
        if len(self.errors) > 5:
            summary += f" (+{len(self.errors) - 5} more)"
        super().__init__(f"Flow graph is invalid: {summary}")


class ConfigInvalidError(FlowsError):
    """Raised when one or more node configurations violate their schema.

    Attributes:
        errors: Mapping of node ID to the list of messages for that node.
    """

    def __init__(self, errors: Mapping[str, Sequence[str]]) -> None:
        self.errors = {node_id: list(messages) for node_id, messages in errors.items()}
        details = "; ".join(f"{node_id}: {', '.join(messages)}" for node_id, messages in self.errors.items())
        super().__init__(f"Invalid node configuration: {details}")

    def as_list(self) -> list[str]:
        """Flatten the per-node errors into readable lines."""
        return [f"Node '{node_id}': {message}" for node_id, messages in self.errors.items() for message in messages]


class UnknownNodeTypeError(FlowsError):
    """Raised when a node type has no entry in the node type registry.

    Attributes:
        node_type: The unregistered type.
    """

    def __init__(self, node_type: str) -> None:
        self.node_type = node_type
        super().__init__(f"Node type '{node_type}' is not registered")


class UnhandledBranchError(FlowsError):
    """Raised when no configured output matches the observed value and no no-match edge exists.

    Attributes:
        node_id: The branching node.
        observed: The value that did not match, usually the clicked button text.
    """

    def __init__(self, node_id: str, observed: str | None) -> None:
        self.node_id = node_id
        self.observed = observed
        super().__init__(f"Node '{node_id}' has no output for {observed!r}")


class SideEffectFailedError(FlowsError):
    """Raised when a side effect failed permanently or exhausted its retries.

    Attributes:
        effect: The effect kind (message, webhook, contact).
        node_id: The node that requested the effect.
        attempts: Number of attempts made.
    """

    def __init__(self, effect: str, node_id: str, attempts: int, reason: str) -> None:
        self.effect = effect
        self.node_id = node_id
        self.attempts = attempts
        self.reason = reason
        plural = "attempt" if attempts == 1 else "attempts"
        super().__init__(f"{effect} effect of node '{node_id}' failed after {attempts} {plural}: {reason}")


class DuplicateTriggerError(FlowsError):
    """Raised when a contact already has a non-terminal execution of a flow.

    Benign: :meth:`FlowEngine.trigger` logs and swallows it.

    Attributes:
        flow_id: The flow that was triggered.
        contact_id: The contact that was triggered.
    """

    def __init__(self, flow_id: UUID, contact_id: UUID) -> None:
        self.flow_id = flow_id
        self.contact_id = contact_id
        super().__init__(f"Contact '{contact_id}' already has an open execution of flow '{flow_id}'")


class InvalidTransitionError(FlowsError):
    """Raised when an execution context cannot move to the requested state.

    Attributes:
        execution_id: The execution context.
        current: Its current status.
        target: The requested status or action.
    """

    def __init__(self, execution_id: UUID, current: str, target: str) -> None:
        self.execution_id = execution_id
        self.current = current
        self.target = target
        super().__init__(f"Execution '{execution_id}' cannot go from '{current}' to '{target}'")


class StepLimitExceededError(FlowsError):
    """Raised when a single run advances more nodes than the configured cap."""

    def __init__(self, execution_id: UUID, limit: int) -> None:
        self.execution_id = execution_id
        self.limit = limit
        super().__init__(f"Execution '{execution_id}' exceeded {limit} steps in one run")


class RateLimitedError(FlowsError):
    """Raised by a message transport when the provider throttles sends."""

    retryable = True

    def __init__(self, message: str = "Message provider rate limit reached") -> None:
        super().__init__(message)


class InvalidRecipientError(FlowsError):
    """Raised by a message transport when the recipient cannot receive messages.

    Attributes:
        recipient: The phone number that was rejected.
    """

    def __init__(self, recipient: str, detail: str | None = None) -> None:
        self.recipient = recipient
        msg = f"Invalid recipient '{recipient}'"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class ProviderError(FlowsError):
    """Raised when a provider (message API or webhook target) reports a failure.

    Attributes:
        status_code: HTTP status returned by the provider, if any.
        retryable: True for 5xx responses.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        self.retryable = status_code is not None and status_code >= 500
        super().__init__(message)


class WebhookTimeoutError(FlowsError):
    """Raised when a webhook call exceeds its timeout."""

    retryable = True

    def __init__(self, url: str, timeout: float) -> None:
        self.url = url
        self.timeout = timeout
        super().__init__(f"Webhook '{url}' timed out after {timeout}s")


class WebhookConnectionError(FlowsError):
    """Raised when a webhook target refuses or drops the connection."""

    retryable = True

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        super().__init__(f"Webhook '{url}' connection failed: {detail}")
