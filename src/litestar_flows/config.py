"""Engine configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

__all__ = ("EngineConfig", "RetryPolicy")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for one class of operation.

    Attributes:
        max_attempts: Total attempts including the first one.
        backoff: Multiplier in seconds for the exponential wait between attempts.
        max_backoff: Upper bound in seconds for a single wait.
    """

    max_attempts: int = 3
    backoff: float = 0.5
    max_backoff: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)


@dataclass
class EngineConfig:
    """Tunables for the flow engine, scheduler, worker pool and dispatcher.

    Attributes:
        max_steps_per_run: Nodes a context may advance through in one run before it
            is failed. Catches instant loops the validator could not see.
        worker_count: Number of worker tasks draining the run queue.
        scheduler_poll_interval: Seconds between scheduler polls for due resumes.
        scheduler_batch_size: Maximum due resumes fired per poll.
        webhook_timeout: Default timeout in seconds for webhook calls.
        message_retry: Retry policy for outbound messages.
        webhook_retry: Retry policy for webhook calls.
        contact_retry: Retry policy for contact tag and field mutations.
        storage_retry: Retry policy for storage conflicts inside the engine.
    """

    max_steps_per_run: int = 100
    worker_count: int = 4
    scheduler_poll_interval: float = 1.0
    scheduler_batch_size: int = 100
    webhook_timeout: float = 10.0
    message_retry: RetryPolicy = field(default_factory=RetryPolicy)
    webhook_retry: RetryPolicy = field(default_factory=RetryPolicy)
    contact_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_attempts=5, backoff=0.05, max_backoff=1.0))
    storage_retry: RetryPolicy = field(default_factory=lambda: RetryPolicy(max_attempts=5, backoff=0.05, max_backoff=1.0))
