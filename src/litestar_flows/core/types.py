"""Core type definitions for litestar-flows.

This module defines the enums and handle constants shared by the graph, the node
types and the execution engine.
"""

from __future__ import annotations

from enum import StrEnum, auto
from typing import Any, TypeAlias

__all__ = (
    "DEFAULT_HANDLE",
    "FALSE_HANDLE",
    "NO_MATCH_HANDLE",
    "TERMINAL_STATUSES",
    "TRUE_HANDLE",
    "WAITING_STATUSES",
    "EffectKind",
    "ExecutionStatus",
    "FlowStatus",
    "LogStatus",
    "NodeCategory",
    "NodeType",
    "Variables",
    "WaitKind",
)

Variables: TypeAlias = dict[str, Any]
"""The variable bag carried by an execution context."""

DEFAULT_HANDLE = "default"
"""Handle of single-output nodes. An edge with no handle leaves from it."""
TRUE_HANDLE = "true"
FALSE_HANDLE = "false"
NO_MATCH_HANDLE = "no_match"
"""Optional handle followed when no configured button option matches."""


class FlowStatus(StrEnum):
    """Lifecycle status of a flow.

    Attributes:
        DRAFT: Being edited, never fires.
        ACTIVE: Validated and eligible to fire (subject to ``is_active``).
        PAUSED: Stopped by an operator; running contexts continue.
    """

    DRAFT = auto()
    ACTIVE = auto()
    PAUSED = auto()


class ExecutionStatus(StrEnum):
    """Status of an execution context.

    Attributes:
        RUNNING: Actively stepping through nodes.
        WAITING_EXTERNAL: Suspended until a button click, reply or operator release.
        WAITING_TIMER: Suspended until the scheduler fires a due resume.
        COMPLETED: Reached an end node or a node with no outgoing edge.
        FAILED: Stopped by an unrecoverable error.
        CANCELLED: Stopped by an operator.
    """

    RUNNING = auto()
    WAITING_EXTERNAL = auto()
    WAITING_TIMER = auto()
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in TERMINAL_STATUSES

    @property
    def is_waiting(self) -> bool:
        """Whether the context is suspended."""
        return self in WAITING_STATUSES


TERMINAL_STATUSES = frozenset({ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.CANCELLED})
WAITING_STATUSES = frozenset({ExecutionStatus.WAITING_EXTERNAL, ExecutionStatus.WAITING_TIMER})


class NodeCategory(StrEnum):
    """Behavioral category of a node type."""

    TRIGGER = auto()
    CONDITION = auto()
    ACTION = auto()


class NodeType(StrEnum):
    """The closed set of node types a flow may contain.

    Values are the type strings persisted by the flow editor.
    """

    TRIGGER_BUTTON_CLICK = "trigger_button_click"
    TRIGGER_KEYWORD = "trigger_keyword"
    TRIGGER_WEBHOOK = "trigger_webhook"
    TRIGGER_MESSAGE = "trigger_message"
    TRIGGER_CONTACT_CREATED = "trigger_contact_created"

    CONDITION_BUTTON = "condition_button"
    CONDITION_TAG = "condition_tag"
    CONDITION_FIELD = "condition_field"
    CONDITION_TIME = "condition_time"
    CONDITION_DAY = "condition_day"

    ACTION_SEND_TEXT = "action_send_text"
    ACTION_SEND_TEMPLATE = "action_send_template"
    ACTION_SEND_BUTTONS = "action_send_buttons"
    ACTION_SEND_LIST = "action_send_list"
    ACTION_SEND_MEDIA = "action_send_media"
    ACTION_SEND_CTA_URL = "action_send_cta_url"

    ACTION_ADD_TAG = "action_add_tag"
    ACTION_REMOVE_TAG = "action_remove_tag"
    ACTION_UPDATE_FIELD = "action_update_field"
    ACTION_WEBHOOK = "action_webhook"
    ACTION_DELAY = "action_delay"
    ACTION_WAIT_REPLY = "action_wait_reply"
    ACTION_TRANSFER_HUMAN = "action_transfer_human"
    ACTION_END = "action_end"

    @property
    def category(self) -> NodeCategory:
        """The behavioral category, derived from the type prefix."""
        return NodeCategory(self.value.split("_", 1)[0])

    @property
    def is_trigger(self) -> bool:
        return self.category is NodeCategory.TRIGGER


class LogStatus(StrEnum):
    """Outcome recorded on an execution log entry."""

    SUCCESS = auto()
    ERROR = auto()


class EffectKind(StrEnum):
    """Kinds of side effect routed through the action dispatcher.

    Each kind has its own retry policy.
    """

    MESSAGE = auto()
    WEBHOOK = auto()
    CONTACT = auto()


class WaitKind(StrEnum):
    """What a suspended execution context is waiting for.

    Attributes:
        BUTTON: A button click answering a template sent by the waiting node.
        REPLY: Any inbound message from the contact.
        HUMAN: An operator releasing a human handoff.
        TIMER: A scheduled resume.
    """

    BUTTON = auto()
    REPLY = auto()
    HUMAN = auto()
    TIMER = auto()
