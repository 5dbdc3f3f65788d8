"""Condition node types.

Conditions are pure: they read the contact, the flow variables and the clock, and pick
an output. Boolean conditions always expose ``true`` and ``false``; the button
condition exposes one output per configured option plus an optional ``no_match``.
"""

from __future__ import annotations

from datetime import time
from enum import StrEnum
from typing import Annotated, Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import AfterValidator, Field, field_validator, model_validator

from litestar_flows.core.templating import lookup_path
from litestar_flows.core.types import FALSE_HANDLE, TRUE_HANDLE, NodeType
from litestar_flows.nodes.base import NodeConfig, NodeContext, NodeOutcome, NodeSpec, match_option

__all__ = (
    "ButtonCondition",
    "ButtonConditionConfig",
    "ButtonOption",
    "DayCondition",
    "DayConditionConfig",
    "FieldCondition",
    "FieldConditionConfig",
    "FieldOperator",
    "TagCondition",
    "TagConditionConfig",
    "TimeCondition",
    "TimeConditionConfig",
    "TimeRange",
)


def _validate_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError) as e:
        msg = f"unknown timezone {value!r}"
        raise ValueError(msg) from e
    return value


Timezone = Annotated[str, AfterValidator(_validate_timezone)]


class ButtonOption(NodeConfig):
    """One branch of a button condition.

    Attributes:
        button_text: Button text to match, exactly and case-sensitively.
        output: Handle followed on a match, e.g. ``btn_0``.
    """

    button_text: str = Field(min_length=1)
    output: str = Field(min_length=1)


class ButtonConditionConfig(NodeConfig):
    conditions: list[ButtonOption] = Field(min_length=1)

    @field_validator("conditions")
    @classmethod
    def unique_outputs(cls, value: list[ButtonOption]) -> list[ButtonOption]:
        outputs = [option.output for option in value]
        if len(set(outputs)) != len(outputs):
            msg = "each option needs its own output"
            raise ValueError(msg)
        return value


class TagConditionConfig(NodeConfig):
    tag: str = Field(min_length=1)
    has_tag: bool = True


class FieldOperator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    EMPTY = "empty"
    NOT_EMPTY = "not_empty"


class FieldConditionConfig(NodeConfig):
    """Compare a contact field or a flow variable.

    Attributes:
        field: Contact attribute (``name``, ``email``, ``phone_number``), custom field
            key, or dotted variable path when ``source`` is ``variable``.
        operator: Comparison operator.
        value: Value to compare with. Not used by ``empty``/``not_empty``.
        source: Where to read ``field`` from.
    """

    field: str = Field(min_length=1)
    operator: FieldOperator = FieldOperator.EQUALS
    value: Any = None
    source: Literal["contact", "variable"] = "contact"

    @model_validator(mode="after")
    def value_required(self) -> FieldConditionConfig:
        if self.operator not in (FieldOperator.EMPTY, FieldOperator.NOT_EMPTY) and self.value is None:
            msg = f"operator '{self.operator}' requires a value"
            raise ValueError(msg)
        return self


class TimeRange(NodeConfig):
    start: time
    end: time


class TimeConditionConfig(NodeConfig):
    """True while the local time is inside the range. Ranges may wrap midnight."""

    time_range: TimeRange
    timezone: Timezone = "UTC"


class DayConditionConfig(NodeConfig):
    """True on the listed weekdays, ``0`` being Sunday."""

    days: list[int] = Field(min_length=1)
    timezone: Timezone = "UTC"

    @field_validator("days")
    @classmethod
    def valid_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            msg = "days must be between 0 (Sunday) and 6 (Saturday)"
            raise ValueError(msg)
        return sorted(set(value))


class BooleanCondition(NodeSpec[Any]):
    def handles(self, config: Any) -> tuple[str, ...]:
        return (TRUE_HANDLE, FALSE_HANDLE)

    def required_handles(self, config: Any) -> tuple[str, ...]:
        return (TRUE_HANDLE, FALSE_HANDLE)

    def check(self, ctx: NodeContext, config: Any) -> bool:
        raise NotImplementedError

    def evaluate(self, ctx: NodeContext, config: Any) -> NodeOutcome:
        return NodeOutcome(handle=TRUE_HANDLE if self.check(ctx, config) else FALSE_HANDLE)


class ButtonCondition(NodeSpec[ButtonConditionConfig]):
    """Branch on the last clicked button text."""

    node_type = NodeType.CONDITION_BUTTON
    config_model = ButtonConditionConfig
    accepts_no_match = True

    def handles(self, config: ButtonConditionConfig) -> tuple[str, ...]:
        return tuple(option.output for option in config.conditions)

    def required_handles(self, config: ButtonConditionConfig) -> tuple[str, ...]:
        return self.handles(config)

    def evaluate(self, ctx: NodeContext, config: ButtonConditionConfig) -> NodeOutcome:
        observed = ctx.variables.get("button_text")
        options = [(option.button_text, option.output) for option in config.conditions]
        return NodeOutcome(handle=match_option(options, observed), observed=observed)


class TagCondition(BooleanCondition):
    node_type = NodeType.CONDITION_TAG
    config_model = TagConditionConfig

    def check(self, ctx: NodeContext, config: TagConditionConfig) -> bool:
        return ctx.contact.has_tag(config.tag) == config.has_tag


class FieldCondition(BooleanCondition):
    node_type = NodeType.CONDITION_FIELD
    config_model = FieldConditionConfig

    def _read(self, ctx: NodeContext, config: FieldConditionConfig) -> Any:
        if config.source == "variable":
            return lookup_path(ctx.variables, config.field)
        if config.field in ("name", "email", "phone_number"):
            return getattr(ctx.contact, config.field)
        return ctx.contact.custom_fields.get(config.field)

    def check(self, ctx: NodeContext, config: FieldConditionConfig) -> bool:
        actual = self._read(ctx, config)
        text = "" if actual is None else str(actual)
        if config.operator is FieldOperator.EMPTY:
            return not text.strip()
        if config.operator is FieldOperator.NOT_EMPTY:
            return bool(text.strip())
        expected = ctx.render(str(config.value))
        if config.operator is FieldOperator.EQUALS:
            return text.lower() == expected.lower()
        if config.operator is FieldOperator.NOT_EQUALS:
            return text.lower() != expected.lower()
        return expected.lower() in text.lower()


class TimeCondition(BooleanCondition):
    node_type = NodeType.CONDITION_TIME
    config_model = TimeConditionConfig

    def check(self, ctx: NodeContext, config: TimeConditionConfig) -> bool:
        local = ctx.now.astimezone(ZoneInfo(config.timezone)).time().replace(tzinfo=None)
        start, end = config.time_range.start, config.time_range.end
        if start <= end:
            return start <= local <= end
        return local >= start or local <= end


class DayCondition(BooleanCondition):
    node_type = NodeType.CONDITION_DAY
    config_model = DayConditionConfig

    def check(self, ctx: NodeContext, config: DayConditionConfig) -> bool:
        local = ctx.now.astimezone(ZoneInfo(config.timezone))
        # isoweekday: Monday=1 .. Sunday=7
        return local.isoweekday() % 7 in config.days
