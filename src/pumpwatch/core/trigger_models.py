"""
Trigger group models.

A trigger group is a named AND/OR rule over streaming metrics that either
adds matching tokens to the watch-set or removes them from it. Groups and
conditions are frozen: edits go through model_copy() and produce new
objects, so a group being evaluated can never change underneath the
evaluator.
"""
from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(uuid.uuid4())


class TriggerType(str, Enum):
    """What a matching group does to the token."""
    WATCH = "watch"
    UNWATCH = "unwatch"


class TriggerOperator(str, Enum):
    AND = "AND"
    OR = "OR"


class Comparison(str, Enum):
    GT = ">"
    LT = "<"
    EQ = "="
    GTE = ">="
    LTE = "<="

    def apply(self, value: float, threshold: float) -> bool:
        if self is Comparison.GT:
            return value > threshold
        if self is Comparison.LT:
            return value < threshold
        if self is Comparison.EQ:
            return value == threshold
        if self is Comparison.GTE:
            return value >= threshold
        return value <= threshold


class TriggerMetric(str, Enum):
    """Metric names understood by the evaluator."""
    VOLUME_RATE = "volumeRate"              # SOL/min
    TRADE_FREQUENCY = "tradeFrequency"      # trades/min
    PRICE_CHANGE = "priceChange"            # %
    BUY_PERCENTAGE = "buyPercentage"        # %
    BUY_RATIO = "buyRatio"                  # %, same as buyPercentage
    TOTAL_VOLUME = "totalVolume"            # SOL
    BUY_COUNT = "buyCount"
    CONSECUTIVE_BUYS = "consecutiveBuys"
    AVG_TRADE_SIZE = "avgTradeSize"         # tokens
    INACTIVE_TIME = "inactiveTime"          # seconds
    PRICE_DROP = "priceDrop"                # % below peak
    VOLUME_DECLINE = "volumeDecline"        # % below peak minute
    WILDCARD_SEARCH = "wildcardSearch"      # pattern
    LLM_PROMPT = "llmPrompt"                # prompt


TEXT_METRICS = frozenset({TriggerMetric.WILDCARD_SEARCH.value, TriggerMetric.LLM_PROMPT.value})


class TriggerCondition(BaseModel):
    """
    One comparison (or text match) inside a group.

    ``metric`` is kept as a plain string: a name the evaluator does not know
    resolves to 0 instead of failing to load. The threshold is stored under
    the key ``value`` in the JSON file.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=new_id)
    metric: str
    comparison: Optional[Comparison] = None
    threshold: Optional[float] = Field(default=None, alias="value")
    unit: str = ""
    pattern: Optional[str] = None
    prompt: Optional[str] = None

    @property
    def is_text(self) -> bool:
        return self.metric in TEXT_METRICS


class TriggerGroup(BaseModel):
    """A named rule over conditions."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    enabled: bool = True
    type: TriggerType = TriggerType.WATCH
    operator: TriggerOperator = TriggerOperator.AND
    conditions: tuple[TriggerCondition, ...] = ()
