"""
Ordered rules mapping budget overage to an optimization strategy.

The first rule whose bounds match wins, so rules run from the gentlest to
the most aggressive trimming. Thresholds come from settings.
"""

from dataclasses import dataclass
from enum import Enum

from ..config import settings


class Strategy(str, Enum):
    NO_OPTIMIZATION = "no_optimization"
    MEMORY_FILTERING = "memory_filtering"
    HYBRID_OPTIMIZATION = "hybrid_optimization"
    CONVERSATION_TRUNCATION = "conversation_truncation"
    CONTENT_COMPRESSION = "content_compression"
    PRIORITY_BASED = "priority_based_optimization"


@dataclass(frozen=True)
class StrategyRule:
    strategy: Strategy
    # overage ratio must be strictly below this; None means unbounded
    max_overage_ratio: float | None = None
    # fragment share of total tokens must be strictly above this
    min_fragment_fraction: float | None = None

    def matches(self, overage_ratio: float, fragment_fraction: float) -> bool:
        if self.max_overage_ratio is not None and overage_ratio >= self.max_overage_ratio:
            return False
        if self.min_fragment_fraction is not None and fragment_fraction <= self.min_fragment_fraction:
            return False
        return True


def build_rules(
    filtering_ratio: float = settings.filtering_overage_ratio,
    hybrid_ratio: float = settings.hybrid_overage_ratio,
    truncation_ratio: float = settings.truncation_overage_ratio,
    hybrid_fragment_fraction: float = settings.hybrid_fragment_fraction,
) -> tuple[StrategyRule, ...]:
    if not 1.0 <= filtering_ratio <= hybrid_ratio <= truncation_ratio:
        raise ValueError(
            "Overage thresholds must satisfy 1.0 <= filtering <= hybrid <= truncation "
            f"(got {filtering_ratio}, {hybrid_ratio}, {truncation_ratio})"
        )
    return (
        StrategyRule(Strategy.MEMORY_FILTERING, max_overage_ratio=filtering_ratio),
        StrategyRule(
            Strategy.HYBRID_OPTIMIZATION,
            max_overage_ratio=hybrid_ratio,
            min_fragment_fraction=hybrid_fragment_fraction,
        ),
        StrategyRule(Strategy.CONVERSATION_TRUNCATION, max_overage_ratio=truncation_ratio),
        StrategyRule(Strategy.CONTENT_COMPRESSION),
    )


DEFAULT_RULES = build_rules()


def select_strategy(
    overage_ratio: float,
    fragment_fraction: float,
    rules: tuple[StrategyRule, ...] = DEFAULT_RULES,
) -> Strategy:
    for rule in rules:
        if rule.matches(overage_ratio, fragment_fraction):
            return rule.strategy
    return Strategy.CONTENT_COMPRESSION
