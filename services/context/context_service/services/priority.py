"""
Priority scoring for conversation turns and retrieved fragments.

priority = importance_weight       * importance
         + relevance_weight        * relevance
         + recency_weight          * recency (exp(-decay * age_hours))
         + token_efficiency_weight * token efficiency

clamped to [0, 1]. The weights come from an immutable PriorityConfig and
need not sum to 1. Each sub-score is a plain function so it can be swapped
without touching ranking or selection.
"""

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any

from ..models import (
    Message,
    PriorityConfig,
    PriorityItem,
    RetrievedFragment,
    SemanticContext,
    clamp_unit,
)
from .token_estimator import count_message, count_single

DEFAULT_PRIORITY_CONFIG = PriorityConfig()

# Expected words per token; content at or above this ratio is fully efficient
_BASELINE_WORDS_PER_TOKEN = 0.75

_CODE_RE = re.compile(r"```|`[^`]+`|\b(function|class|import|export|def)\b")

QUERY_TYPE_WEIGHTS: dict[str, dict[str, float]] = {
    "factual": {
        "relevance_weight": 0.5,
        "importance_weight": 0.3,
        "recency_weight": 0.1,
        "token_efficiency_weight": 0.1,
    },
    "conversational": {
        "relevance_weight": 0.3,
        "importance_weight": 0.2,
        "recency_weight": 0.4,
        "token_efficiency_weight": 0.1,
    },
    "creative": {
        "relevance_weight": 0.2,
        "importance_weight": 0.4,
        "recency_weight": 0.2,
        "token_efficiency_weight": 0.2,
    },
    "analytical": {
        "relevance_weight": 0.4,
        "importance_weight": 0.4,
        "recency_weight": 0.1,
        "token_efficiency_weight": 0.1,
    },
}

# Applied after the query-type table
TIME_RANGE_MULTIPLIERS: dict[str, dict[str, float]] = {
    "recent": {"recency_weight": 1.5, "time_decay_factor": 0.5},
    "historical": {"recency_weight": 0.5, "importance_weight": 1.3},
}


# ── Sub-scores ──


def message_importance(message: Message) -> float:
    """Role and content heuristics; system messages start at 0.9."""
    score = 0.5
    if message.role == "system":
        score = 0.9

    if message.role == "assistant" and message.function_call:
        score += 0.2
    if "?" in message.content:
        score += 0.1
    if _CODE_RE.search(message.content):
        score += 0.15

    word_count = len(message.content.split())
    if 20 < word_count < 200:
        score += 0.1

    return clamp_unit(score)


def relevance(content: str, query: str | None) -> float:
    """
    Lexical overlap between query and content.

    A query word counts as matched when it and some content word contain one
    another; a verbatim occurrence of the whole query adds 0.3. Without a
    query every item is neutral (0.5).
    """
    query_words = (query or "").lower().split()
    if not query_words:
        return 0.5
    if not content:
        return 0.0

    content_words = content.lower().split()
    matches = sum(
        1 for q in query_words
        if any(q in c or c in q for c in content_words)
    )
    score = matches / len(query_words)

    if query.strip().lower() in content.lower():
        score += 0.3

    return clamp_unit(score)


def fragment_relevance(fragment: RetrievedFragment, query: str | None) -> float:
    """Similarity score from retrieval, else lexical relevance."""
    if fragment.score > 0:
        return fragment.score
    return relevance(fragment.content, query)


def recency(
    timestamp: datetime | None,
    decay_factor: float = DEFAULT_PRIORITY_CONFIG.time_decay_factor,
    now: datetime | None = None,
) -> float:
    """exp(-decay_factor * age_hours); undated items score 0.5."""
    if timestamp is None:
        return 0.5

    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)

    age_hours = (now - timestamp).total_seconds() / 3600
    try:
        score = math.exp(-decay_factor * age_hours)
    except OverflowError:
        # far-future timestamp
        score = 1.0
    return clamp_unit(score)


def token_efficiency(content: str) -> float:
    words = len(content.split())
    if words == 0:
        return 0.0
    words_per_token = words / count_single(content)
    return min(1.0, words_per_token / _BASELINE_WORDS_PER_TOKEN)


def combine(
    importance: float,
    relevance_score: float,
    recency_score: float,
    efficiency: float,
    config: PriorityConfig = DEFAULT_PRIORITY_CONFIG,
) -> float:
    score = (
        config.importance_weight * importance
        + config.relevance_weight * relevance_score
        + config.recency_weight * recency_score
        + config.token_efficiency_weight * efficiency
    )
    return round(clamp_unit(score), 4)


def _signals(
    item: Message | RetrievedFragment,
    query: str | None,
    config: PriorityConfig,
    now: datetime | None,
) -> dict[str, float]:
    if isinstance(item, Message):
        item_importance = message_importance(item)
        item_relevance = relevance(item.content, query)
    elif isinstance(item, RetrievedFragment):
        item_importance = item.importance
        item_relevance = fragment_relevance(item, query)
    else:
        raise TypeError(f"Cannot score item of type {type(item).__name__}")

    return {
        "importance": item_importance,
        "relevance": item_relevance,
        "recency": recency(item.timestamp, config.time_decay_factor, now),
        "token_efficiency": token_efficiency(item.content),
    }


def score(
    item: Message | RetrievedFragment,
    query: str | None = None,
    config: PriorityConfig = DEFAULT_PRIORITY_CONFIG,
    now: datetime | None = None,
) -> float:
    """Priority in [0, 1] for a single message or fragment."""
    signals = _signals(item, query, config, now)
    return combine(
        signals["importance"],
        signals["relevance"],
        signals["recency"],
        signals["token_efficiency"],
        config,
    )


# ── Ranking ──


def _message_item(
    message: Message,
    index: int,
    query: str | None,
    config: PriorityConfig,
    now: datetime | None,
) -> PriorityItem:
    signals = _signals(message, query, config, now)
    return PriorityItem(
        id=message.id or f"msg_{index}",
        content=message.content,
        type="message",
        priority=combine(
            signals["importance"], signals["relevance"],
            signals["recency"], signals["token_efficiency"], config,
        ),
        metadata={
            **signals,
            "timestamp": message.timestamp,
            "token_count": count_message(message.role, message.content),
            "role": message.role,
            "original_index": index,
        },
    )


def _fragment_item(
    fragment: RetrievedFragment,
    index: int,
    query: str | None,
    config: PriorityConfig,
    now: datetime | None,
) -> PriorityItem:
    signals = _signals(fragment, query, config, now)
    return PriorityItem(
        id=fragment.id,
        content=fragment.content,
        type="memory",
        priority=combine(
            signals["importance"], signals["relevance"],
            signals["recency"], signals["token_efficiency"], config,
        ),
        metadata={
            **signals,
            "timestamp": fragment.timestamp,
            "token_count": count_single(fragment.content),
            "original_index": index,
            "source": fragment.metadata,
        },
    )


def _sort_and_filter(items: list[PriorityItem], config: PriorityConfig) -> list[PriorityItem]:
    kept = [item for item in items if item.priority >= config.min_priority]
    kept.sort(key=lambda item: item.priority, reverse=True)
    return kept[:config.max_items]


def rank_messages(
    messages: Sequence[Message],
    query: str | None = None,
    config: PriorityConfig = DEFAULT_PRIORITY_CONFIG,
    now: datetime | None = None,
) -> list[PriorityItem]:
    items = [_message_item(m, i, query, config, now) for i, m in enumerate(messages)]
    return _sort_and_filter(items, config)


def rank_fragments(
    fragments: Sequence[RetrievedFragment],
    query: str | None = None,
    config: PriorityConfig = DEFAULT_PRIORITY_CONFIG,
    now: datetime | None = None,
) -> list[PriorityItem]:
    items = [_fragment_item(f, i, query, config, now) for i, f in enumerate(fragments)]
    return _sort_and_filter(items, config)


def rank_mixed(
    messages: Sequence[Message],
    fragments: Sequence[RetrievedFragment],
    query: str | None = None,
    config: PriorityConfig = DEFAULT_PRIORITY_CONFIG,
    now: datetime | None = None,
) -> list[PriorityItem]:
    items = [_message_item(m, i, query, config, now) for i, m in enumerate(messages)]
    items += [_fragment_item(f, i, query, config, now) for i, f in enumerate(fragments)]
    return _sort_and_filter(items, config)


def select(
    items: Iterable[PriorityItem],
    token_budget: int,
    preserve_types: Iterable[str] | None = None,
) -> list[PriorityItem]:
    """
    Greedy knapsack over priority-sorted items.

    Pass one admits items of ``preserve_types`` that still fit, pass two
    admits everything else that fits. Ties keep their input order; the
    result is sorted by priority, so callers needing conversational order
    re-sort on ``original_index``.
    """
    ranked = sorted(items, key=lambda item: item.priority, reverse=True)
    preserve = set(preserve_types or ())

    chosen: set[int] = set()
    selected: list[PriorityItem] = []
    used = 0

    passes = (True, False) if preserve else (False,)
    for preserve_pass in passes:
        for position, item in enumerate(ranked):
            if position in chosen:
                continue
            if preserve_pass and item.type not in preserve:
                continue
            if used + item.token_count <= token_budget:
                chosen.add(position)
                selected.append(item)
                used += item.token_count

    selected.sort(key=lambda item: item.priority, reverse=True)
    return selected


def calculate_dynamic_weights(
    context: SemanticContext | Mapping[str, Any],
    config: PriorityConfig = DEFAULT_PRIORITY_CONFIG,
) -> PriorityConfig:
    """Return a re-weighted copy of ``config`` for the query type and time range."""
    if not isinstance(context, SemanticContext):
        context = SemanticContext.model_validate(context)

    update: dict[str, float] = dict(QUERY_TYPE_WEIGHTS.get(context.query_type or "", {}))
    base = config.model_copy(update=update)
    for field, factor in TIME_RANGE_MULTIPLIERS.get(context.time_range or "", {}).items():
        update[field] = getattr(base, field) * factor

    return config.model_copy(update=update)


def analyze_distribution(items: Sequence[PriorityItem]) -> dict[str, Any]:
    if not items:
        return {
            "average_priority": 0.0,
            "priority_distribution": {"high": 0, "medium": 0, "low": 0},
            "type_distribution": {},
            "token_distribution": {"total": 0, "average": 0.0, "max": 0, "min": 0},
        }

    priorities = [item.priority for item in items]
    tokens = [item.token_count for item in items]
    types: dict[str, int] = {}
    for item in items:
        types[item.type] = types.get(item.type, 0) + 1

    return {
        "average_priority": round(sum(priorities) / len(priorities), 4),
        "priority_distribution": {
            "high": sum(1 for p in priorities if p >= 0.7),
            "medium": sum(1 for p in priorities if 0.4 <= p < 0.7),
            "low": sum(1 for p in priorities if p < 0.4),
        },
        "type_distribution": types,
        "token_distribution": {
            "total": sum(tokens),
            "average": round(sum(tokens) / len(tokens), 2),
            "max": max(tokens),
            "min": min(tokens),
        },
    }


def self_check() -> bool:
    ranked = rank_messages([
        Message(role="system", content="You are a helpful assistant."),
        Message(role="user", content="ok"),
    ])
    return (
        len(ranked) == 2
        and ranked[0].priority >= ranked[1].priority
        and all(0.0 <= item.priority <= 1.0 for item in ranked)
    )
