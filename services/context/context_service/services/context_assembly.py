"""
Token-budgeted context assembly for a model call.

Given a conversation, retrieved fragments and a budget, decide what goes
into the prompt. Within budget, fragments are attached as one system message
and nothing else changes. Over budget, a strategy from the ordered rule
table trims fragments, truncates or compresses the conversation, and a final
guard drops whatever still does not fit so the estimate never exceeds the
budget.
"""

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

from ..config import settings
from ..models import (
    AssemblyOptions,
    Message,
    OptimizationResult,
    PriorityConfig,
    RetrievedFragment,
    SemanticContext,
)
from . import priority
from .strategy import DEFAULT_RULES, Strategy, StrategyRule, select_strategy
from .token_estimator import (
    CONVERSATION_OVERHEAD,
    count_message,
    count_tokens,
    estimate_from_counts,
    model_limit,
)

logger = logging.getLogger(__name__)

FRAGMENT_HEADER = "Relevant context:"
FRAGMENT_SEPARATOR = "\n\n"
COMPRESSED_MARKER = "...[compressed]"


# ── Fragment rendering ──


def _format_time(timestamp: datetime | None) -> str:
    if timestamp is None:
        return "unknown time"
    return timestamp.strftime("%Y-%m-%d %H:%M UTC")


def _by_score(fragments: Iterable[RetrievedFragment]) -> list[RetrievedFragment]:
    return sorted(fragments, key=lambda f: f.score, reverse=True)


def _format_entry(fragment: RetrievedFragment, position: int) -> str:
    return (
        f"[Memory {position}] (Relevance: {fragment.score:.2f}, "
        f"Importance: {fragment.importance:.2f}, Time: {_format_time(fragment.timestamp)})\n"
        f"{fragment.content}"
    )


def format_fragments(fragments: Sequence[RetrievedFragment]) -> str:
    """Render fragments, best score first, as the body of one system message."""
    if not fragments:
        return ""
    entries = [_format_entry(f, i) for i, f in enumerate(_by_score(fragments), start=1)]
    return FRAGMENT_SEPARATOR.join([FRAGMENT_HEADER, *entries])


def fragment_message(fragments: Sequence[RetrievedFragment]) -> Message | None:
    if not fragments:
        return None
    return Message(role="system", content=format_fragments(fragments))


def fragment_block_tokens(fragments: Sequence[RetrievedFragment]) -> int:
    """Estimated tokens of the synthesized fragment message as its own list."""
    block = fragment_message(fragments)
    return count_tokens([block]) if block else 0


def attach_fragments(
    messages: Sequence[Message],
    fragments: Sequence[RetrievedFragment],
) -> list[Message]:
    """Insert the fragment message after the leading system messages."""
    block = fragment_message(fragments)
    if block is None:
        return list(messages)

    insert_at = 0
    while insert_at < len(messages) and messages[insert_at].role == "system":
        insert_at += 1
    return [*messages[:insert_at], block, *messages[insert_at:]]


# ── Strategy building blocks ──


def _fragment_budget(conversation: Sequence[Message], max_tokens: int) -> int:
    """Tokens left for the fragment message once the conversation is counted."""
    if not conversation:
        return max_tokens - CONVERSATION_OVERHEAD
    return max_tokens - count_tokens(conversation)


def filter_fragments(
    fragments: Sequence[RetrievedFragment],
    budget: int,
) -> list[RetrievedFragment]:
    """
    Keep fragments by descending score while the rendered fragment message
    (structure included) stays within ``budget``; stop at the first overflow.
    """
    header_words = len(FRAGMENT_HEADER.split())
    words = header_words
    chars = len(FRAGMENT_HEADER)
    base = count_message("system", "")

    kept: list[RetrievedFragment] = []
    for position, fragment in enumerate(_by_score(fragments), start=1):
        entry = _format_entry(fragment, position)
        next_words = words + len(entry.split())
        next_chars = chars + len(FRAGMENT_SEPARATOR) + len(entry)
        if base + estimate_from_counts(next_words, next_chars) > budget:
            break
        kept.append(fragment)
        words, chars = next_words, next_chars
    return kept


def truncate_conversation(
    messages: Sequence[Message],
    budget: int,
    preserve_recent: int = settings.preserve_recent_messages,
) -> list[Message]:
    """
    Keep every system message and the last ``preserve_recent`` other
    messages, then re-admit earlier messages newest first until the first one
    that would overflow ``budget``. Original order is kept.
    """
    if count_tokens(messages) <= budget:
        return list(messages)

    non_system = [i for i, m in enumerate(messages) if m.role != "system"]
    recent = set(non_system[-preserve_recent:]) if preserve_recent > 0 else set()
    kept = {i for i, m in enumerate(messages) if m.role == "system"} | recent
    used = count_tokens(messages[i] for i in sorted(kept))

    for index in reversed([i for i in non_system if i not in recent]):
        cost = count_message(messages[index].role, messages[index].content)
        if not kept:
            cost += CONVERSATION_OVERHEAD
        if used + cost > budget:
            break
        kept.add(index)
        used += cost

    return [messages[i] for i in sorted(kept)]


def compress_conversation(
    messages: Sequence[Message],
    keep_recent: int = 4,
    char_limit: int = 200,
) -> list[Message]:
    """Cut every non-system message before the last ``keep_recent`` to ``char_limit`` chars."""
    non_system = [i for i, m in enumerate(messages) if m.role != "system"]
    older = set(non_system[:-keep_recent] if keep_recent > 0 else non_system)

    compressed: list[Message] = []
    for index, message in enumerate(messages):
        if index in older and len(message.content) > char_limit:
            message = message.model_copy(update={
                "content": message.content[:char_limit] + COMPRESSED_MARKER,
                "token_count": None,
            })
        compressed.append(message)
    return compressed


def enforce_budget(
    conversation: Sequence[Message],
    fragments: Sequence[RetrievedFragment],
    max_tokens: int,
) -> tuple[list[Message], list[RetrievedFragment]]:
    """
    Final guard on the assembled estimate. Drops, in order: messages that
    alone exceed the budget, lowest-scored fragments, oldest non-system
    messages, then oldest system messages.
    """
    conversation = list(conversation)
    fragments = _by_score(fragments)

    def total() -> int:
        return count_tokens(attach_fragments(conversation, fragments))

    if total() <= max_tokens:
        return conversation, fragments

    dropped = 0
    fitting = [m for m in conversation if count_tokens([m]) <= max_tokens]
    dropped += len(conversation) - len(fitting)
    conversation = fitting

    costs = [count_message(m.role, m.content) for m in conversation]
    block_cost = fragment_block_tokens(fragments) - CONVERSATION_OVERHEAD if fragments else 0

    def running_total() -> int:
        if not costs and not fragments:
            return 0
        return sum(costs) + block_cost + CONVERSATION_OVERHEAD

    while fragments and running_total() > max_tokens:
        fragments.pop()
        block_cost = fragment_block_tokens(fragments) - CONVERSATION_OVERHEAD if fragments else 0
        dropped += 1

    while running_total() > max_tokens:
        index = next((i for i, m in enumerate(conversation) if m.role != "system"), None)
        if index is None:
            index = 0
        conversation.pop(index)
        costs.pop(index)
        dropped += 1

    logger.warning("Budget guard dropped %d item(s) to fit %d tokens", dropped, max_tokens)
    return conversation, fragments


# ── Entry points ──


def _validate(
    messages: Sequence[Message | Mapping[str, Any]],
    fragments: Sequence[RetrievedFragment | Mapping[str, Any]] | None,
    max_tokens: int | None,
    model: str | None,
) -> tuple[list[Message], list[RetrievedFragment], int]:
    if max_tokens is None:
        max_tokens = model_limit(model) if model else settings.default_max_context_tokens
    if max_tokens <= 0:
        raise ValueError(f"max_tokens must be positive (got {max_tokens})")
    if not messages:
        raise ValueError("At least one message is required to assemble a context")

    parsed_messages = [m if isinstance(m, Message) else Message.model_validate(m) for m in messages]
    parsed_fragments = [
        f if isinstance(f, RetrievedFragment) else RetrievedFragment.model_validate(f)
        for f in fragments or ()
    ]
    return parsed_messages, parsed_fragments, max_tokens


def _result(
    assembled: list[Message],
    was_optimized: bool,
    original_tokens: int,
    strategy: Strategy,
    fragments_included: int,
) -> OptimizationResult:
    optimized_tokens = count_tokens(assembled)
    ratio = round(optimized_tokens / original_tokens, 4) if original_tokens else 1.0
    return OptimizationResult(
        messages=assembled,
        was_optimized=was_optimized,
        original_tokens=original_tokens,
        optimized_tokens=optimized_tokens,
        compression_ratio=1.0 if not was_optimized else ratio,
        strategy=strategy.value,
        fragments_included=fragments_included,
    )


def optimize(
    messages: Sequence[Message | Mapping[str, Any]],
    fragments: Sequence[RetrievedFragment | Mapping[str, Any]] | None = None,
    max_tokens: int | None = None,
    model: str | None = None,
    options: AssemblyOptions | None = None,
    rules: tuple[StrategyRule, ...] = DEFAULT_RULES,
) -> OptimizationResult:
    """
    Fit ``messages`` plus ``fragments`` into ``max_tokens``.

    ``max_tokens`` defaults to the model's context window, or the configured
    default when no model is named. Raises ValueError for a non-positive
    budget or an empty conversation.
    """
    messages, fragments, max_tokens = _validate(messages, fragments, max_tokens, model)
    options = options or AssemblyOptions()

    message_tokens = count_tokens(messages)
    fragment_tokens = fragment_block_tokens(fragments)
    total_tokens = message_tokens + fragment_tokens

    if total_tokens <= max_tokens:
        return _result(
            attach_fragments(messages, fragments),
            was_optimized=False,
            original_tokens=total_tokens,
            strategy=Strategy.NO_OPTIMIZATION,
            fragments_included=len(fragments),
        )

    overage_ratio = total_tokens / max_tokens
    fragment_fraction = fragment_tokens / total_tokens if fragments else 0.0
    strategy = select_strategy(overage_ratio, fragment_fraction, rules)
    logger.info(
        "Context over budget: %d/%d tokens (ratio=%.2f, fragments=%.2f) -> %s",
        total_tokens, max_tokens, overage_ratio, fragment_fraction, strategy.value,
    )

    if strategy is Strategy.MEMORY_FILTERING:
        conversation = list(messages)
        kept = filter_fragments(fragments, _fragment_budget(conversation, max_tokens))

    elif strategy is Strategy.HYBRID_OPTIMIZATION:
        conversation_budget = math.floor(max_tokens * options.conversation_share)
        conversation = truncate_conversation(messages, conversation_budget, options.preserve_recent)
        kept = filter_fragments(fragments, max_tokens - conversation_budget)

    elif strategy is Strategy.CONVERSATION_TRUNCATION:
        conversation = truncate_conversation(
            messages, max_tokens - fragment_tokens, options.preserve_recent,
        )
        kept = list(fragments)

    else:
        conversation = compress_conversation(
            messages, options.compression_keep_recent, options.compression_char_limit,
        )
        kept = filter_fragments(fragments, _fragment_budget(conversation, max_tokens))

    conversation, kept = enforce_budget(conversation, kept, max_tokens)
    return _result(
        attach_fragments(conversation, kept),
        was_optimized=True,
        original_tokens=total_tokens,
        strategy=strategy,
        fragments_included=len(kept),
    )


def optimize_with_priority(
    messages: Sequence[Message | Mapping[str, Any]],
    fragments: Sequence[RetrievedFragment | Mapping[str, Any]] | None = None,
    max_tokens: int | None = None,
    query: str | None = None,
    context: SemanticContext | Mapping[str, Any] | None = None,
    config: PriorityConfig | None = None,
    model: str | None = None,
    now: datetime | None = None,
) -> OptimizationResult:
    """
    Priority-ranked alternative to ``optimize``.

    Messages and fragments are scored against ``query`` (weights adjusted
    for the semantic ``context``), selected greedily with messages admitted
    first, and messages are put back in conversational order.
    """
    messages, fragments, max_tokens = _validate(messages, fragments, max_tokens, model)

    total_tokens = count_tokens(messages) + fragment_block_tokens(fragments)
    if total_tokens <= max_tokens:
        return _result(
            attach_fragments(messages, fragments),
            was_optimized=False,
            original_tokens=total_tokens,
            strategy=Strategy.NO_OPTIMIZATION,
            fragments_included=len(fragments),
        )

    config = config or priority.DEFAULT_PRIORITY_CONFIG
    if context is not None:
        config = priority.calculate_dynamic_weights(context, config)
    # every candidate must reach selection
    config = config.model_copy(update={
        "max_items": max(config.max_items, len(messages) + len(fragments)),
    })

    items = priority.rank_mixed(messages, fragments, query, config, now)
    budget = max_tokens - CONVERSATION_OVERHEAD
    if fragments:
        budget -= count_message("system", FRAGMENT_HEADER)
    selected = priority.select(items, budget, preserve_types=["message"])

    message_items = sorted(
        (item for item in selected if item.type == "message"),
        key=lambda item: item.metadata["original_index"],
    )
    conversation = [messages[item.metadata["original_index"]] for item in message_items]
    kept = [
        fragments[item.metadata["original_index"]]
        for item in selected if item.type == "memory"
    ]
    logger.info(
        "Priority selection kept %d/%d messages and %d/%d fragments",
        len(conversation), len(messages), len(kept), len(fragments),
    )

    conversation, kept = enforce_budget(conversation, kept, max_tokens)
    return _result(
        attach_fragments(conversation, kept),
        was_optimized=True,
        original_tokens=total_tokens,
        strategy=Strategy.PRIORITY_BASED,
        fragments_included=len(kept),
    )


def assemble(
    messages: Sequence[Message | Mapping[str, Any]],
    fragments: Sequence[RetrievedFragment | Mapping[str, Any]] | None = None,
    max_tokens: int | None = None,
    model: str | None = None,
    options: AssemblyOptions | None = None,
    query: str | None = None,
    context: SemanticContext | Mapping[str, Any] | None = None,
    config: PriorityConfig | None = None,
) -> OptimizationResult:
    """Priority path when semantic context is supplied, default path otherwise."""
    if context is not None:
        return optimize_with_priority(
            messages, fragments, max_tokens, query=query, context=context,
            config=config, model=model,
        )
    return optimize(messages, fragments, max_tokens, model=model, options=options)


# ── Planning and reporting ──


def calculate_token_allocation(
    conversation_length: int,
    fragment_count: int,
    max_tokens: int,
    model: str | None = None,
) -> dict[str, int]:
    """Split a budget between conversation, fragments and a 25% response reserve."""
    effective = min(max_tokens, model_limit(model or settings.default_model))
    response = math.floor(effective * 0.25)
    available = effective - response

    if fragment_count == 0:
        conversation_share, fragment_share = 1.0, 0.0
    elif conversation_length < 5:
        conversation_share, fragment_share = 0.5, 0.5
    elif fragment_count > 20:
        conversation_share, fragment_share = 0.6, 0.4
    else:
        conversation_share, fragment_share = 0.7, 0.3

    return {
        "conversation": math.floor(available * conversation_share),
        "fragments": math.floor(available * fragment_share),
        "response": response,
    }


def analyze_optimization(result: OptimizationResult) -> dict[str, Any]:
    savings = result.original_tokens - result.optimized_tokens
    efficiency = savings / result.original_tokens if result.original_tokens else 0.0
    recommendations: list[str] = []

    if not result.was_optimized:
        rating = "not_needed"
    elif efficiency < 0.1:
        rating = "poor"
        recommendations.append("Consider more aggressive optimization strategies")
    elif efficiency > 0.5:
        rating = "excellent"
        recommendations.append("Current optimization is highly effective")
    else:
        rating = "good"

    if result.was_optimized and result.fragments_included == 0:
        recommendations.append("No fragments included - consider a larger fragment allocation")
    if result.compression_ratio < 0.3:
        recommendations.append("Low retention - consider stricter fragment retrieval thresholds")

    return {
        "token_savings": savings,
        "compression_efficiency": round(efficiency, 4),
        "strategy_effectiveness": rating,
        "recommendations": recommendations,
    }


def self_check() -> bool:
    messages = [
        Message(role="system", content="You are a helpful assistant."),
        Message(role="user", content="Hello " * 40),
        Message(role="assistant", content="Hi there! " * 40),
        Message(role="user", content="What can you do?"),
    ]
    fragments = [RetrievedFragment(id="check", content="Test memory", score=0.8)]
    result = optimize(messages, fragments, max_tokens=120)
    allocation = calculate_token_allocation(3, 1, 4096)
    return (
        result.optimized_tokens <= 120
        and allocation["conversation"] > 0
        and allocation["fragments"] > 0
        and allocation["response"] > 0
    )
