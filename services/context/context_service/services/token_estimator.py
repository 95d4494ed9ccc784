"""
Token estimation for budget decisions.

These are estimates, not tokenizer output: each text is costed as
``ceil(max(words * 1.3, chars * 0.25))`` so the figure errs on the high side
and a real tokenizer rarely lands above it. Budget guarantees made elsewhere
in the service are only as tight as this estimate.
"""

import math
from collections.abc import Iterable, Mapping
from typing import Any

TOKENS_PER_WORD = 1.3
TOKENS_PER_CHAR = 0.25
MESSAGE_OVERHEAD = 4  # role/content framing per message
CONVERSATION_OVERHEAD = 2  # once per message list
DEFAULT_MODEL_LIMIT = 4096

MODEL_TOKEN_LIMITS: dict[str, int] = {
    "gpt-4": 8192,
    "gpt-4-32k": 32768,
    "gpt-4-turbo": 128000,
    "gpt-3.5-turbo": 4096,
    "gpt-3.5-turbo-16k": 16384,
    "claude-3-opus": 200000,
    "claude-3-sonnet": 200000,
    "claude-3-haiku": 200000,
    "claude-2": 100000,
    "gemini-pro": 32768,
    "gemini-pro-vision": 16384,
}

# USD per 1K tokens
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4": (0.03, 0.06),
    "gpt-4-32k": (0.06, 0.12),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-3.5-turbo": (0.0015, 0.002),
    "gpt-3.5-turbo-16k": (0.003, 0.004),
    "claude-3-opus": (0.015, 0.075),
    "claude-3-sonnet": (0.003, 0.015),
    "claude-3-haiku": (0.00025, 0.00125),
    "gemini-pro": (0.0005, 0.0015),
}
_DEFAULT_PRICING = (0.001, 0.002)


def _role_content(item: Any) -> tuple[str, str]:
    if isinstance(item, Mapping):
        return str(item.get("role") or ""), str(item.get("content") or "")
    return str(getattr(item, "role", "") or ""), str(getattr(item, "content", "") or "")


def estimate_from_counts(words: int, chars: int) -> int:
    if chars <= 0:
        return 0
    return math.ceil(max(words * TOKENS_PER_WORD, chars * TOKENS_PER_CHAR))


def count_single(text: str) -> int:
    """Estimated tokens for one piece of text (0 for empty text)."""
    if not text:
        return 0
    return estimate_from_counts(len(text.split()), len(text))


def count_message(role: str, content: str) -> int:
    """Estimated cost of one message, excluding the per-list overhead."""
    return MESSAGE_OVERHEAD + count_single(content) + count_single(role)


def count_tokens(items: Iterable[Any]) -> int:
    """
    Estimated tokens for a message list.

    Items may be Message models or mappings with ``role`` and ``content``.
    An empty list costs nothing.
    """
    total = 0
    seen = False
    for item in items or ():
        role, content = _role_content(item)
        total += count_message(role, content)
        seen = True
    if not seen:
        return 0
    return total + CONVERSATION_OVERHEAD


def model_limit(model: str | None, registry: Mapping[str, int] | None = None) -> int:
    """Context window for a model; unknown models get 4096."""
    if not model:
        return DEFAULT_MODEL_LIMIT
    if registry and model in registry:
        return int(registry[model])
    return MODEL_TOKEN_LIMITS.get(model, DEFAULT_MODEL_LIMIT)


def remaining_tokens(messages: Iterable[Any], model: str | None, reserved: int = 500) -> int:
    return max(0, model_limit(model) - count_tokens(messages) - reserved)


def estimate_response_tokens(
    messages: Iterable[Any],
    model: str | None,
    max_tokens: int | None = None,
) -> int:
    """Tokens left for a reply: ``max_tokens`` if it fits, else 25% of what is free."""
    available = model_limit(model) - count_tokens(messages)
    if max_tokens:
        return max(0, min(max_tokens, available))
    return max(0, int(available * 0.25))


def analyze_distribution(messages: Iterable[Any]) -> dict[str, Any]:
    """Per-role and per-message breakdown of the estimated token usage."""
    by_role: dict[str, int] = {}
    by_message: list[dict[str, Any]] = []
    total = 0
    overhead = 0

    for index, item in enumerate(messages or ()):
        role, content = _role_content(item)
        tokens = count_message(role, content)
        total += tokens
        overhead += MESSAGE_OVERHEAD
        by_role[role] = by_role.get(role, 0) + tokens
        preview = content[:100] + ("..." if len(content) > 100 else "")
        by_message.append({"index": index, "role": role, "tokens": tokens, "content": preview})

    if by_message:
        total += CONVERSATION_OVERHEAD
        overhead += CONVERSATION_OVERHEAD

    return {
        "total": total,
        "by_role": by_role,
        "by_message": by_message,
        "overhead": overhead,
    }


def estimate_cost(input_tokens: int, output_tokens: int, model: str | None) -> float:
    input_rate, output_rate = MODEL_PRICING.get(model or "", _DEFAULT_PRICING)
    return (input_tokens / 1000) * input_rate + (output_tokens / 1000) * output_rate


def self_check() -> bool:
    sample = [
        {"role": "user", "content": "Hello, how are you?"},
        {"role": "assistant", "content": "I am doing well, thank you!"},
    ]
    tokens = count_tokens(sample)
    return 0 < tokens < 1000
