"""
Text segmentation ahead of embedding and storage.

Strategies:
- fixed: overlapping word windows sized from the token budget
- semantic: paragraph and sentence boundaries packed greedily up to the budget
- adaptive: semantic packing with a ceiling that shrinks for dense text
- hybrid: semantic, with complex near-full segments re-split adaptively

Runtime failures inside a strategy never reach the caller; ``segment``
degrades to fixed windows instead. Bad configuration is rejected earlier by
``SegmentationOptions`` validation.
"""

import logging
import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from ..models import SegmentationOptions, TextSegment, clamp_unit
from .token_estimator import TOKENS_PER_CHAR, TOKENS_PER_WORD, count_single

logger = logging.getLogger(__name__)

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")
_NUMBER_RE = re.compile(r"\d+")
_ACRONYM_RE = re.compile(r"[A-Z]{2,}")
_DIGIT_RE = re.compile(r"\d")

IMPORTANCE_KEYWORDS = ("important", "key", "critical", "essential", "main", "primary")

# Adaptive ceiling shrinks by up to 30% for maximally complex text
COMPLEXITY_CEILING_REDUCTION = 0.3

HYBRID_COMPLEXITY_THRESHOLD = 0.7
HYBRID_SIZE_THRESHOLD = 0.8
HYBRID_CEILING_SCALE = 0.7


# ── Heuristics ──


def importance(text: str) -> float:
    """Closed-form importance signal in [0, 1], starting from 0.5."""
    score = 0.5

    length = len(text)
    if length > 500:
        score += 0.1
    if length > 1000:
        score += 0.1

    lowered = text.lower()
    keyword_count = sum(lowered.count(keyword) for keyword in IMPORTANCE_KEYWORDS)
    score += min(keyword_count * 0.05, 0.2)

    score += min(text.count("?") * 0.02, 0.1)
    score += min(len(_NUMBER_RE.findall(text)) * 0.01, 0.1)

    return clamp_unit(score)


def complexity(text: str) -> float:
    """
    Text density in [0, 1]:
      min(avg word length / 10, 0.3)
    + min(avg words per sentence / 30, 0.3)
    + min(fraction of technical words, 0.4)

    Technical words are longer than 8 chars, contain an acronym run or a digit.
    """
    words = text.split()
    if not words:
        return 0.0

    avg_word_length = sum(len(word) for word in words) / len(words)
    score = min(avg_word_length / 10, 0.3)

    sentences = split_sentences(text)
    avg_sentence_length = len(words) / max(len(sentences), 1)
    score += min(avg_sentence_length / 30, 0.3)

    technical = sum(
        1 for word in words
        if len(word) > 8 or _ACRONYM_RE.search(word) or _DIGIT_RE.search(word)
    )
    score += min(technical / len(words), 0.4)

    return clamp_unit(score)


# ── Splitting ──


def split_paragraphs(text: str, separators: list[str] | None = None) -> list[str]:
    pieces = _PARAGRAPH_RE.split(text)
    for separator in separators or ():
        if separator:
            pieces = [part for piece in pieces for part in piece.split(separator)]
    return [piece.strip() for piece in pieces if piece.strip()]


def split_sentences(text: str) -> list[str]:
    """Naive split on ``.``, ``!`` and ``?``, keeping each terminator."""
    sentences = []
    for match in _SENTENCE_RE.finditer(text):
        sentence = match.group().strip()
        if sentence.strip(".!?").strip():
            sentences.append(sentence)
    return sentences


def _split_oversized(sentence: str, max_tokens: int) -> list[str]:
    """Break a sentence that alone exceeds ``max_tokens`` into word runs that fit."""
    if count_single(sentence) <= max_tokens:
        return [sentence]

    max_chars = max(1, math.floor(max_tokens / TOKENS_PER_CHAR))
    pieces: list[str] = []
    current = ""
    for word in sentence.split():
        if count_single(word) > max_tokens:
            if current:
                pieces.append(current)
                current = ""
            pieces.extend(word[i:i + max_chars] for i in range(0, len(word), max_chars))
            continue
        candidate = f"{current} {word}" if current else word
        if current and count_single(candidate) > max_tokens:
            pieces.append(current)
            current = word
        else:
            current = candidate
    if current:
        pieces.append(current)
    return pieces


def _overlap_text(text: str, overlap: int) -> str:
    overlap_words = math.floor(overlap / TOKENS_PER_WORD)
    if overlap_words <= 0:
        return ""
    return " ".join(text.split()[-overlap_words:])


def _make_segment(content: str, strategy: str, with_complexity: bool) -> TextSegment:
    content = content.strip()
    metadata: dict[str, Any] = {"strategy": strategy}
    if with_complexity:
        metadata["complexity"] = round(complexity(content), 4)
    return TextSegment(
        content=content,
        token_count=count_single(content),
        importance=importance(content),
        metadata=metadata,
    )


# ── Strategies ──


def _fixed(text: str, options: SegmentationOptions) -> list[TextSegment]:
    words = text.split()
    window = max(1, math.floor(options.max_tokens / TOKENS_PER_WORD))
    step = max(1, window - math.floor(options.overlap / TOKENS_PER_WORD))

    segments: list[TextSegment] = []
    for start in range(0, len(words), step):
        content = " ".join(words[start:start + window])
        segments.append(TextSegment(
            content=content,
            token_count=count_single(content),
            importance=0.5,
            metadata={"strategy": "fixed"},
        ))
        if start + window >= len(words):
            break
    return segments


def _pack(
    sentences: list[str],
    overlap: int,
    ceiling: Callable[[str], int],
    strategy: str,
    with_complexity: bool,
) -> list[TextSegment]:
    """Greedily pack sentences; on overflow close the segment and carry overlap."""
    segments: list[TextSegment] = []
    current = ""

    for sentence in sentences:
        limit = ceiling(sentence)
        candidate = f"{current} {sentence}" if current else sentence

        if current and count_single(candidate) > limit:
            segments.append(_make_segment(current, strategy, with_complexity))
            carried = _overlap_text(current, overlap)
            current = f"{carried} {sentence}" if carried else sentence
            if carried and count_single(current) > limit:
                current = sentence
        else:
            current = candidate

    if current.strip():
        segments.append(_make_segment(current, strategy, with_complexity))

    return segments


def _pack_paragraphs(
    text: str,
    options: SegmentationOptions,
    max_tokens: int,
    overlap: int,
    adaptive: bool,
    strategy: str,
) -> list[TextSegment]:
    if adaptive:
        def ceiling(sentence: str) -> int:
            reduction = 1 - COMPLEXITY_CEILING_REDUCTION * complexity(sentence)
            return max(1, math.floor(max_tokens * reduction))
    else:
        def ceiling(sentence: str) -> int:
            return max_tokens

    if options.split_by_paragraph:
        paragraphs = split_paragraphs(text, options.custom_separators)
    else:
        paragraphs = [text.strip()]

    segments: list[TextSegment] = []
    for paragraph in paragraphs:
        sentences = split_sentences(paragraph) if options.split_by_sentence else [paragraph]
        bounded = [piece for sentence in sentences for piece in _split_oversized(sentence, max_tokens)]
        segments.extend(_pack(bounded, overlap, ceiling, strategy, with_complexity=adaptive))
    return segments


def _semantic(text: str, options: SegmentationOptions) -> list[TextSegment]:
    return _pack_paragraphs(
        text, options, options.max_tokens, options.overlap, adaptive=False, strategy="semantic",
    )


def _adaptive(text: str, options: SegmentationOptions) -> list[TextSegment]:
    return _pack_paragraphs(
        text, options, options.max_tokens, options.overlap, adaptive=True, strategy="adaptive",
    )


def _hybrid(text: str, options: SegmentationOptions) -> list[TextSegment]:
    sub_max = max(1, math.floor(options.max_tokens * HYBRID_CEILING_SCALE))
    sub_overlap = min(options.overlap, sub_max - 1)

    refined: list[TextSegment] = []
    for seg in _pack_paragraphs(
        text, options, options.max_tokens, options.overlap, adaptive=False, strategy="hybrid",
    ):
        seg_complexity = complexity(seg.content)
        if (
            seg_complexity > HYBRID_COMPLEXITY_THRESHOLD
            and seg.token_count > options.max_tokens * HYBRID_SIZE_THRESHOLD
        ):
            refined.extend(_pack_paragraphs(
                seg.content, options, sub_max, sub_overlap, adaptive=True, strategy="hybrid",
            ))
        else:
            metadata = {**seg.metadata, "complexity": round(seg_complexity, 4)}
            refined.append(seg.model_copy(update={"metadata": metadata}))
    return refined


_STRATEGIES: dict[str, Callable[[str, SegmentationOptions], list[TextSegment]]] = {
    "fixed": _fixed,
    "semantic": _semantic,
    "adaptive": _adaptive,
    "hybrid": _hybrid,
}


@dataclass(frozen=True)
class _Attempt:
    segments: list[TextSegment] | None = None
    error: Exception | None = None


def _attempt(text: str, options: SegmentationOptions) -> _Attempt:
    try:
        return _Attempt(segments=_STRATEGIES[options.strategy](text, options))
    except Exception as exc:
        return _Attempt(error=exc)


def segment(
    text: str,
    options: SegmentationOptions | Mapping[str, Any] | None = None,
) -> list[TextSegment]:
    """
    Split ``text`` into bounded segments for embedding.

    ``options`` may be a SegmentationOptions or a plain mapping; invalid
    configuration raises a pydantic ValidationError. Empty text yields no
    segments.
    """
    if options is None:
        options = SegmentationOptions()
    elif not isinstance(options, SegmentationOptions):
        options = SegmentationOptions.model_validate(options)

    if not text or not text.strip():
        return []

    attempt = _attempt(text, options)
    if attempt.error is None:
        return attempt.segments or []

    logger.warning(
        "Segmentation strategy %r failed, falling back to fixed windows",
        options.strategy,
        exc_info=attempt.error,
    )
    return _fixed(text, options)


def segmentation_stats(segments: list[TextSegment]) -> dict[str, float]:
    if not segments:
        return {
            "total_segments": 0,
            "avg_tokens_per_segment": 0.0,
            "avg_importance": 0.0,
            "total_tokens": 0,
        }

    total_tokens = sum(s.token_count for s in segments)
    return {
        "total_segments": len(segments),
        "avg_tokens_per_segment": round(total_tokens / len(segments), 2),
        "avg_importance": round(sum(s.importance for s in segments) / len(segments), 4),
        "total_tokens": total_tokens,
    }
