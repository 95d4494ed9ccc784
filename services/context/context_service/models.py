from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .config import settings
from .services.serialization import normalize_metadata, parse_timestamp

Role = Literal["system", "user", "assistant"]
ItemType = Literal["message", "memory", "context"]
SegmentationStrategy = Literal["fixed", "semantic", "adaptive", "hybrid"]
QueryType = Literal["factual", "conversational", "creative", "analytical"]
TimeRange = Literal["recent", "historical", "mixed"]


def clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


# ── Domain types ──


class Message(BaseModel):
    """One conversational turn. ``token_count`` is informational only."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    timestamp: datetime | None = None
    token_count: int | None = None
    id: str | None = None
    function_call: dict[str, Any] | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)


class RetrievedFragment(BaseModel):
    """A candidate piece of memory or external knowledge, read-only here."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    score: float = 0.0
    timestamp: datetime | None = None
    importance: float = 0.5
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def timestamp_from_metadata(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("timestamp") is None:
            metadata = normalize_metadata(data.get("metadata"))
            if metadata.get("timestamp") is not None:
                data = {**data, "metadata": metadata, "timestamp": metadata["timestamp"]}
        return data

    @field_validator("score", "importance", mode="after")
    @classmethod
    def clamp(cls, v: float) -> float:
        return clamp_unit(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def coerce_timestamp(cls, v: Any) -> datetime | None:
        return parse_timestamp(v)

    @field_validator("metadata", mode="before")
    @classmethod
    def coerce_metadata(cls, v: Any) -> dict[str, Any]:
        return normalize_metadata(v)


class PriorityItem(BaseModel):
    """Ranking wrapper around a message or fragment, created per call."""

    id: str
    content: str
    type: ItemType
    priority: float = Field(ge=0.0, le=1.0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def token_count(self) -> int:
        return int(self.metadata.get("token_count", 0))


class TextSegment(BaseModel):
    content: str
    token_count: int = Field(ge=0)
    importance: float = 0.5
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("importance", mode="after")
    @classmethod
    def clamp(cls, v: float) -> float:
        return clamp_unit(v)


# ── Configuration values ──


class PriorityConfig(BaseModel):
    """Scoring weights. Weights need not sum to 1; scores are clamped."""

    model_config = ConfigDict(frozen=True)

    time_decay_factor: float = Field(default=0.1, ge=0.0)
    importance_weight: float = Field(default=0.3, ge=0.0)
    relevance_weight: float = Field(default=0.4, ge=0.0)
    recency_weight: float = Field(default=0.2, ge=0.0)
    token_efficiency_weight: float = Field(default=0.1, ge=0.0)
    max_items: int = Field(default=50, ge=1)
    min_priority: float = Field(default=0.1, ge=0.0, le=1.0)


class SemanticContext(BaseModel):
    query_type: QueryType | None = None
    time_range: TimeRange | None = None


class SegmentationOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    strategy: SegmentationStrategy = "semantic"
    max_tokens: int = Field(default_factory=lambda: settings.default_max_chunk_size, gt=0)
    overlap: int = Field(default_factory=lambda: settings.default_overlap_size, ge=0)
    split_by_paragraph: bool = True
    split_by_sentence: bool = True
    custom_separators: list[str] = Field(default_factory=list, max_length=10)

    @model_validator(mode="after")
    def check_overlap(self) -> SegmentationOptions:
        if self.overlap >= self.max_tokens:
            raise ValueError(
                f"overlap ({self.overlap}) must be smaller than max_tokens ({self.max_tokens})"
            )
        return self


class AssemblyOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    preserve_recent: int = Field(default_factory=lambda: settings.preserve_recent_messages, ge=0)
    compression_keep_recent: int = Field(default=4, ge=0)
    compression_char_limit: int = Field(default=200, ge=1)
    conversation_share: float = Field(default=0.7, gt=0.0, lt=1.0)


class OptimizationResult(BaseModel):
    messages: list[Message]
    was_optimized: bool
    original_tokens: int
    optimized_tokens: int
    compression_ratio: float
    strategy: str
    fragments_included: int


# ── API request / response models ──


class TokenCountRequest(BaseModel):
    messages: list[Message] = Field(default_factory=list, max_length=1000)
    model: str | None = Field(default=None, max_length=100)


class TokenCountResponse(BaseModel):
    tokens: int
    model: str
    model_limit: int
    remaining_tokens: int
    distribution: dict[str, Any]


class SegmentRequest(BaseModel):
    text: str = Field(..., max_length=200_000)
    options: SegmentationOptions = Field(default_factory=SegmentationOptions)


class SegmentResponse(BaseModel):
    segments: list[TextSegment]
    count: int
    stats: dict[str, float]


class RankRequest(BaseModel):
    messages: list[Message] = Field(default_factory=list, max_length=1000)
    fragments: list[RetrievedFragment] = Field(default_factory=list, max_length=500)
    query: str | None = Field(default=None, max_length=1000)
    config: PriorityConfig | None = None
    context: SemanticContext | None = None
    token_budget: int | None = Field(default=None, gt=0)
    preserve_types: list[ItemType] | None = None


class RankResponse(BaseModel):
    items: list[PriorityItem]
    count: int
    selected: list[PriorityItem] | None = None
    analysis: dict[str, Any]


class OptimizeRequest(BaseModel):
    messages: list[Message] = Field(..., min_length=1, max_length=1000)
    fragments: list[RetrievedFragment] = Field(default_factory=list, max_length=500)
    max_tokens: int | None = Field(default=None, gt=0)
    model: str | None = Field(default=None, max_length=100)
    query: str | None = Field(default=None, max_length=1000)
    context: SemanticContext | None = None
    options: AssemblyOptions = Field(default_factory=AssemblyOptions)
    priority_config: PriorityConfig | None = None


class OptimizeResponse(BaseModel):
    result: OptimizationResult
    analysis: dict[str, Any]


class HealthResponse(BaseModel):
    status: str = "ok"
    components: dict[str, bool] = Field(default_factory=dict)
