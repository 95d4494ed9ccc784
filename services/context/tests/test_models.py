from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from context_service.models import (
    AssemblyOptions,
    Message,
    PriorityConfig,
    PriorityItem,
    RetrievedFragment,
    TextSegment,
)


class TestMessage:
    def test_timestamp_coerced(self):
        message = Message(role="user", content="hi", timestamp="2024-01-01T00:00:00Z")
        assert message.timestamp == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            Message(role="tool", content="hi")

    def test_frozen(self):
        message = Message(role="user", content="hi")
        with pytest.raises(ValidationError):
            message.content = "changed"


class TestRetrievedFragment:
    def test_scores_clamped(self):
        fragment = RetrievedFragment(id="f", content="c", score=1.7, importance=-0.2)
        assert fragment.score == 1.0
        assert fragment.importance == 0.0

    def test_timestamp_read_from_metadata(self):
        fragment = RetrievedFragment.model_validate({
            "id": "f",
            "content": "c",
            "metadata": '{"timestamp": 1700000000}',
        })
        assert fragment.timestamp == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
        assert fragment.metadata == {"timestamp": 1700000000}

    def test_explicit_timestamp_wins(self):
        fragment = RetrievedFragment.model_validate({
            "id": "f",
            "content": "c",
            "timestamp": "2024-01-01T00:00:00Z",
            "metadata": {"timestamp": "2020-01-01T00:00:00Z"},
        })
        assert fragment.timestamp.year == 2024

    def test_malformed_metadata_tolerated(self):
        fragment = RetrievedFragment(id="f", content="c", metadata="not-json")
        assert fragment.metadata == {}


class TestPriorityItem:
    def test_token_count_from_metadata(self):
        item = PriorityItem(id="i", content="c", type="memory", priority=0.5,
                            metadata={"token_count": 12})
        assert item.token_count == 12

    def test_priority_bounds(self):
        with pytest.raises(ValidationError):
            PriorityItem(id="i", content="c", type="memory", priority=1.5)


class TestConfigModels:
    def test_priority_config_defaults(self):
        config = PriorityConfig()
        assert config.relevance_weight == 0.4
        assert config.max_items == 50
        assert config.min_priority == 0.1

    def test_priority_config_frozen(self):
        with pytest.raises(ValidationError):
            PriorityConfig().relevance_weight = 0.9

    def test_negative_weight_rejected(self):
        with pytest.raises(ValidationError):
            PriorityConfig(recency_weight=-1)

    def test_assembly_options_defaults(self):
        options = AssemblyOptions()
        assert options.preserve_recent == 2
        assert options.conversation_share == 0.7

    def test_segment_importance_clamped(self):
        assert TextSegment(content="x", token_count=1, importance=3).importance == 1.0
