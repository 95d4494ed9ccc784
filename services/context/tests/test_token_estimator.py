import pytest

from context_service.models import Message
from context_service.services.token_estimator import (
    analyze_distribution,
    count_message,
    count_single,
    count_tokens,
    estimate_cost,
    estimate_response_tokens,
    model_limit,
    remaining_tokens,
    self_check,
)


class TestCountSingle:
    def test_empty_string(self):
        assert count_single("") == 0

    def test_basic_estimate(self):
        # 2 words * 1.3 = 2.6 vs 11 chars * 0.25 = 2.75
        assert count_single("hello world") == 3

    def test_char_based_wins_for_long_words(self):
        assert count_single("a" * 400) == 100

    def test_word_based_wins_for_short_words(self):
        # 4 words * 1.3 = 5.2 vs 7 chars * 0.25 = 1.75
        assert count_single("a b c d") == 6

    def test_never_below_either_estimate(self):
        text = "Tokenization heuristics overestimate deliberately, never under."
        words = len(text.split())
        assert count_single(text) >= words * 1.3
        assert count_single(text) >= len(text) * 0.25


class TestCountTokens:
    def test_empty_list(self):
        assert count_tokens([]) == 0

    def test_single_short_message(self):
        # content 2 + role 2 + framing 4 + list overhead 2
        assert count_tokens([{"role": "user", "content": "hi"}]) == 10

    def test_models_and_mappings_agree(self):
        as_dicts = [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "What is the capital of France?"},
        ]
        as_models = [Message(**m) for m in as_dicts]
        assert count_tokens(as_dicts) == count_tokens(as_models)

    def test_list_overhead_added_once(self, sample_conversation):
        per_message = sum(count_message(m["role"], m["content"]) for m in sample_conversation)
        assert count_tokens(sample_conversation) == per_message + 2

    def test_missing_content_is_tolerated(self):
        assert count_tokens([{"role": "user"}]) == 4 + 2 + 2


class TestModelLimit:
    def test_known_model(self):
        assert model_limit("gpt-4") == 8192
        assert model_limit("claude-3-opus") == 200000

    def test_unknown_model_falls_back(self):
        assert model_limit("some-new-model") == 4096

    def test_missing_model_falls_back(self):
        assert model_limit(None) == 4096

    def test_registry_overrides_table(self):
        assert model_limit("gpt-4", registry={"gpt-4": 9000}) == 9000


class TestBudgetHelpers:
    def test_remaining_tokens(self):
        messages = [{"role": "user", "content": "hi"}]
        assert remaining_tokens(messages, "gpt-3.5-turbo", reserved=500) == 4096 - 10 - 500

    def test_remaining_tokens_floors_at_zero(self):
        messages = [{"role": "user", "content": "word " * 5000}]
        assert remaining_tokens(messages, "gpt-3.5-turbo") == 0

    def test_response_tokens_honours_max(self):
        messages = [{"role": "user", "content": "hi"}]
        assert estimate_response_tokens(messages, "gpt-3.5-turbo", max_tokens=100) == 100

    def test_response_tokens_defaults_to_quarter(self):
        messages = [{"role": "user", "content": "hi"}]
        assert estimate_response_tokens(messages, "gpt-3.5-turbo") == int((4096 - 10) * 0.25)


class TestAnalyzeDistribution:
    def test_totals_match_count(self, sample_conversation):
        dist = analyze_distribution(sample_conversation)
        assert dist["total"] == count_tokens(sample_conversation)
        assert dist["overhead"] == 4 * len(sample_conversation) + 2
        assert sum(dist["by_role"].values()) == dist["total"] - 2
        assert [m["index"] for m in dist["by_message"]] == [0, 1, 2, 3]

    def test_previews_truncated(self):
        dist = analyze_distribution([{"role": "user", "content": "x" * 150}])
        preview = dist["by_message"][0]["content"]
        assert preview.endswith("...")
        assert len(preview) == 103

    def test_empty(self):
        dist = analyze_distribution([])
        assert dist["total"] == 0
        assert dist["by_message"] == []


class TestEstimateCost:
    def test_known_model_pricing(self):
        assert estimate_cost(1000, 1000, "gpt-4") == pytest.approx(0.09)

    def test_unknown_model_uses_default_rate(self):
        assert estimate_cost(1000, 1000, "mystery") == pytest.approx(0.003)


def test_self_check():
    assert self_check() is True
