"""Tests for usage aggregation and model naming."""

from agent_transcripts.models import TokenUsage
from agent_transcripts.parser import parse_records, flatten_records
from agent_transcripts.usage import (
    aggregate_usage,
    collect_usage_records,
    model_display_name,
    model_usage_entries,
    select_primary_model,
    standardize_model_name,
    usage_from_claude,
)


def _assistant(uuid, timestamp, usage, message_id=None, request_id=None, model="claude-sonnet-4-5"):
    record = {
        "uuid": uuid,
        "type": "assistant",
        "timestamp": timestamp,
        "message": {"role": "assistant", "model": model, "content": [], "usage": usage},
    }
    if message_id:
        record["message"]["id"] = message_id
    if request_id:
        record["requestId"] = request_id
    return record


def _flat(*records):
    return flatten_records(parse_records(records))


class TestTokenUsage:
    def test_blended_nets_out_cached(self):
        usage = TokenUsage(
            input_tokens=100, cached_input_tokens=40, output_tokens=10, reasoning_output_tokens=0
        )
        assert usage.blended == 70

    def test_blended_never_negative_input(self):
        usage = TokenUsage(input_tokens=10, cached_input_tokens=40, output_tokens=5)
        assert usage.blended == 5

    def test_to_dict_is_camel_case(self):
        assert TokenUsage(1, 2, 3, 4, 5).to_dict() == {
            "inputTokens": 1,
            "cachedInputTokens": 2,
            "outputTokens": 3,
            "reasoningOutputTokens": 4,
            "totalTokens": 5,
        }


class TestUsageFromClaude:
    def test_cache_counts_as_input(self):
        usage = usage_from_claude(
            {
                "input_tokens": 10,
                "cache_creation_input_tokens": 20,
                "cache_read_input_tokens": 30,
                "output_tokens": 5,
            }
        )
        assert usage.input_tokens == 60
        assert usage.cached_input_tokens == 30
        assert usage.total_tokens == 65


class TestAggregateUsage:
    def test_dedup_by_message_and_request_id(self):
        flat = _flat(
            _assistant("a", "2026-01-01T00:00:00Z", {"input_tokens": 10, "output_tokens": 1}, "m1", "r1"),
            _assistant("b", "2026-01-01T00:00:01Z", {"input_tokens": 10, "output_tokens": 1}, "m1", "r1"),
            _assistant("c", "2026-01-01T00:00:02Z", {"input_tokens": 5, "output_tokens": 1}, "m2", "r2"),
        )
        records = collect_usage_records(flat)
        assert len(records) == 2
        total, per_model = aggregate_usage(records)
        assert total.input_tokens == 15
        assert total.output_tokens == 2
        assert per_model["claude-sonnet-4-5"].total_tokens == 17

    def test_falls_back_to_record_uuid(self):
        flat = _flat(
            _assistant("a", "2026-01-01T00:00:00Z", {"input_tokens": 1}),
            _assistant("b", "2026-01-01T00:00:01Z", {"input_tokens": 1}),
        )
        assert len(collect_usage_records(flat)) == 2

    def test_user_records_ignored(self):
        flat = _flat(
            {"uuid": "u", "type": "user", "message": {"content": "hi", "usage": {"input_tokens": 9}}}
        )
        assert collect_usage_records(flat) == []


class TestModelNames:
    def test_standardize_adds_prefix(self):
        assert standardize_model_name("claude-opus-4-5") == "anthropic/claude-opus-4-5"
        assert standardize_model_name("gpt-5", "openai") == "openai/gpt-5"
        assert standardize_model_name("openrouter/x") == "openrouter/x"

    def test_primary_model_has_most_tokens(self):
        per_model = {
            "claude-haiku-4-5": TokenUsage(input_tokens=10, total_tokens=10),
            "claude-opus-4-5": TokenUsage(input_tokens=100, total_tokens=100),
        }
        assert select_primary_model(per_model) == "anthropic/claude-opus-4-5"
        assert select_primary_model({}) is None

    def test_model_usage_entries(self):
        entries = model_usage_entries({"claude-opus-4-5": TokenUsage(total_tokens=3)})
        assert entries[0]["model"] == "anthropic/claude-opus-4-5"
        assert entries[0]["usage"]["totalTokens"] == 3

    def test_display_names(self):
        assert model_display_name("anthropic/claude-opus-4-5-20251101") == "Claude Opus 4.5"
        assert model_display_name("openai/gpt-5.2-codex") == "GPT-5.2-Codex"
        assert model_display_name("openai/gpt-4o") == "gpt-4o"
        assert model_display_name(None) == ""
