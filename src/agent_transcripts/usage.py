"""Token usage aggregation and model naming."""

import re
from typing import Any, Optional

from .models import RawRecord, TokenUsage

CLAUDE_MODEL_PATTERN = re.compile(
    r"^claude-(?:(\d+)-(\d+)-)?(opus|sonnet|haiku)(?:-(\d+)(?:-(\d+))?)?-\d{8}$",
    re.IGNORECASE,
)
GPT_CODEX_PATTERN = re.compile(r"^gpt-([\d.]+)-codex$", re.IGNORECASE)


def ensure_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def non_empty(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def usage_from_claude(usage: dict[str, Any]) -> TokenUsage:
    """Convert an Anthropic usage block to canonical form.

    Cache creation and cache reads both count as input; only reads are
    reported as cached.
    """
    input_tokens = ensure_int(usage.get("input_tokens"))
    cache_creation = ensure_int(usage.get("cache_creation_input_tokens"))
    cache_read = ensure_int(usage.get("cache_read_input_tokens"))
    output = ensure_int(usage.get("output_tokens"))
    reasoning = ensure_int(usage.get("reasoning_output_tokens"))
    total_input = input_tokens + cache_creation + cache_read
    return TokenUsage(
        input_tokens=total_input,
        cached_input_tokens=cache_read,
        output_tokens=output,
        reasoning_output_tokens=reasoning,
        total_tokens=total_input + output + reasoning,
    )


def usage_key(record: RawRecord) -> str:
    """Dedup key for a usage-bearing record."""
    message_id = non_empty(record.message.id if record.message else None)
    request_id = non_empty(record.raw.get("requestId"))
    if message_id and request_id:
        return f"{message_id}:{request_id}"
    return message_id or request_id or record.uuid


def collect_usage_records(transcript: list[RawRecord]) -> list[RawRecord]:
    """Assistant records with a usage block, one per completion.

    A later copy of the same completion replaces the earlier one in place.
    """
    unique: dict[str, RawRecord] = {}
    for record in transcript:
        if record.type != "assistant":
            continue
        if record.message is None or not record.message.usage:
            continue
        unique[usage_key(record)] = record
    return list(unique.values())


def aggregate_usage(
    records: list[RawRecord],
) -> tuple[TokenUsage, dict[str, TokenUsage]]:
    """Sum usage overall and per raw model name."""
    total = TokenUsage()
    per_model: dict[str, TokenUsage] = {}
    for record in records:
        usage = record.message.usage if record.message else None
        if not usage:
            continue
        counted = usage_from_claude(usage)
        total.add(counted)
        model = record.message.model
        if model:
            per_model.setdefault(model, TokenUsage()).add(counted)
    return total, per_model


def standardize_model_name(model: str, provider: str = "anthropic") -> str:
    """Ensure a ``provider/`` prefix on a model name."""
    if "/" in model:
        return model
    return f"{provider}/{model}"


def select_primary_model(
    model_usage: dict[str, TokenUsage], provider: str = "anthropic"
) -> Optional[str]:
    """The model with the most tokens; the first one wins ties."""
    primary = None
    highest = -1
    for model, usage in model_usage.items():
        tokens = usage.total_tokens if usage.total_tokens > 0 else (
            usage.input_tokens + usage.output_tokens
        )
        if tokens > highest:
            highest = tokens
            primary = model
    return standardize_model_name(primary, provider) if primary else None


def model_usage_entries(
    model_usage: dict[str, TokenUsage], provider: str = "anthropic"
) -> list[dict]:
    return [
        {"model": standardize_model_name(model, provider), "usage": usage.to_dict()}
        for model, usage in model_usage.items()
    ]


def model_display_name(model: Optional[str]) -> str:
    """Human-friendly model name, e.g. ``Claude Opus 4.5`` or ``GPT-5.2-Codex``."""
    if not model:
        return ""
    bare = model.split("/", 1)[1] if "/" in model else model

    match = CLAUDE_MODEL_PATTERN.match(bare)
    if match:
        old_major, old_minor, family, new_major, new_minor = match.groups()
        major = new_major or old_major
        minor = new_minor or old_minor
        version = f"{major}.{minor}" if minor else major
        name = f"Claude {family.capitalize()}"
        return f"{name} {version}" if version else name

    match = GPT_CODEX_PATTERN.match(bare)
    if match:
        return f"GPT-{match.group(1)}-Codex"

    return bare
