"""Convert Claude Code session transcripts (JSONL record graphs)."""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional

from .assembler import assemble_transcript, resolve_timestamp
from .blobs import BlobMap, extract_image_references, merge_image_references, sanitize_images
from .config import ConvertOptions
from .content import CommandTracker, find_preview, strip_system_reminders
from .git import infer_git_context, resolve_git_context
from .linker import ToolCallLinker, attach_tool_result
from .models import ConversionResult, RawRecord, ToolResult
from .parser import flatten_records, parse_records, parse_timestamp, read_json_records
from .pricing import PricingTable, calculate_cost, resolve_pricing
from .schemas import validate_message
from .tools import sanitize_tool_call
from .usage import (
    aggregate_usage,
    collect_usage_records,
    ensure_int,
    model_usage_entries,
    select_primary_model,
)

logger = logging.getLogger("agent_transcripts.claude_code")

SOURCE = "claude-code"


def convert_claude_code_transcript(
    records: Iterable[dict], options: Optional[ConvertOptions] = None
) -> Optional[ConversionResult]:
    """Convert in-memory Claude Code records.

    Returns None when no usable record remains after branch filtering.
    Without an injected git context, it is inferred from the cwd path.
    """
    options = options or ConvertOptions()
    flat = flatten_records(parse_records(records))
    if not flat:
        return None

    if options.has_git_context:
        git = options.git_context
    else:
        branch = next((r.git_branch for r in flat if r.git_branch), None)
        git = infer_git_context(derive_working_directory(flat), branch)
    return _convert(flat, options, git)


def convert_claude_code_file(
    file_path: Path, options: Optional[ConvertOptions] = None
) -> Optional[ConversionResult]:
    """Convert a Claude Code JSONL session file.

    The git context is read from the repository on disk, and the file's
    modification time stands in for a missing record timestamp.
    """
    options = options or ConvertOptions()
    file_path = Path(file_path)
    flat = flatten_records(parse_records(read_json_records(file_path)))
    if not flat:
        logger.debug("No usable records in %s", file_path)
        return None

    if options.has_git_context:
        git = options.git_context
    else:
        git = resolve_git_context(derive_working_directory(flat), flat[-1].git_branch)
    return _convert(flat, options, git, fallback_timestamp=_file_mtime(file_path))


def convert_claude_code_files(
    file_paths: Iterable[Path], options: Optional[ConvertOptions] = None
) -> list[ConversionResult]:
    """Convert each file independently, dropping empty ones."""
    results = []
    for file_path in file_paths:
        result = convert_claude_code_file(file_path, options)
        if result is not None:
            results.append(result)
    return results


def _file_mtime(file_path: Path) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(file_path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return None


def _convert(
    flat: list[RawRecord],
    options: ConvertOptions,
    git,
    fallback_timestamp: Optional[datetime] = None,
) -> ConversionResult:
    last = flat[-1]
    usage_records = collect_usage_records(flat)
    token_usage, per_model = aggregate_usage(usage_records)
    messages, blobs = convert_records_to_messages(flat)

    return assemble_transcript(
        source=SOURCE,
        transcript_id=find_session_id(flat) or last.uuid,
        timestamp=resolve_timestamp(
            parse_timestamp(last.timestamp), options, fallback_timestamp
        ),
        preview=find_preview(flat),
        model=select_primary_model(per_model),
        client_version=options.client_version or extract_client_version(flat),
        token_usage=token_usage,
        model_usage=model_usage_entries(per_model),
        cost_usd=calculate_claude_cost(usage_records, options.pricing_table),
        git=git,
        cwd=derive_working_directory(flat),
        messages=messages,
        blobs=blobs,
    )


def find_session_id(transcript: list[RawRecord]) -> Optional[str]:
    for record in transcript:
        session_id = (record.session_id or "").strip()
        if session_id:
            return session_id
    return None


def derive_working_directory(transcript: list[RawRecord]) -> Optional[str]:
    return next((record.cwd for record in transcript if record.cwd), None)


def extract_client_version(transcript: list[RawRecord]) -> Optional[str]:
    for record in transcript:
        version = record.raw.get("version")
        if isinstance(version, str) and version:
            return version
    return None


def calculate_claude_cost(usage_records: list[RawRecord], pricing: PricingTable) -> float:
    """Bill each completion against its own model's rates."""
    if not pricing:
        return 0.0
    total = 0.0
    for record in usage_records:
        model = record.message.model if record.message else None
        usage = record.message.usage if record.message else None
        if not model or not usage:
            continue
        entry = resolve_pricing(model, pricing)
        if entry is None:
            continue
        total += calculate_cost(
            entry,
            input_tokens=ensure_int(usage.get("input_tokens")),
            output_tokens=ensure_int(usage.get("output_tokens")),
            cache_creation_input_tokens=ensure_int(usage.get("cache_creation_input_tokens")),
            cache_read_input_tokens=ensure_int(usage.get("cache_read_input_tokens")),
        )
    return total


def message_metadata(record: RawRecord) -> dict:
    metadata = {
        "id": record.message.id if record.message else None,
        "timestamp": record.timestamp,
        "model": record.message.model if record.message else None,
    }
    return {key: value for key, value in metadata.items() if value is not None}


def _tool_result_from_part(part: dict, record: RawRecord) -> ToolResult:
    """Build a pending result from a ``tool_result`` part.

    The record-level ``toolUseResult`` carries the structured output and
    wins over the part's plain content.
    """
    call_id = part.get("tool_use_id")
    output = part.get("content")
    tool_use_result = record.raw.get("toolUseResult")
    if tool_use_result is None:
        tool_use_result = record.raw.get("tool_use_result")
    if tool_use_result is not None and tool_use_result != "":
        output = tool_use_result

    error = part.get("error")
    raw_is_error = part.get("is_error")
    if raw_is_error is None:
        raw_is_error = part.get("isError")
    if isinstance(raw_is_error, bool):
        is_error = raw_is_error
    elif isinstance(part.get("success"), bool):
        is_error = not part["success"]
    else:
        is_error = None

    return ToolResult(
        call_id=call_id if isinstance(call_id, str) else None,
        output=output,
        error=error if isinstance(error, str) else None,
        is_error=is_error,
    )


def extract_user_content(
    record: RawRecord, blobs: BlobMap
) -> tuple[list[str], list[dict], list[ToolResult]]:
    """Split a user record into texts, image references and tool results."""
    content = record.message.content if record.message else None
    if isinstance(content, str):
        return ([content] if content else []), [], []
    if not isinstance(content, list):
        return [], [], []

    texts: list[str] = []
    images: list[dict] = []
    tool_results: list[ToolResult] = []

    for part in content:
        if isinstance(part, str):
            if part:
                texts.append(part)
            continue
        if not isinstance(part, dict):
            continue

        part_type = part.get("type")
        if part_type == "tool_result":
            tool_results.append(_tool_result_from_part(part, record))
        elif part_type == "text" and isinstance(part.get("text"), str):
            if part["text"]:
                texts.append(part["text"])
        elif part_type == "image":
            sanitized = sanitize_images(part, blobs)
            images.extend(ref.to_dict() for ref in extract_image_references(sanitized))
        else:
            for key in ("content", "text"):
                value = part.get(key)
                if isinstance(value, str) and value:
                    texts.append(value)

    return texts, images, tool_results


def convert_records_to_messages(
    transcript: list[RawRecord],
) -> tuple[list[dict], BlobMap]:
    """Turn the flat record sequence into unified messages.

    User turns logged twice under the same timestamp collapse into one
    message that keeps the images; repeated assistant parts are dropped.
    Images from an image-only user record wait for the next user text.
    """
    messages: list[dict] = []
    blobs: BlobMap = {}
    linker = ToolCallLinker()
    commands = CommandTracker()
    seen_user_messages: dict[str, int] = {}
    seen_assistant_parts: set[str] = set()
    # Images are only stored once a user message references them.
    pending_images: list[dict] = []
    pending_blobs: BlobMap = {}
    cwd = derive_working_directory(transcript)

    def sanitize(message: dict) -> dict:
        return sanitize_tool_call(message, cwd)

    for record in transcript:
        if record.is_meta:
            continue

        metadata = message_metadata(record)
        timestamp = metadata.get("timestamp")

        if record.type == "user":
            record_blobs: BlobMap = {}
            texts, images, tool_results = extract_user_content(record, record_blobs)
            for image in images:
                if all(image["sha256"] != held["sha256"] for held in pending_images):
                    pending_images.append(image)
            pending_blobs.update(record_blobs)

            for text in texts:
                if not text.strip():
                    continue

                emitted = commands.feed(text, record.uuid, timestamp)
                if emitted is not None:
                    messages.extend(validate_message(m) for m in emitted)
                    continue

                cleaned = strip_system_reminders(text)
                if not cleaned:
                    continue

                message: dict[str, Any] = {
                    "type": "compaction-summary" if record.is_compact_summary else "user",
                    "text": cleaned,
                    "id": record.uuid,
                }
                if timestamp is not None:
                    message["timestamp"] = timestamp

                if record.is_compact_summary:
                    messages.append(validate_message(message))
                    continue

                dedupe_key = f"{timestamp}:{cleaned}"
                if dedupe_key in seen_user_messages:
                    existing = messages[seen_user_messages[dedupe_key]]
                    if pending_images and not existing.get("images"):
                        existing["images"] = pending_images
                        blobs.update(pending_blobs)
                    pending_images, pending_blobs = [], {}
                    continue

                if pending_images:
                    message["images"] = pending_images
                    blobs.update(pending_blobs)
                    pending_images, pending_blobs = [], {}
                seen_user_messages[dedupe_key] = len(messages)
                messages.append(validate_message(message))

            for result in tool_results:
                attach_tool_result(messages, linker, result, blobs, sanitize)
            continue

        if record.type != "assistant":
            continue
        # Unattached images do not carry past an assistant turn.
        pending_images, pending_blobs = [], {}
        content = record.message.content if record.message else None
        if not isinstance(content, list):
            continue

        for part in content:
            if not isinstance(part, dict):
                continue
            part_type = part.get("type")

            if part_type in ("thinking", "text"):
                text = part.get("thinking" if part_type == "thinking" else "text")
                if not isinstance(text, str):
                    continue
                kind = "thinking" if part_type == "thinking" else "agent"
                dedupe_key = f"{kind}:{metadata.get('id')}:{timestamp}:{text}"
                if dedupe_key in seen_assistant_parts:
                    continue
                seen_assistant_parts.add(dedupe_key)
                messages.append(validate_message({"type": kind, "text": text, **metadata}))

            elif part_type == "tool_use":
                call_id = part.get("id")
                tool_name = part.get("name") if isinstance(part.get("name"), str) else None
                tool_call = {"type": "tool-call", "toolName": tool_name, **metadata}
                if part.get("input") is not None:
                    tool_call["input"] = sanitize_images(part["input"], blobs)
                    merge_image_references(tool_call, tool_call["input"])
                messages.append(sanitize(tool_call))
                if isinstance(call_id, str):
                    linker.register(call_id, len(messages) - 1)

    messages.extend(validate_message(m) for m in commands.flush())
    return messages, blobs
