"""Assemble and validate the Unified Transcript envelope."""

import logging
from datetime import datetime, timezone
from typing import Optional

from .blobs import BlobMap
from .config import ConvertOptions
from .models import ConversionResult, GitContext, TokenUsage, TranscriptStats
from .paths import format_cwd_with_tilde
from .schemas import TRANSCRIPT_VERSION, validate_transcript

logger = logging.getLogger("agent_transcripts.assembler")

FILE_CHANGING_TOOLS = ("Edit", "Write")


def _count_diff_lines(diff: str) -> tuple[int, int]:
    added = removed = 0
    for line in diff.split("\n"):
        if line.startswith("+") and not line.startswith("+++"):
            added += 1
        elif line.startswith("-") and not line.startswith("---"):
            removed += 1
    return added, removed


def calculate_transcript_stats(messages: list[dict]) -> TranscriptStats:
    """Aggregate tool and edit statistics over unified messages.

    Tool calls that errored count as tools but not as file changes. A paired
    ``+``/``-`` line in an Edit diff counts as one modified line.
    """
    stats = TranscriptStats()
    changed_files: set[str] = set()

    for message in messages:
        if message["type"] == "user":
            stats.user_message_count += 1
            continue
        if message["type"] != "tool-call":
            continue

        stats.tool_count += 1
        if message.get("isError") or message.get("error"):
            continue

        tool_name = message.get("toolName")
        tool_input = message.get("input")
        tool_input = tool_input if isinstance(tool_input, dict) else {}
        tool_output = message.get("output")
        tool_output = tool_output if isinstance(tool_output, dict) else {}

        file_path = tool_input.get("file_path")
        if isinstance(file_path, str) and tool_name in FILE_CHANGING_TOOLS:
            changed_files.add(file_path)

        if tool_name == "Write" and isinstance(tool_input.get("content"), str):
            stats.lines_added += len(tool_input["content"].split("\n"))

        diff = tool_input.get("diff")
        if diff is None:
            diff = tool_output.get("diff")
        if tool_name == "Edit" and isinstance(diff, str):
            added, removed = _count_diff_lines(diff)
            modified = min(added, removed)
            stats.lines_added += added - modified
            stats.lines_removed += removed - modified
            stats.lines_modified += modified

    stats.files_changed = len(changed_files)
    return stats


def resolve_timestamp(
    timestamp: Optional[datetime], options: ConvertOptions, fallback: Optional[datetime] = None
) -> datetime:
    """Record timestamp, else ``fallback``, else the injected now, else the clock."""
    return timestamp or fallback or options.now or datetime.now(timezone.utc)


def assemble_transcript(
    *,
    source: str,
    transcript_id: str,
    timestamp: datetime,
    preview: Optional[str],
    model: Optional[str],
    client_version: Optional[str],
    token_usage: TokenUsage,
    model_usage: list[dict],
    cost_usd: float,
    git: Optional[GitContext],
    cwd: Optional[str],
    messages: list[dict],
    blobs: BlobMap,
) -> ConversionResult:
    """Build the envelope, gate it through the schema and pair it with its blobs."""
    stats = calculate_transcript_stats(messages)
    candidate = {
        "v": TRANSCRIPT_VERSION,
        "id": transcript_id,
        "source": source,
        "timestamp": timestamp,
        "preview": preview,
        "summary": None,
        "model": model,
        "clientVersion": client_version,
        "blendedTokens": token_usage.blended,
        "costUsd": cost_usd,
        "messageCount": len(messages),
        **stats.to_dict(),
        "tokenUsage": token_usage.to_dict(),
        "modelUsage": model_usage,
        "git": git.to_dict() if git is not None else None,
        "cwd": format_cwd_with_tilde(cwd) if cwd else "",
        "messages": messages,
    }
    transcript = validate_transcript(candidate)
    logger.debug(
        "Assembled %s transcript %s with %d messages and %d blobs",
        source,
        transcript_id,
        len(messages),
        len(blobs),
    )
    return ConversionResult(transcript=transcript, blobs=blobs)
