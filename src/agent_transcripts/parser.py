"""Parse raw transcript records and flatten the record tree."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .models import MessagePayload, RawRecord

logger = logging.getLogger("agent_transcripts.parser")

USAGE_FIELDS = (
    "input_tokens",
    "cache_creation_input_tokens",
    "cache_read_input_tokens",
    "output_tokens",
    "reasoning_output_tokens",
)


def parse_jsonl_file(file_path: Path) -> Iterator[dict]:
    """Yield each JSON object from a JSONL file."""
    with open(file_path, "r", encoding="utf-8") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if line:
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed line %d in %s", line_number, file_path)
                    continue
                if isinstance(obj, dict):
                    yield obj


def read_json_records(file_path: Path) -> list[dict]:
    """Read a transcript stored as JSON Lines or as one JSON array."""
    with open(file_path, "r", encoding="utf-8") as f:
        content = f.read()

    if content.lstrip().startswith("["):
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.debug("%s is not a valid JSON array; reading as JSON Lines", file_path)
        else:
            if isinstance(data, list):
                return [item for item in data if isinstance(item, dict)]

    return list(parse_jsonl_file(file_path))


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_ms(value: Optional[str]) -> int:
    """Milliseconds since the epoch, 0 for a missing or invalid timestamp."""
    parsed = parse_timestamp(value)
    if parsed is None:
        return 0
    return int(parsed.timestamp() * 1000)


def as_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def extract_usage(value: Any) -> Optional[dict[str, int]]:
    """Keep only the numeric usage counters of a usage block."""
    if not isinstance(value, dict):
        return None
    usage = {
        key: value[key]
        for key in USAGE_FIELDS
        if isinstance(value.get(key), (int, float)) and not isinstance(value.get(key), bool)
    }
    return usage or None


def extract_message_payload(value: Any) -> Optional[MessagePayload]:
    if not isinstance(value, dict):
        return None
    return MessagePayload(
        id=as_str(value.get("id")),
        role=as_str(value.get("role")),
        content=value.get("content"),
        model=as_str(value.get("model")),
        usage=extract_usage(value.get("usage")),
    )


def parse_record(obj: Any) -> Optional[RawRecord]:
    """Turn one raw JSON object into a RawRecord.

    Summary records and records without a ``uuid`` carry no conversation
    content and yield None.
    """
    if not isinstance(obj, dict):
        return None
    record_type = as_str(obj.get("type")) or ""
    if record_type == "summary":
        return None
    uuid = obj.get("uuid")
    if not isinstance(uuid, str) or not uuid:
        return None

    return RawRecord(
        uuid=uuid,
        type=record_type,
        timestamp=as_str(obj.get("timestamp")),
        parent_uuid=as_str(obj.get("parentUuid")),
        is_sidechain=bool(obj.get("isSidechain")),
        is_meta=bool(obj.get("isMeta")),
        is_compact_summary=bool(obj.get("isCompactSummary")),
        session_id=as_str(obj.get("sessionId")),
        cwd=as_str(obj.get("cwd")),
        git_branch=as_str(obj.get("gitBranch")),
        message=extract_message_payload(obj.get("message")),
        raw=obj,
    )


def parse_records(objects: Iterable[Any]) -> dict[str, RawRecord]:
    """Index parsed records by uuid.

    A repeated uuid replaces the earlier record but keeps its position.
    """
    records: dict[str, RawRecord] = {}
    skipped = 0
    for obj in objects:
        record = parse_record(obj)
        if record is None:
            skipped += 1
            continue
        records[record.uuid] = record
    if skipped:
        logger.debug("Skipped %d records without conversation content", skipped)
    return records


def flatten_records(records: dict[str, RawRecord]) -> list[RawRecord]:
    """Order all non-sidechain records by (timestamp, uuid).

    Parent pointers are ignored: parallel tool results each point at their
    own call, so walking the chain would drop all but one branch.
    """
    flat = [record for record in records.values() if not record.is_sidechain]
    flat.sort(key=lambda record: (timestamp_ms(record.timestamp), record.uuid))
    return flat
