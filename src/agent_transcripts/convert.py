"""Pick the right converter for a transcript file."""

import json
import logging
from pathlib import Path
from typing import Iterable, Optional

from .claude_code import convert_claude_code_file
from .cline import convert_cline_file
from .codex import ROLLOUT_FILENAME_RE, convert_codex_file
from .config import ConvertOptions
from .models import ConversionResult

logger = logging.getLogger("agent_transcripts.convert")

SOURCES = ("claude-code", "codex", "cline")

CONVERTERS = {
    "claude-code": convert_claude_code_file,
    "codex": convert_codex_file,
    "cline": convert_cline_file,
}


def _first_record_type(file_path: Path) -> Optional[str]:
    with open(file_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                return None
            return obj.get("type") if isinstance(obj, dict) else None
    return None


def detect_source(file_path: Path) -> str:
    """Guess which agent wrote ``file_path``.

    ``.json`` files are Cline task histories; ``rollout-*.jsonl`` files, or
    JSONL whose first record is ``session_meta``, are Codex; anything else is
    treated as Claude Code.
    """
    file_path = Path(file_path)
    if file_path.suffix == ".json":
        return "cline"
    if ROLLOUT_FILENAME_RE.match(file_path.name):
        return "codex"
    if _first_record_type(file_path) == "session_meta":
        return "codex"
    return "claude-code"


def convert_file(
    file_path: Path,
    options: Optional[ConvertOptions] = None,
    source: Optional[str] = None,
) -> Optional[ConversionResult]:
    """Convert one file, detecting its source unless ``source`` is given."""
    file_path = Path(file_path)
    source = source or detect_source(file_path)
    if source not in CONVERTERS:
        raise ValueError(f"Unknown transcript source: {source}")
    logger.debug("Converting %s as %s", file_path, source)
    return CONVERTERS[source](file_path, options)


def convert_files(
    file_paths: Iterable[Path],
    options: Optional[ConvertOptions] = None,
    source: Optional[str] = None,
) -> list[ConversionResult]:
    """Convert each file on its own; files with no transcript are dropped."""
    results = []
    for file_path in file_paths:
        result = convert_file(file_path, options, source)
        if result is not None:
            results.append(result)
    return results
