"""Extract readable text from message payloads and parse command envelopes."""

import re
from typing import Any, Optional

from .models import MessagePayload, RawRecord

MAX_SUMMARY_LINES = 3

IGNORE_STATUS_MESSAGES = {
    "[request interrupted by user]",
    "[request aborted by user]",
    "[request cancelled by user]",
}

# Slash commands with no conversational value; their stdout is dropped too
IGNORED_COMMANDS = {"/clear"}

COMMAND_ENVELOPE_PATTERN = re.compile(r"^</?(?:command|local)-[a-z-]+>", re.IGNORECASE)
SHELL_PROMPT_PATTERN = re.compile(r"^[α-ωΑ-Ω]\s", re.IGNORECASE)
COMMAND_NAME_PATTERN = re.compile(r"<command-name>(.*?)</command-name>", re.DOTALL)
COMMAND_ARGS_PATTERN = re.compile(r"<command-args>(.*?)</command-args>", re.DOTALL)
LOCAL_COMMAND_STDOUT_PATTERN = re.compile(
    r"^<local-command-stdout>(.*)</local-command-stdout>$", re.DOTALL
)
SYSTEM_REMINDER_PATTERN = re.compile(r"<system-reminder>[\s\S]*?</system-reminder>")
ANSI_ESCAPE_PATTERN = re.compile(r"\x1B\[[0-9;]*m")
WHITESPACE_PATTERN = re.compile(r"\s+")
ALPHANUMERIC_PATTERN = re.compile(r"[a-z0-9]", re.IGNORECASE)

NON_PROMPT_PREFIXES = (
    "npm ",
    "npm:",
    "npm error",
    "node:",
    "node.js",
    "error:",
    "fatal:",
    "warning:",
    "traceback (most recent call last):",
    "usage:",
    "hint:",
    "note:",
    "code:",
    "requirestack",
)

PROMPT_KEYWORD_PATTERN = re.compile(
    r"\b(fix|please|should|update|change|add|remove|create|write|implement|refactor"
    r"|investigate|explain|help|why|what|how|need|ensure|make|build|let's|optimize"
    r"|review|check)\b",
    re.IGNORECASE,
)

CUE_PHRASES = (
    "can you",
    "can we",
    "could you",
    "could we",
    "would you",
    "would we",
    "should we",
    "should i",
    "let's",
    "let us",
)


def collapse_whitespace(value: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", value).strip()


def is_command_envelope(value: str) -> bool:
    return bool(COMMAND_ENVELOPE_PATTERN.match(value))


def has_prompt_cue(value: str) -> bool:
    """True when a line reads like a request rather than pasted output."""
    lower = value.lower()
    if PROMPT_KEYWORD_PATTERN.search(lower):
        return True
    if "?" in lower:
        return True
    return any(phrase in lower for phrase in CUE_PHRASES)


def is_noise_line(line: str) -> bool:
    """Status strings, envelopes, shell prompts and uncued tool output."""
    lower = line.lower()
    if lower in IGNORE_STATUS_MESSAGES:
        return True
    if is_command_envelope(line):
        return True
    if SHELL_PROMPT_PATTERN.match(line):
        return True
    if lower.startswith(NON_PROMPT_PREFIXES) and not has_prompt_cue(line):
        return True
    return False


def extract_meaningful_lines(value: str) -> list[str]:
    lines = []
    for raw_line in re.split(r"\r?\n", value):
        line = raw_line.strip()
        if not line or is_noise_line(line):
            continue
        if not ALPHANUMERIC_PATTERN.search(line):
            continue
        lines.append(line)
    return lines


def normalize_string_content(value: str, max_lines: int = MAX_SUMMARY_LINES) -> Optional[str]:
    """Join the first meaningful lines of ``value`` into one line."""
    lines = extract_meaningful_lines(value)
    if not lines:
        return None
    normalized = collapse_whitespace(" ".join(lines[:max_lines]))
    return normalized or None


def extract_normalized_candidates(payload: Optional[MessagePayload]) -> list[str]:
    """Normalized text candidates of a payload, in content order."""
    if payload is None:
        return []
    content = payload.content

    if isinstance(content, str):
        normalized = normalize_string_content(content)
        return [normalized] if normalized else []

    if not isinstance(content, list):
        return []

    results = []
    for part in content:
        if isinstance(part, str):
            values = [part]
        elif isinstance(part, dict):
            values = [part.get(key) for key in ("content", "text")]
        else:
            continue
        for value in values:
            if isinstance(value, str):
                normalized = normalize_string_content(value)
                if normalized:
                    results.append(normalized)
    return results


def is_tool_result_part(part: Any) -> bool:
    if not isinstance(part, dict):
        return False
    return part.get("type") == "tool_result" or isinstance(part.get("tool_use_id"), str)


def is_prompt_candidate(record: RawRecord) -> bool:
    """True when a record is a genuine user prompt."""
    if record.type != "user" or record.is_sidechain or record.is_meta:
        return False
    if "toolUseResult" in record.raw:
        return False
    content = record.message.content if record.message else None
    if isinstance(content, list) and any(is_tool_result_part(p) for p in content):
        return False

    candidates = extract_normalized_candidates(record.message)
    if not candidates:
        return False
    return not is_noise_line(candidates[0])


def find_preview(transcript: list[RawRecord]) -> Optional[str]:
    """Preview text taken from the first genuine user prompt."""
    for record in transcript:
        if is_prompt_candidate(record):
            candidates = extract_normalized_candidates(record.message)
            return collapse_whitespace(candidates[0])
    return None


def parse_command_message(text: str) -> Optional[tuple[str, Optional[str]]]:
    """Return ``(name, args)`` for a ``<command-name>`` envelope."""
    name_match = COMMAND_NAME_PATTERN.search(text)
    if not name_match:
        return None
    args_match = COMMAND_ARGS_PATTERN.search(text)
    args = args_match.group(1).strip() if args_match else ""
    return name_match.group(1).strip(), args or None


def parse_local_command_stdout(text: str) -> Optional[str]:
    match = LOCAL_COMMAND_STDOUT_PATTERN.match(text.strip())
    return match.group(1) if match else None


def strip_system_reminders(text: str) -> str:
    return SYSTEM_REMINDER_PATTERN.sub("", text).strip()


def strip_ansi_codes(text: str) -> str:
    return ANSI_ESCAPE_PATTERN.sub("", text)


class CommandTracker:
    """Merge ``<command-name>`` envelopes with their following stdout.

    A command stays pending until its ``<local-command-stdout>`` arrives, the
    next command opens, or ``flush`` is called at the end of the transcript.
    Ignored commands are dropped together with their stdout.
    """

    def __init__(self, ignored_commands: Optional[set[str]] = None):
        self.ignored_commands = IGNORED_COMMANDS if ignored_commands is None else ignored_commands
        self.pending: Optional[dict] = None
        self.skip_next_stdout = False

    def _emit(self, output: Optional[str] = None) -> dict:
        pending = self.pending
        self.pending = None
        message = {"type": "command", "name": pending["name"]}
        if pending["args"] is not None:
            message["args"] = pending["args"]
        if output:
            message["output"] = output
        if pending["id"] is not None:
            message["id"] = pending["id"]
        if pending["timestamp"] is not None:
            message["timestamp"] = pending["timestamp"]
        return message

    def feed(
        self, text: str, record_id: Optional[str], timestamp: Optional[str]
    ) -> Optional[list[dict]]:
        """Consume ``text`` if it is a command envelope.

        Returns None for ordinary text, otherwise the (possibly empty) list
        of command messages completed by this text.
        """
        stdout = parse_local_command_stdout(text)
        if stdout is not None:
            if self.skip_next_stdout:
                self.skip_next_stdout = False
                return []
            if self.pending is None:
                return []
            return [self._emit(strip_ansi_codes(stdout).strip())]

        parsed = parse_command_message(text)
        if parsed is None:
            return None

        name, args = parsed
        if name in self.ignored_commands:
            self.skip_next_stdout = True
            return []

        emitted = [self._emit()] if self.pending is not None else []
        self.pending = {"name": name, "args": args, "id": record_id, "timestamp": timestamp}
        return emitted

    def flush(self) -> list[dict]:
        return [self._emit()] if self.pending is not None else []
