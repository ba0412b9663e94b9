"""Convert Codex CLI rollout files (JSONL session logs)."""

import json
import logging
import re
import shlex
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from .assembler import assemble_transcript, resolve_timestamp
from .blobs import BlobMap, image_from_data_url, merge_image_references, sanitize_images
from .config import ConvertOptions
from .content import collapse_whitespace
from .git import derive_relative_cwd, parse_git_remote_url
from .linker import ToolCallLinker
from .models import ConversionResult, GitContext, TokenUsage
from .parser import parse_timestamp, read_json_records
from .paths import normalize_relative_cwd, relativize_path, relativize_paths
from .pricing import PricingTable, calculate_cost, resolve_pricing
from .schemas import validate_message, validate_tool_call
from .usage import non_empty, standardize_model_name

logger = logging.getLogger("agent_transcripts.codex")

SOURCE = "codex"
PROVIDER = "openai"

# Pattern: rollout-YYYY-MM-DDThh-mm-ss-UUID.jsonl
ROLLOUT_FILENAME_RE = re.compile(
    r"^rollout-(?P<ts>.+)-(?P<uuid>[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})\.jsonl$"
)

TOOL_NAMES = {"shell": "Bash", "exec_command": "Bash"}
SHELL_TOOLS = ("shell", "exec_command")
SHELL_BINARIES = ("bash", "zsh", "/bin/bash", "/bin/zsh")

IGNORED_USER_PREFIXES = (
    "<user_instructions",
    "<environment_context",
    "# agents.md instructions for",
    "<permissions instructions>",
)
PREVIEW_SKIPPED_PREFIXES = ("<user_instructions>", "<environment_context>")

IMAGE_PLACEHOLDER_PATTERN = re.compile(r"^<image name=\[Image #\d+\]>$", re.IGNORECASE)
IMAGE_PLACEHOLDER_REGEXES = (
    re.compile(r"<image[^>]*>", re.IGNORECASE),
    re.compile(r"</image>", re.IGNORECASE),
    re.compile(r"\[\s*image\s*#?\d+\s*\]", re.IGNORECASE),
)

APPLY_PATCH_FILE_PATTERN = re.compile(r"^\*\*\* (?:Update|Add|Delete) File: (.+)$")
HEREDOC_WRITE_PATTERN = re.compile(r"^cat\s+<<'EOF'\s+>\s+(\S+)\s*\n([\s\S]*?)EOF$")
CAT_READ_PATTERN = re.compile(r"^cat\s+(\S+)$")
SED_RANGE_PATTERN = re.compile(r"^(\d+)(?:,(\d+))?p$")
EXIT_CODE_PATTERN = re.compile(r"Process exited with code (\d+)")
WALL_TIME_PATTERN = re.compile(r"Wall time: ([\d.]+) seconds")
EXEC_OUTPUT_PATTERN = re.compile(r"Output:\n([\s\S]*?)$")

USAGE_FIELDS = (
    ("input_tokens", "inputTokens"),
    ("cached_input_tokens", "cachedInputTokens"),
    ("output_tokens", "outputTokens"),
    ("reasoning_output_tokens", "reasoningOutputTokens"),
    ("total_tokens", "totalTokens"),
)


@dataclass
class SessionMeta:
    id: Optional[str] = None
    cwd: Optional[str] = None
    cli_version: Optional[str] = None
    branch: Optional[str] = None
    repository_url: Optional[str] = None


@dataclass
class CodexSession:
    """Running state while walking one rollout."""

    messages: list[dict] = field(default_factory=list)
    user_messages: list[str] = field(default_factory=list)
    seen_signatures: set[str] = field(default_factory=set)
    blobs: BlobMap = field(default_factory=dict)
    linker: ToolCallLinker = field(default_factory=ToolCallLinker)
    meta: Optional[SessionMeta] = None
    cwd: Optional[str] = None
    primary_model: Optional[str] = None
    latest_timestamp: Optional[datetime] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    previous_total: TokenUsage = field(default_factory=TokenUsage)


def ensure_number(value: Any) -> int | float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return 0


def _first(mapping: dict, *keys: str) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def parse_json_string(value: Any) -> Any:
    """Decode a JSON-encoded string, passing anything else through."""
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def normalize_events(events: Iterable[Any]) -> list[tuple[str, Optional[str], Optional[dict]]]:
    """Reduce raw rollout lines to ``(type, timestamp, payload)`` triples."""
    normalized = []
    for event in events:
        if not isinstance(event, dict):
            continue
        event_type = non_empty(event.get("type"))
        if not event_type:
            continue
        payload = event.get("payload")
        normalized.append(
            (
                event_type,
                non_empty(event.get("timestamp")),
                payload if isinstance(payload, dict) else None,
            )
        )
    return normalized


# ----------------------------------------------------------------------------
# Content extraction
# ----------------------------------------------------------------------------


def strip_image_placeholders(text: str) -> str:
    for pattern in IMAGE_PLACEHOLDER_REGEXES:
        text = pattern.sub("", text)
    return text


def extract_user_content(value: Any, blobs: BlobMap) -> tuple[list[str], list[dict]]:
    """Texts and stored image references of a user message's content."""
    texts: list[str] = []
    images: list[dict] = []

    def push_text(raw: Any) -> None:
        if not isinstance(raw, str):
            return
        cleaned = strip_image_placeholders(raw)
        trimmed = cleaned.strip()
        if not trimmed or IMAGE_PLACEHOLDER_PATTERN.match(trimmed):
            return
        texts.append(cleaned)

    def push_image(part: dict) -> bool:
        image = image_from_data_url(part, blobs)
        if image is None:
            return False
        images.append(image.to_dict())
        return True

    if isinstance(value, str):
        push_text(value)
        return texts, images
    if not isinstance(value, list):
        return texts, images

    for part in value:
        if isinstance(part, str):
            push_text(part)
            continue
        if not isinstance(part, dict):
            continue

        part_type = non_empty(part.get("type"))
        if part_type in ("input_text", "text", "output_text"):
            push_text(_first(part, "text", "content"))
        elif part_type in ("input_image", "image"):
            push_image(part)
        elif any(key in part for key in ("image_url", "imageUrl", "url")):
            if not push_image(part):
                push_text(_first(part, "text", "content"))
        else:
            push_text(_first(part, "text", "content"))

    return texts, images


def extract_text_pieces(value: Any) -> list[str]:
    if isinstance(value, str):
        normalized = collapse_whitespace(value)
        return [normalized] if normalized else []
    if not isinstance(value, list):
        return []

    pieces = []
    for part in value:
        if isinstance(part, str):
            text = part
        elif isinstance(part, dict):
            text = non_empty(_first(part, "text", "content"))
        else:
            continue
        normalized = collapse_whitespace(text) if text else ""
        if normalized:
            pieces.append(normalized)
    return pieces


def extract_reasoning(payload: dict) -> list[str]:
    """Each reasoning summary and reasoning content entry, as its own piece."""
    pieces = []
    summary = payload.get("summary")
    if isinstance(summary, list):
        for entry in summary:
            if isinstance(entry, dict):
                text = non_empty(entry.get("text"))
                if text and collapse_whitespace(text):
                    pieces.append(collapse_whitespace(text))

    content = payload.get("content")
    if isinstance(content, list):
        for entry in content:
            if not isinstance(entry, dict):
                continue
            if non_empty(entry.get("type")) not in ("reasoning", "text"):
                continue
            text = non_empty(_first(entry, "text", "content"))
            if text and collapse_whitespace(text):
                pieces.append(collapse_whitespace(text))
    return pieces


def is_ignorable_user_text(text: str) -> bool:
    lower = text.strip().lower()
    return any(lower.startswith(prefix) for prefix in IGNORED_USER_PREFIXES)


def derive_preview(user_messages: list[str]) -> Optional[str]:
    for text in user_messages:
        collapsed = collapse_whitespace(text)
        if not collapsed or collapsed.startswith(PREVIEW_SKIPPED_PREFIXES):
            continue
        return collapsed
    return collapse_whitespace(user_messages[0]) if user_messages else None


def message_signature(message: dict) -> Optional[str]:
    if isinstance(message.get("text"), str):
        return f"{message['type']}|{message.get('timestamp') or ''}|{message['text']}"
    if message["type"] == "tool-call":
        return (
            f"tool-call|{message.get('timestamp') or ''}|"
            f"{message.get('id') or ''}|{message.get('toolName') or ''}"
        )
    return None


def add_message(session: CodexSession, candidate: dict) -> None:
    """Append ``candidate`` unless an identical message was already seen."""
    signature = message_signature(candidate)
    if signature and signature in session.seen_signatures:
        logger.debug("Skipping duplicate %s message at %s", candidate["type"], candidate.get("timestamp"))
        return
    session.messages.append(validate_message(candidate))
    if signature:
        session.seen_signatures.add(signature)


def _with_optional(message: dict, **optional: Any) -> dict:
    message.update({key: value for key, value in optional.items() if value is not None})
    return message


# ----------------------------------------------------------------------------
# Tool calls
# ----------------------------------------------------------------------------


def parse_apply_patch(value: str, cwd: Optional[str]) -> dict:
    """Split an ``apply_patch`` envelope into the target file and its diff."""
    file_path = None
    diff_lines = []
    for line in re.split(r"\r?\n", value):
        if line.startswith("*** "):
            match = APPLY_PATCH_FILE_PATTERN.match(line)
            if match:
                file_path = match.group(1).strip()
            continue
        diff_lines.append(line)

    result = {}
    if file_path:
        result["file_path"] = relativize_path(file_path, cwd) if cwd else file_path
    diff = "\n".join(diff_lines).strip()
    if diff:
        result["diff"] = diff if diff.endswith("\n") else f"{diff}\n"
    return result


def sanitize_function_call_input(value: Any, cwd: Optional[str]) -> Any:
    if not isinstance(value, dict):
        return value
    record = dict(value)
    if isinstance(record.get("workdir"), str) and cwd:
        record["workdir"] = relativize_path(record["workdir"], cwd)
    return record


def sanitize_custom_tool_input(raw_name: Optional[str], value: Any, cwd: Optional[str]) -> Any:
    if raw_name == "apply_patch":
        text = non_empty(value)
        if text:
            parsed = parse_apply_patch(text, cwd)
            if parsed:
                return parsed
    return value


def shell_command_string(tool_input: dict) -> Optional[str]:
    """The command line of a shell call, unwrapping ``bash -lc <cmd>`` arrays."""
    cmd = tool_input.get("cmd")
    if isinstance(cmd, str):
        return cmd
    command = tool_input.get("command")
    if isinstance(command, str):
        return command
    if (
        isinstance(command, list)
        and len(command) >= 3
        and command[0] in SHELL_BINARIES
        and command[1] == "-lc"
    ):
        return non_empty(command[2])
    return None


def sanitize_codex_tool_call(message: dict, cwd: Optional[str], raw_name: Optional[str]) -> dict:
    result = dict(message)
    tool_input = result.get("input")

    if raw_name in SHELL_TOOLS:
        result["toolName"] = "Bash"
        if isinstance(tool_input, dict):
            bash_input = {}
            command = shell_command_string(tool_input)
            if command:
                bash_input["command"] = command
            if isinstance(tool_input.get("description"), str):
                bash_input["description"] = tool_input["description"]
            result["input"] = bash_input

    if raw_name == "apply_patch":
        result["toolName"] = "Edit"
        if isinstance(tool_input, dict):
            tool_input = dict(tool_input)
            file_path = non_empty(tool_input.get("file_path"))
            if file_path and cwd:
                tool_input["file_path"] = relativize_path(file_path, cwd)
            result["input"] = tool_input

    for key in ("input", "output"):
        if key in result:
            if result[key] is None:
                del result[key]
            elif cwd:
                result[key] = relativize_paths(result[key], cwd)

    return validate_tool_call(result)


def sanitize_shell_output(value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    result: dict[str, Any] = {}
    if isinstance(value.get("stdout"), str):
        result["stdout"] = value["stdout"]
    else:
        output = non_empty(_first(value, "output", "stdout"))
        if output:
            result["stdout"] = output
    stderr = non_empty(value.get("stderr"))
    if stderr:
        result["stderr"] = stderr

    metadata = value.get("metadata") if isinstance(value.get("metadata"), dict) else {}
    exit_code = _first(metadata, "exit_code", "exitCode")
    if exit_code is None:
        exit_code = _first(value, "exit_code", "exitCode")
    result["exitCode"] = ensure_number(exit_code)
    duration = ensure_number(_first(metadata, "duration_seconds", "durationSeconds"))
    if duration > 0:
        result["durationSeconds"] = duration
    return result


def sanitize_exec_command_output(value: Any) -> Any:
    """Parse the plain-text report ``exec_command`` returns.

    ``Wall time: 0.05 seconds\\nProcess exited with code 0\\nOutput:\\n...``
    """
    text = non_empty(value)
    if not text:
        return sanitize_shell_output(value)

    result: dict[str, Any] = {}
    match = EXIT_CODE_PATTERN.search(text)
    if match:
        result["exitCode"] = int(match.group(1))
    match = WALL_TIME_PATTERN.search(text)
    if match:
        try:
            duration = float(match.group(1))
        except ValueError:
            duration = 0.0
        if duration > 0:
            result["durationSeconds"] = duration
    match = EXEC_OUTPUT_PATTERN.search(text)
    if match and match.group(1).strip():
        result["stdout"] = match.group(1).strip()
    return result or None


def sanitize_apply_patch_output(value: Any) -> Any:
    if not isinstance(value, dict):
        return value
    result: dict[str, Any] = {}
    output = non_empty(value.get("output"))
    if output:
        result["message"] = output
    metadata = value.get("metadata")
    if isinstance(metadata, dict):
        result["exitCode"] = ensure_number(_first(metadata, "exit_code", "exitCode"))
        duration = ensure_number(_first(metadata, "duration_seconds", "durationSeconds"))
        if duration > 0:
            result["durationSeconds"] = duration
    return result or None


OUTPUT_SANITIZERS = {
    "shell": sanitize_shell_output,
    "exec_command": sanitize_exec_command_output,
    "apply_patch": sanitize_apply_patch_output,
}


def extract_stdout(output: Any) -> Optional[str]:
    if isinstance(output, str):
        return output
    if isinstance(output, dict):
        return non_empty(output.get("stdout"))
    return None


def split_shell_args(command: str) -> Optional[list[str]]:
    try:
        return shlex.split(command)
    except ValueError:
        return None


def parse_rg_args(args: list[str], cwd: Optional[str]) -> Optional[dict]:
    """Map an ``rg`` argument list onto Grep tool input."""
    if len(args) < 2:
        return None

    tool_input: dict[str, Any] = {}
    valued_flags = {
        "-A": "-A",
        "-B": "-B",
        "-C": "-C",
        "-g": "glob",
        "--glob": "glob",
        "-t": "type",
        "--type": "type",
    }
    pattern = None
    path_arg = None
    i = 1
    while i < len(args):
        arg = args[i]
        if arg == "--":
            pass
        elif arg.startswith("-"):
            if arg == "-i":
                tool_input["-i"] = True
            elif arg == "-U":
                tool_input["multiline"] = True
            elif arg in ("-l", "--files-with-matches"):
                tool_input["output_mode"] = "files_with_matches"
            elif arg in ("-c", "--count"):
                tool_input["output_mode"] = "count"
            elif arg in valued_flags or arg in ("-e", "--regexp"):
                value = args[i + 1] if i + 1 < len(args) else None
                if value:
                    if arg in valued_flags:
                        tool_input[valued_flags[arg]] = value
                    else:
                        pattern = value
                    i += 1
        elif pattern is None:
            pattern = arg
        elif path_arg is None:
            path_arg = arg
        i += 1

    if not pattern:
        return None
    tool_input["pattern"] = pattern
    if path_arg:
        tool_input["path"] = relativize_path(path_arg, cwd) if cwd else path_arg
    return tool_input


def parse_sed_args(args: list[str], cwd: Optional[str]) -> Optional[tuple[str, int]]:
    """``sed -n A,Bp FILE`` as ``(file_path, start_line)``."""
    if "-n" not in args:
        return None
    index = args.index("-n")
    if index + 2 >= len(args):
        return None
    match = SED_RANGE_PATTERN.match(args[index + 1])
    file_arg = args[index + 2]
    if not match or not file_arg:
        return None
    start_line = int(match.group(1))
    if start_line <= 0:
        return None
    return (relativize_path(file_arg, cwd) if cwd else file_arg), start_line


def _file_in_cwd(file_name: str, cwd: Optional[str]) -> str:
    if cwd:
        return relativize_path(f"{cwd}/{file_name}", cwd)
    return f"./{file_name}"


def _rebuild(message: dict, tool_name: str, tool_input: dict, output: Any) -> dict:
    result = {k: v for k, v in message.items() if k not in ("input", "output")}
    result["toolName"] = tool_name
    result["input"] = tool_input
    if output is not None:
        result["output"] = output
    return validate_tool_call(result)


def convert_bash_to_tool(message: dict, cwd: Optional[str]) -> Optional[dict]:
    """Re-express a shell call as the file tool it amounts to, if any.

    Recognized: heredoc writes, ``cat FILE``, ``rg`` searches and
    ``sed -n A,Bp FILE`` reads.
    """
    tool_input = message.get("input")
    if not isinstance(tool_input, dict):
        return None
    command = shell_command_string(tool_input)
    if not command:
        return None
    output = message.get("output")

    match = HEREDOC_WRITE_PATTERN.match(command)
    if match:
        file_name, content = match.groups()
        return _rebuild(
            message, "Write", {"file_path": _file_in_cwd(file_name, cwd), "content": content or ""}, None
        )

    match = CAT_READ_PATTERN.match(command)
    if match:
        content = non_empty(output.get("stdout")) if isinstance(output, dict) else None
        return _rebuild(message, "Read", {"file_path": _file_in_cwd(match.group(1), cwd)}, content)

    args = split_shell_args(command)
    if not args:
        return None

    if args[0] == "rg":
        grep_input = parse_rg_args(args, cwd)
        if grep_input is not None:
            stdout = extract_stdout(output)
            grep_output = None
            if stdout:
                lines = [line for line in stdout.split("\n") if line.strip()]
                if grep_input.get("output_mode") == "files_with_matches":
                    grep_output = {
                        "mode": "files_with_matches",
                        "filenames": lines,
                        "numMatches": len(lines),
                    }
                else:
                    grep_output = {
                        "mode": "content",
                        "content": stdout,
                        "numMatches": len(lines),
                        "numLines": len(lines),
                    }
            return _rebuild(message, "Grep", grep_input, grep_output)

    if len(args) >= 4 and args[0] == "sed":
        parsed = parse_sed_args(args, cwd)
        if parsed is not None:
            file_path, start_line = parsed
            stdout = extract_stdout(output)
            read_output = None
            if stdout:
                read_output = {
                    "file": {
                        "content": stdout,
                        "numLines": len(stdout.split("\n")),
                        "startLine": start_line,
                    }
                }
            return _rebuild(message, "Read", {"file_path": file_path}, read_output)

    return None


def update_tool_call_output(
    message: dict, output: Any, cwd: Optional[str], raw_name: Optional[str]
) -> dict:
    sanitizer = OUTPUT_SANITIZERS.get(raw_name or "")
    if sanitizer is not None:
        output = sanitizer(output)

    updated = dict(message)
    updated["output"] = output
    if raw_name in SHELL_TOOLS:
        converted = convert_bash_to_tool(updated, cwd)
        if converted is not None:
            return converted
    return sanitize_codex_tool_call(updated, cwd, raw_name)


# ----------------------------------------------------------------------------
# Event processing
# ----------------------------------------------------------------------------


def extract_session_meta(payload: dict) -> SessionMeta:
    git = payload.get("git") if isinstance(payload.get("git"), dict) else {}
    return SessionMeta(
        id=non_empty(payload.get("id")),
        cwd=non_empty(payload.get("cwd")),
        cli_version=non_empty(_first(payload, "cli_version", "cliVersion")),
        branch=non_empty(git.get("branch")),
        repository_url=non_empty(_first(git, "repository_url", "repositoryUrl")),
    )


TOKEN_USAGE_KEYS = {
    "last_token_usage": ("last_token_usage", "lastTokenUsage"),
    "total_token_usage": ("total_token_usage", "totalTokenUsage"),
}


def extract_token_usage(info: Any, kind: str) -> Optional[TokenUsage]:
    """Read the ``kind`` usage block (last or total) from ``token_count`` info."""
    if not isinstance(info, dict):
        return None
    data = _first(info, *TOKEN_USAGE_KEYS[kind])
    if not isinstance(data, dict):
        return None
    values = [int(ensure_number(_first(data, snake, camel))) for snake, camel in USAGE_FIELDS]
    return TokenUsage(*values)


def _usage_delta(current: TokenUsage, previous: TokenUsage) -> TokenUsage:
    return TokenUsage(
        input_tokens=max(0, current.input_tokens - previous.input_tokens),
        cached_input_tokens=max(0, current.cached_input_tokens - previous.cached_input_tokens),
        output_tokens=max(0, current.output_tokens - previous.output_tokens),
        reasoning_output_tokens=max(
            0, current.reasoning_output_tokens - previous.reasoning_output_tokens
        ),
        total_tokens=max(0, current.total_tokens - previous.total_tokens),
    )


def _process_token_count(session: CodexSession, payload: dict) -> None:
    info = payload.get("info")
    last_usage = extract_token_usage(info, "last_token_usage")
    total_usage = extract_token_usage(info, "total_token_usage")

    if last_usage is not None:
        session.usage.add(last_usage)
    elif total_usage is not None:
        session.usage.add(_usage_delta(total_usage, session.previous_total))

    if total_usage is not None:
        session.previous_total = total_usage


def _process_message(session: CodexSession, payload: dict, timestamp: Optional[str]) -> None:
    role = non_empty(payload.get("role"))
    message_id = non_empty(payload.get("id"))

    if role == "user":
        texts, images = extract_user_content(payload.get("content"), session.blobs)
        text = collapse_whitespace("\n\n".join(texts))
        if not text and not images:
            return
        if text and is_ignorable_user_text(text):
            return
        if text:
            session.user_messages.append(text)
        candidate = _with_optional(
            {"type": "user", "text": text}, timestamp=timestamp, id=message_id
        )
        if images:
            candidate["images"] = images
        add_message(session, candidate)

    elif role == "assistant":
        text = collapse_whitespace("\n\n".join(extract_text_pieces(payload.get("content"))))
        if not text:
            return
        add_message(
            session,
            _with_optional(
                {"type": "agent", "text": text},
                timestamp=timestamp,
                model=session.primary_model,
                id=message_id,
            ),
        )


def _process_tool_call(
    session: CodexSession, payload: dict, timestamp: Optional[str], custom: bool
) -> None:
    call_id = non_empty(payload.get("call_id")) or non_empty(payload.get("id"))
    raw_name = non_empty(payload.get("name"))
    tool_name = TOOL_NAMES.get(raw_name or "", raw_name)

    if custom:
        tool_input = sanitize_custom_tool_input(raw_name, payload.get("input"), session.cwd)
    else:
        arguments = sanitize_images(parse_json_string(payload.get("arguments")), session.blobs)
        tool_input = sanitize_function_call_input(arguments, session.cwd)

    message = _with_optional(
        {"type": "tool-call", "toolName": tool_name},
        id=call_id,
        timestamp=timestamp,
        model=session.primary_model,
        input=tool_input,
    )
    merge_image_references(message, tool_input)
    session.messages.append(sanitize_codex_tool_call(message, session.cwd, raw_name))
    session.linker.register(call_id, len(session.messages) - 1, raw_name)


def _process_tool_output(session: CodexSession, payload: dict) -> None:
    entry = session.linker.claim(non_empty(payload.get("call_id")))
    if entry is None:
        return
    output = sanitize_images(parse_json_string(payload.get("output")), session.blobs)
    message = merge_image_references(dict(session.messages[entry.index]), output)
    session.messages[entry.index] = update_tool_call_output(
        message,
        output,
        session.cwd,
        entry.raw_name,
    )


def _process_response_item(session: CodexSession, payload: dict, timestamp: Optional[str]) -> None:
    item_type = non_empty(payload.get("type"))

    if item_type == "message":
        _process_message(session, payload, timestamp)
    elif item_type == "reasoning":
        for text in extract_reasoning(payload):
            add_message(
                session,
                _with_optional(
                    {"type": "thinking", "text": text},
                    timestamp=timestamp,
                    model=session.primary_model,
                    id=non_empty(payload.get("id")),
                ),
            )
    elif item_type in ("function_call", "custom_tool_call"):
        _process_tool_call(session, payload, timestamp, custom=item_type == "custom_tool_call")
    elif item_type in ("function_call_output", "custom_tool_call_output"):
        _process_tool_output(session, payload)


def process_events(events: Iterable[Any]) -> CodexSession:
    session = CodexSession()

    for event_type, timestamp, payload in normalize_events(events):
        parsed = parse_timestamp(timestamp)
        if parsed is not None and (
            session.latest_timestamp is None or parsed > session.latest_timestamp
        ):
            session.latest_timestamp = parsed

        if payload is None:
            continue

        if event_type == "session_meta":
            session.meta = extract_session_meta(payload)
            if not session.cwd:
                session.cwd = session.meta.cwd
        elif event_type == "turn_context":
            cwd = non_empty(payload.get("cwd"))
            if cwd:
                session.cwd = cwd
            model = non_empty(payload.get("model"))
            if model:
                session.primary_model = standardize_model_name(model, PROVIDER)
        elif event_type == "event_msg":
            # Other event messages mirror response items
            if non_empty(payload.get("type")) == "token_count":
                _process_token_count(session, payload)
        elif event_type == "response_item":
            _process_response_item(session, payload, timestamp)

    return session


# ----------------------------------------------------------------------------
# Assembly
# ----------------------------------------------------------------------------


def build_git_context(meta: Optional[SessionMeta], cwd: Optional[str]) -> GitContext:
    if meta is None:
        return GitContext()
    repo = parse_git_remote_url(meta.repository_url) if meta.repository_url else None
    repo_name = repo.split("/")[-1] if repo else None
    relative = derive_relative_cwd(cwd or meta.cwd, repo_name)
    return GitContext(
        relative_cwd=normalize_relative_cwd(relative),
        branch=meta.branch,
        repo=repo,
    )


def calculate_codex_cost(model: Optional[str], usage: TokenUsage, pricing: PricingTable) -> float:
    """Cost of the whole session, billed against the primary model.

    Reasoning output is billed as output; cached input as cache reads.
    """
    if not model or not pricing:
        return 0.0
    entry = resolve_pricing(model, pricing, strip_prefixes=True)
    if entry is None:
        logger.debug("No pricing for %s", model)
        return 0.0
    return calculate_cost(
        entry,
        input_tokens=max(0, usage.input_tokens - usage.cached_input_tokens),
        output_tokens=usage.output_tokens + usage.reasoning_output_tokens,
        cache_read_input_tokens=usage.cached_input_tokens,
    )


def convert_codex_transcript(
    events: Iterable[Any], options: Optional[ConvertOptions] = None
) -> Optional[ConversionResult]:
    """Convert in-memory rollout events; None when no message survives."""
    options = options or ConvertOptions()
    session = process_events(events)
    if not session.messages:
        return None

    timestamp = resolve_timestamp(session.latest_timestamp, options)
    meta = session.meta
    if meta is not None and meta.id:
        transcript_id = meta.id
    else:
        transcript_id = session.messages[0].get("id") or (
            f"codex-{int(timestamp.timestamp() * 1000)}"
        )

    model = session.primary_model
    return assemble_transcript(
        source=SOURCE,
        transcript_id=transcript_id,
        timestamp=timestamp,
        preview=derive_preview(session.user_messages),
        model=model,
        client_version=options.client_version or (meta.cli_version if meta else None),
        token_usage=session.usage,
        model_usage=[{"model": model, "usage": session.usage.to_dict()}] if model else [],
        cost_usd=calculate_codex_cost(model, session.usage, options.pricing_table),
        git=options.git_context
        if options.has_git_context
        else build_git_context(meta, session.cwd),
        cwd=session.cwd,
        messages=session.messages,
        blobs=session.blobs,
    )


def convert_codex_file(
    file_path: Path, options: Optional[ConvertOptions] = None
) -> Optional[ConversionResult]:
    """Convert a Codex rollout JSONL file."""
    file_path = Path(file_path)
    result = convert_codex_transcript(read_json_records(file_path), options)
    if result is None:
        logger.debug("No messages in %s", file_path)
    return result


def convert_codex_files(
    file_paths: Iterable[Path], options: Optional[ConvertOptions] = None
) -> list[ConversionResult]:
    results = []
    for file_path in file_paths:
        result = convert_codex_file(file_path, options)
        if result is not None:
            results.append(result)
    return results
