"""Per-tool reshaping of tool-call inputs and outputs.

Each known tool name maps to a reducer that compacts its input and output.
Unknown tools only get the generic cwd rewriting.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .paths import relativize_paths, to_relative
from .schemas import validate_tool_call

# Marks an input or output key that is absent from the message
MISSING: Any = object()

SHELL_WRAPPER_PATTERN = re.compile(r"^(?:bash|zsh)\s+-lc\s+['\"](.*)['\"]$", re.DOTALL)
CAT_N_LINE_PATTERN = re.compile(r"^\s*(\d+)[→\t]", re.MULTILINE)
ERROR_OUTPUT_PATTERN = re.compile(r"^error:", re.IGNORECASE)

EDIT_OUTPUT_DROPPED_KEYS = (
    "filePath",
    "newString",
    "oldString",
    "originalFile",
    "structuredPatch",
    "replaceAll",
)


@dataclass
class ToolContext:
    cwd: Optional[str]
    is_error: Any = MISSING


Reducer = Callable[[Any, Any, ToolContext], tuple[Any, Any]]


def _relative_key(obj: dict, key: str, cwd: Optional[str]) -> None:
    if isinstance(obj.get(key), str):
        obj[key] = to_relative(obj[key], cwd)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any) -> int | float:
    return value if _is_number(value) else 0


def _first_present(mapping: dict, *keys: str) -> Any:
    for key in keys:
        if mapping.get(key) is not None:
            return mapping[key]
    return None


def _strip_active_form(todos: Any) -> Any:
    if not isinstance(todos, list):
        return todos
    return [
        {k: v for k, v in item.items() if k != "activeForm"} if isinstance(item, dict) else item
        for item in todos
    ]


def reduce_write(tool_input, tool_output, ctx):
    if isinstance(tool_input, dict):
        tool_input = dict(tool_input)
        _relative_key(tool_input, "file_path", ctx.cwd)
    if isinstance(tool_output, dict):
        # File content is already in the input
        tool_output = {"type": tool_output["type"]} if "type" in tool_output else {}
    return tool_input, tool_output


def reduce_read(tool_input, tool_output, ctx):
    if isinstance(tool_input, dict):
        tool_input = dict(tool_input)
        _relative_key(tool_input, "file_path", ctx.cwd)
    if isinstance(tool_output, dict):
        reduced = {}
        if isinstance(tool_output.get("type"), str):
            reduced["type"] = tool_output["type"]
        file_obj = tool_output.get("file")
        if isinstance(file_obj, dict):
            file_slice = {}
            if isinstance(file_obj.get("content"), str):
                file_slice["content"] = file_obj["content"]
            for key in ("numLines", "startLine", "totalLines"):
                if _is_number(file_obj.get(key)):
                    file_slice[key] = file_obj[key]
            if file_slice:
                reduced["file"] = file_slice
        tool_output = reduced
    return tool_input, tool_output


def _edit_is_error_like(tool_output: Any, is_error: Any) -> bool:
    if is_error is True or is_error == "true":
        return True
    if isinstance(tool_output, str) and "has been updated" not in tool_output:
        return True
    return isinstance(tool_output, dict) and tool_output.get("type") == "error"


def _legacy_diff(old: str, new: str) -> str:
    lines = [f"-{line}" for line in old.split("\n")]
    lines.extend(f"+{line}" for line in new.split("\n"))
    return "\n".join(lines) + "\n"


def reduce_edit(tool_input, tool_output, ctx):
    diff = None
    line_offset = None

    if isinstance(tool_output, dict) and isinstance(tool_output.get("structuredPatch"), list):
        diff_lines = []
        for hunk in tool_output["structuredPatch"]:
            if not isinstance(hunk, dict):
                continue
            if line_offset is None and _is_number(hunk.get("oldStart")):
                line_offset = hunk["oldStart"]
            if isinstance(hunk.get("lines"), list):
                diff_lines.extend(line for line in hunk["lines"] if isinstance(line, str))
        if diff_lines:
            diff = "\n".join(diff_lines) + "\n"

    if line_offset is None and isinstance(tool_output, str):
        match = CAT_N_LINE_PATTERN.search(tool_output)
        if match:
            line_offset = int(match.group(1))

    if isinstance(tool_input, dict):
        tool_input = dict(tool_input)
        _relative_key(tool_input, "file_path", ctx.cwd)
        old = _first_present(tool_input, "old_string", "oldString")
        new = _first_present(tool_input, "new_string", "newString")
        if (
            diff is None
            and isinstance(old, str)
            and isinstance(new, str)
            and not _edit_is_error_like(tool_output, ctx.is_error)
        ):
            diff = _legacy_diff(old, new)
        for key in ("old_string", "new_string", "oldString", "newString"):
            tool_input.pop(key, None)
        if diff:
            tool_input["diff"] = diff
        if line_offset is not None and line_offset > 0:
            tool_input["lineOffset"] = line_offset

    if isinstance(tool_output, dict):
        reduced = {k: v for k, v in tool_output.items() if k not in EDIT_OUTPUT_DROPPED_KEYS}
        tool_output = reduced if reduced else MISSING

    return tool_input, tool_output


def reduce_search(tool_input, tool_output, ctx):
    if isinstance(tool_output, dict) and isinstance(tool_output.get("filenames"), list):
        tool_output = dict(tool_output)
        tool_output["filenames"] = [
            to_relative(name, ctx.cwd) if isinstance(name, str) else name
            for name in tool_output["filenames"]
        ]
        tool_output.pop("numFiles", None)
    return tool_input, tool_output


def _drop_line_arrays(tool_output):
    if isinstance(tool_output, dict):
        tool_output = {k: v for k, v in tool_output.items() if k not in ("stdoutLines", "stderrLines")}
    return tool_output


def reduce_bash(tool_input, tool_output, ctx):
    if isinstance(tool_input, dict) and isinstance(tool_input.get("command"), str):
        tool_input = dict(tool_input)
        match = SHELL_WRAPPER_PATTERN.match(tool_input["command"])
        if match:
            tool_input["command"] = match.group(1)
    return tool_input, _drop_line_arrays(tool_output)


def reduce_bash_output(tool_input, tool_output, ctx):
    return tool_input, _drop_line_arrays(tool_output)


def normalize_task_usage(usage: dict) -> dict:
    """Canonical TokenUsage shape for a subagent usage block."""
    input_tokens = _to_number(_first_present(usage, "input_tokens", "inputTokens"))
    cached = (
        _to_number(_first_present(usage, "cached_input_tokens", "cachedInputTokens"))
        + _to_number(_first_present(usage, "cache_creation_input_tokens", "cacheCreationInputTokens"))
        + _to_number(_first_present(usage, "cache_read_input_tokens", "cacheReadInputTokens"))
    )
    output_tokens = _to_number(_first_present(usage, "output_tokens", "outputTokens"))
    reasoning = _to_number(
        _first_present(usage, "reasoning_output_tokens", "reasoningOutputTokens")
    )
    total = _first_present(usage, "total_tokens", "totalTokens")
    if not _is_number(total):
        total = input_tokens + cached + output_tokens + reasoning
    return {
        "inputTokens": input_tokens,
        "cachedInputTokens": cached,
        "outputTokens": output_tokens,
        "reasoningOutputTokens": reasoning,
        "totalTokens": total,
    }


def reduce_task(tool_input, tool_output, ctx):
    if isinstance(tool_input, dict):
        tool_input = dict(tool_input)
    if isinstance(tool_output, dict):
        reduced = {}
        for key, value in tool_output.items():
            if key == "usage" and isinstance(value, dict):
                reduced["usage"] = normalize_task_usage(value)
            elif key in ("usage", "totalTokens", "prompt"):
                continue
            else:
                reduced[key] = value
        tool_output = reduced
    return tool_input, tool_output


def reduce_todo_write(tool_input, tool_output, ctx):
    if isinstance(tool_input, dict):
        tool_input = dict(tool_input)
        if isinstance(tool_input.get("todos"), list):
            tool_input["todos"] = _strip_active_form(tool_input["todos"])
    if isinstance(tool_output, dict):
        tool_output = dict(tool_output)
        for key in ("newTodos", "oldTodos"):
            if isinstance(tool_output.get(key), list):
                tool_output[key] = _strip_active_form(tool_output[key])
    return tool_input, tool_output


TOOL_REDUCERS: dict[str, Reducer] = {
    "Write": reduce_write,
    "Read": reduce_read,
    "Edit": reduce_edit,
    "Glob": reduce_search,
    "Grep": reduce_search,
    "Bash": reduce_bash,
    "BashOutput": reduce_bash_output,
    "Task": reduce_task,
    "TodoWrite": reduce_todo_write,
}


def sanitize_tool_call(message: dict, cwd: Optional[str]) -> dict:
    """Return a reshaped copy of a tool-call message.

    Called again after the output is linked, so every reducer accepts its
    own result.
    """
    tool_name = message.get("toolName")
    tool_input = message.get("input", MISSING)
    tool_output = message.get("output", MISSING)
    is_error = message.get("isError", MISSING)

    reducer = TOOL_REDUCERS.get(tool_name)
    if reducer is not None:
        context = ToolContext(cwd=cwd, is_error=is_error)
        tool_input, tool_output = reducer(tool_input, tool_output, context)

    if tool_name == "KillShell" and isinstance(is_error, bool):
        is_error = "true" if is_error else "false"

    result = dict(message)
    for key, value in (("input", tool_input), ("output", tool_output)):
        if value is MISSING or value is None:
            result.pop(key, None)
        else:
            result[key] = relativize_paths(value, cwd)

    if is_error is MISSING or is_error is None:
        error = result.get("error")
        out = result.get("output")
        if isinstance(error, str) and error.strip():
            is_error = True
        elif isinstance(out, str) and ERROR_OUTPUT_PATTERN.match(out.strip()):
            is_error = True
    if is_error is not MISSING and is_error is not None:
        result["isError"] = is_error

    return validate_tool_call(result)
