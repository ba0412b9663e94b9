"""Convert Cline task histories (``api_conversation_history.json``)."""

import binascii
import json
import logging
import re
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, Optional

from .assembler import assemble_transcript, resolve_timestamp
from .blobs import BlobMap, decode_base64, merge_image_references, sanitize_images, store_blob
from .config import ConvertOptions
from .content import collapse_whitespace
from .linker import ToolCallLinker
from .models import ConversionResult, ImageRef, TokenUsage
from .paths import relativize_path, relativize_paths
from .pricing import PricingTable, calculate_cost, resolve_pricing
from .schemas import validate_message, validate_tool_call
from .usage import ensure_int, standardize_model_name

logger = logging.getLogger("agent_transcripts.cline")

SOURCE = "cline"
METADATA_FILENAME = "task_metadata.json"

AGENT_RESPONSE = "AgentResponse"

TOOL_NAME_MAP = {
    "read_file": "Read",
    "write_to_file": "Write",
    "replace_in_file": "Edit",
    "execute_command": "Bash",
    "search_files": "Grep",
    "list_files": "Glob",
    "list_code_definition_names": "Ls",
    "load_mcp_documentation": "LoadMcpDocs",
    "access_mcp_resource": "AccessMcpResource",
    "focus_chain": "FocusChain",
    # Rendered as agent messages
    "attempt_completion": AGENT_RESPONSE,
    "plan_mode_respond": AGENT_RESPONSE,
    "ask_followup_question": AGENT_RESPONSE,
}

ENVIRONMENT_DETAILS_PATTERN = re.compile(
    r"<(environment_details|feedback)>[\s\S]*?</\1>"
)
TASK_TAG_PATTERN = re.compile(r"^<task>\n?([\s\S]*?)\n?</task>")
TOOL_RESULT_PREFIX_PATTERN = re.compile(r"^\[[\w_]+ for '[^']*'\] Result:\n?")

INJECTED_MARKERS = ("# TODO LIST UPDATE REQUIRED", "# task_progress RECOMMENDED")
INJECTED_PREFIXES = (
    "[apply_patch for patch application]",
    "[read_file for ",
    "[write_to_file for ",
    "[replace_in_file for ",
    "[execute_command for ",
    "[search_files for ",
    "[list_files for ",
    "[list_code_definition_names for ",
    "[access_mcp_resource for ",
    "[attempt_completion] ",
    "[ask_followup_question] ",
    "[focus_chain] ",
    "[plan_mode_respond] ",
    "[load_mcp_documentation] ",
    "The user has provided feedback on the results.",
)


def is_system_injected_text(text: str) -> bool:
    """True for text Cline adds to user turns on its own."""
    if any(marker in text for marker in INJECTED_MARKERS):
        return True
    if text.startswith(INJECTED_PREFIXES):
        return True
    return "# Current Mode" in text and "environment_details" in text


def normalize_text_content(value: Any) -> Optional[str]:
    """Render a text-ish value as trimmed text; structured values as JSON."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
    elif isinstance(value, bool):
        text = "true" if value else "false"
    elif isinstance(value, (int, float)):
        text = str(value)
    elif isinstance(value, (dict, list)):
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False).strip()
    else:
        text = str(value).strip()
    return text or None


def normalize_tool_name(name: Any) -> Optional[str]:
    if not isinstance(name, str):
        return None
    return TOOL_NAME_MAP.get(name, name)


def sanitize_tool_input(tool_name: Optional[str], tool_input: Any, cwd: Optional[str]) -> Any:
    """Drop Cline bookkeeping and align field names with the unified tools."""
    if not isinstance(tool_input, dict) or not tool_input:
        return tool_input

    record = dict(tool_input)
    record.pop("task_progress", None)

    if isinstance(record.get("path"), str) and cwd:
        record["file_path"] = relativize_path(record.pop("path"), cwd)
    elif isinstance(record.get("file_path"), str) and cwd:
        record["file_path"] = relativize_path(record["file_path"], cwd)

    if tool_name == "Grep" and isinstance(record.get("regex"), str):
        record["pattern"] = record.pop("regex")

    if tool_name == AGENT_RESPONSE:
        for key in ("response", "result", "question", "options"):
            if record.get(key) is not None:
                return record[key]
        return None

    return relativize_paths(record, cwd) if cwd else record


def sanitize_cline_tool_call(message: dict, cwd: Optional[str]) -> dict:
    result = dict(message)
    for key in ("input", "output"):
        if key not in result:
            continue
        if result[key] is None:
            del result[key]
        elif cwd:
            result[key] = relativize_paths(result[key], cwd)
    return validate_tool_call(result)


def extract_tool_result_content(content: Any) -> Optional[str]:
    if isinstance(content, str):
        return content or None
    if isinstance(content, list):
        texts = [
            block["text"]
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        ]
        return "\n".join(texts) if texts else None
    return None


def extract_image_from_block(block: dict, blobs: BlobMap) -> Optional[ImageRef]:
    source = block.get("source")
    if not isinstance(source, dict) or not source.get("data"):
        return None
    media_type = source.get("media_type") or source.get("mediaType") or "image/unknown"
    try:
        data = decode_base64(source["data"])
    except (binascii.Error, ValueError):
        logger.warning("Dropping undecodable %s image block", media_type)
        return None
    return ImageRef(sha256=store_blob(data, media_type, blobs), media_type=media_type)


def clean_user_text(text: str) -> Optional[str]:
    """The user-authored part of a text block, or None if there is none."""
    if TOOL_RESULT_PREFIX_PATTERN.match(text):
        return None
    cleaned = ENVIRONMENT_DETAILS_PATTERN.sub("", text).strip()
    if not cleaned:
        return None
    match = TASK_TAG_PATTERN.match(cleaned)
    user_text = match.group(1).strip() if match else cleaned
    if not user_text or is_system_injected_text(user_text):
        return None
    return user_text


class ClineConverter:
    """Walks one task history, linking tool results by ``tool_use_id``."""

    def __init__(self, cwd: Optional[str] = None):
        self.cwd = cwd
        self.messages: list[dict] = []
        self.blobs: BlobMap = {}
        self.linker = ToolCallLinker()
        self.usage = TokenUsage()
        self.model_usage: dict[str, TokenUsage] = {}
        self.primary_model: Optional[str] = None

    def process(self, raw_messages: Iterable[Any]) -> None:
        for message in raw_messages:
            if not isinstance(message, dict):
                continue
            content = message.get("content")
            if isinstance(content, str):
                content = [{"type": "text", "text": content}]
            if not isinstance(content, list):
                continue

            if message.get("role") == "user":
                self._process_user(content)
            elif message.get("role") == "assistant":
                model = self._model_of(message)
                self._accumulate_usage(message, model)
                self._process_assistant(content, model)

    def _model_of(self, message: dict) -> Optional[str]:
        info = message.get("modelInfo")
        if not isinstance(info, dict) or not isinstance(info.get("modelId"), str):
            return None
        provider = info.get("providerId")
        model = standardize_model_name(
            info["modelId"], provider if isinstance(provider, str) and provider else "anthropic"
        )
        if self.primary_model is None:
            self.primary_model = model
        return model

    def _accumulate_usage(self, message: dict, model: Optional[str]) -> None:
        metrics = message.get("metrics")
        tokens = metrics.get("tokens") if isinstance(metrics, dict) else None
        if not isinstance(tokens, dict):
            return
        prompt = ensure_int(tokens.get("prompt"))
        completion = ensure_int(tokens.get("completion"))
        cached = ensure_int(tokens.get("cached"))

        turn = TokenUsage(
            input_tokens=prompt + cached,
            cached_input_tokens=cached,
            output_tokens=completion,
            total_tokens=prompt + cached + completion,
        )
        self.usage.add(turn)
        if model:
            self.model_usage.setdefault(model, TokenUsage()).add(turn)

    def _process_user(self, content: list) -> None:
        """Images join the turn's preceding user text, or else its next one.

        An image with no user text in its turn is not stored.
        """
        turn_message: Optional[dict] = None
        pending: list[ImageRef] = []
        pending_blobs: BlobMap = {}
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")

            if block_type == "text":
                text = normalize_text_content(block.get("text"))
                user_text = clean_user_text(text) if text else None
                if user_text:
                    message = {"type": "user", "text": user_text}
                    if pending:
                        message["images"] = [image.to_dict() for image in pending]
                        self.blobs.update(pending_blobs)
                        pending, pending_blobs = [], {}
                    self.messages.append(validate_message(message))
                    turn_message = self.messages[-1]

            elif block_type == "tool_result":
                self._attach_result(block)

            elif block_type == "image":
                image_blobs: BlobMap = {}
                image = extract_image_from_block(block, image_blobs)
                if image is None:
                    continue
                if turn_message is not None:
                    turn_message.setdefault("images", []).append(image.to_dict())
                    self.blobs.update(image_blobs)
                else:
                    pending.append(image)
                    pending_blobs.update(image_blobs)

    def _attach_result(self, block: dict) -> None:
        entry = self.linker.claim(block.get("tool_use_id"))
        if entry is None:
            return
        message = dict(self.messages[entry.index])
        output = extract_tool_result_content(block.get("content"))
        if output is not None:
            message["output"] = output
        if block.get("is_error"):
            message["isError"] = True
        self.messages[entry.index] = sanitize_cline_tool_call(message, self.cwd)

    def _process_assistant(self, content: list, model: Optional[str]) -> None:
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")

            if block_type == "text":
                text = normalize_text_content(block.get("text"))
                if text:
                    self._append_agent(text, model)

            elif block_type == "tool_use":
                tool_name = normalize_tool_name(block.get("name"))
                raw_input = sanitize_images(block.get("input"), self.blobs)
                tool_input = sanitize_tool_input(tool_name, raw_input, self.cwd)
                if tool_name == AGENT_RESPONSE:
                    text = normalize_text_content(tool_input)
                    if text:
                        self._append_agent(text, model)
                    continue

                message = {"type": "tool-call", "toolName": tool_name}
                call_id = block.get("id")
                if isinstance(call_id, str):
                    message["id"] = call_id
                if tool_input is not None:
                    message["input"] = tool_input
                if model:
                    message["model"] = model
                merge_image_references(message, tool_input)
                self.messages.append(sanitize_cline_tool_call(message, self.cwd))
                if isinstance(call_id, str):
                    self.linker.register(call_id, len(self.messages) - 1)

    def _append_agent(self, text: str, model: Optional[str]) -> None:
        message = {"type": "agent", "text": text}
        if model:
            message["model"] = model
        self.messages.append(validate_message(message))

    def preview(self) -> Optional[str]:
        for message in self.messages:
            if message["type"] == "user" and message.get("text"):
                return collapse_whitespace(message["text"])
        return None


def calculate_cline_cost(model: Optional[str], usage: TokenUsage, pricing: PricingTable) -> float:
    if not model or not pricing:
        return 0.0
    entry = resolve_pricing(model, pricing)
    if entry is None:
        logger.debug("No pricing for %s", model)
        return 0.0
    return calculate_cost(
        entry,
        input_tokens=max(0, usage.input_tokens - usage.cached_input_tokens),
        output_tokens=usage.output_tokens,
        cache_read_input_tokens=usage.cached_input_tokens,
    )


def client_version_from_metadata(metadata: Optional[dict]) -> Optional[str]:
    history = metadata.get("environment_history") if isinstance(metadata, dict) else None
    if not isinstance(history, list) or not history or not isinstance(history[0], dict):
        return None
    version = history[0].get("cline_version")
    return version if isinstance(version, str) and version else None


def convert_cline_transcript(
    raw_messages: Any, options: Optional[ConvertOptions] = None
) -> Optional[ConversionResult]:
    """Convert an in-memory Cline message array.

    Cline logs no timestamps, so the transcript is stamped with the injected
    ``now`` (or the clock). The git context is only ever the injected one.
    """
    options = options or ConvertOptions()
    if not isinstance(raw_messages, list) or not raw_messages:
        return None

    converter = ClineConverter(cwd=options.cwd)
    converter.process(raw_messages)
    if not converter.messages:
        return None

    timestamp = resolve_timestamp(None, options)
    model = converter.primary_model
    return assemble_transcript(
        source=SOURCE,
        transcript_id=options.task_id or f"cline-{int(timestamp.timestamp() * 1000)}",
        timestamp=timestamp,
        preview=converter.preview(),
        model=model,
        client_version=options.client_version or client_version_from_metadata(options.metadata),
        token_usage=converter.usage,
        model_usage=[
            {"model": name, "usage": usage.to_dict()}
            for name, usage in converter.model_usage.items()
        ],
        cost_usd=calculate_cline_cost(model, converter.usage, options.pricing_table),
        git=options.git_context if options.has_git_context else None,
        cwd=options.cwd,
        messages=converter.messages,
        blobs=converter.blobs,
    )


def load_task_metadata(task_dir: Path) -> Optional[dict]:
    """Read the sibling ``task_metadata.json``, if there is a usable one."""
    metadata_path = task_dir / METADATA_FILENAME
    if not metadata_path.exists():
        return None
    try:
        with open(metadata_path, "r", encoding="utf-8") as f:
            metadata = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Could not read %s: %s", metadata_path, e)
        return None
    return metadata if isinstance(metadata, dict) else None


def convert_cline_file(
    file_path: Path, options: Optional[ConvertOptions] = None
) -> Optional[ConversionResult]:
    """Convert ``api_conversation_history.json``.

    The task id defaults to the task directory's name.
    """
    options = options or ConvertOptions()
    file_path = Path(file_path)
    with open(file_path, "r", encoding="utf-8") as f:
        try:
            raw_messages = json.load(f)
        except json.JSONDecodeError as e:
            logger.debug("%s is not valid JSON: %s", file_path, e)
            return None

    metadata = options.metadata
    if metadata is None:
        metadata = load_task_metadata(file_path.parent)

    return convert_cline_transcript(
        raw_messages,
        replace(options, task_id=options.task_id or file_path.parent.name, metadata=metadata),
    )


def convert_cline_files(
    file_paths: Iterable[Path], options: Optional[ConvertOptions] = None
) -> list[ConversionResult]:
    results = []
    for file_path in file_paths:
        result = convert_cline_file(file_path, options)
        if result is not None:
            results.append(result)
    return results
