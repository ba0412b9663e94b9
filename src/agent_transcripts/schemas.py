"""Pydantic schema of the Unified Transcript.

The envelope and message variants are strict (``extra="forbid"``); tool
inputs and outputs stay ``Any`` so unknown tools never break a conversion.
Known tools get a permissive input shape that is checked separately.

Serialize with ``dump_transcript`` (``model_dump(mode="json",
exclude_unset=True)``) so optional fields that were never set stay absent.
"""

import logging
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictStr,
    TypeAdapter,
    ValidationError,
    model_validator,
)

logger = logging.getLogger("agent_transcripts.schemas")

TRANSCRIPT_VERSION = 1

Source = Literal["claude-code", "codex", "cline"]


class TranscriptValidationError(Exception):
    """The assembled transcript does not match the canonical schema."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ImageReference(StrictModel):
    sha256: str
    mediaType: str


class UserMessage(StrictModel):
    type: Literal["user"]
    text: str
    id: Optional[str] = None
    timestamp: Optional[str] = None
    images: Optional[list[ImageReference]] = None


class CompactionSummaryMessage(StrictModel):
    type: Literal["compaction-summary"]
    text: str
    id: Optional[str] = None
    timestamp: Optional[str] = None


class AgentMessage(StrictModel):
    type: Literal["agent"]
    text: str
    id: Optional[str] = None
    timestamp: Optional[str] = None
    model: Optional[str] = None


class ThinkingMessage(StrictModel):
    type: Literal["thinking"]
    text: str
    id: Optional[str] = None
    timestamp: Optional[str] = None
    model: Optional[str] = None


class CommandMessage(StrictModel):
    type: Literal["command"]
    name: str
    args: Optional[str] = None
    output: Optional[str] = None
    id: Optional[str] = None
    timestamp: Optional[str] = None


class ToolCallMessage(StrictModel):
    type: Literal["tool-call"]
    toolName: Optional[str]
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    # KillShell reports its flag as "true"/"false"
    isError: Optional[Union[StrictBool, StrictStr]] = None
    images: Optional[list[ImageReference]] = None
    id: Optional[str] = None
    timestamp: Optional[str] = None
    model: Optional[str] = None


UnifiedMessage = Annotated[
    Union[
        UserMessage,
        CompactionSummaryMessage,
        AgentMessage,
        ThinkingMessage,
        CommandMessage,
        ToolCallMessage,
    ],
    Field(discriminator="type"),
]

_message_adapter = TypeAdapter(UnifiedMessage)


class TokenUsageModel(StrictModel):
    inputTokens: int = Field(ge=0)
    cachedInputTokens: int = Field(ge=0)
    outputTokens: int = Field(ge=0)
    reasoningOutputTokens: int = Field(ge=0)
    totalTokens: int = Field(ge=0)


class ModelUsageModel(StrictModel):
    model: str
    usage: TokenUsageModel


class GitContextModel(StrictModel):
    relativeCwd: Optional[str]
    branch: Optional[str]
    repo: Optional[str]


class UnifiedTranscript(StrictModel):
    v: Literal[1]
    id: str
    source: Source
    timestamp: datetime
    preview: Optional[str]
    summary: Optional[str] = None
    model: Optional[str]
    clientVersion: Optional[str] = None
    blendedTokens: int
    costUsd: float
    messageCount: int
    toolCount: int = 0
    userMessageCount: int = 0
    filesChanged: int = 0
    linesAdded: int = 0
    linesRemoved: int = 0
    linesModified: int = 0
    tokenUsage: TokenUsageModel
    modelUsage: list[ModelUsageModel]
    git: Optional[GitContextModel]
    cwd: str
    messages: list[UnifiedMessage]

    @model_validator(mode="after")
    def check_message_count(self) -> "UnifiedTranscript":
        if self.messageCount != len(self.messages):
            raise ValueError(
                f"messageCount {self.messageCount} does not match "
                f"{len(self.messages)} messages"
            )
        return self


# Permissive input shapes for tools with a known contract. Extra keys are
# allowed; a mismatch only demotes the call to the generic shape.


class ToolInput(BaseModel):
    model_config = ConfigDict(extra="allow")


class FilePathInput(ToolInput):
    file_path: str


class WriteInput(FilePathInput):
    content: Optional[str] = None


class EditInput(FilePathInput):
    diff: Optional[str] = None
    lineOffset: Optional[int] = None


class BashInput(ToolInput):
    command: str
    description: Optional[str] = None


class GrepInput(ToolInput):
    pattern: str


class TodoWriteInput(ToolInput):
    todos: list[dict]


class TaskInput(ToolInput):
    description: Optional[str] = None
    prompt: Optional[str] = None


TOOL_INPUT_SHAPES: dict[str, type[ToolInput]] = {
    "Write": WriteInput,
    "Read": FilePathInput,
    "Edit": EditInput,
    "Bash": BashInput,
    "Grep": GrepInput,
    "TodoWrite": TodoWriteInput,
    "Task": TaskInput,
}


def validate_message(message: dict) -> dict:
    """Check one message dict against the union; return it unchanged."""
    _message_adapter.validate_python(message)
    return message


def has_known_input_shape(message: dict) -> bool:
    """True when a tool call's input matches its tool's known shape."""
    shape = TOOL_INPUT_SHAPES.get(message.get("toolName") or "")
    if shape is None:
        return False
    try:
        shape.model_validate(message.get("input"))
    except ValidationError:
        logger.debug(
            "Input of %s call %s falls back to the generic shape",
            message.get("toolName"),
            message.get("id"),
        )
        return False
    return True


def validate_tool_call(message: dict) -> dict:
    """Validate a tool-call message dict and return it unchanged."""
    ToolCallMessage.model_validate(message)
    has_known_input_shape(message)
    return message


def validate_transcript(candidate: dict) -> UnifiedTranscript:
    """Gate the assembled envelope through the schema.

    Failure here means the engine itself produced a bad shape, so it is
    logged and raised rather than swallowed.
    """
    try:
        return UnifiedTranscript.model_validate(candidate)
    except ValidationError as e:
        logger.error(
            "Transcript %s failed schema validation: %s", candidate.get("id"), e
        )
        raise TranscriptValidationError(
            f"Transcript {candidate.get('id')!r} failed schema validation",
            errors=e.errors(),
        ) from e


def dump_transcript(transcript: UnifiedTranscript) -> dict:
    """Return the JSON-ready dict form of a validated transcript."""
    return transcript.model_dump(mode="json", exclude_unset=True)
