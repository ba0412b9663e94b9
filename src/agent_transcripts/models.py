"""Data models for transcript conversion."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class MessagePayload:
    """The ``message`` object carried by a Claude Code record."""

    id: Optional[str] = None
    role: Optional[str] = None
    content: Any = None
    model: Optional[str] = None
    usage: Optional[dict[str, int]] = None


@dataclass
class RawRecord:
    """One event as logged by a producing agent.

    Records are immutable once parsed; ``raw`` keeps the original object for
    producer-specific fields (``toolUseResult``, ``requestId``, ``version``).
    """

    uuid: str
    type: str
    timestamp: Optional[str] = None
    parent_uuid: Optional[str] = None
    is_sidechain: bool = False
    is_meta: bool = False
    is_compact_summary: bool = False
    session_id: Optional[str] = None
    cwd: Optional[str] = None
    git_branch: Optional[str] = None
    message: Optional[MessagePayload] = None
    raw: dict = field(default_factory=dict)


@dataclass
class TokenUsage:
    """Token counts in the canonical shape.

    ``input_tokens`` already includes cached tokens; ``cached_input_tokens``
    is a subset of it and is never added twice.
    """

    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_output_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "TokenUsage") -> None:
        self.input_tokens += other.input_tokens
        self.cached_input_tokens += other.cached_input_tokens
        self.output_tokens += other.output_tokens
        self.reasoning_output_tokens += other.reasoning_output_tokens
        self.total_tokens += other.total_tokens

    @property
    def blended(self) -> int:
        """Usage with cached input netted out."""
        non_cached = max(0, self.input_tokens - self.cached_input_tokens)
        return non_cached + self.output_tokens + self.reasoning_output_tokens

    def to_dict(self) -> dict[str, int]:
        return {
            "inputTokens": self.input_tokens,
            "cachedInputTokens": self.cached_input_tokens,
            "outputTokens": self.output_tokens,
            "reasoningOutputTokens": self.reasoning_output_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class ToolResult:
    """A tool result waiting to be linked to its call."""

    call_id: Optional[str]
    output: Any = None
    error: Optional[str] = None
    is_error: Optional[bool] = None


@dataclass
class ImageRef:
    """Reference to an extracted image blob."""

    sha256: str
    media_type: str = "image/unknown"

    def to_dict(self) -> dict[str, str]:
        return {"sha256": self.sha256, "mediaType": self.media_type}


@dataclass
class TranscriptBlob:
    """Binary payload keyed by its SHA-256 digest in the blob map."""

    data: bytes
    media_type: str


@dataclass
class GitContext:
    """Git location of a transcript, derived once per transcript."""

    relative_cwd: Optional[str] = None
    branch: Optional[str] = None
    repo: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return {
            "relativeCwd": self.relative_cwd,
            "branch": self.branch,
            "repo": self.repo,
        }


@dataclass
class TranscriptStats:
    tool_count: int = 0
    user_message_count: int = 0
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    lines_modified: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "toolCount": self.tool_count,
            "userMessageCount": self.user_message_count,
            "filesChanged": self.files_changed,
            "linesAdded": self.lines_added,
            "linesRemoved": self.lines_removed,
            "linesModified": self.lines_modified,
        }


@dataclass
class ConversionResult:
    """A validated Unified Transcript plus the blobs it references.

    The blob map is owned by the caller; the engine never writes it anywhere.
    """

    transcript: Any  # schemas.UnifiedTranscript
    blobs: dict[str, TranscriptBlob] = field(default_factory=dict)
