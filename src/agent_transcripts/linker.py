"""Link tool results to the tool calls that produced them."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .blobs import BlobMap, merge_image_references, sanitize_images
from .models import ToolResult

logger = logging.getLogger("agent_transcripts.linker")


@dataclass
class ToolCallEntry:
    index: int
    raw_name: Optional[str] = None
    linked: bool = False


class ToolCallLinker:
    """Index tool calls by call id so results can find them.

    Lookup is by id only, never by record lineage, so results from parallel
    branches reach their call. The first result linked to a call wins.
    """

    def __init__(self):
        self._calls: dict[str, ToolCallEntry] = {}

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._calls

    def register(
        self,
        call_id: Optional[str],
        index: int,
        raw_name: Optional[str] = None,
    ) -> None:
        if not call_id:
            return
        self._calls[call_id] = ToolCallEntry(index=index, raw_name=raw_name)

    def claim(self, call_id: Optional[str]) -> Optional[ToolCallEntry]:
        """Return the call waiting for ``call_id``'s result, at most once."""
        if not call_id:
            return None
        entry = self._calls.get(call_id)
        if entry is None:
            logger.debug("No tool call registered for result %s", call_id)
            return None
        if entry.linked:
            logger.debug("Ignoring repeated result for tool call %s", call_id)
            return None
        entry.linked = True
        return entry


def attach_tool_result(
    messages: list[dict],
    linker: ToolCallLinker,
    result: ToolResult,
    blobs: BlobMap,
    sanitize: Callable[[dict], dict],
) -> bool:
    """Attach ``result`` to its tool-call message in place.

    The output has its images moved to ``blobs`` and referenced on the
    message; ``sanitize`` reshapes the call once the output is known.
    """
    entry = linker.claim(result.call_id)
    if entry is None:
        return False

    message = dict(messages[entry.index])
    output = sanitize_images(result.output, blobs)
    if output is not None:
        message["output"] = output
    merge_image_references(message, output)
    if result.error:
        message["error"] = result.error
    if result.is_error is not None:
        message["isError"] = result.is_error

    messages[entry.index] = sanitize(message)
    return True
