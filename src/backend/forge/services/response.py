"""
Response decoding — turns raw Messages API payloads into typed blocks,
narrative text and tool invocations, and recovers JSON feedback arrays
from free-form model output.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List

from pydantic import ValidationError

from forge.models.schemas import (
    ContentBlock,
    FeedbackItem,
    MessageResponse,
    OtherBlock,
    ServerToolUseBlock,
    TextBlock,
    ToolUseBlock,
    Usage,
)

logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL_NAME = "web_search"

_BLOCK_TYPES = {
    "text": TextBlock,
    "tool_use": ToolUseBlock,
    "server_tool_use": ServerToolUseBlock,
}

_JSON_FENCE = re.compile(r"```json\s*([\s\S]*?)\s*```")
_ANY_FENCE = re.compile(r"```\s*([\s\S]*?)\s*```")


class MalformedResponseError(ValueError):
    """The response body is not a Messages API envelope."""


def decode_block(raw: Dict[str, Any]) -> ContentBlock:
    block_type = raw.get("type")
    model = _BLOCK_TYPES.get(block_type)
    if model is not None:
        try:
            return model.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Undecodable {block_type} block, keeping it opaque: {e}")
    return OtherBlock.model_validate({**raw, "type": str(block_type or "unknown")})


def decode_response(data: Any) -> MessageResponse:
    """Decode a Messages API response body into a MessageResponse."""
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")

    raw_content = data.get("content") or []
    if not isinstance(raw_content, list):
        raise MalformedResponseError("Response 'content' is not a list")

    blocks = [decode_block(b) for b in raw_content if isinstance(b, dict)]
    return MessageResponse(
        id=data.get("id"),
        model=data.get("model"),
        stop_reason=data.get("stop_reason"),
        content=blocks,
        raw_content=[b for b in raw_content if isinstance(b, dict)],
        usage=Usage.model_validate(data.get("usage") or {}),
    )


def extract_text(response: MessageResponse) -> str:
    """
    Join the text of all text blocks, in order.

    Thinking traces, tool invocations and search results are skipped. A
    response without text blocks yields "" and callers treat that as
    "no output", not as a failure.
    """
    return "\n".join(b.text for b in response.content if isinstance(b, TextBlock))


def tool_uses(response: MessageResponse) -> List[ToolUseBlock]:
    """Client-side tool invocations the caller has to answer."""
    return [b for b in response.content if isinstance(b, ToolUseBlock)]


def count_web_searches(response: MessageResponse) -> int:
    """Number of server-executed web searches in this response."""
    return sum(
        1 for b in response.content
        if isinstance(b, ServerToolUseBlock) and b.name == WEB_SEARCH_TOOL_NAME
    )


# ──────────────────────────────────────────────
# JSON recovery
# ──────────────────────────────────────────────

def _loads_list(candidate: str):
    try:
        value = json.loads(candidate)
    except (json.JSONDecodeError, TypeError):
        return None
    return value if isinstance(value, list) else None


def parse_json_array(text: str) -> List[Any]:
    """
    Recover a JSON array from model output.

    Tries, in order: the whole text, a ```json fenced block, any fenced
    block, and the widest [...] span. Returns [] if nothing parses.
    """
    if not text:
        return []

    value = _loads_list(text)
    if value is not None:
        return value

    for pattern in (_JSON_FENCE, _ANY_FENCE):
        match = pattern.search(text)
        if match:
            value = _loads_list(match.group(1))
            if value is not None:
                return value

    first = text.find("[")
    last = text.rfind("]")
    if first != -1 and last > first:
        value = _loads_list(text[first:last + 1])
        if value is not None:
            return value

    logger.warning(f"Failed to parse JSON from agent response: {text[:300]}")
    return []


def parse_feedback(text: str) -> List[FeedbackItem]:
    """Parse model output into FeedbackItems, dropping entries that don't validate."""
    items: List[FeedbackItem] = []
    for entry in parse_json_array(text):
        if not isinstance(entry, dict):
            logger.debug(f"Skipping non-object feedback entry: {entry!r:.100}")
            continue
        try:
            items.append(FeedbackItem.model_validate(entry))
        except ValidationError as e:
            logger.warning(f"Skipping invalid feedback item: {e}")
    return items
