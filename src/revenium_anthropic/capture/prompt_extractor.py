# src/revenium_anthropic/capture/prompt_extractor.py
"""
Opt-in capture of prompt and response text for the metering payload.

Every captured field is capped at MAX_PROMPT_LENGTH bytes of UTF-8. Individual
messages are capped at half of that before the message list is serialized, so
the serialized JSON is never cut.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from revenium_anthropic.providers.types import Message, MessageCreateParams, MessageParam

from .types import PromptData

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 50000
MAX_MESSAGE_LENGTH = MAX_PROMPT_LENGTH // 2
TRUNCATION_MARKER = "...[TRUNCATED]"


def empty_prompt_data(truncated: bool = False) -> PromptData:
    return {"system_prompt": "", "input_messages": "", "output_response": "", "truncated": truncated}


def truncate_utf8_safe(text: str, max_bytes: int) -> str:
    """Cuts `text` to at most `max_bytes` of UTF-8 without splitting a code point."""
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max(max_bytes, 0)].decode("utf-8", errors="ignore")


def cap_text(text: str, cap: int) -> Tuple[str, bool]:
    """Returns (text, truncated). Truncated text ends with the marker and fits in `cap` bytes."""
    if len(text.encode("utf-8")) <= cap:
        return text, False
    marker_len = len(TRUNCATION_MARKER.encode("utf-8"))
    return truncate_utf8_safe(text, cap - marker_len) + TRUNCATION_MARKER, True


def _join_text_blocks(blocks: List[Any]) -> str:
    parts = [
        b.get("text", "")
        for b in blocks
        if isinstance(b, dict) and b.get("type") == "text" and b.get("text")
    ]
    return "\n".join(parts)


def _message_content_text(message: MessageParam) -> str:
    content = message.get("content")
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        text = _join_text_blocks(content)
        if text:
            return text
    try:
        return json.dumps(content, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(content)


def extract_request(params: MessageCreateParams) -> PromptData:
    data = empty_prompt_data()

    system = params.get("system")
    system_text = ""
    if isinstance(system, str):
        system_text = system
    elif isinstance(system, list):
        system_text = _join_text_blocks(system)
    if system_text:
        system_text, truncated = cap_text(system_text, MAX_PROMPT_LENGTH)
        if truncated:
            logger.debug(f"System prompt truncated to {MAX_PROMPT_LENGTH} bytes")
            data["truncated"] = True
        data["system_prompt"] = system_text

    entries: List[Dict[str, str]] = []
    for message in params.get("messages") or []:
        role = message.get("role")
        if not role:
            continue
        content, truncated = cap_text(_message_content_text(message), MAX_MESSAGE_LENGTH)
        if truncated:
            data["truncated"] = True
        entries.append({"role": role, "content": content})
    if entries:
        data["input_messages"] = json.dumps(entries, ensure_ascii=False)
    return data


def extract_response(message: Optional[Message], already_truncated: bool = False) -> PromptData:
    data = empty_prompt_data(already_truncated)
    if not message:
        return data
    text = _join_text_blocks(message.get("content") or [])
    if not text:
        return data
    text, truncated = cap_text(text, MAX_PROMPT_LENGTH)
    if truncated:
        logger.debug(f"Output response truncated to {MAX_PROMPT_LENGTH} bytes")
        data["truncated"] = True
    data["output_response"] = text
    return data


def extract_streaming_response(accumulated_text: str, already_truncated: bool = False) -> PromptData:
    data = empty_prompt_data(already_truncated)
    if not accumulated_text:
        return data
    text, truncated = cap_text(accumulated_text, MAX_PROMPT_LENGTH)
    if truncated:
        logger.debug(f"Streaming output response truncated to {MAX_PROMPT_LENGTH} bytes")
        data["truncated"] = True
    data["output_response"] = text
    return data


def merge_prompt_data(request_data: PromptData, response_data: PromptData) -> PromptData:
    return {
        "system_prompt": request_data["system_prompt"],
        "input_messages": request_data["input_messages"],
        "output_response": response_data["output_response"],
        "truncated": request_data["truncated"] or response_data["truncated"],
    }


def add_prompt_data_to_payload(payload: Dict[str, Any], data: PromptData) -> None:
    if data["system_prompt"]:
        payload["systemPrompt"] = data["system_prompt"]
    if data["input_messages"]:
        payload["inputMessages"] = data["input_messages"]
    if data["output_response"]:
        payload["outputResponse"] = data["output_response"]
    if data["truncated"]:
        payload["promptsTruncated"] = True
