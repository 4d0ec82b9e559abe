# src/revenium_anthropic/providers/types.py
from typing import Any, Dict, List, Literal, Optional, TypedDict, Union

# --- Content blocks ---
class TextBlock(TypedDict):
    type: Literal["text"]
    text: str

class Base64ImageSource(TypedDict):
    type: Literal["base64"]
    media_type: str # e.g. "image/png"
    data: str

class URLImageSource(TypedDict):
    type: Literal["url"]
    url: str

class ImageBlock(TypedDict):
    type: Literal["image"]
    source: Union[Base64ImageSource, URLImageSource]

class ToolUseBlock(TypedDict):
    type: Literal["tool_use"]
    id: str
    name: str
    input: Dict[str, Any]

ContentBlock = Union[TextBlock, ImageBlock, ToolUseBlock, Dict[str, Any]]

# --- Request ---
class MessageParam(TypedDict):
    role: Literal["user", "assistant"]
    content: Union[str, List[ContentBlock]]

class MessageCreateParams(TypedDict, total=False):
    """Keyword arguments of a Messages API call. Only `model`, `messages` and `max_tokens` are required by the API."""
    model: str
    messages: List[MessageParam]
    max_tokens: int
    system: Union[str, List[TextBlock]]
    stop_sequences: List[str]
    temperature: float
    top_p: float
    top_k: int
    metadata: Dict[str, Any]
    tools: List[Dict[str, Any]]
    tool_choice: Dict[str, Any]

# --- Response ---
class Usage(TypedDict, total=False):
    input_tokens: int
    output_tokens: int
    cache_creation_input_tokens: Optional[int]
    cache_read_input_tokens: Optional[int]

class Message(TypedDict, total=False):
    """Canonical (Messages API shaped) completion result, whichever provider produced it."""
    id: str
    type: Literal["message"]
    role: Literal["assistant"]
    model: str
    content: List[ContentBlock]
    stop_reason: Optional[str]
    stop_sequence: Optional[str]
    usage: Usage

# --- Stream events (closed union keyed on "type") ---
class TextDelta(TypedDict):
    type: Literal["text_delta"]
    text: str

class InputJSONDelta(TypedDict):
    type: Literal["input_json_delta"]
    partial_json: str

class MessageStartEvent(TypedDict):
    type: Literal["message_start"]
    message: Message

class ContentBlockStartEvent(TypedDict):
    type: Literal["content_block_start"]
    index: int
    content_block: ContentBlock

class ContentBlockDeltaEvent(TypedDict):
    type: Literal["content_block_delta"]
    index: int
    delta: Union[TextDelta, InputJSONDelta, Dict[str, Any]]

class ContentBlockStopEvent(TypedDict):
    type: Literal["content_block_stop"]
    index: int

class MessageDeltaPayload(TypedDict, total=False):
    stop_reason: Optional[str]
    stop_sequence: Optional[str]

class MessageDeltaEvent(TypedDict, total=False):
    type: Literal["message_delta"]
    delta: MessageDeltaPayload
    usage: Usage

class MessageStopEvent(TypedDict):
    type: Literal["message_stop"]

class PingEvent(TypedDict):
    type: Literal["ping"]

class ErrorEvent(TypedDict):
    type: Literal["error"]
    error: Dict[str, Any] # {"type": ..., "message": ...}

StreamEvent = Union[
    MessageStartEvent,
    ContentBlockStartEvent,
    ContentBlockDeltaEvent,
    ContentBlockStopEvent,
    MessageDeltaEvent,
    MessageStopEvent,
    PingEvent,
    ErrorEvent,
]

STREAM_EVENT_TYPES = frozenset({
    "message_start",
    "content_block_start",
    "content_block_delta",
    "content_block_stop",
    "message_delta",
    "message_stop",
    "ping",
    "error",
})
