# src/revenium_anthropic/capture/types.py
from typing import List, TypedDict


class PromptData(TypedDict):
    """Captured prompt/response text. Empty strings mean 'nothing captured'."""
    system_prompt: str
    input_messages: str # JSON array of {"role", "content"}
    output_response: str
    truncated: bool


class VisionDetectionResult(TypedDict):
    has_vision_content: bool
    image_count: int
    total_image_size_bytes: int
    media_types: List[str]
