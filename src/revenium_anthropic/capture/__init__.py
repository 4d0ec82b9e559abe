"""Prompt capture and vision detection."""
from .prompt_extractor import (
    MAX_PROMPT_LENGTH,
    TRUNCATION_MARKER,
    add_prompt_data_to_payload,
    extract_request,
    extract_response,
    extract_streaming_response,
    truncate_utf8_safe,
)
from .types import PromptData, VisionDetectionResult
from .vision import build_vision_attributes, detect_vision_content

__all__ = [
    "MAX_PROMPT_LENGTH",
    "TRUNCATION_MARKER",
    "add_prompt_data_to_payload",
    "extract_request",
    "extract_response",
    "extract_streaming_response",
    "truncate_utf8_safe",
    "PromptData",
    "VisionDetectionResult",
    "build_vision_attributes",
    "detect_vision_content",
]
