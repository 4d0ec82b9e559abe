# src/revenium_anthropic/capture/vision.py
import logging
from typing import Any, Dict, Optional

from revenium_anthropic.providers.types import MessageCreateParams

from .types import VisionDetectionResult

logger = logging.getLogger(__name__)


def estimate_base64_decoded_size(data: str) -> int:
    """Decoded byte count of a base64 string: (len - padding) * 3 // 4, padding being 0-2 trailing '='."""
    if not data:
        return 0
    padding = 0
    if data.endswith("=="):
        padding = 2
    elif data.endswith("="):
        padding = 1
    return ((len(data) - padding) * 3) // 4


def detect_vision_content(params: MessageCreateParams) -> VisionDetectionResult:
    result: VisionDetectionResult = {
        "has_vision_content": False,
        "image_count": 0,
        "total_image_size_bytes": 0,
        "media_types": [],
    }
    for message in params.get("messages") or []:
        content = message.get("content")
        if not isinstance(content, list):
            continue
        for block in content:
            if isinstance(block, dict) and block.get("type") == "image":
                _process_image_block(block, result)
    if result["has_vision_content"]:
        logger.debug(
            f"Vision content detected: {result['image_count']} image(s), ~{result['total_image_size_bytes']} bytes"
        )
    return result


def _process_image_block(block: Dict[str, Any], result: VisionDetectionResult) -> None:
    result["has_vision_content"] = True
    result["image_count"] += 1
    source = block.get("source") or {}
    # URL images count, but carry no inline bytes.
    if source.get("type") != "base64":
        return
    media_type = source.get("media_type")
    if media_type and media_type not in result["media_types"]:
        result["media_types"].append(media_type)
    result["total_image_size_bytes"] += estimate_base64_decoded_size(source.get("data") or "")


def build_vision_attributes(result: VisionDetectionResult) -> Optional[Dict[str, Any]]:
    if not result["has_vision_content"]:
        return None
    return {
        "vision_image_count": result["image_count"],
        "vision_total_size_bytes": result["total_image_size_bytes"],
        "vision_media_types": list(result["media_types"]),
    }
