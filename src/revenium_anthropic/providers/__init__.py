"""Provider plugins, selection and model-id conversion."""
from .abc import LLMProviderPlugin
from .model_ids import (
    construct_full_bedrock_arn,
    convert_bedrock_model_to_anthropic,
    get_bedrock_model_id,
    validate_bedrock_base_arn,
)
from .selection import Provider, detect_provider

__all__ = [
    "LLMProviderPlugin",
    "construct_full_bedrock_arn",
    "convert_bedrock_model_to_anthropic",
    "get_bedrock_model_id",
    "validate_bedrock_base_arn",
    "Provider",
    "detect_provider",
]
