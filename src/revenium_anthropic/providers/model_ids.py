# src/revenium_anthropic/providers/model_ids.py
"""Conversions between Anthropic model names and Bedrock model identifiers / ARNs."""
import logging
import re
from typing import Optional

from revenium_anthropic.config.models import ReveniumConfig
from revenium_anthropic.core.errors import ValidationError

logger = logging.getLogger(__name__)

BEDROCK_ARN_PREFIX = "arn:aws:bedrock:"
BEDROCK_MODEL_PREFIX = "anthropic."
_BASE_ARN_PATTERN = re.compile(r"^arn:aws:bedrock:[a-z]{2}-[a-z]+-\d+:\d{12}$")
_REGION_PREFIXES = ("us.", "eu.", "ap.")
_VERSION_SUFFIX = re.compile(r"-v\d+(:\d+)?$")
_REVISION_SUFFIX = re.compile(r":\d+$")


def validate_bedrock_base_arn(arn_base: Optional[str]) -> None:
    """
    Raises ValidationError unless `arn_base` looks like
    `arn:aws:bedrock:{region}:{12-digit account id}`.
    """
    if not arn_base:
        raise ValidationError("AWS_MODEL_ARN_ID is empty")
    if _BASE_ARN_PATTERN.match(arn_base):
        return
    expected = "Expected format: arn:aws:bedrock:{region}:{account-id}"
    if "inference-profile" in arn_base or "anthropic" in arn_base:
        raise ValidationError(f"AWS_MODEL_ARN_ID is too long. {expected}, got: {arn_base}")
    if len(arn_base.split(":")) < 5:
        raise ValidationError(f"AWS_MODEL_ARN_ID is too short. {expected}, got: {arn_base}")
    raise ValidationError(f"AWS_MODEL_ARN_ID has incorrect format. {expected}, got: {arn_base}")


def construct_full_bedrock_arn(arn_base: str, model_name: str) -> str:
    validate_bedrock_base_arn(arn_base)
    if not model_name:
        raise ValidationError("model name is required to construct full Bedrock ARN")
    return f"{arn_base}:inference-profile/us.anthropic.{model_name}-v1:0"


def get_bedrock_model_id(model_name: str, config: Optional[ReveniumConfig] = None) -> str:
    """Anthropic model name -> the identifier Bedrock expects."""
    if model_name.startswith(BEDROCK_ARN_PREFIX):
        return model_name
    if config is not None and config.aws_model_arn_base:
        try:
            return construct_full_bedrock_arn(config.aws_model_arn_base, model_name)
        except ValidationError as e:
            logger.warning(f"Failed to construct Bedrock ARN: {e}. Using standard model id format.")
    if model_name.startswith(BEDROCK_MODEL_PREFIX):
        return model_name
    return f"{BEDROCK_MODEL_PREFIX}{model_name}"


def _strip_version(name: str) -> str:
    name = _VERSION_SUFFIX.sub("", name)
    return _REVISION_SUFFIX.sub("", name)


def convert_bedrock_model_to_anthropic(bedrock_model: str) -> str:
    """
    Bedrock model id or ARN -> plain Anthropic model name. Plain names pass through.

    Raises:
        ValidationError: the identifier is in a Bedrock form that cannot be parsed.
    """
    is_arn = "arn:aws:bedrock" in bedrock_model
    if not is_arn and not bedrock_model.startswith(BEDROCK_MODEL_PREFIX) and "inference-profile" not in bedrock_model:
        return bedrock_model

    if is_arn:
        if "/" not in bedrock_model:
            raise ValidationError(f"could not parse Bedrock model ID '{bedrock_model}': unrecognized format")
        model_part = bedrock_model.rsplit("/", 1)[1]
        for region in _REGION_PREFIXES:
            if model_part.startswith(region + BEDROCK_MODEL_PREFIX):
                model_part = model_part[len(region):]
                break
        if model_part.startswith(BEDROCK_MODEL_PREFIX):
            model_part = model_part[len(BEDROCK_MODEL_PREFIX):]
        model_name = _strip_version(model_part)
    elif bedrock_model.startswith(BEDROCK_MODEL_PREFIX):
        model_name = _strip_version(bedrock_model[len(BEDROCK_MODEL_PREFIX):])
    else:
        model_name = ""

    if not model_name:
        raise ValidationError(f"could not parse Bedrock model ID '{bedrock_model}': unrecognized format")
    logger.debug(f"Converted Bedrock model '{bedrock_model}' to '{model_name}'.")
    return model_name
