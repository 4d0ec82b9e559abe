import logging

import pytest

from revenium_anthropic.config.models import ReveniumConfig
from revenium_anthropic.core.errors import ValidationError
from revenium_anthropic.providers.model_ids import (
    construct_full_bedrock_arn,
    convert_bedrock_model_to_anthropic,
    get_bedrock_model_id,
    validate_bedrock_base_arn,
)

ARN_BASE = "arn:aws:bedrock:us-east-1:237436736089"


@pytest.mark.parametrize(
    "bedrock_model, expected",
    [
        (
            "arn:aws:bedrock:us-east-1:237436736089:inference-profile/us.anthropic.claude-sonnet-4-20250514-v1:0",
            "claude-sonnet-4-20250514",
        ),
        (
            "arn:aws:bedrock:eu-west-1:123456789012:inference-profile/eu.anthropic.claude-3-5-haiku-20241022-v1:0",
            "claude-3-5-haiku-20241022",
        ),
        (
            "arn:aws:bedrock:ap-southeast-1:123456789012:inference-profile/ap.anthropic.claude-3-opus-20240229-v1:0",
            "claude-3-opus-20240229",
        ),
        ("anthropic.claude-3-5-haiku-20241022-v2:0", "claude-3-5-haiku-20241022"),
        ("anthropic.claude-3-opus-20240229-v1", "claude-3-opus-20240229"),
        ("anthropic.claude-instant:1", "claude-instant"),
        ("claude-3-7-sonnet-latest", "claude-3-7-sonnet-latest"),
        ("claude-sonnet-4-20250514", "claude-sonnet-4-20250514"),
    ],
)
def test_convert_bedrock_model_to_anthropic(bedrock_model, expected):
    assert convert_bedrock_model_to_anthropic(bedrock_model) == expected


@pytest.mark.parametrize(
    "bad",
    ["arn:aws:bedrock:invalid-format", "anthropic.", "us.anthropic.inference-profile"],
)
def test_convert_unparseable_raises(bad):
    with pytest.raises(ValidationError, match="could not parse Bedrock model ID"):
        convert_bedrock_model_to_anthropic(bad)


def test_get_bedrock_model_id_without_arn_base():
    assert get_bedrock_model_id("claude-3-opus-20240229", None) == "anthropic.claude-3-opus-20240229"
    assert get_bedrock_model_id("anthropic.claude-3-opus-20240229-v1:0") == "anthropic.claude-3-opus-20240229-v1:0"


def test_get_bedrock_model_id_full_arn_passthrough():
    arn = f"{ARN_BASE}:inference-profile/us.anthropic.claude-sonnet-4-20250514-v1:0"
    config = ReveniumConfig(aws_model_arn_base=ARN_BASE)
    assert get_bedrock_model_id(arn, config) == arn


def test_get_bedrock_model_id_with_arn_base():
    config = ReveniumConfig(aws_model_arn_base=ARN_BASE)
    assert (
        get_bedrock_model_id("claude-sonnet-4-20250514", config)
        == f"{ARN_BASE}:inference-profile/us.anthropic.claude-sonnet-4-20250514-v1:0"
    )


def test_get_bedrock_model_id_invalid_arn_base_is_logged_and_ignored(caplog):
    caplog.set_level(logging.WARNING, logger="revenium_anthropic.providers.model_ids")
    config = ReveniumConfig(aws_model_arn_base="arn:aws:bedrock:us-east-1")
    assert get_bedrock_model_id("claude-3-opus-20240229", config) == "anthropic.claude-3-opus-20240229"
    assert "Failed to construct Bedrock ARN" in caplog.text


@pytest.mark.parametrize(
    "model",
    ["claude-3-opus-20240229", "claude-3-5-haiku-20241022", "claude-3-7-sonnet-latest", "claude-sonnet-4-20250514"],
)
def test_round_trip_through_gateway_form(model):
    plain = get_bedrock_model_id(model, None)
    assert convert_bedrock_model_to_anthropic(plain) == model
    arn = get_bedrock_model_id(model, ReveniumConfig(aws_model_arn_base=ARN_BASE))
    assert convert_bedrock_model_to_anthropic(arn) == model


def test_validate_bedrock_base_arn_messages():
    validate_bedrock_base_arn(ARN_BASE)
    with pytest.raises(ValidationError, match="empty"):
        validate_bedrock_base_arn("")
    with pytest.raises(ValidationError, match="too long"):
        validate_bedrock_base_arn(f"{ARN_BASE}:inference-profile/us.anthropic.x")
    with pytest.raises(ValidationError, match="too short"):
        validate_bedrock_base_arn("arn:aws:bedrock")
    with pytest.raises(ValidationError, match="incorrect format"):
        validate_bedrock_base_arn("arn:aws:bedrock:us-east-1:12345")


def test_construct_full_bedrock_arn_requires_model():
    with pytest.raises(ValidationError, match="model name is required"):
        construct_full_bedrock_arn(ARN_BASE, "")
