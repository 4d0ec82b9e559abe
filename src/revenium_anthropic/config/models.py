# src/revenium_anthropic/config/models.py
import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from revenium_anthropic.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_REVENIUM_BASE_URL = "https://api.revenium.ai"
DEFAULT_ANTHROPIC_BASE_URL = "https://api.anthropic.com"
REVENIUM_API_KEY_PREFIX = "hak_"

_LEGACY_SUFFIXES = ("/meter/v2", "/meter", "/v2")


def normalize_revenium_base_url(base_url: Optional[str]) -> str:
    """
    Reduces any accepted form of the metering base URL to a bare origin.

    Strips exactly one trailing slash and then one legacy suffix (`/meter/v2`,
    `/meter` or `/v2`). The fixed metering path is appended by the dispatcher.
    """
    if not base_url:
        return DEFAULT_REVENIUM_BASE_URL
    url = base_url
    if url.endswith("/"):
        url = url[:-1]
    for suffix in _LEGACY_SUFFIXES:
        if url.endswith(suffix):
            return url[: -len(suffix)]
    return url


class ReveniumConfig(BaseModel):
    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    anthropic_api_key: Optional[str] = Field(default=None, description="Key for the Anthropic Messages API.")
    anthropic_base_url: str = Field(default=DEFAULT_ANTHROPIC_BASE_URL)
    base_url: Optional[str] = Field(
        default=None,
        description="Provider base URL override. A URL on amazonaws.com routes calls to Bedrock.",
    )

    revenium_api_key: Optional[str] = Field(default=None, description="Metering key, must start with 'hak_'.")
    revenium_base_url: str = Field(default=DEFAULT_REVENIUM_BASE_URL)
    revenium_organization_id: Optional[str] = Field(default=None)
    revenium_product_id: Optional[str] = Field(default=None)

    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    aws_region: str = Field(default="us-east-1")
    aws_profile: Optional[str] = Field(default=None)
    aws_model_arn_base: Optional[str] = Field(
        default=None,
        description="Base ARN 'arn:aws:bedrock:{region}:{account-id}' used to build inference-profile ARNs.",
    )
    bedrock_disabled: bool = Field(default=False)

    log_level: str = Field(default="INFO")
    verbose_startup: bool = Field(default=False)
    capture_prompts: bool = Field(
        default=False,
        description=(
            "Opt-in. When True, system prompt, input messages and the response text "
            "are sent with the metering payload, each truncated at 50,000 characters."
        ),
    )

    @field_validator("revenium_base_url", mode="before")
    @classmethod
    def _normalize_base_url(cls, value: Any) -> str:
        return normalize_revenium_base_url(value)

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, value: Any) -> str:
        return str(value or "INFO").upper()

    def validate_for_metering(self) -> None:
        if not self.revenium_api_key:
            raise ConfigurationError("REVENIUM_METERING_API_KEY is required")
        if not self.revenium_api_key.startswith(REVENIUM_API_KEY_PREFIX):
            raise ConfigurationError("invalid Revenium API key format")
        logger.debug("Configuration validation passed.")

    def redacted_summary(self) -> Dict[str, Any]:
        """Configuration view safe to log: secrets are reduced to presence flags."""
        return {
            "anthropic_api_key_set": bool(self.anthropic_api_key),
            "revenium_api_key_set": bool(self.revenium_api_key),
            "revenium_base_url": self.revenium_base_url,
            "revenium_organization_id": self.revenium_organization_id,
            "revenium_product_id": self.revenium_product_id,
            "aws_credentials_set": bool(self.aws_access_key_id and self.aws_secret_access_key),
            "aws_profile": self.aws_profile,
            "aws_region": self.aws_region,
            "aws_model_arn_base_set": bool(self.aws_model_arn_base),
            "bedrock_disabled": self.bedrock_disabled,
            "log_level": self.log_level,
            "capture_prompts": self.capture_prompts,
        }
