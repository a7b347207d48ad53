"""
LLM Configuration Settings

Pydantic-settings based configuration for the Bedrock classification model.
All settings can be overridden via environment variables with DOCPIPE_ prefix.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """
    LLM-specific settings for AWS Bedrock integration.

    Environment variables are prefixed with DOCPIPE_ and are case-insensitive.
    Example: DOCPIPE_BEDROCK_MODEL_ID=anthropic.claude-3-haiku-20240307-v1:0
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCPIPE_",
        env_file=[".env.local", ".env"],  # Try .env.local first
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    llm_enabled: bool = Field(
        default=True,
        description="Global toggle for LLM classification",
    )

    # AWS Bedrock Configuration
    bedrock_model_id: str = Field(
        default="anthropic.claude-3-sonnet-20240229-v1:0",
        description="AWS Bedrock model ID used for classification",
    )
    bedrock_region: str = Field(
        default="us-east-1",
        description="AWS region for Bedrock service",
    )
    bedrock_endpoint_url: str | None = Field(
        default=None,
        description="Custom Bedrock endpoint URL (for local testing or VPC endpoints)",
    )

    # LLM Parameters
    llm_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="LLM sampling temperature (lower = more deterministic)",
    )
    llm_max_tokens: int = Field(
        default=2048,
        gt=0,
        le=100000,
        description="Maximum tokens for LLM response",
    )
    llm_top_p: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Top-p (nucleus) sampling parameter",
    )

    @property
    def model_arn(self) -> str:
        """Foundation model ARN, as required by knowledge base generation."""
        if self.bedrock_model_id.startswith("arn:"):
            return self.bedrock_model_id
        return f"arn:aws:bedrock:{self.bedrock_region}::foundation-model/{self.bedrock_model_id}"


@lru_cache(maxsize=1)
def get_llm_settings() -> LLMSettings:
    """
    Get cached LLM settings instance.

    For testing, use LLMSettings() directly with overrides.
    """
    return LLMSettings()
