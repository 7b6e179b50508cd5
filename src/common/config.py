"""Configuration management for the SRT translation engine."""

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")

    # Translation provider selection
    translation_provider: Literal["gemini", "openai"] = Field(
        default="gemini", env="TRANSLATION_PROVIDER"
    )

    # Gemini (generateContent REST endpoint)
    gemini_api_key: Optional[str] = Field(default=None, env="GEMINI_API_KEY")
    gemini_model: str = Field(default="gemini-2.0-flash", env="GEMINI_MODEL")
    gemini_api_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        env="GEMINI_API_BASE_URL",
    )

    # OpenAI-compatible chat completions
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    openai_model: str = Field(default="gpt-4o-mini", env="OPENAI_MODEL")
    openai_base_url: Optional[str] = Field(
        default=None, env="OPENAI_BASE_URL"
    )  # None uses the SDK default endpoint
    openai_temperature: float = Field(
        default=0.3, env="OPENAI_TEMPERATURE"
    )  # Lower for consistent translations

    # Per-request timeout in seconds (one HTTP request/response cycle)
    translation_request_timeout: float = Field(
        default=60.0, env="TRANSLATION_REQUEST_TIMEOUT"
    )

    # Job defaults
    translation_target_language: str = Field(
        default="Persian (Farsi)", env="TRANSLATION_TARGET_LANGUAGE"
    )
    translation_base_delay_ms: int = Field(
        default=4000, env="TRANSLATION_BASE_DELAY_MS"
    )  # Seed for exponential backoff and pacing between batches
    translation_quota_delay_ms: int = Field(
        default=60000, env="TRANSLATION_QUOTA_DELAY_MS"
    )  # Fixed wait after a quota (429) rejection
    translation_chunk_count: int = Field(default=10, env="TRANSLATION_CHUNK_COUNT")
    translation_max_transient_attempts: int = Field(
        default=5, env="TRANSLATION_MAX_TRANSIENT_ATTEMPTS"
    )
    translation_max_mismatch_retries: int = Field(
        default=2, env="TRANSLATION_MAX_MISMATCH_RETRIES"
    )
    translation_pace_between_batches: bool = Field(
        default=True, env="TRANSLATION_PACE_BETWEEN_BATCHES"
    )

    # Marker placed between segments of one combined prompt
    translation_segment_delimiter: str = Field(
        default="<<<SEGMENT>>>", env="TRANSLATION_SEGMENT_DELIMITER"
    )

    @field_validator("translation_segment_delimiter")
    @classmethod
    def validate_segment_delimiter(cls, v: str) -> str:
        """
        Reject delimiters that would collide with subtitle text.

        Args:
            v: Configured delimiter

        Returns:
            Delimiter with surrounding whitespace removed

        Raises:
            ValueError: If the delimiter is blank or contains a line break
        """
        v = v.strip()
        if not v:
            raise ValueError("translation_segment_delimiter cannot be blank")
        if "\n" in v:
            raise ValueError("translation_segment_delimiter must be a single line")
        return v

    def get_api_key(self, provider: Optional[str] = None) -> Optional[str]:
        """
        Return the configured API key for a provider.

        Args:
            provider: 'gemini' or 'openai'; defaults to translation_provider

        Returns:
            API key or None when not configured
        """
        provider = provider or self.translation_provider
        if provider == "openai":
            return self.openai_api_key
        return self.gemini_api_key

    class Config:
        # .env lives at the project root; this file is in src/common/
        _project_root = Path(__file__).parent.parent.parent
        env_file = str(_project_root / ".env")
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
