"""Configuration management for the document filing pipeline.

Settings are loaded from environment variables (or a .env file) with
Pydantic Settings and validated once at startup. The Gemini API key is
optional: without it the pipeline runs against the deterministic mock
classifier, which keeps local runs and tests network-free.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SKILLS_DIR = Path(__file__).resolve().parent / "skills"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Secrets (API keys, database credentials) are only ever read from the
    environment or .env file and are never logged.
    """

    # Gemini API Configuration
    gemini_api_key: Optional[str] = Field(
        default=None,
        description="Google Gemini API key; mock classification is used when absent"
    )
    model_name: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used for classification and intelligence extraction"
    )

    # Mock mode
    use_mock: bool = Field(
        default=False,
        description="Force the offline mock classifier even when an API key is set"
    )
    mock_latency_enabled: bool = Field(
        default=True,
        description="Simulate oracle latency in mock mode"
    )

    # Supabase Configuration (optional persistent store)
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL"
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase anonymous key"
    )
    supabase_service_role_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key (preferred for backend writes)"
    )

    # Pipeline Configuration
    skills_dir: Path = Field(
        default=DEFAULT_SKILLS_DIR,
        description="Directory containing <skill-name>/SKILL.md instruction sets"
    )
    reference_cache_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Lifetime of the merged reference library cache"
    )
    max_batch_files: int = Field(
        default=50,
        ge=1,
        description="Maximum number of files accepted per analyze request"
    )
    pipeline_deadline_seconds: Optional[float] = Field(
        default=None,
        description="Overall deadline for one pipeline run; unbounded when unset"
    )

    # Service Configuration
    log_level: str = Field(default="INFO", description="Root log level")
    trusted_proxies: str = Field(
        default="",
        description="Comma-separated proxy IPs whose X-Forwarded-For header is trusted"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("gemini_api_key", "supabase_key", "supabase_service_role_key")
    @classmethod
    def strip_optional_secret(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank secrets as unset."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate the Supabase URL format when one is configured."""
        if v is None or not v.strip():
            return None

        url = v.strip()
        if not url.startswith("https://"):
            raise ValueError(
                "SUPABASE_URL must start with https:// "
                f"(got: {url[:20]}...)"
            )
        return url

    @field_validator("pipeline_deadline_seconds")
    @classmethod
    def validate_deadline(cls, v: Optional[float]) -> Optional[float]:
        """Reject non-positive deadlines; leave unset for no deadline."""
        if v is not None and v <= 0:
            raise ValueError(
                "PIPELINE_DEADLINE_SECONDS must be greater than 0 "
                "(unset it to disable the deadline)"
            )
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL against the standard logging level names."""
        level = v.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(
                f"LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL (got: {v})"
            )
        return level

    @property
    def oracle_configured(self) -> bool:
        """True when a Gemini API key is available."""
        return bool(self.gemini_api_key)

    @property
    def trusted_proxy_list(self) -> List[str]:
        """TRUSTED_PROXIES split into addresses."""
        return [ip.strip() for ip in self.trusted_proxies.split(",") if ip.strip()]

    @property
    def supabase_configured(self) -> bool:
        """True when both a Supabase URL and a key are available."""
        return bool(self.supabase_url and (self.supabase_service_role_key or self.supabase_key))


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance.

    Returns:
        Settings: Validated application settings

    Raises:
        ValueError: If an environment variable is present but invalid
    """
    return Settings()
