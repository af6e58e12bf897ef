"""
Configuration module - loads settings from environment variables.
A local .env file is read for development.
"""
import json
import logging
from functools import lru_cache
from typing import Annotated, Any, List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Embedding
    signature_width_pt: float = Field(
        default=100.0,
        gt=0,
        alias="SIGNATURE_WIDTH_PT",
        description="Width of the embedded signature in PDF points; height keeps aspect",
    )
    pdf_producer: str = Field(default="pdfsign", alias="PDF_PRODUCER")

    # Typed signature rendering (pixels on the off-screen canvas)
    typed_canvas_width: int = Field(default=200, gt=0, alias="TYPED_CANVAS_WIDTH")
    typed_canvas_height: int = Field(default=100, gt=0, alias="TYPED_CANVAS_HEIGHT")
    typed_baseline_x: int = Field(default=20, ge=0, alias="TYPED_BASELINE_X")
    typed_baseline_y: int = Field(default=50, ge=0, alias="TYPED_BASELINE_Y")
    typed_default_font: str = Field(default="sans", alias="TYPED_DEFAULT_FONT")
    typed_default_font_size: int = Field(default=30, gt=0, alias="TYPED_DEFAULT_FONT_SIZE")

    # Limits
    max_document_bytes: int = Field(
        default=20 * 1024 * 1024,
        gt=0,
        alias="MAX_DOCUMENT_BYTES",
        description="Largest PDF accepted for signing (default 20 MiB)",
    )
    max_sessions: int = Field(default=100, gt=0, alias="MAX_SESSIONS")
    session_ttl_seconds: int = Field(
        default=3600,
        gt=0,
        alias="SESSION_TTL_SECONDS",
        description="Sessions untouched for this long are evicted (default 1 hour)",
    )
    render_max_scale: float = Field(default=4.0, gt=0, alias="RENDER_MAX_SCALE")

    # CORS
    allowed_origins: Annotated[List[str], NoDecode] = Field(default=[], alias="ALLOWED_ORIGINS")

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _parse_allowed_origins(cls, v: Any) -> List[str]:
        """Parse ALLOWED_ORIGINS from JSON list, CSV, semicolon-separated string, or list."""
        if v is None:
            return []
        if isinstance(v, list):
            return v
        if isinstance(v, str):
            s = v.strip()
            if not s:
                return []
            if s.startswith("["):
                try:
                    return json.loads(s)
                except json.JSONDecodeError:
                    pass  # Fall through to delimiter parsing
            parts = [p.strip() for p in s.replace(",", ";").split(";")]
            return [p for p in parts if p]
        return []

    @model_validator(mode="after")
    def validate_environment(self) -> "Settings":
        """Warn about settings that are unsafe or unusual for the environment."""
        if self.environment == "production" and not self.allowed_origins:
            logger.warning(
                "Configuration Warning: ALLOWED_ORIGINS is empty in production; "
                "browser clients will be blocked by CORS."
            )
        if self.typed_baseline_x >= self.typed_canvas_width or self.typed_baseline_y > self.typed_canvas_height:
            logger.warning(
                f"Configuration Warning: typed baseline ({self.typed_baseline_x}, "
                f"{self.typed_baseline_y}) lies outside the "
                f"{self.typed_canvas_width}x{self.typed_canvas_height} canvas."
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# =============================================================================
# CORS Configuration
# =============================================================================

# Development origins (only in non-production)
DEV_CORS_ORIGINS = [
    "http://localhost:5173",
    "http://localhost:3000",
    "http://127.0.0.1:5173",
    "http://127.0.0.1:3000",
]


def get_cors_origins() -> List[str]:
    """
    Get list of allowed CORS origins.

    Combines origins from ALLOWED_ORIGINS with local development origins
    when not running in production.
    """
    settings = get_settings()
    origins = set(settings.allowed_origins)

    if settings.environment != "production":
        origins.update(DEV_CORS_ORIGINS)

    return sorted(origins)
