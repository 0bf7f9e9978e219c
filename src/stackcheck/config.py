"""
Centralized configuration for stackcheck.

Uses Pydantic BaseSettings for environment variable integration
and validation.

Configuration sources (in order of precedence):
1. Explicit constructor arguments (CLI options end up here)
2. Environment variables (STACKCHECK_*)
3. .env file
4. Default values

Example:
    from stackcheck.config import get_config

    config = get_config()
    print(config.grafana_url)  # From STACKCHECK_GRAFANA_URL or default

    # Override at runtime
    config = get_config(grafana_url="http://grafana.monitoring:3000")
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stackcheck.timeouts import (
    AUTH_TIMEOUT_S,
    DEFAULT_LOG_WINDOW_S,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MAX_RETRIES,
    HTTP_CLIENT_TIMEOUT_S,
)


class StackCheckConfig(BaseSettings):
    """
    Central configuration for a verification run.

    All settings can be overridden via environment variables
    prefixed with STACKCHECK_.

    Example:
        export STACKCHECK_GRAFANA_URL=http://localhost:3000
        export STACKCHECK_PASSWORD=...
        export STACKCHECK_MAX_CONCURRENCY=4
    """

    model_config = SettingsConfigDict(
        env_prefix="STACKCHECK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Gateway
    grafana_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the monitoring gateway (Grafana)",
    )
    username: str = Field(
        default="admin",
        description="Login used for the credential exchange",
    )
    password: str = Field(
        default="admin",
        repr=False,
        description="Password used for the credential exchange",
    )

    # Timeouts
    request_timeout_s: float = Field(
        default=HTTP_CLIENT_TIMEOUT_S,
        gt=0,
        description="Timeout for every gateway call after login",
    )
    auth_timeout_s: float = Field(
        default=AUTH_TIMEOUT_S,
        gt=0,
        description="Timeout for the credential exchange",
    )

    # Scheduling
    max_concurrency: int = Field(
        default=DEFAULT_MAX_CONCURRENCY,
        ge=1,
        description="Cap on outstanding requests against the gateway",
    )
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        ge=0,
        description="Retries for 429/502/503/504 and connection failures",
    )

    # Log queries
    log_window_s: int = Field(
        default=DEFAULT_LOG_WINDOW_S,
        ge=1,
        description="Default look-back window for log range queries",
    )

    # Check catalog
    catalog_path: Optional[str] = Field(
        default=None,
        description="YAML check catalog replacing the built-in one",
    )

    # Logging
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Logging level for stackcheck",
    )
    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Run event format (json for Loki, text for console)",
    )

    @field_validator("grafana_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the gateway URL so paths can be appended directly."""
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"grafana_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")

    def get_catalog_path(self) -> Optional[Path]:
        """Get the custom catalog path, if one is configured."""
        if not self.catalog_path:
            return None
        return Path(self.catalog_path).expanduser()


# Global singleton
_config: Optional[StackCheckConfig] = None


def get_config(**overrides) -> StackCheckConfig:
    """
    Get the global configuration instance.

    Creates a singleton on first call. Subsequent calls return
    the same instance unless overrides are provided.

    Args:
        **overrides: Override any config values

    Returns:
        StackCheckConfig instance
    """
    global _config

    if overrides or _config is None:
        _config = StackCheckConfig(**overrides)

    return _config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
