"""Settings Management Module.

Webhook delivery configuration read from environment variables
(optionally a .env file) and validated before use.
"""

import os
from functools import lru_cache
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, ValidationError

# Environment variable names
ENV_WEBHOOK_URL = "MAKE_WEBHOOK_URL"
ENV_WEBHOOK_SECRET = "MAKE_WEBHOOK_SECRET"
ENV_WEBHOOK_ENABLED = "MAKE_WEBHOOK_ENABLED"
ENV_RETRY_ATTEMPTS = "MAKE_WEBHOOK_RETRY_ATTEMPTS"
ENV_TIMEOUT_MS = "MAKE_WEBHOOK_TIMEOUT_MS"
ENV_BATCH_SIZE = "MAKE_WEBHOOK_BATCH_SIZE"
ENV_BATCH_DELAY_MS = "MAKE_WEBHOOK_BATCH_DELAY_MS"
ENV_ENVIRONMENT = "APP_ENVIRONMENT"

_FALSE_VALUES = {"0", "false", "no", "off"}

_url_adapter = TypeAdapter(HttpUrl)


class WebhookSettings(BaseModel):
    """Outbound webhook configuration."""

    # Target URL is kept as a raw string so a malformed value can be
    # reported by validate_config instead of failing at load time.
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    enabled: bool = True

    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    timeout_ms: int = Field(default=10000, gt=0)

    batch_size: int = Field(default=10, ge=1)
    batch_delay_ms: int = Field(default=1000, ge=0)

    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_cooldown_seconds: float = Field(default=60.0, ge=0)

    environment: str = "development"
    user_agent: str = "webhook-relay/0.1.0"

    class Config:
        validate_assignment = True

    @property
    def is_active(self) -> bool:
        """True when deliveries should actually be attempted."""
        return self.enabled and bool(self.webhook_url)

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        load_env_file: bool = False,
    ) -> "WebhookSettings":
        """Build settings from environment variables.

        Args:
            env: Mapping to read from (defaults to os.environ).
            load_env_file: Load a .env file into os.environ first.
        """
        if load_env_file:
            load_dotenv()
        if env is None:
            env = os.environ

        values: dict = {}
        url = (env.get(ENV_WEBHOOK_URL) or "").strip()
        if url:
            values["webhook_url"] = url
        secret = env.get(ENV_WEBHOOK_SECRET)
        if secret:
            values["webhook_secret"] = secret
        if ENV_WEBHOOK_ENABLED in env:
            values["enabled"] = env[ENV_WEBHOOK_ENABLED].strip().lower() not in _FALSE_VALUES

        for key, field in (
            (ENV_RETRY_ATTEMPTS, "retry_attempts"),
            (ENV_TIMEOUT_MS, "timeout_ms"),
            (ENV_BATCH_SIZE, "batch_size"),
            (ENV_BATCH_DELAY_MS, "batch_delay_ms"),
        ):
            raw = (env.get(key) or "").strip()
            if not raw:
                continue
            try:
                values[field] = int(raw)
            except ValueError:
                raise ValueError(f"{key} must be an integer, got {raw!r}") from None

        if env.get(ENV_ENVIRONMENT):
            values["environment"] = env[ENV_ENVIRONMENT]

        return cls(**values)


class ConfigValidation(BaseModel):
    """Result of validate_config."""

    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def is_valid_url(url: str) -> bool:
    """Check that url parses as an absolute http(s) URL."""
    try:
        _url_adapter.validate_python(url)
    except ValidationError:
        return False
    return True


def validate_config(settings: WebhookSettings) -> ConfigValidation:
    """Validate webhook settings without side effects.

    A missing URL is not an error: delivery runs in disabled mode.
    """
    errors: List[str] = []
    warnings: List[str] = []

    if not settings.webhook_url:
        warnings.append(f"{ENV_WEBHOOK_URL} is not configured; webhook delivery is disabled")
    else:
        if not is_valid_url(settings.webhook_url):
            errors.append(f"{ENV_WEBHOOK_URL} is not a valid URL: {settings.webhook_url!r}")
        elif settings.webhook_url.lower().startswith("http://"):
            warnings.append(f"{ENV_WEBHOOK_URL} does not use HTTPS")

        if not settings.webhook_secret:
            warnings.append(
                f"{ENV_WEBHOOK_SECRET} is not configured; requests are sent without a shared secret"
            )

    if not settings.enabled:
        warnings.append(f"Webhook delivery is disabled via {ENV_WEBHOOK_ENABLED}")

    return ConfigValidation(is_valid=not errors, errors=errors, warnings=warnings)


@lru_cache
def get_settings() -> WebhookSettings:
    """Cached settings instance."""
    return WebhookSettings.from_env(load_env_file=True)
