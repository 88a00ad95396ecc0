"""Process-wide settings for the gateway."""

import os

from pydantic import BaseModel, Field

from .types import TokenLimits


class GatewaySettings(BaseModel):
    """Settings read once at process start.

    Example:
        settings = GatewaySettings.from_env()
        gateway = Gateway.from_settings(settings, store=InMemoryUsageStore())
    """

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None
    openrouter_api_key: str | None = None
    openrouter_site_url: str | None = None
    openrouter_app_name: str | None = None

    default_token_limit_global: int = Field(default=1_000_000, ge=0)
    default_token_limit_monthly: int = Field(default=100_000, ge=0)

    request_timeout: float = Field(default=120.0, gt=0, description="Seconds")
    max_retries: int = Field(default=3, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        """Build settings from environment variables."""
        env = os.environ
        return cls(
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
            openrouter_api_key=env.get("OPENROUTER_API_KEY") or None,
            openrouter_site_url=env.get("OPENROUTER_SITE_URL") or None,
            openrouter_app_name=env.get("OPENROUTER_APP_NAME") or None,
            default_token_limit_global=int(env.get("DEFAULT_TOKEN_LIMIT_GLOBAL", "1000000")),
            default_token_limit_monthly=int(env.get("DEFAULT_TOKEN_LIMIT_MONTHLY", "100000")),
            request_timeout=float(env.get("AI_REQUEST_TIMEOUT", "120")),
            max_retries=int(env.get("AI_MAX_RETRIES", "3")),
            log_level=env.get("METERWAY_LOG_LEVEL", "INFO"),
        )

    @property
    def default_limits(self) -> TokenLimits:
        return TokenLimits(
            global_limit=self.default_token_limit_global,
            monthly_limit=self.default_token_limit_monthly,
        )
