"""
Calling platform configuration.

Each credential pair is independently optional: missing polling credentials
disable run polling, missing reconciliation credentials disable the
failed-runs fallback. Neither prevents triggering calls.
"""

from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PLATFORM_API_URL = "https://platform.happyrobot.ai/api/v1"


class ProviderType(str, Enum):
    """Supported calling platform adapters."""

    HAPPYROBOT = "happyrobot"
    MOCK = "mock"


class PlatformConfig(BaseSettings):
    """Calling platform configuration from environment."""

    model_config = SettingsConfigDict(
        env_prefix="HAPPYROBOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    provider_type: ProviderType = Field(default=ProviderType.HAPPYROBOT)

    # Start-run webhook
    endpoint: str = Field(default="", description="Workflow trigger URL (start run).")
    api_key: str = Field(default="", description="Optional API key sent with start-run requests.")

    # Platform REST API
    platform_api_url: str = Field(default=DEFAULT_PLATFORM_API_URL)

    # Polling credentials
    polling_secret: str = Field(default="")
    org_id: str = Field(default="")

    # Failed-runs reconciliation credentials
    reconcile_token: str = Field(default="")
    use_case_id: str = Field(default="")

    # Inbound callback protection
    callback_secret: str = Field(default="")

    # Outbound request behaviour
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)
    failed_runs_page_size: int = Field(default=50, ge=1, le=500)
    failed_runs_max_pages: int = Field(default=5, ge=1, le=100)

    @property
    def start_enabled(self) -> bool:
        return bool(self.endpoint.strip())

    @property
    def polling_enabled(self) -> bool:
        return bool(self.polling_secret and self.org_id)

    @property
    def reconciliation_enabled(self) -> bool:
        return bool(self.reconcile_token and self.use_case_id)

    def get_api_url(self, path: str) -> str:
        base = self.platform_api_url.rstrip("/")
        return f"{base}{path}"


def get_platform_config() -> PlatformConfig:
    return PlatformConfig()
