"""
Calling platform factory.

Single source of truth for configuration: PlatformConfig (pydantic-settings,
OS env + .env). Never read raw os.getenv("HAPPYROBOT_*") elsewhere.
"""

from __future__ import annotations

from functools import lru_cache

from callconsole.shared.logging import get_logger
from callconsole.telephony.config import PlatformConfig, ProviderType, get_platform_config
from callconsole.telephony.happyrobot_adapter import HappyRobotAdapter
from callconsole.telephony.interface import CallingPlatform
from callconsole.telephony.mock_adapter import MockCallingPlatform

logger = get_logger(__name__)


def build_calling_platform(cfg: PlatformConfig) -> CallingPlatform:
    """Create the adapter selected by `cfg.provider_type`."""
    logger.info(
        "Calling platform config resolved",
        extra={
            "provider_type": cfg.provider_type.value,
            "endpoint_configured": cfg.start_enabled,
            "api_key_configured": bool(cfg.api_key),
            "polling_enabled": cfg.polling_enabled,
            "reconciliation_enabled": cfg.reconciliation_enabled,
            "callback_secret_configured": bool(cfg.callback_secret),
            "request_timeout_seconds": cfg.request_timeout_seconds,
        },
    )

    if cfg.provider_type == ProviderType.HAPPYROBOT:
        return HappyRobotAdapter(cfg)

    if cfg.provider_type == ProviderType.MOCK:
        return MockCallingPlatform()

    raise ValueError(f"Unsupported calling platform provider_type: {cfg.provider_type}")


@lru_cache(maxsize=1)
def get_calling_platform() -> CallingPlatform:
    """Create and cache the process-wide calling platform adapter."""
    return build_calling_platform(get_platform_config())
