"""
Configuration management for SimplHost.
"""

import logging
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings

logger = logging.getLogger("simplhost.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: List[str] = ["*"]

    # Cloudflare custom hostnames (REQUIRED for domain operations)
    cloudflare_api_token: str = ""
    cloudflare_zone_id: str = ""
    cloudflare_cname_target: str = "edge.simplhost.com"
    cloudflare_api_base: str = "https://api.cloudflare.com/client/v4"

    # Provider calls
    provider_timeout: float = 30.0  # seconds
    provider_max_retries: int = 2  # status fetches only
    provider_retry_backoff: float = 0.5  # seconds, doubled per attempt

    # Supabase Auth
    supabase_url: str = ""
    supabase_anon_key: str = ""
    auth_timeout: float = 10.0

    # Redis
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "simplhost:"

    # Sites
    site_base_domain: str = "simplhost.com"

    # Background refresh of pending domains, 0 disables
    domain_poll_interval: int = 0

    # Logging
    log_level: str = "INFO"

    # Debug mode
    debug: bool = False

    model_config = {
        "env_prefix": "SIMPLHOST_",
        "env_file": ".env",
        "extra": "ignore"
    }

    @property
    def provider_configured(self) -> bool:
        return bool(self.cloudflare_api_token and self.cloudflare_zone_id)

    def validate_required(self) -> bool:
        """Validate that required settings are configured."""
        if not self.provider_configured:
            raise ValueError(
                "SIMPLHOST_CLOUDFLARE_API_TOKEN and SIMPLHOST_CLOUDFLARE_ZONE_ID "
                "are required for custom domains"
            )
        if not self.supabase_url or not self.supabase_anon_key:
            raise ValueError(
                "SIMPLHOST_SUPABASE_URL and SIMPLHOST_SUPABASE_ANON_KEY "
                "are required to authenticate requests"
            )
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    # In production, report missing fields
    if not settings.debug:
        try:
            settings.validate_required()
        except ValueError as e:
            logger.warning(f"Configuration warning: {e}")
    return settings
