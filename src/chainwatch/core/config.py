"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

WEBSOCKET_SCHEMES = ("ws://", "wss://")


def is_websocket_url(url: str | None) -> bool:
    """Whether ``url`` can carry eth_subscribe notifications."""
    return bool(url) and url.lower().startswith(WEBSOCKET_SCHEMES)


class Settings(BaseSettings):
    """Settings with environment variable support (prefix ``CHAINWATCH_``)."""

    model_config = SettingsConfigDict(
        env_prefix="CHAINWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="chainwatch", description="Application name")
    environment: Literal["development", "testing", "staging", "production"] = Field(
        default="development", description="Runtime environment"
    )

    # RPC transport
    rpc_url: str = Field(
        default="http://localhost:8545",
        description="Primary HTTP JSON-RPC endpoint",
    )
    rpc_backup_urls: list[str] = Field(
        default=[], description="Backup HTTP JSON-RPC endpoints"
    )
    ws_rpc_url: str | None = Field(
        default=None,
        description="WebSocket endpoint for newHeads/logs subscriptions",
    )
    poa_chain: bool = Field(
        default=False, description="Inject the POA extraData middleware"
    )
    rpc_max_retries: int = Field(
        default=3, ge=1, description="Retry attempts per RPC endpoint"
    )
    rpc_retry_delay: float = Field(
        default=1.0, ge=0, description="Base delay between RPC retries in seconds"
    )
    transport_mode: Literal["auto", "push", "pull"] = Field(
        default="auto", description="Notification style used by waits"
    )

    # Confirmation tracking
    poll_interval: float = Field(
        default=3.0, ge=0, description="Receipt polling interval in seconds"
    )
    receipt_retry_budget: int = Field(
        default=5, ge=1, description="Receipt lookups allowed to miss before giving up"
    )
    required_confirmations: int = Field(
        default=3, ge=0, description="Default confirmation depth"
    )
    wait_blocks: int = Field(
        default=5,
        ge=0,
        description="Extra headers observed in head-subscription mode before timing out",
    )

    # Event waiting
    scan_lookback: int = Field(
        default=3, ge=0, description="Blocks behind head where a log scan starts"
    )
    scan_interval: float = Field(
        default=3.0, ge=0, description="Delay between log scan rounds in seconds"
    )
    scan_error_budget: int = Field(
        default=5, ge=1, description="Consecutive scan failures tolerated"
    )
    dedup_max_size: int = Field(
        default=10000, ge=1, description="Max entries in the per-call dedup cache"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "console"] = Field(
        default="console", description="Log output format"
    )

    @computed_field
    @property
    def active_rpc_urls(self) -> list[str]:
        """Primary endpoint followed by backups."""
        return [self.rpc_url, *self.rpc_backup_urls]

    @computed_field
    @property
    def supports_subscriptions(self) -> bool:
        """Whether a push transport is configured."""
        return is_websocket_url(self.ws_rpc_url)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
