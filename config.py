"""
Configuration module for TransferTracker Bot.
Loads environment variables and provides application settings.
"""
import re
from datetime import datetime, timezone
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Ethereum RPC
    ethereum_rpc_url: str
    rpc_timeout: int = 30

    # Transfer filter
    token_address: str
    recipient_address: str
    # Amount in the token's smallest unit (e.g. wei for 18 decimals)
    amount: int
    token_decimals: int = 18
    token_symbol: str = "TOKEN"

    # Telegram Bot Configuration
    bot_token: str
    # Format: "chat_id" or "chat_id:thread_id" for topics
    chat_id: str

    # Polling
    poll_interval: int = 30
    initial_lookback_blocks: int = 100
    confirmation_lag: int = 0
    max_window_retries: int = 5

    # Historical backfill
    # Dec 27, 2025 at noon EST
    backfill_start: datetime = datetime(2025, 12, 27, 17, 0, tzinfo=timezone.utc)
    seconds_per_block: int = 12
    locator_search_radius: int = 1000
    max_block_range: int = 5000

    # Database Configuration
    database_path: str = "./data/transfers.db"

    # Links in notifications
    explorer_url: str = "https://etherscan.io"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("token_address", "recipient_address")
    @classmethod
    def _validate_address(cls, value: str) -> str:
        value = value.strip()
        if not _ADDRESS_RE.match(value):
            raise ValueError(f"Invalid EVM address: {value!r}")
        return value.lower()

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value):
        # Parsed from the decimal string so large amounts never pass through float
        if isinstance(value, str):
            value = value.strip()
            if not value.isdigit():
                raise ValueError(f"AMOUNT must be a non-negative integer, got {value!r}")
            return int(value)
        return value

    @field_validator("amount")
    @classmethod
    def _non_negative_amount(cls, value: int) -> int:
        if value < 0:
            raise ValueError("AMOUNT must be non-negative")
        return value

    @field_validator("backfill_start")
    @classmethod
    def _backfill_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("poll_interval", "seconds_per_block", "max_block_range")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be greater than zero")
        return value


def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


def ensure_data_directory(settings: Settings = None):
    """Ensure the data directory exists for the database."""
    settings = settings or get_settings()
    db_path = Path(settings.database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
