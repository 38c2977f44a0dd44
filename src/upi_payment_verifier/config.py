"""Configuration management for UPI Payment Verifier.

This module handles application configuration using Pydantic settings.
Configuration can be loaded from environment variables or .env files.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with
    the UPI_VERIFIER_ prefix (e.g., UPI_VERIFIER_POLL_INTERVAL_SECONDS).
    """

    model_config = SettingsConfigDict(
        env_prefix="UPI_VERIFIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Merchant / validation rules
    expected_receiver_token: str = Field(
        default="hrejuh",
        description="Substring every receiving VPA must contain to count as the merchant",
    )
    min_amount: Decimal = Field(
        default=Decimal("1"),
        description="Smallest accepted payment amount (inclusive)",
    )
    max_amount: Decimal = Field(
        default=Decimal("100000"),
        description="Largest accepted payment amount (inclusive)",
    )
    max_payment_age_seconds: int = Field(
        default=3600,
        description="Payments older than this many seconds are flagged as stale",
    )

    # Templates
    templates_path: Path | None = Field(
        default=None,
        description="Optional JSON file overriding the built-in bank templates",
    )

    # Status bridge
    status_mode: Literal["push", "poll"] = Field(
        default="poll",
        description="Default order status delivery mode: push or poll",
    )
    poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Delay between order status reads in poll mode",
    )
    poll_max_attempts: int = Field(
        default=150,
        ge=1,
        description="Maximum number of order status reads per poll (150 x 2s = 5 minutes)",
    )

    # Order matching
    match_amount_tolerance: Decimal = Field(
        default=Decimal("2.0"),
        description="Maximum difference between order total and paid amount",
    )
    match_time_window_minutes: int = Field(
        default=10,
        description="Payment must arrive within this many minutes of order creation",
    )
    match_clock_skew_seconds: int = Field(
        default=60,
        ge=0,
        description="Payments stamped up to this many seconds before order creation still match",
    )

    # Local store
    db_path: Path = Field(
        default=Path("upi_verifications.sqlite3"),
        description="Path to the SQLite database holding orders and verification records",
    )

    # Gmail Configuration
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        description="Path to Gmail API credentials file",
    )
    gmail_token_path: Path = Field(
        default=Path("token.json"),
        description="Path to Gmail API token file",
    )
    gmail_scope: str = Field(
        default="https://www.googleapis.com/auth/gmail.readonly",
        description="OAuth scope used for Gmail access; reading payment emails only needs readonly",
    )
    gmail_search_window_minutes: int = Field(
        default=5,
        description="Only payment emails newer than this are fetched by `sync`",
    )
    gmail_max_results: int = Field(
        default=5,
        description="Maximum number of candidate payment emails fetched per sync",
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    max_retries: int = Field(
        default=3,
        description="Maximum number of retries for failed Gmail operations",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
