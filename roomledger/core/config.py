"""
Configuration management for RoomLedger.

Provides centralized, validated configuration from environment variables
with proper type checking and defaults.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from roomledger.core.models import SplitPolicy

# Sub-configurations read .env themselves; Settings rebuilds them in model_post_init.
SUB_CONFIG = SettingsConfigDict(
    env_prefix="",
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
    populate_by_name=True,
)


class ApiConfig(BaseSettings):
    """Ledger backend API configuration."""

    base_url: str = Field(default="https://financetracker.runasp.net/api", alias="API_BASE_URL")
    token: Optional[str] = Field(default=None, alias="API_TOKEN")
    timeout_seconds: float = Field(default=30.0, alias="API_TIMEOUT_SECONDS")
    read_retry_attempts: int = Field(default=1, ge=1, alias="API_READ_RETRY_ATTEMPTS")

    # Endpoint paths, relative to base_url
    rooms_path: str = Field(default="/rooms/get-rooms", alias="API_ROOMS_PATH")
    room_expenses_path: str = Field(
        default="/Expenses/get-room-expenses", alias="API_ROOM_EXPENSES_PATH"
    )
    add_expense_path: str = Field(default="/Expenses/add-expense", alias="API_ADD_EXPENSE_PATH")
    update_expense_path: str = Field(
        default="/Expenses/update-expense", alias="API_UPDATE_EXPENSE_PATH"
    )
    delete_expense_path: str = Field(
        default="/Expenses/delete-expense", alias="API_DELETE_EXPENSE_PATH"
    )
    settlement_preview_path: str = Field(
        default="/Expenses/get-settlement-details", alias="API_SETTLEMENT_PREVIEW_PATH"
    )
    settle_path: str = Field(default="/Expenses/expenses-settle", alias="API_SETTLE_PATH")
    room_trend_path: str = Field(
        default="/Expenses/trend-home-expenses", alias="API_ROOM_TREND_PATH"
    )
    expense_months_path: str = Field(
        default="/Expenses/get-userexpesne-months", alias="API_EXPENSE_MONTHS_PATH"
    )
    user_expenses_path: str = Field(
        default="/Expenses/get-user-expenses", alias="API_USER_EXPENSES_PATH"
    )
    notifications_path: str = Field(default="/notifications", alias="API_NOTIFICATIONS_PATH")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.rstrip("/")

    model_config = SUB_CONFIG


class LedgerConfig(BaseSettings):
    """Settlement, validation and trend configuration."""

    split_policy: SplitPolicy = Field(default=SplitPolicy.ALL_MEMBERS, alias="LEDGER_SPLIT_POLICY")

    # Expense form validation
    min_item_length: int = Field(default=3, ge=1, alias="LEDGER_MIN_ITEM_LENGTH")
    max_item_length: int = Field(default=30, ge=1, alias="LEDGER_MAX_ITEM_LENGTH")
    min_amount: Decimal = Field(default=Decimal("0"), ge=0, alias="LEDGER_MIN_AMOUNT")
    default_room_name: str = Field(default="General", alias="LEDGER_DEFAULT_ROOM_NAME")

    # Charts
    top_spends: Optional[int] = Field(default=None, alias="LEDGER_TOP_SPENDS")
    trend_months: int = Field(default=6, ge=1, alias="LEDGER_TREND_MONTHS")

    @field_validator("split_policy", mode="before")
    @classmethod
    def parse_split_policy(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace("-", "_")
        return v

    @field_validator("top_spends", mode="before")
    @classmethod
    def parse_top_spends(cls, v):
        if isinstance(v, str) and v.strip() in ("", "0", "none"):
            return None
        return v

    model_config = SUB_CONFIG


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: str = Field(default="production", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # Component configurations
    api: ApiConfig = Field(default_factory=ApiConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)

    @field_validator("debug", mode="before")
    @classmethod
    def parse_debug(cls, v):
        if isinstance(v, str):
            return v.lower() in ("1", "true", "yes")
        return bool(v)

    def model_post_init(self, __context) -> None:
        # Initialize sub-configurations
        self.api = ApiConfig()
        self.ledger = LedgerConfig()

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    global settings
    settings = None


def validate_required_settings(for_workflow: str = "api") -> List[str]:
    """
    Validate that required settings are present for specific workflows.

    Args:
        for_workflow: Workflow name ("api" for live backend access, or "offline")

    Returns:
        List of missing required settings
    """
    missing = []
    try:
        config = get_settings()

        if for_workflow == "api":
            if not config.api.token:
                missing.append("API_TOKEN")
            if not config.api.base_url:
                missing.append("API_BASE_URL")

        if config.ledger.min_item_length > config.ledger.max_item_length:
            missing.append("LEDGER_MIN_ITEM_LENGTH <= LEDGER_MAX_ITEM_LENGTH")

    except Exception as e:
        missing.append(f"Configuration error: {e}")

    return missing


def print_configuration_summary():
    """Print a summary of the current configuration for debugging."""
    try:
        config = get_settings()
        print("=== RoomLedger Configuration Summary ===")
        print(f"Environment: {config.environment}")
        print(f"Debug Mode: {config.debug}")
        print()
        print(f"API Base URL: {config.api.base_url}")
        print(f"API Token: {'✓' if config.api.token else '✗'}")
        print(f"Timeout: {config.api.timeout_seconds}s")
        print(f"Read Retry Attempts: {config.api.read_retry_attempts}")
        print()
        print("Ledger:")
        print(f"  Split Policy: {config.ledger.split_policy.value}")
        print(
            f"  Item Length: {config.ledger.min_item_length}-{config.ledger.max_item_length} chars"
        )
        print(f"  Minimum Amount: {config.ledger.min_amount}")
        print(f"  Default Room: {config.ledger.default_room_name}")
        print(f"  Trend Months: {config.ledger.trend_months}")
        print("=" * 40)
    except Exception as e:
        print(f"Error loading configuration: {e}")
