"""Validate environment-driven configuration."""

from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from roomledger.core.config import (
    ApiConfig,
    LedgerConfig,
    Settings,
    get_settings,
    reset_settings,
    validate_required_settings,
)
from roomledger.core.models import SplitPolicy

ENV_KEYS = [
    "API_BASE_URL",
    "API_TOKEN",
    "API_READ_RETRY_ATTEMPTS",
    "LEDGER_SPLIT_POLICY",
    "LEDGER_MIN_ITEM_LENGTH",
    "LEDGER_MAX_ITEM_LENGTH",
    "LEDGER_MIN_AMOUNT",
    "LEDGER_TOP_SPENDS",
    "DEBUG",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestLedgerConfig:
    def test_defaults(self, clean_env):
        config = LedgerConfig()

        assert config.split_policy == SplitPolicy.ALL_MEMBERS
        assert config.min_item_length == 3
        assert config.max_item_length == 30
        assert config.min_amount == Decimal("0")
        assert config.top_spends is None

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("LEDGER_SPLIT_POLICY", "Participants")
        clean_env.setenv("LEDGER_MIN_AMOUNT", "0.50")
        clean_env.setenv("LEDGER_TOP_SPENDS", "5")

        config = LedgerConfig()

        assert config.split_policy == SplitPolicy.PARTICIPANTS
        assert config.min_amount == Decimal("0.50")
        assert config.top_spends == 5

    @pytest.mark.parametrize("value", ["all-members", " ALL_MEMBERS ", "all_members"])
    def test_split_policy_spellings(self, value):
        assert LedgerConfig(LEDGER_SPLIT_POLICY=value).split_policy == SplitPolicy.ALL_MEMBERS

    def test_unknown_split_policy_rejected(self):
        with pytest.raises(PydanticValidationError):
            LedgerConfig(LEDGER_SPLIT_POLICY="whoever-paid")

    @pytest.mark.parametrize("value", ["", "0", "none"])
    def test_top_spends_unlimited(self, value):
        assert LedgerConfig(LEDGER_TOP_SPENDS=value).top_spends is None


class TestApiConfig:
    def test_base_url_trailing_slash_stripped(self):
        assert ApiConfig(API_BASE_URL="https://ledger.test/api//").base_url == (
            "https://ledger.test/api"
        )

    def test_retry_attempts_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            ApiConfig(API_READ_RETRY_ATTEMPTS=0)


class TestSettings:
    def test_cached_until_reset(self, clean_env):
        first = get_settings()
        assert get_settings() is first

        reset_settings()

        assert get_settings() is not first

    def test_debug_parsing(self, clean_env):
        clean_env.setenv("DEBUG", "yes")

        assert get_settings().debug is True

    def test_api_workflow_requires_token(self, clean_env):
        assert validate_required_settings("api") == ["API_TOKEN"]

    def test_offline_workflow_needs_no_token(self, clean_env):
        assert validate_required_settings("offline") == []

    def test_inconsistent_item_lengths_reported(self, clean_env):
        clean_env.setenv("API_TOKEN", "token")
        clean_env.setenv("LEDGER_MIN_ITEM_LENGTH", "40")

        missing = validate_required_settings("api")

        assert missing == ["LEDGER_MIN_ITEM_LENGTH <= LEDGER_MAX_ITEM_LENGTH"]

    def test_sub_configs_read_dotenv_file(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text(
            "API_TOKEN=abc\nLEDGER_SPLIT_POLICY=participants\n", encoding="utf-8"
        )
        clean_env.chdir(tmp_path)

        config = Settings()

        assert config.api.token == "abc"
        assert config.ledger.split_policy == SplitPolicy.PARTICIPANTS
        assert validate_required_settings("api") == []

    def test_environment_wins_over_dotenv_file(self, clean_env, tmp_path):
        (tmp_path / ".env").write_text("API_TOKEN=from-file\n", encoding="utf-8")
        clean_env.chdir(tmp_path)
        clean_env.setenv("API_TOKEN", "from-env")

        assert Settings().api.token == "from-env"
