"""Tests for pydantic-settings configuration."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from hedger.config import AppSettings, ScoringSettings, TradingSettings, load_settings
from hedger.exceptions import ConfigurationError


def test_defaults() -> None:
    settings = AppSettings()

    assert settings.trading.mode == "paper"
    assert settings.trading.default_leverage == 1
    assert settings.scoring.periods == [8, 24, 72]
    assert settings.scoring.settlement_times_utc == ["00:00", "08:00", "16:00"]
    assert settings.position.min_position_value == Decimal("50")
    assert settings.balance.min_profit_ratio == Decimal("1.5")
    assert settings.exchange.api_key.get_secret_value() == ""


def test_secrets_are_masked(mock_settings: AppSettings) -> None:
    assert "test-api-key" not in repr(mock_settings.exchange)
    assert mock_settings.exchange.api_key.get_secret_value() == "test-api-key"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TRADING_TOP_PAIRS_COUNT", "3")
    monkeypatch.setenv("TRADING_REVERSE_FUNDING_RATE", "true")

    settings = TradingSettings()

    assert settings.top_pairs_count == 3
    assert settings.reverse_funding_rate is True


def test_scoring_periods_and_weights_must_match() -> None:
    with pytest.raises(ValidationError, match="equal length"):
        ScoringSettings(periods=[8, 24], weights=[Decimal("1")])


def test_scoring_requires_positive_periods() -> None:
    with pytest.raises(ValidationError):
        ScoringSettings(periods=[0], weights=[Decimal("1")])


def test_trading_mode_is_restricted() -> None:
    with pytest.raises(ValidationError):
        TradingSettings(mode="backtest")  # type: ignore[arg-type]


def test_load_settings_reports_mismatched_scoring_as_configuration_error() -> None:
    with pytest.raises(ConfigurationError, match="equal length"):
        load_settings(scoring={"periods": [8, 24], "weights": ["1"]})


def test_load_settings_reports_env_errors_as_configuration_error(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("SCORING__PERIODS", "[0, 24, 72]")
    with pytest.raises(ConfigurationError, match="must be positive"):
        load_settings()


def test_load_settings_applies_overrides() -> None:
    settings = load_settings(log_format="json")
    assert settings.log_format == "json"
    assert settings.scoring.periods == [8, 24, 72]
