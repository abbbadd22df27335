"""Configuration system using pydantic-settings with environment variable loading.

Settings are loaded once at startup and injected into each component; nothing
in the core reads environment variables or config files directly.
"""

from decimal import Decimal
from typing import Any, Literal

from pydantic import SecretStr, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hedger.exceptions import ConfigurationError


class ExchangeSettings(BaseSettings):
    """Bybit exchange connection settings."""

    model_config = SettingsConfigDict(env_prefix="BYBIT_")

    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    testnet: bool = False
    demo_trading: bool = False
    request_timeout_ms: int = 10000  # bound on every exchange call
    exchange_id: str = "BYBIT"  # recorded on trade groups
    quote_currency: str = "USDT"


class TradingSettings(BaseSettings):
    """Reconciliation loop and account policy."""

    model_config = SettingsConfigDict(env_prefix="TRADING_")

    mode: Literal["paper", "live"] = "paper"
    default_leverage: int = 1
    check_interval_minutes: int = 60
    top_pairs_count: int = 5
    reverse_funding_rate: bool = False  # allow symbols whose latest rate is negative
    spot_margin_netting: bool = False  # unified account nets spot against contract margin
    trade_only_near_settlement: bool = False
    paper_virtual_equity: Decimal = Decimal("10000")


class UniverseSettings(BaseSettings):
    """Candidate symbol universe."""

    model_config = SettingsConfigDict(env_prefix="UNIVERSE_")

    source: Literal["static", "market_cap"] = "static"
    pairs: list[str] = [
        "BTCUSDT",
        "ETHUSDT",
        "SOLUSDT",
        "XRPUSDT",
        "DOGEUSDT",
        "ADAUSDT",
        "AVAXUSDT",
        "LINKUSDT",
        "DOTUSDT",
        "LTCUSDT",
    ]
    market_cap_count: int = 20
    coingecko_api_key: str | None = None
    unsupported_symbols: list[str] = []  # seeded into the store at startup
    unsupported_error_patterns: list[str] = [
        "not supported",
        "symbol invalid",
        "invalid symbol",
        "symbol is invalid",
        "does not have market symbol",
        "not available for trading",
    ]


class ScoringSettings(BaseSettings):
    """Weighted funding-rate scoring and settlement awareness."""

    model_config = SettingsConfigDict(env_prefix="SCORING_")

    periods: list[int] = [8, 24, 72]  # samples per lookback period
    weights: list[Decimal] = [Decimal("0.5"), Decimal("0.3"), Decimal("0.2")]
    settlement_times_utc: list[str] = ["00:00", "08:00", "16:00"]
    pre_settlement_minutes: int = 30
    max_concurrent_requests: int = 5

    @model_validator(mode="after")
    def _check_periods_match_weights(self) -> "ScoringSettings":
        if not self.periods:
            raise ValueError("at least one scoring period is required")
        if len(self.periods) != len(self.weights):
            raise ValueError(
                f"periods ({len(self.periods)}) and weights ({len(self.weights)}) "
                "must have equal length"
            )
        if any(p <= 0 for p in self.periods):
            raise ValueError("scoring periods must be positive")
        return self


class PositionSettings(BaseSettings):
    """Per-pair position sizing limits."""

    model_config = SettingsConfigDict(env_prefix="POSITION_")

    min_position_value: Decimal = Decimal("50")  # USD
    max_position_value: Decimal = Decimal("500")  # USD
    position_scaling: bool = True
    scaling_factor: Decimal = Decimal("2")
    min_scaling_rate: Decimal = Decimal("0.0001")
    max_scaling_rate: Decimal = Decimal("0.01")
    min_order_notional: Decimal = Decimal("5")  # quote units


class BalanceSettings(BaseSettings):
    """Gates deciding whether a pair is worth rebalancing."""

    model_config = SettingsConfigDict(env_prefix="BALANCE_")

    size_threshold_ratio: Decimal = Decimal("0.003")  # 0.3% quantity drift
    max_price_diff: Decimal = Decimal("0.001")  # 0.1% spot/contract divergence
    max_depth_impact: Decimal = Decimal("0.0005")  # 0.05%
    min_profit_ratio: Decimal = Decimal("1.5")
    funding_holding_days: Decimal = Decimal("7")
    slippage: Decimal = Decimal("0.0005")  # fixed assumption per leg notional
    settlements_per_day: int = 3


class FeeSettings(BaseSettings):
    """Fallback taker fees (Bybit Non-VIP) used when fee lookups fail."""

    model_config = SettingsConfigDict(env_prefix="FEES_")

    spot_taker: Decimal = Decimal("0.001")  # 0.1%
    perp_taker: Decimal = Decimal("0.00055")  # 0.055%


class StorageSettings(BaseSettings):
    """SQLite storage for trade groups and unsupported symbols."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/hedger.db"


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"  # LOG_FORMAT
    exchange: ExchangeSettings = ExchangeSettings()
    trading: TradingSettings = TradingSettings()
    universe: UniverseSettings = UniverseSettings()
    scoring: ScoringSettings = ScoringSettings()
    position: PositionSettings = PositionSettings()
    balance: BalanceSettings = BalanceSettings()
    fees: FeeSettings = FeeSettings()
    storage: StorageSettings = StorageSettings()


def load_settings(**overrides: Any) -> AppSettings:
    """Build AppSettings from the environment and ``overrides``.

    Raises:
        ConfigurationError: If any setting fails validation (e.g. scoring
            periods and weights of different lengths).
    """
    try:
        return AppSettings(**overrides)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid settings: {exc}") from exc
