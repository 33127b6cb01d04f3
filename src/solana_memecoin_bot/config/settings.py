"""Configuration management for the memecoin trading agent."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, cast

from pydantic import AnyHttpUrl, BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CONFIG_FILE = Path("config/app.toml")
CONFIG_FILE_ENV_VAR = "APP_CONFIG_FILE"
MODE_ENV_VAR = "BOT_MODE"


class TradingMode(str, Enum):
    """Supported runtime modes."""

    PAPER = "paper"
    LIVE = "live"


def _resolve_config_path() -> Path:
    env_value = os.getenv(CONFIG_FILE_ENV_VAR)
    if env_value:
        candidate = Path(env_value)
        if not candidate.is_absolute():
            candidate = Path.cwd() / candidate
        return candidate
    return Path.cwd() / DEFAULT_CONFIG_FILE


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {**base}
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(cast(Dict[str, Any], result[key]), value)
        else:
            result[key] = value
    return result


def _select_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    if not data:
        return {}
    base_section = cast(Dict[str, Any], data.get("default", {}))
    requested_mode = os.getenv(MODE_ENV_VAR)
    if not requested_mode:
        mode_section = base_section.get("mode")
        if isinstance(mode_section, dict):
            requested_mode = cast(str, mode_section.get("active", TradingMode.PAPER.value))
        elif isinstance(mode_section, str):
            requested_mode = mode_section
    requested_mode = (requested_mode or TradingMode.PAPER.value).lower()

    if requested_mode in data and requested_mode != "default":
        profile = _deep_merge(base_section, cast(Dict[str, Any], data[requested_mode]))
        mode_section = profile.get("mode")
        if not isinstance(mode_section, dict):
            mode_section = {}
        profile["mode"] = {**mode_section, "active": requested_mode}
        return profile
    if base_section:
        return base_section
    return data


def _load_toml_config() -> Tuple[Dict[str, Any], Optional[Path]]:
    path = _resolve_config_path()
    if not path.exists():
        return {}, None
    with path.open("rb") as handle:
        payload = tomllib.load(handle)
    merged = _select_profile(payload)
    if not isinstance(merged, dict):
        return {}, path
    merged = dict(merged)
    mode_section = merged.get("mode")
    if isinstance(mode_section, dict):
        mode_section = dict(mode_section)
        mode_section.setdefault("config_file", str(path))
        merged["mode"] = mode_section
    else:
        merged["mode"] = {"config_file": str(path)}
    return merged, path


class ModeConfig(BaseModel):
    """Runtime mode and reproducibility settings."""

    active: TradingMode = Field(default=TradingMode.PAPER)
    seed: Optional[int] = Field(default=None, ge=0)
    wallet_path: Optional[Path] = None
    config_file: Optional[Path] = None


class FilterConfig(BaseModel):
    """Thresholds consumed by the entry filter pipeline."""

    regime_score_threshold: int = Field(default=40, ge=0, le=100)
    min_liquidity_depth_sol: float = Field(default=5.0, ge=0.0)
    max_top10_holder_pct: float = Field(default=70.0, ge=0.0, le=100.0)
    min_unique_buyers_per_min: float = Field(default=3.0, ge=0.0)
    min_breadth_score: float = Field(default=0.3, ge=0.0, le=1.0)
    max_spread_bps: int = Field(default=500, ge=0)
    max_estimated_slippage_bps: int = Field(default=300, ge=0)
    min_seconds_after_graduation: int = Field(default=30, ge=0)
    max_seconds_after_graduation: int = Field(default=600, ge=0)
    min_net_buy_pressure: float = Field(default=0.0, ge=-1.0, le=1.0)
    max_rpc_latency_ms: float = Field(default=2000.0, ge=0.0)
    max_rpc_failure_rate: float = Field(default=0.2, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _check_graduation_window(self) -> "FilterConfig":
        if self.min_seconds_after_graduation > self.max_seconds_after_graduation:
            raise ValueError("min_seconds_after_graduation exceeds max_seconds_after_graduation")
        return self


class ScopeConfig(BaseModel):
    """Which token lifecycle phases are eligible for entries."""

    trade_pre_graduation: bool = False
    trade_post_graduation: bool = True


class RiskLimitsConfig(BaseModel):
    """Portfolio-level hard limits enforced by the risk governor."""

    risk_per_trade_pct: float = Field(default=0.2, gt=0.0, le=100.0)
    max_exposure_pct: float = Field(default=1.0, gt=0.0, le=100.0)
    daily_max_drawdown_pct: float = Field(default=2.0, gt=0.0, le=100.0)
    max_trades_per_hour: int = Field(default=3, ge=0)
    max_trades_per_day: int = Field(default=10, ge=0)
    max_consecutive_losses: int = Field(default=3, ge=1)


class TakeProfitLevelConfig(BaseModel):
    """One rung of the take-profit ladder."""

    gain_pct: float = Field(gt=0.0)
    sell_pct: float = Field(gt=0.0, le=100.0)


def _default_take_profit_levels() -> List[TakeProfitLevelConfig]:
    return [
        TakeProfitLevelConfig(gain_pct=50.0, sell_pct=30.0),
        TakeProfitLevelConfig(gain_pct=100.0, sell_pct=30.0),
    ]


class ExitConfig(BaseModel):
    """Position exit parameters."""

    stop_loss_pct: float = Field(default=25.0, gt=0.0, le=100.0)
    # Rungs are evaluated in the order given.
    take_profit_levels: List[TakeProfitLevelConfig] = Field(
        default_factory=_default_take_profit_levels
    )
    trailing_stop_pct: float = Field(default=15.0, gt=0.0, le=100.0)
    time_stop_minutes: float = Field(default=60.0, gt=0.0)


class ExecutionConfig(BaseModel):
    """Order construction parameters shared by paper and live routing."""

    max_slippage_bps: int = Field(default=300, ge=1)
    priority_fee_lamports: int = Field(default=10_000, ge=0)
    max_retries: int = Field(default=2, ge=0)
    compute_budget: int = Field(default=200_000, ge=0)


class PaperConfig(BaseModel):
    """Execution simulator settings."""

    starting_equity_sol: float = Field(default=10.0, gt=0.0)
    slippage_multiplier: float = Field(default=1.5, ge=0.0)
    failure_rate: float = Field(default=0.05, ge=0.0, le=1.0)
    latency_ms: float = Field(default=500.0, ge=0.0)


class SchedulerConfig(BaseModel):
    """Fixed periods (seconds) for the recurring tasks."""

    position_monitor_seconds: float = Field(default=5.0, gt=0.0)
    auto_halt_seconds: float = Field(default=10.0, gt=0.0)
    regime_broadcast_seconds: float = Field(default=15.0, gt=0.0)
    equity_snapshot_seconds: float = Field(default=30.0, gt=0.0)
    daily_reset_check_seconds: float = Field(default=60.0, gt=0.0)
    risk_refresh_seconds: float = Field(default=5.0, gt=0.0)
    synthetic_tick_seconds: float = Field(default=2.0, gt=0.0)
    candidate_sweep_seconds: float = Field(default=5.0, gt=0.0)


class StorageConfig(BaseModel):
    """State persistence configuration."""

    database_path: Path = Field(default=Path("./memecoin_bot.sqlite3"))


class MonitoringConfig(BaseModel):
    """Logging and alerting configuration."""

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", pattern="^(json|text)$")
    slack_webhook_url: Optional[AnyHttpUrl] = None
    webhook_urls: List[AnyHttpUrl] = Field(default_factory=list)
    alert_throttle_seconds: int = Field(default=60, ge=0)


class AppConfig(BaseSettings):
    """Aggregated application configuration."""

    mode: ModeConfig = Field(default_factory=ModeConfig)
    filters: FilterConfig = Field(default_factory=FilterConfig)
    scope: ScopeConfig = Field(default_factory=ScopeConfig)
    risk: RiskLimitsConfig = Field(default_factory=RiskLimitsConfig)
    exits: ExitConfig = Field(default_factory=ExitConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def file_settings(_: Optional[BaseSettings] = None) -> Dict[str, Any]:
            payload, _ = _load_toml_config()
            return payload

        # Runtime environment variables win over the static profile file.
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            file_settings,
            file_secret_settings,
        )


def validate_config(config: AppConfig) -> List[str]:
    """Return human-readable policy issues for an otherwise well-formed config."""

    issues: List[str] = []
    if config.risk.risk_per_trade_pct > 1.0:
        issues.append(
            f"risk_per_trade_pct={config.risk.risk_per_trade_pct} exceeds 1% of equity per trade"
        )
    if config.risk.max_exposure_pct > 5.0:
        issues.append(f"max_exposure_pct={config.risk.max_exposure_pct} exceeds 5% of equity")
    if config.risk.daily_max_drawdown_pct > 5.0:
        issues.append(
            f"daily_max_drawdown_pct={config.risk.daily_max_drawdown_pct} exceeds 5%"
        )
    if config.exits.stop_loss_pct > 50.0:
        issues.append(f"stop_loss_pct={config.exits.stop_loss_pct} exceeds 50%")
    if config.risk.max_trades_per_day > 50:
        issues.append(f"max_trades_per_day={config.risk.max_trades_per_day} exceeds 50")
    if config.paper.failure_rate > 0.5:
        issues.append(f"paper failure_rate={config.paper.failure_rate} exceeds 0.5")
    if config.execution.max_slippage_bps > 1000:
        issues.append(f"max_slippage_bps={config.execution.max_slippage_bps} exceeds 1000")
    if config.mode.active == TradingMode.LIVE and config.mode.wallet_path is None:
        issues.append("live mode requires mode.wallet_path")
    return issues


def env_path() -> Path:
    """Return the default path for the `.env` file."""

    return Path.cwd() / ".env"


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """Create a cached application configuration object."""

    return AppConfig()


__all__ = [
    "AppConfig",
    "ExecutionConfig",
    "ExitConfig",
    "FilterConfig",
    "ModeConfig",
    "MonitoringConfig",
    "PaperConfig",
    "RiskLimitsConfig",
    "SchedulerConfig",
    "ScopeConfig",
    "StorageConfig",
    "TakeProfitLevelConfig",
    "TradingMode",
    "env_path",
    "get_app_config",
    "validate_config",
]
