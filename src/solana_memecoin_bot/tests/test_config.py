from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from solana_memecoin_bot.config import settings


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    for name in ("APP_CONFIG_FILE", "BOT_MODE", "RISK__MAX_TRADES_PER_DAY", "PAPER__FAILURE_RATE"):
        monkeypatch.delenv(name, raising=False)
    settings.get_app_config.cache_clear()
    yield
    settings.get_app_config.cache_clear()


def test_defaults_are_conservative() -> None:
    cfg = settings.AppConfig()

    assert cfg.mode.active == settings.TradingMode.PAPER
    assert cfg.risk.risk_per_trade_pct == 0.2
    assert cfg.risk.max_exposure_pct == 1.0
    assert cfg.filters.min_seconds_after_graduation == 30
    assert [level.gain_pct for level in cfg.exits.take_profit_levels] == [50.0, 100.0]
    assert cfg.mode.config_file is None
    assert settings.validate_config(cfg) == []


def test_profiles_and_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "app.toml"
    config_path.write_text(
        """
[default.risk]
max_trades_per_day = 8
max_trades_per_hour = 2

[default.paper]
starting_equity_sol = 25.0

[paper.risk]
max_trades_per_day = 20
"""
    )
    monkeypatch.setenv("APP_CONFIG_FILE", str(config_path))
    monkeypatch.setenv("BOT_MODE", "paper")
    monkeypatch.setenv("PAPER__FAILURE_RATE", "0.1")

    cfg = settings.get_app_config()

    assert cfg.risk.max_trades_per_day == 20
    assert cfg.risk.max_trades_per_hour == 2
    assert cfg.paper.starting_equity_sol == 25.0
    assert cfg.paper.failure_rate == 0.1
    assert cfg.mode.config_file == config_path
    assert settings.get_app_config() is cfg


def test_default_profile_only(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path = tmp_path / "app.toml"
    config_path.write_text(
        """
[default.exits]
stop_loss_pct = 20.0
take_profit_levels = [{gain_pct = 200.0, sell_pct = 50.0}, {gain_pct = 40.0, sell_pct = 25.0}]
"""
    )
    monkeypatch.setenv("APP_CONFIG_FILE", str(config_path))

    cfg = settings.get_app_config()

    assert cfg.exits.stop_loss_pct == 20.0
    assert [level.gain_pct for level in cfg.exits.take_profit_levels] == [200.0, 40.0]


def test_invalid_values_are_rejected() -> None:
    with pytest.raises(ValidationError):
        settings.FilterConfig(min_seconds_after_graduation=700, max_seconds_after_graduation=600)
    with pytest.raises(ValidationError):
        settings.PaperConfig(failure_rate=1.5)
    with pytest.raises(ValidationError):
        settings.MonitoringConfig(log_format="xml")


def test_validate_config_reports_policy_issues() -> None:
    cfg = settings.AppConfig(
        risk={"risk_per_trade_pct": 2.0, "max_exposure_pct": 10.0},
        paper={"failure_rate": 0.8},
        mode={"active": "live"},
    )

    issues = settings.validate_config(cfg)

    assert any("risk_per_trade_pct" in issue for issue in issues)
    assert any("max_exposure_pct" in issue for issue in issues)
    assert any("failure_rate" in issue for issue in issues)
    assert "live mode requires mode.wallet_path" in issues
