from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

import requests

from solana_memecoin_bot.config.settings import AppConfig, MonitoringConfig
from solana_memecoin_bot.monitoring import bootstrap_observability
from solana_memecoin_bot.monitoring.alerts import AlertManager, AlertSeverity
from solana_memecoin_bot.monitoring.event_bus import (
    BroadcastKind,
    EventBus,
    EventSeverity,
)
from solana_memecoin_bot.monitoring.logger import (
    StructuredFormatter,
    correlation_scope,
    current_correlation_id,
)
from solana_memecoin_bot.monitoring.metrics import METRICS, MetricsRegistry


class _Response:
    def raise_for_status(self) -> None:
        return None


class _Session:
    def __init__(self, fail: bool = False) -> None:
        self.posts: List[Dict[str, Any]] = []
        self._fail = fail

    def post(self, url: str, json: Dict[str, Any], timeout: float) -> _Response:
        if self._fail:
            raise requests.ConnectionError("unreachable")
        self.posts.append({"url": url, "json": json})
        return _Response()


class _RecordingAlerts:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    def send(self, message: str, **kwargs: Any) -> bool:
        self.sent.append({"message": message, **kwargs})
        return True


def test_bus_updates_metrics_for_confirmed_orders() -> None:
    METRICS.reset()
    bus = EventBus()
    bootstrap_observability(config=AppConfig(), bus=bus)

    bus.publish(
        BroadcastKind.ORDER_UPDATE,
        {"status": "confirmed", "slippage_bps": 42.0, "latency_ms": 300.0},
    )
    bus.publish(BroadcastKind.RISK_UPDATE, {"equity_sol": 9.5, "today_drawdown_pct": -1.0})
    assert bus.flush()

    assert METRICS.get("broadcasts.order_update") == 1
    assert METRICS.get_gauge("risk_equity_sol") == 9.5
    histograms = METRICS.snapshot()["histograms"]
    assert histograms["order_slippage_bps"]["avg"] == 42.0
    bus.reset()
    METRICS.reset()


def test_bus_fans_out_and_survives_failing_handlers() -> None:
    bus = EventBus()
    received: List[str] = []

    def broken(_item) -> None:
        raise RuntimeError("handler bug")

    bus.subscribe(BroadcastKind.INCIDENT, broken)
    bus.subscribe(BroadcastKind.INCIDENT, lambda item: received.append(item.payload["message"]))
    bus.subscribe(None, lambda item: received.append(item.kind.value))
    listener = bus.create_listener()

    bus.publish("incident", {"message": "halted"}, correlation_id="abc")
    assert bus.flush()

    assert received == ["halted", "incident"]
    delivered = listener.get_nowait()
    assert delivered.to_dict()["type"] == "incident"
    assert delivered.correlation_id == "abc"
    bus.remove_listener(listener)


def test_warning_broadcasts_raise_alerts() -> None:
    bus = EventBus()
    alerts = _RecordingAlerts()
    bus.attach_alert_manager(alerts)

    bus.publish(BroadcastKind.INCIDENT, {"message": "kill switch", "category": "kill_switch"}, severity=EventSeverity.CRITICAL)
    bus.publish(BroadcastKind.TOKEN_EVENT, {"mint": "abc"})
    assert bus.flush()

    assert len(alerts.sent) == 1
    assert alerts.sent[0]["message"] == "INCIDENT: kill switch"
    assert alerts.sent[0]["severity"] == AlertSeverity.CRITICAL
    assert alerts.sent[0]["key"] == "incident:kill_switch"
    bus.reset()


def test_alert_manager_posts_and_throttles() -> None:
    config = MonitoringConfig(
        webhook_urls=["https://hooks.example.com/alerts"],
        slack_webhook_url="https://hooks.slack.com/services/T000",
        alert_throttle_seconds=60,
    )
    session = _Session()
    ticks = iter([0.0, 10.0, 100.0])
    manager = AlertManager(config, session=session, clock=lambda: next(ticks))

    assert manager.send("drawdown", severity=AlertSeverity.CRITICAL, key="dd")
    assert not manager.send("drawdown", key="dd")
    assert manager.send("drawdown", key="dd")

    assert len(session.posts) == 4
    assert session.posts[0]["json"] == {"text": "[CRITICAL] drawdown"}
    assert session.posts[1]["json"]["severity"] == "critical"


def test_alert_delivery_failure_is_reported() -> None:
    config = MonitoringConfig(webhook_urls=["https://hooks.example.com/alerts"])
    manager = AlertManager(config, session=_Session(fail=True))

    assert manager.send("halted") is False


def test_structured_formatter_emits_json_with_correlation() -> None:
    record = logging.LogRecord("bot", logging.INFO, __file__, 10, "hello %s", ("world",), None)
    record.correlation_id = "card-1"
    record.mint = "abc"

    payload = json.loads(StructuredFormatter().format(record))

    assert payload["message"] == "hello world"
    assert payload["correlation_id"] == "card-1"
    assert payload["extra"] == {"mint": "abc"}


def test_correlation_scope_is_restored() -> None:
    assert current_correlation_id() == "-"
    with correlation_scope("card-9") as value:
        assert value == "card-9"
        assert current_correlation_id() == "card-9"
    assert current_correlation_id() == "-"


def test_prometheus_export_prefixes_and_sanitizes() -> None:
    registry = MetricsRegistry()
    registry.increment("decisions.trade")
    registry.gauge("equity_sol", 10.0)
    registry.observe("paper_slippage_bps", 15.0)

    output = registry.export_prometheus()

    assert "# TYPE memebot_decisions_trade counter" in output
    assert "memebot_equity_sol 10.0" in output
    assert 'memebot_paper_slippage_bps{quantile="0.5"} 15.0' in output
    assert "decisions.trade" not in output
