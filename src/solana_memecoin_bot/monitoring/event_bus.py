"""Best-effort broadcast bus for state transitions observed by external listeners."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Union

from ..utils.serialization import to_serializable
from .alerts import AlertManager, AlertSeverity
from .metrics import MetricsRegistry


class BroadcastKind(str, Enum):
    """Message tags understood by transport collaborators."""

    SYSTEM_STATUS = "system_status"
    REGIME_UPDATE = "regime_update"
    TOKEN_EVENT = "token_event"
    DECISION_CARD = "decision_card"
    ORDER_UPDATE = "order_update"
    POSITION_UPDATE = "position_update"
    RISK_UPDATE = "risk_update"
    INCIDENT = "incident"
    EQUITY_TICK = "equity_tick"


class EventSeverity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(slots=True)
class Broadcast:
    """One outbound message: a kind tag, an entity payload, and a timestamp."""

    kind: BroadcastKind
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    severity: EventSeverity = EventSeverity.INFO
    correlation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "data": self.payload,
            "timestamp": self.timestamp.isoformat(),
            "severity": self.severity.value,
            "correlation_id": self.correlation_id,
        }


Subscriber = Callable[[Broadcast], None]


class EventBus:
    """Threaded fan-out of broadcasts to subscribers and listener queues."""

    def __init__(self, history_size: int = 500) -> None:
        self._queue: "queue.Queue[Broadcast]" = queue.Queue()
        self._subscribers: Dict[Optional[BroadcastKind], List[Subscriber]] = defaultdict(list)
        self._listeners: List["queue.SimpleQueue[Broadcast]"] = []
        self._history: Deque[Broadcast] = deque(maxlen=history_size)
        self._lock = threading.RLock()
        self._logger = logging.getLogger(__name__)
        self._metrics: Optional[MetricsRegistry] = None
        self._alerts: Optional[AlertManager] = None
        self._worker = threading.Thread(target=self._run, name="event-bus", daemon=True)
        self._worker.start()

    def attach_metrics(self, registry: Optional[MetricsRegistry]) -> None:
        self._metrics = registry

    def attach_alert_manager(self, manager: Optional[AlertManager]) -> None:
        self._alerts = manager

    def subscribe(self, kind: Optional[BroadcastKind], handler: Subscriber) -> None:
        """Register a handler for one kind, or for every kind when ``kind`` is ``None``."""

        with self._lock:
            self._subscribers[kind].append(handler)

    def create_listener(self) -> "queue.SimpleQueue[Broadcast]":
        listener: "queue.SimpleQueue[Broadcast]" = queue.SimpleQueue()
        with self._lock:
            self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: "queue.SimpleQueue[Broadcast]") -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(
        self,
        kind: Union[BroadcastKind, str],
        payload: Any = None,
        *,
        severity: EventSeverity = EventSeverity.INFO,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Queue a broadcast. The payload is serialised immediately so later mutation is not observed."""

        if isinstance(kind, str) and not isinstance(kind, BroadcastKind):
            kind = BroadcastKind(kind)
        data = to_serializable(payload) if payload is not None else {}
        if not isinstance(data, dict):
            data = {"value": data}
        self._queue.put(
            Broadcast(kind=kind, payload=data, severity=severity, correlation_id=correlation_id)
        )

    def history(self, limit: int = 100, kind: Optional[BroadcastKind] = None) -> List[Broadcast]:
        with self._lock:
            items = [item for item in self._history if kind is None or item.kind == kind]
        return items[-limit:]

    def flush(self, timeout: float = 1.0) -> bool:
        """Best-effort wait for the queue to drain."""

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self._queue.unfinished_tasks == 0:
                return True
            time.sleep(0.01)
        return self._queue.unfinished_tasks == 0

    def reset(self) -> None:
        """Clear subscribers, listeners, and history."""

        with self._lock:
            self._subscribers.clear()
            self._listeners.clear()
            self._history.clear()
        self._metrics = None
        self._alerts = None

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                self._dispatch(item)
            except Exception:  # pragma: no cover - dispatch must never kill the worker
                self._logger.exception("Failed to dispatch broadcast %s", item.kind.value)
            finally:
                self._queue.task_done()

    def _dispatch(self, item: Broadcast) -> None:
        with self._lock:
            self._history.append(item)
            handlers = list(self._subscribers.get(item.kind, [])) + list(
                self._subscribers.get(None, [])
            )
            listeners = list(self._listeners)
        self._update_metrics(item)
        self._trigger_alerts(item)
        for handler in handlers:
            try:
                handler(item)
            except Exception:
                self._logger.exception(
                    "Broadcast handler %s failed for %s",
                    getattr(handler, "__name__", handler),
                    item.kind.value,
                )
        for listener in listeners:
            listener.put_nowait(item)

    def _update_metrics(self, item: Broadcast) -> None:
        if not self._metrics:
            return
        self._metrics.increment(f"broadcasts.{item.kind.value}")
        payload = item.payload
        if item.kind == BroadcastKind.ORDER_UPDATE and payload.get("status") == "confirmed":
            self._metrics.observe("order_slippage_bps", float(payload.get("slippage_bps") or 0.0))
            self._metrics.observe("order_latency_ms", float(payload.get("latency_ms") or 0.0))
        elif item.kind == BroadcastKind.RISK_UPDATE:
            for key in ("equity_sol", "today_drawdown_pct", "current_exposure_pct"):
                value = payload.get(key)
                if isinstance(value, (int, float)):
                    self._metrics.gauge(f"risk_{key}", float(value))

    def _trigger_alerts(self, item: Broadcast) -> None:
        if not self._alerts:
            return
        if item.severity not in {EventSeverity.WARNING, EventSeverity.CRITICAL}:
            return
        summary = item.payload.get("message") or item.payload
        key = f"{item.kind.value}:{item.payload.get('category', '')}"
        self._alerts.send(
            f"{item.kind.value.upper()}: {summary}",
            severity=AlertSeverity(item.severity.value),
            key=key,
            extra=item.payload,
        )


EVENT_BUS = EventBus()


__all__ = [
    "EVENT_BUS",
    "Broadcast",
    "BroadcastKind",
    "EventBus",
    "EventSeverity",
]
