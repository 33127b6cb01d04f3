"""Persistence layer for decisions, orders, positions, and governor incidents."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol

from ..utils.serialization import to_serializable
from .schemas import (
    DecisionCard,
    DecisionRecord,
    EquitySnapshot,
    Incident,
    IncidentCategory,
    IncidentSeverity,
    Order,
    OrderSide,
    OrderSource,
    OrderStatus,
    Position,
    PositionStatus,
    RegimeFeatures,
    TakeProfitLevel,
    TokenInfo,
    TokenPhase,
    Verdict,
)


class StorageError(RuntimeError):
    """Raised when a persistence operation could not be completed."""


class StorageAdapter(Protocol):
    """Query and write surface the trading core relies on."""

    def record_decision(self, card: DecisionCard) -> None:
        ...

    def insert_order(self, order: Order) -> bool:
        ...

    def update_order(self, order: Order) -> None:
        ...

    def upsert_position(self, position: Position) -> None:
        ...

    def list_open_positions(self) -> List[Position]:
        ...

    def record_incident(self, incident: Incident) -> None:
        ...

    def count_confirmed_buys(self, since: datetime) -> int:
        ...

    def count_consecutive_losses(self, limit: int = 20) -> int:
        ...


CREATE_TOKEN_TABLE = """
CREATE TABLE IF NOT EXISTS tokens (
    mint TEXT PRIMARY KEY,
    symbol TEXT NOT NULL,
    name TEXT NOT NULL,
    creator TEXT,
    phase TEXT NOT NULL,
    bonding_curve_address TEXT,
    pool_address TEXT,
    created_at TEXT NOT NULL,
    graduated_at TEXT,
    mint_authority_revoked INTEGER NOT NULL DEFAULT 1,
    freeze_authority_revoked INTEGER NOT NULL DEFAULT 1,
    price_sol REAL
)
"""

CREATE_DECISION_TABLE = """
CREATE TABLE IF NOT EXISTS decisions (
    id TEXT PRIMARY KEY,
    mint TEXT NOT NULL,
    symbol TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    verdict TEXT NOT NULL,
    summary TEXT NOT NULL,
    payload TEXT NOT NULL
)
"""

CREATE_ORDER_TABLE = """
CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    idempotency_key TEXT NOT NULL UNIQUE,
    mint TEXT NOT NULL,
    side TEXT NOT NULL,
    source TEXT NOT NULL,
    requested_amount_sol REAL NOT NULL,
    executed_amount_sol REAL NOT NULL DEFAULT 0,
    requested_price REAL,
    executed_price REAL,
    token_amount REAL NOT NULL DEFAULT 0,
    slippage_bps REAL NOT NULL DEFAULT 0,
    fee_sol REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL,
    is_paper INTEGER NOT NULL DEFAULT 1,
    decision_id TEXT,
    position_id TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    latency_ms REAL NOT NULL DEFAULT 0,
    error TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

CREATE_POSITION_TABLE = """
CREATE TABLE IF NOT EXISTS positions (
    id TEXT PRIMARY KEY,
    mint TEXT NOT NULL,
    symbol TEXT NOT NULL,
    status TEXT NOT NULL,
    entry_price REAL NOT NULL,
    current_price REAL NOT NULL,
    entry_amount_sol REAL NOT NULL,
    tokens_bought REAL NOT NULL,
    tokens_sold REAL NOT NULL DEFAULT 0,
    realized_pnl_sol REAL NOT NULL DEFAULT 0,
    unrealized_pnl_sol REAL NOT NULL DEFAULT 0,
    stop_loss_price REAL NOT NULL,
    take_profit_levels TEXT NOT NULL,
    trailing_stop_pct REAL NOT NULL,
    trailing_stop_price REAL NOT NULL,
    high_water_mark REAL NOT NULL,
    time_stop_minutes REAL NOT NULL,
    entry_time TEXT NOT NULL,
    last_update TEXT NOT NULL,
    decision_id TEXT,
    exit_reason TEXT,
    is_paper INTEGER NOT NULL DEFAULT 1
)
"""

CREATE_INCIDENT_TABLE = """
CREATE TABLE IF NOT EXISTS incidents (
    id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    severity TEXT NOT NULL,
    category TEXT NOT NULL,
    message TEXT NOT NULL,
    auto_action TEXT,
    resume_at TEXT,
    resolved INTEGER NOT NULL DEFAULT 0
)
"""

CREATE_EQUITY_TABLE = """
CREATE TABLE IF NOT EXISTS equity_history (
    timestamp TEXT NOT NULL,
    equity_sol REAL NOT NULL,
    pnl_sol REAL NOT NULL,
    pnl_pct REAL NOT NULL,
    drawdown_pct REAL NOT NULL,
    exposure_pct REAL NOT NULL,
    open_positions INTEGER NOT NULL
)
"""

CREATE_REGIME_TABLE = """
CREATE TABLE IF NOT EXISTS regime_history (
    timestamp TEXT NOT NULL,
    regime TEXT NOT NULL,
    regime_score INTEGER NOT NULL,
    launch_rate_per_min REAL NOT NULL,
    volume_sol REAL NOT NULL,
    graduation_count INTEGER NOT NULL,
    reason TEXT NOT NULL
)
"""

CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_orders_side_status ON orders(side, status, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_positions_status ON positions(status, last_update)",
    "CREATE INDEX IF NOT EXISTS idx_decisions_timestamp ON decisions(timestamp)",
)

_POSITION_COLUMNS = (
    "id, mint, symbol, status, entry_price, current_price, entry_amount_sol, tokens_bought, "
    "tokens_sold, realized_pnl_sol, unrealized_pnl_sol, stop_loss_price, take_profit_levels, "
    "trailing_stop_pct, trailing_stop_price, high_water_mark, time_stop_minutes, entry_time, "
    "last_update, decision_id, exit_reason, is_paper"
)

_ORDER_COLUMNS = (
    "id, idempotency_key, mint, side, source, requested_amount_sol, executed_amount_sol, "
    "requested_price, executed_price, token_amount, slippage_bps, fee_sol, status, is_paper, "
    "decision_id, position_id, retry_count, latency_ms, error, created_at, updated_at"
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLiteStorage:
    """SQLite-backed store for the trading core's audit trail and portfolio state."""

    def __init__(self, database_path: Path) -> None:
        self._database_path = Path(database_path).resolve()
        self._initialize()

    @property
    def database_path(self) -> Path:
        return self._database_path

    def _initialize(self) -> None:
        self._database_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as con:
            con.execute(CREATE_TOKEN_TABLE)
            con.execute(CREATE_DECISION_TABLE)
            con.execute(CREATE_ORDER_TABLE)
            con.execute(CREATE_POSITION_TABLE)
            con.execute(CREATE_INCIDENT_TABLE)
            con.execute(CREATE_EQUITY_TABLE)
            con.execute(CREATE_REGIME_TABLE)
            for statement in CREATE_INDEXES:
                con.execute(statement)
            con.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            con = sqlite3.connect(self._database_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Unable to open {self._database_path}: {exc}") from exc
        try:
            yield con
        except sqlite3.Error as exc:
            raise StorageError(str(exc)) from exc
        finally:
            con.close()

    # ------------------------------------------------------------------ tokens
    def upsert_token(self, token: TokenInfo) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO tokens (
                    mint, symbol, name, creator, phase, bonding_curve_address, pool_address,
                    created_at, graduated_at, mint_authority_revoked, freeze_authority_revoked,
                    price_sol
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(mint) DO UPDATE SET
                    symbol = excluded.symbol,
                    name = excluded.name,
                    creator = COALESCE(excluded.creator, tokens.creator),
                    phase = excluded.phase,
                    bonding_curve_address = COALESCE(
                        excluded.bonding_curve_address, tokens.bonding_curve_address
                    ),
                    pool_address = COALESCE(excluded.pool_address, tokens.pool_address),
                    graduated_at = COALESCE(excluded.graduated_at, tokens.graduated_at),
                    mint_authority_revoked = excluded.mint_authority_revoked,
                    freeze_authority_revoked = excluded.freeze_authority_revoked,
                    price_sol = COALESCE(excluded.price_sol, tokens.price_sol)
                """,
                (
                    token.mint,
                    token.symbol,
                    token.name,
                    token.creator,
                    token.phase.value,
                    token.bonding_curve_address,
                    token.pool_address,
                    token.created_at.isoformat(),
                    _iso(token.graduated_at),
                    int(token.mint_authority_revoked),
                    int(token.freeze_authority_revoked),
                    token.price_sol,
                ),
            )
            con.commit()

    def get_token(self, mint: str) -> Optional[TokenInfo]:
        with self._connect() as con:
            row = con.execute(
                """
                SELECT mint, symbol, name, creator, phase, bonding_curve_address, pool_address,
                       created_at, graduated_at, mint_authority_revoked,
                       freeze_authority_revoked, price_sol
                FROM tokens WHERE mint = ?
                """,
                (mint,),
            ).fetchone()
        if not row:
            return None
        return TokenInfo(
            mint=row[0],
            symbol=row[1],
            name=row[2],
            creator=row[3],
            phase=TokenPhase(row[4]),
            bonding_curve_address=row[5],
            pool_address=row[6],
            created_at=datetime.fromisoformat(row[7]),
            graduated_at=_parse_dt(row[8]),
            mint_authority_revoked=bool(row[9]),
            freeze_authority_revoked=bool(row[10]),
            price_sol=row[11],
        )

    # --------------------------------------------------------------- decisions
    def record_decision(self, card: DecisionCard) -> None:
        payload = json.dumps(to_serializable(card), separators=(",", ":"))
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO decisions (id, mint, symbol, timestamp, verdict, summary, payload)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    card.id,
                    card.mint,
                    card.symbol,
                    card.timestamp.isoformat(),
                    card.verdict.value,
                    json.dumps(list(card.summary)),
                    payload,
                ),
            )
            con.commit()

    def list_decisions(
        self, limit: int = 100, verdict: Optional[Verdict] = None
    ) -> List[DecisionRecord]:
        query = "SELECT id, mint, symbol, timestamp, verdict, summary, payload FROM decisions"
        params: List[object] = []
        if verdict is not None:
            query += " WHERE verdict = ?"
            params.append(verdict.value)
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)
        with self._connect() as con:
            rows = con.execute(query, params).fetchall()
        return [
            DecisionRecord(
                id=row[0],
                mint=row[1],
                symbol=row[2],
                timestamp=datetime.fromisoformat(row[3]),
                verdict=Verdict(row[4]),
                summary=json.loads(row[5]),
                payload=json.loads(row[6]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------ orders
    def insert_order(self, order: Order) -> bool:
        """Insert a new order, returning ``False`` when its idempotency key already exists."""

        with self._connect() as con:
            try:
                con.execute(
                    f"INSERT INTO orders ({_ORDER_COLUMNS}) VALUES "
                    "(?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    self._order_params(order),
                )
            except sqlite3.IntegrityError:
                con.rollback()
                return False
            con.commit()
        return True

    def update_order(self, order: Order) -> None:
        """Apply execution and status fields of an existing order."""

        with self._connect() as con:
            cur = con.execute(
                """
                UPDATE orders SET
                    status = ?,
                    executed_amount_sol = ?,
                    executed_price = ?,
                    token_amount = ?,
                    slippage_bps = ?,
                    fee_sol = ?,
                    position_id = ?,
                    retry_count = ?,
                    latency_ms = ?,
                    error = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    order.status.value,
                    order.executed_amount_sol,
                    order.executed_price,
                    order.token_amount,
                    order.slippage_bps,
                    order.fee_sol,
                    order.position_id,
                    order.retry_count,
                    order.latency_ms,
                    order.error,
                    _iso(order.updated_at or order.created_at),
                    order.id,
                ),
            )
            if cur.rowcount == 0:
                raise StorageError(f"Order {order.id} does not exist")
            con.commit()

    def get_order_by_key(self, idempotency_key: str) -> Optional[Order]:
        with self._connect() as con:
            row = con.execute(
                f"SELECT {_ORDER_COLUMNS} FROM orders WHERE idempotency_key = ?",
                (idempotency_key,),
            ).fetchone()
        return self._row_to_order(row) if row else None

    def list_orders(self, limit: int = 200, mint: Optional[str] = None) -> List[Order]:
        query = f"SELECT {_ORDER_COLUMNS} FROM orders"
        params: List[object] = []
        if mint:
            query += " WHERE mint = ?"
            params.append(mint)
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._connect() as con:
            rows = con.execute(query, params).fetchall()
        return [self._row_to_order(row) for row in rows]

    def count_confirmed_buys(self, since: datetime) -> int:
        with self._connect() as con:
            row = con.execute(
                """
                SELECT COUNT(*) FROM orders
                WHERE side = ? AND status = ? AND created_at >= ?
                """,
                (OrderSide.BUY.value, OrderStatus.CONFIRMED.value, since.isoformat()),
            ).fetchone()
        return int(row[0]) if row else 0

    # --------------------------------------------------------------- positions
    def upsert_position(self, position: Position) -> None:
        levels = json.dumps(
            [
                {"gain_pct": level.gain_pct, "sell_pct": level.sell_pct, "triggered": level.triggered}
                for level in position.take_profit_levels
            ]
        )
        with self._connect() as con:
            con.execute(
                f"""
                INSERT INTO positions ({_POSITION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    current_price = excluded.current_price,
                    tokens_sold = excluded.tokens_sold,
                    realized_pnl_sol = excluded.realized_pnl_sol,
                    unrealized_pnl_sol = excluded.unrealized_pnl_sol,
                    stop_loss_price = excluded.stop_loss_price,
                    take_profit_levels = excluded.take_profit_levels,
                    trailing_stop_price = excluded.trailing_stop_price,
                    high_water_mark = excluded.high_water_mark,
                    last_update = excluded.last_update,
                    exit_reason = excluded.exit_reason
                """,
                (
                    position.id,
                    position.mint,
                    position.symbol,
                    position.status.value,
                    position.entry_price,
                    position.current_price,
                    position.entry_amount_sol,
                    position.tokens_bought,
                    position.tokens_sold,
                    position.realized_pnl_sol,
                    position.unrealized_pnl_sol,
                    position.stop_loss_price,
                    levels,
                    position.trailing_stop_pct,
                    position.trailing_stop_price,
                    position.high_water_mark,
                    position.time_stop_minutes,
                    position.entry_time.isoformat(),
                    position.last_update.isoformat(),
                    position.decision_id,
                    position.exit_reason,
                    int(position.is_paper),
                ),
            )
            con.commit()

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._connect() as con:
            row = con.execute(
                f"SELECT {_POSITION_COLUMNS} FROM positions WHERE id = ?", (position_id,)
            ).fetchone()
        return self._row_to_position(row) if row else None

    def list_open_positions(self) -> List[Position]:
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {_POSITION_COLUMNS} FROM positions WHERE status != ? "
                "ORDER BY entry_time ASC",
                (PositionStatus.CLOSED.value,),
            ).fetchall()
        return [self._row_to_position(row) for row in rows]

    def list_positions(self, limit: int = 200) -> List[Position]:
        with self._connect() as con:
            rows = con.execute(
                f"SELECT {_POSITION_COLUMNS} FROM positions ORDER BY last_update DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_position(row) for row in rows]

    def has_open_position(self, mint: str) -> bool:
        with self._connect() as con:
            row = con.execute(
                "SELECT 1 FROM positions WHERE mint = ? AND status != ? LIMIT 1",
                (mint, PositionStatus.CLOSED.value),
            ).fetchone()
        return row is not None

    def count_consecutive_losses(self, limit: int = 20) -> int:
        """Count losing closed positions, newest first, until the first non-loss."""

        with self._connect() as con:
            rows = con.execute(
                """
                SELECT realized_pnl_sol FROM positions
                WHERE status = ?
                ORDER BY last_update DESC
                LIMIT ?
                """,
                (PositionStatus.CLOSED.value, limit),
            ).fetchall()
        losses = 0
        for (pnl,) in rows:
            if pnl < 0:
                losses += 1
            else:
                break
        return losses

    # --------------------------------------------------------------- incidents
    def record_incident(self, incident: Incident) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO incidents (
                    id, timestamp, severity, category, message, auto_action, resume_at, resolved
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    incident.id,
                    incident.timestamp.isoformat(),
                    incident.severity.value,
                    incident.category.value,
                    incident.message,
                    incident.auto_action,
                    _iso(incident.resume_at),
                    int(incident.resolved),
                ),
            )
            con.commit()

    def resolve_incident(self, incident_id: str) -> None:
        with self._connect() as con:
            con.execute("UPDATE incidents SET resolved = 1 WHERE id = ?", (incident_id,))
            con.commit()

    def list_incidents(self, limit: int = 100, unresolved_only: bool = False) -> List[Incident]:
        query = (
            "SELECT id, timestamp, severity, category, message, auto_action, resume_at, resolved "
            "FROM incidents"
        )
        if unresolved_only:
            query += " WHERE resolved = 0"
        query += " ORDER BY timestamp DESC LIMIT ?"
        with self._connect() as con:
            rows = con.execute(query, (limit,)).fetchall()
        return [
            Incident(
                id=row[0],
                timestamp=datetime.fromisoformat(row[1]),
                severity=IncidentSeverity(row[2]),
                category=IncidentCategory(row[3]),
                message=row[4],
                auto_action=row[5],
                resume_at=_parse_dt(row[6]),
                resolved=bool(row[7]),
            )
            for row in rows
        ]

    # ----------------------------------------------------------------- history
    def record_equity_snapshot(self, snapshot: EquitySnapshot) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO equity_history (
                    timestamp, equity_sol, pnl_sol, pnl_pct, drawdown_pct, exposure_pct,
                    open_positions
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    snapshot.timestamp.isoformat(),
                    snapshot.equity_sol,
                    snapshot.pnl_sol,
                    snapshot.pnl_pct,
                    snapshot.drawdown_pct,
                    snapshot.exposure_pct,
                    snapshot.open_positions,
                ),
            )
            con.commit()

    def list_equity_history(self, limit: int = 500) -> List[EquitySnapshot]:
        with self._connect() as con:
            rows = con.execute(
                """
                SELECT timestamp, equity_sol, pnl_sol, pnl_pct, drawdown_pct, exposure_pct,
                       open_positions
                FROM equity_history ORDER BY timestamp DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        snapshots = [
            EquitySnapshot(
                timestamp=datetime.fromisoformat(row[0]),
                equity_sol=row[1],
                pnl_sol=row[2],
                pnl_pct=row[3],
                drawdown_pct=row[4],
                exposure_pct=row[5],
                open_positions=row[6],
            )
            for row in rows
        ]
        snapshots.reverse()
        return snapshots

    def record_regime_snapshot(self, features: RegimeFeatures, timestamp: datetime) -> None:
        with self._connect() as con:
            con.execute(
                """
                INSERT INTO regime_history (
                    timestamp, regime, regime_score, launch_rate_per_min, volume_sol,
                    graduation_count, reason
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    timestamp.isoformat(),
                    features.regime.value,
                    features.regime_score,
                    features.launch_rate_per_min,
                    features.volume_sol,
                    features.graduation_count,
                    features.reason,
                ),
            )
            con.commit()

    def list_regime_history(self, limit: int = 200) -> List[Dict[str, Any]]:
        with self._connect() as con:
            rows = con.execute(
                """
                SELECT timestamp, regime, regime_score, launch_rate_per_min, volume_sol,
                       graduation_count, reason
                FROM regime_history ORDER BY timestamp DESC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [
            {
                "timestamp": datetime.fromisoformat(row[0]),
                "regime": row[1],
                "regime_score": row[2],
                "launch_rate_per_min": row[3],
                "volume_sol": row[4],
                "graduation_count": row[5],
                "reason": row[6],
            }
            for row in rows
        ]

    # ----------------------------------------------------------------- helpers
    @staticmethod
    def _order_params(order: Order) -> tuple:
        return (
            order.id,
            order.idempotency_key,
            order.mint,
            order.side.value,
            order.source.value,
            order.requested_amount_sol,
            order.executed_amount_sol,
            order.requested_price,
            order.executed_price,
            order.token_amount,
            order.slippage_bps,
            order.fee_sol,
            order.status.value,
            int(order.is_paper),
            order.decision_id,
            order.position_id,
            order.retry_count,
            order.latency_ms,
            order.error,
            _iso(order.created_at),
            _iso(order.updated_at or order.created_at),
        )

    @staticmethod
    def _row_to_order(row: tuple) -> Order:
        return Order(
            id=row[0],
            idempotency_key=row[1],
            mint=row[2],
            side=OrderSide(row[3]),
            source=OrderSource(row[4]),
            requested_amount_sol=row[5],
            executed_amount_sol=row[6],
            requested_price=row[7],
            executed_price=row[8],
            token_amount=row[9],
            slippage_bps=row[10],
            fee_sol=row[11],
            status=OrderStatus(row[12]),
            is_paper=bool(row[13]),
            decision_id=row[14],
            position_id=row[15],
            retry_count=row[16],
            latency_ms=row[17],
            error=row[18],
            created_at=_parse_dt(row[19]),
            updated_at=_parse_dt(row[20]),
        )

    @staticmethod
    def _row_to_position(row: tuple) -> Position:
        levels = [
            TakeProfitLevel(
                gain_pct=float(item["gain_pct"]),
                sell_pct=float(item["sell_pct"]),
                triggered=bool(item.get("triggered", False)),
            )
            for item in json.loads(row[12] or "[]")
        ]
        return Position(
            id=row[0],
            mint=row[1],
            symbol=row[2],
            status=PositionStatus(row[3]),
            entry_price=row[4],
            current_price=row[5],
            entry_amount_sol=row[6],
            tokens_bought=row[7],
            tokens_sold=row[8],
            realized_pnl_sol=row[9],
            unrealized_pnl_sol=row[10],
            stop_loss_price=row[11],
            take_profit_levels=levels,
            trailing_stop_pct=row[13],
            trailing_stop_price=row[14],
            high_water_mark=row[15],
            time_stop_minutes=row[16],
            entry_time=datetime.fromisoformat(row[17]),
            last_update=datetime.fromisoformat(row[18]),
            decision_id=row[19],
            exit_reason=row[20],
            is_paper=bool(row[21]),
        )


__all__ = ["SQLiteStorage", "StorageAdapter", "StorageError"]
