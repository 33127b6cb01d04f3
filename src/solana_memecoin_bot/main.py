"""Entrypoint for the Solana memecoin paper-trading bot."""

from __future__ import annotations

import argparse
import asyncio
from typing import List, Optional, Sequence

from .analytics.performance import stats_from_storage
from .bot import TradingBot
from .config.settings import AppConfig, get_app_config, validate_config
from .datalake.storage import SQLiteStorage
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .monitoring.metrics import METRICS

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Solana memecoin paper-trading bot")
    parser.add_argument(
        "--max-runtime",
        type=float,
        default=None,
        help="Stop after this many seconds (default: run until interrupted).",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the synthetic event source and execution simulator.",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Load and validate the configuration, print any issues, and exit.",
    )
    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    if args.seed is None:
        return config
    mode = config.mode.model_copy(update={"seed": args.seed})
    return config.model_copy(update={"mode": mode})


async def run_async(config: AppConfig, max_runtime: Optional[float] = None) -> None:
    storage = SQLiteStorage(config.storage.database_path)
    bot = TradingBot(config, storage=storage)
    try:
        await bot.run(max_runtime=max_runtime)
    finally:
        state = bot.governor.state
        logger.info(
            "Final equity %.4f SOL, today's P&L %.4f SOL (%.2f%%), %d open positions",
            state.equity_sol,
            state.today_pnl_sol,
            state.today_pnl_pct,
            state.open_position_count,
        )
        stats = stats_from_storage(storage)
        logger.info(
            "Closed %d trades: win rate %.0f%%, total P&L %.4f SOL, expectancy %.4f SOL",
            stats.total_trades,
            stats.win_rate * 100,
            stats.total_pnl_sol,
            stats.expectancy_sol,
        )
        logger.debug("Metrics snapshot: %s", METRICS.snapshot())


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    config = apply_overrides(get_app_config(), args)
    bootstrap_observability(config=config)
    issues: List[str] = validate_config(config)
    for issue in issues:
        logger.warning("Configuration issue: %s", issue)
    if args.validate_only:
        for issue in issues:
            print(issue)
        return 1 if issues else 0
    try:
        asyncio.run(run_async(config, max_runtime=args.max_runtime))
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual execution helper
    raise SystemExit(main())
