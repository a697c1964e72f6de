#!/usr/bin/env python3
"""
StakeFlow Engine Runner — starts a staking engine node with:
  - Reference token ledger (staking + reward token)
  - Staking engine driven by a wall-clock tick source
  - REST API exposing the query and command surfaces

Usage:
    python run_engine.py --config stakeflow.toml --port 8080

Environment variables (alternative to flags):
    STAKEFLOW_HOST, STAKEFLOW_API_PORT, STAKEFLOW_LOG_LEVEL, STAKEFLOW_LOG_FMT
    (see stakeflow_core.config for the full list)
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from stakeflow_core.api import APIServer  # noqa: E402
from stakeflow_core.config import StakeFlowConfig, load_config  # noqa: E402
from stakeflow_core.events import EventLog  # noqa: E402
from stakeflow_core.logging_config import setup_logging  # noqa: E402
from stakeflow_core.precision import format_amount  # noqa: E402
from stakeflow_core.staking import StakingEngine  # noqa: E402
from stakeflow_core.ticks import TickSource, WallClockTicks  # noqa: E402
from stakeflow_core.token import TokenAccount, TokenLedger  # noqa: E402

logger = logging.getLogger("stakeflow.node")


class StakeFlowNode:
    """
    Wires the token ledger, the staking engine and the API together.
    """

    def __init__(self, config: StakeFlowConfig, tick_source: TickSource | None = None):
        self.config = config
        eng = config.engine
        self.token = TokenLedger.create(
            config.token.symbol,
            minter=eng.engine_address,
            max_supply=config.token.max_supply,
        )
        for address, amount in config.token.genesis.items():
            ok, msg = self.token.mint(eng.engine_address, address, int(amount))
            if not ok:
                raise ValueError(f"Genesis allocation to {address} failed: {msg}")

        self.tick_source = tick_source or WallClockTicks(
            config.clock.tick_seconds, config.clock.origin,
        )
        self.custody = TokenAccount(self.token, eng.engine_address)
        self.engine = StakingEngine(
            config.schedule_table(),
            eng.start_tick,
            custody=self.custody,
            issuer=self.custody,
            others_address=eng.others_address,
            tick_source=self.tick_source,
            events=EventLog(eng.event_history),
            check_invariants=eng.check_invariants,
            staking_rate=eng.staking_rate,
            others_rate=eng.others_rate,
        )
        self.api: APIServer | None = None
        if config.api.enabled:
            self.api = APIServer(
                self.engine,
                host=config.api.host,
                port=config.api.port,
                api_config=config.api,
                token=self.token,
            )

    def status(self) -> dict:
        summary = self.engine.pool_summary()
        summary["symbol"] = self.token.info.symbol
        summary["token_supply"] = self.token.total_supply
        summary["custody_balance"] = self.custody.balance
        return summary

    async def start(self) -> None:
        sched = self.engine.schedule
        logger.info(
            f"Engine ready: {len(sched)} period(s), start tick {self.engine.pool.start_tick}, "
            f"final tick {self.engine.pool.final_tick}, max staking emission "
            f"{format_amount(sched.total_staking_emission(), self.token.info.symbol)}"
        )
        if self.api is not None:
            await self.api.start()

    async def stop(self) -> None:
        if self.api is not None:
            await self.api.stop()
        logger.info("Engine stopped")


def parse_args(argv: list[str] | None = None):
    p = argparse.ArgumentParser(description="StakeFlow Staking Engine")
    p.add_argument("--config", default=None, help="Path to stakeflow.toml config file")
    p.add_argument("--host", default=None, help="API listen host")
    p.add_argument("--port", type=int, default=None, help="API listen port")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    p.add_argument("--log-format", choices=("human", "json"), default=None)
    p.add_argument("--log-file", default=None, help="Also write JSON logs here")
    return p.parse_args(argv)


def build_config(args) -> StakeFlowConfig:
    """Load config (TOML + env) and apply CLI flag overrides."""
    cfg = load_config(args.config)
    if args.host:
        cfg.api.host = args.host
    if args.port is not None:
        cfg.api.port = args.port
    if args.log_level:
        cfg.logging.level = args.log_level.upper()
    if args.log_format:
        cfg.logging.format = args.log_format
    if args.log_file:
        cfg.logging.file = args.log_file
    return cfg


async def main(argv: list[str] | None = None):
    args = parse_args(argv)
    cfg = build_config(args)
    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file, cfg.logging.levels)

    node = StakeFlowNode(cfg)
    await node.start()
    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await node.stop()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
