"""
TOML-based configuration for a StakeFlow engine node.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Example ``stakeflow.toml``::

    [engine]
    start_tick = 1
    others_address = "sfTreasury"

    [[schedule]]
    staking_rate = 1000
    others_rate = 8000
    length = 100

    [[schedule]]
    staking_rate = 2000
    others_rate = 3000
    length = 20

    [token]
    max_supply = 0

    [token.genesis]
    sfAlice = 1000000

    [logging.levels]
    "stakeflow.pool" = "DEBUG"

Usage:
    from stakeflow_core.config import load_config
    cfg = load_config("stakeflow.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from stakeflow_core.schedule import ScheduleTable


@dataclass
class EngineConfig:
    """Pool construction settings."""
    start_tick: int = 0
    engine_address: str = "sfStakePool"     # custody account, receives staking rewards
    others_address: str = "sfTreasury"      # receives the others stream
    staking_rate: int | None = None         # None = period 0 rate
    others_rate: int | None = None
    check_invariants: bool = False
    event_history: int = 10_000


@dataclass
class TokenConfig:
    """Reference token ledger settings."""
    symbol: str = "SFT"
    max_supply: int = 0                     # 0 = unlimited
    genesis: dict[str, int] = field(default_factory=dict)


@dataclass
class ClockConfig:
    """Wall-clock tick source."""
    tick_seconds: float = 1.0
    origin: float = 0.0


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                  # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    max_body_bytes: int = 65_536


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None
    levels: dict[str, str] = field(default_factory=dict)   # per-logger overrides


def _default_schedule() -> list[dict[str, int]]:
    return [{"staking_rate": 1000, "others_rate": 8000, "length": 100}]


@dataclass
class StakeFlowConfig:
    """Top-level configuration container."""
    engine: EngineConfig = field(default_factory=EngineConfig)
    schedule: list[dict[str, int]] = field(default_factory=_default_schedule)
    token: TokenConfig = field(default_factory=TokenConfig)
    clock: ClockConfig = field(default_factory=ClockConfig)
    api: APIConfig = field(default_factory=APIConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def schedule_table(self) -> ScheduleTable:
        return ScheduleTable.from_dicts(self.schedule)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _parse_schedule_env(value: str) -> list[dict[str, int]]:
    """``"1000:8000:100,2000:3000:20"`` → schedule rows."""
    rows = []
    for chunk in value.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        parts = chunk.split(":")
        if len(parts) != 3:
            raise ValueError(
                f"Schedule entry {chunk!r} must be staking_rate:others_rate:length"
            )
        staking, others, length = (int(p) for p in parts)
        rows.append({"staking_rate": staking, "others_rate": others, "length": length})
    return rows


def load_config(path: str | None = None) -> StakeFlowConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        STAKEFLOW_START_TICK     -> engine.start_tick
        STAKEFLOW_OTHERS_ADDR    -> engine.others_address
        STAKEFLOW_SCHEDULE       -> schedule  ("rate:others:len,...")
        STAKEFLOW_MAX_SUPPLY     -> token.max_supply
        STAKEFLOW_TICK_SECONDS   -> clock.tick_seconds
        STAKEFLOW_HOST           -> api.host
        STAKEFLOW_API_PORT       -> api.port
        STAKEFLOW_API_KEY        -> api.api_key
        STAKEFLOW_LOG_LEVEL      -> logging.level
        STAKEFLOW_LOG_FMT        -> logging.format
        STAKEFLOW_CHECK_INVARIANTS -> engine.check_invariants ("1"/"true")
    """
    cfg = StakeFlowConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("engine", cfg.engine),
                ("token", cfg.token),
                ("clock", cfg.clock),
                ("api", cfg.api),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            if "schedule" in data:
                cfg.schedule = [dict(row) for row in data["schedule"]]

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("STAKEFLOW_START_TICK"):
        cfg.engine.start_tick = int(v)
    if v := os.environ.get("STAKEFLOW_OTHERS_ADDR"):
        cfg.engine.others_address = v
    if v := os.environ.get("STAKEFLOW_SCHEDULE"):
        cfg.schedule = _parse_schedule_env(v)
    if v := os.environ.get("STAKEFLOW_MAX_SUPPLY"):
        cfg.token.max_supply = int(v)
    if v := os.environ.get("STAKEFLOW_TICK_SECONDS"):
        cfg.clock.tick_seconds = float(v)
    if v := os.environ.get("STAKEFLOW_HOST"):
        cfg.api.host = v
    if v := os.environ.get("STAKEFLOW_API_PORT"):
        cfg.api.port = int(v)
    if v := os.environ.get("STAKEFLOW_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("STAKEFLOW_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("STAKEFLOW_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("STAKEFLOW_CHECK_INVARIANTS"):
        cfg.engine.check_invariants = v.strip().lower() in ("1", "true", "yes", "on")

    return cfg
