"""
Shared pytest fixtures for the StakeFlow test suite.
"""

import pytest

from stakeflow_core.schedule import SchedulePeriod, ScheduleTable
from stakeflow_core.staking import StakingEngine
from stakeflow_core.ticks import ManualTicks
from stakeflow_core.token import TokenAccount, TokenLedger

POOL = "sfPool"
TREASURY = "sfTreasury"
START_TICK = 1
WALLET_FUNDS = 1_000_000


@pytest.fixture
def schedule():
    """Two periods: 100 ticks at 1000/8000, then 20 ticks at 2000/3000."""
    return ScheduleTable([
        SchedulePeriod(staking_rate=1000, others_rate=8000, length=100),
        SchedulePeriod(staking_rate=2000, others_rate=3000, length=20),
    ])


@pytest.fixture
def token():
    """Token ledger with funded, pool-approved wallets for Alice and Bob."""
    ledger = TokenLedger.create("SFT", minter=POOL)
    for addr in ("sfAlice", "sfBob"):
        ledger.mint(POOL, addr, WALLET_FUNDS)
        ledger.approve(addr, POOL, 10 ** 18)
    return ledger


@pytest.fixture
def ticks():
    return ManualTicks(START_TICK)


@pytest.fixture
def engine(schedule, token, ticks):
    """Engine on the two-period schedule starting at tick 1, invariants on."""
    account = TokenAccount(token, POOL)
    return StakingEngine(
        schedule,
        START_TICK,
        custody=account,
        issuer=account,
        others_address=TREASURY,
        tick_source=ticks,
        check_invariants=True,
    )
