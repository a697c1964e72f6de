"""Tests for the read-only reward preview."""

import pytest

from stakeflow_core.pool import RewardPool
from stakeflow_core.precision import ACC_PRECISION as P
from stakeflow_core.preview import pending_at, preview_pending, project_index
from stakeflow_core.staking import UserPosition


class AcceptAll:
    def mint(self, recipient, amount):
        return True, "Minted"


@pytest.fixture
def pool(schedule):
    p = RewardPool(schedule, 1, issuer=AcceptAll(), reward_recipient="pool")
    p.set_total_staked(100)
    return p


def test_project_index_does_not_mutate(pool):
    before = pool.state
    assert project_index(pool, 11) == 100 * P
    assert pool.state is before


def test_pending_at():
    pos = UserPosition(staked_amount=200, reward_debt=500)
    assert pending_at(pos, 10 * P) == 2_000 - 500


def test_preview_missing_position(pool):
    assert preview_pending(pool, None, 50) == 0


def test_preview_empty_position(pool):
    assert preview_pending(pool, UserPosition(), 50) == 0


@pytest.mark.parametrize("now", [11, 101, 111, 121, 400])
def test_preview_matches_refresh(pool, now):
    pos = UserPosition(staked_amount=100, reward_debt=0)
    predicted = preview_pending(pool, pos, now)
    pool.refresh(now)
    assert predicted == pending_at(pos, pool.acc_index)


def test_preview_in_the_past_uses_current_index(pool):
    pool.refresh(11)
    pos = UserPosition(staked_amount=100, reward_debt=0)
    assert preview_pending(pool, pos, 5) == 10_000


def test_engine_preview_does_not_refresh(engine, ticks):
    engine.deposit("sfAlice", 100)
    ticks.set(111)
    assert engine.preview_pending("sfAlice") == 100 * 1000 + 10 * 2000
    assert engine.state.last_update_tick == 1
    assert engine.acc_index == 0
    assert engine.pool.total_issued == 0
