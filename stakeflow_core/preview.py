"""
Read-only reward preview.

Answers "how much would this user be owed at tick ``now``" by running the
same catch-up projection ``RewardPool.refresh()`` commits, against the
current state, without mutating anything.  Assuming the staking issuance
is accepted, the result is identical to refreshing and then computing the
user's pending reward.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from stakeflow_core.precision import share_of

if TYPE_CHECKING:
    from stakeflow_core.pool import RewardPool
    from stakeflow_core.staking import UserPosition


def project_index(pool: RewardPool, now: int) -> int:
    """The accumulator value a refresh at *now* would produce."""
    return pool.project(now).state.acc_index


def pending_at(position: UserPosition, acc_index: int) -> int:
    """Reward accrued by *position* at *acc_index* beyond its debt."""
    return share_of(position.staked_amount, acc_index) - position.reward_debt


def preview_pending(
    pool: RewardPool,
    position: Optional[UserPosition],
    now: int,
) -> int:
    if position is None or position.staked_amount == 0:
        return 0
    return pending_at(position, project_index(pool, now))
