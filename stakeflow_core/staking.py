"""
Pool staking engine for StakeFlow.

Participants deposit the staking token into a shared pool and earn newly
issued reward tokens in proportion to their share, at the rates of the
emission schedule (see ``pool.py``).

Reward Debt
───────────
Each position stores ``reward_debt = staked × acc_index / P`` as of its
last mutation, so the reward owed at any later index is a difference:

    pending = staked × acc_index / P − reward_debt

Pending reward is never paid out on its own.  It is compounded into the
position on every deposit, withdraw and explicit compound, and paid out
together with the principal by ``withdraw_all``.

Operation Order
───────────────
    validate → project pool → external transfer
             → issue & commit pool → compute position → commit → emit event

A rejected transfer raises ``TransferFailedError`` and leaves the engine
as it was.  The projection is dropped before anything is emitted.
``withdraw_all`` pays out reward minted by the same catch-up, so it
mints first and burns the mint back on rejection.

Every mutating entry point runs under a non-reentrant guard.
"""

from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from stakeflow_core.errors import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvariantViolationError,
    TransferFailedError,
)
from stakeflow_core.events import EventLog, StakeAction, StakeEvent
from stakeflow_core.guard import ReentrancyGuard, nonreentrant
from stakeflow_core.invariants import InvariantChecker
from stakeflow_core.pool import CatchUp, PoolState, RewardPool
from stakeflow_core.precision import share_of
from stakeflow_core.preview import pending_at, preview_pending
from stakeflow_core.schedule import ScheduleTable
from stakeflow_core.ticks import TickSource
from stakeflow_core.token import RewardIssuer, StakeCustody

logger = logging.getLogger("stakeflow.staking")


@dataclass(frozen=True)
class UserPosition:
    staked_amount: int = 0
    reward_debt: int = 0

    def to_dict(self) -> dict:
        return {
            "staked_amount": self.staked_amount,
            "reward_debt": self.reward_debt,
        }


_EMPTY = UserPosition()


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmountError(f"Amount must be an integer number of units, got {amount!r}")
    if amount <= 0:
        raise InvalidAmountError(f"Amount must be positive, got {amount}")


class StakingEngine:
    """
    Single owner of the pool state and every user position.

    Commands: ``deposit``, ``withdraw``, ``withdraw_all``,
    ``harvest_and_compound``, ``emergency_withdraw``, ``refresh``.
    Queries never mutate and never create positions.
    """

    def __init__(
        self,
        schedule: ScheduleTable,
        start_tick: int,
        custody: StakeCustody,
        issuer: RewardIssuer,
        others_address: str = "",
        tick_source: Optional[TickSource] = None,
        events: Optional[EventLog] = None,
        check_invariants: bool = False,
        staking_rate: Optional[int] = None,
        others_rate: Optional[int] = None,
    ) -> None:
        self.events = events if events is not None else EventLog()
        self.custody = custody
        self.pool = RewardPool(
            schedule,
            start_tick,
            issuer=issuer,
            reward_recipient=custody.address,
            others_recipient=others_address,
            events=self.events,
            staking_rate=staking_rate,
            others_rate=others_rate,
        )
        self._positions: dict[str, UserPosition] = {}
        self._guard = ReentrancyGuard()
        self._tick_source = tick_source
        self._checker = InvariantChecker() if check_invariants else None

    # ── queries ─────────────────────────────────────────────────────

    @property
    def schedule(self) -> ScheduleTable:
        return self.pool.schedule

    @property
    def state(self) -> PoolState:
        return self.pool.state

    @property
    def total_staked(self) -> int:
        return self.pool.total_staked

    @property
    def acc_index(self) -> int:
        return self.pool.acc_index

    def position(self, user: str) -> UserPosition:
        return self._positions.get(user, _EMPTY)

    def positions(self) -> dict[str, UserPosition]:
        return dict(self._positions)

    def pending(self, user: str) -> int:
        """Reward owed at the current, committed index."""
        return pending_at(self.position(user), self.pool.acc_index)

    def preview_pending(self, user: str, now: Optional[int] = None) -> int:
        """Reward *user* would be owed after a refresh at *now*."""
        return preview_pending(self.pool, self._positions.get(user), self._resolve_now(now))

    def is_exhausted(self, now: Optional[int] = None) -> bool:
        return self.pool.is_exhausted(self._resolve_now(now))

    def pool_summary(self, now: Optional[int] = None) -> dict:
        if now is None and self._tick_source is not None:
            now = self._tick_source()
        summary = self.pool.state.to_dict()
        summary.update({
            "period_count": len(self.pool.schedule),
            "start_tick": self.pool.start_tick,
            "final_tick": self.pool.final_tick,
            "participants": sum(1 for p in self._positions.values() if p.staked_amount > 0),
            "total_issued": self.pool.total_issued,
            "total_others_issued": self.pool.total_others_issued,
            "refused_issuance": self.pool.refused_issuance,
        })
        if now is not None:
            summary["tick"] = now
            summary["projected_acc_index"] = self.pool.project(now).state.acc_index
            summary["exhausted"] = self.pool.is_exhausted(now)
            # current_period only moves on a staked refresh
            scheduled = self.pool.schedule.period_at(self.pool.start_tick, now)
            summary["scheduled_period"] = scheduled
            summary["scheduled_staking_rate"] = self.pool.schedule[scheduled].staking_rate
            summary["scheduled_others_rate"] = self.pool.schedule[scheduled].others_rate
        return summary

    # ── commands ────────────────────────────────────────────────────

    @nonreentrant
    def refresh(self, now: Optional[int] = None) -> CatchUp:
        """Catch the pool up to *now*."""
        now = self._resolve_now(now)
        with self._checked("refresh"):
            return self.pool.refresh(now)

    @nonreentrant
    def deposit(self, user: str, amount: int, now: Optional[int] = None) -> UserPosition:
        """Stake *amount* more units, compounding any pending reward."""
        _check_amount(amount)
        now = self._resolve_now(now)
        with self._checked("deposit"):
            result = self.pool.project(now)
            ok, msg = self.custody.transfer_from(user, self.custody.address, amount)
            if not ok:
                raise TransferFailedError("deposit", msg)

            self.pool.apply(result, now)
            idx = self.pool.acc_index
            current = self.position(user)
            pending = pending_at(current, idx)
            staked = current.staked_amount + amount + pending
            updated = UserPosition(staked, share_of(staked, idx))
            self._commit(user, updated, self.pool.total_staked + amount + pending)
            self._emit(StakeAction.DEPOSIT, user, amount, pending, updated, now)
        return updated

    @nonreentrant
    def withdraw(self, user: str, amount: int, now: Optional[int] = None) -> UserPosition:
        """Take *amount* of principal out; pending reward stays staked."""
        _check_amount(amount)
        current = self.position(user)
        if amount > current.staked_amount:
            raise InsufficientBalanceError(
                f"Withdraw {amount} exceeds stake {current.staked_amount}"
            )
        now = self._resolve_now(now)
        with self._checked("withdraw"):
            result = self.pool.project(now)
            ok, msg = self.custody.transfer(user, amount)
            if not ok:
                raise TransferFailedError("withdraw", msg)

            self.pool.apply(result, now)
            idx = self.pool.acc_index
            pending = pending_at(current, idx)
            staked = current.staked_amount + pending - amount
            updated = UserPosition(staked, share_of(staked, idx))
            self._commit(user, updated, self.pool.total_staked + pending - amount)
            self._emit(StakeAction.WITHDRAW, user, amount, pending, updated, now)
        return updated

    @nonreentrant
    def withdraw_all(self, user: str, now: Optional[int] = None) -> int:
        """Close the position, paying principal plus pending reward.

        The staking reward for the catch-up is minted before the payout,
        which it funds, and burned back if the payout is rejected.
        Returns the amount paid out.
        """
        current = self.position(user)
        if current.staked_amount <= 0:
            raise InsufficientBalanceError(f"Nothing staked for {user}")
        now = self._resolve_now(now)
        with self._checked("withdraw_all"):
            settlement = self.pool.issue(self.pool.project(now), now)
            pending = pending_at(current, settlement.state.acc_index)
            payout = current.staked_amount + pending

            ok, msg = self.custody.transfer(user, payout)
            if not ok:
                self.pool.revoke(settlement)
                raise TransferFailedError("withdraw_all", msg)

            self.pool.commit(settlement, now)
            self._commit(user, _EMPTY, self.pool.total_staked - current.staked_amount)
            self._emit(StakeAction.WITHDRAW_ALL, user, current.staked_amount, pending, _EMPTY, now)
        return payout

    @nonreentrant
    def harvest_and_compound(self, user: str, now: Optional[int] = None) -> int:
        """Fold pending reward into the stake.  Returns the amount compounded."""
        now = self._resolve_now(now)
        with self._checked("harvest_and_compound"):
            self.pool.refresh(now)
            idx = self.pool.acc_index
            current = self.position(user)
            pending = pending_at(current, idx)
            if pending == 0:
                return 0
            staked = current.staked_amount + pending
            updated = UserPosition(staked, share_of(staked, idx))
            self._commit(user, updated, self.pool.total_staked + pending)
            self._emit(StakeAction.COMPOUND, user, 0, pending, updated, now)
        return pending

    @nonreentrant
    def emergency_withdraw(self, user: str, now: Optional[int] = None) -> int:
        """Return principal only, forfeiting pending reward.

        Skips the pool refresh, so it works even when catch-up or
        issuance is misbehaving.
        """
        current = self.position(user)
        if current.staked_amount <= 0:
            raise InsufficientBalanceError(f"Nothing staked for {user}")
        if now is None and self._tick_source is not None:
            now = self._tick_source()
        tick = self.pool.state.last_update_tick if now is None else now
        with self._checked("emergency_withdraw"):
            total = self.pool.total_staked - current.staked_amount
            ok, msg = self.custody.transfer(user, current.staked_amount)
            if not ok:
                raise TransferFailedError("emergency_withdraw", msg)
            self._commit(user, _EMPTY, total)
            forfeited = pending_at(current, self.pool.acc_index)
            logger.warning(
                f"Emergency withdraw by {user}: {current.staked_amount} returned, "
                f"{forfeited} pending forfeited"
            )
            self._emit(StakeAction.EMERGENCY_WITHDRAW, user, current.staked_amount, 0, _EMPTY, tick)
        return current.staked_amount

    # ── internals ───────────────────────────────────────────────────

    def _resolve_now(self, now: Optional[int]) -> int:
        if now is None:
            if self._tick_source is None:
                raise ValueError("No tick given and no tick source configured")
            now = self._tick_source()
        if isinstance(now, bool) or not isinstance(now, int):
            raise ValueError(f"Tick must be an integer, got {now!r}")
        return now

    def _commit(self, user: str, position: UserPosition, total_staked: int) -> None:
        self._positions[user] = position
        self.pool.set_total_staked(total_staked)

    def _emit(
        self,
        action: StakeAction,
        user: str,
        amount: int,
        pending: int,
        position: UserPosition,
        tick: int,
    ) -> None:
        event = StakeEvent(
            action=action,
            user=user,
            amount=amount,
            pending=pending,
            staked_after=position.staked_amount,
            tick=tick,
        )
        logger.info(
            f"{action.value} user={user} amount={amount} pending={pending} "
            f"staked={position.staked_amount} total={self.pool.total_staked}"
        )
        self.events.emit(event)

    @contextlib.contextmanager
    def _checked(self, operation: str) -> Iterator[None]:
        if self._checker is None:
            yield
            return
        self._checker.capture(self)
        yield
        ok, msg = self._checker.verify(self)
        if not ok:
            logger.error(f"Invariant violation after {operation}: {msg}")
            raise InvariantViolationError(msg)
