"""
Reward pool accumulator for StakeFlow.

Holds the running reward-per-share index and walks the emission schedule
forward whenever it is refreshed.

Catch-up Algorithm
──────────────────
Updates may be skipped for any number of ticks, so a refresh has to
reconstruct the reward owed across every period boundary crossed since
``last_update_tick``:

    reward  = mult(last, now, end) × rate
    while now > end and period < N−1:
        period += 1;  rate = schedule[period].rate
        prev, end = end, end + schedule[period].length
        reward += mult(max(prev, last), now, end) × rate

    mult(from, to, end) = to − from     if to ≤ end
                        = 0             if from ≥ end
                        = end − from    otherwise

Time past the final boundary earns nothing.  Time during which the pool
was empty earns nothing either: an idle refresh only moves
``last_update_tick`` and every later interval is clipped to start there.

Issuance
────────
The staking reward is minted to the engine's custody account and the
others reward to the beneficiary.  The index only grows when the staking
mint is accepted; the others mint is attempted regardless and its
outcome does not touch accounting.

A refresh is split in three steps so a caller can put an external
transfer between projecting and committing:

    result     = pool.project(now)         # pure
    settlement = pool.issue(result, now)   # staking mint only
    pool.commit(settlement, now)           # others mint, state, events

``revoke(settlement)`` burns back a staking mint that will not be
committed.  Nothing is emitted before ``commit()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Optional

from stakeflow_core.events import EventLog, IssuanceRecord, RateChange
from stakeflow_core.precision import index_increment
from stakeflow_core.schedule import ScheduleTable

if TYPE_CHECKING:
    from stakeflow_core.token import RewardIssuer

logger = logging.getLogger("stakeflow.pool")


@dataclass(frozen=True)
class PoolState:
    acc_index: int
    current_period: int
    period_end_tick: int
    last_update_tick: int
    active_staking_rate: int
    active_others_rate: int
    total_staked: int = 0

    def to_dict(self) -> dict:
        return {
            "acc_index": self.acc_index,
            "current_period": self.current_period,
            "period_end_tick": self.period_end_tick,
            "last_update_tick": self.last_update_tick,
            "active_staking_rate": self.active_staking_rate,
            "active_others_rate": self.active_others_rate,
            "total_staked": self.total_staked,
        }


@dataclass(frozen=True)
class CatchUp:
    """Result of projecting a pool state forward to some tick.

    ``state.acc_index`` already includes ``staking_reward`` as if the
    issuance were accepted.
    """
    state: PoolState
    staking_reward: int
    others_reward: int
    rate_changes: tuple[RateChange, ...] = ()


@dataclass(frozen=True)
class Settlement:
    """A ``CatchUp`` whose staking reward has been requested.

    ``state`` is what ``commit()`` will install: the projected state, or
    the projected state with the old index if the staking mint was refused.
    """
    result: CatchUp
    state: PoolState
    staking_record: Optional[IssuanceRecord] = None


def multiplier(from_tick: int, to_tick: int, period_end_tick: int) -> int:
    """Reward-eligible ticks in ``[from_tick, to_tick)`` before the boundary."""
    if to_tick <= period_end_tick:
        return to_tick - from_tick
    if from_tick >= period_end_tick:
        return 0
    return period_end_tick - from_tick


def catch_up(state: PoolState, schedule: ScheduleTable, now: int) -> CatchUp:
    """Project *state* forward to *now* without side effects."""
    if now <= state.last_update_tick:
        return CatchUp(state, 0, 0)
    if state.total_staked == 0:
        return CatchUp(replace(state, last_update_tick=now), 0, 0)

    last = state.last_update_tick
    period = state.current_period
    end = state.period_end_tick
    staking_rate = state.active_staking_rate
    others_rate = state.active_others_rate

    ticks = multiplier(last, now, end)
    staking_reward = ticks * staking_rate
    others_reward = ticks * others_rate

    changes: list[RateChange] = []
    while now > end and period < schedule.last_index:
        period += 1
        nxt = schedule[period]
        staking_rate = nxt.staking_rate
        others_rate = nxt.others_rate
        previous_end = end
        end += nxt.length
        changes.append(RateChange(
            period_index=period,
            boundary_tick=previous_end,
            period_end_tick=end,
            staking_rate=staking_rate,
            others_rate=others_rate,
        ))
        ticks = multiplier(max(previous_end, last), now, end)
        staking_reward += ticks * staking_rate
        others_reward += ticks * others_rate

    projected = PoolState(
        acc_index=state.acc_index + index_increment(staking_reward, state.total_staked),
        current_period=period,
        period_end_tick=end,
        last_update_tick=now,
        active_staking_rate=staking_rate,
        active_others_rate=others_rate,
        total_staked=state.total_staked,
    )
    return CatchUp(projected, staking_reward, others_reward, tuple(changes))


class RewardPool:
    """
    Owns the ``PoolState`` and the schedule it is walked against.

    Only ``commit()``, directly or through ``refresh()``, advances the
    index.  The staking engine adjusts ``total_staked`` through
    ``set_total_staked()`` after it has committed a position change.
    """

    def __init__(
        self,
        schedule: ScheduleTable,
        start_tick: int,
        issuer: Optional[RewardIssuer] = None,
        reward_recipient: str = "",
        others_recipient: str = "",
        events: Optional[EventLog] = None,
        staking_rate: Optional[int] = None,
        others_rate: Optional[int] = None,
    ) -> None:
        if start_tick < 0:
            raise ValueError("start_tick must be non-negative")
        first = schedule[0]
        self.schedule = schedule
        self.start_tick = start_tick
        self.issuer = issuer
        self.reward_recipient = reward_recipient
        self.others_recipient = others_recipient
        self.events = events if events is not None else EventLog()
        self.total_issued: int = 0
        self.total_others_issued: int = 0
        self.refused_issuance: int = 0
        self._state = PoolState(
            acc_index=0,
            current_period=0,
            period_end_tick=start_tick + first.length,
            last_update_tick=start_tick,
            active_staking_rate=first.staking_rate if staking_rate is None else staking_rate,
            active_others_rate=first.others_rate if others_rate is None else others_rate,
        )

    # ── queries ─────────────────────────────────────────────────────

    @property
    def state(self) -> PoolState:
        return self._state

    @property
    def acc_index(self) -> int:
        return self._state.acc_index

    @property
    def total_staked(self) -> int:
        return self._state.total_staked

    @property
    def final_tick(self) -> int:
        """Boundary after which nothing is ever issued again."""
        return self.schedule.boundaries(self.start_tick)[-1]

    def project(self, now: int) -> CatchUp:
        return catch_up(self._state, self.schedule, now)

    def is_exhausted(self, now: int) -> bool:
        """True once the final period's boundary lies behind *now*."""
        return now >= self.final_tick

    # ── mutation ────────────────────────────────────────────────────

    def set_total_staked(self, total: int) -> None:
        if total < 0:
            raise ValueError(f"total_staked cannot go negative ({total})")
        self._state = replace(self._state, total_staked=total)

    def refresh(self, now: int) -> CatchUp:
        """Catch the pool up to *now*, requesting issuance for the interval."""
        result = self.project(now)
        if result.state is self._state:
            return result
        self.apply(result, now)
        return result

    def apply(self, result: CatchUp, now: int) -> PoolState:
        """Issue and commit a projection in one go."""
        return self.commit(self.issue(result, now), now)

    def issue(self, result: CatchUp, now: int) -> Settlement:
        """Request the staking reward of *result*.  Commits nothing."""
        record = self._mint("staking", self.reward_recipient, result.staking_reward, now)
        state = result.state
        if record is not None and not record.accepted:
            state = replace(state, acc_index=self._state.acc_index)
        return Settlement(result, state, record)

    def commit(self, settlement: Settlement, now: int) -> PoolState:
        """Mint the others reward and install *settlement* as the pool state."""
        result = settlement.result
        others = self._mint("others", self.others_recipient, result.others_reward, now)
        self._state = settlement.state
        for record in (settlement.staking_record, others):
            if record is not None:
                self._record(record)
        for change in result.rate_changes:
            logger.info(
                f"Period {change.period_index} active from tick {change.boundary_tick} "
                f"(staking={change.staking_rate}/tick, others={change.others_rate}/tick)"
            )
            self.events.emit(change)
        return self._state

    def revoke(self, settlement: Settlement) -> None:
        """Burn back the staking mint of a settlement that is being dropped."""
        record = settlement.staking_record
        if record is None or not record.accepted:
            return
        ok, msg = self.issuer.burn(record.recipient, record.amount)
        if not ok:
            logger.error(
                f"Could not burn back {record.amount} minted to {record.recipient}: {msg}"
            )

    def _mint(
        self, stream: str, recipient: str, amount: int, tick: int,
    ) -> Optional[IssuanceRecord]:
        if amount <= 0:
            return None
        if self.issuer is None:
            ok, msg = False, "No issuer configured"
        else:
            ok, msg = self.issuer.mint(recipient, amount)
        return IssuanceRecord(
            stream=stream,
            recipient=recipient,
            amount=amount,
            accepted=ok,
            message=msg,
            tick=tick,
        )

    def _record(self, record: IssuanceRecord) -> None:
        if record.accepted:
            if record.stream == "staking":
                self.total_issued += record.amount
            else:
                self.total_others_issued += record.amount
        else:
            self.refused_issuance += record.amount
            logger.warning(
                f"Issuance of {record.amount} ({record.stream}) to {record.recipient} "
                f"refused: {record.message}"
            )
        self.events.emit(record)
