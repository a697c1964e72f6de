"""
Post-operation invariant checks for the staking engine.

Checked after every guarded operation when the engine is built with
``check_invariants=True``:
  - The reward index never decreases
  - The period pointer never moves back and stays inside the schedule
  - ``last_update_tick`` never moves back
  - ``total_staked`` is non-negative and equals the sum of all stakes
  - No position has a negative stake or accrued reward below its debt
  - Every position touched by the operation has
    ``reward_debt == staked_amount * acc_index // ACC_PRECISION``
"""

from __future__ import annotations

from dataclasses import dataclass, field

from stakeflow_core.precision import share_of


@dataclass
class EngineSnapshot:
    """Snapshot of accounting fields before an operation."""
    acc_index: int = 0
    current_period: int = 0
    last_update_tick: int = 0
    total_staked: int = 0
    positions: dict[str, tuple[int, int]] = field(default_factory=dict)


class InvariantChecker:
    """
    Captures an engine snapshot before an operation and validates the
    accounting invariants afterwards.
    """

    def __init__(self):
        self._snapshot: EngineSnapshot | None = None

    def capture(self, engine) -> None:
        state = engine.pool.state
        snap = EngineSnapshot(
            acc_index=state.acc_index,
            current_period=state.current_period,
            last_update_tick=state.last_update_tick,
            total_staked=state.total_staked,
        )
        for user, pos in engine.positions().items():
            snap.positions[user] = (pos.staked_amount, pos.reward_debt)
        self._snapshot = snap

    def verify(self, engine) -> tuple[bool, str]:
        """Returns ``(passed, error_message)``."""
        errors: list[str] = []
        for check in (
            self._check_index_monotonic,
            self._check_period_pointer,
            self._check_last_update,
            self._check_total_staked,
            self._check_positions,
        ):
            ok, msg = check(engine)
            if not ok:
                errors.append(msg)

        self._snapshot = None
        if errors:
            return False, "; ".join(errors)
        return True, ""

    def _check_index_monotonic(self, engine) -> tuple[bool, str]:
        if self._snapshot is None:
            return True, ""
        before = self._snapshot.acc_index
        after = engine.pool.state.acc_index
        if after < before:
            return False, f"acc_index decreased: {before} -> {after}"
        return True, ""

    def _check_period_pointer(self, engine) -> tuple[bool, str]:
        state = engine.pool.state
        if state.current_period > engine.pool.schedule.last_index:
            return False, f"current_period {state.current_period} beyond schedule"
        if self._snapshot is not None and state.current_period < self._snapshot.current_period:
            return (False,
                    f"current_period moved back: {self._snapshot.current_period} "
                    f"-> {state.current_period}")
        return True, ""

    def _check_last_update(self, engine) -> tuple[bool, str]:
        if self._snapshot is None:
            return True, ""
        before = self._snapshot.last_update_tick
        after = engine.pool.state.last_update_tick
        if after < before:
            return False, f"last_update_tick moved back: {before} -> {after}"
        return True, ""

    def _check_total_staked(self, engine) -> tuple[bool, str]:
        total = engine.pool.state.total_staked
        if total < 0:
            return False, f"total_staked is negative: {total}"
        stake_sum = sum(p.staked_amount for p in engine.positions().values())
        if total != stake_sum:
            return (False,
                    f"Pool mismatch: total_staked={total} "
                    f"but sum of stakes={stake_sum}")
        return True, ""

    def _check_positions(self, engine) -> tuple[bool, str]:
        idx = engine.pool.state.acc_index
        before = self._snapshot.positions if self._snapshot is not None else {}
        for user, pos in engine.positions().items():
            if pos.staked_amount < 0:
                return False, f"Negative stake for {user}: {pos.staked_amount}"
            accrued = share_of(pos.staked_amount, idx)
            if accrued < pos.reward_debt:
                return (False,
                        f"Reward debt of {user} exceeds accrued reward: "
                        f"{pos.reward_debt} > {accrued}")
            touched = before.get(user) != (pos.staked_amount, pos.reward_debt)
            if touched and pos.reward_debt != accrued:
                return (False,
                        f"Reward debt of {user} not reset: "
                        f"{pos.reward_debt} != {accrued}")
        return True, ""
