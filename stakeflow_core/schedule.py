"""
Emission schedule for StakeFlow.

The schedule is a fixed, ordered list of periods.  Each period pays a
staking rate (spread over the pool) and an "others" rate (sent to a
single beneficiary) per tick for ``length`` ticks.  After the last
period ends, emission stops for good.

    period 0            period 1        period 2
    ├── len0 ──────────┼── len1 ───────┼── len2 ──┤ (halted)
    start              start+len0

Rates are integer units per tick; lengths are integer ticks.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator


@dataclass(frozen=True)
class SchedulePeriod:
    staking_rate: int   # units per tick shared by stakers
    others_rate: int    # units per tick for the others beneficiary
    length: int         # ticks

    def __post_init__(self) -> None:
        for name in ("staking_rate", "others_rate", "length"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an integer, got {value!r}")
        if self.staking_rate < 0 or self.others_rate < 0:
            raise ValueError("Rates must be non-negative")
        if self.length <= 0:
            raise ValueError("Period length must be positive")

    def staking_emission(self) -> int:
        return self.staking_rate * self.length

    def others_emission(self) -> int:
        return self.others_rate * self.length

    def to_dict(self) -> dict:
        return {
            "staking_rate": self.staking_rate,
            "others_rate": self.others_rate,
            "length": self.length,
        }


class ScheduleTable:
    """
    Read-only sequence of ``SchedulePeriod``.

    Built once before emission begins; there is no mutation API.
    """

    def __init__(self, periods: Iterable[SchedulePeriod]) -> None:
        self._periods: tuple[SchedulePeriod, ...] = tuple(periods)
        if not self._periods:
            raise ValueError("Schedule needs at least one period")

    @classmethod
    def from_dicts(cls, rows: Iterable[dict[str, Any]]) -> "ScheduleTable":
        """Build from ``{"staking_rate", "others_rate", "length"}`` rows."""
        periods = []
        for i, row in enumerate(rows):
            try:
                periods.append(SchedulePeriod(
                    staking_rate=row["staking_rate"],
                    others_rate=row.get("others_rate", 0),
                    length=row["length"],
                ))
            except KeyError as exc:
                raise ValueError(f"Schedule period {i} missing {exc.args[0]}") from exc
        return cls(periods)

    def __len__(self) -> int:
        return len(self._periods)

    def __getitem__(self, index: int) -> SchedulePeriod:
        return self._periods[index]

    def __iter__(self) -> Iterator[SchedulePeriod]:
        return iter(self._periods)

    @property
    def last_index(self) -> int:
        return len(self._periods) - 1

    def boundaries(self, start_tick: int) -> list[int]:
        """End tick of every period when emission starts at *start_tick*."""
        ends = []
        end = start_tick
        for period in self._periods:
            end += period.length
            ends.append(end)
        return ends

    def period_at(self, start_tick: int, tick: int) -> int:
        """Index of the period paying for *tick*; the last index once exhausted."""
        for i, end in enumerate(self.boundaries(start_tick)):
            if tick < end:
                return i
        return self.last_index

    def total_staking_emission(self) -> int:
        """Upper bound on everything ever issued to stakers."""
        return sum(p.staking_emission() for p in self._periods)

    def total_others_emission(self) -> int:
        return sum(p.others_emission() for p in self._periods)

    def to_dict(self, start_tick: int | None = None) -> dict:
        rows = []
        ends = self.boundaries(start_tick) if start_tick is not None else None
        for i, period in enumerate(self._periods):
            row = {"index": i, **period.to_dict()}
            if ends is not None:
                row["end_tick"] = ends[i]
            rows.append(row)
        return {
            "periods": rows,
            "total_staking_emission": self.total_staking_emission(),
            "total_others_emission": self.total_others_emission(),
        }
