"""
Event records emitted by the staking engine.

Three record types:
  - StakeEvent     — one per committed position mutation
                     (deposit / withdraw / withdraw_all / compound /
                     emergency_withdraw)
  - RateChange     — the pool crossed into the next schedule period
  - IssuanceRecord — outcome of each reward mint request

Records are appended to an ``EventLog`` which keeps a bounded history
and fans out to subscribers.  Subscriber failures are logged and never
abort the operation that produced the record.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Union

logger = logging.getLogger("stakeflow.events")


class StakeAction(Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    WITHDRAW_ALL = "withdraw_all"
    COMPOUND = "compound"
    EMERGENCY_WITHDRAW = "emergency_withdraw"


@dataclass(frozen=True)
class StakeEvent:
    """A committed change to one participant's position."""
    action: StakeAction
    user: str
    amount: int         # principal moved (0 for compound)
    pending: int        # reward realised by this operation
    staked_after: int
    tick: int

    def to_dict(self) -> dict:
        return {
            "type": "stake",
            "action": self.action.value,
            "user": self.user,
            "amount": self.amount,
            "pending": self.pending,
            "staked_after": self.staked_after,
            "tick": self.tick,
        }


@dataclass(frozen=True)
class RateChange:
    """The pool advanced into ``period_index`` at ``boundary_tick``."""
    period_index: int
    boundary_tick: int      # first tick paid at the new rates
    period_end_tick: int    # boundary of the newly active period
    staking_rate: int
    others_rate: int

    def to_dict(self) -> dict:
        return {
            "type": "rate_change",
            "period_index": self.period_index,
            "boundary_tick": self.boundary_tick,
            "period_end_tick": self.period_end_tick,
            "staking_rate": self.staking_rate,
            "others_rate": self.others_rate,
        }


@dataclass(frozen=True)
class IssuanceRecord:
    """A mint request made to the issuance authority."""
    stream: str         # "staking" or "others"
    recipient: str
    amount: int
    accepted: bool
    message: str
    tick: int

    def to_dict(self) -> dict:
        return {
            "type": "issuance",
            "stream": self.stream,
            "recipient": self.recipient,
            "amount": self.amount,
            "accepted": self.accepted,
            "message": self.message,
            "tick": self.tick,
        }


EngineEvent = Union[StakeEvent, RateChange, IssuanceRecord]
Subscriber = Callable[[EngineEvent], None]


class EventLog:
    """Bounded in-memory event history with subscriber callbacks."""

    def __init__(self, max_history: int = 10_000):
        self._history: deque[EngineEvent] = deque(maxlen=max_history)
        self._subscribers: list[Subscriber] = []
        self.total_emitted = 0

    def subscribe(self, callback: Subscriber) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, event: EngineEvent) -> None:
        self._history.append(event)
        self.total_emitted += 1
        logger.debug("event", extra={"event": event.to_dict()})
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber {callback!r} failed")

    def recent(self, limit: int = 100, kind: type | None = None) -> list[EngineEvent]:
        """Newest-last slice of the history, optionally filtered by type."""
        items = [e for e in self._history if kind is None or isinstance(e, kind)]
        if limit <= 0:
            return []
        return items[-limit:]

    def __len__(self) -> int:
        return len(self._history)
