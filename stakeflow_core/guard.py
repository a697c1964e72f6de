"""
Non-reentrant execution guard.

Every state-mutating engine entry point runs inside the guard.  External
calls (token transfers, reward minting) happen mid-operation; if one of
them calls back into the engine, the nested call fails immediately with
``ReentrancyError`` instead of running against stale in-flight state.

Usage:
    guard = ReentrancyGuard()
    with guard:
        ...

    class Engine:
        def __init__(self):
            self._guard = ReentrancyGuard()

        @nonreentrant
        def deposit(self, ...): ...
"""

from __future__ import annotations

import functools
from typing import Any, Callable, TypeVar

from stakeflow_core.errors import ReentrancyError

F = TypeVar("F", bound=Callable[..., Any])


class ReentrancyGuard:
    """Busy flag released on every exit path."""

    __slots__ = ("_busy", "_holder")

    def __init__(self) -> None:
        self._busy = False
        self._holder = ""

    @property
    def busy(self) -> bool:
        return self._busy

    def acquire(self, holder: str = "") -> None:
        if self._busy:
            raise ReentrancyError(
                f"Re-entrant call{f' to {holder}' if holder else ''} "
                f"while {self._holder or 'another operation'} is running"
            )
        self._busy = True
        self._holder = holder

    def release(self) -> None:
        self._busy = False
        self._holder = ""

    def __enter__(self) -> "ReentrancyGuard":
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()


def nonreentrant(method: F) -> F:
    """Run *method* under ``self._guard``."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        guard: ReentrancyGuard = self._guard
        guard.acquire(method.__name__)
        try:
            return method(self, *args, **kwargs)
        finally:
            guard.release()

    return wrapper  # type: ignore[return-value]
