"""
Exception taxonomy for the staking engine.

Every caller-facing error aborts the operation before the user position
or the pool total is committed.  Refused reward issuance is deliberately
absent: it is absorbed as zero accrual and surfaced through the event
log only.
"""

from __future__ import annotations


class StakingError(Exception):
    """Base class for all engine errors."""


class InvalidAmountError(StakingError, ValueError):
    """Amount is zero, negative or not an integer number of units."""


class InsufficientBalanceError(StakingError, ValueError):
    """Withdrawal exceeds the caller's staked amount."""


class ReentrancyError(StakingError, RuntimeError):
    """A guarded entry point was invoked while another one was running."""


class TransferFailedError(StakingError):
    """The custody collaborator rejected a token transfer."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} transfer failed: {message}")
        self.operation = operation
        self.reason = message


class InvariantViolationError(StakingError):
    """Post-operation accounting check failed."""
