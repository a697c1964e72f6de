"""
StakeFlow - time-phased staking reward distribution.

Key features:
- Shared staking pool with a reward-per-share accumulator
- Multi-period emission schedule that halts after the last period
- Retroactive catch-up across any number of skipped period boundaries
- Reward-debt bookkeeping with auto-compounding of pending rewards
- Non-reentrant, all-or-nothing command surface
- Read-only reward preview identical to a real refresh
"""

__version__ = "1.0.0"
__all__ = [
    "precision",
    "errors",
    "schedule",
    "ticks",
    "events",
    "pool",
    "preview",
    "guard",
    "staking",
    "token",
    "invariants",
    "config",
    "logging_config",
    "api",
]
