"""
Fungible token ledger and the collaborator interfaces the engine uses.

The engine itself never moves tokens.  It talks to two collaborators:

  - ``StakeCustody`` — pulls deposits in (``transfer_from``) and pays
    withdrawals out (``transfer``) of the engine's custody account
  - ``RewardIssuer`` — mints newly issued reward tokens, and may refuse
    (e.g. the supply cap is reached); burns back a mint the engine drops

Both report ``(ok, message)`` instead of raising.

``TokenLedger`` is an in-memory implementation with balances,
allowances, a single minter and an optional supply cap.
``TokenAccount`` binds one address of a ledger and satisfies both
interfaces, so a node can run the engine against a real ledger without
any external chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

logger = logging.getLogger("stakeflow.token")


class StakeCustody(Protocol):
    address: str

    def transfer_from(self, owner: str, recipient: str, amount: int) -> tuple[bool, str]:
        ...

    def transfer(self, recipient: str, amount: int) -> tuple[bool, str]:
        ...


class RewardIssuer(Protocol):
    def mint(self, recipient: str, amount: int) -> tuple[bool, str]:
        ...

    def burn(self, holder: str, amount: int) -> tuple[bool, str]:
        ...


@dataclass
class TokenInfo:
    """Issuance metadata for a token."""
    symbol: str
    minter: str
    max_supply: int = 0     # 0 = unlimited
    outstanding: int = 0
    paused: bool = False

    @property
    def mint_headroom(self) -> int | None:
        if self.max_supply <= 0:
            return None
        return max(0, self.max_supply - self.outstanding)

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "minter": self.minter,
            "max_supply": self.max_supply,
            "outstanding": self.outstanding,
            "paused": self.paused,
        }


@dataclass
class TokenLedger:
    """Balances and allowances for a single fungible token."""
    info: TokenInfo
    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[tuple[str, str], int] = field(default_factory=dict)

    @classmethod
    def create(cls, symbol: str, minter: str, max_supply: int = 0) -> "TokenLedger":
        if max_supply < 0:
            raise ValueError("max_supply must be non-negative")
        return cls(TokenInfo(symbol=symbol, minter=minter, max_supply=max_supply))

    # ── queries ─────────────────────────────────────────────────────

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.allowances.get((owner, spender), 0)

    @property
    def total_supply(self) -> int:
        return self.info.outstanding

    # ── operations ──────────────────────────────────────────────────

    def mint(self, minter: str, recipient: str, amount: int) -> tuple[bool, str]:
        """Create *amount* new tokens for *recipient*."""
        if minter != self.info.minter:
            return False, "Not the minter"
        if self.info.paused:
            return False, "Token is paused"
        if amount <= 0:
            return False, "Amount must be positive"
        if self.info.max_supply > 0 and self.info.outstanding + amount > self.info.max_supply:
            return False, "Would exceed max supply"
        self.balances[recipient] = self.balance_of(recipient) + amount
        self.info.outstanding += amount
        return True, "Minted"

    def burn(self, account: str, amount: int) -> tuple[bool, str]:
        if amount <= 0:
            return False, "Amount must be positive"
        if self.balance_of(account) < amount:
            return False, "Insufficient balance"
        self.balances[account] -= amount
        self.info.outstanding -= amount
        return True, "Burned"

    def approve(self, owner: str, spender: str, amount: int) -> tuple[bool, str]:
        if amount < 0:
            return False, "Allowance must be non-negative"
        self.allowances[(owner, spender)] = amount
        return True, "Approved"

    def transfer(self, sender: str, recipient: str, amount: int) -> tuple[bool, str]:
        if self.info.paused:
            return False, "Token is paused"
        if amount <= 0:
            return False, "Amount must be positive"
        if self.balance_of(sender) < amount:
            return False, "Insufficient balance"
        self.balances[sender] -= amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        return True, "Transferred"

    def transfer_from(self, spender: str, owner: str,
                      recipient: str, amount: int) -> tuple[bool, str]:
        """Move *owner*'s tokens using *spender*'s allowance."""
        allowed = self.allowance(owner, spender)
        if spender != owner and allowed < amount:
            return False, "Allowance exceeded"
        ok, msg = self.transfer(owner, recipient, amount)
        if not ok:
            return ok, msg
        if spender != owner:
            self.allowances[(owner, spender)] = allowed - amount
        return True, msg

    def pause(self, caller: str, paused: bool = True) -> tuple[bool, str]:
        if caller != self.info.minter:
            return False, "Not the minter"
        self.info.paused = paused
        return True, "Paused" if paused else "Unpaused"


class TokenAccount:
    """One address of a ``TokenLedger`` acting as custody and issuer."""

    def __init__(self, ledger: TokenLedger, address: str):
        self.ledger = ledger
        self.address = address

    @property
    def balance(self) -> int:
        return self.ledger.balance_of(self.address)

    def transfer_from(self, owner: str, recipient: str, amount: int) -> tuple[bool, str]:
        ok, msg = self.ledger.transfer_from(self.address, owner, recipient, amount)
        if not ok:
            logger.info(f"transfer_from {owner} -> {recipient} ({amount}) rejected: {msg}")
        return ok, msg

    def transfer(self, recipient: str, amount: int) -> tuple[bool, str]:
        ok, msg = self.ledger.transfer(self.address, recipient, amount)
        if not ok:
            logger.info(f"transfer {self.address} -> {recipient} ({amount}) rejected: {msg}")
        return ok, msg

    def mint(self, recipient: str, amount: int) -> tuple[bool, str]:
        return self.ledger.mint(self.address, recipient, amount)

    def burn(self, holder: str, amount: int) -> tuple[bool, str]:
        if holder != self.address:
            return False, "Can only burn own balance"
        return self.ledger.burn(holder, amount)
