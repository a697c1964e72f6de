"""
Tests for the in-memory token ledger and custody account.

Covers:
  - Mint authority, supply cap and pause
  - Transfers and allowance-based transfer_from
  - TokenAccount delegation and burn-back
"""

import pytest

from stakeflow_core.token import TokenAccount, TokenInfo, TokenLedger


@pytest.fixture
def ledger():
    return TokenLedger.create("SFT", minter="minter", max_supply=1_000)


class TestTokenInfo:
    def test_unlimited_headroom(self):
        assert TokenInfo("SFT", "m").mint_headroom is None

    def test_headroom(self):
        info = TokenInfo("SFT", "m", max_supply=100, outstanding=30)
        assert info.mint_headroom == 70

    def test_to_dict(self):
        d = TokenInfo("SFT", "m", max_supply=5).to_dict()
        assert d == {"symbol": "SFT", "minter": "m", "max_supply": 5,
                     "outstanding": 0, "paused": False}


class TestMint:
    def test_mint(self, ledger):
        ok, msg = ledger.mint("minter", "alice", 400)
        assert ok and msg == "Minted"
        assert ledger.balance_of("alice") == 400
        assert ledger.total_supply == 400

    def test_non_minter(self, ledger):
        ok, msg = ledger.mint("alice", "alice", 1)
        assert not ok
        assert msg == "Not the minter"

    def test_cap(self, ledger):
        assert ledger.mint("minter", "alice", 1_000)[0]
        ok, msg = ledger.mint("minter", "alice", 1)
        assert not ok
        assert msg == "Would exceed max supply"

    def test_non_positive(self, ledger):
        assert not ledger.mint("minter", "alice", 0)[0]

    def test_negative_cap_rejected(self):
        with pytest.raises(ValueError):
            TokenLedger.create("SFT", "m", max_supply=-1)

    def test_burn(self, ledger):
        ledger.mint("minter", "alice", 100)
        assert ledger.burn("alice", 40)[0]
        assert ledger.total_supply == 60
        assert not ledger.burn("alice", 61)[0]


class TestTransfer:
    def test_transfer(self, ledger):
        ledger.mint("minter", "alice", 100)
        assert ledger.transfer("alice", "bob", 30) == (True, "Transferred")
        assert ledger.balance_of("alice") == 70
        assert ledger.balance_of("bob") == 30

    def test_insufficient(self, ledger):
        assert ledger.transfer("alice", "bob", 1) == (False, "Insufficient balance")

    def test_paused(self, ledger):
        ledger.mint("minter", "alice", 100)
        assert ledger.pause("minter")[0]
        assert ledger.transfer("alice", "bob", 1) == (False, "Token is paused")
        assert ledger.mint("minter", "alice", 1) == (False, "Token is paused")
        ledger.pause("minter", paused=False)
        assert ledger.transfer("alice", "bob", 1)[0]

    def test_only_minter_pauses(self, ledger):
        assert ledger.pause("alice") == (False, "Not the minter")

    def test_transfer_from_uses_allowance(self, ledger):
        ledger.mint("minter", "alice", 100)
        ledger.approve("alice", "pool", 60)
        assert ledger.transfer_from("pool", "alice", "pool", 50)[0]
        assert ledger.allowance("alice", "pool") == 10
        assert ledger.transfer_from("pool", "alice", "pool", 20) == (False, "Allowance exceeded")

    def test_transfer_from_failure_keeps_allowance(self, ledger):
        ledger.mint("minter", "alice", 10)
        ledger.approve("alice", "pool", 60)
        assert not ledger.transfer_from("pool", "alice", "pool", 50)[0]
        assert ledger.allowance("alice", "pool") == 60

    def test_owner_needs_no_allowance(self, ledger):
        ledger.mint("minter", "alice", 10)
        assert ledger.transfer_from("alice", "alice", "bob", 10)[0]

    def test_negative_allowance(self, ledger):
        assert not ledger.approve("alice", "pool", -1)[0]


class TestTokenAccount:
    def test_account_roles(self, ledger):
        account = TokenAccount(ledger, "minter")
        assert account.mint("minter", 100)[0]
        ledger.mint("minter", "alice", 50)
        ledger.approve("alice", "minter", 50)
        assert account.transfer_from("alice", "minter", 50)[0]
        assert account.balance == 150
        assert account.transfer("bob", 20)[0]
        assert ledger.balance_of("bob") == 20

    def test_rejection_is_logged(self, ledger, caplog):
        account = TokenAccount(ledger, "minter")
        with caplog.at_level("INFO", logger="stakeflow.token"):
            ok, _ = account.transfer("bob", 5)
        assert not ok
        assert any("rejected" in r.getMessage() for r in caplog.records)

    def test_burns_only_its_own_balance(self, ledger):
        account = TokenAccount(ledger, "minter")
        account.mint("minter", 100)
        ledger.mint("minter", "alice", 10)
        assert account.burn("minter", 40) == (True, "Burned")
        assert account.balance == 60
        assert ledger.total_supply == 70
        ok, msg = account.burn("alice", 10)
        assert not ok
        assert ledger.balance_of("alice") == 10
