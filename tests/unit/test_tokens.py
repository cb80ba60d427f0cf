"""
test_tokens.py - Unit tests for tokens.py

Tests:
- Faucet vs minter-restricted tokens
- transfer / approve / transfer_from semantics
- Conservation through SYSTEM_WALLET
- checkpoint() / rollback()
"""

import pytest

from stablecoin import (
    SYSTEM_WALLET,
    InsufficientAllowance, InsufficientBalance, NotMinter, Token, TokenCapability,
    TokenLedger, TokenNotRegistered, TokenSpec, Transfer, ZeroAddress, ZeroAmount,
)


@pytest.fixture
def book():
    book = TokenLedger("test", verbose=False)
    book.register_token(TokenSpec("WETH", "Wrapped Ether"))
    book.register_token(TokenSpec("USDX", "Synthetic Dollar", minter="engine"))
    return book


@pytest.fixture
def weth(book):
    return book.token("WETH")


@pytest.fixture
def usdx(book):
    return book.token("USDX")


class TestRegistration:

    def test_handle_satisfies_capability(self, weth):
        assert isinstance(weth, TokenCapability)

    def test_duplicate_symbol_rejected(self, book):
        with pytest.raises(ValueError):
            book.register_token(TokenSpec("WETH", "Again"))

    def test_unknown_symbol(self, book):
        with pytest.raises(TokenNotRegistered):
            book.balance_of("alice", "DAI")

    def test_empty_symbol_rejected(self):
        with pytest.raises(ValueError):
            TokenSpec("", "Nothing")


class TestMintBurn:

    def test_faucet_mint_by_anyone(self, weth):
        assert weth.mint("anyone", "alice", 100)
        assert weth.balance_of("alice") == 100
        assert weth.total_supply() == 100

    def test_restricted_mint(self, usdx):
        with pytest.raises(NotMinter):
            usdx.mint("mallory", "mallory", 100)
        assert usdx.mint("engine", "alice", 100)

    def test_mint_to_empty_address(self, usdx):
        with pytest.raises(ZeroAddress):
            usdx.mint("engine", "", 100)

    def test_mint_zero(self, usdx):
        with pytest.raises(ZeroAmount):
            usdx.mint("engine", "alice", 0)

    def test_burn_by_minter(self, usdx):
        usdx.mint("engine", "engine", 100)
        usdx.burn("engine", 40)
        assert usdx.balance_of("engine") == 60
        assert usdx.total_supply() == 60

    def test_burn_by_non_minter_rejected(self, usdx):
        usdx.mint("engine", "alice", 100)
        with pytest.raises(NotMinter):
            usdx.burn("alice", 10)

    def test_burn_more_than_balance(self, usdx):
        usdx.mint("engine", "engine", 10)
        with pytest.raises(InsufficientBalance):
            usdx.burn("engine", 11)

    def test_faucet_holder_burns_own_balance(self, weth):
        weth.mint("faucet", "alice", 10)
        weth.burn("alice", 10)
        assert weth.total_supply() == 0


class TestTransfers:

    def test_transfer(self, weth):
        weth.mint("faucet", "alice", 100)
        weth.transfer("alice", "bob", 30)
        assert weth.balance_of("alice") == 70
        assert weth.balance_of("bob") == 30

    def test_transfer_overdraft(self, weth):
        weth.mint("faucet", "alice", 10)
        with pytest.raises(InsufficientBalance):
            weth.transfer("alice", "bob", 11)
        assert weth.balance_of("alice") == 10

    def test_transfer_from_consumes_allowance(self, weth):
        weth.mint("faucet", "alice", 100)
        weth.approve("alice", "engine", 60)
        weth.transfer_from("engine", "alice", "engine", 50)
        assert weth.balance_of("engine") == 50
        assert weth.allowance("alice", "engine") == 10

    def test_transfer_from_without_allowance(self, weth):
        weth.mint("faucet", "alice", 100)
        with pytest.raises(InsufficientAllowance):
            weth.transfer_from("engine", "alice", "engine", 1)

    def test_transfer_from_failed_balance_keeps_allowance(self, weth):
        weth.mint("faucet", "alice", 5)
        weth.approve("alice", "engine", 60)
        with pytest.raises(InsufficientBalance):
            weth.transfer_from("engine", "alice", "engine", 50)
        assert weth.allowance("alice", "engine") == 60

    def test_negative_allowance_rejected(self, weth):
        with pytest.raises(ValueError):
            weth.approve("alice", "engine", -1)

    def test_transfer_record_validation(self):
        with pytest.raises(ValueError):
            Transfer(0, "WETH", "a", "b", "transfer")
        with pytest.raises(ValueError):
            Transfer(1, "WETH", "a", "a", "transfer")
        with pytest.raises(ValueError):
            Transfer(True, "WETH", "a", "b", "transfer")


class TestConservationAndCheckpoints:

    def test_system_wallet_balances_supply(self, book, weth, usdx):
        weth.mint("faucet", "alice", 100)
        usdx.mint("engine", "bob", 7)
        weth.transfer("alice", "carol", 40)
        result = book.verify_conservation()
        assert result['valid']
        assert result['supplies'] == {'USDX': 7, 'WETH': 100}
        assert book.balance_of(SYSTEM_WALLET, "WETH") == -100

    def test_holders_excludes_system(self, book, weth):
        weth.mint("faucet", "alice", 100)
        assert book.holders("WETH") == {"alice": 100}

    def test_rollback_restores_everything(self, book, weth):
        weth.mint("faucet", "alice", 100)
        weth.approve("alice", "engine", 100)
        cp = weth.checkpoint()
        weth.transfer_from("engine", "alice", "bob", 60)
        weth.mint("faucet", "carol", 5)
        weth.rollback(cp)
        assert weth.balance_of("alice") == 100
        assert weth.balance_of("bob") == 0
        assert weth.balance_of("carol") == 0
        assert weth.allowance("alice", "engine") == 100
        assert len(book.transaction_log) == 1

    def test_log_records_memos(self, book, weth):
        weth.mint("faucet", "alice", 100)
        weth.transfer("alice", "bob", 1)
        assert [t.memo for t in book.transaction_log] == ["mint", "transfer"]

    def test_set_minter(self, book):
        book.set_minter("USDX", "engine2")
        token = Token(book, "USDX")
        with pytest.raises(NotMinter):
            token.mint("engine", "alice", 1)
        token.mint("engine2", "alice", 1)
