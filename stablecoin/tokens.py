"""
tokens.py - In-Memory Token Ledger

Reference implementation of the token capability the engine consumes for the
backing asset and the synthetic token.

The TokenLedger is a multi-token double-entry book:
    - Every balance change is a Transfer between two wallets
    - Minting is a Transfer out of SYSTEM_WALLET, burning a Transfer into it,
      so the sum of all balances of a token (system wallet included) is zero
    - Every applied Transfer is appended to an immutable audit log
    - checkpoint()/rollback() restore balances, allowances and the log, which
      is how a failed engine operation undoes token effects

A Token is a thin handle binding one symbol of the book to the
TokenCapability interface.
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from .core import SYSTEM_WALLET, format_usd


# ============================================================================
# EXCEPTIONS
# ============================================================================

class TokenError(Exception):
    """Base exception for token ledger failures."""
    pass


class TokenNotRegistered(TokenError):
    """Raised when operating on a symbol that was never registered."""
    pass


class InsufficientBalance(TokenError):
    """Raised when a transfer or burn exceeds the holder's balance."""
    pass


class InsufficientAllowance(TokenError):
    """Raised when transfer_from exceeds the spender's allowance."""
    pass


class NotMinter(TokenError):
    """Raised when someone other than the registered minter mints or burns."""
    pass


class ZeroAmount(TokenError):
    """Raised when minting or burning zero or a negative amount."""
    pass


class ZeroAddress(TokenError):
    """Raised when minting to an empty recipient."""
    pass


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class TokenSpec:
    """
    Definition of a token registered in the book.

    Attributes:
        symbol: Short identifier (e.g. "WETH", "USDX")
        name: Human-readable name
        decimals: Display decimals of the smallest unit
        minter: Only identity allowed to mint and burn; None lets anyone mint
                (a faucet-style test asset) and any holder burn their own balance.
    """
    symbol: str
    name: str
    decimals: int = 18
    minter: Optional[str] = None

    def __post_init__(self):
        if not self.symbol or not self.symbol.strip():
            raise ValueError("Token symbol cannot be empty")


@dataclass(frozen=True, slots=True)
class Transfer:
    """
    A single balance movement between two wallets.

    Attributes:
        quantity: Amount in smallest units (positive int)
        symbol: Token being moved
        source: Wallet debited
        dest: Wallet credited
        memo: What produced the transfer ("transfer", "mint", "burn", ...)
    """
    quantity: int
    symbol: str
    source: str
    dest: str
    memo: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Transfer source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Transfer dest cannot be empty")
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool):
            raise ValueError(f"Transfer quantity must be int, got {type(self.quantity)}")
        if self.quantity <= 0:
            raise ValueError(f"Transfer quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Transfer({self.quantity} {self.symbol}: {self.source}→{self.dest} [{self.memo}])"


@dataclass(frozen=True, slots=True)
class TokenCheckpoint:
    """Opaque restore point produced by TokenLedger.checkpoint()."""
    balances: Tuple[Tuple[Tuple[str, str], int], ...]
    allowances: Tuple[Tuple[Tuple[str, str, str], int], ...]
    log_length: int


# ============================================================================
# TOKEN LEDGER
# ============================================================================

class TokenLedger:
    """
    Multi-token double-entry book with allowances and an audit log.

    Thread Safety:
        Not thread-safe. Operations are applied one at a time.

    Example:
        book = TokenLedger("chain")
        weth = book.register_token(TokenSpec("WETH", "Wrapped Ether"))
        weth.mint("faucet", "alice", 10 * 10**18)
        weth.approve("alice", "engine", 10 * 10**18)
    """

    def __init__(self, name: str, verbose: bool = True):
        """
        Create an empty token book.

        Args:
            name: Book identifier (shown in verbose output)
            verbose: Print a line for every applied or rejected transfer
        """
        self.name = name
        self.verbose = verbose
        self.tokens: Dict[str, TokenSpec] = {}
        self._balances: Dict[Tuple[str, str], int] = defaultdict(int)
        self._allowances: Dict[Tuple[str, str, str], int] = defaultdict(int)
        self.transaction_log: List[Transfer] = []

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def register_token(self, spec: TokenSpec) -> Token:
        """
        Register a token and return a capability handle for it.

        Raises:
            ValueError: If the symbol is already registered
        """
        if spec.symbol in self.tokens:
            raise ValueError(f"Token {spec.symbol} already registered")
        self.tokens[spec.symbol] = spec
        if self.verbose:
            minter = f", minter={spec.minter}" if spec.minter else ""
            print(f"Registered token: {spec.symbol} ({spec.name}){minter}")
        return Token(self, spec.symbol)

    def token(self, symbol: str) -> Token:
        """Return a handle for an already-registered token."""
        self._require_token(symbol)
        return Token(self, symbol)

    def set_minter(self, symbol: str, minter: Optional[str]) -> None:
        """Hand minting rights to a new identity (e.g. a freshly deployed engine)."""
        spec = self._require_token(symbol)
        self.tokens[symbol] = TokenSpec(spec.symbol, spec.name, spec.decimals, minter)

    # ========================================================================
    # READ-ONLY QUERIES
    # ========================================================================

    def balance_of(self, account: str, symbol: str) -> int:
        self._require_token(symbol)
        return self._balances.get((account, symbol), 0)

    def allowance(self, owner: str, spender: str, symbol: str) -> int:
        self._require_token(symbol)
        return self._allowances.get((owner, spender, symbol), 0)

    def total_supply(self, symbol: str) -> int:
        """Circulating supply: everything issued out of SYSTEM_WALLET and not burned back."""
        self._require_token(symbol)
        return -self._balances.get((SYSTEM_WALLET, symbol), 0)

    def holders(self, symbol: str) -> Dict[str, int]:
        """Return all non-zero, non-system balances for a token."""
        self._require_token(symbol)
        return {
            account: qty
            for (account, sym), qty in sorted(self._balances.items())
            if sym == symbol and account != SYSTEM_WALLET and qty != 0
        }

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that every token's balances (system wallet included) sum to zero.

        Returns:
            Dict with keys:
            - 'valid': bool - True if every token conserves
            - 'supplies': Dict[str, int] - circulating supply per token
            - 'discrepancies': List[Dict] - tokens whose sum is non-zero
        """
        supplies = {}
        discrepancies = []
        for symbol in sorted(self.tokens):
            net = sum(qty for (_, sym), qty in self._balances.items() if sym == symbol)
            supplies[symbol] = self.total_supply(symbol)
            if net != 0:
                discrepancies.append({'token': symbol, 'net': net})
        return {
            'valid': not discrepancies,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # MUTATING OPERATIONS
    # ========================================================================

    def approve(self, owner: str, spender: str, symbol: str, amount: int) -> bool:
        """Set spender's allowance over owner's balance (overwrites, like ERC-20)."""
        self._require_token(symbol)
        if amount < 0:
            raise ValueError(f"Allowance cannot be negative, got {amount}")
        self._allowances[(owner, spender, symbol)] = amount
        return True

    def transfer(self, sender: str, to: str, symbol: str, amount: int) -> bool:
        """
        Move amount of symbol from sender to to.

        Raises:
            InsufficientBalance: If sender holds less than amount
        """
        self._require_token(symbol)
        self._apply(Transfer(amount, symbol, sender, to, "transfer"))
        return True

    def transfer_from(self, spender: str, owner: str, to: str, symbol: str, amount: int) -> bool:
        """
        Move amount of owner's symbol to `to`, consuming spender's allowance.

        Raises:
            InsufficientAllowance: If the allowance is below amount
            InsufficientBalance: If owner holds less than amount
        """
        self._require_token(symbol)
        key = (owner, spender, symbol)
        allowed = self._allowances.get(key, 0)
        if allowed < amount:
            self._reject(f"{spender} allowance {allowed} < {amount} {symbol} from {owner}")
            raise InsufficientAllowance(
                f"{spender} may spend {allowed} {symbol} of {owner}, requested {amount}"
            )
        self._apply(Transfer(amount, symbol, owner, to, "transfer_from"))
        self._allowances[key] = allowed - amount
        return True

    def mint(self, minter: str, to: str, symbol: str, amount: int) -> bool:
        """
        Issue new tokens to `to`.

        Raises:
            NotMinter: If the token has a minter and it is not `minter`
            ZeroAddress: If `to` is empty
            ZeroAmount: If amount is not positive
        """
        spec = self._require_token(symbol)
        if spec.minter is not None and minter != spec.minter:
            raise NotMinter(f"{minter} is not the minter of {symbol}")
        if not to or not to.strip():
            raise ZeroAddress(f"cannot mint {symbol} to an empty address")
        if amount <= 0:
            raise ZeroAmount(f"mint amount must be more than zero, got {amount}")
        self._apply(Transfer(amount, symbol, SYSTEM_WALLET, to, "mint"))
        return True

    def burn(self, holder: str, symbol: str, amount: int) -> None:
        """
        Destroy amount of holder's tokens.

        Raises:
            NotMinter: If the token has a minter and it is not `holder`
            ZeroAmount: If amount is not positive
            InsufficientBalance: If the burn amount exceeds the balance
        """
        spec = self._require_token(symbol)
        if spec.minter is not None and holder != spec.minter:
            raise NotMinter(f"{holder} is not the minter of {symbol}")
        if amount <= 0:
            raise ZeroAmount(f"burn amount must be more than zero, got {amount}")
        self._apply(Transfer(amount, symbol, holder, SYSTEM_WALLET, "burn"))

    # ========================================================================
    # CHECKPOINTS
    # ========================================================================

    def checkpoint(self) -> TokenCheckpoint:
        """Capture balances, allowances and log position for a later rollback()."""
        return TokenCheckpoint(
            balances=tuple(self._balances.items()),
            allowances=tuple(self._allowances.items()),
            log_length=len(self.transaction_log),
        )

    def rollback(self, checkpoint: TokenCheckpoint) -> None:
        """Restore the book to a checkpoint, discarding every later transfer."""
        self._balances = defaultdict(int, checkpoint.balances)
        self._allowances = defaultdict(int, checkpoint.allowances)
        del self.transaction_log[checkpoint.log_length:]

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _require_token(self, symbol: str) -> TokenSpec:
        spec = self.tokens.get(symbol)
        if spec is None:
            raise TokenNotRegistered(f"Token {symbol} not registered")
        return spec

    def _apply(self, transfer: Transfer) -> None:
        """
        Validate and apply a single transfer.

        SYSTEM_WALLET is exempt from the balance check; every other wallet
        must hold at least the transferred quantity.
        """
        src_key = (transfer.source, transfer.symbol)
        current = self._balances.get(src_key, 0)
        if transfer.source != SYSTEM_WALLET and current < transfer.quantity:
            self._reject(f"{transfer!r}: balance {current}")
            raise InsufficientBalance(
                f"{transfer.source} holds {current} {transfer.symbol}, needs {transfer.quantity}"
            )
        self._balances[src_key] = current - transfer.quantity
        self._balances[(transfer.dest, transfer.symbol)] += transfer.quantity
        self.transaction_log.append(transfer)
        if self.verbose:
            print(f"✓ {self.name}: {transfer.memo} {format_usd(transfer.quantity)} {transfer.symbol} "
                  f"{transfer.source} → {transfer.dest}")

    def _reject(self, reason: str) -> None:
        if self.verbose:
            print(f"✗ {self.name}: REJECTED {reason}")


class Token:
    """
    TokenCapability handle bound to one symbol of a TokenLedger.

    Subclass and override a method to model a hostile or faulty token.
    """

    def __init__(self, book: TokenLedger, symbol: str):
        self.book = book
        self.symbol = symbol

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        return self.book.transfer(sender, to, self.symbol, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        return self.book.transfer_from(spender, owner, to, self.symbol, amount)

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        return self.book.approve(owner, spender, self.symbol, amount)

    def mint(self, minter: str, to: str, amount: int) -> bool:
        return self.book.mint(minter, to, self.symbol, amount)

    def burn(self, holder: str, amount: int) -> None:
        self.book.burn(holder, self.symbol, amount)

    def balance_of(self, account: str) -> int:
        return self.book.balance_of(account, self.symbol)

    def allowance(self, owner: str, spender: str) -> int:
        return self.book.allowance(owner, spender, self.symbol)

    def total_supply(self) -> int:
        return self.book.total_supply(self.symbol)

    def checkpoint(self) -> TokenCheckpoint:
        return self.book.checkpoint()

    def rollback(self, checkpoint: TokenCheckpoint) -> None:
        self.book.rollback(checkpoint)

    def __repr__(self) -> str:
        return f"Token({self.symbol} @ {self.book.name})"
