"""
Core types and pure functions for the stablecoin engine.

This module provides the foundational pieces every other module builds on:
1. Constants: fixed-point scales, health-factor bounds, time windows
2. Fixed-point helpers: ceiling division and human-readable formatting
3. Error taxonomy: ErrorKind tags and the StablecoinError exception hierarchy
4. Immutable records: Position, PriceQuote, ParameterChange, EngineEvent,
   Operation, OperationResult
5. Protocols: TokenCapability, PriceFeed and EngineView

All amounts are Python ints in smallest units. No float enters the core;
Decimal is only used to render human-readable amounts.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Protocol, Tuple, runtime_checkable


# ============================================================================
# CONSTANTS
# ============================================================================

# 18-decimal fixed point used for USD values, debt and health factors.
PRECISION = 10 ** 18

# Oracle prices carry 8 decimals; multiplying by this brings them to 18.
FEED_PRECISION = 10 ** 8
ADDITIONAL_FEED_PRECISION = 10 ** 10

# Percent-denominated parameters (threshold, bonus) divide by this.
LIQUIDATION_PRECISION = 100

# Basis points: 10_000 == 100%.
BPS_PRECISION = 10_000

MIN_HEALTH_FACTOR = PRECISION
# Sentinel for accounts with no debt.
MAX_HEALTH_FACTOR = 2 ** 256 - 1

# Reserved wallet for token issuance and redemption.
# The system wallet is exempt from balance validation and can hold any balance.
SYSTEM_WALLET = "system"

# Identity under which the engine holds collateral and mints synthetic tokens.
DEFAULT_ENGINE_ADDRESS = "engine"

ORACLE_TIMEOUT = timedelta(hours=3)
PARAMETER_COOLDOWN = timedelta(days=15)


# ============================================================================
# FIXED-POINT HELPERS
# ============================================================================

def ceil_div(numerator: int, denominator: int) -> int:
    """Integer division rounding towards positive infinity (positive denominators)."""
    return -(-numerator // denominator)


def format_usd(value: int) -> str:
    """Render an 18-decimal amount as a human-readable string, e.g. '4,990.00'."""
    return f"{Decimal(value) / Decimal(PRECISION):,.2f}"


def format_health_factor(health_factor: int) -> str:
    """Render an 18-decimal health factor; the no-debt sentinel renders as 'MAX'."""
    if health_factor == MAX_HEALTH_FACTOR:
        return "MAX"
    return f"{Decimal(health_factor) / Decimal(PRECISION):.4f}"


# ============================================================================
# ENUMS
# ============================================================================

class ErrorCategory(Enum):
    """
    Failure taxonomy.

    INPUT: rejected before any state change, retry with corrected input.
    INVARIANT: the request would break a protocol rule, adjust and retry.
    EXTERNAL: a collaborator (oracle, token) failed, not locally recoverable.
    SYSTEMIC: the protocol cannot honour the request (insurance exhausted).
    """
    INPUT = "input"
    INVARIANT = "invariant"
    EXTERNAL = "external"
    SYSTEMIC = "systemic"


class ErrorKind(Enum):
    """Tag carried by every StablecoinError and every rejected OperationResult."""
    NEEDS_MORE_THAN_ZERO = "needs_more_than_zero"
    INVALID_ADDRESS = "invalid_address"
    UNAUTHORIZED = "unauthorized"
    INVALID_PARAMETER = "invalid_parameter"
    CHANGE_EXCEEDS_MAXIMUM = "change_exceeds_maximum"
    COOLDOWN_NOT_ELAPSED = "cooldown_not_elapsed"
    INSUFFICIENT_COLLATERAL = "insufficient_collateral"
    INSUFFICIENT_DEBT = "insufficient_debt"
    BREAKS_HEALTH_FACTOR = "breaks_health_factor"
    HEALTH_FACTOR_OK = "health_factor_ok"
    HEALTH_FACTOR_STILL_BROKEN = "health_factor_still_broken"
    REENTRANCY_DETECTED = "reentrancy_detected"
    STALE_PRICE = "stale_price"
    INVALID_PRICE = "invalid_price"
    TRANSFER_FAILED = "transfer_failed"
    MINT_FAILED = "mint_failed"
    BURN_FAILED = "burn_failed"
    INSUFFICIENT_INSURANCE_FUNDS = "insufficient_insurance_funds"

    @property
    def category(self) -> ErrorCategory:
        return _ERROR_CATEGORIES[self]


_ERROR_CATEGORIES = {
    ErrorKind.NEEDS_MORE_THAN_ZERO: ErrorCategory.INPUT,
    ErrorKind.INVALID_ADDRESS: ErrorCategory.INPUT,
    ErrorKind.UNAUTHORIZED: ErrorCategory.INPUT,
    ErrorKind.INVALID_PARAMETER: ErrorCategory.INPUT,
    ErrorKind.CHANGE_EXCEEDS_MAXIMUM: ErrorCategory.INVARIANT,
    ErrorKind.COOLDOWN_NOT_ELAPSED: ErrorCategory.INVARIANT,
    ErrorKind.INSUFFICIENT_COLLATERAL: ErrorCategory.INVARIANT,
    ErrorKind.INSUFFICIENT_DEBT: ErrorCategory.INVARIANT,
    ErrorKind.BREAKS_HEALTH_FACTOR: ErrorCategory.INVARIANT,
    ErrorKind.HEALTH_FACTOR_OK: ErrorCategory.INVARIANT,
    ErrorKind.HEALTH_FACTOR_STILL_BROKEN: ErrorCategory.INVARIANT,
    ErrorKind.REENTRANCY_DETECTED: ErrorCategory.INVARIANT,
    ErrorKind.STALE_PRICE: ErrorCategory.EXTERNAL,
    ErrorKind.INVALID_PRICE: ErrorCategory.EXTERNAL,
    ErrorKind.TRANSFER_FAILED: ErrorCategory.EXTERNAL,
    ErrorKind.MINT_FAILED: ErrorCategory.EXTERNAL,
    ErrorKind.BURN_FAILED: ErrorCategory.EXTERNAL,
    ErrorKind.INSUFFICIENT_INSURANCE_FUNDS: ErrorCategory.SYSTEMIC,
}


class ExecuteResult(Enum):
    """
    Outcome of an Engine.execute() call.

    APPLIED: The operation ran to completion and its effects are visible.
    REJECTED: The operation failed; no effect of it is observable.
    """
    APPLIED = "applied"
    REJECTED = "rejected"


class EventType(Enum):
    """Kinds of records appended to the engine's audit trail."""
    COLLATERAL_DEPOSITED = "collateral_deposited"
    COLLATERAL_REDEEMED = "collateral_redeemed"
    DEBT_MINTED = "debt_minted"
    DEBT_BURNED = "debt_burned"
    INSURANCE_ACCRUED = "insurance_accrued"
    INSURANCE_DRAWN = "insurance_drawn"
    LIQUIDATED = "liquidated"
    PARAMETER_UPDATED = "parameter_updated"
    GOVERNANCE_TRANSFERRED = "governance_transferred"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class StablecoinError(Exception):
    """Base exception for all engine-level failures. Subclasses set `kind`."""
    kind: Optional[ErrorKind] = None


class NeedsMoreThanZero(StablecoinError):
    """Raised when an amount argument is zero or negative."""
    kind = ErrorKind.NEEDS_MORE_THAN_ZERO


class InvalidAddress(StablecoinError):
    """Raised when an account identity is empty or otherwise unusable."""
    kind = ErrorKind.INVALID_ADDRESS


class Unauthorized(StablecoinError):
    """Raised when a governance-gated operation is called by anyone but the controller."""
    kind = ErrorKind.UNAUTHORIZED


class InvalidParameter(StablecoinError):
    """Raised when a parameter value falls outside its allowed range."""
    kind = ErrorKind.INVALID_PARAMETER


class ChangeExceedsMaximum(StablecoinError):
    """Raised when a parameter update moves further than its max delta."""
    kind = ErrorKind.CHANGE_EXCEEDS_MAXIMUM


class CooldownNotElapsed(StablecoinError):
    """Raised when a parameter is updated again inside its cooldown window."""
    kind = ErrorKind.COOLDOWN_NOT_ELAPSED


class InsufficientCollateral(StablecoinError):
    """Raised when a withdrawal exceeds the account's deposited collateral."""
    kind = ErrorKind.INSUFFICIENT_COLLATERAL


class InsufficientDebt(StablecoinError):
    """Raised when a repayment exceeds the account's outstanding debt."""
    kind = ErrorKind.INSUFFICIENT_DEBT


class BreaksHealthFactor(StablecoinError):
    """Raised when an operation would leave the caller below the minimum health factor."""
    kind = ErrorKind.BREAKS_HEALTH_FACTOR

    def __init__(self, health_factor: int):
        super().__init__(
            f"health factor {format_health_factor(health_factor)} below minimum "
            f"{format_health_factor(MIN_HEALTH_FACTOR)}"
        )
        self.health_factor = health_factor


class HealthFactorOk(StablecoinError):
    """Raised when liquidating an account that is not under-collateralized."""
    kind = ErrorKind.HEALTH_FACTOR_OK


class HealthFactorStillBroken(StablecoinError):
    """Raised when a liquidation fails to restore the account's health factor."""
    kind = ErrorKind.HEALTH_FACTOR_STILL_BROKEN

    def __init__(self, health_factor: int):
        super().__init__(
            f"health factor {format_health_factor(health_factor)} not restored by liquidation"
        )
        self.health_factor = health_factor


class ReentrancyDetected(StablecoinError):
    """Raised when a mutating operation is entered while another is in progress."""
    kind = ErrorKind.REENTRANCY_DETECTED


class StalePrice(StablecoinError):
    """Raised when the oracle's last update is older than the staleness window."""
    kind = ErrorKind.STALE_PRICE


class InvalidPrice(StablecoinError):
    """Raised when the oracle reports a non-positive price."""
    kind = ErrorKind.INVALID_PRICE


class TransferFailed(StablecoinError):
    """Raised when a token transfer or transfer_from fails."""
    kind = ErrorKind.TRANSFER_FAILED


class MintFailed(StablecoinError):
    """Raised when the synthetic token refuses to mint."""
    kind = ErrorKind.MINT_FAILED


class BurnFailed(StablecoinError):
    """Raised when the synthetic token refuses to burn."""
    kind = ErrorKind.BURN_FAILED


class InsufficientInsuranceFunds(StablecoinError):
    """Raised when the insurance fund cannot cover a bad-debt shortfall in full."""
    kind = ErrorKind.INSUFFICIENT_INSURANCE_FUNDS

    def __init__(self, shortfall: int, available: int):
        super().__init__(
            f"shortfall {format_usd(shortfall)} exceeds insurance fund {format_usd(available)}"
        )
        self.shortfall = shortfall
        self.available = available


# ============================================================================
# IMMUTABLE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Position:
    """
    Snapshot of one account's collateral and debt.

    Attributes:
        collateral_deposited: Backing-asset units held by the engine for the account.
        debt_minted: Synthetic-token units the account owes (net of mint fees).
    """
    collateral_deposited: int = 0
    debt_minted: int = 0

    def __post_init__(self):
        if self.collateral_deposited < 0:
            raise ValueError(f"collateral_deposited cannot be negative, got {self.collateral_deposited}")
        if self.debt_minted < 0:
            raise ValueError(f"debt_minted cannot be negative, got {self.debt_minted}")

    @property
    def has_debt(self) -> bool:
        return self.debt_minted > 0


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """
    A single oracle observation.

    Attributes:
        price: USD price per whole unit of backing asset, 8 decimals.
        updated_at: When the oracle last updated the price.
    """
    price: int
    updated_at: datetime


@dataclass(frozen=True, slots=True)
class ParameterChange:
    """
    Before/after record of an accepted governance parameter update.

    Attributes:
        name: Parameter name (e.g. "liquidation_threshold")
        old_value: Value before the update
        new_value: Value after the update
        timestamp: When the update was applied (starts the cooldown window)
    """
    name: str
    old_value: int
    new_value: int
    timestamp: datetime

    @property
    def delta(self) -> int:
        return self.new_value - self.old_value


@dataclass(frozen=True, slots=True)
class EngineEvent:
    """
    One entry in the engine's audit trail.

    Attributes:
        event_type: What happened
        account: The account the event concerns
        timestamp: Engine logical time when the event was recorded
        sequence_number: Monotonic position in the event log
        data: Event-specific amounts (all ints or identities)
    """
    event_type: EventType
    account: str
    timestamp: datetime
    sequence_number: int
    data: Dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.data.items()))
        return f"EngineEvent(#{self.sequence_number} {self.event_type.value} {self.account}: {details})"


@dataclass(frozen=True, slots=True)
class Operation:
    """
    A request to run one named engine operation - represents INTENT.

    Attributes:
        name: Engine method name (e.g. "mint", "liquidate")
        caller: Identity invoking the operation
        args: Positional arguments after the caller
    """
    name: str
    caller: str
    args: Tuple[Any, ...] = ()

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Operation name cannot be empty")
        if not isinstance(self.args, tuple):
            object.__setattr__(self, 'args', tuple(self.args))

    def __repr__(self) -> str:
        rendered = ", ".join([self.caller, *(str(a) for a in self.args)])
        return f"{self.name}({rendered})"


@dataclass(frozen=True, slots=True)
class OperationResult:
    """
    Tagged outcome of Engine.execute() - represents FACT.

    Exactly one of `value` (APPLIED) or `error` (REJECTED) is meaningful.
    """
    status: ExecuteResult
    operation: Operation
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status is ExecuteResult.APPLIED


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class TokenCapability(Protocol):
    """
    Capability interface for the backing-asset and synthetic-token ledgers.

    Mutating calls either return False or raise to signal failure. The
    checkpoint/rollback pair lets the token take part in the engine's
    all-or-nothing semantics.
    """

    symbol: str

    def transfer(self, sender: str, to: str, amount: int) -> bool:
        ...

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> bool:
        ...

    def mint(self, minter: str, to: str, amount: int) -> bool:
        ...

    def burn(self, holder: str, amount: int) -> None:
        ...

    def balance_of(self, account: str) -> int:
        ...

    def total_supply(self) -> int:
        ...

    def checkpoint(self) -> Any:
        ...

    def rollback(self, checkpoint: Any) -> None:
        ...


@runtime_checkable
class PriceFeed(Protocol):
    """Read-only price source returning the latest (price, updated_at) observation."""

    decimals: int

    def latest_price(self) -> PriceQuote:
        ...


@runtime_checkable
class EngineView(Protocol):
    """
    Read-only interface to engine state.

    Functions accepting an EngineView declare their read-only intent; the
    Engine implements it alongside its mutating operations.
    """

    @property
    def current_time(self) -> datetime:
        ...

    def get_collateral_balance(self, account: str) -> int:
        ...

    def get_debt(self, account: str) -> int:
        ...

    def get_health_factor(self, account: str) -> int:
        ...

    def get_insurance_fund_balance(self) -> int:
        ...
