"""
engine.py - Stateful Collateralized Debt Engine

The Engine class is the only component that mutates positions, the insurance
fund and the governance parameters. Every mutating call is an atomic
operation: it runs under a reentrancy lock, and any failure rolls back
positions, insurance fund, parameters, governance identity, event log and
token balances to where they were before the call.

Key responsibilities:
    - Implements the EngineView protocol for read-only callers
    - Deposit / redeem collateral, mint / burn synthetic tokens
    - Liquidations planned by liquidation.plan_liquidation() and re-checked
    - Governance-gated parameter updates and controller hand-over
    - Logical clock (advance_time) read by the oracle and the cooldowns
    - Always keeps the audit trail (event_log)
"""

from __future__ import annotations
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Type

from .core import (
    # Constants
    BPS_PRECISION, DEFAULT_ENGINE_ADDRESS, MAX_HEALTH_FACTOR, MIN_HEALTH_FACTOR,
    # Types
    EngineEvent, EventType, ExecuteResult, Operation, OperationResult,
    ParameterChange, Position, TokenCapability,
    # Exceptions
    BreaksHealthFactor, BurnFailed, HealthFactorStillBroken, InvalidAddress,
    MintFailed, NeedsMoreThanZero, ReentrancyDetected, StablecoinError,
    TransferFailed,
    # Helpers
    format_usd,
)
from .insurance import InsuranceFund
from .liquidation import (
    LiquidationKind, LiquidationPlan,
    calculate_health_factor, calculate_position_health_factor,
    plan_liquidation, token_amount_from_usd, usd_value,
)
from .oracle import PriceOracleAdapter
from .parameters import (
    LIQUIDATION_BONUS, LIQUIDATION_THRESHOLD, MINT_FEE, TARGET_HEALTH_FACTOR,
    ParameterSnapshot, ProtocolParameters, require_governance,
)
from .positions import PositionLedger
from .tokens import TokenError


# Operations accepted by Engine.execute(); each takes the caller first.
OPERATION_NAMES = frozenset({
    "deposit_collateral",
    "redeem_collateral",
    "mint",
    "burn",
    "deposit_collateral_and_mint",
    "burn_and_redeem_collateral",
    "liquidate",
    "update_liquidation_threshold",
    "update_liquidation_bonus",
    "update_target_health_factor",
    "update_mint_fee",
    "transfer_governance",
})


class _Snapshot:
    """Restore point captured at the start of every operation."""

    __slots__ = ("positions", "insurance_fund", "parameters", "governance",
                 "event_count", "next_sequence", "token_checkpoints")

    def __init__(self, engine: Engine):
        self.positions = engine.positions.copy()
        self.insurance_fund = engine.insurance_fund.copy()
        self.parameters = engine.parameters.copy()
        self.governance = engine._governance_controller
        self.event_count = len(engine.event_log)
        self.next_sequence = engine._next_sequence
        self.token_checkpoints: List[Tuple[TokenCapability, Any]] = [
            (token, token.checkpoint()) for token in engine.tokens
        ]


class Engine:
    """
    Over-collateralized stablecoin engine with partial liquidation and an
    insurance fund.

    Implements the EngineView protocol.

    Design Principles:
        - Atomic: an operation either completes or leaves no trace, token
          balances included.
        - Exclusive: a mutating operation entered while another is running
          fails with ReentrancyDetected.
        - Always logs: every applied operation appends EngineEvents.

    Thread Safety:
        Not thread-safe. Operations are applied one at a time in the order
        they are submitted.

    Example:
        engine = Engine(weth, usdx, PriceOracleAdapter(feed), "governor")
        weth.approve("alice", engine.engine_address, 10 * 10**18)
        engine.deposit_collateral_and_mint("alice", 10 * 10**18, 5000 * 10**18)
        engine.get_health_factor("alice")
    """

    def __init__(
        self,
        collateral_token: TokenCapability,
        synthetic_token: TokenCapability,
        oracle: PriceOracleAdapter,
        governance_controller: str,
        *,
        parameters: Optional[ProtocolParameters] = None,
        engine_address: str = DEFAULT_ENGINE_ADDRESS,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create an engine.

        Args:
            collateral_token: Backing-asset token capability
            synthetic_token: Synthetic token; engine_address must be its minter
            oracle: Staleness-checked price source for the backing asset
            governance_controller: Identity allowed to update parameters
            parameters: Initial risk parameters (default: ProtocolParameters())
            engine_address: Identity holding collateral and minting (default: "engine")
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print a line per applied/rejected operation (default: True)

        Raises:
            InvalidAddress: If governance_controller or engine_address is empty
        """
        _require_address(governance_controller, "governance controller")
        _require_address(engine_address, "engine address")
        self.collateral_token = collateral_token
        self.synthetic_token = synthetic_token
        self.oracle = oracle
        self.engine_address = engine_address
        self.parameters = parameters if parameters is not None else ProtocolParameters()
        self.positions = PositionLedger()
        self.insurance_fund = InsuranceFund()
        self.event_log: List[EngineEvent] = []
        self.verbose = verbose
        self._governance_controller = governance_controller
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self._next_sequence: int = 0
        self._locked = False

    @property
    def tokens(self) -> Tuple[TokenCapability, TokenCapability]:
        return (self.collateral_token, self.synthetic_token)

    # ========================================================================
    # EngineView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time."""
        return self._current_time

    @property
    def governance_controller(self) -> str:
        return self._governance_controller

    def get_collateral_balance(self, account: str) -> int:
        return self.positions.collateral_of(account)

    def get_debt(self, account: str) -> int:
        return self.positions.debt_of(account)

    def get_position(self, account: str) -> Position:
        return self.positions.position(account)

    def get_health_factor(self, account: str) -> int:
        """
        Health factor of an account at the current oracle price.

        Accounts without debt return MAX_HEALTH_FACTOR without consulting
        the oracle.

        Raises:
            StalePrice, InvalidPrice: If the oracle cannot be read
        """
        position = self.positions.position(account)
        if not position.has_debt:
            return MAX_HEALTH_FACTOR
        return calculate_position_health_factor(
            position, self._price(), self.parameters.liquidation_threshold,
        )

    def calculate_health_factor(self, collateral_value: int, debt: int) -> int:
        """What-if health factor for a collateral value and debt under current parameters."""
        return calculate_health_factor(collateral_value, debt, self.parameters.liquidation_threshold)

    def get_account_collateral_value(self, account: str) -> int:
        """18-decimal USD value of the account's collateral."""
        collateral = self.positions.collateral_of(account)
        if collateral == 0:
            return 0
        return usd_value(collateral, self._price())

    def get_account_information(self, account: str) -> Tuple[int, int]:
        """Return (debt, collateral value in USD) for an account."""
        return self.positions.debt_of(account), self.get_account_collateral_value(account)

    def get_usd_value(self, amount: int) -> int:
        return usd_value(amount, self._price())

    def get_token_amount_from_usd(self, usd_amount: int) -> int:
        return token_amount_from_usd(usd_amount, self._price())

    def get_parameters(self) -> ParameterSnapshot:
        return self.parameters.snapshot()

    def get_insurance_fund_balance(self) -> int:
        return self.insurance_fund.balance

    def list_accounts(self) -> List[str]:
        return self.positions.accounts()

    def total_debt(self) -> int:
        return self.positions.total_debt()

    def total_collateral(self) -> int:
        return self.positions.total_collateral()

    def preview_liquidation(self, account: str) -> LiquidationPlan:
        """
        Plan a liquidation without executing it.

        Raises:
            HealthFactorOk: If the account is not liquidatable
        """
        return plan_liquidation(
            account, self.positions.position(account), self._price(), self.parameters.snapshot(),
        )

    def verify_accounting(self) -> Dict[str, Any]:
        """
        Cross-check engine bookkeeping against token balances.

        Two identities hold when the engine is the only minter of the
        synthetic token:
            collateral held by engine == sum of deposited collateral
            synthetic supply == total debt + insurance drawn (shortfall mints)

        Returns:
            Dict with keys:
            - 'valid': bool
            - 'collateral_held', 'collateral_recorded': int
            - 'synthetic_supply', 'debt_plus_drawn': int
        """
        collateral_held = self.collateral_token.balance_of(self.engine_address)
        collateral_recorded = self.positions.total_collateral()
        synthetic_supply = self.synthetic_token.total_supply()
        debt_plus_drawn = self.positions.total_debt() + self.insurance_fund.total_drawn
        return {
            'valid': collateral_held == collateral_recorded and synthetic_supply == debt_plus_drawn,
            'collateral_held': collateral_held,
            'collateral_recorded': collateral_recorded,
            'synthetic_supply': synthetic_supply,
            'debt_plus_drawn': debt_plus_drawn,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the engine's logical clock to a new time.

        Time can only move forward, never backward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # COLLATERAL AND DEBT OPERATIONS (Mutating)
    # ========================================================================

    def deposit_collateral(self, caller: str, amount: int) -> None:
        """
        Lock `amount` of backing asset as collateral.

        The caller must have approved engine_address to spend the amount.

        Raises:
            NeedsMoreThanZero: If amount <= 0
            TransferFailed: If the backing asset cannot be pulled
        """
        with self._operation("deposit_collateral", caller, format_usd(amount)):
            self._deposit_collateral(caller, amount)

    def redeem_collateral(self, caller: str, amount: int) -> None:
        """
        Withdraw `amount` of the caller's collateral.

        Raises:
            NeedsMoreThanZero: If amount <= 0
            InsufficientCollateral: If amount exceeds the caller's collateral
            BreaksHealthFactor: If the withdrawal leaves the caller below 1.0
            TransferFailed: If the backing asset cannot be sent
        """
        with self._operation("redeem_collateral", caller, format_usd(amount)):
            self._redeem_collateral(caller, amount)

    def mint(self, caller: str, amount: int) -> int:
        """
        Borrow synthetic tokens against the caller's collateral.

        A fee of floor(amount * mint_fee_bps / 10000) goes to the insurance
        fund; the caller receives and owes the remaining net amount.

        Returns:
            Net amount minted to the caller

        Raises:
            NeedsMoreThanZero: If amount <= 0
            BreaksHealthFactor: If the new debt leaves the caller below 1.0
            MintFailed: If the synthetic token refuses to mint
        """
        with self._operation("mint", caller, format_usd(amount)):
            return self._mint(caller, amount)

    def burn(self, caller: str, amount: int) -> None:
        """
        Repay `amount` of the caller's debt with synthetic tokens.

        Raises:
            NeedsMoreThanZero: If amount <= 0
            InsufficientDebt: If amount exceeds the caller's debt
            TransferFailed: If the tokens cannot be pulled from the caller
            BurnFailed: If the synthetic token refuses to burn
        """
        with self._operation("burn", caller, format_usd(amount)):
            self._burn(caller, caller, amount)

    def deposit_collateral_and_mint(self, caller: str, collateral_amount: int, mint_amount: int) -> int:
        """Deposit then mint as one atomic operation. Returns the net amount minted."""
        with self._operation("deposit_collateral_and_mint", caller,
                             format_usd(collateral_amount), format_usd(mint_amount)):
            self._deposit_collateral(caller, collateral_amount)
            return self._mint(caller, mint_amount)

    def burn_and_redeem_collateral(self, caller: str, burn_amount: int, redeem_amount: int) -> None:
        """Burn then redeem as one atomic operation."""
        with self._operation("burn_and_redeem_collateral", caller,
                             format_usd(burn_amount), format_usd(redeem_amount)):
            self._burn(caller, caller, burn_amount)
            self._redeem_collateral(caller, redeem_amount)

    # ========================================================================
    # LIQUIDATION (Mutating)
    # ========================================================================

    def liquidate(self, caller: str, account: str) -> LiquidationPlan:
        """
        Liquidate an account whose health factor is below 1.0.

        The liquidator (caller) pays plan.debt_to_cover synthetic tokens,
        which are burned against the account's debt, and receives
        plan.collateral_to_redeem backing asset. In the bad-debt case the
        insurance fund covers the shortfall, the liquidator receives all of
        the account's collateral plus `shortfall` newly minted synthetic
        tokens, and the account's debt is cleared.

        Returns:
            The executed LiquidationPlan

        Raises:
            HealthFactorOk: If the account's health factor is >= 1.0
            InsufficientInsuranceFunds: If a bad-debt shortfall exceeds the fund
            HealthFactorStillBroken: If the account is not restored
            BreaksHealthFactor: If the liquidator ends below 1.0
            TransferFailed, BurnFailed, MintFailed: On token failure
        """
        with self._operation("liquidate", caller, account):
            _require_address(account, "account")
            price = self._price()
            plan = plan_liquidation(
                account, self.positions.position(account), price, self.parameters.snapshot(),
            )

            if plan.kind is LiquidationKind.BAD_DEBT and plan.shortfall > 0:
                remaining = self.insurance_fund.cover(plan.shortfall)
                self._emit(EventType.INSURANCE_DRAWN, account,
                           shortfall=plan.shortfall, remaining=remaining)

            self.positions.withdraw(account, plan.collateral_to_redeem)
            self._burn(caller, account, plan.debt_to_cover)
            if plan.collateral_to_redeem > 0:
                self._token_call(
                    TransferFailed, "transfer collateral",
                    self.collateral_token.transfer,
                    self.engine_address, caller, plan.collateral_to_redeem,
                )
            if plan.shortfall > 0:
                self._token_call(
                    MintFailed, "mint shortfall compensation",
                    self.synthetic_token.mint,
                    self.engine_address, caller, plan.shortfall,
                )

            ending_hf = calculate_position_health_factor(
                self.positions.position(account), price, self.parameters.liquidation_threshold,
            )
            if plan.kind is LiquidationKind.PARTIAL:
                restored = ending_hf > self.parameters.target_health_factor
            else:
                restored = ending_hf == MAX_HEALTH_FACTOR
            if not restored:
                raise HealthFactorStillBroken(ending_hf)
            self._revert_if_health_factor_is_broken(caller)

            self._emit(
                EventType.LIQUIDATED, account,
                liquidator=caller,
                kind=plan.kind.value,
                debt_covered=plan.debt_to_cover,
                collateral_redeemed=plan.collateral_to_redeem,
                shortfall=plan.shortfall,
                health_factor=ending_hf,
            )
            return plan

    # ========================================================================
    # GOVERNANCE (Mutating)
    # ========================================================================

    def update_liquidation_threshold(self, caller: str, new_value: int) -> ParameterChange:
        return self._update_parameter(caller, LIQUIDATION_THRESHOLD.name, new_value)

    def update_liquidation_bonus(self, caller: str, new_value: int) -> ParameterChange:
        return self._update_parameter(caller, LIQUIDATION_BONUS.name, new_value)

    def update_target_health_factor(self, caller: str, new_value: int) -> ParameterChange:
        return self._update_parameter(caller, TARGET_HEALTH_FACTOR.name, new_value)

    def update_mint_fee(self, caller: str, new_value: int) -> ParameterChange:
        return self._update_parameter(caller, MINT_FEE.name, new_value)

    def transfer_governance(self, caller: str, new_controller: str) -> None:
        """
        Hand the governance role to a new identity.

        Raises:
            Unauthorized: If caller is not the current controller
            InvalidAddress: If new_controller is empty
        """
        with self._operation("transfer_governance", caller, new_controller):
            require_governance(caller, self._governance_controller)
            _require_address(new_controller, "governance controller")
            previous = self._governance_controller
            self._governance_controller = new_controller
            self._emit(EventType.GOVERNANCE_TRANSFERRED, new_controller, previous=previous)

    # ========================================================================
    # RESULT-VARIANT SURFACE
    # ========================================================================

    def execute(self, operation: Operation) -> OperationResult:
        """
        Run a named operation and return a tagged result instead of raising.

        Every StablecoinError becomes a REJECTED result carrying its
        ErrorKind; the state is exactly as before the call.

        Args:
            operation: Operation(name, caller, args)

        Returns:
            OperationResult with status APPLIED (and the operation's return
            value) or REJECTED (with error kind and message)

        Raises:
            ValueError: If operation.name is not an engine operation
        """
        if operation.name not in OPERATION_NAMES:
            raise ValueError(f"Unknown operation: {operation.name}")
        handler = getattr(self, operation.name)
        try:
            value = handler(operation.caller, *operation.args)
        except StablecoinError as e:
            return OperationResult(
                ExecuteResult.REJECTED, operation, error=e.kind, message=str(e),
            )
        return OperationResult(ExecuteResult.APPLIED, operation, value=value)

    # ========================================================================
    # CLONING
    # ========================================================================

    def clone(self) -> Engine:
        """
        Create an independent copy of the engine's own state.

        Positions, insurance fund, parameters, governance identity, clock and
        event log are copied. Token capabilities and the oracle are shared,
        so a clone is meant for read-only what-if analysis (e.g. previewing
        liquidations after a parameter change).

        Returns:
            A new Engine instance with identical state
        """
        cloned = Engine.__new__(Engine)
        cloned.collateral_token = self.collateral_token
        cloned.synthetic_token = self.synthetic_token
        cloned.oracle = self.oracle
        cloned.engine_address = self.engine_address
        cloned.parameters = self.parameters.copy()
        cloned.positions = self.positions.copy()
        cloned.insurance_fund = self.insurance_fund.copy()
        cloned.event_log = list(self.event_log)
        cloned.verbose = self.verbose
        cloned._governance_controller = self._governance_controller
        cloned._current_time = self._current_time
        cloned._next_sequence = self._next_sequence
        cloned._locked = False
        return cloned

    # ========================================================================
    # INTERNALS
    # ========================================================================

    @contextmanager
    def _operation(self, name: str, caller: str, *details: str) -> Iterator[None]:
        """
        Run one mutating operation atomically under the reentrancy lock.

        A nested entry is rejected before it touches anything. Any exception
        raised inside restores the snapshot and propagates.
        """
        label = f"{name}({', '.join([str(caller), *details])})"
        if self._locked:
            if self.verbose:
                print(f"✗ REJECTED {label}: ReentrancyDetected")
            raise ReentrancyDetected(f"{name} entered while another operation is in progress")
        self._locked = True
        snapshot = _Snapshot(self)
        try:
            _require_address(caller, "caller")
            yield
        except Exception as e:
            self._restore(snapshot)
            if self.verbose:
                print(f"✗ REJECTED {label}: {type(e).__name__}: {e}")
            raise
        else:
            if self.verbose:
                print(f"✓ APPLIED {label}")
        finally:
            self._locked = False

    def _restore(self, snapshot: _Snapshot) -> None:
        for token, checkpoint in reversed(snapshot.token_checkpoints):
            token.rollback(checkpoint)
        self.positions = snapshot.positions
        self.insurance_fund = snapshot.insurance_fund
        self.parameters = snapshot.parameters
        self._governance_controller = snapshot.governance
        del self.event_log[snapshot.event_count:]
        self._next_sequence = snapshot.next_sequence

    def _deposit_collateral(self, caller: str, amount: int) -> None:
        _require_positive(amount)
        self.positions.deposit(caller, amount)
        self._emit(EventType.COLLATERAL_DEPOSITED, caller, amount=amount)
        self._token_call(
            TransferFailed, "pull collateral",
            self.collateral_token.transfer_from,
            self.engine_address, caller, self.engine_address, amount,
        )

    def _redeem_collateral(self, caller: str, amount: int) -> None:
        _require_positive(amount)
        self.positions.withdraw(caller, amount)
        self._emit(EventType.COLLATERAL_REDEEMED, caller, amount=amount)
        self._revert_if_health_factor_is_broken(caller)
        self._token_call(
            TransferFailed, "send collateral",
            self.collateral_token.transfer,
            self.engine_address, caller, amount,
        )

    def _mint(self, caller: str, amount: int) -> int:
        _require_positive(amount)
        fee = amount * self.parameters.mint_fee_bps // BPS_PRECISION
        net = amount - fee
        self.positions.record_debt(caller, net)
        self.insurance_fund.accrue(fee)
        self._emit(EventType.DEBT_MINTED, caller, amount=amount, fee=fee, net=net)
        if fee > 0:
            self._emit(EventType.INSURANCE_ACCRUED, caller, fee=fee)
        self._revert_if_health_factor_is_broken(caller)
        self._token_call(
            MintFailed, "mint synthetic",
            self.synthetic_token.mint,
            self.engine_address, caller, net,
        )
        return net

    def _burn(self, payer: str, on_behalf_of: str, amount: int) -> None:
        """Pull `amount` synthetic tokens from payer, destroy them and reduce on_behalf_of's debt."""
        _require_positive(amount)
        self.positions.record_repayment(on_behalf_of, amount)
        self._emit(EventType.DEBT_BURNED, on_behalf_of, amount=amount, payer=payer)
        self._token_call(
            TransferFailed, "pull synthetic",
            self.synthetic_token.transfer_from,
            self.engine_address, payer, self.engine_address, amount,
        )
        self._token_call(
            BurnFailed, "burn synthetic",
            self.synthetic_token.burn,
            self.engine_address, amount,
        )

    def _update_parameter(self, caller: str, name: str, new_value: int) -> ParameterChange:
        with self._operation(f"update_{name}", caller, str(new_value)):
            require_governance(caller, self._governance_controller)
            change = self.parameters.update(name, new_value, self._current_time)
            self._emit(
                EventType.PARAMETER_UPDATED, caller,
                name=change.name, old_value=change.old_value, new_value=change.new_value,
            )
            return change

    def _revert_if_health_factor_is_broken(self, account: str) -> None:
        health_factor = self.get_health_factor(account)
        if health_factor < MIN_HEALTH_FACTOR:
            raise BreaksHealthFactor(health_factor)

    def _price(self) -> int:
        return self.oracle.get_fresh_price(self._current_time)

    def _token_call(
        self,
        failure: Type[StablecoinError],
        description: str,
        action: Callable[..., Any],
        *args: Any,
    ) -> None:
        """Invoke a token capability, mapping TokenError or a False return to `failure`."""
        try:
            ok = action(*args)
        except TokenError as e:
            raise failure(f"{description}: {e}") from e
        if ok is False:
            raise failure(f"{description}: token returned False")

    def _emit(self, event_type: EventType, account: str, **data: Any) -> EngineEvent:
        event = EngineEvent(
            event_type=event_type,
            account=account,
            timestamp=self._current_time,
            sequence_number=self._next_sequence,
            data=data,
        )
        self._next_sequence += 1
        self.event_log.append(event)
        return event

    def __repr__(self) -> str:
        return (
            f"Engine({len(self.positions)} accounts, debt={format_usd(self.total_debt())}, "
            f"insurance={format_usd(self.insurance_fund.balance)}, "
            f"governance={self._governance_controller})"
        )


def _require_positive(amount: int) -> None:
    if amount <= 0:
        raise NeedsMoreThanZero(f"amount must be more than zero, got {amount}")


def _require_address(identity: str, role: str) -> None:
    if not identity or not str(identity).strip():
        raise InvalidAddress(f"{role} identity cannot be empty")
