"""
simulation.py - Liquidation stress test on a simulated price path

Drives a population of positions through a geometric Brownian motion price
path for the backing asset. At every step the clock advances, the oracle is
updated, and a well-funded keeper liquidates every account whose health
factor has fallen below 1.0. Bad debt is covered by the insurance fund when
it can be; otherwise the liquidation is rejected and recorded as a failure.

The run is deterministic for a given seed:

    result = run_simulation(SimulationConfig(num_accounts=50, volatility=1.2, seed=7))
    result.liquidations_by_kind   # counts per LiquidationKind value
    result.failed_liquidations    # attempts the insurance fund could not cover
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Tuple

import numpy as np

from .core import FEED_PRECISION, MIN_HEALTH_FACTOR, PRECISION, Operation, format_usd
from .engine import Engine
from .liquidation import LiquidationKind, token_amount_from_usd, usd_value
from .oracle import PriceOracleAdapter, StaticPriceFeed
from .tokens import TokenLedger, TokenSpec


KEEPER = "keeper"
FAUCET = "faucet"
GOVERNANCE = "governance"

# Keeper collateral value as a multiple of its own debt.
KEEPER_COLLATERAL_MULTIPLE = 400


@dataclass(frozen=True, slots=True)
class SimulationConfig:
    """
    Inputs of a stress run.

    Attributes:
        num_accounts: Number of borrowing accounts
        num_steps: Number of price steps after the opening price
        start_price: Opening USD price of the backing asset
        volatility: Annualized volatility of the GBM path (e.g. 0.8 for 80%)
        drift: Annualized drift
        step: Time between price updates
        collateral_per_account: Backing-asset units each account deposits
        min_utilization_bps: Lowest share of borrowing capacity an account mints
        max_utilization_bps: Highest share of borrowing capacity an account mints
        seed: Random seed
        start_time: Logical time of the opening price
    """
    num_accounts: int = 20
    num_steps: int = 90
    start_price: float = 2000.0
    volatility: float = 0.8
    drift: float = 0.0
    step: timedelta = timedelta(days=1)
    collateral_per_account: int = 10 * PRECISION
    min_utilization_bps: int = 3_000
    max_utilization_bps: int = 9_500
    seed: int = 42
    start_time: datetime = datetime(2024, 1, 1)

    def __post_init__(self):
        if self.num_accounts <= 0:
            raise ValueError(f"num_accounts must be positive, got {self.num_accounts}")
        if self.num_steps <= 0:
            raise ValueError(f"num_steps must be positive, got {self.num_steps}")
        if self.start_price <= 0:
            raise ValueError(f"start_price must be positive, got {self.start_price}")
        if self.volatility < 0:
            raise ValueError(f"volatility cannot be negative, got {self.volatility}")
        if self.step <= timedelta(0):
            raise ValueError(f"step must be positive, got {self.step}")
        if self.collateral_per_account <= 0:
            raise ValueError("collateral_per_account must be positive")
        if not 0 < self.min_utilization_bps <= self.max_utilization_bps < 10_000:
            raise ValueError(
                f"utilization range must satisfy 0 < min <= max < 10000, got "
                f"[{self.min_utilization_bps}, {self.max_utilization_bps}]"
            )


@dataclass(frozen=True, slots=True)
class SimulationResult:
    """
    Per-step series and totals of a stress run.

    Attributes:
        prices: 8-decimal oracle price at each step (opening price first)
        insurance_balances: Insurance fund balance after each step
        total_debt: System debt after each step
        liquidations_by_kind: Applied liquidations counted by LiquidationKind value
        failed_liquidations: Rejected liquidation attempts
        failures: (step, account, error kind) for each rejected attempt
        accounting_valid: Engine bookkeeping matched token balances at the end
    """
    prices: Tuple[int, ...]
    insurance_balances: Tuple[int, ...]
    total_debt: Tuple[int, ...]
    liquidations_by_kind: Dict[str, int] = field(default_factory=dict)
    failed_liquidations: int = 0
    failures: Tuple[Tuple[int, str, str], ...] = ()
    accounting_valid: bool = True

    @property
    def total_liquidations(self) -> int:
        return sum(self.liquidations_by_kind.values())

    @property
    def min_insurance_balance(self) -> int:
        return min(self.insurance_balances)


def generate_gbm_prices(
    start_price: float,
    num_steps: int,
    volatility: float,
    drift: float,
    dt: float,
    rng: np.random.Generator,
) -> np.ndarray:
    """
    Generate a Geometric Brownian Motion price path.

    Uses the discrete GBM formula:
        S(t+dt) = S(t) * exp((mu - 0.5*sigma^2)*dt + sigma*sqrt(dt)*Z)

    where Z ~ N(0,1)

    Returns:
        Array of num_steps + 1 prices, starting with start_price
    """
    z = rng.standard_normal(num_steps)
    log_returns = (drift - 0.5 * volatility ** 2) * dt + volatility * np.sqrt(dt) * z
    return start_price * np.exp(np.concatenate(([0.0], np.cumsum(log_returns))))


def to_feed_price(price: float) -> int:
    """Convert a float USD price to the oracle's 8-decimal integer (at least 1)."""
    return max(1, int(round(price * FEED_PRECISION)))


def build_engine(config: SimulationConfig, opening_price: int) -> Tuple[Engine, TokenLedger, StaticPriceFeed]:
    """Deploy tokens, feed and engine for a run. All components are silent."""
    book = TokenLedger("simulation", verbose=False)
    engine_address = "engine"
    collateral = book.register_token(TokenSpec("WETH", "Wrapped Ether"))
    synthetic = book.register_token(TokenSpec("USDX", "Synthetic Dollar", minter=engine_address))
    feed = StaticPriceFeed(opening_price, config.start_time)
    engine = Engine(
        collateral, synthetic, PriceOracleAdapter(feed), GOVERNANCE,
        engine_address=engine_address,
        initial_time=config.start_time,
        verbose=False,
    )
    return engine, book, feed


def _open_position(engine: Engine, account: str, collateral_amount: int, mint_amount: int) -> None:
    engine.collateral_token.mint(FAUCET, account, collateral_amount)
    engine.collateral_token.approve(account, engine.engine_address, collateral_amount)
    engine.deposit_collateral_and_mint(account, collateral_amount, mint_amount)


def run_simulation(config: SimulationConfig = SimulationConfig(), verbose: bool = False) -> SimulationResult:
    """
    Run one stress scenario.

    Steps:
    1. Generate the GBM price path (numpy, seeded)
    2. Open num_accounts positions at random utilization of borrowing capacity
    3. Fund a keeper with twice the system debt in synthetic tokens
    4. For each step: advance time, publish price, liquidate every HF < 1.0 account

    Args:
        config: Scenario inputs
        verbose: Print a summary at the end

    Returns:
        SimulationResult
    """
    rng = np.random.default_rng(config.seed)
    path = generate_gbm_prices(
        config.start_price, config.num_steps, config.volatility, config.drift,
        dt=config.step / timedelta(days=365), rng=rng,
    )
    prices = [to_feed_price(p) for p in path]

    engine, book, feed = build_engine(config, prices[0])
    threshold = engine.parameters.liquidation_threshold

    accounts: List[str] = []
    capacity = usd_value(config.collateral_per_account, prices[0]) * threshold // 100
    utilizations = rng.integers(config.min_utilization_bps, config.max_utilization_bps + 1,
                                size=config.num_accounts)
    for i, utilization in enumerate(utilizations):
        account = f"user{i:03d}"
        _open_position(engine, account, config.collateral_per_account,
                       capacity * int(utilization) // 10_000)
        accounts.append(account)

    keeper_mint = 2 * engine.total_debt()
    keeper_collateral = token_amount_from_usd(keeper_mint * KEEPER_COLLATERAL_MULTIPLE, prices[0])
    _open_position(engine, KEEPER, keeper_collateral, keeper_mint)
    engine.synthetic_token.approve(KEEPER, engine.engine_address, engine.synthetic_token.balance_of(KEEPER))

    liquidations = {kind.value: 0 for kind in LiquidationKind}
    failures: List[Tuple[int, str, str]] = []
    insurance_balances = [engine.get_insurance_fund_balance()]
    total_debt = [engine.total_debt()]

    for step in range(1, config.num_steps + 1):
        engine.advance_time(config.start_time + step * config.step)
        feed.update_price(prices[step], engine.current_time)
        for account in accounts:
            if engine.get_debt(account) == 0:
                continue
            if engine.get_health_factor(account) >= MIN_HEALTH_FACTOR:
                continue
            result = engine.execute(Operation("liquidate", KEEPER, (account,)))
            if result.ok:
                liquidations[result.value.kind.value] += 1
            else:
                failures.append((step, account, result.error.value))
        insurance_balances.append(engine.get_insurance_fund_balance())
        total_debt.append(engine.total_debt())

    result = SimulationResult(
        prices=tuple(prices),
        insurance_balances=tuple(insurance_balances),
        total_debt=tuple(total_debt),
        liquidations_by_kind=liquidations,
        failed_liquidations=len(failures),
        failures=tuple(failures),
        accounting_valid=engine.verify_accounting()['valid'] and book.verify_conservation()['valid'],
    )
    if verbose:
        print_summary(result)
    return result


def print_summary(result: SimulationResult) -> None:
    print(f"Price: {format_usd(result.prices[0] * 10 ** 10)} -> {format_usd(result.prices[-1] * 10 ** 10)} "
          f"(min {format_usd(min(result.prices) * 10 ** 10)})")
    print(f"Liquidations: {result.total_liquidations} "
          + ", ".join(f"{kind}={count}" for kind, count in result.liquidations_by_kind.items()))
    print(f"Failed liquidation attempts: {result.failed_liquidations}")
    print(f"Insurance fund: {format_usd(result.insurance_balances[0])} -> "
          f"{format_usd(result.insurance_balances[-1])}")
    print(f"System debt: {format_usd(result.total_debt[0])} -> {format_usd(result.total_debt[-1])}")
    print(f"Accounting valid: {result.accounting_valid}")
