#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Learn the Stablecoin Engine Step by Step

This is a pedagogical walkthrough of an over-collateralized stablecoin.
Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation   - Tokens, oracle, engine, opening a position, rejections
  4-6:  Liquidation  - Partial liquidation, bad debt, insurance exhaustion
  7-8:  Protocol     - Bounded governance, a stress simulation

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Tuple
import sys

from stablecoin import (
    Engine, Operation, PriceOracleAdapter, StaticPriceFeed, Token, TokenLedger, TokenSpec,
    FEED_PRECISION, PRECISION, format_health_factor, format_usd,
)
from stablecoin.simulation import SimulationConfig, print_summary, run_simulation


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 1, 9, 0, 0)
    opening_price: int = 2000

    # alice's position
    alice_collateral: int = 10 * PRECISION
    alice_mint: int = 5_000 * PRECISION

    # keeper's position (the liquidator)
    keeper_collateral: int = 100 * PRECISION
    keeper_mint: int = 10_000 * PRECISION

    # crash prices
    partial_price: int = 600
    bad_debt_price: int = 546
    wipeout_price: int = 100


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def feed_price(dollars: int) -> int:
    return dollars * FEED_PRECISION


def deploy(verbose: bool = True) -> Tuple[Engine, TokenLedger, Token, Token, StaticPriceFeed]:
    """Token book, WETH, USDX, a $2000 feed and an engine that mints USDX."""
    book = TokenLedger("demo", verbose=False)
    weth = book.register_token(TokenSpec("WETH", "Wrapped Ether"))
    usdx = book.register_token(TokenSpec("USDX", "Synthetic Dollar", minter="engine"))
    feed = StaticPriceFeed(feed_price(CONFIG.opening_price), CONFIG.start_time)
    engine = Engine(
        weth, usdx, PriceOracleAdapter(feed), "governor",
        initial_time=CONFIG.start_time, verbose=verbose,
    )
    return engine, book, weth, usdx, feed


def open_position(engine: Engine, weth: Token, account: str, collateral: int, mint: int) -> None:
    weth.mint("faucet", account, collateral)
    weth.approve(account, engine.engine_address, collateral)
    engine.deposit_collateral_and_mint(account, collateral, mint)


def show_account(engine: Engine, account: str) -> None:
    debt, collateral_value = engine.get_account_information(account)
    print(f"{account:>8}: collateral {format_usd(engine.get_collateral_balance(account))} WETH "
          f"(${format_usd(collateral_value)}), debt {format_usd(debt)} USDX, "
          f"HF {format_health_factor(engine.get_health_factor(account))}")


def deploy_with_positions(verbose: bool = False):
    engine, book, weth, usdx, feed = deploy(verbose=verbose)
    open_position(engine, weth, "alice", CONFIG.alice_collateral, CONFIG.alice_mint)
    open_position(engine, weth, "keeper", CONFIG.keeper_collateral, CONFIG.keeper_mint)
    usdx.approve("keeper", engine.engine_address, CONFIG.keeper_mint)
    engine.verbose = True
    return engine, book, weth, usdx, feed


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_deploy():
    """Wire tokens, oracle and engine together."""
    step_header(1, "Deploying the Engine",
        "See the four pieces: backing asset, synthetic token, price feed, engine.")

    print("""
    - WETH is the backing asset. Anyone may hold it.
    - USDX is the synthetic dollar. Only the engine may mint it.
    - The price feed reports WETH/USD with 8 decimals.
    - The engine holds collateral, records debt and enforces the rules.
    """)

    wait_for_enter()

    engine, book, weth, usdx, feed = deploy()
    section_header("Initial State")
    print(f"Engine:               {engine}")
    print(f"Price:                ${format_usd(engine.get_usd_value(PRECISION))} per WETH")
    print(f"Parameters:           {engine.get_parameters()}")
    print(f"Insurance fund:       {format_usd(engine.get_insurance_fund_balance())} USDX")
    return engine, weth, usdx, feed


def step_02_open_position(engine: Engine, weth: Token):
    """Deposit collateral and mint synthetic dollars."""
    step_header(2, "Opening a Position",
        "Collateral in, USDX out, a mint fee into the insurance fund.")

    print(">>> engine.deposit_collateral_and_mint('alice', 10 WETH, 5000 USDX)")
    open_position(engine, weth, "alice", CONFIG.alice_collateral, CONFIG.alice_mint)

    section_header("After Minting")
    show_account(engine, "alice")
    print(f"Insurance fund: {format_usd(engine.get_insurance_fund_balance())} USDX (20 bps fee)")

    section_header("Key Insight")
    print("""
    Health factor = collateral value x threshold / debt.
    At 50% threshold, $20,000 of WETH backs up to $10,000 of debt.
    alice owes 4990 USDX, so her health factor is about 2.0.
    """)
    wait_for_enter()


def step_03_rejected_operation(engine: Engine):
    """A mint that would break the health factor is rejected."""
    step_header(3, "Rejected Operations",
        "Operations either apply completely or leave no trace.")

    before = engine.get_debt("alice")
    print(">>> engine.execute(Operation('mint', 'alice', (6000 USDX,)))")
    result = engine.execute(Operation("mint", "alice", (6_000 * PRECISION,)))
    print(f"\nResult: {result.status.value} ({result.error.value})")
    print(f"Debt before: {format_usd(before)}  after: {format_usd(engine.get_debt('alice'))}")
    wait_for_enter()


# ============================================================================
# PHASE 2: LIQUIDATION (Steps 4-6)
# ============================================================================

def step_04_partial_liquidation():
    """A price crash lets a keeper repay part of alice's debt."""
    step_header(4, "Partial Liquidation",
        "Restore an unhealthy account to the target health factor, not to zero.")

    engine, book, weth, usdx, feed = deploy_with_positions()
    feed.update_price(feed_price(CONFIG.partial_price), engine.current_time)
    section_header(f"WETH crashes to ${CONFIG.partial_price}")
    show_account(engine, "alice")

    preview = engine.preview_liquidation("alice")
    print(f"\nPlan: {preview.kind.value}, cover {format_usd(preview.debt_to_cover)} USDX, "
          f"seize {format_usd(preview.collateral_to_redeem)} WETH")

    print("\n>>> engine.liquidate('keeper', 'alice')")
    engine.liquidate("keeper", "alice")
    show_account(engine, "alice")
    print(f"keeper received {format_usd(weth.balance_of('keeper'))} WETH (10% bonus)")
    wait_for_enter()


def step_05_bad_debt():
    """Collateral no longer covers debt plus bonus: insurance fills the gap."""
    step_header(5, "Bad Debt",
        "Clear an insolvent position and draw the shortfall from the insurance fund.")

    engine, book, weth, usdx, feed = deploy_with_positions()
    print(f"Insurance fund: {format_usd(engine.get_insurance_fund_balance())} USDX")
    feed.update_price(feed_price(CONFIG.bad_debt_price), engine.current_time)
    section_header(f"WETH crashes to ${CONFIG.bad_debt_price}")
    show_account(engine, "alice")

    plan = engine.liquidate("keeper", "alice")
    print(f"\nShortfall covered: {format_usd(plan.shortfall)} USDX")
    print(f"Insurance fund:    {format_usd(engine.get_insurance_fund_balance())} USDX")
    show_account(engine, "alice")
    print(f"Accounting: {engine.verify_accounting()}")
    wait_for_enter()


def step_06_insurance_exhausted():
    """A shortfall bigger than the fund is rejected, atomically."""
    step_header(6, "Insurance Exhausted",
        "When the fund cannot cover the shortfall, nothing happens.")

    engine, book, weth, usdx, feed = deploy_with_positions()
    feed.update_price(feed_price(CONFIG.wipeout_price), engine.current_time)
    result = engine.execute(Operation("liquidate", "keeper", ("alice",)))
    print(f"\nResult: {result.status.value} ({result.error.value})")
    print(f"Message: {result.message}")
    show_account(engine, "alice")
    wait_for_enter()


# ============================================================================
# PHASE 3: PROTOCOL (Steps 7-8)
# ============================================================================

def step_07_governance(engine: Engine):
    """Parameters move in small steps, at most once per cooldown."""
    step_header(7, "Bounded Governance",
        "See range, step size and cooldown limits on parameter updates.")

    print(">>> engine.update_liquidation_bonus('governor', 12)")
    engine.update_liquidation_bonus("governor", 12)
    print(">>> engine.update_liquidation_bonus('governor', 14)   # too soon")
    result = engine.execute(Operation("update_liquidation_bonus", "governor", (14,)))
    print(f"Result: {result.error.value}")
    print(">>> engine.update_mint_fee('mallory', 10)")
    result = engine.execute(Operation("update_mint_fee", "mallory", (10,)))
    print(f"Result: {result.error.value}")

    engine.advance_time(engine.current_time + timedelta(days=15))
    print(">>> advance 15 days, retry")
    engine.update_liquidation_bonus("governor", 14)
    print(f"\nHistory: {engine.parameters.history}")
    wait_for_enter()


def step_08_simulation():
    """Run a seeded GBM price path against many positions."""
    step_header(8, "Stress Simulation",
        "Watch liquidations and the insurance fund over a volatile market.")

    config = SimulationConfig(num_accounts=20, num_steps=90, volatility=1.2, seed=7)
    print(f">>> run_simulation({config})")
    print_summary(run_simulation(config))


def main():
    print("""
    ======================================================================
        STABLECOIN ENGINE TUTORIAL
    ======================================================================
    """)
    engine, weth, usdx, feed = step_01_deploy()
    step_02_open_position(engine, weth)
    step_03_rejected_operation(engine)
    step_04_partial_liquidation()
    step_05_bad_debt()
    step_06_insurance_exhausted()
    step_07_governance(engine)
    step_08_simulation()

    print("""
    SUMMARY

    FOUNDATION
      - Debt is backed by collateral counted at the liquidation threshold
      - Every mint pays a fee into the insurance fund
      - Rejected operations leave no trace

    LIQUIDATION
      - Partial liquidation restores the target health factor
      - Bad debt is cleared with insurance, or not at all

    PROTOCOL
      - Governance moves parameters in bounded, spaced steps

    Next steps:
      - See stablecoin/liquidation.py for the pure liquidation math
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
