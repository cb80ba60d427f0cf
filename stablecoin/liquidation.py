"""
liquidation.py - Health factor and liquidation planning

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs/outputs):
   - Position (core): collateral and debt of one account
   - ParameterSnapshot (parameters): the risk parameters in force
   - LiquidationPlan: everything a liquidation will do, computed up front

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - Integer fixed-point arithmetic, floor division throughout
   - No engine, no token, no clock: every input is a parameter

3. PLANNER (plan_liquidation):
   - Combines the calculations into the partial / full / bad-debt decision
   - The Engine executes the plan and re-checks the outcome

Key Formulas (all 18-decimal fixed point unless noted):
    usd_value          = amount * price * 1e10 // 1e18        (price has 8 decimals)
    health_factor      = (collateral_value * threshold // 100) * 1e18 // debt
                         (MAX_HEALTH_FACTOR when debt == 0)
    debt_to_cover      solves (C - x*b) * t / (D - x) = T for x:
                         x = (D*T - C*t) / (T - t*b)
    collateral_redeem  = token_amount(debt_to_cover) * (100 + bonus) // 100
    shortfall          = D * (100 + bonus) // 100 - collateral_value   (bad debt)
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum

from .core import (
    ADDITIONAL_FEED_PRECISION, LIQUIDATION_PRECISION, MAX_HEALTH_FACTOR,
    MIN_HEALTH_FACTOR, PRECISION,
    HealthFactorOk, Position, ceil_div, format_health_factor,
)
from .parameters import ParameterSnapshot


# Extra adjusted-collateral value (in wei of USD) the debt-to-cover solution
# aims above the target. Floor division in valuation and in the health factor
# can lose up to 3 wei; this keeps a partial liquidation from landing below
# the value it solves for.
ROUNDING_ALLOWANCE = 4


class LiquidationKind(Enum):
    """
    PARTIAL: part of the debt is repaid, the account is restored to the target
             health factor and keeps its remaining collateral and debt.
    FULL: all debt is repaid out of sufficient collateral; leftovers stay with
          the account.
    BAD_DEBT: collateral cannot cover debt plus bonus; the liquidator takes all
              collateral and the insurance fund covers the shortfall.
    """
    PARTIAL = "partial"
    FULL = "full"
    BAD_DEBT = "bad_debt"


@dataclass(frozen=True, slots=True)
class LiquidationPlan:
    """
    Immutable result of plan_liquidation().

    Attributes:
        account: Account being liquidated
        kind: PARTIAL, FULL or BAD_DEBT
        price: 8-decimal oracle price the plan was computed at
        total_debt: Account debt before liquidation
        total_collateral: Account collateral before liquidation
        collateral_value: USD value of total_collateral
        debt_to_cover: Synthetic tokens the liquidator pays (burned)
        collateral_to_redeem: Backing-asset units the liquidator receives
        shortfall: USD value drawn from the insurance fund (BAD_DEBT only)
        starting_health_factor: Account health factor before liquidation
        projected_health_factor: Account health factor after the plan executes
    """
    account: str
    kind: LiquidationKind
    price: int
    total_debt: int
    total_collateral: int
    collateral_value: int
    debt_to_cover: int
    collateral_to_redeem: int
    shortfall: int
    starting_health_factor: int
    projected_health_factor: int

    @property
    def clears_debt(self) -> bool:
        return self.debt_to_cover == self.total_debt

    def __repr__(self) -> str:
        return (
            f"LiquidationPlan({self.kind.value} {self.account}: cover={self.debt_to_cover}, "
            f"redeem={self.collateral_to_redeem}, shortfall={self.shortfall}, "
            f"hf {format_health_factor(self.starting_health_factor)} -> "
            f"{format_health_factor(self.projected_health_factor)})"
        )


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def usd_value(amount: int, price: int) -> int:
    """18-decimal USD value of `amount` backing-asset units at an 8-decimal price."""
    return amount * price * ADDITIONAL_FEED_PRECISION // PRECISION


def token_amount_from_usd(usd_amount: int, price: int) -> int:
    """Backing-asset units worth `usd_amount` (18-decimal USD) at an 8-decimal price."""
    return usd_amount * PRECISION // (price * ADDITIONAL_FEED_PRECISION)


def calculate_health_factor(collateral_value: int, debt: int, liquidation_threshold: int) -> int:
    """
    Ratio of threshold-adjusted collateral value to debt, 18 decimals.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Args:
        collateral_value: 18-decimal USD value of the collateral
        debt: Outstanding synthetic debt
        liquidation_threshold: Percent of collateral value counted as backing

    Returns:
        Health factor; MAX_HEALTH_FACTOR when debt is zero.
    """
    if debt == 0:
        return MAX_HEALTH_FACTOR
    adjusted = collateral_value * liquidation_threshold // LIQUIDATION_PRECISION
    return adjusted * PRECISION // debt


def calculate_position_health_factor(position: Position, price: int, liquidation_threshold: int) -> int:
    """Health factor of a Position at an 8-decimal price."""
    if not position.has_debt:
        return MAX_HEALTH_FACTOR
    return calculate_health_factor(
        usd_value(position.collateral_deposited, price), position.debt_minted, liquidation_threshold,
    )


def calculate_debt_to_cover(
    collateral_value: int,
    total_debt: int,
    params: ParameterSnapshot,
) -> int:
    """
    Debt repayment that restores the account to the target health factor.

    PURE FUNCTION - All inputs explicit, no hidden state.

    Repaying x debt removes x * (1 + bonus) of collateral value, so the
    post-liquidation health factor is (C - x*b) * t / (D - x). Setting that
    equal to the target T and solving:

        numerator   = D*T - C*t
        denominator = T - t*b

    If either is non-positive the account cannot be brought to target by a
    partial liquidation and the whole debt is covered instead. The quotient
    is solved for one wei above T and rounded up (plus ROUNDING_ALLOWANCE),
    so floor division later on still leaves the account strictly above the
    target. It never exceeds the total debt.

    Args:
        collateral_value: 18-decimal USD value of the account's collateral
        total_debt: Account debt
        params: Risk parameters in force

    Returns:
        Debt to cover, in (0, total_debt]
    """
    threshold_mul = params.liquidation_threshold * PRECISION // LIQUIDATION_PRECISION
    bonus_mul = (LIQUIDATION_PRECISION + params.liquidation_bonus) * PRECISION // LIQUIDATION_PRECISION
    # Strictly above the target means at least one wei above it
    target = params.target_health_factor + 1

    numerator = total_debt * target // PRECISION - collateral_value * threshold_mul // PRECISION
    denominator = target - threshold_mul * bonus_mul // PRECISION
    if numerator <= 0 or denominator <= 0:
        return total_debt
    return min(ceil_div((numerator + ROUNDING_ALLOWANCE) * PRECISION, denominator), total_debt)


def calculate_collateral_to_redeem(debt_to_cover: int, price: int, liquidation_bonus: int) -> int:
    """Backing-asset units equal in value to debt_to_cover, plus the liquidation bonus."""
    base = token_amount_from_usd(debt_to_cover, price)
    return base + base * liquidation_bonus // LIQUIDATION_PRECISION


def calculate_shortfall(total_debt: int, collateral_value: int, liquidation_bonus: int) -> int:
    """
    USD value owed to a full liquidator (debt plus bonus) beyond what the
    collateral is worth; zero when the collateral covers it.
    """
    owed = total_debt + total_debt * liquidation_bonus // LIQUIDATION_PRECISION
    return max(0, owed - collateral_value)


# ============================================================================
# PLANNER
# ============================================================================

def plan_liquidation(
    account: str,
    position: Position,
    price: int,
    params: ParameterSnapshot,
) -> LiquidationPlan:
    """
    Decide how an under-collateralized position is liquidated.

    Steps:
    1. Reject healthy positions (health factor >= 1.0)
    2. Compute debt_to_cover towards the target health factor
    3. Convert it to collateral, adding the bonus
    4. Enough collateral: PARTIAL (or FULL when all debt is covered)
    5. Not enough: BAD_DEBT for the whole position, shortfall from insurance

    Args:
        account: Account identity (carried into the plan)
        position: The account's current position
        price: 8-decimal oracle price
        params: Risk parameters in force

    Returns:
        LiquidationPlan describing the outcome

    Raises:
        HealthFactorOk: If the position is not liquidatable
    """
    collateral_value = usd_value(position.collateral_deposited, price)
    starting_hf = calculate_health_factor(
        collateral_value, position.debt_minted, params.liquidation_threshold,
    )
    if starting_hf >= MIN_HEALTH_FACTOR:
        raise HealthFactorOk(
            f"{account} health factor {format_health_factor(starting_hf)} is not below "
            f"{format_health_factor(MIN_HEALTH_FACTOR)}"
        )

    total_debt = position.debt_minted
    debt_to_cover = calculate_debt_to_cover(collateral_value, total_debt, params)
    collateral_to_redeem = calculate_collateral_to_redeem(debt_to_cover, price, params.liquidation_bonus)

    if collateral_to_redeem <= position.collateral_deposited:
        if debt_to_cover == total_debt:
            kind = LiquidationKind.FULL
            projected = MAX_HEALTH_FACTOR
        else:
            kind = LiquidationKind.PARTIAL
            projected = calculate_health_factor(
                usd_value(position.collateral_deposited - collateral_to_redeem, price),
                total_debt - debt_to_cover,
                params.liquidation_threshold,
            )
        shortfall = 0
    else:
        kind = LiquidationKind.BAD_DEBT
        debt_to_cover = total_debt
        collateral_to_redeem = position.collateral_deposited
        shortfall = calculate_shortfall(total_debt, collateral_value, params.liquidation_bonus)
        projected = MAX_HEALTH_FACTOR

    return LiquidationPlan(
        account=account,
        kind=kind,
        price=price,
        total_debt=total_debt,
        total_collateral=position.collateral_deposited,
        collateral_value=collateral_value,
        debt_to_cover=debt_to_cover,
        collateral_to_redeem=collateral_to_redeem,
        shortfall=shortfall,
        starting_health_factor=starting_hf,
        projected_health_factor=projected,
    )
