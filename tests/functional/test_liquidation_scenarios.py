"""
test_liquidation_scenarios.py - Liquidation lifecycle through the Engine

Scenarios (all start from alice: 10 WETH at $2000, 5000 USDX minted):
- $600 crash: partial liquidation restores the target health factor
- $546 crash: bad debt covered by the insurance fund
- $100 crash: bad debt exceeding the insurance fund, rejected atomically
- Exact-cover position: full liquidation
- Liquidator safety checks and token failures
"""

import pytest

from stablecoin import (
    MAX_HEALTH_FACTOR, MIN_HEALTH_FACTOR,
    BreaksHealthFactor, EventType, HealthFactorOk, InsufficientInsuranceFunds,
    InvalidAddress, LiquidationKind, StalePrice, TransferFailed,
)

from tests.builders import (
    ENGINE, ETH, USD,
    approve_synthetic, engine_state, make_system, open_position,
)


class TestPartialLiquidation:

    def test_price_crash_makes_position_liquidatable(self, alice_position, keeper):
        alice_position.set_price(600)
        hf = alice_position.engine.get_health_factor("alice")
        assert hf < MIN_HEALTH_FACTOR
        assert 601 * 10 ** 15 <= hf < 602 * 10 ** 15

    def test_partial_liquidation_restores_target(self, alice_position, keeper):
        engine = alice_position.engine
        alice_position.set_price(600)
        target = engine.get_parameters().target_health_factor

        plan = engine.liquidate(keeper, "alice")

        assert plan.kind is LiquidationKind.PARTIAL
        assert 4625 * USD < plan.debt_to_cover <= 4625 * USD + 10 ** 4
        assert engine.get_debt("alice") == 4990 * USD - plan.debt_to_cover
        assert engine.get_collateral_balance("alice") == 10 * ETH - plan.collateral_to_redeem
        hf = engine.get_health_factor("alice")
        assert hf > target
        assert hf == plan.projected_health_factor

    def test_partial_liquidation_lands_strictly_above_target(self, alice_position, keeper):
        # Exact algebra lands on 1.25 here; the account must finish above it
        engine = alice_position.engine
        alice_position.set_price(600)
        target = engine.get_parameters().target_health_factor

        engine.liquidate(keeper, "alice")

        hf = engine.get_health_factor("alice")
        assert hf != target
        assert target < hf < target + 10 ** 12

    def test_liquidator_paid_with_bonus(self, alice_position, keeper):
        engine = alice_position.engine
        alice_position.set_price(600)
        usdx_before = alice_position.usdx.balance_of(keeper)

        plan = engine.liquidate(keeper, "alice")

        assert alice_position.usdx.balance_of(keeper) == usdx_before - plan.debt_to_cover
        assert alice_position.weth.balance_of(keeper) == plan.collateral_to_redeem
        received_value = engine.get_usd_value(plan.collateral_to_redeem)
        assert received_value >= plan.debt_to_cover * 109 // 100
        assert received_value <= plan.debt_to_cover * 110 // 100 + 1

    def test_partial_does_not_touch_insurance(self, alice_position, keeper):
        alice_position.set_price(600)
        alice_position.engine.liquidate(keeper, "alice")
        assert alice_position.engine.get_insurance_fund_balance() == 30 * USD

    def test_restored_account_not_liquidatable_again(self, alice_position, keeper):
        alice_position.set_price(600)
        alice_position.engine.liquidate(keeper, "alice")
        with pytest.raises(HealthFactorOk):
            alice_position.engine.liquidate(keeper, "alice")

    def test_burned_debt_leaves_supply_consistent(self, alice_position, keeper):
        alice_position.set_price(600)
        alice_position.engine.liquidate(keeper, "alice")
        assert alice_position.engine.verify_accounting()['valid']
        assert alice_position.book.verify_conservation()['valid']

    def test_liquidation_event(self, alice_position, keeper):
        alice_position.set_price(600)
        plan = alice_position.engine.liquidate(keeper, "alice")
        event = alice_position.engine.event_log[-1]
        assert event.event_type is EventType.LIQUIDATED
        assert event.account == "alice"
        assert event.data['liquidator'] == keeper
        assert event.data['kind'] == "partial"
        assert event.data['debt_covered'] == plan.debt_to_cover

    def test_preview_matches_execution(self, alice_position, keeper):
        alice_position.set_price(600)
        preview = alice_position.engine.preview_liquidation("alice")
        assert alice_position.engine.liquidate(keeper, "alice") == preview


class TestBadDebt:

    def test_covered_by_insurance(self, alice_position, keeper):
        engine = alice_position.engine
        alice_position.set_price(546)
        usdx_before = alice_position.usdx.balance_of(keeper)

        plan = engine.liquidate(keeper, "alice")

        assert plan.kind is LiquidationKind.BAD_DEBT
        assert plan.shortfall == 29 * USD
        assert engine.get_insurance_fund_balance() == 1 * USD
        assert engine.get_debt("alice") == 0
        assert engine.get_collateral_balance("alice") == 0
        assert engine.get_health_factor("alice") == MAX_HEALTH_FACTOR
        assert alice_position.weth.balance_of(keeper) == 10 * ETH
        assert alice_position.usdx.balance_of(keeper) == usdx_before - 4990 * USD + 29 * USD

    def test_insurance_draw_event(self, alice_position, keeper):
        alice_position.set_price(546)
        alice_position.engine.liquidate(keeper, "alice")
        kinds = [e.event_type for e in alice_position.engine.event_log]
        assert EventType.INSURANCE_DRAWN in kinds
        drawn = next(e for e in alice_position.engine.event_log
                     if e.event_type is EventType.INSURANCE_DRAWN)
        assert drawn.data == {'shortfall': 29 * USD, 'remaining': 1 * USD}

    def test_shortfall_mint_keeps_accounting(self, alice_position, keeper):
        alice_position.set_price(546)
        alice_position.engine.liquidate(keeper, "alice")
        result = alice_position.engine.verify_accounting()
        assert result['valid']
        assert result['synthetic_supply'] == alice_position.engine.total_debt() + 29 * USD

    def test_extreme_crash_exceeds_fund(self, alice_position):
        # fund only holds alice's 10 USDX fee
        open_position(alice_position, "whale", 1_000 * ETH, 5_000 * USD)
        approve_synthetic(alice_position, "whale", 5_000 * USD)
        engine = alice_position.engine
        alice_position.set_price(100)
        before = engine_state(alice_position)

        with pytest.raises(InsufficientInsuranceFunds) as exc:
            engine.liquidate("whale", "alice")

        assert exc.value.shortfall == 4489 * USD
        assert exc.value.available == 20 * USD
        assert engine_state(alice_position) == before
        assert engine.get_debt("alice") == 4990 * USD
        assert engine.get_collateral_balance("alice") == 10 * ETH


class TestFullLiquidation:

    def test_exact_cover_is_full(self):
        system = make_system()
        open_position(system, "alice", 10_978 * 10 ** 15, 1_000 * USD)
        open_position(system, "keeper", 30 * ETH, 1_000 * USD)
        approve_synthetic(system, "keeper", 998 * USD)
        system.set_price(100)

        plan = system.engine.liquidate("keeper", "alice")

        assert plan.kind is LiquidationKind.FULL
        assert plan.shortfall == 0
        assert system.engine.get_position("alice").debt_minted == 0
        assert system.engine.get_collateral_balance("alice") == 0
        assert system.weth.balance_of("keeper") == 10_978 * 10 ** 15
        assert system.engine.get_insurance_fund_balance() == 4 * USD


class TestLiquidationGuards:

    def test_healthy_account(self, alice_position, keeper):
        with pytest.raises(HealthFactorOk):
            alice_position.engine.liquidate(keeper, "alice")

    def test_unknown_account(self, alice_position, keeper):
        with pytest.raises(HealthFactorOk):
            alice_position.engine.liquidate(keeper, "nobody")

    def test_empty_account(self, alice_position, keeper):
        with pytest.raises(InvalidAddress):
            alice_position.engine.liquidate(keeper, "")

    def test_liquidator_without_tokens(self, alice_position):
        alice_position.set_price(600)
        before = engine_state(alice_position)
        with pytest.raises(TransferFailed):
            alice_position.engine.liquidate("pauper", "alice")
        assert engine_state(alice_position) == before

    def test_liquidator_left_unhealthy(self, alice_position):
        # bob's own position is underwater at the crash price
        open_position(alice_position, "bob", 3 * ETH, 2_900 * USD)
        alice_position.usdx.transfer("alice", "bob", 4_000 * USD)
        approve_synthetic(alice_position, "bob", 6_894 * USD)
        alice_position.set_price(600)
        before = engine_state(alice_position)
        with pytest.raises(BreaksHealthFactor):
            alice_position.engine.liquidate("bob", "alice")
        assert engine_state(alice_position) == before

    def test_stale_price_blocks_liquidation(self, alice_position, keeper):
        alice_position.set_price(600)
        engine = alice_position.engine
        engine.advance_time(engine.current_time.replace(hour=4))
        with pytest.raises(StalePrice):
            engine.liquidate(keeper, "alice")

    def test_self_liquidation_allowed(self, alice_position, keeper):
        alice_position.usdx.transfer(keeper, "alice", 5_000 * USD)
        approve_synthetic(alice_position, "alice", 10_000 * USD)
        alice_position.set_price(600)
        plan = alice_position.engine.liquidate("alice", "alice")
        assert plan.kind is LiquidationKind.PARTIAL
        assert alice_position.engine.get_health_factor("alice") >= plan.projected_health_factor

    def test_engine_keeps_no_synthetic(self, alice_position, keeper):
        alice_position.set_price(600)
        alice_position.engine.liquidate(keeper, "alice")
        assert alice_position.usdx.balance_of(ENGINE) == 0
