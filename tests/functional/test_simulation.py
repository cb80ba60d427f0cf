"""
test_simulation.py - Stress simulation over a GBM price path

Checks determinism, the shape of the recorded series and that the engine's
bookkeeping still matches token balances after many liquidations.
"""

import pytest
import numpy as np
from datetime import timedelta

from stablecoin import FEED_PRECISION, PRECISION
from stablecoin.simulation import (
    SimulationConfig, SimulationResult, generate_gbm_prices, run_simulation, to_feed_price,
)


class TestPricePath:

    def test_starts_at_start_price(self):
        path = generate_gbm_prices(2000.0, 10, 0.8, 0.0, 1 / 365, np.random.default_rng(1))
        assert len(path) == 11
        assert path[0] == pytest.approx(2000.0)
        assert np.all(path > 0)

    def test_zero_volatility_zero_drift_is_flat(self):
        path = generate_gbm_prices(1500.0, 5, 0.0, 0.0, 1 / 365, np.random.default_rng(1))
        assert np.allclose(path, 1500.0)

    def test_seeded_paths_repeat(self):
        a = generate_gbm_prices(2000.0, 30, 0.8, 0.0, 1 / 365, np.random.default_rng(7))
        b = generate_gbm_prices(2000.0, 30, 0.8, 0.0, 1 / 365, np.random.default_rng(7))
        assert np.array_equal(a, b)

    def test_feed_price_conversion(self):
        assert to_feed_price(2000.0) == 2000 * FEED_PRECISION
        assert to_feed_price(1e-12) == 1


class TestConfig:

    def test_rejects_bad_inputs(self):
        with pytest.raises(ValueError):
            SimulationConfig(num_accounts=0)
        with pytest.raises(ValueError):
            SimulationConfig(step=timedelta(0))
        with pytest.raises(ValueError):
            SimulationConfig(min_utilization_bps=9_000, max_utilization_bps=8_000)
        with pytest.raises(ValueError):
            SimulationConfig(max_utilization_bps=10_000)


class TestRunSimulation:

    @pytest.fixture(scope="class")
    def crash_result(self) -> SimulationResult:
        config = SimulationConfig(num_accounts=15, num_steps=60, volatility=1.5, drift=-10.0, seed=11)
        return run_simulation(config)

    def test_deterministic_for_seed(self):
        config = SimulationConfig(num_accounts=5, num_steps=20, seed=3)
        assert run_simulation(config) == run_simulation(config)

    def test_series_lengths(self, crash_result):
        assert len(crash_result.prices) == 61
        assert len(crash_result.insurance_balances) == 61
        assert len(crash_result.total_debt) == 61

    def test_opening_insurance_is_mint_fees(self, crash_result):
        assert crash_result.insurance_balances[0] > 0
        assert crash_result.min_insurance_balance >= 0

    def test_insurance_only_decreases_after_opening(self, crash_result):
        balances = crash_result.insurance_balances
        assert all(later <= earlier for earlier, later in zip(balances, balances[1:]))

    def test_crash_triggers_liquidations(self, crash_result):
        assert crash_result.prices[-1] < crash_result.prices[0]
        assert crash_result.total_liquidations + crash_result.failed_liquidations > 0
        assert set(crash_result.liquidations_by_kind) == {"partial", "full", "bad_debt"}

    def test_failures_are_insurance_shortfalls(self, crash_result):
        assert {kind for _, _, kind in crash_result.failures} <= {"insufficient_insurance_funds"}
        assert crash_result.failed_liquidations == len(crash_result.failures)

    def test_accounting_holds(self, crash_result):
        assert crash_result.accounting_valid

    def test_calm_market_no_liquidations(self):
        config = SimulationConfig(num_accounts=5, num_steps=10, volatility=0.0, seed=1)
        result = run_simulation(config)
        assert result.total_liquidations == 0
        assert result.failed_liquidations == 0
        assert result.total_debt[0] == result.total_debt[-1]
        assert result.total_debt[0] > 10 * PRECISION

    def test_verbose_summary(self, capsys):
        run_simulation(SimulationConfig(num_accounts=2, num_steps=3, volatility=0.0), verbose=True)
        out = capsys.readouterr().out
        assert "Liquidations: 0" in out
        assert "Accounting valid: True" in out
