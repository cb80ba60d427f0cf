"""
conftest.py - Shared pytest fixtures for stablecoin engine tests

Provides common fixtures used across unit and functional tests:
- A wired system (token book, WETH, USDX, price feed, engine) at $2000
- The canonical position: alice deposits 10 WETH and mints 5000 USDX
- A keeper funded with synthetic tokens for liquidations
"""

import pytest

from tests.builders import (
    ETH, USD, System, approve_synthetic, make_system, open_position,
)


@pytest.fixture
def system() -> System:
    return make_system()


@pytest.fixture
def engine(system):
    return system.engine


@pytest.fixture
def alice_position(system) -> System:
    """alice: 10 WETH collateral, 5000 USDX minted (4990 debt after the 20 bps fee)."""
    open_position(system, "alice", 10 * ETH, 5000 * USD)
    return system


@pytest.fixture
def keeper(alice_position) -> str:
    """A liquidator holding ~9980 USDX against 100 WETH, with the engine approved."""
    open_position(alice_position, "keeper", 100 * ETH, 10_000 * USD)
    approve_synthetic(alice_position, "keeper", 10_000 * USD)
    return "keeper"
