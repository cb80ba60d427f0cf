"""
positions.py - Per-account collateral and debt bookkeeping

Pure accounting with no policy: the only rule enforced here is that neither
balance goes negative. Health-factor checks belong to the Engine facade and
to the liquidation module.

A position comes into existence on the account's first deposit (or debt
record) and is never deleted; it may settle back to zero/zero.
"""

from __future__ import annotations
from typing import Dict, List

from .core import InsufficientCollateral, InsufficientDebt, Position


class PositionLedger:
    """Collateral and debt balances keyed by account identity."""

    def __init__(self):
        self._collateral: Dict[str, int] = {}
        self._debt: Dict[str, int] = {}

    # ========================================================================
    # QUERIES
    # ========================================================================

    def collateral_of(self, account: str) -> int:
        return self._collateral.get(account, 0)

    def debt_of(self, account: str) -> int:
        return self._debt.get(account, 0)

    def position(self, account: str) -> Position:
        return Position(self.collateral_of(account), self.debt_of(account))

    def accounts(self) -> List[str]:
        """Every account that ever held a position, sorted."""
        return sorted(set(self._collateral) | set(self._debt))

    def total_collateral(self) -> int:
        return sum(self._collateral[a] for a in sorted(self._collateral))

    def total_debt(self) -> int:
        return sum(self._debt[a] for a in sorted(self._debt))

    # ========================================================================
    # BOOKKEEPING
    # ========================================================================

    def deposit(self, account: str, amount: int) -> None:
        self._require_non_negative(amount)
        self._collateral[account] = self.collateral_of(account) + amount

    def withdraw(self, account: str, amount: int) -> None:
        """
        Raises:
            InsufficientCollateral: If amount exceeds the deposited collateral
        """
        self._require_non_negative(amount)
        current = self.collateral_of(account)
        if amount > current:
            raise InsufficientCollateral(
                f"{account} has {current} collateral, cannot withdraw {amount}"
            )
        self._collateral[account] = current - amount

    def record_debt(self, account: str, delta: int) -> None:
        self._require_non_negative(delta)
        self._debt[account] = self.debt_of(account) + delta
        self._collateral.setdefault(account, 0)

    def record_repayment(self, account: str, delta: int) -> None:
        """
        Raises:
            InsufficientDebt: If delta exceeds the outstanding debt
        """
        self._require_non_negative(delta)
        current = self.debt_of(account)
        if delta > current:
            raise InsufficientDebt(f"{account} owes {current}, cannot repay {delta}")
        self._debt[account] = current - delta

    def copy(self) -> PositionLedger:
        cloned = PositionLedger()
        cloned._collateral = dict(self._collateral)
        cloned._debt = dict(self._debt)
        return cloned

    @staticmethod
    def _require_non_negative(amount: int) -> None:
        if amount < 0:
            raise ValueError(f"Amount cannot be negative, got {amount}")

    def __len__(self) -> int:
        return len(self.accounts())

    def __repr__(self):
        return f"PositionLedger({len(self)} accounts)"
