"""
insurance.py - Fee-funded reserve for bad-debt liquidations

The fund is a single non-negative accumulator of 18-decimal USD value. It
grows only from mint fees and shrinks only when a liquidation shortfall is
covered. A shortfall larger than the balance is a hard failure; the fund
never pays out partially.
"""

from __future__ import annotations

from .core import InsufficientInsuranceFunds


class InsuranceFund:
    """Accumulator with running totals of what was accrued and drawn."""

    def __init__(self, balance: int = 0):
        if balance < 0:
            raise ValueError(f"Insurance fund balance cannot be negative, got {balance}")
        self._balance = balance
        self.total_accrued = 0
        self.total_drawn = 0

    @property
    def balance(self) -> int:
        return self._balance

    def accrue(self, fee: int) -> None:
        """Add a mint fee to the fund."""
        if fee < 0:
            raise ValueError(f"Fee cannot be negative, got {fee}")
        self._balance += fee
        self.total_accrued += fee

    def can_cover(self, shortfall: int) -> bool:
        return shortfall <= self._balance

    def cover(self, shortfall: int) -> int:
        """
        Draw `shortfall` from the fund.

        Returns:
            The remaining balance

        Raises:
            InsufficientInsuranceFunds: If the balance is less than shortfall
        """
        if shortfall < 0:
            raise ValueError(f"Shortfall cannot be negative, got {shortfall}")
        if not self.can_cover(shortfall):
            raise InsufficientInsuranceFunds(shortfall, self._balance)
        self._balance -= shortfall
        self.total_drawn += shortfall
        return self._balance

    def copy(self) -> InsuranceFund:
        cloned = InsuranceFund(self._balance)
        cloned.total_accrued = self.total_accrued
        cloned.total_drawn = self.total_drawn
        return cloned

    def __repr__(self):
        return f"InsuranceFund(balance={self._balance})"
