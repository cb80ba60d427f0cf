"""
parameters.py - Governance-mutable risk parameters

Four parameters drive every policy computation in the engine:

    liquidation_threshold   [20, 80] percent of collateral value counted as backing
    liquidation_bonus       [5, 20]  percent premium paid to liquidators
    target_health_factor    [1.1, 1.5] (18-decimal) buffer a liquidation restores
    mint_fee_bps            [5, 50]  basis points charged on every mint

Every update is bounded three ways: the new value must lie in its range, it
may move at most max_delta away from the current value, and a parameter can
change at most once per cooldown window (15 days). Together these bound how
far a single governance action can move the protocol.

Authorization is a separate check (require_governance); ProtocolParameters
itself only enforces the numeric rules.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .core import (
    PARAMETER_COOLDOWN, PRECISION,
    ChangeExceedsMaximum, CooldownNotElapsed, InvalidAddress, InvalidParameter,
    ParameterChange, Unauthorized,
)


# ============================================================================
# PARAMETER DEFINITIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class ParameterSpec:
    """
    Static definition of one governance parameter.

    Attributes:
        name: Parameter name
        min_value: Lowest accepted value (inclusive)
        max_value: Highest accepted value (inclusive)
        max_delta: Largest allowed |new - current| per update
        default: Value at deployment unless overridden
    """
    name: str
    min_value: int
    max_value: int
    max_delta: int
    default: int

    def contains(self, value: int) -> bool:
        return self.min_value <= value <= self.max_value


LIQUIDATION_THRESHOLD = ParameterSpec(
    "liquidation_threshold", min_value=20, max_value=80, max_delta=10, default=50,
)
LIQUIDATION_BONUS = ParameterSpec(
    "liquidation_bonus", min_value=5, max_value=20, max_delta=5, default=10,
)
TARGET_HEALTH_FACTOR = ParameterSpec(
    "target_health_factor",
    min_value=PRECISION * 11 // 10,
    max_value=PRECISION * 15 // 10,
    max_delta=PRECISION // 10,
    default=PRECISION * 125 // 100,
)
MINT_FEE = ParameterSpec(
    "mint_fee_bps", min_value=5, max_value=50, max_delta=10, default=20,
)

PARAMETER_SPECS: Dict[str, ParameterSpec] = {
    spec.name: spec
    for spec in (LIQUIDATION_THRESHOLD, LIQUIDATION_BONUS, TARGET_HEALTH_FACTOR, MINT_FEE)
}


@dataclass(frozen=True, slots=True)
class ParameterSnapshot:
    """
    Immutable view of all parameter values at one instant.

    Policy computations take a snapshot at the start of an operation so the
    whole operation sees one consistent set of values.
    """
    liquidation_threshold: int
    liquidation_bonus: int
    target_health_factor: int
    mint_fee_bps: int


def require_governance(caller: str, controller: str) -> None:
    """
    Raise Unauthorized unless caller is the governance controller.

    Raises:
        InvalidAddress: If caller is empty
        Unauthorized: If caller is not the controller
    """
    if not caller or not caller.strip():
        raise InvalidAddress("caller identity cannot be empty")
    if caller != controller:
        raise Unauthorized(f"{caller} is not the governance controller")


def _validate_value(spec: ParameterSpec, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidParameter(f"{spec.name} must be an int, got {type(value).__name__}")
    if not spec.contains(value):
        raise InvalidParameter(
            f"{spec.name}={value} outside [{spec.min_value}, {spec.max_value}]"
        )


# ============================================================================
# PROTOCOL PARAMETERS
# ============================================================================

class ProtocolParameters:
    """
    Current parameter values plus the per-parameter cooldown clock.

    A parameter that has never been updated has no last update time, so its
    first update is not subject to the cooldown.

    Example:
        params = ProtocolParameters()
        change = params.update("liquidation_bonus", 12, now)
        change.old_value, change.new_value  # (10, 12)
    """

    def __init__(
        self,
        liquidation_threshold: int = LIQUIDATION_THRESHOLD.default,
        liquidation_bonus: int = LIQUIDATION_BONUS.default,
        target_health_factor: int = TARGET_HEALTH_FACTOR.default,
        mint_fee_bps: int = MINT_FEE.default,
        min_cooldown: timedelta = PARAMETER_COOLDOWN,
    ):
        """
        Raises:
            InvalidParameter: If any initial value is outside its range
        """
        values = {
            LIQUIDATION_THRESHOLD.name: liquidation_threshold,
            LIQUIDATION_BONUS.name: liquidation_bonus,
            TARGET_HEALTH_FACTOR.name: target_health_factor,
            MINT_FEE.name: mint_fee_bps,
        }
        for name, value in values.items():
            _validate_value(PARAMETER_SPECS[name], value)
        self._values: Dict[str, int] = values
        self._last_update: Dict[str, Optional[datetime]] = {name: None for name in values}
        self.min_cooldown = min_cooldown
        self.history: List[ParameterChange] = []

    @property
    def liquidation_threshold(self) -> int:
        return self._values[LIQUIDATION_THRESHOLD.name]

    @property
    def liquidation_bonus(self) -> int:
        return self._values[LIQUIDATION_BONUS.name]

    @property
    def target_health_factor(self) -> int:
        return self._values[TARGET_HEALTH_FACTOR.name]

    @property
    def mint_fee_bps(self) -> int:
        return self._values[MINT_FEE.name]

    def get(self, name: str) -> int:
        return self._values[self._spec(name).name]

    def last_update_time(self, name: str) -> Optional[datetime]:
        return self._last_update[self._spec(name).name]

    def cooldown_remaining(self, name: str, now: datetime) -> timedelta:
        """Time left before `name` may change again (zero when it may change now)."""
        last = self.last_update_time(name)
        if last is None:
            return timedelta(0)
        return max(timedelta(0), last + self.min_cooldown - now)

    def snapshot(self) -> ParameterSnapshot:
        return ParameterSnapshot(
            liquidation_threshold=self.liquidation_threshold,
            liquidation_bonus=self.liquidation_bonus,
            target_health_factor=self.target_health_factor,
            mint_fee_bps=self.mint_fee_bps,
        )

    def as_dict(self) -> Dict[str, int]:
        return dict(self._values)

    def update(self, name: str, new_value: int, now: datetime) -> ParameterChange:
        """
        Apply one governance update after checking range, delta and cooldown.

        Args:
            name: Parameter name (see PARAMETER_SPECS)
            new_value: Proposed value
            now: Current time; stamped as the parameter's last update

        Returns:
            ParameterChange record with the before/after values

        Raises:
            InvalidParameter: If new_value is outside the range (or name is unknown)
            ChangeExceedsMaximum: If |new_value - current| > max_delta
            CooldownNotElapsed: If the previous update was less than min_cooldown ago
        """
        spec = self._spec(name)
        _validate_value(spec, new_value)
        current = self._values[spec.name]
        if abs(new_value - current) > spec.max_delta:
            raise ChangeExceedsMaximum(
                f"{spec.name}: change {current} -> {new_value} exceeds max delta {spec.max_delta}"
            )
        remaining = self.cooldown_remaining(spec.name, now)
        if remaining > timedelta(0):
            raise CooldownNotElapsed(f"{spec.name}: cooldown has {remaining} remaining")

        change = ParameterChange(spec.name, current, new_value, now)
        self._values[spec.name] = new_value
        self._last_update[spec.name] = now
        self.history.append(change)
        return change

    def update_liquidation_threshold(self, new_value: int, now: datetime) -> ParameterChange:
        return self.update(LIQUIDATION_THRESHOLD.name, new_value, now)

    def update_liquidation_bonus(self, new_value: int, now: datetime) -> ParameterChange:
        return self.update(LIQUIDATION_BONUS.name, new_value, now)

    def update_target_health_factor(self, new_value: int, now: datetime) -> ParameterChange:
        return self.update(TARGET_HEALTH_FACTOR.name, new_value, now)

    def update_mint_fee(self, new_value: int, now: datetime) -> ParameterChange:
        return self.update(MINT_FEE.name, new_value, now)

    def copy(self) -> ProtocolParameters:
        """Independent copy (values, cooldown clocks and history)."""
        cloned = ProtocolParameters.__new__(ProtocolParameters)
        cloned._values = dict(self._values)
        cloned._last_update = dict(self._last_update)
        cloned.min_cooldown = self.min_cooldown
        cloned.history = list(self.history)
        return cloned

    @staticmethod
    def _spec(name: str) -> ParameterSpec:
        spec = PARAMETER_SPECS.get(name)
        if spec is None:
            raise InvalidParameter(f"unknown parameter {name!r}")
        return spec

    def __repr__(self):
        values = ", ".join(f"{k}={v}" for k, v in self._values.items())
        return f"ProtocolParameters({values})"
