"""
rates.py - Interest accrual, exchange-rate conversion and staking plans.

PURE FUNCTIONS - all inputs explicit, no LedgerView, no hidden state.

Key Formulas:
    interest   = principal * apy_bps * elapsed_seconds / (SECONDS_PER_YEAR * BPS_DENOMINATOR)
    settlement = amount * rate / RATE_SCALE

The exchange rate is an integer: settlement units per one whole principal
token, scaled by 10^18. Amounts are Decimals in whole-token units; each
result is floored to the precision of the currency it is denominated in.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping

from .core import InvalidPlan, InvalidRate, quantize_down


SECONDS_PER_DAY = 86_400
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY
BPS_DENOMINATOR = 10_000
RATE_SCALE = 10 ** 18

PLAN_IDS = (1, 2, 3, 4)


@dataclass(frozen=True, slots=True)
class Plan:
    """A fixed (APY, duration) pair selectable when opening a stake."""
    apy_bps: int
    duration: int  # seconds

    def __post_init__(self):
        if self.apy_bps < 0:
            raise ValueError(f"apy_bps cannot be negative, got {self.apy_bps}")
        if self.duration <= 0:
            raise ValueError(f"duration must be positive, got {self.duration}")


DEFAULT_PLANS: Mapping[int, Plan] = {
    1: Plan(apy_bps=897, duration=90 * SECONDS_PER_DAY),
    2: Plan(apy_bps=1200, duration=180 * SECONDS_PER_DAY),
    3: Plan(apy_bps=1500, duration=270 * SECONDS_PER_DAY),
    4: Plan(apy_bps=2000, duration=365 * SECONDS_PER_DAY),
}


def resolve_plan(plans: Mapping[int, Plan], plan_id: int) -> Plan:
    """
    Look up one of the four plan slots.

    Raises:
        InvalidPlan: if plan_id is not 1, 2, 3 or 4.
    """
    if plan_id not in PLAN_IDS or plan_id not in plans:
        raise InvalidPlan(f"plan_id must be one of {PLAN_IDS}, got {plan_id}")
    return plans[plan_id]


def calculate_interest(
    principal: Decimal,
    apy_bps: int,
    elapsed_seconds: int,
    decimal_places: int,
) -> Decimal:
    """
    Linear (non-compounding) interest in principal-token units.

    The result is floored to decimal_places.

    Example:
        # 1000 tokens at 8.97% for 90 days
        calculate_interest(Decimal("1000"), 897, 90 * 86400, 18)
        # -> Decimal("22.117808219178082191")
    """
    if principal <= 0 or apy_bps <= 0 or elapsed_seconds <= 0:
        return Decimal("0")
    raw = (
        principal * Decimal(apy_bps) * Decimal(elapsed_seconds)
        / Decimal(SECONDS_PER_YEAR * BPS_DENOMINATOR)
    )
    return quantize_down(raw, decimal_places)


def convert_to_settlement(amount: Decimal, rate: int, decimal_places: int) -> Decimal:
    """
    Convert a principal-token amount into settlement-currency units.

    Args:
        amount: Principal-token amount (whole-token units)
        rate: Settlement units per 1 principal token, scaled by RATE_SCALE
        decimal_places: Settlement currency precision

    Raises:
        InvalidRate: if rate is zero or negative.
    """
    if rate <= 0:
        raise InvalidRate(f"exchange rate must be positive, got {rate}")
    raw = amount * Decimal(rate) / Decimal(RATE_SCALE)
    return quantize_down(raw, decimal_places)


def calculate_settlement_interest(
    principal: Decimal,
    plan: Plan,
    elapsed_seconds: int,
    rate: int,
    principal_decimals: int,
    settlement_decimals: int,
) -> Decimal:
    """Interest over elapsed_seconds, capped at the plan duration, in settlement units."""
    elapsed = max(0, min(elapsed_seconds, plan.duration))
    interest = calculate_interest(principal, plan.apy_bps, elapsed, principal_decimals)
    return convert_to_settlement(interest, rate, settlement_decimals)
