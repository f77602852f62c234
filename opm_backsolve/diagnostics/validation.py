"""
Consistency diagnostics for call prices and OPM allocations.

This module implements the post-hoc checks applied to calculation output:
- Call price no-arbitrage bounds
- Call value monotonicity across breakpoint strikes
- Conservation of value and sign checks on an allocation
"""

import math

from opm_backsolve.utils.constants import CONSERVATION_TOLERANCE
from opm_backsolve.utils.types import (
    ArbitrageCheck,
    BreakpointActivity,
    ClassAllocation,
    OptionResult,
)

PRICE_TOLERANCE = 1e-6


def check_call_bounds(result: OptionResult, tolerance: float = PRICE_TOLERANCE) -> ArbitrageCheck:
    """
    Validate a priced call against no-arbitrage bounds.

    Checks:
    1. Lower bound: C >= max(S·e^(-qT) - K·e^(-rT), 0)
    2. Upper bound: C <= S·e^(-qT)

    Args:
        result: Priced call (carries its inputs)
        tolerance: Tolerance for floating point comparisons

    Returns:
        ArbitrageCheck with validation results
    """
    params = result.params
    T = params.time_to_expiration
    discount_spot = params.company_value * math.exp(-params.dividend_yield * T)
    discount_strike = params.strike_price * math.exp(-params.risk_free_rate * T)
    call_price = result.call_value

    violations = []
    details = {}

    lower = max(discount_spot - discount_strike, 0.0)
    lower_ok = call_price >= lower - tolerance * max(1.0, lower)
    details["call_lower_bound"] = lower_ok
    if not lower_ok:
        violations.append(f"Call value {call_price:.4f} below lower bound {lower:.4f}")

    # A zero strike is priced as the undiscounted underlying
    upper = params.company_value if params.strike_price <= 0 else discount_spot
    upper_ok = call_price <= upper + tolerance * max(1.0, upper)
    details["call_upper_bound"] = upper_ok
    if not upper_ok:
        violations.append(f"Call value {call_price:.4f} above upper bound {upper:.4f}")

    return ArbitrageCheck(is_valid=not violations, violations=violations, details=details)


def check_call_monotonicity(
    activity: list[BreakpointActivity], tolerance: float = PRICE_TOLERANCE
) -> ArbitrageCheck:
    """
    Check that call values do not increase with the breakpoint strike.

    For strikes K1 < K2 priced at the same enterprise value: C(K1) >= C(K2).

    Args:
        activity: Breakpoint pricing from one allocation
        tolerance: Relative tolerance for price comparisons

    Returns:
        ArbitrageCheck with validation results
    """
    ordered = sorted(activity, key=lambda a: a.breakpoint_value)
    violations = []

    for lower, upper in zip(ordered, ordered[1:]):
        slack = tolerance * max(1.0, lower.call_value)
        if lower.call_value < upper.call_value - slack:
            violations.append(
                f"Call monotonicity violated: C(K={lower.breakpoint_value}) = "
                f"{lower.call_value:.4f} < C(K={upper.breakpoint_value}) = {upper.call_value:.4f}"
            )

    details = {"breakpoints_checked": len(ordered), "call_monotonic": not violations}
    return ArbitrageCheck(is_valid=not violations, violations=violations, details=details)


def validate_allocation(
    enterprise_value: float,
    total_value_distributed: float,
    allocations: list[ClassAllocation],
    tolerance: float = CONSERVATION_TOLERANCE,
) -> list[str]:
    """
    Check an allocation for conservation of value, negatives and NaN.

    Args:
        enterprise_value: Value being allocated
        total_value_distributed: Sum of class values
        allocations: Per-class results
        tolerance: Fraction by which the distributed total may exceed EV

    Returns:
        Validation error messages (empty when the allocation is valid)
    """
    errors = []

    if math.isnan(total_value_distributed):
        errors.append("Total value distributed is NaN")
    elif total_value_distributed > enterprise_value * (1.0 + tolerance):
        errors.append(
            f"Total allocated value ({total_value_distributed:,.2f}) exceeds "
            f"enterprise value ({enterprise_value:,.2f})"
        )

    for allocation in allocations:
        if math.isnan(allocation.total_value) or math.isnan(allocation.value_per_share):
            errors.append(f"NaN value for {allocation.security_class}")
            continue
        if allocation.total_value < 0:
            errors.append(
                f"Negative allocation for {allocation.security_class}: "
                f"{allocation.total_value:,.2f}"
            )
        if allocation.value_per_share < 0:
            errors.append(
                f"Negative value per share for {allocation.security_class}: "
                f"{allocation.value_per_share:,.4f}"
            )

    return errors
