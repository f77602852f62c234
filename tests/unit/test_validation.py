"""Unit tests for call and allocation diagnostics."""

import math

from opm_backsolve.core.allocation import OPMCalculationEngine
from opm_backsolve.core.black_scholes import price_call
from opm_backsolve.diagnostics.validation import (
    check_call_bounds,
    check_call_monotonicity,
    validate_allocation,
)
from opm_backsolve.utils.types import (
    AllocationContext,
    BreakpointActivity,
    BreakpointType,
    ClassAllocation,
    OptionParams,
    OptionResult,
)


def activity(value, call_value):
    return BreakpointActivity(
        breakpoint_id=f"bp-{value}",
        breakpoint_value=value,
        breakpoint_type=BreakpointType.PRO_RATA_DISTRIBUTION,
        active=True,
        call_value=call_value,
        d1=0.0, d2=0.0, nd1=0.0, nd2=0.0,
        incremental_value=0.0,
        allocation_changes=[],
    )


def allocation(security_class, value, per_share=1.0):
    return ClassAllocation(security_class, 1.0, value, per_share, 0.0)


def test_priced_call_within_bounds(standard_params):
    """Priced calls should pass the bounds check."""
    check = check_call_bounds(price_call(standard_params))
    assert check.is_valid
    assert check.details == {"call_lower_bound": True, "call_upper_bound": True}


def test_zero_strike_within_bounds():
    check = check_call_bounds(price_call(OptionParams(100.0, 0.0, 1.0, 0.3, 0.05, 0.02)))
    assert check.is_valid


def test_call_above_underlying_flagged(standard_params):
    bogus = OptionResult(120.0, 0.0, 0.0, 1.0, 1.0, standard_params)
    check = check_call_bounds(bogus)
    assert not check.is_valid
    assert "above upper bound" in check.violations[0]


def test_call_below_intrinsic_flagged():
    params = OptionParams(150.0, 100.0, 1.0, 0.2, 0.05)
    check = check_call_bounds(OptionResult(10.0, 0.0, 0.0, 0.5, 0.5, params))
    assert not check.is_valid
    assert not check.details["call_lower_bound"]


def test_engine_activity_monotonic(opm_params, preferred_common_breakpoints):
    result = OPMCalculationEngine().calculate(
        AllocationContext(20_000_000.0, opm_params, preferred_common_breakpoints, 10_000_000.0)
    )
    check = check_call_monotonicity(result.breakpoint_activity)
    assert check.is_valid
    assert check.details["breakpoints_checked"] == 2


def test_rising_call_values_flagged():
    check = check_call_monotonicity([activity(5.0, 8.0), activity(0.0, 10.0), activity(10.0, 9.0)])
    assert not check.is_valid
    assert len(check.violations) == 1


def test_valid_allocation_has_no_errors():
    assert validate_allocation(100.0, 100.0, [allocation("common", 100.0)]) == []


def test_overallocation_within_tolerance_accepted():
    assert validate_allocation(100.0, 100.9, [allocation("common", 100.9)]) == []


def test_overallocation_flagged():
    errors = validate_allocation(100.0, 102.0, [allocation("common", 102.0)])
    assert errors == ["Total allocated value (102.00) exceeds enterprise value (100.00)"]


def test_negative_and_nan_flagged():
    errors = validate_allocation(
        100.0,
        50.0,
        [allocation("common", -1.0, per_share=-0.5), allocation("series_a", math.nan)],
    )
    assert "Negative allocation for common: -1.00" in errors
    assert "Negative value per share for common: -0.5000" in errors
    assert "NaN value for series_a" in errors


def test_nan_total_flagged():
    assert validate_allocation(100.0, math.nan, []) == ["Total value distributed is NaN"]
