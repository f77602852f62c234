"""
Unit tests for the OPM allocation engine.

This module validates:
1. Conservation of value across tranches
2. Breakpoint order independence
3. Tranche attribution to participating classes
4. Input validation
"""

from dataclasses import replace

import pytest

from opm_backsolve.core.allocation import OPMCalculationEngine, get_fmv_per_share
from opm_backsolve.core.black_scholes import price_call
from opm_backsolve.utils.errors import ParameterRangeError, StructuralError
from opm_backsolve.utils.trace import AuditTrailLogger
from opm_backsolve.utils.types import (
    AllocationContext,
    Breakpoint,
    BreakpointAllocation,
    BreakpointType,
)


@pytest.fixture
def engine():
    return OPMCalculationEngine()


@pytest.fixture
def preferred_context(opm_params, preferred_common_breakpoints, preferred_common_shares):
    return AllocationContext(
        enterprise_value=20_000_000.0,
        params=opm_params,
        breakpoints=preferred_common_breakpoints,
        total_shares=10_000_000.0,
        share_class_totals=preferred_common_shares,
    )


def by_class(result):
    return {a.security_class: a for a in result.allocations_by_class}


# ===========================
# Single Class Tests
# ===========================


def test_common_only_receives_enterprise_value(engine, opm_params, common_only_breakpoints):
    context = AllocationContext(
        enterprise_value=10_000_000.0,
        params=opm_params,
        breakpoints=common_only_breakpoints,
        total_shares=1_000_000.0,
        share_class_totals={"common": 1_000_000.0},
    )
    result = engine.calculate(context)

    assert result.valid
    assert abs(result.total_value_distributed - 10_000_000.0) < 1.0
    assert result.unallocated_value < 1.0
    assert abs(get_fmv_per_share(result, "common") - 10.0) < 1e-6
    assert by_class(result)["common"].percent_of_total == pytest.approx(100.0)


def test_unknown_class_has_zero_fmv(engine, preferred_context):
    assert get_fmv_per_share(engine.calculate(preferred_context), "series_z") == 0.0


# ===========================
# Conservation Tests
# ===========================


def test_total_distributed_within_enterprise_value(engine, preferred_context):
    result = engine.calculate(preferred_context)

    assert result.valid
    assert result.validation_errors == []
    assert result.total_value_distributed <= preferred_context.enterprise_value * 1.01
    assert result.total_value_distributed + result.unallocated_value == pytest.approx(
        preferred_context.enterprise_value, rel=1e-9
    )


def test_class_values_sum_to_distributed(engine, preferred_context):
    result = engine.calculate(preferred_context)
    total = sum(a.total_value for a in result.allocations_by_class)

    assert total == pytest.approx(result.total_value_distributed, rel=1e-12)
    assert sum(a.percent_of_total for a in result.allocations_by_class) == pytest.approx(100.0)


def test_tranches_telescope(engine, preferred_context):
    result = engine.calculate(preferred_context)
    increments = sum(a.incremental_value for a in result.breakpoint_activity)
    assert increments == pytest.approx(result.breakpoint_activity[0].call_value, rel=1e-12)


@pytest.mark.parametrize("enterprise_value", [1_000_000.0, 5_000_000.0, 50_000_000.0, 1e9])
def test_conservation_across_values(engine, preferred_context, enterprise_value):
    result = engine.calculate(replace(preferred_context, enterprise_value=enterprise_value))
    assert result.valid
    assert all(a.total_value >= 0 for a in result.allocations_by_class)
    assert result.total_value_distributed <= enterprise_value * 1.01


# ===========================
# Ordering and Attribution Tests
# ===========================


def test_breakpoint_order_irrelevant(engine, preferred_context):
    forward = engine.calculate(preferred_context)
    backward = engine.calculate(
        replace(preferred_context, breakpoints=tuple(reversed(preferred_context.breakpoints)))
    )

    assert [a.security_class for a in forward.allocations_by_class] == [
        a.security_class for a in backward.allocations_by_class
    ]
    for f, b in zip(forward.allocations_by_class, backward.allocations_by_class):
        assert f.total_value == b.total_value
    assert [a.breakpoint_id for a in backward.breakpoint_activity] == ["bp-lp", "bp-common"]


def test_tranche_attributed_to_lower_breakpoint(engine, preferred_context, opm_params):
    """
    Value between $0 and $5M goes to series_a alone; value above $5M is
    shared 20/80 by the participants of the $5M breakpoint.
    """
    ev = preferred_context.enterprise_value
    c_low = price_call(opm_params.option_params(ev, 0.00001)).call_value
    c_high = price_call(opm_params.option_params(ev, 5_000_000.0)).call_value

    classes = by_class(engine.calculate(preferred_context))

    assert classes["series_a"].total_value == pytest.approx((c_low - c_high) + 0.2 * c_high)
    assert classes["common"].total_value == pytest.approx(0.8 * c_high)
    assert classes["common"].value_per_share == pytest.approx(0.8 * c_high / 8_000_000.0)


def test_allocations_sorted_by_value(engine, preferred_context):
    values = [a.total_value for a in engine.calculate(preferred_context).allocations_by_class]
    assert values == sorted(values, reverse=True)


def test_activity_reports_pricing(engine, preferred_context):
    activity = engine.calculate(preferred_context).breakpoint_activity

    assert all(a.active for a in activity)
    assert activity[0].call_value > activity[1].call_value
    assert activity[1].d1 > activity[1].d2
    assert activity[0].breakpoint_type == BreakpointType.LIQUIDATION_PREFERENCE
    common_change = activity[1].allocation_changes[1]
    assert common_change.security_class == "common"
    assert common_change.value_received == pytest.approx(0.8 * activity[1].incremental_value)


def test_value_below_first_threshold_unallocated(engine, opm_params):
    breakpoints = (
        Breakpoint("bp-1", 1_000_000.0, BreakpointType.PRO_RATA_DISTRIBUTION,
                   (BreakpointAllocation("common", 1.0),)),
    )
    context = AllocationContext(2_000_000.0, opm_params, breakpoints, 1_000_000.0, {"common": 1_000_000.0})
    result = engine.calculate(context)

    call = price_call(opm_params.option_params(2_000_000.0, 1_000_000.0)).call_value
    assert result.unallocated_value == pytest.approx(2_000_000.0 - call)
    assert result.total_value_distributed == pytest.approx(call)


def test_zero_participation_class_receives_nothing(engine, opm_params):
    breakpoints = (
        Breakpoint("bp-0", 0.0, BreakpointType.PRO_RATA_DISTRIBUTION,
                   (BreakpointAllocation("common", 1.0), BreakpointAllocation("warrants", 0.0))),
    )
    context = AllocationContext(1_000_000.0, opm_params, breakpoints, 1_000_000.0)
    classes = by_class(engine.calculate(context))

    assert classes["warrants"].total_value == 0.0
    assert classes["common"].value_per_share == 0.0  # no share count supplied


# ===========================
# Validation Tests
# ===========================


@pytest.mark.parametrize(
    "field,value",
    [
        ("volatility", 0.0),
        ("volatility", 5.5),
        ("risk_free_rate", -0.01),
        ("risk_free_rate", 1.5),
        ("time_to_liquidity", 0.0),
        ("time_to_liquidity", 25.0),
        ("dividend_yield", -0.01),
    ],
)
def test_invalid_opm_params_raise(engine, preferred_context, field, value):
    context = replace(preferred_context, params=replace(preferred_context.params, **{field: value}))
    with pytest.raises(ParameterRangeError) as exc_info:
        engine.calculate(context)
    assert exc_info.value.field == field


@pytest.mark.parametrize("field", ["enterprise_value", "total_shares"])
def test_non_positive_totals_raise(engine, preferred_context, field):
    with pytest.raises(ParameterRangeError):
        engine.calculate(replace(preferred_context, **{field: 0.0}))


def test_no_breakpoints_raise(engine, preferred_context):
    with pytest.raises(StructuralError):
        engine.calculate(replace(preferred_context, breakpoints=()))


def test_negative_breakpoint_value_raises(engine, preferred_context):
    bad = replace(preferred_context.breakpoints[1], value=-1.0)
    with pytest.raises(ParameterRangeError):
        engine.calculate(replace(preferred_context, breakpoints=(preferred_context.breakpoints[0], bad)))


def test_percentage_participation_rejected(engine, preferred_context):
    bad = replace(
        preferred_context.breakpoints[0],
        allocation=(BreakpointAllocation("series_a", 100.0),),
    )
    with pytest.raises(ParameterRangeError) as exc_info:
        engine.calculate(replace(preferred_context, breakpoints=(bad,)))
    assert exc_info.value.field == "participation"


def test_breakpoint_from_percent_dict():
    breakpoint = Breakpoint.from_dict(
        {
            "id": "bp-common",
            "value": 5_000_000,
            "type": "pro_rata_distribution",
            "allocation": [
                {"securityClass": "series_a", "participationPercentage": 20},
                {"securityClass": "common", "participationPercentage": 80},
            ],
        },
        percent=True,
    )
    assert breakpoint.allocation[0].participation == pytest.approx(0.2)
    assert breakpoint.participates("common")
    assert not breakpoint.participates("series_b")


# ===========================
# Tracing Tests
# ===========================


def test_trace_does_not_change_numbers(preferred_context):
    trace = AuditTrailLogger()
    silent = OPMCalculationEngine().calculate(preferred_context)
    traced = OPMCalculationEngine(trace).calculate(preferred_context)

    assert silent.total_value_distributed == traced.total_value_distributed
    assert [a.total_value for a in silent.allocations_by_class] == [
        a.total_value for a in traced.allocations_by_class
    ]
    assert trace.steps_taken == 2
    assert trace.summary()["debug"] == 2
