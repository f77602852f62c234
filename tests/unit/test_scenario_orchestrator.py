"""
Unit tests for hybrid PWERM orchestration.
"""

import math
from dataclasses import replace

import pytest

from opm_backsolve.solvers.scenario_orchestrator import (
    ScenarioOrchestrator,
    validate_probabilities,
    weighted_statistics,
)
from opm_backsolve.utils.trace import AuditTrailLogger
from opm_backsolve.utils.types import (
    Breakpoint,
    BreakpointAllocation,
    BreakpointType,
    HybridPWERMRequest,
    HybridScenario,
    ProbabilityFormat,
)


@pytest.fixture
def pwerm_request(opm_params, common_only_breakpoints):
    return HybridPWERMRequest(
        security_class="common",
        scenarios=(
            HybridScenario("downside", 0.5, 10.0),
            HybridScenario("upside", 0.5, 20.0, param_overrides={"volatility": 0.4}),
        ),
        params=opm_params,
        breakpoints=common_only_breakpoints,
        total_shares=1_000_000.0,
        target_weighted_fmv=15.0,
    )


# ===========================
# Orchestration Tests
# ===========================


def test_each_scenario_backsolved(pwerm_request):
    result = ScenarioOrchestrator().execute(pwerm_request)

    assert result.success
    assert result.converged
    downside, upside = result.scenario_results
    assert abs(downside.calculated_fmv - 10.0) < 0.01
    assert abs(upside.calculated_fmv - 20.0) < 0.01
    assert abs(downside.enterprise_value - 10_000_000.0) < 10_000.0
    assert abs(upside.enterprise_value - 20_000_000.0) < 10_000.0


def test_weighted_values(pwerm_request):
    result = ScenarioOrchestrator().execute(pwerm_request)

    assert abs(result.weighted_fmv - 15.0) < 0.01
    assert abs(result.enterprise_value - 15_000_000.0) < 10_000.0
    assert result.error < 0.01
    assert sum(r.percent_of_weighted_value for r in result.scenario_results) == pytest.approx(100.0)
    assert result.scenario_results[1].weighted_contribution == pytest.approx(
        0.5 * result.scenario_results[1].calculated_fmv
    )


def test_param_overrides_apply_per_scenario(pwerm_request, opm_params):
    downside, upside = ScenarioOrchestrator().execute(pwerm_request).scenario_results
    assert downside.params == opm_params
    assert upside.params.volatility == 0.4
    assert upside.params.time_to_liquidity == opm_params.time_to_liquidity


def test_failed_scenario_does_not_stop_others(pwerm_request):
    preferred_only = (
        Breakpoint("bp-lp", 0.0, BreakpointType.LIQUIDATION_PREFERENCE,
                   (BreakpointAllocation("series_a", 1.0),)),
    )
    scenarios = (
        HybridScenario("broken", 0.5, 10.0, breakpoints=preferred_only),
        pwerm_request.scenarios[1],
    )
    result = ScenarioOrchestrator().execute(replace(pwerm_request, scenarios=scenarios))

    assert not result.success
    assert len(result.scenario_results) == 2
    assert not result.scenario_results[0].success
    assert result.scenario_results[1].success
    assert any("broken" in message for message in result.errors)


def test_unknown_override_recorded_as_scenario_failure(pwerm_request, opm_params):
    scenarios = (
        HybridScenario("typo", 0.5, 10.0, param_overrides={"vol": 0.5}),
        pwerm_request.scenarios[1],
    )
    result = ScenarioOrchestrator().execute(replace(pwerm_request, scenarios=scenarios))

    typo, upside = result.scenario_results
    assert not result.success
    assert not typo.success
    assert typo.params == opm_params
    assert upside.success
    assert any("unknown OPM parameter(s): vol" in message for message in result.errors)


def test_probability_errors_returned_before_solving(pwerm_request):
    trace = AuditTrailLogger()
    scenarios = (
        HybridScenario("downside", 0.5, 10.0),
        HybridScenario("upside", 0.3, 20.0),
    )
    result = ScenarioOrchestrator(trace).execute(replace(pwerm_request, scenarios=scenarios))

    assert not result.success
    assert result.scenario_results == []
    assert not result.probability_validation.valid
    assert "Total probability is 0.8, expected 1" in result.errors
    assert not any(e.category == "Backsolve" for e in trace.entries)


# ===========================
# Probability Validation Tests
# ===========================


def test_percentage_probabilities_normalized():
    validation = validate_probabilities([60.0, 40.0], ProbabilityFormat.PERCENTAGE)
    assert validation.valid
    assert validation.total_probability == 100.0
    assert validation.normalized_probabilities == pytest.approx([0.6, 0.4])


@pytest.mark.parametrize(
    "probabilities,message",
    [
        ([], "No scenarios provided"),
        ([1.2, -0.2], "Probability 2 is negative: -0.2"),
        ([1.5, 0.5], "Probability 1 exceeds maximum: 1.5"),
        ([0.0, 0.0], "Total probability is zero"),
    ],
)
def test_invalid_probabilities(probabilities, message):
    validation = validate_probabilities(probabilities, ProbabilityFormat.DECIMAL)
    assert not validation.valid
    assert message in validation.errors


def test_sum_within_tolerance_accepted():
    assert validate_probabilities([0.335, 0.335, 0.335], ProbabilityFormat.DECIMAL).valid


# ===========================
# Statistics Tests
# ===========================


def test_weighted_statistics():
    stats = weighted_statistics([1.0, 2.0, 3.0], [0.25, 0.5, 0.25])

    assert stats.weighted_mean == pytest.approx(2.0)
    assert stats.weighted_variance == pytest.approx(0.5)
    assert stats.weighted_std_dev == pytest.approx(math.sqrt(0.5))
    assert stats.coefficient_of_variation == pytest.approx(math.sqrt(0.5) / 2.0)
    assert (stats.percentile_25, stats.percentile_50, stats.percentile_75) == (1.0, 2.0, 2.0)


def test_statistics_of_unordered_values():
    stats = weighted_statistics([30.0, 10.0, 20.0], [0.2, 0.5, 0.3])
    assert stats.percentile_25 == 10.0
    assert stats.percentile_50 == 10.0
    assert stats.percentile_75 == 20.0


def test_empty_statistics():
    stats = weighted_statistics([], [])
    assert stats.weighted_mean == 0.0
    assert stats.coefficient_of_variation == 0.0
