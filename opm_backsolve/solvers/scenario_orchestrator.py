"""
Hybrid PWERM (Probability-Weighted Expected Return Method) orchestration.

Each scenario carries its own target FMV and, optionally, its own OPM
assumptions and breakpoints. Every scenario is backsolved independently;
the results are then weighted by probability:

    weighted_fmv = Σ p_i · FMV_i
    weighted_ev  = Σ p_i · EV_i
"""

import math
import time
from dataclasses import fields, replace
from typing import Optional

from opm_backsolve.solvers.backsolve import BacksolveOptimizer
from opm_backsolve.utils.constants import PERCENT_SCALE, PROBABILITY_SUM_TOLERANCE
from opm_backsolve.utils.errors import OPMError, StructuralError
from opm_backsolve.utils.precision import DEFAULT_PRECISION, PrecisionConfig
from opm_backsolve.utils.trace import NullTraceLogger, TraceLogger
from opm_backsolve.utils.types import (
    AllocationResult,
    BacksolveRequest,
    HybridPWERMRequest,
    HybridPWERMResult,
    HybridScenario,
    HybridScenarioResult,
    OPMParams,
    PWERMStatistics,
    ProbabilityFormat,
    ProbabilityValidation,
)

CATEGORY = "Hybrid PWERM"


def scenario_params(base: OPMParams, scenario: HybridScenario) -> OPMParams:
    """Apply a scenario's OPM overrides; unknown keys raise StructuralError."""
    overrides = dict(scenario.param_overrides)
    unknown = sorted(set(overrides) - {f.name for f in fields(OPMParams)})
    if unknown:
        raise StructuralError(
            f"Scenario '{scenario.name}' overrides unknown OPM parameter(s): {', '.join(unknown)}"
        )
    return replace(base, **overrides)


def validate_probabilities(
    probabilities: list[float],
    probability_format: ProbabilityFormat,
    tolerance: float = PROBABILITY_SUM_TOLERANCE,
) -> ProbabilityValidation:
    """
    Check scenario probabilities without raising.

    Args:
        probabilities: Raw probabilities
        probability_format: decimal (sum to 1) or percentage (sum to 100)
        tolerance: Allowed absolute deviation of the sum

    Returns:
        ProbabilityValidation with probabilities normalized to sum to 1
    """
    expected = 100.0 if probability_format == ProbabilityFormat.PERCENTAGE else 1.0
    errors = []

    if not probabilities:
        return ProbabilityValidation(False, 0.0, [], ["No scenarios provided"])

    for i, p in enumerate(probabilities, start=1):
        if p < 0:
            errors.append(f"Probability {i} is negative: {p:g}")
        elif p > expected:
            errors.append(f"Probability {i} exceeds maximum: {p:g}")

    total = sum(probabilities)
    if total == 0:
        errors.append("Total probability is zero")
    elif abs(total - expected) > tolerance:
        errors.append(f"Total probability is {total:g}, expected {expected:g}")

    normalized = [p / total for p in probabilities] if total > 0 else []
    return ProbabilityValidation(
        valid=not errors,
        total_probability=total,
        normalized_probabilities=normalized,
        errors=errors,
    )


def weighted_statistics(values: list[float], probabilities: list[float]) -> PWERMStatistics:
    """
    Probability-weighted mean, variance, standard deviation and percentiles.

    Percentiles are discrete: the smallest value whose cumulative
    probability reaches the percentile.
    """
    if not values:
        return PWERMStatistics()

    mean = sum(v * p for v, p in zip(values, probabilities))
    variance = sum((v - mean) ** 2 * p for v, p in zip(values, probabilities))
    std_dev = math.sqrt(variance)

    ordered = sorted(zip(values, probabilities))

    def percentile(q: float) -> float:
        cumulative = 0.0
        for value, probability in ordered:
            cumulative += probability
            if cumulative >= q:
                return value
        return ordered[-1][0]

    return PWERMStatistics(
        weighted_mean=mean,
        weighted_variance=variance,
        weighted_std_dev=std_dev,
        coefficient_of_variation=std_dev / mean if mean > 0 else 0.0,
        percentile_25=percentile(0.25),
        percentile_50=percentile(0.50),
        percentile_75=percentile(0.75),
    )


class ScenarioOrchestrator:
    """
    Runs a hybrid PWERM: one backsolve per scenario, then probability weighting.

    Args:
        trace: Audit trail logger (no-op by default)
        precision: Decimal precision for the solver
    """

    def __init__(
        self,
        trace: Optional[TraceLogger] = None,
        precision: PrecisionConfig = DEFAULT_PRECISION,
    ) -> None:
        self.trace = trace or NullTraceLogger()
        self.backsolver = BacksolveOptimizer(self.trace, precision)

    def execute(self, request: HybridPWERMRequest) -> HybridPWERMResult:
        """
        Backsolve every scenario and combine the results.

        Probability problems are returned as errors on the result rather
        than raised. A scenario that fails, by raising or by not
        converging, is recorded and the remaining scenarios still run.
        """
        started = time.perf_counter()
        self.trace.step(
            f"Starting hybrid PWERM for {request.security_class} "
            f"with {len(request.scenarios)} scenarios"
        )

        validation = validate_probabilities(
            [s.probability for s in request.scenarios], request.probability_format
        )
        if not validation.valid:
            for message in validation.errors:
                self.trace.error(CATEGORY, message)
            return HybridPWERMResult(
                success=False,
                enterprise_value=0.0,
                weighted_fmv=0.0,
                error=float("inf"),
                converged=False,
                scenario_results=[],
                probability_validation=validation,
                statistics=PWERMStatistics(),
                execution_time_ms=(time.perf_counter() - started) * 1000.0,
                errors=list(validation.errors),
            )

        results = []
        errors: list[str] = []
        warnings: list[str] = []
        for scenario, probability in zip(request.scenarios, validation.normalized_probabilities):
            results.append(self._run_scenario(request, scenario, probability, errors, warnings))

        weighted_fmv = sum(r.calculated_fmv * r.probability for r in results)
        for result in results:
            result.weighted_contribution = result.calculated_fmv * result.probability
            result.percent_of_weighted_value = (
                result.weighted_contribution / weighted_fmv * PERCENT_SCALE
                if weighted_fmv > 0 else 0.0
            )

        statistics = weighted_statistics(
            [r.calculated_fmv for r in results], [r.probability for r in results]
        )
        weighted_ev = sum(r.enterprise_value * r.probability for r in results)

        error = 0.0
        if request.target_weighted_fmv is not None:
            error = abs(weighted_fmv - request.target_weighted_fmv)

        converged = not errors and all(r.allocation.valid for r in results)
        self.trace.step(
            f"Hybrid PWERM complete: weighted FMV {weighted_fmv:,.4f}",
            weighted_fmv=weighted_fmv,
            weighted_enterprise_value=weighted_ev,
            success=converged,
        )

        return HybridPWERMResult(
            success=converged,
            enterprise_value=weighted_ev,
            weighted_fmv=weighted_fmv,
            error=error,
            converged=converged,
            scenario_results=results,
            probability_validation=validation,
            statistics=statistics,
            execution_time_ms=(time.perf_counter() - started) * 1000.0,
            errors=errors,
            warnings=warnings,
        )

    def _run_scenario(
        self,
        request: HybridPWERMRequest,
        scenario: HybridScenario,
        probability: float,
        errors: list[str],
        warnings: list[str],
    ) -> HybridScenarioResult:
        self.trace.info(
            CATEGORY, f"Processing scenario '{scenario.name}'",
            probability=probability, target_fmv=scenario.target_fmv,
        )

        params = request.params
        try:
            params = scenario_params(request.params, scenario)
            outcome = self.backsolver.backsolve(
                BacksolveRequest(
                    target_fmv=scenario.target_fmv,
                    security_class=request.security_class,
                    params=params,
                    breakpoints=scenario.breakpoints or request.breakpoints,
                    total_shares=request.total_shares,
                    share_class_totals=request.share_class_totals,
                    solver_overrides=request.solver_overrides,
                )
            )
        except OPMError as exc:
            errors.append(f"Scenario '{scenario.name}' failed validation: {exc}")
            self.trace.error(CATEGORY, f"Scenario '{scenario.name}' failed", error=str(exc))
            return HybridScenarioResult(
                name=scenario.name,
                probability=probability,
                target_fmv=scenario.target_fmv,
                calculated_fmv=0.0,
                enterprise_value=0.0,
                params=params,
                allocation=AllocationResult.empty(str(exc)),
                success=False,
            )

        if not outcome.success:
            detail = ", ".join(outcome.errors) or "did not converge"
            errors.append(f"Scenario '{scenario.name}' failed: {detail}")
        warnings.extend(f"[{scenario.name}] {w}" for w in outcome.warnings)

        return HybridScenarioResult(
            name=scenario.name,
            probability=probability,
            target_fmv=scenario.target_fmv,
            calculated_fmv=outcome.actual_fmv,
            enterprise_value=outcome.enterprise_value,
            params=params,
            allocation=outcome.allocation,
            success=outcome.success,
        )
