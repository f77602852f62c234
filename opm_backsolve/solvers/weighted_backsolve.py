"""
Probability-weighted (hybrid PWERM) OPM backsolve.

Several exit scenarios each carry a probability and their own OPM
assumptions. All but one scenario have a known enterprise value; the
backsolve finds the unknown scenario's enterprise value such that

    Σ p_i · FMV_i = target_fmv

Since the fixed scenarios contribute a constant, this reduces to a
single-scenario search for the FMV the unknown scenario must produce:

    required_fmv = (target_fmv - Σ_fixed p_i · FMV_i) / p_unknown
"""

import math
import time
from typing import Mapping, Optional

import structlog

from opm_backsolve.core.allocation import OPMCalculationEngine, get_fmv_per_share
from opm_backsolve.solvers.backsolve import (
    default_share_counts,
    fmv_function,
    search_seed,
    solver_params,
    validate_cap_table,
)
from opm_backsolve.solvers.optimizer import OptimizerEngine
from opm_backsolve.utils.constants import PROBABILITY_SUM_TOLERANCE, VERIFICATION_TOLERANCE
from opm_backsolve.utils.errors import (
    DomainInfeasibilityError,
    ParameterRangeError,
    StructuralError,
)
from opm_backsolve.utils.precision import DEFAULT_PRECISION, PrecisionConfig
from opm_backsolve.utils.trace import NullTraceLogger, TraceLogger
from opm_backsolve.utils.types import (
    AllocationContext,
    AllocationResult,
    ProbabilityFormat,
    Scenario,
    ScenarioResult,
    WeightedBacksolveMetadata,
    WeightedBacksolveRequest,
    WeightedBacksolveResult,
)

logger = structlog.get_logger()

CATEGORY = "Weighted Backsolve"


def normalized_probabilities(
    scenarios: tuple[Scenario, ...], probability_format: ProbabilityFormat
) -> list[float]:
    """
    Validate scenario probabilities and convert them to decimals.

    Raises:
        ParameterRangeError: A negative probability, or a sum that is not
            1 (decimal) / 100 (percentage) within 0.01
    """
    scale = 100.0 if probability_format == ProbabilityFormat.PERCENTAGE else 1.0

    for scenario in scenarios:
        if scenario.probability < 0 or math.isnan(scenario.probability):
            raise ParameterRangeError(
                "probability", scenario.probability,
                f"Scenario '{scenario.name}' has invalid probability {scenario.probability}",
            )

    total = sum(s.probability for s in scenarios)
    if abs(total - scale) > PROBABILITY_SUM_TOLERANCE:
        raise ParameterRangeError(
            "probability", total,
            f"Scenario probabilities must sum to {scale:g}, got {total:g}",
        )
    return [s.probability / scale for s in scenarios]


class WeightedBacksolveOptimizer:
    """
    Backsolves the unknown enterprise value of a multi-scenario valuation.

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
        self.precision = precision
        self.engine = OPMCalculationEngine(self.trace)
        self.optimizer = OptimizerEngine(self.trace, precision)

    def backsolve(self, request: WeightedBacksolveRequest) -> WeightedBacksolveResult:
        """
        Solve for the unknown scenario's enterprise value.

        Args:
            request: Target weighted FMV, scenarios (exactly one unknown) and cap table

        Returns:
            WeightedBacksolveResult with every scenario recomputed at its
            final enterprise value. Solver failures are reported in the result.

        Raises:
            ParameterRangeError: Non-positive target, invalid probabilities or
                a fixed scenario without a positive enterprise value
            StructuralError: Fewer than two scenarios, not exactly one unknown,
                or an unusable cap table
            DomainInfeasibilityError: The fixed scenarios already reach or
                exceed the target
        """
        started = time.perf_counter()
        self._validate(request)

        probabilities = normalized_probabilities(request.scenarios, request.probability_format)
        unknown_index = next(i for i, s in enumerate(request.scenarios) if s.is_unknown)
        unknown = request.scenarios[unknown_index]
        unknown_probability = probabilities[unknown_index]
        if not unknown_probability > 0:
            raise DomainInfeasibilityError(
                f"Unknown scenario '{unknown.name}' has zero probability; "
                f"its enterprise value cannot affect the weighted FMV"
            )

        share_counts = default_share_counts(
            request.security_class, request.total_shares, request.share_class_totals
        )

        self.trace.step(
            f"Weighted backsolve of {request.security_class} to FMV {request.target_fmv:,.4f} "
            f"across {len(request.scenarios)} scenarios",
            unknown_scenario=unknown.name,
        )

        fixed_sum = 0.0
        for scenario, probability in zip(request.scenarios, probabilities):
            if scenario.is_unknown:
                continue
            fmv = get_fmv_per_share(
                self._allocate(request, scenario, scenario.enterprise_value, share_counts),
                request.security_class,
            )
            fixed_sum += probability * fmv
            self.trace.debug(
                CATEGORY, f"Fixed scenario '{scenario.name}': FMV {fmv:,.4f}",
                probability=probability, fmv=fmv,
            )

        required_fmv = (request.target_fmv - fixed_sum) / unknown_probability
        if not required_fmv > 0:
            raise DomainInfeasibilityError(
                f"Fixed scenarios contribute {fixed_sum:,.4f}, which already meets the "
                f"target {request.target_fmv:,.4f}; no positive FMV for '{unknown.name}' "
                f"can satisfy it"
            )

        self.trace.info(
            CATEGORY, f"Unknown scenario must reach FMV {required_fmv:,.4f}",
            fixed_weighted_sum=fixed_sum, required_fmv=required_fmv,
        )

        metadata = WeightedBacksolveMetadata(
            execution_time_ms=0.0,
            iterations=0,
            method="failed",
            fixed_weighted_sum=fixed_sum,
            required_fmv=required_fmv,
        )

        fmv_fn = fmv_function(
            OPMCalculationEngine(),
            request.security_class,
            unknown.params,
            request.breakpoints,
            request.total_shares,
            share_counts,
            self.precision,
        )
        target = self.precision.to_decimal(required_fmv)
        initial_guess, bounds = search_seed(required_fmv, request.total_shares, request.breakpoints)

        try:
            params = solver_params(initial_guess, bounds, request.solver_overrides)
            solved = self.optimizer.optimize(fmv_fn, target, params)
        except Exception as exc:
            logger.error("weighted_backsolve_failed", scenario=unknown.name, error=str(exc))
            self.trace.error(CATEGORY, f"Optimization failed: {exc}")
            metadata.execution_time_ms = (time.perf_counter() - started) * 1000.0
            return WeightedBacksolveResult(
                success=False,
                target_fmv=request.target_fmv,
                actual_weighted_fmv=0.0,
                error=float("inf"),
                converged=False,
                scenario_results=[],
                unknown_scenario_index=unknown_index,
                metadata=metadata,
                errors=[str(exc)],
            )

        solved_ev = float(solved.solution)
        scenario_results = []
        for scenario, probability in zip(request.scenarios, probabilities):
            ev = solved_ev if scenario.is_unknown else scenario.enterprise_value
            allocation = self._allocate(request, scenario, ev, share_counts)
            fmv = get_fmv_per_share(allocation, request.security_class)
            scenario_results.append(
                ScenarioResult(
                    name=scenario.name,
                    probability=probability,
                    enterprise_value=ev,
                    fmv_per_share=fmv,
                    weighted_contribution=probability * fmv,
                    allocation=allocation,
                    is_unknown=scenario.is_unknown,
                )
            )

        actual = sum(r.weighted_contribution for r in scenario_results)
        error = abs(actual - request.target_fmv)

        warnings = []
        errors = []
        if error > float(VERIFICATION_TOLERANCE):
            warnings.append(
                f"Weighted FMV {actual:,.4f} differs from target "
                f"{request.target_fmv:,.4f} by {error:.4f}"
            )
        if not solved.converged:
            warnings.append("Optimization did not fully converge")
        if solved.cancelled:
            warnings.append("Optimization was cancelled")
        for result in scenario_results:
            errors.extend(
                f"{result.name}: {message}" for message in result.allocation.validation_errors
            )
        for message in warnings:
            self.trace.warning(CATEGORY, message)

        metadata.iterations = solved.iterations
        metadata.method = solved.method.value
        metadata.methods_attempted = solved.performance.methods_attempted
        metadata.execution_time_ms = (time.perf_counter() - started) * 1000.0

        success = solved.converged and all(r.allocation.valid for r in scenario_results)
        self.trace.step(
            f"Solved '{unknown.name}' enterprise value {solved_ev:,.2f}",
            enterprise_value=solved_ev,
            actual_weighted_fmv=actual,
            success=success,
        )

        return WeightedBacksolveResult(
            success=success,
            target_fmv=request.target_fmv,
            actual_weighted_fmv=actual,
            error=error,
            converged=solved.converged,
            scenario_results=scenario_results,
            unknown_scenario_index=unknown_index,
            metadata=metadata,
            errors=errors,
            warnings=warnings,
        )

    def _validate(self, request: WeightedBacksolveRequest) -> None:
        if not request.target_fmv > 0:
            raise ParameterRangeError(
                "target_fmv", request.target_fmv,
                f"Target FMV must be positive, got {request.target_fmv}",
            )
        if len(request.scenarios) < 2:
            raise StructuralError(
                f"Weighted backsolve needs at least 2 scenarios, got {len(request.scenarios)}"
            )

        unknowns = [s for s in request.scenarios if s.is_unknown]
        if len(unknowns) != 1:
            raise StructuralError(
                f"Exactly one scenario must be unknown, got {len(unknowns)}"
            )

        for scenario in request.scenarios:
            if scenario.is_unknown:
                continue
            if scenario.enterprise_value is None or not scenario.enterprise_value > 0:
                raise ParameterRangeError(
                    "enterprise_value", scenario.enterprise_value,
                    f"Fixed scenario '{scenario.name}' needs a positive enterprise value, "
                    f"got {scenario.enterprise_value}",
                )

        validate_cap_table(request.security_class, request.breakpoints, request.total_shares)
        normalized_probabilities(request.scenarios, request.probability_format)

    def _allocate(
        self,
        request: WeightedBacksolveRequest,
        scenario: Scenario,
        enterprise_value: float,
        share_counts: Mapping[str, float],
    ) -> AllocationResult:
        return self.engine.calculate(
            AllocationContext(
                enterprise_value=enterprise_value,
                params=scenario.params,
                breakpoints=request.breakpoints,
                total_shares=request.total_shares,
                share_class_totals=share_counts,
            )
        )
