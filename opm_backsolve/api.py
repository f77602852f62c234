"""
Public entry points for OPM pricing, allocation and backsolve.

Every function is synchronous and request-scoped: components are built
per call around the optional ``trace`` logger, so concurrent callers never
share mutable state.
"""

from typing import Optional

from opm_backsolve.core.allocation import OPMCalculationEngine
from opm_backsolve.core.black_scholes import price_call
from opm_backsolve.solvers.backsolve import BacksolveOptimizer
from opm_backsolve.solvers.scenario_orchestrator import ScenarioOrchestrator
from opm_backsolve.solvers.weighted_backsolve import WeightedBacksolveOptimizer
from opm_backsolve.utils.precision import DEFAULT_PRECISION, PrecisionConfig
from opm_backsolve.utils.trace import TraceLogger
from opm_backsolve.utils.types import (
    AllocationContext,
    AllocationResult,
    BacksolveRequest,
    BacksolveResult,
    HybridPWERMRequest,
    HybridPWERMResult,
    OptionParams,
    OptionResult,
    WeightedBacksolveRequest,
    WeightedBacksolveResult,
)


def price_option(params: OptionParams, trace: Optional[TraceLogger] = None) -> OptionResult:
    """
    Price a single call.

    Raises:
        ParameterRangeError: If an input is outside its domain
    """
    result = price_call(params)
    if trace is not None:
        trace.debug(
            "Black-Scholes", f"Call value {result.call_value:,.4f}",
            call_value=result.call_value, d1=result.d1, d2=result.d2,
        )
    return result


def allocate(context: AllocationContext, trace: Optional[TraceLogger] = None) -> AllocationResult:
    """
    Forward OPM allocation of an enterprise value.

    Raises:
        ParameterRangeError, StructuralError: On invalid input only; failed
            consistency checks are reported on the result
    """
    return OPMCalculationEngine(trace).calculate(context)


def backsolve_single(
    request: BacksolveRequest,
    trace: Optional[TraceLogger] = None,
    precision: PrecisionConfig = DEFAULT_PRECISION,
) -> BacksolveResult:
    """
    Enterprise value implied by a target FMV per share.

    Raises:
        ParameterRangeError, StructuralError: On invalid input; solver
            failures are reported on the result
    """
    return BacksolveOptimizer(trace, precision).backsolve(request)


def backsolve_weighted(
    request: WeightedBacksolveRequest,
    trace: Optional[TraceLogger] = None,
    precision: PrecisionConfig = DEFAULT_PRECISION,
) -> WeightedBacksolveResult:
    """
    Unknown scenario enterprise value implied by a target weighted FMV.

    Raises:
        ParameterRangeError, StructuralError, DomainInfeasibilityError: On
            invalid or infeasible input; solver failures are reported on the result
    """
    return WeightedBacksolveOptimizer(trace, precision).backsolve(request)


def run_hybrid_pwerm(
    request: HybridPWERMRequest,
    trace: Optional[TraceLogger] = None,
    precision: PrecisionConfig = DEFAULT_PRECISION,
) -> HybridPWERMResult:
    """Backsolve every scenario of a hybrid PWERM and weight the results."""
    return ScenarioOrchestrator(trace, precision).execute(request)
