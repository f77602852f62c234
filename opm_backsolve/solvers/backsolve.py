"""
Single-scenario OPM backsolve.

Finds the enterprise value at which the OPM allocation gives a security
class a target fair market value (FMV) per share, typically the price of a
recent financing round. The allocation engine is driven repeatedly inside
the optimizer's root-finding loop:

    f(EV) = FMV_class(EV) - target_fmv = 0
"""

import time
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

import structlog

from opm_backsolve.core.allocation import OPMCalculationEngine, get_fmv_per_share
from opm_backsolve.solvers.optimizer import OptimizerEngine, recommended_params
from opm_backsolve.utils.constants import (
    INITIAL_GUESS_MULTIPLIER,
    LOWER_BOUND_FRACTION,
    UPPER_BOUND_MULTIPLE,
    VERIFICATION_TOLERANCE,
)
from opm_backsolve.utils.errors import ParameterRangeError, StructuralError
from opm_backsolve.utils.precision import DEFAULT_PRECISION, PrecisionConfig
from opm_backsolve.utils.trace import NullTraceLogger, TraceLogger
from opm_backsolve.utils.types import (
    AllocationContext,
    AllocationResult,
    BacksolveMetadata,
    BacksolveRequest,
    BacksolveResult,
    Breakpoint,
    OPMParams,
    SearchBounds,
    SolveParams,
)

logger = structlog.get_logger()

CATEGORY = "Backsolve"


# ===========================
# Shared helpers
# ===========================


def validate_cap_table(
    security_class: str,
    breakpoints: tuple[Breakpoint, ...],
    total_shares: float,
) -> None:
    """
    Structural checks shared by the single and weighted backsolves.

    Raises:
        StructuralError: Empty class name, no breakpoints, or a class that
            no breakpoint allocates to
        ParameterRangeError: Non-positive total shares
    """
    if not security_class:
        raise StructuralError("Security class is required")
    if not breakpoints:
        raise StructuralError("At least one breakpoint is required")
    if not total_shares > 0:
        raise ParameterRangeError(
            "total_shares", total_shares, f"Total shares must be positive, got {total_shares}"
        )
    if not any(b.participates(security_class) for b in breakpoints):
        raise StructuralError(
            f"Security class '{security_class}' does not participate in any breakpoint"
        )


def default_share_counts(
    security_class: str, total_shares: float, share_class_totals: Mapping[str, float]
) -> Mapping[str, float]:
    """Explicit class share counts, or the whole share count for the target class."""
    if share_class_totals:
        return share_class_totals
    return {security_class: total_shares}


def search_seed(
    required_fmv: float,
    total_shares: float,
    breakpoints: tuple[Breakpoint, ...],
) -> tuple[float, tuple[float, float]]:
    """
    Heuristic starting point and bracket for an enterprise value search.

    Returns:
        (EV0, (min, max)) with EV0 = FMV × shares × 1.5 and
        bounds [max(lowest threshold, 0.1·EV0), 10·EV0]
    """
    initial_guess = required_fmv * total_shares * INITIAL_GUESS_MULTIPLIER
    lowest = min(b.value for b in breakpoints)
    low = max(lowest, initial_guess * LOWER_BOUND_FRACTION)
    high = initial_guess * UPPER_BOUND_MULTIPLE
    return initial_guess, (low, max(low, high))


def fmv_function(
    engine: OPMCalculationEngine,
    security_class: str,
    params: OPMParams,
    breakpoints: tuple[Breakpoint, ...],
    total_shares: float,
    share_class_totals: Mapping[str, float],
    precision: PrecisionConfig,
) -> Callable[[Decimal], Decimal]:
    """FMV per share of ``security_class`` as a Decimal function of enterprise value."""

    def fmv(enterprise_value: Decimal) -> Decimal:
        context = AllocationContext(
            enterprise_value=float(enterprise_value),
            params=params,
            breakpoints=breakpoints,
            total_shares=total_shares,
            share_class_totals=share_class_totals,
        )
        return precision.to_decimal(get_fmv_per_share(engine.calculate(context), security_class))

    return fmv


def solver_params(
    initial_guess: float,
    bounds: tuple[float, float],
    overrides: Mapping[str, Any],
) -> SolveParams:
    """``opm_backsolve`` preset seeded with guess and bounds, then caller overrides."""
    params = recommended_params("opm_backsolve").with_overrides(
        initial_guess=initial_guess,
        search_bounds=SearchBounds(Decimal(str(bounds[0])), Decimal(str(bounds[1]))),
    )
    return params.with_overrides(**overrides)


# ===========================
# Backsolve
# ===========================


class BacksolveOptimizer:
    """
    Backsolves enterprise value from a target FMV per share.

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

    def backsolve(self, request: BacksolveRequest) -> BacksolveResult:
        """
        Solve for the enterprise value that yields ``request.target_fmv``.

        Args:
            request: Target FMV, security class, OPM assumptions and cap table

        Returns:
            BacksolveResult. Solver failures are reported in the result
            (``success=False``, ``method="failed"``), never raised.

        Raises:
            ParameterRangeError: Non-positive target FMV or share count
            StructuralError: Missing class or breakpoints, or a class that
                does not participate in any breakpoint
        """
        started = time.perf_counter()

        if not request.target_fmv > 0:
            raise ParameterRangeError(
                "target_fmv", request.target_fmv,
                f"Target FMV must be positive, got {request.target_fmv}",
            )
        validate_cap_table(request.security_class, request.breakpoints, request.total_shares)

        share_counts = default_share_counts(
            request.security_class, request.total_shares, request.share_class_totals
        )
        initial_guess, bounds = search_seed(
            request.target_fmv, request.total_shares, request.breakpoints
        )
        metadata = BacksolveMetadata(
            execution_time_ms=0.0,
            methods_attempted=[],
            initial_guess=initial_guess,
            search_bounds=bounds,
        )

        self.trace.step(
            f"Backsolving {request.security_class} to FMV {request.target_fmv:,.4f}",
            security_class=request.security_class,
            target_fmv=request.target_fmv,
            initial_guess=initial_guess,
        )

        # Iterations run silently; the final allocation is traced in full
        fmv = fmv_function(
            OPMCalculationEngine(),
            request.security_class,
            request.params,
            request.breakpoints,
            request.total_shares,
            share_counts,
            self.precision,
        )
        target = self.precision.to_decimal(request.target_fmv)

        try:
            params = solver_params(initial_guess, bounds, request.solver_overrides)
            solved = self.optimizer.optimize(fmv, target, params)
        except Exception as exc:
            logger.error("backsolve_failed", security_class=request.security_class, error=str(exc))
            self.trace.error(CATEGORY, f"Optimization failed: {exc}")
            metadata.execution_time_ms = (time.perf_counter() - started) * 1000.0
            return BacksolveResult(
                success=False,
                enterprise_value=0.0,
                actual_fmv=0.0,
                error=float("inf"),
                converged=False,
                iterations=0,
                method="failed",
                allocation=AllocationResult.empty(),
                metadata=metadata,
                errors=[str(exc)],
            )

        enterprise_value = float(solved.solution)
        allocation = self.engine.calculate(
            AllocationContext(
                enterprise_value=enterprise_value,
                params=request.params,
                breakpoints=request.breakpoints,
                total_shares=request.total_shares,
                share_class_totals=share_counts,
            )
        )
        actual_fmv = get_fmv_per_share(allocation, request.security_class)

        warnings = []
        errors = list(allocation.validation_errors)

        verification = self.optimizer.verify_solution(
            fmv, solved.solution, target, Decimal(VERIFICATION_TOLERANCE)
        )
        if not verification.verified:
            warnings.append(
                f"Solution verification failed: FMV {actual_fmv:,.4f} differs from "
                f"target {request.target_fmv:,.4f} by {verification.error:.4f}"
            )
        if not solved.converged:
            warnings.append("Optimization did not fully converge")
        if solved.cancelled:
            warnings.append("Optimization was cancelled")
        for message in warnings:
            self.trace.warning(CATEGORY, message)

        metadata.methods_attempted = solved.performance.methods_attempted
        metadata.execution_time_ms = (time.perf_counter() - started) * 1000.0

        success = solved.converged and allocation.valid and not errors
        self.trace.step(
            f"Backsolved enterprise value {enterprise_value:,.2f}",
            enterprise_value=enterprise_value,
            actual_fmv=actual_fmv,
            success=success,
        )

        return BacksolveResult(
            success=success,
            enterprise_value=enterprise_value,
            actual_fmv=actual_fmv,
            error=float(solved.error),
            converged=solved.converged,
            iterations=solved.iterations,
            method=solved.method.value,
            allocation=allocation,
            metadata=metadata,
            errors=errors,
            warnings=warnings,
        )
