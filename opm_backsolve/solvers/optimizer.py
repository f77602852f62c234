"""
Root-finding engine with automatic method selection.

This module provides a high-level interface for solving f(x) = target,
choosing between Newton-Raphson and bisection based on the parameters
available and falling back from one to the other in hybrid mode.
"""

import decimal
import time
from decimal import Decimal
from typing import Callable, Optional

from opm_backsolve.solvers.bisection import BisectionSolver
from opm_backsolve.solvers.newton_raphson import NewtonRaphsonSolver, DecimalFunction
from opm_backsolve.utils.constants import SOLVER_MAX_ITERATIONS, SOLVER_TOLERANCE
from opm_backsolve.utils.errors import StructuralError
from opm_backsolve.utils.precision import DEFAULT_PRECISION, Number, PrecisionConfig
from opm_backsolve.utils.trace import NullTraceLogger, TraceLogger
from opm_backsolve.utils.types import (
    SearchDirection,
    SolveMethod,
    SolveParams,
    SolveResult,
    Verification,
)

CATEGORY = "Optimizer"


def recommended_params(scenario: str) -> SolveParams:
    """
    Solver presets for common valuation problems.

    Args:
        scenario: "opm_backsolve", "option_exercise" or "conversion_point";
            anything else gets the automatic default

    Returns:
        SolveParams without guess or bounds; callers add those
    """
    if scenario == "opm_backsolve":
        return SolveParams(
            method=SolveMethod.HYBRID,
            max_iterations=50,
            tolerance=Decimal("0.01"),
            min_step_size=Decimal("1000"),
            max_step_size=Decimal("10000000"),
            direction=SearchDirection.INCREASING,
        )
    if scenario == "option_exercise":
        return SolveParams(
            method=SolveMethod.NEWTON_RAPHSON,
            max_iterations=30,
            tolerance=Decimal("0.01"),
            min_step_size=Decimal("100"),
            max_step_size=Decimal("1000000"),
        )
    if scenario == "conversion_point":
        return SolveParams(
            method=SolveMethod.HYBRID,
            max_iterations=40,
            tolerance=Decimal("0.01"),
            min_step_size=Decimal("1000"),
            max_step_size=Decimal("5000000"),
            direction=SearchDirection.INCREASING,
        )
    return SolveParams(
        method=SolveMethod.AUTO,
        max_iterations=SOLVER_MAX_ITERATIONS,
        tolerance=Decimal(SOLVER_TOLERANCE),
    )


class OptimizerEngine:
    """
    Unified interface over NewtonRaphsonSolver and BisectionSolver.

    Components hold no per-request state; one engine may serve many
    solves as long as each brings its own trace logger.
    """

    def __init__(
        self,
        trace: Optional[TraceLogger] = None,
        precision: PrecisionConfig = DEFAULT_PRECISION,
    ) -> None:
        self.trace = trace or NullTraceLogger()
        self.precision = precision
        self.newton = NewtonRaphsonSolver(self.trace, precision)
        self.bisection = BisectionSolver(self.trace, precision)

    def optimize(
        self,
        target_fn: DecimalFunction,
        target: Number,
        params: SolveParams,
        derivative_fn: Optional[DecimalFunction] = None,
    ) -> SolveResult:
        """
        Find x such that target_fn(x) = target.

        Method selection:
            - newton_raphson / bisection: only that method
            - hybrid: Newton-Raphson from the initial guess, falling back to
              bisection if it does not converge; bisection alone without a guess
            - auto: guess + derivative → Newton-Raphson; bounds only →
              bisection; guess only → Newton-Raphson with numerical derivative

        Args:
            target_fn: Function of x
            target: Value target_fn should reach
            params: Solver configuration
            derivative_fn: Optional analytic derivative of target_fn

        Returns:
            SolveResult of the method that produced the solution, with every
            method attempted recorded in ``performance.methods_attempted``

        Raises:
            StructuralError: If the chosen method lacks its required
                guess/bounds, or auto mode has neither
        """
        started = time.perf_counter()
        attempted: list[str] = []
        target = self.precision.to_decimal(target)

        def shifted(x: Decimal) -> Decimal:
            return target_fn(x) - target

        self.trace.step(f"Starting optimization with method: {params.method.value}")

        method = params.method
        if method == SolveMethod.NEWTON_RAPHSON:
            result = self._newton(shifted, params, derivative_fn, attempted)

        elif method == SolveMethod.BISECTION:
            result = self._bisect(target_fn, target, params, attempted)

        elif method == SolveMethod.HYBRID:
            if params.initial_guess is not None:
                result = self._newton(shifted, params, derivative_fn, attempted)
                if not result.converged and not result.cancelled:
                    if params.search_bounds is None:
                        self.trace.warning(
                            CATEGORY, "Newton-Raphson did not converge and no bounds for fallback"
                        )
                    else:
                        self.trace.info(
                            CATEGORY, "Newton-Raphson did not converge, falling back to bisection"
                        )
                        result = self._bisect(target_fn, target, params, attempted)
            else:
                result = self._bisect(target_fn, target, params, attempted)

        else:
            if params.initial_guess is not None and derivative_fn is not None:
                result = self._newton(shifted, params, derivative_fn, attempted)
            elif params.search_bounds is not None:
                result = self._bisect(target_fn, target, params, attempted)
            elif params.initial_guess is not None:
                result = self._newton(shifted, params, None, attempted)
            else:
                raise StructuralError(
                    "Insufficient parameters for optimization. "
                    "Provide either initial_guess or search_bounds."
                )

        result.performance.execution_time_ms = (time.perf_counter() - started) * 1000.0
        result.performance.methods_attempted = attempted
        return result

    def find_threshold(
        self,
        fn: DecimalFunction,
        threshold: Number,
        params: SolveParams,
    ) -> SolveResult:
        """
        Find x where fn(x) reaches ``threshold``.

        Newton-Raphson with a numerical derivative when an initial guess is
        present, bisection when only bounds are.

        Raises:
            StructuralError: If neither guess nor bounds is supplied
        """
        started = time.perf_counter()
        attempted: list[str] = []
        threshold = self.precision.to_decimal(threshold)

        if params.initial_guess is not None:
            result = self._newton(lambda x: fn(x) - threshold, params, None, attempted)
        elif params.search_bounds is not None:
            result = self._bisect(fn, threshold, params, attempted)
        else:
            raise StructuralError(
                "Either initial_guess or search_bounds required for threshold finding"
            )

        result.performance.execution_time_ms = (time.perf_counter() - started) * 1000.0
        result.performance.methods_attempted = attempted
        return result

    def verify_solution(
        self,
        target_fn: Callable[[Decimal], Decimal],
        solution: Number,
        target: Number,
        tolerance: Number = Decimal("0.01"),
    ) -> Verification:
        """
        Re-evaluate target_fn at ``solution`` and compare against ``target``.

        Returns:
            Verification(verified=|f(solution) - target| <= tolerance, error, actual_value)
        """
        with decimal.localcontext(self.precision.context()):
            solution = self.precision.to_decimal(solution)
            target = self.precision.to_decimal(target)
            tolerance = self.precision.to_decimal(tolerance)

            actual_value = target_fn(solution)
            error = abs(actual_value - target)
            verified = error <= tolerance

        self.trace.debug(
            "Optimizer Verification",
            "Solution verified" if verified else "Solution verification failed",
            solution=str(solution), target=str(target),
            actual_value=str(actual_value), error=str(error),
        )
        return Verification(verified=verified, error=error, actual_value=actual_value)

    def _newton(
        self,
        fn: DecimalFunction,
        params: SolveParams,
        derivative_fn: Optional[DecimalFunction],
        attempted: list[str],
    ) -> SolveResult:
        if params.initial_guess is None:
            raise StructuralError("Initial guess required for Newton-Raphson method")
        attempted.append(SolveMethod.NEWTON_RAPHSON.value)
        if derivative_fn is None:
            return self.newton.solve_with_numerical_derivative(fn, params)
        return self.newton.solve(fn, derivative_fn, params)

    def _bisect(
        self,
        target_fn: DecimalFunction,
        target: Decimal,
        params: SolveParams,
        attempted: list[str],
    ) -> SolveResult:
        if params.search_bounds is None:
            raise StructuralError("Search bounds required for bisection method")
        attempted.append(SolveMethod.BISECTION.value)
        return self.bisection.solve_for_target(target_fn, target, params)
