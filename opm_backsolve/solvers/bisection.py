"""
Bisection (binary search) root finder.

Slower than Newton-Raphson (linear convergence) but needs no derivative
and cannot diverge once the target is bracketed. Used directly when only
search bounds are known and as the fallback of the hybrid strategy.
"""

import decimal
import time
from decimal import Decimal
from typing import Callable, Optional

from opm_backsolve.utils.constants import BISECTION_MAX_ITERATIONS
from opm_backsolve.utils.errors import StructuralError
from opm_backsolve.utils.precision import DEFAULT_PRECISION, PrecisionConfig
from opm_backsolve.utils.trace import NullTraceLogger, TraceLogger
from opm_backsolve.utils.types import (
    IterationStep,
    SearchDirection,
    SolveMethod,
    SolvePerformance,
    SolveParams,
    SolveResult,
)

CATEGORY = "Bisection"


class BisectionSolver:
    """Finds x in [min, max] where fn(x) = target."""

    def __init__(
        self,
        trace: Optional[TraceLogger] = None,
        precision: PrecisionConfig = DEFAULT_PRECISION,
    ) -> None:
        self.trace = trace or NullTraceLogger()
        self.precision = precision

    def solve_for_target(
        self,
        fn: Callable[[Decimal], Decimal],
        target: Decimal,
        params: Optional[SolveParams] = None,
    ) -> SolveResult:
        """
        Bisect ``params.search_bounds`` until fn(mid) is within tolerance of target.

        Args:
            fn: Monotonic function of x
            target: Value fn should reach
            params: Solver configuration; ``search_bounds`` is required and
                ``direction`` says whether fn increases or decreases in x

        Returns:
            SolveResult. The search stops when the residual is within
            tolerance or the bracket has narrowed to the tolerance; in the
            latter case ``converged`` reflects the residual at the midpoint.

        Raises:
            StructuralError: If no search bounds are supplied
        """
        if params is None:
            params = SolveParams(
                method=SolveMethod.BISECTION, max_iterations=BISECTION_MAX_ITERATIONS
            )
        if params.search_bounds is None:
            raise StructuralError("Bisection requires search bounds")

        started = time.perf_counter()
        history: list[IterationStep] = []
        increasing = params.direction == SearchDirection.INCREASING

        with decimal.localcontext(self.precision.context()):
            target = self.precision.to_decimal(target)
            low = self.precision.to_decimal(params.search_bounds.min)
            high = self.precision.to_decimal(params.search_bounds.max)
            tolerance = params.tolerance

            self.trace.debug(
                CATEGORY,
                f"Searching for {target:,.4f} in [{low:,.2f}, {high:,.2f}]",
                target=str(target), min=str(low), max=str(high),
                direction=params.direction.value,
            )

            error = Decimal("Infinity")
            for iteration in range(1, params.max_iterations + 1):
                if params.cancelled:
                    self.trace.warning(CATEGORY, f"Cancelled before iteration {iteration}")
                    return self._result(
                        (low + high) / 2, iteration - 1, error, False,
                        f"Bisection cancelled after {iteration - 1} iterations",
                        history, started, cancelled=True,
                    )

                mid = (low + high) / 2
                value = fn(mid)
                error = abs(value - target)
                satisfied = error < tolerance
                if params.record_history:
                    history.append(IterationStep(iteration, mid, error, satisfied))

                self.trace.debug(
                    CATEGORY,
                    f"Iteration {iteration}: mid={mid:,.2f}, value={value:.4f}",
                    iteration=iteration, mid=str(mid), value=str(value), satisfied=satisfied,
                )

                if satisfied:
                    self.trace.info(
                        CATEGORY, f"Converged after {iteration} iterations",
                        solution=str(mid), error=str(error),
                    )
                    return self._result(
                        mid, iteration, error, True,
                        f"Bisection converged in {iteration} iterations with error {error:.4f}",
                        history, started,
                    )

                # Keep the half that still brackets the target
                if (value < target) == increasing:
                    low = mid
                else:
                    high = mid

                if high - low <= tolerance:
                    final_mid = (low + high) / 2
                    final_error = abs(fn(final_mid) - target)
                    converged = final_error < tolerance
                    self.trace.info(
                        CATEGORY, f"Range collapsed after {iteration} iterations",
                        solution=str(final_mid), error=str(final_error),
                    )
                    return self._result(
                        final_mid, iteration, final_error, converged,
                        f"Bisection range collapsed in {iteration} iterations "
                        f"with error {final_error:.4f}",
                        history, started,
                    )

            final_mid = (low + high) / 2
            final_error = abs(fn(final_mid) - target)
            self.trace.warning(
                CATEGORY,
                f"Failed to converge after {params.max_iterations} iterations",
                final_x=str(final_mid), final_error=str(final_error),
            )
            return self._result(
                final_mid, params.max_iterations, final_error, False,
                f"Bisection failed to converge after {params.max_iterations} "
                f"iterations. Final error: {final_error:.4f}",
                history, started,
            )

    def _result(
        self,
        x: Decimal,
        iterations: int,
        error: Decimal,
        converged: bool,
        explanation: str,
        history: list[IterationStep],
        started: float,
        cancelled: bool = False,
    ) -> SolveResult:
        return SolveResult(
            solution=x,
            iterations=iterations,
            error=error,
            converged=converged,
            method=SolveMethod.BISECTION,
            explanation=explanation,
            iteration_history=history,
            performance=SolvePerformance(
                execution_time_ms=(time.perf_counter() - started) * 1000.0,
                methods_attempted=[SolveMethod.BISECTION.value],
            ),
            cancelled=cancelled,
        )
