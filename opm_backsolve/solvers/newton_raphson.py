"""
Newton-Raphson root finder on Decimal-valued functions.

This module implements the Newton-Raphson algorithm for solving f(x) = 0
where x is an enterprise value. Iterates are kept positive and step sizes
are clamped so that a flat or noisy allocation function cannot throw the
search out of range.
"""

import decimal
import time
from decimal import Decimal
from typing import Callable, Optional

from opm_backsolve.utils.constants import (
    NUMERICAL_DERIVATIVE_REL_STEP,
    NUMERICAL_DERIVATIVE_MIN_STEP,
)
from opm_backsolve.utils.errors import StructuralError
from opm_backsolve.utils.precision import DEFAULT_PRECISION, PrecisionConfig
from opm_backsolve.utils.trace import NullTraceLogger, TraceLogger
from opm_backsolve.utils.types import (
    IterationStep,
    SolveMethod,
    SolvePerformance,
    SolveParams,
    SolveResult,
)

DecimalFunction = Callable[[Decimal], Decimal]

CATEGORY = "Newton-Raphson"


class NewtonRaphsonSolver:
    """
    Solves f(x) = 0 by Newton-Raphson iteration.

    Args:
        trace: Audit trail logger (no-op by default)
        precision: Decimal precision for iterates
    """

    def __init__(
        self,
        trace: Optional[TraceLogger] = None,
        precision: PrecisionConfig = DEFAULT_PRECISION,
    ) -> None:
        self.trace = trace or NullTraceLogger()
        self.precision = precision

    def solve(
        self,
        fn: DecimalFunction,
        derivative: DecimalFunction,
        params: SolveParams,
    ) -> SolveResult:
        """
        Solve fn(x) = 0 starting from ``params.initial_guess``.

        The update is:
            x_{n+1} = x_n - f(x_n) / f'(x_n)

        Args:
            fn: Function whose root is sought
            derivative: f'(x)
            params: Solver configuration; ``initial_guess`` is required

        Returns:
            SolveResult; exhausting iterations gives ``converged=False``

        Raises:
            StructuralError: If no initial guess is supplied

        Notes:
            - Zero derivative: x is nudged by min_step_size and iteration continues
            - |step| is clamped into [min_step_size, max_step_size]
            - A step landing on x <= 0 halves x instead
            - ``params.cancel_event`` is checked before every iteration
        """
        if params.initial_guess is None:
            raise StructuralError("Newton-Raphson requires an initial guess")

        started = time.perf_counter()
        history: list[IterationStep] = []

        with decimal.localcontext(self.precision.context()):
            x = self.precision.to_decimal(params.initial_guess)
            tolerance = params.tolerance
            min_step = params.min_step_size
            max_step = params.max_step_size
            error: Optional[Decimal] = None

            self.trace.debug(
                CATEGORY,
                f"Starting with initial guess: {x:,.2f}",
                initial_guess=str(x),
                max_iterations=params.max_iterations,
                tolerance=str(tolerance),
            )

            for iteration in range(1, params.max_iterations + 1):
                if params.cancelled:
                    self.trace.warning(CATEGORY, f"Cancelled before iteration {iteration}")
                    return self._result(
                        x, iteration - 1,
                        error if error is not None else Decimal("Infinity"),
                        False, f"Newton-Raphson cancelled after {iteration - 1} iterations",
                        history, started, cancelled=True,
                    )

                fx = fn(x)
                error = abs(fx)
                satisfied = error < tolerance
                if params.record_history:
                    history.append(IterationStep(iteration, x, error, satisfied))

                self.trace.debug(
                    CATEGORY,
                    f"Iteration {iteration}: x={x:,.2f}, f(x)={fx:.4f}",
                    iteration=iteration, x=str(x), fx=str(fx), satisfied=satisfied,
                )

                if satisfied:
                    self.trace.info(
                        CATEGORY, f"Converged after {iteration} iterations",
                        solution=str(x), error=str(error),
                    )
                    return self._result(
                        x, iteration, error, True,
                        f"Newton-Raphson converged in {iteration} iterations with error {error:.4f}",
                        history, started,
                    )

                fpx = derivative(x)
                if fpx == 0:
                    self.trace.warning(
                        CATEGORY, f"Zero derivative at iteration {iteration}", x=str(x)
                    )
                    x = x + min_step
                    continue

                step = -fx / fpx
                if abs(step) < min_step:
                    step = min_step.copy_sign(step)
                elif abs(step) > max_step:
                    step = max_step.copy_sign(step)

                next_x = x + step
                if next_x <= 0:
                    self.trace.warning(
                        CATEGORY,
                        f"Non-positive x at iteration {iteration}, halving",
                        x=str(x), next_x=str(next_x),
                    )
                    x = x / 2
                    continue

                x = next_x

            final_error = abs(fn(x))
            self.trace.warning(
                CATEGORY,
                f"Failed to converge after {params.max_iterations} iterations",
                final_x=str(x), final_error=str(final_error),
            )
            return self._result(
                x, params.max_iterations, final_error, False,
                f"Newton-Raphson failed to converge after {params.max_iterations} "
                f"iterations. Final error: {final_error:.4f}",
                history, started,
            )

    def solve_with_numerical_derivative(
        self,
        fn: DecimalFunction,
        params: SolveParams,
    ) -> SolveResult:
        """
        Solve fn(x) = 0 with a central-difference derivative.

        f'(x) ≈ [f(x + h) - f(x - h)] / 2h,  h = max(|x|·1e-6, 1e-3)
        """
        return self.solve(fn, numerical_derivative(fn), params)

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
            method=SolveMethod.NEWTON_RAPHSON,
            explanation=explanation,
            iteration_history=history,
            performance=SolvePerformance(
                execution_time_ms=(time.perf_counter() - started) * 1000.0,
                methods_attempted=[SolveMethod.NEWTON_RAPHSON.value],
            ),
            cancelled=cancelled,
        )


def numerical_derivative(fn: DecimalFunction) -> DecimalFunction:
    """Central-difference derivative of ``fn``."""
    rel_step = Decimal(NUMERICAL_DERIVATIVE_REL_STEP)
    min_step = Decimal(NUMERICAL_DERIVATIVE_MIN_STEP)

    def derivative(x: Decimal) -> Decimal:
        h = max(abs(x) * rel_step, min_step)
        return (fn(x + h) - fn(x - h)) / (2 * h)

    return derivative
