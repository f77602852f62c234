"""
Option Pricing Method (OPM) allocation engine.

Allocates an enterprise value across security classes using a breakpoint
schedule. Each breakpoint threshold is priced as a call on the enterprise;
the value of the tranche between two consecutive thresholds is the
difference of their call values, and is shared among the classes
participating above the lower threshold.

Mathematical Background:
    For sorted thresholds K_0 < K_1 < ... < K_{n-1} and enterprise value V:
        tranche_i     = C(V, K_i) - C(V, K_{i+1})     for i < n-1
        tranche_{n-1} = C(V, K_{n-1})
        unallocated   = V - C(V, K_0)
    The tranches telescope, so the value distributed is C(V, K_0) <= V.
"""

from dataclasses import replace
from typing import Optional

from opm_backsolve.core.black_scholes import price_call
from opm_backsolve.diagnostics.validation import validate_allocation
from opm_backsolve.utils.constants import (
    ZERO_STRIKE_EPSILON,
    OPM_MAX_VOLATILITY,
    OPM_MAX_RISK_FREE_RATE,
    OPM_MAX_TIME_TO_LIQUIDITY,
    PERCENT_SCALE,
)
from opm_backsolve.utils.errors import ParameterRangeError, StructuralError
from opm_backsolve.utils.trace import NullTraceLogger, TraceLogger
from opm_backsolve.utils.types import (
    AllocationContext,
    AllocationResult,
    Breakpoint,
    BreakpointActivity,
    ClassAllocation,
)

CATEGORY = "OPM Engine"


def validate_context(context: AllocationContext) -> None:
    """
    Validate an allocation context before any pricing.

    Raises:
        ParameterRangeError: If a numeric input is out of range
        StructuralError: If there are no breakpoints
    """
    if not context.enterprise_value > 0:
        raise ParameterRangeError(
            "enterprise_value", context.enterprise_value,
            f"Enterprise value must be positive, got {context.enterprise_value}",
        )
    if not context.breakpoints:
        raise StructuralError("At least one breakpoint is required")
    if not context.total_shares > 0:
        raise ParameterRangeError(
            "total_shares", context.total_shares,
            f"Total shares must be positive, got {context.total_shares}",
        )

    params = context.params
    if not 0 < params.volatility <= OPM_MAX_VOLATILITY:
        raise ParameterRangeError(
            "volatility", params.volatility,
            f"Volatility must be in (0, {OPM_MAX_VOLATILITY}], got {params.volatility}",
        )
    if not 0 <= params.risk_free_rate <= OPM_MAX_RISK_FREE_RATE:
        raise ParameterRangeError(
            "risk_free_rate", params.risk_free_rate,
            f"Risk-free rate must be in [0, {OPM_MAX_RISK_FREE_RATE}], got {params.risk_free_rate}",
        )
    if not 0 < params.time_to_liquidity <= OPM_MAX_TIME_TO_LIQUIDITY:
        raise ParameterRangeError(
            "time_to_liquidity", params.time_to_liquidity,
            f"Time to liquidity must be in (0, {OPM_MAX_TIME_TO_LIQUIDITY}], "
            f"got {params.time_to_liquidity}",
        )
    if not params.dividend_yield >= 0:
        raise ParameterRangeError(
            "dividend_yield", params.dividend_yield,
            f"Dividend yield cannot be negative, got {params.dividend_yield}",
        )

    for breakpoint in context.breakpoints:
        if not breakpoint.value >= 0:
            raise ParameterRangeError(
                "breakpoint.value", breakpoint.value,
                f"Breakpoint {breakpoint.id} threshold cannot be negative, got {breakpoint.value}",
            )
        for allocation in breakpoint.allocation:
            if not 0 <= allocation.participation <= 1:
                raise ParameterRangeError(
                    "participation", allocation.participation,
                    f"Participation of {allocation.security_class} in breakpoint "
                    f"{breakpoint.id} must be a ratio in [0, 1], got {allocation.participation}",
                )


class OPMCalculationEngine:
    """
    Forward OPM allocation: enterprise value in, per-class values out.

    Args:
        trace: Audit trail logger (no-op by default)
    """

    def __init__(self, trace: Optional[TraceLogger] = None) -> None:
        self.trace = trace or NullTraceLogger()

    def calculate(self, context: AllocationContext) -> AllocationResult:
        """
        Allocate ``context.enterprise_value`` across security classes.

        Args:
            context: Enterprise value, OPM assumptions, breakpoints and share counts

        Returns:
            AllocationResult; failed post-hoc checks give ``valid=False`` with
            the reasons in ``validation_errors``

        Raises:
            ParameterRangeError: If an input is out of range
            StructuralError: If there are no breakpoints

        Notes:
            - Breakpoints are sorted by threshold; caller order is irrelevant
            - A zero threshold is priced with a strike of 0.00001
        """
        validate_context(context)

        ev = context.enterprise_value
        breakpoints = sorted(context.breakpoints, key=lambda b: b.value)
        self.trace.step(
            f"Allocating enterprise value {ev:,.2f} across {len(breakpoints)} breakpoints",
            enterprise_value=ev,
            breakpoints=len(breakpoints),
        )

        priced = [self._price_breakpoint(context, b) for b in breakpoints]
        tranches, unallocated = _tranche_values(ev, [p.call_value for p in priced])

        class_totals: dict[str, float] = {}
        activity = []
        for breakpoint, result, tranche in zip(breakpoints, priced, tranches):
            changes = []
            for allocation in breakpoint.allocation:
                share = tranche * allocation.participation
                if tranche > 0:
                    class_totals[allocation.security_class] = (
                        class_totals.get(allocation.security_class, 0.0) + share
                    )
                changes.append(replace(allocation, value_received=share))

            activity.append(
                BreakpointActivity(
                    breakpoint_id=breakpoint.id,
                    breakpoint_value=breakpoint.value,
                    breakpoint_type=breakpoint.type,
                    active=tranche > 0,
                    call_value=result.call_value,
                    d1=result.d1,
                    d2=result.d2,
                    nd1=result.nd1,
                    nd2=result.nd2,
                    incremental_value=tranche,
                    allocation_changes=changes,
                )
            )
            self.trace.debug(
                CATEGORY,
                f"Breakpoint {breakpoint.id} at {breakpoint.value:,.2f}: tranche {tranche:,.2f}",
                breakpoint_id=breakpoint.id,
                call_value=result.call_value,
                incremental_value=tranche,
            )

        total = sum(class_totals.values())
        allocations = [
            self._class_allocation(context, security_class, value, total)
            for security_class, value in class_totals.items()
        ]
        allocations.sort(key=lambda a: a.total_value, reverse=True)

        errors = validate_allocation(ev, total, allocations)
        for message in errors:
            self.trace.error(CATEGORY, message)

        self.trace.step(
            f"Distributed {total:,.2f} of {ev:,.2f}",
            total_value_distributed=total,
            unallocated_value=unallocated,
            valid=not errors,
        )

        return AllocationResult(
            enterprise_value=ev,
            allocations_by_class=allocations,
            breakpoint_activity=activity,
            total_value_distributed=total,
            unallocated_value=unallocated,
            valid=not errors,
            validation_errors=errors,
        )

    def _price_breakpoint(self, context: AllocationContext, breakpoint: Breakpoint):
        strike = breakpoint.value if breakpoint.value > 0 else ZERO_STRIKE_EPSILON
        return price_call(context.params.option_params(context.enterprise_value, strike))

    def _class_allocation(
        self,
        context: AllocationContext,
        security_class: str,
        value: float,
        total: float,
    ) -> ClassAllocation:
        shares = float(context.share_class_totals.get(security_class, 0.0))
        return ClassAllocation(
            security_class=security_class,
            shares=shares,
            total_value=value,
            value_per_share=value / shares if shares > 0 else 0.0,
            percent_of_total=value / total * PERCENT_SCALE if total > 0 else 0.0,
        )


def _tranche_values(enterprise_value: float, call_values: list[float]) -> tuple[list[float], float]:
    """
    Split enterprise value into per-breakpoint tranches.

    Returns:
        (tranche value per breakpoint, value below the first threshold)
    """
    tranches = [0.0] * len(call_values)
    previous = enterprise_value
    unallocated = 0.0

    for i, call_value in enumerate(call_values):
        increment = max(0.0, previous - call_value)
        if i == 0:
            unallocated = increment
        else:
            tranches[i - 1] = increment
        previous = call_value

    tranches[-1] = max(0.0, previous)
    return tranches, unallocated


def get_fmv_per_share(result: AllocationResult, security_class: str) -> float:
    """Value per share of ``security_class``; 0 when the class received nothing."""
    for allocation in result.allocations_by_class:
        if allocation.security_class == security_class:
            return allocation.value_per_share
    return 0.0

