"""
Data types and structures for OPM pricing and backsolve.

This module defines the dataclasses and enums used throughout the toolkit
for representing option inputs, breakpoints, allocation results, solver
configuration and backsolve requests/results. Inputs are frozen; results
are produced fresh by each calculation and never cached.
"""

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional, Protocol

from opm_backsolve.utils.constants import (
    SOLVER_MAX_ITERATIONS,
    SOLVER_TOLERANCE,
    NEWTON_MIN_STEP,
    NEWTON_MAX_STEP,
)


# ===========================
# Option Pricing
# ===========================


@dataclass(frozen=True)
class OptionParams:
    """
    Immutable container for Black-Scholes call inputs.

    Attributes:
        company_value: Underlying value S (enterprise value in an OPM)
        strike_price: Strike K (a breakpoint threshold in an OPM)
        time_to_expiration: Time to expiration T in years
        volatility: Annualized volatility σ as a decimal (0.60 for 60%)
        risk_free_rate: Risk-free rate r as a decimal, continuous compounding
        dividend_yield: Continuous dividend yield q as a decimal
    """
    company_value: float
    strike_price: float
    time_to_expiration: float
    volatility: float
    risk_free_rate: float
    dividend_yield: float = 0.0


@dataclass(frozen=True)
class OptionResult:
    """
    Result of pricing a call.

    Attributes:
        call_value: Call option value (never negative)
        d1, d2: Black-Scholes d1 and d2
        nd1, nd2: N(d1) and N(d2)
        params: The inputs that produced this result
    """
    call_value: float
    d1: float
    d2: float
    nd1: float
    nd2: float
    params: OptionParams


@dataclass
class Greeks:
    """
    Container for call option Greeks.

    Attributes:
        delta: ∂C/∂S
        gamma: ∂²C/∂S²
        vega: ∂C/∂σ, per 1% vol
        theta: ∂C/∂T, per calendar day
        rho: ∂C/∂r, per 1% rate
    """
    delta: float
    gamma: float
    vega: float
    theta: float
    rho: float


@dataclass
class ArbitrageCheck:
    """
    Result from a no-arbitrage or consistency validation.

    Attributes:
        is_valid: Whether every check passed
        violations: Human-readable description of each failed check
        details: Per-check outcome / supporting numbers
    """
    is_valid: bool
    violations: list[str]
    details: dict[str, Any]


# ===========================
# Cap Table / Breakpoints
# ===========================


@dataclass(frozen=True)
class OPMParams:
    """
    Scenario-level OPM assumptions shared by every breakpoint.

    Company value and strike are supplied per call by the allocation
    engine (enterprise value and breakpoint threshold respectively).
    """
    volatility: float
    risk_free_rate: float
    time_to_liquidity: float
    dividend_yield: float = 0.0

    def option_params(self, company_value: float, strike_price: float) -> OptionParams:
        return OptionParams(
            company_value=company_value,
            strike_price=strike_price,
            time_to_expiration=self.time_to_liquidity,
            volatility=self.volatility,
            risk_free_rate=self.risk_free_rate,
            dividend_yield=self.dividend_yield,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OPMParams":
        return cls(
            volatility=float(data["volatility"]),
            risk_free_rate=float(_pick(data, "risk_free_rate", "riskFreeRate")),
            time_to_liquidity=float(_pick(data, "time_to_liquidity", "timeToLiquidity")),
            dividend_yield=float(_pick(data, "dividend_yield", "dividendYield", default=0.0)),
        )


class BreakpointType(str, Enum):
    LIQUIDATION_PREFERENCE = "liquidation_preference"
    PRO_RATA_DISTRIBUTION = "pro_rata_distribution"
    OPTION_EXERCISE = "option_exercise"
    VOLUNTARY_CONVERSION = "voluntary_conversion"
    PARTICIPATION_CAP = "participation_cap"


@dataclass(frozen=True)
class BreakpointAllocation:
    """
    How one security class participates in a breakpoint's tranche.

    Attributes:
        security_class: Security class name
        participation: Share of the tranche as a decimal in [0, 1]
            (callers holding percentages must divide by 100 first)
        shares_received: Informational share count at this breakpoint
        value_received: Informational value at this breakpoint
    """
    security_class: str
    participation: float
    shares_received: float = 0.0
    value_received: float = 0.0


@dataclass(frozen=True)
class Breakpoint:
    """
    An enterprise value threshold at which marginal distribution changes.

    Attributes:
        id: Identifier
        value: Threshold enterprise value, priced as the call strike
        type: Breakpoint type tag
        allocation: Participation of each security class above this threshold
        description: Optional free text
    """
    id: str
    value: float
    type: BreakpointType
    allocation: tuple[BreakpointAllocation, ...]
    description: str = ""

    def participates(self, security_class: str) -> bool:
        return any(a.security_class == security_class for a in self.allocation)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, percent: bool = False) -> "Breakpoint":
        """
        Build a Breakpoint from a JSON-style mapping (snake_case or camelCase keys).

        Args:
            data: Mapping with id, value, type and allocation entries
            percent: Participation values are percentages (0-100) to be converted
        """
        scale = 100.0 if percent else 1.0
        allocation = tuple(
            BreakpointAllocation(
                security_class=str(_pick(a, "security_class", "securityClass")),
                participation=float(
                    _pick(a, "participation", "participationPercentage")
                ) / scale,
                shares_received=float(_pick(a, "shares_received", "sharesReceived", default=0.0)),
                value_received=float(_pick(a, "value_received", "valueReceived", default=0.0)),
            )
            for a in data.get("allocation", ())
        )
        return cls(
            id=str(data["id"]),
            value=float(data["value"]),
            type=BreakpointType(data.get("type", BreakpointType.PRO_RATA_DISTRIBUTION)),
            allocation=allocation,
            description=str(data.get("description", "")),
        )


@dataclass(frozen=True)
class AllocationContext:
    """
    Inputs of one forward OPM allocation.

    Attributes:
        enterprise_value: Enterprise value to allocate
        params: OPM assumptions (volatility, rate, time, dividend yield)
        breakpoints: Breakpoint schedule, in any order
        total_shares: Total shares outstanding across all classes
        share_class_totals: Security class -> total shares in that class,
            used for per-share values
    """
    enterprise_value: float
    params: OPMParams
    breakpoints: tuple[Breakpoint, ...]
    total_shares: float
    share_class_totals: Mapping[str, float] = field(default_factory=dict)


@dataclass
class ClassAllocation:
    security_class: str
    shares: float
    total_value: float
    value_per_share: float
    percent_of_total: float


@dataclass
class BreakpointActivity:
    """
    Pricing of one breakpoint at a given enterprise value.

    Attributes:
        breakpoint_id: Breakpoint identifier
        breakpoint_value: Threshold value
        breakpoint_type: Type tag
        active: Whether the breakpoint's tranche carries value at this EV
        call_value: Call value struck at the threshold
        d1, d2, nd1, nd2: Black-Scholes intermediates
        incremental_value: Value of this breakpoint's tranche
        allocation_changes: Participating classes with their informational
            shares/value received
    """
    breakpoint_id: str
    breakpoint_value: float
    breakpoint_type: BreakpointType
    active: bool
    call_value: float
    d1: float
    d2: float
    nd1: float
    nd2: float
    incremental_value: float
    allocation_changes: list[BreakpointAllocation]


@dataclass
class AllocationResult:
    """
    Outcome of a forward OPM allocation.

    ``valid`` is False when post-hoc checks (conservation of value,
    negative allocations, NaN) failed; ``validation_errors`` says why.
    """
    enterprise_value: float
    allocations_by_class: list[ClassAllocation]
    breakpoint_activity: list[BreakpointActivity]
    total_value_distributed: float
    unallocated_value: float
    valid: bool
    validation_errors: list[str] = field(default_factory=list)

    @classmethod
    def empty(cls, reason: str = "No allocation calculated") -> "AllocationResult":
        return cls(
            enterprise_value=0.0,
            allocations_by_class=[],
            breakpoint_activity=[],
            total_value_distributed=0.0,
            unallocated_value=0.0,
            valid=False,
            validation_errors=[reason],
        )


# ===========================
# Root Finding
# ===========================


class SolveMethod(str, Enum):
    """Root-finding method selector"""
    NEWTON_RAPHSON = "newton_raphson"
    BISECTION = "bisection"
    HYBRID = "hybrid"
    AUTO = "auto"


class SearchDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"


class CancelToken(Protocol):
    """Anything with ``is_set()``, e.g. threading.Event."""

    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class SearchBounds:
    min: Decimal
    max: Decimal

    def __post_init__(self) -> None:
        if self.min > self.max:
            raise ValueError(f"Search bounds inverted: min={self.min} > max={self.max}")


@dataclass(frozen=True)
class SolveParams:
    """
    Request-scoped root-finding configuration.

    Attributes:
        method: Method selector
        initial_guess: Starting point (required for Newton-Raphson)
        search_bounds: Bracket (required for bisection)
        max_iterations: Iteration budget per method attempt
        tolerance: Convergence tolerance on |f(x)| (and bracket width)
        min_step_size: Smallest Newton step magnitude
        max_step_size: Largest Newton step magnitude
        direction: Monotonicity of f, used by bisection
        record_history: Keep the per-iteration trace
        cancel_event: Checked between iterations; solving stops once set
    """
    method: SolveMethod = SolveMethod.AUTO
    initial_guess: Optional[Decimal] = None
    search_bounds: Optional[SearchBounds] = None
    max_iterations: int = SOLVER_MAX_ITERATIONS
    tolerance: Decimal = Decimal(SOLVER_TOLERANCE)
    min_step_size: Decimal = Decimal(NEWTON_MIN_STEP)
    max_step_size: Decimal = Decimal(NEWTON_MAX_STEP)
    direction: SearchDirection = SearchDirection.INCREASING
    record_history: bool = True
    cancel_event: Optional[CancelToken] = field(default=None, compare=False)

    def with_overrides(self, **overrides: Any) -> "SolveParams":
        """
        Return a copy with the given fields replaced.

        None values are ignored. Enum fields accept their string values,
        Decimal fields accept numbers or numeric strings, and
        ``search_bounds`` accepts a (min, max) pair.
        """
        changes: dict[str, Any] = {}
        for key, value in overrides.items():
            if value is None:
                continue
            if key == "method":
                value = SolveMethod(value)
            elif key == "direction":
                value = SearchDirection(value)
            elif key in ("initial_guess", "tolerance", "min_step_size", "max_step_size"):
                value = _as_decimal(value)
            elif key == "search_bounds" and not isinstance(value, SearchBounds):
                low, high = value
                value = SearchBounds(_as_decimal(low), _as_decimal(high))
            changes[key] = value
        return replace(self, **changes)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


@dataclass
class IterationStep:
    iteration: int
    value: Decimal
    error: Decimal
    satisfied: bool


@dataclass
class SolvePerformance:
    execution_time_ms: float
    methods_attempted: list[str]


@dataclass
class SolveResult:
    """
    Result from the root-finding engine.

    Attributes:
        solution: Best x found
        iterations: Iterations used by the method that produced ``solution``
        error: Residual |f(solution) - target|
        converged: Whether the method met its convergence criterion
        method: Method that produced ``solution``
        explanation: Human-readable account of the outcome
        iteration_history: Per-iteration trace (empty when not recorded)
        performance: Elapsed time and every method attempted, in order
        cancelled: Solving was stopped through the cancel event
    """
    solution: Decimal
    iterations: int
    error: Decimal
    converged: bool
    method: SolveMethod
    explanation: str
    iteration_history: list[IterationStep] = field(default_factory=list)
    performance: SolvePerformance = field(
        default_factory=lambda: SolvePerformance(0.0, [])
    )
    cancelled: bool = False


@dataclass
class Verification:
    verified: bool
    error: Decimal
    actual_value: Decimal


# ===========================
# Backsolve
# ===========================


@dataclass(frozen=True)
class BacksolveRequest:
    """
    Single-scenario backsolve request.

    Attributes:
        target_fmv: FMV per share to reproduce
        security_class: Class whose FMV is targeted
        params: OPM assumptions
        breakpoints: Breakpoint schedule
        total_shares: Total shares outstanding
        share_class_totals: Class -> share count; defaults to
            {security_class: total_shares} when empty
        solver_overrides: SolveParams fields overriding the opm_backsolve preset
    """
    target_fmv: float
    security_class: str
    params: OPMParams
    breakpoints: tuple[Breakpoint, ...]
    total_shares: float
    share_class_totals: Mapping[str, float] = field(default_factory=dict)
    solver_overrides: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class BacksolveMetadata:
    execution_time_ms: float
    methods_attempted: list[str]
    initial_guess: Optional[float] = None
    search_bounds: Optional[tuple[float, float]] = None


@dataclass
class BacksolveResult:
    success: bool
    enterprise_value: float
    actual_fmv: float
    error: float
    converged: bool
    iterations: int
    method: str
    allocation: AllocationResult
    metadata: BacksolveMetadata
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class ProbabilityFormat(str, Enum):
    DECIMAL = "decimal"
    PERCENTAGE = "percentage"


@dataclass(frozen=True)
class Scenario:
    """
    One scenario of a weighted (hybrid PWERM) backsolve.

    Attributes:
        name: Scenario name
        probability: Probability in the request's ProbabilityFormat
        params: OPM assumptions for this scenario
        enterprise_value: Fixed enterprise value (fixed scenarios only)
        is_unknown: This scenario's enterprise value is solved for
    """
    name: str
    probability: float
    params: OPMParams
    enterprise_value: Optional[float] = None
    is_unknown: bool = False


@dataclass(frozen=True)
class WeightedBacksolveRequest:
    target_fmv: float
    security_class: str
    scenarios: tuple[Scenario, ...]
    breakpoints: tuple[Breakpoint, ...]
    total_shares: float
    share_class_totals: Mapping[str, float] = field(default_factory=dict)
    probability_format: ProbabilityFormat = ProbabilityFormat.DECIMAL
    solver_overrides: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class ScenarioResult:
    name: str
    probability: float
    enterprise_value: float
    fmv_per_share: float
    weighted_contribution: float
    allocation: AllocationResult
    is_unknown: bool


@dataclass
class WeightedBacksolveMetadata:
    execution_time_ms: float
    iterations: int
    method: str
    methods_attempted: list[str] = field(default_factory=list)
    fixed_weighted_sum: float = 0.0
    required_fmv: float = 0.0


@dataclass
class WeightedBacksolveResult:
    success: bool
    target_fmv: float
    actual_weighted_fmv: float
    error: float
    converged: bool
    scenario_results: list[ScenarioResult]
    unknown_scenario_index: int
    metadata: WeightedBacksolveMetadata
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def solved_enterprise_value(self) -> Optional[float]:
        for result in self.scenario_results:
            if result.is_unknown:
                return result.enterprise_value
        return None


# ===========================
# Hybrid PWERM
# ===========================


@dataclass(frozen=True)
class HybridScenario:
    """
    A scenario with its own target FMV, backsolved independently.

    Attributes:
        name: Scenario name
        probability: Probability in the request's ProbabilityFormat
        target_fmv: FMV per share this scenario must produce
        param_overrides: OPMParams fields replacing the global assumptions
        breakpoints: Scenario-specific breakpoints (global ones when None)
    """
    name: str
    probability: float
    target_fmv: float
    param_overrides: Mapping[str, float] = field(default_factory=dict)
    breakpoints: Optional[tuple[Breakpoint, ...]] = None


@dataclass(frozen=True)
class HybridPWERMRequest:
    security_class: str
    scenarios: tuple[HybridScenario, ...]
    params: OPMParams
    breakpoints: tuple[Breakpoint, ...]
    total_shares: float
    share_class_totals: Mapping[str, float] = field(default_factory=dict)
    probability_format: ProbabilityFormat = ProbabilityFormat.DECIMAL
    target_weighted_fmv: Optional[float] = None
    solver_overrides: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class ProbabilityValidation:
    valid: bool
    total_probability: float
    normalized_probabilities: list[float]
    errors: list[str] = field(default_factory=list)


@dataclass
class PWERMStatistics:
    """Probability-weighted statistics of scenario FMVs."""
    weighted_mean: float = 0.0
    weighted_variance: float = 0.0
    weighted_std_dev: float = 0.0
    coefficient_of_variation: float = 0.0
    percentile_25: float = 0.0
    percentile_50: float = 0.0
    percentile_75: float = 0.0


@dataclass
class HybridScenarioResult:
    name: str
    probability: float
    target_fmv: float
    calculated_fmv: float
    enterprise_value: float
    params: OPMParams
    allocation: AllocationResult
    success: bool
    weighted_contribution: float = 0.0
    percent_of_weighted_value: float = 0.0


@dataclass
class HybridPWERMResult:
    success: bool
    enterprise_value: float
    weighted_fmv: float
    error: float
    converged: bool
    scenario_results: list[HybridScenarioResult]
    probability_validation: ProbabilityValidation
    statistics: PWERMStatistics
    execution_time_ms: float
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _as_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _pick(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First present key among snake_case/camelCase spellings."""
    for key in keys:
        if key in data:
            return data[key]
    if default is None:
        raise KeyError(keys[0])
    return default
