"""
Numerical constants and tolerances for OPM pricing and backsolve.

This module defines the thresholds used by the option pricer, the
root-finding engine and the allocation engine. Dollar tolerances are
calibrated against the polynomial normal CDF approximation used by the
pricer (error bound ~7.5e-8), not against an exact error function.
"""

from decimal import ROUND_HALF_UP

# Option pricer warning thresholds (warn, do not fail)
WARN_VOLATILITY = 3.0  # 300% annualized
WARN_TIME_TO_EXPIRATION = 10.0  # years

# Cumulative normal approximation (Abramowitz & Stegun 26.2.17)
CDF_P = 0.2316419
CDF_SCALE = 0.3989423  # ~1/sqrt(2π)
CDF_COEFFICIENTS = (
    0.31938153,
    -0.356563782,
    1.781477937,
    -1.821255978,
    1.330274429,
)

# Greeks reporting conventions
DAYS_PER_YEAR = 365.0  # theta per calendar day
PERCENT_SCALE = 100.0  # vega and rho per 1% move

# Implied volatility solver parameters
IV_INITIAL_GUESS = 0.5  # 50% volatility
IV_TOLERANCE = 1e-4  # $0.0001 price accuracy
IV_MAX_ITERATIONS = 100
IV_MIN_VEGA = 1e-10  # Below this, derivative is degenerate
IV_MIN_VOL = 0.01  # 1% minimum volatility
IV_MAX_VOL = 5.0  # 500% maximum volatility

# Root-finding defaults
SOLVER_MAX_ITERATIONS = 50
SOLVER_TOLERANCE = "0.01"  # $0.01, kept as text for exact Decimal conversion
NEWTON_MIN_STEP = "0.001"
NEWTON_MAX_STEP = "1e9"
BISECTION_MAX_ITERATIONS = 100
NUMERICAL_DERIVATIVE_REL_STEP = "1e-6"  # h relative to |x|
NUMERICAL_DERIVATIVE_MIN_STEP = "0.001"  # floor for h near zero

# Decimal precision model for solver values
DECIMAL_DIGITS = 28
DECIMAL_ROUNDING = ROUND_HALF_UP

# OPM allocation engine
ZERO_STRIKE_EPSILON = 0.00001  # Substituted for a 0 threshold to avoid log(S/0)
CONSERVATION_TOLERANCE = 0.01  # Distributed value may exceed EV by at most 1%
OPM_MAX_VOLATILITY = 5.0
OPM_MAX_RISK_FREE_RATE = 1.0
OPM_MAX_TIME_TO_LIQUIDITY = 20.0  # years

# Backsolve heuristics
INITIAL_GUESS_MULTIPLIER = 1.5  # EV0 = target FMV * total shares * 1.5
LOWER_BOUND_FRACTION = 0.1  # min bound = max(min breakpoint, 0.1 * EV0)
UPPER_BOUND_MULTIPLE = 10.0  # max bound = 10 * EV0
VERIFICATION_TOLERANCE = "0.01"  # 1 cent

# Scenario probabilities
PROBABILITY_SUM_TOLERANCE = 0.01
