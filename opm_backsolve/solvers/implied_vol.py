"""
Implied volatility solver for enterprise-value calls.

Recovers the volatility σ at which the Black-Scholes call value matches an
observed (or target) call value, using Newton-Raphson with vega as the
derivative.
"""

from dataclasses import replace
from typing import Optional

import structlog

from opm_backsolve.core.black_scholes import price_call, raw_vega
from opm_backsolve.utils.constants import (
    IV_INITIAL_GUESS,
    IV_TOLERANCE,
    IV_MAX_ITERATIONS,
    IV_MIN_VEGA,
    IV_MIN_VOL,
    IV_MAX_VOL,
)
from opm_backsolve.utils.types import OptionParams

logger = structlog.get_logger()


def implied_volatility(
    market_price: float,
    params: OptionParams,
    tolerance: float = IV_TOLERANCE,
    max_iterations: int = IV_MAX_ITERATIONS,
    initial_guess: float = IV_INITIAL_GUESS,
) -> Optional[float]:
    """
    Solve for the volatility that reproduces a call value.

    The Newton-Raphson update is:
        σ_{n+1} = σ_n - (C(σ_n) - market_price) / vega(σ_n)

    Args:
        market_price: Call value to reproduce
        params: Option inputs; ``params.volatility`` is ignored
        tolerance: Convergence tolerance on |C(σ) - market_price|
        max_iterations: Maximum number of Newton iterations
        initial_guess: Starting volatility

    Returns:
        Implied volatility, or None when vega degenerates (< 1e-10) or the
        iteration budget is exhausted

    Raises:
        ParameterRangeError: If the non-volatility inputs are invalid

    Examples:
        >>> params = OptionParams(100, 100, 1.0, 0.45, 0.03)
        >>> price = price_call(params).call_value
        >>> abs(implied_volatility(price, params) - 0.45) < 1e-3
        True

    Notes:
        - σ is clamped to [0.01, 5.0] after every step so a wild step cannot
          leave the pricer's domain
        - Uses vega per unit volatility, not the per-1% figure reported by
          calculate_greeks
    """
    sigma = initial_guess

    for iteration in range(1, max_iterations + 1):
        trial = replace(params, volatility=sigma)
        price_diff = price_call(trial).call_value - market_price

        if abs(price_diff) < tolerance:
            logger.debug("implied_vol_converged", volatility=sigma, iterations=iteration)
            return sigma

        vega_value = raw_vega(trial)
        if vega_value < IV_MIN_VEGA:
            logger.debug("implied_vol_vega_degenerate", vega=vega_value, iteration=iteration)
            return None

        sigma = sigma - price_diff / vega_value
        sigma = max(IV_MIN_VOL, min(IV_MAX_VOL, sigma))

    logger.debug("implied_vol_max_iterations", max_iterations=max_iterations, volatility=sigma)
    return None
