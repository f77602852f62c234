"""
Black-Scholes call pricing for Option Pricing Method (OPM) allocations.

In an OPM every security class is modeled as a strip of call options on
the enterprise: the underlying is the company's enterprise value and each
breakpoint threshold is a strike. This module prices a single such call
and its Greeks.

Mathematical Background:
    The Black-Scholes-Merton formula with continuous dividend yield:
        C = S·e^(-qT)·N(d1) - K·e^(-rT)·N(d2)
    where N is the standard normal CDF (polynomial approximation, see
    core.distributions).

References:
    Black, F., & Scholes, M. (1973). The Pricing of Options and Corporate Liabilities.
    Journal of Political Economy, 81(3), 637-654.
"""

import math

import structlog

from opm_backsolve.core.distributions import cumulative_normal, normal_pdf
from opm_backsolve.utils.constants import (
    WARN_VOLATILITY,
    WARN_TIME_TO_EXPIRATION,
    DAYS_PER_YEAR,
    PERCENT_SCALE,
)
from opm_backsolve.utils.errors import ParameterRangeError
from opm_backsolve.utils.types import Greeks, OptionParams, OptionResult

logger = structlog.get_logger()


def validate_params(params: OptionParams) -> None:
    """
    Validate call pricing inputs.

    Hard domain violations raise; values that are legal but unusual for
    private-company valuation are logged as warnings and accepted.

    Args:
        params: Option inputs

    Raises:
        ParameterRangeError: If any input is outside its domain
    """
    if not params.company_value > 0:
        raise ParameterRangeError(
            "company_value", params.company_value,
            f"Company value must be positive, got S={params.company_value}",
        )
    if not params.strike_price >= 0:
        raise ParameterRangeError(
            "strike_price", params.strike_price,
            f"Strike price cannot be negative, got K={params.strike_price}",
        )
    if not params.time_to_expiration > 0:
        raise ParameterRangeError(
            "time_to_expiration", params.time_to_expiration,
            f"Time to expiration must be positive, got T={params.time_to_expiration}",
        )
    if not params.volatility > 0:
        raise ParameterRangeError(
            "volatility", params.volatility,
            f"Volatility must be positive, got sigma={params.volatility}",
        )
    if not params.risk_free_rate >= 0:
        raise ParameterRangeError(
            "risk_free_rate", params.risk_free_rate,
            f"Risk-free rate cannot be negative, got r={params.risk_free_rate}",
        )
    if not params.dividend_yield >= 0:
        raise ParameterRangeError(
            "dividend_yield", params.dividend_yield,
            f"Dividend yield cannot be negative, got q={params.dividend_yield}",
        )

    if params.volatility > WARN_VOLATILITY:
        logger.warning("high_volatility", volatility=params.volatility, threshold=WARN_VOLATILITY)
    if params.time_to_expiration > WARN_TIME_TO_EXPIRATION:
        logger.warning(
            "long_time_to_expiration",
            time_to_expiration=params.time_to_expiration,
            threshold=WARN_TIME_TO_EXPIRATION,
        )


def d1(params: OptionParams) -> float:
    """
    Calculate d1 parameter in Black-Scholes formula.

    Formula:
        d1 = [ln(S/K) + (r - q + σ²/2)T] / (σ√T)

    Notes:
        Assumes validated params with K > 0.
    """
    S, K = params.company_value, params.strike_price
    T, sigma = params.time_to_expiration, params.volatility
    r, q = params.risk_free_rate, params.dividend_yield

    log_moneyness = math.log(S) - math.log(K)
    drift = (r - q + 0.5 * sigma * sigma) * T
    return (log_moneyness + drift) / (sigma * math.sqrt(T))


def d2(params: OptionParams) -> float:
    """
    Calculate d2 = d1 - σ√T.

    N(d2) is the risk-neutral probability the enterprise value ends above
    the strike.
    """
    return d1(params) - params.volatility * math.sqrt(params.time_to_expiration)


def price_call(params: OptionParams) -> OptionResult:
    """
    Price a European call on enterprise value.

    Args:
        params: Option inputs (S, K, T, σ, r, q)

    Returns:
        OptionResult with call value, d1, d2, N(d1), N(d2) and the inputs

    Raises:
        ParameterRangeError: If inputs are outside their domain

    Examples:
        >>> params = OptionParams(100, 100, 1.0, 0.20, 0.05)
        >>> abs(price_call(params).call_value - 10.45) < 0.01
        True

    Edge Cases:
        - K = 0: the call is the underlying itself; returns C = S with
          d1 = d2 = 0 and N(d1) = N(d2) = 1
        - Rounding can leave a tiny negative value deep out of the money;
          the price is floored at 0
    """
    validate_params(params)

    S, K = params.company_value, params.strike_price
    if K <= 0:
        return OptionResult(call_value=S, d1=0.0, d2=0.0, nd1=1.0, nd2=1.0, params=params)

    T = params.time_to_expiration
    r, q = params.risk_free_rate, params.dividend_yield

    d1_value = d1(params)
    d2_value = d2(params)
    nd1 = cumulative_normal(d1_value)
    nd2 = cumulative_normal(d2_value)

    discount_spot = S * math.exp(-q * T)
    discount_strike = K * math.exp(-r * T)
    call_value = discount_spot * nd1 - discount_strike * nd2

    return OptionResult(
        call_value=max(0.0, call_value),
        d1=d1_value,
        d2=d2_value,
        nd1=nd1,
        nd2=nd2,
        params=params,
    )


# ===========================
# Greeks Calculations
# ===========================


def calculate_greeks(params: OptionParams) -> Greeks:
    """
    Calculate all call Greeks in one pass.

    Args:
        params: Option inputs

    Returns:
        Greeks with delta, gamma, vega (per 1% vol), theta (per calendar day)
        and rho (per 1% rate)

    Formulas:
        Δ = e^(-qT)·N(d1)
        Γ = e^(-qT)·φ(d1) / (S·σ·√T)
        ν = S·e^(-qT)·φ(d1)·√T / 100
        Θ = [-S·e^(-qT)·φ(d1)·σ/(2√T) - r·K·e^(-rT)·N(d2) + q·S·e^(-qT)·N(d1)] / 365
        ρ = K·T·e^(-rT)·N(d2) / 100

    Edge Cases:
        - K = 0: delta = e^(-qT), every other Greek is 0
    """
    result = price_call(params)

    S, K = params.company_value, params.strike_price
    T, sigma = params.time_to_expiration, params.volatility
    r, q = params.risk_free_rate, params.dividend_yield

    discount_spot = math.exp(-q * T)
    if K <= 0:
        return Greeks(delta=discount_spot, gamma=0.0, vega=0.0, theta=0.0, rho=0.0)

    sqrt_T = math.sqrt(T)
    pdf_d1 = normal_pdf(result.d1)
    discount_strike = math.exp(-r * T)

    delta = discount_spot * result.nd1
    gamma = discount_spot * pdf_d1 / (S * sigma * sqrt_T)
    vega = S * discount_spot * pdf_d1 * sqrt_T / PERCENT_SCALE

    # Annualized theta: diffusion decay, rate carry, dividend contribution
    theta_annual = (
        -(S * discount_spot * pdf_d1 * sigma) / (2.0 * sqrt_T)
        - r * K * discount_strike * result.nd2
        + q * S * discount_spot * result.nd1
    )
    theta = theta_annual / DAYS_PER_YEAR

    rho = K * T * discount_strike * result.nd2 / PERCENT_SCALE

    return Greeks(delta=delta, gamma=gamma, vega=vega, theta=theta, rho=rho)


def raw_vega(params: OptionParams) -> float:
    """
    Vega per unit volatility, ∂C/∂σ, as the implied-vol solver needs it.

    Returns 0 for a zero strike, whose value does not depend on σ.
    """
    if params.strike_price <= 0:
        return 0.0
    T = params.time_to_expiration
    pdf_d1 = normal_pdf(d1(params))
    return params.company_value * math.exp(-params.dividend_yield * T) * pdf_d1 * math.sqrt(T)
