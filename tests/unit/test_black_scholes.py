"""
Unit tests for Black-Scholes call pricing and Greeks.

This module validates:
1. Known analytical solutions from textbooks
2. No-arbitrage bounds and monotonicity
3. The zero-strike shortcut
4. Input validation and warnings
5. Greeks accuracy via finite-difference comparison
"""

import math
from dataclasses import replace

import pytest

from opm_backsolve.core.black_scholes import (
    d1,
    d2,
    price_call,
    calculate_greeks,
    raw_vega,
)
from opm_backsolve.utils.errors import OPMError, ParameterRangeError
from opm_backsolve.utils.types import OptionParams


# ===========================
# Known Solutions Tests
# ===========================


def test_atm_call_known_solution(standard_params):
    """
    Hull's example: S=100, K=100, T=1, r=5%, σ=20%, q=0 → Call ≈ 10.4506
    """
    result = price_call(standard_params)
    assert abs(result.call_value - 10.45) < 0.01, f"Expected ~10.45, got {result.call_value}"


def test_itm_call_known_solution():
    """S=120, K=100, T=0.5, r=5%, σ=20% → Call ≈ 22.95"""
    result = price_call(OptionParams(120, 100, 0.5, 0.20, 0.05))
    assert 22.5 < result.call_value < 23.5


def test_result_echoes_params(standard_params):
    result = price_call(standard_params)
    assert result.params == standard_params
    assert abs(result.nd1 - 0.6368) < 1e-3
    assert abs(result.nd2 - 0.5596) < 1e-3


def test_dividend_lowers_call_value(standard_params, with_dividend_params):
    """A continuous dividend yield reduces the call value."""
    assert price_call(with_dividend_params).call_value < price_call(standard_params).call_value


# ===========================
# d1 and d2 Tests
# ===========================


def test_d1_d2_relationship(standard_params):
    """Verify d2 = d1 - σ√T."""
    expected_d2 = d1(standard_params) - standard_params.volatility * math.sqrt(1.0)
    assert abs(d2(standard_params) - expected_d2) < 1e-10


def test_d1_sign_follows_moneyness():
    assert d1(OptionParams(120, 100, 1.0, 0.20, 0.05)) > 0
    assert d1(OptionParams(80, 100, 1.0, 0.20, 0.05)) < 0


# ===========================
# Bounds and Monotonicity Tests
# ===========================


@pytest.mark.parametrize(
    "S,K,T,sigma,r,q",
    [
        (100, 100, 1.0, 0.20, 0.05, 0.0),  # ATM
        (150, 100, 1.0, 0.20, 0.05, 0.0),  # ITM
        (50, 100, 1.0, 0.20, 0.05, 0.0),  # OTM
        (10_000_000, 5_000_000, 3.0, 0.60, 0.045, 0.0),  # Venture-scale OPM
        (100, 100, 2.0, 0.15, 0.03, 0.01),  # Long expiry with dividend
    ],
)
def test_call_within_no_arbitrage_bounds(S, K, T, sigma, r, q):
    """max(0, S·e^(-qT) - K·e^(-rT)) <= C <= S·e^(-qT)"""
    result = price_call(OptionParams(S, K, T, sigma, r, q))
    lower = max(0.0, S * math.exp(-q * T) - K * math.exp(-r * T))
    upper = S * math.exp(-q * T)
    assert result.call_value >= lower - 1e-6 * S
    assert result.call_value <= upper + 1e-6 * S


def test_call_non_decreasing_in_value():
    values = [50, 75, 100, 125, 150, 200]
    prices = [price_call(OptionParams(S, 100, 1.0, 0.3, 0.05)).call_value for S in values]
    for lower, higher in zip(prices, prices[1:]):
        assert higher >= lower


def test_call_non_increasing_in_strike():
    strikes = [0, 25, 50, 100, 150, 300]
    prices = [price_call(OptionParams(100, K, 1.0, 0.3, 0.05)).call_value for K in strikes]
    for lower_strike, higher_strike in zip(prices, prices[1:]):
        assert higher_strike <= lower_strike


def test_deep_otm_call_floored_at_zero():
    result = price_call(OptionParams(1, 1_000_000, 0.1, 0.05, 0.0))
    assert result.call_value >= 0.0
    assert result.call_value < 1e-9


# ===========================
# Zero Strike Tests
# ===========================


def test_zero_strike_returns_underlying():
    result = price_call(OptionParams(10_000_000, 0.0, 3.0, 0.6, 0.045))
    assert result.call_value == 10_000_000
    assert result.d1 == 0.0 and result.d2 == 0.0
    assert result.nd1 == 1.0 and result.nd2 == 1.0


def test_epsilon_strike_close_to_underlying():
    """A strike of 0.00001 prices essentially at the underlying value."""
    result = price_call(OptionParams(10_000_000, 0.00001, 3.0, 0.6, 0.045))
    assert abs(result.call_value - 10_000_000) < 0.01


# ===========================
# Validation Tests
# ===========================


@pytest.mark.parametrize(
    "field,value",
    [
        ("company_value", 0.0),
        ("company_value", -1.0),
        ("strike_price", -1.0),
        ("time_to_expiration", 0.0),
        ("volatility", 0.0),
        ("volatility", -0.2),
        ("risk_free_rate", -0.01),
        ("dividend_yield", -0.01),
        ("company_value", float("nan")),
        ("strike_price", float("nan")),
        ("time_to_expiration", float("nan")),
        ("volatility", float("nan")),
        ("risk_free_rate", float("nan")),
        ("dividend_yield", float("nan")),
    ],
)
def test_invalid_params_raise(standard_params, field, value):
    """Each out-of-domain input raises ParameterRangeError naming the field."""
    with pytest.raises(ParameterRangeError) as exc_info:
        price_call(replace(standard_params, **{field: value}))
    assert exc_info.value.field == field


def test_parameter_error_is_value_error(standard_params):
    with pytest.raises(ValueError):
        price_call(replace(standard_params, volatility=0.0))
    assert issubclass(ParameterRangeError, OPMError)


def test_high_volatility_warns_but_prices(standard_params):
    """σ > 3 and T > 10 are accepted."""
    result = price_call(replace(standard_params, volatility=3.5, time_to_expiration=12.0))
    assert 0.0 < result.call_value <= standard_params.company_value


# ===========================
# Greeks Tests
# ===========================


def test_greeks_standard_values(standard_params):
    greeks = calculate_greeks(standard_params)
    assert abs(greeks.delta - 0.6368) < 1e-3
    assert abs(greeks.gamma - 0.01876) < 1e-4
    assert abs(greeks.vega - 0.3752) < 1e-3  # per 1% vol
    assert abs(greeks.theta - (-6.414 / 365)) < 1e-3  # per day
    assert abs(greeks.rho - 0.5323) < 1e-3  # per 1% rate


def test_delta_matches_finite_difference(standard_params):
    h = 0.01
    up = price_call(replace(standard_params, company_value=100 + h)).call_value
    down = price_call(replace(standard_params, company_value=100 - h)).call_value
    assert abs(calculate_greeks(standard_params).delta - (up - down) / (2 * h)) < 1e-4


def test_vega_matches_finite_difference(standard_params):
    h = 0.01
    up = price_call(replace(standard_params, volatility=0.20 + h)).call_value
    down = price_call(replace(standard_params, volatility=0.20 - h)).call_value
    fd_vega = (up - down) / (2 * h)
    assert abs(raw_vega(standard_params) - fd_vega) / fd_vega < 1e-3
    assert abs(calculate_greeks(standard_params).vega * 100 - fd_vega) / fd_vega < 1e-3


def test_zero_strike_greeks():
    params = OptionParams(100, 0.0, 2.0, 0.3, 0.05, 0.02)
    greeks = calculate_greeks(params)
    assert abs(greeks.delta - math.exp(-0.02 * 2.0)) < 1e-12
    assert greeks.gamma == greeks.vega == greeks.theta == greeks.rho == 0.0
    assert raw_vega(params) == 0.0
