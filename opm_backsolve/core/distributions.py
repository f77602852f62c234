"""
Standard normal distribution functions.

The cumulative distribution uses the Abramowitz & Stegun polynomial
approximation rather than an exact error function. Every dollar
tolerance downstream (allocation conservation, backsolve verification)
is calibrated against this approximation, so swapping it for scipy's
norm.cdf changes results in the last few cents.
"""

import math

from opm_backsolve.utils.constants import CDF_P, CDF_SCALE, CDF_COEFFICIENTS


def cumulative_normal(x: float) -> float:
    """
    Standard normal CDF via Abramowitz & Stegun formula 26.2.17.

    Args:
        x: Value at which to evaluate the CDF

    Returns:
        N(x), with absolute error below 7.5e-8

    Formula:
        t = 1 / (1 + p·|x|)
        N(|x|) = 1 - φ(x)·t·(a1 + t(a2 + t(a3 + t(a4 + t·a5))))
        N(x) = 1 - N(|x|) for x < 0

    Examples:
        >>> abs(cumulative_normal(0.0) - 0.5) < 1e-7
        True
        >>> abs(cumulative_normal(1.96) - 0.975) < 1e-4
        True
    """
    t = 1.0 / (1.0 + CDF_P * abs(x))
    density = CDF_SCALE * math.exp(-x * x / 2.0)

    a1, a2, a3, a4, a5 = CDF_COEFFICIENTS
    poly = t * (a1 + t * (a2 + t * (a3 + t * (a4 + t * a5))))
    upper = 1.0 - density * poly

    return 1.0 - upper if x < 0 else upper


def normal_pdf(x: float) -> float:
    """
    Standard normal probability density function.

    Args:
        x: Value at which to evaluate the PDF

    Returns:
        φ(x) = (1/√(2π)) * exp(-x²/2)
    """
    return math.exp(-0.5 * x * x) / math.sqrt(2.0 * math.pi)
