"""
Decimal precision model for solver values.

Option pricing runs in ordinary floats; root-finding bounds, tolerances,
iterates and outputs are Decimals. The precision settings live in an
explicit PrecisionConfig that is passed to the solvers, so nothing relies
on the process-wide decimal context.
"""

import decimal
from dataclasses import dataclass
from decimal import Decimal
from typing import Union

from opm_backsolve.utils.constants import DECIMAL_DIGITS, DECIMAL_ROUNDING

Number = Union[Decimal, float, int, str]


@dataclass(frozen=True)
class PrecisionConfig:
    """
    Significant digits and rounding mode for solver arithmetic.

    Attributes:
        digits: Significant digits kept by every Decimal operation
        rounding: A ``decimal`` rounding constant, e.g. ROUND_HALF_UP
    """
    digits: int = DECIMAL_DIGITS
    rounding: str = DECIMAL_ROUNDING

    def __post_init__(self) -> None:
        if self.digits <= 0:
            raise ValueError(f"digits must be positive, got {self.digits}")

    def context(self) -> decimal.Context:
        """Build a fresh decimal.Context for use with ``decimal.localcontext``."""
        return decimal.Context(prec=self.digits, rounding=self.rounding)

    def to_decimal(self, value: Number) -> Decimal:
        """
        Convert a float/int/str/Decimal into a Decimal rounded to this precision.

        Floats go through ``create_decimal_from_float`` so the conversion is the
        exact binary value rounded once, never the float's repr.
        """
        ctx = self.context()
        if isinstance(value, float):
            return ctx.create_decimal_from_float(value)
        return ctx.create_decimal(value)


DEFAULT_PRECISION = PrecisionConfig()
