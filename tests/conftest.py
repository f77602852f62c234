"""
Pytest configuration and shared fixtures.
"""

import pytest
import structlog

from opm_backsolve.utils.types import (
    Breakpoint,
    BreakpointAllocation,
    BreakpointType,
    OPMParams,
    OptionParams,
)


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo any structlog configuration a test (e.g. the CLI) installed."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def standard_params():
    """Standard at-the-money call parameters."""
    return OptionParams(
        company_value=100.0,
        strike_price=100.0,
        time_to_expiration=1.0,
        volatility=0.20,
        risk_free_rate=0.05,
        dividend_yield=0.0,
    )


@pytest.fixture
def with_dividend_params():
    """Parameters with non-zero dividend yield."""
    return OptionParams(
        company_value=100.0,
        strike_price=100.0,
        time_to_expiration=1.0,
        volatility=0.20,
        risk_free_rate=0.05,
        dividend_yield=0.02,
    )


@pytest.fixture
def opm_params():
    """Typical venture-stage OPM assumptions."""
    return OPMParams(volatility=0.60, risk_free_rate=0.045, time_to_liquidity=3.0)


@pytest.fixture
def common_only_breakpoints():
    """A single zero threshold where common takes everything."""
    return (
        Breakpoint(
            id="bp-common",
            value=0.0,
            type=BreakpointType.PRO_RATA_DISTRIBUTION,
            allocation=(BreakpointAllocation("common", 1.0),),
        ),
    )


@pytest.fixture
def preferred_common_breakpoints():
    """
    $5M 1x liquidation preference ahead of common; above it preferred
    converts and shares pro rata (2M preferred, 8M common).
    """
    return (
        Breakpoint(
            id="bp-lp",
            value=0.0,
            type=BreakpointType.LIQUIDATION_PREFERENCE,
            allocation=(BreakpointAllocation("series_a", 1.0),),
        ),
        Breakpoint(
            id="bp-common",
            value=5_000_000.0,
            type=BreakpointType.PRO_RATA_DISTRIBUTION,
            allocation=(
                BreakpointAllocation("series_a", 0.2),
                BreakpointAllocation("common", 0.8),
            ),
        ),
    )


@pytest.fixture
def preferred_common_shares():
    """Share counts for the preferred/common cap table."""
    return {"series_a": 2_000_000.0, "common": 8_000_000.0}
