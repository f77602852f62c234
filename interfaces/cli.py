"""
Command-line interface for the OPM valuation toolkit.

This CLI provides access to:
- Call pricing and Greeks (Black-Scholes)
- Implied volatility solving
- Forward OPM allocation of an enterprise value
- Single-scenario and probability-weighted backsolves
- Hybrid PWERM across independently backsolved scenarios

Cap tables are read from JSON files: breakpoints as a list of objects,
share classes as a {class: shares} object, scenarios as a list of objects.
"""

import json

import click

from opm_backsolve import api
from opm_backsolve.core.black_scholes import calculate_greeks
from opm_backsolve.diagnostics.validation import check_call_bounds, check_call_monotonicity
from opm_backsolve.solvers.implied_vol import implied_volatility
from opm_backsolve.utils.errors import OPMError
from opm_backsolve.utils.trace import AuditTrailLogger, configure_logging
from opm_backsolve.utils.types import (
    AllocationContext,
    BacksolveRequest,
    Breakpoint,
    HybridPWERMRequest,
    HybridScenario,
    OPMParams,
    OptionParams,
    ProbabilityFormat,
    Scenario,
    WeightedBacksolveRequest,
)

json_file = click.Path(exists=True, dir_okay=False)


def opm_options(func):
    """Shared OPM assumption options."""
    func = click.option("--div", "-q", type=float, default=0.0, help="Dividend yield")(func)
    func = click.option("--time", "-T", type=float, required=True, help="Time to liquidity (years)")(func)
    func = click.option("--rate", "-r", type=float, required=True, help="Risk-free rate")(func)
    func = click.option("--vol", "-v", type=float, required=True, help="Volatility (annualized)")(func)
    return func


def cap_table_options(func):
    """Shared cap table options."""
    func = click.option(
        "--percent", is_flag=True, help="Participation values are percentages (0-100)"
    )(func)
    func = click.option("--share-classes", type=json_file, help="JSON {class: shares}")(func)
    func = click.option("--total-shares", type=float, required=True, help="Total shares outstanding")(func)
    func = click.option("--breakpoints", type=json_file, required=True, help="Breakpoints JSON file")(func)
    return func


def load_json(path):
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


def load_breakpoints(path, percent=False):
    return tuple(Breakpoint.from_dict(item, percent=percent) for item in load_json(path))


def load_share_classes(path):
    if not path:
        return {}
    return {str(k): float(v) for k, v in load_json(path).items()}


def fail(error):
    click.echo(f"\nError: {error}", err=True)
    raise SystemExit(1)


def echo_allocation(result):
    click.echo(f"\nEnterprise Value:       ${result.enterprise_value:,.2f}")
    click.echo(f"Total Distributed:      ${result.total_value_distributed:,.2f}")
    click.echo(f"Unallocated:            ${result.unallocated_value:,.2f}")
    click.echo("\nClass                 Value            Per Share     % of Total")
    for allocation in result.allocations_by_class:
        click.echo(
            f"  {allocation.security_class:<18} ${allocation.total_value:>14,.2f} "
            f"${allocation.value_per_share:>11,.4f} {allocation.percent_of_total:>9.2f}%"
        )
    for message in result.validation_errors:
        click.echo(f"  Validation: {message}", err=True)


def echo_messages(warnings, errors):
    for message in warnings:
        click.echo(f"Warning: {message}", err=True)
    for message in errors:
        click.echo(f"Error: {message}", err=True)


@click.group()
@click.version_option(version="1.0.0")
@click.option("--verbose", is_flag=True, help="Emit debug logging and the audit trail")
@click.option("--json-logs", is_flag=True, help="Render log output as JSON lines")
@click.pass_context
def cli(ctx, verbose, json_logs):
    """OPM Valuation Toolkit - Black-Scholes OPM allocation and backsolve."""
    configure_logging("DEBUG" if verbose else "WARNING", json=json_logs)
    ctx.obj = AuditTrailLogger("cli") if verbose else None


@cli.command()
@click.option("--value", "-S", type=float, required=True, help="Company (underlying) value")
@click.option("--strike", "-K", type=float, required=True, help="Strike / breakpoint")
@opm_options
@click.pass_obj
def price(trace, value, strike, vol, rate, time, div):
    """Calculate call value using Black-Scholes."""
    try:
        result = api.price_option(OptionParams(value, strike, time, vol, rate, div), trace)
    except OPMError as e:
        fail(e)

    click.echo(f"\nCall Value: ${result.call_value:,.4f}")
    click.echo(f"  d1: {result.d1:.6f}   N(d1): {result.nd1:.6f}")
    click.echo(f"  d2: {result.d2:.6f}   N(d2): {result.nd2:.6f}")
    check = check_call_bounds(result)
    for violation in check.violations:
        click.echo(f"  Bounds: {violation}", err=True)


@cli.command()
@click.option("--value", "-S", type=float, required=True, help="Company (underlying) value")
@click.option("--strike", "-K", type=float, required=True, help="Strike / breakpoint")
@opm_options
def greeks(value, strike, vol, rate, time, div):
    """Calculate all call Greeks."""
    try:
        greeks_values = calculate_greeks(OptionParams(value, strike, time, vol, rate, div))
    except OPMError as e:
        fail(e)

    click.echo("\nGreeks for Call Option:")
    click.echo(f"  Delta:  {greeks_values.delta:>10.6f}")
    click.echo(f"  Gamma:  {greeks_values.gamma:>10.6g}")
    click.echo(f"  Vega:   {greeks_values.vega:>10.6f} (per 1% vol)")
    click.echo(f"  Theta:  {greeks_values.theta:>10.6f} (per day)")
    click.echo(f"  Rho:    {greeks_values.rho:>10.6f} (per 1% rate)")


@cli.command()
@click.option("--market-price", "-p", type=float, required=True, help="Observed call value")
@click.option("--value", "-S", type=float, required=True, help="Company (underlying) value")
@click.option("--strike", "-K", type=float, required=True, help="Strike / breakpoint")
@click.option("--time", "-T", type=float, required=True, help="Time to expiry (years)")
@click.option("--rate", "-r", type=float, required=True, help="Risk-free rate")
@click.option("--div", "-q", type=float, default=0.0, help="Dividend yield")
def iv(market_price, value, strike, time, rate, div):
    """Solve for implied volatility."""
    try:
        sigma = implied_volatility(market_price, OptionParams(value, strike, time, 0.5, rate, div))
    except OPMError as e:
        fail(e)

    if sigma is None:
        click.echo("\nSolver failed: no implied volatility found", err=True)
        raise SystemExit(1)
    click.echo(f"\nImplied Volatility: {sigma:.4f} ({sigma*100:.2f}%)")


@cli.command()
@click.option("--enterprise-value", "-E", type=float, required=True, help="Enterprise value")
@opm_options
@cap_table_options
@click.pass_obj
def allocate(trace, enterprise_value, vol, rate, time, div, breakpoints, total_shares, share_classes, percent):
    """Allocate an enterprise value across security classes."""
    try:
        context = AllocationContext(
            enterprise_value=enterprise_value,
            params=OPMParams(vol, rate, time, div),
            breakpoints=load_breakpoints(breakpoints, percent),
            total_shares=total_shares,
            share_class_totals=load_share_classes(share_classes),
        )
        result = api.allocate(context, trace)
    except (OPMError, KeyError) as e:
        fail(e)

    echo_allocation(result)
    check = check_call_monotonicity(result.breakpoint_activity)
    for violation in check.violations:
        click.echo(f"  Diagnostics: {violation}", err=True)


@cli.command()
@click.option("--target-fmv", "-F", type=float, required=True, help="Target FMV per share")
@click.option("--security-class", "-c", required=True, help="Security class to solve for")
@opm_options
@cap_table_options
@click.option("--method", type=click.Choice(["newton_raphson", "bisection", "hybrid", "auto"]))
@click.pass_obj
def backsolve(trace, target_fmv, security_class, vol, rate, time, div,
              breakpoints, total_shares, share_classes, percent, method):
    """Solve for the enterprise value implied by a target FMV."""
    try:
        request = BacksolveRequest(
            target_fmv=target_fmv,
            security_class=security_class,
            params=OPMParams(vol, rate, time, div),
            breakpoints=load_breakpoints(breakpoints, percent),
            total_shares=total_shares,
            share_class_totals=load_share_classes(share_classes),
            solver_overrides={"method": method} if method else {},
        )
        result = api.backsolve_single(request, trace)
    except (OPMError, KeyError) as e:
        fail(e)

    click.echo(f"\nStatus: {'SUCCESS' if result.success else 'FAILED'}")
    click.echo(f"Enterprise Value: ${result.enterprise_value:,.2f}")
    click.echo(f"Actual FMV:       ${result.actual_fmv:,.4f}")
    click.echo(f"Method: {result.method}  Iterations: {result.iterations}")
    click.echo(f"Methods attempted: {', '.join(result.metadata.methods_attempted) or '-'}")
    if result.success or result.method != "failed":
        echo_allocation(result.allocation)
    echo_messages(result.warnings, result.errors)
    if not result.success:
        raise SystemExit(1)


@cli.command("weighted-backsolve")
@click.option("--target-fmv", "-F", type=float, required=True, help="Target weighted FMV per share")
@click.option("--security-class", "-c", required=True, help="Security class to solve for")
@click.option("--scenarios", type=json_file, required=True, help="Scenarios JSON file")
@click.option("--percentage", is_flag=True, help="Probabilities are percentages")
@cap_table_options
@click.pass_obj
def weighted_backsolve(trace, target_fmv, security_class, scenarios, percentage,
                       breakpoints, total_shares, share_classes, percent):
    """Solve for the one unknown scenario enterprise value."""
    try:
        request = WeightedBacksolveRequest(
            target_fmv=target_fmv,
            security_class=security_class,
            scenarios=tuple(
                Scenario(
                    name=str(item["name"]),
                    probability=float(item["probability"]),
                    params=OPMParams.from_dict(item["params"]),
                    enterprise_value=item.get("enterprise_value", item.get("enterpriseValue")),
                    is_unknown=bool(item.get("is_unknown", item.get("isUnknown", False))),
                )
                for item in load_json(scenarios)
            ),
            breakpoints=load_breakpoints(breakpoints, percent),
            total_shares=total_shares,
            share_class_totals=load_share_classes(share_classes),
            probability_format=(
                ProbabilityFormat.PERCENTAGE if percentage else ProbabilityFormat.DECIMAL
            ),
        )
        result = api.backsolve_weighted(request, trace)
    except (OPMError, KeyError) as e:
        fail(e)

    click.echo(f"\nStatus: {'SUCCESS' if result.success else 'FAILED'}")
    click.echo(f"Weighted FMV: ${result.actual_weighted_fmv:,.4f} (target ${target_fmv:,.4f})")
    for scenario in result.scenario_results:
        marker = "*" if scenario.is_unknown else " "
        click.echo(
            f" {marker}{scenario.name:<20} p={scenario.probability:.3f} "
            f"EV=${scenario.enterprise_value:>16,.2f} FMV=${scenario.fmv_per_share:,.4f}"
        )
    echo_messages(result.warnings, result.errors)
    if not result.success:
        raise SystemExit(1)


@cli.command()
@click.option("--security-class", "-c", required=True, help="Security class to solve for")
@click.option("--scenarios", type=json_file, required=True, help="Scenarios JSON file")
@click.option("--percentage", is_flag=True, help="Probabilities are percentages")
@click.option("--target-weighted-fmv", type=float, help="Optional target weighted FMV")
@opm_options
@cap_table_options
@click.pass_obj
def pwerm(trace, security_class, scenarios, percentage, target_weighted_fmv,
          vol, rate, time, div, breakpoints, total_shares, share_classes, percent):
    """Backsolve each scenario's target FMV and probability-weight the results."""
    try:
        request = HybridPWERMRequest(
            security_class=security_class,
            scenarios=tuple(
                HybridScenario(
                    name=str(item["name"]),
                    probability=float(item["probability"]),
                    target_fmv=float(item.get("target_fmv", item.get("targetFMV"))),
                    param_overrides=item.get("params", {}),
                )
                for item in load_json(scenarios)
            ),
            params=OPMParams(vol, rate, time, div),
            breakpoints=load_breakpoints(breakpoints, percent),
            total_shares=total_shares,
            share_class_totals=load_share_classes(share_classes),
            probability_format=(
                ProbabilityFormat.PERCENTAGE if percentage else ProbabilityFormat.DECIMAL
            ),
            target_weighted_fmv=target_weighted_fmv,
        )
        result = api.run_hybrid_pwerm(request, trace)
    except (OPMError, KeyError, TypeError) as e:
        fail(e)

    stats = result.statistics
    click.echo(f"\nStatus: {'SUCCESS' if result.success else 'FAILED'}")
    click.echo(f"Weighted FMV:       ${result.weighted_fmv:,.4f}")
    click.echo(f"Weighted EV:        ${result.enterprise_value:,.2f}")
    click.echo(f"Standard Deviation: ${stats.weighted_std_dev:,.4f}")
    click.echo(f"Percentiles (25/50/75): ${stats.percentile_25:,.4f} / "
               f"${stats.percentile_50:,.4f} / ${stats.percentile_75:,.4f}")
    for scenario in result.scenario_results:
        click.echo(
            f"  {scenario.name:<20} p={scenario.probability:.3f} "
            f"FMV=${scenario.calculated_fmv:,.4f} {scenario.percent_of_weighted_value:.2f}%"
        )
    echo_messages(result.warnings, result.errors)
    if not result.success:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
