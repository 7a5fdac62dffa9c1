"""Operator CLI for the rebalancing engine.

Examples:
    # Dry-run the profitability rule ($10,000 at 3.20% -> 7.80% for $3)
    autopilot check --value 10000 --current 3.20 --new 7.80 --cost 3

    # Load venues and portfolios from a state file and run batch optimization
    autopilot simulate config/sample_state.yaml --show-audit
"""

import sys
from pathlib import Path
from typing import Dict, Optional

import click
import yaml
from rich.console import Console
from rich.table import Table

from defi_autopilot.api.autopilot_api import AutopilotAPI
from defi_autopilot.auth.gate import Capability
from defi_autopilot.rebalancing.base import BatchResult
from defi_autopilot.utils.config import load_config
from defi_autopilot.utils.exceptions import AutopilotError
from defi_autopilot.utils.logging import setup_logging

console = Console()


def dollars_to_cents(value: float) -> int:
    return int(round(value * 100))


def percent_to_bps(value: float) -> int:
    return int(round(value * 100))


def format_cents(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def load_state(path: str | Path) -> Dict:
    """Read a simulation state file.

    Expected keys: admin, agent, updater, protocols (name, risk_score, apy,
    tvl) and portfolios (owner, deposit, risk_profile, optional
    auto_rebalance). Amounts are cents, rates are basis points.
    """
    with open(path, "r", encoding="utf-8") as f:
        state = yaml.safe_load(f) or {}
    for key in ("admin", "protocols", "portfolios"):
        if key not in state:
            raise click.ClickException(f"State file missing '{key}'")
    return state


def create_batch_table(result: BatchResult) -> Table:
    table = Table(title="Batch Optimization", show_header=True, header_style="bold magenta")
    table.add_column("User", style="cyan")
    table.add_column("Outcome")
    table.add_column("Detail")

    for user in result.optimized:
        table.add_row(user, "[green]optimized[/green]", f"request {result.request_ids[user]}")
    for user, reason in result.skipped.items():
        table.add_row(user, "[yellow]skipped[/yellow]", reason)
    for user, reason in result.failed.items():
        table.add_row(user, "[red]failed[/red]", reason)
    return table


@click.group()
@click.option("--log-level", default="WARNING", help="Logging level")
def cli(log_level: str):
    """DeFi Autopilot operator tool"""
    setup_logging(level=log_level)


@cli.command()
@click.option("--value", type=float, required=True, help="Portfolio value in dollars")
@click.option("--current", type=float, required=True, help="Current yield in percent")
@click.option("--new", "new_yield", type=float, required=True, help="Candidate yield in percent")
@click.option("--cost", type=float, required=True, help="Switch cost in dollars")
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
def check(value: float, current: float, new_yield: float, cost: float, config_path: Optional[str]):
    """Dry-run the profitability rule."""
    api = AutopilotAPI.from_dict(
        load_config(config_path).to_dict() if config_path else {},
        admin="cli",
    )
    result = api.check_profitability(
        total_value=dollars_to_cents(value),
        current_yield=percent_to_bps(current),
        new_yield=percent_to_bps(new_yield),
        cost=dollars_to_cents(cost),
    )

    table = Table(title="Profitability Check", show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Yield improvement", f"{result['yield_improvement'] / 100:.2f}%")
    table.add_row("Annual profit", format_cents(result["annual_profit"]))
    table.add_row("Required profit", format_cents(result["required_profit"]))
    table.add_row("Net profit", format_cents(result["net_profit"]))
    verdict = "[green]PROFITABLE[/green]" if result["profitable"] else "[red]NOT PROFITABLE[/red]"
    table.add_row("Verdict", verdict)
    console.print(table)

    if result["reason"]:
        console.print(f"[dim]{result['reason']}[/dim]")


@cli.command()
@click.argument("state_file", type=click.Path(exists=True))
@click.option("--config", "config_path", type=click.Path(exists=True), default=None)
@click.option("--show-audit", is_flag=True, help="Print the audit trail")
def simulate(state_file: str, config_path: Optional[str], show_audit: bool):
    """Load STATE_FILE, run batch optimization and print the outcome."""
    state = load_state(state_file)
    admin = state["admin"]
    agent = state.get("agent", admin)
    updater = state.get("updater", admin)

    try:
        api = AutopilotAPI.from_dict(
            load_config(config_path).to_dict() if config_path else {},
            admin=admin,
        )
        system = api.system
        if agent != admin:
            system.gate.authorize(admin, Capability.AGENT, agent, True)
        if updater != admin:
            system.gate.authorize(admin, Capability.UPDATER, updater, True)

        for protocol in state["protocols"]:
            system.registry.register_protocol(admin, protocol["name"], protocol["risk_score"])
            if "apy" in protocol:
                system.registry.update_yield(
                    updater,
                    protocol["name"],
                    apy=protocol["apy"],
                    tvl=protocol["tvl"],
                    risk_score=protocol["risk_score"],
                )

        owners = []
        for entry in state["portfolios"]:
            system.ledger.create_portfolio(
                entry["owner"], entry["deposit"], entry.get("risk_profile", "BALANCED")
            )
            if entry.get("auto_rebalance", True) is False:
                system.ledger.toggle_auto_rebalance(entry["owner"])
            owners.append(entry["owner"])

        result = system.coordinator.batch_optimize(agent, owners)
    except AutopilotError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    console.print(api.format_yields().to_string(index=False), markup=False)
    console.print()
    console.print(create_batch_table(result))
    console.print()
    console.print(api.format_portfolios().to_string(index=False), markup=False)

    metrics = api.get_metrics()
    console.print(
        f"\n[bold]Optimized:[/bold] {result.optimized_count}  "
        f"[bold]Total profit:[/bold] {format_cents(result.total_profit)}  "
        f"[bold]Avg improvement:[/bold] {metrics['average_yield_improvement']:.1f} bps"
    )

    if show_audit:
        console.print()
        console.print(api.format_audit().to_string(index=False), markup=False)


if __name__ == "__main__":
    cli()
