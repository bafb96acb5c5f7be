"""
Main application entry point for RoomLedger.

Provides a CLI for computing settlements and trends from exported ledger
files or from a live room.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from roomledger.core.config import (
    get_settings,
    print_configuration_summary,
    validate_required_settings,
)
from roomledger.core.exceptions import AuthExpiredError, ConfigurationError, RoomLedgerError
from roomledger.core.logging import set_correlation_id, setup_logging
from roomledger.core.models import LedgerSnapshot, MonthRange, SettlementResult, SplitPolicy
from roomledger.data.auth import JwtAuthGuard
from roomledger.data.gateway import HttpApiGateway
from roomledger.data.ledger_reader import LedgerReader
from roomledger.services.settlement import settle_or_fallback
from roomledger.services.trends import TrendAggregator, monthly_totals
from roomledger.utils.months import current_month, month_label

console = Console()

SPLIT_POLICY_CHOICES = [p.value for p in SplitPolicy]


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--correlation-id", help="Set correlation ID for request tracing")
@click.pass_context
def main(ctx, debug: bool, correlation_id: Optional[str]):
    """Shared-expense ledger: balances, settlements and spending trends."""
    ctx.ensure_object(dict)

    setup_logging(debug=debug, rich_output=True)

    if correlation_id:
        set_correlation_id(correlation_id)

    ctx.obj["debug"] = debug


@main.command()
@click.argument("ledger_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--split-policy", type=click.Choice(SPLIT_POLICY_CHOICES), help="Override split policy"
)
@click.pass_context
def settle(ctx, ledger_file: str, split_policy: Optional[str]):
    """Compute balances and transfers from a JSON ledger export."""
    try:
        snapshot = _load_snapshot(ledger_file)
        policy = SplitPolicy(split_policy) if split_policy else get_settings().ledger.split_policy

        result = settle_or_fallback(snapshot.expenses, snapshot.members, policy)
        _display_settlement(snapshot, result)
        sys.exit(0 if result.plan_available else 1)

    except RoomLedgerError as e:
        console.print(f"[red]Ledger Error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        _unexpected(ctx, e)


@main.command()
@click.argument("ledger_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--end", "end_month", help="Last month of the window (YYYY-MM, default: latest)")
@click.option("--months", type=int, help="Window length in months (default: LEDGER_TREND_MONTHS)")
@click.option("--top", "top_n", type=int, help="Number of top categories to show")
@click.pass_context
def trends(
    ctx, ledger_file: str, end_month: Optional[str], months: Optional[int], top_n: Optional[int]
):
    """Show per-member and per-category spend from a JSON ledger export."""
    try:
        settings = get_settings()
        snapshot = _load_snapshot(ledger_file)

        end = end_month or max((e.month for e in snapshot.expenses), default=current_month())
        window = MonthRange.trailing(end, months or settings.ledger.trend_months)
        aggregator = TrendAggregator(top_n=settings.ledger.top_spends)
        report = aggregator.aggregate(snapshot.expenses, window, snapshot.members, top_n=top_n)

        span = f"{month_label(window.start)} - {month_label(window.end)}"
        table = Table(title=f"Monthly Spend: {span}")
        table.add_column("Month", style="cyan")
        table.add_column("Total", justify="right")
        for total in monthly_totals(snapshot.expenses, window):
            table.add_row(total.label, f"{total.total:.2f}")
        console.print(table)

        table = Table(title="Spend by Member")
        table.add_column("Member", style="cyan")
        table.add_column("Total", justify="right")
        for member in report.per_member:
            table.add_row(member.display_name, f"{member.total:.2f}")
        console.print(table)

        table = Table(title="Top Spends")
        table.add_column("Category", style="cyan")
        table.add_column("Total", justify="right")
        for category in report.top_spends:
            table.add_row(category.category, f"{category.total:.2f}")
        console.print(table)

    except (RoomLedgerError, ValueError) as e:
        console.print(f"[red]Trend Error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        _unexpected(ctx, e)


@main.command()
@click.argument("room_id", type=int)
@click.option("--month", help="Month to settle (YYYY-MM, default: the backend's current month)")
@click.option("--skip-validation", is_flag=True, help="Skip configuration validation")
@click.pass_context
def room(ctx, room_id: int, month: Optional[str], skip_validation: bool):
    """Fetch a live room and print its settlement."""
    try:
        if not skip_validation:
            missing = validate_required_settings("api")
            if missing:
                console.print("[red]Configuration Error:[/red]")
                for item in missing:
                    console.print(f"  • Missing: {item}")
                sys.exit(1)

        settings = get_settings()
        snapshot = asyncio.run(_fetch_room(room_id, month))
        result = settle_or_fallback(
            snapshot.expenses, snapshot.members, settings.ledger.split_policy
        )
        _display_settlement(snapshot, result)

    except AuthExpiredError as e:
        console.print(f"[red]Session Expired:[/red] {e}. Set a fresh API_TOKEN.")
        sys.exit(1)
    except ConfigurationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        sys.exit(1)
    except RoomLedgerError as e:
        console.print(f"[red]Ledger Error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        _unexpected(ctx, e)


@main.command()
@click.pass_context
def config(ctx):
    """Show current configuration."""
    try:
        console.print("[blue]RoomLedger Configuration[/blue]")

        missing = validate_required_settings("api")
        if missing:
            console.print("[red]⚠️  Configuration Issues:[/red]")
            for item in missing:
                console.print(f"  • Missing: {item}")
            console.print()
        else:
            console.print("[green]✅ Configuration Valid[/green]")
            console.print()

        print_configuration_summary()

    except Exception as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        sys.exit(1)


async def _fetch_room(room_id: int, month: Optional[str]) -> LedgerSnapshot:
    settings = get_settings()
    guard = JwtAuthGuard(token=settings.api.token)
    async with HttpApiGateway(settings.api, guard) as gateway:
        return await LedgerReader(gateway).fetch_room_ledger(room_id, month)


def _load_snapshot(path: str) -> LedgerSnapshot:
    """Read a ledger export: the room ledger payload, optionally inside a data envelope."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path} is not valid JSON: {e}")
    if isinstance(data, dict) and isinstance(data.get("data"), dict):
        data = data["data"]
    return LedgerReader().build_snapshot(data)


def _display_settlement(snapshot: LedgerSnapshot, result: SettlementResult) -> None:
    names = {m.id: m.display_name for m in snapshot.members}
    month = snapshot.selected_month

    title = f"Balances: {snapshot.room.name}"
    if month:
        title += f" ({month_label(month)})"
    table = Table(title=title)
    table.add_column("Member", style="cyan")
    table.add_column("Paid", justify="right")
    table.add_column("Share", justify="right")
    table.add_column("Net", justify="right")
    for balance in result.balances:
        style = "green" if balance.net > 0 else "red" if balance.net < 0 else ""
        table.add_row(
            names.get(balance.member_id) or balance.display_name or str(balance.member_id),
            f"{balance.total_paid:.2f}",
            f"{balance.total_owed_share:.2f}",
            f"[{style}]{balance.net:.2f}[/{style}]" if style else f"{balance.net:.2f}",
        )
    console.print(table)
    console.print(
        f"Total spend: {snapshot.total_amount:.2f} across {len(snapshot.expenses)} expenses"
    )

    if not result.plan_available:
        console.print("[red]❌ Balances failed their checks; no transfer plan available[/red]")
        return
    if not result.transfers:
        console.print("[green]✅ Everyone is settled up[/green]")
        return

    table = Table(title="Transfers")
    table.add_column("From", style="red")
    table.add_column("To", style="green")
    table.add_column("Amount", justify="right")
    for transfer in result.transfers:
        table.add_row(
            names.get(transfer.from_member_id, str(transfer.from_member_id)),
            names.get(transfer.to_member_id, str(transfer.to_member_id)),
            f"{transfer.amount:.2f}",
        )
    console.print(table)


def _unexpected(ctx, error: Exception) -> None:
    console.print(f"[red]Unexpected Error:[/red] {error}")
    if ctx.obj and ctx.obj.get("debug"):
        import traceback

        console.print(traceback.format_exc())
    sys.exit(1)


if __name__ == "__main__":
    main()
