"""Report commands: positions, cash, summary, equity curve and dividend projections."""

import asyncio
from datetime import datetime, time
from decimal import Decimal
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from portfolio_ledger.lib.config import INCEPTION_PERIOD
from portfolio_ledger.lib.errors import OverdraftPositionError
from portfolio_ledger.services.equity_curve import VALID_PERIODS
from portfolio_ledger.services.portfolio_engine import PortfolioEngine
from portfolio_ledger.services.replay_engine import OverdraftPolicy

console = Console()


def _end_of_day(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.combine(value.date(), time.max)


def _money(value: Decimal) -> str:
    return f"{value:,.2f}"


@click.command()
@click.option("--account", "account_id", default=None, help="Restrict to one account")
@click.option(
    "--as-of",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Replay up to this settlement date (inclusive)",
)
@click.option("--merge", is_flag=True, help="Merge the same symbol across accounts")
@click.option(
    "--strict",
    is_flag=True,
    help="Fail on a disposal larger than the position instead of closing it",
)
def positions(
    account_id: Optional[str], as_of: Optional[datetime], merge: bool, strict: bool
) -> None:
    """Show open positions (average cost)."""
    policy = OverdraftPolicy.RAISE if strict else OverdraftPolicy.CLAMP
    try:
        result = PortfolioEngine().replay(
            account_id=account_id, as_of=_end_of_day(as_of), overdraft_policy=policy
        )
    except OverdraftPositionError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise SystemExit(1)

    if not result.positions:
        console.print("[yellow]No open positions.[/yellow]")
        return

    rows = list(result.positions_by_symbol().values()) if merge else result.positions

    title = "Positions"
    if as_of is not None:
        title += f" as of {as_of.date()}"
    table = Table(title=title)
    table.add_column("Symbol", style="cyan")
    table.add_column("Account", style="green")
    table.add_column("Quantity", justify="right")
    table.add_column("Avg Cost", justify="right")
    table.add_column("Total Cost", justify="right", style="magenta")
    table.add_column("Currency", style="yellow")

    for p in rows:
        table.add_row(
            p.symbol,
            p.account_id or "(multiple)",
            f"{p.quantity:,.4f}",
            f"{p.avg_cost:,.4f}",
            _money(p.total_cost),
            p.currency,
        )

    console.print(table)


@click.command()
@click.option("--account", "account_id", default=None, help="Restrict to one account")
@click.option(
    "--as-of",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Replay up to this settlement date (inclusive)",
)
def cash(account_id: Optional[str], as_of: Optional[datetime]) -> None:
    """Show cash balances per currency."""
    balances = PortfolioEngine().cash_balances(account_id=account_id, as_of=_end_of_day(as_of))

    table = Table(title="Cash")
    table.add_column("Currency", style="yellow")
    table.add_column("Balance", justify="right", style="magenta")

    for currency, balance in sorted(balances.items()):
        color = "red" if balance < 0 else "green"
        table.add_row(currency, f"[{color}]{_money(balance)}[/{color}]")

    console.print(table)


def _pnl(value: Decimal) -> str:
    color = "green" if value >= 0 else "red"
    return f"[{color}]{_money(value)}[/{color}]"


@click.command()
@click.option("--account", "account_id", default=None, help="Restrict to one account")
def summary(account_id: Optional[str]) -> None:
    """Show holdings at current prices with P&L and totals (CAD)."""
    with console.status("[bold green]Fetching quotes..."):
        valuation = asyncio.run(PortfolioEngine().valuation(account_id=account_id))

    if valuation.positions:
        table = Table(title="Holdings")
        table.add_column("Symbol", style="cyan")
        table.add_column("Quantity", justify="right")
        table.add_column("Price", justify="right")
        table.add_column("Market Value", justify="right", style="magenta")
        table.add_column("Value (CAD)", justify="right")
        table.add_column("Open P&L (CAD)", justify="right")
        table.add_column("Open %", justify="right")
        table.add_column("Today (CAD)", justify="right")
        table.add_column("Quote")

        for v in valuation.positions:
            p = v.position
            if v.quote is None:
                price, value, source = "-", "-", "[red]at cost[/red]"
            else:
                price = f"{v.quote.price:,.2f} {v.quote.currency}"
                value = _money(v.market_value)
                if v.quote.stale:
                    source = "[yellow]stale[/yellow]"
                else:
                    source = "cached" if v.quote.cached else "live"
            table.add_row(
                p.symbol,
                f"{p.quantity:,.4f}",
                price,
                value,
                _money(v.market_value_cad),
                _pnl(v.open_pnl_cad),
                f"{v.open_pnl_percent:,.2f}%",
                _pnl(v.today_pnl_cad),
                source,
            )
        console.print(table)
    else:
        console.print("[yellow]No open positions.[/yellow]")

    fx = valuation.fx
    fx_note = " (default)" if fx is not None and fx.is_default else ""
    console.print("\n[bold]Portfolio (CAD):[/bold]")
    console.print(f"├─ Market value: {_money(valuation.total_market_value_cad)}")
    console.print(f"├─ Cash: {_money(valuation.total_cash_cad)}")
    console.print(f"├─ Total equity: {_money(valuation.total_equity_cad)}")
    console.print(f"├─ Open P&L: {_pnl(valuation.total_open_pnl_cad)}")
    console.print(f"├─ Today: {_pnl(valuation.total_today_pnl_cad)}")
    console.print(f"├─ Net deposits: {_money(valuation.net_deposits)}")
    console.print(f"├─ Gain: {_pnl(valuation.total_gain_cad)}")
    console.print(f"└─ USD/CAD: {valuation.fx_rate}{fx_note}")

    if valuation.first_settlement is not None:
        console.print(
            f"\n[dim]Since {valuation.first_settlement.date()} "
            f"({', '.join(valuation.accounts)})[/dim]"
        )


@click.command(name="equity-curve")
@click.option("--account", "account_id", default=None, help="Restrict to one account")
@click.option(
    "--period",
    type=click.Choice(VALID_PERIODS),
    default=INCEPTION_PERIOD,
    show_default=True,
    help="Time window",
)
def equity_curve(account_id: Optional[str], period: str) -> None:
    """Show the reconstructed equity curve (valued at current prices, in CAD)."""
    with console.status("[bold green]Fetching quotes..."):
        points = asyncio.run(PortfolioEngine().equity_curve(account_id=account_id, period=period))

    if not points:
        console.print("[yellow]No transactions found.[/yellow]")
        return

    table = Table(title=f"Equity Curve ({period})")
    table.add_column("Date", style="cyan")
    table.add_column("Equity (CAD)", justify="right", style="magenta")
    table.add_column("Net Deposits (CAD)", justify="right")
    table.add_column("Gain (CAD)", justify="right")

    for point in points:
        gain = point.equity - point.net_deposits
        color = "green" if gain >= 0 else "red"
        table.add_row(
            point.date.isoformat(),
            _money(point.equity),
            _money(point.net_deposits),
            f"[{color}]{_money(gain)}[/{color}]",
        )

    console.print(table)


def _print_market_dividends(
    engine: PortfolioEngine, account_id: Optional[str], year: Optional[int]
) -> None:
    with console.status("[bold green]Fetching quotes..."):
        summary = asyncio.run(
            engine.market_dividend_projections(account_id=account_id, year=year)
        )

    if not summary.projections:
        console.print("[yellow]No dividend-paying holdings.[/yellow]")
    else:
        table = Table(title=f"Projected Dividends {summary.year} (market rates)")
        table.add_column("Symbol", style="cyan")
        table.add_column("Quantity", justify="right")
        table.add_column("Per Share", justify="right")
        table.add_column("Yield", justify="right")
        table.add_column("Annual", justify="right", style="magenta")
        table.add_column("Monthly", justify="right")
        table.add_column("Frequency")
        table.add_column("Currency", style="yellow")

        for p in summary.projections:
            table.add_row(
                p.symbol,
                f"{p.quantity:,.4f}",
                f"{p.annual_dividend_per_share:,.4f}",
                f"{p.dividend_yield * 100:.2f}%" if p.dividend_yield is not None else "-",
                _money(p.projected_annual),
                _money(p.projected_monthly),
                p.frequency.value,
                p.currency,
            )
        console.print(table)

        console.print("\n[bold]Totals:[/bold]")
        for currency, annual in sorted(summary.total_projected_annual.items()):
            console.print(f"├─ {currency}: {_money(annual)} annual, {_money(annual / 12)} monthly")

        if summary.monthly_projection:
            monthly = Table(title="Monthly Forecast")
            monthly.add_column("Month", style="cyan")
            monthly.add_column("Amount", justify="right", style="magenta")
            monthly.add_column("Currency", style="yellow")
            for m in summary.monthly_projection:
                monthly.add_row(m.month, _money(m.total_amount), m.currency)
            console.print(monthly)

    if summary.unquoted_symbols:
        console.print(f"[red]No quote for: {', '.join(summary.unquoted_symbols)}[/red]")


@click.command()
@click.option("--account", "account_id", default=None, help="Restrict to one account")
@click.option("--year", type=int, default=None, help="Target year (default: current year)")
@click.option("--held-only", is_flag=True, help="Only symbols still held")
@click.option("--history", is_flag=True, help="Show dividends received per month instead")
@click.option(
    "--market",
    is_flag=True,
    help="Project current holdings at the provider's trailing dividend rates",
)
def dividends(
    account_id: Optional[str], year: Optional[int], held_only: bool, history: bool, market: bool
) -> None:
    """Show projected dividends for a year."""
    engine = PortfolioEngine()

    if market:
        _print_market_dividends(engine, account_id, year)
        return

    if history:
        received = engine.dividend_history(account_id=account_id, year=year)
        if not received:
            console.print("[yellow]No dividends received.[/yellow]")
            return

        table = Table(title="Dividends Received")
        table.add_column("Month", style="cyan")
        table.add_column("Amount", justify="right", style="magenta")
        table.add_column("Currency", style="yellow")
        for m in received:
            table.add_row(m.month, _money(m.total_amount), m.currency)
        console.print(table)
        return

    summary = engine.dividend_projections(account_id=account_id, year=year, held_only=held_only)

    if not summary.projections:
        console.print(f"[yellow]No dividends in the trailing 12 months for {summary.year}.[/yellow]")
        return

    table = Table(title=f"Projected Dividends {summary.year}")
    table.add_column("Symbol", style="cyan")
    table.add_column("Frequency")
    table.add_column("Avg Payment", justify="right")
    table.add_column("Annual", justify="right", style="magenta")
    table.add_column("Remaining", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Currency", style="yellow")

    for p in summary.projections:
        table.add_row(
            p.symbol,
            p.frequency.value,
            _money(p.avg_payment),
            _money(p.projected_annual),
            f"{_money(p.projected_remaining)} ({p.remaining_payments})",
            f"{p.confidence}%",
            p.currency,
        )

    console.print(table)

    console.print("\n[bold]Totals:[/bold]")
    for currency, annual in sorted(summary.total_projected_annual.items()):
        remaining = summary.total_projected_remaining.get(currency, Decimal("0"))
        console.print(
            f"├─ {currency}: {_money(annual)} annual, {_money(remaining)} remaining"
        )

    if summary.monthly_projection:
        monthly = Table(title="Monthly Forecast")
        monthly.add_column("Month", style="cyan")
        monthly.add_column("Amount", justify="right", style="magenta")
        monthly.add_column("Currency", style="yellow")
        for m in summary.monthly_projection:
            monthly.add_row(m.month, _money(m.total_amount), m.currency)
        console.print(monthly)
