"""Market data cache commands."""

import asyncio

import click
from rich.console import Console
from rich.table import Table

from portfolio_ledger.lib.config import FX_PAIR
from portfolio_ledger.services.market_data_cache import CacheStore, MarketDataCache, utcnow
from portfolio_ledger.services.portfolio_engine import PortfolioEngine
from portfolio_ledger.services.replay_engine import OverdraftPolicy

console = Console()


@click.group()
def cache() -> None:
    """Inspect and refresh cached quotes and FX rates."""
    pass


@cache.command()
@click.argument("symbols", nargs=-1)
def refresh(symbols: tuple[str, ...]) -> None:
    """Refetch quotes (default: every held symbol) and the USD/CAD rate."""
    engine = PortfolioEngine()
    if not symbols:
        replay = engine.replay(overdraft_policy=OverdraftPolicy.CLAMP)
        symbols = tuple(sorted({p.symbol for p in replay.positions}))

    market_cache = MarketDataCache()

    async def run() -> None:
        quotes = await market_cache.refresh_quotes(symbols)
        fx = await market_cache.get_fx_quote(FX_PAIR)

        for symbol in symbols:
            quote = quotes.get(symbol)
            if quote is None:
                console.print(f"[red]✗ {symbol}: unavailable[/red]")
            else:
                console.print(f"[green]✓ {symbol}: {quote.price:,.2f} {quote.currency}[/green]")

        fx_color = "yellow" if fx.is_default else "green"
        suffix = " (default)" if fx.is_default else ""
        console.print(f"[{fx_color}]{fx.pair}: {fx.rate}{suffix}[/{fx_color}]")

    with console.status("[bold green]Refreshing market data..."):
        asyncio.run(run())


@cache.command()
def show() -> None:
    """List cached quotes with their expiry."""
    entries = CacheStore().list_quote_entries()
    if not entries:
        console.print("[yellow]Quote cache is empty.[/yellow]")
        return

    now = utcnow()
    table = Table(title="Cached Quotes")
    table.add_column("Symbol", style="cyan")
    table.add_column("Price", justify="right", style="magenta")
    table.add_column("Prev Close", justify="right")
    table.add_column("Currency", style="yellow")
    table.add_column("Fetched (UTC)")
    table.add_column("Status")

    for e in entries:
        status = "[green]fresh[/green]" if e.is_valid(now) else "[dim]expired[/dim]"
        table.add_row(
            e.symbol,
            f"{e.price:,.2f}",
            f"{e.previous_close:,.2f}" if e.previous_close is not None else "-",
            e.currency,
            e.fetched_at.strftime("%Y-%m-%d %H:%M"),
            status,
        )

    console.print(table)

    fx = CacheStore().get_fx_entry(FX_PAIR)
    if fx is not None:
        state = "fresh" if fx.is_valid(now) else "expired"
        console.print(f"{FX_PAIR}: {fx.rate} ({state}, fetched {fx.fetched_at:%Y-%m-%d %H:%M})")
