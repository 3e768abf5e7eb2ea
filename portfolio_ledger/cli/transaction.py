"""Transaction subcommands: append to and browse the ledger."""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from portfolio_ledger.lib.errors import DataError
from portfolio_ledger.models import LedgerRow, TransactionAction
from portfolio_ledger.services.ledger_store import LedgerFilter, LedgerStore

console = Console()

ACTION_CODES = [a.value for a in TransactionAction]


def _parse_decimal(
    ctx: click.Context, param: click.Parameter, value: Optional[str]
) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(value)
    except InvalidOperation:
        raise click.BadParameter(f"'{value}' is not a number")


def _fmt(value: Optional[Decimal], places: int = 2) -> str:
    if value is None:
        return "-"
    return f"{value:,.{places}f}"


@click.group()
def transaction() -> None:
    """Append to and browse the transaction ledger."""
    pass


@transaction.command()
@click.option("--account", "account_id", required=True, help="Account identifier")
@click.option(
    "--action",
    required=True,
    type=click.Choice(ACTION_CODES, case_sensitive=False),
    help="Broker action code",
)
@click.option(
    "--date",
    "settlement_date",
    required=True,
    type=click.DateTime(formats=["%Y-%m-%d"]),
    help="Settlement date (YYYY-MM-DD)",
)
@click.option("--symbol", default=None, help="Broker symbol")
@click.option("--mapped-symbol", default=None, help="Market data symbol (e.g. XEQT.TO)")
@click.option("--quantity", default=None, callback=_parse_decimal, help="Units")
@click.option("--price", default=None, callback=_parse_decimal, help="Price per unit")
@click.option("--commission", default=None, callback=_parse_decimal, help="Commission")
@click.option("--net-amount", default=None, callback=_parse_decimal, help="Signed cash effect")
@click.option(
    "--cad-equivalent", default=None, callback=_parse_decimal, help="CAD value of in-kind transfers"
)
@click.option("--currency", default="CAD", help="Currency of the net amount")
@click.option("--description", default=None, help="Free-text description")
def add(
    account_id: str,
    action: str,
    settlement_date: datetime,
    symbol: Optional[str],
    mapped_symbol: Optional[str],
    quantity: Optional[Decimal],
    price: Optional[Decimal],
    commission: Optional[Decimal],
    net_amount: Optional[Decimal],
    cad_equivalent: Optional[Decimal],
    currency: str,
    description: Optional[str],
) -> None:
    """Append one transaction to the ledger."""
    # Choice is case-insensitive but action codes are mixed case
    action_enum = next(a for a in TransactionAction if a.value.lower() == action.lower())

    row = LedgerRow(
        id=None,
        account_id=account_id,
        action=action_enum,
        currency=currency.upper(),
        settlement_date=settlement_date,
        symbol=symbol,
        symbol_mapped=mapped_symbol,
        quantity=quantity,
        price=price,
        commission=commission,
        net_amount=net_amount,
        cad_equivalent=cad_equivalent,
        description=description,
    )

    try:
        (tx_id,) = LedgerStore().append([row])
    except DataError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise SystemExit(1)

    console.print(f"[green]✓ Transaction {tx_id} added[/green]")
    console.print(
        f"{action_enum.value} {row.key or ''} on {settlement_date.date()} "
        f"({account_id}, {row.currency})"
    )


@transaction.command(name="list")
@click.option("--account", "account_id", default=None, help="Restrict to one account")
@click.option("--symbol", default=None, help="Restrict to one symbol")
@click.option(
    "--action",
    "actions",
    multiple=True,
    type=click.Choice(ACTION_CODES, case_sensitive=False),
    help="Restrict to action codes (repeatable)",
)
@click.option("--from", "date_from", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
@click.option("--to", "date_to", type=click.DateTime(formats=["%Y-%m-%d"]), default=None)
def list_transactions(
    account_id: Optional[str],
    symbol: Optional[str],
    actions: tuple[str, ...],
    date_from: Optional[datetime],
    date_to: Optional[datetime],
) -> None:
    """List ledger transactions in replay order."""
    wanted = frozenset(
        a for a in TransactionAction if a.value.lower() in {x.lower() for x in actions}
    )
    if date_to is not None:
        date_to = date_to.replace(hour=23, minute=59, second=59, microsecond=999999)

    rows = LedgerStore().list_transactions(
        LedgerFilter(
            account_id=account_id,
            actions=wanted,
            settled_on_or_after=date_from,
            settled_on_or_before=date_to,
            symbol=symbol,
        )
    )

    if not rows:
        console.print("[yellow]No transactions found.[/yellow]")
        return

    table = Table(title=f"Transactions ({len(rows)})")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Date", style="cyan")
    table.add_column("Account", style="green")
    table.add_column("Action", style="yellow")
    table.add_column("Symbol", style="cyan")
    table.add_column("Quantity", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("Net Amount", justify="right", style="magenta")
    table.add_column("Currency")

    for row in rows:
        table.add_row(
            str(row.id),
            row.settlement_date.strftime("%Y-%m-%d"),
            row.account_id,
            row.action.value,
            row.key or "-",
            _fmt(row.quantity, 4),
            _fmt(row.price),
            _fmt(row.net_amount),
            row.currency,
        )

    console.print(table)
