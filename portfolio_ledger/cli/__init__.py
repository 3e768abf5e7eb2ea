"""CLI entry point for portfolio-ledger."""

import logging
import sys
import traceback

import click
from rich.console import Console

from portfolio_ledger import __version__
from portfolio_ledger.cli import cache, report, transaction
from portfolio_ledger.cli import init as init_cmd
from portfolio_ledger.lib.errors import PortfolioLedgerError, format_error_message, get_error_color
from portfolio_ledger.lib.logging_config import setup_logging

console = Console()


@click.group()  # type: ignore[misc]
@click.option("--debug", is_flag=True, help="Enable debug logging and tracebacks")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def main(ctx: click.Context, debug: bool) -> None:
    """Portfolio ledger - replay positions, equity curves and dividend projections."""
    ctx.ensure_object(dict)
    ctx.obj["DEBUG"] = debug
    setup_logging(logging.DEBUG if debug else logging.WARNING)


def handle_exception(
    exc_type: type[BaseException], exc_value: BaseException, exc_traceback: object
) -> None:
    """
    Global exception handler for CLI.

    Formats exceptions with Rich colors and provides user-friendly messages.
    """
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)  # type: ignore[arg-type]
        return

    color = get_error_color(exc_value) if isinstance(exc_value, Exception) else "red"
    message = (
        format_error_message(exc_value) if isinstance(exc_value, Exception) else str(exc_value)
    )

    console.print(f"\n[{color}]✗ Error: {message}[/{color}]\n")

    debug_mode = "--debug" in sys.argv
    if not isinstance(exc_value, PortfolioLedgerError):
        console.print("[dim]Unexpected error occurred. Use --debug for full traceback.[/dim]")
    if debug_mode:
        console.print("[dim]Traceback:[/dim]")
        traceback.print_exception(exc_value)

    sys.exit(1)


# Install global exception handler
sys.excepthook = handle_exception


@main.command()  # type: ignore[misc]
def version() -> None:
    """Show version information."""
    click.echo(f"portfolio-ledger version {__version__}")


# Register subcommands
main.add_command(init_cmd.init)
main.add_command(transaction.transaction)
main.add_command(report.positions)
main.add_command(report.cash)
main.add_command(report.summary)
main.add_command(report.equity_curve)
main.add_command(report.dividends)
main.add_command(cache.cache)


if __name__ == "__main__":
    main()
