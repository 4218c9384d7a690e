"""
CLI interface for AI Quota Gate.

Provides command-line access to quota status, admission checks and error
classification.
"""

import logging
import sys
from typing import Optional, Tuple

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from ai_quota_gate.config.loader import GatewayConfig, load_gateway_config
from ai_quota_gate.core.clock import SystemClock
from ai_quota_gate.core.errors import classify_failure, help_url
from ai_quota_gate.core.ledger import UsageLedger
from ai_quota_gate.core.rate_gate import RateGate
from ai_quota_gate.storage.db import DEFAULT_DB_PATH
from ai_quota_gate.storage.repository import get_store, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

DbPathOption = typer.Option(DEFAULT_DB_PATH, "--db-path", "-d", help="SQLite usage database")
ConfigOption = typer.Option(None, "--config", "-c", help="Gateway YAML configuration")


def _load(db_path: str, config_path: Optional[str]) -> Tuple[GatewayConfig, UsageLedger]:
    """Build the configuration and ledger the commands read from."""
    config = load_gateway_config(config_path) if config_path else GatewayConfig()
    ledger = UsageLedger(
        get_store(db_path),
        daily_limit=config.daily_limit,
        key=config.storage_key,
        reset_timezone=config.reset_timezone,
    )
    return config, ledger


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """AI Quota Gate CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )
    if ctx.invoked_subcommand is None:
        console.print("AI Quota Gate - Use --help to see available commands")


@app.command()
def init(db_path: str = DbPathOption):
    """Initialize the usage database."""
    try:
        initialize_schema(db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(db_path: str = DbPathOption, config_path: Optional[str] = ConfigOption):
    """Show today's quota usage."""
    try:
        _, ledger = _load(db_path, config_path)
        snapshot = ledger.snapshot()
        suggest_upgrade = ledger.should_suggest_upgrade()
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="API Quota Status")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Daily used", f"{snapshot.daily_used} / {snapshot.daily_limit}")
    table.add_row("Remaining", str(snapshot.remaining))
    table.add_row("Time until reset", _format_countdown(snapshot.next_reset_instant))
    table.add_row("Next reset", snapshot.next_reset_instant.isoformat())
    console.print(table)

    if snapshot.remaining == 0:
        console.print("[bold red]Daily quota exhausted[/]")
    elif suggest_upgrade:
        console.print("[yellow]Usage is close to the free-tier limits; consider upgrading.[/]")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def check(db_path: str = DbPathOption, config_path: Optional[str] = ConfigOption):
    """Check whether a new call would be admitted now."""
    try:
        config, ledger = _load(db_path, config_path)
        decision = RateGate(
            ledger,
            daily_limit=config.daily_limit,
            per_minute_limit=config.per_minute_limit,
        ).can_admit()
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if decision.allowed:
        console.print("[green]✓[/] A new call would be admitted")
        sys.exit(EXIT_CODE_PASS)

    console.print(f"[red]✗[/] Rejected: {decision.reason}")
    sys.exit(EXIT_CODE_FAIL)


@app.command()
def classify(
    status_code: int = typer.Argument(..., help="HTTP status returned by the provider"),
    message: str = typer.Argument("", help="Error message returned by the provider"),
    locale: str = typer.Option("en", "--locale", "-l", help="Message language (en, ko)"),
):
    """Show how a provider failure would be reported to users."""
    error = classify_failure(status_code, message, now=SystemClock().now(), locale=locale)

    console.print(f"\n[bold]Kind:[/bold] {error.kind.value}")
    console.print(f"[bold]Action:[/bold] {error.recommended_action.value}")
    if error.retry_after_seconds is not None:
        console.print(f"[bold]Retry after:[/bold] {error.retry_after_seconds}s")
    console.print(f"[bold]Help:[/bold] {help_url(error.recommended_action)}")
    console.print(f"\n{error.user_message}\n")


def _format_countdown(reset_at) -> str:
    """Format time until reset as hours and minutes."""
    remaining = int((reset_at - SystemClock().now()).total_seconds())
    if remaining <= 0:
        return "resetting now"
    hours, rest = divmod(remaining, 3600)
    return f"{hours}h {rest // 60}m"


if __name__ == "__main__":
    app()
