"""Command-line interface for the referral service."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from petprint.errors import ReferralError
from petprint.ledger.service import LedgerCalculator
from petprint.logging_config import get_logger, setup_logging
from petprint.money import to_major
from petprint.payments.stripe_service import WebhookProcessor
from petprint.referral.codes import CodeIssuer
from petprint.referral.service import ReferralResolver
from petprint.storage.db import Database

# Configure logging
setup_logging()
logger = get_logger(__name__)

app = typer.Typer(
    name="petprint",
    help="PetPrint referral attribution and commission ledger",
    no_args_is_help=True,
)

console = Console()


def _database() -> Database:
    return Database()


def _fail(exc: ReferralError) -> None:
    console.print(f"[bold red]✗[/bold red] {exc.message} ([dim]{exc.kind}[/dim])")
    raise typer.Exit(1)


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    _database().create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("issue-codes")
def issue_codes(
    count: Annotated[int, typer.Argument(help="Number of codes to issue")],
    expires_in_days: Annotated[int | None, typer.Option("--expires", "-e", help="Days until expiry")] = None,
    batch_label: Annotated[str | None, typer.Option("--label", "-l", help="Batch label")] = None,
) -> None:
    """Issue a batch of partner pre-registration codes."""
    try:
        codes = CodeIssuer(_database()).issue_pre_registration_batch(count, expires_in_days, batch_label)
    except ReferralError as e:
        _fail(e)

    table = Table(title=f"Pre-registration codes ({len(codes)})")
    table.add_column("Code", style="cyan")
    for code in codes:
        table.add_row(code)
    console.print(table)


@app.command("verify")
def verify_code(
    code: Annotated[str, typer.Argument(help="Referral code")],
) -> None:
    """Resolve a referral code without counting a scan."""
    try:
        resolved = ReferralResolver(_database()).resolve(code)
    except ReferralError as e:
        _fail(e)

    record, referrer = resolved.record, resolved.referrer
    console.print(f"[bold green]✓[/bold green] {record.code} ({record.kind.value})")
    console.print(f"  Referrer: {referrer.name} [{referrer.type.value} #{referrer.id}]")
    console.print(f"  Commission: {record.commission_rate}% initial, {record.trailing_rate}% trailing")
    console.print(f"  Discount: {record.discount_rate}%")
    if record.expires_at:
        console.print(f"  Expires: {record.expires_at:%Y-%m-%d %H:%M}")


@app.command("summary")
def show_summary(
    recipient_type: Annotated[str, typer.Argument(help="partner, influencer or customer")],
    recipient_id: Annotated[int, typer.Argument(help="Recipient ID")],
) -> None:
    """Show ledger totals for a recipient."""
    try:
        summary = LedgerCalculator(_database()).summarize(recipient_type, recipient_id)
    except ReferralError as e:
        _fail(e)

    table = Table(title=f"Ledger: {summary.recipient_type} #{summary.recipient_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("£", justify="right")
    table.add_row("Total earned", str(to_major(summary.total_earned)))
    table.add_row("Pending", str(to_major(summary.pending_total)))
    table.add_row("Approved", str(to_major(summary.approved_total)))
    table.add_row("Paid", str(to_major(summary.paid_total)))
    table.add_row("Redeemed", str(to_major(summary.redeemed_total)))
    table.add_row("Current balance", str(to_major(summary.current_balance)))
    console.print(table)
    console.print(f"  Entries: {summary.entry_count}, redemptions: {summary.redemption_count}")


@app.command("record")
def record_completion(
    order_id: Annotated[int, typer.Argument(help="Completed order ID")],
) -> None:
    """Record the ledger entry for a completed order (safe to repeat)."""
    try:
        outcome = LedgerCalculator(_database()).record_completion(order_id)
    except ReferralError as e:
        _fail(e)

    if outcome.entry is not None:
        console.print(
            f"[bold green]✓[/bold green] {outcome.status.value}: "
            f"£{to_major(outcome.entry.amount)} to {outcome.entry.recipient_type} #{outcome.entry.recipient_id}"
        )
    else:
        console.print(f"[yellow]{outcome.status.value}[/yellow] {outcome.reason or ''}")


@app.command("cleanup-events")
def cleanup_events(
    days: Annotated[int, typer.Option("--days", "-d", help="Keep events newer than this many days")] = 30,
) -> None:
    """Delete processed webhook event records older than DAYS."""
    if days <= 0:
        console.print("[bold red]✗[/bold red] --days must be positive")
        raise typer.Exit(1)

    try:
        removed = WebhookProcessor(_database()).cleanup_old_events(days=days)
    except ReferralError as e:
        _fail(e)

    logger.info("webhook_events_cleaned", removed=removed, days=days)
    console.print(f"[bold green]✓[/bold green] Removed {removed} processed webhook events older than {days} days")


@app.command("serve")
def serve(
    host: Annotated[str, typer.Option("--host", help="Bind address")] = "127.0.0.1",
    port: Annotated[int, typer.Option("--port", "-p", help="Port")] = 8000,
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("petprint.api.main:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":
    app()
