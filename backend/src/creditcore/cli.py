"""Command-line interface for creditcore."""

from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from creditcore.catalog.service import CreditValueService
from creditcore.errors import BillingError
from creditcore.ledger.service import CreditService
from creditcore.logging_config import configure_logging, get_logger
from creditcore.storage.db import db
from creditcore.subscriptions.service import SubscriptionService

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Create Typer app
app = typer.Typer(
    name="creditcore",
    help="Creditcore - credit ledger and subscription billing",
    no_args_is_help=True,
)

# Rich console for pretty output
console = Console()


def _fail(error: BillingError) -> None:
    console.print(f"[bold red]✗[/bold red] {error}")
    raise typer.Exit(1)


@app.command("init")
def init_database() -> None:
    """Initialize the database and create tables."""
    console.print("[bold blue]Initializing database...[/bold blue]")
    db.create_tables()
    console.print("[bold green]✓[/bold green] Database initialized successfully")


@app.command("services")
def list_services(
    category: Annotated[str | None, typer.Option("--category", "-c", help="Filter by category")] = None,
) -> None:
    """List active catalog services."""
    catalog = CreditValueService(db)
    services = catalog.get_services_by_category(category) if category else catalog.get_all_active_services()

    if not services:
        console.print("[yellow]No active services[/yellow]")
        return

    table = Table(title="Credit Values")
    table.add_column("Service", style="cyan")
    table.add_column("Name")
    table.add_column("Unit")
    table.add_column("Credits/Unit", justify="right")
    table.add_column("Min", justify="right")
    table.add_column("Max", justify="right")
    table.add_column("Tiers")

    for service in services:
        tiers = service.tiered_pricing or {}
        table.add_row(
            service.service_type,
            service.name,
            service.base_unit.value,
            str(service.credits_per_unit),
            str(service.min_units),
            str(service.max_units) if service.max_units is not None else "-",
            ", ".join(f"{t}+: {d}%" for t, d in zip(tiers.get("thresholds", []), tiers.get("discounts", []))) or "-",
        )

    console.print(table)


@app.command("cost")
def quote_cost(
    service_type: Annotated[str, typer.Argument(help="Service type")],
    units: Annotated[int, typer.Argument(help="Units to price")],
) -> None:
    """Quote the credit cost of a service usage."""
    try:
        cost = CreditValueService(db).get_service_cost(service_type, units)
    except BillingError as e:
        _fail(e)

    console.print(f"[bold]{service_type}[/bold] x {units} {cost.unit_type.value}(s)")
    console.print(f"  Base cost:       {cost.base_cost}")
    if cost.tier_applied:
        console.print(f"  Tier:            {cost.tier_applied} ({cost.discount_percentage:g}% off)")
    console.print(f"  [green]Total credits:   {cost.discounted_cost}[/green]")


@app.command("balance")
def show_balance(
    subscription_id: Annotated[int, typer.Argument(help="Subscription ID")],
) -> None:
    """Show a subscription's credit balance."""
    try:
        balance = CreditService(db).get_credit_balance(subscription_id)
    except BillingError as e:
        _fail(e)

    table = Table(title=f"Subscription {subscription_id}")
    table.add_column("Pool")
    table.add_column("Allotted", justify="right")
    table.add_column("Used", justify="right")
    table.add_row("Base", str(balance.base_credits), str(balance.base_credits_used))
    table.add_row("Referral", str(balance.referral_credits), str(balance.referral_credits_used))
    console.print(table)
    console.print(f"[bold green]Available: {balance.available_credits}[/bold green]")


@app.command("consume")
def consume_credits(
    subscription_id: Annotated[int, typer.Argument(help="Subscription ID")],
    service_id: Annotated[int, typer.Argument(help="Catalog service ID")],
    units: Annotated[int, typer.Argument(help="Units consumed")],
    description: Annotated[str | None, typer.Option("--description", "-d", help="Usage description")] = None,
    discount_code: Annotated[str | None, typer.Option("--discount", help="Discount code to redeem")] = None,
) -> None:
    """Charge a service usage against a subscription."""
    try:
        result = CreditService(db).consume_credits(
            subscription_id, service_id, units, description=description, discount_code=discount_code
        )
    except BillingError as e:
        _fail(e)

    console.print(
        f"[bold green]✓[/bold green] Consumed {result.total_credits} credits "
        f"({result.referral_credits_used} referral, {result.base_credits_used} base)"
    )


@app.command("expire-credits")
def expire_credits() -> None:
    """Expire referral credits past their expiry date."""
    expired = CreditService(db).expire_referral_credits()
    console.print(f"[bold green]✓[/bold green] Expired {expired} referral credit(s)")


@app.command("low-credits")
def low_credits(
    threshold: Annotated[float | None, typer.Option("--threshold", "-t", help="Remaining fraction to flag")] = None,
) -> None:
    """Notify clients running low on base credits."""
    flagged = SubscriptionService(db).check_low_credits(threshold)

    if not flagged:
        console.print("[green]No subscriptions below threshold[/green]")
        return

    table = Table(title="Low credit subscriptions")
    table.add_column("Subscription", justify="right")
    table.add_column("Client", justify="right")
    table.add_column("Remaining", justify="right", style="yellow")
    table.add_column("Total", justify="right")
    for entry in flagged:
        table.add_row(
            str(entry["subscription_id"]),
            str(entry["client_id"]),
            str(entry["remaining"]),
            str(entry["total"]),
        )
    console.print(table)


@app.command("subscription-status")
def subscription_status(
    subscription_id: Annotated[int, typer.Argument(help="Subscription ID")],
) -> None:
    """Check (and lazily expire) a subscription."""
    service = SubscriptionService(db)
    try:
        active = service.check_subscription_status(subscription_id)
        subscription = service.get_subscription(subscription_id)
    except BillingError as e:
        _fail(e)

    color = "green" if active else "red"
    console.print(f"Subscription {subscription_id}: [{color}]{subscription.status.value}[/{color}]")
    console.print(f"  Period: {subscription.current_period_start:%Y-%m-%d} -> {subscription.current_period_end:%Y-%m-%d}")


if __name__ == "__main__":
    app()
