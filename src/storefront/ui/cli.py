from __future__ import annotations

import json
from pathlib import Path
import sys
from typing import Any

from dotenv import load_dotenv
from loguru import logger
from pydantic import BaseModel, Field, ValidationError
import typer

from storefront.core.config import load_config_from_env
from storefront.core.context import AppContext, build_app_context
from storefront.core.tables import TableLoadError
from storefront.payments.errors import PaymentProviderError, SignatureVerificationError
from storefront.payments.models import PaymentProvider
from storefront.pricing.models import Address, Cart
from storefront.shipping.models import VendorShippingInfo

# Load environment variables from .env
load_dotenv()

EXIT_INVALID_INPUT = 2
LOG_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"

app = typer.Typer(
    help="Order totals, shipping quotes and payment ledger tools.",
    no_args_is_help=True,
)


class QuoteInput(BaseModel):
    """Shape of the cart file read by ``quote`` and ``shipping``."""

    cart: Cart
    address: Address
    vendors: dict[str, VendorShippingInfo] = Field(default_factory=dict)
    shipping_method_id: str | None = None


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "WARNING",
        format=LOG_FORMAT,
    )


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Log debug output to stderr"
    ),
) -> None:
    """Configure logging before any command runs."""
    _configure_logging(verbose)


def _fail(message: str, code: int = 1) -> typer.Exit:
    typer.echo(message, err=True)
    return typer.Exit(code=code)


def _context() -> AppContext:
    try:
        return build_app_context(load_config_from_env())
    except (ValueError, TableLoadError) as e:
        raise _fail(f"Configuration error: {e}", EXIT_INVALID_INPUT) from e


def _read_quote_input(path: Path) -> QuoteInput:
    try:
        raw: Any = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise _fail(f"File not found: {path}", EXIT_INVALID_INPUT) from e
    except json.JSONDecodeError as e:
        raise _fail(f"Invalid JSON in {path}: {e}", EXIT_INVALID_INPUT) from e
    try:
        return QuoteInput.model_validate(raw)
    except ValidationError as e:
        lines = [f"Invalid cart file {path}:"]
        for error in e.errors():
            location = ".".join(str(part) for part in error["loc"])
            lines.append(f"  - {location}: {error['msg']}")
        raise _fail("\n".join(lines), EXIT_INVALID_INPUT) from e


def _load_vendors(ctx: AppContext, data: QuoteInput) -> None:
    for vendor_id, info in data.vendors.items():
        ctx.shipping.set_vendor_shipping_info(vendor_id, info)


@app.command("quote")
def quote(
    cart_file: Path = typer.Argument(..., help="JSON file with cart and address"),
    method: str | None = typer.Option(
        None, "--method", help="Shipping method or option id to price"
    ),
) -> None:
    """Compute order totals for a cart."""
    data = _read_quote_input(cart_file)
    ctx = _context()
    _load_vendors(ctx, data)

    method_id = (
        method
        or data.shipping_method_id
        or data.cart.selected_shipping_method_id
    )
    totals = ctx.orders.calculate_order_totals(data.cart, data.address, method_id)

    typer.echo(f"Subtotal:  {totals.subtotal} {totals.currency}")
    typer.echo(f"Shipping:  {totals.shipping_cost} {totals.currency}")
    typer.echo(f"Tax:       {totals.tax_amount} {totals.currency}")
    typer.echo(f"Discount:  {totals.discount_amount} {totals.currency}")
    typer.echo(f"Total:     {totals.total} {totals.currency}")
    if totals.savings:
        typer.echo(f"Savings:   {totals.savings} {totals.currency}")


@app.command("shipping")
def shipping(
    cart_file: Path = typer.Argument(..., help="JSON file with cart and address"),
) -> None:
    """List the shipping options every vendor in a cart can fulfil."""
    data = _read_quote_input(cart_file)
    ctx = _context()
    _load_vendors(ctx, data)

    calculation = ctx.shipping.calculate_cart_shipping(data.cart, data.address)
    typer.echo(
        f"Package: {calculation.total_weight:.2f} kg, "
        f"{len(data.cart.vendor_ids)} vendor(s)"
    )
    if not calculation.options:
        typer.echo("No shipping options available for this address.")
        return

    for option in calculation.options:
        days = option.estimated_days
        typer.echo(
            f"  {option.id}: {option.name} - {option.cost} {data.cart.currency} "
            f"({days.min}-{days.max} days)"
        )
        for breakdown in option.vendor_rates:
            typer.echo(
                f"      {breakdown.vendor_id}: {breakdown.rate} "
                f"via {breakdown.method_id}"
            )
    if calculation.estimated_delivery is not None:
        typer.echo(f"Estimated delivery by {calculation.estimated_delivery:%Y-%m-%d}")


@app.command("init-db")
def init_db() -> None:
    """Create the payment ledger tables."""
    ctx = _context()
    ctx.db.create_all()
    typer.echo(f"Initialized database at {ctx.db.url}")


@app.command("webhook")
def webhook(
    provider: str = typer.Argument(..., help="STRIPE, PAYPAL or RAZORPAY"),
    payload_file: Path = typer.Argument(..., help="Raw webhook body as received"),
    header: list[str] = typer.Option(  # noqa: B008
        [], "--header", "-H", help="Delivery header as 'Name: value' (repeatable)"
    ),
) -> None:
    """Verify a saved webhook delivery and apply it to the payment ledger."""
    try:
        payment_provider = PaymentProvider(provider.upper())
    except ValueError as e:
        raise _fail(f"Unknown provider: {provider}", EXIT_INVALID_INPUT) from e

    headers: dict[str, str] = {}
    for entry in header:
        name, sep, value = entry.partition(":")
        if not sep:
            raise _fail(
                f"Header must be 'Name: value', got {entry!r}", EXIT_INVALID_INPUT
            )
        headers[name.strip()] = value.strip()

    try:
        payload = payload_file.read_bytes()
    except FileNotFoundError as e:
        raise _fail(f"File not found: {payload_file}", EXIT_INVALID_INPUT) from e

    ctx = _context()
    ctx.db.create_all()
    try:
        outcome = ctx.payment_service().apply_webhook(
            payment_provider, payload, headers
        )
    except SignatureVerificationError as e:
        raise _fail(f"Rejected: {e.message}") from e
    except PaymentProviderError as e:
        raise _fail(f"Webhook failed: {e}") from e

    event = outcome.event
    if outcome.duplicate:
        typer.echo(f"Duplicate {event.raw_type} event {event.event_id}; skipped")
    elif outcome.applied and outcome.record is not None:
        typer.echo(
            f"Applied {event.raw_type} to payment "
            f"{outcome.record.payment_record_id}: {outcome.record.status}"
        )
    else:
        typer.echo(
            f"Verified {event.raw_type} event {event.event_id}; nothing to update"
        )


@app.command("reconcile")
def reconcile() -> None:
    """Resolve payments whose provider call timed out."""
    ctx = _context()
    ctx.db.create_all()
    results = ctx.payment_service().reconcile()
    if not results:
        typer.echo("No uncertain payments.")
        return

    failed = 0
    for result in results:
        if result.resolved:
            typer.echo(f"  + {result.payment_record_id}: {result.status}")
        else:
            failed += 1
            typer.echo(f"  ! {result.payment_record_id}: {result.error}")
    typer.echo(f"Reconciled {len(results) - failed} of {len(results)} payment(s).")
    if failed:
        raise typer.Exit(code=1)


def main() -> None:
    app()
