"""AHSPCalc CLI - operator commands over the pricing core.

Commands:
- init: Initialize database schema
- import-hsp: Import an HSP price list (CSV/XLSX) into a scope
- recompute: Recompute one HSP item's recipe and sync its price
- reprice: Change a master item's price, optionally recomputing dependents
- show: Print an item's AHSP breakdown
"""

from __future__ import annotations

import asyncio
from decimal import Decimal, InvalidOperation
from pathlib import Path
from uuid import UUID

import typer
from rich.console import Console
from rich.table import Table

from ahspcalc.catalog.master import MasterCatalog
from ahspcalc.config import get_config
from ahspcalc.core.errors import AHSPError
from ahspcalc.core.logging import configure_logging
from ahspcalc.core.scope import scope_of
from ahspcalc.db.connection import close_db, init_db
from ahspcalc.ingestion.hsp_import import import_hsp_file
from ahspcalc.models import ComponentGroup, PricePolicy
from ahspcalc.recipe.recompute import RecomputePropagator
from ahspcalc.recipe.service import RecipeService

app = typer.Typer(
    name="ahspcalc",
    help="AHSPCalc - construction unit-price analysis",
    no_args_is_help=True,
)

console = Console()


@app.callback()
def _setup():
    try:
        config = get_config()
    except KeyError:
        # Commands that touch the database fail on the missing DATABASE_URL themselves
        config = None
    configure_logging(config)


def _run(coro) -> None:
    """Run a command coroutine, reporting domain errors and disposing the engine."""

    async def _wrapped():
        try:
            await coro
        finally:
            await close_db()

    try:
        asyncio.run(_wrapped())
    except AHSPError as e:
        console.print(f"[red]✗[/red] {type(e).__name__}: {e}")
        raise typer.Exit(code=1) from e


def _parse_uuid(value: str, label: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        raise typer.BadParameter(f"{label} must be a UUID") from None


def _money(value: Decimal) -> str:
    return f"{value:,.2f}"


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")
    if drop:
        console.print("[yellow]Dropping existing tables...[/yellow]")

    _run(init_db(drop=drop))
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command(name="import-hsp")
def import_hsp_cmd(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="HSP price list (CSV/XLSX)"),
    user: str | None = typer.Option(None, "--user", help="Import into this user's scope (default GLOBAL)"),
    use_harga_file: bool | None = typer.Option(
        None, "--use-harga-file", help="Take prices from the file"
    ),
    lock_existing_price: bool | None = typer.Option(
        None,
        "--lock-existing-price/--no-lock-existing-price",
        help="Keep non-zero stored prices",
    ),
):
    """Import categories and items from an HSP worksheet."""
    scope = scope_of(user)
    console.print(f"[bold]Importing HSP:[/bold] {file} → {scope}")

    async def _import():
        summary = await import_hsp_file(
            file,
            scope,
            use_harga_file=use_harga_file,
            lock_existing_price=lock_existing_price,
        )

        table = Table(title=f"Import into {summary.scope}")
        table.add_column("Metric", style="cyan")
        table.add_column("Count", justify="right", style="green")
        table.add_row("Categories", str(summary.categories_total))
        table.add_row("  created", str(summary.categories_created))
        table.add_row("  existing", str(summary.categories_updated))
        table.add_row("Items created", str(summary.items_created))
        table.add_row("Items updated", str(summary.items_updated))
        table.add_row("Prices updated", str(summary.items_price_updated))
        console.print(table)

        console.print(
            f"use_harga_file={summary.use_harga_file} "
            f"lock_existing_price={summary.lock_existing_price}",
            style="dim",
        )
        if summary.errors:
            console.print(f"[yellow]⚠[/yellow] {len(summary.errors)} rows skipped")
            for err in summary.errors[:10]:
                console.print(f"  {err.kode or '-'}: {err.reason}", style="dim")

    _run(_import())


@app.command()
def recompute(
    item_id: str = typer.Argument(..., help="HSP item id"),
):
    """Recompute an item's recipe totals and sync its harga."""
    target = _parse_uuid(item_id, "ITEM_ID")

    async def _recompute():
        totals = await RecomputePropagator().recompute_item(target)
        table = Table(title="Recipe totals")
        table.add_column("Line", style="cyan")
        table.add_column("Amount", justify="right", style="green")
        for label in ("A", "B", "C", "D", "E", "F"):
            table.add_row(label, _money(getattr(totals, label)))
        console.print(table)

    _run(_recompute())


@app.command()
def reprice(
    master_id: str = typer.Argument(..., help="Master item id"),
    price: str = typer.Argument(..., help="New price"),
    recompute: bool = typer.Option(False, "--recompute", help="Recompute every recipe using the item"),
):
    """Change a master item's price."""
    target = _parse_uuid(master_id, "MASTER_ID")
    try:
        new_price = Decimal(price)
    except InvalidOperation:
        raise typer.BadParameter("PRICE must be a number") from None

    async def _reprice():
        catalog = MasterCatalog()
        item = await catalog.update(target, {"price": new_price})
        console.print(f"[green]✓[/green] {item.code} price set to {_money(item.price)}")

        if recompute:
            report = await catalog.propagator.recompute_master_item(item.id)
            console.print(f"[green]✓[/green] {len(report.recomputed)} recipes recomputed")
            if report.failed:
                console.print(f"[yellow]⚠[/yellow] {len(report.failed)} recipes failed")
                for recipe_id, reason in report.failed.items():
                    console.print(f"  {recipe_id}: {reason}", style="dim")

    _run(_reprice())


@app.command()
def show(
    kode: str = typer.Argument(..., help="HSP item kode"),
    user: str | None = typer.Option(None, "--user", help="View as this user"),
    snapshot: bool = typer.Option(False, "--snapshot", help="Price lines from snapshots first"),
):
    """Print the AHSP breakdown of an item."""
    scope = scope_of(user)
    policy = PricePolicy.SNAPSHOT if snapshot else PricePolicy.CURRENT

    async def _show():
        breakdown = await RecipeService().get_breakdown_by_kode(scope, kode, policy=policy)
        category = breakdown.category.name if breakdown.category else "-"
        console.print(
            f"[bold]{breakdown.kode}[/bold] {breakdown.deskripsi} ({breakdown.satuan}) "
            f"[dim]{breakdown.scope} / {category}[/dim]"
        )
        console.print(f"Harga: {_money(breakdown.harga)}")

        recipe = breakdown.recipe
        if recipe is None:
            console.print("[yellow]No AHSP recipe[/yellow]")
            return

        table = Table(title=f"AHSP ({policy.value} prices)")
        table.add_column("Grp", style="cyan")
        table.add_column("Uraian")
        table.add_column("Satuan")
        table.add_column("Koef", justify="right")
        table.add_column("Harga Satuan", justify="right")
        table.add_column("Jumlah", justify="right", style="green")

        for group in ComponentGroup:
            bucket = recipe.groups[group]
            for line in bucket.items:
                table.add_row(
                    bucket.label.value,
                    line.name_snapshot,
                    line.unit_snapshot,
                    f"{line.coefficient:g}",
                    _money(line.effective_unit_price),
                    _money(line.subtotal),
                )
        console.print(table)

        computed = recipe.computed
        console.print(f"D = A + B + C: {_money(computed.D)}")
        console.print(f"E = D x {recipe.overhead_percent:g}%: {_money(computed.E)}")
        console.print(f"[bold]F = D + E: {_money(computed.F)}[/bold]")

    _run(_show())


def main():
    """Entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
