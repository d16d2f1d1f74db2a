"""Componentes de UI para CLI (Rich).

Por qué separar componentes:
- Evita mezclar lógica de comandos con detalles visuales.
- Permite reutilizar tablas/paneles en múltiples comandos.
- Aquí viven también las implementaciones de consola de los colaboradores
  (`Notifier`, `Navigator`), que el Core solo conoce como Protocols.
"""

from __future__ import annotations

from typing import Any

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from core.domain.models import CollectionResult, DashboardData, ListingResult, ListingsPage


def print_banner(console: Console) -> None:
    """Imprime el banner de bienvenida.

    Por qué aquí:
    - Evita dependencias circulares (main <-> doctor).
    - Permite desactivar banner en modos no interactivos (JSON/pipelines).
    """

    title = Text("LISTINGS-FETCH", style="bold cyan")
    subtitle = Text("Listados • Reintentos • Fallback", style="dim")
    body = Align.center(Text.assemble(title, "\n", subtitle), vertical="middle")
    console.print(Panel(body, border_style="cyan", padding=(1, 4)))


class ConsoleNotifier:
    """Notificaciones como líneas de consola coloreadas."""

    def __init__(self, console: Console) -> None:
        self._console = console

    def info(self, message: str) -> None:
        self._console.print(f"[cyan]ℹ[/cyan] {message}")

    def warning(self, message: str) -> None:
        self._console.print(f"[yellow]⚠[/yellow] {message}")

    def error(self, message: str) -> None:
        self._console.print(f"[red]✖[/red] {message}")


class ConsoleNavigator:
    """En la CLI no hay páginas: se informa del destino de login."""

    def __init__(self, console: Console, current: str = "/") -> None:
        self._console = console
        self._current = current
        self.remembered: str | None = None

    def current_path(self) -> str:
        return self._current

    def remember_path(self, path: str) -> None:
        self.remembered = path

    def navigate(self, target: str) -> None:
        self._current = target
        self._console.print(f"[yellow]Sign in required:[/yellow] {target}")


def _cell(listing: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = listing.get(key)
        if value not in (None, ""):
            return str(value)
    return "-"


def build_listings_table(page: ListingsPage, *, title: str = "Listings") -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Suburb", style="magenta")
    table.add_column("Price", style="green", justify="right")
    table.add_column("Status", style="dim")

    for listing in page.listings:
        table.add_row(
            _cell(listing, "_id", "id"),
            _cell(listing, "title", "name"),
            _cell(listing, "suburb", "city"),
            _cell(listing, "price"),
            _cell(listing, "status"),
        )

    meta = page.pagination
    caption = f"Page {meta.current_page}/{meta.total_pages} • {meta.total} total"
    if page.fallback:
        caption += " • fallback data"
    table.caption = caption
    return table


def build_listing_panel(result: ListingResult) -> Panel:
    """Panel de detalle de un listado (o del motivo por el que no hay)."""

    if not result.success or result.listing is None:
        body = Text(result.error or "No data", style="red")
        if result.not_found:
            body.append("\nThis listing does not exist.", style="dim")
        elif result.retryable:
            body.append("\nYou can retry later.", style="dim")
        return Panel(body, title="Listing", border_style="red")

    listing = result.listing
    body = Text()
    for key in ("title", "suburb", "price", "bedrooms", "bathrooms", "status"):
        if listing.get(key) not in (None, ""):
            body.append(f"{key.capitalize()}: ", style="bold")
            body.append(f"{listing[key]}\n")
    body.append(f"\nStrategy: {result.strategy or '-'} • attempts: {result.attempts}", style="dim")
    if result.id_match is False:
        body.append("\nReturned ID differs from the requested one.", style="yellow")

    return Panel(body, title=Text(_cell(listing, "_id", "id"), style="bold cyan"), border_style="cyan")


def build_dashboard_table(data: DashboardData) -> Table:
    table = Table(title="Dashboard")
    table.add_column("Metric", style="cyan", no_wrap=True)
    table.add_column("Value", style="white", justify="right")
    for name, value in data.stats.model_dump(by_alias=True).items():
        table.add_row(name, str(value))
    if data.fallback:
        table.caption = "fallback data"
    return table


def build_collection_table(result: CollectionResult, *, title: str) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Date", style="magenta")
    for item in result.items:
        listing = item.get("listing") if isinstance(item.get("listing"), dict) else item
        table.add_row(
            _cell(item, "_id", "id"),
            _cell(listing, "title", "name"),
            _cell(item, "date", "scheduledAt", "createdAt"),
        )
    if result.fallback:
        table.caption = "fallback data"
    return table
