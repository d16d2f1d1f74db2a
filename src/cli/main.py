"""CLI principal (Typer).

Por qué la CLI es delgada:
- Solo traduce opciones a llamadas de `ListingsService` y pinta el resultado.
- La lógica de reintentos/fallback vive en el Core, así la CLI nunca ve
  excepciones de red.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from pydantic import BaseModel
from rich.console import Console

from adapters.http_client import build_async_client
from adapters.session import HttpSessionAuthProvider
from cli import doctor
from cli.ui_components import (
    ConsoleNavigator,
    ConsoleNotifier,
    build_collection_table,
    build_dashboard_table,
    build_listing_panel,
    build_listings_table,
    print_banner,
)
from core.config import AppSettings
from core.log import configure_logging
from core.services.listings_service import ListingsService

app = typer.Typer(
    no_args_is_help=True,
    help="Resilient client for the listings marketplace API.",
)
app.add_typer(doctor.app, name="doctor")

_console = Console()

T = TypeVar("T")


def _parse_filters(raw: list[str] | None) -> dict[str, str]:
    filters: dict[str, str] = {}
    for item in raw or []:
        if "=" not in item:
            raise typer.BadParameter(f"Filter must be key=value, got {item!r}")
        key, value = item.split("=", 1)
        filters[key.strip()] = value
    return filters


def _run_with_service(settings: AppSettings, action: Callable[[ListingsService], Awaitable[T]]) -> T:
    async def _inner() -> T:
        notifier = ConsoleNotifier(_console)
        navigator = ConsoleNavigator(_console)
        async with build_async_client(settings) as client:
            service = ListingsService(
                settings,
                client=client,
                notifier=notifier,
                navigator=navigator,
                auth_provider=HttpSessionAuthProvider(client, settings),
            )
            return await action(service)

    return asyncio.run(_inner())


def _emit_json(model: BaseModel) -> None:
    payload: Any = model.model_dump(mode="json", by_alias=True)
    _console.print_json(json.dumps(payload))


def _bootstrap(base_url: str | None, verbose: bool, no_banner: bool, as_json: bool) -> AppSettings:
    settings = AppSettings(base_url=base_url) if base_url else AppSettings()
    configure_logging("DEBUG" if verbose else settings.log_level)
    if not no_banner and not as_json:
        print_banner(_console)
    return settings


BaseUrlOption = typer.Option(None, "--base-url", help="Override LISTINGS_FETCH_BASE_URL.")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Log every attempt.")
JsonOption = typer.Option(False, "--json", help="Print the raw result as JSON.")
NoBannerOption = typer.Option(False, "--no-banner", help="Skip the banner.")


@app.command("list")
def list_command(
    filters: Optional[list[str]] = typer.Option(None, "--filter", "-f", help="Filter as key=value (repeatable)."),
    page: int = typer.Option(1, min=1),
    limit: int = typer.Option(12, min=1),
    base_url: Optional[str] = BaseUrlOption,
    verbose: bool = VerboseOption,
    as_json: bool = JsonOption,
    no_banner: bool = NoBannerOption,
) -> None:
    """List public listings with filters."""

    settings = _bootstrap(base_url, verbose, no_banner, as_json)
    parsed = _parse_filters(filters)
    result = _run_with_service(settings, lambda s: s.list_listings(parsed, page=page, limit=limit))
    if as_json:
        _emit_json(result)
        return
    _console.print(build_listings_table(result))


@app.command("get")
def get_command(
    listing_id: str = typer.Argument(..., help="24-hex listing id."),
    base_url: Optional[str] = BaseUrlOption,
    verbose: bool = VerboseOption,
    as_json: bool = JsonOption,
    no_banner: bool = NoBannerOption,
) -> None:
    """Fetch a single listing by id."""

    settings = _bootstrap(base_url, verbose, no_banner, as_json)
    result = _run_with_service(settings, lambda s: s.get_listing(listing_id))
    if as_json:
        _emit_json(result)
    else:
        _console.print(build_listing_panel(result))
    if not result.success:
        raise typer.Exit(code=1)


@app.command("agent")
def agent_command(
    page: int = typer.Option(1, min=1),
    limit: int = typer.Option(50, min=1),
    base_url: Optional[str] = BaseUrlOption,
    verbose: bool = VerboseOption,
    as_json: bool = JsonOption,
    no_banner: bool = NoBannerOption,
) -> None:
    """List the signed-in agent's listings."""

    settings = _bootstrap(base_url, verbose, no_banner, as_json)
    result = _run_with_service(settings, lambda s: s.list_agent_listings(page=page, limit=limit))
    if as_json:
        _emit_json(result)
        return
    _console.print(build_listings_table(result, title="My listings"))


@app.command("dashboard")
def dashboard_command(
    base_url: Optional[str] = BaseUrlOption,
    verbose: bool = VerboseOption,
    as_json: bool = JsonOption,
    no_banner: bool = NoBannerOption,
) -> None:
    """Show the user dashboard stats."""

    settings = _bootstrap(base_url, verbose, no_banner, as_json)
    result = _run_with_service(settings, lambda s: s.fetch_dashboard_data())
    if as_json:
        _emit_json(result)
        return
    _console.print(build_dashboard_table(result))


@app.command("favorites")
def favorites_command(
    limit: int = typer.Option(6, min=1),
    base_url: Optional[str] = BaseUrlOption,
    verbose: bool = VerboseOption,
    as_json: bool = JsonOption,
    no_banner: bool = NoBannerOption,
) -> None:
    """List saved listings."""

    settings = _bootstrap(base_url, verbose, no_banner, as_json)
    result = _run_with_service(settings, lambda s: s.fetch_favorites(limit=limit))
    if as_json:
        _emit_json(result)
        return
    _console.print(build_collection_table(result, title="Favorites"))


@app.command("inspections")
def inspections_command(
    limit: int = typer.Option(5, min=1),
    future_only: bool = typer.Option(True, "--future-only/--all"),
    base_url: Optional[str] = BaseUrlOption,
    verbose: bool = VerboseOption,
    as_json: bool = JsonOption,
    no_banner: bool = NoBannerOption,
) -> None:
    """List booked inspections."""

    settings = _bootstrap(base_url, verbose, no_banner, as_json)
    result = _run_with_service(settings, lambda s: s.fetch_inspections(limit=limit, future_only=future_only))
    if as_json:
        _emit_json(result)
        return
    _console.print(build_collection_table(result, title="Inspections"))


@app.command("health")
def health_command(
    base_url: Optional[str] = BaseUrlOption,
    verbose: bool = VerboseOption,
) -> None:
    """Check whether the API answers its health endpoint."""

    settings = _bootstrap(base_url, verbose, True, False)
    available = _run_with_service(settings, lambda s: s.check_api_availability())
    if available:
        _console.print(f"[green]API available[/green] at {settings.base_url}")
        return
    _console.print(f"[red]API unavailable[/red] at {settings.base_url}")
    raise typer.Exit(code=1)


def run() -> None:
    app()
