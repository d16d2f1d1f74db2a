"""Doctor command for environment diagnostics."""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from core.config import AppSettings, get_user_env_file, write_user_env_vars
from core.services.listings_service import ListingsService

app = typer.Typer(no_args_is_help=True, help="Environment diagnostics and configuration checks.")

_console = Console()


async def _check_api(settings: AppSettings) -> bool:
    async with ListingsService(settings) as service:
        return await service.check_api_availability()


@app.command()
def run() -> None:
    """Run baseline diagnostics and show recommended fixes."""

    settings = AppSettings()

    table = Table(title="Listings-Fetch Doctor")
    table.add_column("Check", style="bright_green", no_wrap=True)
    table.add_column("Status", style="white")
    table.add_column("Details", style="dim")

    # Config
    env_file = get_user_env_file()
    table.add_row("User config", "OK" if env_file.exists() else "OPTIONAL", str(env_file))
    table.add_row("Base URL", "OK", settings.base_url)
    table.add_row(
        "List policy",
        "OK",
        f"{settings.list_timeout_ms}ms • {settings.list_max_retries} retries • cap {settings.list_backoff_cap_ms}ms",
    )
    table.add_row(
        "Entity policy",
        "OK",
        f"{settings.entity_timeout_ms}ms • {settings.entity_max_retries} retries • cap {settings.entity_backoff_cap_ms}ms",
    )

    # Connectivity (best-effort)
    ok_api = asyncio.run(_check_api(settings))
    table.add_row("API health", "OK" if ok_api else "FAIL", f"{settings.base_url}/api/health")

    _console.print(table)

    if not ok_api:
        _console.print(
            "\n[yellow]Note:[/yellow] Listing commands still work offline; they return empty fallback data."
        )


@app.command(name="setup")
def setup() -> None:
    """Interactive setup (stores config in the user config .env)."""

    current = AppSettings()
    base_url = typer.prompt("API base URL", default=current.base_url, show_default=True).strip()
    sign_in_path = typer.prompt("Sign-in path", default=current.sign_in_path, show_default=True).strip()
    log_level = typer.prompt("Log level", default=current.log_level, show_default=True).strip().upper()

    if not base_url.startswith(("http://", "https://")):
        raise typer.BadParameter("base_url must start with http:// or https://")

    env_path = write_user_env_vars(
        {
            "LISTINGS_FETCH_BASE_URL": base_url.rstrip("/"),
            "LISTINGS_FETCH_SIGN_IN_PATH": sign_in_path or None,
            "LISTINGS_FETCH_LOG_LEVEL": log_level or None,
        }
    )

    _console.print(f"[green]Saved config to:[/green] {env_path}")
