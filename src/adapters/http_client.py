"""Wrapper de httpx.

Por qué un wrapper:
- Estandariza base URL, headers anti-caché y redirects para todas las llamadas.
- Facilita testeo: se inyecta un `httpx.MockTransport` en lugar de la red.
"""

from __future__ import annotations

import time
import uuid

import httpx
from bs4 import BeautifulSoup

from core.config import AppSettings

# Cabeceras comunes a todas las peticiones GET del cliente.
NO_CACHE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    "Accept": "application/json",
    "X-Requested-With": "XMLHttpRequest",
}

AUTH_PATH_MARKERS: tuple[str, ...] = ("/auth", "/sign-in", "/login")

_SIGN_IN_TEXT_MARKERS: tuple[str, ...] = ("sign-in", "login", "<title>sign in</title>")
_SIGN_IN_TITLE_MARKERS: tuple[str, ...] = ("sign in", "log in", "login")


def build_async_client(
    settings: AppSettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    extra_headers: dict[str, str] | None = None,
) -> httpx.AsyncClient:
    """Crea un `httpx.AsyncClient` apuntando al backend.

    Notas:
    - `follow_redirects=True`: un redirect a login queda visible en
      `response.history`, que es lo que mira el clasificador.
    - El timeout de httpx es solo una red de seguridad; el deadline real por
      intento lo impone `adapters.timeout.fetch_with_timeout`.
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {"User-Agent": settings.user_agent, **NO_CACHE_HEADERS}
    if extra_headers:
        headers.update(extra_headers)

    longest_ms = max(
        settings.list_timeout_ms,
        settings.agent_timeout_ms,
        settings.entity_timeout_ms,
        settings.health_timeout_ms,
    )
    return httpx.AsyncClient(
        base_url=settings.base_url,
        timeout=httpx.Timeout(longest_ms / 1000 + 5.0),
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )


def new_request_id(prefix: str = "req") -> str:
    """Correlation id opaco para una llamada lógica."""

    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


def new_cache_buster() -> str:
    """Valor único por intento para el parámetro anti-caché."""

    return f"{time.time_ns()}-{uuid.uuid4().hex[:10]}"


def request_headers(request_id: str, *, fetch_type: str) -> dict[str, str]:
    return {
        **NO_CACHE_HEADERS,
        "X-Request-ID": request_id,
        "X-Fetch-Type": fetch_type,
    }


def has_auth_marker(path: str) -> bool:
    lowered = path.lower()
    return any(marker in lowered for marker in AUTH_PATH_MARKERS)


def looks_like_sign_in_page(html: str) -> bool:
    """Heurística para páginas de login servidas en lugar de JSON.

    Combina marcadores de texto crudo con señales estructurales del HTML
    (título y formularios con campo de contraseña).
    """

    if not html:
        return False

    lowered = html.lower()
    if any(marker in lowered for marker in _SIGN_IN_TEXT_MARKERS):
        return True

    soup = BeautifulSoup(html, "html.parser")
    if soup.title and soup.title.string:
        title = soup.title.string.strip().lower()
        if any(marker in title for marker in _SIGN_IN_TITLE_MARKERS):
            return True

    return soup.find("input", attrs={"type": "password"}) is not None
