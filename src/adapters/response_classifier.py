"""Clasificación de respuestas HTTP.

Reglas (en orden):
1. Redirect a login, o HTML con marcadores de login -> `AUTH_REQUIRED`.
2. Content-type no JSON -> `MALFORMED`.
3. Status no 2xx -> `SERVER_ERROR` con el mensaje del cuerpo JSON (si hay).
4. JSON válido -> `SUCCESS`; JSON roto -> `MALFORMED`.

Garantías:
- El cuerpo se lee una sola vez por respuesta.
- Nunca lanza: los fallos de parseo se convierten en clasificación.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlsplit

import httpx

from adapters.http_client import has_auth_marker, looks_like_sign_in_page
from core.domain.errors import (
    AuthRequiredError,
    FetchError,
    MalformedResponseError,
    ServerError,
)

_STATUS_MESSAGES: dict[int, str] = {
    400: "Bad request",
    401: "Authentication error: please sign in again",
    403: "Access denied",
    404: "Not found",
    408: "Request timeout",
    413: "Payload too large",
    429: "Too many requests",
    500: "Internal server error",
    502: "Bad gateway",
    503: "Service unavailable",
    504: "Gateway timeout",
}


class ClassificationKind(str, Enum):
    SUCCESS = "success"
    AUTH_REQUIRED = "auth_required"
    MALFORMED = "malformed_response"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class Classification:
    kind: ClassificationKind
    status: int
    payload: Any = None
    message: str | None = None
    redirect_target: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is ClassificationKind.SUCCESS

    def to_error(self) -> FetchError:
        """Excepción equivalente, para el bucle de reintentos."""

        message = self.message or self.kind.value
        if self.kind is ClassificationKind.AUTH_REQUIRED:
            return AuthRequiredError(message, status=self.status, redirect_target=self.redirect_target)
        if self.kind is ClassificationKind.SERVER_ERROR:
            return ServerError(message, status=self.status)
        return MalformedResponseError(message, status=self.status)


def generic_status_message(status: int) -> str:
    reason = _STATUS_MESSAGES.get(status)
    if reason:
        return f"Request failed with status {status}: {reason}"
    return f"Request failed with status {status}"


def extract_error_message(data: Any) -> str | None:
    """`message` tiene prioridad sobre `error` en el sobre de error."""

    if not isinstance(data, dict):
        return None
    for key in ("message", "error"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _read_body(response: httpx.Response) -> str | None:
    try:
        return response.text
    except (httpx.ResponseNotRead, httpx.StreamError, UnicodeDecodeError, LookupError):
        return None


def _parse_json(text: str | None) -> tuple[bool, Any]:
    if text is None:
        return False, None
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def _final_url(response: httpx.Response) -> httpx.URL | None:
    try:
        return response.url
    except RuntimeError:
        return None


def _redirected_to_auth(response: httpx.Response) -> bool:
    final_url = _final_url(response)
    if response.history and final_url is not None and has_auth_marker(final_url.path):
        return True
    # Sin follow_redirects el 3xx llega tal cual.
    if response.is_redirect:
        location = response.headers.get("location", "")
        try:
            return bool(location) and has_auth_marker(urlsplit(location).path)
        except ValueError:
            return False
    return False


def classify_response(response: httpx.Response) -> Classification:
    status = response.status_code
    content_type = (response.headers.get("content-type") or "").lower()
    text = _read_body(response)

    if _redirected_to_auth(response):
        final_url = _final_url(response)
        target = response.headers.get("location") if response.is_redirect else str(final_url or "")
        return Classification(
            kind=ClassificationKind.AUTH_REQUIRED,
            status=status,
            message="Authentication required. Please sign in.",
            redirect_target=target,
        )

    is_html = "html" in content_type or (text or "").lstrip()[:1] == "<"
    if is_html and "json" not in content_type and looks_like_sign_in_page(text or ""):
        return Classification(
            kind=ClassificationKind.AUTH_REQUIRED,
            status=status,
            message="Authentication required. Please sign in to continue.",
            redirect_target=str(_final_url(response) or "") or None,
        )

    if "json" not in content_type:
        return Classification(
            kind=ClassificationKind.MALFORMED,
            status=status,
            message=f"Expected JSON but got {content_type or 'unknown content'} (HTTP {status})",
        )

    parsed, data = _parse_json(text)

    if not response.is_success:
        message = extract_error_message(data) if parsed else None
        return Classification(
            kind=ClassificationKind.SERVER_ERROR,
            status=status,
            payload=data if parsed else None,
            message=message or generic_status_message(status),
        )

    if not parsed:
        return Classification(
            kind=ClassificationKind.MALFORMED,
            status=status,
            message="Invalid JSON response",
        )

    return Classification(kind=ClassificationKind.SUCCESS, status=status, payload=data)
