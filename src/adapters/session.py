"""Comprobación de sesión contra el backend.

Implementación por defecto de `AuthProvider`: pregunta a `/api/users/me`.
Solo se usa en la rama degradada del listado del agente.
"""

from __future__ import annotations

import logging

import httpx

from adapters.http_client import new_cache_buster, new_request_id, request_headers
from adapters.response_classifier import classify_response
from adapters.timeout import fetch_with_timeout
from core.config import AppSettings
from core.domain.models import FetchRequest

logger = logging.getLogger(__name__)

SESSION_ENDPOINT = "/api/users/me"


class HttpSessionAuthProvider:
    def __init__(self, client: httpx.AsyncClient, settings: AppSettings | None = None) -> None:
        self._client = client
        self._settings = settings or AppSettings()

    async def is_authenticated(self) -> bool:
        """True si llega un 2xx JSON que no sea un redirect a login.

        Raises:
            FetchError: timeout o fallo de red (el servicio lo trata como "desconocido").
        """

        request_id = new_request_id("session")
        request = FetchRequest(
            url=SESSION_ENDPOINT,
            headers=request_headers(request_id, fetch_type="session-check"),
            params={"t": new_cache_buster()},
            timeout_ms=self._settings.session_timeout_ms,
            max_retries=0,
        )
        response = await fetch_with_timeout(self._client, request)
        classification = classify_response(response)
        logger.debug("[%s] session check -> %s (HTTP %s)", request_id, classification.kind.value, classification.status)
        return classification.ok
