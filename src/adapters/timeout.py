"""Timeout/abort de una única llamada de red.

Por qué no basta con el timeout de httpx:
- Necesitamos un deadline *total* por intento (conexión + cuerpo), y además
  poder abortar desde fuera con el mismo token que usa el backoff.
- El timeout se distingue de un error de red genérico (`FetchTimeoutError`)
  para que el orquestador lo trate como fallo reintentable.
"""

from __future__ import annotations

import asyncio

import httpx

from core.domain.errors import FetchCancelled, FetchTimeoutError, NetworkError
from core.domain.models import FetchRequest


class CancellationToken:
    """Token de cancelación compartido por todos los intentos de una llamada.

    Cancelar después de que la llamada terminó no tiene efecto.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise FetchCancelled(self.reason or "cancelled")

    async def sleep(self, seconds: float) -> None:
        """Duerme `seconds` salvo que se cancele antes (en cuyo caso lanza `FetchCancelled`)."""

        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=max(0.0, seconds))
        except asyncio.TimeoutError:
            return
        self.raise_if_cancelled()


async def fetch_with_timeout(
    client: httpx.AsyncClient,
    request: FetchRequest,
    *,
    timeout_ms: int | None = None,
    token: CancellationToken | None = None,
) -> httpx.Response:
    """Ejecuta `request` con deadline duro.

    Raises:
        FetchTimeoutError: venció el deadline (o httpx reportó timeout).
        NetworkError: fallo de transporte (DNS, conexión, TLS).
        FetchCancelled: el token se canceló antes de tener respuesta.
    """

    deadline_ms = timeout_ms or request.timeout_ms
    if token is not None:
        token.raise_if_cancelled()

    try:
        http_request = client.build_request(
            request.method,
            request.url,
            params=request.params,
            headers=request.headers,
            content=request.body,
        )
    except httpx.InvalidURL as exc:
        raise NetworkError(f"Invalid URL {request.url}: {exc}") from exc

    send_task = asyncio.ensure_future(client.send(http_request))
    waiters: set[asyncio.Future] = {send_task}
    cancel_task: asyncio.Future | None = None
    if token is not None:
        cancel_task = asyncio.ensure_future(token.wait())
        waiters.add(cancel_task)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=deadline_ms / 1000,
            return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        # Nunca dejar el envío ni el waiter del token colgando.
        pending = [task for task in waiters if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)

    if send_task in done:
        try:
            return send_task.result()
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Request timed out for {request.url}: {exc}") from exc
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise NetworkError(f"Network error for {request.url}: {exc}") from exc

    if token is not None and token.cancelled:
        raise FetchCancelled(token.reason or "cancelled")

    raise FetchTimeoutError(f"Request timed out after {deadline_ms}ms for {request.url}")
