"""Orquestador de reintentos.

Por qué un único orquestador:
- Los servicios solo describen *qué* pedir (endpoint, params, datos de
  fallback, estrategias); el bucle de intentos, el backoff y la degradación
  viven aquí una sola vez.
- Nunca lanza por fallos de red: devuelve `Success`, `Fallback` o `Failure`.

Reglas:
- `AUTH_REQUIRED` no se reintenta.
- Timeout, red, respuesta malformada, error de servidor e identidad no
  coincidente se reintentan con `min(base * 2^attempt, cap)`.
- Agotados los intentos -> `Fallback` con los datos por defecto del dominio.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Sequence

import httpx

from adapters.http_client import new_cache_buster, new_request_id
from adapters.response_classifier import classify_response
from adapters.timeout import CancellationToken, fetch_with_timeout
from core.domain.errors import (
    AuthRequiredError,
    FetchCancelled,
    FetchError,
    IdentityMismatchError,
    MalformedResponseError,
    ServerError,
)
from core.domain.models import (
    AttemptError,
    Failure,
    Fallback,
    FetchRequest,
    RetryPolicy,
    RetryState,
    StrategyDescriptor,
    Success,
)
from core.log import RequestLogAdapter, request_logger

logger = logging.getLogger(__name__)

Fetcher = Callable[..., Awaitable[httpx.Response]]


def extract_entity_id(entity: Any) -> str | None:
    if not isinstance(entity, dict):
        return None
    for key in ("_id", "id"):
        value = entity.get(key)
        if value is not None and value != "":
            return str(value)
    return None


class RetryOrchestrator:
    """Ejecuta una llamada lógica completa ocultando el bucle de intentos."""

    def __init__(self, client: httpx.AsyncClient, *, fetcher: Fetcher = fetch_with_timeout) -> None:
        self._client = client
        self._fetch = fetcher

    async def execute(
        self,
        request: FetchRequest,
        *,
        policy: RetryPolicy,
        fallback_payload: Any = None,
        token: CancellationToken | None = None,
        request_id: str | None = None,
        strategies: Sequence[StrategyDescriptor] = (),
        identifier: str | None = None,
        entity_key: str | None = None,
    ) -> Success | Fallback | Failure:
        """Ejecuta `request` hasta obtener un outcome terminal.

        Args:
            request: Petición lógica (sin cache-buster ni contador de reintentos).
            policy: Timeout, reintentos y backoff del call site.
            fallback_payload: Datos por defecto si se agotan los intentos.
            token: Cancelación compartida por todos los intentos y el backoff.
            request_id: Correlation id; se genera si no se pasa.
            strategies: Estrategias por intento (`strategies[min(attempt, n-1)]`);
                reemplazan la URL de `request` usando `identifier`.
            identifier: Id pedido, para la comprobación de identidad.
            entity_key: Clave del payload que debe traer la entidad.
        """

        state = RetryState(request_id=request_id or request.headers.get("X-Request-ID") or new_request_id())
        log = request_logger(logger, state.request_id)
        last_error: FetchError | None = None
        last_strategy: StrategyDescriptor | None = None

        for attempt in range(policy.max_attempts):
            state.attempt = attempt
            strategy = strategies[min(attempt, len(strategies) - 1)] if strategies else None
            last_strategy = strategy
            attempt_request = self._build_attempt(request, attempt=attempt, policy=policy, strategy=strategy, identifier=identifier)
            attempt_started = state.elapsed_ms()

            try:
                response = await self._fetch(
                    self._client,
                    attempt_request,
                    timeout_ms=policy.timeout_ms,
                    token=token,
                )
                classification = classify_response(response)
                log.info(
                    "attempt %d/%d %s%s -> %s (HTTP %s, %.0fms)",
                    attempt + 1,
                    policy.max_attempts,
                    attempt_request.url,
                    f" [{strategy.name}]" if strategy else "",
                    classification.kind.value,
                    classification.status,
                    state.elapsed_ms() - attempt_started,
                )
                if not classification.ok:
                    raise classification.to_error()

                id_match = None
                if entity_key is not None:
                    id_match = self._verify_entity(
                        classification.payload,
                        entity_key=entity_key,
                        identifier=identifier,
                        strategy=strategy,
                        log=log,
                    )

                return Success(
                    payload=classification.payload,
                    id_match=id_match,
                    request_id=state.request_id,
                    attempts=attempt + 1,
                    elapsed_ms=state.elapsed_ms(),
                    strategy=strategy.name if strategy else None,
                )

            except FetchError as exc:
                if not exc.retryable:
                    if isinstance(exc, AuthRequiredError):
                        log.warning("authentication required (redirect to %s); not retrying", exc.redirect_target)
                    else:
                        log.debug("%s: %s; not retrying", exc.kind.value, exc.message)
                    return self._failure(state, exc, attempts=attempt + 1, strategy=strategy)

                last_error = exc
                state.record(
                    AttemptError(
                        attempt=attempt,
                        kind=exc.kind,
                        message=exc.message,
                        status=exc.status,
                        strategy=strategy.name if strategy else None,
                        elapsed_ms=max(0.0, state.elapsed_ms() - attempt_started),
                    )
                )
                if attempt >= policy.max_retries:
                    log.error("attempt %d/%d failed (%s): %s; giving up", attempt + 1, policy.max_attempts, exc.kind.value, exc.message)
                    break

                delay_ms = policy.backoff_ms(attempt)
                log.warning(
                    "attempt %d/%d failed (%s): %s; retrying in %dms",
                    attempt + 1,
                    policy.max_attempts,
                    exc.kind.value,
                    exc.message,
                    delay_ms,
                )
                try:
                    await self._backoff(delay_ms, token)
                except FetchCancelled as cancel:
                    log.debug("cancelled during backoff: %s", cancel.message)
                    return self._failure(state, cancel, attempts=attempt + 1, strategy=strategy)

        reason = last_error.message if last_error else "Network error"
        log.warning("returning fallback data after %d attempts: %s", len(state.errors), reason)
        return Fallback(
            payload=copy.deepcopy(fallback_payload),
            reason=reason,
            error=last_error.kind if last_error else None,
            status=last_error.status if last_error else None,
            errors=list(state.errors),
            request_id=state.request_id,
            attempts=state.attempt + 1,
            elapsed_ms=state.elapsed_ms(),
            strategy=last_strategy.name if last_strategy else None,
        )

    @staticmethod
    def _build_attempt(
        request: FetchRequest,
        *,
        attempt: int,
        policy: RetryPolicy,
        strategy: StrategyDescriptor | None,
        identifier: str | None,
    ) -> FetchRequest:
        if strategy is not None:
            request = request.model_copy(
                update={
                    "url": strategy.render(identifier or ""),
                    "headers": {**request.headers, "X-Strategy": strategy.name},
                }
            )
        return request.for_attempt(
            attempt=attempt,
            cache_buster_param=policy.cache_buster_param,
            cache_buster=new_cache_buster(),
        )

    @staticmethod
    async def _backoff(delay_ms: int, token: CancellationToken | None) -> None:
        if token is not None:
            await token.sleep(delay_ms / 1000)
        else:
            await asyncio.sleep(delay_ms / 1000)

    @staticmethod
    def _verify_entity(
        payload: Any,
        *,
        entity_key: str,
        identifier: str | None,
        strategy: StrategyDescriptor | None,
        log: RequestLogAdapter,
    ) -> bool | None:
        """Valida que el payload traiga la entidad y, si aplica, su identidad.

        Un id distinto es fallo en estrategias primarias y se acepta (marcado)
        en las de recuperación.
        """

        entity = payload.get(entity_key) if isinstance(payload, dict) else None
        if not entity:
            if isinstance(payload, dict) and payload.get("success") is False:
                message = payload.get("message") or payload.get("error") or "Server reported failure"
                raise ServerError(str(message))
            raise MalformedResponseError(f"Response missing {entity_key} data")

        if identifier is None:
            return None

        returned_id = extract_entity_id(entity)
        if returned_id is None:
            log.warning("missing id in returned %s; identity not compared", entity_key)
            return None
        if returned_id == identifier:
            return True

        if strategy is None or not strategy.tolerate_id_mismatch:
            raise IdentityMismatchError(f"ID mismatch: expected {identifier}, got {returned_id}")

        log.warning(
            "ID mismatch accepted from %s strategy: requested %s, got %s",
            strategy.name,
            identifier,
            returned_id,
        )
        return False

    @staticmethod
    def _failure(
        state: RetryState,
        exc: FetchError,
        *,
        attempts: int,
        strategy: StrategyDescriptor | None,
    ) -> Failure:
        return Failure(
            error=exc.kind,
            message=exc.message,
            status=exc.status,
            redirect_target=getattr(exc, "redirect_target", None),
            request_id=state.request_id,
            attempts=attempts,
            elapsed_ms=state.elapsed_ms(),
            strategy=strategy.name if strategy else None,
        )

