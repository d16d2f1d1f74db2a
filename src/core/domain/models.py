"""Modelos del dominio (Pydantic v2).

Por qué Pydantic en el dominio:
- Validación estricta de invariantes (paginación, políticas de reintento) en
  el momento de construir el objeto, no cuando ya se está renderizando.
- Los outcomes se serializan tal cual para la CLI (`model_dump(mode="json")`).

Nota:
- Estos modelos describen *qué* devuelve una petición, no *cómo* se obtiene.
"""

from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union
from urllib.parse import quote

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from core.domain.errors import ErrorKind


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetryPolicy(BaseModel):
    """Parámetros de timeout/reintento de un call site."""

    model_config = ConfigDict(frozen=True)

    timeout_ms: int = Field(..., gt=0)
    max_retries: int = Field(default=2, ge=0, le=10)
    backoff_base_ms: int = Field(default=500, gt=0)
    backoff_cap_ms: int = Field(default=2_000, gt=0)
    cache_buster_param: str = Field(default="_cb", min_length=1)

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff_ms(self, attempt: int) -> int:
        """`min(base * 2^attempt, cap)` para el intento (0-based) que acaba de fallar."""

        return min(self.backoff_base_ms * (2 ** max(0, attempt)), self.backoff_cap_ms)


class StrategyDescriptor(BaseModel):
    """Variante de endpoint para resolver una entidad por id.

    `tolerate_id_mismatch` marca las estrategias de recuperación: pueden
    resolver por rutas alternativas y su id devuelto no se exige idéntico.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    endpoint_template: str = Field(..., min_length=1)
    tolerate_id_mismatch: bool = False

    def render(self, identifier: str) -> str:
        return self.endpoint_template.format(id=quote(identifier, safe=""))


class FetchRequest(BaseModel):
    """Petición lógica; cada intento es una copia con cabeceras/params frescos."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(..., min_length=1)
    method: Literal["GET"] = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, str] = Field(default_factory=dict)
    body: bytes | None = None
    timeout_ms: int = Field(default=15_000, gt=0)
    max_retries: int = Field(default=2, ge=0)

    def for_attempt(self, *, attempt: int, cache_buster_param: str, cache_buster: str) -> FetchRequest:
        """Copia para un intento: solo cambian el contador de reintentos y el cache-buster."""

        return self.model_copy(
            update={
                "headers": {**self.headers, "X-Retry-Count": str(attempt)},
                "params": {**self.params, cache_buster_param: cache_buster},
            }
        )


class AttemptError(BaseModel):
    """Registro de un intento fallido (diagnóstico)."""

    attempt: int = Field(..., ge=0)
    kind: ErrorKind
    message: str
    status: int | None = None
    strategy: str | None = None
    elapsed_ms: float = Field(default=0.0, ge=0)


class RetryState(BaseModel):
    """Estado de una llamada lógica; se crea por llamada y se descarta al final."""

    request_id: str = Field(..., min_length=1)
    attempt: int = Field(default=0, ge=0)
    started_at: float = Field(default_factory=time.monotonic)
    errors: list[AttemptError] = Field(default_factory=list)

    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000

    def record(self, error: AttemptError) -> None:
        self.errors.append(error)


class PaginationMeta(BaseModel):
    """Metadatos de paginación (formato camelCase del backend)."""

    model_config = ConfigDict(populate_by_name=True)

    total: int = Field(default=0, ge=0)
    current_page: int = Field(default=1, ge=1, alias="currentPage")
    total_pages: int = Field(default=1, ge=1, alias="totalPages")
    limit: int = Field(..., gt=0)

    @classmethod
    def from_total(cls, *, total: int, page: int, limit: int) -> PaginationMeta:
        total = max(0, int(total))
        return cls(
            total=total,
            current_page=max(1, int(page)),
            total_pages=max(1, math.ceil(total / limit)),
            limit=limit,
        )

    @classmethod
    def empty(cls, *, page: int, limit: int) -> PaginationMeta:
        return cls(total=0, current_page=max(1, int(page)), total_pages=1, limit=limit)

    @classmethod
    def from_payload(cls, payload: dict[str, Any], *, page: int, limit: int) -> PaginationMeta:
        """Normaliza la paginación de una respuesta real.

        `totalPages` se recalcula desde `total`/`limit` para que el invariante
        se cumpla aunque el backend mande un valor incoherente.
        """

        raw = payload.get("pagination")
        raw = raw if isinstance(raw, dict) else {}

        total = raw.get("total", payload.get("total"))
        if not isinstance(total, int) or isinstance(total, bool):
            listings = payload.get("listings")
            total = len(listings) if isinstance(listings, list) else 0

        raw_limit = raw.get("limit")
        effective_limit = raw_limit if isinstance(raw_limit, int) and raw_limit > 0 else limit

        raw_page = raw.get("currentPage")
        effective_page = raw_page if isinstance(raw_page, int) and raw_page >= 1 else page

        return cls.from_total(total=total, page=effective_page, limit=effective_limit)


class _OutcomeBase(BaseModel):
    request_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    attempts: int = Field(default=0, ge=0)
    elapsed_ms: float = Field(default=0.0, ge=0)
    strategy: str | None = None


class Success(_OutcomeBase):
    kind: Literal["success"] = "success"
    payload: Any = None
    id_match: bool | None = None


class Fallback(_OutcomeBase):
    """Datos por defecto tras agotar reintentos (forma de éxito, contenido vacío)."""

    kind: Literal["fallback"] = "fallback"
    payload: Any = None
    reason: str
    error: ErrorKind | None = None
    status: int | None = None
    errors: list[AttemptError] = Field(default_factory=list)


class Failure(_OutcomeBase):
    kind: Literal["failure"] = "failure"
    error: ErrorKind
    message: str
    status: int | None = None
    redirect_target: str | None = None


FetchOutcome = Annotated[Union[Success, Fallback, Failure], Field(discriminator="kind")]


class ListingsPage(BaseModel):
    """Resultado de un listado (público, genérico o del agente)."""

    listings: list[dict[str, Any]] = Field(default_factory=list)
    pagination: PaginationMeta
    filters: dict[str, str] = Field(default_factory=dict)
    success: bool = True
    fallback: bool = False
    message: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    request_id: str
    timestamp: datetime = Field(default_factory=_utcnow)

    @property
    def auth_required(self) -> bool:
        return self.error_kind is ErrorKind.AUTH_REQUIRED


class ListingResult(BaseModel):
    """Resultado de get-by-id.

    Distingue un 404 confirmado (`not_found`, sin reintento sugerido) de un
    fallback tras agotar estrategias (`retryable`).
    """

    success: bool
    listing: dict[str, Any] | None = None
    id_match: bool | None = None
    fallback: bool = False
    not_found: bool = False
    retryable: bool = False
    error: str | None = None
    error_kind: ErrorKind | None = None
    strategy: str | None = None
    attempts: int = Field(default=0, ge=0)
    errors: list[AttemptError] = Field(default_factory=list)
    request_id: str
    timestamp: datetime = Field(default_factory=_utcnow)


class DashboardStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    saved_listings: int = Field(default=0, ge=0, alias="savedListings")
    viewed_listings: int = Field(default=0, ge=0, alias="viewedListings")
    upcoming_inspections: int = Field(default=0, ge=0, alias="upcomingInspections")
    recent_searches: int = Field(default=0, ge=0, alias="recentSearches")
    matches: int = Field(default=0, ge=0)
    notifications: int = Field(default=0, ge=0)


class DashboardData(BaseModel):
    stats: DashboardStats = Field(default_factory=DashboardStats)
    success: bool = True
    fallback: bool = False
    message: str | None = None
    error_kind: ErrorKind | None = None
    request_id: str
    timestamp: datetime = Field(default_factory=_utcnow)


class CollectionResult(BaseModel):
    """Colecciones simples del usuario (favoritos, inspecciones)."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    success: bool = True
    fallback: bool = False
    message: str | None = None
    error_kind: ErrorKind | None = None
    request_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
