"""Taxonomía de errores del cliente.

Por qué dos capas:
- Dentro de los adaptadores, los fallos viajan como excepciones tipadas
  (`FetchError` y subclases), que es lo natural en un bucle de reintentos.
- En el borde de los servicios, se convierten en `ErrorKind` dentro de un
  outcome; el llamador nunca recibe una excepción por fallos de red.
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar


class ErrorKind(str, Enum):
    """Categorías de fallo visibles en los outcomes."""

    TIMEOUT = "timeout"
    NETWORK = "network_error"
    MALFORMED_RESPONSE = "malformed_response"
    SERVER_ERROR = "server_error"
    AUTH_REQUIRED = "auth_required"
    VALIDATION = "validation_error"
    IDENTITY_MISMATCH = "identity_mismatch"
    CANCELLED = "cancelled"

    @property
    def retryable(self) -> bool:
        return self not in (ErrorKind.AUTH_REQUIRED, ErrorKind.VALIDATION, ErrorKind.CANCELLED)


class FetchError(Exception):
    """Base de todos los fallos de una petición."""

    kind: ClassVar[ErrorKind] = ErrorKind.NETWORK

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class FetchTimeoutError(FetchError):
    """El deadline venció antes que la respuesta."""

    kind = ErrorKind.TIMEOUT


class NetworkError(FetchError):
    """DNS, conexión rechazada, TLS... (se reintenta igual que un timeout)."""

    kind = ErrorKind.NETWORK


class MalformedResponseError(FetchError):
    kind = ErrorKind.MALFORMED_RESPONSE


class ServerError(FetchError):
    kind = ErrorKind.SERVER_ERROR


class IdentityMismatchError(FetchError):
    kind = ErrorKind.IDENTITY_MISMATCH


class AuthRequiredError(FetchError):
    """El backend nos mandó a la página de login."""

    kind = ErrorKind.AUTH_REQUIRED

    def __init__(self, message: str, *, status: int | None = None, redirect_target: str | None = None) -> None:
        super().__init__(message, status=status)
        self.redirect_target = redirect_target


class FetchCancelled(FetchError):
    """El llamador abandonó la petición (p.ej. la vista ya no existe)."""

    kind = ErrorKind.CANCELLED
