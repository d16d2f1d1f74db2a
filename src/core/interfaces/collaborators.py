"""Contratos de los colaboradores externos del cliente.

Por qué Protocol:
- Autenticación, notificaciones y navegación pertenecen a la UI; el Core solo
  decide *cuándo* usarlos.
- Permite sustituirlos por dobles de test sin herencia rígida.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class AuthProvider(Protocol):
    """Responde si la sesión actual está autenticada.

    Solo se consulta en la rama degradada del listado del agente, nunca en el
    camino normal.
    """

    async def is_authenticated(self) -> bool:
        ...


@runtime_checkable
class Notifier(Protocol):
    """Capa de notificaciones (toasts). El Core decide el mensaje, no el render."""

    def info(self, message: str) -> None:
        ...

    def warning(self, message: str) -> None:
        ...

    def error(self, message: str) -> None:
        ...


@runtime_checkable
class Navigator(Protocol):
    """Navegación de la UI ante `AuthRequired`."""

    def current_path(self) -> str:
        ...

    def remember_path(self, path: str) -> None:
        """Guarda la ruta para volver tras el login."""

        ...

    def navigate(self, target: str) -> None:
        ...
