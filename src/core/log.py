"""Logging del cliente.

Por qué stdlib `logging` + Rich:
- Los módulos usan `logging.getLogger(__name__)`; la librería no decide handlers.
- La CLI instala un `RichHandler` para que los intentos/reintentos se lean bien
  en consola junto a las tablas.
"""

from __future__ import annotations

import logging
from typing import Any, MutableMapping

from rich.console import Console
from rich.logging import RichHandler

_HANDLER_NAME = "listings-fetch"


def configure_logging(level: str | int = "INFO", *, console: Console | None = None) -> None:
    """Configura el logger raíz con un único `RichHandler` (idempotente)."""

    root = logging.getLogger()
    for handler in list(root.handlers):
        if handler.get_name() == _HANDLER_NAME:
            root.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    root.setLevel(level)


class RequestLogAdapter(logging.LoggerAdapter):
    """Prefija cada registro con el correlation id de la llamada lógica."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        request_id = (self.extra or {}).get("request_id", "-")
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("request_id", request_id)
        kwargs["extra"] = extra
        return f"[{request_id}] {msg}", kwargs


def request_logger(logger: logging.Logger, request_id: str) -> RequestLogAdapter:
    return RequestLogAdapter(logger, {"request_id": request_id})
