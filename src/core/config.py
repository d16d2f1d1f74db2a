"""Configuración del Core.

Por qué aquí:
- Centraliza variables de entorno (pydantic-settings) sin contaminar la CLI.
- Los adaptadores HTTP y los servicios leen timeouts/reintentos del mismo sitio,
  así cada call site conserva sus parámetros exactos.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.domain.models import RetryPolicy


APP_DIR_NAME = "listings-fetch"


def get_user_config_dir() -> Path:
    """Directorio de configuración por usuario (APPDATA, Application Support o XDG)."""

    if sys.platform.startswith("win"):
        return Path(os.environ.get("APPDATA") or Path.home()) / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config") / APP_DIR_NAME


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def write_user_env_vars(values: dict[str, str | None], env_path: Path | None = None) -> Path:
    """Actualiza claves del .env del usuario en su sitio.

    Conserva comentarios, orden y claves ajenas; las claves nuevas se añaden al
    final. Un valor `None` deja la clave como estaba.
    """

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    pending = {key: value for key, value in values.items() if value is not None}
    lines = env_path.read_text(encoding="utf-8").splitlines() if env_path.exists() else ["# listings-fetch user config"]

    for index, line in enumerate(lines):
        key, sep, _ = line.partition("=")
        key = key.strip()
        if sep and not key.startswith("#") and key in pending:
            lines[index] = f"{key}={pending.pop(key)}"

    lines.extend(f"{key}={value}" for key, value in pending.items())
    env_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return env_path


class AppSettings(BaseSettings):
    """Configuración central del cliente.

    Por qué pydantic-settings:
    - Tipado + validación en el borde (env vars) sin ensuciar el Core.
    - Un único contrato de configuración para CLI, adaptadores y servicios.
    """

    model_config = SettingsConfigDict(
        env_prefix="LISTINGS_FETCH_",
        extra="ignore",
        case_sensitive=False,
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    base_url: str = Field(
        default="http://localhost:3000",
        min_length=8,
        description="URL base del backend del marketplace.",
    )
    user_agent: str = Field(
        default="listings-fetch/0.1",
        min_length=1,
        description="User-Agent enviado en cada petición.",
    )
    sign_in_path: str = Field(
        default="/auth/sign-in",
        min_length=1,
        description="Ruta de login usada para construir el redirect.",
    )

    # Listados (públicos y genéricos).
    list_timeout_ms: int = Field(default=15_000, gt=0)
    list_max_retries: int = Field(default=2, ge=0, le=10)
    list_backoff_cap_ms: int = Field(default=2_000, gt=0)

    # Listado del agente: mismos tiempos, otro cache-buster.
    agent_timeout_ms: int = Field(default=15_000, gt=0)
    agent_max_retries: int = Field(default=2, ge=0, le=10)
    agent_backoff_cap_ms: int = Field(default=2_000, gt=0)

    # Entidad individual (escalado por estrategias).
    entity_timeout_ms: int = Field(default=30_000, gt=0)
    entity_max_retries: int = Field(default=3, ge=0, le=10)
    entity_backoff_cap_ms: int = Field(default=5_000, gt=0)

    health_timeout_ms: int = Field(default=3_000, gt=0)
    session_timeout_ms: int = Field(default=5_000, gt=0)

    backoff_base_ms: int = Field(
        default=500,
        gt=0,
        description="Base del backoff exponencial: min(base * 2^attempt, cap).",
    )

    log_level: str = Field(default="INFO", description="Nivel de logging (DEBUG/INFO/...).")

    def list_policy(self) -> RetryPolicy:
        return RetryPolicy(
            timeout_ms=self.list_timeout_ms,
            max_retries=self.list_max_retries,
            backoff_base_ms=self.backoff_base_ms,
            backoff_cap_ms=self.list_backoff_cap_ms,
            cache_buster_param="_cb",
        )

    def agent_policy(self) -> RetryPolicy:
        return RetryPolicy(
            timeout_ms=self.agent_timeout_ms,
            max_retries=self.agent_max_retries,
            backoff_base_ms=self.backoff_base_ms,
            backoff_cap_ms=self.agent_backoff_cap_ms,
            cache_buster_param="_t",
        )

    def entity_policy(self) -> RetryPolicy:
        return RetryPolicy(
            timeout_ms=self.entity_timeout_ms,
            max_retries=self.entity_max_retries,
            backoff_base_ms=self.backoff_base_ms,
            backoff_cap_ms=self.entity_backoff_cap_ms,
            cache_buster_param="_nocache",
        )

    def health_policy(self) -> RetryPolicy:
        return RetryPolicy(
            timeout_ms=self.health_timeout_ms,
            max_retries=0,
            backoff_base_ms=self.backoff_base_ms,
            backoff_cap_ms=self.backoff_base_ms,
            cache_buster_param="t",
        )
