"""Shared fixtures: a simulated backend and recording collaborators."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest

from adapters.http_client import build_async_client
from core.config import AppSettings

BASE_URL = "http://testserver"

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def levels(self) -> list[str]:
        return [level for level, _ in self.messages]


class RecordingNavigator:
    def __init__(self, current: str = "/listings") -> None:
        self.current = current
        self.remembered: list[str] = []
        self.targets: list[str] = []

    def current_path(self) -> str:
        return self.current

    def remember_path(self, path: str) -> None:
        self.remembered.append(path)

    def navigate(self, target: str) -> None:
        self.targets.append(target)


class StubAuthProvider:
    def __init__(self, authenticated: bool = True) -> None:
        self.authenticated = authenticated
        self.calls = 0

    async def is_authenticated(self) -> bool:
        self.calls += 1
        return self.authenticated


class RequestLog:
    """Wraps a handler and records every request it sees."""

    def __init__(self, handler: Handler) -> None:
        self._handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request):
        self.requests.append(request)
        return self._handler(request)

    def api_calls(self, prefix: str = "/api/") -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith(prefix)]


@pytest.fixture
def fast_settings() -> AppSettings:
    """Settings with near-zero backoff so retry tests stay quick."""

    return AppSettings(
        _env_file=None,
        base_url=BASE_URL,
        backoff_base_ms=1,
        list_backoff_cap_ms=1,
        agent_backoff_cap_ms=1,
        entity_backoff_cap_ms=1,
        list_timeout_ms=500,
        agent_timeout_ms=500,
        entity_timeout_ms=500,
        health_timeout_ms=500,
    )


@pytest.fixture
def make_client(fast_settings: AppSettings) -> Callable[[Handler], httpx.AsyncClient]:
    def _factory(handler: Handler) -> httpx.AsyncClient:
        return build_async_client(fast_settings, transport=httpx.MockTransport(handler))

    return _factory


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def navigator() -> RecordingNavigator:
    return RecordingNavigator()
