"""CLI smoke tests against a simulated backend."""

from __future__ import annotations

import json

import httpx
import pytest
from typer.testing import CliRunner

from adapters import http_client
from cli import main as cli_main

runner = CliRunner()


@pytest.fixture
def backend(monkeypatch):
    """Routes every client the CLI builds to an in-memory handler."""

    monkeypatch.setenv("LISTINGS_FETCH_LOG_LEVEL", "ERROR")
    monkeypatch.setenv("LISTINGS_FETCH_BASE_URL", "http://testserver")
    routes: dict[str, httpx.Response] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        return routes.get(request.url.path, httpx.Response(404, json={"success": False}))

    def fake_builder(settings=None, **kwargs):
        return http_client.build_async_client(settings, transport=httpx.MockTransport(handler))

    monkeypatch.setattr(cli_main, "build_async_client", fake_builder)
    return routes


def test_list_as_json(backend):
    backend["/api/listings"] = httpx.Response(
        200, json={"success": True, "listings": [{"_id": "a", "title": "Loft"}], "pagination": {"total": 1}}
    )

    result = runner.invoke(cli_main.app, ["list", "--json", "--filter", "suburb=Fitzroy"])

    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["listings"][0]["title"] == "Loft"
    assert data["filters"] == {"suburb": "Fitzroy"}
    assert data["pagination"]["totalPages"] == 1


def test_get_rejects_invalid_id(backend):
    result = runner.invoke(cli_main.app, ["get", "nope", "--no-banner"])

    assert result.exit_code == 1
    assert "Invalid listing ID" in result.stdout


def test_health_reports_availability(backend):
    backend["/api/health"] = httpx.Response(200, json={"status": "ok"})

    result = runner.invoke(cli_main.app, ["health"])

    assert result.exit_code == 0
    assert "API available" in result.stdout


def test_bad_filter_is_usage_error(backend):
    result = runner.invoke(cli_main.app, ["list", "--filter", "suburb"])

    assert result.exit_code != 0
