"""Tests for the domain fetch operations and their collaborator policies."""

from __future__ import annotations

import asyncio
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from adapters.session import HttpSessionAuthProvider
from adapters.timeout import CancellationToken
from core.domain.errors import ErrorKind
from core.services.listings_service import (
    FALLBACK_MESSAGE,
    SESSION_EXPIRED_MESSAGE,
    ListingsService,
    clean_filters,
    is_valid_listing_id,
    normalize_listing_id,
)

from conftest import RecordingNavigator, RequestLog, StubAuthProvider

LISTING_ID = "507f1f77bcf86cd799439011"


def _listings_payload(total: int = 1, limit: int = 12) -> dict:
    return {
        "success": True,
        "listings": [{"_id": LISTING_ID, "title": "Terrace in Richmond"}],
        "pagination": {"total": total, "currentPage": 1, "totalPages": 1, "limit": limit},
    }


def _service(client, settings, **kwargs) -> ListingsService:
    return ListingsService(settings, client=client, **kwargs)


class TestFilterHelpers:
    def test_clean_filters_drops_empty_values(self):
        cleaned = clean_filters({"suburb": " Richmond ", "minPrice": 500, "type": "", "agent": None, "pets": True})

        assert cleaned == {"suburb": "Richmond", "minPrice": "500", "pets": "true"}

    def test_normalize_listing_id_strips_query_suffix(self):
        assert normalize_listing_id(f" {LISTING_ID}?tab=photos ") == LISTING_ID
        assert normalize_listing_id(None) == ""

    @pytest.mark.parametrize("value", ["", "123", "zz7f1f77bcf86cd799439011", LISTING_ID + "0"])
    def test_rejects_non_object_ids(self, value):
        assert is_valid_listing_id(value) is False


class TestListListings:
    @pytest.mark.asyncio
    async def test_sends_cleaned_filters_and_paging(self, make_client, fast_settings):
        log = RequestLog(lambda r: httpx.Response(200, json=_listings_payload(total=25)))

        async with make_client(log) as client:
            page = await _service(client, fast_settings).list_listings({"suburb": "Richmond", "type": ""}, page=1, limit=12)

        params = log.requests[0].url.params
        assert params["page"] == "1"
        assert params["limit"] == "12"
        assert params["suburb"] == "Richmond"
        assert "type" not in params
        assert "_cb" in params
        assert log.requests[0].headers["X-Fetch-Type"] == "public-listings"
        assert log.requests[0].headers["Cache-Control"] == "no-cache, no-store, must-revalidate"
        assert page.success is True
        assert page.fallback is False
        assert page.filters == {"suburb": "Richmond"}
        assert page.pagination.total == 25
        assert page.pagination.total_pages == 3

    @pytest.mark.asyncio
    async def test_html_responses_degrade_to_empty_fallback(self, make_client, fast_settings, notifier):
        log = RequestLog(lambda r: httpx.Response(200, html="<html><body>Bad gateway</body></html>"))

        async with make_client(log) as client:
            page = await _service(client, fast_settings, notifier=notifier).list_listings()

        assert len(log.requests) == 3
        assert page.success is True
        assert page.fallback is True
        assert page.listings == []
        assert page.pagination.total == 0
        assert page.pagination.total_pages == 1
        assert page.error_kind is ErrorKind.MALFORMED_RESPONSE
        assert notifier.levels() == ["warning"]

    @pytest.mark.asyncio
    async def test_network_failure_never_raises(self, make_client, fast_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            page = await _service(client, fast_settings).list_listings({"suburb": "Carlton"})

        assert page.fallback is True
        assert page.error_kind is ErrorKind.NETWORK
        assert page.filters == {"suburb": "Carlton"}

    @pytest.mark.asyncio
    async def test_server_fallback_flag_is_passed_through_and_announced(self, make_client, fast_settings, notifier):
        payload = {"success": True, "listings": [], "fallback": True, "message": "Database warming up"}

        async with make_client(lambda r: httpx.Response(200, json=payload)) as client:
            page = await _service(client, fast_settings, notifier=notifier).list_listings()

        assert page.fallback is True
        assert page.message == "Database warming up"
        assert page.pagination.total == 0
        assert notifier.messages == [("warning", "Database warming up")]

    @pytest.mark.asyncio
    async def test_server_fallback_without_message_uses_default_warning(self, make_client, fast_settings, notifier):
        payload = {"success": True, "listings": [], "fallback": True}

        async with make_client(lambda r: httpx.Response(200, json=payload)) as client:
            page = await _service(client, fast_settings, notifier=notifier).list_listings()

        assert page.fallback is True
        assert notifier.messages == [("warning", FALLBACK_MESSAGE)]

    @pytest.mark.asyncio
    async def test_auth_redirect_returns_user_to_current_page(self, make_client, fast_settings, notifier):
        navigator = RecordingNavigator(current="/listings?suburb=Carlton")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.startswith("/auth"):
                return httpx.Response(200, html="<html><title>Sign in</title></html>")
            return httpx.Response(302, headers={"location": "/auth/sign-in"})

        log = RequestLog(handler)
        async with make_client(log) as client:
            page = await _service(client, fast_settings, notifier=notifier, navigator=navigator).list_listings(
                {"suburb": "Carlton"}, page=1, limit=12
            )

        assert len(log.api_calls()) == 1
        assert page.success is False
        assert page.auth_required is True
        assert navigator.remembered == ["/listings?suburb=Carlton"]
        assert len(navigator.targets) == 1
        target = urlsplit(navigator.targets[0])
        assert target.path == "/auth/sign-in"
        assert parse_qs(target.query)["redirect_url"] == ["/listings?suburb=Carlton"]
        assert notifier.levels() == ["error"]

    @pytest.mark.asyncio
    async def test_no_navigation_when_already_on_auth_page(self, make_client, fast_settings):
        navigator = RecordingNavigator(current="/auth/sign-in")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/login":
                return httpx.Response(200, html="<html><title>Log in</title></html>")
            return httpx.Response(302, headers={"location": "/login"})

        async with make_client(handler) as client:
            page = await _service(client, fast_settings, navigator=navigator).list_listings()

        assert page.auth_required is True
        assert navigator.targets == []

    @pytest.mark.asyncio
    async def test_generic_fetch_uses_given_endpoint(self, make_client, fast_settings):
        log = RequestLog(lambda r: httpx.Response(200, json={"success": True, "data": {"listings": [{"id": "a"}]}}))

        async with make_client(log) as client:
            page = await _service(client, fast_settings).fetch_listings("/api/listings/featured", limit=10)

        assert log.requests[0].url.path == "/api/listings/featured"
        assert log.requests[0].url.params["limit"] == "10"
        assert page.listings == [{"id": "a"}]


class TestGetListing:
    @pytest.mark.asyncio
    async def test_invalid_id_makes_no_network_call(self, make_client, fast_settings):
        log = RequestLog(lambda r: httpx.Response(200, json={}))

        async with make_client(log) as client:
            result = await _service(client, fast_settings).get_listing("not-an-id")

        assert log.requests == []
        assert result.success is False
        assert result.error_kind is ErrorKind.VALIDATION

    @pytest.mark.asyncio
    async def test_primary_match_returns_listing(self, make_client, fast_settings):
        listing = {"_id": LISTING_ID, "title": "Terrace"}
        log = RequestLog(lambda r: httpx.Response(200, json={"success": True, "listing": listing}))

        async with make_client(log) as client:
            result = await _service(client, fast_settings).get_listing(f"{LISTING_ID}?ref=home")

        assert result.success is True
        assert result.listing == listing
        assert result.id_match is True
        assert result.strategy == "standard"
        assert log.requests[0].url.path == f"/api/listings/{LISTING_ID}"
        assert "_nocache" in log.requests[0].url.params

    @pytest.mark.asyncio
    async def test_repeated_lookup_is_idempotent(self, make_client, fast_settings):
        listing = {"_id": LISTING_ID, "title": "Terrace"}

        async with make_client(lambda r: httpx.Response(200, json={"success": True, "listing": listing})) as client:
            service = _service(client, fast_settings)
            first = await service.get_listing(LISTING_ID)
            second = await service.get_listing(LISTING_ID)

        assert first.listing == second.listing
        assert first.id_match == second.id_match
        assert first.request_id != second.request_id

    @pytest.mark.asyncio
    async def test_primary_mismatch_escalates_to_tolerant_strategy(self, make_client, fast_settings):
        other = {"_id": "000000000000000000000000", "title": "Someone else's"}
        log = RequestLog(lambda r: httpx.Response(200, json={"success": True, "listing": other}))

        async with make_client(log) as client:
            result = await _service(client, fast_settings).get_listing(LISTING_ID)

        assert result.success is True
        assert result.id_match is False
        assert result.strategy == "fixed-fetch"
        assert result.attempts == 2
        assert [r.headers["X-Strategy"] for r in log.requests] == ["standard", "fixed-fetch"]

    @pytest.mark.asyncio
    async def test_persistent_404_is_not_found(self, make_client, fast_settings, notifier):
        log = RequestLog(lambda r: httpx.Response(404, json={"success": False, "message": "Listing not found"}))

        async with make_client(log) as client:
            result = await _service(client, fast_settings, notifier=notifier).get_listing(LISTING_ID)

        assert len(log.requests) == 4
        assert result.success is False
        assert result.fallback is True
        assert result.not_found is True
        assert result.retryable is False
        assert result.error == "Listing not found"
        assert notifier.levels() == ["info"]

    @pytest.mark.asyncio
    async def test_exhausted_server_errors_are_retryable(self, make_client, fast_settings, notifier):
        async with make_client(lambda r: httpx.Response(500, json={"success": False})) as client:
            result = await _service(client, fast_settings, notifier=notifier).get_listing(LISTING_ID)

        assert result.fallback is True
        assert result.not_found is False
        assert result.retryable is True
        assert len(result.errors) == 4
        assert notifier.levels() == ["error"]


class TestAgentListings:
    @pytest.mark.asyncio
    async def test_success_skips_auth_check(self, make_client, fast_settings):
        auth = StubAuthProvider(authenticated=False)
        log = RequestLog(lambda r: httpx.Response(200, json=_listings_payload(limit=50)))

        async with make_client(log) as client:
            page = await _service(client, fast_settings, auth_provider=auth).list_agent_listings()

        assert page.fallback is False
        assert auth.calls == 0
        assert log.requests[0].url.path == "/api/listings/agent"
        assert log.requests[0].url.params["limit"] == "50"
        assert "_t" in log.requests[0].url.params

    @pytest.mark.asyncio
    async def test_fallback_with_expired_session_notifies_sign_in(self, make_client, fast_settings, notifier):
        auth = StubAuthProvider(authenticated=False)

        async with make_client(lambda r: httpx.Response(503, json={"success": False})) as client:
            page = await _service(client, fast_settings, notifier=notifier, auth_provider=auth).list_agent_listings()

        assert page.fallback is True
        assert auth.calls == 1
        assert notifier.messages == [("error", SESSION_EXPIRED_MESSAGE)]

    @pytest.mark.asyncio
    async def test_fallback_with_valid_session_warns(self, make_client, fast_settings, notifier):
        auth = StubAuthProvider(authenticated=True)

        async with make_client(lambda r: httpx.Response(503, json={"success": False})) as client:
            await _service(client, fast_settings, notifier=notifier, auth_provider=auth).list_agent_listings()

        assert auth.calls == 1
        assert notifier.levels() == ["warning"]

    @pytest.mark.asyncio
    async def test_failing_auth_provider_does_not_break_result(self, make_client, fast_settings, notifier):
        class BrokenAuth:
            async def is_authenticated(self) -> bool:
                raise RuntimeError("auth service down")

        async with make_client(lambda r: httpx.Response(500, json={})) as client:
            page = await _service(
                client, fast_settings, notifier=notifier, auth_provider=BrokenAuth()
            ).list_agent_listings()

        assert page.fallback is True
        assert notifier.levels() == ["warning"]

    @pytest.mark.asyncio
    async def test_server_flagged_fallback_triggers_one_auth_check(self, make_client, fast_settings, notifier):
        auth = StubAuthProvider(authenticated=False)
        payload = {"success": True, "listings": [], "fallback": True}

        async with make_client(lambda r: httpx.Response(200, json=payload)) as client:
            page = await _service(client, fast_settings, notifier=notifier, auth_provider=auth).list_agent_listings()

        assert page.fallback is True
        assert page.error_kind is None
        assert auth.calls == 1
        assert notifier.messages == [("error", SESSION_EXPIRED_MESSAGE)]


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_during_backoff_is_silent(self, make_client, fast_settings, notifier, navigator):
        settings = fast_settings.model_copy(update={"backoff_base_ms": 5_000, "list_backoff_cap_ms": 5_000})
        log = RequestLog(lambda r: httpx.Response(503, json={"success": False}))
        token = CancellationToken()

        async with make_client(log) as client:
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            page = await _service(client, settings, notifier=notifier, navigator=navigator).list_listings(token=token)

        assert len(log.requests) == 1
        assert page.success is False
        assert page.error_kind is ErrorKind.CANCELLED
        assert notifier.messages == []
        assert navigator.targets == []
        assert navigator.remembered == []

    @pytest.mark.asyncio
    async def test_cancel_in_flight_lookup_is_silent(self, make_client, fast_settings, notifier, navigator):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(2)
            return httpx.Response(200, json={"success": True, "listing": {"_id": LISTING_ID}})

        token = CancellationToken()

        async with make_client(handler) as client:
            asyncio.get_running_loop().call_later(0.05, token.cancel)
            result = await _service(client, fast_settings, notifier=notifier, navigator=navigator).get_listing(
                LISTING_ID, token=token
            )

        assert result.success is False
        assert result.fallback is False
        assert result.error_kind is ErrorKind.CANCELLED
        assert result.attempts == 1
        assert notifier.messages == []
        assert navigator.targets == []


class TestUserCollections:
    @pytest.mark.asyncio
    async def test_dashboard_stats(self, make_client, fast_settings):
        payload = {"success": True, "data": {"stats": {"savedListings": 4, "upcomingInspections": 2, "matches": -1}}}
        log = RequestLog(lambda r: httpx.Response(200, json=payload))

        async with make_client(log) as client:
            data = await _service(client, fast_settings).fetch_dashboard_data()

        assert log.requests[0].url.path == "/api/user/dashboard-data"
        assert data.success is True
        assert data.stats.saved_listings == 4
        assert data.stats.upcoming_inspections == 2
        assert data.stats.matches == 0

    @pytest.mark.asyncio
    async def test_dashboard_fallback_is_zeroed(self, make_client, fast_settings):
        async with make_client(lambda r: httpx.Response(500, json={"success": False})) as client:
            data = await _service(client, fast_settings).fetch_dashboard_data()

        assert data.fallback is True
        assert data.stats.model_dump() == {
            "saved_listings": 0,
            "viewed_listings": 0,
            "upcoming_inspections": 0,
            "recent_searches": 0,
            "matches": 0,
            "notifications": 0,
        }

    @pytest.mark.asyncio
    async def test_favorites_accepts_nested_data(self, make_client, fast_settings):
        payload = {"success": True, "data": {"favorites": [{"_id": "f1"}, "junk"]}}
        log = RequestLog(lambda r: httpx.Response(200, json=payload))

        async with make_client(log) as client:
            result = await _service(client, fast_settings).fetch_favorites(limit=3)

        assert log.requests[0].url.params["limit"] == "3"
        assert result.items == [{"_id": "f1"}]

    @pytest.mark.asyncio
    async def test_inspections_future_only_flag(self, make_client, fast_settings):
        log = RequestLog(lambda r: httpx.Response(200, json=[{"_id": "i1"}]))

        async with make_client(log) as client:
            result = await _service(client, fast_settings).fetch_inspections(limit=5, future_only=False)

        assert log.requests[0].url.path == "/api/user/inspections"
        assert log.requests[0].url.params["futureOnly"] == "false"
        assert result.items == [{"_id": "i1"}]


class TestAvailability:
    @pytest.mark.asyncio
    async def test_health_ok(self, make_client, fast_settings):
        async with make_client(lambda r: httpx.Response(200, json={"status": "ok"})) as client:
            assert await _service(client, fast_settings).check_api_availability() is True

    @pytest.mark.asyncio
    async def test_health_failure_is_not_retried(self, make_client, fast_settings):
        log = RequestLog(lambda r: httpx.Response(503, json={"status": "down"}))

        async with make_client(log) as client:
            available = await _service(client, fast_settings).check_api_availability()

        assert available is False
        assert len(log.requests) == 1
        assert "t" in log.requests[0].url.params


class TestSessionProvider:
    @pytest.mark.asyncio
    async def test_signed_in_user(self, make_client, fast_settings):
        log = RequestLog(lambda r: httpx.Response(200, json={"user": {"id": "u1"}}))

        async with make_client(log) as client:
            assert await HttpSessionAuthProvider(client, fast_settings).is_authenticated() is True

        assert log.requests[0].url.path == "/api/users/me"

    @pytest.mark.asyncio
    async def test_unauthorized_user(self, make_client, fast_settings):
        async with make_client(lambda r: httpx.Response(401, json={"message": "Unauthorized"})) as client:
            assert await HttpSessionAuthProvider(client, fast_settings).is_authenticated() is False
