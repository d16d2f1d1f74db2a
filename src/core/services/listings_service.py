"""Domain fetch operations for the marketplace API.

Each public coroutine is a thin configuration layer over the
`RetryOrchestrator`: it picks the endpoint, query parameters, retry policy and
the fallback shape that the UI can always render. None of them raise on network
failure; callers get a result model with `success`/`fallback` flags instead.

Collaborator policies (notifications, sign-in navigation, the one-shot auth
check of the agent listings) are glued on here so the orchestrator stays
domain-agnostic.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Sequence
from urllib.parse import urlencode

import httpx

from adapters.http_client import build_async_client, has_auth_marker, new_request_id, request_headers
from adapters.retry import RetryOrchestrator
from adapters.timeout import CancellationToken
from core.config import AppSettings
from core.domain.errors import ErrorKind
from core.domain.models import (
    CollectionResult,
    DashboardData,
    DashboardStats,
    Failure,
    Fallback,
    FetchRequest,
    ListingResult,
    ListingsPage,
    PaginationMeta,
    RetryPolicy,
    StrategyDescriptor,
    Success,
)
from core.interfaces.collaborators import AuthProvider, Navigator, Notifier

logger = logging.getLogger(__name__)

OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

LISTINGS_ENDPOINT = "/api/listings"
AGENT_LISTINGS_ENDPOINT = "/api/listings/agent"
DASHBOARD_ENDPOINT = "/api/user/dashboard-data"
FAVORITES_ENDPOINT = "/api/user/favorites"
INSPECTIONS_ENDPOINT = "/api/user/inspections"
HEALTH_ENDPOINT = "/api/health"

# Primary first; the later entries resolve through alternate lookup paths.
DEFAULT_LISTING_STRATEGIES: tuple[StrategyDescriptor, ...] = (
    StrategyDescriptor(name="standard", endpoint_template="/api/listings/{id}"),
    StrategyDescriptor(
        name="fixed-fetch",
        endpoint_template="/api/listings/fixed-fetch?id={id}",
        tolerate_id_mismatch=True,
    ),
    StrategyDescriptor(
        name="recovery",
        endpoint_template="/api/listings/fixed-fetch?id={id}&forceDirect=true",
        tolerate_id_mismatch=True,
    ),
)

AUTH_REQUIRED_MESSAGE = "Authentication required. Please sign in to continue."
SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again to see your listings."
FALLBACK_MESSAGE = "Showing cached or empty results while the listings service recovers."


def clean_filters(filters: Mapping[str, Any] | None) -> dict[str, str]:
    """Drop undefined/empty filter values and stringify the rest."""

    cleaned: dict[str, str] = {}
    for key, value in (filters or {}).items():
        if value is None:
            continue
        if isinstance(value, str):
            if not value.strip():
                continue
            cleaned[key] = value.strip()
        elif isinstance(value, bool):
            cleaned[key] = "true" if value else "false"
        else:
            cleaned[key] = str(value)
    return cleaned


def normalize_listing_id(listing_id: object) -> str:
    """Strip any query suffix and whitespace from a listing id."""

    if listing_id is None:
        return ""
    return str(listing_id).split("?", 1)[0].strip()


def is_valid_listing_id(listing_id: str) -> bool:
    return bool(OBJECT_ID_RE.match(listing_id))


def _items_from(payload: Any, key: str) -> list[dict[str, Any]]:
    """Accept a bare list, `{key: [...]}` or `{data: {key: [...]}}`."""

    candidates: list[Any] = [payload]
    if isinstance(payload, dict):
        candidates.append(payload.get(key))
        data = payload.get("data")
        if isinstance(data, dict):
            candidates.append(data.get(key))
        elif isinstance(data, list):
            candidates.append(data)
    for candidate in candidates:
        if isinstance(candidate, list):
            return [item for item in candidate if isinstance(item, dict)]
    return []


def _stats_from(payload: Any) -> DashboardStats:
    data = payload.get("data") if isinstance(payload, dict) and isinstance(payload.get("data"), dict) else payload
    raw = data.get("stats") if isinstance(data, dict) else None
    if not isinstance(raw, dict):
        return DashboardStats()
    usable = {
        key: value
        for key, value in raw.items()
        if isinstance(value, int) and not isinstance(value, bool) and value >= 0
    }
    return DashboardStats.model_validate(usable)


class ListingsService:
    """Resilient fetch operations used by the listing and dashboard views."""

    def __init__(
        self,
        settings: AppSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        notifier: Notifier | None = None,
        navigator: Navigator | None = None,
        auth_provider: AuthProvider | None = None,
        strategies: Sequence[StrategyDescriptor] = DEFAULT_LISTING_STRATEGIES,
    ) -> None:
        self._settings = settings or AppSettings()
        self._owns_client = client is None
        self._client = client or build_async_client(self._settings)
        self._orchestrator = RetryOrchestrator(self._client)
        self._notifier = notifier
        self._navigator = navigator
        self._auth_provider = auth_provider
        self._strategies = tuple(strategies)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ListingsService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -- listings ---------------------------------------------------------

    async def list_listings(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        page: int = 1,
        limit: int = 12,
        token: CancellationToken | None = None,
    ) -> ListingsPage:
        """Public listings with filters; empty page with `fallback=True` on total failure."""

        cleaned = clean_filters(filters)
        page_result = await self._fetch_page(
            LISTINGS_ENDPOINT,
            page=page,
            limit=limit,
            filters=cleaned,
            policy=self._settings.list_policy(),
            fetch_type="public-listings",
            request_id=new_request_id("public"),
            token=token,
        )
        if page_result.fallback:
            self._notify("warning", page_result.message or FALLBACK_MESSAGE)
        return page_result

    async def fetch_listings(
        self,
        endpoint: str = LISTINGS_ENDPOINT,
        *,
        page: int = 1,
        limit: int = 10,
        token: CancellationToken | None = None,
    ) -> ListingsPage:
        """Generic listings fetch for an arbitrary listings endpoint."""

        return await self._fetch_page(
            endpoint,
            page=page,
            limit=limit,
            filters={},
            policy=self._settings.list_policy(),
            fetch_type="listings",
            request_id=new_request_id("listings"),
            token=token,
        )

    async def list_agent_listings(
        self,
        *,
        page: int = 1,
        limit: int = 50,
        token: CancellationToken | None = None,
    ) -> ListingsPage:
        """Listings owned by the signed-in agent.

        On fallback data, checks the session once; an unauthenticated user gets
        a sign-in notification instead of the generic fallback warning.
        """

        page_result = await self._fetch_page(
            AGENT_LISTINGS_ENDPOINT,
            page=page,
            limit=limit,
            filters={},
            policy=self._settings.agent_policy(),
            fetch_type="agent-listings",
            request_id=new_request_id("agent"),
            token=token,
        )
        if not page_result.fallback:
            return page_result

        authenticated = await self._check_session()
        if authenticated is False:
            self._notify("error", SESSION_EXPIRED_MESSAGE)
        else:
            self._notify("warning", page_result.message or FALLBACK_MESSAGE)
        return page_result

    async def _fetch_page(
        self,
        endpoint: str,
        *,
        page: int,
        limit: int,
        filters: dict[str, str],
        policy: RetryPolicy,
        fetch_type: str,
        request_id: str,
        token: CancellationToken | None,
    ) -> ListingsPage:
        page = max(1, int(page))
        limit = max(1, int(limit))
        params = {"page": str(page), "limit": str(limit), **filters}
        request = FetchRequest(
            url=endpoint,
            headers=request_headers(request_id, fetch_type=fetch_type),
            params=params,
            timeout_ms=policy.timeout_ms,
            max_retries=policy.max_retries,
        )
        empty = PaginationMeta.empty(page=page, limit=limit)
        outcome = await self._orchestrator.execute(
            request,
            policy=policy,
            request_id=request_id,
            token=token,
            fallback_payload={
                "success": True,
                "listings": [],
                "pagination": empty.model_dump(by_alias=True),
                "fallback": True,
            },
        )

        if isinstance(outcome, Success):
            payload = outcome.payload if isinstance(outcome.payload, dict) else {}
            listings = _items_from(payload, "listings")
            server_fallback = bool(payload.get("fallback"))
            return ListingsPage(
                listings=listings,
                pagination=empty if server_fallback else PaginationMeta.from_payload(payload, page=page, limit=limit),
                filters=filters,
                success=True,
                fallback=server_fallback,
                message=payload.get("message") if isinstance(payload.get("message"), str) else None,
                request_id=outcome.request_id,
                timestamp=outcome.timestamp,
            )

        if isinstance(outcome, Fallback):
            return ListingsPage(
                listings=[],
                pagination=empty,
                filters=filters,
                success=True,
                fallback=True,
                message=f"Using fallback data after failed fetch attempts: {outcome.reason}",
                error=outcome.reason,
                error_kind=outcome.error,
                request_id=outcome.request_id,
                timestamp=outcome.timestamp,
            )

        self._handle_failure(outcome)
        return ListingsPage(
            listings=[],
            pagination=empty,
            filters=filters,
            success=False,
            error=outcome.message,
            error_kind=outcome.error,
            request_id=outcome.request_id,
            timestamp=outcome.timestamp,
        )

    # -- single listing ---------------------------------------------------

    async def get_listing(
        self,
        listing_id: object,
        *,
        token: CancellationToken | None = None,
    ) -> ListingResult:
        """Resolve one listing, escalating through the configured strategies.

        An id that is not a 24-hex identifier is rejected before any network
        call.
        """

        request_id = new_request_id("listing")
        pure_id = normalize_listing_id(listing_id)
        if not is_valid_listing_id(pure_id):
            logger.warning("[%s] invalid listing id %r; no request issued", request_id, listing_id)
            return ListingResult(
                success=False,
                error=f"Invalid listing ID: {listing_id!r}",
                error_kind=ErrorKind.VALIDATION,
                request_id=request_id,
            )

        policy = self._settings.entity_policy()
        request = FetchRequest(
            url=self._strategies[0].render(pure_id),
            headers=request_headers(request_id, fetch_type="listing-detail"),
            timeout_ms=policy.timeout_ms,
            max_retries=policy.max_retries,
        )
        outcome = await self._orchestrator.execute(
            request,
            policy=policy,
            request_id=request_id,
            token=token,
            strategies=self._strategies,
            identifier=pure_id,
            entity_key="listing",
            fallback_payload={"success": False, "listing": None, "fallback": True},
        )

        if isinstance(outcome, Success):
            return ListingResult(
                success=True,
                listing=outcome.payload["listing"],
                id_match=outcome.id_match,
                strategy=outcome.strategy,
                attempts=outcome.attempts,
                request_id=outcome.request_id,
                timestamp=outcome.timestamp,
            )

        if isinstance(outcome, Fallback):
            not_found = outcome.error is ErrorKind.SERVER_ERROR and outcome.status == 404
            if not_found:
                self._notify("info", "This listing could not be found.")
            else:
                self._notify("error", "Failed to load listing after multiple attempts.")
            return ListingResult(
                success=False,
                fallback=True,
                not_found=not_found,
                retryable=not not_found,
                error=outcome.reason,
                error_kind=outcome.error,
                strategy=outcome.strategy,
                attempts=outcome.attempts,
                errors=outcome.errors,
                request_id=outcome.request_id,
                timestamp=outcome.timestamp,
            )

        self._handle_failure(outcome)
        return ListingResult(
            success=False,
            error=outcome.message,
            error_kind=outcome.error,
            strategy=outcome.strategy,
            attempts=outcome.attempts,
            request_id=outcome.request_id,
            timestamp=outcome.timestamp,
        )

    # -- dashboard --------------------------------------------------------

    async def fetch_dashboard_data(self, *, token: CancellationToken | None = None) -> DashboardData:
        request_id = new_request_id("dashboard")
        outcome = await self._simple_get(
            DASHBOARD_ENDPOINT,
            params={},
            fetch_type="dashboard",
            request_id=request_id,
            token=token,
            fallback_payload={"stats": DashboardStats().model_dump(by_alias=True)},
        )
        if isinstance(outcome, Success):
            return DashboardData(
                stats=_stats_from(outcome.payload),
                request_id=outcome.request_id,
                timestamp=outcome.timestamp,
            )
        return DashboardData(
            success=isinstance(outcome, Fallback),
            fallback=isinstance(outcome, Fallback),
            message=outcome.reason if isinstance(outcome, Fallback) else outcome.message,
            error_kind=outcome.error,
            request_id=outcome.request_id,
            timestamp=outcome.timestamp,
        )

    async def fetch_favorites(self, *, limit: int = 6, token: CancellationToken | None = None) -> CollectionResult:
        return await self._fetch_collection(
            FAVORITES_ENDPOINT,
            key="favorites",
            params={"limit": str(max(1, int(limit)))},
            token=token,
        )

    async def fetch_inspections(
        self,
        *,
        limit: int = 5,
        future_only: bool = True,
        token: CancellationToken | None = None,
    ) -> CollectionResult:
        return await self._fetch_collection(
            INSPECTIONS_ENDPOINT,
            key="inspections",
            params={"limit": str(max(1, int(limit))), "futureOnly": "true" if future_only else "false"},
            token=token,
        )

    async def _fetch_collection(
        self,
        endpoint: str,
        *,
        key: str,
        params: dict[str, str],
        token: CancellationToken | None,
    ) -> CollectionResult:
        outcome = await self._simple_get(
            endpoint,
            params=params,
            fetch_type=key,
            request_id=new_request_id(key),
            token=token,
            fallback_payload={key: []},
        )
        if isinstance(outcome, Success):
            return CollectionResult(
                items=_items_from(outcome.payload, key),
                request_id=outcome.request_id,
                timestamp=outcome.timestamp,
            )
        return CollectionResult(
            success=isinstance(outcome, Fallback),
            fallback=isinstance(outcome, Fallback),
            message=outcome.reason if isinstance(outcome, Fallback) else outcome.message,
            error_kind=outcome.error,
            request_id=outcome.request_id,
            timestamp=outcome.timestamp,
        )

    async def _simple_get(
        self,
        endpoint: str,
        *,
        params: dict[str, str],
        fetch_type: str,
        request_id: str,
        token: CancellationToken | None,
        fallback_payload: Any,
    ) -> Success | Fallback | Failure:
        policy = self._settings.list_policy()
        outcome = await self._orchestrator.execute(
            FetchRequest(
                url=endpoint,
                headers=request_headers(request_id, fetch_type=fetch_type),
                params=params,
                timeout_ms=policy.timeout_ms,
                max_retries=policy.max_retries,
            ),
            policy=policy,
            request_id=request_id,
            token=token,
            fallback_payload=fallback_payload,
        )
        if isinstance(outcome, Failure):
            self._handle_failure(outcome)
        return outcome

    # -- health -----------------------------------------------------------

    async def check_api_availability(self) -> bool:
        """True when the health endpoint answers 2xx JSON within its deadline."""

        policy = self._settings.health_policy()
        request_id = new_request_id("health")
        outcome = await self._orchestrator.execute(
            FetchRequest(
                url=HEALTH_ENDPOINT,
                headers=request_headers(request_id, fetch_type="health"),
                timeout_ms=policy.timeout_ms,
                max_retries=policy.max_retries,
            ),
            policy=policy,
            request_id=request_id,
            fallback_payload=None,
        )
        return isinstance(outcome, Success)

    # -- collaborator glue ------------------------------------------------

    def sign_in_target(self, return_path: str) -> str:
        return f"{self._settings.sign_in_path}?{urlencode({'redirect_url': return_path})}"

    def _handle_failure(self, outcome: Failure) -> None:
        if outcome.error is ErrorKind.CANCELLED:
            # Nobody is listening any more.
            return
        if outcome.error is ErrorKind.AUTH_REQUIRED:
            self._redirect_to_sign_in()
            self._notify("error", AUTH_REQUIRED_MESSAGE)
            return
        self._notify("error", outcome.message)

    def _redirect_to_sign_in(self) -> None:
        """Send the user to sign in, coming back to the page they are on."""

        if self._navigator is None:
            return
        current = self._navigator.current_path()
        if has_auth_marker(current):
            logger.info("already on an auth page; skipping sign-in redirect")
            return
        self._navigator.remember_path(current)
        self._navigator.navigate(self.sign_in_target(current))

    async def _check_session(self) -> bool | None:
        if self._auth_provider is None:
            return None
        try:
            return await self._auth_provider.is_authenticated()
        except Exception as exc:
            logger.warning("auth check failed: %s", exc)
            return None

    def _notify(self, level: str, message: str | None) -> None:
        if self._notifier is None or not message:
            return
        try:
            getattr(self._notifier, level)(message)
        except Exception as exc:
            logger.warning("notifier failed (%s): %s", level, exc)
