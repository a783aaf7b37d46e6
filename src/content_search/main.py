"""FastAPI application entry point with lifespan management."""

import secrets
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncIterator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from content_search.config import settings
from content_search.dependencies import Services, build_services
from content_search.errors import ClientError
from content_search.models import (
    AckResponse,
    AnalyticsResponse,
    AnalyticsWindow,
    FilterResponse,
    HealthResponse,
    RequesterMeta,
    StatsResponse,
    TrackRequest,
)
from content_search.rate_limit import SEARCH_SCOPE, build_limiter, rate_limit_exceeded_handler
from content_search.search.orchestrator import build_search_request, filter_content
from content_search.utils.dates import parse_datetime, utcnow
from content_search.utils.logging import configure_logging

logger = structlog.get_logger(__name__)

ANALYTICS_DEFAULT_DAYS = 30


def _services(request: Request) -> Services:
    return request.app.state.services


def _requester(request: Request) -> RequesterMeta:
    return RequesterMeta(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
        session_id=request.headers.get("x-session-id")
        or request.cookies.get("sessionId")
        or "anonymous",
    )


def _presented_token(request: Request) -> str | None:
    """Token from ``Authorization: Bearer`` or ``X-Admin-Token``."""
    auth_header = request.headers.get("authorization")
    if auth_header and auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return request.headers.get("x-admin-token")


async def require_admin(request: Request) -> None:
    """Guard privileged endpoints when an admin token is configured."""
    expected = _services(request).admin_token
    if not expected:
        return
    presented = _presented_token(request)
    if not presented or not secrets.compare_digest(presented, expected):
        logger.warning("auth.rejected", path=request.url.path)
        raise HTTPException(status_code=401, detail="Admin token required.")


def create_app(
    services: Services | None = None,
    search_rate_limit: str | None = None,
    suggestion_rate_limit: str | None = None,
) -> FastAPI:
    """Build the application.

    When *services* is given it is used as-is (its lifecycle belongs to the
    caller); otherwise the lifespan builds one from :data:`settings`. Rate
    limits default to the configured values.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings.environment, settings.log_level)
        log = structlog.get_logger(__name__)
        log.info("content_search.startup", environment=settings.environment, port=settings.port)

        owned = services is None
        app.state.services = services if services is not None else await build_services(settings)
        if owned:
            await app.state.services.start()
        app.state.started_at = time.time()
        log.info("content_search.ready")

        yield

        log.info("content_search.shutdown")
        if owned:
            await app.state.services.close()

    app = FastAPI(
        title="Content Search",
        description="Federated search, suggestions and analytics across content collections.",
        version="0.1.0",
        lifespan=lifespan,
    )
    if services is not None:
        # ASGI transports used in tests do not run the lifespan.
        app.state.services = services
        app.state.started_at = time.time()

    limiter = build_limiter(settings.rate_limit_enabled)
    app.state.limiter = limiter

    _register_routes(
        app,
        limiter,
        search_rate_limit or settings.search_rate_limit,
        suggestion_rate_limit or settings.suggestion_rate_limit,
    )
    _register_error_handlers(app)
    return app


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


def _register_routes(
    app: FastAPI, limiter: Limiter, search_limit: str, suggestion_limit: str
) -> None:
    @app.get("/search", summary="Federated search across content variants")
    @limiter.shared_limit(search_limit, scope=SEARCH_SCOPE)
    async def search(
        request: Request,
        query: str | None = Query(default=None, max_length=512),
        page: int = Query(default=1),
        limit: int = Query(default=10),
        content_types: list[str] | None = Query(default=None, alias="contentTypes"),
        fuzzy: bool = Query(default=False),
        highlight: bool = Query(default=True),
        sort_by: str = Query(default="relevance", alias="sortBy"),
        date_start: str | None = Query(default=None, alias="dateStart"),
        date_end: str | None = Query(default=None, alias="dateEnd"),
        tags: list[str] | None = Query(default=None),
        min_views: int | None = Query(default=None, alias="minViews"),
    ) -> dict[str, Any]:
        """Search every requested variant and return the merged page."""
        services = _services(request)
        search_request = build_search_request(
            query,
            page=page,
            limit=limit,
            content_types=content_types,
            fuzzy=fuzzy,
            highlight=highlight,
            sort_by=sort_by,
            date_start=date_start,
            date_end=date_end,
            tags=tags,
            min_views=min_views,
        )

        t_start = time.perf_counter()
        payload = await services.search(search_request)
        elapsed_ms = (time.perf_counter() - t_start) * 1000

        recorder = services.recorder
        recorder.record(
            search_request.query, payload["pagination"]["totalResults"], _requester(request)
        )
        recorder.count("searches_total")
        recorder.count("total_latency_ms", elapsed_ms)
        if elapsed_ms > services.slow_search_ms:
            recorder.count("slow_searches")
            logger.warning(
                "search.slow",
                query=search_request.query[:80],
                latency_ms=round(elapsed_ms, 1),
            )
        return payload

    @app.get("/suggestions", summary="Autocomplete suggestions")
    @limiter.limit(suggestion_limit)
    async def suggestions(
        request: Request,
        query: str = Query(default=""),
        limit: int = Query(default=10, ge=1, le=50),
    ) -> dict[str, Any]:
        return await _services(request).suggest(query, limit)

    @app.post("/analytics/track", response_model=AckResponse, summary="Record a search or click")
    async def track(body: TrackRequest, request: Request) -> AckResponse:
        recorder = _services(request).recorder
        if body.click_data is not None:
            recorder.record_click(body.search_term, body.click_data, body.result_count)
            return AckResponse(message="Click tracked")
        recorder.record(body.search_term, body.result_count, _requester(request))
        return AckResponse(message="Search tracked")

    @app.get(
        "/analytics",
        response_model=AnalyticsResponse,
        response_model_by_alias=True,
        dependencies=[Depends(require_admin)],
        summary="Search analytics for a time window",
    )
    async def analytics(
        request: Request,
        start_date: str | None = Query(default=None, alias="startDate"),
        end_date: str | None = Query(default=None, alias="endDate"),
        limit: int = Query(default=20, ge=1, le=100),
    ) -> AnalyticsResponse:
        """Top terms, daily trend, zero-result terms and totals."""
        try:
            end = parse_datetime(end_date, end_of_day=True) or utcnow()
            start = parse_datetime(start_date) or end - timedelta(days=ANALYTICS_DEFAULT_DAYS)
        except ValueError as exc:
            raise ClientError(str(exc)) from exc
        if start > end:
            raise ClientError("startDate must not be after endDate")

        window = AnalyticsWindow(start=start, end=end)
        store = _services(request).analytics
        try:
            top = await store.top_searches(window, limit)
            trends = await store.trend(window)
            zero = await store.zero_result_searches(window)
            summary = await store.summary(window)
        except Exception as exc:  # noqa: BLE001
            logger.warning("analytics.read_failed", error=str(exc))
            raise HTTPException(status_code=503, detail="Analytics unavailable.") from exc

        return AnalyticsResponse(
            top_searches=top,
            search_trends=trends,
            zero_result_searches=zero,
            summary=summary,
        )

    @app.get("/categories/{content_type}", summary="Distinct categories of a variant")
    async def categories(content_type: str, request: Request) -> dict[str, Any]:
        return await _services(request).categories(content_type)

    @app.get("/tags/{content_type}", summary="Distinct tags of a variant")
    async def tags(content_type: str, request: Request) -> dict[str, Any]:
        return await _services(request).tags(content_type)

    @app.get(
        "/filter",
        response_model=FilterResponse,
        response_model_by_alias=True,
        summary="Structured listing of one variant",
    )
    @limiter.shared_limit(search_limit, scope=SEARCH_SCOPE)
    async def filter_items(
        request: Request,
        content_type: str | None = Query(default=None, alias="contentType"),
        categories: list[str] | None = Query(default=None),
        tags: list[str] | None = Query(default=None),
        date_from: str | None = Query(default=None, alias="dateFrom"),
        date_to: str | None = Query(default=None, alias="dateTo"),
        author: str | None = Query(default=None),
        sort_by: str = Query(default="createdAt", alias="sortBy"),
        sort_order: str = Query(default="desc", alias="sortOrder"),
        page: int = Query(default=1),
        limit: int = Query(default=10),
    ) -> FilterResponse:
        return await filter_content(
            _services(request).store,
            content_type,
            categories=categories,
            tags=tags,
            date_from=date_from,
            date_to=date_to,
            author=author,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            limit=limit,
        )

    @app.get("/health", response_model=HealthResponse, summary="Service health check")
    async def health(request: Request) -> HealthResponse:
        """Check the cache backend, analytics store and content store."""
        services = _services(request)
        started_at = getattr(request.app.state, "started_at", 0.0)
        uptime = time.time() - started_at if started_at else 0.0

        cache_status = "disabled"
        if services.cache.backend.name != "none":
            cache_ok = await services.cache.backend.ping()
            cache_status = "connected" if cache_ok else "unavailable"

        analytics_status = "connected" if await services.analytics.ping() else "unavailable"

        try:
            store_status = "reachable" if await services.store.ping() else "unreachable"
        except Exception as exc:  # noqa: BLE001
            logger.warning("health.store_unreachable", error=str(exc))
            store_status = "unreachable"

        overall = (
            "ok"
            if cache_status != "unavailable"
            and analytics_status == "connected"
            and store_status == "reachable"
            else "degraded"
        )
        return HealthResponse(
            status=overall,
            cache=cache_status,
            analytics=analytics_status,
            content_store=store_status,
            uptime_seconds=round(uptime, 1),
        )

    @app.get("/stats", response_model=StatsResponse, summary="Aggregated search statistics")
    async def stats(request: Request) -> StatsResponse:
        """Return cumulative search metrics from the analytics store counters."""
        try:
            data = await _services(request).analytics.get_counters()
        except Exception as exc:  # noqa: BLE001
            logger.warning("stats.store_error", error=str(exc))
            raise HTTPException(status_code=503, detail="Stats unavailable.") from exc

        searches_total = int(data.get("searches_total", 0))
        cache_hits = data.get("cache_hits", 0.0)
        cache_lookups = cache_hits + data.get("cache_misses", 0.0)
        total_latency_ms = data.get("total_latency_ms", 0.0)

        return StatsResponse(
            searches_total=searches_total,
            cache_hit_rate=round(cache_hits / cache_lookups, 4) if cache_lookups else 0.0,
            avg_latency_ms=round(total_latency_ms / searches_total, 1) if searches_total else 0.0,
            slow_searches=int(data.get("slow_searches", 0)),
            failed_variant_queries=int(data.get("failed_variant_queries", 0)),
        )


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def _register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    @app.exception_handler(ClientError)
    async def client_error_handler(request: Request, exc: ClientError) -> JSONResponse:
        logger.info("request.rejected", path=request.url.path, reason=str(exc))
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all error handler that logs and returns a structured response."""
        logger.error("unhandled_exception", path=str(request.url), error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error.", "error": str(exc)},
        )


app = create_app()


def run() -> None:
    """Console entry point: serve :data:`app` with uvicorn."""
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)
