"""FastAPI application for the mongo-notify gateway.

Endpoints:
  WS     /ws?_internalToken=&time=  Authenticated stream of MongoDB change events
  GET    /ws                        426, the path only speaks WebSocket
  POST   /diff?type=                Structural diff of {"old", "new"} as text
  GET    /health                    Health check (503 while the change feed is down)
  GET    /metrics                   Prometheus metrics
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import warnings
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Query, Request, Response, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pymongo import AsyncMongoClient

# Suppress slowapi's use of deprecated asyncio.iscoroutinefunction
warnings.filterwarnings(
    "ignore",
    message=r".*asyncio\.iscoroutinefunction.*",
    category=DeprecationWarning,
    module=r"slowapi\..*",
)
from slowapi import Limiter  # noqa: E402
from slowapi.errors import RateLimitExceeded  # noqa: E402

import mongo_notify  # noqa: E402
from mongo_notify.api.gatekeeper import UpgradeGatekeeper, client_address  # noqa: E402
from mongo_notify.api.registry import ConnectionRegistry  # noqa: E402
from mongo_notify.auth import TokenAuthenticator  # noqa: E402
from mongo_notify.config import Settings, settings  # noqa: E402
from mongo_notify.diff import DiffFormat, format_diff, generate_diff  # noqa: E402
from mongo_notify.diff.engine import MAX_DEPTH, nesting_depth  # noqa: E402
from mongo_notify.exceptions import (  # noqa: E402
    MalformedDiffRequest,
    MongoNotifyError,
    UpstreamSubscriptionFailed,
)
from mongo_notify.feed import ChangeFeedAdapter  # noqa: E402
from mongo_notify.logging_config import log_startup_info, setup_logging  # noqa: E402
from mongo_notify.ratelimit import ConnectionRateLimiter  # noqa: E402

logger = logging.getLogger("mongo_notify")
_audit_logger = logging.getLogger("mongo_notify.audit")

# ---------------------------------------------------------------------------
# HTTP rate limiter (/diff). WebSocket admission has its own limiter.
# ---------------------------------------------------------------------------
_rate_limit_enabled = settings.diff_rate_limit_enabled
limiter = Limiter(key_func=client_address, enabled=_rate_limit_enabled)
_DIFF_RATE_LIMIT = settings.diff_rate_limit if _rate_limit_enabled else "60/minute"

_STARTUP_TIME: float = 0.0


def _create_mongo_client(cfg: Settings) -> AsyncMongoClient:
    return AsyncMongoClient(cfg.mongodb_uri.get_secret_value(), tz_aware=True)


async def _prune_rate_records(rate_limiter: ConnectionRateLimiter, interval: float) -> None:
    """Drop expired per-address records once per window."""
    while True:
        await asyncio.sleep(interval)
        removed = rate_limiter.prune()
        if removed:
            logger.debug("Pruned %d expired rate-limit records", removed)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _STARTUP_TIME
    _STARTUP_TIME = time.monotonic()
    setup_logging()

    cfg = Settings()
    cfg.require_startup_values()

    registry = ConnectionRegistry()
    rate_limiter = ConnectionRateLimiter(
        max_attempts=cfg.connect_rate_max,
        window_seconds=cfg.connect_rate_window_seconds,
    )
    authenticator = TokenAuthenticator(cfg.secret_bytes, cfg.token_max_skew_seconds)
    gatekeeper = UpgradeGatekeeper(
        authenticator,
        rate_limiter,
        registry,
        channel_queue_size=cfg.channel_queue_size,
    )

    mongo_client = _create_mongo_client(cfg)
    change_feed = ChangeFeedAdapter(mongo_client, registry, database=cfg.change_feed_database)
    try:
        await change_feed.start()
    except UpstreamSubscriptionFailed as exc:
        logger.critical("Fatal: %s", exc.message)
        await mongo_client.close()
        raise

    app.state.registry = registry
    app.state.rate_limiter = rate_limiter
    app.state.gatekeeper = gatekeeper
    app.state.change_feed = change_feed

    pruner = asyncio.create_task(
        _prune_rate_records(rate_limiter, cfg.connect_rate_window_seconds),
        name="rate-limit-pruner",
    )

    log_startup_info(
        port=cfg.port,
        watch_scope=change_feed.watch_scope,
        connect_rate=f"{cfg.connect_rate_max}/{cfg.connect_rate_window_seconds:g}s",
        token_max_skew_seconds=cfg.token_max_skew_seconds,
    )
    yield
    logger.info("Shutting down: closing change stream and %d connections", len(registry))
    pruner.cancel()
    await asyncio.gather(pruner, return_exceptions=True)
    await change_feed.stop()
    await registry.close_all()
    await mongo_client.close()
    logger.info("Shutdown complete")


_OPENAPI_TAGS = [
    {"name": "Health", "description": "Health checks and version info"},
    {"name": "Gateway", "description": "WebSocket change-event stream"},
    {"name": "Diff", "description": "Structural JSON diff"},
    {"name": "Metrics", "description": "Prometheus metrics endpoint"},
]

app = FastAPI(
    title="mongo-notify",
    description="Real-time MongoDB change notifications over WebSockets, with a JSON diff service.",
    version=mongo_notify.__version__,
    lifespan=lifespan,
    openapi_tags=_OPENAPI_TAGS,
)

app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------
@app.exception_handler(MongoNotifyError)
async def mongo_notify_error_handler(request: Request, exc: MongoNotifyError) -> JSONResponse:
    """Centralized handler for custom mongo-notify exceptions."""
    request_id = getattr(request.state, "request_id", "unknown")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.error_type,
            "message": exc.message,
            "request_id": request_id,
        },
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After header on rate limit."""
    request_id = getattr(request.state, "request_id", "unknown")
    address = client_address(request)
    _audit_logger.warning(
        "Rate limit exceeded: %s %s from %s",
        request.method,
        request.url.path,
        address,
        extra={"reason": "rate_limit_exceeded", "client_address": address},
    )
    response = JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": str(exc.detail),
            "request_id": request_id,
        },
    )
    response.headers["Retry-After"] = "60"
    return response


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# GZip compression for responses > 500 bytes
app.add_middleware(GZipMiddleware, minimum_size=500)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next) -> Response:
    response: Response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


# Request logging (also sets request_id on state for the error handlers)
@app.middleware("http")
async def request_logging_middleware(request: Request, call_next) -> Response:
    request_id = str(uuid4())[:8]
    request.state.request_id = request_id
    start = time.monotonic()
    response: Response = await call_next(request)
    elapsed_ms = round((time.monotonic() - start) * 1000, 1)
    logger.info(
        "%s %s %s %.1fms [%s]",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request_id,
        extra={
            "request_id": request_id,
            "path": request.url.path,
            "method": request.method,
            "status_code": response.status_code,
            "duration_ms": elapsed_ms,
        },
    )
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Prometheus metrics
# ---------------------------------------------------------------------------
from prometheus_fastapi_instrumentator import Instrumentator  # noqa: E402

_instrumentator = Instrumentator(
    excluded_handlers=["/metrics"],
    should_respect_env_var=False,
)
_instrumentator.instrument(app).expose(app, endpoint="/metrics", tags=["Metrics"])


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"], summary="Health check")
async def health(request: Request):
    registry: ConnectionRegistry | None = getattr(request.app.state, "registry", None)
    change_feed: ChangeFeedAdapter | None = getattr(request.app.state, "change_feed", None)
    feed_running = change_feed is not None and change_feed.running
    uptime_s = time.monotonic() - _STARTUP_TIME if _STARTUP_TIME > 0 else 0
    return JSONResponse(
        status_code=200 if feed_running else 503,
        content={
            "status": "ok" if feed_running else "degraded",
            "version": mongo_notify.__version__,
            "uptime_seconds": round(uptime_s, 1),
            "connections": len(registry) if registry is not None else 0,
            "change_feed": "running" if feed_running else "stopped",
        },
    )


# ---------------------------------------------------------------------------
# WebSocket gateway
# ---------------------------------------------------------------------------


@app.get("/ws", tags=["Gateway"], summary="WebSocket endpoint (plain HTTP is refused)")
async def websocket_requires_upgrade():
    return PlainTextResponse("Use WebSocket", status_code=426)


@app.websocket("/ws")
async def websocket_gateway(websocket: WebSocket):
    gatekeeper: UpgradeGatekeeper = websocket.app.state.gatekeeper
    await gatekeeper.handle(websocket)


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant {name}")


def _parse_diff_body(raw: bytes) -> dict:
    try:
        body = json.loads(raw, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as exc:
        raise MalformedDiffRequest() from exc
    if not isinstance(body, dict):
        raise MalformedDiffRequest()
    if nesting_depth(body) > MAX_DEPTH:
        raise MalformedDiffRequest(f"Invalid input: nested deeper than {MAX_DEPTH} levels")
    return body


@app.post("/diff", tags=["Diff"], summary="Diff two JSON values", response_class=PlainTextResponse)
@limiter.limit(_DIFF_RATE_LIMIT)
async def diff(
    request: Request,
    style: str = Query(
        default="json",
        alias="type",
        description="Output format: json, git, plain, compact or summary",
    ),
):
    body = _parse_diff_body(await request.body())
    entries = generate_diff(body.get("old"), body.get("new"))
    return PlainTextResponse(format_diff(entries, DiffFormat.parse(style)))
