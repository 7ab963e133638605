"""FastAPI application for the completion proxy."""

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from quotaproxy import __version__
from quotaproxy.api.routes import router as proxy_router
from quotaproxy.config import Settings, get_settings
from quotaproxy.http.client import UpstreamClient
from quotaproxy.identity import ClientIdentityResolver
from quotaproxy.quota.limiter import ClientReportedLimiter, FixedWindowLimiter, utcnow
from quotaproxy.store import QuotaStore, create_quota_store
from quotaproxy.verification import RecaptchaVerifier

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events."""
    # Startup
    logger.info(
        f"Starting quota proxy ({app.state.limiter.store.name} store, "
        f"{app.state.settings.rate_limit} requests per "
        f"{app.state.settings.rate_limit_window_seconds}s)"
    )
    yield
    # Shutdown
    logger.info("Shutting down quota proxy...")
    await app.state.upstream.close()
    await app.state.verifier.close()
    await app.state.limiter.store.close()


def create_app(
    settings: Settings | None = None,
    store: QuotaStore | None = None,
    upstream: UpstreamClient | None = None,
    verifier: RecaptchaVerifier | None = None,
    clock: Callable[[], datetime] | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings override (defaults to environment settings)
        store: Quota store override (defaults to the configured backend)
        upstream: Upstream client override
        verifier: Bot verifier override
        clock: Time source for rate limit decisions
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Quota Proxy",
        description="Rate-limited proxy for chat completion requests",
        version=__version__,
        lifespan=lifespan,
    )

    store = store or create_quota_store(
        settings.quota_backend,
        path=settings.quota_file,
        url=settings.redis_url,
        store_name=settings.quota_store_name,
        prefix=settings.redis_prefix,
        socket_timeout=settings.store_timeout_seconds,
        socket_connect_timeout=settings.store_timeout_seconds,
    )
    app.state.settings = settings
    app.state.clock = clock or utcnow
    app.state.limiter = FixedWindowLimiter(
        store=store,
        limit=settings.rate_limit,
        window_seconds=settings.rate_limit_window_seconds,
        store_timeout_seconds=settings.store_timeout_seconds,
    )
    app.state.advisory_limiter = ClientReportedLimiter(
        limit=settings.rate_limit,
        window_seconds=settings.rate_limit_window_seconds,
    )
    app.state.identity = ClientIdentityResolver(
        strategy=settings.identity_strategy,
        salt=settings.identity_salt,
        local_dev_bypass=settings.local_dev_bypass,
    )
    app.state.upstream = upstream or UpstreamClient(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=httpx.Timeout(
            settings.upstream_timeout_read,
            connect=settings.upstream_timeout_connect,
        ),
    )
    app.state.verifier = verifier or RecaptchaVerifier(
        secret_key=settings.recaptcha_secret_key,
        min_score=settings.recaptcha_min_score,
        verify_url=settings.recaptcha_verify_url,
    )

    if settings.limiter_mode == "client-reported":
        logger.warning(
            "Using client-reported call counts for rate limiting; "
            "clients can bypass this limit by omitting the header"
        )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "X-RateLimit-Used",
            "Retry-After",
            "X-Recaptcha-Verified",
            "X-Recaptcha-Score",
        ],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_timing_header(request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        process_time = (time.perf_counter() - start_time) * 1000
        response.headers["X-Process-Time-Ms"] = f"{process_time:.2f}"
        return response

    app.include_router(proxy_router)

    # Health check
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": __version__,
            "quota_backend": app.state.limiter.store.name,
            "store": await app.state.limiter.store.health_check(),
        }

    return app
