"""API routes for the rate-limited completion proxy."""

import json
import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, Response

from quotaproxy.http.client import CredentialMissingError, UpstreamError
from quotaproxy.identity import ClientIdentity
from quotaproxy.quota.limiter import (
    ClientReportedLimiter,
    RateLimitResult,
    describe_window,
    format_reset,
)
from quotaproxy.verification import SKIPPED, VerificationResult, VerificationStatus

logger = logging.getLogger(__name__)
router = APIRouter()

PROXY_PATH = "/api/openai-proxy"
STATUS_PATH = "/api/openai-proxy/rate-limit-status"
RECAPTCHA_TOKEN_HEADER = "X-Recaptcha-Token"

INVALID_REQUEST = "Invalid request. 'model' and 'messages' are required."
UNEXPECTED_ERROR = "An unexpected error occurred while contacting the upstream API."


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build the X-RateLimit-* headers for a result."""
    return {
        "X-RateLimit-Limit": str(result.total),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": format_reset(result.reset_time),
        "X-RateLimit-Used": str(result.used),
    }


def _now(request: Request) -> datetime:
    return request.app.state.clock()


async def _admit(request: Request, identity: ClientIdentity, now: datetime) -> RateLimitResult:
    """Run the configured admission policy for a request."""
    state = request.app.state
    limiter = state.limiter

    if identity.is_local and state.settings.local_dev_bypass:
        logger.info(f"Local development client {identity.ip}, bypassing rate limit")
        return limiter.bypass_result(now)

    if state.settings.limiter_mode == "client-reported":
        advisory: ClientReportedLimiter = state.advisory_limiter
        reported = advisory.parse_count(request.headers.get(advisory.HEADER))
        return advisory.evaluate(reported, now)

    return await limiter.check(identity.client_id, now)


def _validate_payload(raw: bytes) -> tuple[dict[str, Any] | None, str | None]:
    """
    Parse and validate a completion request body.

    Returns:
        (payload, None) when valid, (None, error message) otherwise
    """
    if not raw.strip():
        return None, INVALID_REQUEST

    try:
        payload = json.loads(raw)
    except ValueError:
        return None, "Invalid request. Body must be valid JSON."

    if not isinstance(payload, dict):
        return None, INVALID_REQUEST
    if not payload.get("model") or not isinstance(payload.get("messages"), list):
        return None, INVALID_REQUEST

    return payload, None


async def _verify(request: Request, identity: ClientIdentity) -> VerificationResult:
    """Run advisory bot verification when it applies."""
    state = request.app.state
    token = request.headers.get(RECAPTCHA_TOKEN_HEADER)

    if state.settings.is_development or identity.is_local:
        if token:
            logger.debug("Skipping reCAPTCHA verification for local/development request")
        return SKIPPED

    return await state.verifier.verify(token, identity.ip)


@router.get(STATUS_PATH)
async def rate_limit_status(request: Request) -> JSONResponse:
    """
    Report the caller's quota usage without consuming a unit.

    The snapshot is best-effort: concurrent writers may change the
    counter between this read and the caller's next request.
    """
    state = request.app.state
    identity = state.identity.resolve(request.headers)
    now = _now(request)

    if identity.is_local and state.settings.local_dev_bypass:
        result = state.limiter.bypass_result(now)
    elif state.settings.limiter_mode == "client-reported":
        advisory: ClientReportedLimiter = state.advisory_limiter
        reported = advisory.parse_count(request.headers.get(advisory.HEADER))
        result = advisory.snapshot(reported, now)
    else:
        result = await state.limiter.peek(identity.client_id, now)

    headers = rate_limit_headers(result)
    headers["Cache-Control"] = "no-cache, no-store, must-revalidate"

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "limit": result.total,
            "remaining": result.remaining,
            "reset": format_reset(result.reset_time),
            "used": result.used,
        },
        headers=headers,
    )


@router.api_route(PROXY_PATH, methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def openai_proxy(request: Request) -> Response:
    """
    Forward a chat completion request upstream, subject to the rate limit.

    The limiter runs before any other validation, so every call to
    this path is charged against the caller's quota.
    """
    state = request.app.state
    identity = state.identity.resolve(request.headers)
    now = _now(request)

    result = await _admit(request, identity, now)
    headers = rate_limit_headers(result)

    if not result.allowed:
        reset = format_reset(result.reset_time)
        headers["X-RateLimit-Used"] = str(result.total)
        headers["Retry-After"] = str(result.retry_after(now))
        window = describe_window(state.settings.rate_limit_window_seconds)
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={
                "error": "Rate limit exceeded",
                "message": (
                    f"You have exceeded the rate limit of {result.total} requests "
                    f"per {window}. Please try again after {reset}."
                ),
            },
            headers=headers,
        )

    if request.method != "POST":
        return JSONResponse(
            status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
            content={"error": "Method not allowed"},
            headers={**headers, "Allow": "POST"},
        )

    upstream = state.upstream
    if not upstream.has_credentials:
        logger.error("Upstream API key is not configured")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "API key not configured"},
            headers=headers,
        )

    payload, error = _validate_payload(await request.body())
    if payload is None:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": error},
            headers=headers,
        )

    verification = await _verify(request, identity)
    headers.update(verification.headers())

    if state.settings.recaptcha_enforce and verification.status == VerificationStatus.FAILED:
        logger.warning(f"Rejecting {identity.client_id}: bot verification failed")
        return JSONResponse(
            status_code=status.HTTP_403_FORBIDDEN,
            content={"error": "Bot verification failed"},
            headers=headers,
        )

    try:
        upstream_response = await upstream.create_chat_completion(payload)
    except (UpstreamError, CredentialMissingError) as e:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "message": str(e)},
            headers=headers,
        )
    except Exception:
        logger.exception(f"Unexpected error proxying request for {identity.client_id}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "message": UNEXPECTED_ERROR},
            headers=headers,
        )

    logger.info(
        f"Proxied completion for {identity.client_id} "
        f"(model={payload['model']}, remaining={result.remaining}/{result.total})"
    )
    return Response(
        content=upstream_response.content,
        status_code=status.HTTP_200_OK,
        media_type=upstream_response.media_type,
        headers=headers,
    )
