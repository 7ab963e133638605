"""Bot verification against the reCAPTCHA siteverify endpoint."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class VerificationStatus(str, Enum):
    """Outcome of a verification attempt."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"


@dataclass
class VerificationResult:
    """Result of a bot verification attempt."""

    status: VerificationStatus
    score: float | None = None
    reasons: list[str] = field(default_factory=list)

    @property
    def header_value(self) -> str:
        """Value for the X-Recaptcha-Verified response header."""
        return {
            VerificationStatus.PASSED: "true",
            VerificationStatus.FAILED: "false",
            VerificationStatus.SKIPPED: "skipped",
            VerificationStatus.ERROR: "error",
        }[self.status]

    def headers(self) -> dict[str, str]:
        headers = {"X-Recaptcha-Verified": self.header_value}
        if self.score is not None:
            headers["X-Recaptcha-Score"] = f"{self.score:.2f}"
        return headers


SKIPPED = VerificationResult(status=VerificationStatus.SKIPPED)


class RecaptchaVerifier:
    """
    Verifies reCAPTCHA v3 tokens.

    The outcome is a signal, not a gate: callers decide whether a
    failed verification changes anything.
    """

    DEFAULT_TIMEOUT = httpx.Timeout(5.0)

    def __init__(
        self,
        secret_key: str | None,
        min_score: float = 0.5,
        verify_url: str = "https://www.google.com/recaptcha/api/siteverify",
        timeout: httpx.Timeout | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize verifier.

        Args:
            secret_key: Server-side reCAPTCHA secret (None disables verification)
            min_score: Minimum score considered human
            verify_url: Verification endpoint
            timeout: Request timeout configuration
            transport: Optional httpx transport (tests)
        """
        self._secret_key = secret_key
        self._min_score = min_score
        self._verify_url = verify_url
        self._timeout = timeout or self.DEFAULT_TIMEOUT
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def enabled(self) -> bool:
        return bool(self._secret_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def _interpret(self, data: dict[str, Any]) -> VerificationResult:
        reasons = list(data.get("error-codes", []))
        score = data.get("score")
        if score is not None:
            score = float(score)

        if not data.get("success"):
            return VerificationResult(VerificationStatus.FAILED, score, reasons)

        if score is not None and score < self._min_score:
            reasons.append(f"score below {self._min_score}")
            return VerificationResult(VerificationStatus.FAILED, score, reasons)

        return VerificationResult(VerificationStatus.PASSED, score, reasons)

    async def verify(self, token: str | None, remote_ip: str | None = None) -> VerificationResult:
        """
        Verify a token.

        Args:
            token: Token produced by the browser widget
            remote_ip: Client address forwarded to the provider

        Returns:
            VerificationResult; never raises
        """
        if not self.enabled or not token:
            return SKIPPED

        form = {"secret": self._secret_key, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            response = await self._get_client().post(self._verify_url, data=form)
            response.raise_for_status()
            result = self._interpret(response.json())
        except (httpx.HTTPError, ValueError, TypeError) as e:
            logger.warning(f"reCAPTCHA verification error: {e}")
            return VerificationResult(VerificationStatus.ERROR, reasons=[str(e)])

        logger.info(
            f"reCAPTCHA verification {result.status.value} "
            f"(score={result.score}, reasons={result.reasons})"
        )
        return result

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
