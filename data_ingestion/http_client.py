"""
============================================================================
Resilient HTTP Client - Bounded Exponential Backoff for Upstream Fetches
============================================================================

Reliability Level: L6 Critical (Hot Path)
Purpose: Single outbound path for every provider adapter

RETRY POLICY:
    An error is TRANSIENT iff there was no response at all (connect error,
    timeout, protocol failure) or the response status is 429 or >= 500.
    Everything else (4xx other than 429, or a 2xx body that is not JSON)
    is PERMANENT and fails immediately.

    On a transient error the request is retried up to max_retries more
    times. The delay before retry n (0-indexed) is:

        base_delay * backoff_multiplier ** n

    With the defaults (1.0s, x2, 3 retries) that is 1s, 2s, 4s.
    Once retries are exhausted the last TransientUpstreamError is raised.

    There is no circuit breaker: every call retries independently. Callers
    (adapters) treat exhaustion as "this provider yielded nothing this cycle".

Error Codes:
    - UPSTREAM-001: Transient failure (retrying)
    - UPSTREAM-002: Permanent failure (no retry)
    - UPSTREAM-003: Retries exhausted
============================================================================
"""

import asyncio
import logging
from typing import Optional, Dict, Any, List, Callable, Awaitable

import httpx

from app.observability.metrics import record_upstream_retry

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0

USER_AGENT = "TokenFeedAggregator/1.0"


class UpstreamErrorCode:
    """Upstream fetch error codes for audit logging."""
    TRANSIENT = "UPSTREAM-001"
    PERMANENT = "UPSTREAM-002"
    EXHAUSTED = "UPSTREAM-003"


# =============================================================================
# Exceptions
# =============================================================================

class UpstreamError(Exception):
    """
    Base exception for failed upstream requests.

    Attributes:
        url: Requested URL
        status_code: HTTP status, or None when no response was received
        transient: Whether a retry could plausibly succeed
    """

    def __init__(
        self,
        message: str,
        url: str,
        status_code: Optional[int] = None,
        transient: bool = False
    ):
        self.url = url
        self.status_code = status_code
        self.transient = transient
        super().__init__(message)


class TransientUpstreamError(UpstreamError):
    """Timeout, connection failure, HTTP 429 or 5xx. Retryable."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message, url, status_code=status_code, transient=True)


class PermanentUpstreamError(UpstreamError):
    """HTTP 4xx other than 429, or a non-JSON success body. Never retried."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message, url, status_code=status_code, transient=False)


def is_transient_status(status_code: int) -> bool:
    """Return True for response statuses worth retrying (429, 5xx)."""
    return status_code == 429 or status_code >= 500


# =============================================================================
# Backoff Schedule
# =============================================================================

class ExponentialBackoff:
    """
    Exponential backoff calculator.

    Stateless: the delay is a pure function of the attempt index, so the
    schedule can be inspected without issuing any request.
    """

    def __init__(
        self,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
        multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    ):
        """
        Initialize backoff calculator.

        Args:
            base_delay: Delay before the first retry, in seconds
            multiplier: Delay multiplier per attempt
        """
        if base_delay < 0:
            raise ValueError(f"base_delay must be non-negative, got: {base_delay}")
        if multiplier < 1:
            raise ValueError(f"multiplier must be >= 1, got: {multiplier}")

        self.base_delay = base_delay
        self.multiplier = multiplier

    def get_delay(self, attempt: int) -> float:
        """
        Delay before retry number ``attempt`` (0-indexed).

        Returns:
            Delay in seconds
        """
        return self.base_delay * (self.multiplier ** attempt)

    def schedule(self, max_retries: int) -> List[float]:
        """Full list of delays for a request that exhausts max_retries."""
        return [self.get_delay(attempt) for attempt in range(max_retries)]


# =============================================================================
# Resilient HTTP Client
# =============================================================================

class ResilientHttpClient:
    """
    Async HTTP client with bounded exponential-backoff retry.

    ============================================================================
    USAGE:
    ============================================================================
        client = ResilientHttpClient("https://api.dexscreener.com/latest/dex")
        body = await client.get("/search", params={"q": "bonk"})
        await client.aclose()
    ============================================================================

    The retry loop is an explicit bounded loop over attempt indices. The
    number of attempts issued by the last call is kept in ``last_attempts``.

    Reliability Level: L6 Critical
    Side Effects: Network I/O
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
        backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Provider base URL
            timeout: Per-request timeout in seconds
            max_retries: Additional attempts after a transient failure
            base_delay: Backoff base delay in seconds
            backoff_multiplier: Backoff multiplier
            transport: Optional httpx transport (tests inject MockTransport)
            sleep: Optional coroutine used between attempts
        """
        if max_retries < 0:
            raise ValueError(f"max_retries must be non-negative, got: {max_retries}")

        self.base_url = base_url
        self.max_retries = max_retries
        self.backoff = ExponentialBackoff(base_delay, backoff_multiplier)
        self.last_attempts = 0

        self._sleep = sleep or asyncio.sleep
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={
                "Content-Type": "application/json",
                "User-Agent": USER_AGENT,
            },
            transport=transport,
        )

        logger.debug(
            f"[HTTP-CLIENT] Initialized | "
            f"base_url={base_url} | timeout={timeout}s | "
            f"max_retries={max_retries} | "
            f"backoff={self.backoff.schedule(max_retries)}"
        )

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a JSON document with retry.

        Args:
            path: Path relative to base_url
            params: Optional query parameters

        Returns:
            Decoded JSON body

        Raises:
            PermanentUpstreamError: On 4xx other than 429 (single attempt)
                or a non-JSON body
            TransientUpstreamError: When every attempt failed transiently
        """
        url = f"{self.base_url}{path}"
        self.last_attempts = 0

        for attempt in range(self.max_retries + 1):
            self.last_attempts = attempt + 1

            try:
                response = await self._client.get(path, params=params)
                response.raise_for_status()
                return self._decode(response, url)

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if not is_transient_status(status):
                    logger.error(
                        f"{UpstreamErrorCode.PERMANENT} Request failed | "
                        f"url={url} | status={status} | attempt={attempt + 1}"
                    )
                    raise PermanentUpstreamError(
                        f"HTTP {status} from {url}", url, status_code=status
                    ) from e
                error = TransientUpstreamError(
                    f"HTTP {status} from {url}", url, status_code=status
                )

            except httpx.TransportError as e:
                error = TransientUpstreamError(
                    f"{type(e).__name__} requesting {url}: {e}", url
                )

            if attempt >= self.max_retries:
                logger.error(
                    f"{UpstreamErrorCode.EXHAUSTED} Request failed after retries | "
                    f"url={url} | status={error.status_code} | "
                    f"attempts={attempt + 1} | error={error}"
                )
                raise error

            delay = self.backoff.get_delay(attempt)
            logger.warning(
                f"{UpstreamErrorCode.TRANSIENT} Request failed, retrying | "
                f"url={url} | status={error.status_code} | "
                f"attempt={attempt + 1}/{self.max_retries} | backoff={delay:.1f}s"
            )
            record_upstream_retry(self._client.base_url.host)
            await self._sleep(delay)

        # Unreachable: the loop either returns or raises
        raise TransientUpstreamError(f"No attempt made for {url}", url)

    def _decode(self, response: httpx.Response, url: str) -> Any:
        """
        Decode a successful response body.

        Raises:
            PermanentUpstreamError: If the body is not JSON (e.g. an HTML
                challenge page); retrying would return the same page
        """
        try:
            return response.json()
        except ValueError as e:
            logger.error(
                f"{UpstreamErrorCode.PERMANENT} Response body is not JSON | "
                f"url={url} | status={response.status_code} | "
                f"content_type={response.headers.get('content-type')}"
            )
            raise PermanentUpstreamError(
                f"Non-JSON body from {url}", url, status_code=response.status_code
            ) from e

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()
