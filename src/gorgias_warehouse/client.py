"""
Gorgias API Client

Synchronous HTTP client with:
- Shared token bucket rate limiting
- Retry policy that separates throttling (429) from transient failures
- Connection pooling
- Request/response logging
- Cursor pagination helpers (collect-all and page-by-page)
"""

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, TypeVar

import httpx
import structlog
from pydantic import BaseModel
from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)
from tenacity.wait import wait_base

from gorgias_warehouse.models import (
    GorgiasCustomer,
    GorgiasListResponse,
    GorgiasMessage,
    GorgiasTag,
    GorgiasTicket,
    GorgiasUser,
)
from gorgias_warehouse.rate_limiter import TokenBucketRateLimiter

logger = structlog.get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# Upstream caps list endpoints at 100 records per page
MAX_PAGE_SIZE = 100
MAX_RETRY_AFTER_SECONDS = 60.0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class GorgiasAPIError(Exception):
    """Base exception for Gorgias API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            return f"{base} (HTTP {self.status_code})"
        return base


class GorgiasRateLimitError(GorgiasAPIError):
    """Raised when API rate limit is exceeded (429)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        response_body: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=status_code, response_body=response_body)
        self.retry_after = retry_after


class GorgiasAuthError(GorgiasAPIError):
    """Raised when authentication fails (401/403)."""
    pass


class GorgiasServerError(GorgiasAPIError):
    """Raised on server errors (5xx) - these are retryable."""
    pass


class GorgiasNotFoundError(GorgiasAPIError):
    """Raised when resource not found (404)."""
    pass


class GorgiasNotConfiguredError(GorgiasAPIError, ValueError):
    """Raised when the domain, email or API key is missing."""
    pass


# ---------------------------------------------------------------------------
# Retry Configuration
# ---------------------------------------------------------------------------

def is_throttle_error(exception: BaseException | None) -> bool:
    """Upstream signalled that we are over the rate limit."""
    if isinstance(exception, GorgiasRateLimitError):
        return True
    if isinstance(exception, httpx.HTTPStatusError):
        return exception.response.status_code == 429
    return False


def is_retryable_error(exception: BaseException) -> bool:
    """Determine if an exception should trigger a retry."""
    if is_throttle_error(exception):
        return True
    if isinstance(exception, GorgiasServerError):
        return True
    if isinstance(exception, httpx.TransportError):
        return True
    if isinstance(exception, httpx.TimeoutException):
        return True
    return False


class wait_for_error_kind(wait_base):
    """Exponential backoff when throttled, fixed delay for anything else."""

    def __init__(self, throttled: wait_base, transient: wait_base):
        self.throttled = throttled
        self.transient = transient

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if is_throttle_error(exc):
            delay = self.throttled(retry_state)
            retry_after = getattr(exc, "retry_after", None)
            if retry_after:
                delay = max(delay, min(retry_after, MAX_RETRY_AFTER_SECONDS))
            return delay
        return self.transient(retry_state)


def fetch_with_retry(
    operation: Callable[[], T],
    rate_limiter: TokenBucketRateLimiter | None = None,
    max_retries: int = 3,
    throttle_base_delay: float = 2.0,
    retry_delay: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    log: Any = None,
) -> T:
    """
    Run one API call behind the rate limiter with retries.

    Throttled calls back off exponentially (2s, 4s, 8s with the defaults),
    other transient failures wait `retry_delay`. After `max_retries`
    retries the last exception is re-raised unchanged; non-retryable
    errors propagate immediately.

    `max_retries` counts retries, not attempts: the default makes up to 4
    calls with the 2s, 4s, 8s waits between them. Pass `max_retries=2`
    for a hard cap of 3 calls.
    """
    retryer = Retrying(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_for_error_kind(
            throttled=wait_exponential(multiplier=throttle_base_delay, max=300),
            transient=wait_fixed(retry_delay),
        ),
        sleep=sleep,
        before_sleep=before_sleep_log(log or logger, logging.INFO),
        reraise=True,
    )

    def _attempt() -> T:
        if rate_limiter is not None:
            rate_limiter.acquire()
        return operation()

    return retryer(_attempt)


def _parse_error_message(response: httpx.Response) -> str:
    """
    Extract a readable message from a Gorgias error body.

    Gorgias returns {"message": ...}, {"error": "..."} or
    {"error": {"msg": ..., "data": {...}}} depending on the endpoint.
    """
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.reason_phrase}"

    if not isinstance(data, dict):
        return f"HTTP {response.status_code}"

    message = data.get("message")
    error = data.get("error")
    if not message and error:
        if isinstance(error, str):
            message = error
        elif isinstance(error, dict) and error.get("msg"):
            message = error["msg"]
            if error.get("data"):
                message += f": {error['data']}"
        else:
            message = str(error)
    return message or f"HTTP {response.status_code}"


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------

@dataclass
class Page(Generic[M]):
    """One page of a cursor-paginated list endpoint."""

    items: list[M]
    number: int
    cursor: str | None
    next_cursor: str | None


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class GorgiasClient:
    """
    Gorgias REST API client.

    All requests share one rate limiter. Pass `rate_limiter=` to share a
    limiter between several clients in the same process.

    Example:
        client = GorgiasClient(
            domain="yourshop",
            email="agent@yourshop.com",
            api_key="your-key",
        )

        with client:
            for page in client.iter_pages("/tickets", GorgiasTicket):
                print(len(page.items))
    """

    # Domain validation: alphanumeric and hyphens only
    DOMAIN_PATTERN = re.compile(r'^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$')

    def __init__(
        self,
        domain: str,
        email: str,
        api_key: str,
        requests_per_second: float = 2.0,
        timeout: float = 30.0,
        max_retries: int = 3,
        throttle_base_delay: float = 2.0,
        retry_delay: float = 0.5,
        rate_limiter: TokenBucketRateLimiter | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the client.

        Args:
            domain: Your Gorgias subdomain (validated for safety)
            email: Email of the API user
            api_key: REST API key
            requests_per_second: Steady-state request rate
            timeout: Request timeout in seconds
            max_retries: Retries after the first attempt for throttled/transient errors
            throttle_base_delay: First backoff delay after a 429, doubled each retry
            retry_delay: Fixed delay before retrying other transient errors
            rate_limiter: Shared limiter (a new one is created if omitted)
            transport: Custom httpx transport (used by tests)
            sleep: Sleep function used between retries
        """
        credentials = {"domain": domain, "email": email, "api_key": api_key}
        missing = [name for name, value in credentials.items() if not value]
        if missing:
            raise GorgiasNotConfiguredError(f"Gorgias credentials missing: {', '.join(missing)}")

        if not self.DOMAIN_PATTERN.match(domain):
            raise ValueError(
                f"Invalid domain '{domain}'. "
                "Must be alphanumeric with optional hyphens, 1-63 characters."
            )

        if len(api_key) < 10:
            raise ValueError("API key appears invalid (too short)")

        self.domain = domain
        self.email = email
        self.api_key = api_key
        self.base_url = f"https://{domain}.gorgias.com/api"
        self.timeout = timeout
        self.max_retries = max_retries
        self.throttle_base_delay = throttle_base_delay
        self.retry_delay = retry_delay

        self.rate_limiter = rate_limiter or TokenBucketRateLimiter(
            requests_per_second=requests_per_second
        )
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.Client | None = None

        # Request counters for observability
        self._request_count = 0
        self._error_count = 0

        self._log = logger.bind(domain=domain)

    def _build_http_client(self) -> httpx.Client:
        return httpx.Client(
            timeout=self.timeout,
            auth=(self.email, self.api_key),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
            headers={
                "User-Agent": "gorgias-warehouse/1.0",
                "Accept": "application/json",
            },
            transport=self._transport,
        )

    def __enter__(self) -> "GorgiasClient":
        """Initialize HTTP client with connection pooling."""
        if self._client is None:
            self._client = self._build_http_client()
        return self

    def __exit__(self, *args: Any) -> None:
        """Clean up HTTP client."""
        self.close()

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        """Get HTTP client, creating if needed."""
        if self._client is None:
            self._client = self._build_http_client()
        return self._client

    def _send(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None,
        log: Any,
    ) -> dict[str, Any]:
        """Single HTTP round-trip; raises a classified GorgiasAPIError on failure."""
        url = f"{self.base_url}{endpoint}"
        request_params = {k: v for k, v in (params or {}).items() if v is not None}

        self._request_count += 1
        request_id = self._request_count

        log.debug("API request", request_id=request_id)

        start_time = time.monotonic()
        response = self.client.request(method, url, params=request_params)
        elapsed = time.monotonic() - start_time

        log.debug(
            "API response",
            request_id=request_id,
            status_code=response.status_code,
            elapsed_ms=round(elapsed * 1000),
        )

        status = response.status_code

        if status == 429:
            self._error_count += 1
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            raise GorgiasRateLimitError(
                f"Rate limited. Retry after {retry_after or 'unknown'} seconds",
                status_code=429,
                response_body=response.text[:500],
                retry_after=retry_after,
            )

        if status in (401, 403):
            self._error_count += 1
            raise GorgiasAuthError(
                "Authentication failed - check your email and API key",
                status_code=status,
            )

        if status == 404:
            self._error_count += 1
            raise GorgiasNotFoundError(
                f"Resource not found: {endpoint}",
                status_code=404,
            )

        if status >= 500:
            self._error_count += 1
            raise GorgiasServerError(
                f"Server error {status} - will retry",
                status_code=status,
                response_body=response.text[:500],
            )

        if status >= 400:
            self._error_count += 1
            raise GorgiasAPIError(
                _parse_error_message(response),
                status_code=status,
                response_body=response.text[:500],
            )

        if status == 204 or not response.content:
            return {}

        try:
            return response.json()
        except ValueError as e:
            raise GorgiasAPIError(f"Invalid JSON response: {e}", status_code=status)

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a rate-limited, retrying request to the Gorgias API."""
        log = self._log.bind(endpoint=endpoint, method=method)
        return fetch_with_retry(
            lambda: self._send(method, endpoint, params, log),
            rate_limiter=self.rate_limiter,
            max_retries=self.max_retries,
            throttle_base_delay=self.throttle_base_delay,
            retry_delay=self.retry_delay,
            sleep=self._sleep,
            log=log,
        )

    def get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        return self._make_request("GET", endpoint, params)

    # -------------------------------------------------------------------------
    # Pagination
    # -------------------------------------------------------------------------

    def iter_pages(
        self,
        endpoint: str,
        model: type[M],
        limit: int = MAX_PAGE_SIZE,
        params: dict[str, Any] | None = None,
        cursor: str | None = None,
    ) -> Iterator[Page[M]]:
        """
        Walk a cursor-paginated list endpoint page by page.

        Stops when the response carries no `next_cursor`. Each page is
        yielded as soon as it is fetched so callers can write it before
        the next request goes out.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        log = self._log.bind(endpoint=endpoint)
        seen_cursors: set[str] = set()
        number = 0

        while True:
            number += 1
            request_params = dict(params or {})
            request_params["limit"] = limit
            if cursor:
                request_params["cursor"] = cursor

            response = GorgiasListResponse.model_validate(self.get(endpoint, request_params))
            items = [model.model_validate(record) for record in response.data]
            next_cursor = response.meta.next_cursor or None

            log.info("Fetched page", page=number, count=len(items), has_next=bool(next_cursor))

            yield Page(items=items, number=number, cursor=cursor, next_cursor=next_cursor)

            if not next_cursor:
                break

            if next_cursor in seen_cursors or next_cursor == cursor:
                log.warning("Pagination cursor repeated, stopping", cursor=next_cursor)
                break

            seen_cursors.add(next_cursor)
            cursor = next_cursor

    def collect_all(
        self,
        endpoint: str,
        model: type[M],
        limit: int = MAX_PAGE_SIZE,
        params: dict[str, Any] | None = None,
    ) -> list[M]:
        """Drain a list endpoint into memory. Only for bounded entity types."""
        records: list[M] = []
        for page in self.iter_pages(endpoint, model, limit=limit, params=params):
            records.extend(page.items)
        return records

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def list_users(self, limit: int = MAX_PAGE_SIZE) -> list[GorgiasUser]:
        return self.collect_all(
            "/users", GorgiasUser, limit=limit, params={"order_by": "created_datetime:asc"}
        )

    def list_tags(self, limit: int = MAX_PAGE_SIZE) -> list[GorgiasTag]:
        return self.collect_all(
            "/tags", GorgiasTag, limit=limit, params={"order_by": "created_datetime:asc"}
        )

    def iter_customer_pages(
        self,
        limit: int = MAX_PAGE_SIZE,
        order_by: str | None = None,
    ) -> Iterator[Page[GorgiasCustomer]]:
        params = {"order_by": order_by} if order_by else None
        return self.iter_pages("/customers", GorgiasCustomer, limit=limit, params=params)

    def iter_ticket_pages(
        self,
        limit: int = MAX_PAGE_SIZE,
        order_by: str | None = "created_datetime:asc",
    ) -> Iterator[Page[GorgiasTicket]]:
        params = {"order_by": order_by} if order_by else None
        return self.iter_pages("/tickets", GorgiasTicket, limit=limit, params=params)

    def get_ticket(self, ticket_id: int) -> GorgiasTicket:
        """Get a single ticket by ID."""
        data = self.get(f"/tickets/{ticket_id}")
        return GorgiasTicket.model_validate(data)

    def iter_ticket_message_pages(
        self,
        ticket_id: int,
        limit: int = MAX_PAGE_SIZE,
    ) -> Iterator[Page[GorgiasMessage]]:
        return self.iter_pages(f"/tickets/{ticket_id}/messages", GorgiasMessage, limit=limit)

    def get_ticket_messages(self, ticket_id: int) -> list[GorgiasMessage]:
        """Get all messages of a ticket."""
        return self.collect_all(f"/tickets/{ticket_id}/messages", GorgiasMessage)

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get client statistics for monitoring."""
        return {
            "domain": self.domain,
            "request_count": self._request_count,
            "error_count": self._error_count,
            "error_rate": round(self._error_count / max(1, self._request_count), 4),
            "rate_limiter": self.rate_limiter.get_stats(),
        }

    def health_check(self) -> dict[str, Any]:
        """Verify API connectivity and credentials."""
        try:
            data = self.get("/account")
            return {
                "status": "healthy",
                "account": data.get("domain", self.domain),
                "domain": self.domain,
            }
        except GorgiasAuthError:
            return {"status": "auth_error", "message": "Invalid email or API key"}
        except Exception as e:
            return {"status": "error", "message": str(e)}
