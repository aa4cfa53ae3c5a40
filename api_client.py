"""
Docketwise API Client

HTTP client for the Docketwise API with:
- Bearer token authentication (per user, see auth.py)
- Exponential backoff on rate-limit responses (419/429)
- A "smart retry" variant for long-running backfills
- X-Pagination header parsing
"""
import json
import time
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import httpx

from config import (
    DOCKETWISE_API_URL,
    HTTP_TIMEOUT_SECONDS,
    MAX_RETRIES,
    PAGE_SIZE,
    RATE_LIMIT_DELAY_SECONDS,
    RATE_LIMIT_RETRY_DELAY_SECONDS,
    RATE_LIMIT_STATUSES,
)

logger = logging.getLogger(__name__)


class DocketwiseAPIError(Exception):
    """Custom exception for Docketwise API errors."""

    def __init__(self, message: str, status_code: int = None, response: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class RateLimitExceeded(DocketwiseAPIError):
    """Raised when the API keeps rate limiting after all retries."""


def is_rate_limited(response: httpx.Response) -> bool:
    return response.status_code in RATE_LIMIT_STATUSES


@dataclass
class Pagination:
    """Contents of the X-Pagination response header."""
    total: int
    next_page: Optional[int]
    previous_page: Optional[int]
    total_pages: int

    @classmethod
    def from_header(cls, value: Optional[str]) -> Optional["Pagination"]:
        if not value:
            return None
        try:
            data = json.loads(value)
        except (TypeError, ValueError):
            logger.warning("Unparseable X-Pagination header: %r", value)
            return None
        if not isinstance(data, dict):
            return None
        return cls(
            total=int(data.get("total") or 0),
            next_page=data.get("next_page"),
            previous_page=data.get("previous_page"),
            total_pages=int(data.get("total_pages") or 0),
        )


@dataclass
class Page:
    """One page of a list endpoint."""
    number: int
    items: List[dict]
    pagination: Optional[Pagination] = None

    @property
    def has_next(self) -> bool:
        # Without the header, a full page implies there may be more
        if self.pagination is not None:
            return bool(self.pagination.next_page)
        return len(self.items) >= PAGE_SIZE

    @property
    def total(self) -> int:
        if self.pagination is not None:
            return self.pagination.total
        return len(self.items)


class DocketwiseClient:
    """
    Docketwise API client for a single access token.

    Usage:
        client = DocketwiseClient(token)
        page = client.get_matters_page(1)
        detail = client.get_matter(page.items[0]["id"])

    The HTTP transport and the sleep function are injectable so that
    retry behaviour can be exercised without real waits.
    """

    def __init__(
        self,
        access_token: str,
        base_url: str = DOCKETWISE_API_URL,
        http_client: httpx.Client = None,
        sleep: Callable[[float], None] = time.sleep,
        request_delay: float = RATE_LIMIT_DELAY_SECONDS,
    ):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.request_delay = request_delay
        self._sleep = sleep
        self._client = http_client or httpx.Client(timeout=HTTP_TIMEOUT_SECONDS)

    def _get_headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _send(self, endpoint: str, params: dict = None) -> httpx.Response:
        url = f"{self.base_url}{endpoint}"
        try:
            return self._client.get(url, headers=self._get_headers(), params=params)
        except httpx.RequestError as e:
            raise DocketwiseAPIError(f"Request failed: {e}")

    def pause(self):
        """Wait the standard inter-call delay (120 requests/minute)."""
        if self.request_delay:
            self._sleep(self.request_delay)

    def fetch_with_retry(
        self,
        endpoint: str,
        params: dict = None,
        retries: int = MAX_RETRIES,
    ) -> httpx.Response:
        """
        GET an endpoint, backing off on rate-limit responses.

        On 419/429 waits 2^(attempt+1) seconds and tries again, up to
        `retries` retries. Any other response, successful or not, is
        returned as-is.

        Raises:
            RateLimitExceeded: still rate limited after the last retry
            DocketwiseAPIError: transport failure
        """
        for attempt in range(retries + 1):
            response = self._send(endpoint, params)
            if not is_rate_limited(response):
                return response
            if attempt < retries:
                backoff = 2 ** (attempt + 1)
                logger.warning(
                    "Rate limited (%d) on %s, waiting %ds before retry %d/%d",
                    response.status_code, endpoint, backoff, attempt + 1, retries,
                )
                self._sleep(backoff)

        raise RateLimitExceeded(
            f"Rate limited after {retries} retries: {endpoint}",
            status_code=response.status_code,
        )

    def fetch_with_smart_retry(
        self,
        endpoint: str,
        params: dict = None,
    ) -> Tuple[Optional[httpx.Response], bool]:
        """
        GET an endpoint with a single long wait on rate limiting.

        Returns (response, rate_limited). When the second attempt is
        still rate limited the response is None and rate_limited is True,
        so the caller can checkpoint and stop.
        """
        response = self._send(endpoint, params)
        if not is_rate_limited(response):
            return response, False

        logger.warning(
            "Rate limited (%d) on %s, waiting %ds before a single retry",
            response.status_code, endpoint, RATE_LIMIT_RETRY_DELAY_SECONDS,
        )
        self._sleep(RATE_LIMIT_RETRY_DELAY_SECONDS)

        response = self._send(endpoint, params)
        if is_rate_limited(response):
            logger.error("Still rate limited on %s after waiting", endpoint)
            return None, True
        return response, False

    @staticmethod
    def _json(response: httpx.Response, endpoint: str) -> Any:
        if not response.is_success:
            raise DocketwiseAPIError(
                f"Docketwise API error: {response.status_code} on {endpoint}",
                status_code=response.status_code,
                response=response.text,
            )
        return response.json() if response.content else None

    def get(self, endpoint: str, params: dict = None) -> Any:
        """GET an endpoint and decode its JSON body."""
        return self._json(self.fetch_with_retry(endpoint, params), endpoint)

    def get_page(self, endpoint: str, page: int = 1, per_page: int = PAGE_SIZE) -> Page:
        params = {"page": page, "per_page": min(per_page, PAGE_SIZE)}
        response = self.fetch_with_retry(endpoint, params)
        data = self._json(response, endpoint) or []
        return Page(
            number=page,
            items=list(data),
            pagination=Pagination.from_header(response.headers.get("X-Pagination")),
        )

    def iter_pages(
        self,
        endpoint: str,
        max_pages: int,
        per_page: int = PAGE_SIZE,
    ) -> Iterator[Page]:
        """
        Yield pages sequentially, pausing between requests.

        Stops at the first empty page, when the API signals no next
        page, or after `max_pages`.
        """
        for number in range(1, max_pages + 1):
            if number > 1:
                self.pause()
            page = self.get_page(endpoint, page=number, per_page=per_page)
            if not page.items:
                return
            logger.debug("Fetched %s page %d: %d records", endpoint, number, len(page.items))
            yield page
            if not page.has_next:
                return
        logger.warning("Stopped %s pagination at the %d page cap", endpoint, max_pages)

    # ========== Matters ==========

    def get_matters_page(self, page: int = 1, per_page: int = PAGE_SIZE) -> Page:
        return self.get_page("/matters", page=page, per_page=per_page)

    def get_matter(self, matter_id: int) -> dict:
        """Get the detail view of a single matter."""
        return self.get(f"/matters/{matter_id}")

    def get_matter_smart(self, matter_id: int) -> Tuple[Optional[dict], bool]:
        """
        Detail fetch for the backfill job.

        Returns (detail, rate_limited). A non-2xx response that is not a
        rate limit yields (None, False).
        """
        endpoint = f"/matters/{matter_id}"
        response, rate_limited = self.fetch_with_smart_retry(endpoint)
        if rate_limited:
            return None, True
        if not response.is_success:
            logger.error("Failed to fetch matter %s: %d", matter_id, response.status_code)
            return None, False
        return response.json(), False

    # ========== Reference data ==========

    def get_matter_statuses(self) -> List[dict]:
        return self.get("/matter_statuses") or []

    def get_matter_types(self) -> List[dict]:
        return self.get("/matter_types") or []

    def iter_users(self, max_pages: int) -> Iterator[Page]:
        return self.iter_pages("/users", max_pages)

    def iter_contacts(self, max_pages: int) -> Iterator[Page]:
        return self.iter_pages("/contacts", max_pages)

    def close(self):
        self._client.close()


# Per-user client instances
_client_instances: Dict[str, DocketwiseClient] = {}


def get_client(user_id: str) -> DocketwiseClient:
    """Get or create the API client for a user, rebuilding it when the token changes."""
    from auth import get_access_token

    token = get_access_token(user_id)
    client = _client_instances.get(user_id)
    if client is None or client.access_token != token:
        client = DocketwiseClient(token)
        _client_instances[user_id] = client
    return client
