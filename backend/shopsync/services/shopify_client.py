"""Shopify REST Admin API client.

WHAT:
    Paginated collection fetcher for customers, products and orders with:
    - Cursor pagination via the `Link: <...page_info=...>; rel="next"` header
    - 429 handling: exponential backoff, retried until the page succeeds
    - Soft throttling from `X-Shopify-Shop-Api-Call-Limit` (e.g. "32/40")
    - A hard safety cap of 40 pages and 10,000 records per resource
    - An optional overall deadline per fetch

WHY:
    Encapsulates all Shopify network access for full sync. Rate limiting is
    transient and expected, so 429 never fails a sync on its own; every other
    error status propagates to the orchestrator untouched.

REFERENCES:
    - Shopify REST Admin API: https://shopify.dev/docs/api/admin-rest
    - Rate limits: https://shopify.dev/docs/api/usage/rate-limits
    - Pagination: https://shopify.dev/docs/api/usage/pagination-rest
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

# Default API version
DEFAULT_API_VERSION = "2024-07"

PAGE_SIZE = 250   # Shopify's maximum `limit`
MAX_PAGES = 40    # 40 x 250 = 10,000 records per resource
MAX_RECORDS = MAX_PAGES * PAGE_SIZE

# 429 backoff: 1s, 2s, 4s ... capped at 32s per wait
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 32.0

# Leaky-bucket usage above this ratio triggers a fixed pause before the next page
USAGE_SOFT_LIMIT = 0.8
USAGE_PAUSE_SECONDS = 1.0

CALL_LIMIT_HEADER = "X-Shopify-Shop-Api-Call-Limit"

RESOURCES = ("customers", "products", "orders")


class ShopifyAPIError(Exception):
    """Custom exception for Shopify API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class FetchDeadlineExceeded(ShopifyAPIError):
    """Overall fetch deadline elapsed (typically while backing off on 429)."""


def backoff_delay(attempt: int) -> float:
    """Delay before retry number `attempt` (0-based) of a throttled page."""
    return min(BACKOFF_BASE_SECONDS * (2 ** attempt), BACKOFF_MAX_SECONDS)


def parse_usage_ratio(header_value: Optional[str]) -> Optional[float]:
    """'32/40' -> 0.8. None when absent or malformed."""
    if not header_value:
        return None
    used, _, limit = header_value.partition("/")
    try:
        used_count, limit_count = float(used), float(limit)
    except ValueError:
        return None
    if limit_count <= 0:
        return None
    return used_count / limit_count


def next_page_info(response: httpx.Response) -> Optional[str]:
    """Cursor for the next page from the Link header, None on the last page."""
    next_link = response.links.get("next")
    if not next_link or not next_link.get("url"):
        return None
    return httpx.URL(next_link["url"]).params.get("page_info")


class ShopifyClient:
    """REST client for one shop.

    Usage:
        client = ShopifyClient(shop_domain="mystore.myshopify.com", access_token="shpat_xxx")
        orders = await client.fetch_all("orders")

    Tests inject `transport` (httpx.MockTransport) and `sleep` to run offline
    without real waits.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        deadline_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize Shopify client.

        Args:
            shop_domain: Shopify store domain (e.g., "mystore.myshopify.com")
            access_token: Shopify Admin API access token
            api_version: API version to use (default: 2024-07)
            deadline_seconds: Overall budget per `fetch_all` call, None = unbounded
        """
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = f"https://{shop_domain}/admin/api/{api_version}"
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self.deadline_seconds = deadline_seconds

        logger.info(f"[SHOPIFY_CLIENT] Initialized for {shop_domain} (API version: {api_version})")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=30.0,
            transport=self._transport,
            headers={
                "X-Shopify-Access-Token": self.access_token,
                "Accept": "application/json",
            },
        )

    # =========================================================================
    # PAGINATION
    # =========================================================================

    async def fetch_all(self, resource: str) -> List[Dict[str, Any]]:
        """Fetch every record of `resource` ("customers", "products", "orders").

        Returns:
            Raw Shopify JSON records, in API order

        Raises:
            ShopifyAPIError: non-429 error status or transport failure
            FetchDeadlineExceeded: deadline_seconds elapsed
        """
        if resource not in RESOURCES:
            raise ValueError(f"Unsupported Shopify resource: {resource}")

        started = self._clock()
        records: List[Dict[str, Any]] = []
        page_info: Optional[str] = None
        pages = 0

        async with self._client() as client:
            while True:
                if pages >= MAX_PAGES:
                    logger.warning(
                        f"[SHOPIFY_CLIENT] Safety cap hit for {resource} on {self.shop_domain}: "
                        f"{pages} pages / {len(records)} records, remaining data skipped"
                    )
                    break

                page, page_info = await self._fetch_page(client, resource, page_info, started)
                pages += 1
                records.extend(page)

                if len(records) > MAX_RECORDS:
                    logger.warning(
                        f"[SHOPIFY_CLIENT] Safety cap hit for {resource} on {self.shop_domain}: "
                        f"{len(records)} records after {pages} pages, truncated to {MAX_RECORDS}"
                    )
                    del records[MAX_RECORDS:]
                    break

                if not page_info:
                    break

        logger.info(
            f"[SHOPIFY_CLIENT] Fetched {len(records)} {resource} in {pages} page(s) from {self.shop_domain}"
        )
        return records

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        resource: str,
        page_info: Optional[str],
        started: float,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """GET one page, retrying the same page while throttled."""
        url = f"{self.base_url}/{resource}.json"
        # page_info requests may only carry `limit`; filters belong to the first page
        params: Dict[str, Any] = {"limit": PAGE_SIZE}
        if page_info:
            params["page_info"] = page_info

        attempt = 0
        while True:
            self._check_deadline(started, resource)
            try:
                response = await client.get(url, params=params)
            except httpx.RequestError as e:
                raise ShopifyAPIError(f"Request to {self.shop_domain} failed: {e}") from e

            if response.status_code == 429:
                delay = backoff_delay(attempt)
                retry_after = _retry_after_seconds(response)
                if retry_after is not None and retry_after > delay:
                    delay = retry_after
                logger.warning(
                    f"[SHOPIFY_CLIENT] Rate limited on {resource}, waiting {delay:.1f}s (attempt {attempt + 1})"
                )
                attempt += 1
                await self._sleep(delay)
                continue

            if response.status_code >= 400:
                raise ShopifyAPIError(
                    f"Shopify returned HTTP {response.status_code} for {resource}",
                    status_code=response.status_code,
                    errors=_error_details(response),
                )

            try:
                body = response.json()
            except ValueError as e:
                raise ShopifyAPIError(
                    f"Invalid JSON from Shopify for {resource}", status_code=response.status_code
                ) from e

            records = body.get(resource, []) if isinstance(body, dict) else []

            usage = parse_usage_ratio(response.headers.get(CALL_LIMIT_HEADER))
            if usage is not None and usage > USAGE_SOFT_LIMIT:
                logger.debug(f"[SHOPIFY_CLIENT] API usage at {usage:.0%}, pausing {USAGE_PAUSE_SECONDS}s")
                await self._sleep(USAGE_PAUSE_SECONDS)

            return records, next_page_info(response)

    def _check_deadline(self, started: float, resource: str) -> None:
        if self.deadline_seconds is None:
            return
        if self._clock() - started > self.deadline_seconds:
            raise FetchDeadlineExceeded(
                f"Fetching {resource} from {self.shop_domain} exceeded {self.deadline_seconds}s"
            )

    # =========================================================================
    # OAUTH
    # =========================================================================

    async def exchange_code_for_token(self, api_key: str, api_secret: str, code: str) -> str:
        """Exchange an OAuth authorization code for a permanent access token.

        Raises:
            ShopifyAPIError: non-2xx response or no access_token in the body
        """
        url = f"https://{self.shop_domain}/admin/oauth/access_token"
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            try:
                response = await client.post(
                    url,
                    json={"client_id": api_key, "client_secret": api_secret, "code": code},
                )
            except httpx.RequestError as e:
                raise ShopifyAPIError(f"Token exchange with {self.shop_domain} failed: {e}") from e

        if response.status_code >= 400:
            logger.error(f"[SHOPIFY_CLIENT] Token exchange failed for {self.shop_domain}: HTTP {response.status_code}")
            raise ShopifyAPIError("Token exchange failed", status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise ShopifyAPIError("Invalid JSON in token exchange response", status_code=response.status_code) from e

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise ShopifyAPIError("No access_token in token exchange response", status_code=response.status_code)

        logger.info(f"[SHOPIFY_CLIENT] Access token acquired for {self.shop_domain}")
        return token


def _retry_after_seconds(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _error_details(response: httpx.Response) -> List:
    try:
        body = response.json()
    except ValueError:
        return []
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors is None:
        return []
    return errors if isinstance(errors, list) else [errors]
