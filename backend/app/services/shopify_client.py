"""Shopify GraphQL Admin API client for order reconciliation.

WHAT:
    Reads a shop's orders through the Admin GraphQL API with:
    - Access-token authentication
    - Rate limiting (2 requests/second)
    - Cursor-based pagination
    - Retries for 429 responses, throttling and transport errors

WHY:
    Order-to-lead conversion only needs the buyer identity (email, phone),
    the total, the creation time and the checkout custom attributes that
    carry UTM tags. Orders are returned in the REST/webhook shape
    (`ShopifyOrderData`) so synced orders and webhook payloads go through
    the same conversion path.

REFERENCES:
    - Shopify GraphQL Admin API: https://shopify.dev/docs/api/admin-graphql
    - Rate limits: https://shopify.dev/docs/api/usage/rate-limits
    - Pagination: https://shopify.dev/docs/api/usage/pagination-graphql
    - app/services/shopify_conversion_service.py (consumer)
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx

from app.deps import get_settings

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-07"

# Shopify allows 2 requests/second for regular apps
RATE_LIMIT_DELAY = 0.5

ORDERS_QUERY = """
query GetOrders($cursor: String, $limit: Int!, $query: String) {
    orders(first: $limit, after: $cursor, query: $query, sortKey: CREATED_AT) {
        edges {
            node {
                id
                legacyResourceId
                name
                email
                phone
                createdAt
                displayFinancialStatus
                totalPriceSet {
                    shopMoney {
                        amount
                        currencyCode
                    }
                }
                customer {
                    id
                    email
                    firstName
                    lastName
                    phone
                }
                customAttributes {
                    key
                    value
                }
            }
        }
        pageInfo {
            hasNextPage
            endCursor
        }
    }
}
"""


class ShopifyAPIError(Exception):
    """Raised when the Admin API rejects a request or keeps failing."""

    def __init__(self, message: str, status_code: Optional[int] = None, errors: Optional[List] = None):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


class ShopifyClient:
    """GraphQL client for the Shopify Admin API.

    Usage:
        client = ShopifyClient(shop_domain="mystore.myshopify.com", access_token="shpat_xxx")
        orders, cursor = await client.get_orders()
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = f"https://{shop_domain}/admin/api/{api_version}/graphql.json"

        self._last_request_time: float = 0

        logger.info(f"[SHOPIFY_CLIENT] Initialized for {shop_domain} (API version: {api_version})")

    @classmethod
    def from_settings(cls) -> "ShopifyClient":
        """Build a client from SHOPIFY_* settings.

        Raises:
            ShopifyAPIError: shop domain or access token not configured
        """
        settings = get_settings()
        if not settings.SHOPIFY_SHOP_DOMAIN or not settings.SHOPIFY_ACCESS_TOKEN:
            raise ShopifyAPIError("SHOPIFY_SHOP_DOMAIN and SHOPIFY_ACCESS_TOKEN must be set")
        return cls(
            shop_domain=settings.SHOPIFY_SHOP_DOMAIN,
            access_token=settings.SHOPIFY_ACCESS_TOKEN,
            api_version=settings.SHOPIFY_API_VERSION,
        )

    async def _rate_limit(self) -> None:
        elapsed = time.monotonic() - self._last_request_time
        if elapsed < RATE_LIMIT_DELAY:
            wait_time = RATE_LIMIT_DELAY - elapsed
            logger.debug(f"[SHOPIFY_CLIENT] Rate limiting: waiting {wait_time:.3f}s")
            await asyncio.sleep(wait_time)
        self._last_request_time = time.monotonic()

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        retries: int = 3,
    ) -> Dict[str, Any]:
        """Run a GraphQL query and return its `data` object.

        Args:
            query: GraphQL query string
            variables: Query variables (optional)
            retries: Attempts for transient errors

        Raises:
            ShopifyAPIError: GraphQL errors, or still failing after all retries
        """
        await self._rate_limit()

        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        last_error = None

        for attempt in range(retries):
            try:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.post(self.base_url, json=payload, headers=headers)

                    if response.status_code == 429:
                        retry_after = float(response.headers.get("Retry-After", 2))
                        logger.warning(
                            f"[SHOPIFY_CLIENT] Rate limited, waiting {retry_after}s (attempt {attempt + 1}/{retries})"
                        )
                        last_error = ShopifyAPIError("Rate limited", status_code=429)
                        await asyncio.sleep(retry_after)
                        continue

                    response.raise_for_status()
                    data = response.json()

                    if "errors" in data:
                        errors = data["errors"]
                        error_messages = [e.get("message", str(e)) for e in errors]
                        logger.error(f"[SHOPIFY_CLIENT] GraphQL errors: {error_messages}")

                        if any("throttled" in msg.lower() for msg in error_messages):
                            logger.warning("[SHOPIFY_CLIENT] Throttled, waiting 2s")
                            last_error = ShopifyAPIError("Throttled", errors=errors)
                            await asyncio.sleep(2)
                            continue

                        raise ShopifyAPIError(
                            f"GraphQL errors: {', '.join(error_messages)}",
                            errors=errors,
                        )

                    return data.get("data", {})

            except httpx.HTTPStatusError as e:
                last_error = e
                logger.warning(
                    f"[SHOPIFY_CLIENT] HTTP error {e.response.status_code} (attempt {attempt + 1}/{retries})"
                )
                if e.response.status_code in (401, 403):
                    raise ShopifyAPIError(
                        f"Shopify rejected the access token ({e.response.status_code})",
                        status_code=e.response.status_code,
                    ) from e
                if attempt < retries - 1:
                    await asyncio.sleep(1 * (attempt + 1))

            except httpx.RequestError as e:
                last_error = e
                logger.warning(f"[SHOPIFY_CLIENT] Request error: {e} (attempt {attempt + 1}/{retries})")
                if attempt < retries - 1:
                    await asyncio.sleep(1 * (attempt + 1))

        raise ShopifyAPIError(f"Failed after {retries} attempts: {last_error}")

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def get_orders(
        self,
        since: Optional[datetime] = None,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Fetch one page of orders.

        Args:
            since: Only orders created after this datetime (UTC)
            cursor: Pagination cursor (None for first page)
            limit: Orders per page (max 250)

        Returns:
            Tuple of (orders in ShopifyOrderData shape, next_cursor or None on the last page)
        """
        query_filter = None
        if since:
            query_filter = f'created_at:>"{since.strftime("%Y-%m-%dT%H:%M:%SZ")}"'

        variables = {"cursor": cursor, "limit": limit, "query": query_filter}

        data = await self.execute(ORDERS_QUERY, variables)
        orders_data = data.get("orders") or {}
        edges = orders_data.get("edges") or []
        page_info = orders_data.get("pageInfo") or {}

        orders = [self._to_order_payload(edge.get("node") or {}) for edge in edges]

        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None

        logger.info(f"[SHOPIFY_CLIENT] Fetched {len(orders)} orders (has_next: {page_info.get('hasNextPage')})")
        return orders, next_cursor

    async def get_all_orders(self, since: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Fetch every order page by page."""
        all_orders: List[Dict[str, Any]] = []
        cursor = None

        while True:
            orders, cursor = await self.get_orders(since=since, cursor=cursor, limit=100)
            all_orders.extend(orders)
            if not cursor:
                break

        logger.info(f"[SHOPIFY_CLIENT] Fetched all {len(all_orders)} orders")
        return all_orders

    def _to_order_payload(self, node: Dict[str, Any]) -> Dict[str, Any]:
        """GraphQL order node -> REST/webhook order dict."""
        shop_money = (node.get("totalPriceSet") or {}).get("shopMoney") or {}
        customer = node.get("customer")

        return {
            "id": node.get("legacyResourceId") or node.get("id"),
            "name": node.get("name"),
            "email": node.get("email"),
            "created_at": node.get("createdAt"),
            "financial_status": self._normalize_status(node.get("displayFinancialStatus")),
            "total_price": shop_money.get("amount") or "0",
            "currency": shop_money.get("currencyCode"),
            "customer": {
                "id": customer.get("id"),
                "email": customer.get("email"),
                "first_name": customer.get("firstName"),
                "last_name": customer.get("lastName"),
                "phone": customer.get("phone") or node.get("phone"),
            } if customer else None,
            "note_attributes": [
                {"name": attr.get("key"), "value": attr.get("value")}
                for attr in (node.get("customAttributes") or [])
                if attr.get("key")
            ],
        }

    def _normalize_status(self, status: Optional[str]) -> Optional[str]:
        """PARTIALLY_PAID -> partially_paid."""
        if not status:
            return None
        return status.lower().replace(" ", "_")
