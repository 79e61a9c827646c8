"""3DCart REST API client.

Handles authentication, rate limiting, and the order operations the sync
needs: fetching one order, fetching orders by date range, and moving an
order to a new status once it reaches NetSuite.
"""

import asyncio
import logging
from datetime import date
from typing import List, Optional

import httpx

from .config import Settings
from .constants import cart_status_name
from .exceptions import CartAPIError, CartNotFoundError
from .models import CartOrder

logger = logging.getLogger(__name__)


class CartClient:
    """Async client for the 3DCart REST API."""

    PAGE_SIZE = 100

    def __init__(self, settings: Settings):
        """Initialize 3DCart client.

        Args:
            settings: Application settings with 3DCart credentials
        """
        self.settings = settings
        self.base_url = settings.cart_api_url
        self.rate_limit_delay = settings.cart_rate_limit_delay
        self.max_retries = settings.max_retries
        self._last_request_time: Optional[float] = None
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "CartClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            headers={
                "SecureURL": self.settings.cart_secure_url,
                "PrivateKey": self.settings.cart_private_key,
                "Token": self.settings.cart_token,
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            timeout=self.settings.request_timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _respect_rate_limit(self) -> None:
        """Ensure we don't exceed rate limits."""
        if self._last_request_time is not None:
            elapsed = asyncio.get_event_loop().time() - self._last_request_time
            if elapsed < self.rate_limit_delay:
                await asyncio.sleep(self.rate_limit_delay - elapsed)
        self._last_request_time = asyncio.get_event_loop().time()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
        retries: Optional[int] = None,
    ):
        """Make an API request with rate limiting and retries.

        Args:
            method: HTTP method (GET, PUT)
            endpoint: API endpoint (e.g., "/Orders/1001")
            params: Query parameters
            json_data: JSON body for PUT
            retries: Number of attempts (defaults to settings.max_retries)

        Returns:
            Decoded JSON response (list or dict), None for an empty body

        Raises:
            CartNotFoundError: On 404
            CartAPIError: On other API or transport errors
        """
        if not self._client:
            raise CartAPIError("Client not initialized. Use async context manager.")

        url = f"{self.base_url}{endpoint}"
        attempts = retries or self.max_retries

        for attempt in range(attempts):
            await self._respect_rate_limit()

            try:
                response = await self._client.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_data,
                )
            except httpx.TimeoutException:
                logger.warning(f"3DCart request timeout (attempt {attempt + 1}/{attempts})")
                if attempt < attempts - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise CartAPIError(f"Request timeout after {attempts} attempts")
            except httpx.RequestError as e:
                logger.warning(f"3DCart request error (attempt {attempt + 1}/{attempts}): {e}")
                if attempt < attempts - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise CartAPIError(f"Request failed: {e}")

            logger.debug(f"3DCart API call: {method} {endpoint} -> {response.status_code}")

            if response.is_success:
                if not response.content:
                    return None
                try:
                    return response.json()
                except ValueError:
                    raise CartAPIError(
                        f"3DCart returned a non-JSON body ({response.status_code}): {response.text[:200]}",
                        status_code=response.status_code,
                        body=response.text,
                    )
            elif response.status_code == 404:
                raise CartNotFoundError(f"Resource not found: {endpoint}")
            elif response.status_code == 429:
                retry_after = float(response.headers.get("Retry-After", "2.0"))
                logger.warning(f"3DCart rate limit hit, waiting {retry_after}s")
                await asyncio.sleep(retry_after)
                continue
            else:
                raise CartAPIError(
                    f"API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                    body=response.text,
                )

        raise CartAPIError(f"Rate limited after {attempts} attempts", status_code=429)

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def get_order(self, order_id: str) -> CartOrder:
        """Fetch a single order by ID.

        Args:
            order_id: 3DCart order ID

        Returns:
            CartOrder

        Raises:
            CartNotFoundError: If the store has no such order
            CartAPIError: On connectivity or API errors
        """
        data = await self._request("GET", f"/Orders/{order_id}")

        # 3DCart wraps single orders in a list
        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            raise CartNotFoundError(f"Order {order_id} not found in 3DCart")

        return CartOrder.model_validate(data)

    async def get_orders_by_date_range(
        self,
        start: date,
        end: date,
        status: Optional[int] = None,
    ) -> List[CartOrder]:
        """Fetch all orders placed within a date range.

        Args:
            start: First day (inclusive)
            end: Last day (inclusive)
            status: Only fetch orders with this OrderStatusID

        Returns:
            List of CartOrder objects
        """
        params = {
            "datestart": start.strftime("%m/%d/%Y") + " 01:00:00",
            "dateend": end.strftime("%m/%d/%Y") + " 23:59:00",
            "limit": self.PAGE_SIZE,
            "offset": 0,
        }
        if status is not None:
            params["orderstatus"] = status

        orders: List[CartOrder] = []
        while True:
            try:
                data = await self._request("GET", "/Orders", params=params)
            except CartNotFoundError:
                # 3DCart answers an empty result page with 404
                break

            if isinstance(data, dict):
                data = [data]
            page = [CartOrder.model_validate(item) for item in data or []]
            orders.extend(page)

            if len(page) < self.PAGE_SIZE:
                break
            params["offset"] += self.PAGE_SIZE

        logger.info(f"Fetched {len(orders)} orders from 3DCart ({start} to {end})")
        return orders

    async def update_order_status(
        self,
        order_id: str,
        status_id: int,
        comments: str = "",
    ) -> None:
        """Move an order to a new status.

        Args:
            order_id: 3DCart order ID
            status_id: New OrderStatusID
            comments: Internal comment to store on the order
        """
        body = {"OrderStatusID": status_id}
        if comments:
            body["InternalComments"] = comments

        await self._request("PUT", f"/Orders/{order_id}", json_data=body)
        logger.info(
            f"Updated 3DCart order {order_id} to status {status_id} ({cart_status_name(status_id)})"
        )

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def check_connection(self) -> bool:
        """Verify API connection is working.

        Returns:
            True if connection is successful
        """
        try:
            await self._request("GET", "/Orders", params={"limit": 1}, retries=1)
            logger.info("3DCart API connection successful")
            return True
        except CartNotFoundError:
            # An empty store still proves the credentials work
            logger.info("3DCart API connection successful")
            return True
        except Exception as e:
            logger.error(f"3DCart API connection failed: {e}")
            return False
