"""NetSuite REST API client.

Handles token-based authentication, rate limiting, and the record and
SuiteQL operations the order sync needs: customer search and creation,
item validation, and sales order creation and lookup.
"""

import asyncio
import logging
import re
from typing import Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from .config import Settings
from .constants import DUPLICATE_ERROR_CODES
from .exceptions import (
    DuplicateOrderError,
    NetSuiteAPIError,
    NetSuiteAuthError,
    NetSuiteRateLimitError,
    ResponseShapeError,
)
from .models import (
    CreatedRecord,
    ItemValidation,
    NetSuiteCustomer,
    NetSuiteSalesOrder,
)
from .netsuite_auth import NetSuiteOAuth1

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

CUSTOMER_COLUMNS = "id, entityid, firstname, lastname, email, companyname, phone, isperson, parent"

DUPLICATE_DETAIL_PATTERN = re.compile(
    r"already exists|duplicate|same external id", re.IGNORECASE
)


def suiteql_literal(value: str) -> str:
    """Quote a string for inclusion in a SuiteQL statement."""
    return "'" + str(value).replace("'", "''") + "'"


class NetSuiteClient:
    """Async client for the NetSuite REST record and SuiteQL APIs."""

    def __init__(self, settings: Settings):
        """Initialize NetSuite client.

        Args:
            settings: Application settings with NetSuite credentials
        """
        self.settings = settings
        self.record_url = settings.netsuite_record_url
        self.suiteql_url = settings.netsuite_suiteql_url
        self.rate_limit_delay = settings.netsuite_rate_limit_delay
        self.max_retries = settings.max_retries
        self._last_request_time: Optional[float] = None
        self._client: Optional[httpx.AsyncClient] = None
        self._auth = NetSuiteOAuth1(
            account_id=settings.netsuite_account_id,
            consumer_key=settings.netsuite_consumer_key,
            consumer_secret=settings.netsuite_consumer_secret,
            token_id=settings.netsuite_token_id,
            token_secret=settings.netsuite_token_secret,
            signature_method=settings.netsuite_signature_method,
        )

    async def __aenter__(self) -> "NetSuiteClient":
        """Async context manager entry."""
        self._client = httpx.AsyncClient(
            auth=self._auth,
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
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
        """Space out requests to stay under the account's concurrency limit."""
        if self._last_request_time is not None:
            elapsed = asyncio.get_event_loop().time() - self._last_request_time
            if elapsed < self.rate_limit_delay:
                await asyncio.sleep(self.rate_limit_delay - elapsed)
        self._last_request_time = asyncio.get_event_loop().time()

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
        headers: Optional[dict] = None,
        retries: Optional[int] = None,
        allow_not_found: bool = False,
    ) -> Optional[httpx.Response]:
        """Make an API request with rate limiting and retries.

        Record creation must pass retries=1: a timed-out POST may still have
        created the record, and resending it is the caller's decision.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            url: Full request URL
            params: Query parameters
            json_data: JSON body for POST/PATCH
            headers: Extra request headers
            retries: Number of attempts (defaults to settings.max_retries)
            allow_not_found: Return None on 404 instead of raising

        Returns:
            The successful response, or None for an allowed 404

        Raises:
            NetSuiteAPIError: On API errors
            NetSuiteAuthError: On authentication failures
            NetSuiteRateLimitError: On rate limit (after retries exhausted)
            DuplicateOrderError: When NetSuite reports the record exists
        """
        if not self._client:
            raise NetSuiteAPIError("Client not initialized. Use async context manager.")

        attempts = retries or self.max_retries

        for attempt in range(attempts):
            await self._respect_rate_limit()

            try:
                response = await self._client.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json_data,
                    headers=headers,
                )
            except httpx.TimeoutException:
                logger.warning(f"NetSuite request timeout (attempt {attempt + 1}/{attempts})")
                if attempt < attempts - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise NetSuiteAPIError(f"Request timeout after {attempts} attempts")
            except httpx.RequestError as e:
                logger.warning(f"NetSuite request error (attempt {attempt + 1}/{attempts}): {e}")
                if attempt < attempts - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise NetSuiteAPIError(f"Request failed: {e}")

            logger.debug(f"NetSuite API call: {method} {url} -> {response.status_code}")

            if response.is_success:
                return response
            if response.status_code == 404 and allow_not_found:
                return None
            if response.status_code in (401, 403):
                raise NetSuiteAuthError(
                    f"NetSuite rejected credentials ({response.status_code}): {response.text}",
                    status_code=response.status_code,
                    body=response.text,
                )
            if response.status_code == 429:
                retry_after = float(response.headers.get("Retry-After", "2.0"))
                if attempt < attempts - 1:
                    logger.warning(f"NetSuite rate limit hit, waiting {retry_after}s")
                    await asyncio.sleep(retry_after)
                    continue
                raise NetSuiteRateLimitError(retry_after)

            self._raise_api_error(response)

        raise NetSuiteRateLimitError()

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        """Decode a success response body that must be a JSON object.

        Raises:
            ResponseShapeError: On an empty, non-JSON or non-object body
        """
        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise ResponseShapeError(
                f"NetSuite returned an unreadable body ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    def _parse(self, response: httpx.Response, model: Type[ModelT]) -> ModelT:
        """Decode a record response into a model."""
        data = self._json(response)
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise ResponseShapeError(
                f"NetSuite returned a malformed {model.__name__}: {e}",
                status_code=response.status_code,
                body=response.text,
            )

    def _raise_api_error(self, response: httpx.Response) -> None:
        """Classify a NetSuite error response and raise it.

        NetSuite error bodies carry o:errorDetails entries with a detail
        message and an o:errorCode.
        """
        body = response.text
        details = []
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            details = data.get("o:errorDetails") or []
        if not isinstance(details, list):
            details = []

        messages = [d.get("detail", "") for d in details if isinstance(d, dict)]
        codes = {d.get("o:errorCode") for d in details if isinstance(d, dict)}
        summary = "; ".join(m for m in messages if m) or body

        if codes & DUPLICATE_ERROR_CODES or any(
            DUPLICATE_DETAIL_PATTERN.search(m) for m in messages
        ):
            raise DuplicateOrderError(
                f"Record already exists: {summary}",
                status_code=response.status_code,
                body=body,
            )

        raise NetSuiteAPIError(
            f"API error {response.status_code}: {summary}",
            status_code=response.status_code,
            body=body,
        )

    @staticmethod
    def _created_id(response: httpx.Response, record_type: str) -> Optional[int]:
        """Extract the new record ID from a create response.

        NetSuite answers a create either with 204 and the record URL in the
        Location header, or with a JSON body containing the ID.
        """
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict) and data.get("id"):
                return int(data["id"])

        location = response.headers.get("Location", "")
        match = re.search(rf"/{record_type}/(\d+)$", location, re.IGNORECASE)
        if match:
            return int(match.group(1))

        if location:
            logger.warning(f"Could not parse {record_type} ID from Location header: {location}")
        else:
            logger.warning(f"No {record_type} ID in body or Location header ({response.status_code})")
        return None

    # =========================================================================
    # SUITEQL
    # =========================================================================

    async def execute_suiteql(self, query: str, offset: int = 0, limit: int = 1000) -> dict:
        """Run a SuiteQL query.

        Args:
            query: SuiteQL statement
            offset: Row offset for paging
            limit: Maximum rows to return (max 1000)

        Returns:
            Response dict with "items", "hasMore" and "count"
        """
        response = await self._request(
            "POST",
            self.suiteql_url,
            params={"limit": min(limit, 1000), "offset": offset},
            json_data={"q": query},
            headers={"Prefer": "transient"},
        )
        data = self._json(response)
        if not isinstance(data.get("items", []), list):
            raise ResponseShapeError(
                "SuiteQL response has no items list",
                status_code=response.status_code,
                body=response.text,
            )
        logger.debug(f"SuiteQL returned {len(data.get('items', []))} rows: {query}")
        return data

    # =========================================================================
    # CUSTOMERS
    # =========================================================================

    async def find_customer_by_email(
        self,
        email: str,
        include_addresses: bool = False,
    ) -> Optional[NetSuiteCustomer]:
        """Search for a customer by email address.

        Args:
            email: Email address to search for
            include_addresses: Load the full record including default address

        Returns:
            NetSuiteCustomer or None if not found
        """
        query = (
            f"SELECT {CUSTOMER_COLUMNS} FROM customer "
            f"WHERE LOWER(email) = LOWER({suiteql_literal(email)}) ORDER BY id"
        )
        rows = (await self.execute_suiteql(query)).get("items", [])
        if not rows:
            return None
        if len(rows) > 1:
            logger.info(f"{len(rows)} NetSuite customers share email {email}, using {rows[0]['id']}")

        customer = NetSuiteCustomer.model_validate(rows[0])
        if include_addresses:
            return await self.get_customer(customer.id) or customer
        return customer

    async def find_child_customer(
        self,
        entity_name: str,
        parent_id: int,
    ) -> Optional[NetSuiteCustomer]:
        """Find a person customer by entity name under a parent company.

        Args:
            entity_name: Expected entity name ("First Last")
            parent_id: Internal ID of the parent company customer

        Returns:
            NetSuiteCustomer or None if not found
        """
        query = (
            f"SELECT {CUSTOMER_COLUMNS} FROM customer "
            f"WHERE LOWER(entityid) = LOWER({suiteql_literal(entity_name)}) "
            f"AND parent = {int(parent_id)} AND isperson = 'T'"
        )
        rows = (await self.execute_suiteql(query)).get("items", [])
        if not rows:
            return None
        return NetSuiteCustomer.model_validate(rows[0])

    async def find_parent_company(
        self,
        email: Optional[str],
        phone: Optional[str],
    ) -> Optional[NetSuiteCustomer]:
        """Find the company customer a reseller's orders are billed to.

        Args:
            email: Billing email on the order
            phone: Billing phone number on the order

        Returns:
            The lowest-ID matching company customer, or None
        """
        conditions = []
        if email:
            conditions.append(f"LOWER(email) = LOWER({suiteql_literal(email)})")
        if phone:
            conditions.append(f"phone = {suiteql_literal(phone)}")
        if not conditions:
            return None

        query = (
            f"SELECT {CUSTOMER_COLUMNS} FROM customer "
            f"WHERE ({' OR '.join(conditions)}) AND isperson = 'F' ORDER BY id"
        )
        rows = (await self.execute_suiteql(query)).get("items", [])
        if not rows:
            return None
        return NetSuiteCustomer.model_validate(rows[0])

    async def find_dropship_customer(
        self,
        first_name: str,
        last_name: str,
        parent_id: Optional[int] = None,
    ) -> Optional[NetSuiteCustomer]:
        """Find a drop-ship person customer by first and last name.

        Args:
            first_name: Ship-to first name
            last_name: Ship-to last name with the invoice suffix
            parent_id: Restrict to children of this company

        Returns:
            NetSuiteCustomer or None if not found
        """
        query = (
            f"SELECT {CUSTOMER_COLUMNS} FROM customer "
            f"WHERE LOWER(firstname) = LOWER({suiteql_literal(first_name)}) "
            f"AND LOWER(lastname) = LOWER({suiteql_literal(last_name)}) "
            f"AND isperson = 'T'"
        )
        if parent_id:
            query += f" AND parent = {int(parent_id)}"
        rows = (await self.execute_suiteql(query)).get("items", [])
        if not rows:
            return None
        return NetSuiteCustomer.model_validate(rows[0])

    async def get_customer(self, customer_id: int) -> Optional[NetSuiteCustomer]:
        """Fetch a single customer record by internal ID.

        Args:
            customer_id: NetSuite customer internal ID

        Returns:
            NetSuiteCustomer or None if not found
        """
        response = await self._request(
            "GET", f"{self.record_url}/customer/{customer_id}", allow_not_found=True
        )
        if response is None:
            return None
        return self._parse(response, NetSuiteCustomer)

    async def create_customer(
        self,
        payload: dict,
        parent_id: Optional[int] = None,
    ) -> NetSuiteCustomer:
        """Create a customer.

        Args:
            payload: Customer fields in NetSuite record format
            parent_id: Parent company internal ID for sub-customers

        Returns:
            The created NetSuiteCustomer

        Raises:
            ResponseShapeError: When the created ID cannot be recovered
        """
        body = dict(payload)
        if parent_id:
            body["parent"] = {"id": int(parent_id)}

        response = await self._request(
            "POST", f"{self.record_url}/customer", json_data=body, retries=1
        )
        customer_id = self._created_id(response, "customer")

        if customer_id is None:
            email = payload.get("email")
            found = await self._find_newest_customer_by_email(email) if email else None
            if found is None:
                raise ResponseShapeError(
                    "Customer created but NetSuite returned no customer ID",
                    status_code=response.status_code,
                    body=response.text,
                )
            logger.info(f"Recovered created customer {found.id} by email search")
            return found

        logger.info(
            f"Created NetSuite customer {customer_id}"
            + (f" under parent {parent_id}" if parent_id else "")
        )
        return NetSuiteCustomer(
            id=customer_id,
            first_name=payload.get("firstName"),
            last_name=payload.get("lastName"),
            email=payload.get("email") or None,
            company_name=payload.get("companyName"),
            phone=payload.get("phone"),
            is_person=payload.get("isPerson", True),
            parent_id=parent_id,
            default_address=payload.get("defaultAddress"),
        )

    async def update_customer(self, customer_id: int, payload: dict) -> None:
        """Update fields on an existing customer.

        Args:
            customer_id: NetSuite customer internal ID
            payload: Fields to change in NetSuite record format
        """
        await self._request(
            "PATCH", f"{self.record_url}/customer/{customer_id}", json_data=payload
        )
        logger.info(f"Updated NetSuite customer {customer_id}")

    async def _find_newest_customer_by_email(self, email: str) -> Optional[NetSuiteCustomer]:
        query = (
            f"SELECT {CUSTOMER_COLUMNS} FROM customer "
            f"WHERE LOWER(email) = LOWER({suiteql_literal(email)}) ORDER BY id DESC"
        )
        rows = (await self.execute_suiteql(query, limit=1)).get("items", [])
        return NetSuiteCustomer.model_validate(rows[0]) if rows else None

    # =========================================================================
    # ITEMS
    # =========================================================================

    async def validate_item(self, item_id: int) -> ItemValidation:
        """Check an item exists and can be sold.

        Args:
            item_id: NetSuite item internal ID

        Returns:
            ItemValidation (usable = active and a sale item)
        """
        response = await self._request(
            "GET", f"{self.record_url}/item/{item_id}", allow_not_found=True
        )
        if response is None:
            return ItemValidation(item_id=item_id, exists=False)

        data = self._json(response)
        inactive = data.get("isInactive", data.get("isinactive", False))
        sale_item = data.get("isSaleItem", data.get("issaleitem", False))
        return ItemValidation(
            item_id=item_id,
            exists=True,
            usable=not inactive and bool(sale_item),
            name=data.get("itemId") or data.get("itemid"),
        )

    async def find_item_id_by_sku(self, sku: str) -> Optional[int]:
        """Find an active item's internal ID by its item name/number.

        Args:
            sku: Item name/number (itemid) to match exactly

        Returns:
            Internal ID or None if no active item matches
        """
        query = (
            f"SELECT id, itemid, isinactive FROM item "
            f"WHERE itemid = {suiteql_literal(sku)} AND isinactive = 'F'"
        )
        rows = (await self.execute_suiteql(query)).get("items", [])
        if not rows:
            return None
        return int(rows[0]["id"])

    # =========================================================================
    # SALES ORDERS
    # =========================================================================

    async def create_sales_order(self, payload: dict) -> CreatedRecord:
        """Create a sales order.

        Args:
            payload: Sales order in NetSuite record format

        Returns:
            CreatedRecord with the internal ID and, when available, tranId

        Raises:
            DuplicateOrderError: When the external ID is already used
            ResponseShapeError: When the created ID cannot be recovered
        """
        response = await self._request(
            "POST", f"{self.record_url}/salesOrder", json_data=payload, retries=1
        )
        order_id = self._created_id(response, "salesOrder")
        if order_id is None:
            raise ResponseShapeError(
                "Sales order created but NetSuite returned no order ID",
                status_code=response.status_code,
                body=response.text,
            )

        tran_id = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None
            if isinstance(data, dict):
                tran_id = data.get("tranId")

        if tran_id is None:
            try:
                created = await self.get_sales_order_by_id(order_id)
                tran_id = created.tran_id if created else None
            except (NetSuiteAPIError, ResponseShapeError) as e:
                logger.warning(f"Could not read back tranId for sales order {order_id}: {e}")

        logger.info(f"Created NetSuite sales order {order_id} ({tran_id or 'no tranId'})")
        return CreatedRecord(id=order_id, transaction_number=tran_id)

    async def get_sales_order_by_id(self, order_id: int) -> Optional[NetSuiteSalesOrder]:
        """Fetch a sales order by internal ID.

        Args:
            order_id: NetSuite sales order internal ID

        Returns:
            NetSuiteSalesOrder or None if not found
        """
        response = await self._request(
            "GET", f"{self.record_url}/salesOrder/{order_id}", allow_not_found=True
        )
        if response is None:
            return None
        return self._parse(response, NetSuiteSalesOrder)

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def check_connection(self) -> bool:
        """Verify API connection is working.

        Returns:
            True if connection is successful
        """
        try:
            await self.execute_suiteql("SELECT id FROM subsidiary", limit=1)
            logger.info("NetSuite API connection successful")
            return True
        except Exception as e:
            logger.error(f"NetSuite API connection failed: {e}")
            return False
