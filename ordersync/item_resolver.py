"""Catalog key to NetSuite item resolution.

3DCart lines identify products by SKU; sales order lines need NetSuite
internal item IDs. Unknown SKUs are placed on the configured fallback item
so the order still syncs and can be corrected in NetSuite. Sales tax and
shipping can optionally be sent as lines on their own configured items.
"""

import logging
from typing import Dict, Optional

from .constants import SHIPPING_LINE_KEY, TAX_LINE_KEY
from .exceptions import ErrorKind, GatewayError, OrderValidationError
from .models import CartOrder
from .netsuite_client import NetSuiteClient

logger = logging.getLogger(__name__)


class ItemResolver:
    """Maps the catalog keys on an order to NetSuite item IDs."""

    def __init__(
        self,
        netsuite: NetSuiteClient,
        default_item_id: int,
        catalog_key_field: str = "ItemID",
        tax_item_id: Optional[int] = None,
        shipping_item_id: Optional[int] = None,
    ):
        """Initialize resolver.

        Args:
            netsuite: NetSuite API client
            default_item_id: Fallback item for unmatched catalog keys
            catalog_key_field: Line item field used as the catalog key
            tax_item_id: Item for a sales tax line (None sends no tax line)
            shipping_item_id: Item for a shipping line (None sends no shipping line)
        """
        self.netsuite = netsuite
        self.default_item_id = default_item_id
        self.catalog_key_field = catalog_key_field
        self.tax_item_id = tax_item_id
        self.shipping_item_id = shipping_item_id

    async def resolve(self, order: CartOrder) -> Dict[str, int]:
        """Look up the NetSuite item for every distinct catalog key.

        Args:
            order: 3DCart order

        Returns:
            Dict mapping catalog key to NetSuite internal item ID

        Raises:
            OrderValidationError: If a line has no catalog key, or an
                unmatched key needs the fallback item and it is unusable
        """
        item_ids: Dict[str, int] = {}
        unmatched = []

        for index, line in enumerate(order.items):
            key = line.catalog_key(self.catalog_key_field)
            if not key:
                raise OrderValidationError(
                    f"Order {order.order_id} line {index + 1} has no catalog key",
                    kind=ErrorKind.MAPPING,
                )
            if key in item_ids or key in unmatched:
                continue

            item_id = await self.netsuite.find_item_id_by_sku(key)
            if item_id is None:
                unmatched.append(key)
            else:
                item_ids[key] = item_id

        if unmatched:
            fallback = await self._usable_fallback()
            for key in unmatched:
                logger.warning(
                    f"Order {order.order_id}: no NetSuite item for {key}, "
                    f"using default item {fallback}"
                )
                item_ids[key] = fallback

        return item_ids

    async def resolve_charges(self, order: CartOrder) -> Dict[str, int]:
        """Get the items for the order's sales tax and shipping lines.

        A charge gets a line only when its item is configured, the order
        has a positive amount for it, and the item is usable. An unusable
        item drops the line with a warning rather than failing the order.

        Args:
            order: 3DCart order

        Returns:
            Dict mapping TAX_LINE_KEY / SHIPPING_LINE_KEY to item ID
        """
        charges = (
            (TAX_LINE_KEY, self.tax_item_id, order.sales_tax),
            (SHIPPING_LINE_KEY, self.shipping_item_id, order.shipping_cost),
        )

        charge_items: Dict[str, int] = {}
        for key, item_id, amount in charges:
            if not item_id or amount <= 0:
                continue
            try:
                validation = await self.netsuite.validate_item(item_id)
            except GatewayError as e:
                logger.warning(
                    f"Order {order.order_id}: could not validate {key} item {item_id}, "
                    f"skipping {key} line: {e}"
                )
                continue
            if not validation.usable:
                state = "inactive or not a sale item" if validation.exists else "missing"
                logger.warning(
                    f"Order {order.order_id}: {key} item {item_id} is {state}, "
                    f"skipping {key} line of {amount:.2f}"
                )
                continue
            charge_items[key] = item_id

        return charge_items

    async def _usable_fallback(self) -> int:
        validation = await self.netsuite.validate_item(self.default_item_id)
        if not validation.usable:
            state = "inactive or not a sale item" if validation.exists else "missing"
            raise OrderValidationError(
                f"Default item {self.default_item_id} is {state} in NetSuite",
                kind=ErrorKind.MAPPING,
            )
        return self.default_item_id
