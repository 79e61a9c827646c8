"""Sales order mapping.

Builds the NetSuite sales order payload from a 3DCart order, the resolved
customer, and reconciled totals. Mapping is pure: every validation failure
is raised before anything is sent to NetSuite.
"""

import logging
from typing import Dict, List, Optional

from .addresses import dropship_addressee
from .config import Settings
from .constants import (
    CUSTOMER_COMMENTS_FIELD,
    DEFAULT_COUNTRY,
    INTEGRATION_SOURCE_FIELD,
    INTEGRATION_SOURCE_VALUE,
    SALES_ORDER_MEMO_TEMPLATE,
    SHIP_IMMEDIATE_FIELD,
    SHIP_IMMEDIATE_VALUE,
    SHIPPING_LINE_KEY,
    TAX_LINE_KEY,
    external_id_for,
)
from .exceptions import ErrorKind, OrderValidationError
from .models import (
    CartOrder,
    CartShipment,
    NetSuiteCustomer,
    ReconciledTotals,
    SalesOrderLine,
    SalesOrderPayload,
    ShippingAddress,
)

logger = logging.getLogger(__name__)


class OrderMapper:
    """Maps a cart order onto a NetSuite sales order payload."""

    def __init__(self, settings: Settings):
        self.subsidiary_id = settings.netsuite_subsidiary_id
        self.department_id = settings.netsuite_department_id
        self.taxable = settings.sales_order_taxable
        self.catalog_key_field = settings.catalog_key_field

    def map(
        self,
        order: CartOrder,
        customer: NetSuiteCustomer,
        totals: ReconciledTotals,
        item_ids: Optional[Dict[str, int]] = None,
        charge_item_ids: Optional[Dict[str, int]] = None,
    ) -> SalesOrderPayload:
        """Build the sales order payload.

        Args:
            order: 3DCart order
            customer: Resolved NetSuite customer (the order's entity)
            totals: Reconciled totals for the order
            item_ids: Catalog key to NetSuite item ID; without it catalog
                keys must already be numeric internal IDs
            charge_item_ids: Items for the sales tax and shipping lines,
                keyed by TAX_LINE_KEY and SHIPPING_LINE_KEY

        Returns:
            SalesOrderPayload

        Raises:
            OrderValidationError: With kind MAPPING when the entity, lines
                or shipping address are incomplete
        """
        self.validate(order, customer)

        lines = [
            self._map_line(order, index, line, item_ids)
            for index, line in enumerate(order.items)
        ]
        lines.extend(self._map_charges(order, totals, charge_item_ids or {}))

        custom_fields = {
            INTEGRATION_SOURCE_FIELD: INTEGRATION_SOURCE_VALUE,
            SHIP_IMMEDIATE_FIELD: SHIP_IMMEDIATE_VALUE,
        }
        if order.customer_comments:
            custom_fields[CUSTOMER_COMMENTS_FIELD] = order.customer_comments

        payload = SalesOrderPayload(
            entity_id=customer.id,
            subsidiary_id=self.subsidiary_id,
            department_id=self.department_id,
            external_id=external_id_for(order.order_id),
            memo=SALES_ORDER_MEMO_TEMPLATE.format(order_id=order.order_id),
            taxable=self.taxable,
            tran_date=order.order_date.date() if order.order_date else None,
            other_ref_num=order.po_number,
            custom_fields=custom_fields,
            shipping_address=self._map_shipping_address(order),
            lines=lines,
        )

        logger.debug(
            f"Mapped order {order.order_id}: {len(lines)} lines, total "
            f"{payload.total:.2f}, cart total {totals.total:.2f}"
        )
        return payload

    def validate(self, order: CartOrder, customer: Optional[NetSuiteCustomer]) -> None:
        """Check the order can be mapped without looking anything up.

        Raises:
            OrderValidationError: With kind MAPPING on the first problem found
        """
        if not customer or not customer.id:
            self._fail(order, "no customer entity to attach the sales order to")
        self.validate_order(order)

    def validate_order(self, order: CartOrder) -> None:
        """Check the parts of the order that do not depend on the customer.

        Run before customer resolution so a malformed order never creates
        a customer.

        Raises:
            OrderValidationError: With kind MAPPING on the first problem found
        """
        if not order.items:
            self._fail(order, "no line items")

        for index, line in enumerate(order.items):
            key = line.catalog_key(self.catalog_key_field)
            if not key:
                self._fail(order, f"line {index + 1} has no catalog key")
            if line.quantity <= 0:
                self._fail(order, f"line {index + 1} ({key}) has quantity {line.quantity}")

        shipment = order.first_shipment
        if shipment is not None and not shipment.has_street_address:
            self._fail(order, "shipment address is missing street, city or state")

    def _map_line(self, order: CartOrder, index: int, line, item_ids) -> SalesOrderLine:
        key = line.catalog_key(self.catalog_key_field)
        if item_ids is not None:
            item_id = item_ids.get(key)
        else:
            item_id = int(key) if key.isdigit() else None
        if not item_id:
            self._fail(order, f"line {index + 1} ({key}) has no NetSuite item")

        return SalesOrderLine(
            item_id=item_id,
            catalog_key=key,
            quantity=line.quantity,
            rate=line.effective_price,
            taxable=self.taxable,
        )

    def _map_charges(
        self,
        order: CartOrder,
        totals: ReconciledTotals,
        charge_item_ids: Dict[str, int],
    ) -> List[SalesOrderLine]:
        lines = []
        for key, amount in ((TAX_LINE_KEY, totals.tax), (SHIPPING_LINE_KEY, totals.shipping)):
            item_id = charge_item_ids.get(key)
            if not item_id or amount <= 0:
                continue
            lines.append(SalesOrderLine(
                item_id=item_id,
                catalog_key=key,
                quantity=1,
                rate=amount,
                taxable=False,
            ))
            logger.info(f"Order {order.order_id}: added {key} line of {amount:.2f} on item {item_id}")
        return lines

    def _map_shipping_address(self, order: CartOrder) -> Optional[ShippingAddress]:
        shipment = order.first_shipment
        if shipment is None:
            return None

        return ShippingAddress(
            addressee=self._shipping_addressee(order, shipment),
            addrphone=shipment.phone,
            addr1=shipment.address,
            addr2=shipment.address2,
            city=shipment.city,
            state=shipment.state,
            zip=shipment.zip_code,
            country=shipment.country or DEFAULT_COUNTRY,
        )

    @staticmethod
    def _shipping_addressee(order: CartOrder, shipment: CartShipment) -> Optional[str]:
        if order.is_dropship:
            logger.info(f"Order {order.order_id} is a drop-ship order, addressee from ship-to address")
            return dropship_addressee(shipment)
        return shipment.company or shipment.full_name or None

    @staticmethod
    def _fail(order: CartOrder, reason: str) -> None:
        raise OrderValidationError(
            f"Order {order.order_id} cannot be mapped: {reason}",
            kind=ErrorKind.MAPPING,
        )
