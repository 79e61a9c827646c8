"""Customer resolution for incoming orders.

Finds the NetSuite customer an order belongs to, creating it when the
email is unknown. Orders from a company account are attributed to a person
sub-customer of that company, and drop-ship orders to a person named after
the ship-to contact under the reseller's company.
"""

import logging
from typing import Optional, Tuple

from .addresses import AddressBookBuilder, CustomerInfo, truncate_field
from .constants import CUSTOMER_LIMITS, CUSTOMER_NAME_SEPARATOR, SECOND_EMAIL_FIELD
from .exceptions import CustomerResolutionError, OrderSyncError
from .models import CartOrder, NetSuiteCustomer, clean_email
from .netsuite_client import NetSuiteClient

logger = logging.getLogger(__name__)


def unique_customer_name(order_id: str, name: str) -> str:
    """Prefix a customer name with the order ID that created it.

    NetSuite enforces unique entity names, and repeat buyers often use the
    same company name on different accounts.
    """
    return f"{order_id}{CUSTOMER_NAME_SEPARATOR}{name}"


def dropship_customer_name(order: CartOrder) -> Tuple[str, str]:
    """Get the first and last name of a drop-ship order's end customer.

    The invoice reference is appended to the ship-to last name, so each
    drop-ship invoice gets its own person record.
    """
    shipment = order.first_shipment
    first_name = (shipment.first_name if shipment else None) or ""
    last_name = (shipment.last_name if shipment else None) or ""
    if order.invoice_reference:
        last_name = f"{last_name}{CUSTOMER_NAME_SEPARATOR}{order.invoice_reference}"
    return (
        truncate_field(first_name, CUSTOMER_LIMITS.first_name, "firstName") or "",
        truncate_field(last_name, CUSTOMER_LIMITS.last_name, "lastName") or "",
    )


class CustomerResolver:
    """Finds or creates the NetSuite customer for an order."""

    def __init__(
        self,
        netsuite: NetSuiteClient,
        address_builder: Optional[AddressBookBuilder] = None,
        subsidiary_id: int = 1,
    ):
        """Initialize resolver.

        Args:
            netsuite: NetSuite API client
            address_builder: Builder for new customers' addresses
            subsidiary_id: Subsidiary assigned to created customers
        """
        self.netsuite = netsuite
        self.address_builder = address_builder or AddressBookBuilder()
        self.subsidiary_id = subsidiary_id

    async def resolve(self, order: CartOrder) -> NetSuiteCustomer:
        """Get the customer a sales order for this order should use.

        Drop-ship orders get a person customer named after the ship-to
        contact (see _resolve_dropship). For every other order:

        1. No customer with the order email: create one with addresses.
        2. A person customer: use it unchanged.
        3. A company customer: use (or create) the person under it named
           after the billing contact, falling back to the company itself.

        Args:
            order: 3DCart order

        Returns:
            NetSuiteCustomer

        Raises:
            CustomerResolutionError: If the order has no email, or the
                customer cannot be looked up or created
        """
        if order.is_dropship:
            return await self._resolve_dropship(order)

        email = order.customer_email
        if not email:
            raise CustomerResolutionError(f"Order {order.order_id} has no customer email")

        try:
            existing = await self.netsuite.find_customer_by_email(email)
        except OrderSyncError as e:
            raise CustomerResolutionError(f"Customer lookup failed for {email}: {e}") from e

        if existing is None:
            return await self._create_customer(order, email)

        if existing.is_company:
            logger.info(f"Customer {existing.id} for {email} is a company, resolving person contact")
            return await self._resolve_person_under_company(existing, order, email)

        logger.info(f"Using existing customer {existing.id} found by email {email}")
        return existing

    async def _resolve_dropship(self, order: CartOrder) -> NetSuiteCustomer:
        """Resolve the end customer of a reseller's drop-ship order.

        The customer is a person named after the ship-to contact, with the
        invoice reference appended to the last name, and no email. It sits
        under the reseller's company customer when one matches the billing
        email or phone.
        """
        shipment = order.first_shipment
        if shipment is None or not (shipment.first_name or shipment.last_name):
            raise CustomerResolutionError(
                f"Drop-ship order {order.order_id} has no ship-to name to create a customer with"
            )

        parent = None
        try:
            parent = await self.netsuite.find_parent_company(order.billing_email, order.billing_phone)
        except OrderSyncError as e:
            logger.warning(f"Parent company lookup failed for order {order.order_id}: {e}")
        parent_id = parent.id if parent else None
        if parent:
            logger.info(f"Drop-ship order {order.order_id} belongs to company customer {parent.id}")

        first_name, last_name = dropship_customer_name(order)

        try:
            existing = await self.netsuite.find_dropship_customer(first_name, last_name, parent_id)
        except OrderSyncError as e:
            logger.warning(f"Drop-ship customer lookup failed for order {order.order_id}: {e}")
            existing = None
        if existing:
            logger.info(f"Using existing drop-ship customer {existing.id} for order {order.order_id}")
            return existing

        payload = self.build_dropship_payload(order)
        try:
            customer = await self.netsuite.create_customer(payload, parent_id=parent_id)
        except OrderSyncError as e:
            raise CustomerResolutionError(
                f"Drop-ship customer creation failed for order {order.order_id}: {e}"
            ) from e

        logger.info(f"Created drop-ship customer {customer.id} ({first_name} {last_name})")
        return customer

    async def _create_customer(self, order: CartOrder, email: str) -> NetSuiteCustomer:
        if not (order.billing_first_name or order.billing_last_name):
            raise CustomerResolutionError(
                f"Order {order.order_id} has no billing name to create a customer with"
            )

        payload = self.build_customer_payload(order, email)
        try:
            customer = await self.netsuite.create_customer(payload)
        except OrderSyncError as e:
            raise CustomerResolutionError(f"Customer creation failed for {email}: {e}") from e

        logger.info(f"Created customer {customer.id} ({payload.get('companyName')}) for {email}")
        return customer

    async def _resolve_person_under_company(
        self,
        company: NetSuiteCustomer,
        order: CartOrder,
        email: str,
    ) -> NetSuiteCustomer:
        entity_name = order.billing_full_name
        if not entity_name:
            logger.warning(
                f"Order {order.order_id} has no billing name, using company customer {company.id}"
            )
            return company

        try:
            person = await self.netsuite.find_child_customer(entity_name, company.id)
            if person:
                logger.info(f"Using person customer {person.id} under company {company.id}")
                return person

            payload = {
                "firstName": truncate_field(
                    order.billing_first_name, CUSTOMER_LIMITS.first_name, "firstName"
                ),
                "lastName": truncate_field(
                    order.billing_last_name, CUSTOMER_LIMITS.last_name, "lastName"
                ),
                "email": clean_email(email),
                "phone": truncate_field(order.billing_phone, CUSTOMER_LIMITS.phone, "phone"),
                "isPerson": True,
                "subsidiary": {"id": self.subsidiary_id},
            }
            payload = {k: v for k, v in payload.items() if v is not None}
            person = await self.netsuite.create_customer(payload, parent_id=company.id)
            logger.info(f"Created person customer {person.id} under company {company.id}")
            return person

        except (OrderSyncError, ValueError) as e:
            logger.warning(
                f"Could not resolve person under company {company.id} for order "
                f"{order.order_id}, using company customer: {e}"
            )
            return company

    def build_customer_payload(self, order: CartOrder, email: str) -> dict:
        """Build the create payload for a brand-new customer.

        Args:
            order: 3DCart order
            email: Customer email the lookup was made with

        Returns:
            Customer fields in NetSuite record format
        """
        info = CustomerInfo.from_order(order)
        name = order.billing_company or order.billing_full_name

        # A name-only customer is company-type so companyName is its entity name
        is_person = bool(order.billing_company)

        payload = {
            "companyName": truncate_field(
                unique_customer_name(order.order_id, name),
                CUSTOMER_LIMITS.company_name,
                "companyName",
            ),
            "firstName": truncate_field(info.first_name, CUSTOMER_LIMITS.first_name, "firstName"),
            "lastName": truncate_field(info.last_name, CUSTOMER_LIMITS.last_name, "lastName"),
            "email": clean_email(email),
            "phone": truncate_field(info.phone, CUSTOMER_LIMITS.phone, "phone"),
            "isPerson": is_person,
            "subsidiary": {"id": self.subsidiary_id},
        }

        # The billing email is kept when the customer was identified by a
        # different checkout address
        billing_email = clean_email(order.billing_email)
        if billing_email and billing_email.lower() != email.lower():
            payload[SECOND_EMAIL_FIELD] = billing_email

        payload.update(self._address_fields(info))
        return {k: v for k, v in payload.items() if v is not None}

    def build_dropship_payload(self, order: CartOrder) -> dict:
        """Build the create payload for a drop-ship end customer.

        Args:
            order: 3DCart drop-ship order

        Returns:
            Customer fields in NetSuite record format
        """
        first_name, last_name = dropship_customer_name(order)
        shipment = order.first_shipment
        info = CustomerInfo.from_order(order)

        payload = {
            "firstName": first_name,
            "lastName": last_name,
            "email": "",
            "phone": truncate_field(
                shipment.phone if shipment else None, CUSTOMER_LIMITS.phone, "phone"
            ),
            "isPerson": True,
            "subsidiary": {"id": self.subsidiary_id},
        }

        payload.update(self._address_fields(info))
        return {k: v for k, v in payload.items() if v is not None}

    def _address_fields(self, info: CustomerInfo) -> dict:
        fields = {}
        default_address = self.address_builder.build_default_address(info)
        if default_address:
            fields["defaultAddress"] = default_address
        address_book = self.address_builder.build_address_book(info)
        if address_book.entries:
            fields["addressbook"] = address_book.to_api_dict()
        return fields

    async def attach_addresses(self, customer: NetSuiteCustomer, order: CartOrder) -> bool:
        """Give an existing customer the order's address book.

        Never called while resolving; existing customers keep the addresses
        they have unless this is invoked explicitly.

        Args:
            customer: Customer to update
            order: Order supplying the addresses

        Returns:
            True if an update was sent
        """
        info = CustomerInfo.from_order(order)
        payload = {}

        default_address = self.address_builder.build_default_address(info)
        if default_address:
            payload["defaultAddress"] = default_address
        address_book = self.address_builder.build_address_book(info)
        if address_book.entries:
            payload["addressbook"] = address_book.to_api_dict()

        if not payload:
            logger.info(f"Order {order.order_id} has no usable address for customer {customer.id}")
            return False

        await self.netsuite.update_customer(customer.id, payload)
        logger.info(f"Attached {len(address_book.entries)} addresses to customer {customer.id}")
        return True
