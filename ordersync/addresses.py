"""Customer address building.

Turns the billing and shipment data on a 3DCart order into the two address
representations a NetSuite customer carries: the free-text default address
and the structured address book.
"""

import logging
from typing import List, Optional

from pydantic import BaseModel

from .constants import (
    ADDRESS_CITY_LIMIT,
    ADDRESS_COUNTRY_LIMIT,
    ADDRESS_LINE_LIMIT,
    ADDRESS_ZIP_LIMIT,
    DEFAULT_COUNTRY,
)
from .models import (
    AddressBook,
    AddressBookAddress,
    AddressBookEntry,
    CartOrder,
    CartShipment,
)

logger = logging.getLogger(__name__)


def truncate_field(value: Optional[str], max_length: int, field_name: str) -> Optional[str]:
    """Trim a value to NetSuite's field limit, logging when it is cut.

    Args:
        value: Field value (None and blank values pass through as None)
        max_length: Maximum length NetSuite accepts
        field_name: Name used in the log message

    Returns:
        Stripped, possibly truncated value
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if len(value) > max_length:
        logger.warning(
            f"Field {field_name} truncated from {len(value)} to {max_length} characters"
        )
        value = value[:max_length]
    return value


def join_street(addr1: Optional[str], addr2: Optional[str]) -> Optional[str]:
    """Join street lines as "addr1, addr2", dropping absent parts."""
    parts = [p for p in (addr1, addr2) if p]
    return ", ".join(parts) or None


def join_locality(city: Optional[str], state: Optional[str], zip_code: Optional[str]) -> Optional[str]:
    """Join locality as "city, state zip", dropping absent parts."""
    state_zip = " ".join(p for p in (state, zip_code) if p)
    parts = [p for p in (city, state_zip) if p]
    return ", ".join(parts) or None


def dropship_addressee(shipment: CartShipment) -> Optional[str]:
    """Addressee for drop-ship labels, built from the ship-to address itself.

    Third-party fulfillment prints the label from the addressee field, which
    must not carry the reseller's name.
    """
    parts = [
        join_street(shipment.address, shipment.address2),
        join_locality(shipment.city, shipment.state, shipment.zip_code),
    ]
    return ", ".join(p for p in parts if p) or None


class CustomerInfo(BaseModel):
    """Billing contact and first shipment for one order."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address1: Optional[str] = None
    address2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    shipment: Optional[CartShipment] = None
    is_dropship: bool = False

    @classmethod
    def from_order(cls, order: CartOrder) -> "CustomerInfo":
        return cls(
            first_name=order.billing_first_name,
            last_name=order.billing_last_name,
            company=order.billing_company,
            email=order.customer_email,
            phone=order.billing_phone,
            address1=order.billing_address,
            address2=order.billing_address2,
            city=order.billing_city,
            state=order.billing_state,
            zip_code=order.billing_zip_code,
            country=order.billing_country,
            shipment=order.first_shipment,
            is_dropship=order.is_dropship,
        )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.last_name]
        return " ".join(p.strip() for p in parts if p and p.strip())


class AddressBookBuilder:
    """Builds NetSuite customer addresses from order contact data."""

    def __init__(self, default_country: str = DEFAULT_COUNTRY):
        self.default_country = default_country

    def build_default_address(self, info: CustomerInfo) -> str:
        """Build the customer's free-text default address.

        Lines, in order: full name, company, street, "city, state zip",
        country, phone. Absent values are left out entirely.

        Args:
            info: Customer contact data

        Returns:
            Newline-joined address (empty string when nothing is known)
        """
        lines: List[Optional[str]] = [
            info.full_name or None,
            info.company,
            join_street(info.address1, info.address2),
            join_locality(info.city, info.state, info.zip_code),
            info.country,
            info.phone,
        ]
        return "\n".join(line for line in lines if line)

    def build_address_book(self, info: CustomerInfo) -> AddressBook:
        """Build the structured address book.

        The billing entry comes first and is only emitted with a complete
        street address. The shipping entry comes from the first shipment.

        Args:
            info: Customer contact data

        Returns:
            AddressBook with zero, one or two entries
        """
        book = AddressBook()

        billing = self._build_billing_entry(info)
        if billing:
            book.entries.append(billing)

        shipping = self._build_shipping_entry(info)
        if shipping:
            book.entries.append(shipping)

        return book

    def _build_billing_entry(self, info: CustomerInfo) -> Optional[AddressBookEntry]:
        if not (info.address1 and info.city and info.state):
            logger.debug("Billing address incomplete, no billing address book entry")
            return None

        addressee = info.company or info.full_name or None
        return AddressBookEntry(
            default_billing=True,
            default_shipping=False,
            address=self._address(
                addressee=addressee,
                addr1=info.address1,
                addr2=info.address2,
                city=info.city,
                state=info.state,
                zip_code=info.zip_code,
                country=info.country,
                prefix="billing",
            ),
        )

    def _build_shipping_entry(self, info: CustomerInfo) -> Optional[AddressBookEntry]:
        shipment = info.shipment
        if shipment is None or not shipment.has_street_address:
            return None

        if info.is_dropship:
            addressee = dropship_addressee(shipment)
        else:
            addressee = shipment.company or shipment.full_name or None

        return AddressBookEntry(
            default_billing=False,
            default_shipping=True,
            address=self._address(
                addressee=addressee,
                addr1=shipment.address,
                addr2=shipment.address2,
                city=shipment.city,
                state=shipment.state,
                zip_code=shipment.zip_code,
                country=shipment.country,
                prefix="shipping",
            ),
        )

    def _address(
        self,
        addressee: Optional[str],
        addr1: Optional[str],
        addr2: Optional[str],
        city: Optional[str],
        state: Optional[str],
        zip_code: Optional[str],
        country: Optional[str],
        prefix: str,
    ) -> AddressBookAddress:
        return AddressBookAddress(
            addressee=truncate_field(addressee, ADDRESS_LINE_LIMIT, f"{prefix}_addressee"),
            addr1=truncate_field(addr1, ADDRESS_LINE_LIMIT, f"{prefix}_addr1"),
            addr2=truncate_field(addr2, ADDRESS_LINE_LIMIT, f"{prefix}_addr2"),
            city=truncate_field(city, ADDRESS_CITY_LIMIT, f"{prefix}_city"),
            state=truncate_field(state, ADDRESS_CITY_LIMIT, f"{prefix}_state"),
            zip=truncate_field(zip_code, ADDRESS_ZIP_LIMIT, f"{prefix}_zip"),
            country=truncate_field(
                country or self.default_country, ADDRESS_COUNTRY_LIMIT, f"{prefix}_country"
            ),
        )
