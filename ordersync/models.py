"""Pydantic data models for 3DCart and NetSuite entities.

These models provide validation and type safety for data moving
between 3DCart, NetSuite, and the local SQLite database.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, List, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .constants import (
    CUSTOMER_LIMITS,
    DROPSHIP_PAYMENT_METHOD,
    EMAIL_QUESTION_ID,
    PO_NUMBER_QUESTION_ID,
)
from .exceptions import ErrorKind

logger = logging.getLogger(__name__)

CART_DATETIME_FORMATS = (
    "%m/%d/%Y %I:%M:%S %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
)


def parse_cart_datetime(value):
    """Parse 3DCart datetime strings, handling various formats.

    The REST API returns ISO 8601 (2024-01-15T12:30:45) but older stores and
    webhooks send US-style dates (01/15/2024 12:30:45 PM).
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        cleaned = value.strip()
        if cleaned.endswith("Z"):
            cleaned = cleaned[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(cleaned)
        except ValueError:
            pass

        for fmt in CART_DATETIME_FORMATS:
            try:
                return datetime.strptime(cleaned, fmt)
            except ValueError:
                continue
    return None


def is_valid_email(value: Optional[str]) -> bool:
    """Check an address is syntactically valid (no DNS lookup)."""
    if not value:
        return False
    try:
        validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def clean_email(value: Optional[str]) -> str:
    """Return a valid email trimmed for NetSuite, or an empty string."""
    if not value:
        return ""
    value = value.strip()
    if len(value) > CUSTOMER_LIMITS.email or not is_valid_email(value):
        return ""
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _text(value):
    value = _blank_to_none(value)
    if isinstance(value, (int, float)):
        return str(value)
    return value.strip() if isinstance(value, str) else value


def _money(value) -> float:
    if value is None or value == "":
        return 0.0
    return float(value)


# =============================================================================
# 3DCART MODELS
# =============================================================================

class CartModel(BaseModel):
    """Base for models parsed from 3DCart's PascalCase payloads."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CartQuestion(CartModel):
    """Answer to a checkout question attached to an order."""
    question_id: Optional[int] = Field(default=None, alias="QuestionID")
    answer: Optional[str] = Field(default=None, alias="QuestionAnswer")


class CartShipment(CartModel):
    """Shipment block on a 3DCart order (one per ship-to address)."""
    first_name: Optional[str] = Field(default=None, alias="ShipmentFirstName")
    last_name: Optional[str] = Field(default=None, alias="ShipmentLastName")
    company: Optional[str] = Field(default=None, alias="ShipmentCompany")
    address: Optional[str] = Field(default=None, alias="ShipmentAddress")
    address2: Optional[str] = Field(default=None, alias="ShipmentAddress2")
    city: Optional[str] = Field(default=None, alias="ShipmentCity")
    state: Optional[str] = Field(default=None, alias="ShipmentState")
    zip_code: Optional[str] = Field(default=None, alias="ShipmentZipCode")
    country: Optional[str] = Field(default=None, alias="ShipmentCountry")
    phone: Optional[str] = Field(default=None, alias="ShipmentPhone")

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _text(value)

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.last_name]
        return " ".join(p.strip() for p in parts if p and p.strip())

    @property
    def has_street_address(self) -> bool:
        """Street, city and state are all present."""
        return bool(self.address and self.city and self.state)


class CartLineItem(CartModel):
    """Line item on a 3DCart order."""
    item_id: Optional[str] = Field(default=None, alias="ItemID")
    order_item_id: Optional[str] = Field(default=None, alias="OrderItemID")
    catalog_id: Optional[str] = Field(default=None, alias="CatalogID")
    description: Optional[str] = Field(default=None, alias="ItemDescription")
    quantity: float = Field(default=0.0, alias="ItemQuantity")
    unit_price: float = Field(
        default=0.0,
        validation_alias=AliasChoices("ItemUnitPrice", "ItemPrice", "unit_price"),
    )
    option_price: float = Field(default=0.0, alias="ItemOptionPrice")
    discount: float = Field(default=0.0, alias="ItemDiscount")

    @field_validator("item_id", "order_item_id", "catalog_id", mode="before")
    @classmethod
    def coerce_identifier(cls, value):
        value = _blank_to_none(value)
        return str(value).strip() if value is not None else None

    @field_validator("quantity", "unit_price", "option_price", "discount", mode="before")
    @classmethod
    def coerce_money(cls, value):
        return _money(value)

    @property
    def effective_price(self) -> float:
        """Unit price plus the per-unit option price."""
        return self.unit_price + self.option_price

    @property
    def line_total(self) -> float:
        return self.quantity * self.effective_price

    def catalog_key(self, preferred_field: str = "ItemID") -> Optional[str]:
        """Get the product key used to find the NetSuite item.

        Args:
            preferred_field: "ItemID" or "OrderItemID"; the other field is
                used when the preferred one is empty

        Returns:
            Catalog key or None if the line carries neither field
        """
        if preferred_field == "OrderItemID":
            return self.order_item_id or self.item_id
        return self.item_id or self.order_item_id


class CartOrder(CartModel):
    """3DCart order entity."""
    order_id: str = Field(alias="OrderID")
    order_date: Optional[datetime] = Field(default=None, alias="OrderDate")
    status_id: Optional[int] = Field(default=None, alias="OrderStatusID")
    customer_id: Optional[str] = Field(default=None, alias="CustomerID")

    billing_first_name: Optional[str] = Field(default=None, alias="BillingFirstName")
    billing_last_name: Optional[str] = Field(default=None, alias="BillingLastName")
    billing_company: Optional[str] = Field(default=None, alias="BillingCompany")
    billing_address: Optional[str] = Field(default=None, alias="BillingAddress")
    billing_address2: Optional[str] = Field(default=None, alias="BillingAddress2")
    billing_city: Optional[str] = Field(default=None, alias="BillingCity")
    billing_state: Optional[str] = Field(default=None, alias="BillingState")
    billing_zip_code: Optional[str] = Field(default=None, alias="BillingZipCode")
    billing_country: Optional[str] = Field(default=None, alias="BillingCountry")
    billing_phone: Optional[str] = Field(default=None, alias="BillingPhoneNumber")
    billing_email: Optional[str] = Field(default=None, alias="BillingEmail")
    payment_method: Optional[str] = Field(default=None, alias="BillingPaymentMethod")
    customer_comments: Optional[str] = Field(default=None, alias="CustomerComments")
    invoice_number_prefix: Optional[str] = Field(default=None, alias="InvoiceNumberPrefix")
    invoice_number: Optional[str] = Field(default=None, alias="InvoiceNumber")

    items: List[CartLineItem] = Field(default_factory=list, alias="OrderItemList")
    shipments: List[CartShipment] = Field(default_factory=list, alias="ShipmentList")
    questions: List[CartQuestion] = Field(default_factory=list, alias="QuestionList")

    # OrderAmount is the cart's final post-discount total
    order_amount: float = Field(
        default=0.0,
        validation_alias=AliasChoices("OrderAmount", "OrderTotal", "order_amount"),
    )
    discount: float = Field(
        default=0.0,
        validation_alias=AliasChoices("OrderDiscount", "DiscountAmount", "discount"),
    )
    sales_tax: float = Field(default=0.0, alias="SalesTax")
    shipping_cost: float = Field(default=0.0, alias="ShippingCost")

    @field_validator("order_id", "customer_id", "invoice_number", mode="before")
    @classmethod
    def coerce_identifier(cls, value):
        value = _blank_to_none(value)
        return str(value).strip() if value is not None else None

    @field_validator(
        "billing_first_name", "billing_last_name", "billing_company",
        "billing_address", "billing_address2", "billing_city", "billing_state",
        "billing_zip_code", "billing_country", "billing_phone", "billing_email",
        "payment_method", "customer_comments", "invoice_number_prefix",
        mode="before",
    )
    @classmethod
    def blank_to_none(cls, value):
        return _text(value)

    @field_validator("order_date", mode="before")
    @classmethod
    def parse_datetime(cls, value):
        """Parse datetime fields with custom handler."""
        return parse_cart_datetime(value)

    @field_validator("order_amount", "discount", "sales_tax", "shipping_cost", mode="before")
    @classmethod
    def coerce_money(cls, value):
        return _money(value)

    @field_validator("items", "shipments", "questions", mode="before")
    @classmethod
    def null_list(cls, value):
        return value or []

    @property
    def billing_full_name(self) -> str:
        parts = [self.billing_first_name, self.billing_last_name]
        return " ".join(p.strip() for p in parts if p and p.strip())

    @property
    def is_dropship(self) -> bool:
        return self.payment_method == DROPSHIP_PAYMENT_METHOD

    @property
    def first_shipment(self) -> Optional[CartShipment]:
        return self.shipments[0] if self.shipments else None

    @property
    def invoice_reference(self) -> str:
        """Invoice prefix and number as shown to the customer (e.g. "AB-1042")."""
        return f"{self.invoice_number_prefix or ''}{self.invoice_number or ''}"

    def question_answer(self, question_id: int) -> Optional[str]:
        """Get the answer to a checkout question, if it was asked."""
        for question in self.questions:
            if question.question_id == question_id:
                return question.answer
        return None

    @property
    def customer_email(self) -> Optional[str]:
        """Email identifying the customer.

        A valid address given in the checkout email question wins over the
        billing email, which for reseller orders is often the reseller's.
        """
        answer = self.question_answer(EMAIL_QUESTION_ID)
        if answer and is_valid_email(answer):
            return answer.strip()
        return self.billing_email.strip() if self.billing_email else None

    @property
    def po_number(self) -> Optional[str]:
        return self.question_answer(PO_NUMBER_QUESTION_ID)


# =============================================================================
# NETSUITE MODELS
# =============================================================================

class NetSuiteCustomer(BaseModel):
    """NetSuite customer record.

    Parsed from either SuiteQL rows (lower-case column names) or REST record
    responses (camelCase), so every field accepts both spellings.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    entity_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("entityId", "entityid", "entity_id")
    )
    first_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("firstName", "firstname", "first_name")
    )
    last_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("lastName", "lastname", "last_name")
    )
    email: Optional[str] = None
    company_name: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("companyName", "companyname", "company_name")
    )
    phone: Optional[str] = None
    is_person: bool = Field(
        default=True, validation_alias=AliasChoices("isPerson", "isperson", "is_person")
    )
    parent_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("parent", "parent_id")
    )
    default_address: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("defaultAddress", "defaultaddress", "default_address")
    )

    @field_validator("is_person", mode="before")
    @classmethod
    def parse_is_person(cls, value):
        """SuiteQL reports booleans as 'T'/'F'."""
        if isinstance(value, str):
            return value.strip().lower() in ("t", "true", "1", "yes")
        if value is None:
            logger.warning("Customer record has no isperson flag, treating it as a company")
            return False
        return bool(value)

    @field_validator("parent_id", mode="before")
    @classmethod
    def parse_parent(cls, value):
        """REST responses nest the parent as a reference object."""
        if isinstance(value, dict):
            value = value.get("id")
        value = _blank_to_none(value)
        return int(value) if value is not None else None

    @property
    def is_company(self) -> bool:
        return not self.is_person


class AddressBookAddress(BaseModel):
    """Address inside a NetSuite address book entry."""
    addressee: Optional[str] = None
    addr1: Optional[str] = None
    addr2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class AddressBookEntry(BaseModel):
    """NetSuite customer address book entry."""
    default_billing: bool = False
    default_shipping: bool = False
    address: AddressBookAddress

    def to_api_dict(self) -> dict:
        """Convert to dict for NetSuite API submission."""
        return {
            "defaultBilling": self.default_billing,
            "defaultShipping": self.default_shipping,
            "addressbookaddress": self.address.model_dump(exclude_none=True),
        }


class AddressBook(BaseModel):
    """Ordered address book for a customer (billing entry first)."""
    entries: List[AddressBookEntry] = Field(default_factory=list)

    @property
    def billing(self) -> Optional[AddressBookEntry]:
        return next((e for e in self.entries if e.default_billing), None)

    @property
    def shipping(self) -> Optional[AddressBookEntry]:
        return next((e for e in self.entries if e.default_shipping), None)

    def to_api_dict(self) -> dict:
        """Convert to dict for NetSuite API submission."""
        return {"items": [entry.to_api_dict() for entry in self.entries]}


class ItemValidation(BaseModel):
    """Result of checking a NetSuite item before it is put on an order."""
    item_id: int
    exists: bool
    usable: bool = False
    name: Optional[str] = None


class CreatedRecord(BaseModel):
    """Normalized result of a NetSuite record creation."""
    id: int
    transaction_number: Optional[str] = None


class NetSuiteSalesOrder(BaseModel):
    """NetSuite sales order as returned by the record API or SuiteQL."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: int
    tran_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("tranId", "tranid", "tran_id")
    )
    external_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("externalId", "externalid", "external_id")
    )
    status: Optional[str] = None
    tran_date: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("tranDate", "trandate", "tran_date")
    )
    entity_id: Optional[int] = Field(
        default=None, validation_alias=AliasChoices("entity", "entity_id")
    )

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, value):
        """The record API returns status as {"id": ..., "refName": ...}."""
        if isinstance(value, dict):
            return value.get("refName") or value.get("id")
        return value

    @field_validator("entity_id", mode="before")
    @classmethod
    def parse_entity(cls, value):
        if isinstance(value, dict):
            value = value.get("id")
        value = _blank_to_none(value)
        return int(value) if value is not None else None


# =============================================================================
# SALES ORDER PAYLOAD
# =============================================================================

@dataclass(frozen=True)
class ReconciledTotals:
    """Authoritative monetary values for one order.

    items_total is the sum of the mapped product lines;
    target_subtotal is what the cart says the goods cost after discount.
    """
    items_total: float
    target_subtotal: float
    discount: float
    tax: float
    shipping: float
    total: float

    @property
    def discrepancy(self) -> float:
        return round(self.items_total - self.target_subtotal, 2)

    def is_balanced(self, tolerance: float = 0.01) -> bool:
        """True when the line items alone reproduce the cart subtotal."""
        return abs(self.discrepancy) <= tolerance

    def discount_explains_discrepancy(self, tolerance: float = 0.01) -> bool:
        return abs(self.discrepancy - self.discount) <= tolerance


class SalesOrderLine(BaseModel):
    """Line item in a NetSuite sales order."""
    item_id: int
    catalog_key: str
    quantity: float
    rate: float
    taxable: bool = False

    @property
    def amount(self) -> float:
        return self.quantity * self.rate

    def to_api_dict(self) -> dict:
        return {
            "item": {"id": self.item_id},
            "quantity": self.quantity,
            "rate": self.rate,
            "istaxable": self.taxable,
        }


class ShippingAddress(BaseModel):
    """Order-level ship-to address."""
    addressee: Optional[str] = None
    addrphone: Optional[str] = None
    addr1: Optional[str] = None
    addr2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class SalesOrderPayload(BaseModel):
    """NetSuite sales order ready for creation."""
    entity_id: int
    subsidiary_id: int
    department_id: int
    external_id: str
    memo: str
    taxable: bool = False
    tran_date: Optional[date] = None
    other_ref_num: Optional[str] = None
    custom_fields: Dict[str, Any] = Field(default_factory=dict)
    shipping_address: Optional[ShippingAddress] = None
    lines: List[SalesOrderLine] = Field(default_factory=list)

    @property
    def total(self) -> float:
        """Order total NetSuite will compute from the lines sent."""
        return round(sum(line.amount for line in self.lines), 2)

    def to_api_dict(self) -> dict:
        """Convert to dict for NetSuite API submission."""
        data = {
            "entity": {"id": self.entity_id},
            "subsidiary": {"id": self.subsidiary_id},
            "department": {"id": self.department_id},
            "istaxable": self.taxable,
            "externalId": self.external_id,
            "memo": self.memo,
        }
        if self.tran_date:
            data["tranDate"] = self.tran_date.strftime("%Y-%m-%d")
        if self.other_ref_num is not None:
            data["otherrefnum"] = self.other_ref_num
        if self.shipping_address:
            data["shippingAddress"] = self.shipping_address.model_dump(exclude_none=True)
        data.update(self.custom_fields)
        data["item"] = {"items": [line.to_api_dict() for line in self.lines]}
        return data


# =============================================================================
# SYNC STATE MODELS
# =============================================================================

class SyncOutcome(str, Enum):
    """Terminal state of one order sync."""
    SUCCESS = "success"
    ALREADY_SYNCED = "already_synced"
    FAILED = "failed"


class SyncStatus(BaseModel):
    """Whether an order already exists in NetSuite."""
    order_id: str
    synced: bool = False
    netsuite_id: Optional[int] = None
    tran_id: Optional[str] = None
    status: Optional[str] = None
    sync_date: Optional[str] = None
    customer_id: Optional[int] = None
    last_error: Optional[str] = None


class SyncAttempt(BaseModel):
    """Persisted record of one sync attempt."""
    id: Optional[int] = None
    order_id: str
    outcome: SyncOutcome
    netsuite_id: Optional[int] = None
    tran_id: Optional[str] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    attempted_at: datetime


class SyncRunEntry(BaseModel):
    """Record of a bulk sync run."""
    run_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: str  # "running", "success", "partial", "failed"
    requested: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class SyncResult:
    """Result of syncing one order."""
    order_id: str
    outcome: SyncOutcome
    netsuite_id: Optional[int] = None
    tran_id: Optional[str] = None
    customer_id: Optional[int] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @property
    def success(self) -> bool:
        return self.outcome != SyncOutcome.FAILED

    @classmethod
    def failed(cls, order_id: str, error: str, kind: ErrorKind) -> "SyncResult":
        return cls(order_id=order_id, outcome=SyncOutcome.FAILED, error=error, error_kind=kind)


@dataclass
class BulkSyncResult:
    """Per-order results and counts for a bulk sync."""
    results: List[SyncResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.outcome == SyncOutcome.SUCCESS)

    @property
    def already_synced(self) -> int:
        return sum(1 for r in self.results if r.outcome == SyncOutcome.ALREADY_SYNCED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome == SyncOutcome.FAILED)

    @property
    def total_processed(self) -> int:
        return len(self.results)

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def errors(self) -> List[str]:
        return [f"Order {r.order_id}: {r.error}" for r in self.results if r.error]
