"""Constants and field mappings for the 3DCart-NetSuite sync.

Values that must match records already present in NetSuite (external ID
prefix, custom body fields, customer name prefixing) live here so they are
changed in one place.
"""

from typing import NamedTuple


class FieldLimits(NamedTuple):
    """Maximum lengths NetSuite accepts for a record field group."""
    company_name: int
    first_name: int
    last_name: int
    email: int
    phone: int


# =============================================================================
# SALES ORDER IDENTIFICATION
# =============================================================================
# Every sales order created from 3DCart carries externalId = PREFIX + OrderID.
# The sync status check queries on this field, so changing the prefix makes
# previously synced orders look unsynced.

EXTERNAL_ID_PREFIX = "3DCART_"

SALES_ORDER_MEMO_TEMPLATE = "Order imported from 3DCart - Order #{order_id}"


def external_id_for(order_id: str) -> str:
    """Get the NetSuite external ID for a 3DCart order ID."""
    return f"{EXTERNAL_ID_PREFIX}{order_id}"


def order_id_from_external_id(external_id: str) -> str:
    """Reverse of external_id_for."""
    if external_id.startswith(EXTERNAL_ID_PREFIX):
        return external_id[len(EXTERNAL_ID_PREFIX):]
    return external_id


# =============================================================================
# SALES ORDER CUSTOM FIELDS
# =============================================================================

INTEGRATION_SOURCE_FIELD = "custbodycustbody4"
INTEGRATION_SOURCE_VALUE = "3DCart Integration"

SHIP_IMMEDIATE_FIELD = "custbodyship_immediate"
SHIP_IMMEDIATE_VALUE = 2

CUSTOMER_COMMENTS_FIELD = "custbody2"

SECOND_EMAIL_FIELD = "custentity2nd_email_address"

# Catalog keys of the optional order-level charge lines
TAX_LINE_KEY = "SalesTax"
SHIPPING_LINE_KEY = "ShippingCost"


# =============================================================================
# 3DCART ORDER CONVENTIONS
# =============================================================================

# Checkout question answers stored on the order
EMAIL_QUESTION_ID = 1
PO_NUMBER_QUESTION_ID = 2

# BillingPaymentMethod value marking third-party drop-ship orders
DROPSHIP_PAYMENT_METHOD = "Dropship to Customer"

DEFAULT_COUNTRY = "US"

# Separator between the order ID and the name on newly created customers
CUSTOMER_NAME_SEPARATOR = ": "

CART_ORDER_STATUSES = {
    1: "New",
    2: "Processing",
    3: "Partial",
    4: "Shipped",
    5: "Cancelled",
    6: "Not Completed",
    7: "Unpaid",
    8: "Backordered",
    9: "Pending Review",
    10: "Partially Shipped",
}

SYNC_SUCCESS_COMMENT = "Order successfully synced to NetSuite. NetSuite Order ID: {netsuite_id}"


def cart_status_name(status_id: int) -> str:
    """Get the display name for a 3DCart order status ID."""
    return CART_ORDER_STATUSES.get(status_id, "Unknown")


# =============================================================================
# NETSUITE FIELD LIMITS
# =============================================================================

CUSTOMER_LIMITS = FieldLimits(
    company_name=83,
    first_name=32,
    last_name=32,
    email=254,
    phone=22,
)

ADDRESS_COUNTRY_LIMIT = 2
ADDRESS_ZIP_LIMIT = 36
ADDRESS_LINE_LIMIT = 150   # addressee, addr1, addr2
ADDRESS_CITY_LIMIT = 50    # city, state

# o:errorCode values NetSuite returns when a record already exists
DUPLICATE_ERROR_CODES = frozenset({"DUP_RCRD", "DUP_ENTITY", "DUP_RCRD_LINK"})
