"""Error taxonomy for the order sync.

Every failure the sync can report maps to one ErrorKind, so callers branch
on the kind instead of parsing messages.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Classification attached to a failed sync attempt."""
    NOT_FOUND = "not_found"
    FETCH = "fetch"
    VALIDATION = "validation"
    CUSTOMER = "customer"
    MAPPING = "mapping"
    GATEWAY = "gateway"
    RESPONSE_SHAPE = "response_shape"
    STATUS_CHECK = "status_check"


class OrderSyncError(Exception):
    """Base exception for order sync errors."""
    kind = ErrorKind.GATEWAY


class NotFoundError(OrderSyncError):
    """Raised when an order or customer does not exist."""
    kind = ErrorKind.NOT_FOUND


class OrderValidationError(OrderSyncError):
    """Raised when required order or customer data is missing.

    Always raised before any network call is made for the step that
    detected it.
    """
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.VALIDATION):
        self.kind = kind
        super().__init__(message)


class CustomerResolutionError(OrderSyncError):
    """Raised when no customer can be found or created for an order."""
    kind = ErrorKind.CUSTOMER


class GatewayError(OrderSyncError):
    """Raised on network or HTTP failures talking to 3DCart or NetSuite."""
    kind = ErrorKind.GATEWAY

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class DuplicateOrderError(GatewayError):
    """Raised when NetSuite reports the sales order already exists."""


class ResponseShapeError(GatewayError):
    """Raised when a success response has no usable record ID or body."""
    kind = ErrorKind.RESPONSE_SHAPE


# =============================================================================
# GATEWAY SPECIALISATIONS
# =============================================================================

class CartAPIError(GatewayError):
    """Base exception for 3DCart API errors."""


class CartNotFoundError(NotFoundError):
    """Raised when 3DCart has no order with the requested ID."""


class NetSuiteAPIError(GatewayError):
    """Base exception for NetSuite API errors."""


class NetSuiteAuthError(NetSuiteAPIError):
    """Raised when NetSuite rejects the request signature or token."""


class NetSuiteRateLimitError(NetSuiteAPIError):
    """Raised when rate limit is exceeded."""
    def __init__(self, retry_after: float = 2.0):
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Retry after {retry_after}s", status_code=429)
