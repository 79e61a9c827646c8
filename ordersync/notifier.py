"""Sync outcome notifications.

The orchestrator reports each finished order and bulk run to a notifier
passed in by the caller. LoggingNotifier writes them to the log; other
delivery channels implement the same three methods.
"""

import logging
from typing import Optional, Protocol

from .models import BulkSyncResult, SyncResult


class Notifier(Protocol):
    """Receives sync outcomes."""

    def order_synced(self, result: SyncResult) -> None:
        """Called when an order reaches NetSuite or was already there."""
        ...

    def order_failed(self, result: SyncResult) -> None:
        """Called when an order sync fails."""
        ...

    def batch_completed(self, result: BulkSyncResult) -> None:
        """Called when a bulk sync finishes."""
        ...


class LoggingNotifier:
    """Notifier that writes outcomes to a logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def order_synced(self, result: SyncResult) -> None:
        self.logger.info(
            f"Order {result.order_id} {result.outcome.value}: "
            f"NetSuite sales order {result.netsuite_id} ({result.tran_id or 'no tranId'})"
        )

    def order_failed(self, result: SyncResult) -> None:
        kind = result.error_kind.value if result.error_kind else "unknown"
        self.logger.error(f"Order {result.order_id} failed [{kind}]: {result.error}")

    def batch_completed(self, result: BulkSyncResult) -> None:
        self.logger.info(
            f"Bulk sync finished: {result.succeeded} synced, "
            f"{result.already_synced} already synced, {result.failed} failed "
            f"of {result.total_processed}"
        )
