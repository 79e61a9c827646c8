"""Core order sync orchestration.

Drives one 3DCart order through status check, fetch, customer resolution,
mapping, and sales order creation, and runs the same flow over batches of
orders. Every order ends SUCCESS, ALREADY_SYNCED or FAILED; failures are
returned as results with an ErrorKind, never raised.
"""

import asyncio
import logging
import sqlite3
import uuid
from datetime import date
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .addresses import AddressBookBuilder
from .cart_client import CartClient
from .config import Settings
from .constants import SYNC_SUCCESS_COMMENT
from .customer_resolver import CustomerResolver
from .database import Database
from .exceptions import (
    CustomerResolutionError,
    DuplicateOrderError,
    ErrorKind,
    GatewayError,
    NotFoundError,
    OrderSyncError,
    OrderValidationError,
    ResponseShapeError,
)
from .item_resolver import ItemResolver
from .models import (
    BulkSyncResult,
    CartOrder,
    NetSuiteCustomer,
    SyncOutcome,
    SyncResult,
    SyncStatus,
)
from .netsuite_client import NetSuiteClient
from .notifier import LoggingNotifier, Notifier
from .order_mapper import OrderMapper
from .pricing import PricingReconciler
from .sync_status import SyncStatusGuard

module_logger = logging.getLogger(__name__)


class OrderSyncOrchestrator:
    """Syncs 3DCart orders into NetSuite sales orders."""

    def __init__(
        self,
        settings: Settings,
        cart: CartClient,
        netsuite: NetSuiteClient,
        guard: SyncStatusGuard,
        resolver: Optional[CustomerResolver] = None,
        item_resolver: Optional[ItemResolver] = None,
        mapper: Optional[OrderMapper] = None,
        reconciler: Optional[PricingReconciler] = None,
        notifier: Optional[Notifier] = None,
        database: Optional[Database] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """Initialize orchestrator.

        Args:
            settings: Application settings
            cart: 3DCart API client
            netsuite: NetSuite API client
            guard: Sync status guard (the idempotency gate)
            resolver: Customer resolver (built from settings if omitted)
            item_resolver: Item resolver (built from settings if omitted)
            mapper: Sales order mapper (built from settings if omitted)
            reconciler: Pricing reconciler (built from settings if omitted)
            notifier: Receives per-order and per-batch outcomes
            database: Records bulk run history when given
            logger: Logger for sync progress
        """
        self.settings = settings
        self.cart = cart
        self.netsuite = netsuite
        self.guard = guard
        self.resolver = resolver or CustomerResolver(
            netsuite,
            AddressBookBuilder(),
            subsidiary_id=settings.netsuite_subsidiary_id,
        )
        self.item_resolver = item_resolver or ItemResolver(
            netsuite,
            default_item_id=settings.netsuite_default_item_id,
            catalog_key_field=settings.catalog_key_field,
            tax_item_id=settings.tax_item_id if settings.include_tax_as_line_item else None,
            shipping_item_id=(
                settings.shipping_item_id if settings.include_shipping_as_line_item else None
            ),
        )
        self.mapper = mapper or OrderMapper(settings)
        self.reconciler = reconciler or PricingReconciler(settings.total_tolerance)
        self.logger = logger or module_logger
        self.notifier = notifier or LoggingNotifier(self.logger)
        self.database = database

    # =========================================================================
    # SINGLE ORDER SYNC
    # =========================================================================

    async def sync_order(self, order_id: str) -> SyncResult:
        """Sync one order by its 3DCart ID.

        Args:
            order_id: 3DCart order ID

        Returns:
            SyncResult
        """
        order_id = str(order_id).strip()
        if not order_id:
            return self._finish(
                SyncResult.failed(order_id, "Order ID is required", ErrorKind.VALIDATION)
            )

        self.logger.info(f"Syncing order {order_id}")

        existing = await self._check_existing(order_id)
        if existing:
            return self._finish(existing)

        try:
            order = await self.cart.get_order(order_id)
        except NotFoundError as e:
            return self._finish(SyncResult.failed(order_id, str(e), ErrorKind.NOT_FOUND))
        except OrderSyncError as e:
            return self._finish(
                SyncResult.failed(order_id, f"Failed to fetch order: {e}", ErrorKind.FETCH)
            )
        except ValueError as e:
            return self._finish(
                SyncResult.failed(order_id, f"3DCart returned invalid order data: {e}", ErrorKind.FETCH)
            )

        return self._finish(await self._sync_fetched(order))

    async def sync_order_payload(self, order: Union[CartOrder, dict]) -> SyncResult:
        """Sync an order whose full payload is already at hand.

        Args:
            order: CartOrder or a raw 3DCart order dict (e.g. from a webhook)

        Returns:
            SyncResult
        """
        if isinstance(order, dict):
            raw_id = str(order.get("OrderID", "") or "")
            try:
                order = CartOrder.model_validate(order)
            except ValueError as e:
                return self._finish(
                    SyncResult.failed(raw_id, f"Invalid order payload: {e}", ErrorKind.VALIDATION)
                )

        if not order.order_id:
            return self._finish(
                SyncResult.failed("", "Order ID is required", ErrorKind.VALIDATION)
            )

        existing = await self._check_existing(order.order_id)
        if existing:
            return self._finish(existing)

        return self._finish(await self._sync_fetched(order))

    async def _check_existing(self, order_id: str) -> Optional[SyncResult]:
        """Return a terminal result if the order must not be created."""
        try:
            status = await self.guard.check_synced(order_id)
        except OrderSyncError as e:
            return SyncResult.failed(
                order_id, f"Sync status check failed: {e}", ErrorKind.STATUS_CHECK
            )

        if not status.synced:
            return None

        self.logger.info(
            f"Order {order_id} already synced as NetSuite sales order "
            f"{status.netsuite_id} ({status.tran_id})"
        )
        return SyncResult(
            order_id=order_id,
            outcome=SyncOutcome.ALREADY_SYNCED,
            netsuite_id=status.netsuite_id,
            tran_id=status.tran_id,
            customer_id=status.customer_id,
        )

    async def _sync_fetched(self, order: CartOrder) -> SyncResult:
        order_id = order.order_id

        try:
            self.mapper.validate_order(order)
        except OrderValidationError as e:
            return SyncResult.failed(order_id, str(e), e.kind)

        try:
            customer = await self.resolver.resolve(order)
        except CustomerResolutionError as e:
            return SyncResult.failed(order_id, str(e), ErrorKind.CUSTOMER)

        try:
            totals = self.reconciler.reconcile(order)
            self.mapper.validate(order, customer)
            item_ids = await self.item_resolver.resolve(order)
            charge_item_ids = await self.item_resolver.resolve_charges(order)
            payload = self.mapper.map(order, customer, totals, item_ids, charge_item_ids)
        except OrderValidationError as e:
            return SyncResult.failed(order_id, str(e), e.kind)
        except GatewayError as e:
            return SyncResult.failed(order_id, f"Item lookup failed: {e}", ErrorKind.GATEWAY)

        try:
            created = await self.netsuite.create_sales_order(payload.to_api_dict())
        except DuplicateOrderError as e:
            self.logger.warning(f"NetSuite reports order {order_id} already exists: {e}")
            return await self._read_back(order_id, customer, ErrorKind.GATEWAY, str(e))
        except ResponseShapeError as e:
            self.logger.warning(f"Unexpected create response for order {order_id}: {e}")
            return await self._read_back(order_id, customer, ErrorKind.RESPONSE_SHAPE, str(e))
        except GatewayError as e:
            return SyncResult.failed(
                order_id, f"Sales order creation failed: {e}", ErrorKind.GATEWAY
            )

        self.logger.info(
            f"Order {order_id} synced as NetSuite sales order {created.id} "
            f"({created.transaction_number or 'no tranId'})"
        )
        await self._update_cart_status(order_id, created.id)
        return SyncResult(
            order_id=order_id,
            outcome=SyncOutcome.SUCCESS,
            netsuite_id=created.id,
            tran_id=created.transaction_number,
            customer_id=customer.id,
        )

    async def _read_back(
        self,
        order_id: str,
        customer: NetSuiteCustomer,
        kind: ErrorKind,
        error: str,
    ) -> SyncResult:
        """Look the order up once after an ambiguous create response.

        A sales order found here is the one NetSuite holds for this order,
        so the sync counts as a success with its ID.
        """
        try:
            status = await self.guard.check_synced(order_id)
        except OrderSyncError as e:
            return SyncResult.failed(
                order_id,
                f"{error}; read-back failed: {e}",
                ErrorKind.STATUS_CHECK,
            )

        if not status.synced:
            return SyncResult.failed(
                order_id, f"{error}; no sales order found on read-back", kind
            )

        self.logger.info(
            f"Order {order_id} recovered as existing NetSuite sales order {status.netsuite_id}"
        )
        await self._update_cart_status(order_id, status.netsuite_id)
        return SyncResult(
            order_id=order_id,
            outcome=SyncOutcome.SUCCESS,
            netsuite_id=status.netsuite_id,
            tran_id=status.tran_id,
            customer_id=status.customer_id or customer.id,
        )

    async def _update_cart_status(self, order_id: str, netsuite_id: Optional[int]) -> None:
        """Move the 3DCart order to the configured success status."""
        if not self.settings.update_cart_status:
            return

        comments = ""
        if self.settings.status_comments:
            comments = SYNC_SUCCESS_COMMENT.format(netsuite_id=netsuite_id)

        try:
            await self.cart.update_order_status(
                order_id, self.settings.success_status_id, comments
            )
        except OrderSyncError as e:
            # The sales order exists; a stale cart status is not a sync failure
            self.logger.warning(f"Failed to update 3DCart status for order {order_id}: {e}")

    def _finish(self, result: SyncResult) -> SyncResult:
        """Record and report a terminal result."""
        if result.order_id:
            try:
                self.guard.record_result(result.order_id, result)
            except sqlite3.Error as e:
                self.logger.error(f"Failed to record result for order {result.order_id}: {e}")

        if result.success:
            self.notifier.order_synced(result)
        else:
            self.notifier.order_failed(result)
        return result

    # =========================================================================
    # BULK SYNC
    # =========================================================================

    def batch_cap(self, max_batch: Optional[int] = None) -> int:
        """Get how many orders one bulk call may process."""
        if not max_batch or max_batch < 1:
            return self.settings.bulk_max_batch
        return min(max_batch, self.settings.bulk_max_batch)

    async def sync_orders(
        self,
        order_ids: Iterable[str],
        max_batch: Optional[int] = None,
    ) -> BulkSyncResult:
        """Sync orders one after another.

        Orders beyond the batch cap are returned as failed results without
        being touched.

        Args:
            order_ids: 3DCart order IDs
            max_batch: Requested batch size (never above bulk_max_batch)

        Returns:
            BulkSyncResult with one result per submitted order
        """
        ids = list(dict.fromkeys(str(oid).strip() for oid in order_ids if str(oid).strip()))
        return await self._run_batch(ids, ids, self.sync_order, max_batch)

    async def sync_date_range(
        self,
        start: date,
        end: date,
        status: Optional[int] = None,
        max_batch: Optional[int] = None,
    ) -> BulkSyncResult:
        """Sync every unsynced order placed within a date range.

        Args:
            start: First day (inclusive)
            end: Last day (inclusive)
            status: Only orders with this 3DCart status ID
            max_batch: Requested batch size (never above bulk_max_batch)

        Returns:
            BulkSyncResult covering every order found in the range

        Raises:
            GatewayError: If the orders cannot be listed or status-checked
        """
        orders = await self.cart.get_orders_by_date_range(start, end, status)
        if not orders:
            self.logger.info(f"No 3DCart orders between {start} and {end}")
            return BulkSyncResult()

        statuses = await self.guard.check_synced_bulk([o.order_id for o in orders])

        already = BulkSyncResult()
        pending: List[CartOrder] = []
        for order in orders:
            sync_status = statuses.get(order.order_id)
            if sync_status and sync_status.synced:
                already.results.append(self._finish(SyncResult(
                    order_id=order.order_id,
                    outcome=SyncOutcome.ALREADY_SYNCED,
                    netsuite_id=sync_status.netsuite_id,
                    tran_id=sync_status.tran_id,
                    customer_id=sync_status.customer_id,
                )))
            else:
                pending.append(order)

        self.logger.info(
            f"{len(orders)} orders between {start} and {end}: "
            f"{already.already_synced} already synced, {len(pending)} to sync"
        )

        return await self._run_batch(
            [o.order_id for o in pending],
            pending,
            self.sync_order_payload,
            max_batch,
            initial=already.results,
        )

    async def _run_batch(
        self,
        order_ids: List[str],
        items: list,
        sync_one: Callable[..., Awaitable[SyncResult]],
        max_batch: Optional[int],
        initial: Optional[List[SyncResult]] = None,
    ) -> BulkSyncResult:
        cap = self.batch_cap(max_batch)
        run_id = str(uuid.uuid4())
        bulk = BulkSyncResult(results=list(initial or []))

        if self.database:
            self.database.start_sync_run(run_id, len(order_ids) + len(bulk.results))

        self.logger.info("=" * 50)
        self.logger.info(f"BULK SYNC {run_id}: {len(order_ids)} orders (cap {cap})")
        self.logger.info("=" * 50)

        for index, (order_id, item) in enumerate(zip(order_ids[:cap], items[:cap])):
            if index:
                await asyncio.sleep(self.settings.bulk_order_delay)
            try:
                result = await sync_one(item)
            except Exception as e:
                self.logger.exception(f"Unexpected error syncing order {order_id}")
                result = self._finish(SyncResult.failed(
                    order_id, f"Unexpected error: {e}", ErrorKind.GATEWAY
                ))
            bulk.results.append(result)

        skipped = order_ids[cap:]
        if skipped:
            self.logger.warning(
                f"Bulk sync limited to {cap} orders, {len(skipped)} not processed"
            )
        for order_id in skipped:
            bulk.results.append(SyncResult.failed(
                order_id,
                f"Not processed: bulk sync is limited to {cap} orders per call",
                ErrorKind.VALIDATION,
            ))

        if bulk.failed == 0:
            status = "success"
        elif bulk.failed == bulk.total_processed:
            status = "failed"
        else:
            status = "partial"

        if self.database:
            self.database.complete_sync_run(
                run_id,
                status=status,
                succeeded=bulk.succeeded + bulk.already_synced,
                failed=bulk.failed,
            )

        self.logger.info("=" * 50)
        self.logger.info(f"BULK SYNC COMPLETE: {run_id}")
        self.logger.info(f"Status: {status}")
        self.logger.info(
            f"Synced: {bulk.succeeded}, already synced: {bulk.already_synced}, "
            f"failed: {bulk.failed}"
        )
        self.logger.info("=" * 50)

        self.notifier.batch_completed(bulk)
        return bulk

    # =========================================================================
    # STATUS
    # =========================================================================

    async def check_status(self, order_ids: Iterable[str]) -> Dict[str, SyncStatus]:
        """Report whether orders are in NetSuite, with one query.

        Args:
            order_ids: 3DCart order IDs

        Returns:
            Dict mapping order ID to SyncStatus
        """
        return await self.guard.check_synced_bulk(order_ids)
