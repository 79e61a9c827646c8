"""Unit tests for the order sync orchestrator.

Tests verify that:
- Orders already in NetSuite are never created again
- Each failing step ends the sync with its own error kind
- Ambiguous create responses are resolved by reading the order back
- The 3DCart status is updated only after a successful sync
- Bulk syncs respect the batch cap and report every order
"""

import sqlite3
from datetime import date
from unittest.mock import AsyncMock, MagicMock

import pytest

from ordersync.customer_resolver import CustomerResolver
from ordersync.exceptions import (
    CartAPIError,
    CartNotFoundError,
    CustomerResolutionError,
    DuplicateOrderError,
    ErrorKind,
    NetSuiteAPIError,
    OrderValidationError,
    ResponseShapeError,
)
from ordersync.item_resolver import ItemResolver
from ordersync.models import CartOrder, CreatedRecord, SyncOutcome, SyncStatus
from ordersync.sync_engine import OrderSyncOrchestrator
from ordersync.sync_status import SyncStatusGuard

from tests.fixtures.cart_fixtures import make_cart_item, make_cart_order, make_cart_shipment


def _status(order_id: str, netsuite_id: int = None) -> SyncStatus:
    if netsuite_id is None:
        return SyncStatus(order_id=order_id)
    return SyncStatus(
        order_id=order_id,
        synced=True,
        netsuite_id=netsuite_id,
        tran_id=f"SO-{netsuite_id}",
        customer_id=5001,
    )


def _order(order_id: int = 1001, **kwargs) -> CartOrder:
    return CartOrder.model_validate(make_cart_order(order_id=order_id, **kwargs))


@pytest.fixture
def guard():
    guard = AsyncMock(spec=SyncStatusGuard)
    guard.check_synced.side_effect = lambda order_id: _status(order_id)
    return guard


@pytest.fixture
def customer_resolver(sample_customer):
    resolver = AsyncMock(spec=CustomerResolver)
    resolver.resolve.return_value = sample_customer
    return resolver


@pytest.fixture
def item_resolver():
    resolver = AsyncMock(spec=ItemResolver)
    resolver.resolve.return_value = {"WM-LAV-001": 101}
    resolver.resolve_charges.return_value = {}
    return resolver


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def orchestrator(
    settings, mock_cart_client, mock_netsuite_client, guard,
    customer_resolver, item_resolver, notifier,
):
    mock_cart_client.get_order.side_effect = lambda order_id: _order(int(order_id))
    mock_netsuite_client.create_sales_order.return_value = CreatedRecord(
        id=9001, transaction_number="SO-9001"
    )
    return OrderSyncOrchestrator(
        settings,
        mock_cart_client,
        mock_netsuite_client,
        guard,
        resolver=customer_resolver,
        item_resolver=item_resolver,
        notifier=notifier,
    )


class TestSyncOrderSuccess:
    """Tests for the happy path."""

    @pytest.mark.asyncio
    async def test_creates_sales_order(self, orchestrator, mock_netsuite_client):
        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.SUCCESS
        assert result.netsuite_id == 9001
        assert result.tran_id == "SO-9001"
        assert result.customer_id == 5001
        payload = mock_netsuite_client.create_sales_order.call_args.args[0]
        assert payload["externalId"] == "3DCART_1001"
        assert payload["entity"] == {"id": 5001}
        assert payload["item"]["items"][0]["item"] == {"id": 101}

    @pytest.mark.asyncio
    async def test_updates_cart_status(self, orchestrator, mock_cart_client):
        await orchestrator.sync_order("1001")

        mock_cart_client.update_order_status.assert_awaited_once_with(
            "1001", 2, "Order successfully synced to NetSuite. NetSuite Order ID: 9001"
        )

    @pytest.mark.asyncio
    async def test_status_update_without_comment(self, orchestrator, mock_cart_client, settings):
        orchestrator.settings = settings.model_copy(update={"status_comments": False})

        await orchestrator.sync_order("1001")

        mock_cart_client.update_order_status.assert_awaited_once_with("1001", 2, "")

    @pytest.mark.asyncio
    async def test_status_update_disabled(self, orchestrator, mock_cart_client, settings):
        orchestrator.settings = settings.model_copy(update={"update_cart_status": False})

        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.SUCCESS
        mock_cart_client.update_order_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_update_failure_ignored(self, orchestrator, mock_cart_client):
        mock_cart_client.update_order_status.side_effect = CartAPIError("down", status_code=503)

        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.SUCCESS
        assert result.netsuite_id == 9001

    @pytest.mark.asyncio
    async def test_records_and_notifies(self, orchestrator, guard, notifier):
        result = await orchestrator.sync_order("1001")

        guard.record_result.assert_called_once_with("1001", result)
        notifier.order_synced.assert_called_once_with(result)
        notifier.order_failed.assert_not_called()

    @pytest.mark.asyncio
    async def test_record_failure_does_not_fail_sync(self, orchestrator, guard):
        guard.record_result.side_effect = sqlite3.OperationalError("database is locked")

        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.SUCCESS


class TestAlreadySynced:
    """Tests for the idempotency gate."""

    @pytest.mark.asyncio
    async def test_already_synced(self, orchestrator, guard, mock_cart_client, mock_netsuite_client):
        guard.check_synced.side_effect = None
        guard.check_synced.return_value = _status("1001", 8001)

        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.ALREADY_SYNCED
        assert result.netsuite_id == 8001
        assert result.success is True
        mock_cart_client.get_order.assert_not_awaited()
        mock_netsuite_client.create_sales_order.assert_not_awaited()
        mock_cart_client.update_order_status.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_check_failure(self, orchestrator, guard, mock_cart_client, mock_netsuite_client):
        guard.check_synced.side_effect = NetSuiteAPIError("down", status_code=503)

        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.FAILED
        assert result.error_kind == ErrorKind.STATUS_CHECK
        mock_cart_client.get_order.assert_not_awaited()
        mock_netsuite_client.create_sales_order.assert_not_awaited()


class TestSyncOrderFailures:
    """Tests for failures at each step."""

    @pytest.mark.asyncio
    async def test_empty_order_id(self, orchestrator, guard):
        result = await orchestrator.sync_order("  ")

        assert result.error_kind == ErrorKind.VALIDATION
        guard.check_synced.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_not_found(self, orchestrator, mock_cart_client, notifier):
        mock_cart_client.get_order.side_effect = CartNotFoundError("Order 404 not found")

        result = await orchestrator.sync_order("404")

        assert result.outcome == SyncOutcome.FAILED
        assert result.error_kind == ErrorKind.NOT_FOUND
        notifier.order_failed.assert_called_once_with(result)

    @pytest.mark.asyncio
    async def test_fetch_error(self, orchestrator, mock_cart_client):
        mock_cart_client.get_order.side_effect = CartAPIError("timeout")

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.FETCH

    @pytest.mark.asyncio
    async def test_customer_error(self, orchestrator, customer_resolver, mock_netsuite_client):
        customer_resolver.resolve.side_effect = CustomerResolutionError("no email")

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.CUSTOMER
        mock_netsuite_client.create_sales_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mapping_error_before_lookups(
        self, orchestrator, mock_cart_client, customer_resolver, item_resolver, mock_netsuite_client,
    ):
        """Test a zero-quantity line fails before any customer is resolved or created."""
        mock_cart_client.get_order.side_effect = None
        mock_cart_client.get_order.return_value = _order(items=[make_cart_item(quantity=0)])

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.MAPPING
        customer_resolver.resolve.assert_not_awaited()
        item_resolver.resolve.assert_not_awaited()
        mock_netsuite_client.create_sales_order.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_kwargs", [
        {"items": []},
        {"shipments": [make_cart_shipment(city="")]},
    ])
    async def test_invalid_order_creates_no_customer(
        self, orchestrator, mock_cart_client, customer_resolver, order_kwargs,
    ):
        mock_cart_client.get_order.side_effect = None
        mock_cart_client.get_order.return_value = _order(**order_kwargs)

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.MAPPING
        customer_resolver.resolve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_charge_lines_sent(self, orchestrator, mock_cart_client, item_resolver, mock_netsuite_client):
        mock_cart_client.get_order.side_effect = None
        mock_cart_client.get_order.return_value = _order(sales_tax=1.65, shipping_cost=5.0)
        item_resolver.resolve_charges.return_value = {"SalesTax": 2, "ShippingCost": 3}

        await orchestrator.sync_order("1001")

        lines = mock_netsuite_client.create_sales_order.call_args.args[0]["item"]["items"]
        assert lines[1:] == [
            {"item": {"id": 2}, "quantity": 1.0, "rate": 1.65, "istaxable": False},
            {"item": {"id": 3}, "quantity": 1.0, "rate": 5.0, "istaxable": False},
        ]

    @pytest.mark.asyncio
    async def test_item_resolution_error(self, orchestrator, item_resolver, mock_netsuite_client):
        item_resolver.resolve.side_effect = OrderValidationError(
            "Default item 14238 is missing in NetSuite", kind=ErrorKind.MAPPING
        )

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.MAPPING
        mock_netsuite_client.create_sales_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_item_lookup_gateway_error(self, orchestrator, item_resolver):
        item_resolver.resolve.side_effect = NetSuiteAPIError("down")

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.GATEWAY

    @pytest.mark.asyncio
    async def test_create_failure_not_retried(self, orchestrator, mock_netsuite_client, mock_cart_client):
        mock_netsuite_client.create_sales_order.side_effect = NetSuiteAPIError(
            "Invalid item reference key 99999.", status_code=400
        )

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.GATEWAY
        assert "Invalid item" in result.error
        assert mock_netsuite_client.create_sales_order.await_count == 1
        mock_cart_client.update_order_status.assert_not_awaited()


class TestReadBack:
    """Tests for recovering from ambiguous create responses."""

    @pytest.mark.asyncio
    async def test_duplicate_recovered(self, orchestrator, guard, mock_netsuite_client, mock_cart_client):
        guard.check_synced.side_effect = [_status("1001"), _status("1001", 8001)]
        mock_netsuite_client.create_sales_order.side_effect = DuplicateOrderError("exists", status_code=400)

        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.SUCCESS
        assert result.netsuite_id == 8001
        assert guard.check_synced.await_count == 2
        mock_cart_client.update_order_status.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_duplicate_not_found_on_read_back(self, orchestrator, guard, mock_netsuite_client):
        mock_netsuite_client.create_sales_order.side_effect = DuplicateOrderError("exists", status_code=400)

        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.FAILED
        assert result.error_kind == ErrorKind.GATEWAY

    @pytest.mark.asyncio
    async def test_response_shape_recovered(self, orchestrator, guard, mock_netsuite_client):
        guard.check_synced.side_effect = [_status("1001"), _status("1001", 9002)]
        mock_netsuite_client.create_sales_order.side_effect = ResponseShapeError("no Location header")

        result = await orchestrator.sync_order("1001")

        assert result.outcome == SyncOutcome.SUCCESS
        assert result.netsuite_id == 9002

    @pytest.mark.asyncio
    async def test_response_shape_unresolved(self, orchestrator, mock_netsuite_client):
        mock_netsuite_client.create_sales_order.side_effect = ResponseShapeError("no Location header")

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.RESPONSE_SHAPE

    @pytest.mark.asyncio
    async def test_read_back_failure(self, orchestrator, guard, mock_netsuite_client):
        guard.check_synced.side_effect = [_status("1001"), NetSuiteAPIError("down")]
        mock_netsuite_client.create_sales_order.side_effect = DuplicateOrderError("exists")

        result = await orchestrator.sync_order("1001")

        assert result.error_kind == ErrorKind.STATUS_CHECK


class TestSyncOrderPayload:
    """Tests for syncing an order payload already at hand."""

    @pytest.mark.asyncio
    async def test_dict_payload(self, orchestrator, mock_cart_client):
        result = await orchestrator.sync_order_payload(make_cart_order(order_id=1005))

        assert result.outcome == SyncOutcome.SUCCESS
        assert result.order_id == "1005"
        mock_cart_client.get_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_payload(self, orchestrator, guard):
        result = await orchestrator.sync_order_payload({"OrderID": "1005", "OrderItemList": "bad"})

        assert result.error_kind == ErrorKind.VALIDATION
        guard.check_synced.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payload_rechecked(self, orchestrator, guard, mock_netsuite_client):
        guard.check_synced.side_effect = None
        guard.check_synced.return_value = _status("1001", 8001)

        result = await orchestrator.sync_order_payload(_order())

        assert result.outcome == SyncOutcome.ALREADY_SYNCED
        mock_netsuite_client.create_sales_order.assert_not_awaited()


class TestBulkSync:
    """Tests for bulk order syncs."""

    def test_batch_cap(self, orchestrator):
        assert orchestrator.batch_cap() == 50
        assert orchestrator.batch_cap(10) == 10
        assert orchestrator.batch_cap(500) == 50
        assert orchestrator.batch_cap(0) == 50

    @pytest.mark.asyncio
    async def test_sync_orders(self, orchestrator, notifier):
        result = await orchestrator.sync_orders(["1001", "1002", "1001", " "])

        assert [r.order_id for r in result.results] == ["1001", "1002"]
        assert result.succeeded == 2
        assert result.success is True
        notifier.batch_completed.assert_called_once_with(result)

    @pytest.mark.asyncio
    async def test_batch_cap_applied(self, orchestrator, mock_netsuite_client):
        result = await orchestrator.sync_orders(["1001", "1002", "1003"], max_batch=2)

        assert result.total_processed == 3
        assert result.succeeded == 2
        assert result.failed == 1
        skipped = result.results[-1]
        assert skipped.order_id == "1003"
        assert skipped.error_kind == ErrorKind.VALIDATION
        assert mock_netsuite_client.create_sales_order.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_batch(self, orchestrator, mock_cart_client):
        def get_order(order_id):
            if order_id == "1002":
                raise CartNotFoundError("gone")
            return _order(int(order_id))

        mock_cart_client.get_order.side_effect = get_order

        result = await orchestrator.sync_orders(["1001", "1002", "1003"])

        assert [r.outcome for r in result.results] == [
            SyncOutcome.SUCCESS, SyncOutcome.FAILED, SyncOutcome.SUCCESS,
        ]
        assert result.errors == ["Order 1002: gone"]

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_result(self, orchestrator, customer_resolver):
        customer_resolver.resolve.side_effect = RuntimeError("bug")

        result = await orchestrator.sync_orders(["1001"])

        assert result.failed == 1
        assert result.results[0].error_kind == ErrorKind.GATEWAY

    @pytest.mark.asyncio
    async def test_run_recorded(self, orchestrator, database):
        orchestrator.database = database

        await orchestrator.sync_orders(["1001", "1002"])

        run = database.get_sync_history()[0]
        assert run.status == "success"
        assert run.requested == 2
        assert run.succeeded == 2


class TestSyncDateRange:
    """Tests for date range syncs."""

    @pytest.mark.asyncio
    async def test_skips_synced_orders(self, orchestrator, guard, mock_cart_client, mock_netsuite_client):
        mock_cart_client.get_orders_by_date_range.return_value = [_order(1001), _order(1002)]
        guard.check_synced_bulk.return_value = {
            "1001": _status("1001", 8001),
            "1002": _status("1002"),
        }

        result = await orchestrator.sync_date_range(date(2024, 1, 1), date(2024, 1, 31))

        assert result.already_synced == 1
        assert result.succeeded == 1
        assert guard.check_synced_bulk.await_count == 1
        assert mock_netsuite_client.create_sales_order.await_count == 1
        mock_cart_client.get_order.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_orders(self, orchestrator, guard, mock_cart_client):
        mock_cart_client.get_orders_by_date_range.return_value = []

        result = await orchestrator.sync_date_range(date(2024, 1, 1), date(2024, 1, 31))

        assert result.total_processed == 0
        guard.check_synced_bulk.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_status_filter_passed(self, orchestrator, mock_cart_client):
        mock_cart_client.get_orders_by_date_range.return_value = []

        await orchestrator.sync_date_range(date(2024, 1, 1), date(2024, 1, 31), status=1)

        mock_cart_client.get_orders_by_date_range.assert_awaited_once_with(
            date(2024, 1, 1), date(2024, 1, 31), 1
        )


class TestCheckStatus:
    """Tests for status reporting."""

    @pytest.mark.asyncio
    async def test_delegates_to_bulk_check(self, orchestrator, guard):
        guard.check_synced_bulk.return_value = {"1001": _status("1001", 8001)}

        statuses = await orchestrator.check_status(["1001"])

        assert statuses["1001"].netsuite_id == 8001
        guard.check_synced_bulk.assert_awaited_once_with(["1001"])
