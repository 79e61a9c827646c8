"""Unit tests for data models.

Tests verify that:
- 3DCart payloads parse with their PascalCase names
- Blank strings and numeric identifiers are normalized
- Order helpers (email, PO number, drop-ship) read the right fields
- NetSuite rows parse from both SuiteQL and record API shapes
- Sales order payloads serialize to NetSuite's format
"""

import logging
from datetime import date, datetime

from ordersync.exceptions import ErrorKind
from ordersync.models import (
    BulkSyncResult,
    CartLineItem,
    CartOrder,
    NetSuiteCustomer,
    NetSuiteSalesOrder,
    ReconciledTotals,
    SalesOrderLine,
    SalesOrderPayload,
    ShippingAddress,
    SyncOutcome,
    SyncResult,
    clean_email,
    is_valid_email,
    parse_cart_datetime,
)

from tests.fixtures.cart_fixtures import (
    CART_ORDER_DROPSHIP,
    make_cart_item,
    make_cart_order,
    make_cart_question,
)
from tests.fixtures.netsuite_fixtures import (
    make_customer_record,
    make_customer_row,
    make_sales_order_record,
    make_sales_order_row,
)


class TestParseCartDatetime:
    """Tests for 3DCart date parsing."""

    def test_iso_format(self):
        assert parse_cart_datetime("2024-01-15T12:30:45") == datetime(2024, 1, 15, 12, 30, 45)

    def test_us_format_with_meridiem(self):
        assert parse_cart_datetime("01/15/2024 01:30:45 PM") == datetime(2024, 1, 15, 13, 30, 45)

    def test_blank(self):
        assert parse_cart_datetime("") is None
        assert parse_cart_datetime(None) is None

    def test_unparseable(self):
        assert parse_cart_datetime("not a date") is None


class TestEmailHelpers:
    """Tests for email validation helpers."""

    def test_valid_email(self):
        assert is_valid_email("jane.doe@example.com")

    def test_invalid_email(self):
        assert not is_valid_email("not-an-email")
        assert not is_valid_email("")

    def test_clean_email_strips(self):
        assert clean_email("  jane.doe@example.com ") == "jane.doe@example.com"

    def test_clean_email_rejects_invalid(self):
        assert clean_email("nope") == ""


class TestCartLineItem:
    """Tests for CartLineItem."""

    def test_effective_price_includes_options(self):
        line = CartLineItem.model_validate(make_cart_item(unit_price=10.0, option_price=2.5))

        assert line.effective_price == 12.5

    def test_line_total(self):
        line = CartLineItem.model_validate(
            make_cart_item(quantity=3, unit_price=10.0, option_price=2.5)
        )

        assert line.line_total == 37.5

    def test_numeric_item_id_coerced(self):
        line = CartLineItem.model_validate(make_cart_item(item_id=12345))

        assert line.item_id == "12345"

    def test_catalog_key_prefers_item_id(self):
        line = CartLineItem.model_validate(make_cart_item(item_id="SKU-1", order_item_id="7"))

        assert line.catalog_key() == "SKU-1"
        assert line.catalog_key("OrderItemID") == "7"

    def test_catalog_key_falls_back(self):
        line = CartLineItem.model_validate(make_cart_item(item_id="", order_item_id="7"))

        assert line.catalog_key() == "7"

    def test_item_price_alias(self):
        data = make_cart_item()
        del data["ItemUnitPrice"]
        data["ItemPrice"] = 4.99

        assert CartLineItem.model_validate(data).unit_price == 4.99


class TestCartOrder:
    """Tests for CartOrder."""

    def test_parse_order(self):
        order = CartOrder.model_validate(make_cart_order(order_id=1001))

        assert order.order_id == "1001"
        assert order.order_date == datetime(2024, 1, 15, 12, 30, 45)
        assert order.billing_full_name == "Jane Doe"
        assert len(order.items) == 1
        assert order.first_shipment.city == "Austin"

    def test_blank_strings_become_none(self):
        order = CartOrder.model_validate(make_cart_order(company=""))

        assert order.billing_company is None
        assert order.billing_address2 is None

    def test_null_lists(self):
        order = CartOrder.model_validate(
            make_cart_order(OrderItemList=None, ShipmentList=None, QuestionList=None)
        )

        assert order.items == []
        assert order.shipments == []
        assert order.first_shipment is None

    def test_customer_email_from_billing(self):
        order = CartOrder.model_validate(make_cart_order(email="jane.doe@example.com"))

        assert order.customer_email == "jane.doe@example.com"

    def test_customer_email_question_wins(self):
        order = CartOrder.model_validate(CART_ORDER_DROPSHIP)

        assert order.customer_email == "end.customer@example.com"

    def test_invalid_email_question_ignored(self):
        order = CartOrder.model_validate(make_cart_order(
            email="jane.doe@example.com",
            questions=[make_cart_question(1, "n/a")],
        ))

        assert order.customer_email == "jane.doe@example.com"

    def test_po_number(self):
        order = CartOrder.model_validate(CART_ORDER_DROPSHIP)

        assert order.po_number == "PO-7788"

    def test_is_dropship(self):
        assert CartOrder.model_validate(CART_ORDER_DROPSHIP).is_dropship
        assert not CartOrder.model_validate(make_cart_order()).is_dropship

    def test_order_total_alias(self):
        data = make_cart_order()
        del data["OrderAmount"]
        data["OrderTotal"] = 42.0

        assert CartOrder.model_validate(data).order_amount == 42.0

    def test_invoice_reference(self):
        order = CartOrder.model_validate(
            make_cart_order(InvoiceNumberPrefix="AB-", InvoiceNumber=1042)
        )

        assert order.invoice_number == "1042"
        assert order.invoice_reference == "AB-1042"

    def test_invoice_reference_without_prefix(self):
        order = CartOrder.model_validate(make_cart_order(order_id=1001))

        assert order.invoice_number_prefix is None
        assert order.invoice_reference == "1001"


class TestNetSuiteCustomer:
    """Tests for NetSuiteCustomer parsing."""

    def test_from_suiteql_row(self):
        customer = NetSuiteCustomer.model_validate(make_customer_row(customer_id=5001))

        assert customer.id == 5001
        assert customer.first_name == "Jane"
        assert customer.is_person is True

    def test_company_row(self):
        customer = NetSuiteCustomer.model_validate(
            make_customer_row(is_person=False, company_name="Acme Inc")
        )

        assert customer.is_company
        assert customer.company_name == "Acme Inc"

    def test_null_is_person_is_company(self, caplog):
        with caplog.at_level(logging.WARNING, logger="ordersync.models"):
            customer = NetSuiteCustomer.model_validate(make_customer_row(isperson=None))

        assert customer.is_company
        assert "no isperson flag" in caplog.text

    def test_from_record(self):
        customer = NetSuiteCustomer.model_validate(make_customer_record(customer_id=5002))

        assert customer.id == 5002
        assert customer.default_address.startswith("Jane Doe")

    def test_parent_reference(self):
        customer = NetSuiteCustomer.model_validate(make_customer_record(parent={"id": "77"}))

        assert customer.parent_id == 77


class TestNetSuiteSalesOrder:
    """Tests for NetSuiteSalesOrder parsing."""

    def test_from_suiteql_row(self):
        sales_order = NetSuiteSalesOrder.model_validate(make_sales_order_row())

        assert sales_order.id == 9001
        assert sales_order.tran_id == "SO-9001"
        assert sales_order.external_id == "3DCART_1001"
        assert sales_order.entity_id == 5001

    def test_from_record(self):
        sales_order = NetSuiteSalesOrder.model_validate(make_sales_order_record())

        assert sales_order.status == "Pending Fulfillment"
        assert sales_order.entity_id == 5001


class TestReconciledTotals:
    """Tests for ReconciledTotals."""

    def test_discrepancy(self):
        totals = ReconciledTotals(
            items_total=100.0, target_subtotal=90.0, discount=10.0,
            tax=0.0, shipping=0.0, total=90.0,
        )

        assert totals.discrepancy == 10.0
        assert not totals.is_balanced()
        assert totals.discount_explains_discrepancy()


class TestSalesOrderPayload:
    """Tests for sales order serialization."""

    def _payload(self, **kwargs):
        defaults = dict(
            entity_id=5001,
            subsidiary_id=1,
            department_id=3,
            external_id="3DCART_1001",
            memo="Order imported from 3DCart - Order #1001",
            tran_date=date(2024, 1, 15),
            lines=[
                SalesOrderLine(item_id=11, catalog_key="A", quantity=2, rate=10.0),
                SalesOrderLine(item_id=12, catalog_key="B", quantity=1, rate=5.5),
            ],
        )
        defaults.update(kwargs)
        return SalesOrderPayload(**defaults)

    def test_total_is_sum_of_lines(self):
        payload = self._payload()

        assert payload.total == 25.5

    def test_total_includes_charge_lines(self):
        lines = self._payload().lines + [
            SalesOrderLine(item_id=2, catalog_key="SalesTax", quantity=1, rate=2.0),
            SalesOrderLine(item_id=3, catalog_key="ShippingCost", quantity=1, rate=7.5),
        ]

        assert self._payload(lines=lines).total == 35.0

    def test_to_api_dict(self):
        data = self._payload(
            other_ref_num="PO-1",
            custom_fields={"custbodycustbody4": "3DCart Integration"},
            shipping_address=ShippingAddress(addr1="1 Main St", city="Austin", state="TX"),
        ).to_api_dict()

        assert data["entity"] == {"id": 5001}
        assert data["subsidiary"] == {"id": 1}
        assert data["department"] == {"id": 3}
        assert data["externalId"] == "3DCART_1001"
        assert data["tranDate"] == "2024-01-15"
        assert data["otherrefnum"] == "PO-1"
        assert data["custbodycustbody4"] == "3DCart Integration"
        assert data["shippingAddress"] == {"addr1": "1 Main St", "city": "Austin", "state": "TX"}
        assert data["item"]["items"][0] == {
            "item": {"id": 11},
            "quantity": 2,
            "rate": 10.0,
            "istaxable": False,
        }

    def test_optional_fields_omitted(self):
        data = self._payload(tran_date=None).to_api_dict()

        assert "tranDate" not in data
        assert "otherrefnum" not in data
        assert "shippingAddress" not in data


class TestSyncResults:
    """Tests for sync result containers."""

    def test_failed_result(self):
        result = SyncResult.failed("1001", "boom", ErrorKind.GATEWAY)

        assert not result.success
        assert result.outcome == SyncOutcome.FAILED
        assert result.error_kind == ErrorKind.GATEWAY

    def test_already_synced_is_success(self):
        result = SyncResult(order_id="1001", outcome=SyncOutcome.ALREADY_SYNCED, netsuite_id=9001)

        assert result.success

    def test_bulk_counts(self):
        bulk = BulkSyncResult(results=[
            SyncResult(order_id="1", outcome=SyncOutcome.SUCCESS),
            SyncResult(order_id="2", outcome=SyncOutcome.ALREADY_SYNCED),
            SyncResult.failed("3", "boom", ErrorKind.CUSTOMER),
        ])

        assert bulk.succeeded == 1
        assert bulk.already_synced == 1
        assert bulk.failed == 1
        assert bulk.total_processed == 3
        assert not bulk.success
        assert bulk.errors == ["Order 3: boom"]
