"""Sync status guard.

NetSuite is asked whether a sales order carrying an order's external ID
already exists before anything is created for it. Many orders are checked
with a single SuiteQL query.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional

from pydantic import ValidationError

from .constants import external_id_for, order_id_from_external_id
from .database import Database
from .exceptions import ResponseShapeError
from .models import NetSuiteSalesOrder, SyncResult, SyncStatus
from .netsuite_client import NetSuiteClient, suiteql_literal

logger = logging.getLogger(__name__)

SALES_ORDER_COLUMNS = "id, tranid, externalid, status, trandate, entity"


class SyncStatusGuard:
    """Decides whether orders already exist in NetSuite."""

    def __init__(self, netsuite: NetSuiteClient, database: Optional[Database] = None):
        """Initialize guard.

        Args:
            netsuite: NetSuite API client
            database: Attempt history; last errors are reported from it
        """
        self.netsuite = netsuite
        self.database = database

    @staticmethod
    def build_query(order_ids: Iterable[str]) -> str:
        """Build the SuiteQL query matching sales orders by external ID.

        Rows are ordered newest first so the first row per external ID is
        the most recently created order.
        """
        external_ids = ", ".join(suiteql_literal(external_id_for(oid)) for oid in order_ids)
        return (
            f"SELECT {SALES_ORDER_COLUMNS} FROM transaction "
            f"WHERE recordtype = 'salesorder' AND externalid IN ({external_ids}) "
            f"ORDER BY id DESC"
        )

    async def check_synced(self, order_id: str) -> SyncStatus:
        """Check whether one order has a NetSuite sales order.

        Args:
            order_id: 3DCart order ID

        Returns:
            SyncStatus
        """
        statuses = await self.check_synced_bulk([order_id])
        return statuses[str(order_id)]

    async def check_synced_bulk(self, order_ids: Iterable[str]) -> Dict[str, SyncStatus]:
        """Check many orders with one query.

        Args:
            order_ids: 3DCart order IDs

        Returns:
            Dict keyed by every requested order ID; orders with no matching
            sales order are reported as not synced

        Raises:
            GatewayError: If NetSuite cannot be queried
        """
        order_ids = list(dict.fromkeys(str(oid) for oid in order_ids))
        if not order_ids:
            return {}

        data = await self.netsuite.execute_suiteql(self.build_query(order_ids))

        matches: Dict[str, List[NetSuiteSalesOrder]] = defaultdict(list)
        for row in data.get("items", []):
            try:
                sales_order = NetSuiteSalesOrder.model_validate(row)
            except ValidationError as e:
                raise ResponseShapeError(f"Malformed sales order row in status check: {e}", body=str(row))
            if sales_order.external_id:
                matches[order_id_from_external_id(sales_order.external_id)].append(sales_order)

        last_errors = {}
        unsynced = [oid for oid in order_ids if oid not in matches]
        if self.database and unsynced:
            last_errors = self.database.get_last_errors(unsynced)

        statuses = {}
        for order_id in order_ids:
            found = matches.get(order_id)
            if not found:
                statuses[order_id] = SyncStatus(
                    order_id=order_id,
                    last_error=last_errors.get(order_id),
                )
                continue

            if len(found) > 1:
                logger.warning(
                    f"Order {order_id} has {len(found)} NetSuite sales orders "
                    f"({', '.join(str(so.id) for so in found)}), using newest {found[0].id}"
                )
            existing = found[0]
            statuses[order_id] = SyncStatus(
                order_id=order_id,
                synced=True,
                netsuite_id=existing.id,
                tran_id=existing.tran_id,
                status=existing.status,
                sync_date=existing.tran_date,
                customer_id=existing.entity_id,
            )

        synced = sum(1 for s in statuses.values() if s.synced)
        logger.info(f"Status check: {synced}/{len(order_ids)} orders already in NetSuite")
        return statuses

    def record_result(self, order_id: str, result: SyncResult) -> None:
        """Persist the outcome of a sync attempt.

        Args:
            order_id: 3DCart order ID
            result: Result of the attempt
        """
        if self.database is None:
            return
        if result.order_id != order_id:
            logger.warning(f"Recording result for {result.order_id} under order {order_id}")
            result.order_id = order_id
        self.database.record_attempt(result)
