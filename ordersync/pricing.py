"""Order total reconciliation.

Computes the monetary figures a sales order is built from. Line rates are
always unit price plus option price. Discounts are reported, never turned
into a discount line, so NetSuite's order total may exceed the cart total
by exactly the discount amount.
"""

import logging

from .models import CartOrder, ReconciledTotals

logger = logging.getLogger(__name__)


class PricingReconciler:
    """Derives ReconciledTotals from a cart order."""

    def __init__(self, tolerance: float = 0.01):
        """Initialize reconciler.

        Args:
            tolerance: Allowed difference (currency units) before a
                mismatch between line items and cart totals is logged
        """
        self.tolerance = tolerance

    def reconcile(self, order: CartOrder) -> ReconciledTotals:
        """Compute reconciled totals for an order.

        Args:
            order: 3DCart order

        Returns:
            ReconciledTotals with items_total and target_subtotal exposed
            side by side so callers can report the discrepancy. Both are
            left unrounded; only the discrepancy is rounded to cents.
        """
        items_total = sum(item.line_total for item in order.items)
        target_subtotal = order.order_amount - order.sales_tax - order.shipping_cost

        totals = ReconciledTotals(
            items_total=items_total,
            target_subtotal=target_subtotal,
            discount=round(order.discount, 2),
            tax=round(order.sales_tax, 2),
            shipping=round(order.shipping_cost, 2),
            total=round(order.order_amount, 2),
        )

        if not totals.is_balanced(self.tolerance):
            if totals.discount_explains_discrepancy(self.tolerance):
                logger.info(
                    f"Order {order.order_id}: line items total {items_total:.2f} vs "
                    f"cart subtotal {target_subtotal:.2f}, difference is the "
                    f"{totals.discount:.2f} discount (not sent to NetSuite)"
                )
            else:
                logger.warning(
                    f"Order {order.order_id}: line items total {items_total:.2f} does not "
                    f"match cart subtotal {target_subtotal:.2f} "
                    f"(discrepancy {totals.discrepancy:.2f}, discount {totals.discount:.2f})"
                )

        return totals
