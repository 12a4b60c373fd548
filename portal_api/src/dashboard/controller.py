import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..orders.schema import OrderStatus
from ..production.controller import ACTIVE_BATCH_STATUSES, order_progress
from ...config import get_settings
from ...database.db import get_database
from ...utils.helperFunctions import round_money

logger = logging.getLogger(__name__)

S = OrderStatus

# Orders that still represent work or money outstanding
OPEN_STATUSES = [s.value for s in S if s not in (S.DRAFT, S.SHIPPED, S.CANCELLED)]
QUEUE_STATUSES = [S.IN_QUEUE.value, S.IN_PRODUCTION.value]


class DashboardController:
    def __init__(self):
        self.db = get_database()
        self.settings = get_settings()

    def summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        counts = {s.value: 0 for s in S}
        open_value = 0.0
        internal = 0
        for order in self.db.sales_orders.find({}, {"_id": 0, "status": 1, "subtotal": 1,
                                                    "consolidated_total": 1, "is_internal": 1}):
            counts[order["status"]] = counts.get(order["status"], 0) + 1
            if order.get("is_internal"):
                internal += 1
            elif order["status"] in OPEN_STATUSES:
                open_value += order.get("consolidated_total") or order.get("subtotal") or 0

        expiring_soon = self.db.sales_orders.count_documents({
            "status": S.QUOTED.value,
            "quote_expires_at": {"$gte": now, "$lte": now + timedelta(days=self.settings.QUOTE_REMINDER_DAYS)},
        })

        awaiting_payment = 0.0
        for invoice in self.db.invoices.find({"status": {"$in": ["unpaid", "partial"]}}, {"_id": 0, "total": 1, "amount_paid": 1}):
            awaiting_payment += (invoice.get("total") or 0) - (invoice.get("amount_paid") or 0)

        return {
            "status_counts": counts,
            "open_order_value": round_money(open_value),
            "quotes_expiring_soon": expiring_soon,
            "awaiting_payment_total": round_money(awaiting_payment),
            "internal_orders": internal,
            "active_batches": self.db.production_batches.count_documents({"status": {"$in": list(ACTIVE_BATCH_STATUSES)}}),
        }

    def queue(self) -> List[Dict[str, Any]]:
        """In-queue and in-production orders, highest batch priority first, then oldest."""
        orders = list(self.db.sales_orders.find({"status": {"$in": QUEUE_STATUSES}}, {"_id": 0, "quote_link_token": 0}))
        customers = {
            c["id"]: c.get("name")
            for c in self.db.customers.find(
                {"id": {"$in": [o["customer_id"] for o in orders if o.get("customer_id")]}}, {"_id": 0, "id": 1, "name": 1}
            )
        }

        rows = []
        for order in orders:
            top = list(
                self.db.production_batches.find({"so_id": order["id"]}, {"_id": 0, "priority_index": 1})
                .sort("priority_index", -1).limit(1)
            )
            rows.append({
                **order,
                "customer_name": customers.get(order.get("customer_id")),
                "priority_index": (top[0].get("priority_index") or 0) if top else 0,
                "progress": order_progress(self.db, order["id"]),
            })

        # orders without batches sort last
        rows.sort(key=lambda r: r["created_at"])
        rows.sort(key=lambda r: r["priority_index"], reverse=True)
        return rows
