import logging
from typing import Any, Dict, List

from fastapi import HTTPException, status

from ..auth.schema import JWTClaims
from ..orders.consolidation import fetch_addon_orders, should_show_consolidated_view, calculate_consolidated_totals
from ..production.controller import order_progress
from ...database.db import get_database

logger = logging.getLogger(__name__)

# What a customer may see of a SKU
PUBLIC_SKU_FIELDS = ("id", "code", "description", "price_per_kit", "price_per_piece", "pack_size", "is_bundle", "label_required")


class PortalController:
    """Customer-facing views. Every lookup is scoped to the caller's customer record."""

    def __init__(self):
        self.db = get_database()

    def _customer_id(self, user: JWTClaims) -> str:
        if not user.customer_id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Customer account required")
        return user.customer_id

    def _own_order(self, order_id: str, user: JWTClaims) -> Dict[str, Any]:
        order = self.db.sales_orders.find_one(
            {"id": order_id, "customer_id": self._customer_id(user)}, {"_id": 0, "quote_link_token": 0}
        )
        if not order:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        return order

    def list_orders(self, user: JWTClaims) -> List[Dict[str, Any]]:
        cursor = self.db.sales_orders.find(
            {"customer_id": self._customer_id(user)}, {"_id": 0, "quote_link_token": 0}
        ).sort("created_at", -1)
        return [{**order, "progress": order_progress(self.db, order["id"])} for order in cursor]

    def get_order(self, order_id: str, user: JWTClaims) -> Dict[str, Any]:
        order = self._own_order(order_id, user)
        lines = list(self.db.sales_order_lines.find({"so_id": order_id}, {"_id": 0}))
        addons = fetch_addon_orders(self.db, order_id)
        shipments = list(
            self.db.shipments.find({"so_id": order_id, "voided_at": None}, {"_id": 0, "shipstation_shipment_id": 0})
            .sort("created_at", -1)
        )
        detail = {
            **order,
            "lines": lines,
            "addons": addons,
            "progress": order_progress(self.db, order_id),
            "invoices": list(self.db.invoices.find({"so_id": order_id, "status": {"$ne": "void"}}, {"_id": 0})),
            "shipments": shipments,
            "consolidated": None,
        }
        if addons and should_show_consolidated_view(order["status"]):
            detail["consolidated"] = calculate_consolidated_totals(order.get("subtotal") or 0, lines, addons)
        return detail

    def payment_history(self, user: JWTClaims) -> List[Dict[str, Any]]:
        customer_id = self._customer_id(user)
        orders = {
            o["id"]: o["human_uid"]
            for o in self.db.sales_orders.find({"customer_id": customer_id}, {"_id": 0, "id": 1, "human_uid": 1})
        }
        if not orders:
            return []
        cursor = self.db.payment_transactions.find(
            {"so_id": {"$in": list(orders)}}, {"_id": 0, "metadata": 0}
        ).sort("created_at", -1)
        return [{**txn, "order_number": orders.get(txn["so_id"])} for txn in cursor]

    def catalog(self) -> List[Dict[str, Any]]:
        skus = self.db.skus.find({"active": True}, {"_id": 0}).sort("code", 1)
        return [{k: sku.get(k) for k in PUBLIC_SKU_FIELDS} for sku in skus]
