import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from .schema import (
    OrderCreateRequest,
    OrderStatus,
    DepositStatus,
)
from .lines import price_lines
from .consolidation import (
    fetch_addon_orders,
    should_show_consolidated_view,
    calculate_consolidated_totals,
    get_consolidated_line_items,
)
from .addons import can_create_addon, get_addon_blocked_reason
from .status_machine import OrderLifecycle, OrderStateError
from ..auth.schema import JWTClaims, UserRole, STAFF_ROLES
from ...config import get_settings
from ...database.db import get_database
from ...utils.audit import log_event
from ...utils.helperFunctions import (
    generate_unique_id,
    generate_link_token,
    next_human_uid,
    round_money,
)

logger = logging.getLogger(__name__)


def setting_value(db, key: str, default):
    """Runtime settings row (``settings`` collection) with a config fallback."""
    row = db.settings.find_one({"key": key})
    if not row or row.get("value") in (None, ""):
        return default
    return type(default)(row["value"])


class OrderController:
    def __init__(self):
        self.db = get_database()
        self.settings = get_settings()
        self.lifecycle = OrderLifecycle(self.db)

    # ----- access -----

    def get_order_for(self, order_id: str, actor: JWTClaims) -> Dict[str, Any]:
        """Load an order the caller may see; other customers' orders look missing."""
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        if actor.role == UserRole.CUSTOMER and order.get("customer_id") != actor.role_entity_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        return order

    # ----- create -----

    async def create_order(self, request: OrderCreateRequest, actor: JWTClaims) -> Dict[str, Any]:
        if actor.role == UserRole.CUSTOMER:
            if request.is_internal:
                raise HTTPException(status_code=403, detail="Customers cannot create internal orders")
            customer_id = actor.role_entity_id
        else:
            customer_id = request.customer_id

        if not request.is_internal:
            if not customer_id:
                raise HTTPException(status_code=400, detail="customer_id is required for wholesale orders")
            if not self.db.customers.find_one({"id": customer_id}):
                raise HTTPException(status_code=404, detail="Customer not found")

        order_id = generate_unique_id("so")
        kit_size = setting_value(self.db, "kit_size", self.settings.KIT_SIZE)
        line_docs, subtotal, label_required = price_lines(
            self.db, order_id, request.lines, kit_size, allow_manual_price=actor.role in STAFF_ROLES
        )

        if request.is_internal:
            deposit_required = False
        elif request.deposit_required is not None and actor.role in STAFF_ROLES:
            deposit_required = request.deposit_required
        else:
            deposit_required = True

        deposit_percent = request.deposit_percent if actor.role in STAFF_ROLES else None
        if deposit_percent is None:
            deposit_percent = setting_value(self.db, "default_deposit_percent", self.settings.DEFAULT_DEPOSIT_PERCENT)
        deposit_amount = round_money(subtotal * deposit_percent / 100) if deposit_required else 0

        prefix = self.settings.INTERNAL_ORDER_PREFIX if request.is_internal else self.settings.ORDER_NUMBER_PREFIX
        now = datetime.utcnow()
        order = {
            "id": order_id,
            **next_human_uid(self.db.sales_orders, prefix),
            "customer_id": customer_id if not request.is_internal else None,
            "status": OrderStatus.DRAFT.value,
            "is_internal": request.is_internal,
            "label_required": label_required,
            "subtotal": subtotal,
            "deposit_required": deposit_required,
            "deposit_amount": deposit_amount,
            "deposit_status": DepositStatus.UNPAID.value,
            "quote_expiration_days": self.settings.QUOTE_EXPIRATION_DAYS,
            "quote_expires_at": None,
            "quote_link_token": generate_link_token(),
            "consolidated_total": None,
            "parent_order_id": None,
            "manual_payment_notes": None,
            "notes": request.notes,
            "source_channel": "portal" if actor.role == UserRole.CUSTOMER else "staff",
            "created_by": actor.user_id,
            "created_at": now,
            "updated_at": now,
        }
        self.db.sales_orders.insert_one(dict(order))
        self.db.sales_order_lines.insert_many([dict(d) for d in line_docs])

        log_event("sales_order", order_id, "created", None,
                  {"human_uid": order["human_uid"], "subtotal": subtotal, "is_internal": request.is_internal},
                  actor.user_id)
        logger.info(f"Order {order['human_uid']} created by {actor.email}")

        order["lines"] = line_docs
        return order

    # ----- read -----

    async def list_orders(
        self,
        actor: JWTClaims,
        status_filter: Optional[OrderStatus] = None,
        customer_id: Optional[str] = None,
        include_addons: bool = True,
        limit: int = 100,
        skip: int = 0,
    ) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if actor.role == UserRole.CUSTOMER:
            query["customer_id"] = actor.role_entity_id
        elif customer_id:
            query["customer_id"] = customer_id
        if status_filter:
            query["status"] = status_filter.value
        if not include_addons:
            query["parent_order_id"] = None

        cursor = self.db.sales_orders.find(query, {"_id": 0}).sort("created_at", -1).skip(skip).limit(limit)
        return list(cursor)

    async def get_order_detail(self, order_id: str, actor: JWTClaims) -> Dict[str, Any]:
        order = self.get_order_for(order_id, actor)
        lines = list(self.db.sales_order_lines.find({"so_id": order_id}, {"_id": 0}))
        addons = fetch_addon_orders(self.db, order_id)

        detail = {
            **order,
            "lines": lines,
            "batches": list(self.db.production_batches.find({"so_id": order_id}, {"_id": 0}).sort("created_at", 1)),
            "invoices": list(self.db.invoices.find({"so_id": order_id}, {"_id": 0}).sort("created_at", 1)),
            "shipments": list(self.db.shipments.find({"so_id": order_id}, {"_id": 0}).sort("created_at", 1)),
            "addons": addons,
            "can_create_addon": can_create_addon(order["status"]) and not order.get("parent_order_id"),
            "addon_blocked_reason": get_addon_blocked_reason(order["status"]),
            "consolidated": None,
        }
        if addons and should_show_consolidated_view(order["status"]):
            detail["consolidated"] = {
                **calculate_consolidated_totals(order.get("subtotal") or 0, lines, addons),
                "line_items": get_consolidated_line_items(order_id, order["human_uid"], lines, addons),
            }
        return detail

    # ----- status -----

    async def validate_status(self, order_id: str, new_status: OrderStatus, actor: JWTClaims) -> Dict[str, Any]:
        self.get_order_for(order_id, actor)
        return self.lifecycle.check(order_id, new_status).to_dict()

    async def change_status(
        self,
        order_id: str,
        new_status: OrderStatus,
        actor: JWTClaims,
        override_note: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.get_order_for(order_id, actor)
        try:
            result = self.lifecycle.apply_status_change(order_id, new_status, actor, override_note)
        except OrderStateError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_detail())
        return {
            "success": True,
            "changed": result["changed"],
            "order": result["order"],
            "validation": result["check"],
        }

    async def order_history(self, order_id: str, actor: JWTClaims) -> List[Dict[str, Any]]:
        self.get_order_for(order_id, actor)
        cursor = self.db.audit_log.find(
            {"entity": "sales_order", "entity_id": order_id}, {"_id": 0}
        ).sort("created_at", 1)
        return list(cursor)
