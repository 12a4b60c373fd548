"""Add-on orders: eligibility by parent status, size limit and creation."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from .schema import OrderStatus, AddonStatus, DepositStatus, OrderLineInput
from .lines import price_lines
from .consolidation import consolidated_total_for
from ..auth.schema import JWTClaims, UserRole
from ...config import get_settings
from ...database.db import get_database
from ...utils.audit import log_event
from ...utils.helperFunctions import generate_unique_id, next_human_uid, round_money

logger = logging.getLogger(__name__)

# Packing has started or later
ADDON_BLOCKED_STATUSES = (
    OrderStatus.IN_PACKING,
    OrderStatus.PACKED,
    OrderStatus.AWAITING_INVOICE,
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
    OrderStatus.CANCELLED,
)

_BLOCKED_REASONS = {
    OrderStatus.IN_PACKING: "Add-ons cannot be created once packing has started",
    OrderStatus.PACKED: "Order has already been packed",
    OrderStatus.AWAITING_INVOICE: "Order is in the invoicing/payment stage",
    OrderStatus.AWAITING_PAYMENT: "Order is in the invoicing/payment stage",
    OrderStatus.READY_TO_SHIP: "Order is ready to ship",
    OrderStatus.SHIPPED: "Order has already been shipped",
    OrderStatus.CANCELLED: "Order has been cancelled",
}


def can_create_addon(status: str) -> bool:
    return status not in [s.value for s in ADDON_BLOCKED_STATUSES]


def get_addon_blocked_reason(status: str) -> Optional[str]:
    if can_create_addon(status):
        return None
    return _BLOCKED_REASONS.get(OrderStatus(status), "Add-ons are not available for this order status")


def validate_addon_size(addon_total: float, parent_total: float, max_percent: float) -> Dict[str, Any]:
    """max_percent <= 0 means no limit is configured."""
    if max_percent <= 0:
        return {"valid": True}

    if not parent_total:
        return {"valid": False, "message": "Parent order has no value to compare the add-on against."}

    percent_of_parent = addon_total / parent_total * 100
    if percent_of_parent > max_percent:
        return {
            "valid": False,
            "message": (
                f"Add-on exceeds {max_percent:g}% of original order value. "
                "Consider creating a separate order instead."
            ),
        }
    return {"valid": True}


class AddOnCreator:
    def __init__(self, db=None):
        self.db = db if db is not None else get_database()
        self.settings = get_settings()

    def _max_percent(self) -> float:
        row = self.db.settings.find_one({"key": "addon_max_percent"})
        if row and row.get("value") is not None:
            return float(row["value"])
        return self.settings.ADDON_MAX_PERCENT

    def _kit_size(self) -> int:
        row = self.db.settings.find_one({"key": "kit_size"})
        return int(row["value"]) if row and row.get("value") else self.settings.KIT_SIZE

    def create_addon(
        self,
        parent_id: str,
        lines: List[OrderLineInput],
        actor: JWTClaims,
        reason: Optional[str] = None,
        override_note: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not lines:
            raise HTTPException(status_code=400, detail="Please add at least one product")

        parent = self.db.sales_orders.find_one({"id": parent_id}, {"_id": 0})
        if not parent:
            raise HTTPException(status_code=404, detail="Order not found")
        if parent.get("parent_order_id"):
            raise HTTPException(status_code=400, detail="Add-ons cannot be attached to another add-on")

        if actor.role == UserRole.CUSTOMER and parent.get("customer_id") != actor.role_entity_id:
            raise HTTPException(status_code=404, detail="Order not found")

        blocked_reason = get_addon_blocked_reason(parent["status"])
        is_override = blocked_reason is not None
        note = (override_note or "").strip()
        if is_override:
            if actor.role != UserRole.ADMIN or not note:
                raise HTTPException(status_code=409, detail=blocked_reason)

        addon_id = generate_unique_id("so")
        line_docs, addon_total, _ = price_lines(
            self.db, addon_id, lines, self._kit_size(), allow_manual_price=actor.role != UserRole.CUSTOMER
        )

        size_check = validate_addon_size(addon_total, parent.get("subtotal") or 0, self._max_percent())
        if not size_check["valid"]:
            raise HTTPException(status_code=400, detail=size_check["message"])

        now = datetime.utcnow()
        numbering = next_human_uid(self.db.sales_orders, self.settings.ADDON_ORDER_PREFIX)
        addon = {
            "id": addon_id,
            **numbering,
            "customer_id": parent.get("customer_id"),
            "parent_order_id": parent_id,
            "status": parent["status"] if is_override else OrderStatus.IN_QUEUE.value,
            "subtotal": addon_total,
            "deposit_required": False,
            "deposit_amount": 0,
            "deposit_status": DepositStatus.UNPAID.value,
            "label_required": False,
            "is_internal": False,
            "source_channel": "addon",
            "created_by": actor.user_id,
            "created_at": now,
            "updated_at": now,
        }
        self.db.sales_orders.insert_one(dict(addon))
        self.db.sales_order_lines.insert_many([dict(d) for d in line_docs])
        self.db.order_addons.insert_one({
            "id": generate_unique_id("addon"),
            "parent_so_id": parent_id,
            "addon_so_id": addon_id,
            "created_by": actor.user_id,
            "reason": reason or f"Add-on for {parent['human_uid']}",
            "admin_notes": note if is_override else None,
            "status": AddonStatus.APPROVED.value,
            "approved_by": actor.user_id,
            "approved_at": now,
            "created_at": now,
        })

        new_total = None
        invoice_updated = False
        if is_override:
            new_total = consolidated_total_for(self.db, parent)
            self.db.sales_orders.update_one({"id": parent_id}, {"$set": {"consolidated_total": new_total}})
            invoice_updated = self.update_unpaid_final_invoice(parent_id, new_total)

        after = {"parent_order": parent["human_uid"], "addon_order": addon["human_uid"], "total": addon_total}
        if is_override:
            after.update({
                "override_note": note,
                "new_consolidated_total": new_total,
                "invoice_updated": invoice_updated,
            })
        log_event(
            "order_addon",
            addon_id,
            "created_override" if is_override else "created",
            {"parent_status": parent["status"], "blocked_reason": blocked_reason} if is_override else None,
            after,
            actor.user_id,
        )
        logger.info(f"Add-on {addon['human_uid']} created for {parent['human_uid']} (override={is_override})")

        addon["lines"] = line_docs
        return {
            "addon": addon,
            "override": is_override,
            "consolidated_total": new_total,
            "invoice_updated": invoice_updated,
        }

    def update_unpaid_final_invoice(self, parent_id: str, new_subtotal: float) -> bool:
        """Re-total an unpaid final invoice to the new consolidated amount, keeping its tax."""
        invoice = self.db.invoices.find_one({"so_id": parent_id, "type": "final", "status": "unpaid"})
        if not invoice:
            return False
        tax = invoice.get("tax") or 0
        self.db.invoices.update_one(
            {"id": invoice["id"]},
            {"$set": {
                "subtotal": round_money(new_subtotal),
                "total": round_money(new_subtotal + tax),
                "updated_at": datetime.utcnow(),
            }}
        )
        return True
