"""
Sales order lifecycle.

Transitions are validated against a lookup table plus a handful of order
facts (batches, invoices, shipments). Warnings can be overridden by an
admin with a note; blockers cannot. Every persisted change is audited and
runs the follow-up rules: packed auto-advances to awaiting_invoice,
fulfilment statuses are mirrored onto add-on orders, and selected statuses
notify the customer.
"""
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from .schema import OrderStatus, DepositStatus
from .consolidation import consolidated_total_for
from ..auth.schema import JWTClaims, UserRole
from ...database.db import get_database
from ...utils.audit import log_event

logger = logging.getLogger(__name__)

S = OrderStatus

TRANSITIONS: Dict[OrderStatus, frozenset] = {
    S.DRAFT: frozenset({S.QUOTED, S.IN_QUEUE, S.CANCELLED}),
    S.QUOTED: frozenset({S.DEPOSIT_DUE, S.IN_QUEUE, S.DRAFT, S.CANCELLED}),
    S.DEPOSIT_DUE: frozenset({S.IN_QUEUE, S.CANCELLED}),
    S.IN_QUEUE: frozenset({S.IN_PRODUCTION, S.CANCELLED}),
    S.IN_PRODUCTION: frozenset({S.IN_LABELING, S.IN_PACKING, S.CANCELLED}),
    S.IN_LABELING: frozenset({S.IN_PACKING, S.CANCELLED}),
    S.IN_PACKING: frozenset({S.PACKED, S.AWAITING_INVOICE, S.CANCELLED}),
    S.PACKED: frozenset({S.AWAITING_INVOICE, S.READY_TO_SHIP, S.CANCELLED}),
    S.AWAITING_INVOICE: frozenset({S.AWAITING_PAYMENT, S.CANCELLED}),
    S.AWAITING_PAYMENT: frozenset({S.READY_TO_SHIP, S.CANCELLED}),
    S.READY_TO_SHIP: frozenset({S.SHIPPED, S.CANCELLED}),
    # only reached again through a label void
    S.SHIPPED: frozenset({S.READY_TO_SHIP}),
    S.CANCELLED: frozenset(),
}

# Parent statuses copied onto add-on orders
ADDON_SYNC_STATUSES = frozenset({
    S.IN_PACKING, S.AWAITING_INVOICE, S.AWAITING_PAYMENT,
    S.READY_TO_SHIP, S.SHIPPED, S.CANCELLED,
})

# Statuses the customer hears about
NOTIFY_STATUSES = frozenset({S.IN_PRODUCTION, S.IN_PACKING, S.READY_TO_SHIP, S.SHIPPED})


class OrderStateError(ValueError):
    """A status change was refused. Routes turn this into a 409."""

    def __init__(self, message: str, blockers: Optional[List[str]] = None, warnings: Optional[List[str]] = None):
        super().__init__(message)
        self.blockers = blockers or []
        self.warnings = warnings or []

    def to_detail(self) -> Dict[str, Any]:
        return {"message": str(self), "blockers": self.blockers, "warnings": self.warnings}


@dataclass
class OrderFacts:
    status: OrderStatus
    is_internal: bool = False
    label_required: bool = False
    has_batches: bool = False
    all_batches_complete: bool = True
    has_deposit_invoice: bool = False
    has_final_invoice: bool = False
    deposit_paid: bool = False
    has_shipment: bool = False


@dataclass
class TransitionCheck:
    valid: bool
    current_status: OrderStatus
    new_status: OrderStatus
    warnings: List[str] = field(default_factory=list)
    blockers: List[str] = field(default_factory=list)

    @property
    def requires_override(self) -> bool:
        return bool(self.warnings or self.blockers)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["current_status"] = self.current_status.value
        data["new_status"] = self.new_status.value
        data["requires_override"] = self.requires_override
        return data


def validate_transition(facts: OrderFacts, new_status: OrderStatus) -> TransitionCheck:
    """Check a move from ``facts.status`` to ``new_status`` without touching the database."""
    current = S(facts.status)
    new_status = S(new_status)

    if current == new_status:
        return TransitionCheck(valid=True, current_status=current, new_status=new_status)

    warnings: List[str] = []
    blockers: List[str] = []

    if current == S.CANCELLED:
        blockers.append("Cancelled orders cannot change status")
    elif new_status not in TRANSITIONS[current]:
        warnings.append(f"Unusual transition from {current.value}")

    if new_status == S.IN_PRODUCTION:
        if not facts.has_batches:
            warnings.append("No production batches exist for this order")

    elif new_status == S.IN_LABELING:
        if not facts.all_batches_complete:
            blockers.append("All production batches must be complete before labeling")
        if not facts.label_required:
            warnings.append("Order does not require labeling")

    elif new_status == S.IN_PACKING:
        if facts.label_required and current != S.IN_LABELING:
            warnings.append(f"Order requires labeling but current status is {current.value}")
        if not facts.all_batches_complete:
            blockers.append("All production batches must be complete before packing")

    elif new_status == S.AWAITING_INVOICE:
        if current not in (S.IN_PACKING, S.PACKED):
            warnings.append("Order should be in packing before invoicing")

    elif new_status == S.AWAITING_PAYMENT:
        if not facts.has_final_invoice:
            blockers.append("Final invoice must be created before marking as awaiting payment")

    elif new_status == S.DEPOSIT_DUE:
        if not facts.has_deposit_invoice:
            warnings.append("No deposit invoice exists")

    elif new_status == S.IN_QUEUE:
        if current == S.DEPOSIT_DUE and not facts.deposit_paid:
            warnings.append("Deposit has not been marked as paid")

    elif new_status == S.READY_TO_SHIP:
        if facts.is_internal:
            blockers.append("Internal orders are not shipped to customers")

    elif new_status == S.SHIPPED:
        if not facts.has_shipment:
            blockers.append("Shipment record must be created before marking as shipped")

    return TransitionCheck(
        valid=not blockers,
        current_status=current,
        new_status=new_status,
        warnings=warnings,
        blockers=blockers,
    )


def load_order_facts(db, order: Dict[str, Any]) -> OrderFacts:
    order_id = order["id"]
    return OrderFacts(
        status=S(order["status"]),
        is_internal=bool(order.get("is_internal")),
        label_required=bool(order.get("label_required")),
        has_batches=db.production_batches.count_documents({"so_id": order_id}) > 0,
        all_batches_complete=db.production_batches.count_documents(
            {"so_id": order_id, "status": {"$ne": "complete"}}
        ) == 0,
        has_deposit_invoice=db.invoices.count_documents({"so_id": order_id, "type": "deposit"}) > 0,
        has_final_invoice=db.invoices.count_documents({"so_id": order_id, "type": "final"}) > 0,
        deposit_paid=order.get("deposit_status") == DepositStatus.PAID.value,
        has_shipment=db.shipments.count_documents({"so_id": order_id, "voided_at": None}) > 0,
    )


class OrderLifecycle:
    """Persists status changes and runs the rules that follow them."""

    def __init__(self, db=None):
        self.db = db if db is not None else get_database()

    def _get_order(self, order_id: str) -> Dict[str, Any]:
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order:
            raise LookupError(f"Order {order_id} not found")
        return order

    def check(self, order_id: str, new_status: OrderStatus) -> TransitionCheck:
        order = self._get_order(order_id)
        return validate_transition(load_order_facts(self.db, order), new_status)

    def apply_status_change(
        self,
        order_id: str,
        new_status: OrderStatus,
        actor: JWTClaims,
        override_note: Optional[str] = None,
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Validate and persist a manual status change."""
        new_status = S(new_status)
        order = self._get_order(order_id)
        check = validate_transition(load_order_facts(self.db, order), new_status)

        if check.current_status == new_status:
            return {"order": order, "check": check.to_dict(), "changed": False}

        if check.blockers:
            raise OrderStateError("Status change blocked", blockers=check.blockers, warnings=check.warnings)

        note = (override_note or "").strip()
        if check.warnings:
            if not note:
                raise OrderStateError("Override note required", warnings=check.warnings)
            if actor.role != UserRole.ADMIN:
                raise OrderStateError("Only admins can override status warnings", warnings=check.warnings)

        order = self._set_status(
            order,
            new_status,
            action="status_change",
            actor_id=actor.user_id,
            extra_before={"override_note": note} if check.warnings else None,
            extra_fields=extra_fields,
        )
        return {"order": order, "check": check.to_dict(), "changed": True}

    def _set_status(
        self,
        order: Dict[str, Any],
        new_status: OrderStatus,
        action: str,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        extra_before: Optional[Dict[str, Any]] = None,
        extra_fields: Optional[Dict[str, Any]] = None,
        notify: bool = True,
    ) -> Dict[str, Any]:
        old_status = order["status"]
        fields = {"status": new_status.value, "updated_at": datetime.utcnow()}
        if extra_fields:
            fields.update(extra_fields)

        # compare-and-set so two writers cannot both move the same order
        result = self.db.sales_orders.update_one({"id": order["id"], "status": old_status}, {"$set": fields})
        if result.matched_count == 0:
            raise OrderStateError(f"Order {order.get('human_uid', order['id'])} changed status concurrently")

        before = {"status": old_status}
        if reason:
            before["reason"] = reason
        if extra_before:
            before.update(extra_before)
        log_event("sales_order", order["id"], action, before, {"status": new_status.value}, actor_id)
        logger.info(f"Order {order.get('human_uid')} {old_status} -> {new_status.value} ({action})")

        order = {**order, **fields}
        return self._after_status_change(order, new_status, notify)

    def _after_status_change(self, order: Dict[str, Any], new_status: OrderStatus, notify: bool = True) -> Dict[str, Any]:
        if new_status == S.PACKED and not order.get("is_internal"):
            return self._set_status(order, S.AWAITING_INVOICE, "auto_status_change", reason="packing_complete")

        if new_status in ADDON_SYNC_STATUSES and not order.get("parent_order_id"):
            self.sync_addon_statuses(order, new_status)
            if new_status == S.IN_PACKING:
                total = consolidated_total_for(self.db, order)
                self.db.sales_orders.update_one({"id": order["id"]}, {"$set": {"consolidated_total": total}})
                order["consolidated_total"] = total

        if notify and new_status in NOTIFY_STATUSES and not order.get("is_internal"):
            # Imported here; notifications read orders through this package
            from ..notifications.service import notify_order_status_change
            notify_order_status_change(order, new_status.value)

        return order

    def sync_addon_statuses(self, parent: Dict[str, Any], new_status: OrderStatus) -> int:
        """Copy the parent's fulfilment status onto every linked add-on order."""
        links = list(self.db.order_addons.find({"parent_so_id": parent["id"]}, {"_id": 0, "addon_so_id": 1}))
        synced = 0
        for link in links:
            addon = self.db.sales_orders.find_one({"id": link["addon_so_id"]}, {"_id": 0})
            if not addon or addon["status"] == new_status.value:
                continue
            self.db.sales_orders.update_one(
                {"id": addon["id"]},
                {"$set": {"status": new_status.value, "updated_at": datetime.utcnow()}}
            )
            log_event(
                "sales_order", addon["id"], "addon_status_sync",
                {"status": addon["status"]},
                {"status": new_status.value, "parent_order_id": parent["id"]},
            )
            synced += 1
        return synced

    # ----- automatic advances -----

    def system_status_change(
        self,
        order: Dict[str, Any],
        new_status: OrderStatus,
        reason: str,
        actor_id: Optional[str] = None,
        extra_fields: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Move made by the system (quote accepted or expired) rather than by staff."""
        return self._set_status(order, S(new_status), "auto_status_change", actor_id=actor_id, reason=reason, extra_fields=extra_fields)

    def _auto_advance(self, order_id: str, expected: tuple, target: OrderStatus, reason: str) -> Optional[Dict[str, Any]]:
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order or order["status"] not in [s.value for s in expected]:
            return None
        try:
            return self._set_status(order, target, "auto_status_change", reason=reason)
        except OrderStateError as e:
            # another writer moved the order first; their status stands
            logger.info(f"auto advance of {order_id} to {target.value} skipped: {e}")
            return None

    def on_batch_started(self, order_id: str) -> Optional[Dict[str, Any]]:
        return self._auto_advance(order_id, (S.IN_QUEUE,), S.IN_PRODUCTION, "batch_started")

    def on_batches_updated(self, order_id: str) -> Optional[Dict[str, Any]]:
        """Move an in-production order on once every batch is complete."""
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order or order["status"] != S.IN_PRODUCTION.value:
            return None
        facts = load_order_facts(self.db, order)
        if not facts.has_batches or not facts.all_batches_complete:
            return None
        target = S.IN_LABELING if facts.label_required else S.IN_PACKING
        return self._auto_advance(order_id, (S.IN_PRODUCTION,), target, "production_complete")

    def on_final_invoice_created(self, order_id: str) -> Optional[Dict[str, Any]]:
        return self._auto_advance(order_id, (S.AWAITING_INVOICE,), S.AWAITING_PAYMENT, "final_invoice_created")

    def on_final_invoice_paid(self, order_id: str) -> Optional[Dict[str, Any]]:
        return self._auto_advance(
            order_id, (S.AWAITING_INVOICE, S.AWAITING_PAYMENT), S.READY_TO_SHIP, "final_invoice_paid"
        )

    def revert_to_ready_to_ship(self, order_id: str, actor_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Label void: a shipped order goes back to waiting for a label."""
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order or order["status"] != S.SHIPPED.value:
            return None
        return self._set_status(order, S.READY_TO_SHIP, "auto_status_change", actor_id=actor_id, reason="label_voided", notify=False)
