"""
Production batches.

A batch is one manufacturing run for one SKU on one order, numbered
``PREFIX-YYMM-001`` where PREFIX is the SKU's batch prefix (or its code).
Batch status changes feed the order lifecycle: the first batch going to
``wip`` starts production, the last one completing ends it.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from .schema import (
    BatchStatus,
    BatchCreateRequest,
    BatchStatusRequest,
    BatchOutputRequest,
)
from ..auth.schema import JWTClaims
from ..orders.schema import OrderStatus
from ..orders.status_machine import OrderLifecycle
from ...database.db import get_database
from ...utils.audit import log_event
from ...utils.helperFunctions import generate_unique_id, next_human_uid

logger = logging.getLogger(__name__)

B = BatchStatus

BATCH_TRANSITIONS = {
    B.QUEUED: {B.WIP, B.HOLD},
    B.WIP: {B.HOLD, B.COMPLETE},
    B.HOLD: {B.QUEUED, B.WIP},
    B.COMPLETE: set(),
}

# Orders that may still get new batches
PLANNABLE_STATUSES = (
    OrderStatus.DEPOSIT_DUE.value,
    OrderStatus.IN_QUEUE.value,
    OrderStatus.IN_PRODUCTION.value,
)

ACTIVE_BATCH_STATUSES = (B.QUEUED.value, B.WIP.value)


def batch_progress(batch: Dict[str, Any]) -> float:
    """Good bottles as a percentage of planned, capped at 100."""
    planned = batch.get("qty_bottle_planned") or 0
    if planned <= 0:
        return 0.0
    good = batch.get("qty_bottle_good") or 0
    return round(min(100.0, good / planned * 100), 1)


def batch_number_prefix(sku: Dict[str, Any], now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    prefix = sku.get("batch_prefix") or sku["code"]
    return f"{prefix}-{now.strftime('%y%m')}"


def order_progress(db, so_id: str) -> Dict[str, Any]:
    """Roll-up of every batch on an order."""
    batches = list(db.production_batches.find({"so_id": so_id}, {"_id": 0}))
    planned = sum(b.get("qty_bottle_planned") or 0 for b in batches)
    good = sum(b.get("qty_bottle_good") or 0 for b in batches)
    return {
        "batch_count": len(batches),
        "complete_count": sum(1 for b in batches if b["status"] == B.COMPLETE.value),
        "qty_bottle_planned": planned,
        "qty_bottle_good": good,
        "percent": round(min(100.0, good / planned * 100), 1) if planned else 0.0,
    }


class ProductionController:
    def __init__(self):
        self.db = get_database()
        self.lifecycle = OrderLifecycle(self.db)

    def _get_batch(self, batch_id: str) -> Dict[str, Any]:
        batch = self.db.production_batches.find_one({"id": batch_id}, {"_id": 0})
        if not batch:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")
        return batch

    def _with_progress(self, batch: Dict[str, Any]) -> Dict[str, Any]:
        return {**batch, "progress": batch_progress(batch)}

    def create_batch(self, request: BatchCreateRequest, actor: JWTClaims) -> Dict[str, Any]:
        order = self.db.sales_orders.find_one({"id": request.so_id}, {"_id": 0})
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")
        if order["status"] not in PLANNABLE_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=f"Batches cannot be planned for an order in {order['status']}",
            )

        line_ids = [a.so_line_id for a in request.allocations]
        lines = {
            line["id"]: line
            for line in self.db.sales_order_lines.find({"id": {"$in": line_ids}, "so_id": order["id"]}, {"_id": 0})
        }
        missing = [i for i in line_ids if i not in lines]
        if missing:
            raise HTTPException(status_code=400, detail=f"Order lines not found on this order: {', '.join(missing)}")

        sku_ids = {lines[i]["sku_id"] for i in line_ids}
        if len(sku_ids) != 1:
            raise HTTPException(status_code=400, detail="A batch can only contain one SKU")
        sku = self.db.skus.find_one({"id": sku_ids.pop()}, {"_id": 0})
        if not sku:
            raise HTTPException(status_code=400, detail="SKU for these lines no longer exists")

        allocated = sum(a.bottle_qty for a in request.allocations)
        planned = request.qty_bottle_planned or allocated
        if planned < allocated:
            raise HTTPException(status_code=400, detail="Planned quantity is less than the allocated bottles")

        top = list(self.db.production_batches.find({}, {"_id": 0, "priority_index": 1}).sort("priority_index", -1).limit(1))
        now = datetime.utcnow()
        batch = {
            "id": generate_unique_id("batch"),
            **next_human_uid(self.db.production_batches, batch_number_prefix(sku, now), width=3),
            "so_id": order["id"],
            "sku_id": sku["id"],
            "sku_code": sku["code"],
            "status": B.QUEUED.value,
            "priority_index": (top[0].get("priority_index") or 0) + 1 if top else 1,
            "items": [a.model_dump() for a in request.allocations],
            "qty_bottle_planned": planned,
            "qty_bottle_good": 0,
            "qty_bottle_scrap": 0,
            "planned_start": request.planned_start,
            "actual_start": None,
            "actual_finish": None,
            "notes": request.notes,
            "created_by": actor.user_id,
            "created_at": now,
            "updated_at": now,
        }
        self.db.production_batches.insert_one(dict(batch))
        log_event(
            "production_batch", batch["id"], "created", None,
            {"human_uid": batch["human_uid"], "so_id": order["id"], "qty_bottle_planned": planned},
            actor.user_id,
        )
        logger.info(f"Batch {batch['human_uid']} planned for {order['human_uid']} ({planned} bottles)")
        return self._with_progress(batch)

    def list_batches(self, so_id: Optional[str] = None, batch_status: Optional[BatchStatus] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if so_id:
            query["so_id"] = so_id
        if batch_status:
            query["status"] = batch_status.value
        cursor = self.db.production_batches.find(query, {"_id": 0}).sort("created_at", -1)
        return [self._with_progress(b) for b in cursor]

    def get_batch(self, batch_id: str) -> Dict[str, Any]:
        return self._with_progress(self._get_batch(batch_id))

    def update_batch_status(self, batch_id: str, request: BatchStatusRequest, actor: JWTClaims) -> Dict[str, Any]:
        batch = self._get_batch(batch_id)
        current = B(batch["status"])
        new_status = request.status
        if current == new_status:
            return {"batch": self._with_progress(batch), "order_status": None}
        if new_status not in BATCH_TRANSITIONS[current]:
            raise HTTPException(
                status_code=400,
                detail=f"Batch cannot move from {current.value} to {new_status.value}",
            )

        now = datetime.utcnow()
        fields: Dict[str, Any] = {"status": new_status.value, "updated_at": now}
        if request.qty_bottle_good is not None:
            fields["qty_bottle_good"] = request.qty_bottle_good
        if request.qty_bottle_scrap is not None:
            fields["qty_bottle_scrap"] = request.qty_bottle_scrap
        if request.notes:
            fields["notes"] = request.notes

        if new_status == B.WIP and not batch.get("actual_start"):
            fields["actual_start"] = now
        if new_status == B.COMPLETE:
            good = fields.get("qty_bottle_good", batch.get("qty_bottle_good") or 0)
            if good > batch["qty_bottle_planned"]:
                raise HTTPException(status_code=400, detail="Good quantity cannot exceed the planned quantity")
            fields["actual_finish"] = now

        self.db.production_batches.update_one({"id": batch_id}, {"$set": fields})
        log_event(
            "production_batch", batch_id, "status_change",
            {"status": current.value}, {k: v for k, v in fields.items() if k != "updated_at"},
            actor.user_id,
        )

        order = None
        if new_status == B.WIP:
            order = self.lifecycle.on_batch_started(batch["so_id"])
        elif new_status == B.COMPLETE:
            order = self.lifecycle.on_batches_updated(batch["so_id"])

        return {
            "batch": self.get_batch(batch_id),
            "order_status": order["status"] if order else None,
        }

    def record_output(self, batch_id: str, request: BatchOutputRequest, actor: JWTClaims) -> Dict[str, Any]:
        """Set the running good/scrap counts of a batch that is still open."""
        batch = self._get_batch(batch_id)
        if batch["status"] == B.COMPLETE.value:
            raise HTTPException(status_code=400, detail="Batch is already complete")
        fields = {
            "qty_bottle_good": request.qty_bottle_good,
            "qty_bottle_scrap": request.qty_bottle_scrap,
            "updated_at": datetime.utcnow(),
        }
        self.db.production_batches.update_one({"id": batch_id}, {"$set": fields})
        log_event(
            "production_batch", batch_id, "output_recorded",
            {"qty_bottle_good": batch.get("qty_bottle_good"), "qty_bottle_scrap": batch.get("qty_bottle_scrap")},
            {"qty_bottle_good": request.qty_bottle_good, "qty_bottle_scrap": request.qty_bottle_scrap},
            actor.user_id,
        )
        return self.get_batch(batch_id)

    def queue(self, limit: int = 50) -> List[Dict[str, Any]]:
        """Open batches, most urgent first."""
        cursor = (
            self.db.production_batches.find({"status": {"$in": list(ACTIVE_BATCH_STATUSES)}}, {"_id": 0})
            .sort([("priority_index", -1), ("created_at", 1)])
            .limit(limit)
        )
        batches = []
        for batch in cursor:
            order = self.db.sales_orders.find_one({"id": batch["so_id"]}, {"_id": 0, "human_uid": 1, "customer_id": 1}) or {}
            customer = self.db.customers.find_one({"id": order.get("customer_id")}, {"_id": 0, "name": 1}) if order.get("customer_id") else None
            batches.append({
                **self._with_progress(batch),
                "order_number": order.get("human_uid"),
                "customer_name": (customer or {}).get("name"),
            })
        return batches

    def reprioritize(self, batch_ids: List[str], actor: JWTClaims) -> List[Dict[str, Any]]:
        """Rewrite priority_index so ``batch_ids`` run in the given order (first = most urgent)."""
        found = {b["id"] for b in self.db.production_batches.find({"id": {"$in": batch_ids}}, {"_id": 0, "id": 1})}
        unknown = [i for i in batch_ids if i not in found]
        if unknown:
            raise HTTPException(status_code=404, detail=f"Batches not found: {', '.join(unknown)}")

        # the listed batches go ahead of everything else still open
        others = list(
            self.db.production_batches.find(
                {"id": {"$nin": batch_ids}, "status": {"$in": list(ACTIVE_BATCH_STATUSES)}},
                {"_id": 0, "priority_index": 1},
            ).sort("priority_index", -1).limit(1)
        )
        base = (others[0].get("priority_index") or 0) if others else 0
        top = len(batch_ids)
        for position, batch_id in enumerate(batch_ids):
            self.db.production_batches.update_one(
                {"id": batch_id},
                {"$set": {"priority_index": base + top - position, "updated_at": datetime.utcnow()}},
            )
        log_event("production_batch", "queue", "reprioritized", None, {"order": batch_ids}, actor.user_id)
        return self.queue()
