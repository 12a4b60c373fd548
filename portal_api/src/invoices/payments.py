"""
Invoice and payment bookkeeping shared by staff endpoints, quote acceptance
and the Stripe webhook.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from .schema import InvoiceType, InvoiceStatus
from ..orders.consolidation import consolidated_total_for, has_addons
from ..orders.schema import DepositStatus
from ...utils.helperFunctions import generate_unique_id, next_human_uid, round_money

logger = logging.getLogger(__name__)

INVOICE_PREFIX = "INV"


def invoice_amount_for(db, order: Dict[str, Any], invoice_type: InvoiceType) -> float:
    """Deposit invoices bill the deposit; final invoices bill the consolidated total when add-ons exist."""
    if InvoiceType(invoice_type) == InvoiceType.DEPOSIT:
        return round_money(order.get("deposit_amount"))
    if has_addons(db, order["id"]):
        return round_money(consolidated_total_for(db, order))
    return round_money(order.get("subtotal"))


def find_open_invoice(db, so_id: str, invoice_type: InvoiceType) -> Optional[Dict[str, Any]]:
    return db.invoices.find_one(
        {"so_id": so_id, "type": InvoiceType(invoice_type).value, "status": {"$ne": InvoiceStatus.VOID.value}},
        {"_id": 0},
    )


def create_invoice_record(
    db,
    order: Dict[str, Any],
    invoice_type: InvoiceType,
    tax: float = 0,
    due_days: int = 30,
    actor_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> Dict[str, Any]:
    invoice_type = InvoiceType(invoice_type)
    subtotal = invoice_amount_for(db, order, invoice_type)
    now = datetime.utcnow()
    invoice = {
        "id": generate_unique_id("inv"),
        **next_human_uid(db.invoices, INVOICE_PREFIX),
        "so_id": order["id"],
        "customer_id": order.get("customer_id"),
        "type": invoice_type.value,
        "status": InvoiceStatus.UNPAID.value,
        "subtotal": subtotal,
        "tax": round_money(tax),
        "total": round_money(subtotal + tax),
        "amount_paid": 0.0,
        "due_date": now + timedelta(days=due_days),
        "paid_at": None,
        "notes": notes,
        "created_by": actor_id,
        "created_at": now,
        "updated_at": now,
    }
    db.invoices.insert_one(dict(invoice))
    logger.info(f"Invoice {invoice['human_uid']} ({invoice_type.value}) created for {order.get('human_uid')}: {invoice['total']}")
    return invoice


def apply_invoice_payment(db, invoice: Dict[str, Any], amount: float, payment_ref: Optional[str] = None) -> str:
    """Add ``amount`` to the invoice and return its new status (paid or partial).

    A ``payment_ref`` (Stripe payment intent) is applied at most once per invoice.
    """
    if payment_ref and payment_ref in (invoice.get("payment_refs") or []):
        return invoice["status"]
    amount_paid = round_money((invoice.get("amount_paid") or 0) + amount)
    now = datetime.utcnow()
    fields: Dict[str, Any] = {"amount_paid": amount_paid, "updated_at": now}
    if amount_paid >= round_money(invoice.get("total")):
        fields["status"] = InvoiceStatus.PAID.value
        fields["paid_at"] = now
    else:
        fields["status"] = InvoiceStatus.PARTIAL.value
    _write_payment(db, invoice, fields, payment_ref)
    return fields["status"]


def settle_invoice(db, invoice: Dict[str, Any], amount: float, payment_ref: Optional[str] = None) -> bool:
    """Mark the invoice paid in full. Returns False when ``payment_ref`` was already applied."""
    if payment_ref and payment_ref in (invoice.get("payment_refs") or []):
        return False
    now = datetime.utcnow()
    fields = {
        "status": InvoiceStatus.PAID.value,
        "amount_paid": max(round_money((invoice.get("amount_paid") or 0) + amount), round_money(invoice.get("total"))),
        "paid_at": now,
        "updated_at": now,
    }
    _write_payment(db, invoice, fields, payment_ref)
    return True


def _write_payment(db, invoice: Dict[str, Any], fields: Dict[str, Any], payment_ref: Optional[str]) -> None:
    update: Dict[str, Any] = {"$set": fields}
    if payment_ref:
        update["$push"] = {"payment_refs": payment_ref}
    db.invoices.update_one({"id": invoice["id"]}, update)
    invoice.update(fields)
    if payment_ref:
        invoice.setdefault("payment_refs", []).append(payment_ref)


def set_deposit_status(db, order_id: str, deposit_status: DepositStatus, notes: Optional[str] = None) -> None:
    fields: Dict[str, Any] = {"deposit_status": DepositStatus(deposit_status).value, "updated_at": datetime.utcnow()}
    if notes:
        fields["manual_payment_notes"] = notes
    db.sales_orders.update_one({"id": order_id}, {"$set": fields})


def record_payment_transaction(
    db,
    order: Dict[str, Any],
    amount: float,
    payment_type: InvoiceType,
    payment_method: str,
    *,
    invoice_id: Optional[str] = None,
    stripe_payment_intent_id: Optional[str] = None,
    customer_email: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    doc = {
        "id": generate_unique_id("pay"),
        "so_id": order["id"],
        "invoice_id": invoice_id,
        "amount": round_money(amount),
        "payment_method": payment_method,
        "payment_type": InvoiceType(payment_type).value,
        "status": "completed",
        "customer_email": customer_email,
        "metadata": metadata or {},
        "created_at": datetime.utcnow(),
    }
    if stripe_payment_intent_id:
        doc["stripe_payment_intent_id"] = stripe_payment_intent_id
    db.payment_transactions.insert_one(dict(doc))
    return doc
