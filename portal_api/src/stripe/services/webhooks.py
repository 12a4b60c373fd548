import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..idempotency import payment_intent_seen
from ...invoices.payments import (
    find_open_invoice,
    apply_invoice_payment,
    settle_invoice,
    set_deposit_status,
    record_payment_transaction,
)
from ...invoices.schema import InvoiceType, InvoiceStatus
from ...orders.schema import DepositStatus
from ...orders.status_machine import OrderLifecycle
from ...notifications.service import notify_payment_received
from ....database.db import get_database
from ....utils.audit import log_event
from ....utils.helperFunctions import round_money

logger = logging.getLogger(__name__)

db = get_database()


class WebhookPayloadError(ValueError):
    """The event is signed but cannot be acted on; answered with a 400."""


def _amount(session: Dict[str, Any]) -> float:
    return round_money((session.get("amount_total") or 0) / 100)


def _payment_intent_id(session: Dict[str, Any]) -> Optional[str]:
    pi = session.get("payment_intent")
    if isinstance(pi, dict):
        return pi.get("id")
    return pi


def _book_transaction(order: Dict[str, Any], session: Dict[str, Any], amount: float,
                      payment_type: InvoiceType, invoice: Optional[Dict[str, Any]]) -> None:
    # written last: an existing row marks the payment intent as fully booked
    record_payment_transaction(
        db, order, amount, payment_type, "stripe",
        invoice_id=invoice["id"] if invoice else None,
        stripe_payment_intent_id=_payment_intent_id(session),
        customer_email=(session.get("customer_details") or {}).get("email") or session.get("customer_email"),
        metadata={"checkout_session_id": session.get("id")},
    )


def handle_deposit_paid(order: Dict[str, Any], session: Dict[str, Any]) -> str:
    payment_intent = _payment_intent_id(session)
    amount = _amount(session)

    invoice = find_open_invoice(db, order["id"], InvoiceType.DEPOSIT)
    if invoice and invoice["status"] != InvoiceStatus.PAID.value:
        apply_invoice_payment(db, invoice, amount, payment_ref=payment_intent)

    set_deposit_status(db, order["id"], DepositStatus.PAID, notes=f"Stripe payment completed: {payment_intent}")
    _book_transaction(order, session, amount, InvoiceType.DEPOSIT, invoice)
    log_event(
        "sales_order", order["id"], "deposit_paid",
        {"deposit_status": order.get("deposit_status")},
        {"deposit_status": DepositStatus.PAID.value, "payment_intent": payment_intent, "amount": amount},
    )
    logger.info(f"Deposit marked as paid for order {order.get('human_uid')}")
    notify_payment_received(order, amount, "deposit")
    return "deposit_paid"


def handle_final_paid(order: Dict[str, Any], session: Dict[str, Any]) -> str:
    payment_intent = _payment_intent_id(session)
    amount = _amount(session)

    invoice = find_open_invoice(db, order["id"], InvoiceType.FINAL)
    if invoice:
        settle_invoice(db, invoice, amount, payment_ref=payment_intent)
        logger.info(f"Invoice {invoice['human_uid']} marked as paid for order {order.get('human_uid')}")
    else:
        logger.warning(f"Final payment for {order.get('human_uid')} arrived without a final invoice")

    db.sales_orders.update_one(
        {"id": order["id"]},
        {"$set": {"manual_payment_notes": f"Stripe payment completed: {payment_intent}", "updated_at": datetime.utcnow()}},
    )
    if invoice:
        OrderLifecycle(db).on_final_invoice_paid(order["id"])
    _book_transaction(order, session, amount, InvoiceType.FINAL, invoice)
    log_event(
        "sales_order", order["id"], "final_payment_paid", None,
        {"payment_intent": payment_intent, "amount": amount},
    )
    notify_payment_received(order, amount, "final payment")
    return "final_payment_paid"


def handle_checkout_completed(event: Dict[str, Any]) -> str:
    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    order_id = metadata.get("orderId")
    payment_type = metadata.get("paymentType")

    if not order_id or not payment_type:
        logger.error("Missing metadata in checkout session")
        raise WebhookPayloadError("Missing metadata")

    payment_intent = _payment_intent_id(session)
    if payment_intent_seen(payment_intent):
        logger.info(f"Payment intent {payment_intent} already recorded; skipping")
        return "duplicate_payment_intent"

    order = db.sales_orders.find_one({"id": order_id}, {"_id": 0})
    if not order:
        logger.error(f"Checkout completed for unknown order {order_id}")
        return "order_not_found"

    logger.info(f"Processing {payment_type} payment for order {order.get('human_uid')}")
    if payment_type == InvoiceType.DEPOSIT.value:
        return handle_deposit_paid(order, session)
    if payment_type == InvoiceType.FINAL.value:
        return handle_final_paid(order, session)

    logger.warning(f"Unknown paymentType {payment_type} for order {order_id}")
    return "ignored"


HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
}


def dispatch(event: Dict[str, Any]) -> str:
    handler = HANDLERS.get(event.get("type"))
    if handler is None:
        return "ignored"
    return handler(event)
