import logging

from fastapi import APIRouter, Depends, Request, HTTPException, status
from pydantic import BaseModel

from .webhooks.base import verify_stripe_signature
from .services import webhooks as dispatcher
from .services.sessions import create_checkout_session, StripeNotConfigured
from .idempotency import is_processed, mark_processed
from ..auth.schema import JWTClaims, UserRole
from ..invoices.payments import find_open_invoice
from ..invoices.schema import InvoiceType, InvoiceStatus
from ..orders.schema import OrderStatus, DepositStatus
from ..notifications.service import get_customer
from ...database.db import get_database
from ...middlewares.jwt_auth import JWTAuthController
from ...utils.helperFunctions import round_money

logger = logging.getLogger(__name__)
db = get_database()

router = APIRouter(prefix="/stripe", tags=["Stripe"])
jwt_auth = JWTAuthController()


class CheckoutBody(BaseModel):
    order_id: str
    payment_type: InvoiceType


def amount_due(order: dict, payment_type: InvoiceType) -> float:
    """Outstanding balance for the deposit or the final invoice (0 when nothing is owed)."""
    invoice = find_open_invoice(db, order["id"], payment_type)
    if invoice:
        if invoice["status"] == InvoiceStatus.PAID.value:
            return 0.0
        return round_money(invoice["total"] - (invoice.get("amount_paid") or 0))
    if payment_type == InvoiceType.DEPOSIT and order.get("deposit_status") != DepositStatus.PAID.value:
        return round_money(order.get("deposit_amount"))
    return 0.0


@router.post("/checkout")
async def create_checkout(body: CheckoutBody, current_user: JWTClaims = Depends(jwt_auth.get_current_user)):
    """Checkout link for the caller's deposit or final balance."""
    order = db.sales_orders.find_one({"id": body.order_id}, {"_id": 0})
    if not order or (current_user.role == UserRole.CUSTOMER and order.get("customer_id") != current_user.role_entity_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    if order["status"] == OrderStatus.CANCELLED.value:
        raise HTTPException(status_code=400, detail="Order is cancelled")

    amount = amount_due(order, body.payment_type)
    if amount <= 0:
        raise HTTPException(status_code=400, detail=f"No {body.payment_type.value} balance is due")

    customer = get_customer(order.get("customer_id")) or {}
    try:
        session = create_checkout_session(
            order=order,
            payment_type=body.payment_type.value,
            amount=amount,
            customer_email=customer.get("email"),
        )
    except StripeNotConfigured as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return {"checkout_url": session["url"], "session_id": session["id"], "amount": amount}


@router.post('/webhook', include_in_schema=False)
async def stripe_webhook(request: Request):
    """Book Checkout payments. Duplicate deliveries are acknowledged without side effects."""
    event = await verify_stripe_signature(request)
    event_id = event.get("id")
    event_type = event.get("type")
    logger.info(f"Received event: {event_type} ({event_id})")

    if event_id and is_processed(event_id):
        return {"received": True, "duplicate": True}

    try:
        outcome = dispatcher.dispatch(event)
    except dispatcher.WebhookPayloadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if event_id:
        mark_processed(event_id, event_type, outcome)
    return {"received": True, "outcome": outcome}
