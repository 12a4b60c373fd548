from typing import Any, Dict, Optional

from ..client import get_stripe
from ..config import get_settings
from ..idempotency import generate

settings = get_settings()
stripe = get_stripe()

PAYMENT_LABELS = {
    "deposit": "Deposit",
    "final": "Final payment",
}

class StripeNotConfigured(RuntimeError):
    pass


def is_configured() -> bool:
    return bool(settings.STRIPE_SECRET_KEY)


def create_checkout_session(
    *,
    order: Dict[str, Any],
    payment_type: str,
    amount: float,
    customer_email: Optional[str] = None,
) -> dict:
    """One-off Checkout Session for an order payment.

    ``orderId`` and ``paymentType`` travel in the metadata; the webhook
    relies on them to book the payment.
    """
    if not is_configured():
        raise StripeNotConfigured("STRIPE_SECRET_KEY not configured")
    if amount <= 0:
        raise ValueError("Checkout amount must be greater than 0")

    label = PAYMENT_LABELS.get(payment_type, payment_type.title())
    metadata = {"orderId": order["id"], "paymentType": payment_type, "orderNumber": order.get("human_uid", "")}
    unit_amount = int(round(amount * 100))
    # same order, payment and amount: Stripe hands back the same session for 24h
    idem_key = generate("checkout", order["id"], payment_type, str(unit_amount))

    params: Dict[str, Any] = {
        "mode": "payment",
        "line_items": [{
            "price_data": {
                "currency": settings.STRIPE_CURRENCY,
                "product_data": {"name": f"{label} for order {order.get('human_uid')}"},
                "unit_amount": unit_amount,
            },
            "quantity": 1,
        }],
        "success_url": f"{settings.SUCCESS_URL}?session_id={{CHECKOUT_SESSION_ID}}&order={order.get('human_uid')}",
        "cancel_url": f"{settings.CANCEL_URL}?order={order.get('human_uid')}",
        "client_reference_id": order["id"],
        "metadata": metadata,
        "payment_intent_data": {"metadata": metadata},
        "idempotency_key": idem_key,
    }
    if customer_email:
        params["customer_email"] = customer_email

    session = stripe.checkout.Session.create(**params)
    return {"id": session.id, "url": session.url}
