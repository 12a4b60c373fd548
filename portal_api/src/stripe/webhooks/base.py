import json
import logging

import stripe
from fastapi import Request, HTTPException, status

from ..config import get_settings

logger = logging.getLogger(__name__)

async def verify_stripe_signature(request: Request) -> dict:
    """Check the Stripe-Signature header and return the event as a plain dict."""
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    secret = get_settings().STRIPE_WEBHOOK_SECRET

    if not sig_header or not secret:
        logger.error("Missing signature or webhook secret")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Webhook signature or secret missing")

    try:
        stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid signature: {e}")

    return json.loads(payload)
