"""
Webhook replay protection.

Stripe retries deliveries and can send the same payment through more than
one event, so two keys are checked: the event id (ledger collection
``stripe_events_processed``) and the payment intent id (an existing
``payment_transactions`` row means the money is already booked).
"""
import hashlib
from datetime import datetime
from typing import Optional

from pymongo.errors import DuplicateKeyError

from ...database.db import get_database

COLLECTION_NAME = "stripe_events_processed"

db = get_database()

def generate(scope: str, *parts: str) -> str:
    base = ":".join([scope, *parts])
    return hashlib.sha256(base.encode()).hexdigest()

def is_processed(event_id: str) -> bool:
    return db[COLLECTION_NAME].find_one({"event_id": event_id}) is not None

def mark_processed(event_id: str, event_type: str, outcome: str) -> bool:
    """Record the event; False when another delivery got there first."""
    try:
        db[COLLECTION_NAME].insert_one({
            "event_id": event_id,
            "type": event_type,
            "outcome": outcome,
            "processed_at": datetime.utcnow(),
        })
    except DuplicateKeyError:
        return False
    return True

def payment_intent_seen(payment_intent_id: Optional[str]) -> bool:
    if not payment_intent_id:
        return False
    return db.payment_transactions.find_one({"stripe_payment_intent_id": payment_intent_id}) is not None
