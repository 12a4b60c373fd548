import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest

from portal_api.src.invoices.payments import create_invoice_record
from portal_api.src.stripe.services import sessions

WEBHOOK_SECRET = "whsec_test_portal"


def signed(payload: dict, secret: str = WEBHOOK_SECRET):
    body = json.dumps(payload)
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{body}".encode(), hashlib.sha256).hexdigest()
    return body, {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


def checkout_event(order_id, payment_type, amount_cents, event_id="evt_1", payment_intent="pi_1"):
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_test_1",
            "object": "checkout.session",
            "amount_total": amount_cents,
            "payment_intent": payment_intent,
            "customer_details": {"email": "buyer@example.com"},
            "metadata": {"orderId": order_id, "paymentType": payment_type},
        }},
    }


@pytest.fixture
def post_event(client):
    def _post(payload, secret=WEBHOOK_SECRET):
        body, headers = signed(payload, secret)
        return client.post("/stripe/webhook", content=body, headers=headers)
    return _post


def test_missing_signature_is_rejected(client):
    resp = client.post("/stripe/webhook", content=json.dumps({"id": "evt_x"}))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Webhook signature or secret missing"


def test_bad_signature_is_rejected(post_event, make_order):
    order = make_order("deposit_due")
    resp = post_event(checkout_event(order["id"], "deposit", 60000), secret="whsec_wrong")
    assert resp.status_code == 400
    assert resp.json()["detail"].startswith("Invalid signature")


def test_missing_metadata_is_a_bad_request(post_event):
    event = checkout_event("so_x", "deposit", 100)
    event["data"]["object"]["metadata"] = {}
    resp = post_event(event)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing metadata"


def test_deposit_payment_is_booked(post_event, fake_db, make_order, outbox):
    order = make_order("deposit_due")
    invoice = create_invoice_record(fake_db, order, "deposit")

    resp = post_event(checkout_event(order["id"], "deposit", 60000))

    assert resp.json() == {"received": True, "outcome": "deposit_paid"}
    stored = fake_db.sales_orders.find_one({"id": order["id"]})
    assert stored["deposit_status"] == "paid"
    assert stored["manual_payment_notes"] == "Stripe payment completed: pi_1"
    assert stored["status"] == "deposit_due"
    assert fake_db.invoices.find_one({"id": invoice["id"]})["status"] == "paid"
    transaction = fake_db.payment_transactions.find_one({"stripe_payment_intent_id": "pi_1"})
    assert transaction["amount"] == 600.0 and transaction["payment_method"] == "stripe"
    assert outbox[-1]["subject"] == "Payment Received - Order SO-0001"


def test_final_payment_moves_order_to_ready_to_ship(post_event, fake_db, make_order):
    order = make_order("awaiting_payment")
    invoice = create_invoice_record(fake_db, order, "final")

    resp = post_event(checkout_event(order["id"], "final", 120000, payment_intent={"id": "pi_final"}))

    assert resp.json()["outcome"] == "final_payment_paid"
    stored_invoice = fake_db.invoices.find_one({"id": invoice["id"]})
    assert stored_invoice["status"] == "paid" and stored_invoice["amount_paid"] == 1200.0
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "ready_to_ship"


def test_redelivered_event_has_no_side_effects(post_event, fake_db, make_order):
    order = make_order("deposit_due")
    event = checkout_event(order["id"], "deposit", 60000)

    post_event(event)
    again = post_event(event)

    assert again.json() == {"received": True, "duplicate": True}
    assert fake_db.payment_transactions.count_documents({"so_id": order["id"]}) == 1


def test_same_payment_intent_on_a_new_event_is_skipped(post_event, fake_db, make_order):
    order = make_order("deposit_due")
    post_event(checkout_event(order["id"], "deposit", 60000, event_id="evt_a"))
    resp = post_event(checkout_event(order["id"], "deposit", 60000, event_id="evt_b"))

    assert resp.json()["outcome"] == "duplicate_payment_intent"
    assert fake_db.payment_transactions.count_documents({"so_id": order["id"]}) == 1


def test_unknown_order_and_other_event_types_are_acknowledged(post_event):
    missing = post_event(checkout_event("so_missing", "deposit", 100))
    assert missing.json()["outcome"] == "order_not_found"

    other = post_event({"id": "evt_other", "object": "event", "type": "invoice.paid", "data": {"object": {}}})
    assert other.json() == {"received": True, "outcome": "ignored"}


def test_checkout_link_for_outstanding_deposit(client, monkeypatch, make_order, customer, as_user):
    captured = {}

    def fake_create(**params):
        captured.update(params)
        return SimpleNamespace(id="cs_test_new", url="https://checkout.stripe.test/cs_test_new")

    monkeypatch.setattr(sessions.stripe.checkout.Session, "create", fake_create)
    order = make_order("deposit_due")

    resp = client.post("/stripe/checkout", json={"order_id": order["id"], "payment_type": "deposit"}, headers=as_user(customer))

    assert resp.status_code == 200, resp.text
    assert resp.json() == {"checkout_url": "https://checkout.stripe.test/cs_test_new", "session_id": "cs_test_new", "amount": 600.0}
    assert captured["metadata"] == {"orderId": order["id"], "paymentType": "deposit", "orderNumber": "SO-0001"}
    assert captured["line_items"][0]["price_data"]["unit_amount"] == 60000
    assert captured["customer_email"] == "buyer@example.com"


def test_checkout_refuses_when_nothing_is_due(client, make_order, customer, as_user):
    order = make_order("in_queue", deposit_status="paid")
    resp = client.post("/stripe/checkout", json={"order_id": order["id"], "payment_type": "deposit"}, headers=as_user(customer))
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No deposit balance is due"


def test_retry_after_failed_booking_completes_the_payment(monkeypatch, fake_db, make_order):
    from fastapi.testclient import TestClient
    from portal_api.main import app
    from portal_api.src.stripe.services import webhooks

    order = make_order("deposit_due")
    invoice = create_invoice_record(fake_db, order, "deposit")
    real_set_deposit_status = webhooks.set_deposit_status
    calls = []

    def flaky_set_deposit_status(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise RuntimeError("primary stepped down")
        return real_set_deposit_status(*args, **kwargs)

    monkeypatch.setattr(webhooks, "set_deposit_status", flaky_set_deposit_status)
    body, headers = signed(checkout_event(order["id"], "deposit", 60000))
    client = TestClient(app, raise_server_exceptions=False)

    first = client.post("/stripe/webhook", content=body, headers=headers)
    assert first.status_code == 500
    assert fake_db.payment_transactions.count_documents({"so_id": order["id"]}) == 0

    retry = client.post("/stripe/webhook", content=body, headers=headers)
    assert retry.json() == {"received": True, "outcome": "deposit_paid"}
    assert fake_db.sales_orders.find_one({"id": order["id"]})["deposit_status"] == "paid"
    # the invoice was paid on the first attempt and is not paid twice
    stored = fake_db.invoices.find_one({"id": invoice["id"]})
    assert stored["amount_paid"] == 600.0 and stored["payment_refs"] == ["pi_1"]
    assert fake_db.payment_transactions.count_documents({"so_id": order["id"]}) == 1


def test_checkout_idempotency_key_is_stable_per_amount(monkeypatch, make_order):
    keys = []

    def fake_create(**params):
        keys.append(params["idempotency_key"])
        return SimpleNamespace(id="cs_test_same", url="https://checkout.stripe.test/cs_test_same")

    monkeypatch.setattr(sessions.stripe.checkout.Session, "create", fake_create)
    order = make_order("deposit_due")

    sessions.create_checkout_session(order=order, payment_type="deposit", amount=600.0)
    sessions.create_checkout_session(order=order, payment_type="deposit", amount=600.0)
    sessions.create_checkout_session(order=order, payment_type="deposit", amount=450.0)

    assert keys[0] == keys[1]
    assert keys[2] != keys[0]
