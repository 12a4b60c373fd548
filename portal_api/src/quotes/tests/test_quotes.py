from datetime import datetime, timedelta
from urllib.parse import urlparse, parse_qs

import pytest

from portal_api.src.quotes import service as quote_service
from portal_api.src.quotes.service import QuoteService, QuoteError

NOW = datetime(2026, 3, 2, 13, 0, 0)


@pytest.fixture
def checkout(monkeypatch):
    calls = []

    def fake_session(**kwargs):
        calls.append(kwargs)
        return {"id": "cs_test_quote", "url": "https://checkout.stripe.test/cs_test_quote"}

    monkeypatch.setattr(quote_service, "create_checkout_session", fake_session)
    return calls


def accept_path(order):
    return f"/quotes/accept?orderId={order['id']}&token={order['quote_link_token']}"


def test_issue_quote_sets_expiry_and_emails_link(client, fake_db, make_order, operator, as_user, outbox):
    order = make_order("draft", quote_expiration_days=14)

    resp = client.post(f"/quotes/{order['id']}/issue", json={}, headers=as_user(operator))

    assert resp.status_code == 200, resp.text
    stored = fake_db.sales_orders.find_one({"id": order["id"]})
    assert stored["status"] == "quoted"
    assert timedelta(days=13) < stored["quote_expires_at"] - datetime.utcnow() <= timedelta(days=14)
    query = parse_qs(urlparse(resp.json()["accept_url"]).query)
    assert query == {"orderId": [order["id"]], "token": [order["quote_link_token"]]}
    assert outbox[-1]["to"] == "buyer@example.com"
    assert outbox[-1]["subject"].startswith("Quote SO-0001 from ")
    attachment = outbox[-1]["attachments"][0]
    assert attachment.filename == "quote-SO-0001.pdf"
    assert attachment.content.startswith(b"%PDF")


def test_only_drafts_are_quoted(client, make_order, operator, as_user):
    order = make_order("in_queue")
    resp = client.post(f"/quotes/{order['id']}/issue", json={"expiration_days": 7}, headers=as_user(operator))
    assert resp.status_code == 400


def test_accept_with_deposit_redirects_to_checkout(client, fake_db, make_order, checkout, outbox):
    order = make_order("quoted", quote_expires_at=datetime.utcnow() + timedelta(days=5))

    resp = client.get(accept_path(order), follow_redirects=False)

    assert resp.status_code == 302
    assert resp.headers["location"] == "https://checkout.stripe.test/cs_test_quote"
    assert checkout[0]["amount"] == 600.0 and checkout[0]["payment_type"] == "deposit"
    stored = fake_db.sales_orders.find_one({"id": order["id"]})
    assert stored["status"] == "deposit_due"
    assert stored["quote_accepted_at"] is not None
    assert fake_db.invoices.find_one({"so_id": order["id"], "type": "deposit"})["total"] == 600.0
    assert outbox[-1]["to"] == "admin@example.com"
    assert outbox[-1]["subject"] == "Quote Approved - Order SO-0001"


def test_accept_without_deposit_queues_order(client, fake_db, make_order, checkout):
    order = make_order("quoted", deposit_required=False, deposit_amount=0)

    resp = client.get(accept_path(order), follow_redirects=False)

    assert resp.headers["location"].endswith("/quote-accepted?order=SO-0001")
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "in_queue"
    assert checkout == []


def test_accept_errors_render_a_page(client, make_order):
    order = make_order("quoted")

    bad_token = client.get(f"/quotes/accept?orderId={order['id']}&token=guess")
    assert bad_token.status_code == 400
    assert "This quote link is not valid" in bad_token.text

    missing = client.get("/quotes/accept")
    assert "Order ID is required" in missing.text


@pytest.mark.parametrize("fields, message", [
    ({"status": "in_queue"}, "Order is not in quoted status"),
    ({"status": "quoted", "quote_expires_at": NOW - timedelta(hours=1)}, "This quote has expired"),
])
def test_accept_refusals(make_order, fields, message):
    order = make_order(**fields)
    with pytest.raises(QuoteError, match=message):
        QuoteService().accept_quote(order["id"], order["quote_link_token"], now=NOW)


def test_quote_view_by_token(client, make_order):
    order = make_order("quoted", quote_expires_at=datetime.utcnow() + timedelta(days=3))
    resp = client.get("/quotes/view", params={"token": order["quote_link_token"]})
    body = resp.json()
    assert body["order_number"] == "SO-0001"
    assert body["can_accept"] is True and body["expired"] is False
    assert [line["bottle_qty"] for line in body["lines"]] == [100]
    assert client.get("/quotes/view", params={"token": "nope"}).status_code == 404


def test_renew_reopens_expired_quote(client, fake_db, make_order, customer, as_user, outbox):
    order = make_order("draft", quote_expires_at=NOW - timedelta(days=1), quote_reminder_sent_at=NOW)

    resp = client.post(f"/quotes/{order['id']}/renew", json={"additional_days": 10}, headers=as_user(customer))

    assert resp.status_code == 200, resp.text
    stored = fake_db.sales_orders.find_one({"id": order["id"]})
    assert stored["status"] == "quoted"
    assert stored["quote_reminder_sent_at"] is None
    assert stored["quote_expiration_days"] == 10
    assert outbox[-1]["subject"] == "Quote SO-0001 Extended"


def test_renew_rules(client, make_order, customer, as_user):
    foreign = make_order("quoted", customer_id="cust_other")
    assert client.post(f"/quotes/{foreign['id']}/renew", json={}, headers=as_user(customer)).status_code == 403

    queued = make_order("in_queue")
    assert client.post(f"/quotes/{queued['id']}/renew", json={}, headers=as_user(customer)).status_code == 400

    never_quoted = make_order("draft")
    assert client.post(f"/quotes/{never_quoted['id']}/renew", json={}, headers=as_user(customer)).status_code == 400


def test_expiry_sweep(fake_db, make_order, outbox):
    lapsed = make_order("quoted", quote_expires_at=NOW - timedelta(hours=2))
    soon = make_order("quoted", quote_expires_at=NOW + timedelta(days=2))
    make_order("quoted", quote_expires_at=NOW + timedelta(days=20))

    result = QuoteService().check_expiring_quotes(now=NOW)

    assert result == {"success": True, "expired_count": 1, "expiring_soon_count": 1}
    assert fake_db.sales_orders.find_one({"id": lapsed["id"]})["status"] == "draft"
    subjects = [(m["to"], m["subject"]) for m in outbox]
    assert ("buyer@example.com", "Quote SO-0001 Has Expired") in subjects
    assert ("admin@example.com", "Quote SO-0001 Has Expired") in subjects
    assert ("buyer@example.com", "Reminder: Quote SO-0002 Expires in 2 Days") in subjects
    assert fake_db.sales_orders.find_one({"id": soon["id"]})["quote_reminder_sent_at"] == NOW

    # reminders go out once per expiry
    again = QuoteService().check_expiring_quotes(now=NOW + timedelta(hours=1))
    assert again["expiring_soon_count"] == 0


def test_check_expiring_endpoint_requires_secret_or_staff(client, operator, as_user):
    assert client.post("/quotes/check-expiring").status_code == 401
    assert client.post("/quotes/check-expiring", headers={"X-Webhook-Secret": "wrong"}).status_code == 401
    by_secret = client.post("/quotes/check-expiring", headers={"X-Webhook-Secret": "internal-test-secret"})
    assert by_secret.json()["success"] is True
    assert client.post("/quotes/check-expiring", headers=as_user(operator)).status_code == 200


def test_scheduled_task_runs_the_sweep(fake_db, make_order):
    from portal_api.celery_app import check_expiring_quotes

    make_order("quoted", quote_expires_at=NOW - timedelta(days=1))
    result = check_expiring_quotes.apply(kwargs={"now_iso": NOW.isoformat()}).get()
    assert result["expired_count"] == 1
