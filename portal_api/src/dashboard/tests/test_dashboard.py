from datetime import datetime, timedelta

from portal_api.src.dashboard.controller import DashboardController
from portal_api.src.invoices.payments import create_invoice_record

NOW = datetime(2026, 5, 4, 9, 0, 0)


def batch(fake_db, so_id, priority, status="queued"):
    fake_db.production_batches.insert_one({
        "id": f"batch_{so_id}_{priority}",
        "so_id": so_id,
        "status": status,
        "priority_index": priority,
        "qty_bottle_planned": 100,
        "qty_bottle_good": 0,
    })


def test_summary_figures(fake_db, make_order):
    make_order("in_queue")
    make_order("in_production", consolidated_total=1500.0)
    make_order("draft")
    make_order("shipped")
    make_order("quoted", quote_expires_at=NOW + timedelta(days=2))
    make_order("quoted", quote_expires_at=NOW + timedelta(days=10))
    make_order("packed", is_internal=True, customer_id=None)
    billed = make_order("awaiting_payment")
    invoice = create_invoice_record(fake_db, billed, "final")
    fake_db.invoices.update_one({"id": invoice["id"]}, {"$set": {"status": "partial", "amount_paid": 200.0}})
    batch(fake_db, "so_test1", 1)
    batch(fake_db, "so_test2", 2, status="complete")

    summary = DashboardController().summary(now=NOW)

    assert summary["status_counts"]["quoted"] == 2
    assert summary["status_counts"]["cancelled"] == 0
    # in_queue + in_production (consolidated) + two quotes + awaiting_payment
    assert summary["open_order_value"] == 1200 + 1500 + 1200 * 2 + 1200
    assert summary["quotes_expiring_soon"] == 1
    assert summary["awaiting_payment_total"] == 1000.0
    assert summary["internal_orders"] == 1
    assert summary["active_batches"] == 1


def test_queue_orders_by_priority_then_age(client, fake_db, make_order, operator, as_user):
    oldest = make_order("in_queue", created_at=NOW - timedelta(days=3))
    middle = make_order("in_queue", created_at=NOW - timedelta(days=2))
    urgent = make_order("in_production", created_at=NOW - timedelta(days=1))
    make_order("quoted")
    batch(fake_db, urgent["id"], 5, status="wip")
    batch(fake_db, urgent["id"], 2)

    resp = client.get("/dashboard/queue", headers=as_user(operator))

    body = resp.json()
    assert body["count"] == 3
    assert [o["id"] for o in body["orders"]] == [urgent["id"], oldest["id"], middle["id"]]
    assert body["orders"][0]["priority_index"] == 5
    assert body["orders"][0]["customer_name"] == "Acme Beauty"
    assert body["orders"][0]["progress"]["batch_count"] == 2


def test_dashboard_is_staff_only(client, customer, as_user):
    assert client.get("/dashboard/summary", headers=as_user(customer)).status_code == 403
