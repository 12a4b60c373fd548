import pytest
from fastapi import HTTPException

from portal_api.src.invoices.controller import InvoiceController
from portal_api.src.invoices.payments import create_invoice_record
from portal_api.src.invoices.schema import InvoiceCreateRequest, ManualPaymentRequest


def manual(order_number, amount, payment_type="deposit", method="cashapp"):
    return ManualPaymentRequest(orderNumber=order_number, amount=amount, paymentType=payment_type, paymentMethod=method)


def test_final_invoice_moves_order_to_awaiting_payment(client, fake_db, make_order, operator, as_user):
    order = make_order("awaiting_invoice")
    resp = client.post(f"/invoices/orders/{order['id']}", json={"type": "final", "tax": 10}, headers=as_user(operator))

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["invoice"]["human_uid"] == "INV-0001"
    assert body["invoice"]["total"] == 1210.0
    assert body["order_status"] == "awaiting_payment"
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "awaiting_payment"


def test_second_open_invoice_of_a_type_conflicts(client, make_order, operator, as_user):
    order = make_order("quoted")
    first = client.post(f"/invoices/orders/{order['id']}", json={"type": "deposit"}, headers=as_user(operator))
    second = client.post(f"/invoices/orders/{order['id']}", json={"type": "deposit"}, headers=as_user(operator))

    assert first.json()["invoice"]["total"] == 600.0
    assert first.json()["order_status"] == "quoted"
    assert second.status_code == 409


def test_internal_and_addon_orders_are_not_invoiced(make_order, operator):
    controller = InvoiceController()
    internal = make_order("packed", is_internal=True, customer_id=None)
    addon = make_order("in_queue", parent_order_id="so_parent")

    for order in (internal, addon):
        with pytest.raises(HTTPException) as exc:
            controller.create_invoice(order["id"], InvoiceCreateRequest(type="final"), operator)
        assert exc.value.status_code == 400


def test_only_admins_record_manual_payments(client, make_order, operator, as_user):
    order = make_order("deposit_due")
    resp = client.post(
        "/invoices/payments/manual",
        json={"orderNumber": order["human_uid"], "amount": 100, "paymentType": "deposit"},
        headers=as_user(operator),
    )
    assert resp.status_code == 403


def test_manual_payment_validation(fake_db, make_order, admin):
    controller = InvoiceController()
    order = make_order("deposit_due")

    cases = [
        (manual(order["human_uid"], 0), 400, "Amount must be greater than 0"),
        (manual("SO-9999", 10), 404, "Order not found"),
        (manual(order["human_uid"], 10), 404, "No deposit invoice found for this order"),
    ]
    for request, code, detail in cases:
        with pytest.raises(HTTPException) as exc:
            controller.record_manual_payment(request, admin)
        assert (exc.value.status_code, exc.value.detail) == (code, detail)

    create_invoice_record(fake_db, order, "deposit")
    with pytest.raises(HTTPException) as exc:
        controller.record_manual_payment(manual(order["human_uid"], 700), admin)
    assert exc.value.detail == "Amount exceeds deposit invoice total of $600.0"


def test_partial_then_full_deposit(fake_db, make_order, admin, outbox):
    controller = InvoiceController()
    order = make_order("deposit_due")
    invoice = create_invoice_record(fake_db, order, "deposit")

    first = controller.record_manual_payment(manual(order["human_uid"], 200, method="check"), admin)
    assert first["invoiceStatus"] == "partial"
    assert fake_db.sales_orders.find_one({"id": order["id"]})["deposit_status"] == "partial"

    second = controller.record_manual_payment(manual(order["human_uid"], 400), admin)
    assert second["invoiceStatus"] == "paid"
    stored = fake_db.invoices.find_one({"id": invoice["id"]})
    assert stored["amount_paid"] == 600.0 and stored["paid_at"] is not None
    assert fake_db.sales_orders.find_one({"id": order["id"]})["deposit_status"] == "paid"
    # deposit never moves the order on its own
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "deposit_due"

    transactions = list(fake_db.payment_transactions.find({"so_id": order["id"]}))
    assert [t["payment_method"] for t in transactions] == ["check", "cashapp"]
    assert transactions[0]["metadata"]["manual_entry"] is True
    assert [m["subject"] for m in outbox] == ["Payment Received - Order SO-0001"] * 2


def test_paid_final_invoice_makes_order_ready_to_ship(fake_db, make_order, admin):
    controller = InvoiceController()
    order = make_order("awaiting_payment")
    create_invoice_record(fake_db, order, "final")

    result = controller.record_manual_payment(manual(order["human_uid"], 1200, payment_type="final", method="wire"), admin)

    assert result["invoiceStatus"] == "paid"
    assert fake_db.sales_orders.find_one({"id": order["id"]})["status"] == "ready_to_ship"


def test_void_only_unpaid(client, fake_db, make_order, admin, as_user):
    order = make_order("quoted")
    invoice = create_invoice_record(fake_db, order, "deposit")

    voided = client.post(f"/invoices/{invoice['id']}/void", headers=as_user(admin))
    assert voided.json()["status"] == "void"
    again = client.post(f"/invoices/{invoice['id']}/void", headers=as_user(admin))
    assert again.status_code == 400

    # a voided invoice no longer blocks a replacement
    replacement = client.post(f"/invoices/orders/{order['id']}", json={"type": "deposit"}, headers=as_user(admin))
    assert replacement.status_code == 200


def test_manual_payments_stop_at_the_invoice_balance(fake_db, make_order, admin):
    controller = InvoiceController()
    order = make_order("deposit_due")
    invoice = create_invoice_record(fake_db, order, "deposit")

    controller.record_manual_payment(manual(order["human_uid"], 450), admin)
    with pytest.raises(HTTPException) as exc:
        controller.record_manual_payment(manual(order["human_uid"], 200), admin)
    assert (exc.value.status_code, exc.value.detail) == (400, "Amount exceeds remaining deposit balance of $150.0")

    controller.record_manual_payment(manual(order["human_uid"], 150), admin)
    with pytest.raises(HTTPException) as exc:
        controller.record_manual_payment(manual(order["human_uid"], 600), admin)
    assert (exc.value.status_code, exc.value.detail) == (409, "The deposit invoice is already paid")

    assert fake_db.invoices.find_one({"id": invoice["id"]})["amount_paid"] == 600.0
    assert fake_db.payment_transactions.count_documents({"so_id": order["id"]}) == 2


def test_send_invoice_email_attaches_pdf(client, fake_db, make_order, operator, customer, as_user, outbox):
    order = make_order("deposit_due")
    invoice = create_invoice_record(fake_db, order, "deposit")

    resp = client.post(f"/invoices/{invoice['id']}/send", json={}, headers=as_user(operator))

    assert resp.status_code == 200, resp.text
    assert resp.json() == {"success": True, "to": "buyer@example.com", "invoice_number": "INV-0001"}
    sent = outbox[-1]
    assert sent["subject"] == "Deposit invoice INV-0001 for Order SO-0001"
    assert "Deposit for order SO-0001" in sent["text"]
    attachment = sent["attachments"][0]
    assert attachment.filename == "invoice-INV-0001.pdf"
    assert attachment.content.startswith(b"%PDF")
    stored = fake_db.invoices.find_one({"id": invoice["id"]})
    assert stored["sent_count"] == 1
    assert stored["last_sent_to"] == "buyer@example.com"

    other = client.post(
        f"/invoices/{invoice['id']}/send", json={"to_email": "ap@acme.example"}, headers=as_user(operator)
    )
    assert other.json()["to"] == "ap@acme.example"
    assert fake_db.invoices.find_one({"id": invoice["id"]})["sent_count"] == 2

    assert client.post(f"/invoices/{invoice['id']}/send", json={}, headers=as_user(customer)).status_code == 403


def test_void_invoices_are_not_sent(client, fake_db, make_order, admin, as_user, outbox):
    order = make_order("quoted")
    invoice = create_invoice_record(fake_db, order, "deposit")
    client.post(f"/invoices/{invoice['id']}/void", headers=as_user(admin))

    resp = client.post(f"/invoices/{invoice['id']}/send", json={}, headers=as_user(admin))

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Void invoices cannot be sent"
    assert outbox == []
