from datetime import datetime

import fitz
import pytest

from portal_api.services.documents.pdf_renderer import Column, DocumentLayout, render_pdf


def pdf_text(content: bytes) -> str:
    with fitz.open(stream=content, filetype="pdf") as doc:
        return "\n".join(page.get_text() for page in doc)


@pytest.fixture
def deposit_invoice(client, make_order, operator, as_user):
    order = make_order("deposit_due")
    resp = client.post(f"/invoices/orders/{order['id']}", json={"type": "deposit"}, headers=as_user(operator))
    assert resp.status_code == 200, resp.text
    return resp.json()["invoice"]


def test_quote_pdf_for_staff_and_owner(client, make_order, operator, customer, as_user):
    order = make_order("quoted", quote_expires_at=datetime(2026, 4, 1))

    resp = client.get(f"/documents/quotes/{order['id']}", headers=as_user(operator))

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert 'filename="quote-SO-0001.pdf"' in resp.headers["content-disposition"]
    assert resp.content.startswith(b"%PDF")
    text = pdf_text(resp.content)
    assert "SO-0001" in text
    assert "SERUM30" in text
    assert "$1,200.00" in text
    assert "Deposit Required (50%)" in text
    assert "April 01, 2026" in text

    assert client.get(f"/documents/quotes/{order['id']}", headers=as_user(customer)).status_code == 200
    other = make_order("quoted", customer_id="cust_other")
    assert client.get(f"/documents/quotes/{other['id']}", headers=as_user(customer)).status_code == 404
    assert client.get("/documents/quotes/so_missing", headers=as_user(operator)).status_code == 404


def test_deposit_invoice_pdf(client, deposit_invoice, make_order, operator, customer, as_user):
    resp = client.get(f"/documents/invoices/{deposit_invoice['id']}", headers=as_user(customer))

    assert resp.status_code == 200
    text = pdf_text(resp.content)
    assert "Deposit Invoice" in text
    assert "INV-0001" in text
    assert "Deposit for order SO-0001" in text
    assert "$600.00" in text
    assert "Acme Beauty" in text

    other = make_order("deposit_due", customer_id="cust_other")
    other_invoice = client.post(
        f"/invoices/orders/{other['id']}", json={"type": "deposit"}, headers=as_user(operator)
    ).json()["invoice"]
    denied = client.get(f"/documents/invoices/{other_invoice['id']}", headers=as_user(customer))
    assert denied.status_code == 404
    assert denied.json()["detail"] == "Invoice not found"


def test_final_invoice_pdf_lists_addon_lines(client, fake_db, make_order, operator, as_user):
    parent = make_order("awaiting_invoice")
    addon = make_order("in_queue", human_uid="AO-0001", parent_order_id=parent["id"], subtotal=240.0)
    fake_db.order_addons.insert_one({
        "id": "addon_link1",
        "parent_so_id": parent["id"],
        "addon_so_id": addon["id"],
        "created_at": datetime.utcnow(),
    })
    created = client.post(f"/invoices/orders/{parent['id']}", json={"type": "final"}, headers=as_user(operator))
    invoice = created.json()["invoice"]

    text = pdf_text(client.get(f"/documents/invoices/{invoice['id']}", headers=as_user(operator)).content)

    assert "SERUM30 (AO-0001)" in text
    assert f"${invoice['total']:,.2f}" in text


def test_payment_receipt_pdf(client, fake_db, make_order, customer, as_user):
    order = make_order("in_queue", deposit_status="paid")
    fake_db.payment_transactions.insert_one({
        "id": "pay_abc123def456",
        "so_id": order["id"],
        "invoice_id": None,
        "amount": 600.0,
        "payment_method": "stripe",
        "payment_type": "deposit",
        "status": "completed",
        "stripe_payment_intent_id": "pi_receipt_1",
        "metadata": {},
        "created_at": datetime(2026, 3, 2, 15, 30),
    })

    resp = client.get("/documents/receipts/pay_abc123def456", headers=as_user(customer))

    assert resp.status_code == 200
    assert 'filename="receipt-SO-0001-deposit.pdf"' in resp.headers["content-disposition"]
    text = pdf_text(resp.content)
    assert "Payment Receipt" in text
    assert "Deposit Payment" in text
    assert "Credit Card (Stripe)" in text
    assert "pi_receipt_1" in text
    assert "$600.00" in text
    assert "March 02, 2026" in text

    other = make_order("in_queue", customer_id="cust_other")
    fake_db.payment_transactions.insert_one({
        "id": "pay_other", "so_id": other["id"], "amount": 100.0, "payment_method": "check",
        "payment_type": "deposit", "status": "completed", "created_at": datetime(2026, 3, 3),
    })
    assert client.get("/documents/receipts/pay_other", headers=as_user(customer)).status_code == 404
    assert client.get("/documents/receipts/pay_nope", headers=as_user(customer)).status_code == 404


def test_documents_require_login(client, make_order):
    order = make_order("quoted")
    assert client.get(f"/documents/quotes/{order['id']}").status_code == 401


def test_long_tables_continue_on_new_pages():
    layout = DocumentLayout(
        title="Invoice",
        number="INV-0042",
        company_name="Acme Labs",
        columns=[Column("SKU", 200), Column("Total", 312, "right")],
        rows=[[f"SKU-{i:03d}", f"${i}.00"] for i in range(80)],
        totals=[("Total", "$3,160.00")],
        notes=["Thank you."],
    )

    content = render_pdf(layout)

    with fitz.open(stream=content, filetype="pdf") as doc:
        assert doc.page_count > 1
        assert doc.metadata["title"] == "Invoice INV-0042"
        # table header repeats on the continuation page
        assert "SKU" in doc[1].get_text()
        assert "SKU-079" in doc[doc.page_count - 1].get_text()
