import html
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from .schema import InvoiceCreateRequest, InvoiceEmailRequest, InvoiceType, InvoiceStatus, ManualPaymentRequest
from .payments import (
    create_invoice_record,
    find_open_invoice,
    apply_invoice_payment,
    set_deposit_status,
    record_payment_transaction,
)
from ..orders.schema import DepositStatus
from ..orders.status_machine import OrderLifecycle
from ..documents.service import DocumentService
from ..notifications.service import notify_payment_received, get_customer, customer_display_name, send_templated_email
from ..auth.schema import JWTClaims
from ...database.db import get_database
from ...services.email.email_provider import Attachment
from ...utils.audit import log_event
from ...utils.helperFunctions import round_money

logger = logging.getLogger(__name__)


class InvoiceController:
    def __init__(self):
        self.db = get_database()
        self.lifecycle = OrderLifecycle(self.db)

    def _order(self, order_id: str) -> Dict[str, Any]:
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        return order

    def list_invoices(self, so_id: Optional[str] = None, invoice_status: Optional[InvoiceStatus] = None) -> List[Dict[str, Any]]:
        query: Dict[str, Any] = {}
        if so_id:
            query["so_id"] = so_id
        if invoice_status:
            query["status"] = invoice_status.value
        return list(self.db.invoices.find(query, {"_id": 0}).sort("created_at", -1))

    def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        invoice = self.db.invoices.find_one({"id": invoice_id}, {"_id": 0})
        if not invoice:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
        return invoice

    def create_invoice(self, order_id: str, request: InvoiceCreateRequest, actor: JWTClaims) -> Dict[str, Any]:
        order = self._order(order_id)
        if order.get("parent_order_id"):
            raise HTTPException(status_code=400, detail="Add-on orders are invoiced through their parent order")
        if order.get("is_internal"):
            raise HTTPException(status_code=400, detail="Internal orders are not invoiced")
        if find_open_invoice(self.db, order_id, request.type):
            raise HTTPException(status_code=409, detail=f"A {request.type.value} invoice already exists for this order")
        if request.type == InvoiceType.DEPOSIT and not order.get("deposit_amount"):
            raise HTTPException(status_code=400, detail="Order has no deposit to invoice")

        invoice = create_invoice_record(
            self.db, order, request.type, request.tax, request.due_days, actor.user_id, request.notes
        )
        log_event(
            "invoice", invoice["id"], "created", None,
            {"human_uid": invoice["human_uid"], "so_id": order_id, "type": invoice["type"], "total": invoice["total"]},
            actor.user_id,
        )

        auto = None
        if request.type == InvoiceType.FINAL:
            auto = self.lifecycle.on_final_invoice_created(order_id)
        return {
            "invoice": invoice,
            "order_status": auto["status"] if auto else order["status"],
        }

    def void_invoice(self, invoice_id: str, actor: JWTClaims) -> Dict[str, Any]:
        invoice = self.get_invoice(invoice_id)
        if invoice["status"] != InvoiceStatus.UNPAID.value:
            raise HTTPException(status_code=400, detail="Only unpaid invoices can be voided")
        self.db.invoices.update_one({"id": invoice_id}, {"$set": {"status": InvoiceStatus.VOID.value}})
        log_event("invoice", invoice_id, "voided", {"status": invoice["status"]}, {"status": "void"}, actor.user_id)
        return self.get_invoice(invoice_id)

    def send_invoice_email(self, invoice_id: str, request: InvoiceEmailRequest, actor: JWTClaims) -> Dict[str, Any]:
        """Email the invoice with its PDF attached."""
        invoice = self.get_invoice(invoice_id)
        if invoice["status"] == InvoiceStatus.VOID.value:
            raise HTTPException(status_code=400, detail="Void invoices cannot be sent")
        order = self._order(invoice["so_id"])
        customer = get_customer(order.get("customer_id"))
        to_email = request.to_email or (customer or {}).get("email")
        if not to_email:
            raise HTTPException(status_code=400, detail="Customer email not found")

        documents = DocumentService(self.db)
        filename, pdf = documents.invoice_pdf(invoice_id)
        rows = documents.invoice_rows(invoice, order)
        label = "deposit invoice" if invoice["type"] == InvoiceType.DEPOSIT.value else "invoice"
        balance = round_money(invoice["total"] - (invoice.get("amount_paid") or 0))
        sent = send_templated_email(
            "invoice",
            f"{label.capitalize()} {invoice['human_uid']} for Order {order['human_uid']}",
            to_email,
            {
                "customer_name": customer_display_name(customer),
                "invoice_label": label,
                "invoice_label_title": label.title(),
                "invoice_number": invoice["human_uid"],
                "order_number": order["human_uid"],
                "issued_on": invoice["created_at"].strftime("%B %d, %Y"),
                "due_on": invoice["due_date"].strftime("%B %d, %Y") if invoice.get("due_date") else "On receipt",
                "subtotal": f"{invoice['subtotal']:.2f}",
                "tax": f"{invoice.get('tax') or 0:.2f}",
                "amount_due": f"{max(balance, 0):.2f}",
                "line_items_text": "\n".join(f"{r[0]}  {r[1]}  x {r[2]} @ {r[3]} = {r[4]}" for r in rows),
                "line_items_html": "".join(
                    "<tr>" + "".join(
                        f'<td style="padding: 10px; border-bottom: 1px solid #eee;">{html.escape(cell)}</td>' for cell in r
                    ) + "</tr>"
                    for r in rows
                ),
            },
            so_id=order["id"],
            attachments=[Attachment(filename=filename, content=pdf)],
        )
        if not sent:
            raise HTTPException(status_code=502, detail="Failed to send invoice email")

        now = datetime.utcnow()
        self.db.invoices.update_one(
            {"id": invoice_id},
            {"$set": {"last_sent_at": now, "last_sent_to": to_email, "updated_at": now}, "$inc": {"sent_count": 1}},
        )
        log_event("invoice", invoice_id, "emailed", None, {"to": to_email}, actor.user_id)
        logger.info(f"Invoice {invoice['human_uid']} emailed to {to_email}")
        return {"success": True, "to": to_email, "invoice_number": invoice["human_uid"]}

    def record_manual_payment(self, request: ManualPaymentRequest, actor: JWTClaims) -> Dict[str, Any]:
        """Book an off-Stripe payment against the order's deposit or final invoice."""
        if request.amount <= 0:
            raise HTTPException(status_code=400, detail="Amount must be greater than 0")

        order = self.db.sales_orders.find_one({"human_uid": request.order_number}, {"_id": 0})
        if not order:
            raise HTTPException(status_code=404, detail="Order not found")

        payment_type = request.payment_type.value
        invoice = find_open_invoice(self.db, order["id"], request.payment_type)
        if not invoice:
            raise HTTPException(status_code=404, detail=f"No {payment_type} invoice found for this order")
        if invoice["status"] == InvoiceStatus.PAID.value:
            raise HTTPException(status_code=409, detail=f"The {payment_type} invoice is already paid")
        already_paid = round_money(invoice.get("amount_paid"))
        balance = round_money(invoice["total"] - already_paid)
        if request.amount > balance:
            detail = (
                f"Amount exceeds remaining {payment_type} balance of ${balance}"
                if already_paid
                else f"Amount exceeds {payment_type} invoice total of ${invoice['total']}"
            )
            raise HTTPException(status_code=400, detail=detail)

        customer = get_customer(order.get("customer_id")) or {}
        record_payment_transaction(
            self.db,
            order,
            request.amount,
            request.payment_type,
            request.payment_method.value,
            invoice_id=invoice["id"],
            customer_email=customer.get("email"),
            metadata={
                "manual_entry": True,
                "recorded_by": actor.user_id,
                "customer_name": customer.get("name"),
                "order_number": order["human_uid"],
                "notes": request.notes,
            },
        )

        invoice_status = apply_invoice_payment(self.db, invoice, request.amount)
        if request.payment_type == InvoiceType.DEPOSIT:
            deposit_status = DepositStatus.PAID if invoice_status == InvoiceStatus.PAID.value else DepositStatus.PARTIAL
            set_deposit_status(self.db, order["id"], deposit_status)
        elif invoice_status == InvoiceStatus.PAID.value:
            self.lifecycle.on_final_invoice_paid(order["id"])

        log_event(
            "payment", order["id"], f"manual_{request.payment_method.value}_payment_recorded", None,
            {
                "amount": request.amount,
                "payment_type": payment_type,
                "recorded_by": actor.user_id,
                "notes": request.notes,
            },
            actor.user_id,
        )
        logger.info(
            f"Manual {request.payment_method.value} {payment_type} payment recorded for order "
            f"{order['human_uid']}, amount: ${request.amount}"
        )
        notify_payment_received(order, request.amount, f"{payment_type} payment")

        return {
            "success": True,
            "orderId": order["id"],
            "orderNumber": order["human_uid"],
            "amount": request.amount,
            "paymentType": payment_type,
            "invoiceStatus": invoice_status,
        }
