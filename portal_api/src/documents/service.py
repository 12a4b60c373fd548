"""
Downloadable PDFs: quotes, invoices and payment receipts.

Staff can fetch any document; a customer only the ones for their own orders.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import HTTPException, status

from ..auth.schema import JWTClaims
from ..invoices.schema import InvoiceType
from ..notifications.service import customer_display_name, get_customer
from ..orders.consolidation import fetch_addon_orders
from ..orders.controller import setting_value
from ...config import get_settings
from ...database.db import get_database
from ...services.documents.pdf_renderer import Column, DocumentLayout, address_lines, money, render_pdf
from ...utils.helperFunctions import round_money

logger = logging.getLogger(__name__)

LINE_COLUMNS = [
    Column("SKU", 130),
    Column("Description", 150),
    Column("Qty", 60, "center"),
    Column("Unit Price", 82, "right"),
    Column("Total", 90, "right"),
]

PAYMENT_METHOD_LABELS = {
    "stripe": "Credit Card (Stripe)",
    "cashapp": "Cash App",
    "check": "Check",
    "wire": "Wire Transfer",
    "cash": "Cash",
}


def _fmt_date(dt: Optional[datetime]) -> str:
    return dt.strftime("%B %d, %Y") if dt else ""


def _qty(line: Dict[str, Any]) -> str:
    unit = "kits" if line.get("sell_mode") == "kit" else "pcs"
    return f"{line.get('qty_entered', 0)} {unit}"


class DocumentService:
    def __init__(self, db=None):
        self.db = db if db is not None else get_database()
        self.settings = get_settings()

    # ----- shared -----

    def _company(self) -> Tuple[str, List[str], str]:
        name = setting_value(self.db, "company_name", self.settings.COMPANY_NAME)
        email = setting_value(self.db, "company_email", self.settings.COMPANY_EMAIL)
        phone = setting_value(self.db, "company_phone", "")
        accent = setting_value(self.db, "brand_primary_color", "#2563eb")
        return name, [line for line in (email, phone) if line], accent

    def _order(self, order_id: str, user: Optional[JWTClaims], not_found: str = "Order not found") -> Dict[str, Any]:
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order or not self._can_see(order, user):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=not_found)
        return order

    @staticmethod
    def _can_see(order: Dict[str, Any], user: Optional[JWTClaims]) -> bool:
        if user is None or user.is_staff:
            return True
        return bool(user.customer_id) and order.get("customer_id") == user.customer_id

    def _bill_to(self, customer: Optional[Dict[str, Any]]) -> List[str]:
        if not customer:
            return ["Customer"]
        lines = [customer_display_name(customer)]
        address = customer.get("billing_address") or customer.get("shipping_address")
        lines.extend(address_lines(address))
        if customer.get("email"):
            lines.append(customer["email"])
        return lines

    def _line_rows(self, lines: List[Dict[str, Any]], suffix: str = "") -> List[List[str]]:
        return [
            [
                f"{line.get('sku_code') or 'N/A'}{suffix}",
                line.get("sku_description") or "Item",
                _qty(line),
                money(line.get("unit_price")),
                money(line.get("line_subtotal")),
            ]
            for line in lines
        ]

    def invoice_rows(self, invoice: Dict[str, Any], order: Dict[str, Any]) -> List[List[str]]:
        """Order lines; a final invoice also carries every add-on's lines tagged with the add-on number.

        A deposit invoice bills a share of the order, so it gets a single deposit row.
        """
        if invoice["type"] == InvoiceType.DEPOSIT.value:
            amount = money(invoice.get("subtotal"))
            return [["DEPOSIT", f"Deposit for order {order['human_uid']}", "1", amount, amount]]
        lines = list(self.db.sales_order_lines.find({"so_id": order["id"]}, {"_id": 0}).sort("created_at", 1))
        rows = self._line_rows(lines)
        for addon in fetch_addon_orders(self.db, order["id"]):
            rows.extend(self._line_rows(addon.get("lines", []), f" ({addon['human_uid']})"))
        return rows

    # ----- documents -----

    def quote_pdf(self, order_id: str, user: Optional[JWTClaims] = None) -> Tuple[str, bytes]:
        order = self._order(order_id, user)
        company, company_lines, accent = self._company()
        customer = get_customer(order.get("customer_id"))
        lines = list(self.db.sales_order_lines.find({"so_id": order["id"]}, {"_id": 0}).sort("created_at", 1))

        subtotal = round_money(order.get("subtotal"))
        deposit = round_money(order.get("deposit_amount")) if order.get("deposit_required") else 0
        totals = [("Subtotal", money(subtotal))]
        notes = []
        if deposit > 0:
            percent = round(deposit / subtotal * 100) if subtotal else 0
            totals.append((f"Deposit Required ({percent}%)", money(deposit)))
            notes.append(f"A {percent}% deposit ({money(deposit)}) is required before production begins.")
        expires_at = order.get("quote_expires_at")
        notes.append(
            f"This quote is valid until {_fmt_date(expires_at)}." if expires_at
            else f"This quote is valid for {order.get('quote_expiration_days') or self.settings.QUOTE_EXPIRATION_DAYS} days."
        )
        notes.append(f"Questions about this quote? Contact us at {company_lines[0] if company_lines else company}.")

        layout = DocumentLayout(
            title="Quote",
            number=order["human_uid"],
            company_name=company,
            company_lines=company_lines,
            meta=[
                ("Date", _fmt_date(order.get("quoted_at") or order.get("created_at"))),
                ("Expires", _fmt_date(expires_at) or "-"),
            ],
            bill_to_label="Prepared For",
            bill_to=self._bill_to(customer),
            columns=LINE_COLUMNS,
            rows=self._line_rows(lines),
            totals=totals + [("Total", money(subtotal))],
            notes=notes,
            accent=accent,
        )
        return f"quote-{order['human_uid']}.pdf", render_pdf(layout)

    def invoice_pdf(self, invoice_id: str, user: Optional[JWTClaims] = None) -> Tuple[str, bytes]:
        invoice = self.db.invoices.find_one({"id": invoice_id}, {"_id": 0})
        if not invoice:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
        order = self._order(invoice["so_id"], user, "Invoice not found")
        company, company_lines, accent = self._company()
        customer = get_customer(order.get("customer_id"))

        totals = [("Subtotal", money(invoice.get("subtotal")))]
        if invoice.get("tax"):
            totals.append(("Tax", money(invoice["tax"])))
        totals.append(("Total", money(invoice.get("total"))))
        if invoice.get("amount_paid"):
            totals.append(("Paid", money(invoice["amount_paid"])))
        balance = round_money((invoice.get("total") or 0) - (invoice.get("amount_paid") or 0))
        totals.append(("Amount Due", money(max(balance, 0))))

        rows = self.invoice_rows(invoice, order)

        notes = ["Please remit payment at your earliest convenience. If you have any questions about this invoice, please contact us."]
        if invoice.get("notes"):
            notes.insert(0, invoice["notes"])

        layout = DocumentLayout(
            title="Deposit Invoice" if invoice["type"] == InvoiceType.DEPOSIT.value else "Invoice",
            number=invoice["human_uid"],
            company_name=company,
            company_lines=company_lines,
            meta=[
                ("Order", order["human_uid"]),
                ("Issued", _fmt_date(invoice.get("created_at"))),
                ("Due", _fmt_date(invoice.get("due_date")) or "-"),
                ("Status", invoice["status"].upper()),
            ],
            bill_to=self._bill_to(customer),
            columns=LINE_COLUMNS,
            rows=rows,
            totals=totals,
            notes=notes,
            badge="PAID" if invoice["status"] == "paid" else None,
            accent=accent,
        )
        return f"invoice-{invoice['human_uid']}.pdf", render_pdf(layout)

    def receipt_pdf(self, transaction_id: str, user: Optional[JWTClaims] = None) -> Tuple[str, bytes]:
        transaction = self.db.payment_transactions.find_one({"id": transaction_id}, {"_id": 0})
        if not transaction:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
        order = self._order(transaction["so_id"], user, "Payment not found")
        company, company_lines, accent = self._company()
        customer = get_customer(order.get("customer_id"))

        invoice_no = None
        if transaction.get("invoice_id"):
            invoice = self.db.invoices.find_one({"id": transaction["invoice_id"]}, {"_id": 0, "human_uid": 1})
            invoice_no = (invoice or {}).get("human_uid")
        payment_type = "Deposit Payment" if transaction.get("payment_type") == "deposit" else "Final Payment"
        method = PAYMENT_METHOD_LABELS.get(transaction.get("payment_method"), transaction.get("payment_method") or "-")
        reference = transaction.get("stripe_payment_intent_id") or (transaction.get("metadata") or {}).get("notes") or "N/A"

        layout = DocumentLayout(
            title="Payment Receipt",
            number=transaction["id"][:13].upper(),
            company_name=company,
            company_lines=company_lines,
            meta=[
                ("Paid On", _fmt_date(transaction.get("created_at"))),
                ("Order", order["human_uid"]),
                ("Invoice", invoice_no or "-"),
            ],
            bill_to_label="Received From",
            bill_to=self._bill_to(customer),
            columns=[Column("Payment", 200), Column("Method", 160), Column("Reference", 152)],
            rows=[[payment_type, method, reference[:24]]],
            totals=[("Status", (transaction.get("status") or "completed").upper()),
                    ("Total Amount Paid", money(transaction.get("amount")))],
            notes=[
                "Thank you for your payment!",
                "This is a computer-generated receipt and is valid without signature.",
                f"Generated on {_fmt_date(datetime.utcnow())}.",
            ],
            badge="PAID",
            accent=accent,
        )
        return f"receipt-{order['human_uid']}-{transaction.get('payment_type', 'payment')}.pdf", render_pdf(layout)
