"""
Quote lifecycle: issue, customer acceptance through the emailed link,
renewal, and the daily expiry sweep.
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import stripe
from fastapi import HTTPException, status

from ..auth.schema import JWTClaims, UserRole
from ..documents.service import DocumentService
from ..invoices.payments import create_invoice_record, find_open_invoice
from ..invoices.schema import InvoiceType
from ..notifications.service import send_templated_email, get_customer, customer_display_name
from ..notifications.templates import status_display
from ..orders.controller import setting_value
from ..orders.schema import OrderStatus, DepositStatus
from ..orders.status_machine import OrderLifecycle, OrderStateError
from ..stripe.services.sessions import create_checkout_session, StripeNotConfigured
from ...config import get_settings
from ...database.db import get_database
from ...services.email.email_provider import Attachment
from ...utils.audit import log_event

logger = logging.getLogger(__name__)


class QuoteError(ValueError):
    """Shown to the customer on the quote acceptance error page."""


def _fmt_date(dt: Optional[datetime]) -> str:
    return dt.strftime("%B %d, %Y") if dt else ""


class QuoteService:
    def __init__(self, db=None):
        self.db = db if db is not None else get_database()
        self.settings = get_settings()
        self.lifecycle = OrderLifecycle(self.db)

    # ----- helpers -----

    def accept_url(self, order: Dict[str, Any]) -> str:
        query = urlencode({"orderId": order["id"], "token": order.get("quote_link_token") or ""})
        return f"{self.settings.PUBLIC_API_URL.rstrip('/')}/quotes/accept?{query}"

    def success_url(self, order: Dict[str, Any]) -> str:
        return f"{self.settings.SITE_URL.rstrip('/')}/quote-accepted?order={order['human_uid']}"

    def _company_email(self) -> str:
        return setting_value(self.db, "company_email", self.settings.COMPANY_EMAIL)

    def _order_url(self, order: Dict[str, Any]) -> str:
        return f"{self.settings.SITE_URL.rstrip('/')}/orders/{order['id']}"

    def _get_order(self, order_id: str) -> Dict[str, Any]:
        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
        return order

    # ----- issue -----

    def issue_quote(self, order_id: str, actor: JWTClaims, expiration_days: Optional[int] = None) -> Dict[str, Any]:
        """draft -> quoted with an expiry, then email the approval link to the customer."""
        order = self._get_order(order_id)
        if order.get("is_internal"):
            raise HTTPException(status_code=400, detail="Internal orders are not quoted")
        if order["status"] != OrderStatus.DRAFT.value:
            raise HTTPException(status_code=400, detail="Only draft orders can be quoted")

        days = expiration_days or order.get("quote_expiration_days") or self.settings.QUOTE_EXPIRATION_DAYS
        now = datetime.utcnow()
        expires_at = now + timedelta(days=days)
        try:
            result = self.lifecycle.apply_status_change(
                order_id,
                OrderStatus.QUOTED,
                actor,
                extra_fields={
                    "quote_expires_at": expires_at,
                    "quote_expiration_days": days,
                    "quoted_at": now,
                    "quote_reminder_sent_at": None,
                },
            )
        except OrderStateError as e:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_detail())
        order = result["order"]

        customer = get_customer(order.get("customer_id"))
        filename, pdf = DocumentService(self.db).quote_pdf(order_id)
        email_sent = send_templated_email(
            "quote_issued",
            f"Quote {order['human_uid']} from {self.settings.COMPANY_NAME}",
            (customer or {}).get("email"),
            {
                "customer_name": customer_display_name(customer),
                "order_number": order["human_uid"],
                "subtotal": f"{order.get('subtotal') or 0:.2f}",
                "deposit_amount": f"{order.get('deposit_amount') or 0:.2f}",
                "expires_on": _fmt_date(expires_at),
                "accept_url": self.accept_url(order),
            },
            so_id=order_id,
            attachments=[Attachment(filename=filename, content=pdf)],
        )
        return {"order": order, "accept_url": self.accept_url(order), "email_sent": email_sent}

    # ----- accept -----

    def quote_view(self, token: str) -> Dict[str, Any]:
        """What the customer sees before approving: totals, lines and expiry."""
        if not token:
            raise HTTPException(status_code=404, detail="Quote not found")
        order = self.db.sales_orders.find_one({"quote_link_token": token}, {"_id": 0})
        if not order or order["status"] == OrderStatus.CANCELLED.value:
            raise HTTPException(status_code=404, detail="Quote not found")
        lines = list(self.db.sales_order_lines.find({"so_id": order["id"]}, {"_id": 0}))
        expires_at = order.get("quote_expires_at")
        return {
            "order_number": order["human_uid"],
            "status": order["status"],
            "subtotal": order.get("subtotal"),
            "deposit_required": order.get("deposit_required"),
            "deposit_amount": order.get("deposit_amount"),
            "quote_expires_at": expires_at,
            "expired": bool(expires_at and expires_at < datetime.utcnow()),
            "can_accept": order["status"] == OrderStatus.QUOTED.value,
            "lines": lines,
            "accept_url": self.accept_url(order),
        }

    def accept_quote(self, order_id: Optional[str], token: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Customer approval from the emailed link.

        Returns the URL to send the browser to: Stripe Checkout when a deposit
        is due and Stripe is configured, the success page otherwise. Problems
        the customer should read are raised as ``QuoteError``.
        """
        if not order_id:
            raise QuoteError("Order ID is required")
        now = now or datetime.utcnow()
        logger.info(f"Accepting quote for order: {order_id}")

        order = self.db.sales_orders.find_one({"id": order_id}, {"_id": 0})
        if not order:
            raise QuoteError("Order not found")
        if not token or token != order.get("quote_link_token"):
            raise QuoteError("This quote link is not valid")
        if order["status"] != OrderStatus.QUOTED.value:
            raise QuoteError("Order is not in quoted status")
        expires_at = order.get("quote_expires_at")
        if expires_at and expires_at < now:
            raise QuoteError("This quote has expired. Please contact us to request a new quote.")

        deposit_due = bool(order.get("deposit_required")) and (order.get("deposit_amount") or 0) > 0
        if deposit_due and not find_open_invoice(self.db, order_id, InvoiceType.DEPOSIT):
            create_invoice_record(self.db, order, InvoiceType.DEPOSIT, notes="Deposit on quote approval")

        target = OrderStatus.DEPOSIT_DUE if deposit_due else OrderStatus.IN_QUEUE
        extra = {"quote_accepted_at": now}
        if deposit_due:
            extra["deposit_status"] = DepositStatus.UNPAID.value
        try:
            order = self.lifecycle.system_status_change(order, target, reason="quote_accepted", extra_fields=extra)
        except OrderStateError:
            raise QuoteError("Order is not in quoted status")
        logger.info(f"Order {order['human_uid']} status updated to {target.value}")

        self._notify_admin_quote_accepted(order)

        redirect_url = self.success_url(order)
        if deposit_due:
            customer = get_customer(order.get("customer_id")) or {}
            try:
                session = create_checkout_session(
                    order=order,
                    payment_type=InvoiceType.DEPOSIT.value,
                    amount=order["deposit_amount"],
                    customer_email=customer.get("email"),
                )
                redirect_url = session["url"]
            except StripeNotConfigured:
                logger.info("Stripe not configured; sending customer to the success page")
            except stripe.StripeError as e:
                logger.error(f"Checkout session for {order['human_uid']} failed: {e}")
        return {"order": order, "redirect_url": redirect_url}

    def _notify_admin_quote_accepted(self, order: Dict[str, Any]) -> bool:
        customer = get_customer(order.get("customer_id"))
        return send_templated_email(
            "quote_approved_admin",
            f"Quote Approved - Order {order['human_uid']}",
            self._company_email(),
            {
                "customer_name": customer_display_name(customer),
                "order_number": order["human_uid"],
                "subtotal": f"{order.get('subtotal') or 0:.2f}",
                "deposit_required": "Yes" if order.get("deposit_required") else "No",
                "deposit_amount": f"{order.get('deposit_amount') or 0:.2f}",
                "status_display": status_display(order["status"]),
                "order_url": self._order_url(order),
            },
            so_id=order["id"],
        )

    # ----- renew -----

    def renew_quote(self, order_id: str, actor: JWTClaims, additional_days: Optional[int] = None) -> Dict[str, Any]:
        order = self._get_order(order_id)
        if actor.role == UserRole.CUSTOMER and order.get("customer_id") != actor.role_entity_id:
            logger.error("Authorization failed: user does not own this order")
            raise HTTPException(status_code=403, detail="You are not authorized to renew this quote")

        reopening = order["status"] == OrderStatus.DRAFT.value and order.get("quote_expires_at") is not None
        if order["status"] != OrderStatus.QUOTED.value and not reopening:
            raise HTTPException(status_code=400, detail="Only open or expired quotes can be renewed")

        days = additional_days or order.get("quote_expiration_days") or 30
        new_expiration = datetime.utcnow() + timedelta(days=days)
        fields = {
            "quote_expires_at": new_expiration,
            "quote_expiration_days": days,
            "quote_reminder_sent_at": None,
        }
        if reopening:
            try:
                order = self.lifecycle.system_status_change(
                    order, OrderStatus.QUOTED, reason="quote_renewed", actor_id=actor.user_id, extra_fields=fields
                )
            except OrderStateError as e:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_detail())
        else:
            self.db.sales_orders.update_one({"id": order_id}, {"$set": {**fields, "updated_at": datetime.utcnow()}})
            log_event(
                "sales_order", order_id, "quote_renewed",
                {"quote_expires_at": order.get("quote_expires_at")},
                {"quote_expires_at": new_expiration, "days": days},
                actor.user_id,
            )
            order = {**order, **fields}
        logger.info(f"Updated order {order['human_uid']} expiration to: {new_expiration}")

        customer = get_customer(order.get("customer_id"))
        email_sent = send_templated_email(
            "quote_renewed",
            f"Quote {order['human_uid']} Extended",
            (customer or {}).get("email"),
            {
                "customer_name": customer_display_name(customer),
                "order_number": order["human_uid"],
                "expires_on": _fmt_date(new_expiration),
                "accept_url": self.accept_url(order),
            },
            so_id=order_id,
        )
        return {"success": True, "newExpirationDate": new_expiration, "emailSent": email_sent}

    # ----- expiry sweep -----

    def check_expiring_quotes(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Expire overdue quotes back to draft and remind customers of quotes about to lapse."""
        now = now or datetime.utcnow()
        logger.info("Starting quote expiration check...")

        expired: List[Dict[str, Any]] = list(self.db.sales_orders.find(
            {"status": OrderStatus.QUOTED.value, "quote_expires_at": {"$ne": None, "$lt": now}},
            {"_id": 0},
        ))
        expired_count = 0
        for order in expired:
            try:
                self.lifecycle.system_status_change(order, OrderStatus.DRAFT, reason="quote_expired")
            except OrderStateError as e:
                logger.info(f"Quote {order['human_uid']} changed while expiring: {e}")
                continue
            expired_count += 1
            self._send_expired_emails(order)

        reminder_until = now + timedelta(days=self.settings.QUOTE_REMINDER_DAYS)
        expiring = list(self.db.sales_orders.find(
            {
                "status": OrderStatus.QUOTED.value,
                "quote_expires_at": {"$gte": now, "$lt": reminder_until},
                "quote_reminder_sent_at": None,
            },
            {"_id": 0},
        ))
        for order in expiring:
            self._send_reminder(order, now)
            self.db.sales_orders.update_one({"id": order["id"]}, {"$set": {"quote_reminder_sent_at": now}})

        logger.info(f"Quote check done: {expired_count} expired, {len(expiring)} reminders")
        return {"success": True, "expired_count": expired_count, "expiring_soon_count": len(expiring)}

    def _send_expired_emails(self, order: Dict[str, Any]) -> None:
        customer = get_customer(order.get("customer_id"))
        vars = {
            "customer_name": customer_display_name(customer),
            "order_number": order["human_uid"],
            "expires_on": _fmt_date(order.get("quote_expires_at")),
            "order_url": self._order_url(order),
        }
        subject = f"Quote {order['human_uid']} Has Expired"
        send_templated_email("quote_expired", subject, (customer or {}).get("email"), vars, so_id=order["id"])
        send_templated_email("quote_expired_admin", subject, self._company_email(), vars, so_id=order["id"])

    def _send_reminder(self, order: Dict[str, Any], now: datetime) -> None:
        customer = get_customer(order.get("customer_id"))
        days_left = max(1, math.ceil((order["quote_expires_at"] - now).total_seconds() / 86400))
        plural = "s" if days_left != 1 else ""
        send_templated_email(
            "quote_expiring",
            f"Reminder: Quote {order['human_uid']} Expires in {days_left} Day{plural}",
            (customer or {}).get("email"),
            {
                "customer_name": customer_display_name(customer),
                "order_number": order["human_uid"],
                "days_left": days_left,
                "plural": plural,
                "expires_on": _fmt_date(order["quote_expires_at"]),
                "accept_url": self.accept_url(order),
            },
            so_id=order["id"],
        )
