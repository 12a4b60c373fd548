"""
Outbound customer/staff notifications.

Everything in here is called from other features after their own write has
succeeded, so sends are best-effort: failures are logged and recorded, and
the caller gets a flag back instead of an exception. The SMS endpoint is the
exception; it goes through ``dispatch_sms`` which raises ``TextbeltError``.
"""
import html
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

from .templates import (
    TemplateNotFound,
    render_templates,
    render_sms_template,
    sms_fallback,
    status_display,
    order_status_copy,
    text_to_html,
)
from ...config import get_settings
from ...database.db import get_database
from ...services.email.email_provider import Attachment
from ...services.email.factory import get_email_provider
from ...services.sms.factory import get_sms_provider
from ...services.sms.textbelt_provider import TextbeltError

logger = logging.getLogger(__name__)

settings = get_settings()
db = get_database()


def _common_vars(base: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "company_name": settings.COMPANY_NAME,
        "site_url": settings.SITE_URL,
        **base,
    }


def _log_email(template: str, to_email: str, subject: str, ok: bool, provider: str,
               message_id: Optional[str], error: Optional[str], so_id: Optional[str]) -> None:
    try:
        db.email_logs.insert_one({
            "template": template,
            "to": to_email,
            "subject": subject,
            "status": "sent" if ok else "failed",
            "provider": provider,
            "message_id": message_id,
            "error": error,
            "so_id": so_id,
            "created_at": datetime.utcnow(),
        })
    except Exception as e:
        logger.warning(f"email log insert failed for {template} -> {to_email}: {e}")


def send_templated_email(
    template: str,
    subject: str,
    to_email: Optional[str],
    vars: Dict[str, Any],
    *,
    so_id: Optional[str] = None,
    reply_to: Optional[str] = None,
    attachments: Optional[Sequence[Attachment]] = None,
) -> bool:
    """Render ``template`` and hand it to the configured provider. Returns whether it was sent."""
    if not to_email:
        logger.info(f"[EMAIL] {template} skipped: no recipient")
        return False

    try:
        rendered = render_templates(template, _common_vars(vars))
    except (TemplateNotFound, KeyError) as e:
        logger.error(f"[EMAIL] {template} could not be rendered: {e}")
        _log_email(template, to_email, subject, False, "none", None, str(e), so_id)
        return False

    provider = get_email_provider()
    result = provider.send_email(
        to=to_email,
        subject=subject,
        html=rendered["html"] or text_to_html(rendered["text"]),
        text=rendered["text"],
        reply_to=reply_to,
        attachments=attachments,
    )
    _log_email(template, to_email, subject, result.ok, result.provider, result.message_id, result.error, so_id)
    if result.ok:
        logger.info(f"[EMAIL] {template} sent to {to_email} via {result.provider}")
    else:
        logger.error(f"[EMAIL] {template} to {to_email} failed: {result.error}")
    return result.ok


# ───────────── lookups ─────────────

def get_customer(customer_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not customer_id:
        return None
    return db.customers.find_one({"id": customer_id}, {"_id": 0})


def get_preferences(customer_id: Optional[str]) -> Dict[str, Any]:
    """Stored preferences, or the defaults (email on, SMS off) when none were saved."""
    defaults = {
        "customer_id": customer_id,
        "email_enabled": True,
        "sms_enabled": False,
        "sms_phone_number": None,
        "sms_order_status": True,
    }
    if not customer_id:
        return defaults
    row = db.notification_preferences.find_one({"customer_id": customer_id}, {"_id": 0})
    return {**defaults, **(row or {})}


def customer_display_name(customer: Optional[Dict[str, Any]]) -> str:
    if not customer:
        return "Customer"
    return customer.get("name") or customer.get("contact_name") or "Customer"


# ───────────── SMS ─────────────

def compose_sms(
    order: Dict[str, Any],
    event_type: Optional[str],
    new_status: Optional[str] = None,
    tracking_number: Optional[str] = None,
    test_message: Optional[str] = None,
) -> str:
    """Message text for an order event: the sms_templates row when one exists, else a fallback."""
    customer = get_customer(order.get("customer_id"))
    vars = {
        "customer_name": customer_display_name(customer),
        "order_number": order.get("human_uid", ""),
        "status": new_status or "",
        "tracking_number": tracking_number or "",
        "test_message": test_message,
    }

    template_type = event_type
    if event_type == "shipment_update" and (new_status or "").lower() == "delivered":
        template_type = "shipment_delivered"

    template = db.sms_templates.find_one({"template_type": template_type, "is_active": {"$ne": False}})
    if template and template.get("message_template"):
        return render_sms_template(template["message_template"], vars)
    return sms_fallback(event_type, vars)


def dispatch_sms(
    phone_number: str,
    message: str,
    *,
    order: Optional[Dict[str, Any]] = None,
    template_type: Optional[str] = None,
    sent_by: Optional[str] = None,
) -> Dict[str, Any]:
    """Send through Textbelt and, for order messages, append to ``sms_logs``. Raises TextbeltError."""
    result = get_sms_provider().send(phone_number, message)
    response = {"success": True, "textId": result.text_id, "quotaRemaining": result.quota_remaining}

    if order is not None:
        try:
            db.sms_logs.insert_one({
                "customer_id": order.get("customer_id"),
                "so_id": order.get("id"),
                "phone_number": phone_number,
                "message": message,
                "template_type": template_type,
                "status": "sent",
                "textbelt_response": response,
                "sent_by": sent_by,
                "created_at": datetime.utcnow(),
            })
        except Exception as e:
            logger.error(f"Failed to log SMS for {order.get('id')} but continuing: {e}")

    logger.info(f"[SMS] {template_type or 'message'} sent to {phone_number}, quota left {result.quota_remaining}")
    return response


def get_sms_quota() -> Dict[str, Any]:
    """Remaining Textbelt credits plus a warning flag below the configured threshold. Raises TextbeltError."""
    result = get_sms_provider().quota()
    if not result.success:
        raise TextbeltError(result.error or "Quota lookup failed")
    remaining = result.quota_remaining or 0
    return {
        "success": True,
        "quotaRemaining": remaining,
        "lowQuota": remaining < settings.SMS_QUOTA_WARNING_THRESHOLD,
        "threshold": settings.SMS_QUOTA_WARNING_THRESHOLD,
    }


# ───────────── order events ─────────────

def notify_order_status_change(order: Dict[str, Any], new_status: str) -> Dict[str, bool]:
    """Tell the customer their order moved: email when enabled, SMS when opted in."""
    outcome = {"email_sent": False, "sms_sent": False}
    customer = get_customer(order.get("customer_id"))
    if not customer:
        logger.info(f"No customer for order {order.get('human_uid')}; status notification skipped")
        return outcome

    prefs = get_preferences(customer["id"])
    tracking_number = None
    if new_status == "shipped":
        shipment = db.shipments.find_one({"so_id": order["id"], "voided_at": None}, sort=[("created_at", -1)])
        tracking_number = (shipment or {}).get("tracking_no")

    vars = {
        "order_number": order.get("human_uid", ""),
        "customer_name": customer_display_name(customer),
        "status_display": status_display(new_status),
        "tracking_number": tracking_number or "to follow",
    }
    copy = order_status_copy(new_status, vars)

    if prefs["email_enabled"]:
        outcome["email_sent"] = send_templated_email(
            "order_status",
            copy["subject"],
            customer.get("email"),
            {
                **vars,
                "greeting": f"Hello {vars['customer_name']},",
                "message_text": copy["message"],
                "message_html": html.escape(copy["message"]),
                "additional_text": copy["additional"],
            },
            so_id=order["id"],
        )

    phone = prefs.get("sms_phone_number")
    if prefs["sms_enabled"] and prefs["sms_order_status"] and phone:
        event_type = "shipment_update" if new_status == "shipped" else "order_status"
        try:
            message = compose_sms(order, event_type, status_display(new_status), tracking_number)
            dispatch_sms(phone, message, order=order, template_type=event_type)
            outcome["sms_sent"] = True
        except TextbeltError as e:
            logger.error(f"[SMS] status notification for {order.get('human_uid')} failed: {e}")

    return outcome


def notify_payment_received(order: Dict[str, Any], amount: float, payment_label: str) -> bool:
    customer = get_customer(order.get("customer_id"))
    if not customer or not get_preferences(customer["id"])["email_enabled"]:
        return False
    return send_templated_email(
        "payment_received",
        f"Payment Received - Order {order.get('human_uid')}",
        customer.get("email"),
        {
            "customer_name": customer_display_name(customer),
            "order_number": order.get("human_uid", ""),
            "amount": f"{amount:.2f}",
            "payment_label": payment_label,
        },
        so_id=order.get("id"),
    )


def notify_shipment_update(
    shipment: Dict[str, Any],
    tracking_status: Optional[str] = None,
    to_email: Optional[str] = None,
) -> bool:
    """Tracking update or delivery email for a shipment.

    An explicit ``to_email`` is always used; otherwise the customer's address,
    and only when they have email notifications on.
    """
    order = db.sales_orders.find_one({"id": shipment["so_id"]}, {"_id": 0}) or {}
    customer = get_customer(order.get("customer_id"))
    recipient = to_email
    if not recipient:
        if not customer or not get_preferences(customer["id"])["email_enabled"]:
            return False
        recipient = customer.get("email")

    current = tracking_status or shipment.get("tracking_status") or "In Transit"
    delivered = current.strip().lower() == "delivered"
    order_number = order.get("human_uid", "")
    estimated = shipment.get("estimated_delivery")
    if isinstance(estimated, datetime):
        estimated = estimated.strftime("%B %d, %Y")
    vars = {
        "customer_name": customer_display_name(customer),
        "order_number": order_number,
        "tracking_status": current,
        "tracking_number": shipment.get("tracking_no") or "",
        "carrier": shipment.get("carrier") or "",
        "tracking_location": shipment.get("tracking_location") or "Not available",
        "estimated_delivery": estimated or "Pending",
        "track_url": f"{settings.SITE_URL.rstrip('/')}/track/{shipment.get('share_token', '')}",
    }
    if delivered:
        return send_templated_email(
            "shipment_delivered", f"Your Order {order_number} Has Been Delivered!", recipient, vars,
            so_id=order.get("id"),
        )
    return send_templated_email(
        "shipment_update", f"Shipment Update for Order {order_number}", recipient, vars,
        so_id=order.get("id"),
    )
