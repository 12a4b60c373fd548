import html as html_lib
import re
from pathlib import Path
from typing import Dict, Optional

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

class TemplateNotFound(Exception):
    pass


STATUS_DISPLAY = {
    "draft": "Draft",
    "quoted": "Quoted",
    "deposit_due": "Deposit Due",
    "in_queue": "In Queue",
    "in_production": "In Production",
    "in_labeling": "In Labeling",
    "in_packing": "Ready to Ship",
    "packed": "Packed",
    "awaiting_invoice": "Awaiting Invoice",
    "awaiting_payment": "Awaiting Payment",
    "ready_to_ship": "Ready to Ship",
    "shipped": "Shipped",
    "cancelled": "Cancelled",
}

# (subject, lead sentence, closing sentence) per status the customer is told about
ORDER_STATUS_COPY = {
    "in_production": (
        "Your Order {order_number} is Now in Production",
        "Great news! Your order has entered production.",
        "We'll let you know as soon as it is packed and ready to go.",
    ),
    "in_packing": (
        "Your Order {order_number} is Ready to Ship",
        "Your order has finished production and is being packed.",
        "You'll receive tracking information once it ships.",
    ),
    "ready_to_ship": (
        "Your Order {order_number} is Ready to Ship",
        "Your order is packed and ready to ship.",
        "You'll receive tracking information once it ships.",
    ),
    "shipped": (
        "Your Order {order_number} Has Shipped!",
        "Your order is on its way.",
        "Tracking: {tracking_number}",
    ),
}
DEFAULT_STATUS_COPY = (
    "Update on Your Order {order_number}",
    "The status of your order has been updated.",
    "",
)

# Used when no row exists in sms_templates for the event
SMS_FALLBACKS = {
    "order_status": "Hi {customer_name}, your order {order_number} status is now: {status}",
    "quote_approved": "Hi {customer_name}, your quote {order_number} has been approved!",
    "shipment_update": "Hi {customer_name}, your order {order_number} has shipped!",
    "payment_received": "Hi {customer_name}, payment received for order {order_number}. Thank you!",
}
SMS_DEFAULT_FALLBACK = "Update for order {order_number}: {status}"

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def status_display(status: Optional[str]) -> str:
    if not status:
        return ""
    return STATUS_DISPLAY.get(status, status.replace("_", " ").title())


def order_status_copy(status: str, vars: Dict[str, object]) -> Dict[str, str]:
    subject, lead, closing = ORDER_STATUS_COPY.get(status, DEFAULT_STATUS_COPY)
    return {
        "subject": subject.format(**vars),
        "message": lead.format(**vars),
        "additional": closing.format(**vars),
    }


def _load(path: Path) -> str:
    with path.open("r", encoding="utf-8") as f:
        return f.read()


def escape_vars(vars: Dict[str, object]) -> Dict[str, object]:
    return {
        key: value if key.endswith("_html") or value is None else html_lib.escape(str(value))
        for key, value in vars.items()
    }


def render_templates(event_name: str, vars: Dict[str, object]) -> Dict[str, Optional[str]]:
    """
    Load and render `{event_name}.txt` (required) and `{event_name}.html` (optional)
    from the notification templates directory. Returns a dict with keys `text` and `html`.
    Placeholders use Python str.format. Values are HTML-escaped for the
    `.html` part except keys ending in `_html`, which carry markup already.
    """
    txt_path = TEMPLATES_DIR / f"{event_name}.txt"
    html_path = TEMPLATES_DIR / f"{event_name}.html"

    if not txt_path.exists():
        raise TemplateNotFound(f"Missing required text template: {txt_path}")

    try:
        text = _load(txt_path).format(**vars)
    except KeyError as e:
        raise KeyError(f"Missing template variable '{e.args[0]}' for {txt_path}")

    html: Optional[str] = None
    if html_path.exists():
        try:
            html = _load(html_path).format(**escape_vars(vars))
        except KeyError as e:
            raise KeyError(f"Missing template variable '{e.args[0]}' for {html_path}")

    return {"text": text, "html": html}


def text_to_html(text: str) -> str:
    """Plain-text body wrapped for providers that insist on an HTML part."""
    escaped = html_lib.escape(text, quote=False)
    return "<html><body><pre style=\"font-family: Arial, sans-serif;\">" + escaped + "</pre></body></html>"


def render_sms_template(template: str, vars: Dict[str, object]) -> str:
    """Fill ``{{name}}`` placeholders of an sms_templates row; unknown names become empty."""
    return _PLACEHOLDER.sub(lambda m: str(vars.get(m.group(1)) or ""), template)


def sms_fallback(event_type: Optional[str], vars: Dict[str, object]) -> str:
    if event_type == "custom":
        return vars.get("test_message") or "Update for order {order_number}".format(**vars)
    template = SMS_FALLBACKS.get(event_type or "", SMS_DEFAULT_FALLBACK)
    return template.format(**vars)
