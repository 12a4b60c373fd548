"""
Add-on consolidation: once a parent order reaches fulfilment its add-on
orders are packed, invoiced and shipped with it, so totals and line items
are reported across the whole family.
"""
from typing import Any, Dict, Iterable, List

from .schema import OrderStatus

CONSOLIDATED_VIEW_STATUSES = (
    OrderStatus.IN_PACKING,
    OrderStatus.PACKED,
    OrderStatus.AWAITING_INVOICE,
    OrderStatus.AWAITING_PAYMENT,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
)


def should_show_consolidated_view(status: str) -> bool:
    return status in [s.value for s in CONSOLIDATED_VIEW_STATUSES]


def calculate_consolidated_totals(
    parent_subtotal: float,
    parent_lines: Iterable[Dict[str, Any]],
    addons: Iterable[Dict[str, Any]],
) -> Dict[str, Any]:
    """Totals across a parent order and its add-ons.

    Each add-on is an order dict carrying its own ``lines``.
    """
    parent_lines = list(parent_lines)
    addons = list(addons)

    addon_total = sum(addon.get("subtotal") or 0 for addon in addons)
    parent_bottles = sum(line.get("bottle_qty") or 0 for line in parent_lines)
    addon_bottles = sum(
        line.get("bottle_qty") or 0
        for addon in addons
        for line in addon.get("lines", [])
    )
    addon_line_count = sum(len(addon.get("lines", [])) for addon in addons)

    return {
        "total": round((parent_subtotal or 0) + addon_total, 2),
        "line_item_count": len(parent_lines) + addon_line_count,
        "bottle_count": parent_bottles + addon_bottles,
    }


def get_consolidated_line_items(
    parent_id: str,
    parent_uid: str,
    parent_lines: Iterable[Dict[str, Any]],
    addons: Iterable[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """Parent lines first, then each add-on's lines in add-on creation order."""
    result = [
        {"source_order_id": parent_id, "source_order_uid": parent_uid, "is_addon": False, "line_item": line}
        for line in parent_lines
    ]
    for addon in addons:
        for line in addon.get("lines", []):
            result.append({
                "source_order_id": addon["id"],
                "source_order_uid": addon["human_uid"],
                "is_addon": True,
                "line_item": line,
            })
    return result


def fetch_addon_orders(db, parent_id: str) -> List[Dict[str, Any]]:
    """Add-on orders of ``parent_id`` (oldest first), each with its ``lines``."""
    links = list(db.order_addons.find({"parent_so_id": parent_id}, {"_id": 0}).sort("created_at", 1))
    addons = []
    for link in links:
        order = db.sales_orders.find_one({"id": link["addon_so_id"]}, {"_id": 0})
        if not order:
            continue
        order["lines"] = list(db.sales_order_lines.find({"so_id": order["id"]}, {"_id": 0}))
        addons.append(order)
    return addons


def get_addon_count(db, parent_id: str) -> int:
    return db.order_addons.count_documents({"parent_so_id": parent_id})


def has_addons(db, parent_id: str) -> bool:
    return get_addon_count(db, parent_id) > 0


def consolidated_total_for(db, order: Dict[str, Any]) -> float:
    """Parent subtotal plus every add-on subtotal."""
    lines = list(db.sales_order_lines.find({"so_id": order["id"]}, {"_id": 0}))
    totals = calculate_consolidated_totals(order.get("subtotal") or 0, lines, fetch_addon_orders(db, order["id"]))
    return totals["total"]
