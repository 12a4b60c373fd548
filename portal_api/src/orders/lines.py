from datetime import datetime
from typing import Any, Dict, List, Tuple

from fastapi import HTTPException

from .schema import OrderLineInput, SellMode
from ...utils.helperFunctions import generate_unique_id, round_money


def bottle_qty_for(sell_mode: SellMode, qty_entered: int, kit_size: int) -> int:
    return qty_entered * kit_size if SellMode(sell_mode) == SellMode.KIT else qty_entered


def price_lines(
    db, so_id: str, lines: List[OrderLineInput], kit_size: int, allow_manual_price: bool = False
) -> Tuple[List[Dict[str, Any]], float, bool]:
    """Resolve SKUs and price each line.

    Returns (line documents, subtotal, label_required). Unknown or inactive
    SKUs are a 400. A hand-set ``unit_price`` is a 403 unless
    ``allow_manual_price`` (staff callers).
    """
    if not allow_manual_price and any(line.unit_price is not None for line in lines):
        raise HTTPException(status_code=403, detail="Only staff can set a line price")
    docs = []
    label_required = False
    now = datetime.utcnow()
    for line in lines:
        sku = db.skus.find_one({"id": line.sku_id, "active": True}, {"_id": 0})
        if not sku:
            raise HTTPException(status_code=400, detail=f"Unknown or inactive SKU {line.sku_id}")

        if line.unit_price is not None:
            unit_price = line.unit_price
        elif line.sell_mode == SellMode.KIT:
            unit_price = sku.get("price_per_kit") or 0
        else:
            unit_price = sku.get("price_per_piece") or 0

        label_required = label_required or bool(sku.get("label_required"))
        docs.append({
            "id": generate_unique_id("line"),
            "so_id": so_id,
            "sku_id": sku["id"],
            "sku_code": sku["code"],
            "sku_description": sku.get("description", ""),
            "sell_mode": line.sell_mode.value,
            "qty_entered": line.qty_entered,
            "bottle_qty": bottle_qty_for(line.sell_mode, line.qty_entered, kit_size),
            "unit_price": round_money(unit_price),
            "line_subtotal": round_money(unit_price * line.qty_entered),
            "created_at": now,
        })

    subtotal = round_money(sum(d["line_subtotal"] for d in docs))
    return docs, subtotal, label_required
