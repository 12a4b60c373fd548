from typing import Any, Dict, Mapping, Optional

BUNDLE_COST_FIELDS = (
    "bundle_product_price",
    "bundle_packaging_price",
    "bundle_labeling_price",
    "bundle_inserts_price",
    "bundle_labor_price",
    "bundle_overhead_price",
)

# single items carry no packaging or inserts of their own
SINGLE_COST_FIELDS = (
    "bundle_product_price",
    "bundle_labeling_price",
    "bundle_labor_price",
    "bundle_overhead_price",
)


def _amount(value: Any) -> float:
    """Blank or missing cost inputs count as zero."""
    if value is None or value == "":
        return 0.0
    return float(value)


def calculate_bundle_margin(costs: Mapping[str, Any], selling_price: Optional[Any], is_bundle: bool) -> Dict[str, float]:
    fields = BUNDLE_COST_FIELDS if is_bundle else SINGLE_COST_FIELDS
    total_cost = sum(_amount(costs.get(name)) for name in fields)
    price = _amount(selling_price)
    margin = price - total_cost
    margin_percent = (margin / total_cost * 100) if total_cost > 0 else 0.0
    return {
        "total_cost": round(total_cost, 2),
        "selling_price": round(price, 2),
        "margin": round(margin, 2),
        "margin_percent": round(margin_percent, 1),
    }
