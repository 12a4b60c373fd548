import pytest
from fastapi import HTTPException

from ..controller import CatalogController
from ..pricing import calculate_bundle_margin
from ..schema import SKUCreateRequest


def test_bundle_counts_every_cost_input():
    costs = {
        "bundle_product_price": 10,
        "bundle_packaging_price": 2,
        "bundle_labeling_price": 1,
        "bundle_inserts_price": 0.5,
        "bundle_labor_price": 1.5,
        "bundle_overhead_price": 1,
    }
    result = calculate_bundle_margin(costs, 24, is_bundle=True)
    assert result == {"total_cost": 16.0, "selling_price": 24.0, "margin": 8.0, "margin_percent": 50.0}


def test_single_item_skips_packaging_and_inserts():
    costs = {
        "bundle_product_price": 10,
        "bundle_packaging_price": 99,
        "bundle_labeling_price": 1,
        "bundle_inserts_price": 99,
        "bundle_labor_price": 1.5,
        "bundle_overhead_price": 0.5,
    }
    result = calculate_bundle_margin(costs, 20, is_bundle=False)
    assert result["total_cost"] == 13.0
    assert result["margin"] == 7.0
    assert result["margin_percent"] == 53.8


def test_blank_inputs_count_as_zero():
    result = calculate_bundle_margin({"bundle_product_price": "", "bundle_labor_price": None}, "", is_bundle=True)
    assert result == {"total_cost": 0.0, "selling_price": 0.0, "margin": 0.0, "margin_percent": 0.0}


def test_negative_margin():
    result = calculate_bundle_margin({"bundle_product_price": 10}, 8, is_bundle=False)
    assert result["margin"] == -2.0
    assert result["margin_percent"] == -20.0


@pytest.mark.asyncio
async def test_create_sku_returns_margin_and_rejects_duplicate_code(fake_db):
    controller = CatalogController()
    request = SKUCreateRequest(
        code="DUO01",
        description="Cleanser + Toner Duo",
        price_per_kit=30,
        price_per_piece=4,
        is_bundle=True,
        bundle_product_price=12,
        bundle_packaging_price=3,
    )
    sku = await controller.create_sku(request, "user_admin")
    assert sku["margin"]["total_cost"] == 15.0
    assert sku["margin"]["margin_percent"] == 100.0

    with pytest.raises(HTTPException) as exc:
        await controller.create_sku(request, "user_admin")
    assert exc.value.status_code == 400


def test_margin_preview_endpoint(client, operator, as_user):
    resp = client.post(
        "/catalog/margin",
        json={"is_bundle": False, "selling_price": 12, "bundle_product_price": 6},
        headers=as_user(operator),
    )
    assert resp.status_code == 200
    assert resp.json()["margin_percent"] == 100.0


def test_customers_cannot_edit_catalog(client, customer, sku, as_user):
    resp = client.patch(f"/catalog/skus/{sku['id']}", json={"price_per_kit": 1}, headers=as_user(customer))
    assert resp.status_code == 403
