from fastapi import APIRouter, Depends, Query

from .controller import CatalogController
from .pricing import calculate_bundle_margin
from .schema import SKUCreateRequest, SKUUpdateRequest, MarginPreviewRequest
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController, require_admin, require_staff

router = APIRouter(prefix="/catalog", tags=["Catalog"])
jwt_auth = JWTAuthController()

def get_catalog_controller():
    return CatalogController()

@router.get("/skus")
async def list_skus(
    include_inactive: bool = Query(False),
    controller: CatalogController = Depends(get_catalog_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"skus": await controller.list_skus(include_inactive)}

@router.get("/skus/{sku_id}")
async def get_sku(
    sku_id: str,
    controller: CatalogController = Depends(get_catalog_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return await controller.get_sku(sku_id)

@router.post("/skus")
async def create_sku(
    request: SKUCreateRequest,
    controller: CatalogController = Depends(get_catalog_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_admin(current_user)
    return await controller.create_sku(request, current_user.user_id)

@router.patch("/skus/{sku_id}")
async def update_sku(
    sku_id: str,
    request: SKUUpdateRequest,
    controller: CatalogController = Depends(get_catalog_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_admin(current_user)
    return await controller.update_sku(sku_id, request, current_user.user_id)

@router.post("/margin")
async def preview_margin(
    request: MarginPreviewRequest,
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Margin for unsaved cost inputs, used while editing a SKU."""
    require_staff(current_user)
    return calculate_bundle_margin(request.model_dump(), request.selling_price, request.is_bundle)
