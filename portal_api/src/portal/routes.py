from fastapi import APIRouter, Depends

from .controller import PortalController
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController

router = APIRouter(prefix="/portal", tags=["Customer Portal"])
jwt_auth = JWTAuthController()

def get_portal_controller():
    return PortalController()

@router.get("/orders")
async def my_orders(
    controller: PortalController = Depends(get_portal_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    orders = controller.list_orders(current_user)
    return {"orders": orders, "count": len(orders)}

@router.get("/orders/{order_id}")
async def my_order(
    order_id: str,
    controller: PortalController = Depends(get_portal_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return controller.get_order(order_id, current_user)

@router.get("/payments")
async def my_payments(
    controller: PortalController = Depends(get_portal_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return {"payments": controller.payment_history(current_user)}

@router.get("/catalog")
async def catalog(
    controller: PortalController = Depends(get_portal_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Active SKUs with customer-facing prices only."""
    return {"skus": controller.catalog()}
