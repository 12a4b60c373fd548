from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from .controller import ShippingController
from .schema import LabelCreateRequest, ShipmentCreateRequest, ShipmentNotifyRequest, TrackingUpdateRequest
from ..auth.schema import JWTClaims
from ..notifications.routes import optional_user
from ...config import get_settings
from ...middlewares.jwt_auth import JWTAuthController, require_staff

router = APIRouter(prefix="/shipping", tags=["Shipping"])
jwt_auth = JWTAuthController()

def get_shipping_controller():
    return ShippingController()

@router.get("/track/{share_token}")
async def track_shipment(share_token: str, controller: ShippingController = Depends(get_shipping_controller)):
    """Public: tracking details behind a share link."""
    return controller.track(share_token)

@router.post("/shipments")
async def create_shipment(
    request: ShipmentCreateRequest,
    controller: ShippingController = Depends(get_shipping_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.create_shipment(request, current_user)

@router.get("/shipments")
async def list_shipments(
    so_id: str = Query(...),
    controller: ShippingController = Depends(get_shipping_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"shipments": controller.list_shipments(so_id)}

@router.patch("/shipments/{shipment_id}/tracking")
async def update_tracking(
    shipment_id: str,
    request: TrackingUpdateRequest,
    controller: ShippingController = Depends(get_shipping_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.update_tracking(shipment_id, request, current_user)

@router.post("/shipments/{shipment_id}/void")
async def void_label(
    shipment_id: str,
    controller: ShippingController = Depends(get_shipping_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Void the label (ShipStation when the shipment came from there, locally otherwise)."""
    require_staff(current_user)
    return controller.void_label(shipment_id, current_user)

@router.post("/orders/{order_id}/label")
async def create_label(
    order_id: str,
    request: LabelCreateRequest,
    controller: ShippingController = Depends(get_shipping_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Buy a ShipStation label for the order and mark it shipped."""
    require_staff(current_user)
    return controller.create_label(order_id, request, current_user)

@router.post("/shipments/{shipment_id}/notify")
async def notify_shipment(
    shipment_id: str,
    request: ShipmentNotifyRequest,
    controller: ShippingController = Depends(get_shipping_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.notify_shipment(shipment_id, request)

@router.post("/tracking/refresh")
async def refresh_tracking(
    x_webhook_secret: Optional[str] = Header(None),
    user: Optional[JWTClaims] = Depends(optional_user),
    controller: ShippingController = Depends(get_shipping_controller),
):
    """Carrier tracking sweep; called by the scheduler with the internal secret or by staff."""
    expected = get_settings().INTERNAL_WEBHOOK_SECRET
    if not (expected and x_webhook_secret == expected) and not (user and user.is_staff):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return controller.refresh_tracking()
