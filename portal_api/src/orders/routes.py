from fastapi import APIRouter, Depends, Query
from typing import Optional

from .controller import OrderController
from .addons import AddOnCreator
from .schema import (
    OrderCreateRequest,
    OrderStatus,
    StatusChangeRequest,
    AddonCreateRequest,
    OrderListResponse,
    TransitionCheckResponse,
)
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController, require_staff

router = APIRouter(prefix="/orders", tags=["Orders"])
jwt_auth = JWTAuthController()

def get_order_controller():
    return OrderController()

def get_addon_creator():
    return AddOnCreator()

@router.post("/")
async def create_order(
    request: OrderCreateRequest,
    controller: OrderController = Depends(get_order_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Create a wholesale order (staff for any customer, customers for themselves) or an internal order (staff)."""
    order = await controller.create_order(request, current_user)
    return {"success": True, "order": order}

@router.get("/", response_model=OrderListResponse)
async def list_orders(
    status: Optional[OrderStatus] = Query(None, description="Filter by order status"),
    customer_id: Optional[str] = Query(None, description="Staff only: filter by customer"),
    include_addons: bool = Query(True),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    controller: OrderController = Depends(get_order_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    orders = await controller.list_orders(current_user, status, customer_id, include_addons, limit, skip)
    return {"orders": orders, "count": len(orders)}

@router.get("/{order_id}")
async def get_order(
    order_id: str,
    controller: OrderController = Depends(get_order_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Order with lines, batches, invoices, shipments, add-ons and the consolidated view when it applies."""
    return await controller.get_order_detail(order_id, current_user)

@router.get("/{order_id}/status/validate", response_model=TransitionCheckResponse)
async def validate_status_change(
    order_id: str,
    new_status: OrderStatus = Query(...),
    controller: OrderController = Depends(get_order_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Dry run of a status change: warnings, blockers and whether an override note is needed."""
    require_staff(current_user)
    return await controller.validate_status(order_id, new_status, current_user)

@router.post("/{order_id}/status")
async def change_status(
    order_id: str,
    request: StatusChangeRequest,
    controller: OrderController = Depends(get_order_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return await controller.change_status(order_id, request.new_status, current_user, request.override_note)

@router.get("/{order_id}/history")
async def order_history(
    order_id: str,
    controller: OrderController = Depends(get_order_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return {"events": await controller.order_history(order_id, current_user)}

@router.post("/{order_id}/addons")
async def create_addon(
    order_id: str,
    request: AddonCreateRequest,
    creator: AddOnCreator = Depends(get_addon_creator),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Attach an add-on order. Once packing has started only an admin with an override note may do this."""
    result = creator.create_addon(
        order_id,
        request.lines,
        current_user,
        reason=request.reason,
        override_note=request.override_note,
    )
    return {"success": True, **result}
