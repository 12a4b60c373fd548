from typing import Optional

from fastapi import APIRouter, Depends, Query

from .controller import CustomerController
from .schema import CustomerCreateRequest, CustomerUpdateRequest
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController, require_staff

router = APIRouter(prefix="/customers", tags=["Customers"])
jwt_auth = JWTAuthController()

def get_customer_controller():
    return CustomerController()

@router.get("/")
async def list_customers(
    search: Optional[str] = Query(None, description="Match on name or email"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    controller: CustomerController = Depends(get_customer_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    customers = controller.list_customers(search, limit, skip)
    return {"customers": customers, "count": len(customers)}

@router.post("/")
async def create_customer(
    request: CustomerCreateRequest,
    controller: CustomerController = Depends(get_customer_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.create_customer(request, current_user)

@router.get("/{customer_id}")
async def get_customer(
    customer_id: str,
    controller: CustomerController = Depends(get_customer_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.get_customer(customer_id)

@router.patch("/{customer_id}")
async def update_customer(
    customer_id: str,
    request: CustomerUpdateRequest,
    controller: CustomerController = Depends(get_customer_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.update_customer(customer_id, request, current_user)
