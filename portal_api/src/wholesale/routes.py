from typing import Optional

from fastapi import APIRouter, Depends, Query

from .controller import WholesaleController
from .schema import ApplicationStatus, WholesaleApplicationRequest, ApplicationReviewRequest
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController, require_staff

router = APIRouter(prefix="/wholesale", tags=["Wholesale"])
jwt_auth = JWTAuthController()

def get_wholesale_controller():
    return WholesaleController()

@router.post("/apply")
async def apply(
    request: WholesaleApplicationRequest,
    controller: WholesaleController = Depends(get_wholesale_controller),
):
    """Public wholesale account application."""
    return controller.submit_application(request)

@router.get("/applications")
async def list_applications(
    status: Optional[ApplicationStatus] = Query(None),
    controller: WholesaleController = Depends(get_wholesale_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"applications": controller.list_applications(status)}

@router.post("/applications/{application_id}/approve")
async def approve_application(
    application_id: str,
    request: ApplicationReviewRequest,
    controller: WholesaleController = Depends(get_wholesale_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.approve_application(application_id, request, current_user)

@router.post("/applications/{application_id}/reject")
async def reject_application(
    application_id: str,
    request: ApplicationReviewRequest,
    controller: WholesaleController = Depends(get_wholesale_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.reject_application(application_id, request, current_user)
