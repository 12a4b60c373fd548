from fastapi import APIRouter, Depends

from .controller import DashboardController
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController, require_staff

router = APIRouter(prefix="/dashboard", tags=["Dashboard"])
jwt_auth = JWTAuthController()

def get_dashboard_controller():
    return DashboardController()

@router.get("/summary")
async def summary(
    controller: DashboardController = Depends(get_dashboard_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.summary()

@router.get("/queue")
async def queue(
    controller: DashboardController = Depends(get_dashboard_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    orders = controller.queue()
    return {"orders": orders, "count": len(orders)}
