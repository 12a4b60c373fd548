from typing import Optional

from fastapi import APIRouter, Depends, Query

from .controller import ProductionController
from .schema import (
    BatchStatus,
    BatchCreateRequest,
    BatchStatusRequest,
    BatchOutputRequest,
    ReprioritizeRequest,
)
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController, require_staff

router = APIRouter(prefix="/production", tags=["Production"])
jwt_auth = JWTAuthController()

def get_production_controller():
    return ProductionController()

@router.post("/batches")
async def create_batch(
    request: BatchCreateRequest,
    controller: ProductionController = Depends(get_production_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.create_batch(request, current_user)

@router.get("/batches")
async def list_batches(
    so_id: Optional[str] = Query(None),
    status: Optional[BatchStatus] = Query(None),
    controller: ProductionController = Depends(get_production_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"batches": controller.list_batches(so_id, status)}

@router.get("/queue")
async def production_queue(
    limit: int = Query(50, ge=1, le=200),
    controller: ProductionController = Depends(get_production_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"batches": controller.queue(limit)}

@router.post("/queue/reprioritize")
async def reprioritize(
    request: ReprioritizeRequest,
    controller: ProductionController = Depends(get_production_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"batches": controller.reprioritize(request.batch_ids, current_user)}

@router.get("/batches/{batch_id}")
async def get_batch(
    batch_id: str,
    controller: ProductionController = Depends(get_production_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.get_batch(batch_id)

@router.post("/batches/{batch_id}/status")
async def update_batch_status(
    batch_id: str,
    request: BatchStatusRequest,
    controller: ProductionController = Depends(get_production_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Move a batch through queued/wip/hold/complete; may advance the order."""
    require_staff(current_user)
    return controller.update_batch_status(batch_id, request, current_user)

@router.post("/batches/{batch_id}/output")
async def record_output(
    batch_id: str,
    request: BatchOutputRequest,
    controller: ProductionController = Depends(get_production_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.record_output(batch_id, request, current_user)
