from typing import Optional

from fastapi import APIRouter, Depends, Query

from .controller import InvoiceController
from .schema import InvoiceCreateRequest, InvoiceEmailRequest, InvoiceResponse, InvoiceStatus, ManualPaymentRequest
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController, require_staff, require_admin

router = APIRouter(prefix="/invoices", tags=["Invoices"])
jwt_auth = JWTAuthController()

def get_invoice_controller():
    return InvoiceController()

@router.get("/")
async def list_invoices(
    so_id: Optional[str] = Query(None),
    status: Optional[InvoiceStatus] = Query(None),
    controller: InvoiceController = Depends(get_invoice_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"invoices": controller.list_invoices(so_id, status)}

@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    controller: InvoiceController = Depends(get_invoice_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.get_invoice(invoice_id)

@router.post("/orders/{order_id}")
async def create_invoice(
    order_id: str,
    request: InvoiceCreateRequest,
    controller: InvoiceController = Depends(get_invoice_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Create the deposit or final invoice. A final invoice moves awaiting_invoice orders to awaiting_payment."""
    require_staff(current_user)
    return controller.create_invoice(order_id, request, current_user)

@router.post("/{invoice_id}/void", response_model=InvoiceResponse)
async def void_invoice(
    invoice_id: str,
    controller: InvoiceController = Depends(get_invoice_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_admin(current_user)
    return controller.void_invoice(invoice_id, current_user)

@router.post("/{invoice_id}/send")
async def send_invoice_email(
    invoice_id: str,
    request: InvoiceEmailRequest,
    controller: InvoiceController = Depends(get_invoice_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Email the invoice PDF to the customer (or ``to_email``)."""
    require_staff(current_user)
    return controller.send_invoice_email(invoice_id, request, current_user)

@router.post("/payments/manual")
async def record_manual_payment(
    request: ManualPaymentRequest,
    controller: InvoiceController = Depends(get_invoice_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_admin(current_user)
    return controller.record_manual_payment(request, current_user)
