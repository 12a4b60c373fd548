from fastapi import APIRouter, Depends
from fastapi.responses import Response

from .service import DocumentService
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController

router = APIRouter(prefix="/documents", tags=["Documents"])
jwt_auth = JWTAuthController()

def get_document_service():
    return DocumentService()

def pdf_response(filename: str, content: bytes) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.get("/quotes/{order_id}")
async def quote_pdf(
    order_id: str,
    service: DocumentService = Depends(get_document_service),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return pdf_response(*service.quote_pdf(order_id, current_user))

@router.get("/invoices/{invoice_id}")
async def invoice_pdf(
    invoice_id: str,
    service: DocumentService = Depends(get_document_service),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return pdf_response(*service.invoice_pdf(invoice_id, current_user))

@router.get("/receipts/{transaction_id}")
async def payment_receipt(
    transaction_id: str,
    service: DocumentService = Depends(get_document_service),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    """Receipt for one payment transaction (Stripe or manual)."""
    return pdf_response(*service.receipt_pdf(transaction_id, current_user))
