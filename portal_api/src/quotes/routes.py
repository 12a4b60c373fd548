import html
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, HTTPException
from fastapi.responses import HTMLResponse, RedirectResponse

from .schema import QuoteIssueRequest, QuoteRenewRequest
from .service import QuoteService, QuoteError
from ..auth.schema import JWTClaims
from ..notifications.routes import optional_user
from ...config import get_settings
from ...middlewares.jwt_auth import JWTAuthController, require_staff

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quotes", tags=["Quotes"])
jwt_auth = JWTAuthController()

ERROR_PAGE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Error</title>
  </head>
  <body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; background: #f5f5f5; margin: 0; padding: 60px 20px;">
    <div style="background: white; padding: 40px; border-radius: 8px; max-width: 500px; margin: 0 auto; text-align: center;">
      <h1 style="color: #dc3545; margin-bottom: 16px;">Error</h1>
      <p style="color: #666; line-height: 1.6;">{message}</p>
      <p style="margin-top: 24px;"><a href="{home}" style="color: #007bff; text-decoration: none;">Return to Home</a></p>
    </div>
  </body>
</html>
"""

def get_quote_service():
    return QuoteService()

@router.get("/accept", include_in_schema=False)
async def accept_quote(
    order_id: Optional[str] = Query(None, alias="orderId"),
    token: Optional[str] = Query(None),
    service: QuoteService = Depends(get_quote_service),
):
    """Target of the approve button in the quote email: redirect to payment or show an error page."""
    try:
        result = service.accept_quote(order_id, token)
    except QuoteError as e:
        logger.error(f"Error accepting quote: {e}")
        page = ERROR_PAGE.format(message=html.escape(str(e)), home=html.escape(get_settings().SITE_URL))
        return HTMLResponse(content=page, status_code=400)
    return RedirectResponse(url=result["redirect_url"], status_code=302)

@router.get("/view")
async def view_quote(token: str = Query(...), service: QuoteService = Depends(get_quote_service)):
    """Quote approval page data, looked up by the emailed token."""
    return service.quote_view(token)

@router.post("/check-expiring")
async def check_expiring_quotes(
    x_webhook_secret: Optional[str] = Header(None),
    user: Optional[JWTClaims] = Depends(optional_user),
    service: QuoteService = Depends(get_quote_service),
):
    """Expiry sweep; called by the scheduler with the internal secret or by staff."""
    expected = get_settings().INTERNAL_WEBHOOK_SECRET
    if not (expected and x_webhook_secret == expected) and not (user and user.is_staff):
        raise HTTPException(status_code=401, detail="Unauthorized")
    return service.check_expiring_quotes()

@router.post("/{order_id}/issue")
async def issue_quote(
    order_id: str,
    request: QuoteIssueRequest,
    service: QuoteService = Depends(get_quote_service),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return service.issue_quote(order_id, current_user, request.expiration_days)

@router.post("/{order_id}/renew")
async def renew_quote(
    order_id: str,
    request: QuoteRenewRequest,
    service: QuoteService = Depends(get_quote_service),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return service.renew_quote(order_id, current_user, request.additional_days)
