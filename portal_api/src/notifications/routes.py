from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, HTTPException

from .controller import NotificationController
from .schema import (
    SmsSendRequest,
    NotificationPreferencesUpdate,
    SmsTemplateUpsert,
    TestEmailRequest,
)
from ..auth.schema import JWTClaims
from ...middlewares.jwt_auth import JWTAuthController, require_staff, require_admin

router = APIRouter(prefix="/notifications", tags=["Notifications"])
jwt_auth = JWTAuthController()

def get_notification_controller():
    return NotificationController()

def optional_user(request: Request) -> Optional[JWTClaims]:
    """Caller's claims when a valid token came along, else None."""
    try:
        return jwt_auth.get_current_user(request)
    except HTTPException:
        return None

@router.post("/sms/send")
async def send_sms(
    request: SmsSendRequest,
    x_webhook_secret: Optional[str] = Header(None),
    user: Optional[JWTClaims] = Depends(optional_user),
    controller: NotificationController = Depends(get_notification_controller),
):
    """
    Send an SMS through Textbelt.

    Order events need the ``X-Webhook-Secret`` header; ``eventType=test``
    is also accepted from a logged-in staff user.
    """
    return controller.send_sms(request, x_webhook_secret, user)

@router.get("/sms/quota")
async def sms_quota(
    controller: NotificationController = Depends(get_notification_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return controller.sms_quota()

@router.get("/sms/logs")
async def sms_logs(
    so_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    controller: NotificationController = Depends(get_notification_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"logs": controller.sms_logs(so_id, limit)}

@router.get("/sms/templates")
async def list_sms_templates(
    controller: NotificationController = Depends(get_notification_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"templates": controller.list_sms_templates()}

@router.put("/sms/templates/{template_type}")
async def upsert_sms_template(
    template_type: str,
    request: SmsTemplateUpsert,
    controller: NotificationController = Depends(get_notification_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_admin(current_user)
    return controller.upsert_sms_template(template_type, request, current_user)

@router.get("/preferences")
async def get_preferences(
    customer_id: Optional[str] = Query(None, description="Staff only"),
    controller: NotificationController = Depends(get_notification_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return controller.get_preferences(customer_id, current_user)

@router.put("/preferences")
async def update_preferences(
    request: NotificationPreferencesUpdate,
    customer_id: Optional[str] = Query(None, description="Staff only"),
    controller: NotificationController = Depends(get_notification_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    return controller.update_preferences(customer_id, request, current_user)

@router.post("/email/test")
async def send_test_email(
    request: TestEmailRequest,
    controller: NotificationController = Depends(get_notification_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_admin(current_user)
    return controller.send_test_email(request.to, current_user)

@router.get("/email/logs")
async def email_logs(
    so_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    controller: NotificationController = Depends(get_notification_controller),
    current_user: JWTClaims = Depends(jwt_auth.get_current_user),
):
    require_staff(current_user)
    return {"logs": controller.email_logs(so_id, limit)}
