import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from .schema import SmsSendRequest, NotificationPreferencesUpdate, SmsTemplateUpsert
from .service import (
    compose_sms,
    dispatch_sms,
    get_sms_quota,
    get_preferences,
    send_templated_email,
)
from ..auth.schema import JWTClaims, UserRole
from ...config import get_settings
from ...database.db import get_database
from ...services.email.factory import get_email_provider
from ...services.sms.textbelt_provider import TextbeltError
from ...utils.audit import log_event

logger = logging.getLogger(__name__)


class NotificationController:
    def __init__(self):
        self.db = get_database()
        self.settings = get_settings()

    # ----- SMS -----

    def _secret_ok(self, webhook_secret: Optional[str]) -> bool:
        expected = self.settings.INTERNAL_WEBHOOK_SECRET
        return bool(expected and webhook_secret and secrets.compare_digest(webhook_secret, expected))

    def send_sms(
        self,
        request: SmsSendRequest,
        webhook_secret: Optional[str],
        user: Optional[JWTClaims],
    ) -> Dict[str, Any]:
        """Send an order SMS (internal callers) or a test message (staff)."""
        if request.is_test:
            if not self._secret_ok(webhook_secret) and not (user and user.is_staff):
                raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        elif not self._secret_ok(webhook_secret):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        if not request.phone_number:
            logger.info("No phone number provided, skipping SMS")
            return {"message": "No phone number"}

        order = None
        if request.is_test and request.test_message:
            message = request.test_message
        elif not request.order_id:
            raise HTTPException(status_code=500, detail="Order ID required for non-test messages")
        else:
            order = self.db.sales_orders.find_one({"id": request.order_id}, {"_id": 0})
            if not order:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
            message = compose_sms(
                order,
                request.event_type,
                request.new_status,
                request.tracking_number,
                request.test_message,
            )

        try:
            result = dispatch_sms(
                request.phone_number,
                message,
                order=None if request.is_test else order,
                template_type=request.event_type,
                sent_by=user.user_id if user else None,
            )
        except TextbeltError as e:
            logger.error(f"Error sending SMS: {e}")
            raise HTTPException(status_code=500, detail=str(e))

        return {"success": True, "result": result}

    def sms_quota(self) -> Dict[str, Any]:
        try:
            return get_sms_quota()
        except TextbeltError as e:
            logger.error(f"Error fetching Textbelt quota: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    def sms_logs(self, so_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = {"so_id": so_id} if so_id else {}
        return list(self.db.sms_logs.find(query, {"_id": 0}).sort("created_at", -1).limit(limit))

    # ----- SMS templates -----

    def list_sms_templates(self) -> List[Dict[str, Any]]:
        return list(self.db.sms_templates.find({}, {"_id": 0}).sort("template_type", 1))

    def upsert_sms_template(self, template_type: str, request: SmsTemplateUpsert, actor: JWTClaims) -> Dict[str, Any]:
        now = datetime.utcnow()
        before = self.db.sms_templates.find_one({"template_type": template_type}, {"_id": 0})
        self.db.sms_templates.update_one(
            {"template_type": template_type},
            {
                "$set": {**request.model_dump(), "updated_at": now, "updated_by": actor.user_id},
                "$setOnInsert": {"template_type": template_type, "created_at": now},
            },
            upsert=True,
        )
        log_event(
            "sms_template", template_type, "updated" if before else "created",
            {"message_template": before["message_template"]} if before else None,
            {"message_template": request.message_template},
            actor.user_id,
        )
        return self.db.sms_templates.find_one({"template_type": template_type}, {"_id": 0})

    # ----- preferences -----

    def _preferences_customer(self, customer_id: Optional[str], actor: JWTClaims) -> str:
        if actor.role == UserRole.CUSTOMER:
            return actor.role_entity_id
        if not customer_id:
            raise HTTPException(status_code=400, detail="customer_id is required")
        if not self.db.customers.find_one({"id": customer_id}):
            raise HTTPException(status_code=404, detail="Customer not found")
        return customer_id

    def get_preferences(self, customer_id: Optional[str], actor: JWTClaims) -> Dict[str, Any]:
        return get_preferences(self._preferences_customer(customer_id, actor))

    def update_preferences(
        self,
        customer_id: Optional[str],
        request: NotificationPreferencesUpdate,
        actor: JWTClaims,
    ) -> Dict[str, Any]:
        customer_id = self._preferences_customer(customer_id, actor)
        changes = request.model_dump(exclude_unset=True)
        merged = {**get_preferences(customer_id), **changes}
        if merged["sms_enabled"] and not merged.get("sms_phone_number"):
            raise HTTPException(status_code=400, detail="A phone number is required to enable SMS")

        now = datetime.utcnow()
        self.db.notification_preferences.update_one(
            {"customer_id": customer_id},
            {"$set": {**changes, "updated_at": now}, "$setOnInsert": {"customer_id": customer_id, "created_at": now}},
            upsert=True,
        )
        log_event("notification_preferences", customer_id, "updated", None, changes, actor.user_id)
        return get_preferences(customer_id)

    # ----- email -----

    def send_test_email(self, to: str, actor: JWTClaims) -> Dict[str, Any]:
        provider_name = get_email_provider().name
        sent = send_templated_email(
            "test_email",
            f"{self.settings.COMPANY_NAME} test email",
            to,
            {"provider": provider_name, "sent_at": datetime.utcnow().isoformat()},
        )
        logger.info(f"Test email to {to} requested by {actor.email}: {'sent' if sent else 'failed'}")
        return {"success": sent, "provider": provider_name}

    def email_logs(self, so_id: Optional[str] = None, limit: int = 100) -> List[Dict[str, Any]]:
        query = {"so_id": so_id} if so_id else {}
        return list(self.db.email_logs.find(query, {"_id": 0}).sort("created_at", -1).limit(limit))
