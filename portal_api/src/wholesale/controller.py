import logging
import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status
from pymongo.errors import PyMongoError

from .schema import ApplicationStatus, WholesaleApplicationRequest, ApplicationReviewRequest
from ..auth.controller import AuthController
from ..auth.schema import JWTClaims, UserRole
from ..notifications.service import send_templated_email
from ...config import get_settings
from ...database.db import get_database
from ...utils.audit import log_event
from ...utils.helperFunctions import generate_unique_id

logger = logging.getLogger(__name__)

# No 0/O, 1/l/I so the password survives being read off an email
TEMP_PASSWORD_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghjkmnpqrstuvwxyz23456789"
TEMP_PASSWORD_LENGTH = 12


def generate_temp_password(length: int = TEMP_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(TEMP_PASSWORD_ALPHABET) for _ in range(length))


class WholesaleController:
    def __init__(self):
        self.db = get_database()
        self.settings = get_settings()
        self.auth = AuthController()

    def _log_failure(self, application_id: str, details: Dict[str, Any], actor_id: Optional[str]) -> None:
        log_event("wholesale_application", application_id, "wholesale_approval_failed", None, {"error": details}, actor_id)

    def submit_application(self, request: WholesaleApplicationRequest) -> Dict[str, Any]:
        email = request.email.lower()
        if self.db.wholesale_applications.find_one({"email": email, "status": ApplicationStatus.PENDING.value}):
            raise HTTPException(status_code=409, detail="An application for this email is already pending review")

        now = datetime.utcnow()
        application = {
            "id": generate_unique_id("app"),
            **request.model_dump(mode="json"),
            "email": email,
            "status": ApplicationStatus.PENDING.value,
            "review_notes": None,
            "reviewed_by": None,
            "reviewed_at": None,
            "customer_id": None,
            "created_at": now,
            "updated_at": now,
        }
        self.db.wholesale_applications.insert_one(dict(application))
        log_event("wholesale_application", application["id"], "submitted", None,
                  {"company_name": request.company_name, "email": email})
        logger.info(f"Wholesale application received from {request.company_name} <{email}>")
        return {"success": True, "application_id": application["id"]}

    def list_applications(self, app_status: Optional[ApplicationStatus] = None) -> List[Dict[str, Any]]:
        query = {"status": app_status.value} if app_status else {}
        return list(self.db.wholesale_applications.find(query, {"_id": 0}).sort("created_at", -1))

    def _get_application(self, application_id: str, actor: JWTClaims) -> Dict[str, Any]:
        application = self.db.wholesale_applications.find_one({"id": application_id}, {"_id": 0})
        if not application:
            logger.error(f"Application not found: {application_id}")
            self._log_failure(application_id, {"stage": "fetch_application"}, actor.user_id)
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Application not found")
        return application

    def approve_application(self, application_id: str, request: ApplicationReviewRequest, actor: JWTClaims) -> Dict[str, Any]:
        """Create the customer's login and customer record, then email the credentials."""
        application = self._get_application(application_id, actor)
        if application["status"] != ApplicationStatus.PENDING.value:
            raise HTTPException(status_code=409, detail=f"Application is already {application['status']}")

        temp_password = generate_temp_password()
        customer_id = generate_unique_id("cust")

        try:
            user = self.auth.create_user(
                email=application["email"],
                password=temp_password,
                name=application["contact_name"],
                role=UserRole.CUSTOMER,
                role_entity_id=customer_id,
                requires_password_change=True,
            )
        except HTTPException as e:
            logger.error(f"Error creating user for {application['email']}: {e.detail}")
            self._log_failure(application_id, {"stage": "create_user", "email": application["email"], "error": e.detail}, actor.user_id)
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="A user account with this email already exists")

        now = datetime.utcnow()
        customer = {
            "id": customer_id,
            "name": application["company_name"],
            "contact_name": application["contact_name"],
            "email": application["email"],
            "phone": application.get("phone"),
            "terms": "Net 30",
            "shipping_address": application.get("shipping_address"),
            "billing_address": application.get("billing_address") or application.get("shipping_address"),
            "user_id": user.id,
            "wholesale_application_id": application_id,
            "created_at": now,
            "updated_at": now,
        }
        try:
            self.db.customers.insert_one(dict(customer))
        except PyMongoError as e:
            logger.error(f"Error creating customer for {application['email']}: {e}")
            self._log_failure(application_id, {"stage": "create_customer", "userId": user.id, "error": str(e)}, actor.user_id)
            self.auth.delete_user(user.id)
            raise HTTPException(status_code=500, detail="Failed to create customer record")

        self.db.wholesale_applications.update_one(
            {"id": application_id},
            {"$set": {
                "status": ApplicationStatus.APPROVED.value,
                "review_notes": request.review_notes,
                "reviewed_by": actor.user_id,
                "reviewed_at": now,
                "customer_id": customer_id,
                "updated_at": now,
            }},
        )
        log_event(
            "wholesale_application", application_id, "approved",
            {"status": ApplicationStatus.PENDING.value},
            {"status": ApplicationStatus.APPROVED.value, "customer_id": customer_id, "user_id": user.id},
            actor.user_id,
        )

        site_url = (request.site_url or self.settings.SITE_URL).rstrip("/")
        email_sent = send_templated_email(
            "wholesale_welcome",
            "Wholesale Account Approved - Login Credentials",
            application["email"],
            {
                "contact_name": application["contact_name"],
                "company": application["company_name"],
                "email": application["email"],
                "temp_password": temp_password,
                "login_url": f"{site_url}/login",
            },
        )
        logger.info(f"Wholesale application {application_id} approved by {actor.email}; email sent: {email_sent}")

        return {
            "success": True,
            "userId": user.id,
            "customerId": customer_id,
            # shown once to the approving admin
            "tempPassword": temp_password,
            "emailSent": email_sent,
        }

    def reject_application(self, application_id: str, request: ApplicationReviewRequest, actor: JWTClaims) -> Dict[str, Any]:
        application = self._get_application(application_id, actor)
        if application["status"] != ApplicationStatus.PENDING.value:
            raise HTTPException(status_code=409, detail=f"Application is already {application['status']}")

        now = datetime.utcnow()
        self.db.wholesale_applications.update_one(
            {"id": application_id},
            {"$set": {
                "status": ApplicationStatus.REJECTED.value,
                "review_notes": request.review_notes,
                "reviewed_by": actor.user_id,
                "reviewed_at": now,
                "updated_at": now,
            }},
        )
        log_event(
            "wholesale_application", application_id, "rejected",
            {"status": ApplicationStatus.PENDING.value},
            {"status": ApplicationStatus.REJECTED.value, "review_notes": request.review_notes},
            actor.user_id,
        )
        return {"success": True}
