import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

from .schema import CustomerCreateRequest, CustomerUpdateRequest
from ..auth.schema import JWTClaims
from ...database.db import get_database
from ...utils.audit import log_event
from ...utils.helperFunctions import generate_unique_id

logger = logging.getLogger(__name__)


def build_customer_doc(request: CustomerCreateRequest, user_id: Optional[str] = None,
                       application_id: Optional[str] = None) -> Dict[str, Any]:
    now = datetime.utcnow()
    return {
        "id": generate_unique_id("cust"),
        **request.model_dump(mode="json"),
        "email": request.email.lower(),
        "user_id": user_id,
        "wholesale_application_id": application_id,
        "created_at": now,
        "updated_at": now,
    }


class CustomerController:
    def __init__(self):
        self.db = get_database()

    def list_customers(self, search: Optional[str] = None, limit: int = 100, skip: int = 0) -> List[Dict[str, Any]]:
        cursor = self.db.customers.find({}, {"_id": 0}).sort("name", 1)
        customers = list(cursor)
        if search:
            needle = search.lower()
            customers = [
                c for c in customers
                if needle in (c.get("name") or "").lower() or needle in (c.get("email") or "").lower()
            ]
        return customers[skip:skip + limit]

    def get_customer(self, customer_id: str) -> Dict[str, Any]:
        customer = self.db.customers.find_one({"id": customer_id}, {"_id": 0})
        if not customer:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")
        return customer

    def create_customer(self, request: CustomerCreateRequest, actor: JWTClaims) -> Dict[str, Any]:
        if self.db.customers.find_one({"email": request.email.lower()}):
            raise HTTPException(status_code=400, detail="A customer with this email already exists")
        doc = build_customer_doc(request)
        self.db.customers.insert_one(dict(doc))
        log_event("customer", doc["id"], "created", None, {"name": doc["name"], "email": doc["email"]}, actor.user_id)
        logger.info(f"Customer {doc['name']} created by {actor.email}")
        return doc

    def update_customer(self, customer_id: str, request: CustomerUpdateRequest, actor: JWTClaims) -> Dict[str, Any]:
        before = self.get_customer(customer_id)
        changes = request.model_dump(mode="json", exclude_unset=True)
        if not changes:
            return before
        if "email" in changes:
            changes["email"] = changes["email"].lower()
        self.db.customers.update_one({"id": customer_id}, {"$set": {**changes, "updated_at": datetime.utcnow()}})
        log_event("customer", customer_id, "updated", {k: before.get(k) for k in changes}, changes, actor.user_id)
        return self.get_customer(customer_id)
