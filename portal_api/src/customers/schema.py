from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field


class Address(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = "US"

class CustomerCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    contact_name: Optional[str] = None
    email: EmailStr
    phone: Optional[str] = None
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None
    terms: str = "Net 30"
    notes: Optional[str] = None

class CustomerUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    contact_name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    billing_address: Optional[Address] = None
    shipping_address: Optional[Address] = None
    terms: Optional[str] = None
    notes: Optional[str] = None

class CustomerResponse(BaseModel):
    id: str
    name: str
    contact_name: Optional[str] = None
    email: EmailStr
    phone: Optional[str] = None
    billing_address: Optional[Dict[str, Any]] = None
    shipping_address: Optional[Dict[str, Any]] = None
    terms: Optional[str] = None
    user_id: Optional[str] = None
    wholesale_application_id: Optional[str] = None
    created_at: datetime
