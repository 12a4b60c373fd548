from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from ..customers.schema import Address


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WholesaleApplicationRequest(BaseModel):
    company_name: str = Field(..., min_length=1, max_length=200)
    contact_name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = None
    website: Optional[str] = None
    business_type: Optional[str] = None
    tax_id: Optional[str] = None
    message: Optional[str] = None
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None

class ApplicationReviewRequest(BaseModel):
    review_notes: Optional[str] = None
    # Overrides SITE_URL in the login link of the welcome email
    site_url: Optional[str] = None

class ApplicationResponse(BaseModel):
    id: str
    company_name: str
    contact_name: str
    email: EmailStr
    status: ApplicationStatus
    created_at: datetime
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
