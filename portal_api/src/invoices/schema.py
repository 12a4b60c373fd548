from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class InvoiceType(str, Enum):
    DEPOSIT = "deposit"
    FINAL = "final"

class InvoiceStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    VOID = "void"

class PaymentMethod(str, Enum):
    STRIPE = "stripe"
    CASHAPP = "cashapp"
    CHECK = "check"
    WIRE = "wire"
    CASH = "cash"


# ----- Request Models -----
class InvoiceCreateRequest(BaseModel):
    type: InvoiceType
    tax: float = Field(0, ge=0)
    due_days: int = Field(30, ge=0, le=365)
    notes: Optional[str] = None

class InvoiceEmailRequest(BaseModel):
    # defaults to the customer on the order
    to_email: Optional[EmailStr] = None

class ManualPaymentRequest(BaseModel):
    """Manual (off-Stripe) payment, keyed by the readable order number."""
    model_config = ConfigDict(populate_by_name=True)

    order_number: str = Field(..., alias="orderNumber", min_length=1)
    amount: float = Field(..., alias="amount")
    payment_type: InvoiceType = Field(..., alias="paymentType")
    payment_method: PaymentMethod = Field(PaymentMethod.CASHAPP, alias="paymentMethod")
    notes: Optional[str] = None


# ----- Response Models -----
class InvoiceResponse(BaseModel):
    id: str
    human_uid: str
    so_id: str
    customer_id: Optional[str] = None
    type: InvoiceType
    status: InvoiceStatus
    subtotal: float
    tax: float
    total: float
    amount_paid: float = 0
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
