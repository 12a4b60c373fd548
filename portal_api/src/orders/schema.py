from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, validator


class OrderStatus(str, Enum):
    DRAFT = "draft"
    QUOTED = "quoted"
    DEPOSIT_DUE = "deposit_due"
    IN_QUEUE = "in_queue"
    IN_PRODUCTION = "in_production"
    IN_LABELING = "in_labeling"
    IN_PACKING = "in_packing"
    PACKED = "packed"
    AWAITING_INVOICE = "awaiting_invoice"
    AWAITING_PAYMENT = "awaiting_payment"
    READY_TO_SHIP = "ready_to_ship"
    SHIPPED = "shipped"
    CANCELLED = "cancelled"

class SellMode(str, Enum):
    KIT = "kit"
    PIECE = "piece"

class DepositStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"

class AddonStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# ----- Request Models -----
class OrderLineInput(BaseModel):
    sku_id: str
    sell_mode: SellMode = SellMode.KIT
    qty_entered: int = Field(..., gt=0)
    # staff only; customers always get the SKU price
    unit_price: Optional[float] = Field(None, ge=0)

class OrderCreateRequest(BaseModel):
    customer_id: Optional[str] = None
    lines: List[OrderLineInput]
    is_internal: bool = False
    deposit_required: Optional[bool] = None
    deposit_percent: Optional[float] = Field(None, ge=0, le=100)
    notes: Optional[str] = None

    @validator("lines")
    def at_least_one_line(cls, v):
        if not v:
            raise ValueError("Order must have at least one line")
        return v

class StatusChangeRequest(BaseModel):
    new_status: OrderStatus
    override_note: Optional[str] = None

class AddonCreateRequest(BaseModel):
    lines: List[OrderLineInput]
    reason: Optional[str] = None
    override_note: Optional[str] = None

    @validator("lines")
    def at_least_one_line(cls, v):
        if not v:
            raise ValueError("Add-on must have at least one line")
        return v


# ----- Response Models -----
class TransitionCheckResponse(BaseModel):
    valid: bool
    current_status: OrderStatus
    new_status: OrderStatus
    warnings: List[str]
    blockers: List[str]
    requires_override: bool

class OrderSummary(BaseModel):
    id: str
    human_uid: str
    customer_id: Optional[str]
    status: OrderStatus
    is_internal: bool = False
    subtotal: float = 0
    deposit_amount: float = 0
    consolidated_total: Optional[float] = None
    deposit_required: bool = False
    deposit_status: Optional[DepositStatus] = None
    quote_expires_at: Optional[datetime] = None
    parent_order_id: Optional[str] = None
    created_at: datetime

class OrderListResponse(BaseModel):
    orders: List[OrderSummary]
    count: int
