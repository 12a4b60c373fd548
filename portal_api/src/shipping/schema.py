from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class ShipmentCreateRequest(BaseModel):
    so_id: str
    carrier: str = Field(..., min_length=1)
    service: Optional[str] = None
    tracking_no: Optional[str] = None
    label_url: Optional[str] = None
    shipstation_shipment_id: Optional[str] = None
    shipping_cost: Optional[float] = Field(None, ge=0)
    ship_date: Optional[datetime] = None
    # Also move the order to shipped
    mark_shipped: bool = False

class TrackingUpdateRequest(BaseModel):
    tracking_no: str = Field(..., min_length=1)
    carrier: Optional[str] = None
    tracking_status: Optional[str] = None

class PackageDimensions(BaseModel):
    length: float = Field(..., gt=0)
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)

class LabelCreateRequest(BaseModel):
    """Buy a carrier label through ShipStation for the order's customer address."""
    dimensions: Optional[PackageDimensions] = None
    weight_oz: Optional[float] = Field(None, gt=0)

class ShipmentNotifyRequest(BaseModel):
    # defaults to the shipment's tracking status
    status: Optional[str] = None
    customer_email: Optional[EmailStr] = None
