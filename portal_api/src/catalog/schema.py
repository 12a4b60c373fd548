from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, validator


class SKUBase(BaseModel):
    description: str
    price_per_kit: float = Field(..., ge=0)
    price_per_piece: float = Field(..., ge=0)
    label_required: bool = False
    is_bundle: bool = False
    pack_size: Optional[int] = Field(None, gt=0)
    batch_prefix: Optional[str] = None
    bundle_product_price: Optional[float] = Field(None, ge=0)
    bundle_packaging_price: Optional[float] = Field(None, ge=0)
    bundle_labeling_price: Optional[float] = Field(None, ge=0)
    bundle_inserts_price: Optional[float] = Field(None, ge=0)
    bundle_labor_price: Optional[float] = Field(None, ge=0)
    bundle_overhead_price: Optional[float] = Field(None, ge=0)
    inserts_optional: bool = False
    active: bool = True

    @validator("batch_prefix")
    def normalise_prefix(cls, v):
        return v.strip().upper() if v else v


class SKUCreateRequest(SKUBase):
    code: str

    @validator("code")
    def normalise_code(cls, v):
        v = v.strip().upper()
        if not v:
            raise ValueError("SKU code is required")
        return v


class SKUUpdateRequest(BaseModel):
    description: Optional[str] = None
    price_per_kit: Optional[float] = Field(None, ge=0)
    price_per_piece: Optional[float] = Field(None, ge=0)
    label_required: Optional[bool] = None
    is_bundle: Optional[bool] = None
    pack_size: Optional[int] = Field(None, gt=0)
    batch_prefix: Optional[str] = None
    bundle_product_price: Optional[float] = Field(None, ge=0)
    bundle_packaging_price: Optional[float] = Field(None, ge=0)
    bundle_labeling_price: Optional[float] = Field(None, ge=0)
    bundle_inserts_price: Optional[float] = Field(None, ge=0)
    bundle_labor_price: Optional[float] = Field(None, ge=0)
    bundle_overhead_price: Optional[float] = Field(None, ge=0)
    inserts_optional: Optional[bool] = None
    active: Optional[bool] = None


class MarginPreviewRequest(BaseModel):
    is_bundle: bool = False
    selling_price: Optional[float] = None
    bundle_product_price: Optional[float] = None
    bundle_packaging_price: Optional[float] = None
    bundle_labeling_price: Optional[float] = None
    bundle_inserts_price: Optional[float] = None
    bundle_labor_price: Optional[float] = None
    bundle_overhead_price: Optional[float] = None


class SKUResponse(SKUBase):
    id: str
    code: str
    created_at: datetime
    updated_at: datetime
