from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class BatchStatus(str, Enum):
    QUEUED = "queued"
    WIP = "wip"
    HOLD = "hold"
    COMPLETE = "complete"


class BatchAllocation(BaseModel):
    so_line_id: str
    bottle_qty: int = Field(..., gt=0)

class BatchCreateRequest(BaseModel):
    so_id: str
    allocations: List[BatchAllocation] = Field(..., min_length=1)
    # Defaults to the sum of the allocations
    qty_bottle_planned: Optional[int] = Field(None, gt=0)
    planned_start: Optional[datetime] = None
    notes: Optional[str] = None

class BatchStatusRequest(BaseModel):
    status: BatchStatus
    qty_bottle_good: Optional[int] = Field(None, ge=0)
    qty_bottle_scrap: Optional[int] = Field(None, ge=0)
    notes: Optional[str] = None

class BatchOutputRequest(BaseModel):
    qty_bottle_good: int = Field(..., ge=0)
    qty_bottle_scrap: int = Field(0, ge=0)

class ReprioritizeRequest(BaseModel):
    # Most urgent first
    batch_ids: List[str] = Field(..., min_length=1)
