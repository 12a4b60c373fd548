from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class QuoteIssueRequest(BaseModel):
    expiration_days: Optional[int] = Field(None, gt=0, le=365)

class QuoteRenewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    additional_days: Optional[int] = Field(None, alias="additionalDays", gt=0, le=365)
