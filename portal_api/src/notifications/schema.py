from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class SmsSendRequest(BaseModel):
    """Body accepted by the SMS endpoint (camelCase names kept for existing callers)."""
    model_config = ConfigDict(populate_by_name=True)

    order_id: Optional[str] = Field(None, alias="orderId")
    new_status: Optional[str] = Field(None, alias="newStatus")
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    event_type: Optional[str] = Field(None, alias="eventType")
    test_message: Optional[str] = Field(None, alias="testMessage")
    tracking_number: Optional[str] = None

    @property
    def is_test(self) -> bool:
        return self.event_type == "test"

class NotificationPreferencesUpdate(BaseModel):
    email_enabled: Optional[bool] = None
    sms_enabled: Optional[bool] = None
    sms_phone_number: Optional[str] = Field(None, max_length=20)
    sms_order_status: Optional[bool] = None

class SmsTemplateUpsert(BaseModel):
    message_template: str = Field(..., min_length=1, max_length=480)
    is_active: bool = True
    description: Optional[str] = None

class TestEmailRequest(BaseModel):
    to: EmailStr
