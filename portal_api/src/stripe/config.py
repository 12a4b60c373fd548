from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from functools import lru_cache
from typing import Optional

class StripeSettings(BaseSettings):
    """
    Stripe configuration for the order portal.

    Keys are optional so the API boots without Stripe; checkout then falls
    back to the plain success page and the webhook answers 400.
    """

    STRIPE_SECRET_KEY: Optional[str] = Field(None)
    STRIPE_WEBHOOK_SECRET: Optional[str] = Field(None)
    STRIPE_API_VERSION: str = Field("2024-06-20")
    STRIPE_CURRENCY: str = Field("usd")

    # Where Checkout sends the customer back to
    SUCCESS_URL: str = Field("http://localhost:5173/payment/success", validation_alias="STRIPE_SUCCESS_URL")
    CANCEL_URL: str = Field("http://localhost:5173/payment/cancelled", validation_alias="STRIPE_CANCEL_URL")

    # Allow unknown env vars so StripeSettings does not crash when
    # the global .env contains unrelated configuration keys.
    model_config = SettingsConfigDict(extra="allow", env_file=".env")

@lru_cache()
def get_settings() -> StripeSettings:  # pragma: no cover
    return StripeSettings()
