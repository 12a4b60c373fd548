from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class PortalSettings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"

    # Security - JWT
    JWT_PRIVATE_KEY_PATH: str = ""
    JWT_PUBLIC_KEY_PATH: str = ""
    JWT_ALGORITHM: str = "RS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_REFRESH_TOKEN_EXPIRE_DAYS: int = 14

    # JWT Token Configuration
    JWT_ACCESS_TOKEN_COOKIE_NAME: str = "access_token"
    JWT_REFRESH_TOKEN_COOKIE_NAME: str = "refresh_token"
    JWT_CSRF_COOKIE_NAME: str = "csrf_token"

    # Cookie settings
    COOKIE_SECURE: bool = False
    COOKIE_DOMAIN: Optional[str] = None
    COOKIE_SAMESITE: str = "lax"

    # Database connections
    MONGODB_URI: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "order_portal"
    MONGO_MAX_POOL_SIZE: int = 20
    MONGO_TIMEOUT_MS: int = 30000
    MONGO_CONNECT_RETRIES: int = 5

    # CORS settings
    ALLOWED_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: str = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
    CORS_ALLOW_HEADERS: str = "Authorization,Content-Type,X-CSRF-Token,X-Webhook-Secret"
    CORS_EXPOSE_HEADERS: str = "Content-Disposition"
    CORS_MAX_AGE: int = 600

    # Public site used in links sent to customers
    SITE_URL: str = "http://localhost:5173"
    # Where this API is reachable from outside (quote approval links)
    PUBLIC_API_URL: str = "http://localhost:8000"

    # Celery broker for scheduled jobs
    REDIS_URL: str = "redis://localhost:6379/0"
    QUOTE_CHECK_ENABLED: bool = True
    QUOTE_CHECK_HOUR_UTC: int = 13

    # Email
    EMAIL_PROVIDER: str = "none"  # none | smtp | mailersend
    EMAIL_FROM: str = "orders@example.com"
    EMAIL_FROM_NAME: str = "Order Desk"
    MAILERSEND_API_KEY: Optional[str] = None
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 465
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None

    # SMS (Textbelt)
    TEXTBELT_API_KEY: Optional[str] = None
    TEXTBELT_BASE_URL: str = "https://textbelt.com"
    SMS_QUOTA_WARNING_THRESHOLD: int = 50

    # Shared secret for internal callers of notification endpoints
    INTERNAL_WEBHOOK_SECRET: Optional[str] = None

    # ShipStation
    SHIPSTATION_API_KEY: Optional[str] = None
    SHIPSTATION_API_SECRET: Optional[str] = None
    SHIPSTATION_BASE_URL: str = "https://ssapi.shipstation.com"
    SHIPSTATION_V2_BASE_URL: str = "https://api.shipstation.com"

    # UPS tracking (OAuth client credentials)
    UPS_CLIENT_ID: Optional[str] = None
    UPS_CLIENT_SECRET: Optional[str] = None
    UPS_BASE_URL: str = "https://onlinetools.ups.com"
    TRACKING_REFRESH_ENABLED: bool = True
    TRACKING_REFRESH_EVERY_HOURS: int = 4

    # Order numbering and rules
    ORDER_NUMBER_PREFIX: str = "SO"
    INTERNAL_ORDER_PREFIX: str = "INT"
    ADDON_ORDER_PREFIX: str = "AO"
    KIT_SIZE: int = 10
    DEFAULT_DEPOSIT_PERCENT: float = 50.0
    ADDON_MAX_PERCENT: float = 0.0
    QUOTE_EXPIRATION_DAYS: int = 30
    QUOTE_REMINDER_DAYS: int = 3

    # Company details used in notifications
    COMPANY_NAME: str = "Company"
    COMPANY_EMAIL: str = "admin@company.com"

    # Default Admin Configuration
    DEFAULT_ADMIN_EMAIL: str = "admin@orderportal.com"
    DEFAULT_ADMIN_PASSWORD: str = "Admin123!"

    # Server Configuration
    SERVICE_NAME: str = "order-portal-api"
    SERVICE_VERSION: str = "1.0.0"
    SERVICE_HOST: str = "0.0.0.0"
    SERVICE_PORT: int = 8000

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "allow"  # Allow extra fields from .env that this service doesn't use

@lru_cache()
def get_settings() -> PortalSettings:
    return PortalSettings()
