import logging
from functools import lru_cache

import stripe

from ...config import get_settings as get_app_settings
from .config import get_settings

logger = logging.getLogger(__name__)


@lru_cache()
def get_stripe():
    """Configure the stripe module once and hand it back to callers."""
    stripe_settings = get_settings()
    if not stripe_settings.STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not set; checkout sessions will fail until it is configured")
    stripe.api_key = stripe_settings.STRIPE_SECRET_KEY
    stripe.api_version = stripe_settings.STRIPE_API_VERSION
    stripe.max_network_retries = 2
    stripe.enable_telemetry = False
    app_settings = get_app_settings()
    stripe.set_app_info(app_settings.SERVICE_NAME, version=app_settings.SERVICE_VERSION)
    return stripe
