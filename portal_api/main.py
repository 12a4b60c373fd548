# portal_api/main.py
"""
Order Portal API
Minimal main file with core FastAPI setup and routing
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging
from pymongo.errors import PyMongoError

from .config import get_settings
from .database.db import DatabaseConnection, get_database
from .middlewares.jwt_auth_middleware import JWTAuthMiddleware
from .router_config import setup_routers
from .utils.helperFunctions import ensure_default_admin

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

# Configure logging to reduce verbosity
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("stripe").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

# Get settings
settings = get_settings()
allowed_origins = settings.ALLOWED_ORIGINS.split(",")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Seed the first admin on startup; release the Mongo pool on shutdown"""
    ensure_default_admin()
    logger.info(f"{settings.SERVICE_NAME} {settings.SERVICE_VERSION} started ({settings.ENVIRONMENT})")
    yield
    DatabaseConnection().close_connection()

# Create FastAPI app
app = FastAPI(
    title="Order Portal API",
    description="Wholesale and internal orders, production batches, invoicing, shipping and customer notifications",
    version=settings.SERVICE_VERSION,
    lifespan=lifespan
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS.split(","),
    allow_headers=settings.CORS_ALLOW_HEADERS.split(","),
    expose_headers=settings.CORS_EXPOSE_HEADERS.split(","),
    max_age=settings.CORS_MAX_AGE,
)

# Add JWT authentication middleware
app.add_middleware(JWTAuthMiddleware)

# Setup all application routers
app = setup_routers(app)


# Core API endpoints
@app.get("/health")
async def health_check():
    """Liveness plus a Mongo round trip; load balancers only look at the status field"""
    try:
        get_database().command("ping")
        database = "ok"
    except PyMongoError as e:
        logger.error(f"Health check could not reach MongoDB: {e}")
        database = "unreachable"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "service": settings.SERVICE_NAME,
        "version": settings.SERVICE_VERSION,
        "database": database,
    }

@app.get("/")
async def root():
    """Root endpoint with platform information"""
    return {
        "message": "Order Portal API",
        "version": settings.SERVICE_VERSION,
        "features": ["orders", "quotes", "production", "invoicing", "stripe", "shipping", "notifications", "portal"]
    }

# Main entry point
if __name__ == "__main__":
    uvicorn.run(app, host=settings.SERVICE_HOST, port=settings.SERVICE_PORT, log_level="info")
