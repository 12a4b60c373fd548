# portal_api/database/mongo_helper.py
"""
Mongo client construction for the portal: connection options from
settings, a bounded retry with backoff on startup, and a check that the
portal database is reachable before indexes are built.
"""
import logging
import time
from typing import Optional

from pymongo import MongoClient
from pymongo.errors import ConfigurationError, OperationFailure, PyMongoError, ServerSelectionTimeoutError

logger = logging.getLogger(__name__)

# Collections the API expects once it has run at least once
CORE_COLLECTIONS = ("users", "customers", "skus", "sales_orders", "sales_order_lines", "invoices")


def build_connection_params(mongo_uri: str, max_pool_size: int = 20, timeout_ms: int = 30000) -> dict:
    """TLS is only switched on for SRV (Atlas style) URIs; local mongod runs plain."""
    params = {
        "serverSelectionTimeoutMS": timeout_ms,
        "connectTimeoutMS": timeout_ms,
        "socketTimeoutMS": timeout_ms,
        "maxPoolSize": max_pool_size,
        "retryWrites": True,
        "w": "majority",
        "appName": "order-portal-api",
    }
    if mongo_uri.startswith("mongodb+srv://"):
        params["tls"] = True
    return params


def create_mongo_client(
    mongo_uri: str,
    max_retries: int = 3,
    retry_delay: int = 2,
    **connection_options,
) -> Optional[MongoClient]:
    """Ping until the server answers; None after ``max_retries`` failed attempts.

    A bad URI fails immediately, since retrying cannot fix it.
    """
    params = build_connection_params(mongo_uri, **connection_options)

    for attempt in range(1, max_retries + 1):
        try:
            client = MongoClient(mongo_uri, **params)
            client.admin.command("ping")
            logger.info(f"MongoDB reachable on attempt {attempt}/{max_retries}")
            return client
        except ConfigurationError as e:
            logger.error(f"MongoDB URI rejected: {e}")
            return None
        except ServerSelectionTimeoutError as e:
            logger.warning(f"MongoDB server selection timed out (attempt {attempt}): {str(e)[:200]}")
        except OperationFailure as e:
            logger.error(f"MongoDB authentication failed (attempt {attempt}): {str(e)[:200]}")
        except PyMongoError as e:
            logger.error(f"MongoDB connection failed (attempt {attempt}): {str(e)[:200]}")

        if attempt < max_retries:
            wait_time = retry_delay * (2 ** (attempt - 1))
            logger.info(f"Retrying MongoDB connection in {wait_time}s")
            time.sleep(wait_time)

    logger.error("All MongoDB connection attempts failed")
    return None


def verify_database_access(client: MongoClient, db_name: str) -> bool:
    """List collections of ``db_name``; a fresh database is fine, missing core collections are only logged."""
    try:
        existing = set(client[db_name].list_collection_names())
    except PyMongoError as e:
        logger.error(f"Cannot read database '{db_name}': {str(e)[:200]}")
        return False

    missing = [name for name in CORE_COLLECTIONS if name not in existing]
    if missing and existing:
        logger.info(f"Database '{db_name}' has no {', '.join(missing)} yet; they are created on first write")
    return True
