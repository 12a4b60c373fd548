# portal_api/database/db.py
import logging
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database
from .mongo_helper import create_mongo_client, verify_database_access

logger = logging.getLogger(__name__)

class DatabaseConnection:
    _instance = None
    _db = None
    _settings = None
    client = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(DatabaseConnection, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if self._db is None:
            # Import settings here to avoid circular import
            if self._settings is None:
                from ..config import get_settings
                self._settings = get_settings()

            mongo_uri = self._settings.MONGODB_URI
            db_name = self._settings.DATABASE_NAME

            logger.info("🔄 Initializing MongoDB connection for order portal...")
            self.client = create_mongo_client(
                mongo_uri,
                max_retries=self._settings.MONGO_CONNECT_RETRIES,
                retry_delay=2,
                max_pool_size=self._settings.MONGO_MAX_POOL_SIZE,
                timeout_ms=self._settings.MONGO_TIMEOUT_MS,
            )

            if self.client is None:
                logger.error("❌ Failed to create MongoDB client after multiple attempts")
                raise ConnectionError("Unable to connect to MongoDB")

            if not verify_database_access(self.client, db_name):
                logger.error(f"❌ Failed to access database '{db_name}'")
                raise ConnectionError(f"Unable to access database '{db_name}'")

            DatabaseConnection._db = self.client[db_name]
            logger.info(f"✅ MongoDB connection established successfully for database '{db_name}'")

            self._create_indexes()

    def get_database(self):
        """Get the database instance"""
        return self._db

    def get_client(self):
        """Get the MongoDB client instance"""
        return self.client

    def close_connection(self):
        """Close MongoDB connection"""
        if self.client:
            self.client.close()
            logger.info("🔒 MongoDB connection closed")

    def _create_indexes(self):
        """Create database indexes for the portal collections"""
        # Users
        self._db.users.create_index("email", unique=True)
        self._db.users.create_index("id", unique=True)
        self._db.refresh_tokens.create_index("token", unique=True)
        self._db.refresh_tokens.create_index("expires_at", expireAfterSeconds=0)

        # Customers
        self._db.customers.create_index("id", unique=True)
        self._db.customers.create_index("user_id")

        # Orders
        self._db.sales_orders.create_index("id", unique=True)
        self._db.sales_orders.create_index("human_uid", unique=True)
        self._db.sales_orders.create_index([("status", ASCENDING), ("created_at", DESCENDING)])
        self._db.sales_orders.create_index("customer_id")
        self._db.sales_order_lines.create_index("so_id")
        self._db.order_addons.create_index("parent_so_id")
        self._db.order_addons.create_index("addon_so_id", unique=True)

        # Catalog
        self._db.skus.create_index("id", unique=True)
        self._db.skus.create_index("code", unique=True)

        # Production
        self._db.production_batches.create_index("id", unique=True)
        self._db.production_batches.create_index("human_uid", unique=True)
        self._db.production_batches.create_index("so_id")
        self._db.production_batches.create_index("priority_index")

        # Billing
        self._db.invoices.create_index("id", unique=True)
        self._db.invoices.create_index("human_uid", unique=True)
        self._db.invoices.create_index([("so_id", ASCENDING), ("type", ASCENDING)])
        self._db.payment_transactions.create_index("so_id")
        self._db.payment_transactions.create_index("stripe_payment_intent_id", sparse=True)
        self._db.stripe_events_processed.create_index("event_id", unique=True)

        # Shipping
        self._db.shipments.create_index("id", unique=True)
        self._db.shipments.create_index("so_id")
        self._db.shipments.create_index("share_token", unique=True)

        # Wholesale / notifications
        self._db.wholesale_applications.create_index("id", unique=True)
        self._db.sms_templates.create_index("template_type", unique=True)
        self._db.sms_logs.create_index([("so_id", ASCENDING), ("created_at", DESCENDING)])
        self._db.notification_preferences.create_index("customer_id", unique=True)
        self._db.email_logs.create_index("created_at")
        self._db.wholesale_applications.create_index([("email", ASCENDING), ("status", ASCENDING)])

        # Audit
        self._db.audit_log.create_index([("entity", ASCENDING), ("entity_id", ASCENDING)])
        self._db.audit_log.create_index("created_at")

    @property
    def db(self) -> Database:
        return self._db

def get_database() -> Database:
    """Get database instance"""
    return DatabaseConnection().db
