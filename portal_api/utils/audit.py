import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..database.db import get_database

logger = logging.getLogger(__name__)

db = get_database()
COLL = db.audit_log

def log_event(
    entity: str,
    entity_id: str,
    action: str,
    before: Optional[Dict[str, Any]] = None,
    after: Optional[Dict[str, Any]] = None,
    actor_id: Optional[str] = None,
) -> None:
    """Append a business event to ``audit_log``.

    entity is the collection-level noun (sales_order, order_addon, shipment,
    wholesale_application, payment ...); before/after hold only the fields
    that changed.
    """
    doc = {
        "entity": entity,
        "entity_id": entity_id,
        "action": action,
        "before": before,
        "after": after,
        "actor_id": actor_id,
        "created_at": datetime.utcnow(),
    }
    try:
        COLL.insert_one(doc)
    except Exception as e:
        # Audit failures never break the request that triggered them
        logger.warning(f"audit insert failed for {entity}/{entity_id} {action}: {e}")
