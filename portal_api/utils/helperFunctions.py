# portal_api/utils/helperFunctions.py
import logging
import uuid
import secrets
from datetime import datetime
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

def generate_unique_id(prefix: str = "") -> str:
    """Generate unique ID with optional prefix"""
    unique_id = str(uuid.uuid4()).replace("-", "")[:12]
    return f"{prefix}_{unique_id}" if prefix else unique_id

def generate_link_token() -> str:
    """Unguessable token for links mailed to customers (quote approval, tracking share)."""
    return secrets.token_urlsafe(24)

def next_human_uid(collection, prefix: str, width: int = 4) -> Dict[str, Any]:
    """Next readable number for ``prefix`` as max(existing) + 1, zero padded.

    Returns the fields to store on the document: human_uid, uid_prefix, uid_seq.
    Two writers racing on the same prefix are caught by the unique index on human_uid.
    """
    last = list(
        collection.find({"uid_prefix": prefix}, {"_id": 0, "uid_seq": 1})
        .sort("uid_seq", -1)
        .limit(1)
    )
    seq = (last[0].get("uid_seq") or 0) + 1 if last else 1
    return {
        "human_uid": f"{prefix}-{str(seq).zfill(width)}",
        "uid_prefix": prefix,
        "uid_seq": seq,
    }

def round_money(value: Optional[float]) -> float:
    return round(float(value or 0), 2)


# -----------------------------------------
# Admin bootstrap helper
# -----------------------------------------

def ensure_default_admin():
    """Create a default admin account if none exists.

    The credentials are sourced from settings once, then stored only in
    MongoDB (password hashed). Later runs skip creation when an admin exists.
    """
    # Local imports placed inside the function to avoid circular refs
    from ..database.db import get_database
    from ..src.auth.controller import AuthController
    from ..src.auth.schema import User, UserRole
    from ..config import get_settings

    settings = get_settings()
    db = get_database()

    if db.users.find_one({"role": UserRole.ADMIN.value}):
        return

    auth = AuthController()
    admin_user_id = generate_unique_id("user")
    now = datetime.utcnow()

    admin_user = User(
        id=admin_user_id,
        email=settings.DEFAULT_ADMIN_EMAIL,
        password_hash=auth.hash_password(settings.DEFAULT_ADMIN_PASSWORD),
        name="Portal Admin",
        role=UserRole.ADMIN,
        role_entity_id=admin_user_id,
        requires_password_change=True,
        created_at=now,
        updated_at=now,
    )
    db.users.insert_one(admin_user.model_dump())

    logger.warning(
        f"[INIT] Created default admin user {settings.DEFAULT_ADMIN_EMAIL}. "
        "Log in and change the password immediately."
    )
