import logging
from datetime import datetime
from typing import Any, Dict, List

from fastapi import HTTPException, status
from pymongo.errors import DuplicateKeyError

from .pricing import calculate_bundle_margin
from .schema import SKUCreateRequest, SKUUpdateRequest
from ...database.db import get_database
from ...utils.audit import log_event
from ...utils.helperFunctions import generate_unique_id

logger = logging.getLogger(__name__)


def with_margin(sku: Dict[str, Any]) -> Dict[str, Any]:
    return {**sku, "margin": calculate_bundle_margin(sku, sku.get("price_per_kit"), bool(sku.get("is_bundle")))}


class CatalogController:
    def __init__(self):
        self.db = get_database()

    async def list_skus(self, include_inactive: bool = False) -> List[Dict[str, Any]]:
        query = {} if include_inactive else {"active": True}
        return [with_margin(doc) for doc in self.db.skus.find(query, {"_id": 0}).sort("code", 1)]

    async def get_sku(self, sku_id: str) -> Dict[str, Any]:
        sku = self.db.skus.find_one({"id": sku_id}, {"_id": 0})
        if not sku:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="SKU not found")
        return with_margin(sku)

    async def create_sku(self, request: SKUCreateRequest, actor_id: str) -> Dict[str, Any]:
        if self.db.skus.find_one({"code": request.code}):
            raise HTTPException(status_code=400, detail=f"SKU code {request.code} already exists")

        now = datetime.utcnow()
        sku = {"id": generate_unique_id("sku"), **request.model_dump(), "created_at": now, "updated_at": now}
        try:
            self.db.skus.insert_one(dict(sku))
        except DuplicateKeyError:
            raise HTTPException(status_code=400, detail=f"SKU code {request.code} already exists")

        log_event("sku", sku["id"], "created", None, {"code": sku["code"]}, actor_id)
        return with_margin(sku)

    async def update_sku(self, sku_id: str, request: SKUUpdateRequest, actor_id: str) -> Dict[str, Any]:
        before = await self.get_sku(sku_id)
        changes = request.model_dump(exclude_unset=True)
        if not changes:
            raise HTTPException(status_code=400, detail="No fields to update")
        if changes.get("batch_prefix"):
            changes["batch_prefix"] = changes["batch_prefix"].strip().upper()

        changes["updated_at"] = datetime.utcnow()
        self.db.skus.update_one({"id": sku_id}, {"$set": changes})
        log_event(
            "sku", sku_id, "updated",
            {k: before.get(k) for k in changes if k != "updated_at"},
            {k: v for k, v in changes.items() if k != "updated_at"},
            actor_id,
        )
        return await self.get_sku(sku_id)
