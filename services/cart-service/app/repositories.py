from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from app.models import CartDB


class CartRepository(ABC):
    """Per-user cart documents. One cart per user, never deleted, only emptied."""

    @abstractmethod
    async def find(self, user_id: str) -> Optional[CartDB]:
        ...

    @abstractmethod
    async def find_or_create(self, user_id: str) -> CartDB:
        ...

    @abstractmethod
    async def save(self, cart: CartDB) -> Optional[CartDB]:
        """Replace the stored item list. Returns ``None`` when no document was updated."""
        ...


class MongoCartRepository(CartRepository):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.carts

    async def create_indexes(self):
        await self.collection.create_index("user_id", unique=True)

    async def find(self, user_id: str) -> Optional[CartDB]:
        doc = await self.collection.find_one({"user_id": user_id})
        return self._to_model(doc)

    async def find_or_create(self, user_id: str) -> CartDB:
        now = datetime.utcnow()
        doc = await self.collection.find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {"user_id": user_id, "items": [], "created_at": now, "updated_at": now}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return self._to_model(doc)

    async def save(self, cart: CartDB) -> Optional[CartDB]:
        # Decimals are stored as strings so prices round-trip exactly
        items = [item.model_dump(mode="json") for item in cart.items]
        doc = await self.collection.find_one_and_update(
            {"user_id": cart.user_id},
            {"$set": {"items": items, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        return self._to_model(doc)

    @staticmethod
    def _to_model(doc: Optional[dict]) -> Optional[CartDB]:
        if not doc:
            return None
        doc["_id"] = str(doc["_id"])
        return CartDB(**doc)
