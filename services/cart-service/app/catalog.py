"""Read-only product lookups used by the cart and checkout flows."""
from abc import ABC, abstractmethod
from typing import Optional
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models import ProductDB


class CatalogLookup(ABC):
    @abstractmethod
    async def find_by_id(self, product_id: str) -> Optional[ProductDB]:
        ...

    @abstractmethod
    async def find_by_sku(self, sku: str) -> Optional[ProductDB]:
        """Find the product owning ``sku``, either as its base SKU or as one of its variants."""
        ...


class MongoCatalog(CatalogLookup):
    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.products

    async def find_by_id(self, product_id: str) -> Optional[ProductDB]:
        # Malformed ids cannot match anything
        if not ObjectId.is_valid(product_id):
            return None
        doc = await self.collection.find_one({"_id": ObjectId(product_id)})
        return self._to_model(doc)

    async def find_by_sku(self, sku: str) -> Optional[ProductDB]:
        doc = await self.collection.find_one({"$or": [{"sku": sku}, {"variants.sku": sku}]})
        return self._to_model(doc)

    @staticmethod
    def _to_model(doc: Optional[dict]) -> Optional[ProductDB]:
        if not doc:
            return None
        doc["_id"] = str(doc["_id"])
        return ProductDB(**doc)
