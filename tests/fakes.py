"""In-memory stand-ins for MongoDB and Redis used across the test suite."""
import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from app.catalog import CatalogLookup
from app.models import CartDB, ProductDB
from app.repositories import CartRepository
from app.session_store import SessionStore


class FrozenClock:
    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int):
        self.now += timedelta(seconds=seconds)


class FakeCatalog(CatalogLookup):
    def __init__(self, products: List[ProductDB]):
        self.products: Dict[str, ProductDB] = {p.id: p for p in products}

    async def find_by_id(self, product_id: str) -> Optional[ProductDB]:
        await asyncio.sleep(0)
        product = self.products.get(product_id)
        return product.model_copy(deep=True) if product else None

    async def find_by_sku(self, sku: str) -> Optional[ProductDB]:
        await asyncio.sleep(0)
        for product in self.products.values():
            if product.sku == sku or product.find_variant(sku):
                return product.model_copy(deep=True)
        return None

    def set_stock(self, sku: str, stock: int):
        for product in self.products.values():
            if product.sku == sku:
                product.base_stock = stock
                return
            variant = product.find_variant(sku)
            if variant:
                variant.stock = stock
                return
        raise KeyError(sku)


class InMemoryCartRepository(CartRepository):
    def __init__(self):
        self.carts: Dict[str, CartDB] = {}
        self.fail_saves = False
        self.saves = 0

    async def find(self, user_id: str) -> Optional[CartDB]:
        await asyncio.sleep(0)
        cart = self.carts.get(user_id)
        return cart.model_copy(deep=True) if cart else None

    async def find_or_create(self, user_id: str) -> CartDB:
        await asyncio.sleep(0)
        if user_id not in self.carts:
            self.carts[user_id] = CartDB(_id=f"cart-{user_id}", user_id=user_id, items=[])
        return self.carts[user_id].model_copy(deep=True)

    async def save(self, cart: CartDB) -> Optional[CartDB]:
        await asyncio.sleep(0)
        if self.fail_saves or cart.user_id not in self.carts:
            return None
        self.saves += 1
        stored = cart.model_copy(deep=True)
        stored.updated_at = datetime.utcnow()
        self.carts[cart.user_id] = stored
        return stored.model_copy(deep=True)


class InMemorySessionStore(SessionStore):
    """Honours TTLs against the injected clock, like Redis eviction would."""

    def __init__(self, clock: FrozenClock):
        self.clock = clock
        self.data: Dict[str, Tuple[str, datetime]] = {}
        self.ttls: List[int] = []
        self.evict_on_expiry = True

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await asyncio.sleep(0)
        self.ttls.append(ttl_seconds)
        self.data[key] = (value, self.clock() + timedelta(seconds=ttl_seconds))

    async def get(self, key: str) -> Optional[str]:
        await asyncio.sleep(0)
        entry = self.data.get(key)
        if entry is None:
            return None
        value, evict_at = entry
        if self.evict_on_expiry and self.clock() >= evict_at:
            del self.data[key]
            return None
        return value

    async def delete(self, key: str) -> None:
        await asyncio.sleep(0)
        self.data.pop(key, None)


def money(value: str) -> Decimal:
    return Decimal(value)
