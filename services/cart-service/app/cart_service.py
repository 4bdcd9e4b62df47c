"""Cart aggregate management and client cart synchronization.

Every mutation is a read-modify-write of the user's cart document. Mutations for
the same user are serialized through a ``KeyedLock`` so two concurrent requests
cannot both act on the same pre-mutation state inside this process.
"""
import logging
from typing import Dict, List, Optional

from shared.utils import AppException, settings
from app.errors import CartFull, CartNotFound, CartUpdateFailed, ItemNotFound, MaxQuantityExceeded
from app.locks import KeyedLock
from app.models import CartDB, CartItemDB, ClientCartItem, ItemAttributes, SyncError, SyncResult
from app.repositories import CartRepository
from app.resolver import StockResolver

logger = logging.getLogger(__name__)


class CartManager:
    def __init__(
        self,
        carts: CartRepository,
        resolver: StockResolver,
        max_items: int = settings.CART_MAX_ITEMS,
        max_quantity_per_item: int = settings.CART_MAX_QUANTITY_PER_ITEM,
        locks: Optional[KeyedLock] = None,
    ):
        self.carts = carts
        self.resolver = resolver
        self.max_items = max_items
        self.max_quantity_per_item = max_quantity_per_item
        self.locks = locks or KeyedLock()
        self.reconciler = CartReconciler(carts, resolver, max_items, max_quantity_per_item)

    async def get_or_create(self, user_id: str) -> CartDB:
        return await self.carts.find_or_create(user_id)

    async def add(
        self,
        user_id: str,
        product_id: str,
        sku: str,
        quantity: int,
        attributes: Optional[ItemAttributes] = None,
    ) -> CartDB:
        async with self.locks.hold(user_id):
            cart = await self.carts.find_or_create(user_id)
            if len(cart.items) >= self.max_items:
                raise CartFull(f"Cart cannot contain more than {self.max_items} items")

            existing = cart.find_item(sku)
            if existing:
                # Same SKU again: re-validate ceilings and stock against the new total
                return await self._set_quantity(cart, sku, existing.quantity + quantity)

            self._check_quantity(quantity)
            item = await self.resolver.validate_and_resolve(product_id, sku, quantity, attributes)
            cart.items.append(item)
            saved = await self._save(cart)
            logger.info("Cart item added", extra={"user_id": user_id, "sku": sku, "item_count": len(saved.items)})
            return saved

    async def update(self, user_id: str, sku: str, quantity: int) -> CartDB:
        async with self.locks.hold(user_id):
            cart = await self.carts.find(user_id)
            if cart is None:
                raise ItemNotFound()
            return await self._set_quantity(cart, sku, quantity)

    async def remove(self, user_id: str, sku: str) -> CartDB:
        async with self.locks.hold(user_id):
            cart = await self.carts.find(user_id)
            if cart is None or cart.find_item(sku) is None:
                raise ItemNotFound()

            cart.items = [i for i in cart.items if i.sku != sku]
            saved = await self._save(cart)
            logger.info("Cart item removed", extra={"user_id": user_id, "sku": sku})
            return saved

    async def clear(self, user_id: str) -> CartDB:
        async with self.locks.hold(user_id):
            cart = await self.carts.find(user_id)
            if cart is None:
                raise CartNotFound()

            cart.items = []
            saved = await self._save(cart)
            logger.info("Cart cleared", extra={"user_id": user_id})
            return saved

    async def sync(self, user_id: str, client_items: List[ClientCartItem]) -> SyncResult:
        async with self.locks.hold(user_id):
            return await self.reconciler.reconcile(user_id, client_items)

    async def _set_quantity(self, cart: CartDB, sku: str, quantity: int) -> CartDB:
        index = next((n for n, i in enumerate(cart.items) if i.sku == sku), None)
        if index is None:
            raise ItemNotFound()
        self._check_quantity(quantity)

        current = cart.items[index]
        # Price, discount and images are re-derived from the catalog on every change
        cart.items[index] = await self.resolver.validate_and_resolve(
            current.product_id, sku, quantity, current.attributes
        )
        saved = await self._save(cart)
        logger.info("Cart item updated", extra={"user_id": cart.user_id, "sku": sku})
        return saved

    def _check_quantity(self, quantity: int):
        if quantity > self.max_quantity_per_item:
            raise MaxQuantityExceeded(
                f"Quantity cannot exceed {self.max_quantity_per_item} per item"
            )

    async def _save(self, cart: CartDB) -> CartDB:
        saved = await self.carts.save(cart)
        if not saved:
            logger.error("Cart write returned no document", extra={"user_id": cart.user_id})
            raise CartUpdateFailed()
        return saved


class CartReconciler:
    """Merges a client-held cart into the stored one without dropping server-known items.

    Stored items are walked first: a SKU the client also sent takes the client's
    quantity (capped at the per-item ceiling) if that quantity still resolves,
    otherwise the stored line is kept as is. Client-only SKUs are appended after.
    Per-item failures are reported in ``SyncResult.errors``; only a full cart
    aborts the whole call.
    """

    def __init__(
        self,
        carts: CartRepository,
        resolver: StockResolver,
        max_items: int = settings.CART_MAX_ITEMS,
        max_quantity_per_item: int = settings.CART_MAX_QUANTITY_PER_ITEM,
    ):
        self.carts = carts
        self.resolver = resolver
        self.max_items = max_items
        self.max_quantity_per_item = max_quantity_per_item

    async def reconcile(self, user_id: str, client_items: List[ClientCartItem]) -> SyncResult:
        cart = await self.carts.find_or_create(user_id)
        errors: List[SyncError] = []

        validated: Dict[str, ClientCartItem] = {}
        resolved: Dict[str, CartItemDB] = {}
        for item in client_items:
            try:
                line = await self.resolver.validate_and_resolve(
                    item.product_id, item.sku, item.quantity, item.attributes
                )
            except AppException as exc:
                errors.append(SyncError(sku=item.sku, error=exc.detail, code=exc.code))
                continue
            validated[item.sku] = item
            resolved[item.sku] = line

        merged: Dict[str, CartItemDB] = {}
        for existing in cart.items:
            client = validated.get(existing.sku)
            if client is None:
                merged[existing.sku] = existing
                continue

            quantity = min(client.quantity, self.max_quantity_per_item)
            try:
                merged[existing.sku] = await self.resolver.validate_and_resolve(
                    client.product_id, existing.sku, quantity, client.attributes or existing.attributes
                )
            except AppException as exc:
                merged[existing.sku] = existing
                errors.append(SyncError(
                    sku=existing.sku,
                    error=f"Could not sync quantity: {exc.detail}",
                    code=exc.code,
                ))

        for sku, line in resolved.items():
            if sku not in merged:
                quantity = min(line.quantity, self.max_quantity_per_item)
                merged[sku] = line.model_copy(update={"quantity": quantity})

        if len(merged) > self.max_items:
            raise CartFull(f"Cart cannot contain more than {self.max_items} items")

        cart.items = list(merged.values())
        saved = await self.carts.save(cart)
        if not saved:
            raise CartUpdateFailed()

        if errors:
            logger.warning(
                "Cart synced with errors",
                extra={"user_id": user_id, "error_count": len(errors), "item_count": len(saved.items)},
            )
        else:
            logger.info("Cart synced", extra={"user_id": user_id, "item_count": len(saved.items)})
        return SyncResult(cart=saved, errors=errors)
