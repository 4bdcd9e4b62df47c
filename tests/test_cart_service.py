import asyncio
from decimal import Decimal

import pytest

from app.cart_service import CartManager
from app.errors import (
    CartFull,
    CartNotFound,
    CartUpdateFailed,
    InsufficientStock,
    ItemNotFound,
    MaxQuantityExceeded,
    ProductInactive,
)
from app.models import ItemAttributes
from app.pricing import summarize


async def test_get_or_create_is_idempotent(cart_manager, carts):
    first = await cart_manager.get_or_create("u1")
    second = await cart_manager.get_or_create("u1")

    assert first.id == second.id
    assert first.items == []
    assert list(carts.carts) == ["u1"]


async def test_add_new_item(cart_manager):
    cart = await cart_manager.add("u1", "p-x", "X", 2)

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 2
    assert cart.items[0].price == Decimal("10")
    assert summarize(cart.items) == (Decimal("20"), 2)


async def test_adding_same_sku_increments_quantity(cart_manager):
    await cart_manager.add("u1", "p-x", "X", 2)
    cart = await cart_manager.add("u1", "p-x", "X", 5)

    assert len(cart.items) == 1
    assert cart.items[0].quantity == 7


async def test_adding_twice_equals_adding_sum(cart_manager):
    await cart_manager.add("u1", "p-x", "X", 3)
    twice = await cart_manager.add("u1", "p-x", "X", 4)
    once = await cart_manager.add("u2", "p-x", "X", 7)

    assert [(i.sku, i.quantity) for i in twice.items] == [(i.sku, i.quantity) for i in once.items]


async def test_sum_over_ceiling_leaves_cart_unchanged(cart_manager, carts):
    await cart_manager.add("u1", "p-x", "X", 60)

    with pytest.raises(MaxQuantityExceeded):
        await cart_manager.add("u1", "p-x", "X", 41)

    cart = await carts.find("u1")
    assert cart.items[0].quantity == 60


async def test_new_item_over_ceiling(cart_manager):
    with pytest.raises(MaxQuantityExceeded):
        await cart_manager.add("u1", "p-x", "X", 101)


async def test_increment_rechecks_stock_against_total(cart_manager):
    await cart_manager.add("u1", "p-shirt", "SHIRT-RED-M", 3)

    with pytest.raises(InsufficientStock):
        await cart_manager.add("u1", "p-shirt", "SHIRT-RED-M", 3)


async def test_add_inactive_product(cart_manager, carts):
    with pytest.raises(ProductInactive):
        await cart_manager.add("u1", "p-a", "A", 1)
    assert (await carts.find("u1")).items == []


async def test_cart_full(carts, resolver):
    manager = CartManager(carts, resolver, max_items=2, max_quantity_per_item=100)
    await manager.add("u1", "p-x", "X", 1)
    await manager.add("u1", "p-shirt", "SHIRT", 1)

    with pytest.raises(CartFull):
        await manager.add("u1", "p-mug", "MUG", 1)
    # Even an existing SKU is rejected once the cart is at capacity
    with pytest.raises(CartFull):
        await manager.add("u1", "p-x", "X", 1)


async def test_add_keeps_caller_attributes(cart_manager):
    cart = await cart_manager.add("u1", "p-shirt", "SHIRT", 1, ItemAttributes(size="L"))

    assert cart.items[0].attributes.size == "L"
    assert cart.items[0].attributes.color == "white"


async def test_update_reprices_from_catalog(cart_manager, catalog):
    await cart_manager.add("u1", "p-x", "X", 1)
    catalog.products["p-x"].base_price = Decimal("12.50")

    cart = await cart_manager.update("u1", "X", 4)

    assert cart.items[0].quantity == 4
    assert cart.items[0].price == Decimal("12.50")


async def test_update_missing_item(cart_manager):
    await cart_manager.get_or_create("u1")
    with pytest.raises(ItemNotFound):
        await cart_manager.update("u1", "X", 1)


async def test_update_without_cart(cart_manager):
    with pytest.raises(ItemNotFound):
        await cart_manager.update("nobody", "X", 1)


async def test_update_over_stock(cart_manager):
    await cart_manager.add("u1", "p-mug", "MUG", 1)
    with pytest.raises(InsufficientStock):
        await cart_manager.update("u1", "MUG", 4)


async def test_remove(cart_manager):
    await cart_manager.add("u1", "p-x", "X", 1)
    await cart_manager.add("u1", "p-mug", "MUG", 1)

    cart = await cart_manager.remove("u1", "X")

    assert [i.sku for i in cart.items] == ["MUG"]


async def test_remove_missing_item(cart_manager):
    with pytest.raises(ItemNotFound):
        await cart_manager.remove("u1", "X")


async def test_clear(cart_manager, carts):
    await cart_manager.add("u1", "p-x", "X", 1)

    cart = await cart_manager.clear("u1")

    assert cart.items == []
    assert "u1" in carts.carts


async def test_clear_without_cart(cart_manager):
    with pytest.raises(CartNotFound):
        await cart_manager.clear("nobody")


async def test_storage_returning_nothing_is_internal_error(cart_manager, carts):
    await cart_manager.get_or_create("u1")
    carts.fail_saves = True

    with pytest.raises(CartUpdateFailed) as exc:
        await cart_manager.add("u1", "p-x", "X", 1)
    assert exc.value.status_code == 500


async def test_concurrent_adds_are_serialized(cart_manager):
    await asyncio.gather(*[cart_manager.add("u1", "p-x", "X", 1) for _ in range(10)])

    cart = await cart_manager.get_or_create("u1")
    assert cart.items[0].quantity == 10
    assert len(cart_manager.locks) == 0
