from decimal import Decimal

import pytest

from app.errors import InsufficientStock, InvalidSku, ProductInactive, ProductNotFound
from app.models import ItemAttributes


async def test_resolves_base_product(resolver):
    item = await resolver.validate_and_resolve("p-x", "X", 2)

    assert item.product_id == "p-x"
    assert item.sku == "X"
    assert item.quantity == 2
    assert item.price == Decimal("10")
    assert item.discounted_price is None
    assert item.product_name == "Basic Tee"
    assert item.product_images == ["tee.jpg"]
    assert item.is_variant is False


async def test_unknown_product(resolver):
    with pytest.raises(ProductNotFound) as exc:
        await resolver.validate_and_resolve("missing", "X", 1)
    assert exc.value.code == "NOT_FOUND"
    assert exc.value.status_code == 404


async def test_inactive_product(resolver):
    with pytest.raises(ProductInactive):
        await resolver.validate_and_resolve("p-a", "A", 1)


async def test_sku_not_owned_by_product(resolver):
    with pytest.raises(InvalidSku):
        await resolver.validate_and_resolve("p-x", "SHIRT-RED-M", 1)


async def test_insufficient_base_stock(resolver):
    with pytest.raises(InsufficientStock):
        await resolver.validate_and_resolve("p-shirt", "SHIRT", 11)


async def test_insufficient_variant_stock(resolver):
    with pytest.raises(InsufficientStock):
        await resolver.validate_and_resolve("p-shirt", "SHIRT-BLUE-L", 1)


async def test_variant_falls_back_to_base_discount_and_images(resolver):
    item = await resolver.validate_and_resolve("p-shirt", "SHIRT-RED-M", 5)

    assert item.is_variant is True
    assert item.price == Decimal("22")
    assert item.discounted_price == Decimal("15")
    assert item.product_images == ["shirt.jpg"]
    assert item.attributes.color == "red"
    assert item.attributes.size == "M"


async def test_variant_own_images_and_base_price(resolver, catalog):
    catalog.set_stock("SHIRT-BLUE-L", 4)

    item = await resolver.validate_and_resolve("p-shirt", "SHIRT-BLUE-L", 1)

    assert item.price == Decimal("20")
    assert item.discounted_price == Decimal("12")
    assert item.product_images == ["blue.jpg"]


async def test_inherited_discount_above_variant_price_is_dropped(resolver):
    item = await resolver.validate_and_resolve("p-mug", "MUG-MINI", 1)

    assert item.price == Decimal("8")
    assert item.discounted_price is None


async def test_caller_attributes_override_defaults(resolver):
    item = await resolver.validate_and_resolve(
        "p-shirt", "SHIRT", 1, ItemAttributes(size="XL")
    )

    assert item.attributes.size == "XL"
    assert item.attributes.color == "white"
    assert item.attributes.material == "cotton"


@pytest.mark.parametrize("product_id,sku", [
    ("p-x", "X"),
    ("p-shirt", "SHIRT"),
    ("p-shirt", "SHIRT-RED-M"),
    ("p-mug", "MUG"),
    ("p-mug", "MUG-MINI"),
])
async def test_discount_never_above_price(resolver, product_id, sku):
    item = await resolver.validate_and_resolve(product_id, sku, 1)
    if item.discounted_price is not None:
        assert item.discounted_price <= item.price


async def test_resolve_by_sku_finds_variant_owner(resolver):
    item = await resolver.resolve_by_sku("SHIRT-RED-M", 2)

    assert item.product_id == "p-shirt"
    assert item.sku == "SHIRT-RED-M"


async def test_resolve_by_unknown_sku(resolver):
    with pytest.raises(ProductNotFound, match="NOPE"):
        await resolver.resolve_by_sku("NOPE", 1)
