from decimal import Decimal

import pytest

from shared.security_config import limiter
from app.cart_service import CartManager
from app.checkout import CheckoutSessionService
from app.models import ItemAttributes, ProductDB, ProductVariantDB
from app.resolver import StockResolver
from tests.fakes import FakeCatalog, FrozenClock, InMemoryCartRepository, InMemorySessionStore

SESSION_TTL = 20 * 60

# Route tests issue many requests from the same client address
limiter.enabled = False


def make_products():
    return [
        ProductDB(
            id="p-x",
            name="Basic Tee",
            sku="X",
            base_stock=500,
            base_price=Decimal("10"),
            images=["tee.jpg"],
        ),
        ProductDB(
            id="p-shirt",
            name="Oxford Shirt",
            sku="SHIRT",
            base_stock=10,
            base_price=Decimal("20"),
            base_discounted_price=Decimal("15"),
            images=["shirt.jpg"],
            base_attributes=ItemAttributes(color="white", material="cotton"),
            variants=[
                ProductVariantDB(
                    sku="SHIRT-RED-M",
                    stock=5,
                    price=Decimal("22"),
                    attributes=ItemAttributes(color="red", size="M"),
                ),
                ProductVariantDB(
                    sku="SHIRT-BLUE-L",
                    stock=0,
                    discounted_price=Decimal("12"),
                    images=["blue.jpg"],
                    attributes=ItemAttributes(color="blue", size="L"),
                ),
            ],
        ),
        ProductDB(
            id="p-a",
            name="Retired Lamp",
            sku="A",
            is_active=False,
            base_stock=10,
            base_price=Decimal("5"),
        ),
        ProductDB(
            id="p-mug",
            name="Mug",
            sku="MUG",
            base_stock=3,
            base_price=Decimal("12"),
            base_discounted_price=Decimal("9"),
            variants=[ProductVariantDB(sku="MUG-MINI", stock=3, price=Decimal("8"))],
        ),
    ]


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def catalog():
    return FakeCatalog(make_products())


@pytest.fixture
def carts():
    return InMemoryCartRepository()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(clock)


@pytest.fixture
def resolver(catalog):
    return StockResolver(catalog)


@pytest.fixture
def cart_manager(carts, resolver):
    return CartManager(carts, resolver, max_items=50, max_quantity_per_item=100)


@pytest.fixture
def checkout(store, cart_manager, resolver, clock):
    return CheckoutSessionService(store, cart_manager, resolver, ttl_seconds=SESSION_TTL, clock=clock)
