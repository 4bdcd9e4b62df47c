"""Cart and checkout money arithmetic. Pure functions, no I/O.

Discounts are not clamped here: a discount larger than subtotal plus shipping
yields a negative total. Callers own that validation.
"""
from decimal import Decimal
from typing import Iterable, Tuple

from app.models import CartItemDB, CartSnapshot, Pricing

ZERO = Decimal("0")


def summarize(items: Iterable[CartItemDB]) -> Tuple[Decimal, int]:
    """Return ``(subtotal, total_items)`` using the discounted price when there is one."""
    subtotal = ZERO
    total_items = 0
    for item in items:
        subtotal += item.unit_price * item.quantity
        total_items += item.quantity
    return subtotal, total_items


def calculate_total(subtotal: Decimal, shipping_cost: Decimal, discount: Decimal) -> Decimal:
    return subtotal + shipping_cost - discount


def build_snapshot(items: Iterable[CartItemDB]) -> CartSnapshot:
    items = tuple(item.model_copy(deep=True) for item in items)
    subtotal, total_items = summarize(items)
    return CartSnapshot(items=items, subtotal=subtotal, total_items=total_items)


def initial_pricing(snapshot: CartSnapshot) -> Pricing:
    return Pricing(
        subtotal=snapshot.subtotal,
        shipping_cost=ZERO,
        discount=ZERO,
        total=calculate_total(snapshot.subtotal, ZERO, ZERO),
    )


def with_shipping(pricing: Pricing, shipping_cost: Decimal) -> Pricing:
    return Pricing(
        subtotal=pricing.subtotal,
        shipping_cost=shipping_cost,
        discount=pricing.discount,
        total=calculate_total(pricing.subtotal, shipping_cost, pricing.discount),
    )
