"""Stock and product resolution.

Turns a (product id, sku, quantity) request into a priced cart line, checking
that the product exists, is active, owns the SKU and has enough stock. Prices
always come from the catalog; nothing the client sends is trusted.
"""
from decimal import Decimal
from typing import Optional

from app.catalog import CatalogLookup
from app.errors import ProductNotFound, ProductInactive, InvalidSku, InsufficientStock
from app.models import CartItemDB, ItemAttributes, ProductDB, ProductVariantDB


def build_line_item(
    product: ProductDB,
    variant: Optional[ProductVariantDB],
    quantity: int,
    attributes: Optional[ItemAttributes] = None,
) -> CartItemDB:
    if variant is None:
        price = product.base_price
        discounted = product.base_discounted_price
        images = product.images
        default_attributes = product.base_attributes
    else:
        price = variant.price if variant.price is not None else product.base_price
        discounted = (
            variant.discounted_price
            if variant.discounted_price is not None
            else product.base_discounted_price
        )
        images = variant.images or product.images
        default_attributes = variant.attributes

    return CartItemDB(
        product_id=product.id,
        sku=variant.sku if variant else product.sku,
        quantity=quantity,
        price=price,
        discounted_price=_applicable_discount(price, discounted),
        product_name=product.name,
        product_images=list(images),
        attributes=default_attributes.merged_with(attributes),
        is_variant=variant is not None,
    )


def _applicable_discount(price: Decimal, discounted: Optional[Decimal]) -> Optional[Decimal]:
    # A base discount inherited by a cheaper variant would end up above its price
    if discounted is None or discounted > price:
        return None
    return discounted


class StockResolver:
    def __init__(self, catalog: CatalogLookup):
        self.catalog = catalog

    async def validate_and_resolve(
        self,
        product_id: str,
        sku: str,
        quantity: int,
        attributes: Optional[ItemAttributes] = None,
    ) -> CartItemDB:
        product = await self.catalog.find_by_id(product_id)
        if product is None:
            raise ProductNotFound()
        return self._resolve(product, sku, quantity, attributes)

    async def resolve_by_sku(
        self,
        sku: str,
        quantity: int,
        attributes: Optional[ItemAttributes] = None,
    ) -> CartItemDB:
        """Same checks as ``validate_and_resolve`` for callers that only know the SKU."""
        product = await self.catalog.find_by_sku(sku)
        if product is None:
            raise ProductNotFound(f"Product with SKU {sku} not found")
        return self._resolve(product, sku, quantity, attributes)

    def _resolve(
        self,
        product: ProductDB,
        sku: str,
        quantity: int,
        attributes: Optional[ItemAttributes],
    ) -> CartItemDB:
        if not product.is_active:
            raise ProductInactive()

        if sku == product.sku:
            variant = None
            stock = product.base_stock
        else:
            variant = product.find_variant(sku)
            if variant is None:
                raise InvalidSku()
            stock = variant.stock

        if stock < quantity:
            raise InsufficientStock()

        return build_line_item(product, variant, quantity, attributes)
