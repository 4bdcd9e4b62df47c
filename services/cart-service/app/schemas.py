from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime
from shared.utils import settings

from app.models import Address, CartItemDB, ClientCartItem, ItemAttributes, PaymentMethodType, SyncError

MAX_QUANTITY = settings.CART_MAX_QUANTITY_PER_ITEM
MAX_ITEMS = settings.CART_MAX_ITEMS


def strip_identifier(v: str) -> str:
    # Identifiers are matched verbatim against the catalog; only surrounding whitespace goes
    return v.strip()

# --- Cart ---
class CartItemAdd(BaseModel):
    product_id: str = Field(..., min_length=1)
    sku: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=MAX_QUANTITY)
    attributes: Optional[ItemAttributes] = None

    @field_validator('sku')
    def strip_sku(cls, v):
        return strip_identifier(v)

class CartItemUpdate(BaseModel):
    sku: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=MAX_QUANTITY)

    @field_validator('sku')
    def strip_sku(cls, v):
        return strip_identifier(v)

class CartSync(BaseModel):
    items: List[ClientCartItem] = Field(default_factory=list, max_length=MAX_ITEMS)

class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemDB]
    subtotal: Decimal
    total_items: int
    updated_at: datetime

class CartSyncResponse(BaseModel):
    cart: CartResponse
    errors: List[SyncError]

# --- Checkout ---
class CheckoutItem(BaseModel):
    sku: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=MAX_QUANTITY)

    @field_validator('sku')
    def strip_sku(cls, v):
        return strip_identifier(v)

class CheckoutSessionCreate(BaseModel):
    items: Optional[List[CheckoutItem]] = Field(None, min_length=1, max_length=MAX_ITEMS)
    email: Optional[EmailStr] = None

class ShippingAddressUpdate(BaseModel):
    shipping_address: Address
    billing_address: Optional[Address] = None
    billing_is_same_as_shipping: bool = False

class ShippingMethodSelect(BaseModel):
    shipping_method_id: str = Field(..., min_length=1)
    shipping_cost: Decimal = Field(Decimal("0"), ge=0)

    @field_validator('shipping_method_id')
    def strip_method(cls, v):
        return strip_identifier(v)

class CheckoutComplete(BaseModel):
    payment_method_type: PaymentMethodType
    order_id: str = Field(..., min_length=1)

    @field_validator('order_id')
    def strip_order_id(cls, v):
        return strip_identifier(v)
