from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, Tuple
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

# --- Catalog ---
class ItemAttributes(BaseModel):
    color: Optional[str] = None
    size: Optional[str] = None
    material: Optional[str] = None
    brand: Optional[str] = None
    style: Optional[str] = None
    pattern: Optional[str] = None

    def merged_with(self, overrides: Optional["ItemAttributes"]) -> "ItemAttributes":
        """Return these attributes with every field set in ``overrides`` taking precedence."""
        if overrides is None:
            return self.model_copy()
        return self.model_copy(update=overrides.model_dump(exclude_none=True))

class ProductVariantDB(BaseModel):
    sku: str
    stock: int = 0
    price: Optional[Decimal] = None
    discounted_price: Optional[Decimal] = None
    images: List[str] = []
    attributes: ItemAttributes = Field(default_factory=ItemAttributes)

class ProductDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    name: str
    sku: str
    is_active: bool = True
    base_stock: int = 0
    base_price: Decimal
    base_discounted_price: Optional[Decimal] = None
    images: List[str] = []
    base_attributes: ItemAttributes = Field(default_factory=ItemAttributes)
    variants: List[ProductVariantDB] = []

    class Config:
        populate_by_name = True

    def find_variant(self, sku: str) -> Optional[ProductVariantDB]:
        return next((v for v in self.variants if v.sku == sku), None)

# --- Cart ---
class CartItemDB(BaseModel):
    product_id: str
    sku: str
    quantity: int = Field(..., ge=1)
    price: Decimal = Field(..., ge=0)
    discounted_price: Optional[Decimal] = Field(None, ge=0)
    product_name: str
    product_images: List[str] = []
    attributes: ItemAttributes = Field(default_factory=ItemAttributes)
    is_variant: bool = False

    @model_validator(mode="after")
    def discount_not_above_price(self):
        if self.discounted_price is not None and self.discounted_price > self.price:
            raise ValueError("discounted_price cannot exceed price")
        return self

    @property
    def unit_price(self) -> Decimal:
        return self.discounted_price if self.discounted_price is not None else self.price

class CartDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[CartItemDB] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True

    def find_item(self, sku: str) -> Optional[CartItemDB]:
        return next((i for i in self.items if i.sku == sku), None)

class ClientCartItem(BaseModel):
    """A cart line as the client believes it to be; prices are never accepted from it."""
    product_id: str = Field(..., min_length=1)
    sku: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    attributes: Optional[ItemAttributes] = None

class SyncError(BaseModel):
    sku: str
    error: str
    code: Optional[str] = None

class SyncResult(BaseModel):
    cart: CartDB
    errors: List[SyncError] = []

# --- Checkout ---
class CheckoutStep(str, Enum):
    SHIPPING = "shipping"
    SHIPPING_METHOD = "shipping_method"
    PAYMENT = "payment"
    COMPLETED = "completed"

class CheckoutStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    # Never stored: derived at read time from expires_at
    EXPIRED = "expired"

class PaymentMethodType(str, Enum):
    CREDIT_CARD = "credit_card"
    BANK_TRANSFER = "bank_transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"

PHONE_PATTERN = r"^[\+]?[1-9][\d]{0,15}$"

class Address(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    phone: str = Field(..., min_length=1, pattern=PHONE_PATTERN)
    email: Optional[EmailStr] = None
    address_line1: str = Field(..., min_length=1, max_length=200)
    address_line2: Optional[str] = Field(None, max_length=200)
    city: str = Field(..., min_length=1, max_length=100)
    state: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    def lowercase_email(cls, v):
        return v.lower() if v else v

class CartSnapshot(BaseModel):
    items: Tuple[CartItemDB, ...]
    subtotal: Decimal
    total_items: int

    class Config:
        frozen = True

class Pricing(BaseModel):
    subtotal: Decimal
    shipping_cost: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    total: Decimal

    @model_validator(mode="after")
    def total_is_consistent(self):
        if self.total != self.subtotal + self.shipping_cost - self.discount:
            raise ValueError("total must equal subtotal + shipping_cost - discount")
        return self

class CheckoutSession(BaseModel):
    session_token: str
    user_id: Optional[str] = None
    guest_email: Optional[str] = None
    cart_id: Optional[str] = None
    current_step: CheckoutStep = CheckoutStep.SHIPPING
    status: CheckoutStatus = CheckoutStatus.ACTIVE
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    shipping_method_id: Optional[str] = None
    payment_method_type: Optional[PaymentMethodType] = None
    cart_snapshot: CartSnapshot
    pricing: Pricing
    expires_at: datetime
    completed_at: Optional[datetime] = None
    order_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def step_prerequisites(self):
        if self.status == CheckoutStatus.EXPIRED:
            raise ValueError("expired is derived, it cannot be stored")
        if self.status == CheckoutStatus.COMPLETED:
            if self.current_step != CheckoutStep.COMPLETED:
                raise ValueError("a completed session must be at the completed step")
            if not self.order_id or self.completed_at is None:
                raise ValueError("a completed session needs order_id and completed_at")
        if self.current_step != CheckoutStep.SHIPPING and self.shipping_address is None:
            raise ValueError(f"step {self.current_step.value} requires a shipping address")
        if self.current_step in (CheckoutStep.PAYMENT, CheckoutStep.COMPLETED) and not self.shipping_method_id:
            raise ValueError(f"step {self.current_step.value} requires a shipping method")
        return self

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

class CreatedSession(BaseModel):
    session_token: str
    expires_at: datetime
