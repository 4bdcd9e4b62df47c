from typing import Optional
from fastapi import status

from shared.utils import AppException


class CommerceError(AppException):
    """Base for cart and checkout failures; ``code`` is the machine-readable kind."""

    http_status = status.HTTP_400_BAD_REQUEST
    message = "Request could not be processed"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(status_code=self.http_status, detail=detail or self.message)


# --- Catalog / Resolver ---
class ProductNotFound(CommerceError):
    code = "NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
    message = "Product not found"

class ProductInactive(CommerceError):
    code = "INACTIVE"
    message = "Product is not active"

class InvalidSku(CommerceError):
    code = "INVALID_SKU"
    message = "Invalid SKU for this product"

class InsufficientStock(CommerceError):
    code = "INSUFFICIENT_STOCK"
    message = "Insufficient stock"

# --- Cart ---
class ItemNotFound(CommerceError):
    code = "ITEM_NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
    message = "Item not found in cart"

class CartNotFound(CommerceError):
    code = "CART_NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
    message = "Cart not found"

class CartFull(CommerceError):
    code = "CART_FULL"
    message = "Cart is full"

class MaxQuantityExceeded(CommerceError):
    code = "MAX_QUANTITY_EXCEEDED"
    message = "Maximum quantity per item exceeded"

class CartUpdateFailed(CommerceError):
    code = "CART_UPDATE_FAILED"
    http_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Failed to update cart"

# --- Checkout ---
class CartEmpty(CommerceError):
    code = "CART_EMPTY"
    message = "Cannot create checkout session with empty cart"

class ItemsRequired(CommerceError):
    code = "ITEMS_REQUIRED"
    message = "Items are required for guest checkout"

class InvalidSessionToken(CommerceError):
    code = "INVALID_SESSION_TOKEN"
    message = "Invalid session token format"

class SessionNotFound(CommerceError):
    code = "SESSION_NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
    message = "Checkout session not found"

class SessionExpired(CommerceError):
    code = "SESSION_EXPIRED"
    message = "Checkout session has expired"

class SessionAlreadyCompleted(CommerceError):
    code = "SESSION_ALREADY_COMPLETED"
    message = "Checkout session is already completed"

class ShippingAddressRequired(CommerceError):
    code = "SHIPPING_ADDRESS_REQUIRED"
    message = "Shipping address is required"

class ShippingMethodRequired(CommerceError):
    code = "SHIPPING_METHOD_REQUIRED"
    message = "Shipping method is required"
