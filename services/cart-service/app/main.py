from fastapi import APIRouter, FastAPI, Depends, HTTPException, status, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Any
import os
import sys

# Add the parent directory to sys.path to resolve shared imports
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../../../")))

from shared.utils import (
    get_db_client, get_redis_client, settings, SuccessResponse, ErrorResponse,
    HealthResponse, AppException, UnauthorizedException, require_auth, optional_auth
)
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware, limiter

from app.cart_service import CartManager
from app.catalog import CatalogLookup, MongoCatalog
from app.checkout import CheckoutSessionService, is_valid_session_token
from app.errors import InvalidSessionToken
from app.locks import KeyedLock
from app.models import CartDB, CheckoutSession, CreatedSession
from app.pricing import summarize
from app.repositories import CartRepository, MongoCartRepository
from app.resolver import StockResolver
from app.schemas import (
    CartItemAdd, CartItemUpdate, CartSync, CartResponse, CartSyncResponse,
    CheckoutSessionCreate, ShippingAddressUpdate, ShippingMethodSelect, CheckoutComplete
)
from app.session_store import SessionStore, RedisSessionStore

SERVICE_NAME = "cart-service"

# Setup Logging
logger = setup_logging(SERVICE_NAME)


@dataclass
class Services:
    cart_manager: CartManager
    checkout: CheckoutSessionService


def build_services(catalog: CatalogLookup, carts: CartRepository, store: SessionStore) -> Services:
    resolver = StockResolver(catalog)
    cart_manager = CartManager(
        carts,
        resolver,
        max_items=settings.CART_MAX_ITEMS,
        max_quantity_per_item=settings.CART_MAX_QUANTITY_PER_ITEM,
        locks=KeyedLock(),
    )
    checkout = CheckoutSessionService(
        store,
        cart_manager,
        resolver,
        ttl_seconds=settings.CHECKOUT_SESSION_TTL_SECONDS,
        locks=KeyedLock(),
    )
    return Services(cart_manager=cart_manager, checkout=checkout)


# --- Dependencies ---
def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise AppException(status.HTTP_503_SERVICE_UNAVAILABLE, "Service not initialized")
    return services

async def get_current_user(request: Request, payload: dict = Depends(require_auth)) -> str:
    user_id = payload.get("sub")
    if not user_id:
        raise UnauthorizedException("Invalid token payload")
    request.state.user_id = user_id
    return user_id

async def get_optional_user(request: Request, payload: Optional[dict] = Depends(optional_auth)) -> Optional[str]:
    if payload is None:
        return None
    return await get_current_user(request, payload)

def valid_token(token: str) -> str:
    if not is_valid_session_token(token):
        raise InvalidSessionToken()
    return token

# --- Helper ---
def to_cart_response(cart: CartDB) -> CartResponse:
    subtotal, total_items = summarize(cart.items)
    return CartResponse(
        user_id=cart.user_id,
        items=cart.items,
        subtotal=subtotal,
        total_items=total_items,
        updated_at=cart.updated_at,
    )

# --- Endpoints ---
router = APIRouter()

# Cart
@router.get("/cart", response_model=SuccessResponse[CartResponse])
@limiter.limit(settings.RATE_LIMIT)
async def get_cart(request: Request, user_id: str = Depends(get_current_user), services: Services = Depends(get_services)):
    cart = await services.cart_manager.get_or_create(user_id)
    return SuccessResponse(data=to_cart_response(cart))

@router.post("/cart/items", response_model=SuccessResponse[CartResponse])
@limiter.limit(settings.RATE_LIMIT)
async def add_to_cart(request: Request, item: CartItemAdd, user_id: str = Depends(get_current_user), services: Services = Depends(get_services)):
    cart = await services.cart_manager.add(
        user_id, item.product_id, item.sku, item.quantity, item.attributes
    )
    return SuccessResponse(data=to_cart_response(cart), message="Item added to cart")

@router.put("/cart/items", response_model=SuccessResponse[CartResponse])
@limiter.limit(settings.RATE_LIMIT)
async def update_cart_item(request: Request, update: CartItemUpdate, user_id: str = Depends(get_current_user), services: Services = Depends(get_services)):
    cart = await services.cart_manager.update(user_id, update.sku, update.quantity)
    return SuccessResponse(data=to_cart_response(cart), message="Cart item updated")

@router.delete("/cart/items/{sku}", response_model=SuccessResponse[CartResponse])
@limiter.limit(settings.RATE_LIMIT)
async def remove_cart_item(request: Request, sku: str, user_id: str = Depends(get_current_user), services: Services = Depends(get_services)):
    cart = await services.cart_manager.remove(user_id, sku)
    return SuccessResponse(data=to_cart_response(cart), message="Item removed from cart")

@router.delete("/cart", response_model=SuccessResponse[CartResponse])
@limiter.limit(settings.RATE_LIMIT)
async def clear_cart(request: Request, user_id: str = Depends(get_current_user), services: Services = Depends(get_services)):
    cart = await services.cart_manager.clear(user_id)
    return SuccessResponse(data=to_cart_response(cart), message="Cart cleared")

@router.post("/cart/sync", response_model=SuccessResponse[CartSyncResponse])
@limiter.limit(settings.RATE_LIMIT)
async def sync_cart(request: Request, payload: CartSync, user_id: str = Depends(get_current_user), services: Services = Depends(get_services)):
    result = await services.cart_manager.sync(user_id, payload.items)
    message = "Cart synced" if not result.errors else "Cart synced with errors"
    return SuccessResponse(
        data=CartSyncResponse(cart=to_cart_response(result.cart), errors=result.errors),
        message=message,
    )

# Checkout
@router.post("/checkout/sessions", response_model=SuccessResponse[CreatedSession], status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT)
async def create_checkout_session(request: Request, payload: CheckoutSessionCreate, user_id: Optional[str] = Depends(get_optional_user), services: Services = Depends(get_services)):
    items = [i.model_dump() for i in payload.items] if payload.items else None
    created = await services.checkout.create(
        user_id=user_id,
        guest_email=None if user_id else payload.email,
        items=items,
    )
    return SuccessResponse(data=created, message="Checkout session created successfully")

@router.get("/checkout/sessions/{token}", response_model=SuccessResponse[CheckoutSession])
@limiter.limit(settings.RATE_LIMIT)
async def get_checkout_session(request: Request, token: str = Depends(valid_token), services: Services = Depends(get_services)):
    session = await services.checkout.get(token)
    return SuccessResponse(data=session)

@router.put("/checkout/sessions/{token}/shipping-address", response_model=SuccessResponse[CheckoutSession])
@limiter.limit(settings.RATE_LIMIT)
async def update_shipping_address(request: Request, payload: ShippingAddressUpdate, token: str = Depends(valid_token), services: Services = Depends(get_services)):
    session = await services.checkout.update_shipping_address(
        token,
        payload.shipping_address,
        payload.billing_address,
        payload.billing_is_same_as_shipping,
    )
    return SuccessResponse(data=session, message="Shipping address updated successfully")

@router.put("/checkout/sessions/{token}/shipping-method", response_model=SuccessResponse[CheckoutSession])
@limiter.limit(settings.RATE_LIMIT)
async def select_shipping_method(request: Request, payload: ShippingMethodSelect, token: str = Depends(valid_token), services: Services = Depends(get_services)):
    session = await services.checkout.select_shipping_method(
        token, payload.shipping_method_id, payload.shipping_cost
    )
    return SuccessResponse(data=session, message="Shipping method selected successfully")

@router.post("/checkout/sessions/{token}/complete", response_model=SuccessResponse[CheckoutSession])
@limiter.limit(settings.RATE_LIMIT)
async def complete_checkout(request: Request, payload: CheckoutComplete, token: str = Depends(valid_token), services: Services = Depends(get_services)):
    session = await services.checkout.complete(token, payload.payment_method_type, payload.order_id)
    return SuccessResponse(data=session, message="Checkout completed successfully")

@router.delete("/checkout/sessions/{token}", response_model=SuccessResponse[Any])
@limiter.limit(settings.RATE_LIMIT)
async def delete_checkout_session(request: Request, token: str = Depends(valid_token), services: Services = Depends(get_services)):
    await services.checkout.delete(token)
    return SuccessResponse(message="Checkout session deleted")

@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    db_status = "unknown"
    redis_status = "unknown"

    mongodb_client = getattr(request.app.state, "mongodb_client", None)
    if mongodb_client is not None:
        try:
            await mongodb_client.admin.command('ping')
            db_status = "connected"
        except Exception:
            db_status = "disconnected"

    redis_client = getattr(request.app.state, "redis", None)
    if redis_client is not None:
        try:
            await redis_client.ping()
            redis_status = "connected"
        except Exception:
            redis_status = "disconnected"

    overall_status = "healthy" if (
        db_status == "connected" and redis_status == "connected"
    ) else "unhealthy"

    if overall_status == "unhealthy":
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service Unhealthy"
        )

    return HealthResponse(
        service=SERVICE_NAME,
        status=overall_status,
        timestamp=datetime.utcnow(),
        version="1.0.0",
        database=db_status,
        dependencies={"redis": redis_status}
    )


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the application. Passing ``services`` skips the MongoDB/Redis wiring."""
    app = FastAPI(title="Cart Service")
    app.state.services = services

    # Security Setup
    setup_rate_limiting(app)
    app.add_middleware(SecurityHeadersMiddleware)

    # Middleware
    app.add_middleware(RequestLoggingMiddleware, service_name=SERVICE_NAME)

    # CORS Configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        if exc.status_code >= 500:
            logger.error(exc.detail, extra={"code": exc.code})
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(error=exc.detail, details={"code": exc.code}).model_dump(),
            headers=exc.headers,
        )

    @app.on_event("startup")
    async def startup_clients():
        if app.state.services is not None:
            return
        app.state.mongodb_client = get_db_client()
        app.state.mongodb = app.state.mongodb_client[settings.MONGO_DB_NAME]
        app.state.redis = get_redis_client()

        carts = MongoCartRepository(app.state.mongodb)
        await carts.create_indexes()
        app.state.services = build_services(
            MongoCatalog(app.state.mongodb),
            carts,
            RedisSessionStore(app.state.redis),
        )

    @app.on_event("shutdown")
    async def shutdown_clients():
        mongodb_client = getattr(app.state, "mongodb_client", None)
        if mongodb_client is not None:
            mongodb_client.close()
        redis_client = getattr(app.state, "redis", None)
        if redis_client is not None:
            await redis_client.aclose()

    app.include_router(router)
    return app


app = create_app()
