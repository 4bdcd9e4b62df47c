"""Checkout session state machine.

A checkout session lives only in the session store (Redis), never in MongoDB.
It walks shipping -> shipping method -> payment -> completed for authenticated
users and guests alike:

    SHIPPING --update_shipping_address--> SHIPPING_METHOD
    SHIPPING_METHOD --select_shipping_method--> PAYMENT
    PAYMENT --complete--> COMPLETED

Expiry is not a stored state. A session read after ``expires_at`` is treated as
expired even when the store still holds the key. ``expires_at`` is fixed at
creation while the store TTL is re-applied on every write.

Each transition reloads the whole session, applies a pure transition function
and writes the whole session back; transitions on one token are serialized.
"""
import logging
import re
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from functools import partial
from typing import Callable, Dict, List, Optional

from shared.logging_config import mask_token
from shared.utils import settings
from app.cart_service import CartManager
from app.errors import (
    CartEmpty,
    ItemsRequired,
    SessionAlreadyCompleted,
    SessionExpired,
    SessionNotFound,
    ShippingAddressRequired,
    ShippingMethodRequired,
)
from app.locks import KeyedLock
from app.models import (
    Address,
    CartItemDB,
    CheckoutSession,
    CheckoutStatus,
    CheckoutStep,
    CreatedSession,
    PaymentMethodType,
)
from app.pricing import build_snapshot, initial_pricing, with_shipping
from app.resolver import StockResolver
from app.session_store import SessionStore

logger = logging.getLogger(__name__)

SESSION_TOKEN_PREFIX = "chk_sess_"
SESSION_TOKEN_BYTES = 32
SESSION_KEY_PREFIX = "checkout:session:"
SESSION_TOKEN_PATTERN = re.compile(r"^chk_sess_[a-f0-9]{64}$", re.IGNORECASE)


def generate_session_token() -> str:
    return SESSION_TOKEN_PREFIX + secrets.token_hex(SESSION_TOKEN_BYTES)


def is_valid_session_token(token: str) -> bool:
    return bool(token) and SESSION_TOKEN_PATTERN.match(token) is not None


def session_key(token: str) -> str:
    return SESSION_KEY_PREFIX + token


# --- Transitions ---
def _evolve(session: CheckoutSession, now: datetime, **updates) -> CheckoutSession:
    # Re-validate so step invariants are checked on every transition
    data = session.model_dump()
    data.update(updates)
    data["updated_at"] = now
    return CheckoutSession.model_validate(data)


def apply_shipping_address(
    session: CheckoutSession,
    now: datetime,
    shipping_address: Address,
    billing_address: Optional[Address] = None,
    billing_is_same_as_shipping: bool = False,
) -> CheckoutSession:
    guest_email = session.guest_email
    if session.user_id is None and not guest_email and shipping_address.email:
        guest_email = shipping_address.email

    # Address edits at a later step keep the step and the chosen shipping method
    step = session.current_step
    if step == CheckoutStep.SHIPPING:
        step = CheckoutStep.SHIPPING_METHOD

    return _evolve(
        session,
        now,
        shipping_address=shipping_address,
        billing_address=shipping_address if billing_is_same_as_shipping else billing_address,
        guest_email=guest_email,
        current_step=step,
    )


def apply_shipping_method(
    session: CheckoutSession,
    now: datetime,
    shipping_method_id: str,
    shipping_cost: Decimal,
) -> CheckoutSession:
    if session.shipping_address is None:
        raise ShippingAddressRequired()

    return _evolve(
        session,
        now,
        shipping_method_id=shipping_method_id,
        pricing=with_shipping(session.pricing, Decimal(shipping_cost)),
        current_step=CheckoutStep.PAYMENT,
    )


def apply_completion(
    session: CheckoutSession,
    now: datetime,
    payment_method_type: PaymentMethodType,
    order_id: str,
) -> CheckoutSession:
    if session.shipping_address is None:
        raise ShippingAddressRequired()
    if not session.shipping_method_id:
        raise ShippingMethodRequired()

    return _evolve(
        session,
        now,
        payment_method_type=payment_method_type,
        order_id=order_id,
        status=CheckoutStatus.COMPLETED,
        current_step=CheckoutStep.COMPLETED,
        completed_at=now,
    )


class CheckoutSessionService:
    def __init__(
        self,
        store: SessionStore,
        cart_manager: CartManager,
        resolver: StockResolver,
        ttl_seconds: int = settings.CHECKOUT_SESSION_TTL_SECONDS,
        clock: Callable[[], datetime] = datetime.utcnow,
        locks: Optional[KeyedLock] = None,
    ):
        self.store = store
        self.cart_manager = cart_manager
        self.resolver = resolver
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.locks = locks or KeyedLock()

    async def create(
        self,
        user_id: Optional[str] = None,
        guest_email: Optional[str] = None,
        items: Optional[List[dict]] = None,
    ) -> CreatedSession:
        """Open a session from the user's cart, or from guest ``items`` (``[{sku, quantity}]``).

        Only the token and expiry are returned; the session itself is read with ``get``.
        """
        cart_id = None
        if user_id:
            cart = await self.cart_manager.get_or_create(user_id)
            if not cart.items:
                raise CartEmpty()
            cart_id = cart.id
            lines = cart.items
        elif items:
            lines = await self._resolve_guest_items(items)
        else:
            raise ItemsRequired()

        now = self.clock()
        snapshot = build_snapshot(lines)
        session = CheckoutSession(
            session_token=generate_session_token(),
            user_id=user_id,
            guest_email=guest_email,
            cart_id=cart_id,
            current_step=CheckoutStep.SHIPPING,
            status=CheckoutStatus.ACTIVE,
            cart_snapshot=snapshot,
            pricing=initial_pricing(snapshot),
            expires_at=now + timedelta(seconds=self.ttl_seconds),
            created_at=now,
            updated_at=now,
        )
        await self._save(session)

        logger.info(
            "Checkout session created",
            extra={
                "session_id": mask_token(session.session_token),
                "user_id": user_id,
                "item_count": len(snapshot.items),
            },
        )
        return CreatedSession(session_token=session.session_token, expires_at=session.expires_at)

    async def get(self, token: str) -> CheckoutSession:
        raw = await self.store.get(session_key(token))
        if raw is None:
            raise SessionNotFound()

        session = CheckoutSession.model_validate_json(raw)
        if session.is_expired(self.clock()):
            raise SessionExpired()
        if session.status == CheckoutStatus.COMPLETED:
            raise SessionAlreadyCompleted()
        return session

    async def update_shipping_address(
        self,
        token: str,
        shipping_address: Address,
        billing_address: Optional[Address] = None,
        billing_is_same_as_shipping: bool = False,
    ) -> CheckoutSession:
        return await self._transition(token, partial(
            apply_shipping_address,
            shipping_address=shipping_address,
            billing_address=billing_address,
            billing_is_same_as_shipping=billing_is_same_as_shipping,
        ))

    async def select_shipping_method(
        self, token: str, shipping_method_id: str, shipping_cost: Decimal
    ) -> CheckoutSession:
        return await self._transition(token, partial(
            apply_shipping_method,
            shipping_method_id=shipping_method_id,
            shipping_cost=shipping_cost,
        ))

    async def complete(
        self, token: str, payment_method_type: PaymentMethodType, order_id: str
    ) -> CheckoutSession:
        session = await self._transition(token, partial(
            apply_completion,
            payment_method_type=payment_method_type,
            order_id=order_id,
        ))
        logger.info(
            "Checkout session completed",
            extra={"session_id": mask_token(token), "user_id": session.user_id},
        )
        return session

    async def delete(self, token: str) -> None:
        async with self.locks.hold(token):
            await self.store.delete(session_key(token))
        logger.info("Checkout session deleted", extra={"session_id": mask_token(token)})

    async def _transition(
        self, token: str, apply: Callable[..., CheckoutSession]
    ) -> CheckoutSession:
        async with self.locks.hold(token):
            session = await self.get(token)
            updated = apply(session, self.clock())
            await self._save(updated)

        logger.info(
            "Checkout session updated",
            extra={"session_id": mask_token(token), "step": updated.current_step.value},
        )
        return updated

    async def _save(self, session: CheckoutSession):
        await self.store.set(
            session_key(session.session_token),
            session.model_dump_json(),
            self.ttl_seconds,
        )

    async def _resolve_guest_items(self, items: List[dict]) -> List[CartItemDB]:
        # Duplicate SKUs collapse into one line so SKUs stay unique in the snapshot
        quantities: Dict[str, int] = {}
        for item in items:
            quantities[item["sku"]] = quantities.get(item["sku"], 0) + int(item["quantity"])

        return [
            await self.resolver.resolve_by_sku(sku, quantity)
            for sku, quantity in quantities.items()
        ]
