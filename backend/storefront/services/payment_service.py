"""
Payment providers and payment verification

Gateways hand an order's total to a provider and return the provider's
order/intent id. Verification is the server side of the round trip:
Razorpay signs `"{order_id}|{payment_id}"` with the key secret
(HMAC-SHA256, hex) and the signature is checked here before an order is
marked paid. Stripe reports outcomes through signed webhooks.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import httpx
import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core import background
from storefront.core.config import settings
from storefront.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PaymentProviderError,
    PaymentVerificationFailedError,
)
from storefront.core.utils import to_minor_units
from storefront.models.order import Order
from storefront.models.user import User
from storefront.services.email_provider import EmailProvider
from storefront.services.order_status import (
    OrderEvent,
    OrderStatus,
    PaymentStatus,
    append_timeline,
    next_status,
    set_payment_status,
)

logger = logging.getLogger(__name__)


@dataclass
class ProviderOrder:
    provider: str
    provider_order_id: str
    amount_minor: int
    currency: str
    client_secret: Optional[str] = None
    public_key: Optional[str] = None


class PaymentGateway(Protocol):
    """What order placement needs from a payment provider."""

    provider: str

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> ProviderOrder:
        ...


def _digest_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def razorpay_signature(order_id: str, payment_id: str, secret: str) -> str:
    """Hex HMAC-SHA256 of `order_id|payment_id`."""
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


class RazorpayGateway:
    """Razorpay Orders API over HTTP basic auth."""

    provider = "razorpay"

    def __init__(
        self,
        key_id: Optional[str] = None,
        key_secret: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.key_id = settings.RAZORPAY_KEY_ID if key_id is None else key_id
        self.key_secret = settings.RAZORPAY_KEY_SECRET if key_secret is None else key_secret
        self.base_url = (base_url or settings.RAZORPAY_API_BASE).rstrip("/")
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=30.0,
                auth=(self.key_id, self.key_secret),
                headers={"Content-Type": "application/json"},
            )
        return self._http_client

    async def close(self):
        """Explicit cleanup method."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> ProviderOrder:
        if not self.is_configured:
            raise PaymentProviderError("Razorpay is not configured", provider=self.provider)

        amount_minor = to_minor_units(amount)
        http = await self._get_http_client()
        try:
            resp = await http.post(
                f"{self.base_url}/orders",
                json={"amount": amount_minor, "currency": currency, "receipt": receipt},
            )
        except httpx.HTTPError as e:
            logger.error(f"Razorpay order creation failed for {receipt}: {e}")
            raise PaymentProviderError("Payment provider unavailable", provider=self.provider) from e

        if resp.status_code not in (200, 201):
            logger.error(f"Razorpay rejected order {receipt}: {resp.status_code} - {resp.text}")
            raise PaymentProviderError(
                "Payment provider rejected the order",
                provider=self.provider,
                details={"status": resp.status_code},
            )

        data = resp.json()
        return ProviderOrder(
            provider=self.provider,
            provider_order_id=data["id"],
            amount_minor=amount_minor,
            currency=currency,
            public_key=self.key_id,
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            logger.error("Razorpay signature check attempted without RAZORPAY_KEY_SECRET")
            return False
        expected = razorpay_signature(order_id, payment_id, self.key_secret)
        return _digest_equal(expected, signature or "")


class StripeGateway:
    """Stripe PaymentIntents."""

    provider = "stripe"

    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.secret_key = settings.STRIPE_SECRET_KEY if secret_key is None else secret_key
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET if webhook_secret is None else webhook_secret

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> ProviderOrder:
        if not self.secret_key:
            raise PaymentProviderError("Stripe is not configured", provider=self.provider)

        amount_minor = to_minor_units(amount)
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.secret_key,
                amount=amount_minor,
                currency=currency.lower(),
                metadata={"order_number": receipt},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe PaymentIntent creation failed for {receipt}: {e}")
            raise PaymentProviderError("Payment provider rejected the order", provider=self.provider) from e

        return ProviderOrder(
            provider=self.provider,
            provider_order_id=intent["id"],
            amount_minor=amount_minor,
            currency=currency,
            client_secret=intent["client_secret"],
        )

    def construct_event(self, payload: bytes, sig_header: str) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise PaymentProviderError("Stripe webhook secret is not configured", provider=self.provider)
        try:
            return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except ValueError as e:
            logger.warning(f"Stripe webhook invalid payload: {e}")
            raise PaymentVerificationFailedError("Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe webhook signature verification failed: {e}")
            raise PaymentVerificationFailedError("Invalid webhook signature") from e


class PaymentService:
    """Confirms payments reported by clients and providers."""

    def __init__(
        self,
        razorpay: Optional[RazorpayGateway] = None,
        stripe_gateway: Optional[StripeGateway] = None,
        notifier: Optional[EmailProvider] = None,
    ):
        self.razorpay = razorpay or RazorpayGateway()
        self.stripe = stripe_gateway or StripeGateway()
        self.notifier = notifier

    async def _load_order(self, db: AsyncSession, order_id: int) -> Order:
        order = await db.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        return order

    async def verify_razorpay_payment(
        self,
        db: AsyncSession,
        user: User,
        order_id: int,
        razorpay_order_id: str,
        razorpay_payment_id: str,
        signature: str,
    ) -> Order:
        """
        Check the client-reported payment and settle the order.

        A bad signature marks the payment failed, commits that record, and
        raises PaymentVerificationFailedError. Order status, stock and coupon
        usage are left as they were.
        """
        order = await self._load_order(db, order_id)
        if order.user_id != user.id and not user.is_admin:
            raise ForbiddenError("Not authorized to verify this order", details={"order_id": order_id})

        if order.payment_status == PaymentStatus.PAID.value:
            raise InvalidTransitionError(
                order.payment_status,
                PaymentStatus.PAID.value,
                message="Order has already been paid",
            )

        valid = (
            order.payment_method == "razorpay"
            and order.razorpay_order_id is not None
            and _digest_equal(order.razorpay_order_id, razorpay_order_id)
            and self.razorpay.verify_signature(razorpay_order_id, razorpay_payment_id, signature)
        )

        if not valid:
            set_payment_status(
                order,
                PaymentStatus.FAILED,
                actor_id=user.id,
                note="Payment verification failed",
            )
            await db.commit()
            logger.warning(
                "Payment verification failed for order %s (payment %s)",
                order.order_number, razorpay_payment_id,
            )
            raise PaymentVerificationFailedError(order_id=order.id)

        # Check the order machine before mutating either status
        if order.status != OrderStatus.CONFIRMED.value:
            next_status(order.status, OrderEvent.CONFIRM)
        set_payment_status(order, PaymentStatus.PAID, record=False)
        if order.status != OrderStatus.CONFIRMED.value:
            order.status = OrderStatus.CONFIRMED.value
        order.razorpay_payment_id = razorpay_payment_id
        order.razorpay_signature = signature
        append_timeline(order, "Payment received via Razorpay", user.id)
        await db.commit()

        logger.info("Payment verified for order %s (payment %s)", order.order_number, razorpay_payment_id)
        self._notify(order, user)
        return order

    async def handle_stripe_event(self, db: AsyncSession, payload: bytes, sig_header: str) -> str:
        """Apply a verified Stripe webhook. Returns a short status string."""
        event = self.stripe.construct_event(payload, sig_header)
        event_type = event.get("type")
        logger.info(f"Stripe webhook received: {event_type} (event_id={event.get('id')})")

        if event_type not in ("payment_intent.succeeded", "payment_intent.payment_failed"):
            return "ignored"

        intent = event["data"]["object"]
        result = await db.execute(
            select(Order).where(Order.stripe_payment_intent_id == intent["id"])
        )
        order = result.scalar_one_or_none()
        if not order:
            logger.warning(f"Stripe webhook for unknown payment intent {intent['id']}")
            return "unknown_intent"

        if event_type == "payment_intent.succeeded":
            if order.payment_status == PaymentStatus.PAID.value:
                return "already_processed"
            set_payment_status(order, PaymentStatus.PAID, record=False)
            if order.status == OrderStatus.PENDING.value:
                order.status = OrderStatus.CONFIRMED.value
            append_timeline(order, "Payment received via Stripe")
            await db.commit()
            user = await db.get(User, order.user_id)
            self._notify(order, user)
            return "paid"

        if order.payment_status in (PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value):
            logger.warning(f"Ignoring payment failure for settled order {order.order_number}")
            return "ignored"
        set_payment_status(order, PaymentStatus.FAILED, note="Stripe payment failed")
        await db.commit()
        return "failed"

    def _notify(self, order: Order, user: Optional[User]) -> None:
        if self.notifier is None or user is None:
            return
        background.spawn(
            self.notifier.send_order_confirmation(order, user),
            name=f"order-confirmation-{order.order_number}",
        )
