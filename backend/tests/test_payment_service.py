"""
Tests for payment gateways and payment verification.
"""
import hashlib
import hmac
import json
from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio

from storefront.core import background
from storefront.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PaymentProviderError,
    PaymentVerificationFailedError,
)
from storefront.models.order import Order
from storefront.services.cart_service import cart_service
from storefront.services.payment_service import (
    PaymentService,
    RazorpayGateway,
    StripeGateway,
    razorpay_signature,
)
from storefront.services.stock_service import stock_service

SECRET = "rzp_test_secret"


def sign(order_id: str, payment_id: str, secret: str = SECRET) -> str:
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def payments(notifier):
    return PaymentService(
        razorpay=RazorpayGateway(key_id="rzp_test_key", key_secret=SECRET),
        stripe_gateway=StripeGateway(secret_key="sk_test_123", webhook_secret="whsec_test"),
        notifier=notifier,
    )


@pytest_asyncio.fixture
async def razorpay_order(order_service, db, seed, order_request):
    user = await seed.user()
    product = await seed.product(price="100.00", stock=5)
    await cart_service.add_item(db, user, product.id, None, 2)
    await db.commit()
    result = await order_service.place_order(db, user, order_request("razorpay"))
    return user, product, result.order


class TestSignature:

    def test_matches_hmac_sha256_hex(self):
        assert razorpay_signature("order_1", "pay_1", SECRET) == sign("order_1", "pay_1")

    def test_verify_signature(self):
        gateway = RazorpayGateway(key_id="k", key_secret=SECRET)
        assert gateway.verify_signature("order_1", "pay_1", sign("order_1", "pay_1"))
        assert not gateway.verify_signature("order_1", "pay_2", sign("order_1", "pay_1"))
        assert not gateway.verify_signature("order_1", "pay_1", "not-hex-ü")

    def test_verify_without_secret_fails_closed(self):
        gateway = RazorpayGateway(key_id="k", key_secret="")
        assert not gateway.verify_signature("order_1", "pay_1", sign("order_1", "pay_1", ""))


class TestVerifyRazorpayPayment:

    @pytest.mark.asyncio
    async def test_valid_signature_settles_order(self, payments, db, razorpay_order, notifier):
        user, _, order = razorpay_order

        settled = await payments.verify_razorpay_payment(
            db, user, order.id, order.razorpay_order_id, "pay_123",
            sign(order.razorpay_order_id, "pay_123"),
        )
        await background.drain()

        assert settled.payment_status == "paid"
        assert settled.status == "confirmed"
        assert settled.razorpay_payment_id == "pay_123"
        assert settled.paid_at is not None
        assert settled.timeline[-1].note == "Payment received via Razorpay"
        assert notifier.sent == [(order.order_number, user.email)]


    @pytest.mark.asyncio
    async def test_failed_confirmation_email_keeps_payment(self, db, razorpay_order, failing_notifier, session_factory):
        user, _, order = razorpay_order
        payments = PaymentService(
            razorpay=RazorpayGateway(key_id="rzp_test_key", key_secret=SECRET),
            notifier=failing_notifier,
        )

        settled = await payments.verify_razorpay_payment(
            db, user, order.id, order.razorpay_order_id, "pay_9", sign(order.razorpay_order_id, "pay_9"),
        )
        await background.drain()

        assert settled.payment_status == "paid"
        assert failing_notifier.attempts == 1
        async with session_factory() as session:
            stored = await session.get(Order, order.id)
            assert stored.payment_status == "paid"
            assert stored.status == "confirmed"

    @pytest.mark.asyncio
    async def test_tampered_signature(self, payments, db, razorpay_order, session_factory, notifier):
        user, product, order = razorpay_order
        entries_before = len(order.timeline)

        with pytest.raises(PaymentVerificationFailedError):
            await payments.verify_razorpay_payment(
                db, user, order.id, order.razorpay_order_id, "pay_123", "0" * 64,
            )

        async with session_factory() as session:
            stored = await session.get(Order, order.id)
            assert stored.payment_status == "failed"
            assert stored.status == "pending"
            assert stored.razorpay_payment_id is None
            assert len(stored.timeline) == entries_before + 1
            assert stored.timeline[-1].note == "Payment verification failed"
            assert await stock_service.available(session, product.id) == 3
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_signature_for_another_order_is_rejected(self, payments, db, razorpay_order):
        user, _, order = razorpay_order
        with pytest.raises(PaymentVerificationFailedError):
            await payments.verify_razorpay_payment(
                db, user, order.id, "order_other", "pay_1", sign("order_other", "pay_1"),
            )

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, payments, db, razorpay_order):
        user, _, order = razorpay_order
        with pytest.raises(PaymentVerificationFailedError):
            await payments.verify_razorpay_payment(db, user, order.id, order.razorpay_order_id, "pay_1", "bad")

        settled = await payments.verify_razorpay_payment(
            db, user, order.id, order.razorpay_order_id, "pay_2", sign(order.razorpay_order_id, "pay_2"),
        )
        assert settled.payment_status == "paid"

    @pytest.mark.asyncio
    async def test_already_paid(self, payments, db, razorpay_order):
        user, _, order = razorpay_order
        signature = sign(order.razorpay_order_id, "pay_1")
        await payments.verify_razorpay_payment(db, user, order.id, order.razorpay_order_id, "pay_1", signature)

        with pytest.raises(InvalidTransitionError):
            await payments.verify_razorpay_payment(db, user, order.id, order.razorpay_order_id, "pay_1", signature)

    @pytest.mark.asyncio
    async def test_ownership_and_existence(self, payments, db, seed, razorpay_order):
        _, _, order = razorpay_order
        stranger = await seed.user()

        with pytest.raises(ForbiddenError):
            await payments.verify_razorpay_payment(db, stranger, order.id, "o", "p", "s")
        with pytest.raises(NotFoundError):
            await payments.verify_razorpay_payment(db, stranger, 9999, "o", "p", "s")


class TestStripeWebhook:

    def _event(self, event_type: str, intent_id: str) -> dict:
        return {"id": "evt_1", "type": event_type, "data": {"object": {"id": intent_id}}}

    @pytest.mark.asyncio
    async def test_succeeded_marks_paid_once(self, payments, order_service, db, seed, order_request):
        user = await seed.user()
        product = await seed.product()
        await cart_service.add_item(db, user, product.id, None, 1)
        await db.commit()
        order = (await order_service.place_order(db, user, order_request("stripe"))).order
        event = self._event("payment_intent.succeeded", order.stripe_payment_intent_id)

        with patch("stripe.Webhook.construct_event", return_value=event) as construct:
            assert await payments.handle_stripe_event(db, b"{}", "t=1,v1=abc") == "paid"
            assert await payments.handle_stripe_event(db, b"{}", "t=1,v1=abc") == "already_processed"

        await background.drain()
        construct.assert_called_with(b"{}", "t=1,v1=abc", "whsec_test")
        assert order.payment_status == "paid"
        assert order.status == "confirmed"

    @pytest.mark.asyncio
    async def test_failed_and_unknown_intents(self, payments, order_service, db, seed, order_request):
        user = await seed.user()
        product = await seed.product()
        await cart_service.add_item(db, user, product.id, None, 1)
        await db.commit()
        order = (await order_service.place_order(db, user, order_request("stripe"))).order

        with patch("stripe.Webhook.construct_event",
                   return_value=self._event("payment_intent.payment_failed", order.stripe_payment_intent_id)):
            assert await payments.handle_stripe_event(db, b"{}", "sig") == "failed"
        assert order.payment_status == "failed"

        with patch("stripe.Webhook.construct_event",
                   return_value=self._event("payment_intent.succeeded", "pi_unknown")):
            assert await payments.handle_stripe_event(db, b"{}", "sig") == "unknown_intent"

        with patch("stripe.Webhook.construct_event", return_value=self._event("charge.refunded", "x")):
            assert await payments.handle_stripe_event(db, b"{}", "sig") == "ignored"

    @pytest.mark.asyncio
    async def test_bad_payload(self, payments, db):
        with patch("stripe.Webhook.construct_event", side_effect=ValueError("bad json")):
            with pytest.raises(PaymentVerificationFailedError):
                await payments.handle_stripe_event(db, b"nope", "sig")


class TestRazorpayGateway:

    @pytest.mark.asyncio
    async def test_create_order_sends_minor_units(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"id": "order_ABC", "amount": seen["body"]["amount"]})

        gateway = RazorpayGateway(key_id="rzp_test_key", key_secret=SECRET, base_url="https://rzp.test/v1")
        gateway._http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), auth=(gateway.key_id, gateway.key_secret)
        )

        provider_order = await gateway.create_order(Decimal("286.50"), "INR", "ORD1")
        await gateway.close()

        assert provider_order.provider_order_id == "order_ABC"
        assert provider_order.public_key == "rzp_test_key"
        assert seen["url"] == "https://rzp.test/v1/orders"
        assert seen["body"] == {"amount": 28650, "currency": "INR", "receipt": "ORD1"}
        assert seen["auth"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_provider_rejection(self):
        gateway = RazorpayGateway(key_id="k", key_secret="s", base_url="https://rzp.test/v1")
        gateway._http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(400, json={"error": {}}))
        )
        with pytest.raises(PaymentProviderError):
            await gateway.create_order(Decimal("10"), "INR", "ORD2")
        await gateway.close()

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        with pytest.raises(PaymentProviderError):
            await RazorpayGateway(key_id="", key_secret="").create_order(Decimal("10"), "INR", "ORD3")
        with pytest.raises(PaymentProviderError):
            await StripeGateway(secret_key="").create_order(Decimal("10"), "INR", "ORD4")
