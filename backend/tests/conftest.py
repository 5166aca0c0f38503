"""
Pytest configuration and fixtures for storefront tests.

Each test gets a fresh SQLite database file so service tests run against
real SQL (conditional UPDATEs, constraints, transactions).
"""
import os
import tempfile
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

import pytest
import pytest_asyncio

# Set test environment before importing app modules
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'storefront_test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["SENDGRID_API_KEY"] = ""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.core import background
from storefront.core.database import Base
from storefront.core.utils import to_minor_units, utcnow
import storefront.models  # noqa: F401
from storefront.models import Coupon, Product, ProductVariant, User
from storefront.schemas.order import Address, OrderCreate
from storefront.services.email_provider import SendResult
from storefront.services.order_service import OrderService
from storefront.services.payment_service import ProviderOrder


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


class Seed:
    """Committed test rows."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._n = 0

    def _next(self) -> int:
        self._n += 1
        return self._n

    async def user(self, is_admin: bool = False, **kwargs) -> User:
        n = self._next()
        user = User(
            email=kwargs.pop("email", f"user{n}@example.com"),
            name=kwargs.pop("name", f"User {n}"),
            phone=kwargs.pop("phone", "9876543210"),
            is_admin=is_admin,
            **kwargs,
        )
        self.db.add(user)
        await self.db.commit()
        return user

    async def product(
        self,
        price: str = "100.00",
        stock: int = 10,
        variants: Optional[List[dict]] = None,
        **kwargs,
    ) -> Product:
        n = self._next()
        product = Product(
            sku=kwargs.pop("sku", f"SKU-{n}"),
            title=kwargs.pop("title", f"Product {n}"),
            price=Decimal(price),
            stock=stock,
            image_url=kwargs.pop("image_url", f"https://cdn.example.com/{n}.jpg"),
            variants=[
                ProductVariant(
                    sku=v["sku"],
                    price_delta=Decimal(v.get("price_delta", "0")),
                    stock=v.get("stock", 0),
                    attributes=v.get("attributes", {}),
                )
                for v in (variants or [])
            ],
            **kwargs,
        )
        self.db.add(product)
        await self.db.commit()
        return product

    async def coupon(
        self,
        code: str = "SAVE10",
        discount_type: str = "percentage",
        discount_value: str = "10",
        **kwargs,
    ) -> Coupon:
        now = utcnow()
        coupon = Coupon(
            code=code,
            discount_type=discount_type,
            discount_value=Decimal(discount_value),
            minimum_order_value=Decimal(kwargs.pop("minimum_order_value", "0")),
            starts_at=kwargs.pop("starts_at", now - timedelta(days=1)),
            ends_at=kwargs.pop("ends_at", now + timedelta(days=30)),
            **kwargs,
        )
        self.db.add(coupon)
        await self.db.commit()
        return coupon


@pytest.fixture
def seed(db) -> Seed:
    return Seed(db)


class FakeGateway:
    """Records create_order calls and returns a predictable provider id."""

    def __init__(self, provider: str):
        self.provider = provider
        self.calls = []

    async def create_order(self, amount: Decimal, currency: str, receipt: str) -> ProviderOrder:
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt})
        return ProviderOrder(
            provider=self.provider,
            provider_order_id=f"{self.provider}_order_{len(self.calls)}",
            amount_minor=to_minor_units(amount),
            currency=currency,
            client_secret="pi_secret_test" if self.provider == "stripe" else None,
            public_key="rzp_test_key" if self.provider == "razorpay" else None,
        )


class FakeNotifier:
    def __init__(self):
        self.sent = []

    async def send_order_confirmation(self, order, user) -> SendResult:
        self.sent.append((order.order_number, user.email))
        return SendResult(success=True, message_id="test")


class FakeAnalytics:
    def __init__(self):
        self.events = []

    async def track_event(self, event_type, context=None, data=None) -> None:
        self.events.append((event_type, data or {}))


class FailingNotifier:
    def __init__(self):
        self.attempts = 0

    async def send_order_confirmation(self, order, user) -> SendResult:
        self.attempts += 1
        raise RuntimeError("mail relay down")


class FailingAnalytics:
    def __init__(self):
        self.attempts = 0

    async def track_event(self, event_type, context=None, data=None) -> None:
        self.attempts += 1
        raise RuntimeError("analytics store down")


@pytest.fixture
def gateways():
    return {"razorpay": FakeGateway("razorpay"), "stripe": FakeGateway("stripe")}


@pytest_asyncio.fixture
async def notifier():
    notifier = FakeNotifier()
    yield notifier
    # Let scheduled confirmations finish inside this test's loop
    await background.drain()


@pytest.fixture
def analytics():
    return FakeAnalytics()


@pytest_asyncio.fixture
async def failing_notifier():
    notifier = FailingNotifier()
    yield notifier
    await background.drain()


@pytest.fixture
def failing_analytics():
    return FailingAnalytics()


@pytest.fixture
def order_service(gateways, notifier, analytics) -> OrderService:
    return OrderService(gateways=gateways, notifier=notifier, analytics=analytics)


def make_order_request(payment_method: str = "cod", **kwargs) -> OrderCreate:
    return OrderCreate(
        shipping_address=Address(
            full_name="Asha Rao",
            phone="9876543210",
            address_line1="12 MG Road",
            city="Bengaluru",
            state="Karnataka",
            postal_code="560001",
        ),
        payment_method=payment_method,
        **kwargs,
    )


@pytest.fixture
def order_request():
    return make_order_request
