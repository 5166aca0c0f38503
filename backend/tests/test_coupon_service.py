"""
Tests for coupon validation, discount math and redemption.
"""
from datetime import timedelta
from decimal import Decimal

import pytest
from pydantic import ValidationError

from storefront.core.exceptions import (
    CouponNotFoundError,
    InvalidCouponError,
    MinimumOrderNotMetError,
    NotFoundError,
    UsageLimitReachedError,
)
from storefront.core.utils import utcnow
from storefront.models.coupon import Coupon
from storefront.schemas.coupon import CouponCreate
from storefront.services.coupon_service import CouponService

D = Decimal


@pytest.fixture
def service():
    return CouponService()


class TestCalculateDiscount:

    def test_percentage_rounds_half_up(self, service):
        coupon = Coupon(code="P15", discount_type="percentage", discount_value=D("15"))
        assert service.calculate_discount(coupon, D("333.33")) == D("50.00")  # 49.9995

    def test_percentage_capped(self, service):
        coupon = Coupon(
            code="HALF", discount_type="percentage", discount_value=D("50"), maximum_discount=D("100")
        )
        assert service.calculate_discount(coupon, D("1000.00")) == D("100.00")
        assert service.calculate_discount(coupon, D("150.00")) == D("75.00")

    def test_fixed_never_exceeds_subtotal(self, service):
        coupon = Coupon(code="FLAT500", discount_type="fixed", discount_value=D("500"))
        assert service.calculate_discount(coupon, D("200.00")) == D("200.00")
        assert service.calculate_discount(coupon, D("800.00")) == D("500.00")


class TestValidateCoupon:

    @pytest.mark.asyncio
    async def test_lookup_is_case_insensitive(self, service, db, seed):
        await seed.coupon(code="SAVE10")
        coupon, discount = await service.validate_coupon(db, "  save10 ", D("200.00"))
        assert coupon.code == "SAVE10"
        assert discount == D("20.00")

    @pytest.mark.asyncio
    async def test_unknown_code(self, service, db):
        with pytest.raises(CouponNotFoundError) as exc_info:
            await service.validate_coupon(db, "NOPE", D("100"))
        assert isinstance(exc_info.value, NotFoundError)
        assert exc_info.value.details["coupon_code"] == "NOPE"

    @pytest.mark.asyncio
    async def test_inactive(self, service, db, seed):
        await seed.coupon(code="OFF", is_active=False)
        with pytest.raises(InvalidCouponError):
            await service.validate_coupon(db, "OFF", D("100"))

    @pytest.mark.asyncio
    async def test_expired(self, service, db, seed):
        now = utcnow()
        await seed.coupon(code="OLD", starts_at=now - timedelta(days=10), ends_at=now - timedelta(days=1))
        with pytest.raises(InvalidCouponError) as exc_info:
            await service.validate_coupon(db, "OLD", D("100"))
        assert "expired" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_not_started(self, service, db, seed):
        now = utcnow()
        await seed.coupon(code="SOON", starts_at=now + timedelta(days=1), ends_at=now + timedelta(days=5))
        with pytest.raises(InvalidCouponError):
            await service.validate_coupon(db, "SOON", D("100"))

    @pytest.mark.asyncio
    async def test_usage_limit_reached(self, service, db, seed):
        await seed.coupon(code="ONCE", usage_limit=1, usage_count=1)
        with pytest.raises(UsageLimitReachedError):
            await service.validate_coupon(db, "ONCE", D("100"))

    @pytest.mark.asyncio
    async def test_minimum_order(self, service, db, seed):
        await seed.coupon(code="BIG", minimum_order_value="500")
        with pytest.raises(MinimumOrderNotMetError) as exc_info:
            await service.validate_coupon(db, "BIG", D("499.99"))
        assert exc_info.value.minimum == D("500")

        _, discount = await service.validate_coupon(db, "BIG", D("500.00"))
        assert discount == D("50.00")


class TestRedeem:

    @pytest.mark.asyncio
    async def test_redeem_counts_until_limit(self, service, db, seed):
        coupon = await seed.coupon(code="TWICE", usage_limit=2)

        await service.redeem(db, "twice")
        await service.redeem(db, "TWICE")
        with pytest.raises(UsageLimitReachedError):
            await service.redeem(db, "TWICE")
        await db.commit()

        await db.refresh(coupon)
        assert coupon.usage_count == 2

    @pytest.mark.asyncio
    async def test_unlimited_coupon(self, service, db, seed):
        coupon = await seed.coupon(code="ALWAYS")
        for _ in range(3):
            await service.redeem(db, "ALWAYS")
        await db.commit()

        await db.refresh(coupon)
        assert coupon.usage_count == 3

    @pytest.mark.asyncio
    async def test_redeem_rejects_deactivated_coupon(self, service, db, seed):
        coupon = await seed.coupon(code="PAUSED")
        coupon.is_active = False
        await db.commit()

        with pytest.raises(InvalidCouponError):
            await service.redeem(db, "PAUSED")
        await db.commit()

        await db.refresh(coupon)
        assert coupon.usage_count == 0

    @pytest.mark.asyncio
    async def test_redeem_rejects_expired_coupon(self, service, db, seed):
        now = utcnow()
        coupon = await seed.coupon(
            code="LASTWEEK",
            starts_at=now - timedelta(days=10),
            ends_at=now - timedelta(days=1),
        )

        with pytest.raises(InvalidCouponError):
            await service.redeem(db, "LASTWEEK")
        await db.commit()

        await db.refresh(coupon)
        assert coupon.usage_count == 0

    @pytest.mark.asyncio
    async def test_redeem_unknown_code(self, service, db):
        with pytest.raises(CouponNotFoundError):
            await service.redeem(db, "NOPE")


class TestAdmin:

    @pytest.mark.asyncio
    async def test_create_normalizes_code_and_rejects_duplicates(self, service, db):
        now = utcnow()
        data = CouponCreate(
            code=" welcome ",
            discount_type="fixed",
            discount_value=D("100"),
            starts_at=now,
            ends_at=now + timedelta(days=7),
        )
        coupon = await service.create_coupon(db, data)
        await db.commit()
        assert coupon.code == "WELCOME"

        with pytest.raises(InvalidCouponError) as exc_info:
            await service.create_coupon(db, data)
        assert exc_info.value.code == "COUPON_CODE_TAKEN"

    def test_schema_rejects_inverted_window(self):
        now = utcnow()
        with pytest.raises(ValueError):
            CouponCreate(
                code="BAD",
                discount_type="percentage",
                discount_value=D("10"),
                starts_at=now,
                ends_at=now - timedelta(days=1),
            )

    def test_schema_accepts_naive_and_aware_datetimes(self):
        now = utcnow()
        data = CouponCreate(
            code="MIXED",
            discount_type="fixed",
            discount_value=D("50"),
            starts_at=now.replace(tzinfo=None),
            ends_at=now + timedelta(days=1),
        )
        assert data.starts_at.tzinfo is not None
        assert data.ends_at > data.starts_at

    def test_schema_rejects_inverted_mixed_window(self):
        now = utcnow()
        with pytest.raises(ValidationError):
            CouponCreate(
                code="MIXED",
                discount_type="fixed",
                discount_value=D("50"),
                starts_at=now.replace(tzinfo=None),
                ends_at=now - timedelta(days=1),
            )

    @pytest.mark.asyncio
    async def test_toggle(self, service, db, seed):
        coupon = await seed.coupon(code="FLIP")
        toggled = await service.toggle_active(db, coupon.id)
        assert toggled.is_active is False

        with pytest.raises(NotFoundError):
            await service.toggle_active(db, 9999)
