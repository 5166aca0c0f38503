"""
Coupon Service

Handles validation, discount calculation, redemption and admin management.
Redemption is a single conditional UPDATE, so concurrent checkouts can never
push usage past the limit.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update, or_
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.exceptions import (
    CouponNotFoundError,
    InvalidCouponError,
    MinimumOrderNotMetError,
    NotFoundError,
    UsageLimitReachedError,
)
from storefront.core.utils import as_utc, to_money, utcnow
from storefront.models.coupon import Coupon
from storefront.schemas.coupon import CouponCreate

logger = logging.getLogger(__name__)


def normalize_code(code: str) -> str:
    return code.strip().upper()


class CouponService:
    """
    Coupon validation and bookkeeping.

    Rules, in the order they are checked:
    - Code must exist (case-insensitive)
    - Coupon must be active and inside its date window
    - Usage count must be below the limit, when one is set
    - Subtotal must reach the minimum order value
    """

    async def get_by_code(self, db: AsyncSession, code: str) -> Optional[Coupon]:
        result = await db.execute(
            select(Coupon).where(Coupon.code == normalize_code(code))
        )
        return result.scalar_one_or_none()

    def check_rules(self, coupon: Coupon, subtotal: Decimal) -> None:
        """Raise the first rule the coupon breaks against `subtotal`."""
        now = utcnow()

        if not coupon.is_active:
            raise InvalidCouponError("This coupon is no longer active", details={"coupon_code": coupon.code})

        if now < as_utc(coupon.starts_at):
            raise InvalidCouponError("This coupon is not yet active", details={"coupon_code": coupon.code})

        if now > as_utc(coupon.ends_at):
            raise InvalidCouponError("This coupon has expired", details={"coupon_code": coupon.code})

        if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
            raise UsageLimitReachedError(details={"coupon_code": coupon.code})

        minimum = coupon.minimum_order_value or Decimal("0")
        if subtotal < minimum:
            raise MinimumOrderNotMetError(minimum, subtotal, details={"coupon_code": coupon.code})

    def calculate_discount(self, coupon: Coupon, subtotal: Decimal) -> Decimal:
        """
        Discount for `subtotal`.

        Percentage coupons are rounded to currency precision and capped at
        maximum_discount. Fixed coupons never exceed the subtotal.
        """
        if coupon.discount_type == "percentage":
            discount = to_money(subtotal * Decimal(coupon.discount_value) / Decimal("100"))
            if coupon.maximum_discount is not None:
                discount = min(discount, to_money(coupon.maximum_discount))
        elif coupon.discount_type == "fixed":
            discount = min(to_money(coupon.discount_value), to_money(subtotal))
        else:
            raise InvalidCouponError(
                f"Unsupported discount type '{coupon.discount_type}'",
                details={"coupon_code": coupon.code},
            )
        return max(discount, Decimal("0.00"))

    async def validate_coupon(
        self,
        db: AsyncSession,
        code: str,
        subtotal: Decimal,
    ) -> Tuple[Coupon, Decimal]:
        """
        Validate a coupon code against a cart subtotal.

        Returns:
            Tuple of (coupon, discount_amount)

        Raises:
            CouponNotFoundError, InvalidCouponError, UsageLimitReachedError,
            MinimumOrderNotMetError
        """
        coupon = await self.get_by_code(db, code)
        if not coupon:
            raise CouponNotFoundError(normalize_code(code))

        self.check_rules(coupon, subtotal)
        return coupon, self.calculate_discount(coupon, subtotal)

    async def redeem(self, db: AsyncSession, code: str) -> None:
        """
        Count one use of an active, in-window coupon.

        The rules are re-checked inside the UPDATE itself, so a coupon
        deactivated, expired or exhausted since validation is not redeemed.
        """
        code = normalize_code(code)
        now = utcnow()
        result = await db.execute(
            update(Coupon)
            .where(
                Coupon.code == code,
                Coupon.is_active.is_(True),
                Coupon.starts_at <= now,
                Coupon.ends_at >= now,
                or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
            )
            .values(usage_count=Coupon.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            return

        # Re-read the row; the identity map may hold the pre-update state
        coupon = (await db.execute(
            select(Coupon)
            .where(Coupon.code == code)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if coupon is None:
            raise CouponNotFoundError(code)

        logger.info(f"Coupon {code} redemption rejected")
        if not coupon.is_active or not (as_utc(coupon.starts_at) <= now <= as_utc(coupon.ends_at)):
            raise InvalidCouponError("This coupon is no longer valid", details={"coupon_code": code})
        raise UsageLimitReachedError(details={"coupon_code": code})

    # Admin

    async def create_coupon(self, db: AsyncSession, data: CouponCreate) -> Coupon:
        existing = await self.get_by_code(db, data.code)
        if existing:
            raise InvalidCouponError(
                f"Coupon code '{data.code}' already exists",
                code="COUPON_CODE_TAKEN",
                details={"coupon_code": data.code},
            )
        coupon = Coupon(**data.model_dump())
        db.add(coupon)
        await db.flush()
        logger.info(f"Coupon {coupon.code} created ({coupon.discount_type} {coupon.discount_value})")
        return coupon

    async def list_coupons(self, db: AsyncSession, active_only: bool = False) -> List[Coupon]:
        query = select(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc())
        if active_only:
            query = query.where(Coupon.is_active.is_(True))
        result = await db.execute(query)
        return list(result.scalars().all())

    async def toggle_active(self, db: AsyncSession, coupon_id: int) -> Coupon:
        coupon = await db.get(Coupon, coupon_id)
        if not coupon:
            raise NotFoundError("Coupon not found", details={"coupon_id": coupon_id})
        coupon.is_active = not coupon.is_active
        await db.flush()
        return coupon


coupon_service = CouponService()


def get_coupon_service() -> CouponService:
    return coupon_service
