"""
Tests for atomic stock reservation.
"""
import asyncio

import pytest

from storefront.core.exceptions import InsufficientStockError, NotFoundError
from storefront.services.stock_service import StockService


@pytest.fixture
def stock():
    return StockService()


class TestReserve:

    @pytest.mark.asyncio
    async def test_reserve_and_release_product_stock(self, stock, db, seed):
        product = await seed.product(stock=5)

        await stock.reserve(db, product.id, None, 3)
        assert await stock.available(db, product.id) == 2

        await stock.release(db, product.id, None, 3)
        assert await stock.available(db, product.id) == 5

    @pytest.mark.asyncio
    async def test_rejection_reports_available_and_changes_nothing(self, stock, db, seed):
        product = await seed.product(stock=2, title="Poster")

        with pytest.raises(InsufficientStockError) as exc_info:
            await stock.reserve(db, product.id, None, 3, title="Poster")

        assert exc_info.value.available_qty == 2
        assert exc_info.value.requested_qty == 3
        assert "Poster" in exc_info.value.message
        assert await stock.available(db, product.id) == 2

    @pytest.mark.asyncio
    async def test_variant_line_only_touches_variant(self, stock, db, seed):
        product = await seed.product(stock=7, variants=[{"sku": "M", "stock": 4}])

        await stock.reserve(db, product.id, "M", 4)

        assert await stock.available(db, product.id, "M") == 0
        assert await stock.available(db, product.id) == 7
        with pytest.raises(InsufficientStockError):
            await stock.reserve(db, product.id, "M", 1)

    @pytest.mark.asyncio
    async def test_unknown_target(self, stock, db, seed):
        product = await seed.product()
        with pytest.raises(NotFoundError):
            await stock.reserve(db, 9999, None, 1)
        with pytest.raises(NotFoundError):
            await stock.release(db, product.id, "NOPE", 1)

    @pytest.mark.asyncio
    async def test_quantity_must_be_positive(self, stock, db, seed):
        product = await seed.product()
        with pytest.raises(ValueError):
            await stock.reserve(db, product.id, None, 0)


@pytest.mark.asyncio
async def test_concurrent_reservations_of_last_unit(stock, session_factory, seed):
    product = await seed.product(stock=1)

    async def attempt() -> bool:
        async with session_factory() as session:
            try:
                await stock.reserve(session, product.id, None, 1)
                await session.commit()
                return True
            except InsufficientStockError:
                await session.rollback()
                return False

    results = await asyncio.gather(attempt(), attempt())

    assert sorted(results) == [False, True]
    async with session_factory() as session:
        assert await stock.available(session, product.id) == 0
