"""
Storefront Backend
FastAPI application entry point

- Rate limiting with SlowAPI
- Domain errors rendered as structured JSON
- Error sanitization middleware for everything else
- Health endpoint with DB ping
- HTTP client and background task cleanup on shutdown
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.responses import JSONResponse

from storefront import __version__
from storefront.api.deps import get_razorpay_gateway
from storefront.api.routes import admin_orders, cart, checkout, coupons, orders
from storefront.core import background
from storefront.core.config import settings
from storefront.core.database import AsyncSessionLocal, init_models
from storefront.core.error_handler import ErrorSanitizationMiddleware, storefront_error_handler
from storefront.core.exceptions import StorefrontError
from storefront.core.rate_limit import limiter, rate_limit_exceeded_handler
from storefront.services.email_provider import close_email_provider

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.ENVIRONMENT == "development":
        await init_models()
        logger.info("Development database tables ensured")

    logger.info(f"{settings.APP_NAME} {__version__} started ({settings.ENVIRONMENT})")
    yield

    await background.drain()
    await get_razorpay_gateway().close()
    await close_email_provider()
    logger.info(f"{settings.APP_NAME} shut down")


app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Cart, checkout and order management",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(StorefrontError, storefront_error_handler)

app.add_middleware(ErrorSanitizationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cart.router, prefix="/api/cart", tags=["Cart"])
app.include_router(orders.router, prefix="/api/orders", tags=["Orders"])
app.include_router(checkout.router, prefix="/api/checkout", tags=["Checkout"])
app.include_router(admin_orders.router, prefix="/api/admin/orders", tags=["Admin Orders"])
app.include_router(coupons.router, prefix="/api/admin/coupons", tags=["Admin Coupons"])


@app.get("/")
async def root():
    return {
        "message": f"{settings.APP_NAME} API",
        "version": __version__,
        "status": "operational",
    }


@app.get("/health")
async def health_check():
    """Health check with DB ping"""
    db_ok = True
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check DB ping failed: {e}")
        db_ok = False

    body = {
        "status": "healthy" if db_ok else "degraded",
        "database": "ok" if db_ok else "unreachable",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(status_code=200 if db_ok else 503, content=body)
