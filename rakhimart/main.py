import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rakhimart.config import settings
from rakhimart.database import create_db_and_tables
from rakhimart.exceptions import RakhiMartError
from rakhimart.routes import (
    admin_notifications,
    admin_orders,
    admin_settings,
    checkout,
    health,
    user_orders,
    webhooks,
)
from rakhimart.utils.errors import http_error

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Run DB creation ONLY in local
    if settings.ENV == "local":
        create_db_and_tables()
    logger.info(
        f"{settings.STORE_NAME} orders API up: payments={settings.PAYMENT_PROVIDER} "
        f"courier={settings.DELIVERY_PROVIDER} email={settings.EMAIL_PROVIDER}"
    )
    yield

app = FastAPI(title="RakhiMart Orders API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RakhiMartError)
async def service_error_handler(request: Request, exc: RakhiMartError):
    # errors raised while building dependencies never reach a route's try block
    error = http_error(exc)
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=error.status_code, content={"detail": error.detail})


app.include_router(checkout.router, prefix="/checkout", tags=["Checkout"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Payment Webhooks"])
app.include_router(user_orders.router, prefix="/orders", tags=["Orders"])
app.include_router(admin_orders.router, prefix="/admin/orders", tags=["Admin Orders"])
app.include_router(admin_notifications.router, prefix="/admin", tags=["Admin Notifications"])
app.include_router(admin_settings.router, prefix="/admin/settings", tags=["Admin Settings"])
app.include_router(health.router, prefix="/health", tags=["Health"])


@app.get("/")
def root():
    return {
        "checkout_endpoints": [
            "/checkout", "/checkout/quote", "/checkout/orders/{order_number}/payment-session"
        ],
        "webhook_endpoints": [
            "/webhooks/cashfree", "/webhooks/razorpay"
        ],
        "order_endpoints": [
            "/orders", "/orders/stream", "/orders/{order_number}", "/orders/{order_number}/tracking"
        ],
        "admin_order_endpoints": [
            "/admin/orders", "/admin/orders/{order_id}", "/admin/orders/{order_id}/status",
            "/admin/orders/{order_id}/tracking", "/admin/orders/{order_id}/shipment",
            "/admin/orders/{order_id}/events"
        ],
        "admin_endpoints": [
            "/admin/alerts", "/admin/emails", "/admin/settings/delivery-charges",
            "/admin/settings/shipping"
        ],
    }
