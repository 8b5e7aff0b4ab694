"""
VNPay Payment Gateway — signed payment redirects and verified callbacks.

Builds HMAC-signed VNPay payment URLs for pending orders and reconciles the
signed return/IPN callbacks into order state exactly once.

Start the server:
    uvicorn payment_gateway.main:app --reload

VNPAY_HASH_SECRET must be set (environment or .env); without it the
application refuses to start.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from payment_gateway.api.health import router as health_router
from payment_gateway.api.orders import router as orders_router
from payment_gateway.api.payments import router as payments_router
from payment_gateway.config import settings
from payment_gateway.database import init_db
from payment_gateway.services import get_signature_engine

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("payment_gateway")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the signing engine and initialize the database on startup."""
    get_signature_engine()
    await init_db()
    logger.info("Payment gateway started for terminal %s", settings.vnpay_tmn_code)
    yield


app = FastAPI(
    title="VNPay Payment Gateway",
    description=(
        "Signed VNPay payment redirects with authenticated return/IPN callbacks "
        "and idempotent order reconciliation."
    ),
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Report malformed request bodies as 400 naming the offending fields."""
    # loc is ("body", field, ...); union members append their type name after the field
    fields = sorted({str(err["loc"][1]) for err in exc.errors() if len(err.get("loc", ())) > 1})
    return JSONResponse(
        status_code=400,
        content={"detail": f"Invalid fields: {', '.join(fields) or 'body'}"},
    )


app.include_router(health_router)
app.include_router(payments_router, prefix="/api")
app.include_router(orders_router, prefix="/api")
