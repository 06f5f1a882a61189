"""
QR Pay — NETS QR payment transaction engine.

Drives one QR payment attempt at a time per checkout: requests the QR code,
runs the validity countdown, listens on the gateway's push channel, falls
back to a status query on timeout and supports cancellation. The HTTP
surface here is a thin shell that exposes controller snapshots to the UI.

Start the server:
    uvicorn qrpay.main:app --reload

Set GATEWAY_API_KEY and GATEWAY_PROJECT_ID (or a .env file) for the sandbox, or
USE_MOCK_GATEWAY=true to run against the in-process mock.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from qrpay.api import checkout
from qrpay.api.health import router as health_router
from qrpay.config import settings
from qrpay.database import dispose_db, init_db
from qrpay.gateway.base import PaymentGateway
from qrpay.gateway.mock_gateway import MockGateway
from qrpay.gateway.nets import NetsGateway

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("qrpay.main")


def build_gateway() -> PaymentGateway:
    if settings.use_mock_gateway:
        logger.info("Using mock payment gateway")
        return MockGateway(auto_confirm_seconds=settings.mock_auto_confirm_seconds)
    return NetsGateway()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database and gateway on startup; release them on shutdown."""
    await init_db()
    gateway = build_gateway()
    checkout.configure(gateway)
    yield
    await checkout.get_registry().close_all()
    await gateway.close()
    await dispose_db()


app = FastAPI(
    title="QR Pay",
    description=(
        "NETS QR payment transaction engine. Requests one-time QR codes, tracks "
        "the validity countdown, listens for the gateway's paid notification and "
        "falls back to a status query on timeout, with exactly one terminal "
        "outcome per attempt."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(checkout.router, prefix="/api")
