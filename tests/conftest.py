"""Shared test fixtures."""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from qrpay.gateway.base import QrRequestResponse
from qrpay.gateway.mock_gateway import MockGateway
from qrpay.models.records import Base

QR_PAYLOAD = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR4nGNgAAIAAAUAAeIhvDMAAAAASUVORK5CYII="


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory database for each test (StaticPool shares the one connection)."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


def approved_response(reference: str = "R1") -> QrRequestResponse:
    return QrRequestResponse(
        response_code="00",
        transaction_status=1,
        qr_code=QR_PAYLOAD,
        retrieval_reference=reference,
        network_status=0,
    )


@pytest.fixture
def gateway():
    """Mock gateway approving requests with reference R1, no latency."""
    return MockGateway(request_response=approved_response("R1"), latency_ms=0)


@pytest.fixture
def wait_until():
    """Poll a condition until it holds or the timeout expires."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()

    return _wait
