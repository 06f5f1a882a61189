"""Tests for the status query fallback."""

import pytest

from qrpay.engine.status_query import QueryError, StatusQuery
from qrpay.gateway.base import StatusQueryResponse
from qrpay.gateway.errors import GatewayTransportError
from qrpay.gateway.mock_gateway import MockGateway
from qrpay.models.enums import QueryOutcome


@pytest.mark.asyncio
async def test_confirmed():
    gateway = MockGateway(query_response=StatusQueryResponse("00", 1), latency_ms=0)
    result = await StatusQuery(gateway).query("R1", frontend_timed_out=True)

    assert result is QueryOutcome.CONFIRMED
    assert gateway.queries == [("R1", 1)]


@pytest.mark.asyncio
async def test_frontend_flag_zero_when_channel_timed_out():
    gateway = MockGateway(query_response=StatusQueryResponse("00", 1), latency_ms=0)
    await StatusQuery(gateway).query("R1", frontend_timed_out=False)
    assert gateway.queries == [("R1", 0)]


@pytest.mark.asyncio
async def test_approved_code_without_confirmed_status_is_declined():
    gateway = MockGateway(query_response=StatusQueryResponse("00", 0), latency_ms=0)
    assert await StatusQuery(gateway).query("R1", True) is QueryOutcome.DECLINED


@pytest.mark.asyncio
async def test_non_approved_code_is_declined():
    gateway = MockGateway(query_response=StatusQueryResponse("09", 1), latency_ms=0)
    assert await StatusQuery(gateway).query("R1", True) is QueryOutcome.DECLINED


@pytest.mark.asyncio
async def test_transport_failure_returns_query_error():
    gateway = MockGateway(
        query_response=GatewayTransportError("Gateway request timed out"),
        latency_ms=0,
    )
    result = await StatusQuery(gateway).query("R1", False)

    assert isinstance(result, QueryError)
    assert "timed out" in result.message


@pytest.mark.asyncio
async def test_missing_reference_skips_the_call():
    gateway = MockGateway(latency_ms=0)
    result = await StatusQuery(gateway).query("", True)

    assert isinstance(result, QueryError)
    assert gateway.queries == []
