"""
Mock QR payment gateway for demonstration and tests.

Simulates the NETS sandbox behavior in-process:
  - Configurable latency (default from settings)
  - Scripted request/query responses or transport failures
  - A per-reference push channel fed with ``push()`` / ``close_channel()``
  - Optional auto-confirmation a few seconds after subscribing (demo mode)

Every call is recorded so tests can assert on what was sent.
"""

import asyncio
import base64
import logging
import random
import uuid
from collections.abc import AsyncIterator
from typing import Optional, Union

from qrpay.config import settings
from qrpay.gateway.base import (
    MESSAGE_SCANNED,
    MESSAGE_TIMEOUT,
    GatewayNotification,
    PaymentGateway,
    QrRequest,
    QrRequestResponse,
    StatusQueryResponse,
)
from qrpay.gateway.errors import GatewayTransportError

logger = logging.getLogger("qrpay.gateway.mock")

# Smallest valid PNG, enough for a UI to render something
MOCK_QR_PNG = base64.b64encode(
    bytes.fromhex(
        "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
        "1f15c4890000000d49444154789c6360000002000001e221bc330000000049454e44ae426082"
    )
).decode("ascii")

RequestScript = Union[QrRequestResponse, GatewayTransportError]
QueryScript = Union[StatusQueryResponse, GatewayTransportError]


class MockGateway(PaymentGateway):
    """
    Scriptable gateway.

    With no script, a request is approved with a fresh retrieval reference
    and a query confirms the payment.
    """

    def __init__(
        self,
        request_response: Optional[RequestScript] = None,
        query_response: Optional[QueryScript] = None,
        latency_ms: Optional[int] = None,
        auto_confirm_seconds: Optional[float] = None,
    ):
        self.request_response = request_response
        self.query_response = query_response
        self._latency_ms = latency_ms if latency_ms is not None else settings.mock_latency_ms
        self._auto_confirm_seconds = auto_confirm_seconds
        self._channels: dict[str, asyncio.Queue] = {}
        self._auto_tasks: set[asyncio.Task] = set()

        self.requests: list[QrRequest] = []
        self.queries: list[tuple[str, int]] = []
        self.subscriptions: list[str] = []

    @property
    def name(self) -> str:
        return "mock_gateway"

    @property
    def open_channels(self) -> list[str]:
        """References with a live or pending push queue."""
        return list(self._channels)

    async def _simulate_latency(self) -> None:
        if self._latency_ms > 0:
            jitter = random.uniform(0.5, 1.5)
            await asyncio.sleep(self._latency_ms * jitter / 1000)

    def _channel(self, retrieval_reference: str) -> asyncio.Queue:
        if retrieval_reference not in self._channels:
            self._channels[retrieval_reference] = asyncio.Queue()
        return self._channels[retrieval_reference]

    async def request_qr(self, request: QrRequest) -> QrRequestResponse:
        self.requests.append(request)
        await self._simulate_latency()

        script = self.request_response
        if isinstance(script, GatewayTransportError):
            raise script
        if script is not None:
            return script

        return QrRequestResponse(
            response_code=settings.approved_response_code,
            transaction_status=1,
            qr_code=MOCK_QR_PNG,
            retrieval_reference=f"mock_ref_{uuid.uuid4().hex[:16]}",
            network_status=0,
        )

    async def query_status(
        self, retrieval_reference: str, frontend_timeout_status: int
    ) -> StatusQueryResponse:
        self.queries.append((retrieval_reference, frontend_timeout_status))
        await self._simulate_latency()

        script = self.query_response
        if isinstance(script, GatewayTransportError):
            raise script
        if script is not None:
            return script

        return StatusQueryResponse(response_code=settings.approved_response_code, transaction_status=1)

    async def notifications(self, retrieval_reference: str) -> AsyncIterator[GatewayNotification]:
        self.subscriptions.append(retrieval_reference)
        queue = self._channel(retrieval_reference)

        auto_task: Optional[asyncio.Task] = None
        if self._auto_confirm_seconds is not None:
            auto_task = asyncio.create_task(self._auto_confirm(retrieval_reference))
            self._auto_tasks.add(auto_task)
            auto_task.add_done_callback(self._auto_tasks.discard)

        try:
            while True:
                item = await queue.get()
                if item is None:
                    logger.info("Mock push channel closed: %s", retrieval_reference)
                    return
                if isinstance(item, GatewayTransportError):
                    raise item
                yield item
        finally:
            if auto_task is not None:
                auto_task.cancel()
            if self._channels.get(retrieval_reference) is queue:
                del self._channels[retrieval_reference]

    async def _auto_confirm(self, retrieval_reference: str) -> None:
        await asyncio.sleep(self._auto_confirm_seconds)
        await self.push_scanned(retrieval_reference)

    # Test/demo controls for the push channel

    async def push(self, retrieval_reference: str, notification: GatewayNotification) -> None:
        await self._channel(retrieval_reference).put(notification)

    async def push_scanned(self, retrieval_reference: str, response_code: Optional[str] = None) -> None:
        code = response_code if response_code is not None else settings.approved_response_code
        await self.push(
            retrieval_reference,
            GatewayNotification(message=MESSAGE_SCANNED, response_code=code),
        )

    async def push_timeout(self, retrieval_reference: str) -> None:
        await self.push(retrieval_reference, GatewayNotification(message=MESSAGE_TIMEOUT))

    async def drop_connection(self, retrieval_reference: str, message: str = "Connection reset") -> None:
        await self._channel(retrieval_reference).put(GatewayTransportError(message))

    async def close_channel(self, retrieval_reference: str) -> None:
        await self._channel(retrieval_reference).put(None)

    async def close(self) -> None:
        for task in list(self._auto_tasks):
            task.cancel()
