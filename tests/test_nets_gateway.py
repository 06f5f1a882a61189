"""Tests for the NETS HTTP/SSE client against a local fake gateway."""

from decimal import Decimal

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from qrpay.gateway.base import QrRequest
from qrpay.gateway.errors import GatewayTransportError
from qrpay.gateway.nets import QUERY_PATH, REQUEST_PATH, WEBHOOK_PATH, NetsGateway


class FakeNets:
    """Records what the client sent and answers with canned payloads."""

    def __init__(self):
        self.calls: list[dict] = []
        self.request_status = 200
        self.request_body: object = {
            "result": {
                "data": {
                    "response_code": "00",
                    "txn_status": 1,
                    "qr_code": "iVBORw0KGgo=",
                    "txn_retrieval_ref": "R1",
                    "network_status": 0,
                }
            }
        }
        self.query_body: object = {"result": {"data": {"response_code": "00", "txn_status": 1}}}
        self.events: list[bytes] = [
            b": keep-alive\n\n",
            b'data: {"message": "QR code scanned", "response_code": "00"}\n\n',
        ]

    async def handle_request(self, request: web.Request) -> web.Response:
        self.calls.append({"path": request.path, "headers": dict(request.headers), "body": await request.json()})
        if self.request_status >= 400:
            return web.Response(status=self.request_status, reason="Service Unavailable")
        if isinstance(self.request_body, str):
            return web.Response(text=self.request_body, content_type="application/json")
        return web.json_response(self.request_body)

    async def handle_query(self, request: web.Request) -> web.Response:
        self.calls.append({"path": request.path, "headers": dict(request.headers), "body": await request.json()})
        return web.json_response(self.query_body)

    async def handle_webhook(self, request: web.Request) -> web.StreamResponse:
        self.calls.append({"path": request.path, "headers": dict(request.headers), "query": dict(request.query)})
        resp = web.StreamResponse(headers={"Content-Type": "text/event-stream"})
        await resp.prepare(request)
        for chunk in self.events:
            await resp.write(chunk)
        await resp.write_eof()
        return resp


@pytest_asyncio.fixture
async def fake_nets():
    fake = FakeNets()
    app = web.Application()
    app.router.add_post(REQUEST_PATH, fake.handle_request)
    app.router.add_post(QUERY_PATH, fake.handle_query)
    app.router.add_get(WEBHOOK_PATH, fake.handle_webhook)

    server = test_utils.TestServer(app)
    await server.start_server()

    client = NetsGateway(
        base_url=str(server.make_url("")),
        api_key="test-key",
        project_id="test-project",
        timeout_seconds=5,
    )
    yield fake, client

    await client.close()
    await server.close()


@pytest.mark.asyncio
async def test_request_sends_credentials_and_body(fake_nets):
    fake, client = fake_nets
    response = await client.request_qr(QrRequest(transaction_id="T1", amount=Decimal("3.00"), mobile=0))

    assert response.response_code == "00"
    assert response.transaction_status == 1
    assert response.qr_code == "iVBORw0KGgo="
    assert response.retrieval_reference == "R1"
    assert response.network_status == 0

    call = fake.calls[0]
    assert call["body"] == {"txn_id": "T1", "amt_in_dollars": 3.0, "notify_mobile": 0}
    assert call["headers"]["api-key"] == "test-key"
    assert call["headers"]["project-id"] == "test-project"


@pytest.mark.asyncio
async def test_http_error_is_transport_error(fake_nets):
    fake, client = fake_nets
    fake.request_status = 503

    with pytest.raises(GatewayTransportError) as exc_info:
        await client.request_qr(QrRequest(transaction_id="T1", amount=Decimal("3.00")))

    assert exc_info.value.status_code == 503
    assert exc_info.value.describe() == "API Error: 503 - Service Unavailable"


@pytest.mark.asyncio
async def test_malformed_body_is_transport_error(fake_nets):
    fake, client = fake_nets
    fake.request_body = {"unexpected": True}

    with pytest.raises(GatewayTransportError):
        await client.request_qr(QrRequest(transaction_id="T1", amount=Decimal("3.00")))


@pytest.mark.asyncio
async def test_non_json_body_is_transport_error(fake_nets):
    fake, client = fake_nets
    fake.request_body = "<html>oops</html>"

    with pytest.raises(GatewayTransportError):
        await client.request_qr(QrRequest(transaction_id="T1", amount=Decimal("3.00")))


@pytest.mark.asyncio
async def test_query_sends_timeout_flag(fake_nets):
    fake, client = fake_nets
    response = await client.query_status("R1", 1)

    assert response.response_code == "00"
    assert response.transaction_status == 1
    assert fake.calls[0]["body"] == {"txn_retrieval_ref": "R1", "frontend_timeout_status": 1}


@pytest.mark.asyncio
async def test_webhook_stream_yields_keepalives_and_messages(fake_nets):
    fake, client = fake_nets
    received = [n async for n in client.notifications("R1")]

    assert [n.is_heartbeat for n in received] == [True, False]
    assert received[1].message == "QR code scanned"
    assert received[1].response_code == "00"

    call = fake.calls[0]
    assert call["query"] == {"txn_retrieval_ref": "R1"}
    assert call["headers"]["api-key"] == "test-key"


@pytest.mark.asyncio
async def test_webhook_skips_non_json_and_joins_multiline_data(fake_nets):
    fake, client = fake_nets
    fake.events = [
        b"data: not json\n\n",
        b"event: message\nid: 7\n",
        b'data: {"message":\ndata:  "Timeout"}\n\n',
    ]
    received = [n async for n in client.notifications("R1")]

    assert len(received) == 1
    assert received[0].message == "Timeout"


@pytest.mark.asyncio
async def test_unreachable_gateway_is_transport_error():
    client = NetsGateway(base_url="http://127.0.0.1:9", api_key="k", project_id="p", timeout_seconds=2)
    try:
        with pytest.raises(GatewayTransportError):
            await client.query_status("R1", 0)
    finally:
        await client.close()
