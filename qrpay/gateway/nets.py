"""
NETS QR gateway client.

Endpoints (relative to ``settings.gateway_base_url``):
  POST /common/payments/nets-qr/request  — create a QR code
  POST /common/payments/nets-qr/query    — status check for an attempt
  GET  /common/payments/nets/webhook     — server-sent events for an attempt

Every call carries the ``api-key`` and ``project-id`` headers. JSON
responses wrap their payload as ``{"result": {"data": {...}}}``.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Dict, Optional

import aiohttp

from qrpay.config import settings
from qrpay.gateway.base import (
    GatewayNotification,
    PaymentGateway,
    QrRequest,
    QrRequestResponse,
    StatusQueryResponse,
)
from qrpay.gateway.errors import GatewayTransportError

logger = logging.getLogger("qrpay.gateway.nets")

REQUEST_PATH = "/common/payments/nets-qr/request"
QUERY_PATH = "/common/payments/nets-qr/query"
WEBHOOK_PATH = "/common/payments/nets/webhook"


def _unwrap(payload: Any) -> Dict[str, Any]:
    try:
        data = payload["result"]["data"]
    except (KeyError, TypeError) as e:
        raise GatewayTransportError("Malformed gateway response") from e
    if not isinstance(data, dict):
        raise GatewayTransportError("Malformed gateway response")
    return data


class NetsGateway(PaymentGateway):
    """Async client for the NETS QR sandbox API."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        project_id: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        self._base = (base_url or settings.gateway_base_url).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.gateway_api_key
        self._project_id = project_id if project_id is not None else settings.gateway_project_id
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.gateway_timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None

        if not self._api_key or not self._project_id:
            logger.warning("Gateway credentials missing: api-key or project-id is empty")

    @property
    def name(self) -> str:
        return "nets_sandbox"

    def _headers(self) -> Dict[str, str]:
        return {
            "api-key": self._api_key,
            "project-id": self._project_id,
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(
                f"{self._base}{path}",
                json=body,
                headers=self._headers(),
            ) as resp:
                if resp.status >= 400:
                    raise GatewayTransportError(resp.reason or "HTTP error", status_code=resp.status)
                payload = await resp.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise GatewayTransportError("Gateway request timed out") from e
        except aiohttp.ClientError as e:
            raise GatewayTransportError(str(e) or type(e).__name__) from e
        except ValueError as e:
            # json.JSONDecodeError is a ValueError
            raise GatewayTransportError("Malformed gateway response") from e
        return _unwrap(payload)

    async def request_qr(self, request: QrRequest) -> QrRequestResponse:
        body = {
            "txn_id": request.transaction_id,
            "amt_in_dollars": float(request.amount),
            "notify_mobile": request.mobile,
        }
        data = await self._post(REQUEST_PATH, body)
        response = QrRequestResponse.from_payload(data)
        logger.info(
            "[NETS] request txn=%s amount=%s → code=%s status=%s ref=%s",
            request.transaction_id,
            request.amount,
            response.response_code or "-",
            response.transaction_status,
            response.retrieval_reference or "-",
        )
        return response

    async def query_status(
        self, retrieval_reference: str, frontend_timeout_status: int
    ) -> StatusQueryResponse:
        body = {
            "txn_retrieval_ref": retrieval_reference,
            "frontend_timeout_status": frontend_timeout_status,
        }
        data = await self._post(QUERY_PATH, body)
        response = StatusQueryResponse.from_payload(data)
        logger.info(
            "[NETS] query ref=%s timeout=%d → code=%s status=%s",
            retrieval_reference,
            frontend_timeout_status,
            response.response_code or "-",
            response.transaction_status,
        )
        return response

    async def notifications(self, retrieval_reference: str) -> AsyncIterator[GatewayNotification]:
        session = await self._get_session()
        headers = {**self._headers(), "Accept": "text/event-stream"}
        try:
            async with session.get(
                f"{self._base}{WEBHOOK_PATH}",
                params={"txn_retrieval_ref": retrieval_reference},
                headers=headers,
                # Inactivity is policed by the subscriber's heartbeat timeout
                timeout=aiohttp.ClientTimeout(total=None),
            ) as resp:
                if resp.status >= 400:
                    raise GatewayTransportError(resp.reason or "HTTP error", status_code=resp.status)

                logger.info("[NETS] push channel open ref=%s", retrieval_reference)
                data_lines: list[str] = []
                async for raw_line in resp.content:
                    line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")

                    if not line:
                        if data_lines:
                            notification = _parse_event("\n".join(data_lines))
                            data_lines = []
                            if notification is not None:
                                yield notification
                        continue

                    if line.startswith(":"):
                        yield GatewayNotification(message="")
                        continue

                    field_name, _, value = line.partition(":")
                    if field_name == "data":
                        data_lines.append(value[1:] if value.startswith(" ") else value)

                if data_lines:
                    notification = _parse_event("\n".join(data_lines))
                    if notification is not None:
                        yield notification
        except asyncio.TimeoutError as e:
            raise GatewayTransportError("Push channel timed out") from e
        except aiohttp.ClientError as e:
            raise GatewayTransportError(str(e) or type(e).__name__) from e

        logger.info("[NETS] push channel closed by server ref=%s", retrieval_reference)


def _parse_event(data: str) -> Optional[GatewayNotification]:
    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("[NETS] ignoring non-JSON push message: %s", data[:200])
        return None
    if not isinstance(payload, dict):
        logger.warning("[NETS] ignoring unexpected push payload: %s", data[:200])
        return None
    return GatewayNotification.from_payload(payload)
