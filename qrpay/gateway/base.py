"""
Abstract payment gateway interface.

The engine talks to the gateway through three calls: request a QR code,
query the status of an attempt, and subscribe to the push channel for that
attempt. ``NetsGateway`` speaks the NETS sandbox HTTP/SSE protocol;
``MockGateway`` is an in-process stand-in for demos and tests.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional

# Push channel message tags
MESSAGE_SCANNED = "QR code scanned"
MESSAGE_TIMEOUT = "Timeout"


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass
class QrRequest:
    """Request for a one-time payment QR code."""

    transaction_id: str
    amount: Decimal  # Dollars, e.g. Decimal("3.00")
    mobile: int = 0


@dataclass
class QrRequestResponse:
    """Gateway answer to a QR request (approved or declined)."""

    response_code: str
    transaction_status: Optional[int]
    qr_code: str = ""
    retrieval_reference: str = ""
    network_status: Optional[int] = None
    instruction: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "QrRequestResponse":
        return cls(
            response_code=_as_str(data.get("response_code")),
            transaction_status=_as_int(data.get("txn_status")),
            qr_code=_as_str(data.get("qr_code")),
            retrieval_reference=_as_str(data.get("txn_retrieval_ref")),
            network_status=_as_int(data.get("network_status")),
            instruction=_as_str(data.get("instruction")),
        )


@dataclass
class StatusQueryResponse:
    """Gateway answer to a status query."""

    response_code: str
    transaction_status: Optional[int]

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "StatusQueryResponse":
        return cls(
            response_code=_as_str(data.get("response_code")),
            transaction_status=_as_int(data.get("txn_status")),
        )


@dataclass
class GatewayNotification:
    """
    One message from the push channel.

    An empty ``message`` is a keep-alive (SSE comment line): it carries no
    payment information but proves the channel is still alive.
    """

    message: str
    response_code: str = ""
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "GatewayNotification":
        return cls(
            message=_as_str(data.get("message")),
            response_code=_as_str(data.get("response_code")),
            raw=data,
        )

    @property
    def is_heartbeat(self) -> bool:
        return self.message == ""


class PaymentGateway(ABC):
    """Abstract base class for QR payment gateways."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Gateway identifier (e.g. 'nets_sandbox')."""
        ...

    @abstractmethod
    async def request_qr(self, request: QrRequest) -> QrRequestResponse:
        """
        Ask the gateway for a one-time QR code.

        Raises:
            GatewayTransportError: On network/HTTP failure or malformed body.
        """
        ...

    @abstractmethod
    async def query_status(
        self, retrieval_reference: str, frontend_timeout_status: int
    ) -> StatusQueryResponse:
        """
        Synchronous status check for an existing attempt.

        ``frontend_timeout_status`` is 1 when the client countdown already
        expired, 0 otherwise.

        Raises:
            GatewayTransportError: On network/HTTP failure or malformed body.
        """
        ...

    @abstractmethod
    def notifications(self, retrieval_reference: str) -> AsyncIterator[GatewayNotification]:
        """
        Open the push channel for an attempt.

        Returns a lazy, unbounded async iterator of notifications. The
        iterator ends when the server closes the channel and raises
        GatewayTransportError when the connection fails.
        """
        ...

    async def close(self) -> None:
        """Release network resources. Default: nothing to release."""
        return None
