from qrpay.gateway.base import (
    GatewayNotification,
    PaymentGateway,
    QrRequest,
    QrRequestResponse,
    StatusQueryResponse,
)
from qrpay.gateway.errors import GatewayError, GatewayTransportError

__all__ = [
    "PaymentGateway",
    "QrRequest",
    "QrRequestResponse",
    "StatusQueryResponse",
    "GatewayNotification",
    "GatewayError",
    "GatewayTransportError",
]
