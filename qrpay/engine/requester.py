"""
Transaction requester — asks the gateway for a one-time payment QR code.

Before calling out we verify:
  1. Amount is a positive, finite dollar value
  2. Transaction ID is non-empty

The gateway's answer is then interpreted into exactly one of two values:

  - QrPayload     — approved code, "in progress" status, non-empty QR
  - RequestError  — business decline, transport failure or invalid input

Gateway failures never escape as exceptions; the controller decides what to
do with the result. This module does not touch persisted state.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional, Union

from qrpay.config import settings
from qrpay.gateway.base import PaymentGateway, QrRequest, QrRequestResponse
from qrpay.gateway.errors import GatewayTransportError

logger = logging.getLogger("qrpay.requester")

TRANSPORT_ERROR_CODE = "TRANSPORT"
INVALID_INPUT_CODE = "INVALID_INPUT"
UNKNOWN_RESPONSE_CODE = "N.A."
TXN_STATUS_IN_PROGRESS = 1

CENT = Decimal("0.01")


@dataclass
class QrPayload:
    """A displayable QR code and the reference that tracks it."""

    qr_image_base64: str
    retrieval_reference: str
    network_status: Optional[int]
    response_code: str
    transaction_status: Optional[int] = None


@dataclass
class RequestError:
    """Why a QR code could not be produced."""

    code: str
    message: str = ""
    instruction: str = ""
    retryable: bool = False
    network_status: Optional[int] = None
    transaction_status: Optional[int] = None

    @property
    def user_message(self) -> str:
        return self.instruction or self.message


@dataclass
class ValidationResult:
    """Result of checking request inputs."""

    valid: bool
    amount: Optional[Decimal] = None
    message: str = ""


RequestResult = Union[QrPayload, RequestError]


def validate_request_inputs(amount: Any, transaction_id: Optional[str]) -> ValidationResult:
    """
    Check whether a payment request may be sent.

    Returns the amount normalized to cents when valid.
    """
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        return ValidationResult(valid=False, message=f"Invalid amount: {amount}")

    if not value.is_finite():
        return ValidationResult(valid=False, message=f"Invalid amount: {amount}")

    value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if value <= 0:
        return ValidationResult(valid=False, message=f"Amount must be positive: {amount}")

    if not transaction_id or not transaction_id.strip():
        return ValidationResult(valid=False, message="Missing transaction ID")

    return ValidationResult(valid=True, amount=value)


class TransactionRequester:
    def __init__(self, gateway: PaymentGateway, approved_code: Optional[str] = None):
        self._gateway = gateway
        self._approved_code = approved_code or settings.approved_response_code

    async def request(self, amount: Any, transaction_id: str, mobile: int = 0) -> RequestResult:
        check = validate_request_inputs(amount, transaction_id)
        if not check.valid:
            logger.warning("Rejected payment request txn=%s: %s", transaction_id or "-", check.message)
            return RequestError(code=INVALID_INPUT_CODE, message=check.message)

        try:
            response = await self._gateway.request_qr(
                QrRequest(transaction_id=transaction_id, amount=check.amount, mobile=mobile)
            )
        except GatewayTransportError as e:
            logger.error("QR request failed for txn=%s: %s", transaction_id, e.describe())
            return RequestError(code=TRANSPORT_ERROR_CODE, message=e.describe())

        return self._interpret(response)

    def _interpret(self, response: QrRequestResponse) -> RequestResult:
        approved = (
            response.response_code == self._approved_code
            and response.transaction_status == TXN_STATUS_IN_PROGRESS
            and bool(response.qr_code)
        )

        if approved and response.retrieval_reference:
            return QrPayload(
                qr_image_base64=response.qr_code,
                retrieval_reference=response.retrieval_reference,
                network_status=response.network_status,
                response_code=response.response_code,
                transaction_status=response.transaction_status,
            )

        if approved:
            logger.error("Gateway approved the request but sent no retrieval reference")
            return RequestError(
                code=response.response_code,
                message=settings.decline_message,
                network_status=response.network_status,
                transaction_status=response.transaction_status,
            )

        # Instruction text is only meaningful when the gateway blames the
        # network/issuer side (network_status == 0).
        network_side = response.network_status == 0
        instruction = response.instruction if network_side else ""
        message = "" if instruction else settings.decline_message

        logger.info(
            "QR request declined: code=%s network_status=%s",
            response.response_code or UNKNOWN_RESPONSE_CODE,
            response.network_status,
        )
        return RequestError(
            code=response.response_code or UNKNOWN_RESPONSE_CODE,
            message=message,
            instruction=instruction,
            retryable=network_side,
            network_status=response.network_status,
            transaction_status=response.transaction_status,
        )
