"""
Status query fallback.

Used when the push channel cannot confirm a result: either the client
countdown expired or the channel itself timed out. The gateway is told which
of the two happened (``frontend_timeout_status``) so it can reconcile.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from qrpay.config import settings
from qrpay.gateway.base import PaymentGateway
from qrpay.gateway.errors import GatewayTransportError
from qrpay.models.enums import QueryOutcome

logger = logging.getLogger("qrpay.status_query")

TXN_STATUS_CONFIRMED = 1


@dataclass
class QueryError:
    """The status could not be determined. Callers treat this as declined."""

    message: str
    status_code: Optional[int] = None


QueryResult = Union[QueryOutcome, QueryError]


class StatusQuery:
    def __init__(self, gateway: PaymentGateway, approved_code: Optional[str] = None):
        self._gateway = gateway
        self._approved_code = approved_code or settings.approved_response_code

    async def query(self, retrieval_reference: str, frontend_timed_out: bool) -> QueryResult:
        if not retrieval_reference:
            return QueryError(message="No retrieval reference to query")

        try:
            response = await self._gateway.query_status(
                retrieval_reference, 1 if frontend_timed_out else 0
            )
        except GatewayTransportError as e:
            logger.error("Status query failed for ref=%s: %s", retrieval_reference, e.describe())
            return QueryError(message=e.describe(), status_code=e.status_code)

        if (
            response.response_code == self._approved_code
            and response.transaction_status == TXN_STATUS_CONFIRMED
        ):
            return QueryOutcome.CONFIRMED
        return QueryOutcome.DECLINED
