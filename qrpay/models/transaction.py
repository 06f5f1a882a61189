"""In-memory transaction model and the read-only snapshot handed to the UI."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from qrpay.models.enums import TransactionState

QR_DATA_URI_PREFIX = "data:image/png;base64,"


def format_remaining(seconds: int) -> str:
    """Render a countdown value as ``M:SS``."""
    seconds = max(seconds, 0)
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}:{secs:02d}"


class TransactionSnapshot(BaseModel):
    """Everything the presentation layer is allowed to see."""

    state: TransactionState
    is_terminal: bool
    transaction_id: Optional[str] = None
    amount: Optional[Decimal] = None
    retrieval_reference: Optional[str] = None
    response_code: Optional[str] = None
    network_status: Optional[int] = None
    remaining_seconds: int
    remaining_display: str
    qr_image_data_uri: Optional[str] = None
    instruction: str = ""
    error_message: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class Transaction:
    """
    A single QR payment attempt.

    Mutated only by the TransactionController. ``transaction_id`` and
    ``amount`` are None only for a transaction resumed from a persisted
    retrieval reference, since neither is persisted.
    """

    transaction_id: Optional[str]
    amount: Optional[Decimal]
    remaining_seconds: int
    mobile: int = 0
    state: TransactionState = TransactionState.IDLE
    response_code: Optional[str] = None
    network_status: Optional[int] = None
    transaction_status: Optional[int] = None
    qr_image_base64: Optional[str] = None
    instruction: str = ""
    error_message: str = ""
    frontend_timed_out: bool = False
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    _retrieval_reference: Optional[str] = field(default=None, repr=False)

    @property
    def retrieval_reference(self) -> Optional[str]:
        return self._retrieval_reference

    @retrieval_reference.setter
    def retrieval_reference(self, value: str) -> None:
        if self._retrieval_reference is not None and value != self._retrieval_reference:
            raise ValueError(
                f"Retrieval reference already set to {self._retrieval_reference!r}"
            )
        self._retrieval_reference = value

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def snapshot(self) -> TransactionSnapshot:
        qr_uri = None
        if self.qr_image_base64 and self.state in (
            TransactionState.DISPLAYING,
            TransactionState.QUERYING,
        ):
            qr_uri = QR_DATA_URI_PREFIX + self.qr_image_base64

        return TransactionSnapshot(
            state=self.state,
            is_terminal=self.is_terminal,
            transaction_id=self.transaction_id,
            amount=self.amount,
            retrieval_reference=self.retrieval_reference,
            response_code=self.response_code,
            network_status=self.network_status,
            remaining_seconds=self.remaining_seconds,
            remaining_display=format_remaining(self.remaining_seconds),
            qr_image_data_uri=qr_uri,
            instruction=self.instruction,
            error_message=self.error_message,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )
