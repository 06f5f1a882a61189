"""Enumerations for the QR payment domain model."""

from enum import Enum


class TransactionState(str, Enum):
    """Lifecycle states for a single QR payment attempt."""

    IDLE = "idle"
    REQUESTING = "requesting"
    DISPLAYING = "displaying"
    QUERYING = "querying"
    SUCCEEDED = "succeeded"
    DECLINED = "declined"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {TransactionState.SUCCEEDED, TransactionState.DECLINED, TransactionState.CANCELLED}
)


class NotificationKind(str, Enum):
    """Events the notification subscriber hands to its owner."""

    CONFIRMED = "confirmed"
    CHANNEL_TIMEOUT = "channel_timeout"


class QueryOutcome(str, Enum):
    """Classification of a status query response."""

    CONFIRMED = "confirmed"
    DECLINED = "declined"


class AuditAction(str, Enum):
    """Actions recorded in the audit trail."""

    REQUEST_SENT = "request_sent"
    QR_DISPLAYED = "qr_displayed"
    REQUEST_DECLINED = "request_declined"
    RESUMED = "resumed"
    PAYMENT_CONFIRMED = "payment_confirmed"
    COUNTDOWN_EXPIRED = "countdown_expired"
    CHANNEL_TIMEOUT = "channel_timeout"
    QUERY_CONFIRMED = "query_confirmed"
    QUERY_DECLINED = "query_declined"
    QUERY_FAILED = "query_failed"
    CANCELLED = "cancelled"
