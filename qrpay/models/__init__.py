from qrpay.models.enums import AuditAction, NotificationKind, QueryOutcome, TransactionState
from qrpay.models.records import AuditLog, Base, ClientState
from qrpay.models.transaction import Transaction, TransactionSnapshot

__all__ = [
    "Base",
    "ClientState",
    "AuditLog",
    "Transaction",
    "TransactionSnapshot",
    "TransactionState",
    "NotificationKind",
    "QueryOutcome",
    "AuditAction",
]
