"""SQLAlchemy models for client-side persistence."""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClientState(Base):
    """
    Small key-value store for state that must survive a reload.

    Only the in-flight retrieval reference lives here; it is written when a
    QR code is displayed and removed when the transaction reaches a
    terminal state.
    """

    __tablename__ = "client_state"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class AuditLog(Base):
    """
    Immutable audit trail entry.

    Every transition of a payment attempt (request, display, notification,
    fallback query, cancel) gets an entry. Append-only.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(100), nullable=True, index=True)
    retrieval_reference = Column(String(100), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)
