"""
Immutable audit trail for payment attempts.

Every transition gets an append-only audit log entry with:
  - Transaction ID (client-side identifier of the attempt)
  - Retrieval reference (gateway-side identifier, once known)
  - Action (what happened)
  - Details (response codes, timeout source, error text)
  - Timestamp (UTC)

These records are never modified or deleted.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from qrpay.models.enums import AuditAction
from qrpay.models.records import AuditLog

logger = logging.getLogger("qrpay.audit")


async def log_event(
    session: AsyncSession,
    action: AuditAction,
    transaction_id: Optional[str] = None,
    retrieval_reference: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an immutable audit log entry.

    Args:
        session: Database session. The caller commits.
        action: What happened (e.g. "qr_displayed", "payment_confirmed").
        transaction_id: The attempt this event relates to.
        retrieval_reference: Gateway reference, when already assigned.
        details: Arbitrary context (serialized to JSON).

    Returns:
        The created AuditLog record.
    """
    entry = AuditLog(
        transaction_id=transaction_id,
        retrieval_reference=retrieval_reference,
        action=action.value,
        details=json.dumps(details, default=str) if details else None,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info(
        "AUDIT | txn=%s ref=%s action=%s | %s",
        transaction_id or "-",
        retrieval_reference or "-",
        action.value,
        json.dumps(details, default=str)[:200] if details else "",
    )
    return entry


async def load_trail(
    session: AsyncSession,
    transaction_id: Optional[str] = None,
    retrieval_reference: Optional[str] = None,
) -> list[AuditLog]:
    """Audit entries for an attempt, oldest first."""
    stmt = select(AuditLog).order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
    if transaction_id is not None:
        stmt = stmt.where(AuditLog.transaction_id == transaction_id)
    if retrieval_reference is not None:
        stmt = stmt.where(AuditLog.retrieval_reference == retrieval_reference)
    result = await session.execute(stmt)
    return list(result.scalars().all())
