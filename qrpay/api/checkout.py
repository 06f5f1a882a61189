"""
Checkout endpoints — the presentation shell over the transaction controller.

POST /checkout                      — "Generate QR": start a new attempt.
POST /checkout/resume               — Re-attach to an attempt persisted before a reload.
GET  /checkout/{key}                — Current snapshot.
POST /checkout/{key}/cancel         — "Cancel": abandon the attempt on screen.
GET  /checkout/{key}/events         — Server-sent snapshots until a terminal state.
GET  /checkout/{key}/trace          — Audit trail for the attempt.

``key`` is the transaction ID, or the retrieval reference for a resumed
attempt. The shell only reads snapshots; every decision is the controller's.
"""

import asyncio
import json
import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qrpay.audit.logger import load_trail
from qrpay.config import settings
from qrpay.database import session_factory as default_session_factory
from qrpay.engine.controller import TransactionController
from qrpay.gateway.base import PaymentGateway
from qrpay.models.transaction import TransactionSnapshot
from qrpay.store.reference_store import ReferenceStore

logger = logging.getLogger("qrpay.api.checkout")

router = APIRouter(prefix="/checkout", tags=["checkout"])


class CheckoutRequest(BaseModel):
    amount: Optional[Decimal] = None
    transaction_id: Optional[str] = None
    mobile: int = 0


class AuditEntry(BaseModel):
    id: int
    action: str
    retrieval_reference: Optional[str] = None
    details: Optional[dict] = None
    timestamp: Optional[str]


class ControllerRegistry:
    """
    In-memory map of attempts for this process.

    A finished attempt stays reachable (snapshot, trace, a late events
    request) for ``retention_seconds`` and is then dropped.
    """

    def __init__(self, retention_seconds: Optional[float] = None):
        self._retention = (
            retention_seconds if retention_seconds is not None else settings.finished_retention_seconds
        )
        self._controllers: dict[str, TransactionController] = {}
        self._evictions: dict[str, asyncio.TimerHandle] = {}

    def __len__(self) -> int:
        return len(self._controllers)

    def add(self, controller: TransactionController) -> None:
        key = controller.key
        pending = self._evictions.pop(key, None)
        if pending is not None:
            pending.cancel()
        self._controllers[key] = controller

        if controller.state.is_terminal:
            self._schedule_eviction(key, controller)
            return

        def on_change(snapshot: TransactionSnapshot) -> None:
            if snapshot.is_terminal:
                self._schedule_eviction(key, controller)

        controller.add_listener(on_change)

    def get(self, key: str) -> Optional[TransactionController]:
        return self._controllers.get(key)

    def find_reference(self, retrieval_reference: str) -> Optional[TransactionController]:
        for controller in self._controllers.values():
            if controller.transaction.retrieval_reference == retrieval_reference and not controller.state.is_terminal:
                return controller
        return None

    def _schedule_eviction(self, key: str, controller: TransactionController) -> None:
        if key in self._evictions or self._controllers.get(key) is not controller:
            return
        loop = asyncio.get_running_loop()
        self._evictions[key] = loop.call_later(self._retention, self._evict, key, controller)

    def _evict(self, key: str, controller: TransactionController) -> None:
        self._evictions.pop(key, None)
        if self._controllers.get(key) is controller:
            del self._controllers[key]
            logger.debug("Dropped finished transaction %s", key)

    async def close_all(self) -> None:
        for handle in self._evictions.values():
            handle.cancel()
        self._evictions.clear()
        for controller in self._controllers.values():
            await controller.close()
        self._controllers.clear()


_registry = ControllerRegistry()
_gateway: Optional[PaymentGateway] = None


def configure(gateway: PaymentGateway) -> None:
    """Install the gateway used by new attempts (called at startup)."""
    global _gateway
    _gateway = gateway


def get_gateway() -> PaymentGateway:
    if _gateway is None:
        raise HTTPException(status_code=503, detail="Payment gateway not configured")
    return _gateway


def get_registry() -> ControllerRegistry:
    return _registry


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return default_session_factory


def _lookup(key: str, registry: ControllerRegistry) -> TransactionController:
    controller = registry.get(key)
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Transaction not found: {key}")
    return controller


@router.post("", response_model=TransactionSnapshot, status_code=201)
async def create_checkout(
    body: CheckoutRequest,
    gateway: PaymentGateway = Depends(get_gateway),
    registry: ControllerRegistry = Depends(get_registry),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """
    Request a QR code for a new payment attempt.

    Business declines are not HTTP errors: the snapshot comes back in the
    ``declined`` state with the gateway's instruction or a generic message.
    """
    if body.transaction_id and registry.get(body.transaction_id) is not None:
        raise HTTPException(status_code=409, detail=f"Transaction already exists: {body.transaction_id}")

    controller = TransactionController(
        gateway,
        session_factory,
        amount=body.amount,
        transaction_id=body.transaction_id,
        mobile=body.mobile,
    )
    registry.add(controller)
    return await controller.start()


@router.post("/resume", response_model=TransactionSnapshot)
async def resume_checkout(
    gateway: PaymentGateway = Depends(get_gateway),
    registry: ControllerRegistry = Depends(get_registry),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Re-attach to the attempt whose retrieval reference survived a reload."""
    reference = await _persisted_reference(session_factory)
    if reference:
        existing = registry.find_reference(reference)
        if existing is not None:
            return existing.snapshot()

    controller = await TransactionController.resume(gateway, session_factory)
    if controller is None:
        raise HTTPException(status_code=404, detail="No payment in progress")
    registry.add(controller)
    return controller.snapshot()


async def _persisted_reference(session_factory: async_sessionmaker[AsyncSession]) -> Optional[str]:
    return await ReferenceStore(session_factory).load()


@router.get("/{key}", response_model=TransactionSnapshot)
async def get_checkout(key: str, registry: ControllerRegistry = Depends(get_registry)):
    """Current snapshot of an attempt."""
    return _lookup(key, registry).snapshot()


@router.post("/{key}/cancel", response_model=TransactionSnapshot)
async def cancel_checkout(key: str, registry: ControllerRegistry = Depends(get_registry)):
    """Cancel the attempt on screen. 409 if it can no longer be cancelled."""
    controller = _lookup(key, registry)
    if not await controller.cancel():
        raise HTTPException(
            status_code=409,
            detail=f"Transaction cannot be cancelled in state {controller.state.value}",
        )
    return controller.snapshot()


@router.get("/{key}/events")
async def stream_checkout(key: str, registry: ControllerRegistry = Depends(get_registry)):
    """
    Stream snapshots as server-sent events.

    Emits the current snapshot immediately, then one per state change or
    countdown tick, and ends after the terminal snapshot.
    """
    controller = _lookup(key, registry)
    queue: asyncio.Queue[TransactionSnapshot] = asyncio.Queue()
    controller.add_listener(queue.put_nowait)

    async def event_generator():
        try:
            snapshot = controller.snapshot()
            while True:
                yield f"data: {json.dumps(snapshot.model_dump(mode='json'))}\n\n"
                if snapshot.is_terminal:
                    break
                snapshot = await queue.get()
        finally:
            controller.remove_listener(queue.put_nowait)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/{key}/trace", response_model=list[AuditEntry])
async def get_checkout_trace(
    key: str,
    registry: ControllerRegistry = Depends(get_registry),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Full audit trail for an attempt, oldest first."""
    controller = _lookup(key, registry)
    txn = controller.transaction

    async with session_factory() as session:
        if txn.transaction_id:
            logs = await load_trail(session, transaction_id=txn.transaction_id)
        else:
            logs = await load_trail(session, retrieval_reference=txn.retrieval_reference)

    entries = []
    for log in logs:
        details = None
        if log.details:
            try:
                details = json.loads(log.details)
            except (json.JSONDecodeError, TypeError):
                details = {"raw": log.details}

        entries.append(AuditEntry(
            id=log.id,
            action=log.action,
            retrieval_reference=log.retrieval_reference,
            details=details,
            timestamp=log.timestamp.isoformat() if log.timestamp else None,
        ))
    return entries
