"""
Transaction controller — the QR payment state machine.

Owns one Transaction and drives it through:

  IDLE → REQUESTING → DISPLAYING → QUERYING → SUCCEEDED | DECLINED | CANCELLED

with REQUESTING allowed to fail straight to DECLINED. While DISPLAYING, two
independent sources can end the wait:

  - the notification subscriber (payment confirmed, or channel timeout)
  - the countdown timer (the on-screen validity window ran out)

Timeouts from either source fall back to a single status query, told which
side timed out. The first terminal-causing event wins: every callback checks
the state it expects before mutating anything, and that check happens
before its first await, so late timer ticks, notifications and query
results are dropped.

On reaching a terminal state the controller stops the timer, closes the
subscription, clears the persisted retrieval reference, writes an audit
entry and notifies listeners. Listeners replace direct navigation: the host
application decides what "success" or "failure" means for its UI.
"""

import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from qrpay.audit.logger import log_event
from qrpay.config import settings
from qrpay.engine.countdown import CountdownTimer
from qrpay.engine.requester import RequestError, TransactionRequester, validate_request_inputs
from qrpay.engine.status_query import QueryError, StatusQuery
from qrpay.engine.subscriber import NotificationSubscriber, SubscriberEvent
from qrpay.gateway.base import PaymentGateway
from qrpay.models.enums import AuditAction, QueryOutcome, TransactionState
from qrpay.models.transaction import Transaction, TransactionSnapshot
from qrpay.store.reference_store import ReferenceStore

logger = logging.getLogger("qrpay.controller")

StateListener = Callable[[TransactionSnapshot], Union[None, Awaitable[None]]]

CANCELLABLE_STATES = (TransactionState.DISPLAYING, TransactionState.QUERYING)


def new_transaction_id() -> str:
    return f"{settings.txn_id_prefix}{uuid.uuid4()}"


class TransactionController:
    def __init__(
        self,
        gateway: PaymentGateway,
        session_factory: async_sessionmaker[AsyncSession],
        amount: Any = None,
        transaction_id: Optional[str] = None,
        mobile: int = 0,
        *,
        countdown_seconds: Optional[int] = None,
        tick_interval: Optional[float] = None,
        heartbeat_timeout: Optional[float] = None,
    ):
        self._sessions = session_factory
        self._store = ReferenceStore(session_factory)
        self._requester = TransactionRequester(gateway)
        self._status_query = StatusQuery(gateway)
        self._timer = CountdownTimer(tick_interval)
        self._subscriber = NotificationSubscriber(gateway, heartbeat_timeout)
        self._countdown_seconds = (
            countdown_seconds if countdown_seconds is not None else settings.countdown_seconds
        )

        self._requested_amount = amount if amount is not None else settings.default_amount
        self.transaction = Transaction(
            transaction_id=transaction_id or new_transaction_id(),
            amount=None,
            mobile=mobile,
            remaining_seconds=self._countdown_seconds,
        )

        self._listeners: list[StateListener] = []
        self._terminal = asyncio.Event()
        self._closed = False

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> TransactionState:
        return self.transaction.state

    @property
    def key(self) -> str:
        """Registry key: the transaction ID, or the reference for a resumed attempt."""
        return self.transaction.transaction_id or self.transaction.retrieval_reference or ""

    @property
    def timer_running(self) -> bool:
        return self._timer.running

    @property
    def subscribed(self) -> bool:
        return self._subscriber.active

    def snapshot(self) -> TransactionSnapshot:
        return self.transaction.snapshot()

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def wait_for_terminal(self, timeout: Optional[float] = None) -> TransactionSnapshot:
        await asyncio.wait_for(self._terminal.wait(), timeout=timeout)
        return self.snapshot()

    async def start(self) -> TransactionSnapshot:
        """
        Request a QR code ("Generate QR").

        Only valid from IDLE; repeated calls return the current snapshot
        without sending another request.
        """
        txn = self.transaction
        if txn.state is not TransactionState.IDLE or self._closed:
            logger.debug("Ignoring start for txn=%s in state %s", txn.transaction_id, txn.state.value)
            return self.snapshot()

        check = validate_request_inputs(self._requested_amount, txn.transaction_id)
        if check.valid:
            txn.amount = check.amount

        txn.state = TransactionState.REQUESTING
        await self._record(AuditAction.REQUEST_SENT, {
            "amount": txn.amount,
            "mobile": txn.mobile,
        })
        await self._notify()

        result = await self._requester.request(self._requested_amount, txn.transaction_id, txn.mobile)

        if not self._in_state(TransactionState.REQUESTING, "request result"):
            return self.snapshot()

        if isinstance(result, RequestError):
            txn.response_code = result.code
            txn.network_status = result.network_status
            txn.transaction_status = result.transaction_status
            txn.instruction = result.instruction
            txn.error_message = result.message
            await self._finish(TransactionState.DECLINED, AuditAction.REQUEST_DECLINED, {
                "code": result.code,
                "retryable": result.retryable,
                "message": result.user_message,
            })
            return self.snapshot()

        txn.retrieval_reference = result.retrieval_reference
        txn.qr_image_base64 = result.qr_image_base64
        txn.response_code = result.response_code
        txn.network_status = result.network_status
        txn.transaction_status = result.transaction_status

        await self._persist_reference(result.retrieval_reference)
        if not self._in_state(TransactionState.REQUESTING, "request result"):
            return self.snapshot()

        await self._enter_displaying(AuditAction.QR_DISPLAYED)
        return self.snapshot()

    async def cancel(self) -> bool:
        """
        User-initiated cancel.

        Honored while the QR is on screen, including while a fallback query is
        in flight (its result is then discarded). Returns whether the
        transaction moved to CANCELLED.
        """
        txn = self.transaction
        if txn.state not in CANCELLABLE_STATES or self._closed:
            logger.info(
                "Cancel ignored for txn=%s in state %s", txn.transaction_id or "-", txn.state.value
            )
            return False

        self._timer.stop()
        self._subscriber.unsubscribe()
        await self._finish(TransactionState.CANCELLED, AuditAction.CANCELLED, {
            "remaining_seconds": txn.remaining_seconds,
        })
        return True

    async def close(self) -> None:
        """
        Release timer and subscription without a transition (shutdown).

        Returns once both background tasks have finished, so the gateway
        session and the database engine can be closed right after.
        """
        self._closed = True
        await asyncio.gather(self._timer.shutdown(), self._subscriber.shutdown())

    @classmethod
    async def resume(
        cls,
        gateway: PaymentGateway,
        session_factory: async_sessionmaker[AsyncSession],
        **kwargs: Any,
    ) -> Optional["TransactionController"]:
        """
        Pick up an attempt interrupted by a reload.

        If a retrieval reference is persisted, re-enter DISPLAYING with a fresh
        countdown and reopen the push channel; no new QR is requested. The
        QR image itself is not persisted, so the snapshot has none.
        """
        reference = await ReferenceStore(session_factory).load()
        if not reference:
            return None

        controller = cls(gateway, session_factory, **kwargs)
        txn = Transaction(
            transaction_id=None,
            amount=None,
            remaining_seconds=controller._countdown_seconds,
        )
        txn.retrieval_reference = reference
        controller.transaction = txn

        logger.info("Resuming transaction ref=%s", reference)
        await controller._enter_displaying(AuditAction.RESUMED)
        return controller

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _in_state(self, expected: TransactionState, trigger: str) -> bool:
        current = self.transaction.state
        if self._closed or current is not expected:
            logger.debug(
                "Dropping %s for txn=%s: state is %s, expected %s",
                trigger,
                self.key or "-",
                current.value,
                expected.value,
            )
            return False
        return True

    async def _enter_displaying(self, action: AuditAction) -> None:
        txn = self.transaction
        txn.state = TransactionState.DISPLAYING
        self._timer.start(txn.remaining_seconds, self._on_tick, self._on_countdown_expired)
        self._subscriber.subscribe(
            txn.retrieval_reference, self._on_notification, self._on_channel_timeout
        )
        await self._record(action, {"countdown_seconds": txn.remaining_seconds})
        await self._notify()

    async def _on_tick(self, remaining: int) -> None:
        if self.transaction.state is not TransactionState.DISPLAYING or self._closed:
            return
        self.transaction.remaining_seconds = remaining
        await self._notify()

    async def _on_notification(self, event: SubscriberEvent) -> None:
        if not self._in_state(TransactionState.DISPLAYING, "payment confirmation"):
            return
        self.transaction.response_code = event.response_code
        await self._finish(TransactionState.SUCCEEDED, AuditAction.PAYMENT_CONFIRMED, {
            "source": "push_channel",
            "response_code": event.response_code,
        })

    async def _on_countdown_expired(self) -> None:
        if not self._in_state(TransactionState.DISPLAYING, "countdown expiry"):
            return
        txn = self.transaction
        txn.state = TransactionState.QUERYING
        txn.remaining_seconds = 0
        txn.frontend_timed_out = True
        self._subscriber.unsubscribe()
        await self._run_status_query(AuditAction.COUNTDOWN_EXPIRED)

    async def _on_channel_timeout(self) -> None:
        if not self._in_state(TransactionState.DISPLAYING, "channel timeout"):
            return
        self.transaction.state = TransactionState.QUERYING
        self._timer.stop()
        await self._run_status_query(AuditAction.CHANNEL_TIMEOUT)

    async def _run_status_query(self, trigger: AuditAction) -> None:
        txn = self.transaction
        await self._record(trigger, {"frontend_timed_out": txn.frontend_timed_out})
        await self._notify()

        # A cancel may have landed while the trigger was being recorded
        if not self._in_state(TransactionState.QUERYING, "status query"):
            return

        try:
            result = await self._status_query.query(txn.retrieval_reference, txn.frontend_timed_out)
        except Exception as e:
            logger.exception("Unexpected status query error for ref=%s", txn.retrieval_reference)
            result = QueryError(message=f"Unexpected error: {e}")

        if not self._in_state(TransactionState.QUERYING, "status query result"):
            return

        if result is QueryOutcome.CONFIRMED:
            await self._finish(TransactionState.SUCCEEDED, AuditAction.QUERY_CONFIRMED, {
                "frontend_timed_out": txn.frontend_timed_out,
            })
        elif isinstance(result, QueryError):
            txn.error_message = settings.decline_message
            await self._finish(TransactionState.DECLINED, AuditAction.QUERY_FAILED, {
                "error": result.message,
                "status_code": result.status_code,
            })
        else:
            txn.error_message = settings.decline_message
            await self._finish(TransactionState.DECLINED, AuditAction.QUERY_DECLINED, {
                "frontend_timed_out": txn.frontend_timed_out,
            })

    async def _finish(
        self,
        state: TransactionState,
        action: AuditAction,
        details: dict[str, Any],
    ) -> None:
        txn = self.transaction
        txn.state = state
        txn.completed_at = datetime.now(timezone.utc)
        self._timer.stop()
        self._subscriber.unsubscribe()

        try:
            if txn.retrieval_reference:
                await self._forget_reference(txn.retrieval_reference)
            await self._record(action, {**details, "final_state": state.value})
        finally:
            logger.info(
                "Transaction %s finished: %s (ref=%s) after %.1fs",
                self.key or "-",
                state.value,
                txn.retrieval_reference or "-",
                (txn.completed_at - txn.started_at).total_seconds(),
            )
            self._terminal.set()
            await self._notify()

    # ------------------------------------------------------------------
    # Side channels
    # ------------------------------------------------------------------

    # Database writes are best-effort: a failed write is logged and the
    # transaction keeps moving towards a terminal state.

    async def _record(self, action: AuditAction, details: Optional[dict[str, Any]] = None) -> None:
        txn = self.transaction
        try:
            async with self._sessions() as session:
                await log_event(
                    session,
                    action,
                    transaction_id=txn.transaction_id,
                    retrieval_reference=txn.retrieval_reference,
                    details=details,
                )
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Audit write failed for txn=%s action=%s", self.key or "-", action.value)

    async def _persist_reference(self, retrieval_reference: str) -> None:
        try:
            await self._store.save(retrieval_reference)
        except SQLAlchemyError:
            logger.exception("Could not persist ref=%s; the attempt will not survive a reload", retrieval_reference)

    async def _forget_reference(self, retrieval_reference: str) -> None:
        try:
            await self._store.clear(expected=retrieval_reference)
        except SQLAlchemyError:
            logger.exception("Could not clear persisted ref=%s", retrieval_reference)

    async def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                result = listener(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("State listener failed for txn=%s", self.key or "-")
