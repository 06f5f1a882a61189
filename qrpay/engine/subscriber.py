"""
Notification subscriber for the gateway's push channel.

Consumes the channel for one retrieval reference in a background task and
reduces it to one of two outcomes:

  - confirmed        — "QR code scanned" carrying the approved response code
  - channel timeout  — the server sent "Timeout", the channel went quiet for
                       longer than the heartbeat window, the server closed
                       it, or the connection failed

Either outcome ends the subscription. Keep-alives and unrecognized messages
are skipped. After ``unsubscribe()`` returns no callback fires.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Optional

from qrpay.config import settings
from qrpay.gateway.base import MESSAGE_SCANNED, MESSAGE_TIMEOUT, GatewayNotification, PaymentGateway
from qrpay.gateway.errors import GatewayTransportError
from qrpay.models.enums import NotificationKind

logger = logging.getLogger("qrpay.subscriber")


@dataclass
class SubscriberEvent:
    kind: NotificationKind
    response_code: str = ""
    reason: str = ""


EventCallback = Callable[[SubscriberEvent], Awaitable[None]]
TimeoutCallback = Callable[[], Awaitable[None]]


class NotificationSubscriber:
    def __init__(
        self,
        gateway: PaymentGateway,
        heartbeat_timeout: Optional[float] = None,
        approved_code: Optional[str] = None,
    ):
        self._gateway = gateway
        self._heartbeat_timeout = (
            heartbeat_timeout if heartbeat_timeout is not None else settings.heartbeat_timeout_seconds
        )
        self._approved_code = approved_code or settings.approved_response_code
        self._task: Optional[asyncio.Task] = None
        self._runner: Optional[asyncio.Task] = None
        self._active = False
        self._reference: Optional[str] = None

    @property
    def active(self) -> bool:
        return self._active

    def subscribe(
        self,
        retrieval_reference: str,
        on_event: EventCallback,
        on_stream_timeout: TimeoutCallback,
    ) -> None:
        """Open the push channel. Only one subscription may be active."""
        if self._active:
            raise RuntimeError(f"Already subscribed to {self._reference}")
        if not retrieval_reference:
            raise ValueError("A retrieval reference is required to subscribe")

        self._active = True
        self._reference = retrieval_reference
        self._task = asyncio.create_task(
            self._consume(retrieval_reference, on_event, on_stream_timeout),
            name=f"qrpay-subscriber-{retrieval_reference}",
        )
        self._runner = self._task
        logger.info("Subscribed to push channel ref=%s", retrieval_reference)

    def unsubscribe(self) -> None:
        """Close the push channel. Safe to call repeatedly and from callbacks."""
        if self._active:
            logger.info("Unsubscribed from push channel ref=%s", self._reference)
        self._active = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def shutdown(self) -> None:
        """Unsubscribe and wait until the listener task has closed the stream."""
        self.unsubscribe()
        runner, self._runner = self._runner, None
        if runner is not None and runner is not asyncio.current_task():
            await asyncio.gather(runner, return_exceptions=True)

    async def _consume(
        self,
        retrieval_reference: str,
        on_event: EventCallback,
        on_stream_timeout: TimeoutCallback,
    ) -> None:
        stream = self._gateway.notifications(retrieval_reference)
        try:
            event = await self._listen(stream)
        except Exception:
            logger.exception("Push channel listener failed ref=%s", retrieval_reference)
            event = SubscriberEvent(kind=NotificationKind.CHANNEL_TIMEOUT, reason="listener error")
        finally:
            await _close_stream(stream)

        if event is None or not self._active:
            return

        self._active = False
        self._task = None

        try:
            if event.kind is NotificationKind.CONFIRMED:
                await on_event(event)
            else:
                logger.info("Push channel timeout ref=%s (%s)", retrieval_reference, event.reason)
                await on_stream_timeout()
        except Exception:
            logger.exception("Notification callback failed ref=%s", retrieval_reference)

    async def _listen(self, stream: AsyncIterator[GatewayNotification]) -> Optional[SubscriberEvent]:
        """Read until something decisive happens. None means we were unsubscribed."""
        iterator = stream.__aiter__()
        while self._active:
            try:
                notification = await asyncio.wait_for(
                    iterator.__anext__(), timeout=self._heartbeat_timeout
                )
            except StopAsyncIteration:
                return SubscriberEvent(kind=NotificationKind.CHANNEL_TIMEOUT, reason="closed by server")
            except asyncio.TimeoutError:
                return SubscriberEvent(kind=NotificationKind.CHANNEL_TIMEOUT, reason="heartbeat lost")
            except GatewayTransportError as e:
                return SubscriberEvent(kind=NotificationKind.CHANNEL_TIMEOUT, reason=str(e))

            if notification.is_heartbeat:
                continue

            if notification.message == MESSAGE_SCANNED:
                if notification.response_code == self._approved_code:
                    return SubscriberEvent(
                        kind=NotificationKind.CONFIRMED,
                        response_code=notification.response_code,
                    )
                logger.warning(
                    "Ignoring scan notification with code=%s", notification.response_code or "-"
                )
                continue

            if notification.message == MESSAGE_TIMEOUT:
                return SubscriberEvent(kind=NotificationKind.CHANNEL_TIMEOUT, reason="server timeout")

            logger.debug("Ignoring push message: %s", notification.raw or notification.message)

        return None


async def _close_stream(stream: AsyncIterator[GatewayNotification]) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()
