"""
Countdown timer for the QR validity window.

A single repeating tick (one second by default) decrements a counter and
reports it. When the counter reaches zero the expiry callback fires once
and the timer stops itself.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Optional

from qrpay.config import settings

logger = logging.getLogger("qrpay.countdown")

TickCallback = Callable[[int], Awaitable[None]]
ExpireCallback = Callable[[], Awaitable[None]]


class CountdownTimer:
    def __init__(self, tick_interval: Optional[float] = None):
        self._interval = tick_interval if tick_interval is not None else settings.tick_interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._runner: Optional[asyncio.Task] = None
        self._running = False
        self._remaining = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def remaining(self) -> int:
        return self._remaining

    def start(self, total_seconds: int, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        """Begin ticking. Only one countdown may run at a time."""
        if self._running:
            raise RuntimeError("Countdown is already running")

        self._remaining = max(int(total_seconds), 0)
        self._running = True
        self._task = asyncio.create_task(self._run(on_tick, on_expire), name="qrpay-countdown")
        self._runner = self._task

    def stop(self) -> None:
        """Cancel the countdown. No-op when it is not running."""
        self._running = False
        task, self._task = self._task, None
        # A callback may stop the timer from inside its own task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def shutdown(self) -> None:
        """Stop and wait until the countdown task has fully unwound."""
        self.stop()
        runner, self._runner = self._runner, None
        if runner is not None and runner is not asyncio.current_task():
            await asyncio.gather(runner, return_exceptions=True)

    async def _run(self, on_tick: TickCallback, on_expire: ExpireCallback) -> None:
        try:
            while self._running:
                await asyncio.sleep(self._interval)
                if not self._running:
                    return

                self._remaining = max(self._remaining - 1, 0)
                await on_tick(self._remaining)

                if self._remaining == 0:
                    if not self._running:
                        return
                    self._running = False
                    self._task = None
                    logger.debug("Countdown expired")
                    await on_expire()
                    return
        except Exception:
            self._running = False
            logger.exception("Countdown callback failed")
