"""Interval scheduling — one cancellable ticker per periodic activity."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("galetrade.scheduling")


class Ticker:
    """Calls *callback* every *interval* seconds until stopped.

    The first call happens one interval after ``start()``.  An exception
    from one call is logged and the next tick still fires.

    Args:
        name: Label used in logs and as the task name.
        interval: Seconds between calls.
        callback: Coroutine function taking no arguments.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], Awaitable[object]],
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self._name = name
        self._interval = interval
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self._active = False
        self.tick_count = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def active(self) -> bool:
        return self._active

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._active = True
        self._task = asyncio.create_task(self._run(), name=f"ticker-{self._name}")

    async def stop(self) -> None:
        """Cancel the ticker and wait for it to finish.

        Safe to call more than once and from inside the ticker's own
        callback, in which case the loop exits once the callback returns.
        """
        self._active = False
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.error("Ticker '%s' exited with error: %r", self._name, exc)

    async def _run(self) -> None:
        while self._active:
            await asyncio.sleep(self._interval)
            if not self._active:
                break
            self.tick_count += 1
            try:
                await self._callback()
            except Exception as exc:
                logger.error("Ticker '%s' tick %d error: %s", self._name, self.tick_count, exc)
