"""Price feed — bounded rolling history fed by a live stream.

The stream-consumer task is the only writer of the history.  Readers get
copies, never the underlying deque.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from galetrade.broker.base import PriceStream
from galetrade.errors import TransientFeedError

logger = logging.getLogger("galetrade.feed")

DEFAULT_CAPACITY = 50
RECONNECT_DELAY_SECONDS = 5.0


@dataclass(frozen=True)
class PriceSample:
    price: float
    volume: float
    timestamp: datetime


class PriceHistory:
    """Fixed-capacity chronological sequence of price samples.

    Args:
        capacity: Maximum number of samples kept; oldest are evicted first.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._samples: deque[PriceSample] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._samples.maxlen or 0

    def __len__(self) -> int:
        return len(self._samples)

    def append(
        self,
        price: float,
        volume: float = 0.0,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """Append a sample, evicting the oldest when full."""
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)
        self._samples.append(PriceSample(price, volume, timestamp))

    def prices(self) -> list[float]:
        """Prices oldest-first (a copy)."""
        return [s.price for s in self._samples]

    def snapshot(self) -> list[PriceSample]:
        return list(self._samples)

    def latest(self) -> Optional[float]:
        if not self._samples:
            return None
        return self._samples[-1].price


class PriceFeed:
    """Consumes a ``PriceStream`` into a ``PriceHistory``.

    Reconnects after a fixed delay whenever the stream errors or ends,
    for as long as the feed is running.

    Args:
        symbol: Instrument to subscribe to.
        stream: Any object implementing ``PriceStream``.
        history: History to fill.  A new one is created when omitted.
        reconnect_delay: Seconds to wait before resubscribing.
    """

    def __init__(
        self,
        symbol: str,
        stream: PriceStream,
        history: Optional[PriceHistory] = None,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
    ) -> None:
        self._symbol = symbol
        self._stream = stream
        self._history = history if history is not None else PriceHistory()
        self._reconnect_delay = reconnect_delay
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.reconnect_count = 0

    @property
    def symbol(self) -> str:
        return self._symbol

    @property
    def history(self) -> PriceHistory:
        return self._history

    @property
    def running(self) -> bool:
        return self._running

    def append(
        self,
        price: float,
        volume: float = 0.0,
        timestamp: Optional[datetime] = None,
    ) -> None:
        self._history.append(price, volume, timestamp)

    def seed(self, prices: Iterable[float]) -> int:
        """Pre-fill history with recent prices (oldest first)."""
        count = 0
        for price in prices:
            self._history.append(price)
            count += 1
        logger.info("Seeded %s history with %d prices.", self._symbol, count)
        return count

    async def latest_price(self, symbol: Optional[str] = None) -> Optional[float]:
        """Newest price in the history, or ``None`` before the first tick."""
        return self._history.latest()

    # ── Lifecycle ────────────────────────────────────────────────────────

    def connect(self) -> asyncio.Task:
        """Start the stream-consumer task (idempotent while running)."""
        if self._task is not None and not self._task.done():
            return self._task
        self._running = True
        self._task = asyncio.create_task(
            self._consume(), name=f"price-feed-{self._symbol}"
        )
        return self._task

    async def stop(self) -> None:
        """Stop consuming and wait for the consumer to exit."""
        self._running = False
        task, self._task = self._task, None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.error("Price feed for %s exited with error: %r", self._symbol, exc)
        logger.info("Price feed for %s stopped.", self._symbol)

    async def _consume(self) -> None:
        while self._running:
            try:
                logger.info("Subscribing to %s price stream.", self._symbol)
                async for tick in self._stream.subscribe(self._symbol):
                    self._history.append(tick.price, tick.volume, tick.timestamp)
                logger.warning("Price stream for %s closed.", self._symbol)
            except TransientFeedError as exc:
                logger.warning("Price stream for %s error: %s", self._symbol, exc)
            except Exception as exc:
                logger.error(
                    "Price stream for %s failed unexpectedly: %r", self._symbol, exc,
                )

            if not self._running:
                break
            self.reconnect_count += 1
            logger.info(
                "Reconnecting %s stream in %.1fs (attempt %d).",
                self._symbol, self._reconnect_delay, self.reconnect_count,
            )
            await asyncio.sleep(self._reconnect_delay)
