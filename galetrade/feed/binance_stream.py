"""Binance ticker websocket — yields ``PriceTick`` objects.

Each ``subscribe`` call opens one connection and yields until it drops.
Reconnection is the ``PriceFeed``'s job, not this adapter's.
"""

import json
import logging
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import websockets

from galetrade.broker.models import PriceTick
from galetrade.errors import TransientFeedError

logger = logging.getLogger("galetrade.feed")


def parse_ticker_message(raw: str | bytes) -> Optional[PriceTick]:
    """Parse a 24hr ticker payload (``c`` = last price, ``v`` = volume).

    Returns ``None`` for anything that isn't a usable ticker message.
    """
    try:
        data = json.loads(raw)
        price = float(data["c"])
        volume = float(data.get("v", 0.0))
    except (ValueError, TypeError, KeyError):
        return None
    if price <= 0:
        return None

    event_ms = data.get("E")
    if isinstance(event_ms, (int, float)):
        ts = datetime.fromtimestamp(event_ms / 1000.0, tz=timezone.utc)
    else:
        ts = datetime.now(timezone.utc)
    return PriceTick(price=price, volume=volume, timestamp=ts)


class BinanceTickerStream:
    """``PriceStream`` backed by ``<symbol>@ticker`` on the Binance websocket.

    Args:
        base_url: Stream endpoint, e.g. ``wss://stream.binance.com:9443/ws``.
        ping_interval: Keep-alive ping interval in seconds.
    """

    def __init__(self, base_url: str, ping_interval: float = 20.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._ping_interval = ping_interval

    def url_for(self, symbol: str) -> str:
        return f"{self._base_url}/{symbol.lower()}@ticker"

    async def subscribe(self, symbol: str) -> AsyncIterator[PriceTick]:
        url = self.url_for(symbol)
        try:
            async with websockets.connect(url, ping_interval=self._ping_interval) as ws:
                logger.info("Connected to %s", url)
                async for raw in ws:
                    tick = parse_ticker_message(raw)
                    if tick is None:
                        logger.debug("Skipping malformed ticker message: %.120s", raw)
                        continue
                    yield tick
        except websockets.exceptions.ConnectionClosed as exc:
            raise TransientFeedError(f"stream closed: {exc}") from exc
        except (websockets.exceptions.WebSocketException, OSError) as exc:
            raise TransientFeedError(f"stream error: {exc}") from exc
        finally:
            logger.info("Disconnected from %s", url)
