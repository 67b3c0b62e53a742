"""Binance spot REST API async client.

Handles all REST communication the engine needs: connectivity, account
balances, latest prices, recent closes, and market-order placement.
"""

import asyncio
import hashlib
import hmac
import logging
import time
from typing import Optional
from urllib.parse import urlencode

import httpx

from galetrade.broker.models import AccountBalance, OrderFill
from galetrade.config import Config
from galetrade.risk.position_sizer import calculate_quantity
from galetrade.strategy.models import Direction

logger = logging.getLogger("galetrade.broker")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

# Base-asset quantity precision per symbol; whole units where listed as 0
SYMBOL_QUANTITY_DECIMALS: dict[str, int] = {
    "SHIBUSDT": 0,
    "PEPEUSDT": 0,
    "DOGEUSDT": 0,
    "BTCUSDT": 5,
    "ETHUSDT": 4,
}
MIN_NOTIONAL = 1.0


class OrderRejectedError(Exception):
    """The exchange answered but refused the order."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class BinanceClient:
    """Async client wrapping the Binance spot REST API.

    Args:
        config: Application config with credentials and base URL.
        transport: Optional ``httpx`` transport (used by tests).
    """

    def __init__(
        self,
        config: Config,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = config.binance_base_url.rstrip("/")
        self._api_key = config.binance_api_key
        self._api_secret = config.binance_api_secret
        self._transport = transport
        self._retry_base_delay = _RETRY_BASE_DELAY

    # ── Signing ──────────────────────────────────────────────────────────

    def _sign(self, params: dict) -> dict:
        """Add ``timestamp`` and the HMAC-SHA256 ``signature`` to *params*."""
        signed = {**params, "timestamp": int(time.time() * 1000)}
        query = urlencode(signed)
        signed["signature"] = hmac.new(
            self._api_secret.encode(), query.encode(), hashlib.sha256,
        ).hexdigest()
        return signed

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        signed: bool = False,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute an HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.  Signed
        requests are re-signed on every attempt so the timestamp stays
        fresh.
        """
        url = f"{self._base_url}{path}"
        headers = {"X-MBX-APIKEY": self._api_key} if signed else {}
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            query = self._sign(params or {}) if signed else (params or {})
            try:
                async with httpx.AsyncClient(transport=self._transport) as client:
                    resp = await client.request(
                        method.upper(),
                        url,
                        params=query,
                        headers=headers,
                        timeout=30.0,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = self._retry_base_delay * (2 ** attempt)
                    logger.warning(
                        "Binance %s %s returned %d; retry %d/%d in %.1fs",
                        method.upper(), path, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                return resp

            except httpx.TransportError as exc:
                delay = self._retry_base_delay * (2 ** attempt)
                logger.warning(
                    "Binance %s %s transport error (%s); retry %d/%d in %.1fs",
                    method.upper(), path, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        # All retries exhausted, raise the last error
        raise last_exc  # type: ignore[misc]

    # ── Market data ──────────────────────────────────────────────────────

    async def ping(self) -> bool:
        """Return ``True`` when the REST API answers ``/api/v3/ping``."""
        resp = await self._request_with_retry("get", "/api/v3/ping")
        return resp.status_code == 200

    async def latest_price(self, symbol: str) -> Optional[float]:
        """Return the last traded price, or ``None`` when it can't be fetched."""
        try:
            resp = await self._request_with_retry(
                "get", "/api/v3/ticker/price", params={"symbol": symbol},
            )
            resp.raise_for_status()
            return float(resp.json()["price"])
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            logger.warning("Could not fetch %s price: %s", symbol, exc)
            return None

    async def fetch_recent_prices(self, symbol: str, limit: int = 50) -> list[float]:
        """Closing prices of the last *limit* 1-minute klines, oldest first."""
        resp = await self._request_with_retry(
            "get",
            "/api/v3/klines",
            params={"symbol": symbol, "interval": "1m", "limit": limit},
        )
        resp.raise_for_status()
        return [float(k[4]) for k in resp.json()]

    # ── Account ──────────────────────────────────────────────────────────

    async def get_account_balances(self) -> list[AccountBalance]:
        """Query the signed ``/api/v3/account`` endpoint for balances."""
        resp = await self._request_with_retry("get", "/api/v3/account", signed=True)
        resp.raise_for_status()

        balances: list[AccountBalance] = []
        for b in resp.json().get("balances", []):
            balances.append(
                AccountBalance(
                    asset=b["asset"],
                    free=float(b["free"]),
                    locked=float(b["locked"]),
                )
            )
        return balances

    async def available_balance(self, asset: str) -> float:
        """Free amount of *asset* (0.0 when the account doesn't hold it)."""
        for balance in await self.get_account_balances():
            if balance.asset == asset:
                return balance.free
        return 0.0

    # ── Orders ───────────────────────────────────────────────────────────

    async def open_position(
        self,
        symbol: str,
        direction: Direction,
        stake: float,
        price: float,
    ) -> OrderFill:
        """Place a MARKET order worth *stake* quote units.

        Raises:
            OrderRejectedError: The exchange refused the order.
            ValueError: The stake/price produce no valid quantity.
        """
        decimals = SYMBOL_QUANTITY_DECIMALS.get(symbol, 8)
        quantity = calculate_quantity(stake, price, decimals=decimals, min_notional=MIN_NOTIONAL)
        qty_str = f"{quantity:.{decimals}f}"

        resp = await self._request_with_retry(
            "post",
            "/api/v3/order",
            signed=True,
            params={
                "symbol": symbol,
                "side": direction.side,
                "type": "MARKET",
                "quantity": qty_str,
            },
        )
        data = resp.json()
        if resp.status_code >= 400:
            raise OrderRejectedError(
                data.get("msg", f"HTTP {resp.status_code}"), code=data.get("code"),
            )

        logger.info(
            "%s %s %s placed: order %s", direction.side, qty_str, symbol, data["orderId"],
        )
        return OrderFill(
            order_id=str(data["orderId"]),
            quantity=float(data.get("executedQty", quantity)),
            price=price,
        )
