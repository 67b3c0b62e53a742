"""Preflight checks run before a session starts.

Connectivity, credential validity, and minimum balance are checked
independently so one failure doesn't hide the others.
"""

import logging

from galetrade.broker.binance_client import BinanceClient
from galetrade.broker.models import PreflightResult

logger = logging.getLogger("galetrade.preflight")


class ConnectivityValidator:
    """``PreflightValidator`` for the Binance adapter.

    Args:
        client: REST client to probe.
        quote_asset: Asset whose balance must cover *min_balance*.
        min_balance: Smallest free balance allowed to start trading.
    """

    def __init__(
        self,
        client: BinanceClient,
        quote_asset: str = "USDT",
        min_balance: float = 20.0,
    ) -> None:
        self._client = client
        self._quote_asset = quote_asset
        self._min_balance = min_balance

    async def validate_connection(self) -> tuple[bool, str | None]:
        try:
            if await self._client.ping():
                return True, None
            return False, "Exchange ping failed"
        except Exception as exc:
            return False, f"Exchange unreachable: {exc}"

    async def validate_credentials(self) -> tuple[bool, str | None, float | None]:
        """Return ``(ok, error, balance)`` from one signed account query."""
        try:
            balance = await self._client.available_balance(self._quote_asset)
        except Exception as exc:
            return False, f"Credentials invalid or not configured: {exc}", None
        return True, None, balance

    async def validate_all(self) -> PreflightResult:
        errors: list[str] = []
        details: dict = {}

        connected, error = await self.validate_connection()
        details["connectivity"] = connected
        if error:
            errors.append(error)

        credentials_ok, error, balance = await self.validate_credentials()
        details["credentials"] = credentials_ok
        if error:
            errors.append(error)

        if balance is not None:
            details["balance"] = balance
            details["min_balance"] = self._min_balance
            if balance < self._min_balance:
                errors.append(
                    f"Insufficient balance: need {self._min_balance:.2f} "
                    f"{self._quote_asset}, have {balance:.2f}"
                )

        if errors:
            logger.warning("Preflight failed: %s", "; ".join(errors))
        else:
            logger.info("Preflight passed (balance %.2f %s)", balance, self._quote_asset)
        return PreflightResult(
            ok=not errors,
            errors=errors,
            balance=balance,
            details=details,
        )
