"""GaleTrade — application configuration.

Loads .env variables into typed config objects.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass, fields, replace

from dotenv import load_dotenv


_REQUIRED_VARS = [
    "BINANCE_API_KEY",
    "BINANCE_API_SECRET",
]


@dataclass(frozen=True)
class Config:
    """Typed application configuration loaded from environment variables."""

    binance_api_key: str
    binance_api_secret: str
    binance_base_url: str
    binance_stream_url: str
    quote_asset: str
    min_start_balance: float
    db_path: str
    log_level: str
    api_port: int


@dataclass(frozen=True)
class MartingaleConfig:
    """Per-session trading parameters.

    Immutable for the life of a session; the engine snapshots it on
    ``start()`` and a merged copy only takes effect on the next start.
    Durations are in seconds, percentages are 0–100.
    """

    symbol: str = "SHIBUSDT"
    initial_stake: float = 5.0
    gale_factor: float = 1.5
    max_attempts: int = 3
    min_probability: float = 65.0
    victory_cooldown_seconds: float = 120.0
    defeat_cooldown_seconds: float = 600.0
    contract_duration_seconds: float = 1800.0
    max_daily_loss: float = 20.0
    capital_total: float = 100.0
    max_risk_per_cycle: float = 35.0

    def merged(self, **changes) -> "MartingaleConfig":
        """Return a copy with *changes* applied.

        Ranges are not validated here.  Unknown field names raise
        ``TypeError``.
        """
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        binance_api_key=os.environ["BINANCE_API_KEY"],
        binance_api_secret=os.environ["BINANCE_API_SECRET"],
        binance_base_url=os.environ.get("BINANCE_BASE_URL", "https://api.binance.com"),
        binance_stream_url=os.environ.get(
            "BINANCE_STREAM_URL", "wss://stream.binance.com:9443/ws"
        ),
        quote_asset=os.environ.get("QUOTE_ASSET", "USDT"),
        min_start_balance=float(os.environ.get("MIN_START_BALANCE", "20.0")),
        db_path=os.environ.get("DB_PATH", "data/galetrade.db"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
    )


# MARTINGALE_<FIELD> overrides, e.g. MARTINGALE_GALE_FACTOR=2.0
_MARTINGALE_ENV_PREFIX = "MARTINGALE_"


def load_martingale_config(env_path: str | None = None) -> MartingaleConfig:
    """Build a ``MartingaleConfig`` from defaults plus ``MARTINGALE_*`` vars."""
    load_dotenv(dotenv_path=env_path)

    defaults = MartingaleConfig()
    overrides: dict = {}
    for f in fields(MartingaleConfig):
        raw = os.environ.get(_MARTINGALE_ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        current = getattr(defaults, f.name)
        if isinstance(current, str):
            overrides[f.name] = raw
        elif isinstance(current, int):
            overrides[f.name] = int(raw)
        else:
            overrides[f.name] = float(raw)
    return defaults.merged(**overrides)
