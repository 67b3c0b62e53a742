"""GaleTrade — application entry point.

Boots the FastAPI internal server and provides the CLI entry point that
wires the engine to its Binance collaborators.
"""

import logging

from fastapi import FastAPI

from galetrade.api.routers import router

app = FastAPI(title="GaleTrade Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("galetrade")


@app.get("/health")
async def health():
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def build_engine(config, martingale_config, activity_repo=None):
    """Wire a ``MartingaleEngine`` to the Binance adapters."""
    from galetrade.activity import ActivityLog
    from galetrade.broker.binance_client import BinanceClient
    from galetrade.engine import MartingaleEngine
    from galetrade.feed.binance_stream import BinanceTickerStream
    from galetrade.preflight import ConnectivityValidator

    client = BinanceClient(config)
    return MartingaleEngine(
        config=martingale_config,
        stream=BinanceTickerStream(config.binance_stream_url),
        gateway=client,
        balances=client,
        validator=ConnectivityValidator(
            client,
            quote_asset=config.quote_asset,
            min_balance=config.min_start_balance,
        ),
        activity=ActivityLog(activity_repo),
        quote_asset=config.quote_asset,
        seed_source=client,
    )


def _run_cli() -> None:
    """Parse CLI arguments and run the engine (optionally with the API)."""
    import argparse
    import asyncio
    import signal

    from galetrade.api.routers import configure_routers
    from galetrade.config import load_config, load_martingale_config
    from galetrade.repos.activity_repo import ActivityRepo
    from galetrade.repos.db import init_db

    parser = argparse.ArgumentParser(description="GaleTrade martingale bot")
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the engine without the API server",
    )
    parser.add_argument(
        "--no-autostart",
        action="store_true",
        help="Serve the API but wait for POST /control/start",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    init_db(config.db_path)
    activity_repo = ActivityRepo(config.db_path)
    engine = build_engine(config, load_martingale_config(), activity_repo)
    configure_routers(engine=engine, activity_repo=activity_repo)

    async def _main() -> None:
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:  # pragma: no cover
                pass

        if not args.no_autostart:
            await engine.start()

        if args.engine_only:
            await stop_event.wait()
        else:
            import uvicorn

            server = uvicorn.Server(uvicorn.Config(
                app, host="0.0.0.0", port=config.api_port, log_level="info",
            ))
            server.install_signal_handlers = lambda: None
            serve_task = asyncio.create_task(server.serve())
            logger.info("API available at http://localhost:%d", config.api_port)
            await stop_event.wait()
            server.should_exit = True
            await serve_task

        logger.info("Shutdown signal received, stopping gracefully.")
        await engine.stop()

    asyncio.run(_main())


if __name__ == "__main__":
    _run_cli()
