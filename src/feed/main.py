"""Entry point for the launchpad trade feed.

Wires all components together, optionally embeds the FastAPI read API,
and starts the ingestion loop. When the API is enabled (default), the
refresh loop and the API share a single asyncio event loop via uvicorn's
programmatic API and FastAPI's lifespan context manager.

Component wiring order (in _build_components):
1. SolanaRpcClient (chain access)
2. RateLimitedFetcher (retry/backoff for every RPC call)
3. TTLCache (pool and snapshot cache, when enabled)
4. PoolLocator (program account scan)
5. TradeClassifier (transaction heuristics)
6. IngestionService (refresh orchestration, tracked subjects)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI

from feed.cache import TTLCache
from feed.chain.solana_client import SolanaRpcClient
from feed.config import AppSettings
from feed.fetching.batch import BatchScheduler
from feed.fetching.retry import RateLimitedFetcher
from feed.ingestion import FEED_SUBJECT, IngestionService
from feed.logging import get_logger, setup_logging
from feed.pools.locator import PoolLocator
from feed.trades.classifier import LogTransferAmountDecoder, TradeClassifier


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all feed components from settings.

    Does NOT connect the chain client; that happens in the lifespan
    (API mode) or run() (headless mode).
    """
    client = SolanaRpcClient(settings.chain)
    fetcher = RateLimitedFetcher(
        max_retries=settings.fetch.max_retries,
        base_delay=settings.fetch.retry_base_delay,
    )
    cache = TTLCache(default_ttl=settings.cache.default_ttl) if settings.cache.enabled else None

    balance_scheduler = None
    if settings.pools.check_balances:
        balance_scheduler = BatchScheduler(
            batch_size=settings.pools.balance_batch_size,
            batch_delay=settings.fetch.batch_delay,
        )
    locator = PoolLocator(
        client,
        fetcher,
        verify_discriminator=settings.pools.verify_discriminator,
        balance_scheduler=balance_scheduler,
    )

    classifier = TradeClassifier(
        decoder=LogTransferAmountDecoder(settings.ingestion.token_decimals),
        estimate_multiplier=settings.ingestion.estimate_multiplier,
    )

    service = IngestionService(
        settings=settings,
        client=client,
        fetcher=fetcher,
        classifier=classifier,
        locator=locator,
        cache=cache,
    )
    if settings.ingestion.track_feed:
        service.track(FEED_SUBJECT)
    for subject in settings.ingestion.subjects:
        service.track(subject)

    return {
        "client": client,
        "fetcher": fetcher,
        "cache": cache,
        "locator": locator,
        "classifier": classifier,
        "service": service,
    }


def _setup_signal_handlers(service: IngestionService) -> None:
    """Stop the refresh loop on SIGINT/SIGTERM. Needs a running event loop."""
    logger = get_logger("feed.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(service.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the chain client and run the refresh loop for the app's lifetime."""
    logger = get_logger("feed.main")
    components = app.state.components

    app.state.service = components["service"]
    app.state.cache = components["cache"]

    await components["client"].connect()
    await components["service"].start()
    logger.info("lifespan_started", subjects=components["service"].get_subjects())

    yield

    await components["service"].stop()
    await components["client"].close()
    logger.info("launchpad_feed_stopped")


async def run() -> None:
    """Run the feed, with or without the read API (API_ENABLED)."""
    settings = AppSettings()

    setup_logging(settings.log_level, settings.log_format)
    logger = get_logger("feed.main")

    components = _build_components(settings)

    if settings.api.enabled:
        from feed.api.app import create_app

        app = create_app(lifespan=lifespan)
        app.state.settings = settings
        app.state.components = components

        logger.info(
            "starting_with_api",
            host=settings.api.host,
            port=settings.api.port,
            rpc_url=settings.chain.rpc_url,
        )

        config = uvicorn.Config(
            app,
            host=settings.api.host,
            port=settings.api.port,
            log_level="warning",  # Suppress uvicorn access logs
        )
        server = uvicorn.Server(config)
        await server.serve()
        return

    service: IngestionService = components["service"]
    _setup_signal_handlers(service)
    logger.info("starting_without_api", rpc_url=settings.chain.rpc_url)

    try:
        await components["client"].connect()
        await service.start()
        while service.is_running:
            await asyncio.sleep(1)
    finally:
        await service.stop()
        await components["client"].close()
        logger.info("launchpad_feed_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
