"""Entry point: wire dependencies and run the tick scheduler."""

import asyncio
import signal
import sys

import structlog

from strategy_runner.brokers.registry import BrokerRegistry
from strategy_runner.config import Settings
from strategy_runner.db.engine import create_db_engine, create_session_factory
from strategy_runner.db.repository import (
    AccountRepository,
    DecisionRepository,
    OrderRepository,
    PositionRepository,
    SessionRepository,
    StrategyRepository,
    VirtualTradeRepository,
)
from strategy_runner.intent_provider import ModelIntentProvider, StubIntentProvider
from strategy_runner.market_data import RedisMarketDataFeed
from strategy_runner.orchestrator import TickOrchestrator
from strategy_runner.redis_client import RedisClient
from strategy_runner.scheduler import TickScheduler

logger = structlog.get_logger()


async def main() -> None:
    settings = Settings()

    redis = RedisClient(redis_url=settings.REDIS_URL)
    await redis.connect()

    engine = create_db_engine(settings)
    session_factory = create_session_factory(engine)

    sessions = SessionRepository(session_factory)
    accounts = AccountRepository(session_factory)
    positions = PositionRepository(session_factory)

    brokers = BrokerRegistry(
        settings,
        accounts=accounts,
        positions=positions,
        trades=VirtualTradeRepository(session_factory),
        redis=redis,
    )
    intent_provider = (
        ModelIntentProvider(settings) if settings.ANTHROPIC_API_KEY else StubIntentProvider()
    )
    if not settings.ANTHROPIC_API_KEY:
        logger.warning("intent_provider_stub", reason="ANTHROPIC_API_KEY not set")

    orchestrator = TickOrchestrator(
        settings,
        sessions=sessions,
        strategies=StrategyRepository(session_factory),
        accounts=accounts,
        positions=positions,
        decisions=DecisionRepository(session_factory),
        orders=OrderRepository(session_factory),
        brokers=brokers,
        market_data=RedisMarketDataFeed(redis),
        intent_provider=intent_provider,
    )
    scheduler = TickScheduler(settings, sessions, orchestrator)

    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        scheduler.stop()

    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _signal_handler)
    else:
        signal.signal(signal.SIGINT, lambda *_: _signal_handler())

    try:
        await scheduler.run_forever()
    except asyncio.CancelledError:
        pass
    finally:
        await redis.disconnect()
        await engine.dispose()
        logger.info("shutdown_complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
