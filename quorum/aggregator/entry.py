"""
Wiring for the aggregator process: settings -> ledger, checkpoint store,
dispatcher, resolver and loop.
"""

import asyncio
import signal
from dataclasses import dataclass
from typing import Optional

from quorum.aggregator.checkpoint import CheckpointStore, DbCheckpointStore, FileCheckpointStore
from quorum.aggregator.core.aggregation_loop import TaskAggregator
from quorum.aggregator.core.consensus import ConsensusResolver
from quorum.aggregator.core.dispatcher import TaskDispatcher
from quorum.aggregator.core.retry_policy import RetryTracker
from quorum.aggregator.core.stake_resolver import StakeResolver
from quorum.aggregator.database.database_manager import DatabaseManager
from quorum.aggregator.network.ledger import SubstrateLedger
from quorum.aggregator.registry import OperatorRegistry
from quorum.aggregator.utils.config import AggregatorSettings
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


@dataclass
class AggregatorRuntime:
    aggregator: TaskAggregator
    ledger: SubstrateLedger
    dispatcher: TaskDispatcher
    db: Optional[DatabaseManager] = None

    async def close(self) -> None:
        await self.dispatcher.close()
        if self.db is not None:
            await self.db.close()
        self.ledger.close()


def build_checkpoint_store(settings: AggregatorSettings) -> tuple[CheckpointStore, Optional[DatabaseManager]]:
    if settings.CHECKPOINT_BACKEND == "database":
        db = DatabaseManager.from_settings(settings.DATABASE)
        return DbCheckpointStore(db, start_position=settings.START_POSITION), db
    return FileCheckpointStore(settings.CHECKPOINT_PATH, start_position=settings.START_POSITION), None


def build_runtime(settings: AggregatorSettings, registry: OperatorRegistry) -> AggregatorRuntime:
    ledger = SubstrateLedger(settings.LEDGER)
    checkpoint, db = build_checkpoint_store(settings)
    dispatcher = TaskDispatcher(
        timeout=settings.OPERATOR_TIMEOUT_SECONDS,
        max_connections=settings.HTTP_MAX_CONNECTIONS,
    )
    resolver = ConsensusResolver(StakeResolver(ledger, settings.LEDGER.SERVICE_ADDRESS))
    retry = RetryTracker(
        base_delay_seconds=settings.RETRY_BASE_DELAY_SECONDS,
        max_delay_seconds=settings.RETRY_MAX_DELAY_SECONDS,
        max_attempts=settings.MAX_RESOLUTION_ATTEMPTS,
    )
    aggregator = TaskAggregator(
        registry=registry,
        task_source=ledger,
        result_sink=ledger,
        checkpoint=checkpoint,
        dispatcher=dispatcher,
        resolver=resolver,
        retry=retry,
        poll_interval=settings.POLL_INTERVAL_SECONDS,
        max_concurrent_tasks=settings.MAX_CONCURRENT_TASKS,
    )
    return AggregatorRuntime(aggregator=aggregator, ledger=ledger, dispatcher=dispatcher, db=db)


async def run_aggregator(settings: AggregatorSettings, registry: OperatorRegistry) -> None:
    """Run until SIGINT/SIGTERM. CheckpointError propagates to the caller."""
    runtime = build_runtime(settings, registry)
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Not available on every platform's event loop
            pass

    logger.info(
        f"Starting aggregator: {len(registry.snapshot())} operator(s), "
        f"checkpoint backend {settings.CHECKPOINT_BACKEND}, chain {settings.LEDGER.CHAIN_ENDPOINT}"
    )
    try:
        await runtime.aggregator.run(stop_event)
    finally:
        await runtime.close()
        logger.info("Aggregator shut down")
