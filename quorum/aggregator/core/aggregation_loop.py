"""
Aggregation loop.

One poll cycle walks IDLE -> POLLING -> DISPATCHING -> RESOLVING -> PUBLISHING and
back to IDLE. Cycles never overlap. Within a cycle, task requests are committed
strictly in source-position order and the cycle stops at the first request that
cannot be resolved or published, so the checkpoint never moves past a task that
has not been committed.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, List, Optional, Set, Tuple

from quorum.aggregator.checkpoint import CheckpointStore
from quorum.aggregator.core.consensus import ConsensusResolver
from quorum.aggregator.core.constants import POLL_INTERVAL
from quorum.aggregator.core.dispatcher import TaskDispatcher
from quorum.aggregator.core.errors import (
    CheckpointError,
    LedgerWriteFailure,
    NoMajority,
    StakeResolutionFailure,
    TaskSourceError,
)
from quorum.aggregator.core.retry_policy import RetryTracker
from quorum.aggregator.network.ledger import ResultSink, TaskSource
from quorum.aggregator.registry import OperatorRegistry, RegistrySnapshot
from quorum.shared.models import ConsensusResult, TaskRequest
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)

NO_OPERATORS = "no operators registered"


class LoopState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"
    RESOLVING = "resolving"
    PUBLISHING = "publishing"


@dataclass
class CycleReport:
    start_position: int
    checkpoint: int
    discovered: int = 0
    committed: List[Tuple[int, int]] = field(default_factory=list)
    stopped_at: Optional[TaskRequest] = None
    error: Optional[str] = None
    skipped_reason: Optional[str] = None


class TaskAggregator:
    def __init__(
        self,
        *,
        registry: OperatorRegistry,
        task_source: TaskSource,
        result_sink: ResultSink,
        checkpoint: CheckpointStore,
        dispatcher: TaskDispatcher,
        resolver: ConsensusResolver,
        retry: Optional[RetryTracker] = None,
        poll_interval: float = POLL_INTERVAL,
        max_concurrent_tasks: int = 1,
    ) -> None:
        self.registry = registry
        self.task_source = task_source
        self.result_sink = result_sink
        self.checkpoint = checkpoint
        self.dispatcher = dispatcher
        self.resolver = resolver
        self.retry = retry or RetryTracker()
        self.poll_interval = poll_interval
        self.max_concurrent_tasks = max(1, max_concurrent_tasks)
        self.state = LoopState.IDLE
        # (source_position, ordinal within position) already submitted to the ledger
        # while the checkpoint still points at that position
        self._published: Set[Tuple[int, int]] = set()

    async def _resolve(self, task: TaskRequest, snapshot: RegistrySnapshot) -> ConsensusResult:
        self.state = LoopState.DISPATCHING
        outcomes = await self.dispatcher.dispatch(task, snapshot)
        self.state = LoopState.RESOLVING
        return await self.resolver.resolve_outcomes(outcomes, task)

    def _record_failure(self, task: TaskRequest, error: Exception, report: CycleReport) -> None:
        state = self.retry.record_failure(task, error)
        report.stopped_at = task
        report.error = str(error)
        logger.error(
            f"{type(error).__name__} for task value={task.value} at position {task.source_position} "
            f"(attempt {state.attempts}, next try after {state.next_attempt_at:%H:%M:%S}): {error}"
        )

    async def run_cycle(self) -> CycleReport:
        """
        Run one poll cycle.

        Raises:
            CheckpointError: the checkpoint could not be read or written.
        """
        self.state = LoopState.POLLING
        position = await self.checkpoint.load()
        report = CycleReport(start_position=position, checkpoint=position)
        self.retry.forget_before(position)
        self._published = {k for k in self._published if k[0] >= position}

        try:
            requests = await self.task_source.fetch_task_requests(position)
        except TaskSourceError as e:
            logger.error(str(e))
            report.error = str(e)
            self.state = LoopState.IDLE
            return report

        pending = sorted((r for r in requests if r.source_position >= position), key=lambda r: r.source_position)
        report.discovered = len(pending)
        if not pending:
            logger.debug(f"No task requests at or after position {position}")
            self.state = LoopState.IDLE
            return report

        snapshot = self.registry.snapshot()
        if snapshot.is_empty():
            logger.error(f"{len(pending)} task request(s) pending but {NO_OPERATORS}, skipping cycle")
            report.skipped_reason = NO_OPERATORS
            self.state = LoopState.IDLE
            return report

        ordinals: List[int] = []
        for i, task in enumerate(pending):
            same = i > 0 and pending[i - 1].source_position == task.source_position
            ordinals.append(ordinals[-1] + 1 if same else 0)

        in_flight: Deque[Tuple[int, asyncio.Task]] = deque()
        semaphore = asyncio.Semaphore(self.max_concurrent_tasks)

        async def bounded(task: TaskRequest) -> ConsensusResult:
            async with semaphore:
                return await self._resolve(task, snapshot)

        next_index = 0
        try:
            while next_index < len(pending) or in_flight:
                while next_index < len(pending) and len(in_flight) < self.max_concurrent_tasks:
                    candidate = pending[next_index]
                    if not self.retry.is_eligible(candidate):
                        break
                    in_flight.append((next_index, asyncio.create_task(bounded(candidate))))
                    next_index += 1

                if not in_flight:
                    waiting = pending[next_index]
                    state = self.retry.state(waiting)
                    logger.debug(
                        f"Task at position {waiting.source_position} is backing off until "
                        f"{state.next_attempt_at if state else 'now'}"
                    )
                    report.stopped_at = waiting
                    break

                index, future = in_flight.popleft()
                task = pending[index]
                try:
                    result = await future
                except (NoMajority, StakeResolutionFailure) as e:
                    self._record_failure(task, e, report)
                    break

                self.state = LoopState.PUBLISHING
                key = (task.source_position, ordinals[index])
                if key in self._published:
                    logger.debug(f"Task at position {task.source_position} #{ordinals[index]} already published")
                else:
                    try:
                        await self.result_sink.submit_task_response(task, result.value)
                    except LedgerWriteFailure as e:
                        self._record_failure(task, e, report)
                        break
                    self._published.add(key)

                self.retry.record_success(task)
                report.committed.append((task.source_position, result.value))

                last_at_position = index + 1 == len(pending) or pending[index + 1].source_position != task.source_position
                if last_at_position:
                    await self.checkpoint.save(task.source_position + 1)
                    report.checkpoint = task.source_position + 1
                    self._published = {k for k in self._published if k[0] > task.source_position}
                logger.success(
                    f"Committed task value={task.value} position={task.source_position} -> {result.value} "
                    f"(checkpoint {report.checkpoint})"
                )
        finally:
            for _, future in in_flight:
                future.cancel()
            if in_flight:
                await asyncio.gather(*(f for _, f in in_flight), return_exceptions=True)
            self.state = LoopState.IDLE

        return report

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run poll cycles back to back until ``stop_event`` is set.

        Per-task and per-operator failures never end the loop. A CheckpointError does.
        """
        logger.info(f"Aggregation loop started (poll interval {self.poll_interval}s)")
        while not stop_event.is_set():
            try:
                await self.run_cycle()
            except CheckpointError as e:
                logger.critical(f"Checkpoint failure, stopping aggregator: {e}")
                raise
            except Exception as e:
                logger.exception(f"Unexpected error in poll cycle: {e}")
            self.state = LoopState.IDLE
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Aggregation loop stopped")
