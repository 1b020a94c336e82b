from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Tuple

from quorum.aggregator.core.constants import MAX_RESOLUTION_ATTEMPTS, RETRY_BASE_DELAY, RETRY_MAX_DELAY
from quorum.shared.models import TaskRequest
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)

TaskKey = Tuple[int, int]


def compute_next_retry(
    *,
    attempt: int,
    base_delay_seconds: float = RETRY_BASE_DELAY,
    cap_seconds: float | None = RETRY_MAX_DELAY,
    now: datetime | None = None,
) -> datetime:
    """Exponential backoff: base * 2^(attempt-1), capped. ``attempt`` is 1-based."""
    if now is None:
        now = datetime.now(timezone.utc)
    delay = base_delay_seconds * (2 ** max(0, attempt - 1))
    if cap_seconds is not None:
        delay = min(delay, cap_seconds)
    return now + timedelta(seconds=delay)


@dataclass
class RetryState:
    attempts: int = 0
    next_attempt_at: datetime | None = None
    escalated: bool = False
    last_error: str = ""


@dataclass
class RetryTracker:
    """
    Per-task failure bookkeeping.

    A task that failed to resolve or publish is not attempted again before its
    backoff expires. After ``max_attempts`` failures it is escalated once at
    CRITICAL level and keeps being retried at the capped delay; it is never dropped.
    """

    base_delay_seconds: float = RETRY_BASE_DELAY
    max_delay_seconds: float = RETRY_MAX_DELAY
    max_attempts: int = MAX_RESOLUTION_ATTEMPTS
    _states: Dict[TaskKey, RetryState] = field(default_factory=dict)

    @staticmethod
    def key(task: TaskRequest) -> TaskKey:
        return (task.source_position, task.value)

    def state(self, task: TaskRequest) -> RetryState | None:
        return self._states.get(self.key(task))

    def is_eligible(self, task: TaskRequest, now: datetime | None = None) -> bool:
        state = self._states.get(self.key(task))
        if state is None or state.next_attempt_at is None:
            return True
        return (now or datetime.now(timezone.utc)) >= state.next_attempt_at

    def record_failure(self, task: TaskRequest, error: Exception, now: datetime | None = None) -> RetryState:
        state = self._states.setdefault(self.key(task), RetryState())
        state.attempts += 1
        state.last_error = str(error)
        state.next_attempt_at = compute_next_retry(
            attempt=state.attempts,
            base_delay_seconds=self.base_delay_seconds,
            cap_seconds=self.max_delay_seconds,
            now=now,
        )
        if state.attempts >= self.max_attempts and not state.escalated:
            state.escalated = True
            logger.critical(
                f"Task value={task.value} at position {task.source_position} failed {state.attempts} times "
                f"and still blocks the checkpoint. Last error: {state.last_error}"
            )
        return state

    def record_success(self, task: TaskRequest) -> None:
        self._states.pop(self.key(task), None)

    def forget_before(self, position: int) -> None:
        for key in [k for k in self._states if k[0] < position]:
            del self._states[key]
