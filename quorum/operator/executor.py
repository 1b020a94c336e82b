from datetime import datetime, timezone
from typing import Callable

from substrateinterface import Keypair

from quorum.shared.models import CompletedTask, SignedResponse, Task
from quorum.shared.signing import sign_completed_task
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


def square(value: int) -> int:
    return value * value


class TaskExecutor:
    """Runs the task computation and signs the result with the operator's key."""

    def __init__(self, keypair: Keypair, compute: Callable[[int], int] = square):
        self.keypair = keypair
        self.compute = compute

    @property
    def identity(self) -> str:
        return self.keypair.ss58_address

    def execute(self, task: Task) -> SignedResponse:
        completed = CompletedTask(
            value=task.value,
            response=self.compute(task.value),
            completed_at=datetime.now(timezone.utc),
        )
        logger.info(f"Computed task {task.value} -> {completed.response}")
        return sign_completed_task(self.keypair, completed)
