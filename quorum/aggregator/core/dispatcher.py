"""
Task fan-out to operators.

Every operator in a registry snapshot receives exactly one request per task. The
requests run concurrently and the dispatcher waits for all of them to settle; a
failing operator produces an ``OperatorUnreachable`` outcome instead of an
exception, so one bad node never hides the answers of the others.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

import httpx
from pydantic import ValidationError

from quorum.aggregator.core.constants import OPERATOR_TASK_PATH, OPERATOR_TIMEOUT
from quorum.aggregator.core.errors import OperatorUnreachable, UnreachableReason
from quorum.aggregator.registry import RegistrySnapshot
from quorum.shared.models import Operator, ServiceResponse, SignedResponse, TaskRequest
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    operator: Operator
    response: Optional[SignedResponse] = None
    error: Optional[OperatorUnreachable] = None

    @property
    def ok(self) -> bool:
        return self.response is not None


class TaskDispatcher:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = OPERATOR_TIMEOUT,
        max_connections: int = 100,
    ):
        self.timeout = timeout
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
                keepalive_expiry=30,
            ),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _send(self, operator: Operator, task: TaskRequest) -> SignedResponse:
        url = f"{operator.endpoint}{OPERATOR_TASK_PATH}"
        try:
            response = await self.client.post(url, json=task.to_task().model_dump())
        except httpx.TimeoutException as e:
            raise OperatorUnreachable(operator.identity, UnreachableReason.TIMEOUT, str(e)) from e
        except httpx.HTTPError as e:
            raise OperatorUnreachable(operator.identity, UnreachableReason.TRANSPORT, f"{type(e).__name__}: {e}") from e

        if not response.is_success:
            raise OperatorUnreachable(operator.identity, UnreachableReason.HTTP_STATUS, f"HTTP {response.status_code}")

        try:
            envelope = ServiceResponse[SignedResponse].model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise OperatorUnreachable(operator.identity, UnreachableReason.MALFORMED, str(e)) from e

        if not envelope.success or envelope.response_object is None:
            raise OperatorUnreachable(operator.identity, UnreachableReason.REJECTED, envelope.message)

        signed = envelope.response_object
        if signed.identity != operator.identity:
            raise OperatorUnreachable(
                operator.identity,
                UnreachableReason.IDENTITY_MISMATCH,
                f"response claims identity {signed.identity}",
            )
        return signed

    async def _dispatch_one(self, operator: Operator, task: TaskRequest) -> DispatchOutcome:
        try:
            signed = await asyncio.wait_for(self._send(operator, task), timeout=self.timeout)
        except asyncio.TimeoutError:
            error = OperatorUnreachable(operator.identity, UnreachableReason.TIMEOUT, f"no answer within {self.timeout}s")
        except OperatorUnreachable as e:
            error = e
        else:
            return DispatchOutcome(operator=operator, response=signed)
        logger.warning(f"Task at position {task.source_position}: {error}")
        return DispatchOutcome(operator=operator, error=error)

    async def dispatch(self, task: TaskRequest, operators: RegistrySnapshot) -> List[DispatchOutcome]:
        """Send ``task`` to every operator in the snapshot; outcomes come back in snapshot order."""
        logger.info(
            f"Dispatching task value={task.value} position={task.source_position} "
            f"to {len(operators)} operator(s) (registry epoch {operators.epoch})"
        )
        outcomes = await asyncio.gather(*(self._dispatch_one(op, task) for op in operators))
        answered = sum(1 for o in outcomes if o.ok)
        logger.info(f"Task at position {task.source_position}: {answered}/{len(outcomes)} operator(s) answered")
        return list(outcomes)
