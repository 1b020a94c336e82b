"""
Ledger access for the aggregator.

The aggregator talks to three logical interfaces on the chain: the task source
(``TaskRequestGenerated`` events of the service pallet), the stake ledger (vaults
an operator has staked into the service and the assets each vault custodies) and
the result sink (the ``submit_task_response`` extrinsic). The core only depends on
the Protocols below; ``SubstrateLedger`` implements all three on top of
``substrateinterface``.
"""

import asyncio
import functools
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Protocol

from substrateinterface import Keypair, SubstrateInterface

from quorum.aggregator.core.constants import (
    LEDGER_OP_TIMEOUT,
    SUBMIT_RESPONSE_CALL,
    TASK_REQUEST_EVENT,
)
from quorum.aggregator.core.errors import LedgerWriteFailure, TaskSourceError
from quorum.aggregator.utils.config import LedgerSettings
from quorum.shared.models import TaskRequest
from quorum.shared.signing import load_keypair
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


class TaskSource(Protocol):
    async def fetch_task_requests(self, from_position: int) -> List[TaskRequest]: ...


class StakeLedger(Protocol):
    async def fetch_vaults_staked_in_service(self, identity: str, service: str) -> List[str]: ...
    async def vault_total_assets(self, vault: str) -> int: ...


class ResultSink(Protocol):
    async def submit_task_response(self, task: TaskRequest, response: int) -> Optional[str]: ...


def _event_fields(record: Any) -> Dict[str, Any]:
    value = getattr(record, "value", record)
    if not isinstance(value, dict):
        return {}
    event = value.get("event")
    return event if isinstance(event, dict) else value


def _task_value(attributes: Any) -> Optional[int]:
    """Pull the task input out of the event attributes, whatever shape the metadata gives them."""
    if isinstance(attributes, dict):
        if "value" in attributes:
            return int(attributes["value"])
        for nested in attributes.values():
            found = _task_value(nested)
            if found is not None:
                return found
        return None
    if isinstance(attributes, (list, tuple)) and attributes:
        return _task_value(attributes[0])
    if isinstance(attributes, int) and not isinstance(attributes, bool):
        return attributes
    return None


def _query_value(result: Any) -> Any:
    return getattr(result, "value", result)


class SubstrateLedger:
    """
    Task source, stake ledger and result sink backed by a substrate node.

    ``SubstrateInterface`` owns one websocket and is not thread-safe, so every
    blocking call goes through a single worker thread and calls are serialized.
    """

    def __init__(
        self,
        settings: LedgerSettings,
        substrate: Optional[SubstrateInterface] = None,
        keypair: Optional[Keypair] = None,
        op_timeout: float = LEDGER_OP_TIMEOUT,
    ):
        self.settings = settings
        self.substrate = substrate
        self.keypair = keypair
        self.op_timeout = op_timeout
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="substrate")

        # Scan cursor: blocks up to _scanned_to have been read, and _pending holds
        # the requests found in them at or after _scan_from.
        self._scan_from: Optional[int] = None
        self._scanned_to: int = -1
        self._pending: List[TaskRequest] = []

    def connect(self) -> None:
        if self.substrate is None:
            logger.info(f"Connecting to chain at {self.settings.CHAIN_ENDPOINT}")
            self.substrate = SubstrateInterface(url=self.settings.CHAIN_ENDPOINT)
        if self.keypair is None:
            self.keypair = load_keypair(self.settings.SIGNER_URI)
            logger.info(f"Submitting results as {self.keypair.ss58_address}")

    def close(self) -> None:
        if self.substrate is not None:
            self.substrate.close()
            self.substrate = None
            logger.info("Chain connection closed")
        self._executor.shutdown(wait=False)

    async def _call(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(self._executor, functools.partial(fn, *args, **kwargs)),
            timeout=self.op_timeout,
        )

    # Task source

    def _scan_blocks(self, blocks: Iterable[int]) -> List[TaskRequest]:
        requests: List[TaskRequest] = []
        for block_number in blocks:
            block_hash = self.substrate.get_block_hash(block_number)
            for record in self.substrate.get_events(block_hash=block_hash) or []:
                fields = _event_fields(record)
                if fields.get("module_id") != self.settings.SERVICE_PALLET:
                    continue
                if fields.get("event_id") != TASK_REQUEST_EVENT:
                    continue
                value = _task_value(fields.get("attributes"))
                if value is None:
                    logger.warning(f"{TASK_REQUEST_EVENT} in block {block_number} carries no task value, ignoring")
                    continue
                requests.append(TaskRequest(value=value, source_position=block_number))
        return requests

    def _move_cursor(self, from_position: int) -> None:
        if (
            self._scan_from is None
            or from_position < self._scan_from
            or from_position > self._scanned_to + 1
        ):
            self._scan_from = from_position
            self._scanned_to = from_position - 1
            self._pending = []
            return
        self._scan_from = from_position
        self._pending = [r for r in self._pending if r.source_position >= from_position]

    async def fetch_task_requests(self, from_position: int) -> List[TaskRequest]:
        """All task requests emitted in blocks ``from_position ..= head``.

        Blocks already read by an earlier poll are not read again: the requests
        found in them are kept until ``from_position`` moves past them. Only new
        blocks are fetched, in chunks of ``MAX_BLOCKS_PER_POLL``, and the cursor
        advances after every chunk so a failed poll resumes where it stopped.
        A ``from_position`` behind the cursor or beyond its end starts a fresh scan.
        """
        self._move_cursor(from_position)
        try:
            if self.substrate is None:
                self.connect()
            head = await self._call(self.substrate.get_block_number, None)
            if head is None or head < from_position:
                return []
            found = 0
            chunk = self.settings.MAX_BLOCKS_PER_POLL
            start = self._scanned_to + 1
            while start <= head:
                end = min(head, start + chunk - 1)
                requests = await self._call(self._scan_blocks, range(start, end + 1))
                self._pending.extend(requests)
                self._scanned_to = end
                found += len(requests)
                start = end + 1
        except Exception as e:
            raise TaskSourceError(from_position, e) from e
        if found:
            logger.info(f"Found {found} new task request(s), scanned up to block {head}")
        return list(self._pending)

    # Stake ledger

    async def fetch_vaults_staked_in_service(self, identity: str, service: str) -> List[str]:
        if self.substrate is None:
            self.connect()
        result = await self._call(
            self.substrate.query, self.settings.STAKE_PALLET, "VaultsStakedInService", [identity, service]
        )
        vaults = _query_value(result) or []
        return [str(v) for v in vaults]

    async def vault_total_assets(self, vault: str) -> int:
        if self.substrate is None:
            self.connect()
        result = await self._call(self.substrate.query, self.settings.VAULT_PALLET, "TotalAssets", [vault])
        return int(_query_value(result) or 0)

    # Result sink

    def _submit(self, task: TaskRequest, response: int):
        call = self.substrate.compose_call(
            call_module=self.settings.SERVICE_PALLET,
            call_function=SUBMIT_RESPONSE_CALL,
            call_params={
                "task_request": {"value": task.value},
                "task_response": {"response": response},
            },
        )
        extrinsic = self.substrate.create_signed_extrinsic(call=call, keypair=self.keypair)
        return self.substrate.submit_extrinsic(extrinsic, wait_for_inclusion=True)

    async def submit_task_response(self, task: TaskRequest, response: int) -> Optional[str]:
        try:
            if self.substrate is None:
                self.connect()
            receipt = await self._call(self._submit, task, response)
        except Exception as e:
            raise LedgerWriteFailure(task.source_position, f"{type(e).__name__}: {e}") from e
        if receipt is None:
            raise LedgerWriteFailure(task.source_position, "no receipt returned")
        if not getattr(receipt, "is_success", True):
            raise LedgerWriteFailure(task.source_position, str(getattr(receipt, "error_message", "extrinsic failed")))
        extrinsic_hash = getattr(receipt, "extrinsic_hash", None)
        logger.info(
            f"Result submitted: position={task.source_position}, value={task.value}, "
            f"response={response}, hash={extrinsic_hash}"
        )
        return extrinsic_hash
