"""
Shared pytest fixtures for the quorum test suite.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
from substrateinterface import Keypair

from quorum.aggregator.core.errors import LedgerWriteFailure, TaskSourceError
from quorum.shared.models import CompletedTask, Operator, SignedResponse, TaskRequest
from quorum.shared.signing import sign_completed_task

FIXED_TIME = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_signed(keypair: Keypair, value: int, response: int, completed_at: datetime = FIXED_TIME) -> SignedResponse:
    return sign_completed_task(keypair, CompletedTask(value=value, response=response, completed_at=completed_at))


def tamper(response: SignedResponse) -> SignedResponse:
    """Flip the last byte of the signature."""
    sig = bytearray(bytes.fromhex(response.signature[2:]))
    sig[-1] ^= 0x01
    return response.model_copy(update={"signature": "0x" + sig.hex()})


class FakeStakeLedger:
    """In-memory stake ledger: one vault per identity unless told otherwise."""

    def __init__(self, stakes: Optional[Dict[str, int]] = None):
        self.vaults: Dict[str, List[str]] = {}
        self.assets: Dict[str, int] = {}
        self.failing: set = set()
        self.vault_calls: List[str] = []
        for identity, stake in (stakes or {}).items():
            self.set_stake(identity, stake)

    def set_stake(self, identity: str, *amounts: int) -> None:
        vaults = [f"vault-{identity}-{i}" for i in range(len(amounts))]
        self.vaults[identity] = vaults
        for vault, amount in zip(vaults, amounts):
            self.assets[vault] = amount

    async def fetch_vaults_staked_in_service(self, identity: str, service: str) -> List[str]:
        self.vault_calls.append(identity)
        if identity in self.failing:
            raise ConnectionError("ledger unavailable")
        return list(self.vaults.get(identity, []))

    async def vault_total_assets(self, vault: str) -> int:
        return self.assets[vault]


class FakeTaskSource:
    def __init__(self, requests: Optional[List[TaskRequest]] = None):
        self.requests: List[TaskRequest] = list(requests or [])
        self.fail = False
        self.calls: List[int] = []

    async def fetch_task_requests(self, from_position: int) -> List[TaskRequest]:
        self.calls.append(from_position)
        if self.fail:
            raise TaskSourceError(from_position, ConnectionError("node down"))
        return [r for r in self.requests if r.source_position >= from_position]


class FakeResultSink:
    def __init__(self):
        self.submitted: List[tuple] = []
        self.fail_positions: set = set()

    async def submit_task_response(self, task: TaskRequest, response: int) -> Optional[str]:
        if task.source_position in self.fail_positions:
            raise LedgerWriteFailure(task.source_position, "extrinsic rejected")
        self.submitted.append((task.source_position, task.value, response))
        return f"0x{len(self.submitted):064x}"


class MemoryCheckpointStore:
    def __init__(self, position: int = 0):
        self.position = position
        self.saves: List[int] = []

    async def load(self) -> int:
        return self.position

    async def save(self, next_source_position: int) -> None:
        self.saves.append(next_source_position)
        self.position = next_source_position


@pytest.fixture
def alice() -> Keypair:
    return Keypair.create_from_uri("//Alice")


@pytest.fixture
def bob() -> Keypair:
    return Keypair.create_from_uri("//Bob")


@pytest.fixture
def charlie() -> Keypair:
    return Keypair.create_from_uri("//Charlie")


@pytest.fixture
def keypairs(alice, bob, charlie) -> List[Keypair]:
    return [alice, bob, charlie]


@pytest.fixture
def operators(keypairs) -> List[Operator]:
    return [
        Operator(identity=kp.ss58_address, endpoint=f"http://operator{i}.test/operator")
        for i, kp in enumerate(keypairs)
    ]


@pytest.fixture
def stake_ledger(alice, bob, charlie) -> FakeStakeLedger:
    return FakeStakeLedger({alice.ss58_address: 10, bob.ss58_address: 10, charlie.ss58_address: 5})
