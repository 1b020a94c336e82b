import asyncio
import json

import httpx
import pytest

from conftest import make_signed
from quorum.aggregator.core.dispatcher import TaskDispatcher
from quorum.aggregator.core.errors import UnreachableReason
from quorum.aggregator.registry import RegistrySnapshot
from quorum.shared.models import ServiceResponse, SignedResponse, TaskRequest

TASK = TaskRequest(value=2, source_position=11)


def envelope(signed: SignedResponse) -> dict:
    return ServiceResponse[SignedResponse].ok("Task completed", signed).model_dump(mode="json")


def make_dispatcher(handler, timeout: float = 1.0) -> TaskDispatcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TaskDispatcher(client=client, timeout=timeout)


@pytest.fixture
def snapshot(operators) -> RegistrySnapshot:
    return RegistrySnapshot(epoch=3, operators=tuple(operators))


@pytest.mark.asyncio
async def test_collects_signed_responses_in_registry_order(snapshot, keypairs):
    by_host = {f"operator{i}.test": kp for i, kp in enumerate(keypairs)}
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.url.host, request.url.path, json.loads(request.content)))
        kp = by_host[request.url.host]
        return httpx.Response(200, json=envelope(make_signed(kp, 2, 4)))

    dispatcher = make_dispatcher(handler)
    outcomes = await dispatcher.dispatch(TASK, snapshot)

    assert [o.operator for o in outcomes] == list(snapshot.operators)
    assert all(o.ok for o in outcomes)
    assert [o.response.identity for o in outcomes] == [kp.ss58_address for kp in keypairs]
    assert sorted(seen) == sorted((f"operator{i}.test", "/operator/task", {"value": 2}) for i in range(3))


@pytest.mark.asyncio
async def test_slow_operator_times_out_without_blocking_others(snapshot, keypairs):
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "operator2.test":
            await asyncio.sleep(5)
        kp = keypairs[int(request.url.host[len("operator")])]
        return httpx.Response(200, json=envelope(make_signed(kp, 2, 4)))

    dispatcher = make_dispatcher(handler, timeout=0.1)
    outcomes = await dispatcher.dispatch(TASK, snapshot)

    assert outcomes[0].ok and outcomes[1].ok
    assert not outcomes[2].ok
    assert outcomes[2].error.reason == UnreachableReason.TIMEOUT


@pytest.mark.asyncio
async def test_transport_error(snapshot, keypairs):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "operator0.test":
            raise httpx.ConnectError("connection refused", request=request)
        kp = keypairs[int(request.url.host[len("operator")])]
        return httpx.Response(200, json=envelope(make_signed(kp, 2, 4)))

    outcomes = await make_dispatcher(handler).dispatch(TASK, snapshot)

    assert outcomes[0].error.reason == UnreachableReason.TRANSPORT
    assert outcomes[1].ok and outcomes[2].ok


@pytest.mark.asyncio
async def test_transport_timeout_maps_to_timeout(snapshot):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    outcomes = await make_dispatcher(handler).dispatch(TASK, snapshot)

    assert {o.error.reason for o in outcomes} == {UnreachableReason.TIMEOUT}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, reason",
    [
        (500, {"json": {"detail": "boom"}}, UnreachableReason.HTTP_STATUS),
        (200, {"content": b"not json"}, UnreachableReason.MALFORMED),
        (200, {"json": {"success": True, "message": "ok", "response_object": {"x": 1}}}, UnreachableReason.MALFORMED),
        (200, {"json": {"success": False, "message": "busy", "response_object": None}}, UnreachableReason.REJECTED),
    ],
)
async def test_bad_answers_are_typed_failures(snapshot, status, body, reason):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, **body)

    outcomes = await make_dispatcher(handler).dispatch(TASK, snapshot)

    assert len(outcomes) == 3
    assert all(o.error is not None and o.error.reason == reason for o in outcomes)


@pytest.mark.asyncio
async def test_identity_mismatch(snapshot, alice):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=envelope(make_signed(alice, 2, 4)))

    outcomes = await make_dispatcher(handler).dispatch(TASK, snapshot)

    assert outcomes[0].ok
    assert outcomes[1].error.reason == UnreachableReason.IDENTITY_MISMATCH
    assert outcomes[2].error.reason == UnreachableReason.IDENTITY_MISMATCH


@pytest.mark.asyncio
async def test_empty_snapshot_dispatches_nothing():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    outcomes = await make_dispatcher(handler).dispatch(TASK, RegistrySnapshot(epoch=0))
    assert outcomes == []
