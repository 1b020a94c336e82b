"""
Unit tests for canonical serialization and signature verification.
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import FIXED_TIME, make_signed, tamper
from quorum.shared.models import CompletedTask
from quorum.shared.signing import canonical_bytes, load_keypair, verify


@pytest.mark.unit
class TestCanonicalBytes:
    def test_compact_sorted_json(self):
        ct = CompletedTask(value=3, response=9, completed_at=FIXED_TIME)
        assert canonical_bytes(ct) == b'{"completed_at":"2024-05-01T12:00:00+00:00","response":9,"value":3}'

    def test_timezone_normalized(self):
        local = FIXED_TIME.astimezone(timezone(timedelta(hours=5)))
        a = CompletedTask(value=3, response=9, completed_at=FIXED_TIME)
        b = CompletedTask(value=3, response=9, completed_at=local)
        assert canonical_bytes(a) == canonical_bytes(b)

    def test_naive_datetime_treated_as_utc(self):
        naive = datetime(2024, 5, 1, 12, 0, 0)
        a = CompletedTask(value=3, response=9, completed_at=naive)
        b = CompletedTask(value=3, response=9, completed_at=FIXED_TIME)
        assert canonical_bytes(a) == canonical_bytes(b)


@pytest.mark.unit
class TestVerify:
    def test_valid_signature(self, alice):
        signed = make_signed(alice, 3, 9)
        assert signed.identity == alice.ss58_address
        assert verify(signed) is True

    def test_deterministic(self, alice):
        signed = make_signed(alice, 3, 9)
        assert verify(signed) == verify(signed)

    def test_tampered_signature_byte(self, alice):
        assert verify(tamper(make_signed(alice, 3, 9))) is False

    def test_every_corrupted_byte_fails(self, alice):
        signed = make_signed(alice, 4, 16)
        raw = bytes.fromhex(signed.signature[2:])
        for i in range(0, len(raw), 7):
            corrupted = bytearray(raw)
            corrupted[i] ^= 0xFF
            assert verify(signed.model_copy(update={"signature": "0x" + corrupted.hex()})) is False

    def test_tampered_payload(self, alice):
        signed = make_signed(alice, 3, 9)
        forged = signed.model_copy(
            update={"completed_task": signed.completed_task.model_copy(update={"response": 16})}
        )
        assert verify(forged) is False

    def test_wrong_identity(self, alice, bob):
        signed = make_signed(alice, 3, 9)
        assert verify(signed.model_copy(update={"identity": bob.ss58_address})) is False

    @pytest.mark.parametrize("signature", ["", "0x", "not-hex", "0x1234", "0x" + "00" * 64])
    def test_malformed_signature(self, alice, signature):
        signed = make_signed(alice, 3, 9)
        assert verify(signed.model_copy(update={"signature": signature})) is False

    def test_malformed_identity(self, alice):
        signed = make_signed(alice, 3, 9)
        assert verify(signed.model_copy(update={"identity": "not-an-address"})) is False

    def test_signature_without_prefix(self, alice):
        signed = make_signed(alice, 3, 9)
        assert verify(signed.model_copy(update={"signature": signed.signature[2:]})) is True


@pytest.mark.unit
def test_load_keypair_from_uri(alice):
    assert load_keypair("//Alice").ss58_address == alice.ss58_address
