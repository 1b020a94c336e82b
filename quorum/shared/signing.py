"""
Canonical serialization and detached signatures for completed tasks.

Operators sign the canonical bytes of a CompletedTask with their substrate
keypair; the aggregator checks the signature against the claimed ss58 identity.
Both sides must produce byte-identical payloads, so every caller goes through
``canonical_bytes``.
"""

import json
from datetime import timezone

from substrateinterface import Keypair

from quorum.shared.models import CompletedTask, SignedResponse
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


def canonical_bytes(completed_task: CompletedTask) -> bytes:
    """Compact, key-sorted JSON of the completed task with a UTC ISO timestamp."""
    payload = {
        "value": completed_task.value,
        "response": completed_task.response,
        "completed_at": completed_task.completed_at.astimezone(timezone.utc).isoformat(),
    }
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def sign_completed_task(keypair: Keypair, completed_task: CompletedTask) -> SignedResponse:
    signature = keypair.sign(canonical_bytes(completed_task))
    return SignedResponse(
        completed_task=completed_task,
        identity=keypair.ss58_address,
        signature="0x" + signature.hex(),
    )


def _decode_signature(signature: str) -> bytes:
    hex_part = signature[2:] if signature.startswith("0x") else signature
    return bytes.fromhex(hex_part)


def verify(response: SignedResponse) -> bool:
    """Return True iff ``response.signature`` was produced by ``response.identity``.

    Malformed identities or signatures yield False rather than an exception.
    """
    try:
        signature = _decode_signature(response.signature)
        keypair = Keypair(ss58_address=response.identity)
        return bool(keypair.verify(canonical_bytes(response.completed_task), signature))
    except Exception as e:
        logger.debug(f"Signature check failed for {response.identity}: {type(e).__name__}: {e}")
        return False


def load_keypair(secret: str) -> Keypair:
    """Build a keypair from a secret URI (``//Alice``, ``<mnemonic>//hard/path``) or a bare mnemonic."""
    if "//" in secret or secret.startswith("0x"):
        return Keypair.create_from_uri(secret)
    return Keypair.create_from_mnemonic(secret)
