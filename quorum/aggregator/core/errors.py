from enum import Enum
from typing import Optional


class AggregatorError(Exception):
    """Base class for aggregation failures."""


class UnreachableReason(str, Enum):
    TIMEOUT = "timeout"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    MALFORMED = "malformed"
    REJECTED = "rejected"
    IDENTITY_MISMATCH = "identity_mismatch"


class OperatorUnreachable(AggregatorError):
    """A single operator did not produce a usable response."""

    def __init__(self, identity: str, reason: UnreachableReason, detail: str = ""):
        self.identity = identity
        self.reason = reason
        self.detail = detail
        super().__init__(f"Operator {identity} unreachable ({reason.value}): {detail}")


class InvalidSignature(AggregatorError):
    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Signature from {identity} does not verify")


class NoMajority(AggregatorError):
    """No response value holds strictly more than half of the queried stake."""

    def __init__(self, source_position: int, best_value: Optional[int], best_stake: int, total_stake: int):
        self.source_position = source_position
        self.best_value = best_value
        self.best_stake = best_stake
        self.total_stake = total_stake
        super().__init__(
            f"Majority not reached for task at position {source_position}: "
            f"best value {best_value} holds {best_stake} of {total_stake} stake"
        )


class StakeResolutionFailure(AggregatorError):
    def __init__(self, identity: str, original_error: Exception):
        self.identity = identity
        self.original_error = original_error
        super().__init__(f"Could not resolve stake for {identity}: {original_error}")


class LedgerWriteFailure(AggregatorError):
    def __init__(self, source_position: int, detail: str):
        self.source_position = source_position
        self.detail = detail
        super().__init__(f"Publishing result for task at position {source_position} failed: {detail}")


class TaskSourceError(AggregatorError):
    def __init__(self, from_position: int, original_error: Exception):
        self.from_position = from_position
        self.original_error = original_error
        super().__init__(f"Querying task source from position {from_position} failed: {original_error}")


class CheckpointError(AggregatorError):
    """The checkpoint could not be read or written. Fatal to the process."""
