"""Wire and domain models shared by the aggregator and operator nodes."""

from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

T = TypeVar("T")


class Operator(BaseModel):
    """A registered operator: signing identity plus the URL it serves tasks on."""
    model_config = ConfigDict(frozen=True)

    identity: str = Field(..., description="Operator ss58 public identity")
    endpoint: str = Field(..., description="Base URL, tasks are POSTed to {endpoint}/task")

    @field_validator("endpoint")
    @classmethod
    def validate_endpoint(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Operator endpoint must be an http(s) URL, got {v!r}")
        return v.rstrip("/")


class Task(BaseModel):
    """Body sent to every operator."""
    value: int


class TaskRequest(BaseModel):
    """A task discovered on the task source, keyed by its source position (block number)."""
    model_config = ConfigDict(frozen=True)

    value: int = Field(..., description="Task input value")
    source_position: int = Field(..., ge=0, description="Block number the task was emitted in")

    def to_task(self) -> Task:
        return Task(value=self.value)


class CompletedTask(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: int
    response: int
    completed_at: datetime

    @field_validator("completed_at")
    @classmethod
    def validate_completed_at(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class SignedResponse(BaseModel):
    """An operator's answer: the completed task plus a detached signature over it."""
    model_config = ConfigDict(frozen=True)

    completed_task: CompletedTask
    identity: str = Field(..., description="Claimed signer ss58 identity")
    signature: str = Field(..., description="Hex-encoded signature over the canonical completed task")


class ServiceResponse(BaseModel, Generic[T]):
    """Generic success/failure envelope returned by operator endpoints."""
    success: bool
    message: str
    response_object: Optional[T] = None
    status_code: int = 200

    @classmethod
    def ok(cls, message: str, response_object: Any = None) -> "ServiceResponse":
        return cls(success=True, message=message, response_object=response_object, status_code=200)

    @classmethod
    def failure(cls, message: str, status_code: int = 400) -> "ServiceResponse":
        return cls(success=False, message=message, response_object=None, status_code=status_code)


class ConsensusResult(BaseModel):
    """Outcome of a successful stake-weighted resolution."""
    value: int
    winning_stake: int
    total_stake: int
    tally: dict[int, int]
    voters: list[str] = Field(default_factory=list)
