"""
Operator registry.

The registry is append-only from the aggregator's point of view. Dispatch never
reads it directly: each poll cycle takes an immutable ``RegistrySnapshot`` (an
ordered tuple of operators plus the epoch it was taken at) and passes it down.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Tuple

import yaml

from quorum.shared.models import Operator
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RegistrySnapshot:
    epoch: int
    operators: Tuple[Operator, ...] = field(default_factory=tuple)

    def __iter__(self) -> Iterator[Operator]:
        return iter(self.operators)

    def __len__(self) -> int:
        return len(self.operators)

    def is_empty(self) -> bool:
        return not self.operators


class OperatorRegistry:
    """Ordered set of known operators, keyed by identity."""

    def __init__(self, operators: Iterable[Operator] = ()) -> None:
        self._operators: Dict[str, Operator] = {}
        self._epoch = 0
        for operator in operators:
            self.register(operator)

    @property
    def epoch(self) -> int:
        return self._epoch

    def register(self, operator: Operator) -> bool:
        """Add an operator. Returns False if its identity is already registered."""
        if operator.identity in self._operators:
            logger.info(f"Operator already registered: {operator.identity}")
            return False
        self._operators[operator.identity] = operator
        self._epoch += 1
        logger.info(f"Operator registered: {operator.identity} at {operator.endpoint} (epoch {self._epoch})")
        return True

    def is_registered(self, identity: str) -> bool:
        return identity in self._operators

    def snapshot(self) -> RegistrySnapshot:
        return RegistrySnapshot(epoch=self._epoch, operators=tuple(self._operators.values()))

    @classmethod
    def from_yaml(cls, path: str) -> "OperatorRegistry":
        """Load ``operators: [{identity, endpoint}, ...]`` from a YAML file."""
        with open(path, "r", encoding="utf-8") as f:
            cfg: Dict[str, Any] = yaml.safe_load(f) or {}
        entries: List[Dict[str, Any]] = cfg.get("operators") or []
        registry = cls(Operator(**entry) for entry in entries)
        logger.info(f"Loaded {len(registry.snapshot())} operators from {path}")
        return registry
