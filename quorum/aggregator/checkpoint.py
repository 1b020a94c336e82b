"""
Checkpoint stores.

The checkpoint is a single durable integer: the next task-source position the
aggregator has not yet fully resolved and published. It is read at the start of
every poll cycle and written once after each committed task. Any failure to read
or write it is raised as ``CheckpointError``, which the aggregation loop treats as
fatal.
"""

from __future__ import annotations

import json
import os
from typing import Optional, Protocol

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from quorum.aggregator.core.errors import CheckpointError
from quorum.aggregator.database.database_manager import DatabaseManager
from quorum.aggregator.database.models import checkpoint_table
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


class CheckpointStore(Protocol):
    async def load(self) -> int: ...
    async def save(self, next_source_position: int) -> None: ...


class FileCheckpointStore(CheckpointStore):
    """JSON file ``{"next_source_position": n}`` replaced atomically on every write."""

    def __init__(self, path: str, *, start_position: int = 0) -> None:
        self.path = path
        self.start_position = start_position

    async def load(self) -> int:
        if not os.path.exists(self.path):
            logger.info(f"No checkpoint at {self.path}, starting from position {self.start_position}")
            return self.start_position
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            position = int(data["next_source_position"])
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CheckpointError(f"Unreadable checkpoint {self.path}: {e}") from e
        if position < 0:
            raise CheckpointError(f"Corrupt checkpoint {self.path}: negative position {position}")
        return position

    async def save(self, next_source_position: int) -> None:
        tmp = f"{self.path}.tmp"
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"next_source_position": next_source_position}, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise CheckpointError(f"Could not write checkpoint {self.path}: {e}") from e
        logger.debug(f"Checkpoint advanced to {next_source_position}")


class DbCheckpointStore(CheckpointStore):
    """Single-row SQL table managed through the async DatabaseManager."""

    def __init__(self, db: DatabaseManager, *, start_position: int = 0) -> None:
        self.db = db
        self.start_position = start_position

    async def load(self) -> int:
        try:
            async with self.db.transaction() as conn:
                result = await conn.execute(
                    sa.select(checkpoint_table.c.next_source_position).where(checkpoint_table.c.id == 1)
                )
                position: Optional[int] = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as e:
            raise CheckpointError(f"Could not read checkpoint from database: {e}") from e
        if position is None:
            logger.info(f"No checkpoint row, starting from position {self.start_position}")
            return self.start_position
        if position < 0:
            raise CheckpointError(f"Corrupt checkpoint row: negative position {position}")
        return int(position)

    async def save(self, next_source_position: int) -> None:
        try:
            async with self.db.transaction() as conn:
                result = await conn.execute(
                    sa.update(checkpoint_table)
                    .where(checkpoint_table.c.id == 1)
                    .values(next_source_position=next_source_position)
                )
                if result.rowcount == 0:
                    await conn.execute(
                        sa.insert(checkpoint_table).values(id=1, next_source_position=next_source_position)
                    )
        except (SQLAlchemyError, OSError) as e:
            raise CheckpointError(f"Could not write checkpoint to database: {e}") from e
        logger.debug(f"Checkpoint advanced to {next_source_position}")
