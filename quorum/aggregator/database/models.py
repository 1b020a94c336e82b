from sqlalchemy import BigInteger, Column, DateTime, Integer, MetaData, Table
from sqlalchemy.sql import func

from quorum.aggregator.core.constants import CHECKPOINT_TABLE

metadata = MetaData()

# Single-row table: id is always 1
checkpoint_table = Table(
    CHECKPOINT_TABLE,
    metadata,
    Column("id", Integer, primary_key=True),
    Column("next_source_position", BigInteger, nullable=False),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
)
