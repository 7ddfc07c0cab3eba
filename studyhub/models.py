from datetime import datetime, timezone

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Record(SQLModel, table=True):
    """One keyed entry of the record store. `value` is always written whole."""

    key: str = Field(primary_key=True)
    value: dict = Field(sa_column=Column(JSON, nullable=False))
    version: int = Field(default=1, nullable=False)  # Bumped on every write, used for compare-and-swap
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
