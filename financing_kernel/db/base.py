"""
Declarative base for the five financing tables.

Column conventions shared by invoices, offers, bids, disbursements and
repayments:

- ``id`` is a uuid4 stored as a 36-character string, so the same schema runs
  on PostgreSQL and SQLite.
- Amounts and rates are ``Decimal`` mapped to ``Numeric(38, 9)``; floats
  never reach the database.
- Timestamps are timezone-aware on the way in and come back in UTC on both
  databases.  Binding a naive datetime is a programming error.
- ``TrackedBase`` adds who created and who last changed a row, and when.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

__all__ = ["UUID", "UUIDString", "UTCDateTime", "Base", "TrackedBase"]


class UUIDString(TypeDecorator):
    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class UTCDateTime(TypeDecorator):
    """Aware datetime column; SQLite stores naive UTC and gets the tzinfo back on load."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"naive datetime cannot be stored: {value!r}")
        utc = value.astimezone(timezone.utc)
        return utc.replace(tzinfo=None) if dialect.name == "sqlite" else utc

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        Decimal: Numeric(38, 9),
        datetime: UTCDateTime(),
        date: Date(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """Audit columns: database-stamped times plus the acting party's id."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())
    created_by_id: Mapped[UUID]
    updated_by_id: Mapped[UUID | None]
