"""
Small typing and time helpers shared by models and services.

SQLModel declares ``last_used_at: Optional[datetime]``, so a type checker
rejects ``Credential.last_used_at.asc()``. Wrapping the attribute in col()
restores the SQLAlchemy column API for the checker without changing runtime
behaviour.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, TypeVar

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    No-op cast of a model field to its column descriptor.

    Usage:
        select(Credential).order_by(col(Credential.last_used_at).asc().nulls_first())
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """Timezone-aware current UTC time; also the default_factory for timestamps."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Attach UTC to a datetime read back from the database.

    SQLite returns naive datetimes, Postgres returns aware ones.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


__all__ = [
    "col",
    "utc_now",
    "as_utc",
]
