"""
Small helpers shared by the business modules
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops the offset on DateTime(timezone=True))."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def short_ref(entity_id: Union[UUID, str]) -> str:
    """Last six characters of an id, used in human-readable notes."""
    return str(entity_id)[-6:]


def format_quantity(value: Union[Decimal, int, float]) -> str:
    """Render 10.000 as 10 and 2.500 as 2.5."""
    quantity = Decimal(str(value)).normalize()
    return format(quantity, "f")
