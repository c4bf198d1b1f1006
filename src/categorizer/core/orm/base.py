"""Declarative base and type-map for the categorizer tables.

``type_annotation_map`` lets ``Mapped[...]`` columns use plain Python types:

* ``str``   → ``Text``
* ``int``   → ``Integer``
* ``float`` → ``Float``
* ``bool``  → ``Boolean``
* ``datetime.datetime`` → ``DateTime(timezone=True)``
* ``list`` / ``dict``   → ``JSON``
"""

from __future__ import annotations

import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, Text
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class CategorizerBase(DeclarativeBase):
    """Shared declarative base for every categorizer table."""

    type_annotation_map = {
        str: Text,
        int: Integer,
        float: Float,
        bool: Boolean,
        datetime.datetime: DateTime(timezone=True),
        dict: JSON,
        list: JSON,
    }


def as_utc(value: datetime.datetime | None) -> datetime.datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=datetime.timezone.utc)
