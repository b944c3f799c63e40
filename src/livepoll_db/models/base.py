"""SQLAlchemy declarative base shared by all ORM models."""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy.orm import DeclarativeBase


def _jsonable(value: Any) -> Any:
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return value.value
    return value


class Base(DeclarativeBase):
    """Base class for all ORM models in livepoll_db."""

    def to_record(self) -> dict[str, Any]:
        """Column values as a JSON-safe dict (the change-feed row image)."""
        return {
            column.key: _jsonable(getattr(self, column.key))
            for column in self.__table__.columns
        }
