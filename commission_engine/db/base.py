"""
Declarative base and shared column types.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Enum as SAEnum
from sqlalchemy import Numeric
from sqlalchemy.orm import DeclarativeBase

# Currency amounts: up to 99,999,999.99
MoneyType = Numeric(10, 2, asdecimal=True)

# Commission percentages: 0.00 to 999.99
PercentType = Numeric(5, 2, asdecimal=True)


class Base(DeclarativeBase):
    """Base class for all ORM entities."""


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def status_column_type(enum_cls: type[Enum]) -> SAEnum:
    """Closed string column storing the enum *values* (not member names)."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        validate_strings=True,
        values_callable=lambda members: [member.value for member in members],
    )
