"""Base model with common fields for all entities."""
from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, DateTime, Uuid

from recurring_billing.database import Base as DeclarativeBase


class Base(DeclarativeBase):
    """Base model class with common fields."""

    __abstract__ = True

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def enum_values(enum_cls) -> list[str]:
    """Persist enum values (e.g. 'active') rather than member names."""
    return [member.value for member in enum_cls]
