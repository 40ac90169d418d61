import uuid

from sqlalchemy.orm import DeclarativeBase


def new_id() -> str:
    """Primary key default: random UUID4 rendered as text."""
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Declarative base shared by all models."""
