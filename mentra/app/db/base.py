# mentra/app/db/base.py
"""
SQLAlchemy declarative base and re-exports of the session components.
"""
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Usage:
        class JournalEntry(Base):
            __tablename__ = "journal_entries"
            id = Column(String(36), primary_key=True)
            ...
    """
    pass


from mentra.app.db.session import (  # noqa: E402
    engine,
    AsyncSessionLocal,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionLocal",
]
