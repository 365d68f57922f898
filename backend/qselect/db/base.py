"""Database base class.

Models register themselves on import; import ``qselect.models`` before calling
``Base.metadata.create_all`` so every table is known.
"""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass
