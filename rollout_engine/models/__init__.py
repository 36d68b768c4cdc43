"""SQLAlchemy base and database session management."""

from .base import Base, PayloadMixin, TimestampMixin

__all__ = ["Base", "PayloadMixin", "TimestampMixin"]
