"""
Base model classes and mixins for stored rollout state.

- TimestampMixin: created_at / updated_at row bookkeeping (load order)
- PayloadMixin: string id plus the record's camelCase JSON document
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    # All datetimes are timezone-aware; dict columns are JSON documents
    type_annotation_map = {
        datetime: DateTime(timezone=True),
        dict[str, Any]: JSON,
    }


class TimestampMixin:
    """
    Row timestamps, stored in UTC.

    These track the storage row only. Flag and phase timestamps live in
    the payload and are never read from here.
    """

    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class PayloadMixin:
    """
    Record keyed by its domain id, holding the full ``to_dict()`` payload.

    Columns besides id and payload are copies kept for querying; the
    payload is the source of truth when loading.
    """

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    payload: Mapped[dict[str, Any]] = mapped_column(nullable=False)
