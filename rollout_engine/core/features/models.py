"""
Rollout State Models - SQLAlchemy models for durable rollout state.

Tables:
- rollout_flags: Flag definitions and rollout state
- rollout_phases: Rollout phases with their issues

Each row keeps the full camelCase payload in a JSON column; id and
status are duplicated into real columns for querying.
"""

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from rollout_engine.models.base import Base, PayloadMixin, TimestampMixin


class FlagRecord(Base, PayloadMixin, TimestampMixin):
    """Stored feature flag."""

    __tablename__ = "rollout_flags"

    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    strategy: Mapped[str] = mapped_column(String(20), nullable=False)
    kill_switch_triggered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        killed = " KILLED" if self.kill_switch_triggered else ""
        return f"<FlagRecord {self.id} [{self.status}{killed}]>"


class PhaseRecord(Base, PayloadMixin, TimestampMixin):
    """Stored rollout phase, issues included in the payload."""

    __tablename__ = "rollout_phases"
    __table_args__ = (
        Index("idx_rollout_phases_status", "status"),
    )

    stage: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    def __repr__(self) -> str:
        return f"<PhaseRecord {self.id} [{self.stage}/{self.status}]>"
