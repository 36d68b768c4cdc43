"""
Database rollout state store.

Uses SQLAlchemy (PostgreSQL in production, SQLite for tests).
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rollout_engine.core.rollout.interfaces import RolloutPhase

from ..interfaces import FeatureFlag, RolloutStateStore
from ..models import FlagRecord, PhaseRecord


class DatabaseStateStore(RolloutStateStore):
    """
    SQL-backed rollout state storage.

    Each write runs in its own short session so the write-behind task
    never holds a session between records.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ============================================================
    # FLAG OPERATIONS
    # ============================================================

    async def load_flags(self) -> list[FeatureFlag]:
        query = select(FlagRecord).order_by(FlagRecord.created_at, FlagRecord.id)
        async with self.session_factory() as session:
            result = await session.execute(query)
            records = result.scalars().all()

        return [FeatureFlag.from_dict(r.payload) for r in records]

    async def save_flag(self, flag: FeatureFlag) -> None:
        async with self.session_factory() as session:
            await session.merge(
                FlagRecord(
                    id=flag.id,
                    status=flag.status.value,
                    strategy=flag.strategy.value,
                    kill_switch_triggered=flag.kill_switch_triggered,
                    payload=flag.to_dict(),
                )
            )
            await session.commit()

    # ============================================================
    # PHASE OPERATIONS
    # ============================================================

    async def load_phases(self) -> list[RolloutPhase]:
        query = select(PhaseRecord).order_by(PhaseRecord.created_at, PhaseRecord.id)
        async with self.session_factory() as session:
            result = await session.execute(query)
            records = result.scalars().all()

        return [RolloutPhase.from_dict(r.payload) for r in records]

    async def save_phase(self, phase: RolloutPhase) -> None:
        async with self.session_factory() as session:
            await session.merge(
                PhaseRecord(
                    id=phase.id,
                    stage=phase.stage.value,
                    status=phase.status.value,
                    payload=phase.to_dict(),
                )
            )
            await session.commit()
