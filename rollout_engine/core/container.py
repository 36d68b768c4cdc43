"""
Dependency container.

Builds the registry, evaluator, tracker and store once per process and
holds them for the API layer. Nothing in the core reaches for a global;
everything is passed in from here.

Example:
```python
container = Container.from_settings(get_settings())
await container.initialize()

container.features.is_enabled("cr008_doc_first_flow", EvaluationContext(project_id="p1"))

await container.shutdown()
```
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from rollout_engine.core.config import Settings
from rollout_engine.core.features.backends import DatabaseStateStore, MemoryStateStore
from rollout_engine.core.features.catalog import load_catalog
from rollout_engine.core.features.interfaces import EvaluationContext, RolloutStateStore
from rollout_engine.core.features.persistence import StateWriter
from rollout_engine.core.features.registry import FlagRegistry
from rollout_engine.core.features.service import FeatureService
from rollout_engine.core.rollout.tracker import PhaseTracker
from rollout_engine.models.database import close_db, create_engine, create_session_factory, init_db
from rollout_engine.utils.timezone import utc_now

logger = structlog.get_logger()


@dataclass
class Container:
    """Holds every long-lived rollout object."""

    settings: Settings
    store: RolloutStateStore
    registry: FlagRegistry
    features: FeatureService
    tracker: PhaseTracker
    writer: StateWriter
    engine: AsyncEngine | None = None

    _tick_task: asyncio.Task | None = field(default=None, repr=False)
    _initialized: bool = field(default=False, repr=False)
    _loaded: bool = field(default=False, repr=False)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        store: RolloutStateStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "Container":
        """Wire objects from settings. A given store overrides ROLLOUT_STORE."""
        rollout = settings.rollout
        engine = None

        if store is None:
            if rollout.store == "database":
                engine = create_engine(settings.database)
                store = DatabaseStateStore(create_session_factory(engine))
            else:
                store = MemoryStateStore()

        registry = FlagRegistry(clock=clock)
        features = FeatureService(
            registry,
            dev_mode=settings.is_development,
            bucket_algorithm=rollout.bucket_algorithm,
        )
        tracker = PhaseTracker(
            registry,
            features,
            reference_context=EvaluationContext(
                developer_id=rollout.reference_developer_id,
                project_id=rollout.reference_project_id,
            ),
            required_flags=rollout.required_flags,
            clock=clock,
        )
        return cls(
            settings=settings,
            store=store,
            registry=registry,
            features=features,
            tracker=tracker,
            writer=StateWriter(store),
            engine=engine,
        )

    async def initialize(self) -> None:
        """
        Load state from the store and start background work.

        An empty store is seeded from the catalog and the seed persisted.
        After a shutdown this restarts background work only; in-memory state
        is already loaded.
        """
        if self._initialized:
            return

        if self.engine is not None:
            await init_db(self.engine)

        await self.writer.start()
        if not self._loaded:
            await self._load_state()

        interval = self.settings.rollout.gradual_tick_seconds
        if interval > 0:
            self._tick_task = asyncio.create_task(self._tick(interval), name="gradual-rollout-tick")

        self._initialized = True

    async def shutdown(self) -> None:
        """Stop background work and flush pending writes."""
        if self._tick_task is not None:
            self._tick_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._tick_task
            self._tick_task = None

        await self.writer.stop()

        if self.engine is not None:
            await close_db(self.engine)

        self._initialized = False

    async def _load_state(self) -> None:
        self.registry.subscribe(self.writer.flag_changed)
        self.tracker.subscribe(self.writer.phase_changed)

        stored = await self.store.load_flags()
        if stored:
            self.registry.register_many(stored, notify=False)
            logger.info("Rollout state loaded", flags=len(stored))
        else:
            seeded = self.registry.register_many(load_catalog(self.settings.rollout.catalog_path))
            logger.info("Rollout state seeded from catalog", flags=len(seeded))

        self.tracker.load(await self.store.load_phases())
        self._loaded = True

    async def _tick(self, interval: float) -> None:
        """Advance due gradual rollouts every interval seconds."""
        while True:
            await asyncio.sleep(interval)
            try:
                advanced = self.registry.advance_due()
            except Exception:
                logger.exception("Gradual rollout tick failed")
                continue
            if advanced:
                logger.info("Gradual rollouts advanced", flags=[f.id for f in advanced])
