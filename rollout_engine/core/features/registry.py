"""
Flag Registry - canonical flag definitions and rollout state.

Every record is an immutable FeatureFlag. A mutation builds a new record
and a new mapping under the registry lock, then swaps the mapping
reference; readers grab the current mapping without locking and always
see whole records. Listeners are called inside the lock, so they
observe changes in commit order and must not call back into the
registry.

Administrative operations return the committed flag, or None when the
flag is unknown or the input was rejected. They never raise for bad
input.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Callable, Iterable, Mapping

import structlog

from rollout_engine.utils.timezone import utc_now

from .interfaces import (
    CyclicDependencyError,
    DuplicateFlagError,
    FeatureFlag,
    FlagStatus,
    GradualConfig,
    InvalidFlagError,
    RolloutStrategy,
    WhitelistKind,
)

logger = structlog.get_logger()

Clock = Callable[[], datetime]
FlagListener = Callable[[FeatureFlag], None]

SYSTEM_ACTOR = "SYSTEM"


def flag_problem(flag: FeatureFlag) -> str | None:
    """Describe the first range invariant the flag breaks, or None."""
    if not 0 <= flag.percentage <= 100:
        return f"percentage must be 0..100, got {flag.percentage}"
    if flag.gradual_config is not None:
        return flag.gradual_config.validate()
    return None


def find_dependency_cycle(flags: Mapping[str, FeatureFlag]) -> list[str] | None:
    """
    Return one dependsOn cycle as a path (first id repeated last), or None.

    Dependencies on unknown ids are leaves.
    """
    visiting: set[str] = set()
    done: set[str] = set()
    path: list[str] = []

    def visit(flag_id: str) -> list[str] | None:
        if flag_id in done or flag_id not in flags:
            return None
        if flag_id in visiting:
            return path[path.index(flag_id):] + [flag_id]

        visiting.add(flag_id)
        path.append(flag_id)
        for dep_id in flags[flag_id].depends_on:
            cycle = visit(dep_id)
            if cycle:
                return cycle
        path.pop()
        visiting.discard(flag_id)
        done.add(flag_id)
        return None

    for flag_id in flags:
        cycle = visit(flag_id)
        if cycle:
            return cycle
    return None


class FlagRegistry:
    """
    Owns FeatureFlag state.

    Construct once at startup and pass it to the evaluator, the phase
    tracker and the API layer.
    """

    def __init__(
        self,
        flags: Iterable[FeatureFlag] = (),
        clock: Clock = utc_now,
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._flags: Mapping[str, FeatureFlag] = MappingProxyType({})
        self._listeners: list[FlagListener] = []

        flags = list(flags)
        if flags:
            self.register_many(flags, notify=False)

    # ============================================================
    # READS
    # ============================================================

    def get_flag(self, flag_id: str) -> FeatureFlag | None:
        """Get a feature flag by id."""
        return self._flags.get(flag_id)

    def list_flags(self) -> list[FeatureFlag]:
        """List all feature flags in registration order."""
        return list(self._flags.values())

    def snapshot(self) -> Mapping[str, FeatureFlag]:
        """Immutable view of every flag at this instant."""
        return self._flags

    def __contains__(self, flag_id: object) -> bool:
        return flag_id in self._flags

    def __len__(self) -> int:
        return len(self._flags)

    # ============================================================
    # REGISTRATION
    # ============================================================

    def subscribe(self, listener: FlagListener) -> None:
        """Call listener with every committed flag record, in commit order."""
        self._listeners.append(listener)

    def register(self, flag: FeatureFlag) -> FeatureFlag:
        """Register a single flag definition."""
        return self.register_many([flag])[0]

    def register_many(
        self,
        flags: Iterable[FeatureFlag],
        notify: bool = True,
    ) -> list[FeatureFlag]:
        """
        Register flag definitions as one batch.

        Raises:
            DuplicateFlagError: an id is already registered
            InvalidFlagError: percentage or gradual config out of range
            CyclicDependencyError: the resulting dependsOn graph has a cycle

        Nothing is registered when any of these is raised.
        """
        with self._lock:
            merged = dict(self._flags)
            now = self._clock()
            added = []

            for flag in flags:
                if flag.id in merged:
                    raise DuplicateFlagError(flag.id)
                problem = flag_problem(flag)
                if problem:
                    raise InvalidFlagError(flag.id, problem)
                flag = replace(
                    flag,
                    created_at=flag.created_at or now,
                    updated_at=flag.updated_at or now,
                )
                merged[flag.id] = flag
                added.append(flag)

            cycle = find_dependency_cycle(merged)
            if cycle:
                raise CyclicDependencyError(cycle)

            self._flags = MappingProxyType(merged)
            if notify:
                for flag in added:
                    self._notify(flag)

        logger.info("Feature flags registered", count=len(added))
        return added

    # ============================================================
    # ADMINISTRATIVE OPERATIONS
    # ============================================================

    def enable(self, flag_id: str, actor: str) -> FeatureFlag | None:
        """Set status ENABLED. Leaves the kill switch alone."""
        def mutate(flag: FeatureFlag, now: datetime) -> FeatureFlag:
            return replace(flag, status=FlagStatus.ENABLED, enabled_at=now)

        updated = self._update(flag_id, "enable", mutate)
        if updated:
            logger.info("Feature flag enabled", flag_id=flag_id, actor=actor)
        return updated

    def disable(self, flag_id: str, actor: str) -> FeatureFlag | None:
        """Set status DISABLED."""
        def mutate(flag: FeatureFlag, now: datetime) -> FeatureFlag:
            return replace(flag, status=FlagStatus.DISABLED, disabled_at=now)

        updated = self._update(flag_id, "disable", mutate)
        if updated:
            logger.info("Feature flag disabled", flag_id=flag_id, actor=actor)
        return updated

    def trigger_kill_switch(
        self,
        flag_id: str,
        reason: str,
        actor: str,
    ) -> FeatureFlag | None:
        """Force the flag off for everyone until the switch is reset."""
        def mutate(flag: FeatureFlag, now: datetime) -> FeatureFlag:
            return replace(
                flag,
                kill_switch_triggered=True,
                kill_switch_reason=reason,
                kill_switch_at=now,
            )

        updated = self._update(flag_id, "trigger_kill_switch", mutate)
        if updated:
            logger.warning(
                "Kill switch triggered",
                flag_id=flag_id,
                actor=actor,
                reason=reason,
            )
        return updated

    def reset_kill_switch(self, flag_id: str, actor: str) -> FeatureFlag | None:
        """Clear the kill switch fields."""
        def mutate(flag: FeatureFlag, now: datetime) -> FeatureFlag:
            return replace(
                flag,
                kill_switch_triggered=False,
                kill_switch_reason=None,
                kill_switch_at=None,
            )

        updated = self._update(flag_id, "reset_kill_switch", mutate)
        if updated:
            logger.warning("Kill switch reset", flag_id=flag_id, actor=actor)
        return updated

    def set_rollout_percentage(
        self,
        flag_id: str,
        percentage: int,
        actor: str,
    ) -> FeatureFlag | None:
        """Switch the flag to a PILOT percentage rollout."""
        def mutate(flag: FeatureFlag, now: datetime) -> FeatureFlag | None:
            if not 0 <= percentage <= 100:
                logger.error(
                    "Invalid rollout percentage",
                    flag_id=flag_id,
                    percentage=percentage,
                    actor=actor,
                )
                return None
            return replace(
                flag,
                percentage=percentage,
                strategy=RolloutStrategy.PERCENTAGE,
                status=FlagStatus.PILOT,
            )

        updated = self._update(flag_id, "set_rollout_percentage", mutate)
        if updated:
            logger.info(
                "Rollout percentage set",
                flag_id=flag_id,
                percentage=percentage,
                actor=actor,
            )
        return updated

    def add_to_whitelist(
        self,
        flag_id: str,
        kind: WhitelistKind | str,
        subject_id: str,
        actor: str,
    ) -> FeatureFlag | None:
        """
        Add a developer, project or user id to the flag's whitelist.

        Adding an id twice keeps a single entry. Always switches the flag
        to a PILOT whitelist rollout.
        """
        try:
            kind = WhitelistKind(kind)
        except ValueError:
            logger.error("Invalid whitelist kind", flag_id=flag_id, kind=kind, actor=actor)
            return None

        if not subject_id:
            logger.error("Empty whitelist id", flag_id=flag_id, kind=kind.value, actor=actor)
            return None

        def mutate(flag: FeatureFlag, now: datetime) -> FeatureFlag:
            ids = flag.whitelist(kind)
            if subject_id not in ids:
                ids = ids + (subject_id,)
            field_name = f"whitelisted_{kind.value}s"
            return replace(
                flag,
                strategy=RolloutStrategy.WHITELIST,
                status=FlagStatus.PILOT,
                **{field_name: ids},
            )

        updated = self._update(flag_id, "add_to_whitelist", mutate)
        if updated:
            logger.info(
                "Whitelist entry added",
                flag_id=flag_id,
                kind=kind.value,
                subject_id=subject_id,
                actor=actor,
            )
        return updated

    # ============================================================
    # GRADUAL ROLLOUT
    # ============================================================

    def configure_gradual(
        self,
        flag_id: str,
        start_percentage: int,
        end_percentage: int,
        increment_percentage: int,
        increment_interval_hours: float,
        actor: str,
    ) -> FeatureFlag | None:
        """Start a scheduled ramp at start_percentage."""
        def mutate(flag: FeatureFlag, now: datetime) -> FeatureFlag | None:
            config = GradualConfig(
                start_percentage=start_percentage,
                end_percentage=end_percentage,
                increment_percentage=increment_percentage,
                increment_interval_hours=increment_interval_hours,
                current_percentage=start_percentage,
                started_at=now,
            )
            problem = config.validate()
            if problem:
                logger.error(
                    "Invalid gradual rollout config",
                    flag_id=flag_id,
                    problem=problem,
                    actor=actor,
                )
                return None
            if not config.is_complete:
                config = replace(
                    config,
                    next_increment_at=now + timedelta(hours=increment_interval_hours),
                )
            return replace(
                flag,
                gradual_config=config,
                strategy=RolloutStrategy.GRADUAL,
                status=FlagStatus.PILOT,
            )

        updated = self._update(flag_id, "configure_gradual", mutate)
        if updated:
            logger.info(
                "Gradual rollout configured",
                flag_id=flag_id,
                start=start_percentage,
                end=end_percentage,
                increment=increment_percentage,
                interval_hours=increment_interval_hours,
                actor=actor,
            )
        return updated

    def advance_gradual(
        self,
        flag_id: str,
        actor: str = SYSTEM_ACTOR,
        now: datetime | None = None,
    ) -> FeatureFlag | None:
        """
        Step a gradual ramp if its next increment is due.

        Calling before next_increment_at, or after the ramp reached its
        end, returns the flag unchanged.
        """
        def mutate(flag: FeatureFlag, now: datetime) -> FeatureFlag | None:
            config = flag.gradual_config
            if config is None:
                logger.error("Flag has no gradual rollout", flag_id=flag_id, actor=actor)
                return None
            if not self._is_due(flag, now):
                return flag

            current = min(
                config.current_percentage + config.increment_percentage,
                config.end_percentage,
            )
            next_at = None
            if current < config.end_percentage:
                next_at = now + timedelta(hours=config.increment_interval_hours)
            return replace(
                flag,
                gradual_config=replace(
                    config,
                    current_percentage=current,
                    next_increment_at=next_at,
                ),
            )

        before = self.get_flag(flag_id)
        updated = self._update(flag_id, "advance_gradual", mutate, now=now)
        if updated and updated is not before:
            logger.info(
                "Gradual rollout advanced",
                flag_id=flag_id,
                current_percentage=updated.gradual_config.current_percentage,
                next_increment_at=str(updated.gradual_config.next_increment_at),
                actor=actor,
            )
        return updated

    def advance_due(self, now: datetime | None = None) -> list[FeatureFlag]:
        """Advance every gradual ramp whose increment is due."""
        now = now or self._clock()
        advanced = []
        for flag in self.list_flags():
            if not self._is_due(flag, now):
                continue
            updated = self.advance_gradual(flag.id, SYSTEM_ACTOR, now=now)
            if updated and updated is not flag:
                advanced.append(updated)
        return advanced

    @staticmethod
    def _is_due(flag: FeatureFlag, now: datetime) -> bool:
        config = flag.gradual_config
        if flag.strategy is not RolloutStrategy.GRADUAL or config is None:
            return False
        if config.is_complete:
            return False
        return config.next_increment_at is None or now >= config.next_increment_at

    # ============================================================
    # HELPERS
    # ============================================================

    def _update(
        self,
        flag_id: str,
        action: str,
        mutate: Callable[[FeatureFlag, datetime], FeatureFlag | None],
        now: datetime | None = None,
    ) -> FeatureFlag | None:
        """Apply mutate to one record and publish the result atomically."""
        with self._lock:
            current = self._flags.get(flag_id)
            if current is None:
                logger.warning("Feature flag not found", flag_id=flag_id, action=action)
                return None

            now = now or self._clock()
            updated = mutate(current, now)
            if updated is None or updated is current:
                return updated

            updated = replace(updated, updated_at=now)
            flags = dict(self._flags)
            flags[flag_id] = updated
            self._flags = MappingProxyType(flags)
            self._notify(updated)

        return updated

    def _notify(self, flag: FeatureFlag) -> None:
        for listener in list(self._listeners):
            try:
                listener(flag)
            except Exception:
                logger.exception("Flag listener failed", flag_id=flag.id)
