"""
Phase & Issue Tracker.

Owns rollout phases and the issues reported against them. At most one
phase is ACTIVE: activating a phase completes the previous active one.

Cross-component side effect: reporting a P0 issue that names a flag
triggers that flag's kill switch in the registry.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from types import MappingProxyType
from typing import Callable, Iterable, Mapping
from uuid import uuid4

import structlog

from rollout_engine.core.features.interfaces import EvaluationContext
from rollout_engine.core.features.registry import SYSTEM_ACTOR, FlagRegistry
from rollout_engine.core.features.service import FeatureService
from rollout_engine.utils.timezone import utc_now

from .interfaces import (
    CLOSED_ISSUE_STATUSES,
    IssueSeverity,
    IssueStatus,
    PhaseStatus,
    PilotStatus,
    RolloutIssue,
    RolloutPhase,
    RolloutStage,
)

logger = structlog.get_logger()

PhaseListener = Callable[[RolloutPhase], None]


class PhaseTracker:
    """
    Rollout phase and issue management.

    Args:
        registry: Flag registry, used for P0 kill switches
        features: Evaluator, used by the pilot health queries
        reference_context: Context the pilot status is evaluated for
        required_flags: Flags that must be on for the pilot to be healthy
    """

    def __init__(
        self,
        registry: FlagRegistry,
        features: FeatureService,
        reference_context: EvaluationContext | None = None,
        required_flags: Iterable[str] = (),
        clock: Callable[[], datetime] = utc_now,
    ):
        self.registry = registry
        self.features = features
        self.reference_context = reference_context or EvaluationContext()
        self.required_flags = tuple(required_flags)
        self._clock = clock
        self._lock = threading.Lock()
        self._phases: Mapping[str, RolloutPhase] = MappingProxyType({})
        self._listeners: list[PhaseListener] = []

    def subscribe(self, listener: PhaseListener) -> None:
        """
        Call listener with every committed phase record, in commit order.

        Listeners run under the tracker lock and must not call back into it.
        """
        self._listeners.append(listener)

    def load(self, phases: Iterable[RolloutPhase]) -> None:
        """Restore previously persisted phases as they are."""
        with self._lock:
            merged = dict(self._phases)
            for phase in phases:
                merged[phase.id] = phase
            self._phases = MappingProxyType(merged)

    # ============================================================
    # PHASES
    # ============================================================

    def get_phase(self, phase_id: str) -> RolloutPhase | None:
        return self._phases.get(phase_id)

    def list_phases(self) -> list[RolloutPhase]:
        return list(self._phases.values())

    def get_current_phase(self) -> RolloutPhase | None:
        """The ACTIVE phase, if any."""
        for phase in self._phases.values():
            if phase.status is PhaseStatus.ACTIVE:
                return phase
        return None

    def create_phase(self, phase: RolloutPhase) -> RolloutPhase | None:
        """Register a phase with an empty issue list. None if the id exists."""
        with self._lock:
            if phase.id in self._phases:
                logger.warning("Rollout phase already exists", phase_id=phase.id)
                return None

            created = replace(phase, issues=())
            changed = [created]
            if created.status is PhaseStatus.ACTIVE:
                changed += self._complete_active(exclude=created.id)
            self._commit(changed)

        logger.info(
            "Rollout phase created",
            phase_id=created.id,
            stage=created.stage.value,
            status=created.status.value,
        )
        return created

    def set_phase_status(self, phase_id: str, status: PhaseStatus | str) -> RolloutPhase | None:
        """
        Move a phase to a new status.

        ACTIVE completes any other active phase; COMPLETED and ABORTED
        stamp the end date.
        """
        try:
            status = PhaseStatus(status)
        except ValueError:
            logger.error("Invalid phase status", phase_id=phase_id, status=status)
            return None

        with self._lock:
            phase = self._phases.get(phase_id)
            if phase is None:
                logger.warning("Rollout phase not found", phase_id=phase_id)
                return None
            if phase.status is status:
                return phase

            end_date = phase.end_date
            if status in (PhaseStatus.COMPLETED, PhaseStatus.ABORTED):
                end_date = self._clock()
            updated = replace(phase, status=status, end_date=end_date)

            changed = [updated]
            if status is PhaseStatus.ACTIVE:
                changed += self._complete_active(exclude=phase_id)
            self._commit(changed)

        logger.info(
            "Rollout phase status changed",
            phase_id=phase_id,
            old_status=phase.status.value,
            new_status=status.value,
        )
        return updated

    def record_metric(self, phase_id: str, metric: str, current: float) -> RolloutPhase | None:
        """Update the current value of a success criterion."""
        with self._lock:
            phase = self._phases.get(phase_id)
            if phase is None:
                logger.warning("Rollout phase not found", phase_id=phase_id)
                return None
            if metric not in {c.metric for c in phase.success_criteria}:
                logger.error("Unknown success metric", phase_id=phase_id, metric=metric)
                return None

            criteria = tuple(
                replace(c, current=current) if c.metric == metric else c
                for c in phase.success_criteria
            )
            updated = replace(phase, success_criteria=criteria)
            self._commit([updated])

        return updated

    # ============================================================
    # ISSUES
    # ============================================================

    def report_issue(
        self,
        phase_id: str,
        *,
        severity: IssueSeverity | str,
        title: str,
        description: str,
        reported_by: str,
        feature_id: str | None = None,
        reported_at: datetime | None = None,
    ) -> RolloutIssue | None:
        """
        Append an issue to a phase.

        A P0 issue naming a flag triggers the flag's kill switch with
        reason "P0 issue: <title>".
        """
        try:
            severity = IssueSeverity(severity)
        except ValueError:
            logger.error("Invalid issue severity", phase_id=phase_id, severity=severity)
            return None

        with self._lock:
            phase = self._phases.get(phase_id)
            if phase is None:
                logger.warning("Rollout phase not found", phase_id=phase_id)
                return None

            issue = RolloutIssue(
                id=f"issue_{uuid4().hex[:12]}",
                severity=severity,
                title=title,
                description=description,
                feature_id=feature_id,
                reported_at=reported_at or self._clock(),
                reported_by=reported_by,
            )
            updated = replace(phase, issues=phase.issues + (issue,))
            self._commit([updated])

        logger.info(
            "Rollout issue reported",
            phase_id=phase_id,
            issue_id=issue.id,
            severity=severity.value,
            title=title,
            feature_id=feature_id,
        )

        if severity is IssueSeverity.P0 and feature_id:
            logger.warning(
                "P0 issue triggers kill switch",
                phase_id=phase_id,
                issue_id=issue.id,
                flag_id=feature_id,
            )
            self.registry.trigger_kill_switch(feature_id, f"P0 issue: {title}", SYSTEM_ACTOR)

        return issue

    def update_issue_status(
        self,
        phase_id: str,
        issue_id: str,
        status: IssueStatus | str,
    ) -> RolloutIssue | None:
        """Move an issue along its lifecycle. Never resets kill switches."""
        try:
            status = IssueStatus(status)
        except ValueError:
            logger.error("Invalid issue status", issue_id=issue_id, status=status)
            return None

        with self._lock:
            phase = self._phases.get(phase_id)
            if phase is None:
                logger.warning("Rollout phase not found", phase_id=phase_id)
                return None

            issue = next((i for i in phase.issues if i.id == issue_id), None)
            if issue is None:
                logger.warning("Rollout issue not found", phase_id=phase_id, issue_id=issue_id)
                return None

            resolved_at = self._clock() if status in CLOSED_ISSUE_STATUSES else None
            updated_issue = replace(issue, status=status, resolved_at=resolved_at)
            updated = replace(
                phase,
                issues=tuple(updated_issue if i.id == issue_id else i for i in phase.issues),
            )
            self._commit([updated])

        logger.info(
            "Rollout issue status changed",
            phase_id=phase_id,
            issue_id=issue_id,
            status=status.value,
        )
        return updated_issue

    # ============================================================
    # PILOT HEALTH
    # ============================================================

    def get_pilot_status(self, context: EvaluationContext | None = None) -> PilotStatus:
        """Enabled and blocked flags for the reference context, plus open issues."""
        flags = self.features.get_all_flags(context or self.reference_context)
        current = self.get_current_phase()

        return PilotStatus(
            phase=current.stage if current else RolloutStage.PILOT,
            enabled_features=[flag_id for flag_id, on in flags.items() if on],
            blocked_features=[flag_id for flag_id, on in flags.items() if not on],
            issues=current.open_issues() if current else [],
        )

    def is_pilot_healthy(self, context: EvaluationContext | None = None) -> bool:
        """No open P0 issue and every required flag enabled."""
        status = self.get_pilot_status(context)
        has_p0 = any(i.severity is IssueSeverity.P0 for i in status.issues)
        enabled = set(status.enabled_features)
        return not has_p0 and all(flag_id in enabled for flag_id in self.required_flags)

    # ============================================================
    # HELPERS
    # ============================================================

    def _complete_active(self, exclude: str) -> list[RolloutPhase]:
        """Completed copies of every other ACTIVE phase. Caller holds the lock."""
        now = self._clock()
        completed = []
        for phase in self._phases.values():
            if phase.id != exclude and phase.status is PhaseStatus.ACTIVE:
                completed.append(replace(phase, status=PhaseStatus.COMPLETED, end_date=now))
                logger.info("Rollout phase superseded", phase_id=phase.id, by=exclude)
        return completed

    def _commit(self, changed: list[RolloutPhase]) -> None:
        """Publish changed phases and notify listeners. Caller holds the lock."""
        phases = dict(self._phases)
        for phase in changed:
            phases[phase.id] = phase
        self._phases = MappingProxyType(phases)
        self._notify(changed)

    def _notify(self, changed: list[RolloutPhase]) -> None:
        for phase in changed:
            for listener in list(self._listeners):
                try:
                    listener(phase)
                except Exception:
                    logger.exception("Phase listener failed", phase_id=phase.id)
