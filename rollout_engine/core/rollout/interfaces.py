"""
Rollout phase and issue models.

A phase is one stage of a staged release (DEV -> STAGING -> PILOT ->
SOFT_LAUNCH -> GA); issues are operational problems reported against
it. Records are immutable and replaced as a whole by the tracker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from rollout_engine.utils.timezone import from_iso8601, to_iso8601


class RolloutStage(str, Enum):
    DEV = "DEV"
    STAGING = "STAGING"
    PILOT = "PILOT"
    SOFT_LAUNCH = "SOFT_LAUNCH"
    GA = "GA"


class PhaseStatus(str, Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"


class IssueSeverity(str, Enum):
    """P0 is the most severe; a P0 naming a flag kills that flag."""
    P0 = "P0"
    P1 = "P1"
    P2 = "P2"
    P3 = "P3"


class IssueStatus(str, Enum):
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    WONT_FIX = "WONT_FIX"


CLOSED_ISSUE_STATUSES = frozenset({IssueStatus.RESOLVED, IssueStatus.WONT_FIX})


@dataclass(frozen=True)
class TargetAudience:
    developers: tuple[str, ...] = ()
    projects: tuple[str, ...] = ()
    user_percentage: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "developers": list(self.developers),
            "projects": list(self.projects),
            "userPercentage": self.user_percentage,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TargetAudience":
        return cls(
            developers=tuple(data.get("developers") or ()),
            projects=tuple(data.get("projects") or ()),
            user_percentage=data.get("userPercentage"),
        )


@dataclass(frozen=True)
class SuccessCriterion:
    metric: str
    target: float
    current: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"metric": self.metric, "target": self.target, "current": self.current}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SuccessCriterion":
        return cls(metric=data["metric"], target=data["target"], current=data.get("current"))


@dataclass(frozen=True)
class RolloutIssue:
    """
    Operational problem attributed to a phase.

    feature_id is a back-reference only; the issue does not own the flag.
    """
    id: str
    severity: IssueSeverity
    title: str
    description: str
    reported_by: str
    reported_at: datetime | None = None
    feature_id: str | None = None
    status: IssueStatus = IssueStatus.OPEN
    resolved_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status is IssueStatus.OPEN

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "title": self.title,
            "description": self.description,
            "featureId": self.feature_id,
            "reportedAt": to_iso8601(self.reported_at),
            "reportedBy": self.reported_by,
            "status": self.status.value,
            "resolvedAt": to_iso8601(self.resolved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RolloutIssue":
        return cls(
            id=data["id"],
            severity=IssueSeverity(data["severity"]),
            title=data["title"],
            description=data.get("description", ""),
            feature_id=data.get("featureId"),
            reported_at=from_iso8601(data.get("reportedAt")),
            reported_by=data.get("reportedBy", ""),
            status=IssueStatus(data.get("status", IssueStatus.OPEN.value)),
            resolved_at=from_iso8601(data.get("resolvedAt")),
        )


@dataclass(frozen=True)
class RolloutPhase:
    id: str
    name: str
    stage: RolloutStage
    start_date: datetime
    end_date: datetime | None = None
    status: PhaseStatus = PhaseStatus.PLANNED
    features: tuple[str, ...] = ()
    target_audience: TargetAudience = field(default_factory=TargetAudience)
    success_criteria: tuple[SuccessCriterion, ...] = ()
    issues: tuple[RolloutIssue, ...] = ()

    def open_issues(self) -> list[RolloutIssue]:
        return [issue for issue in self.issues if issue.is_open]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "stage": self.stage.value,
            "startDate": to_iso8601(self.start_date),
            "endDate": to_iso8601(self.end_date),
            "status": self.status.value,
            "features": list(self.features),
            "targetAudience": self.target_audience.to_dict(),
            "successCriteria": [c.to_dict() for c in self.success_criteria],
            "issues": [i.to_dict() for i in self.issues],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RolloutPhase":
        return cls(
            id=data["id"],
            name=data["name"],
            stage=RolloutStage(data["stage"]),
            start_date=from_iso8601(data["startDate"]),
            end_date=from_iso8601(data.get("endDate")),
            status=PhaseStatus(data.get("status", PhaseStatus.PLANNED.value)),
            features=tuple(data.get("features") or ()),
            target_audience=TargetAudience.from_dict(data.get("targetAudience") or {}),
            success_criteria=tuple(
                SuccessCriterion.from_dict(c) for c in data.get("successCriteria") or ()
            ),
            issues=tuple(RolloutIssue.from_dict(i) for i in data.get("issues") or ()),
        )


@dataclass
class PilotStatus:
    """Aggregate answer to "is the rollout currently safe to continue"."""
    phase: RolloutStage
    enabled_features: list[str]
    blocked_features: list[str]
    issues: list[RolloutIssue]

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "enabledFeatures": self.enabled_features,
            "blockedFeatures": self.blocked_features,
            "issues": [i.to_dict() for i in self.issues],
        }
