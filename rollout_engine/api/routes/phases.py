"""
Rollout phase and pilot health API routes.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, status
from pydantic import Field

from rollout_engine.api.dependencies import Actor, Context, Tracker
from rollout_engine.api.routes.flags import CamelModel
from rollout_engine.core.features import EvaluationContext
from rollout_engine.core.rollout import (
    IssueSeverity,
    IssueStatus,
    PhaseStatus,
    RolloutPhase,
    RolloutStage,
    SuccessCriterion,
    TargetAudience,
)
from rollout_engine.utils.timezone import utc_now

router = APIRouter()
pilot_router = APIRouter()


# ============================================================
# SCHEMAS
# ============================================================

class TargetAudienceSchema(CamelModel):
    developers: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    user_percentage: int | None = Field(default=None, ge=0, le=100)


class SuccessCriterionSchema(CamelModel):
    metric: str = Field(..., min_length=1)
    target: float
    current: float | None = None


class PhaseCreate(CamelModel):
    """Create a rollout phase."""
    id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=200)
    stage: RolloutStage
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: PhaseStatus = PhaseStatus.PLANNED
    features: list[str] = Field(default_factory=list)
    target_audience: TargetAudienceSchema = Field(default_factory=TargetAudienceSchema)
    success_criteria: list[SuccessCriterionSchema] = Field(default_factory=list)

    def to_phase(self) -> RolloutPhase:
        return RolloutPhase(
            id=self.id,
            name=self.name,
            stage=self.stage,
            start_date=self.start_date or utc_now(),
            end_date=self.end_date,
            status=self.status,
            features=tuple(self.features),
            target_audience=TargetAudience(
                developers=tuple(self.target_audience.developers),
                projects=tuple(self.target_audience.projects),
                user_percentage=self.target_audience.user_percentage,
            ),
            success_criteria=tuple(
                SuccessCriterion(metric=c.metric, target=c.target, current=c.current)
                for c in self.success_criteria
            ),
        )


class PhaseStatusUpdate(CamelModel):
    status: PhaseStatus


class IssueCreate(CamelModel):
    """Report an issue; reportedBy is the X-Actor."""
    severity: IssueSeverity
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    feature_id: str | None = None


class IssueStatusUpdate(CamelModel):
    status: IssueStatus


class MetricUpdate(CamelModel):
    metric: str = Field(..., min_length=1)
    current: float


def _phase_not_found(phase_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Rollout phase '{phase_id}' not found",
    )


# ============================================================
# PHASES
# ============================================================

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_phase(data: PhaseCreate, tracker: Tracker, actor: Actor) -> dict[str, Any]:
    """Create a rollout phase. Creating it ACTIVE completes the current one."""
    phase = tracker.create_phase(data.to_phase())
    if phase is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Rollout phase '{data.id}' already exists",
        )
    return phase.to_dict()


@router.get("")
async def list_phases(tracker: Tracker) -> list[dict[str, Any]]:
    return [phase.to_dict() for phase in tracker.list_phases()]


@router.get("/current")
async def get_current_phase(tracker: Tracker) -> dict[str, Any]:
    phase = tracker.get_current_phase()
    if phase is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active rollout phase",
        )
    return phase.to_dict()


@router.get("/{phase_id}")
async def get_phase(phase_id: str, tracker: Tracker) -> dict[str, Any]:
    phase = tracker.get_phase(phase_id)
    if phase is None:
        raise _phase_not_found(phase_id)
    return phase.to_dict()


@router.post("/{phase_id}/status")
async def set_phase_status(
    phase_id: str,
    data: PhaseStatusUpdate,
    tracker: Tracker,
    actor: Actor,
) -> dict[str, Any]:
    phase = tracker.set_phase_status(phase_id, data.status)
    if phase is None:
        raise _phase_not_found(phase_id)
    return phase.to_dict()


@router.post("/{phase_id}/metrics")
async def record_metric(
    phase_id: str,
    data: MetricUpdate,
    tracker: Tracker,
    actor: Actor,
) -> dict[str, Any]:
    if tracker.get_phase(phase_id) is None:
        raise _phase_not_found(phase_id)
    phase = tracker.record_metric(phase_id, data.metric, data.current)
    if phase is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown success metric '{data.metric}'",
        )
    return phase.to_dict()


# ============================================================
# ISSUES
# ============================================================

@router.post("/{phase_id}/issues", status_code=status.HTTP_201_CREATED)
async def report_issue(
    phase_id: str,
    data: IssueCreate,
    tracker: Tracker,
    actor: Actor,
) -> dict[str, Any]:
    """
    Report an issue against a phase.

    A P0 naming a featureId triggers that flag's kill switch.
    """
    issue = tracker.report_issue(
        phase_id,
        severity=data.severity,
        title=data.title,
        description=data.description,
        reported_by=actor,
        feature_id=data.feature_id,
    )
    if issue is None:
        raise _phase_not_found(phase_id)
    return issue.to_dict()


@router.patch("/{phase_id}/issues/{issue_id}")
async def update_issue_status(
    phase_id: str,
    issue_id: str,
    data: IssueStatusUpdate,
    tracker: Tracker,
    actor: Actor,
) -> dict[str, Any]:
    issue = tracker.update_issue_status(phase_id, issue_id, data.status)
    if issue is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Issue '{issue_id}' not found in phase '{phase_id}'",
        )
    return issue.to_dict()


# ============================================================
# PILOT HEALTH
# ============================================================

def _context_or_reference(context: EvaluationContext) -> EvaluationContext | None:
    """The request context if it names anything, else the configured reference."""
    if context.developer_id or context.project_id or context.user_id:
        return context
    return None


@pilot_router.get("/status")
async def get_pilot_status(tracker: Tracker, context: Context) -> dict[str, Any]:
    return tracker.get_pilot_status(_context_or_reference(context)).to_dict()


@pilot_router.get("/health")
async def get_pilot_health(tracker: Tracker, context: Context) -> dict[str, bool]:
    return {"healthy": tracker.is_pilot_healthy(_context_or_reference(context))}
