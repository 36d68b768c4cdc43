"""
Staged rollout tracking.

Phases (DEV -> STAGING -> PILOT -> SOFT_LAUNCH -> GA), issues reported
against them, and the pilot health queries built on flag evaluation.
"""

from .interfaces import (
    IssueSeverity,
    IssueStatus,
    PhaseStatus,
    PilotStatus,
    RolloutIssue,
    RolloutPhase,
    RolloutStage,
    SuccessCriterion,
    TargetAudience,
)
from .tracker import PhaseTracker

__all__ = [
    "IssueSeverity",
    "IssueStatus",
    "PhaseStatus",
    "PilotStatus",
    "RolloutIssue",
    "RolloutPhase",
    "RolloutStage",
    "SuccessCriterion",
    "TargetAudience",
    "PhaseTracker",
]
