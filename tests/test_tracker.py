"""
Tests for rollout phases, issues and pilot health.
"""

from datetime import timedelta

import pytest

from rollout_engine.core.features import EvaluationContext
from rollout_engine.core.rollout import (
    IssueSeverity,
    IssueStatus,
    PhaseStatus,
    RolloutIssue,
    RolloutPhase,
    RolloutStage,
    SuccessCriterion,
)

REPORTER = "qa@example.com"


def make_phase(phase_id: str, clock, **kwargs) -> RolloutPhase:
    kwargs.setdefault("stage", RolloutStage.PILOT)
    return RolloutPhase(id=phase_id, name=phase_id.title(), start_date=clock.now, **kwargs)


def report(tracker, phase_id, severity=IssueSeverity.P2, feature_id=None, title="Broken upload"):
    return tracker.report_issue(
        phase_id,
        severity=severity,
        title=title,
        description="Upload step fails on large files",
        reported_by=REPORTER,
        feature_id=feature_id,
    )


# ============ Phases ============


def test_create_phase_clears_issues(tracker, clock):
    """Test new phases always start without issues."""
    stale = RolloutIssue(
        id="old",
        severity=IssueSeverity.P1,
        title="old",
        description="",
        reported_by=REPORTER,
        reported_at=clock.now,
    )
    phase = tracker.create_phase(make_phase("pilot-1", clock, issues=(stale,)))

    assert phase.issues == ()
    assert tracker.get_phase("pilot-1") == phase


def test_create_duplicate_phase(tracker, clock):
    """Test creating an existing phase id is rejected."""
    tracker.create_phase(make_phase("pilot-1", clock))
    assert tracker.create_phase(make_phase("pilot-1", clock)) is None
    assert len(tracker.list_phases()) == 1


def test_no_current_phase(tracker, clock):
    """Test there is no current phase until one is active."""
    tracker.create_phase(make_phase("pilot-1", clock))
    assert tracker.get_current_phase() is None


def test_single_active_phase_on_create(tracker, clock):
    """Test creating an ACTIVE phase completes the previous active one."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    clock.advance(hours=1)
    tracker.create_phase(
        make_phase("launch", clock, stage=RolloutStage.SOFT_LAUNCH, status=PhaseStatus.ACTIVE)
    )

    previous = tracker.get_phase("pilot-1")
    assert previous.status is PhaseStatus.COMPLETED
    assert previous.end_date == clock.now
    assert tracker.get_current_phase().id == "launch"
    assert [p.id for p in tracker.list_phases() if p.status is PhaseStatus.ACTIVE] == ["launch"]


def test_single_active_phase_on_status_change(tracker, clock):
    """Test activating a phase completes the previous active one."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    tracker.create_phase(make_phase("pilot-2", clock))

    updated = tracker.set_phase_status("pilot-2", PhaseStatus.ACTIVE)

    assert updated.status is PhaseStatus.ACTIVE
    assert tracker.get_phase("pilot-1").status is PhaseStatus.COMPLETED
    assert tracker.get_current_phase().id == "pilot-2"


@pytest.mark.parametrize("status", [PhaseStatus.COMPLETED, PhaseStatus.ABORTED])
def test_closing_phase_stamps_end_date(tracker, clock, status):
    """Test completing or aborting a phase records its end date."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    clock.advance(hours=3)

    phase = tracker.set_phase_status("pilot-1", status)

    assert phase.status is status
    assert phase.end_date == clock.now


def test_set_phase_status_rejects_bad_input(tracker, clock):
    """Test unknown phases and statuses return None."""
    tracker.create_phase(make_phase("pilot-1", clock))

    assert tracker.set_phase_status("missing", PhaseStatus.ACTIVE) is None
    assert tracker.set_phase_status("pilot-1", "PAUSED") is None
    assert tracker.get_phase("pilot-1").status is PhaseStatus.PLANNED


def test_record_metric(tracker, clock):
    """Test success criteria track their current value."""
    tracker.create_phase(
        make_phase(
            "pilot-1",
            clock,
            success_criteria=(
                SuccessCriterion(metric="completion_rate", target=0.8),
                SuccessCriterion(metric="nps", target=40),
            ),
        )
    )

    phase = tracker.record_metric("pilot-1", "completion_rate", 0.72)

    assert phase.success_criteria[0].current == 0.72
    assert phase.success_criteria[1].current is None
    assert tracker.record_metric("pilot-1", "churn", 0.1) is None
    assert tracker.record_metric("missing", "nps", 10) is None


# ============ Issues ============


def test_report_issue(tracker, clock):
    """Test reported issues are appended to the phase as OPEN."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))

    issue = report(tracker, "pilot-1")

    assert issue.id.startswith("issue_")
    assert issue.status is IssueStatus.OPEN
    assert issue.reported_by == REPORTER
    assert issue.reported_at == clock.now
    assert tracker.get_phase("pilot-1").issues == (issue,)


def test_report_issue_unknown_phase(tracker):
    """Test issues cannot be filed against unknown phases."""
    assert report(tracker, "missing") is None


def test_report_issue_invalid_severity(tracker, clock):
    """Test unknown severities are rejected."""
    tracker.create_phase(make_phase("pilot-1", clock))
    assert report(tracker, "pilot-1", severity="P9") is None
    assert tracker.get_phase("pilot-1").issues == ()


def test_p0_issue_triggers_kill_switch(tracker, registry, clock):
    """Test a P0 naming a flag kills that flag."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))

    report(tracker, "pilot-1", severity=IssueSeverity.P0, feature_id="cr008_doc_first_flow", title="Data loss")

    flag = registry.get_flag("cr008_doc_first_flow")
    assert flag.kill_switch_triggered is True
    assert flag.kill_switch_reason == "P0 issue: Data loss"
    assert flag.kill_switch_at == clock.now


@pytest.mark.parametrize(
    "severity, feature_id",
    [
        (IssueSeverity.P1, "cr008_doc_first_flow"),
        (IssueSeverity.P0, None),
    ],
)
def test_other_issues_do_not_kill(tracker, registry, clock, severity, feature_id):
    """Test only P0 issues that name a flag trigger the kill switch."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))

    report(tracker, "pilot-1", severity=severity, feature_id=feature_id)

    assert registry.get_flag("cr008_doc_first_flow").kill_switch_triggered is False


def test_p0_issue_for_unknown_flag(tracker, clock):
    """Test a P0 naming an unknown flag is still recorded."""
    tracker.create_phase(make_phase("pilot-1", clock))
    issue = report(tracker, "pilot-1", severity=IssueSeverity.P0, feature_id="ghost")
    assert issue is not None


def test_update_issue_status(tracker, clock):
    """Test closing an issue stamps its resolution time."""
    tracker.create_phase(make_phase("pilot-1", clock))
    issue = report(tracker, "pilot-1")

    in_progress = tracker.update_issue_status("pilot-1", issue.id, IssueStatus.IN_PROGRESS)
    assert in_progress.status is IssueStatus.IN_PROGRESS
    assert in_progress.resolved_at is None

    clock.advance(hours=5)
    resolved = tracker.update_issue_status("pilot-1", issue.id, IssueStatus.RESOLVED)
    assert resolved.resolved_at == clock.now
    assert tracker.get_phase("pilot-1").issues == (resolved,)


def test_update_issue_status_rejects_bad_input(tracker, clock):
    """Test unknown phases, issues and statuses return None."""
    tracker.create_phase(make_phase("pilot-1", clock))
    issue = report(tracker, "pilot-1")

    assert tracker.update_issue_status("missing", issue.id, IssueStatus.RESOLVED) is None
    assert tracker.update_issue_status("pilot-1", "issue_nope", IssueStatus.RESOLVED) is None
    assert tracker.update_issue_status("pilot-1", issue.id, "DONE") is None


def test_resolving_issue_keeps_kill_switch(tracker, registry, clock):
    """Test closing a P0 never resets the kill switch it triggered."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    issue = report(tracker, "pilot-1", severity=IssueSeverity.P0, feature_id="cr008_doc_first_flow")

    tracker.update_issue_status("pilot-1", issue.id, IssueStatus.RESOLVED)

    assert registry.get_flag("cr008_doc_first_flow").kill_switch_triggered is True


# ============ Pilot health ============


def test_pilot_status_without_active_phase(tracker):
    """Test pilot status defaults to the PILOT stage with no issues."""
    status = tracker.get_pilot_status()

    assert status.phase is RolloutStage.PILOT
    assert status.issues == []
    assert "cr008_doc_first_flow" in status.enabled_features
    assert status.blocked_features == []


def test_pilot_status_partitions_flags(tracker, registry, clock):
    """Test every flag is either enabled or blocked, never both."""
    tracker.create_phase(make_phase("launch", clock, stage=RolloutStage.SOFT_LAUNCH, status=PhaseStatus.ACTIVE))
    registry.disable("s5_partner_incentives", "ops")

    status = tracker.get_pilot_status()

    assert status.phase is RolloutStage.SOFT_LAUNCH
    assert status.blocked_features == ["s5_partner_incentives", "s5_agent_visibility"]
    assert set(status.enabled_features) | set(status.blocked_features) == {
        f.id for f in registry.list_flags()
    }
    assert not set(status.enabled_features) & set(status.blocked_features)


def test_pilot_status_lists_open_issues_of_current_phase(tracker, clock):
    """Test only OPEN issues of the active phase are reported."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    open_issue = report(tracker, "pilot-1", title="Still broken")
    closed = report(tracker, "pilot-1", title="Fixed")
    tracker.update_issue_status("pilot-1", closed.id, IssueStatus.WONT_FIX)

    tracker.create_phase(make_phase("planned", clock))
    report(tracker, "planned", title="Elsewhere")

    assert [i.id for i in tracker.get_pilot_status().issues] == [open_issue.id]


def test_pilot_healthy_by_default(tracker):
    """Test the pilot is healthy with required flags on and no P0."""
    assert tracker.is_pilot_healthy() is True


def test_open_p0_makes_pilot_unhealthy(tracker, clock):
    """Test an open P0 issue fails pilot health until it is resolved."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    issue = report(tracker, "pilot-1", severity=IssueSeverity.P0)

    assert tracker.is_pilot_healthy() is False

    tracker.update_issue_status("pilot-1", issue.id, IssueStatus.RESOLVED)
    assert tracker.is_pilot_healthy() is True


def test_in_progress_p0_is_not_open(tracker, clock):
    """Test only OPEN issues count towards pilot health."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    issue = report(tracker, "pilot-1", severity=IssueSeverity.P0)

    tracker.update_issue_status("pilot-1", issue.id, IssueStatus.IN_PROGRESS)

    assert tracker.is_pilot_healthy() is True


def test_required_flag_disabled_makes_pilot_unhealthy(tracker, registry):
    """Test pilot health requires every required flag to be enabled."""
    registry.disable("cr008_doc_first_flow", "ops")
    assert tracker.is_pilot_healthy() is False


def test_p0_kill_makes_pilot_unhealthy_after_resolution(tracker, registry, clock):
    """Test a killed required flag keeps the pilot unhealthy after its issue closes."""
    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    issue = report(tracker, "pilot-1", severity=IssueSeverity.P0, feature_id="cr008_doc_first_flow")
    tracker.update_issue_status("pilot-1", issue.id, IssueStatus.RESOLVED)

    assert tracker.is_pilot_healthy() is False

    registry.reset_kill_switch("cr008_doc_first_flow", "ops")
    assert tracker.is_pilot_healthy() is True


def test_pilot_health_for_other_context(tracker):
    """Test health can be checked for a context other than the reference one."""
    assert tracker.is_pilot_healthy(EvaluationContext(project_id="other")) is False


def test_phase_listeners(tracker, clock):
    """Test subscribers see the superseded phase as well as the new one."""
    seen = []
    tracker.subscribe(seen.append)

    tracker.create_phase(make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE))
    tracker.create_phase(make_phase("pilot-2", clock, status=PhaseStatus.ACTIVE))

    assert [(p.id, p.status) for p in seen] == [
        ("pilot-1", PhaseStatus.ACTIVE),
        ("pilot-2", PhaseStatus.ACTIVE),
        ("pilot-1", PhaseStatus.COMPLETED),
    ]


def test_load_restores_phases(tracker, clock):
    """Test persisted phases are restored as they were."""
    phase = make_phase("pilot-1", clock, status=PhaseStatus.ACTIVE, end_date=clock.now + timedelta(days=30))
    tracker.load([phase])

    assert tracker.get_current_phase() == phase
