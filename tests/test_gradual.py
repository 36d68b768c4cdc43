"""
Tests for scheduled gradual rollouts.
"""

from datetime import timedelta

import pytest

from rollout_engine.core.features import (
    EvaluationContext,
    FeatureService,
    FlagStatus,
    RolloutStrategy,
)

ACTOR = "ops@example.com"
FLAG = "milestone_resequence"


def current(registry, flag_id=FLAG) -> int:
    return registry.get_flag(flag_id).gradual_config.current_percentage


def test_configure_gradual(registry, clock):
    """Test configuring starts the ramp at the start percentage."""
    flag = registry.configure_gradual(FLAG, 10, 50, 10, 24, ACTOR)

    config = flag.gradual_config
    assert flag.strategy is RolloutStrategy.GRADUAL
    assert flag.status is FlagStatus.PILOT
    assert config.current_percentage == 10
    assert config.started_at == clock.now
    assert config.next_increment_at == clock.now + timedelta(hours=24)


@pytest.mark.parametrize(
    "start, end, increment, interval",
    [
        (60, 50, 10, 24),   # start above end
        (10, 150, 10, 24),  # end above 100
        (-5, 50, 10, 24),   # negative start
        (10, 50, 0, 24),    # no increment
        (10, 50, 10, 0),    # no interval
    ],
)
def test_configure_gradual_rejects_invalid_config(registry, start, end, increment, interval):
    """Test invalid ramps are rejected without a change."""
    before = registry.get_flag(FLAG)

    assert registry.configure_gradual(FLAG, start, end, increment, interval, ACTOR) is None
    assert registry.get_flag(FLAG) is before


def test_configure_gradual_already_complete(registry):
    """Test a ramp that starts at its end has nothing scheduled."""
    flag = registry.configure_gradual(FLAG, 100, 100, 10, 24, ACTOR)

    assert flag.gradual_config.is_complete
    assert flag.gradual_config.next_increment_at is None


def test_advance_before_due_is_noop(registry, clock):
    """Test advancing early returns the flag unchanged."""
    configured = registry.configure_gradual(FLAG, 10, 50, 10, 24, ACTOR)
    clock.advance(hours=23)

    assert registry.advance_gradual(FLAG) is configured
    assert current(registry) == 10


def test_advance_when_due(registry, clock):
    """Test a due ramp steps by one increment and reschedules."""
    registry.configure_gradual(FLAG, 10, 50, 10, 24, ACTOR)
    clock.advance(hours=24)

    flag = registry.advance_gradual(FLAG)

    assert flag.gradual_config.current_percentage == 20
    assert flag.gradual_config.next_increment_at == clock.now + timedelta(hours=24)


def test_advance_is_idempotent_until_next_increment(registry, clock):
    """Test repeated calls within an interval apply one step."""
    registry.configure_gradual(FLAG, 10, 50, 10, 24, ACTOR)
    clock.advance(hours=24)

    registry.advance_gradual(FLAG)
    registry.advance_gradual(FLAG)
    registry.advance_gradual(FLAG)

    assert current(registry) == 20


def test_advance_makes_one_step_after_long_gap(registry, clock):
    """Test a late advance still moves a single increment."""
    registry.configure_gradual(FLAG, 10, 50, 10, 24, ACTOR)
    clock.advance(hours=24 * 5)

    registry.advance_gradual(FLAG)

    assert current(registry) == 20


def test_ramp_is_monotone_and_capped(registry, clock):
    """Test the ramp only grows and stops exactly at its end."""
    registry.configure_gradual(FLAG, 5, 32, 10, 1, ACTOR)

    seen = [current(registry)]
    for _ in range(10):
        clock.advance(hours=1)
        registry.advance_gradual(FLAG)
        seen.append(current(registry))

    assert seen == sorted(seen)
    assert seen[:5] == [5, 15, 25, 32, 32]
    assert max(seen) == 32

    config = registry.get_flag(FLAG).gradual_config
    assert config.is_complete
    assert config.next_increment_at is None


def test_advance_without_config(registry):
    """Test advancing a flag with no ramp is rejected."""
    assert registry.advance_gradual(FLAG) is None


def test_advance_due_only_touches_due_flags(registry, clock):
    """Test advance_due steps every due ramp and nothing else."""
    registry.configure_gradual("milestone_resequence", 10, 50, 10, 24, ACTOR)
    registry.configure_gradual("safe_language_guard", 10, 50, 10, 48, ACTOR)
    clock.advance(hours=24)

    advanced = registry.advance_due()

    assert [f.id for f in advanced] == ["milestone_resequence"]
    assert current(registry, "milestone_resequence") == 20
    assert current(registry, "safe_language_guard") == 10

    clock.advance(hours=24)
    advanced = registry.advance_due()

    assert {f.id for f in advanced} == {"milestone_resequence", "safe_language_guard"}


def test_advance_due_skips_complete_and_switched_flags(registry, clock):
    """Test finished ramps and flags moved off GRADUAL are left alone."""
    registry.configure_gradual("milestone_resequence", 100, 100, 10, 1, ACTOR)
    registry.configure_gradual("safe_language_guard", 10, 50, 10, 1, ACTOR)
    registry.set_rollout_percentage("safe_language_guard", 40, ACTOR)
    clock.advance(hours=2)

    assert registry.advance_due() == []


def test_gradual_evaluation_follows_ramp(registry, clock):
    """Test users admitted at a lower percentage stay admitted as it grows."""
    features = FeatureService(registry)
    users = [f"user-{i}" for i in range(2000)]

    registry.configure_gradual(FLAG, 10, 50, 20, 24, ACTOR)
    admitted_early = {u for u in users if features.is_enabled(FLAG, EvaluationContext(user_id=u))}

    clock.advance(hours=24)
    registry.advance_gradual(FLAG)
    admitted_later = {u for u in users if features.is_enabled(FLAG, EvaluationContext(user_id=u))}

    assert admitted_early <= admitted_later
    assert len(admitted_later) > len(admitted_early)


def test_gradual_requires_user(registry):
    """Test gradual rollouts never admit anonymous requests."""
    features = FeatureService(registry)
    registry.configure_gradual(FLAG, 100, 100, 10, 24, ACTOR)

    result = features.evaluate(FLAG)

    assert result.enabled is False
    assert result.reason == "Gradual rollout requires user"
