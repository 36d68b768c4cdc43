"""
Feature Flag System.

Deterministic flag evaluation with:
- Kill switches (checked first, override everything)
- Inter-flag dependencies
- Status gates (DISABLED, DEV_ONLY, INTERNAL, PILOT, ENABLED)
- Pilot strategies: instant, percentage, whitelist, gradual ramp

Usage Levels:

Level 1 - Simple check:
    from rollout_engine.core.features import EvaluationContext

    ctx = EvaluationContext(project_id="snang_pilot")
    if features.is_enabled("cr008_doc_first_flow", ctx):
        ...

Level 2 - Everything a client may see:
    enabled = features.get_enabled_features(EvaluationContext(user_id="u-42"))

Level 3 - Debugging a decision:
    result = features.evaluate("s5_agent_visibility", ctx)
    print(result.reason)  # "Dependency s5_partner_incentives disabled"

Level 4 - Management:
    registry.set_rollout_percentage("new_checkout", 10, actor="ops@example.com")
    registry.trigger_kill_switch("new_checkout", "error spike", actor="oncall")
"""

from .interfaces import (
    CyclicDependencyError,
    DuplicateFlagError,
    InvalidFlagError,
    EvaluationContext,
    EvaluationResult,
    FeatureFlag,
    FlagStatus,
    GradualConfig,
    RolloutError,
    RolloutStateStore,
    RolloutStrategy,
    WhitelistKind,
)

from .bucketing import BucketAlgorithm, bucket, bucket_percent, in_rollout

from .registry import FlagRegistry

from .service import FeatureService

from .persistence import StateWriter

from .backends import (
    DatabaseStateStore,
    MemoryStateStore,
)

__all__ = [
    # Interfaces
    "CyclicDependencyError",
    "DuplicateFlagError",
    "InvalidFlagError",
    "EvaluationContext",
    "EvaluationResult",
    "FeatureFlag",
    "FlagStatus",
    "GradualConfig",
    "RolloutError",
    "RolloutStateStore",
    "RolloutStrategy",
    "WhitelistKind",
    # Bucketing
    "BucketAlgorithm",
    "bucket",
    "bucket_percent",
    "in_rollout",
    # Registry and evaluation
    "FlagRegistry",
    "FeatureService",
    # Persistence
    "StateWriter",
    "DatabaseStateStore",
    "MemoryStateStore",
]
