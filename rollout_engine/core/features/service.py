"""
Feature Flag Service - Main evaluation logic.

Evaluation order (first failing check wins):
1. Unknown flag -> off
2. Kill switch -> off
3. Dependencies (same context) -> off if any is off
4. Status: DISABLED / DEV_ONLY / INTERNAL / ENABLED / PILOT
5. PILOT strategy: INSTANT / WHITELIST / PERCENTAGE / GRADUAL

Evaluation is a pure read: it works on one registry snapshot and never
mutates state.
"""

from typing import Mapping

from .bucketing import DEFAULT_ALGORITHM, BucketAlgorithm, in_rollout
from .interfaces import (
    EvaluationContext,
    EvaluationResult,
    FeatureFlag,
    FlagStatus,
    RolloutStrategy,
)
from .registry import FlagRegistry


class FeatureService:
    """
    Feature flag evaluation service.

    Args:
        registry: Source of flag state
        dev_mode: Whether DEV_ONLY flags resolve on
        bucket_algorithm: Hash used for percentage and gradual rollouts
    """

    def __init__(
        self,
        registry: FlagRegistry,
        dev_mode: bool = False,
        bucket_algorithm: BucketAlgorithm = DEFAULT_ALGORITHM,
    ):
        self.registry = registry
        self.dev_mode = dev_mode
        self.bucket_algorithm = BucketAlgorithm(bucket_algorithm)

    # ============================================================
    # MAIN EVALUATION
    # ============================================================

    def is_enabled(
        self,
        flag_id: str,
        context: EvaluationContext | None = None,
    ) -> bool:
        """
        Check if a feature is enabled.

        Args:
            flag_id: Feature flag id
            context: Developer/project/user addressing (optional)

        Returns:
            True if feature is enabled for this context
        """
        return self.evaluate(flag_id, context).enabled

    def evaluate(
        self,
        flag_id: str,
        context: EvaluationContext | None = None,
    ) -> EvaluationResult:
        """
        Evaluate a feature flag with detailed result.

        Returns EvaluationResult with reason for debugging.
        """
        return self._evaluate(self.registry.snapshot(), flag_id, context or EvaluationContext())

    def get_enabled_features(self, context: EvaluationContext | None = None) -> list[str]:
        """Ids of every flag enabled for the context, in registration order."""
        context = context or EvaluationContext()
        flags = self.registry.snapshot()
        return [
            flag_id
            for flag_id in flags
            if self._evaluate(flags, flag_id, context).enabled
        ]

    def get_all_flags(self, context: EvaluationContext | None = None) -> dict[str, bool]:
        """
        Get all flags and their status for a context.

        Useful for sending to frontend.
        """
        context = context or EvaluationContext()
        flags = self.registry.snapshot()
        return {
            flag_id: self._evaluate(flags, flag_id, context).enabled
            for flag_id in flags
        }

    def _evaluate(
        self,
        flags: Mapping[str, FeatureFlag],
        flag_id: str,
        context: EvaluationContext,
    ) -> EvaluationResult:
        user_id = context.user_id or None

        flag = flags.get(flag_id)
        if not flag:
            return EvaluationResult.no(flag_id, "Flag not found", user_id)

        if flag.kill_switch_triggered:
            return EvaluationResult.no(
                flag_id,
                f"Kill switch: {flag.kill_switch_reason or 'triggered'}",
                user_id,
            )

        # The registry rejects cyclic definitions, so this terminates
        for dep_id in flag.depends_on:
            if not self._evaluate(flags, dep_id, context).enabled:
                return EvaluationResult.no(flag_id, f"Dependency {dep_id} disabled", user_id)

        if flag.status is FlagStatus.DISABLED:
            return EvaluationResult.no(flag_id, "Flag disabled", user_id)

        if flag.status is FlagStatus.DEV_ONLY:
            if self.dev_mode:
                return EvaluationResult.yes(flag_id, "Development mode", user_id)
            return EvaluationResult.no(flag_id, "Development only", user_id)

        if flag.status is FlagStatus.INTERNAL:
            # Internal-user membership is not resolved yet
            return EvaluationResult.no(flag_id, "Internal only", user_id)

        if flag.status is FlagStatus.ENABLED:
            return EvaluationResult.yes(flag_id, "Flag enabled", user_id)

        if flag.status is FlagStatus.PILOT:
            return self._check_pilot_access(flag, context)

        return EvaluationResult.no(flag_id, f"Unknown status {flag.status}", user_id)

    # ============================================================
    # PILOT STRATEGIES
    # ============================================================

    def _check_pilot_access(
        self,
        flag: FeatureFlag,
        context: EvaluationContext,
    ) -> EvaluationResult:
        user_id = context.user_id or None

        if flag.strategy is RolloutStrategy.INSTANT:
            return EvaluationResult.yes(flag.id, "Pilot: instant", user_id)

        if flag.strategy is RolloutStrategy.WHITELIST:
            return self._check_whitelist(flag, context)

        if flag.strategy is RolloutStrategy.PERCENTAGE:
            if not user_id:
                return EvaluationResult.no(flag.id, "Percentage rollout requires user", user_id)
            if flag.percentage is None:
                return EvaluationResult.no(flag.id, "No rollout percentage set", user_id)
            if not in_rollout(user_id, flag.id, flag.percentage, self.bucket_algorithm):
                return EvaluationResult.no(flag.id, f"Outside {flag.percentage}% rollout", user_id)
            return EvaluationResult.yes(flag.id, f"Inside {flag.percentage}% rollout", user_id)

        if flag.strategy is RolloutStrategy.GRADUAL:
            config = flag.gradual_config
            if config is None:
                return EvaluationResult.no(flag.id, "No gradual rollout configured", user_id)
            if not user_id:
                return EvaluationResult.no(flag.id, "Gradual rollout requires user", user_id)
            pct = config.current_percentage
            if not in_rollout(user_id, flag.id, pct, self.bucket_algorithm):
                return EvaluationResult.no(flag.id, f"Outside gradual {pct}%", user_id)
            return EvaluationResult.yes(flag.id, f"Inside gradual {pct}%", user_id)

        return EvaluationResult.no(flag.id, f"Unknown strategy {flag.strategy}", user_id)

    def _check_whitelist(
        self,
        flag: FeatureFlag,
        context: EvaluationContext,
    ) -> EvaluationResult:
        """Any one matching id is enough (OR logic)."""
        user_id = context.user_id or None
        checks = (
            ("developer", context.developer_id, flag.whitelisted_developers),
            ("project", context.project_id, flag.whitelisted_projects),
            ("user", context.user_id, flag.whitelisted_users),
        )
        for kind, value, allowed in checks:
            if value and value in allowed:
                return EvaluationResult.yes(flag.id, f"Whitelisted {kind} {value}", user_id)
        return EvaluationResult.no(flag.id, "Not whitelisted", user_id)
