"""HTTP surface for the rollout engine."""
