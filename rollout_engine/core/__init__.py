"""Core rollout engine: flags, evaluation, phases, configuration."""
