"""
In-memory rollout state store.

For development and testing. Data is lost on restart.
"""

from rollout_engine.core.rollout.interfaces import RolloutPhase

from ..interfaces import FeatureFlag, RolloutStateStore


class MemoryStateStore(RolloutStateStore):
    """
    In-memory rollout state storage.

    Useful for:
    - Development without database
    - Unit testing
    """

    def __init__(self):
        self._flags: dict[str, FeatureFlag] = {}
        self._phases: dict[str, RolloutPhase] = {}

    async def load_flags(self) -> list[FeatureFlag]:
        return list(self._flags.values())

    async def save_flag(self, flag: FeatureFlag) -> None:
        self._flags[flag.id] = flag

    async def load_phases(self) -> list[RolloutPhase]:
        return list(self._phases.values())

    async def save_phase(self, phase: RolloutPhase) -> None:
        self._phases[phase.id] = phase

    # ============================================================
    # TEST HELPERS
    # ============================================================

    def clear(self) -> None:
        """Clear all data. Useful for testing."""
        self._flags.clear()
        self._phases.clear()

    def seed(self, flags: list[FeatureFlag]) -> None:
        """Seed with initial flags. Useful for testing."""
        for flag in flags:
            self._flags[flag.id] = flag
