"""
Feature Flag Interfaces - Core abstractions.

These define the flag data model, the evaluation context and result,
and the contract for durable rollout state storage.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from rollout_engine.utils.timezone import from_iso8601, to_iso8601

if TYPE_CHECKING:
    from rollout_engine.core.rollout.interfaces import RolloutPhase


# ============================================================
# ERRORS
# ============================================================

class RolloutError(ValueError):
    """Base class for programmer errors in rollout definitions."""


class CyclicDependencyError(RolloutError):
    """Flag definitions form a dependsOn cycle."""

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Cyclic flag dependency: {' -> '.join(cycle)}")


class DuplicateFlagError(RolloutError):
    """A flag with this id is already registered."""

    def __init__(self, flag_id: str):
        self.flag_id = flag_id
        super().__init__(f"Feature flag '{flag_id}' is already registered")


class InvalidFlagError(RolloutError):
    """A flag definition breaks a range invariant."""

    def __init__(self, flag_id: str, problem: str):
        self.flag_id = flag_id
        self.problem = problem
        super().__init__(f"Feature flag '{flag_id}' is invalid: {problem}")


# ============================================================
# ENUMS
# ============================================================

class FlagStatus(str, Enum):
    DISABLED = "DISABLED"
    DEV_ONLY = "DEV_ONLY"
    INTERNAL = "INTERNAL"
    PILOT = "PILOT"
    ENABLED = "ENABLED"


class RolloutStrategy(str, Enum):
    """Rule used to decide visibility of a PILOT flag."""
    INSTANT = "INSTANT"
    PERCENTAGE = "PERCENTAGE"
    WHITELIST = "WHITELIST"
    GRADUAL = "GRADUAL"


class WhitelistKind(str, Enum):
    DEVELOPER = "developer"
    PROJECT = "project"
    USER = "user"


# ============================================================
# FLAG DEFINITION
# ============================================================

@dataclass(frozen=True)
class GradualConfig:
    """
    Scheduled percentage ramp.

    current_percentage starts at start_percentage and grows by
    increment_percentage every increment_interval_hours until it
    reaches end_percentage.
    """
    start_percentage: int
    end_percentage: int
    increment_percentage: int
    increment_interval_hours: float
    current_percentage: int
    started_at: datetime | None = None
    next_increment_at: datetime | None = None

    @property
    def is_complete(self) -> bool:
        return self.current_percentage >= self.end_percentage

    def validate(self) -> str | None:
        """Return a description of the first broken invariant, or None."""
        if not 0 <= self.start_percentage <= self.end_percentage <= 100:
            return (
                f"expected 0 <= start ({self.start_percentage}) <= "
                f"end ({self.end_percentage}) <= 100"
            )
        if not self.start_percentage <= self.current_percentage <= self.end_percentage:
            return f"current ({self.current_percentage}) outside start..end"
        if self.increment_percentage <= 0:
            return f"increment must be positive, got {self.increment_percentage}"
        if self.increment_interval_hours <= 0:
            return f"interval must be positive, got {self.increment_interval_hours}"
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "startPercentage": self.start_percentage,
            "endPercentage": self.end_percentage,
            "incrementPercentage": self.increment_percentage,
            "incrementIntervalHours": self.increment_interval_hours,
            "currentPercentage": self.current_percentage,
            "startedAt": to_iso8601(self.started_at),
            "nextIncrementAt": to_iso8601(self.next_increment_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GradualConfig":
        return cls(
            start_percentage=data["startPercentage"],
            end_percentage=data["endPercentage"],
            increment_percentage=data["incrementPercentage"],
            increment_interval_hours=data["incrementIntervalHours"],
            current_percentage=data.get("currentPercentage", data["startPercentage"]),
            started_at=from_iso8601(data.get("startedAt")),
            next_increment_at=from_iso8601(data.get("nextIncrementAt")),
        )


@dataclass(frozen=True)
class FeatureFlag:
    """
    Feature flag definition and rollout state.

    Records are immutable; the registry replaces a record as a whole
    on every change so readers never see a half-updated flag.

    Attributes:
        id: Unique, stable identifier (e.g., "cr008_doc_first_flow")
        status: Lifecycle status, checked after the kill switch
        strategy: Rollout rule, only meaningful when status is PILOT
        depends_on: Flags that must independently evaluate to enabled
    """
    id: str
    name: str
    description: str | None = None
    description_bm: str | None = None
    owner: str | None = None
    status: FlagStatus = FlagStatus.DISABLED
    strategy: RolloutStrategy = RolloutStrategy.INSTANT

    # Strategy parameters
    percentage: int | None = None
    whitelisted_developers: tuple[str, ...] = ()
    whitelisted_projects: tuple[str, ...] = ()
    whitelisted_users: tuple[str, ...] = ()
    gradual_config: GradualConfig | None = None

    depends_on: tuple[str, ...] = ()

    # Kill switch
    kill_switch_triggered: bool = False
    kill_switch_reason: str | None = None
    kill_switch_at: datetime | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    enabled_at: datetime | None = None
    disabled_at: datetime | None = None

    def whitelist(self, kind: WhitelistKind) -> tuple[str, ...]:
        if kind is WhitelistKind.DEVELOPER:
            return self.whitelisted_developers
        if kind is WhitelistKind.PROJECT:
            return self.whitelisted_projects
        return self.whitelisted_users

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase wire names."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "descriptionBm": self.description_bm,
            "owner": self.owner,
            "status": self.status.value,
            "strategy": self.strategy.value,
            "percentage": self.percentage,
            "whitelistedDevelopers": list(self.whitelisted_developers),
            "whitelistedProjects": list(self.whitelisted_projects),
            "whitelistedUsers": list(self.whitelisted_users),
            "gradualConfig": self.gradual_config.to_dict() if self.gradual_config else None,
            "dependsOn": list(self.depends_on),
            "killSwitchTriggered": self.kill_switch_triggered,
            "killSwitchReason": self.kill_switch_reason,
            "killSwitchAt": to_iso8601(self.kill_switch_at),
            "createdAt": to_iso8601(self.created_at),
            "updatedAt": to_iso8601(self.updated_at),
            "enabledAt": to_iso8601(self.enabled_at),
            "disabledAt": to_iso8601(self.disabled_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeatureFlag":
        gradual = data.get("gradualConfig")
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            description=data.get("description"),
            description_bm=data.get("descriptionBm"),
            owner=data.get("owner"),
            status=FlagStatus(data.get("status", FlagStatus.DISABLED.value)),
            strategy=RolloutStrategy(data.get("strategy", RolloutStrategy.INSTANT.value)),
            percentage=data.get("percentage"),
            whitelisted_developers=tuple(data.get("whitelistedDevelopers") or ()),
            whitelisted_projects=tuple(data.get("whitelistedProjects") or ()),
            whitelisted_users=tuple(data.get("whitelistedUsers") or ()),
            gradual_config=GradualConfig.from_dict(gradual) if gradual else None,
            depends_on=tuple(data.get("dependsOn") or ()),
            kill_switch_triggered=bool(data.get("killSwitchTriggered", False)),
            kill_switch_reason=data.get("killSwitchReason"),
            kill_switch_at=from_iso8601(data.get("killSwitchAt")),
            created_at=from_iso8601(data.get("createdAt")),
            updated_at=from_iso8601(data.get("updatedAt")),
            enabled_at=from_iso8601(data.get("enabledAt")),
            disabled_at=from_iso8601(data.get("disabledAt")),
        )


# ============================================================
# EVALUATION
# ============================================================

@dataclass(frozen=True)
class EvaluationContext:
    """
    Addressing information for a flag check.

    Any subset may be present. Empty strings count as absent.
    """
    developer_id: str | None = None
    project_id: str | None = None
    user_id: str | None = None


@dataclass
class EvaluationResult:
    """
    Result of feature flag evaluation.

    Includes the decision and reason for debugging/logging.
    """
    enabled: bool
    reason: str
    flag_key: str
    user_id: str | None = None

    @classmethod
    def yes(cls, flag_key: str, reason: str, user_id: str | None = None) -> "EvaluationResult":
        return cls(enabled=True, reason=reason, flag_key=flag_key, user_id=user_id)

    @classmethod
    def no(cls, flag_key: str, reason: str, user_id: str | None = None) -> "EvaluationResult":
        return cls(enabled=False, reason=reason, flag_key=flag_key, user_id=user_id)


# ============================================================
# STORAGE
# ============================================================

class RolloutStateStore(ABC):
    """
    Abstract durable storage for flag and phase state.

    The in-memory registry and tracker are authoritative at runtime;
    stores are loaded once at startup and written behind.

    Implementations:
    - MemoryStateStore: In-memory (dev/testing)
    - DatabaseStateStore: SQLAlchemy (SQLite/PostgreSQL)
    """

    @abstractmethod
    async def load_flags(self) -> list[FeatureFlag]:
        """Load every stored flag."""
        pass

    @abstractmethod
    async def save_flag(self, flag: FeatureFlag) -> None:
        """Insert or replace a flag record."""
        pass

    @abstractmethod
    async def load_phases(self) -> list["RolloutPhase"]:
        """Load every stored rollout phase, issues included."""
        pass

    @abstractmethod
    async def save_phase(self, phase: "RolloutPhase") -> None:
        """Insert or replace a rollout phase record."""
        pass
