"""
Feature flag API routes.

Reads evaluate flags for the ?developerId=&projectId=&userId= context.
Mutations require an X-Actor header, answer 404 for unknown flags and
400 when the registry rejects the input.
"""

from typing import Any, Callable

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from rollout_engine.api.dependencies import Actor, Context, Features, Registry
from rollout_engine.core.features import FeatureFlag, FlagRegistry, WhitelistKind

router = APIRouter()


# ============================================================
# SCHEMAS
# ============================================================

class CamelModel(BaseModel):
    """Request body with camelCase JSON keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class KillSwitchRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=500)


class PercentageRequest(CamelModel):
    value: int = Field(..., ge=0, le=100)


class WhitelistRequest(CamelModel):
    kind: WhitelistKind
    id: str = Field(..., min_length=1, max_length=200)


class GradualRequest(CamelModel):
    start_percentage: int = Field(..., ge=0, le=100)
    end_percentage: int = Field(..., ge=0, le=100)
    increment_percentage: int = Field(..., gt=0, le=100)
    increment_interval_hours: float = Field(..., gt=0)


# ============================================================
# HELPERS
# ============================================================

def _mutate(
    registry: FlagRegistry,
    flag_id: str,
    operation: Callable[[], FeatureFlag | None],
) -> dict[str, Any]:
    """Run a registry mutation and map its failure indicator to HTTP."""
    if flag_id not in registry:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Feature flag '{flag_id}' not found",
        )

    flag = operation()
    if flag is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Change to feature flag '{flag_id}' was rejected",
        )
    return flag.to_dict()


# ============================================================
# READ ENDPOINTS
# ============================================================

@router.get("")
async def list_enabled_flags(features: Features, context: Context) -> dict[str, list[str]]:
    """
    Ids of every flag enabled for the context.

    Useful for frontend to fetch all flags at once.
    """
    return {"enabled": features.get_enabled_features(context)}


@router.get("/definitions")
async def list_flag_definitions(registry: Registry) -> list[dict[str, Any]]:
    """Every flag definition with its rollout state."""
    return [flag.to_dict() for flag in registry.list_flags()]


@router.post("/gradual/advance-due")
async def advance_due_gradual(registry: Registry, actor: Actor) -> dict[str, list[str]]:
    """Advance every gradual rollout whose increment is due."""
    advanced = registry.advance_due()
    return {"advanced": [flag.id for flag in advanced]}


@router.get("/{flag_id}")
async def get_flag(flag_id: str, registry: Registry) -> dict[str, Any]:
    """Get a specific feature flag definition."""
    flag = registry.get_flag(flag_id)
    if not flag:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Feature flag '{flag_id}' not found",
        )
    return flag.to_dict()


@router.get("/{flag_id}/evaluate")
async def evaluate_flag(flag_id: str, features: Features, context: Context) -> dict[str, Any]:
    """
    Check a flag for the context, with the reason for the decision.

    Unknown flags evaluate to disabled rather than 404.
    """
    result = features.evaluate(flag_id, context)
    return {
        "key": result.flag_key,
        "enabled": result.enabled,
        "reason": result.reason,
    }


# ============================================================
# ADMIN ENDPOINTS
# ============================================================

@router.post("/{flag_id}/enable")
async def enable_flag(flag_id: str, registry: Registry, actor: Actor) -> dict[str, Any]:
    return _mutate(registry, flag_id, lambda: registry.enable(flag_id, actor))


@router.post("/{flag_id}/disable")
async def disable_flag(flag_id: str, registry: Registry, actor: Actor) -> dict[str, Any]:
    return _mutate(registry, flag_id, lambda: registry.disable(flag_id, actor))


@router.post("/{flag_id}/kill-switch")
async def trigger_kill_switch(
    flag_id: str,
    data: KillSwitchRequest,
    registry: Registry,
    actor: Actor,
) -> dict[str, Any]:
    """Force the flag off for everyone."""
    return _mutate(
        registry,
        flag_id,
        lambda: registry.trigger_kill_switch(flag_id, data.reason, actor),
    )


@router.delete("/{flag_id}/kill-switch")
async def reset_kill_switch(flag_id: str, registry: Registry, actor: Actor) -> dict[str, Any]:
    return _mutate(registry, flag_id, lambda: registry.reset_kill_switch(flag_id, actor))


@router.post("/{flag_id}/percentage")
async def set_rollout_percentage(
    flag_id: str,
    data: PercentageRequest,
    registry: Registry,
    actor: Actor,
) -> dict[str, Any]:
    return _mutate(
        registry,
        flag_id,
        lambda: registry.set_rollout_percentage(flag_id, data.value, actor),
    )


@router.post("/{flag_id}/whitelist")
async def add_to_whitelist(
    flag_id: str,
    data: WhitelistRequest,
    registry: Registry,
    actor: Actor,
) -> dict[str, Any]:
    return _mutate(
        registry,
        flag_id,
        lambda: registry.add_to_whitelist(flag_id, data.kind, data.id, actor),
    )


@router.post("/{flag_id}/gradual")
async def configure_gradual(
    flag_id: str,
    data: GradualRequest,
    registry: Registry,
    actor: Actor,
) -> dict[str, Any]:
    """Start a scheduled percentage ramp."""
    return _mutate(
        registry,
        flag_id,
        lambda: registry.configure_gradual(
            flag_id,
            start_percentage=data.start_percentage,
            end_percentage=data.end_percentage,
            increment_percentage=data.increment_percentage,
            increment_interval_hours=data.increment_interval_hours,
            actor=actor,
        ),
    )


@router.post("/{flag_id}/gradual/advance")
async def advance_gradual(flag_id: str, registry: Registry, actor: Actor) -> dict[str, Any]:
    """Step the ramp if its increment is due; otherwise return it unchanged."""
    return _mutate(registry, flag_id, lambda: registry.advance_gradual(flag_id, actor))
