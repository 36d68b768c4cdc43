"""
FastAPI dependencies for the rollout engine.

Usage:
    from rollout_engine.api.dependencies import Features, Context, require_feature

    @router.get("/dashboard")
    async def dashboard(features: Features, context: Context):
        if features.is_enabled("new_dashboard", context):
            return new_dashboard()
        return old_dashboard()

    @router.get("/units", dependencies=[Depends(require_feature("cr007a_unit_inventory"))])
    async def units():
        ...
"""

from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Query, Request

from rollout_engine.core.container import Container
from rollout_engine.core.features import EvaluationContext, FeatureService, FlagRegistry
from rollout_engine.core.rollout import PhaseTracker


# ============================================================
# CONTAINER OBJECTS
# ============================================================

def get_container(request: Request) -> Container:
    """The container built by create_app."""
    return request.app.state.container


def get_registry(container: Container = Depends(get_container)) -> FlagRegistry:
    return container.registry


def get_feature_service(container: Container = Depends(get_container)) -> FeatureService:
    return container.features


def get_tracker(container: Container = Depends(get_container)) -> PhaseTracker:
    return container.tracker


# Type aliases for cleaner injection
Registry = Annotated[FlagRegistry, Depends(get_registry)]
Features = Annotated[FeatureService, Depends(get_feature_service)]
Tracker = Annotated[PhaseTracker, Depends(get_tracker)]


# ============================================================
# REQUEST INPUTS
# ============================================================

def get_evaluation_context(
    developer_id: Annotated[str | None, Query(alias="developerId")] = None,
    project_id: Annotated[str | None, Query(alias="projectId")] = None,
    user_id: Annotated[str | None, Query(alias="userId")] = None,
) -> EvaluationContext:
    """Evaluation context from ?developerId=&projectId=&userId=."""
    return EvaluationContext(
        developer_id=developer_id or None,
        project_id=project_id or None,
        user_id=user_id or None,
    )


Context = Annotated[EvaluationContext, Depends(get_evaluation_context)]

# Identity recorded for administrative mutations
Actor = Annotated[str, Header(alias="X-Actor", min_length=1, max_length=200)]


# ============================================================
# ROUTE GUARD
# ============================================================

def require_feature(
    flag_id: str,
    *,
    status_code: int = 404,
    detail: str | None = None,
) -> Callable[..., None]:
    """
    Dependency that rejects the request unless the flag is on.

    The flag is evaluated for the request's ?developerId=&projectId=&userId=.
    Raises 404 by default, so a disabled feature looks like it does not exist.
    """
    def check(features: Features, context: Context) -> None:
        if not features.is_enabled(flag_id, context):
            raise HTTPException(
                status_code=status_code,
                detail=detail or f"Feature '{flag_id}' is not available",
            )

    return check
