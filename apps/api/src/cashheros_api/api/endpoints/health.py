from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from cashheros_api import __version__
from cashheros_api.api.dependencies.security import require_admin_api_key
from cashheros_api.core.settings import settings
from cashheros_api.db.session import get_session
from cashheros_api.schemas.common import ApiResponse

router = APIRouter(prefix="/health", tags=["Health"])


class LivenessPayload(BaseModel):
    status: Literal["ok"] = "ok"


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    environment: str
    version: str
    components: Dict[str, ComponentStatus]


@router.get("", response_model=ApiResponse[LivenessPayload], summary="Service liveness")
async def service_health() -> ApiResponse[LivenessPayload]:
    return ApiResponse(data=LivenessPayload())


@router.get(
    "/detailed",
    response_model=ApiResponse[ReadinessPayload],
    summary="Per-component readiness",
    dependencies=[Depends(require_admin_api_key)],
)
async def detailed_health(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ApiResponse[ReadinessPayload]:
    components: Dict[str, ComponentStatus] = {}

    try:
        await session.execute(text("SELECT 1"))
        components["database"] = ComponentStatus(status="ready")
    except Exception as exc:
        logger.warning("Database health probe failed", error=str(exc))
        components["database"] = ComponentStatus(status="error", detail="Database unreachable")

    blacklist = getattr(request.app.state, "token_blacklist", None)
    backend = settings.token_blacklist_backend
    if blacklist is None:
        components["token_blacklist"] = ComponentStatus(status="error", detail="Blacklist not configured")
    else:
        try:
            reachable = await blacklist.ping()
        except Exception as exc:
            logger.warning("Token blacklist health probe failed", error=str(exc), backend=backend)
            reachable = False
        if not reachable:
            components["token_blacklist"] = ComponentStatus(status="error", detail=f"{backend} backend unreachable")
        elif backend == "memory":
            components["token_blacklist"] = ComponentStatus(status="degraded", detail="process-local blacklist")
        else:
            components["token_blacklist"] = ComponentStatus(status="ready", detail=backend)

    sweeper = getattr(request.app.state, "cashback_sweeper", None)
    if not settings.cashback_sweeper_enabled or sweeper is None:
        components["cashback_sweeper"] = ComponentStatus(status="disabled")
    elif sweeper.last_error:
        components["cashback_sweeper"] = ComponentStatus(
            status="degraded",
            detail=sweeper.last_error,
            last_success_at=sweeper.last_run_at.isoformat() if sweeper.last_run_at else None,
        )
    else:
        components["cashback_sweeper"] = ComponentStatus(
            status="ready" if sweeper.is_running else "starting",
            detail=f"last run confirmed {sweeper.last_summary['confirmed']}" if sweeper.last_summary else None,
            last_success_at=sweeper.last_run_at.isoformat() if sweeper.last_run_at else None,
        )

    overall: Literal["ready", "degraded", "error"] = "ready"
    if any(component.status == "error" for component in components.values()):
        overall = "error"
    elif any(component.status == "degraded" for component in components.values()):
        overall = "degraded"

    return ApiResponse(
        data=ReadinessPayload(
            status=overall,
            environment=settings.environment,
            version=__version__,
            components=components,
        )
    )
