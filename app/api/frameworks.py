"""API endpoints for framework templates and a project's active framework."""

from uuid import UUID

from fastapi import APIRouter, Depends

from app.core.auth import AuthContext, require_auth
from app.core.logging import get_logger
from app.core.schemas_frameworks import (
    AdoptFrameworkRequest,
    Framework,
    FrameworkWithZones,
    ProjectFrameworkDetail,
)
from app.db import frameworks as frameworks_db
from app.db.projects import ensure_project_access, set_default_framework

logger = get_logger(__name__)

router = APIRouter()


def _detail(framework: dict) -> ProjectFrameworkDetail:
    return ProjectFrameworkDetail.model_validate(
        {**framework, "dimension_scores": frameworks_db.list_dimension_scores(framework["id"])}
    )


@router.get("/frameworks", response_model=list[Framework])
async def list_frameworks(auth: AuthContext = Depends(require_auth)) -> list[Framework]:
    """Platform frameworks followed by the caller's own."""
    return [Framework.model_validate(f) for f in frameworks_db.list_frameworks(auth.user_id)]


@router.get("/frameworks/{framework_id}", response_model=FrameworkWithZones)
async def get_framework(
    framework_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> FrameworkWithZones:
    return FrameworkWithZones.model_validate(frameworks_db.get_framework_with_zones(framework_id))


@router.get("/projects/{project_id}/framework", response_model=ProjectFrameworkDetail)
async def get_project_framework(
    project_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> ProjectFrameworkDetail:
    """
    The project's active framework with zones and dimension scores.

    Provisioned from the project's default framework on first access.
    """
    ensure_project_access(project_id, auth.user_id, is_admin=auth.is_admin)
    return _detail(frameworks_db.ensure_project_framework(project_id))


@router.put("/projects/{project_id}/framework", response_model=ProjectFrameworkDetail)
async def adopt_framework(
    project_id: UUID,
    request: AdoptFrameworkRequest,
    auth: AuthContext = Depends(require_auth),
) -> ProjectFrameworkDetail:
    """
    Switch the project to a framework.

    Sets it as the project default and activates the project's snapshot of
    it, creating the snapshot on first adoption. Re-adopting a framework
    reactivates the earlier snapshot so node placements and scores keyed
    to it survive.
    """
    ensure_project_access(project_id, auth.user_id, is_admin=auth.is_admin)
    template = frameworks_db.get_framework_with_zones(request.framework_id)
    set_default_framework(project_id, template["id"])

    existing = frameworks_db.find_project_framework_by_source(project_id, template["id"])
    if existing:
        frameworks_db.activate_project_framework(project_id, existing["id"])
        framework = frameworks_db.get_project_framework_with_zones(existing["id"])
    else:
        framework = frameworks_db.create_project_framework_snapshot(project_id, template["id"])

    logger.info(
        f"Project adopted framework '{template['name']}'",
        extra={"project_id": str(project_id), "project_framework_id": str(framework["id"])},
    )
    return _detail(framework)
