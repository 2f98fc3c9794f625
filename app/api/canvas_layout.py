"""API endpoints for canvas layout and manual position overrides."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.auth import AuthContext, require_auth
from app.core.canvas_layout import compute_layout
from app.core.errors import BadRequestError, NotFoundError, UnauthorizedError
from app.core.logging import get_logger
from app.core.schemas_canvas import (
    CanvasLayoutResponse,
    ClearPositionsRequest,
    NodePosition,
    PositionsUpdate,
)
from app.db import canvas_nodes
from app.db.frameworks import ensure_project_framework, get_project_framework
from app.db.projects import ensure_project_access

logger = get_logger(__name__)

router = APIRouter()


def _authorize_framework(project_framework_id: UUID, auth: AuthContext) -> dict:
    framework = get_project_framework(project_framework_id)
    if not framework:
        raise NotFoundError(f"Project framework {project_framework_id} not found")
    ensure_project_access(framework["project_id"], auth.user_id, is_admin=auth.is_admin)
    return framework


@router.get("/canvas/layout", response_model=CanvasLayoutResponse)
async def get_canvas_layout(
    project_id: UUID = Query(..., description="Project UUID"),
    project_framework_id: Optional[UUID] = Query(None, description="Defaults to the active framework"),
    auth: AuthContext = Depends(require_auth),
) -> CanvasLayoutResponse:
    """
    Compute zone bounds and node positions.

    Each root node goes to the zone it has the strongest affinity to (ties
    go to the earlier zone); nodes without affinities go to the unassigned
    area. Persisted manual positions override computed ones.
    """
    ensure_project_access(project_id, auth.user_id, is_admin=auth.is_admin)
    framework = ensure_project_framework(project_id, project_framework_id)

    return compute_layout(
        canvas_nodes.list_project_nodes(project_id),
        framework["zones"],
        str(framework["id"]),
        overrides=canvas_nodes.list_positions(framework["id"]),
    )


@router.get("/canvas/positions", response_model=list[NodePosition])
async def get_positions(
    project_framework_id: UUID = Query(..., description="Project framework UUID"),
    auth: AuthContext = Depends(require_auth),
) -> list[NodePosition]:
    _authorize_framework(project_framework_id, auth)
    positions = canvas_nodes.list_positions(project_framework_id)
    return [NodePosition(node_id=node_id, x=x, y=y) for node_id, (x, y) in positions.items()]


@router.patch("/canvas/positions")
async def update_positions(
    request: PositionsUpdate,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """Persist manual node positions for one framework."""
    framework = _authorize_framework(request.project_framework_id, auth)

    project_node_ids = {str(n["id"]) for n in canvas_nodes.list_project_nodes(framework["project_id"])}
    foreign = [str(p.node_id) for p in request.positions if str(p.node_id) not in project_node_ids]
    if foreign:
        raise BadRequestError(f"Nodes not in project: {', '.join(foreign)}")

    saved = canvas_nodes.upsert_positions(
        request.project_framework_id, [p.model_dump() for p in request.positions]
    )
    return {"success": True, "saved": saved}


@router.post("/migrations/clear-positions")
async def clear_positions(
    request: ClearPositionsRequest,
    auth: AuthContext = Depends(require_auth),
) -> dict:
    """
    Delete manual overrides so layout falls back to affinities.

    Without a project framework this clears every project and needs the
    admin API key.
    """
    if request.project_framework_id:
        _authorize_framework(request.project_framework_id, auth)
    elif not auth.is_admin:
        raise UnauthorizedError("Clearing all positions requires admin access")

    deleted = canvas_nodes.clear_positions(request.project_framework_id)
    return {"success": True, "deleted": deleted}
