"""API endpoints for node zone affinities."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.auth import AuthContext, require_auth
from app.core.errors import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.core.schemas_canvas import (
    AffinityUpdate,
    NodeAffinitiesResponse,
    PopulateAffinitiesRequest,
    PopulateAffinitiesResponse,
    ProjectAffinitiesResponse,
)
from app.db.canvas_nodes import require_node
from app.db.frameworks import get_project_framework
from app.db.projects import ensure_project_access
from app.db.zone_affinities import (
    get_node_affinities,
    list_project_affinities,
    populate_default_affinities,
    set_node_affinities,
)

logger = get_logger(__name__)

router = APIRouter()


def _authorize_node(node_id: UUID, project_framework_id: UUID, auth: AuthContext) -> dict:
    node = require_node(node_id)
    ensure_project_access(node["project_id"], auth.user_id, is_admin=auth.is_admin)
    framework = get_project_framework(project_framework_id)
    if not framework:
        raise NotFoundError(f"Project framework {project_framework_id} not found")
    if str(framework["project_id"]) != str(node["project_id"]):
        raise BadRequestError("Node and project framework belong to different projects")
    return node


@router.get("/canvas/affinities", response_model=ProjectAffinitiesResponse)
async def list_affinities(
    project_id: UUID = Query(..., description="Project UUID"),
    project_framework_id: UUID = Query(..., description="Project framework UUID"),
    auth: AuthContext = Depends(require_auth),
) -> ProjectAffinitiesResponse:
    """Affinity maps of every node in the project for one framework."""
    ensure_project_access(project_id, auth.user_id, is_admin=auth.is_admin)
    return ProjectAffinitiesResponse(
        project_id=project_id,
        project_framework_id=project_framework_id,
        affinities=list_project_affinities(project_id, project_framework_id),
    )


@router.get("/canvas/{node_id}/affinities", response_model=NodeAffinitiesResponse)
async def read_node_affinities(
    node_id: UUID,
    project_framework_id: UUID = Query(..., description="Project framework UUID"),
    auth: AuthContext = Depends(require_auth),
) -> NodeAffinitiesResponse:
    _authorize_node(node_id, project_framework_id, auth)
    return NodeAffinitiesResponse(
        node_id=node_id,
        project_framework_id=project_framework_id,
        affinities=get_node_affinities(node_id, project_framework_id),
    )


@router.patch("/canvas/{node_id}/affinities", response_model=NodeAffinitiesResponse)
async def update_node_affinities(
    node_id: UUID,
    request: AffinityUpdate,
    auth: AuthContext = Depends(require_auth),
) -> NodeAffinitiesResponse:
    """
    Replace the node's affinity map for one framework.

    Maps for other frameworks are untouched. Weights must lie in [0, 1] and
    are stored as given (not normalized).
    """
    _authorize_node(node_id, request.project_framework_id, auth)
    all_affinities = set_node_affinities(node_id, request.project_framework_id, request.affinities)
    return NodeAffinitiesResponse(
        node_id=node_id,
        project_framework_id=request.project_framework_id,
        affinities=(all_affinities or {}).get(str(request.project_framework_id), {}),
    )


@router.post("/canvas/populate-affinities", response_model=PopulateAffinitiesResponse)
async def populate_affinities(
    request: PopulateAffinitiesRequest,
    auth: AuthContext = Depends(require_auth),
) -> PopulateAffinitiesResponse:
    """Give root nodes without a map a round-robin default (0.8 primary, 0.2 neighbours)."""
    ensure_project_access(request.project_id, auth.user_id, is_admin=auth.is_admin)
    counts = populate_default_affinities(request.project_id, request.project_framework_id)
    return PopulateAffinitiesResponse(**counts)
