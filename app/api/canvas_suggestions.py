"""API endpoints for canvas suggestions."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from app.core.auth import AuthContext, require_auth
from app.core.errors import BadRequestError, CanvasError, format_validation_error
from app.core.logging import get_logger
from app.core.schemas_suggestions import (
    ApplySuggestionResponse,
    CanvasSuggestion,
    DismissSuggestionRequest,
    SuggestionCreate,
    SuggestionCreateRequest,
    SuggestionListResponse,
    SuggestionSource,
    SuggestionStatus,
)
from app.core.suggestion_engine import (
    accept_suggestion,
    apply_suggestion,
    create_suggestion,
    dismiss_suggestion,
)
from app.db.canvas_suggestions import get_suggestion, list_suggestions
from app.db.projects import ensure_project_access

logger = get_logger(__name__)

router = APIRouter()


def _authorize_suggestion(suggestion_id: UUID, auth: AuthContext) -> None:
    suggestion = get_suggestion(suggestion_id)
    ensure_project_access(suggestion["project_id"], auth.user_id, is_admin=auth.is_admin)


@router.get("/canvas/suggestions", response_model=SuggestionListResponse)
async def list_canvas_suggestions(
    project_id: UUID = Query(..., description="Project UUID"),
    project_framework_id: Optional[UUID] = Query(None, description="Scope to one project framework"),
    node_id: Optional[UUID] = Query(None, description="Scope to one node"),
    status: Optional[SuggestionStatus] = Query(None, description="Filter by status"),
    limit: int = Query(100, ge=1, le=500),
    auth: AuthContext = Depends(require_auth),
) -> SuggestionListResponse:
    """List suggestions for a framework or a node, newest first."""
    if not project_framework_id and not node_id:
        raise BadRequestError("project_framework_id or node_id is required")

    ensure_project_access(project_id, auth.user_id, is_admin=auth.is_admin)
    try:
        rows = list_suggestions(project_id, project_framework_id, node_id, status, limit)
    except Exception as e:
        logger.error(f"Failed to list suggestions: {e}", extra={"project_id": str(project_id)})
        raise HTTPException(status_code=500, detail=str(e))

    suggestions = [CanvasSuggestion.model_validate(row) for row in rows]
    return SuggestionListResponse(suggestions=suggestions, total=len(suggestions))


@router.post("/canvas/suggestions", response_model=CanvasSuggestion, status_code=201)
async def create_canvas_suggestion(
    request: SuggestionCreateRequest,
    auth: AuthContext = Depends(require_auth),
) -> CanvasSuggestion:
    """
    Create a pending suggestion.

    action_params are validated against the branch for ``type``; an unknown
    type or mismatched params is a 400 and nothing is stored.
    """
    ensure_project_access(request.project_id, auth.user_id, is_admin=auth.is_admin)
    try:
        data = SuggestionCreate.model_validate(
            {**request.model_dump(), "source": SuggestionSource.API}
        )
    except ValidationError as e:
        raise BadRequestError(format_validation_error(e)) from None

    row = await create_suggestion(data)
    return CanvasSuggestion.model_validate(row)


@router.post("/canvas/suggestions/{suggestion_id}/apply", response_model=ApplySuggestionResponse)
async def apply_canvas_suggestion(
    suggestion_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> ApplySuggestionResponse:
    """
    Execute a suggestion.

    Returns 409 when the suggestion is already accepted or dismissed and 400
    for unsupported types or invalid params; neither mutates the canvas.
    """
    _authorize_suggestion(suggestion_id, auth)
    try:
        return await apply_suggestion(suggestion_id, auth.user_id)
    except CanvasError:
        raise
    except Exception as e:
        logger.error(
            f"Error applying suggestion: {e}",
            exc_info=True,
            extra={"suggestion_id": str(suggestion_id)},
        )
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/canvas/suggestions/{suggestion_id}/accept", response_model=CanvasSuggestion)
async def accept_canvas_suggestion(
    suggestion_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> CanvasSuggestion:
    """Close a content-suggestion or health-issue once its follow-up is done."""
    _authorize_suggestion(suggestion_id, auth)
    return await accept_suggestion(suggestion_id, auth.user_id)


@router.post("/canvas/suggestions/{suggestion_id}/dismiss", response_model=CanvasSuggestion)
async def dismiss_canvas_suggestion(
    suggestion_id: UUID,
    auth: AuthContext = Depends(require_auth),
) -> CanvasSuggestion:
    _authorize_suggestion(suggestion_id, auth)
    return await dismiss_suggestion(suggestion_id, auth.user_id)


@router.post("/canvas/suggestion/dismiss", response_model=CanvasSuggestion)
async def dismiss_canvas_suggestion_legacy(
    request: DismissSuggestionRequest,
    auth: AuthContext = Depends(require_auth),
) -> CanvasSuggestion:
    """Body-addressed variant of the dismiss endpoint kept for older clients."""
    _authorize_suggestion(request.suggestion_id, auth)
    return await dismiss_suggestion(request.suggestion_id, auth.user_id)
