"""API endpoints for the Health-Analysis Agent."""

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from app.core.auth import AuthContext, require_auth
from app.core.errors import CanvasError
from app.core.logging import get_logger
from app.core.schemas_health_analysis import (
    AnalysisChatRequest,
    CancelAnalysisRequest,
    CancelAnalysisResponse,
    StartAnalysisRequest,
    StartAnalysisResponse,
)
from app.services.health_analysis_service import (
    cancel_health_analysis,
    open_analysis_stream,
    start_health_analysis,
)

logger = get_logger(__name__)

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


@router.post("/start", response_model=StartAnalysisResponse)
async def start_analysis(
    request: StartAnalysisRequest,
    auth: AuthContext = Depends(require_auth),
) -> StartAnalysisResponse:
    """
    Start a health analysis for a project.

    Provisions the project framework from the project's default framework
    when none is active, archives the previous analysis chat and returns the
    new chat id with the agent's opening message.
    """
    try:
        return start_health_analysis(request.project_id, request.project_framework_id, auth)
    except CanvasError:
        raise
    except Exception as e:
        logger.error(f"Error starting health analysis: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/chat")
async def analysis_chat(
    request: AnalysisChatRequest,
    auth: AuthContext = Depends(require_auth),
) -> StreamingResponse:
    """
    Run the agent on an analysis chat and stream its progress as SSE.

    Each frame is ``data: {"type": ..., "data": ...}``. The stream ends with
    ``finish``, ``error``, or a ``data-status`` frame reporting ``idle``
    after cancellation.
    """
    try:
        run = open_analysis_stream(request.id, request.message, auth)
    except CanvasError:
        raise
    except Exception as e:
        logger.error(f"Error opening health analysis stream: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))

    return StreamingResponse(run.stream(), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/cancel", response_model=CancelAnalysisResponse)
async def cancel_analysis_run(
    request: CancelAnalysisRequest,
    auth: AuthContext = Depends(require_auth),
) -> CancelAnalysisResponse:
    """Cancel the live analysis on a chat. Persisted results are kept."""
    return cancel_health_analysis(request.chat_id, auth)
