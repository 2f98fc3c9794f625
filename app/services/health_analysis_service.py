"""Health-analysis sessions: start, stream and cancel."""

from uuid import UUID

from app.agents.health_analysis_agent import HealthAnalysisRun, cancel_analysis, get_run, register_run
from app.agents.health_analysis_prompts import HEALTH_ANALYSIS_INITIAL_MESSAGE, build_system_prompt
from app.agents.health_analysis_types import HealthAnalysisContext
from app.core.auth import AuthContext
from app.core.errors import ConflictError
from app.core.framework_catalog import get_health_dimensions
from app.core.logging import get_logger
from app.core.schemas_health_analysis import (
    AnalysisStatus,
    CancelAnalysisResponse,
    ChatStatus,
    ChatType,
    StartAnalysisResponse,
)
from app.db import chats
from app.db.frameworks import ensure_project_framework, get_project_framework
from app.db.projects import ensure_project_access

logger = get_logger(__name__)


def start_health_analysis(
    project_id: UUID,
    project_framework_id: UUID | None,
    auth: AuthContext,
) -> StartAnalysisResponse:
    """
    Open a fresh health-analysis chat for a project framework.

    The framework is provisioned from the project default when the project
    has none yet. Any previous active analysis chat for the same framework
    is archived in the same transaction that creates the new one.
    """
    ensure_project_access(project_id, auth.user_id, is_admin=auth.is_admin)
    framework = ensure_project_framework(project_id, project_framework_id)

    chat = chats.start_health_analysis_chat(auth.user_id, project_id, framework["id"])

    return StartAnalysisResponse(
        chat_id=chat["id"],
        project_framework_id=framework["id"],
        initial_message=HEALTH_ANALYSIS_INITIAL_MESSAGE,
    )


def _require_active_analysis_chat(chat_id: UUID, auth: AuthContext) -> tuple[dict, dict]:
    """Chat row and its project, for an active analysis chat the caller may use."""
    chat = chats.get_chat(chat_id)
    if chat.get("type") != ChatType.HEALTH_ANALYSIS.value:
        raise ConflictError(f"Chat {chat_id} is not a health-analysis chat")
    if chat.get("status") != ChatStatus.ACTIVE.value:
        raise ConflictError(f"Chat {chat_id} has been archived; start a new analysis")
    project = ensure_project_access(chat["project_id"], auth.user_id, is_admin=auth.is_admin)
    return chat, project


def open_analysis_stream(chat_id: UUID, message: str, auth: AuthContext) -> HealthAnalysisRun:
    """
    Prepare a run for an active analysis chat.

    Validation happens here, before any bytes are streamed, so failures
    surface as plain HTTP errors. The returned run is registered for
    cancellation and already in ``starting``.
    """
    chat, project = _require_active_analysis_chat(chat_id, auth)

    framework = get_project_framework(chat["project_framework_id"])
    if not framework:
        raise ConflictError(f"Project framework for chat {chat_id} no longer exists")

    slug = framework.get("framework_slug")
    context = HealthAnalysisContext(
        project_id=chat["project_id"],
        project_framework_id=framework["id"],
        chat_id=chat["id"],
        user_id=auth.user_id,
        framework_slug=slug,
    )
    run = HealthAnalysisRun(
        context=context,
        system_prompt=build_system_prompt(project, framework, get_health_dimensions(slug)),
        message=message,
    )
    register_run(run)
    run.begin()

    logger.info(
        "Opened health-analysis stream",
        extra={"project_id": str(chat["project_id"]), "chat_id": str(chat_id)},
    )
    return run


def cancel_health_analysis(chat_id: UUID, auth: AuthContext) -> CancelAnalysisResponse:
    """Cancel the live run on a chat. Idempotent: nothing live means cancelled=False."""
    chat = chats.get_chat(chat_id)
    ensure_project_access(chat["project_id"], auth.user_id, is_admin=auth.is_admin)

    run = cancel_analysis(chat_id)
    if run is None:
        existing = get_run(chat_id)
        status = existing.status if existing else AnalysisStatus.IDLE
        return CancelAnalysisResponse(chat_id=chat_id, cancelled=False, status=status)

    logger.info("Cancellation requested", extra={"chat_id": str(chat_id)})
    return CancelAnalysisResponse(chat_id=chat_id, cancelled=True, status=AnalysisStatus.IDLE)
