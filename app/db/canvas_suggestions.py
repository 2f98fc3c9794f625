"""Canvas suggestion storage.

Status changes are compare-and-set updates: the UPDATE carries
``status = <expected>`` as a filter, so of two concurrent transitions only
one matches a row. An empty result means the suggestion was no longer in the
expected state.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.errors import ConflictError, InternalError, NotFoundError
from app.core.logging import get_logger
from app.core.schemas_suggestions import SuggestionCreate, SuggestionStatus
from app.db.supabase_client import first_row, get_supabase

logger = get_logger(__name__)


def insert_suggestion(data: SuggestionCreate) -> dict[str, Any]:
    """Persist a validated suggestion as pending."""
    supabase = get_supabase()

    row = {
        "project_id": str(data.project_id),
        "project_framework_id": str(data.project_framework_id) if data.project_framework_id else None,
        "node_id": str(data.node_id) if data.node_id else None,
        "chat_id": str(data.chat_id) if data.chat_id else None,
        "type": data.type.value,
        "title": data.title,
        "description": data.description,
        "reason": data.reason,
        "priority": data.priority.value,
        "action_params": data.action_params,
        "source": data.source.value,
        "status": SuggestionStatus.PENDING.value,
    }

    try:
        suggestion = first_row(supabase.table("canvas_suggestions").insert(row).execute())
        if not suggestion:
            raise InternalError("No data returned from insert_suggestion")
    except Exception as e:
        logger.error(
            f"Failed to insert suggestion: {e}", extra={"project_id": str(data.project_id)}
        )
        raise

    logger.info(
        f"Created {data.type.value} suggestion: {data.title}",
        extra={"project_id": str(data.project_id), "suggestion_id": suggestion["id"]},
    )
    return suggestion


def get_suggestion(suggestion_id: UUID) -> dict[str, Any]:
    """
    Raises:
        NotFoundError: If the suggestion does not exist
    """
    supabase = get_supabase()
    suggestion = first_row(
        supabase.table("canvas_suggestions")
        .select("*")
        .eq("id", str(suggestion_id))
        .limit(1)
        .execute()
    )
    if not suggestion:
        raise NotFoundError(f"Suggestion {suggestion_id} not found")
    return suggestion


def list_suggestions(
    project_id: UUID,
    project_framework_id: UUID | None = None,
    node_id: UUID | None = None,
    status: SuggestionStatus | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """
    List a project's suggestions, newest first.

    Args:
        project_id: Project UUID
        project_framework_id: Only suggestions for this framework
        node_id: Only suggestions targeting this node
        status: Optional status filter
        limit: Max rows
    """
    supabase = get_supabase()
    query = supabase.table("canvas_suggestions").select("*").eq("project_id", str(project_id))
    if project_framework_id:
        query = query.eq("project_framework_id", str(project_framework_id))
    if node_id:
        query = query.eq("node_id", str(node_id))
    if status:
        query = query.eq("status", status.value)

    response = query.order("created_at", desc=True).limit(limit).execute()
    return response.data or []


def transition_suggestion(
    suggestion_id: UUID,
    from_status: SuggestionStatus,
    to_status: SuggestionStatus,
    actor_id: UUID | None = None,
) -> dict[str, Any]:
    """
    Compare-and-set a suggestion's status.

    Raises:
        ConflictError: The row was not in ``from_status`` (already
            transitioned, possibly by a concurrent request)
        NotFoundError: The suggestion does not exist
    """
    supabase = get_supabase()
    now = datetime.now(timezone.utc).isoformat()

    updates: dict[str, Any] = {"status": to_status.value, "updated_at": now}
    if to_status == SuggestionStatus.ACCEPTED:
        updates["applied_at"] = now
        updates["applied_by_id"] = str(actor_id) if actor_id else None
    elif to_status == SuggestionStatus.DISMISSED:
        updates["dismissed_at"] = now
        updates["dismissed_by_id"] = str(actor_id) if actor_id else None
    elif to_status == SuggestionStatus.PENDING:
        # Compensation: forget a claim whose action did not happen
        updates.update(applied_at=None, applied_by_id=None, dismissed_at=None, dismissed_by_id=None)

    row = first_row(
        supabase.table("canvas_suggestions")
        .update(updates)
        .eq("id", str(suggestion_id))
        .eq("status", from_status.value)
        .execute()
    )

    if not row:
        current = get_suggestion(suggestion_id)
        raise ConflictError(
            f"Suggestion {suggestion_id} is {current['status']}, expected {from_status.value}"
        )

    logger.info(
        f"Suggestion {from_status.value} -> {to_status.value}",
        extra={"suggestion_id": str(suggestion_id), "project_id": row.get("project_id")},
    )
    return row
