"""Chats and chat messages for health-analysis sessions."""

from typing import Any
from uuid import UUID

from app.core.errors import InternalError, NotFoundError
from app.core.logging import get_logger
from app.core.schemas_health_analysis import ChatStatus, ChatType
from app.db.supabase_client import first_row, get_supabase

logger = get_logger(__name__)

HEALTH_ANALYSIS_CHAT_TITLE = "健康度分析"


def start_health_analysis_chat(
    user_id: UUID,
    project_id: UUID,
    project_framework_id: UUID,
    title: str = HEALTH_ANALYSIS_CHAT_TITLE,
) -> dict[str, Any]:
    """
    Archive the active health-analysis chat for (project, framework) and
    create a new active one, in one transaction.

    Returns:
        The new chat row
    """
    supabase = get_supabase()

    try:
        chat = first_row(
            supabase.rpc(
                "start_health_analysis_chat",
                {
                    "p_user_id": str(user_id),
                    "p_project_id": str(project_id),
                    "p_project_framework_id": str(project_framework_id),
                    "p_title": title,
                },
            ).execute()
        )
        if not chat:
            raise InternalError("No data returned from start_health_analysis_chat")
    except Exception as e:
        logger.error(
            f"Failed to start health-analysis chat: {e}",
            extra={"project_id": str(project_id), "project_framework_id": str(project_framework_id)},
        )
        raise

    logger.info(
        "Started health-analysis chat",
        extra={
            "project_id": str(project_id),
            "project_framework_id": str(project_framework_id),
            "chat_id": chat["id"],
        },
    )
    return chat


def get_chat(chat_id: UUID) -> dict[str, Any]:
    """
    Raises:
        NotFoundError: If the chat does not exist
    """
    supabase = get_supabase()
    chat = first_row(
        supabase.table("chats").select("*").eq("id", str(chat_id)).limit(1).execute()
    )
    if not chat:
        raise NotFoundError(f"Chat {chat_id} not found")
    return chat


def list_active_health_analysis_chats(project_id: UUID, project_framework_id: UUID) -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = (
        supabase.table("chats")
        .select("*")
        .eq("project_id", str(project_id))
        .eq("project_framework_id", str(project_framework_id))
        .eq("type", ChatType.HEALTH_ANALYSIS.value)
        .eq("status", ChatStatus.ACTIVE.value)
        .execute()
    )
    return response.data or []


def save_message(
    chat_id: UUID,
    role: str,
    content: list[dict[str, Any]],
    tool_calls: list[dict[str, Any]] | None = None,
) -> dict[str, Any] | None:
    """Append a message. content holds text blocks; tool calls are kept beside them."""
    supabase = get_supabase()
    row: dict[str, Any] = {"chat_id": str(chat_id), "role": role, "content": content}
    if tool_calls:
        row["tool_calls"] = tool_calls
    return first_row(supabase.table("chat_messages").insert(row).execute())


def list_messages(chat_id: UUID, limit: int = 20) -> list[dict[str, Any]]:
    """Most recent ``limit`` messages in chronological order."""
    supabase = get_supabase()
    response = (
        supabase.table("chat_messages")
        .select("*")
        .eq("chat_id", str(chat_id))
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return list(reversed(response.data or []))
