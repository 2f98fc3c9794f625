"""Canvas nodes, node activity/comments and manual position overrides."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.errors import InternalError, NotFoundError
from app.core.logging import get_logger
from app.db.supabase_client import first_row, get_supabase

logger = get_logger(__name__)


# ============================================================================
# Nodes
# ============================================================================


def get_node(node_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()
    return first_row(
        supabase.table("canvas_nodes").select("*").eq("id", str(node_id)).limit(1).execute()
    )


def require_node(node_id: UUID) -> dict[str, Any]:
    node = get_node(node_id)
    if not node:
        raise NotFoundError(f"Canvas node {node_id} not found")
    return node


def list_project_nodes(project_id: UUID) -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = (
        supabase.table("canvas_nodes")
        .select("*")
        .eq("project_id", str(project_id))
        .order("display_order")
        .execute()
    )
    return response.data or []


def create_node(
    project_id: UUID,
    title: str,
    content: str = "",
    node_type: str = "idea",
    tags: list[str] | None = None,
    parent_id: UUID | None = None,
    created_by_id: UUID | None = None,
    zone_affinities: dict[str, dict[str, float]] | None = None,
) -> dict[str, Any]:
    """
    Insert a canvas node.

    Returns:
        Created node row

    Raises:
        Exception: If database operation fails
    """
    supabase = get_supabase()

    row = {
        "project_id": str(project_id),
        "parent_id": str(parent_id) if parent_id else None,
        "title": title,
        "content": content,
        "type": node_type,
        "tags": tags or [],
        "created_by_id": str(created_by_id) if created_by_id else None,
        "zone_affinities": zone_affinities or {},
    }

    try:
        node = first_row(supabase.table("canvas_nodes").insert(row).execute())
        if not node:
            raise InternalError("No data returned from create_node")
    except Exception as e:
        logger.error(f"Failed to create canvas node: {e}", extra={"project_id": str(project_id)})
        raise

    logger.info(
        f"Created canvas node '{title}'",
        extra={"project_id": str(project_id), "node_id": node["id"]},
    )
    return node


def update_node(node_id: UUID, updates: dict[str, Any]) -> dict[str, Any]:
    """Last-write-wins update of node columns."""
    supabase = get_supabase()
    node = first_row(
        supabase.table("canvas_nodes")
        .update({**updates, "updated_at": datetime.now(timezone.utc).isoformat()})
        .eq("id", str(node_id))
        .execute()
    )
    if not node:
        raise NotFoundError(f"Canvas node {node_id} not found")
    return node


# ============================================================================
# Activities & comments
# ============================================================================


def create_activity(
    node_id: UUID,
    project_id: UUID,
    activity_type: str,
    description: str,
    user_id: UUID | None = None,
    details: str | None = None,
) -> dict[str, Any] | None:
    supabase = get_supabase()
    return first_row(
        supabase.table("canvas_node_activities")
        .insert(
            {
                "node_id": str(node_id),
                "project_id": str(project_id),
                "user_id": str(user_id) if user_id else None,
                "type": activity_type,
                "description": description,
                "details": details,
            }
        )
        .execute()
    )


def list_activities(node_id: UUID, limit: int = 20) -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = (
        supabase.table("canvas_node_activities")
        .select("*")
        .eq("node_id", str(node_id))
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return response.data or []


def list_comments(node_id: UUID, limit: int = 20) -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = (
        supabase.table("canvas_node_comments")
        .select("*")
        .eq("node_id", str(node_id))
        .order("created_at")
        .limit(limit)
        .execute()
    )
    return response.data or []


# ============================================================================
# Position overrides
# ============================================================================


def list_positions(project_framework_id: UUID) -> dict[str, tuple[float, float]]:
    """Persisted overrides for one framework as {node_id: (x, y)}."""
    supabase = get_supabase()
    response = (
        supabase.table("canvas_node_positions")
        .select("node_id,x,y")
        .eq("project_framework_id", str(project_framework_id))
        .execute()
    )
    return {str(r["node_id"]): (r["x"], r["y"]) for r in response.data or []}


def upsert_positions(
    project_framework_id: UUID,
    positions: list[dict[str, Any]],
) -> int:
    supabase = get_supabase()
    now = datetime.now(timezone.utc).isoformat()
    rows = [
        {
            "node_id": str(p["node_id"]),
            "project_framework_id": str(project_framework_id),
            "x": p["x"],
            "y": p["y"],
            "updated_at": now,
        }
        for p in positions
    ]
    response = (
        supabase.table("canvas_node_positions")
        .upsert(rows, on_conflict="node_id,project_framework_id")
        .execute()
    )
    return len(response.data or [])


def clear_positions(project_framework_id: UUID | None = None) -> int:
    """
    Delete manual overrides so layout falls back to affinities.

    Scoped to one project framework when given, otherwise every row.
    """
    supabase = get_supabase()
    query = supabase.table("canvas_node_positions").delete()
    if project_framework_id:
        query = query.eq("project_framework_id", str(project_framework_id))
    else:
        # PostgREST refuses an unfiltered delete
        query = query.neq("node_id", "00000000-0000-0000-0000-000000000000")
    response = query.execute()

    deleted = len(response.data or [])
    logger.info(
        f"Cleared {deleted} canvas position overrides",
        extra={"project_framework_id": str(project_framework_id) if project_framework_id else None},
    )
    return deleted
