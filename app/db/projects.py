"""Projects database operations (the slice the canvas engine needs)."""

from typing import Any
from uuid import UUID

from app.core.errors import NotFoundError, UnauthorizedError
from app.core.logging import get_logger
from app.db.supabase_client import first_row, get_supabase

logger = get_logger(__name__)


def get_project(project_id: UUID) -> dict[str, Any]:
    """
    Get a project by id.

    Raises:
        NotFoundError: If the project does not exist
    """
    supabase = get_supabase()
    project = first_row(
        supabase.table("projects").select("*").eq("id", str(project_id)).limit(1).execute()
    )
    if not project:
        raise NotFoundError(f"Project {project_id} not found")
    return project


def set_default_framework(project_id: UUID, framework_id: UUID) -> dict[str, Any]:
    """Record the framework new analyses provision from."""
    supabase = get_supabase()

    try:
        project = first_row(
            supabase.table("projects")
            .update({"default_framework_id": str(framework_id)})
            .eq("id", str(project_id))
            .execute()
        )
    except Exception as e:
        logger.error(
            f"Failed to set default framework: {e}", extra={"project_id": str(project_id)}
        )
        raise

    if not project:
        raise NotFoundError(f"Project {project_id} not found")

    logger.info(
        f"Default framework set to {framework_id}", extra={"project_id": str(project_id)}
    )
    return project


def is_project_member(project_id: UUID, user_id: UUID) -> bool:
    supabase = get_supabase()
    response = (
        supabase.table("project_members")
        .select("user_id")
        .eq("project_id", str(project_id))
        .eq("user_id", str(user_id))
        .limit(1)
        .execute()
    )
    return bool(response.data)


def ensure_project_access(project_id: UUID, user_id: UUID, is_admin: bool = False) -> dict[str, Any]:
    """
    Load a project the user may act on (owner or member).

    Raises:
        NotFoundError: Project missing
        UnauthorizedError: User is neither owner nor member
    """
    project = get_project(project_id)
    if is_admin:
        return project
    if str(project.get("owner_id")) == str(user_id):
        return project
    if is_project_member(project_id, user_id):
        return project
    raise UnauthorizedError(f"No access to project {project_id}")
