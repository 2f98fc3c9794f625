"""Framework templates and project framework snapshots."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from app.core.errors import BadRequestError, InternalError, NotFoundError
from app.core.logging import get_logger
from app.core.schemas_frameworks import FrameworkZonesOverview, ZoneNodeTitle, ZoneOverview
from app.core.zone_affinity import strongest_zone
from app.db.supabase_client import first_row, get_supabase

logger = get_logger(__name__)


# ============================================================================
# Framework templates
# ============================================================================


def list_frameworks(user_id: UUID | None = None) -> list[dict[str, Any]]:
    """
    List active frameworks visible to a user.

    Platform frameworks (no owner) come first, then the user's own.
    """
    supabase = get_supabase()

    platform = (
        supabase.table("frameworks")
        .select("*")
        .is_("owner_id", "null")
        .eq("is_active", True)
        .order("created_at")
        .execute()
    )
    frameworks = list(platform.data or [])

    if user_id:
        own = (
            supabase.table("frameworks")
            .select("*")
            .eq("owner_id", str(user_id))
            .eq("is_active", True)
            .order("created_at")
            .execute()
        )
        frameworks.extend(own.data or [])

    return frameworks


def get_framework_with_zones(framework_id: UUID) -> dict[str, Any]:
    """
    Get a framework template with its zones ordered by display_order.

    Raises:
        NotFoundError: If the framework does not exist
    """
    supabase = get_supabase()

    framework = first_row(
        supabase.table("frameworks").select("*").eq("id", str(framework_id)).limit(1).execute()
    )
    if not framework:
        raise NotFoundError(f"Framework {framework_id} not found")

    zones = (
        supabase.table("framework_zones")
        .select("*")
        .eq("framework_id", str(framework_id))
        .order("display_order")
        .execute()
    )
    return {**framework, "zones": zones.data or []}


# ============================================================================
# Project framework snapshots
# ============================================================================


def get_project_framework(project_framework_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()
    return first_row(
        supabase.table("project_frameworks")
        .select("*")
        .eq("id", str(project_framework_id))
        .limit(1)
        .execute()
    )


def list_project_framework_zones(project_framework_id: UUID) -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = (
        supabase.table("project_framework_zones")
        .select("*")
        .eq("project_framework_id", str(project_framework_id))
        .order("display_order")
        .execute()
    )
    return response.data or []


def get_project_framework_with_zones(project_framework_id: UUID) -> dict[str, Any] | None:
    """Project framework snapshot with zones ordered by display_order, or None."""
    framework = get_project_framework(project_framework_id)
    if not framework:
        return None
    return {**framework, "zones": list_project_framework_zones(project_framework_id)}


def get_active_project_framework(project_id: UUID) -> dict[str, Any] | None:
    supabase = get_supabase()
    return first_row(
        supabase.table("project_frameworks")
        .select("*")
        .eq("project_id", str(project_id))
        .eq("is_active", True)
        .limit(1)
        .execute()
    )


def activate_project_framework(project_id: UUID, project_framework_id: UUID) -> dict[str, Any]:
    """
    Make one project framework the active one.

    Deactivating the others and activating the target run in a single
    Postgres function so a project never has two active frameworks.
    """
    supabase = get_supabase()
    row = first_row(
        supabase.rpc(
            "activate_project_framework",
            {
                "p_project_id": str(project_id),
                "p_project_framework_id": str(project_framework_id),
            },
        ).execute()
    )
    if not row:
        raise NotFoundError(
            f"Project framework {project_framework_id} not found in project {project_id}"
        )

    logger.info(
        "Activated project framework",
        extra={"project_id": str(project_id), "project_framework_id": str(project_framework_id)},
    )
    return row


def find_project_framework_by_source(project_id: UUID, framework_id: UUID) -> dict[str, Any] | None:
    """Most recent snapshot of a template in a project, if any."""
    supabase = get_supabase()
    return first_row(
        supabase.table("project_frameworks")
        .select("*")
        .eq("project_id", str(project_id))
        .eq("source_framework_id", str(framework_id))
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )


def _discard_snapshot(project_framework_id: str) -> None:
    supabase = get_supabase()
    try:
        supabase.table("project_framework_zones").delete().eq(
            "project_framework_id", project_framework_id
        ).execute()
        supabase.table("project_frameworks").delete().eq("id", project_framework_id).execute()
    except Exception as e:
        logger.error(
            f"Failed to discard partial snapshot: {e}",
            extra={"project_framework_id": project_framework_id},
        )


def create_project_framework_snapshot(project_id: UUID, framework_id: UUID) -> dict[str, Any]:
    """
    Copy a framework template into the project and activate the copy.

    The snapshot keeps source_framework_id / source_zone_id back-references
    but is independent of later template edits. If copying the zones or
    activating fails, the partial snapshot is deleted before the error
    propagates, so a later adoption never reuses a framework without zones.

    Returns:
        The new project framework with its zones
    """
    supabase = get_supabase()
    template = get_framework_with_zones(framework_id)
    framework_row = None

    try:
        framework_row = first_row(
            supabase.table("project_frameworks")
            .insert(
                {
                    "project_id": str(project_id),
                    "source_framework_id": str(framework_id),
                    "framework_slug": template.get("slug"),
                    "name": template["name"],
                    "description": template.get("description"),
                    "icon": template.get("icon"),
                    "is_active": False,
                }
            )
            .execute()
        )
        if not framework_row:
            raise InternalError("No data returned from project_frameworks insert")

        zone_rows = [
            {
                "project_framework_id": framework_row["id"],
                "source_zone_id": zone["id"],
                "zone_key": zone["zone_key"],
                "name": zone["name"],
                "description": zone.get("description"),
                "color_key": zone.get("color_key"),
                "display_order": zone.get("display_order", index),
            }
            for index, zone in enumerate(template["zones"])
        ]
        if zone_rows:
            supabase.table("project_framework_zones").insert(zone_rows).execute()

        activated = activate_project_framework(project_id, framework_row["id"])

    except Exception as e:
        logger.error(
            f"Failed to snapshot framework {framework_id}: {e}",
            extra={"project_id": str(project_id)},
        )
        if framework_row:
            _discard_snapshot(framework_row["id"])
        raise

    logger.info(
        f"Snapshotted framework '{template['name']}' with {len(zone_rows)} zones",
        extra={"project_id": str(project_id), "project_framework_id": framework_row["id"]},
    )
    return {**activated, "zones": list_project_framework_zones(framework_row["id"])}


def ensure_project_framework(
    project_id: UUID,
    project_framework_id: UUID | None = None,
) -> dict[str, Any]:
    """
    Resolve the project framework an operation should run against.

    Order: the explicit id (must belong to the project), else the active
    framework, else a fresh snapshot of the project's default framework.

    Raises:
        NotFoundError: Explicit id or project missing
        BadRequestError: Explicit id belongs to another project, or the
            project has no framework to provision from
    """
    from app.db.projects import get_project

    if project_framework_id:
        framework = get_project_framework_with_zones(project_framework_id)
        if not framework:
            raise NotFoundError(f"Project framework {project_framework_id} not found")
        if str(framework["project_id"]) != str(project_id):
            raise BadRequestError(
                f"Project framework {project_framework_id} does not belong to project {project_id}"
            )
        return framework

    active = get_active_project_framework(project_id)
    if active:
        return {**active, "zones": list_project_framework_zones(active["id"])}

    project = get_project(project_id)
    default_framework_id = project.get("default_framework_id")
    if not default_framework_id:
        raise BadRequestError(
            f"Project {project_id} has no framework; adopt one before running analysis"
        )

    logger.info(
        "Provisioning project framework from default framework",
        extra={"project_id": str(project_id), "framework_id": str(default_framework_id)},
    )
    return create_project_framework_snapshot(project_id, default_framework_id)


# ============================================================================
# Agent views
# ============================================================================


def list_root_nodes(project_id: UUID) -> list[dict[str, Any]]:
    """Root canvas nodes of a project ordered by display_order."""
    supabase = get_supabase()
    response = (
        supabase.table("canvas_nodes")
        .select("id,title,display_order,zone_affinities")
        .eq("project_id", str(project_id))
        .is_("parent_id", "null")
        .order("display_order")
        .execute()
    )
    return response.data or []


def get_zones_with_node_titles(project_framework_id: UUID) -> FrameworkZonesOverview:
    """
    Zone list with the titles of the root nodes placed in each zone.

    A root node belongs to its strongest zone for this framework; root
    nodes with no map for this framework are listed as unassigned.

    Raises:
        NotFoundError: If the project framework does not exist
    """
    framework = get_project_framework_with_zones(project_framework_id)
    if not framework:
        raise NotFoundError(f"Project framework {project_framework_id} not found")

    zones = framework["zones"]
    zone_order = [z["zone_key"] for z in zones]
    by_zone: dict[str, list[ZoneNodeTitle]] = {key: [] for key in zone_order}
    unassigned: list[ZoneNodeTitle] = []

    for node in list_root_nodes(framework["project_id"]):
        weights = (node.get("zone_affinities") or {}).get(str(project_framework_id))
        best = strongest_zone(weights, zone_order)
        entry = ZoneNodeTitle(id=node["id"], title=node["title"])
        if best is None:
            unassigned.append(entry)
        else:
            by_zone[best].append(entry)

    return FrameworkZonesOverview(
        project_framework_id=project_framework_id,
        framework_name=framework["name"],
        zones=[
            ZoneOverview(
                zone_key=z["zone_key"],
                name=z["name"],
                description=z.get("description"),
                display_order=z.get("display_order", 0),
                nodes=by_zone[z["zone_key"]],
            )
            for z in zones
        ],
        unassigned_nodes=unassigned,
    )


# ============================================================================
# Health persistence
# ============================================================================


def upsert_dimension_score(
    project_framework_id: UUID,
    dimension_key: str,
    score: float,
    dimension_name: str | None = None,
    insights: str | None = None,
) -> dict[str, Any]:
    supabase = get_supabase()
    row = first_row(
        supabase.table("project_framework_dimension_scores")
        .upsert(
            {
                "project_framework_id": str(project_framework_id),
                "dimension_key": dimension_key,
                "dimension_name": dimension_name,
                "score": score,
                "insights": insights,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            },
            on_conflict="project_framework_id,dimension_key",
        )
        .execute()
    )
    if not row:
        raise InternalError("No data returned from upsert_dimension_score")
    return row


def list_dimension_scores(project_framework_id: UUID) -> list[dict[str, Any]]:
    supabase = get_supabase()
    response = (
        supabase.table("project_framework_dimension_scores")
        .select("*")
        .eq("project_framework_id", str(project_framework_id))
        .execute()
    )
    return response.data or []


def update_project_framework_health(
    project_framework_id: UUID,
    health_score: float,
    insights: list[str] | None = None,
) -> dict[str, Any]:
    """Persist the aggregate health score and narrative insights."""
    supabase = get_supabase()
    updates: dict[str, Any] = {
        "health_score": health_score,
        "last_health_check_at": datetime.now(timezone.utc).isoformat(),
    }
    if insights is not None:
        updates["insights"] = insights

    row = first_row(
        supabase.table("project_frameworks")
        .update(updates)
        .eq("id", str(project_framework_id))
        .execute()
    )
    if not row:
        raise NotFoundError(f"Project framework {project_framework_id} not found")

    logger.info(
        f"Framework health updated to {health_score}",
        extra={"project_framework_id": str(project_framework_id)},
    )
    return row
