"""Zone-affinity persistence.

Maps live in canvas_nodes.zone_affinities as
{project_framework_id: {zone_key: weight}}. Writes go through the
set_node_zone_affinities function, which replaces one framework's entry with
a jsonb merge so concurrent writes for other frameworks are never lost.
"""

from typing import Any
from uuid import UUID

from app.core.errors import BadRequestError, NotFoundError
from app.core.logging import get_logger
from app.core.zone_affinity import match_zone_names, plan_default_affinities, validate_weights
from app.db.canvas_nodes import require_node
from app.db.frameworks import get_project_framework_with_zones, list_root_nodes
from app.db.supabase_client import get_supabase

logger = get_logger(__name__)


def set_node_affinities(
    node_id: UUID,
    project_framework_id: UUID,
    affinities: dict[str, float],
) -> dict[str, dict[str, float]]:
    """
    Replace (not merge) a node's affinity map for one framework.

    Returns:
        The node's full zone_affinities after the write

    Raises:
        BadRequestError: Weight outside [0, 1]
        NotFoundError: Node missing
    """
    validate_weights(affinities)
    supabase = get_supabase()

    response = supabase.rpc(
        "set_node_zone_affinities",
        {
            "p_node_id": str(node_id),
            "p_project_framework_id": str(project_framework_id),
            "p_affinities": affinities,
        },
    ).execute()

    if response.data is None:
        raise NotFoundError(f"Canvas node {node_id} not found")

    logger.info(
        f"Set {len(affinities)} zone affinities",
        extra={"node_id": str(node_id), "project_framework_id": str(project_framework_id)},
    )
    return response.data


def get_node_affinities(node_id: UUID, project_framework_id: UUID) -> dict[str, float]:
    node = require_node(node_id)
    return (node.get("zone_affinities") or {}).get(str(project_framework_id)) or {}


def list_project_affinities(project_id: UUID, project_framework_id: UUID) -> dict[str, dict[str, float]]:
    """{node_id: {zone_key: weight}} for every project node with a map for this framework."""
    supabase = get_supabase()
    response = (
        supabase.table("canvas_nodes")
        .select("id,zone_affinities")
        .eq("project_id", str(project_id))
        .execute()
    )
    result: dict[str, dict[str, float]] = {}
    for node in response.data or []:
        weights = (node.get("zone_affinities") or {}).get(str(project_framework_id))
        if weights:
            result[str(node["id"])] = weights
    return result


def _require_framework(project_framework_id: UUID) -> dict[str, Any]:
    framework = get_project_framework_with_zones(project_framework_id)
    if not framework:
        raise NotFoundError(f"Project framework {project_framework_id} not found")
    return framework


def populate_default_affinities(project_id: UUID, project_framework_id: UUID) -> dict[str, int]:
    """
    Give every root node without a map for this framework a round-robin default.

    Nodes that already hold a non-empty map are left alone, so re-running is
    a no-op for them.

    Raises:
        NotFoundError: Unknown project framework
        BadRequestError: Framework of another project, or one with no zones
    """
    framework = _require_framework(project_framework_id)
    if str(framework["project_id"]) != str(project_id):
        raise BadRequestError(
            f"Project framework {project_framework_id} does not belong to project {project_id}"
        )

    zone_keys = [z["zone_key"] for z in framework["zones"]]
    roots = list_root_nodes(project_id)
    updates, skipped = plan_default_affinities(roots, zone_keys, str(project_framework_id))

    for node_id, weights in updates.items():
        set_node_affinities(node_id, project_framework_id, weights)

    logger.info(
        f"Populated default affinities for {len(updates)} nodes ({skipped} skipped)",
        extra={"project_id": str(project_id), "project_framework_id": str(project_framework_id)},
    )
    return {
        "updated": len(updates),
        "skipped": skipped,
        "total_root_nodes": len(roots),
        "zone_count": len(zone_keys),
    }


def resolve_zone_keys_by_name(project_framework_id: UUID, display_names: list[str]) -> dict[str, str]:
    """
    Map human-readable zone names to zone keys.

    Exact match first, then case-insensitive. Names that do not resolve are
    absent from the result; callers check for absence and report them.

    Raises:
        NotFoundError: Unknown project framework
    """
    framework = _require_framework(project_framework_id)
    resolved = match_zone_names(framework["zones"], display_names)

    missing = [name for name in display_names if name not in resolved]
    if missing:
        logger.warning(
            f"Unresolved zone names: {', '.join(missing)}",
            extra={"project_framework_id": str(project_framework_id)},
        )
    return resolved
