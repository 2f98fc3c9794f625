"""Zone-affinity model.

A node's zone_affinities column maps project_framework_id → {zone_key: weight}.
Weights sit in [0, 1] and are not normalized: a node may spread weight over
several zones of one framework (soft clustering) and carry independent maps
for other frameworks. Everything here is pure; persistence lives in
app.db.canvas_nodes.
"""

from typing import Any, Iterable, Mapping

from app.core.errors import BadRequestError

PRIMARY_WEIGHT = 0.8
NEIGHBOR_WEIGHT = 0.2


def default_affinities(index: int, zone_keys: list[str]) -> dict[str, float]:
    """
    Round-robin default for the index-th node being populated.

    Primary zone is ``index % len(zone_keys)`` at 0.8; its predecessor and
    successor in the ordered zone list (circular) get 0.2 each. With fewer
    than three zones the neighbours collapse and the primary keeps 0.8.

    Raises:
        BadRequestError: If there are no zones to distribute across
    """
    if not zone_keys:
        raise BadRequestError("Framework has no zones; cannot distribute affinities")

    count = len(zone_keys)
    primary = index % count
    affinities = {
        zone_keys[(primary - 1) % count]: NEIGHBOR_WEIGHT,
        zone_keys[(primary + 1) % count]: NEIGHBOR_WEIGHT,
    }
    affinities[zone_keys[primary]] = PRIMARY_WEIGHT
    return affinities


def has_affinities(node: Mapping[str, Any], project_framework_id: str) -> bool:
    """True when the node already holds a non-empty map for this framework."""
    existing = (node.get("zone_affinities") or {}).get(str(project_framework_id))
    return bool(existing)


def plan_default_affinities(
    root_nodes: Iterable[Mapping[str, Any]],
    zone_keys: list[str],
    project_framework_id: str,
) -> tuple[dict[str, dict[str, float]], int]:
    """
    Compute default maps for root nodes lacking one for this framework.

    Nodes are taken in the given order (callers pass display_order); the
    round-robin index counts only nodes that receive a default, so results
    are reproducible for the same starting data.

    Returns:
        (updates keyed by node id, number of nodes skipped)
    """
    if not zone_keys:
        raise BadRequestError("Framework has no zones; cannot distribute affinities")

    updates: dict[str, dict[str, float]] = {}
    skipped = 0
    for node in root_nodes:
        if has_affinities(node, project_framework_id):
            skipped += 1
            continue
        updates[str(node["id"])] = default_affinities(len(updates), zone_keys)
    return updates, skipped


def validate_weights(weights: Mapping[str, float]) -> None:
    for zone_key, weight in weights.items():
        if weight < 0 or weight > 1:
            raise BadRequestError(
                f"Affinity weight for zone '{zone_key}' must be within [0, 1], got {weight}"
            )


def strongest_zone(weights: Mapping[str, float] | None, zone_order: list[str]) -> str | None:
    """
    Zone with the highest weight among known zones.

    Ties keep the zone that comes first in display order; zero weights and
    keys not in zone_order never win.
    """
    if not weights:
        return None
    best_key = None
    best_weight = 0.0
    for zone_key in zone_order:
        weight = weights.get(zone_key, 0.0)
        if weight > best_weight:
            best_key = zone_key
            best_weight = weight
    return best_key


def match_zone_names(
    zones: Iterable[Mapping[str, Any]],
    display_names: Iterable[str],
) -> dict[str, str]:
    """
    Resolve display names to zone keys.

    Exact match on the zone name first, then a case-insensitive match.
    Unresolved names are left out of the result; callers detect them by
    absence and must report them.
    """
    exact: dict[str, str] = {}
    folded: dict[str, str] = {}
    for zone in zones:
        name = zone.get("name")
        key = zone.get("zone_key")
        if not name or not key:
            continue
        exact.setdefault(name, key)
        folded.setdefault(name.casefold(), key)

    resolved: dict[str, str] = {}
    for display_name in display_names:
        key = exact.get(display_name) or folded.get(display_name.casefold())
        if key:
            resolved[display_name] = key
    return resolved


def require_zone_keys(resolved: Mapping[str, str], display_names: Iterable[str]) -> None:
    """Fail fast naming the first display name that did not resolve."""
    for display_name in display_names:
        if display_name not in resolved:
            raise BadRequestError(f"Zone '{display_name}' not found in framework")
