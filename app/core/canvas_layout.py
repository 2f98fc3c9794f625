"""Affinity-driven canvas layout.

Pure functions that place root nodes into a grid of zones from their
zone_affinities. Server-side there is no measured DOM, so every node is laid
out at DEFAULT_NODE_HEIGHT; clients may re-flow with real heights, and
persisted position overrides always win over computed positions.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from app.core.schemas_canvas import CanvasLayoutResponse, NodePosition, ZoneBounds
from app.core.zone_affinity import strongest_zone

# Zone layout
ZONE_WIDTH = 800
ZONE_GAP = 20
ZONE_ROW_GAP = 80

# Node layout
NODE_WIDTH = 320
COLUMN_GAP = 80
VERTICAL_GAP = 30
DEFAULT_NODE_HEIGHT = 280

# Zone internals
ZONE_HEADER_HEIGHT = 90
ZONE_PADDING = 40
MIN_ZONE_HEIGHT = ZONE_HEADER_HEIGHT + ZONE_PADDING * 2
COLUMNS_PER_ZONE = 2

UNASSIGNED_GAP = 100


@dataclass
class _ZoneSlot:
    zone_key: str
    name: str
    row: int
    x: float
    node_ids: list[str] = field(default_factory=list)
    # y positions relative to the zone top
    relative_positions: dict[str, tuple[float, float]] = field(default_factory=dict)
    height: float = MIN_ZONE_HEIGHT


def zones_per_row(zone_count: int) -> int:
    if zone_count <= 5:
        return zone_count
    if zone_count <= 8:
        return 4
    return 3


def zone_width(columns: int = COLUMNS_PER_ZONE) -> float:
    return columns * NODE_WIDTH + (columns - 1) * COLUMN_GAP + ZONE_PADDING


def _framework_weights(node: Mapping[str, Any], project_framework_id: str) -> dict[str, float]:
    return (node.get("zone_affinities") or {}).get(str(project_framework_id)) or {}


def _place_in_zone(slot: _ZoneSlot, ordered_ids: list[str]) -> None:
    column_y = [float(ZONE_HEADER_HEIGHT)] * COLUMNS_PER_ZONE
    for index, node_id in enumerate(ordered_ids):
        column = index % COLUMNS_PER_ZONE
        x = slot.x + column * (NODE_WIDTH + COLUMN_GAP)
        slot.relative_positions[node_id] = (x, column_y[column])
        column_y[column] += DEFAULT_NODE_HEIGHT + VERTICAL_GAP
    slot.height = max(max(column_y) + ZONE_PADDING, MIN_ZONE_HEIGHT)


def compute_layout(
    nodes: list[Mapping[str, Any]],
    zones: list[Mapping[str, Any]],
    project_framework_id: str,
    overrides: Mapping[str, tuple[float, float]] | None = None,
) -> CanvasLayoutResponse:
    """
    Lay out a project's nodes for one project framework.

    Args:
        nodes: Canvas node rows (id, parent_id, display_order, zone_affinities)
        zones: Project framework zones ordered by display_order
        project_framework_id: Framework whose affinity maps drive placement
        overrides: Persisted positions by node id; these replace computed ones

    Returns:
        Zone bounds, a position for every node, and the ids that were overridden
    """
    overrides = overrides or {}
    zone_order = [z["zone_key"] for z in zones]
    per_row = zones_per_row(len(zones)) or 1

    slots: dict[str, _ZoneSlot] = {}
    for index, zone in enumerate(zones):
        col = index % per_row
        slots[zone["zone_key"]] = _ZoneSlot(
            zone_key=zone["zone_key"],
            name=zone.get("name") or zone["zone_key"],
            row=index // per_row,
            x=ZONE_GAP + col * (ZONE_WIDTH + ZONE_GAP),
        )

    roots = [n for n in nodes if not n.get("parent_id")]
    roots.sort(key=lambda n: n.get("display_order") or 0)

    unassigned: list[str] = []
    for node in roots:
        best = strongest_zone(_framework_weights(node, project_framework_id), zone_order)
        if best is None:
            unassigned.append(str(node["id"]))
        else:
            slots[best].node_ids.append(str(node["id"]))

    for slot in slots.values():
        _place_in_zone(slot, slot.node_ids)

    # Uniform height per row, rows stacked with cumulative offsets
    row_heights: dict[int, float] = {}
    for slot in slots.values():
        row_heights[slot.row] = max(row_heights.get(slot.row, 0.0), slot.height)

    row_top: dict[int, float] = {}
    current_y = float(ZONE_GAP)
    for row in sorted(row_heights):
        row_top[row] = current_y
        current_y += row_heights[row] + ZONE_ROW_GAP

    positions: dict[str, NodePosition] = {}
    bounds: list[ZoneBounds] = []
    width = zone_width()
    for slot in slots.values():
        top = row_top[slot.row]
        bounds.append(
            ZoneBounds(
                zone_key=slot.zone_key,
                name=slot.name,
                x=slot.x,
                y=top,
                width=width,
                height=row_heights[slot.row],
            )
        )
        for node_id, (x, rel_y) in slot.relative_positions.items():
            positions[node_id] = NodePosition(node_id=node_id, x=x, y=top + rel_y)

    right_edge = max((b.x + b.width for b in bounds), default=0.0)
    unassigned_x = right_edge + UNASSIGNED_GAP
    y = float(ZONE_GAP + ZONE_HEADER_HEIGHT)
    for node_id in unassigned:
        positions[node_id] = NodePosition(node_id=node_id, x=unassigned_x, y=y)
        y += DEFAULT_NODE_HEIGHT + VERTICAL_GAP

    # Child nodes render inside their parent
    for node in nodes:
        node_id = str(node["id"])
        if node_id not in positions:
            positions[node_id] = NodePosition(node_id=node_id, x=0, y=0)

    overridden = []
    for node_id, (x, y) in overrides.items():
        if node_id in positions:
            positions[node_id] = NodePosition(node_id=node_id, x=x, y=y)
            overridden.append(node_id)

    return CanvasLayoutResponse(
        project_framework_id=project_framework_id,
        zones=bounds,
        positions=positions,
        overridden=overridden,
    )
