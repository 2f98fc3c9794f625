"""Pydantic schemas for canvas nodes, zone affinities and layout."""

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Enums
# ============================================================================


class NodeType(str, Enum):
    DOCUMENT = "document"
    IDEA = "idea"
    TASK = "task"
    INSPIRATION = "inspiration"


class NodeActivityType(str, Enum):
    """Activity rows written when a suggestion mutates a node."""
    CREATED = "created"
    UPDATED = "updated"
    TAG_ADDED = "tag_added"


# ============================================================================
# Zone affinities
# ============================================================================


def _check_weights(weights: dict[str, float]) -> dict[str, float]:
    for zone_key, weight in weights.items():
        if not zone_key:
            raise ValueError("zone key must be non-empty")
        if weight < 0 or weight > 1:
            raise ValueError(f"weight for zone '{zone_key}' must be within [0, 1], got {weight}")
    return weights


class AffinityUpdate(BaseModel):
    """Replace a node's affinity map for one project framework."""
    project_framework_id: UUID
    affinities: dict[str, float]

    @field_validator("affinities")
    @classmethod
    def weights_in_range(cls, v: dict[str, float]) -> dict[str, float]:
        return _check_weights(v)


class NodeAffinitiesResponse(BaseModel):
    node_id: UUID
    project_framework_id: UUID
    affinities: dict[str, float] = Field(default_factory=dict)


class ProjectAffinitiesResponse(BaseModel):
    project_id: UUID
    project_framework_id: UUID
    affinities: dict[str, dict[str, float]] = Field(default_factory=dict)


class PopulateAffinitiesRequest(BaseModel):
    project_id: UUID
    project_framework_id: UUID


class PopulateAffinitiesResponse(BaseModel):
    updated: int
    skipped: int
    total_root_nodes: int
    zone_count: int


# ============================================================================
# Layout
# ============================================================================


class NodePosition(BaseModel):
    node_id: UUID
    x: float
    y: float


class PositionsUpdate(BaseModel):
    """Persist manual position overrides for one project framework."""
    project_framework_id: UUID
    positions: list[NodePosition] = Field(..., min_length=1)


class ClearPositionsRequest(BaseModel):
    """Bulk-delete position overrides; scoped to one framework when given."""
    project_framework_id: Optional[UUID] = None


class ZoneBounds(BaseModel):
    zone_key: str
    name: str
    x: float
    y: float
    width: float
    height: float


class CanvasLayoutResponse(BaseModel):
    project_framework_id: UUID
    zones: list[ZoneBounds] = Field(default_factory=list)
    positions: dict[str, NodePosition] = Field(default_factory=dict)
    overridden: list[UUID] = Field(default_factory=list)
