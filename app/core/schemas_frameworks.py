"""Pydantic schemas for frameworks, zones and project framework snapshots."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Framework templates
# ============================================================================


class FrameworkZone(BaseModel):
    """A zone of a framework template."""
    id: UUID
    framework_id: UUID
    zone_key: str
    name: str
    description: Optional[str] = None
    color_key: Optional[str] = None
    display_order: int = 0


class Framework(BaseModel):
    """Framework template. Platform-owned when owner_id is None."""
    id: UUID
    slug: Optional[str] = None
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    owner_id: Optional[UUID] = None
    is_active: bool = True
    created_at: Optional[datetime] = None


class FrameworkWithZones(Framework):
    zones: list[FrameworkZone] = Field(default_factory=list)


# ============================================================================
# Project framework snapshots
# ============================================================================


class ProjectFrameworkZone(BaseModel):
    """Zone copied into a project framework snapshot."""
    id: UUID
    project_framework_id: UUID
    source_zone_id: Optional[UUID] = None
    zone_key: str
    name: str
    description: Optional[str] = None
    color_key: Optional[str] = None
    display_order: int = 0


class ProjectFramework(BaseModel):
    """Project-scoped snapshot of a framework, independently scorable."""
    id: UUID
    project_id: UUID
    source_framework_id: Optional[UUID] = None
    framework_slug: Optional[str] = None
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    is_active: bool = False
    health_score: Optional[float] = None
    insights: list[str] = Field(default_factory=list)
    last_health_check_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @field_validator("insights", mode="before")
    @classmethod
    def none_insights(cls, v: Any) -> Any:
        return v or []


class ProjectFrameworkWithZones(ProjectFramework):
    zones: list[ProjectFrameworkZone] = Field(default_factory=list)


class AdoptFrameworkRequest(BaseModel):
    """Switch a project to a framework (sets default, snapshots, activates)."""
    framework_id: UUID


# ============================================================================
# Health dimensions
# ============================================================================


class DimensionScore(BaseModel):
    """Persisted score for one health dimension of a project framework."""
    project_framework_id: UUID
    dimension_key: str
    dimension_name: Optional[str] = None
    score: float = Field(..., ge=0, le=100)
    insights: Optional[str] = None
    updated_at: Optional[datetime] = None


# ============================================================================
# Agent-facing views
# ============================================================================


class ZoneNodeTitle(BaseModel):
    id: UUID
    title: str


class ZoneOverview(BaseModel):
    """Zone with the titles of the root nodes placed in it."""
    zone_key: str
    name: str
    description: Optional[str] = None
    display_order: int = 0
    nodes: list[ZoneNodeTitle] = Field(default_factory=list)


class FrameworkZonesOverview(BaseModel):
    project_framework_id: UUID
    framework_name: str
    zones: list[ZoneOverview] = Field(default_factory=list)
    unassigned_nodes: list[ZoneNodeTitle] = Field(default_factory=list)

    def to_tool_result(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ProjectFrameworkDetail(ProjectFrameworkWithZones):
    """Active project framework as the canvas loads it."""
    dimension_scores: list[DimensionScore] = Field(default_factory=list)
