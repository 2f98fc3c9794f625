"""Pydantic schemas for health-analysis sessions and their event stream."""

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class AnalysisStatus(str, Enum):
    """idle → starting → analyzing → completed | error. Cancel returns to idle."""
    IDLE = "idle"
    STARTING = "starting"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    ERROR = "error"


class StreamEventType(str, Enum):
    """Fixed set of event types on the analysis stream."""
    APPEND_MESSAGE = "data-appendMessage"
    DIMENSION_SCORE = "data-dimension-score"
    FRAMEWORK_HEALTH = "data-framework-health"
    HEALTH_SUGGESTION = "data-health-suggestion"
    NODE_UPDATED = "data-node-updated"
    STATUS = "data-status"
    FINISH = "finish"
    ERROR = "error"


class ChatType(str, Enum):
    DEFAULT = "default"
    HEALTH_ANALYSIS = "health-analysis"


class ChatStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


# ============================================================================
# Requests / responses
# ============================================================================


class StartAnalysisRequest(BaseModel):
    project_id: UUID
    project_framework_id: Optional[UUID] = None


class StartAnalysisResponse(BaseModel):
    chat_id: UUID
    project_framework_id: UUID
    initial_message: str


class AnalysisChatRequest(BaseModel):
    """Body of POST /health-analysis/chat. ``id`` is the chat id."""
    id: UUID
    message: str = Field(default="请开始分析框架健康度", min_length=1)


class CancelAnalysisRequest(BaseModel):
    chat_id: UUID


class CancelAnalysisResponse(BaseModel):
    chat_id: UUID
    cancelled: bool
    status: AnalysisStatus


# ============================================================================
# Tool inputs
# ============================================================================


class UpdateFrameworkHealthInput(BaseModel):
    dimension_scores: dict[str, float] = Field(..., min_length=1)
    overall_score: float = Field(..., ge=0, le=100)
    insights: str = ""


class AdditionalZone(BaseModel):
    zone_name: str = Field(..., min_length=1)
    weight: float = Field(..., ge=0, le=1)


class AssignNodeToZoneInput(BaseModel):
    """Zones are named by display name (e.g. 增长指标), matched case-insensitively."""
    node_id: UUID
    zone_name: str = Field(..., min_length=1)
    primary_weight: float = Field(default=0.9, ge=0, le=1)
    additional_zones: list[AdditionalZone] = Field(default_factory=list)
