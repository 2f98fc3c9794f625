"""Types for Health-Analysis Agent runs and tool execution."""

from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.schemas_health_analysis import StreamEventType


class HealthAnalysisContext(BaseModel):
    """Scope every tool call of one analysis runs in."""

    project_id: UUID
    project_framework_id: UUID
    chat_id: UUID
    user_id: Optional[UUID] = None
    framework_slug: Optional[str] = None


class StreamEmission(BaseModel):
    """One event a tool wants pushed onto the analysis stream."""

    type: StreamEventType
    data: dict[str, Any] = Field(default_factory=dict)


class ToolExecution(BaseModel):
    """Result handed back to the model plus the events produced on the way."""

    tool_name: str
    result: dict[str, Any]
    events: list[StreamEmission] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return "error" in self.result


class AnalysisProgress(BaseModel):
    """
    Completion bookkeeping for the supervisor.

    An analysis is complete once a successful health update has happened
    after at least one successful exploration call.
    """

    exploration_calls: int = 0
    suggestions_created: int = 0
    health_updates_after_exploration: int = 0
    tool_errors: int = 0
    turns: int = 0
    nudges: int = 0

    @property
    def is_complete(self) -> bool:
        return self.health_updates_after_exploration > 0
