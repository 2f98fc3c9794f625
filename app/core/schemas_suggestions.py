"""Pydantic schemas for canvas suggestions.

``action_params`` is a tagged union keyed by the suggestion ``type``: each
type has its own params model and ``SuggestionCreate`` validates the matching
branch when the suggestion is created, so a malformed payload never reaches
the executor.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from app.core.schemas_canvas import NodeType


# ============================================================================
# Enums
# ============================================================================


class SuggestionType(str, Enum):
    ADD_NODE = "add-node"
    ADD_TAG = "add-tag"
    REFINE_CONTENT = "refine-content"
    CONTENT_SUGGESTION = "content-suggestion"
    HEALTH_ISSUE = "health-issue"


class SuggestionStatus(str, Enum):
    """pending → accepted | pending → dismissed. Both terminal."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"


class SuggestionPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SuggestionSource(str, Enum):
    AI_HEALTH_CHECK = "ai-health-check"
    API = "api"


# Types whose accept transition waits for an explicit accept event
DEFERRED_ACCEPT_TYPES = frozenset(
    {SuggestionType.CONTENT_SUGGESTION, SuggestionType.HEALTH_ISSUE}
)

# Types that act on an existing node and cannot be global
NODE_REQUIRED_TYPES = frozenset(
    {
        SuggestionType.ADD_TAG,
        SuggestionType.REFINE_CONTENT,
        SuggestionType.CONTENT_SUGGESTION,
    }
)


# ============================================================================
# Action params (one model per type)
# ============================================================================


class AddNodeParams(BaseModel):
    """New node to create. target_zone may be a zone key or a display name."""
    title: str = Field(..., min_length=1)
    content: str = ""
    type: NodeType = NodeType.IDEA
    tags: list[str] = Field(default_factory=list)
    target_zone: Optional[str] = None
    project_framework_id: Optional[UUID] = None


class AddTagParams(BaseModel):
    tags: list[str] = Field(..., min_length=1)

    @field_validator("tags")
    @classmethod
    def strip_tags(cls, v: list[str]) -> list[str]:
        cleaned = [t.strip() for t in v if t and t.strip()]
        if not cleaned:
            raise ValueError("at least one non-empty tag is required")
        return cleaned


class RefineContentParams(BaseModel):
    refined_content: str = Field(..., min_length=1)


class ContentSuggestionParams(BaseModel):
    """
    Conversational optimization of one node.

    suggested_content, when present, replaces the node content on execute;
    the suggestion points always feed the follow-up chat prompt.
    """
    suggestion_points: list[str] = Field(..., min_length=1)
    suggested_content: Optional[str] = None
    prompt_template: Optional[str] = None


class HealthIssueParams(BaseModel):
    dimension_key: Optional[str] = None
    severity: Optional[SuggestionPriority] = None


ACTION_PARAMS_MODELS: dict[SuggestionType, type[BaseModel]] = {
    SuggestionType.ADD_NODE: AddNodeParams,
    SuggestionType.ADD_TAG: AddTagParams,
    SuggestionType.REFINE_CONTENT: RefineContentParams,
    SuggestionType.CONTENT_SUGGESTION: ContentSuggestionParams,
    SuggestionType.HEALTH_ISSUE: HealthIssueParams,
}


def parse_action_params(suggestion_type: SuggestionType | str, params: dict[str, Any] | None) -> BaseModel:
    """
    Validate action params against the branch for ``suggestion_type``.

    Raises:
        ValueError: Unknown type or params that do not fit the branch
    """
    try:
        stype = SuggestionType(suggestion_type)
    except ValueError:
        raise ValueError(f"unsupported suggestion type: {suggestion_type}") from None

    model = ACTION_PARAMS_MODELS[stype]
    try:
        return model.model_validate(params or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'action_params'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValueError(f"invalid action_params for {stype.value}: {problems}") from None


# ============================================================================
# Suggestion models
# ============================================================================


class SuggestionCreate(BaseModel):
    """Input for creating a suggestion (agent tool or API)."""
    project_id: UUID
    project_framework_id: Optional[UUID] = None
    node_id: Optional[UUID] = None
    chat_id: Optional[UUID] = None
    type: SuggestionType
    title: str = Field(..., min_length=1)
    description: str = ""
    reason: Optional[str] = None
    priority: SuggestionPriority = SuggestionPriority.MEDIUM
    action_params: dict[str, Any] = Field(default_factory=dict)
    source: SuggestionSource = SuggestionSource.API

    @model_validator(mode="after")
    def validate_branch(self) -> "SuggestionCreate":
        parsed = parse_action_params(self.type, self.action_params)
        if self.type in NODE_REQUIRED_TYPES and self.node_id is None:
            raise ValueError(f"node_id is required for {self.type.value} suggestions")
        self.action_params = parsed.model_dump(mode="json", exclude_none=True)
        return self


class SuggestionCreateRequest(BaseModel):
    """API body for POST /canvas/suggestions (project taken from the body)."""
    project_id: UUID
    project_framework_id: Optional[UUID] = None
    node_id: Optional[UUID] = None
    type: str
    title: str
    description: str = ""
    reason: Optional[str] = None
    priority: SuggestionPriority = SuggestionPriority.MEDIUM
    action_params: dict[str, Any] = Field(default_factory=dict)


class CanvasSuggestion(BaseModel):
    """Stored suggestion row. ``type`` stays a plain string so rows with an
    unknown type can still be loaded and rejected at execute time."""
    id: UUID
    project_id: UUID
    project_framework_id: Optional[UUID] = None
    node_id: Optional[UUID] = None
    chat_id: Optional[UUID] = None
    type: str
    title: str
    description: str = ""
    reason: Optional[str] = None
    priority: SuggestionPriority = SuggestionPriority.MEDIUM
    action_params: dict[str, Any] = Field(default_factory=dict)
    source: Optional[str] = None
    status: SuggestionStatus = SuggestionStatus.PENDING
    applied_at: Optional[datetime] = None
    applied_by_id: Optional[UUID] = None
    dismissed_at: Optional[datetime] = None
    dismissed_by_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("action_params", mode="before")
    @classmethod
    def none_params(cls, v: Any) -> Any:
        return v or {}

    @property
    def is_global(self) -> bool:
        return self.node_id is None


class SuggestionListResponse(BaseModel):
    suggestions: list[CanvasSuggestion]
    total: int


class ApplySuggestionResponse(BaseModel):
    """Result of executing a suggestion."""
    success: bool
    type: str
    status: SuggestionStatus
    affected_node_id: Optional[UUID] = None
    result: dict[str, Any] = Field(default_factory=dict)


class DismissSuggestionRequest(BaseModel):
    """Legacy body for POST /canvas/suggestion/dismiss."""
    suggestion_id: UUID
