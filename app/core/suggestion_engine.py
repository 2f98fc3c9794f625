"""Suggestion lifecycle engine.

States: pending → accepted | pending → dismissed, both terminal. Executing a
suggestion dispatches on its type. For types that mutate the canvas the
pending → accepted claim is taken (compare-and-set) before the mutation, so
concurrent apply requests cannot execute the same suggestion twice. Each
handler makes exactly one canvas write as its last fallible step, so a
failure means nothing changed and the claim is released back to pending.
Activity rows are written after that and never fail the execution.

content-suggestion and health-issue only prepare a follow-up chat: execute
leaves them pending and a separate accept event closes them.
"""

import asyncio
from typing import Any, Awaitable, Callable
from uuid import UUID

from app.core.errors import BadRequestError, ConflictError, NotFoundError
from app.core.logging import get_logger
from app.core.schemas_canvas import NodeActivityType
from app.core.schemas_suggestions import (
    DEFERRED_ACCEPT_TYPES,
    AddNodeParams,
    AddTagParams,
    ApplySuggestionResponse,
    CanvasSuggestion,
    ContentSuggestionParams,
    RefineContentParams,
    SuggestionCreate,
    SuggestionStatus,
    SuggestionType,
    parse_action_params,
)
from app.db import canvas_nodes, canvas_suggestions
from app.db.frameworks import get_project_framework, get_project_framework_with_zones
from app.db.zone_affinities import resolve_zone_keys_by_name

logger = get_logger(__name__)

ADD_NODE_ZONE_WEIGHT = 0.9

DEFAULT_CONTENT_PROMPT = """请帮我优化「{title}」这个节点的内容，重点关注以下几个方面：

{points}

当前内容：
```
{content}
```

请保持原有的结构和风格，主要是补充缺失的信息和优化表达。"""

HEALTH_ISSUE_PROMPT = "{title}\n\n{description}\n\n请帮我分析这个问题并给出具体的改进建议。"

ExecuteHandler = Callable[[CanvasSuggestion, Any, UUID | None], Awaitable[dict[str, Any]]]


# ============================================================================
# Create
# ============================================================================


def persist_suggestion(data: SuggestionCreate) -> dict[str, Any]:
    """
    Persist a suggestion as pending after checking its linkage.

    ``data`` has already validated action_params against its type branch;
    here the referenced node and framework must exist in the same project.

    Raises:
        BadRequestError: Node or framework belongs to another project
        NotFoundError: Node or framework missing
    """
    if data.node_id:
        node = canvas_nodes.require_node(data.node_id)
        if str(node["project_id"]) != str(data.project_id):
            raise BadRequestError(f"Node {data.node_id} does not belong to project {data.project_id}")

    if data.project_framework_id:
        framework = get_project_framework(data.project_framework_id)
        if not framework:
            raise NotFoundError(f"Project framework {data.project_framework_id} not found")
        if str(framework["project_id"]) != str(data.project_id):
            raise BadRequestError(
                f"Project framework {data.project_framework_id} does not belong to project {data.project_id}"
            )

    return canvas_suggestions.insert_suggestion(data)


async def create_suggestion(data: SuggestionCreate) -> dict[str, Any]:
    return await asyncio.to_thread(persist_suggestion, data)


# ============================================================================
# Execute handlers
# ============================================================================


def _target_node(suggestion: CanvasSuggestion) -> dict[str, Any]:
    if not suggestion.node_id:
        raise BadRequestError(f"node_id is required for {suggestion.type} suggestions")
    node = canvas_nodes.require_node(suggestion.node_id)
    if str(node["project_id"]) != str(suggestion.project_id):
        raise BadRequestError(f"Node {suggestion.node_id} does not belong to the suggestion's project")
    return node


def _record_activity(**activity: Any) -> None:
    # Runs after the canvas mutation; a failure here must not release the claim
    try:
        canvas_nodes.create_activity(**activity)
    except Exception as e:
        logger.warning(
            f"Failed to record node activity (non-fatal): {e}",
            extra={"node_id": str(activity.get("node_id")), "project_id": str(activity.get("project_id"))},
        )


def _resolve_target_zone(project_framework_id: UUID, target_zone: str) -> str:
    """Accept a zone key or a display name; fail naming the zone otherwise."""
    framework = get_project_framework_with_zones(project_framework_id)
    if not framework:
        raise NotFoundError(f"Project framework {project_framework_id} not found")
    if any(z["zone_key"] == target_zone for z in framework["zones"]):
        return target_zone

    resolved = resolve_zone_keys_by_name(project_framework_id, [target_zone])
    if target_zone not in resolved:
        raise BadRequestError(f"Zone '{target_zone}' not found in framework")
    return resolved[target_zone]


async def _execute_add_node(
    suggestion: CanvasSuggestion, params: AddNodeParams, user_id: UUID | None
) -> dict[str, Any]:
    framework_id = params.project_framework_id or suggestion.project_framework_id

    zone_affinities: dict[str, dict[str, float]] = {}
    zone_key = None
    if params.target_zone:
        if not framework_id:
            raise BadRequestError("target_zone requires a project_framework_id")
        zone_key = _resolve_target_zone(framework_id, params.target_zone)
        zone_affinities[str(framework_id)] = {zone_key: ADD_NODE_ZONE_WEIGHT}

    if suggestion.node_id:
        _target_node(suggestion)

    node = canvas_nodes.create_node(
        project_id=suggestion.project_id,
        title=params.title,
        content=params.content,
        node_type=params.type.value,
        tags=params.tags,
        parent_id=suggestion.node_id,
        created_by_id=user_id,
        zone_affinities=zone_affinities,
    )

    _record_activity(
        node_id=node["id"],
        project_id=suggestion.project_id,
        activity_type=NodeActivityType.CREATED.value,
        description=f"Created from suggestion: {suggestion.title}",
        user_id=user_id,
    )
    if suggestion.node_id:
        _record_activity(
            node_id=suggestion.node_id,
            project_id=suggestion.project_id,
            activity_type=NodeActivityType.UPDATED.value,
            description=f"Created related node: {params.title}",
            user_id=user_id,
            details=f"Applied suggestion: {suggestion.title}",
        )

    return {
        "affected_node_id": node["id"],
        "new_node_id": node["id"],
        "new_node_title": node["title"],
        "linked_to_node": str(suggestion.node_id) if suggestion.node_id else None,
        "target_zone": zone_key,
        "zone_affinities": zone_affinities,
    }


async def _execute_add_tag(
    suggestion: CanvasSuggestion, params: AddTagParams, user_id: UUID | None
) -> dict[str, Any]:
    node = _target_node(suggestion)
    existing = list(node.get("tags") or [])
    added = [t for t in dict.fromkeys(params.tags) if t not in existing]
    all_tags = existing + added

    if added:
        canvas_nodes.update_node(node["id"], {"tags": all_tags})
        _record_activity(
            node_id=node["id"],
            project_id=suggestion.project_id,
            activity_type=NodeActivityType.TAG_ADDED.value,
            description=f"Added tags: {', '.join(added)}",
            user_id=user_id,
            details=f"Applied suggestion: {suggestion.title}",
        )

    return {"affected_node_id": node["id"], "added_tags": added, "all_tags": all_tags}


async def _execute_refine_content(
    suggestion: CanvasSuggestion, params: RefineContentParams, user_id: UUID | None
) -> dict[str, Any]:
    node = _target_node(suggestion)
    canvas_nodes.update_node(node["id"], {"content": params.refined_content})
    _record_activity(
        node_id=node["id"],
        project_id=suggestion.project_id,
        activity_type=NodeActivityType.UPDATED.value,
        description="Refined content using AI suggestion",
        user_id=user_id,
        details=f"Applied suggestion: {suggestion.title}",
    )
    return {
        "affected_node_id": node["id"],
        "original_content": node.get("content") or "",
        "refined_content": params.refined_content,
    }


async def _execute_content_suggestion(
    suggestion: CanvasSuggestion, params: ContentSuggestionParams, user_id: UUID | None
) -> dict[str, Any]:
    node = _target_node(suggestion)
    content = node.get("content") or ""

    replaced = params.suggested_content is not None and params.suggested_content != content
    if replaced:
        canvas_nodes.update_node(node["id"], {"content": params.suggested_content})
        _record_activity(
            node_id=node["id"],
            project_id=suggestion.project_id,
            activity_type=NodeActivityType.UPDATED.value,
            description="Replaced content with suggested version",
            user_id=user_id,
            details=f"Applied suggestion: {suggestion.title}",
        )
        content = params.suggested_content

    points = "\n".join(f"{i}. {point}" for i, point in enumerate(params.suggestion_points, 1))
    template = params.prompt_template or DEFAULT_CONTENT_PROMPT
    prompt = (
        template.replace("{title}", node["title"])
        .replace("{points}", points)
        .replace("{content}", content)
    )

    return {
        "affected_node_id": node["id"],
        "action": "open-ai-chat",
        "node_id": node["id"],
        "prefilled_prompt": prompt,
        "content_replaced": replaced,
    }


async def _execute_health_issue(
    suggestion: CanvasSuggestion, params: Any, user_id: UUID | None
) -> dict[str, Any]:
    # The suggestion row is the artifact; nothing on the canvas changes
    return {
        "affected_node_id": str(suggestion.node_id) if suggestion.node_id else None,
        "action": "open-ai-chat",
        "node_id": str(suggestion.node_id) if suggestion.node_id else None,
        "prefilled_prompt": HEALTH_ISSUE_PROMPT.format(
            title=suggestion.title, description=suggestion.description
        ),
    }


_HANDLERS: dict[SuggestionType, ExecuteHandler] = {
    SuggestionType.ADD_NODE: _execute_add_node,
    SuggestionType.ADD_TAG: _execute_add_tag,
    SuggestionType.REFINE_CONTENT: _execute_refine_content,
    SuggestionType.CONTENT_SUGGESTION: _execute_content_suggestion,
    SuggestionType.HEALTH_ISSUE: _execute_health_issue,
}


def _prepare(suggestion: CanvasSuggestion) -> tuple[SuggestionType, Any]:
    """Check the type and params before anything is claimed or mutated."""
    try:
        suggestion_type = SuggestionType(suggestion.type)
    except ValueError:
        raise BadRequestError(f"Unsupported suggestion type: {suggestion.type}") from None
    try:
        params = parse_action_params(suggestion_type, suggestion.action_params)
    except ValueError as e:
        raise BadRequestError(str(e)) from None
    return suggestion_type, params


async def execute_suggestion(
    suggestion: CanvasSuggestion,
    user_id: UUID | None,
) -> dict[str, Any]:
    """
    Perform a suggestion's action without touching its status.

    Raises:
        BadRequestError: Unsupported type, bad params or missing linkage
        NotFoundError: Target node or framework missing
    """
    suggestion_type, params = _prepare(suggestion)
    return await _HANDLERS[suggestion_type](suggestion, params, user_id)


# ============================================================================
# Lifecycle
# ============================================================================


def _load(suggestion_id: UUID) -> CanvasSuggestion:
    return CanvasSuggestion.model_validate(canvas_suggestions.get_suggestion(suggestion_id))


def _response(suggestion_type: str, status: SuggestionStatus, result: dict[str, Any]) -> ApplySuggestionResponse:
    return ApplySuggestionResponse(
        success=True,
        type=suggestion_type,
        status=status,
        affected_node_id=result.get("affected_node_id"),
        result={k: v for k, v in result.items() if k != "affected_node_id"},
    )


async def apply_suggestion(suggestion_id: UUID, user_id: UUID | None) -> ApplySuggestionResponse:
    """
    Execute a pending suggestion and, unless its accept is deferred, mark
    it accepted.

    Raises:
        ConflictError: Suggestion already accepted or dismissed (no mutation)
        BadRequestError: Unsupported type or invalid params (no mutation)
        NotFoundError: Suggestion or its target missing
    """
    suggestion = _load(suggestion_id)
    if suggestion.status != SuggestionStatus.PENDING:
        raise ConflictError(f"Suggestion {suggestion_id} is already {suggestion.status.value}")

    suggestion_type, _ = _prepare(suggestion)

    if suggestion_type in DEFERRED_ACCEPT_TYPES:
        result = await execute_suggestion(suggestion, user_id)
        logger.info(
            f"Executed {suggestion_type.value} suggestion; accept deferred",
            extra={"suggestion_id": str(suggestion_id), "project_id": str(suggestion.project_id)},
        )
        return _response(suggestion_type.value, SuggestionStatus.PENDING, result)

    canvas_suggestions.transition_suggestion(
        suggestion_id, SuggestionStatus.PENDING, SuggestionStatus.ACCEPTED, actor_id=user_id
    )

    try:
        result = await execute_suggestion(suggestion, user_id)
    except Exception as e:
        logger.error(
            f"Suggestion execution failed, releasing claim: {e}",
            extra={"suggestion_id": str(suggestion_id), "project_id": str(suggestion.project_id)},
        )
        canvas_suggestions.transition_suggestion(
            suggestion_id, SuggestionStatus.ACCEPTED, SuggestionStatus.PENDING
        )
        raise

    logger.info(
        f"Applied {suggestion_type.value} suggestion",
        extra={"suggestion_id": str(suggestion_id), "project_id": str(suggestion.project_id)},
    )
    return _response(suggestion_type.value, SuggestionStatus.ACCEPTED, result)


async def accept_suggestion(suggestion_id: UUID, user_id: UUID | None) -> CanvasSuggestion:
    """
    The deferred accept event for content-suggestion / health-issue.

    Raises:
        BadRequestError: Type is executed through apply instead
        ConflictError: Not pending
    """
    suggestion = _load(suggestion_id)
    if suggestion.type not in {t.value for t in DEFERRED_ACCEPT_TYPES}:
        raise BadRequestError(
            f"{suggestion.type} suggestions are accepted by applying them"
        )
    row = canvas_suggestions.transition_suggestion(
        suggestion_id, SuggestionStatus.PENDING, SuggestionStatus.ACCEPTED, actor_id=user_id
    )
    return CanvasSuggestion.model_validate(row)


async def dismiss_suggestion(suggestion_id: UUID, user_id: UUID | None) -> CanvasSuggestion:
    """
    Raises:
        ConflictError: Not pending
        NotFoundError: Suggestion missing
    """
    row = canvas_suggestions.transition_suggestion(
        suggestion_id, SuggestionStatus.PENDING, SuggestionStatus.DISMISSED, actor_id=user_id
    )
    return CanvasSuggestion.model_validate(row)
