"""Tool implementations for the Health-Analysis Agent.

Handlers never raise into the agent loop: any failure becomes an
``{"error": reason}`` result so the model can correct itself (for example
retry with a valid zone name).
"""

import asyncio
from typing import Any, Callable
from uuid import UUID

from pydantic import ValidationError

from app.agents.health_analysis_prompts import (
    ASSIGN_NODE_TO_ZONE,
    CREATE_SUGGESTION,
    UPDATE_FRAMEWORK_HEALTH,
    VIEW_FRAMEWORK_ZONES,
    VIEW_NODE,
)
from app.agents.health_analysis_types import HealthAnalysisContext, StreamEmission, ToolExecution
from app.core.errors import (
    BadRequestError,
    CanvasError,
    NotFoundError,
    describe_error,
    format_validation_error,
)
from app.core.framework_catalog import get_health_dimensions
from app.core.framework_weights import calculate_weighted_score, get_framework_weights
from app.core.logging import get_logger
from app.core.schemas_health_analysis import (
    AssignNodeToZoneInput,
    StreamEventType,
    UpdateFrameworkHealthInput,
)
from app.core.schemas_suggestions import SuggestionCreate, SuggestionSource
from app.core.suggestion_engine import persist_suggestion
from app.core.zone_affinity import require_zone_keys
from app.db import canvas_nodes
from app.db.frameworks import (
    get_project_framework,
    get_zones_with_node_titles,
    update_project_framework_health,
    upsert_dimension_score,
)
from app.db.zone_affinities import resolve_zone_keys_by_name, set_node_affinities

logger = get_logger(__name__)

# Handlers are synchronous (supabase I/O) and run off the event loop
Handler = Callable[[HealthAnalysisContext, dict[str, Any]], ToolExecution]


def _node_in_project(ctx: HealthAnalysisContext, node_id: UUID | str) -> dict[str, Any]:
    node = canvas_nodes.get_node(node_id)
    if not node or str(node["project_id"]) != str(ctx.project_id):
        raise NotFoundError(f"未找到节点 ID: {node_id}")
    return node


# =============================================================================
# Handlers
# =============================================================================


def _view_framework_zones(ctx: HealthAnalysisContext, args: dict[str, Any]) -> ToolExecution:
    framework_id = args.get("project_framework_id") or ctx.project_framework_id
    framework = get_project_framework(framework_id)
    if not framework or str(framework["project_id"]) != str(ctx.project_id):
        raise NotFoundError(f"未找到框架 ID: {framework_id}")

    overview = get_zones_with_node_titles(framework_id)
    result = overview.to_tool_result()
    result["framework_description"] = framework.get("description")
    return ToolExecution(tool_name=VIEW_FRAMEWORK_ZONES, result=result)


def _view_node(ctx: HealthAnalysisContext, args: dict[str, Any]) -> ToolExecution:
    node_id = args.get("node_id")
    if not node_id:
        raise BadRequestError("node_id is required")
    node = _node_in_project(ctx, node_id)

    activities = canvas_nodes.list_activities(node["id"])
    comments = canvas_nodes.list_comments(node["id"])

    return ToolExecution(
        tool_name=VIEW_NODE,
        result={
            "id": node["id"],
            "title": node["title"],
            "content": node.get("content") or "",
            "type": node.get("type"),
            "tags": node.get("tags") or [],
            "health_score": node.get("health_score"),
            "health_level": node.get("health_level"),
            "health_data": node.get("health_data"),
            "zone_affinities": (node.get("zone_affinities") or {}).get(str(ctx.project_framework_id), {}),
            "activities": [
                {"type": a["type"], "description": a.get("description"), "created_at": a.get("created_at")}
                for a in activities
            ],
            "comments": [
                {"content": c["content"], "author_id": c.get("author_id"), "created_at": c.get("created_at")}
                for c in comments
            ],
        },
    )


def _create_suggestion(ctx: HealthAnalysisContext, args: dict[str, Any]) -> ToolExecution:
    data = SuggestionCreate(
        project_id=ctx.project_id,
        project_framework_id=ctx.project_framework_id,
        chat_id=ctx.chat_id,
        node_id=args.get("node_id") or None,
        type=args.get("type"),
        title=args.get("title") or "",
        description=args.get("description") or "",
        reason=args.get("reason"),
        priority=args.get("priority") or "medium",
        action_params=args.get("action_params") or {},
        source=SuggestionSource.AI_HEALTH_CHECK,
    )
    suggestion = persist_suggestion(data)

    return ToolExecution(
        tool_name=CREATE_SUGGESTION,
        result={"suggestion_id": suggestion["id"], "message": f"建议已创建：{data.title}"},
        events=[
            StreamEmission(
                type=StreamEventType.HEALTH_SUGGESTION,
                data={
                    "suggestion_id": suggestion["id"],
                    "type": data.type.value,
                    "title": data.title,
                    "description": data.description,
                    "reason": data.reason,
                    "priority": data.priority.value,
                    "node_id": str(data.node_id) if data.node_id else None,
                    "action_params": data.action_params,
                },
            )
        ],
    )


def _update_framework_health(ctx: HealthAnalysisContext, args: dict[str, Any]) -> ToolExecution:
    data = UpdateFrameworkHealthInput.model_validate(args)
    for key, score in data.dimension_scores.items():
        if score < 0 or score > 100:
            raise BadRequestError(f"Score for dimension '{key}' must be within [0, 100], got {score}")

    framework = get_project_framework(ctx.project_framework_id)
    if not framework:
        raise NotFoundError("框架不存在")
    slug = framework.get("framework_slug") or ctx.framework_slug
    weights = get_framework_weights(slug)
    if weights is not None and not set(data.dimension_scores) & set(weights):
        raise BadRequestError(
            f"Unknown dimensions for {slug}: {', '.join(data.dimension_scores)}. "
            f"Valid dimensions: {', '.join(weights)}"
        )
    names = {d.key: d.name for d in get_health_dimensions(slug)}

    events: list[StreamEmission] = []
    for key, score in data.dimension_scores.items():
        upsert_dimension_score(
            ctx.project_framework_id,
            key,
            score,
            dimension_name=names.get(key),
            insights=f"{key}: {score}/100",
        )
        events.append(
            StreamEmission(
                type=StreamEventType.DIMENSION_SCORE,
                data={"dimension_key": key, "score": score},
            )
        )

    calculated = calculate_weighted_score(data.dimension_scores, slug)
    final_score = round(calculated) if calculated is not None else round(data.overall_score)

    update_project_framework_health(
        ctx.project_framework_id,
        final_score,
        insights=[data.insights] if data.insights else None,
    )
    events.append(
        StreamEmission(
            type=StreamEventType.FRAMEWORK_HEALTH,
            data={
                "overall_score": final_score,
                "insights": data.insights,
                "weighted": calculated is not None,
                "dimension_count": len(data.dimension_scores),
            },
        )
    )

    basis = (
        f"基于 {len(data.dimension_scores)} 个维度的加权平均"
        if calculated is not None
        else "该框架没有维度权重，采用模型给出的总分"
    )
    return ToolExecution(
        tool_name=UPDATE_FRAMEWORK_HEALTH,
        result={
            "message": f"健康度已更新：{final_score}/100（{basis}）",
            "dimension_count": len(data.dimension_scores),
            "calculated_score": final_score,
        },
        events=events,
    )


def _assign_node_to_zone(ctx: HealthAnalysisContext, args: dict[str, Any]) -> ToolExecution:
    data = AssignNodeToZoneInput.model_validate(args)
    _node_in_project(ctx, data.node_id)

    names = [data.zone_name] + [z.zone_name for z in data.additional_zones]
    resolved = resolve_zone_keys_by_name(ctx.project_framework_id, names)
    try:
        require_zone_keys(resolved, names)
    except BadRequestError as e:
        raise BadRequestError(f"{e.message}。可用区域请通过 view_framework_zones 查看") from None

    affinities = {resolved[z.zone_name]: z.weight for z in data.additional_zones}
    affinities[resolved[data.zone_name]] = data.primary_weight

    set_node_affinities(data.node_id, ctx.project_framework_id, affinities)

    return ToolExecution(
        tool_name=ASSIGN_NODE_TO_ZONE,
        result={
            "success": True,
            "node_id": str(data.node_id),
            "affinities": affinities,
            "message": f"节点已分配到「{data.zone_name}」",
        },
        events=[
            StreamEmission(
                type=StreamEventType.NODE_UPDATED,
                data={
                    "node_id": str(data.node_id),
                    "project_framework_id": str(ctx.project_framework_id),
                    "zone_affinities": affinities,
                },
            )
        ],
    )


_HANDLERS: dict[str, Handler] = {
    VIEW_FRAMEWORK_ZONES: _view_framework_zones,
    VIEW_NODE: _view_node,
    CREATE_SUGGESTION: _create_suggestion,
    UPDATE_FRAMEWORK_HEALTH: _update_framework_health,
    ASSIGN_NODE_TO_ZONE: _assign_node_to_zone,
}


async def execute_health_tool(
    ctx: HealthAnalysisContext,
    tool_name: str,
    tool_input: dict[str, Any],
) -> ToolExecution:
    """
    Execute one tool call for an analysis.

    Args:
        ctx: Analysis scope (project, framework, chat)
        tool_name: Name from HEALTH_ANALYSIS_TOOLS
        tool_input: Arguments the model supplied

    Returns:
        ToolExecution; failures are reported in ``result["error"]``
    """
    log_extra = {
        "project_id": str(ctx.project_id),
        "chat_id": str(ctx.chat_id),
        "tool_name": tool_name,
    }

    handler = _HANDLERS.get(tool_name)
    if handler is None:
        logger.warning(f"Unknown tool requested: {tool_name}", extra=log_extra)
        return ToolExecution(tool_name=tool_name, result={"error": f"Unknown tool: {tool_name}"})

    try:
        execution = await asyncio.to_thread(handler, ctx, tool_input or {})
    except ValidationError as e:
        message = format_validation_error(e)
        logger.info(f"Tool input rejected: {message}", extra=log_extra)
        return ToolExecution(tool_name=tool_name, result={"error": message})
    except CanvasError as e:
        logger.info(f"Tool failed: {e.message}", extra=log_extra)
        return ToolExecution(tool_name=tool_name, result={"error": describe_error(e)})
    except Exception as e:
        logger.error(f"Error executing tool {tool_name}: {e}", exc_info=True, extra=log_extra)
        return ToolExecution(tool_name=tool_name, result={"error": describe_error(e)})

    logger.info("Tool executed", extra=log_extra)
    return execution
