"""Prompts and tool definitions for the Health-Analysis Agent."""

from typing import Any

from app.core.framework_catalog import HealthDimension

HEALTH_ANALYSIS_INITIAL_MESSAGE = """我将帮助您分析项目的健康度。我会通过查看各个区域和节点的内容，评估框架的完整性、清晰度、平衡性和逻辑性。

让我开始分析..."""

# Sent by the supervisor when a turn ends before the analysis is complete
CONTINUE_ANALYSIS_PROMPT = """分析尚未完成。请不要停下来等待用户输入，立即继续调用工具：
- 如果还没有查看框架结构，先调用 view_framework_zones
- 对发现的问题逐个调用 create_suggestion
- 最后必须调用 update_framework_health 提交各维度评分和总分"""

HEALTH_ANALYSIS_SYSTEM_PROMPT = """你是 CrossMind 健康度分析 AI，帮助用户评估项目框架的完整性、质量和一致性。

## 当前分析上下文

**项目**: {project_name}
{project_description}
**分析框架**: {framework_name}
框架描述: {framework_description}

{dimensions}

## 你的工具

1. **view_framework_zones**: 查看框架的区域结构，每个区域只返回节点标题，另附未分配区域的节点。这是主要的探索手段，成本很低。
2. **view_node**: 查看单个节点的完整内容、标签、健康度数据、活动历史和评论。成本较高，只对有代表性的节点使用。
3. **create_suggestion**: 创建一个改进建议。每发现一个独立问题调用一次，不要把多个问题合并到一次调用。
4. **update_framework_health**: 提交各维度评分 (0-100)、总分和分析洞察。
5. **assign_node_to_zone**: 把未分配或放错位置的节点放入某个区域，区域使用显示名称（如"增长指标"）。

## 分析流程

1. **探索**: 调用 view_framework_zones 了解结构，识别空白区域；按需用 view_node 深入查看
2. **分析**: 从覆盖度、清晰度、平衡性、逻辑性评估框架
3. **建议**: 对每个问题调用 create_suggestion
   - add-node: 缺少关键节点（action_params: title, content, target_zone）
   - add-tag: 需要补充标签（action_params: tags）
   - refine-content: 直接给出改写后的内容（action_params: refined_content）
   - content-suggestion: 给出改进方向（action_params: suggestion_points, 可选 suggested_content）
   - health-issue: 指出健康度问题（action_params: 可选 dimension_key）
4. **评分**: 调用 update_framework_health，dimension_scores 使用上面列出的维度 key

## 评分标准 (0-100)
- 0-40: 严重不足，缺少核心内容
- 40-60: 基本可用，但有明显缺陷
- 60-80: 良好，有改进空间
- 80-95: 优秀，仅需微调
- 95-100: 几乎无可挑剔

## 重要规则
- 一旦开始分析，必须连续调用工具直到完成（探索 → 建议 → 评分），不得中途停止等待用户
- 不要只输出文字说明"我将创建建议"然后停止，要直接调用工具
- 工具返回 error 时，根据错误信息修正参数后重试（例如改用正确的区域名称）
- 不需要查看每个节点，识别出模式即可评估
- 建议宁可少而精
- 使用中文与用户交流，边做边简要说明思路"""


def format_dimensions(dimensions: list[HealthDimension]) -> str:
    if not dimensions:
        return "未定义健康度维度，请根据框架结构自行评估，并在 update_framework_health 中给出总分。"
    lines = ["**健康度维度** (总权重=1.0):"]
    for d in dimensions:
        lines.append(f"- **{d.name}** ({d.key}, 权重={d.weight}): {d.description}")
    return "\n".join(lines)


def build_system_prompt(
    project: dict[str, Any],
    framework: dict[str, Any],
    dimensions: list[HealthDimension],
) -> str:
    description = project.get("description")
    return HEALTH_ANALYSIS_SYSTEM_PROMPT.format(
        project_name=project.get("name") or "未命名项目",
        project_description=f"项目描述: {description}\n" if description else "",
        framework_name=framework.get("name") or "",
        framework_description=framework.get("description") or "",
        dimensions=format_dimensions(dimensions),
    )


# =============================================================================
# Tool definitions (Anthropic format)
# =============================================================================

VIEW_FRAMEWORK_ZONES = "view_framework_zones"
VIEW_NODE = "view_node"
CREATE_SUGGESTION = "create_suggestion"
UPDATE_FRAMEWORK_HEALTH = "update_framework_health"
ASSIGN_NODE_TO_ZONE = "assign_node_to_zone"

# Calls that count as exploring the canvas for the completion check
EXPLORATION_TOOLS = frozenset({VIEW_FRAMEWORK_ZONES, VIEW_NODE})

HEALTH_ANALYSIS_TOOLS: list[dict[str, Any]] = [
    {
        "name": VIEW_FRAMEWORK_ZONES,
        "description": "查看项目框架的区域结构，包含每个区域的节点列表（仅标题）以及未分配到任何区域的节点。默认使用当前分析的框架。",
        "input_schema": {
            "type": "object",
            "properties": {
                "project_framework_id": {
                    "type": "string",
                    "description": "项目框架ID，可选，默认使用当前分析框架",
                },
            },
        },
    },
    {
        "name": VIEW_NODE,
        "description": "查看指定节点的完整详情，包含内容、标签、健康度数据、活动历史和评论。",
        "input_schema": {
            "type": "object",
            "properties": {
                "node_id": {"type": "string", "description": "节点ID"},
            },
            "required": ["node_id"],
        },
    },
    {
        "name": CREATE_SUGGESTION,
        "description": "创建单个改进建议，保存到数据库并实时展示给用户。每个问题调用一次。",
        "input_schema": {
            "type": "object",
            "properties": {
                "node_id": {
                    "type": "string",
                    "description": "目标节点ID；全局建议不提供",
                },
                "type": {
                    "type": "string",
                    "enum": [
                        "add-node",
                        "add-tag",
                        "refine-content",
                        "content-suggestion",
                        "health-issue",
                    ],
                    "description": "建议类型",
                },
                "title": {"type": "string", "description": "建议标题，简洁描述改进点"},
                "description": {"type": "string", "description": "建议详细描述"},
                "reason": {"type": "string", "description": "提出这个建议的原因"},
                "priority": {
                    "type": "string",
                    "enum": ["low", "medium", "high", "critical"],
                    "default": "medium",
                },
                "action_params": {
                    "type": "object",
                    "description": "执行参数，结构由 type 决定",
                },
            },
            "required": ["type", "title", "description"],
        },
    },
    {
        "name": UPDATE_FRAMEWORK_HEALTH,
        "description": "更新框架健康度评分，包含各维度分数和总分。每个维度的分数都会实时推送给用户。",
        "input_schema": {
            "type": "object",
            "properties": {
                "dimension_scores": {
                    "type": "object",
                    "additionalProperties": {"type": "number"},
                    "description": "维度评分映射，例如 {\"problem\": 85, \"solution\": 60}",
                },
                "overall_score": {"type": "number", "description": "总体健康度评分 (0-100)"},
                "insights": {"type": "string", "description": "健康度分析洞察和建议"},
            },
            "required": ["dimension_scores", "overall_score", "insights"],
        },
    },
    {
        "name": ASSIGN_NODE_TO_ZONE,
        "description": "为节点分配或调整区域归属，可同时设置多个区域的亲和度权重。使用区域显示名称（如'增长指标'、'问题'、'解决方案'）。",
        "input_schema": {
            "type": "object",
            "properties": {
                "node_id": {"type": "string", "description": "节点ID"},
                "zone_name": {"type": "string", "description": "主要区域名称"},
                "primary_weight": {
                    "type": "number",
                    "minimum": 0,
                    "maximum": 1,
                    "default": 0.9,
                    "description": "主要区域的亲和度权重",
                },
                "additional_zones": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "zone_name": {"type": "string"},
                            "weight": {"type": "number", "minimum": 0, "maximum": 1},
                        },
                        "required": ["zone_name", "weight"],
                    },
                    "description": "可选：节点关联的其他区域及权重",
                },
            },
            "required": ["node_id", "zone_name"],
        },
    },
]
