"""Tests for the Health-Analysis Agent tools."""

from uuid import uuid4

import pytest

from app.agents.health_analysis_tools import execute_health_tool
from app.agents.health_analysis_types import HealthAnalysisContext
from app.core.framework_weights import FRAMEWORK_DIMENSION_WEIGHTS
from app.core.schemas_health_analysis import StreamEventType


@pytest.fixture
def ctx(canvas):
    return HealthAnalysisContext(
        project_id=canvas.project_id,
        project_framework_id=canvas.project_framework_id,
        chat_id=uuid4(),
        framework_slug="lean-canvas",
    )


class TestViewTools:
    @pytest.mark.asyncio
    async def test_view_framework_zones_groups_by_strongest_zone(self, canvas, ctx):
        from app.db.zone_affinities import set_node_affinities

        set_node_affinities(canvas.nodes[0]["id"], canvas.project_framework_id, {"problem": 0.9})
        set_node_affinities(canvas.nodes[1]["id"], canvas.project_framework_id, {"problem": 0.3, "customer-segments": 0.8})

        execution = await execute_health_tool(ctx, "view_framework_zones", {})

        assert not execution.failed
        zones = {z["zone_key"]: z for z in execution.result["zones"]}
        assert len(zones) == 9
        assert [n["title"] for n in zones["problem"]["nodes"]] == ["通勤族没时间买咖啡"]
        assert [n["title"] for n in zones["customer-segments"]["nodes"]] == ["25-35岁白领"]
        assert [n["title"] for n in execution.result["unassigned_nodes"]] == ["每天早上8点送达"]
        assert execution.events == []

    @pytest.mark.asyncio
    async def test_view_framework_zones_of_other_project(self, canvas, ctx):
        foreign = canvas.db.insert_row("project_frameworks", {"project_id": str(uuid4()), "name": "x"})
        execution = await execute_health_tool(
            ctx, "view_framework_zones", {"project_framework_id": foreign["id"]}
        )
        assert execution.failed

    @pytest.mark.asyncio
    async def test_view_node(self, canvas, ctx):
        node = canvas.nodes[0]
        canvas.db.insert_row(
            "canvas_node_comments", {"node_id": node["id"], "content": "需要数据支撑", "author_id": canvas.owner_id}
        )

        execution = await execute_health_tool(ctx, "view_node", {"node_id": node["id"]})

        assert execution.result["title"] == node["title"]
        assert execution.result["content"] == node["content"]
        assert execution.result["comments"][0]["content"] == "需要数据支撑"
        assert execution.result["zone_affinities"] == {}

    @pytest.mark.asyncio
    async def test_view_node_unknown(self, ctx):
        execution = await execute_health_tool(ctx, "view_node", {"node_id": str(uuid4())})
        assert execution.failed
        assert "未找到节点" in execution.result["error"]

    @pytest.mark.asyncio
    async def test_view_node_requires_id(self, ctx):
        execution = await execute_health_tool(ctx, "view_node", {})
        assert execution.result == {"error": "node_id is required"}


class TestCreateSuggestionTool:
    @pytest.mark.asyncio
    async def test_creates_ai_suggestion_and_emits_event(self, canvas, ctx):
        execution = await execute_health_tool(
            ctx,
            "create_suggestion",
            {
                "node_id": canvas.nodes[0]["id"],
                "type": "add-tag",
                "title": "添加标签",
                "description": "标注核心痛点",
                "priority": "high",
                "action_params": {"tags": ["核心痛点"]},
            },
        )

        assert not execution.failed
        stored = canvas.db.row("canvas_suggestions", execution.result["suggestion_id"])
        assert stored["source"] == "ai-health-check"
        assert stored["chat_id"] == str(ctx.chat_id)
        assert stored["project_framework_id"] == canvas.project_framework_id

        [event] = execution.events
        assert event.type == StreamEventType.HEALTH_SUGGESTION
        assert event.data["priority"] == "high"
        assert event.data["action_params"] == {"tags": ["核心痛点"]}

    @pytest.mark.asyncio
    async def test_invalid_params_become_recoverable_error(self, canvas, ctx):
        execution = await execute_health_tool(
            ctx,
            "create_suggestion",
            {
                "node_id": canvas.nodes[0]["id"],
                "type": "refine-content",
                "title": "改写",
                "description": "d",
                "action_params": {"content": "wrong key"},
            },
        )
        assert execution.failed
        assert "refined_content" in execution.result["error"]
        assert canvas.db.rows("canvas_suggestions") == []

    @pytest.mark.asyncio
    async def test_unknown_type(self, canvas, ctx):
        execution = await execute_health_tool(
            ctx, "create_suggestion", {"type": "merge-nodes", "title": "t", "description": "d"}
        )
        assert execution.failed
        assert canvas.db.rows("canvas_suggestions") == []


class TestUpdateFrameworkHealth:
    @pytest.mark.asyncio
    async def test_full_coverage_uses_weighted_score(self, canvas, ctx):
        scores = {key: 100 for key in FRAMEWORK_DIMENSION_WEIGHTS["lean-canvas"]}
        scores["problem"] = 0

        execution = await execute_health_tool(
            ctx,
            "update_framework_health",
            {"dimension_scores": scores, "overall_score": 50, "insights": "问题定义不清"},
        )

        assert not execution.failed
        assert execution.result["calculated_score"] == 85
        framework = canvas.db.row("project_frameworks", canvas.project_framework_id)
        assert framework["health_score"] == 85
        assert framework["insights"] == ["问题定义不清"]
        assert framework["last_health_check_at"] is not None

        dimension_rows = canvas.db.rows("project_framework_dimension_scores")
        assert len(dimension_rows) == 9
        problem = next(r for r in dimension_rows if r["dimension_key"] == "problem")
        assert problem["dimension_name"] == "问题"

        types = [e.type for e in execution.events]
        assert types == [StreamEventType.DIMENSION_SCORE] * 9 + [StreamEventType.FRAMEWORK_HEALTH]
        assert execution.events[-1].data["overall_score"] == 85
        assert execution.events[-1].data["weighted"] is True

    @pytest.mark.asyncio
    async def test_rescoring_upserts_dimensions(self, canvas, ctx):
        for score in (40, 90):
            await execute_health_tool(
                ctx,
                "update_framework_health",
                {"dimension_scores": {"problem": score}, "overall_score": score, "insights": ""},
            )

        rows = canvas.db.rows("project_framework_dimension_scores")
        assert len(rows) == 1
        assert rows[0]["score"] == 90
        # Partial coverage normalizes to the covered weight
        assert canvas.db.row("project_frameworks", canvas.project_framework_id)["health_score"] == 90

    @pytest.mark.asyncio
    async def test_unscorable_framework_keeps_model_score(self, canvas, ctx):
        canvas.db.row("project_frameworks", canvas.project_framework_id)["framework_slug"] = "custom"

        execution = await execute_health_tool(
            ctx,
            "update_framework_health",
            {"dimension_scores": {"clarity": 70}, "overall_score": 66.6, "insights": "ok"},
        )

        assert execution.result["calculated_score"] == 67
        assert execution.events[-1].data["weighted"] is False

    @pytest.mark.asyncio
    async def test_out_of_range_dimension_rejected_before_writes(self, canvas, ctx):
        execution = await execute_health_tool(
            ctx,
            "update_framework_health",
            {"dimension_scores": {"problem": 80, "solution": 140}, "overall_score": 80, "insights": ""},
        )

        assert execution.failed
        assert "solution" in execution.result["error"]
        assert canvas.db.rows("project_framework_dimension_scores") == []
        assert canvas.db.row("project_frameworks", canvas.project_framework_id)["health_score"] is None

    @pytest.mark.asyncio
    async def test_dimensions_outside_weight_table_rejected(self, canvas, ctx):
        execution = await execute_health_tool(
            ctx,
            "update_framework_health",
            {"dimension_scores": {"vision": 70}, "overall_score": 70, "insights": ""},
        )

        assert execution.failed
        assert "vision" in execution.result["error"]
        assert "problem" in execution.result["error"]
        assert canvas.db.rows("project_framework_dimension_scores") == []
        assert canvas.db.row("project_frameworks", canvas.project_framework_id)["health_score"] is None

    @pytest.mark.asyncio
    async def test_empty_scores_rejected(self, ctx):
        execution = await execute_health_tool(
            ctx, "update_framework_health", {"dimension_scores": {}, "overall_score": 50}
        )
        assert execution.failed


class TestAssignNodeToZone:
    @pytest.mark.asyncio
    async def test_assigns_by_display_name(self, canvas, ctx):
        node_id = canvas.nodes[2]["id"]
        execution = await execute_health_tool(
            ctx,
            "assign_node_to_zone",
            {
                "node_id": node_id,
                "zone_name": "解决方案",
                "additional_zones": [{"zone_name": "渠道", "weight": 0.4}],
            },
        )

        assert not execution.failed
        stored = canvas.db.row("canvas_nodes", node_id)["zone_affinities"]
        assert stored == {canvas.project_framework_id: {"solution": 0.9, "channels": 0.4}}
        [event] = execution.events
        assert event.type == StreamEventType.NODE_UPDATED
        assert event.data["node_id"] == node_id

    @pytest.mark.asyncio
    async def test_unknown_zone_fails_fast_without_writing(self, canvas, ctx):
        node_id = canvas.nodes[2]["id"]
        execution = await execute_health_tool(
            ctx,
            "assign_node_to_zone",
            {
                "node_id": node_id,
                "zone_name": "解决方案",
                "additional_zones": [{"zone_name": "市场营销", "weight": 0.4}],
            },
        )

        assert execution.failed
        assert "市场营销" in execution.result["error"]
        assert canvas.db.row("canvas_nodes", node_id)["zone_affinities"] == {}

    @pytest.mark.asyncio
    async def test_node_of_other_project(self, canvas, ctx):
        foreign = canvas.db.insert_row("canvas_nodes", {"project_id": str(uuid4()), "title": "x"})
        execution = await execute_health_tool(
            ctx, "assign_node_to_zone", {"node_id": foreign["id"], "zone_name": "问题"}
        )
        assert execution.failed


@pytest.mark.asyncio
async def test_unknown_tool(ctx):
    execution = await execute_health_tool(ctx, "delete_canvas", {})
    assert execution.result == {"error": "Unknown tool: delete_canvas"}
