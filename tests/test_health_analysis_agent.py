"""Tests for the Health-Analysis Agent orchestrator with a scripted model."""

import asyncio
import threading
from unittest.mock import patch
from uuid import uuid4

import pytest

from app.agents.health_analysis_agent import (
    HealthAnalysisRun,
    cancel_analysis,
    get_run,
    history_to_messages,
    register_run,
)
from app.agents.health_analysis_prompts import CONTINUE_ANALYSIS_PROMPT
from app.agents.health_analysis_tools import _HANDLERS
from app.agents.health_analysis_types import HealthAnalysisContext, ToolExecution
from app.core.config import get_settings
from app.core.errors import ConflictError
from app.core.health_stream import split_sse_text
from app.core.schemas_health_analysis import AnalysisStatus
from tests.fakes.fake_anthropic import HANG, ScriptedClient, text_block, tool_block


@pytest.fixture
def ctx(canvas):
    return HealthAnalysisContext(
        project_id=canvas.project_id,
        project_framework_id=canvas.project_framework_id,
        chat_id=uuid4(),
        framework_slug="lean-canvas",
    )


def _run(ctx, client, **overrides):
    settings = get_settings().model_copy(
        update={"HEALTH_ANALYSIS_MAX_NUDGES": 1, "HEALTH_ANALYSIS_MAX_TURNS": 6, **overrides}
    )
    run = HealthAnalysisRun(ctx, "system", "请开始分析框架健康度", settings=settings, client=client)
    register_run(run)
    run.begin()
    return run


async def _drain(stream):
    return [frame async for frame in stream]


async def _events(run):
    frames = await _drain(run.stream())
    return list(split_sse_text("".join(frames)))


def _health_update(score=60):
    return tool_block(
        "update_framework_health",
        {"dimension_scores": {"problem": score}, "overall_score": score, "insights": "问题需要量化"},
    )


class TestCompletion:
    @pytest.mark.asyncio
    async def test_explore_score_suggest_then_finish(self, canvas, ctx):
        client = ScriptedClient(
            [text_block("先查看框架区域。"), tool_block("view_framework_zones")],
            [
                _health_update(),
                tool_block(
                    "create_suggestion",
                    {
                        "node_id": canvas.nodes[0]["id"],
                        "type": "add-tag",
                        "title": "标记痛点",
                        "description": "d",
                        "action_params": {"tags": ["痛点"]},
                    },
                ),
            ],
            [text_block("分析完成。")],
        )
        run = _run(ctx, client)

        events = await _events(run)

        assert [e["type"] for e in events] == [
            "data-status",
            "data-appendMessage",
            "data-dimension-score",
            "data-framework-health",
            "data-health-suggestion",
            "data-appendMessage",
            "finish",
        ]
        assert events[0]["data"]["status"] == "analyzing"
        assert events[1]["data"]["role"] == "assistant"
        assert events[1]["data"]["parts"] == [{"type": "text", "text": "先查看框架区域。"}]

        finish = events[-1]["data"]
        assert finish["status"] == "completed"
        assert finish["exploration_calls"] == 1
        assert finish["suggestions_created"] == 1
        assert finish["turns"] == 3
        assert "nudges" not in finish
        assert run.status == AnalysisStatus.COMPLETED
        assert get_run(ctx.chat_id) is None

        # Tool results are fed back under the matching tool_use id
        second_request = client.requests[1]["messages"]
        tool_result = second_request[-1]["content"][0]
        assert tool_result["type"] == "tool_result"
        assert tool_result["is_error"] is False
        assert tool_result["tool_use_id"] == second_request[-2]["content"][1]["id"]

        messages = canvas.db.rows("chat_messages", chat_id=str(ctx.chat_id))
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert messages[1]["content"][0]["text"] == "先查看框架区域。\n\n分析完成。"
        assert [c["tool_name"] for c in messages[1]["tool_calls"]] == [
            "view_framework_zones",
            "update_framework_health",
            "create_suggestion",
        ]

    @pytest.mark.asyncio
    async def test_early_stop_gets_continuation_prompt(self, ctx):
        client = ScriptedClient(
            [text_block("需要我继续吗？")],
            [tool_block("view_framework_zones")],
            [_health_update()],
            [text_block("完成")],
        )
        run = _run(ctx, client)

        events = await _events(run)

        assert events[-1]["type"] == "finish"
        assert client.requests[1]["messages"][-1] == {"role": "user", "content": CONTINUE_ANALYSIS_PROMPT}
        assert run.progress.nudges == 1

    @pytest.mark.asyncio
    async def test_failed_tool_call_is_reported_to_model(self, ctx):
        client = ScriptedClient(
            [tool_block("view_node", {"node_id": str(uuid4())})],
            [tool_block("view_framework_zones"), _health_update()],
            [text_block("完成")],
        )
        run = _run(ctx, client)

        events = await _events(run)

        tool_result = client.requests[1]["messages"][-1]["content"][0]
        assert tool_result["is_error"] is True
        assert "未找到节点" in tool_result["content"]
        assert events[-1]["data"]["tool_errors"] == 1
        assert events[-1]["data"]["status"] == "completed"


class TestFailure:
    @pytest.mark.asyncio
    async def test_health_update_without_exploration_does_not_complete(self, canvas, ctx):
        client = ScriptedClient([_health_update(70)], [text_block("好了")], [text_block("真的好了")])
        run = _run(ctx, client)

        events = await _events(run)

        assert events[-1]["type"] == "error"
        assert "health update" in events[-1]["data"]["message"]
        assert run.status == AnalysisStatus.ERROR
        # Scores written before the failure stay persisted
        assert canvas.db.row("project_frameworks", canvas.project_framework_id)["health_score"] == 70

    @pytest.mark.asyncio
    async def test_turn_budget_exhausted(self, ctx):
        client = ScriptedClient([tool_block("view_framework_zones")], [tool_block("view_framework_zones")])
        run = _run(ctx, client, HEALTH_ANALYSIS_MAX_TURNS=2)

        events = await _events(run)

        assert events[-1]["type"] == "error"
        assert "Turn budget" in events[-1]["data"]["message"]
        assert len(client.requests) == 2

    @pytest.mark.asyncio
    async def test_provider_error_ends_in_error(self, ctx):
        client = ScriptedClient(RuntimeError("overloaded"))
        run = _run(ctx, client)

        events = await _events(run)

        assert [e["type"] for e in events] == ["data-status", "error"]
        assert events[-1]["data"]["message"] == "overloaded"
        assert run.status == AnalysisStatus.ERROR
        assert get_run(ctx.chat_id) is None

    @pytest.mark.asyncio
    async def test_timeout(self, ctx):
        run = _run(ctx, ScriptedClient(HANG), HEALTH_ANALYSIS_TIMEOUT_SECONDS=0.05)

        events = await _events(run)

        assert events[-1] == {"type": "error", "data": {"message": "Health analysis timed out"}}
        assert run.status == AnalysisStatus.ERROR


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_mid_turn_returns_to_idle(self, canvas, ctx):
        run = _run(ctx, ScriptedClient(HANG))
        stream = run.stream()
        first = await stream.__anext__()
        assert '"analyzing"' in first

        task = asyncio.ensure_future(_drain(stream))
        await asyncio.sleep(0.01)

        assert cancel_analysis(ctx.chat_id) is run
        frames = await asyncio.wait_for(task, timeout=1)

        [event] = list(split_sse_text("".join(frames)))
        assert event == {"type": "data-status", "data": {"status": "idle", "cancelled": True}}
        assert run.status == AnalysisStatus.IDLE
        assert get_run(ctx.chat_id) is None
        # Only the user's message; nothing produced by the cancelled turn
        assert [m["role"] for m in canvas.db.rows("chat_messages")] == ["user"]

    @pytest.mark.asyncio
    async def test_cancel_before_streaming(self, ctx):
        client = ScriptedClient()
        run = _run(ctx, client)

        assert cancel_analysis(ctx.chat_id) is run
        assert run.status == AnalysisStatus.IDLE

        events = await _events(run)
        assert events == [{"type": "data-status", "data": {"status": "idle"}}]
        assert client.requests == []

    @pytest.mark.asyncio
    async def test_cancel_does_not_wait_for_a_slow_tool(self, ctx):
        release = threading.Event()

        def slow_view(_ctx, _args):
            release.wait(timeout=5)
            return ToolExecution(tool_name="view_framework_zones", result={"zones": []})

        run = _run(ctx, ScriptedClient([tool_block("view_framework_zones")]))
        try:
            with patch.dict(_HANDLERS, {"view_framework_zones": slow_view}):
                stream = run.stream()
                await stream.__anext__()
                task = asyncio.ensure_future(_drain(stream))
                await asyncio.sleep(0.05)

                assert cancel_analysis(ctx.chat_id) is run
                frames = await asyncio.wait_for(task, timeout=1)
        finally:
            release.set()

        assert list(split_sse_text("".join(frames))) == [
            {"type": "data-status", "data": {"status": "idle", "cancelled": True}}
        ]
        assert run.status == AnalysisStatus.IDLE
        assert run.progress.exploration_calls == 0

    def test_cancel_without_live_run(self):
        assert cancel_analysis(uuid4()) is None

    def test_new_run_for_same_chat_cancels_previous(self, ctx):
        first = _run(ctx, ScriptedClient())
        second = _run(ctx, ScriptedClient())

        assert first.status == AnalysisStatus.IDLE
        assert second.status == AnalysisStatus.STARTING
        assert get_run(ctx.chat_id) is second

    def test_invalid_transition(self, ctx):
        run = HealthAnalysisRun(ctx, "system", "hi", client=ScriptedClient())
        with pytest.raises(ConflictError):
            run.transition(AnalysisStatus.COMPLETED)
        assert run.cancel() is False


def test_history_to_messages_replays_text_only():
    rows = [
        {"role": "assistant", "content": [{"type": "text", "text": "orphan"}]},
        {"role": "user", "content": [{"type": "text", "text": "a"}]},
        {"role": "user", "content": [{"type": "text", "text": "b"}]},
        {"role": "assistant", "content": [{"type": "tool_use", "id": "x", "name": "view_node", "input": {}}]},
        {"role": "assistant", "content": [{"type": "text", "text": "c"}, {"type": "text", "text": "d"}]},
        {"role": "system", "content": [{"type": "text", "text": "ignored"}]},
    ]

    assert history_to_messages(rows) == [
        {"role": "user", "content": "a\n\nb"},
        {"role": "assistant", "content": "c\nd"},
    ]
