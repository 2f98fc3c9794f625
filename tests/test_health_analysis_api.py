"""End-to-end tests for the health-analysis endpoints over the in-memory store."""

from unittest.mock import patch
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from app.core.auth import AuthContext, require_auth
from app.core.health_stream import split_sse_text
from app.db.chats import list_active_health_analysis_chats
from app.main import app
from app.services.health_analysis_service import open_analysis_stream
from tests.fakes.fake_anthropic import ScriptedClient, text_block, tool_block


@pytest.fixture
def owner(canvas):
    return AuthContext(user_id=UUID(canvas.owner_id), token="test-token")


@pytest.fixture
def client(owner):
    app.dependency_overrides[require_auth] = lambda: owner
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def fresh_project(canvas):
    """Project with a default framework but no project framework yet."""
    return canvas.db.insert_row(
        "projects",
        {"name": "宠物社区", "owner_id": canvas.owner_id, "default_framework_id": canvas.framework_id},
    )


def _start(client, project_id, **body):
    return client.post("/v1/health-analysis/start", json={"project_id": str(project_id), **body})


class TestStartAnalysis:
    def test_provisions_framework_from_project_default(self, client, canvas, fresh_project):
        response = _start(client, fresh_project["id"])

        assert response.status_code == 200
        data = response.json()
        assert data["initial_message"]

        [framework] = canvas.db.rows("project_frameworks", project_id=fresh_project["id"])
        assert data["project_framework_id"] == framework["id"]
        assert framework["is_active"] is True
        assert framework["framework_slug"] == "lean-canvas"
        assert framework["source_framework_id"] == canvas.framework_id
        assert len(canvas.db.rows("project_framework_zones", project_framework_id=framework["id"])) == 9

        chat = canvas.db.row("chats", data["chat_id"])
        assert chat["type"] == "health-analysis"
        assert chat["status"] == "active"
        assert chat["user_id"] == canvas.owner_id

    def test_uses_active_framework(self, client, canvas):
        response = _start(client, canvas.project_id)

        assert response.json()["project_framework_id"] == canvas.project_framework_id
        assert len(canvas.db.rows("project_frameworks", project_id=canvas.project_id)) == 1

    def test_restart_archives_previous_chat(self, client, canvas):
        first = _start(client, canvas.project_id).json()["chat_id"]
        second = _start(client, canvas.project_id).json()["chat_id"]

        assert canvas.db.row("chats", first)["status"] == "archived"
        assert canvas.db.row("chats", second)["status"] == "active"
        active = list_active_health_analysis_chats(canvas.project_id, canvas.project_framework_id)
        assert [c["id"] for c in active] == [second]

    def test_project_without_framework(self, client, canvas):
        bare = canvas.db.insert_row("projects", {"name": "空项目", "owner_id": canvas.owner_id})

        response = _start(client, bare["id"])

        assert response.status_code == 400
        assert response.json()["error"] == "bad_request"
        assert canvas.db.rows("chats") == []

    def test_framework_of_another_project(self, client, canvas, fresh_project):
        response = _start(client, fresh_project["id"], project_framework_id=canvas.project_framework_id)
        assert response.status_code == 400

    def test_unknown_project(self, client):
        assert _start(client, uuid4()).status_code == 404

    def test_non_member_is_rejected(self, canvas):
        app.dependency_overrides[require_auth] = lambda: AuthContext(user_id=uuid4(), token="t")
        try:
            response = _start(TestClient(app), canvas.project_id)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 401
        assert canvas.db.rows("chats") == []

    def test_member_may_start(self, canvas):
        member_id = uuid4()
        canvas.db.insert_row("project_members", {"project_id": canvas.project_id, "user_id": str(member_id)})
        app.dependency_overrides[require_auth] = lambda: AuthContext(user_id=member_id, token="t")
        try:
            response = _start(TestClient(app), canvas.project_id)
        finally:
            app.dependency_overrides.clear()

        assert response.status_code == 200


class TestAnalysisChat:
    def test_streams_a_complete_analysis(self, client, canvas):
        chat_id = _start(client, canvas.project_id).json()["chat_id"]
        node_id = canvas.nodes[0]["id"]
        model = ScriptedClient(
            [text_block("我先看一下框架。"), tool_block("view_framework_zones")],
            [
                tool_block("assign_node_to_zone", {"node_id": node_id, "zone_name": "问题"}),
                tool_block(
                    "update_framework_health",
                    {"dimension_scores": {"problem": 80, "solution": 40}, "overall_score": 60, "insights": "方案薄弱"},
                ),
            ],
            [text_block("分析完成。")],
        )

        with patch("app.agents.health_analysis_agent.AsyncAnthropic", return_value=model):
            response = client.post("/v1/health-analysis/chat", json={"id": chat_id, "message": "开始分析"})

        assert response.status_code == 200
        assert "text/event-stream" in response.headers["content-type"]
        assert response.headers["cache-control"] == "no-cache"

        events = list(split_sse_text(response.text))
        types = [e["type"] for e in events]
        assert types[0] == "data-status"
        assert types[-1] == "finish"
        assert "data-node-updated" in types
        assert types.count("data-dimension-score") == 2

        assert canvas.db.row("canvas_nodes", node_id)["zone_affinities"] == {
            canvas.project_framework_id: {"problem": 0.9}
        }
        framework = canvas.db.row("project_frameworks", canvas.project_framework_id)
        assert framework["health_score"] == 60
        assert framework["insights"] == ["方案薄弱"]

        # System prompt names the project and the weighted dimensions
        system_prompt = model.requests[0]["system"]
        assert "咖啡订阅" in system_prompt
        assert "问题" in system_prompt

    def test_archived_chat_is_conflict(self, client, canvas):
        first = _start(client, canvas.project_id).json()["chat_id"]
        _start(client, canvas.project_id)

        response = client.post("/v1/health-analysis/chat", json={"id": first})

        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_default_chat_is_conflict(self, client, canvas):
        chat = canvas.db.insert_row("chats", {"project_id": canvas.project_id, "type": "default"})
        response = client.post("/v1/health-analysis/chat", json={"id": chat["id"]})
        assert response.status_code == 409

    def test_unknown_chat(self, client):
        response = client.post("/v1/health-analysis/chat", json={"id": str(uuid4())})
        assert response.status_code == 404


class TestCancelAnalysis:
    def test_cancel_live_run(self, client, canvas, owner):
        chat_id = _start(client, canvas.project_id).json()["chat_id"]
        with patch("app.agents.health_analysis_agent.AsyncAnthropic", return_value=ScriptedClient()):
            run = open_analysis_stream(UUID(chat_id), "开始", owner)

        response = client.post("/v1/health-analysis/cancel", json={"chat_id": chat_id})

        assert response.status_code == 200
        assert response.json() == {"chat_id": chat_id, "cancelled": True, "status": "idle"}
        assert run.status.value == "idle"

    def test_cancel_without_live_run(self, client, canvas):
        chat_id = _start(client, canvas.project_id).json()["chat_id"]

        response = client.post("/v1/health-analysis/cancel", json={"chat_id": chat_id})

        assert response.json() == {"chat_id": chat_id, "cancelled": False, "status": "idle"}
