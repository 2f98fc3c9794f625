"""API tests for suggestions, zone affinities, layout and frameworks."""

from unittest.mock import MagicMock, patch
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient

from app.core.auth import AuthContext, require_auth
from app.main import app


@pytest.fixture
def client(canvas):
    app.dependency_overrides[require_auth] = lambda: AuthContext(user_id=UUID(canvas.owner_id), token="t")
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def _suggestion_body(canvas, **overrides):
    body = {
        "project_id": canvas.project_id,
        "project_framework_id": canvas.project_framework_id,
        "node_id": canvas.nodes[0]["id"],
        "type": "add-tag",
        "title": "补充标签",
        "action_params": {"tags": ["定价"]},
    }
    body.update(overrides)
    return body


# ──────────────────────────────────────────────────────────────────────
# Auth
# ──────────────────────────────────────────────────────────────────────


class TestAuth:
    def test_missing_credentials(self, canvas):
        response = TestClient(app).get("/v1/frameworks")
        assert response.status_code == 401
        assert response.json() == {"error": "unauthorized", "detail": "Not authenticated"}

    def test_bearer_token_validated_with_supabase(self, canvas):
        canvas.db.auth.get_user.return_value = MagicMock(user=MagicMock(id=canvas.owner_id))

        response = TestClient(app).get(
            f"/v1/projects/{canvas.project_id}/framework",
            headers={"Authorization": "Bearer user-jwt"},
        )

        assert response.status_code == 200
        canvas.db.auth.get_user.assert_called_once_with("user-jwt")

    def test_rejected_bearer_token(self, canvas):
        canvas.db.auth.get_user.side_effect = Exception("invalid JWT")
        response = TestClient(app).get("/v1/frameworks", headers={"Authorization": "Bearer bad"})
        assert response.status_code == 401

    def test_admin_api_key(self, canvas):
        response = TestClient(app).get(
            f"/v1/projects/{canvas.project_id}/framework",
            headers={"X-API-Key": "test-admin-key"},
        )
        assert response.status_code == 200


# ──────────────────────────────────────────────────────────────────────
# Suggestions
# ──────────────────────────────────────────────────────────────────────


class TestSuggestionsApi:
    def test_create_list_apply(self, client, canvas):
        created = client.post("/v1/canvas/suggestions", json=_suggestion_body(canvas))
        assert created.status_code == 201
        suggestion = created.json()
        assert suggestion["status"] == "pending"
        assert suggestion["source"] == "api"

        listed = client.get(
            "/v1/canvas/suggestions",
            params={"project_id": canvas.project_id, "project_framework_id": canvas.project_framework_id},
        ).json()
        assert listed["total"] == 1
        assert listed["suggestions"][0]["id"] == suggestion["id"]

        applied = client.post(f"/v1/canvas/suggestions/{suggestion['id']}/apply")
        assert applied.status_code == 200
        assert applied.json()["status"] == "accepted"
        assert canvas.db.row("canvas_nodes", canvas.nodes[0]["id"])["tags"] == ["定价"]

        again = client.post(f"/v1/canvas/suggestions/{suggestion['id']}/apply")
        assert again.status_code == 409
        assert again.json()["error"] == "conflict"

        pending = client.get(
            "/v1/canvas/suggestions",
            params={"project_id": canvas.project_id, "node_id": canvas.nodes[0]["id"], "status": "pending"},
        ).json()
        assert pending["total"] == 0

    def test_list_requires_scope(self, client, canvas):
        response = client.get("/v1/canvas/suggestions", params={"project_id": canvas.project_id})
        assert response.status_code == 400

    def test_invalid_params_rejected(self, client, canvas):
        response = client.post(
            "/v1/canvas/suggestions",
            json=_suggestion_body(canvas, type="refine-content", action_params={"tags": ["x"]}),
        )
        assert response.status_code == 400
        assert "refined_content" in response.json()["detail"]
        assert canvas.db.rows("canvas_suggestions") == []

    def test_unknown_type_rejected(self, client, canvas):
        response = client.post("/v1/canvas/suggestions", json=_suggestion_body(canvas, type="merge-nodes"))
        assert response.status_code == 400
        assert canvas.db.rows("canvas_suggestions") == []

    def test_legacy_dismiss_then_apply_is_conflict(self, client, canvas):
        suggestion = client.post("/v1/canvas/suggestions", json=_suggestion_body(canvas)).json()

        dismissed = client.post("/v1/canvas/suggestion/dismiss", json={"suggestion_id": suggestion["id"]})
        assert dismissed.status_code == 200
        assert dismissed.json()["status"] == "dismissed"

        assert client.post(f"/v1/canvas/suggestions/{suggestion['id']}/apply").status_code == 409
        assert client.post(f"/v1/canvas/suggestions/{suggestion['id']}/dismiss").status_code == 409
        assert canvas.db.row("canvas_nodes", canvas.nodes[0]["id"])["tags"] == []

    def test_content_suggestion_apply_then_accept(self, client, canvas):
        suggestion = client.post(
            "/v1/canvas/suggestions",
            json=_suggestion_body(canvas, type="content-suggestion", action_params={"suggestion_points": ["量化"]}),
        ).json()

        applied = client.post(f"/v1/canvas/suggestions/{suggestion['id']}/apply").json()
        assert applied["status"] == "pending"
        assert applied["result"]["action"] == "open-ai-chat"

        accepted = client.post(f"/v1/canvas/suggestions/{suggestion['id']}/accept")
        assert accepted.status_code == 200
        assert accepted.json()["status"] == "accepted"

    def test_unknown_suggestion(self, client):
        assert client.post(f"/v1/canvas/suggestions/{uuid4()}/apply").status_code == 404


# ──────────────────────────────────────────────────────────────────────
# Affinities
# ──────────────────────────────────────────────────────────────────────


class TestAffinitiesApi:
    def test_replace_and_read(self, client, canvas):
        node_id = canvas.nodes[1]["id"]
        url = f"/v1/canvas/{node_id}/affinities"

        client.patch(url, json={"project_framework_id": canvas.project_framework_id, "affinities": {"problem": 0.4}})
        response = client.patch(
            url,
            json={"project_framework_id": canvas.project_framework_id, "affinities": {"customer-segments": 0.7}},
        )

        assert response.status_code == 200
        assert response.json()["affinities"] == {"customer-segments": 0.7}
        read = client.get(url, params={"project_framework_id": canvas.project_framework_id}).json()
        assert read["affinities"] == {"customer-segments": 0.7}

    def test_out_of_range_weight(self, client, canvas):
        response = client.patch(
            f"/v1/canvas/{canvas.nodes[0]['id']}/affinities",
            json={"project_framework_id": canvas.project_framework_id, "affinities": {"problem": 1.5}},
        )
        assert response.status_code == 422
        assert canvas.db.row("canvas_nodes", canvas.nodes[0]["id"])["zone_affinities"] == {}

    def test_framework_from_another_project(self, client, canvas):
        other = canvas.db.insert_row("project_frameworks", {"project_id": str(uuid4()), "name": "x"})
        response = client.patch(
            f"/v1/canvas/{canvas.nodes[0]['id']}/affinities",
            json={"project_framework_id": other["id"], "affinities": {"problem": 0.5}},
        )
        assert response.status_code == 400

    def test_populate_then_list(self, client, canvas):
        body = {"project_id": canvas.project_id, "project_framework_id": canvas.project_framework_id}

        first = client.post("/v1/canvas/populate-affinities", json=body).json()
        second = client.post("/v1/canvas/populate-affinities", json=body).json()

        assert first == {"updated": 3, "skipped": 0, "total_root_nodes": 3, "zone_count": 9}
        assert second["updated"] == 0
        listed = client.get("/v1/canvas/affinities", params=body).json()
        assert len(listed["affinities"]) == 3


# ──────────────────────────────────────────────────────────────────────
# Layout
# ──────────────────────────────────────────────────────────────────────


class TestLayoutApi:
    def test_layout_with_overrides(self, client, canvas):
        client.post(
            "/v1/canvas/populate-affinities",
            json={"project_id": canvas.project_id, "project_framework_id": canvas.project_framework_id},
        )
        node_id = canvas.nodes[0]["id"]

        saved = client.patch(
            "/v1/canvas/positions",
            json={
                "project_framework_id": canvas.project_framework_id,
                "positions": [{"node_id": node_id, "x": 12.5, "y": 40}],
            },
        )
        assert saved.json() == {"success": True, "saved": 1}

        layout = client.get("/v1/canvas/layout", params={"project_id": canvas.project_id}).json()
        assert len(layout["zones"]) == 9
        assert set(layout["positions"]) == {n["id"] for n in canvas.nodes}
        assert layout["positions"][node_id]["x"] == 12.5
        assert layout["overridden"] == [node_id]

        positions = client.get(
            "/v1/canvas/positions", params={"project_framework_id": canvas.project_framework_id}
        ).json()
        assert positions == [{"node_id": node_id, "x": 12.5, "y": 40.0}]

    def test_positions_for_foreign_node(self, client, canvas):
        response = client.patch(
            "/v1/canvas/positions",
            json={
                "project_framework_id": canvas.project_framework_id,
                "positions": [{"node_id": str(uuid4()), "x": 0, "y": 0}],
            },
        )
        assert response.status_code == 400
        assert canvas.db.rows("canvas_node_positions") == []

    def test_clear_positions(self, client, canvas):
        client.patch(
            "/v1/canvas/positions",
            json={
                "project_framework_id": canvas.project_framework_id,
                "positions": [{"node_id": canvas.nodes[0]["id"], "x": 1, "y": 2}],
            },
        )

        unscoped = client.post("/v1/migrations/clear-positions", json={})
        assert unscoped.status_code == 401

        scoped = client.post(
            "/v1/migrations/clear-positions", json={"project_framework_id": canvas.project_framework_id}
        )
        assert scoped.json() == {"success": True, "deleted": 1}


# ──────────────────────────────────────────────────────────────────────
# Frameworks
# ──────────────────────────────────────────────────────────────────────


class TestFrameworksApi:
    def test_list_and_get(self, client, canvas):
        frameworks = client.get("/v1/frameworks").json()
        assert [f["slug"] for f in frameworks] == ["lean-canvas"]

        detail = client.get(f"/v1/frameworks/{canvas.framework_id}").json()
        assert [z["zone_key"] for z in detail["zones"]] == canvas.zone_keys

    def test_project_framework_includes_dimension_scores(self, client, canvas):
        canvas.db.insert_row(
            "project_framework_dimension_scores",
            {"project_framework_id": canvas.project_framework_id, "dimension_key": "problem", "score": 70},
        )

        detail = client.get(f"/v1/projects/{canvas.project_id}/framework").json()

        assert detail["id"] == canvas.project_framework_id
        assert len(detail["zones"]) == 9
        assert detail["dimension_scores"][0]["dimension_key"] == "problem"

    def test_adopt_switches_and_reuses_snapshot(self, client, canvas):
        from tests.conftest import seed_template

        design_id = seed_template("design-thinking")
        url = f"/v1/projects/{canvas.project_id}/framework"

        adopted = client.put(url, json={"framework_id": design_id}).json()
        assert adopted["framework_slug"] == "design-thinking"
        assert adopted["is_active"] is True
        assert canvas.db.row("projects", canvas.project_id)["default_framework_id"] == design_id
        assert canvas.db.row("project_frameworks", canvas.project_framework_id)["is_active"] is False

        back = client.put(url, json={"framework_id": canvas.framework_id}).json()
        assert back["id"] == canvas.project_framework_id
        assert back["is_active"] is True
        assert len(canvas.db.rows("project_frameworks", project_id=canvas.project_id)) == 2

    def test_failed_snapshot_leaves_nothing_to_reuse(self, client, canvas):
        from tests.conftest import seed_template

        design_id = seed_template("design-thinking")
        template_zones = canvas.db.rows("framework_zones", framework_id=design_id)
        url = f"/v1/projects/{canvas.project_id}/framework"
        real_table = canvas.db.table

        def zones_insert_fails(name):
            if name == "project_framework_zones":
                broken = MagicMock()
                broken.insert.return_value.execute.side_effect = RuntimeError("insert failed")
                return broken
            return real_table(name)

        with patch.object(canvas.db, "table", side_effect=zones_insert_fails):
            failed = client.put(url, json={"framework_id": design_id})

        assert failed.status_code == 500
        assert canvas.db.rows("project_frameworks", source_framework_id=design_id) == []
        assert canvas.db.row("project_frameworks", canvas.project_framework_id)["is_active"] is True

        adopted = client.put(url, json={"framework_id": design_id}).json()
        assert adopted["is_active"] is True
        assert len(adopted["zones"]) == len(template_zones) > 0
