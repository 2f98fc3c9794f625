"""Pytest configuration and fixtures."""

import os
from types import SimpleNamespace
from unittest.mock import patch
from uuid import uuid4

import pytest

# Settings are read lazily, but loggers are created at import time; set the
# environment before any app module is collected.
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")
os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ["CROSSMIND_ENV"] = "test"

from tests.fakes.fake_supabase import FakeSupabase  # noqa: E402


@pytest.fixture
def fake_supabase():
    """Route every get_supabase() call to a fresh in-memory store."""
    from app.db import supabase_client

    fake = FakeSupabase()
    supabase_client.get_supabase.cache_clear()
    with patch.object(supabase_client, "create_client", return_value=fake):
        yield fake
    supabase_client.get_supabase.cache_clear()


@pytest.fixture(autouse=True)
def clear_analysis_runs():
    from app.agents import health_analysis_agent

    health_analysis_agent._ACTIVE_RUNS.clear()
    yield
    health_analysis_agent._ACTIVE_RUNS.clear()


def seed_template(slug: str = "lean-canvas") -> str:
    """Seed one platform framework template from the catalog; returns its id."""
    from app.core.framework_catalog import get_catalog_framework
    from scripts.seed_frameworks import seed_framework

    return seed_framework(get_catalog_framework(slug))


@pytest.fixture
def canvas(fake_supabase):
    """
    A lean-canvas project: owner, template, active project framework
    snapshot and three root nodes without affinities.
    """
    from app.db.frameworks import create_project_framework_snapshot

    owner_id = str(uuid4())
    framework_id = seed_template("lean-canvas")
    project = fake_supabase.insert_row(
        "projects",
        {"name": "咖啡订阅", "description": "面向白领的精品咖啡订阅", "owner_id": owner_id,
         "default_framework_id": framework_id},
    )
    project_framework = create_project_framework_snapshot(project["id"], framework_id)

    nodes = [
        fake_supabase.insert_row(
            "canvas_nodes",
            {"project_id": project["id"], "title": title, "content": f"{title}的内容", "display_order": i},
        )
        for i, title in enumerate(["通勤族没时间买咖啡", "25-35岁白领", "每天早上8点送达"])
    ]

    return SimpleNamespace(
        owner_id=owner_id,
        project_id=project["id"],
        framework_id=framework_id,
        project_framework_id=project_framework["id"],
        zone_keys=[z["zone_key"] for z in project_framework["zones"]],
        nodes=nodes,
        db=fake_supabase,
    )
