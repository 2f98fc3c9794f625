"""Seed the platform framework templates.

Usage:
    python scripts/seed_frameworks.py [--dry-run]

Upserts every framework in the platform catalog (keyed by slug) and
upserts its zones. Safe to re-run.
"""

import sys

from app.core.framework_catalog import PLATFORM_FRAMEWORKS, CatalogFramework
from app.core.logging import get_logger
from app.db.supabase_client import first_row, get_supabase

logger = get_logger(__name__)


def _zone_rows(framework_id: str, framework: CatalogFramework) -> list[dict]:
    return [
        {
            "framework_id": framework_id,
            "zone_key": zone.zone_key,
            "name": zone.name,
            "description": zone.description,
            "color_key": zone.color_key,
            "display_order": index,
        }
        for index, zone in enumerate(framework.zones)
    ]


def seed_framework(framework: CatalogFramework) -> str:
    """Upsert one template and its zones. Returns the framework id."""
    supabase = get_supabase()
    row = first_row(
        supabase.table("frameworks")
        .upsert(
            {
                "slug": framework.slug,
                "name": framework.name,
                "icon": framework.icon,
                "description": framework.description,
                "owner_id": None,
                "is_active": True,
            },
            on_conflict="slug",
        )
        .execute()
    )
    if not row:
        raise ValueError(f"No data returned when seeding {framework.slug}")

    supabase.table("framework_zones").upsert(
        _zone_rows(row["id"], framework), on_conflict="framework_id,zone_key"
    ).execute()
    return row["id"]


def main() -> int:
    dry_run = "--dry-run" in sys.argv[1:]

    for framework in PLATFORM_FRAMEWORKS:
        if dry_run:
            print(f"{framework.slug}: {framework.name} ({len(framework.zones)} zones)")
            continue
        framework_id = seed_framework(framework)
        logger.info(f"Seeded {framework.slug} ({len(framework.zones)} zones) as {framework_id}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
