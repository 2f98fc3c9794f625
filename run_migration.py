#!/usr/bin/env python3
"""Apply SQL migrations to the canvas database.

Usage:
    python3 run_migration.py                                   # every file in migrations/
    python3 run_migration.py migrations/0001_crossmind_canvas.sql
"""
import os
import sys
from pathlib import Path

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def migration_files(args: list[str]) -> list[Path]:
    if args:
        return [Path(a) for a in args]
    return sorted(MIGRATIONS_DIR.glob("*.sql"))


def main() -> int:
    files = migration_files(sys.argv[1:])
    if not files:
        print(f"No migrations found in {MIGRATIONS_DIR}")
        return 1

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("DATABASE_URL environment variable not set")
        print("Run these files in the Supabase SQL editor instead:")
        for path in files:
            print(f"  {path}")
        return 1

    try:
        import psycopg2
    except ImportError:
        print("psycopg2 not installed. Install with: pip install -e '.[migrate]'")
        return 1

    conn = psycopg2.connect(database_url)
    try:
        with conn.cursor() as cursor:
            for path in files:
                print(f"Applying {path.name} ({path.stat().st_size} bytes)")
                cursor.execute(path.read_text())
        conn.commit()
    except Exception as e:
        conn.rollback()
        print(f"Error running migration: {e}")
        return 1
    finally:
        conn.close()

    print(f"Applied {len(files)} migration(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
