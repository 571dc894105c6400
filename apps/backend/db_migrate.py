"""
Migration runner for the remediation schema.

Usage:
  python -m apps.backend.db_migrate
  python -m apps.backend.db_migrate --dry-run
  python -m apps.backend.db_migrate --migrations-dir migrations

Migrations are ``NNN_name.sql`` files applied in name order; applied versions
are tracked in ``schema_migrations``.
"""

from __future__ import annotations

import argparse
import logging
import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from apps.backend.db import db_conn

logger = logging.getLogger(__name__)

DEFAULT_MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"

_DOLLAR_TAG = re.compile(r"\$[A-Za-z0-9_]*\$")


def _ensure_migrations_table(conn: Any) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
              version TEXT PRIMARY KEY,
              applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
            )
            """
        )
    conn.commit()


def _applied_versions(conn: Any) -> set[str]:
    with conn.cursor() as cur:
        cur.execute("SELECT version FROM schema_migrations")
        rows = cur.fetchall() or []
    return {str(r[0]) for r in rows if r and r[0]}


def _split_sql(sql: str) -> list[str]:
    """Split a SQL script on top-level semicolons.

    Semicolons inside quoted strings, ``--`` and ``/* */`` comments, and
    dollar-quoted bodies do not terminate a statement.
    """
    statements: list[str] = []
    start = 0
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if sql.startswith("--", i):
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
        elif sql.startswith("/*", i):
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
        elif ch == "'":
            i += 1
            while i < n:
                if sql[i] == "'" and sql.startswith("''", i):
                    i += 2
                elif sql[i] == "'":
                    i += 1
                    break
                else:
                    i += 1
        elif ch == "$" and (tag := _DOLLAR_TAG.match(sql, i)):
            end = sql.find(tag.group(0), tag.end())
            i = n if end == -1 else end + len(tag.group(0))
        elif ch == ";":
            stmt = sql[start:i].strip()
            if stmt:
                statements.append(stmt)
            i += 1
            start = i
        else:
            i += 1
    tail = sql[start:].strip()
    if tail:
        statements.append(tail)
    return statements


def _iter_migration_files(migrations_dir: Path) -> Iterable[Path]:
    if not migrations_dir.exists():
        return []
    return sorted((p for p in migrations_dir.iterdir() if p.is_file() and p.suffix == ".sql"), key=lambda p: p.name)


def pending_migration_versions(conn: Any, *, migrations_dir: Path) -> list[str]:
    """Return migration versions not yet recorded for this database."""
    _ensure_migrations_table(conn)
    applied = _applied_versions(conn)
    return [p.stem for p in _iter_migration_files(migrations_dir) if p.stem not in applied]


def _apply_sql_migration(conn: Any, path: Path) -> None:
    """Apply every statement of one file and record the version in a single transaction."""
    with conn.cursor() as cur:
        for stmt in _split_sql(path.read_text(encoding="utf-8")):
            cur.execute(stmt)
        cur.execute("INSERT INTO schema_migrations (version) VALUES (%s)", (path.stem,))
    conn.commit()


def run_migrations(*, migrations_dir: Path = DEFAULT_MIGRATIONS_DIR, dry_run: bool = False) -> list[str]:
    """Apply pending migrations (or only list them on dry-run) and return their versions."""
    with db_conn() as conn:
        pending_versions = set(pending_migration_versions(conn, migrations_dir=migrations_dir))
        pending = [p for p in _iter_migration_files(migrations_dir) if p.stem in pending_versions]
        if dry_run:
            for path in pending:
                logger.info("Pending migration %s", path.name)
            return [p.stem for p in pending]

        for path in pending:
            logger.info("Applying migration %s", path.name)
            _apply_sql_migration(conn, path)
    return [p.stem for p in pending]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Apply database migrations.")
    parser.add_argument("--dry-run", action="store_true", help="Show pending migrations without applying.")
    parser.add_argument(
        "--migrations-dir",
        default=str(DEFAULT_MIGRATIONS_DIR),
        help="Path to migrations directory (default: ./migrations).",
    )
    args = parser.parse_args(argv)
    versions = run_migrations(migrations_dir=Path(args.migrations_dir), dry_run=bool(args.dry_run))
    label = "Pending" if args.dry_run else "Applied"
    print(f"{label}: {', '.join(versions) if versions else 'none'}")


if __name__ == "__main__":
    main()
