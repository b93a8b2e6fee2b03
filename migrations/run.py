"""Apply the SQL migrations in this directory to the coldwatch database.

Usage:
    python migrations/run.py
    python migrations/run.py --host localhost --port 5432 --db coldwatch
    python migrations/run.py --dry-run

Connection defaults come from configs/coldwatch.yaml (which reads the
POSTGRES_* environment variables); command-line flags override them.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from pathlib import Path

import psycopg2

from coldwatch.config import DatabaseSettings, load_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent


def get_connection(db: DatabaseSettings) -> psycopg2.extensions.connection:
    conn = psycopg2.connect(
        host=db.host,
        port=db.port,
        dbname=db.name,
        user=db.user,
        password=db.password,
    )
    conn.autocommit = False
    return conn


def get_applied_versions(conn: psycopg2.extensions.connection) -> set[int]:
    """Already-applied migration versions, or an empty set on a fresh database."""
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT version FROM schema_migrations")
            return {row[0] for row in cur.fetchall()}
    except psycopg2.errors.UndefinedTable:
        conn.rollback()
        return set()


def migration_version(path: Path) -> int:
    """001_create_sensor_tables.sql -> 1"""
    return int(path.stem.split("_")[0])


def pending_migrations(applied: set[int], directory: Path = MIGRATIONS_DIR) -> list[Path]:
    return [p for p in sorted(directory.glob("*.sql")) if migration_version(p) not in applied]


def run_migrations(db: DatabaseSettings, dry_run: bool = False) -> list[int]:
    """Execute pending migrations in version order. Returns the versions applied."""
    conn = get_connection(db)
    done: list[int] = []

    try:
        applied = get_applied_versions(conn)
        logger.info("Already applied migrations: %s", sorted(applied) or "none")

        for migration_file in pending_migrations(applied):
            version = migration_version(migration_file)
            if dry_run:
                logger.info("Would apply migration %03d: %s", version, migration_file.name)
                continue

            logger.info("Applying migration %03d: %s", version, migration_file.name)
            with conn.cursor() as cur:
                cur.execute(migration_file.read_text())
                cur.execute(
                    "INSERT INTO schema_migrations (version) VALUES (%s) ON CONFLICT DO NOTHING",
                    (version,),
                )
            conn.commit()
            done.append(version)

        logger.info("Migrations complete: %d applied.", len(done))
        return done

    except Exception:
        conn.rollback()
        logger.exception("Migration failed, rolled back")
        raise
    finally:
        conn.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run coldwatch database migrations")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--db", type=str, default=None)
    parser.add_argument("--user", type=str, default=None)
    parser.add_argument("--password", type=str, default=None)
    parser.add_argument("--dry-run", action="store_true", help="List pending migrations only")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s — %(name)s — %(levelname)s — %(message)s",
    )

    db = load_settings().database
    overrides = {
        "host": args.host,
        "port": args.port,
        "name": args.db,
        "user": args.user,
        "password": args.password,
    }
    db = replace(db, **{k: v for k, v in overrides.items() if v is not None})

    run_migrations(db, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
