"""Schema migration system for RecallMesh.

Uses SQLite's built-in ``PRAGMA user_version`` to track schema versions.
Migrations are additive-only -- no destructive changes are ever applied.

Usage::

    from recallmesh.migrations import ensure_schema

    conn = sqlite3.connect("recallmesh.db")
    version = ensure_schema(conn)
"""

from __future__ import annotations

import logging
import sqlite3
from typing import NamedTuple

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Migration definition
# ---------------------------------------------------------------------------


class Migration(NamedTuple):
    """A single schema migration step.

    Attributes:
        version: The target schema version after this migration.
        description: Human-readable description of the change.
        statements: SQL statements to execute.
    """

    version: int
    description: str
    statements: list[str]


# ---------------------------------------------------------------------------
# Schema pieces
# ---------------------------------------------------------------------------

_MEMORIES_TABLE = """
    CREATE TABLE IF NOT EXISTS memories (
        id                  TEXT PRIMARY KEY,
        owner_id            TEXT    NOT NULL,
        text                TEXT    NOT NULL,
        tags_json           TEXT    NOT NULL DEFAULT '[]',
        metadata_json       TEXT    NOT NULL DEFAULT '{}',
        embedding_blob      BLOB,
        usage_count         INTEGER NOT NULL DEFAULT 0 CHECK (usage_count >= 0),
        helpfulness_score   REAL    NOT NULL DEFAULT 0.5
                            CHECK (helpfulness_score >= 0 AND helpfulness_score <= 1),
        last_accessed       TEXT,
        created_at          TEXT    NOT NULL,
        access_pattern_json TEXT    NOT NULL DEFAULT '{}'
    );
"""

_RELATIONSHIPS_TABLE = """
    CREATE TABLE IF NOT EXISTS memory_relationships (
        id                TEXT PRIMARY KEY,
        memory_id         TEXT NOT NULL,
        related_memory_id TEXT NOT NULL,
        pair_key          TEXT NOT NULL UNIQUE,
        relationship_type TEXT NOT NULL,
        strength          REAL NOT NULL DEFAULT 0.5,
        explanation       TEXT NOT NULL DEFAULT '',
        created_at        TEXT NOT NULL
    );
"""

_LEARNING_PARAMS_TABLE = """
    CREATE TABLE IF NOT EXISTS learning_params (
        owner_id                TEXT PRIMARY KEY,
        usage_weight            REAL    NOT NULL DEFAULT 0.3,
        recency_weight          REAL    NOT NULL DEFAULT 0.2,
        helpfulness_weight      REAL    NOT NULL DEFAULT 0.5,
        relationship_weight     REAL    NOT NULL DEFAULT 0.2,
        total_feedback          INTEGER NOT NULL DEFAULT 0,
        positive_feedback_count INTEGER NOT NULL DEFAULT 0,
        negative_feedback_count INTEGER NOT NULL DEFAULT 0,
        avg_satisfaction        REAL    NOT NULL DEFAULT 0.5,
        updated_at              TEXT    NOT NULL
    );
"""

_TEMPORAL_PATTERNS_TABLE = """
    CREATE TABLE IF NOT EXISTS temporal_patterns (
        id                TEXT PRIMARY KEY,
        owner_id          TEXT    NOT NULL,
        pattern_type      TEXT    NOT NULL,
        signature         TEXT    NOT NULL,
        pattern_data_json TEXT    NOT NULL,
        confidence        REAL    NOT NULL DEFAULT 0.5
                          CHECK (confidence >= 0 AND confidence <= 1),
        occurrence_count  INTEGER NOT NULL DEFAULT 1,
        first_seen        TEXT    NOT NULL,
        last_seen         TEXT    NOT NULL,
        UNIQUE (owner_id, pattern_type, signature)
    );
"""

_FULL_SCHEMA: list[str] = [
    _MEMORIES_TABLE,
    """
    CREATE INDEX IF NOT EXISTS idx_memories_owner
    ON memories (owner_id, created_at DESC);
    """,
    _RELATIONSHIPS_TABLE,
    """
    CREATE INDEX IF NOT EXISTS idx_relationships_memory
    ON memory_relationships (memory_id);
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_relationships_related
    ON memory_relationships (related_memory_id);
    """,
    _LEARNING_PARAMS_TABLE,
    _TEMPORAL_PATTERNS_TABLE,
]

# ---------------------------------------------------------------------------
# Migration list (incremental upgrades)
# ---------------------------------------------------------------------------

MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        description="Memories and relationship edges",
        statements=[],
    ),
    Migration(
        version=2,
        description="Per-owner learning parameters and temporal patterns",
        statements=[_LEARNING_PARAMS_TABLE, _TEMPORAL_PATTERNS_TABLE],
    ),
]

LATEST_VERSION: int = MIGRATIONS[-1].version


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Read the current schema version (``0`` if never set)."""
    cur = conn.execute("PRAGMA user_version")
    row = cur.fetchone()
    return row[0] if row else 0


def ensure_schema(conn: sqlite3.Connection) -> int:
    """Ensure the database schema is up to date.

    A fresh database gets the full schema stamped at
    :data:`LATEST_VERSION`.  A database created before versioning is
    stamped as version 1.  Pending migrations are then applied one at a
    time, each inside its own transaction; a failed migration leaves the
    version unchanged so the next call retries it.

    Args:
        conn: An open SQLite connection.

    Returns:
        The schema version after all migrations have been applied.
    """
    current = get_schema_version(conn)

    if current > LATEST_VERSION:
        logger.warning(
            "Database schema version (%d) is newer than the library supports (%d). "
            "Skipping migrations. Consider upgrading RecallMesh.",
            current,
            LATEST_VERSION,
        )
        return current

    if not _table_exists(conn, "memories") and current == 0:
        logger.debug("Fresh database detected -- creating schema at version %d", LATEST_VERSION)
        for stmt in _FULL_SCHEMA:
            conn.execute(stmt)
        conn.execute(f"PRAGMA user_version = {LATEST_VERSION}")
        conn.commit()
        return LATEST_VERSION

    if current == 0:
        logger.debug("Unversioned database detected -- stamping as version 1")
        current = 1
        conn.execute(f"PRAGMA user_version = {current}")
        conn.commit()

    for migration in MIGRATIONS:
        if migration.version <= current:
            continue
        logger.info("Applying migration v%d: %s", migration.version, migration.description)
        try:
            for stmt in migration.statements:
                conn.execute(stmt)
            conn.execute(f"PRAGMA user_version = {migration.version}")
            conn.commit()
            current = migration.version
        except Exception:
            conn.rollback()
            logger.exception("Migration v%d failed -- rolling back", migration.version)
            raise

    return current


def _table_exists(conn: sqlite3.Connection, table_name: str) -> bool:
    cur = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type='table' AND name=?",
        (table_name,),
    )
    return cur.fetchone() is not None
