"""
SQLite schema DDL: all CREATE TABLE and CREATE INDEX statements.

All statements use ``IF NOT EXISTS`` so ``apply_schema()`` is idempotent.

Table creation order respects foreign key dependencies:
  1. entities             (no FKs)
  2. reviewable_targets   (no FKs)
  3. reviews              (→ reviewable_targets, ON DELETE CASCADE)

``reviews.reviewer_key`` is ``entity:<type>:<id>`` or ``ip:<address>``.
``UNIQUE(target_type, target_id, reviewer_key)`` is what guarantees at most
one review per reviewer and target, including under concurrent writers.
"""

from __future__ import annotations

import logging
import sqlite3

logger = logging.getLogger(__name__)

# ── DDL statements ─────────────────────────────────────────────────────────────

_DDL_ENTITIES = """
CREATE TABLE IF NOT EXISTS entities (
    entity_type     TEXT    NOT NULL,
    entity_id       TEXT    NOT NULL,
    display_name    TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    PRIMARY KEY (entity_type, entity_id)
);
"""

_DDL_REVIEWABLE_TARGETS = """
CREATE TABLE IF NOT EXISTS reviewable_targets (
    target_type            TEXT    NOT NULL,
    target_id              TEXT    NOT NULL,
    display_name           TEXT,
    cached_total_reviews   INTEGER,
    cached_average_rating  REAL,
    created_at             TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at             TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    PRIMARY KEY (target_type, target_id)
);
"""

_DDL_REVIEWS = """
CREATE TABLE IF NOT EXISTS reviews (
    review_id      INTEGER PRIMARY KEY AUTOINCREMENT,
    target_type    TEXT    NOT NULL,
    target_id      TEXT    NOT NULL,
    reviewer_key   TEXT    NOT NULL,
    reviewer_type  TEXT,
    reviewer_id    TEXT,
    ip             TEXT,
    rating         REAL,
    body           TEXT,
    extra_json     TEXT    NOT NULL DEFAULT '{}',
    created_at     TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at     TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    UNIQUE (target_type, target_id, reviewer_key),
    FOREIGN KEY (target_type, target_id)
        REFERENCES reviewable_targets(target_type, target_id)
        ON DELETE CASCADE,
    CHECK ((reviewer_id IS NOT NULL) <> (ip IS NOT NULL))
);
"""

_DDL_REVIEWS_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_reviews_reviewer
    ON reviews(reviewer_type, reviewer_id)
    WHERE reviewer_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS idx_reviews_ip
    ON reviews(ip)
    WHERE ip IS NOT NULL;
"""

# ── Ordered list of all DDL to apply ──────────────────────────────────────────

_ALL_DDL: list[str] = [
    _DDL_ENTITIES,
    _DDL_REVIEWABLE_TARGETS,
    _DDL_REVIEWS,
    _DDL_REVIEWS_INDEXES,
]

# Table names for introspection / tests
ALL_TABLE_NAMES = [
    "entities",
    "reviewable_targets",
    "reviews",
]


def apply_schema(conn: sqlite3.Connection) -> None:
    """Apply all DDL statements to ``conn``.

    Idempotent: safe to call on an already-initialized database.

    Args:
        conn: An open ``sqlite3.Connection`` (FK enforcement should be ON).
    """
    logger.debug("Applying schema to database...")

    for ddl in _ALL_DDL:
        for statement in _split_ddl(ddl):
            conn.execute(statement)

    conn.commit()
    logger.info("Schema applied: %d tables, indexes created/verified.", len(ALL_TABLE_NAMES))


def _split_ddl(ddl: str) -> list[str]:
    """Split a multi-statement DDL block on semicolons."""
    return [s.strip() for s in ddl.split(";") if s.strip()]


def get_existing_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted table names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]


def get_existing_indexes(conn: sqlite3.Connection) -> list[str]:
    """Return the sorted index names present in the database."""
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='index' ORDER BY name;"
    ).fetchall()
    return [row["name"] for row in rows]
