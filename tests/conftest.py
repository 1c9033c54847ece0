"""
Shared pytest fixtures for the reviewable test suite.

Provides:
  - ``in_memory_db``: A fresh in-memory SQLite connection with the full
    schema and migrations applied.
  - ``registry``: A frozen registry with three reviewable types covering the
    cached / uncached and IP / entity-only combinations.
  - ``engine``: A ``ReviewEngine`` over ``in_memory_db`` and ``registry``.
  - Registered sample targets and reviewers.
"""

from __future__ import annotations

import sqlite3
from typing import Generator

import pytest

from reviewable.config import ReviewableTypeConfig
from reviewable.db.migrations import run_migrations
from reviewable.db.schema import apply_schema
from reviewable.engine.engine import ReviewEngine
from reviewable.models.reviewer import EntityRef
from reviewable.models.scale import ScaleRange
from reviewable.models.target import TargetRef
from reviewable.registry import ReviewableRegistry, build_registry


# ── Database fixture ──────────────────────────────────────────────────────────

@pytest.fixture
def in_memory_db() -> Generator[sqlite3.Connection, None, None]:
    """Yield a fresh in-memory SQLite connection with the full schema applied.

    Foreign key enforcement is ON. Connection is closed after the test.
    """
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    apply_schema(conn)
    run_migrations(conn)
    yield conn
    conn.close()


# ── Registry / engine fixtures ────────────────────────────────────────────────

@pytest.fixture
def type_configs() -> dict[str, ReviewableTypeConfig]:
    """Raw type configs as they would come out of ``[types.*]``."""
    return {
        # 1.0..5.0, both aggregates cached, registered users only.
        "product": ReviewableTypeConfig(
            scale=ScaleRange(first=1.0, last=5.0),
            total_precision=1,
            reviewer_types=["user"],
            cache_fields=["total_reviews", "average_rating"],
        ),
        # Explicit values, anonymous IPs allowed, nothing cached.
        "post": ReviewableTypeConfig(
            values=[1, 2, 3, 4, 5],
            accept_ip=True,
        ),
        # Half-step range, only the count cached.
        "photo": ReviewableTypeConfig(
            range=ScaleRange(first=0.5, last=5.0),
            steps=10,
            total_precision=2,
            anonymous=True,
            cache_fields=["total_reviews"],
        ),
    }


@pytest.fixture
def registry(type_configs) -> ReviewableRegistry:
    return build_registry(type_configs)


@pytest.fixture
def engine(in_memory_db, registry) -> ReviewEngine:
    return ReviewEngine(in_memory_db, registry)


# ── Sample refs ───────────────────────────────────────────────────────────────

@pytest.fixture
def product(engine) -> TargetRef:
    """Registered ``product#1`` (cached type)."""
    return engine.register_target("product", 1, display_name="Widget")


@pytest.fixture
def post(engine) -> TargetRef:
    """Registered ``post#1`` (uncached, IP reviewing allowed)."""
    return engine.register_target("post", 1)


@pytest.fixture
def user7(engine) -> EntityRef:
    return engine.register_entity("user", 7, display_name="Ada")


@pytest.fixture
def user8(engine) -> EntityRef:
    return engine.register_entity("user", 8, display_name="Grace")


@pytest.fixture
def account3(engine) -> EntityRef:
    return engine.register_entity("account", 3)
