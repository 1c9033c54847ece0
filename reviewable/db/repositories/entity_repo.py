"""
Repository for registered entities: the reviewers that are not anonymous.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from reviewable.db.repositories.base import BaseRepository
from reviewable.models.reviewer import Entity, EntityRef
from reviewable.utils.time_utils import parse_db_timestamp

logger = logging.getLogger(__name__)


class EntityRepository(BaseRepository):
    """Read/write access to the ``entities`` table."""

    def upsert(self, entity: Entity) -> EntityRef:
        """Register an entity, updating its display name if already present.

        Args:
            entity: The ``Entity`` to persist.

        Returns:
            The entity's ``EntityRef``.
        """
        self.execute(
            """
            INSERT INTO entities (entity_type, entity_id, display_name)
            VALUES (?, ?, ?)
            ON CONFLICT(entity_type, entity_id) DO UPDATE SET
                display_name = COALESCE(excluded.display_name, entities.display_name);
            """,
            (entity.entity_type, entity.entity_id, entity.display_name),
        )
        return entity.ref

    def get(self, ref: EntityRef) -> Optional[Entity]:
        """Fetch an entity by reference, or ``None``."""
        row = self.fetchone(
            "SELECT * FROM entities WHERE entity_type = ? AND entity_id = ?;",
            (ref.entity_type, ref.entity_id),
        )
        return _row_to_entity(row) if row else None

    def exists(self, ref: EntityRef) -> bool:
        """Return ``True`` if the entity is registered."""
        row = self.fetchone(
            "SELECT 1 FROM entities WHERE entity_type = ? AND entity_id = ?;",
            (ref.entity_type, ref.entity_id),
        )
        return row is not None


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_entity(row: sqlite3.Row) -> Entity:
    return Entity(
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        display_name=row["display_name"],
        created_at=parse_db_timestamp(row["created_at"]),
    )
