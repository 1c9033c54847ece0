"""
Repository for reviewable targets and their cached aggregate columns.

Cache writes go straight to the two ``cached_*`` columns: the target row is
never re-validated as a whole, so an unrelated bad field on a target can not
block statistics from being refreshed.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Optional

from reviewable.db.repositories.base import BaseRepository
from reviewable.models.target import ReviewableTarget, TargetRef
from reviewable.utils.time_utils import parse_db_timestamp

logger = logging.getLogger(__name__)


class TargetRepository(BaseRepository):
    """Read/write access to the ``reviewable_targets`` table."""

    def insert(self, target: ReviewableTarget) -> TargetRef:
        """Insert a new target row including its initial cache values.

        Raises:
            sqlite3.IntegrityError: If the target already exists.
        """
        self.execute(
            """
            INSERT INTO reviewable_targets (
                target_type, target_id, display_name,
                cached_total_reviews, cached_average_rating
            ) VALUES (?, ?, ?, ?, ?);
            """,
            (
                target.target_type,
                target.target_id,
                target.display_name,
                target.cached_total_reviews,
                target.cached_average_rating,
            ),
        )
        return target.ref

    def get(self, ref: TargetRef) -> Optional[ReviewableTarget]:
        """Fetch a target by reference, or ``None``."""
        row = self.fetchone(
            "SELECT * FROM reviewable_targets WHERE target_type = ? AND target_id = ?;",
            (ref.target_type, ref.target_id),
        )
        return _row_to_target(row) if row else None

    def exists(self, ref: TargetRef) -> bool:
        row = self.fetchone(
            "SELECT 1 FROM reviewable_targets WHERE target_type = ? AND target_id = ?;",
            (ref.target_type, ref.target_id),
        )
        return row is not None

    def update_cache(
        self,
        ref: TargetRef,
        total_reviews: Optional[int] = None,
        average_rating: Optional[float] = None,
    ) -> bool:
        """Write the given cache columns; ``None`` leaves a column untouched.

        Returns:
            ``True`` if a row was updated.
        """
        assignments: list[str] = []
        params: list[object] = []
        if total_reviews is not None:
            assignments.append("cached_total_reviews = ?")
            params.append(total_reviews)
        if average_rating is not None:
            assignments.append("cached_average_rating = ?")
            params.append(average_rating)
        if not assignments:
            return False

        assignments.append("updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now')")
        cursor = self.execute(
            f"""
            UPDATE reviewable_targets SET {", ".join(assignments)}
            WHERE target_type = ? AND target_id = ?;
            """,
            (*params, ref.target_type, ref.target_id),
        )
        return cursor.rowcount > 0

    def delete(self, ref: TargetRef) -> bool:
        """Delete a target; its reviews go with it (FK cascade)."""
        cursor = self.execute(
            "DELETE FROM reviewable_targets WHERE target_type = ? AND target_id = ?;",
            (ref.target_type, ref.target_id),
        )
        return cursor.rowcount > 0

    def list_reviewed(self, target_type: str) -> list[ReviewableTarget]:
        """Return targets of one type that have at least one review."""
        rows = self.fetchall(
            """
            SELECT t.* FROM reviewable_targets t
            WHERE t.target_type = ?
              AND EXISTS (
                  SELECT 1 FROM reviews r
                  WHERE r.target_type = t.target_type AND r.target_id = t.target_id
              )
            ORDER BY t.target_id;
            """,
            (target_type,),
        )
        return [_row_to_target(r) for r in rows]


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_target(row: sqlite3.Row) -> ReviewableTarget:
    return ReviewableTarget(
        target_type=row["target_type"],
        target_id=row["target_id"],
        display_name=row["display_name"],
        cached_total_reviews=row["cached_total_reviews"],
        cached_average_rating=row["cached_average_rating"],
        created_at=parse_db_timestamp(row["created_at"]),
        updated_at=parse_db_timestamp(row["updated_at"]),
    )
