"""
Review store: one review row per ``(target, reviewer)`` pair.

``upsert()`` is a single ``INSERT ... ON CONFLICT DO UPDATE`` keyed on
``UNIQUE(target_type, target_id, reviewer_key)``. Two writers racing on the
same pair therefore collapse into one row; whichever statement runs last
decides the field values. Fields the caller did not supply keep their stored
values, and ``extra`` is merged key by key.

Aggregate queries (``count``, ``average``) read the persisted rows directly;
the cache layer calls them after every mutation.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Mapping
from typing import Any, Optional

from reviewable.db.repositories.base import BaseRepository
from reviewable.models.review import Review
from reviewable.models.reviewer import AnonymousRef, EntityRef, ReviewerRef
from reviewable.models.target import TargetRef
from reviewable.taxonomy.identity_taxonomy import RESERVED_REVIEW_FIELDS
from reviewable.utils.time_utils import parse_db_timestamp

logger = logging.getLogger(__name__)

CONTENT_COLUMNS = ("rating", "body")


def permitted_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Drop reserved association/bookkeeping keys from submitted fields."""
    return {k: v for k, v in fields.items() if k not in RESERVED_REVIEW_FIELDS}


class ReviewRepository(BaseRepository):
    """Read/write access to the ``reviews`` table."""

    def find(self, target: TargetRef, reviewer: ReviewerRef) -> Optional[Review]:
        """Return the review ``reviewer`` left on ``target``, or ``None``."""
        row = self.fetchone(
            """
            SELECT * FROM reviews
            WHERE target_type = ? AND target_id = ? AND reviewer_key = ?;
            """,
            (target.target_type, target.target_id, reviewer.reviewer_key),
        )
        return _row_to_review(row) if row else None

    def upsert(
        self,
        target: TargetRef,
        reviewer: ReviewerRef,
        fields: Mapping[str, Any],
    ) -> Review:
        """Create the reviewer's review of ``target`` or merge ``fields`` into it.

        Args:
            target: Reviewed object.
            reviewer: Resolved reviewer.
            fields: Review content: ``rating``, ``body`` and any custom keys.
                Reserved keys are ignored.

        Returns:
            The persisted ``Review``.
        """
        fields = permitted_fields(fields)
        extra_update = {k: v for k, v in fields.items() if k not in CONTENT_COLUMNS}

        existing = self.find(target, reviewer)
        rating = fields["rating"] if "rating" in fields else (existing.rating if existing else None)
        body = fields["body"] if "body" in fields else (existing.body if existing else None)
        if body is not None:
            body = str(body)
        extra = {**existing.extra, **extra_update} if existing else extra_update

        reviewer_type = reviewer_id = ip = None
        if isinstance(reviewer, EntityRef):
            reviewer_type, reviewer_id = reviewer.entity_type, reviewer.entity_id
        else:
            ip = reviewer.ip

        self.execute(
            """
            INSERT INTO reviews (
                target_type, target_id, reviewer_key,
                reviewer_type, reviewer_id, ip,
                rating, body, extra_json
            ) VALUES (
                :target_type, :target_id, :reviewer_key,
                :reviewer_type, :reviewer_id, :ip,
                :rating, :body, :extra_json
            )
            ON CONFLICT(target_type, target_id, reviewer_key) DO UPDATE SET
                rating     = excluded.rating,
                body       = excluded.body,
                extra_json = excluded.extra_json,
                updated_at = strftime('%Y-%m-%dT%H:%M:%SZ', 'now');
            """,
            {
                "target_type": target.target_type,
                "target_id": target.target_id,
                "reviewer_key": reviewer.reviewer_key,
                "reviewer_type": reviewer_type,
                "reviewer_id": reviewer_id,
                "ip": ip,
                "rating": rating,
                "body": body,
                "extra_json": json.dumps(extra, sort_keys=True, default=str),
            },
        )

        review = self.find(target, reviewer)
        assert review is not None
        logger.debug(
            "Review %s %s: %s by %s",
            review.review_id,
            "updated" if existing else "created",
            target,
            reviewer,
        )
        return review

    def delete(self, target: TargetRef, reviewer: ReviewerRef) -> bool:
        """Remove the reviewer's review of ``target``.

        Returns:
            ``True`` if a row was removed.
        """
        cursor = self.execute(
            """
            DELETE FROM reviews
            WHERE target_type = ? AND target_id = ? AND reviewer_key = ?;
            """,
            (target.target_type, target.target_id, reviewer.reviewer_key),
        )
        return cursor.rowcount > 0

    def count(self, target: TargetRef) -> int:
        """Number of reviews on ``target``, rated or not."""
        row = self.fetchone(
            "SELECT COUNT(*) AS n FROM reviews WHERE target_type = ? AND target_id = ?;",
            (target.target_type, target.target_id),
        )
        assert row is not None
        return int(row["n"])

    def average(self, target: TargetRef) -> Optional[float]:
        """Unrounded mean of non-null ratings on ``target``; ``None`` if none are rated."""
        row = self.fetchone(
            """
            SELECT AVG(rating) AS avg_rating FROM reviews
            WHERE target_type = ? AND target_id = ? AND rating IS NOT NULL;
            """,
            (target.target_type, target.target_id),
        )
        assert row is not None
        return None if row["avg_rating"] is None else float(row["avg_rating"])

    def average_by(self, target: TargetRef, reviewer: ReviewerRef) -> Optional[float]:
        """Mean of the non-null ratings ``reviewer`` gave ``target``."""
        row = self.fetchone(
            """
            SELECT AVG(rating) AS avg_rating FROM reviews
            WHERE target_type = ? AND target_id = ? AND reviewer_key = ?
              AND rating IS NOT NULL;
            """,
            (target.target_type, target.target_id, reviewer.reviewer_key),
        )
        assert row is not None
        return None if row["avg_rating"] is None else float(row["avg_rating"])

    def list_for_target(self, target: TargetRef) -> list[Review]:
        """All reviews of ``target``, oldest first."""
        rows = self.fetchall(
            """
            SELECT * FROM reviews
            WHERE target_type = ? AND target_id = ?
            ORDER BY created_at, review_id;
            """,
            (target.target_type, target.target_id),
        )
        return [_row_to_review(r) for r in rows]

    def list_by_reviewer(self, reviewer: ReviewerRef) -> list[Review]:
        """All reviews left by ``reviewer`` across targets, oldest first."""
        rows = self.fetchall(
            "SELECT * FROM reviews WHERE reviewer_key = ? ORDER BY created_at, review_id;",
            (reviewer.reviewer_key,),
        )
        return [_row_to_review(r) for r in rows]

    def reviewers(self, target: TargetRef) -> list[ReviewerRef]:
        """Reviewers of ``target`` in review order."""
        return [review.reviewer for review in self.list_for_target(target)]


# ── Private helpers ────────────────────────────────────────────────────────────

def _row_to_reviewer(row: sqlite3.Row) -> ReviewerRef:
    if row["reviewer_id"] is not None:
        return EntityRef(entity_type=row["reviewer_type"], entity_id=row["reviewer_id"])
    return AnonymousRef(ip=row["ip"])


def _row_to_review(row: sqlite3.Row) -> Review:
    return Review(
        review_id=row["review_id"],
        target=TargetRef(target_type=row["target_type"], target_id=row["target_id"]),
        reviewer=_row_to_reviewer(row),
        rating=row["rating"],
        body=row["body"],
        extra=json.loads(row["extra_json"]) if row["extra_json"] else {},
        created_at=parse_db_timestamp(row["created_at"]),
        updated_at=parse_db_timestamp(row["updated_at"]),
    )
