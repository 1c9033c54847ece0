"""
Review engine: submit, retract and query reviews of reviewable targets.

Lifecycle of one reviewer's review of one target::

    Unreviewed ──submit──▶ Reviewed ──submit──▶ Updated ─┐
                               │                  ▲──────┘ submit
                               └──────retract─────┴──▶ Retracted ──submit──▶ Reviewed

Every mutation is one unit of work (``BaseRepository.atomic()``): reviewer
resolution, the review upsert/delete and the aggregate cache refresh either
all land or none do, so a reader never sees a review without its aggregate
update. At top level the unit takes the write lock before its first read, so
two writers on the same (target, reviewer) pair queue up and the later one
merges into what the earlier one committed.

Error policy
------------
``InvalidReviewerError`` and ``InvalidReviewValueError`` are caller mistakes
and propagate unchanged. Any other failure during ``submit``/``retract`` is
re-raised as ``RecordError`` naming the target and reviewer, with the
original exception chained.

Usage::

    engine = ReviewEngine(conn, registry)
    product = engine.register_target("product", 1)
    user = engine.register_entity("user", 7)

    engine.submit(product, {"by": user, "rating": 3, "body": "Solid."})
    engine.total_reviews(product)      # 1
    engine.average_rating(product)     # 3.0
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from typing import Any, Optional, Union

from reviewable.db.repositories.entity_repo import EntityRepository
from reviewable.db.repositories.review_repo import ReviewRepository, permitted_fields
from reviewable.db.repositories.target_repo import TargetRepository
from reviewable.engine.cache import AggregateCache
from reviewable.engine.resolver import ReviewerResolver
from reviewable.errors import (
    InvalidReviewerError,
    InvalidReviewValueError,
    RecordError,
)
from reviewable.models.review import Review
from reviewable.models.reviewer import Entity, EntityRef, ReviewerRef
from reviewable.models.scale import Scale
from reviewable.models.stats import AggregateStats
from reviewable.models.target import ReviewableTarget, TargetRef
from reviewable.registry import ReviewableRegistry, ReviewableType

logger = logging.getLogger(__name__)

Identifiers = Mapping[str, Any]


def coerce_rating(value: Any, scale: Scale) -> Optional[float]:
    """Coerce a submitted rating (``3``, ``"3.5"``) to float; blank means no rating.

    Raises:
        InvalidReviewValueError: If the value is not numeric.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, bool):
        raise InvalidReviewValueError(value, scale.values)
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidReviewValueError(value, scale.values) from exc


class ReviewEngine:
    """Orchestrates the resolver, review store and aggregate cache.

    Attributes:
        conn: Open SQLite connection with the schema applied.
        registry: Frozen registry of reviewable types.
    """

    def __init__(self, conn: sqlite3.Connection, registry: ReviewableRegistry) -> None:
        self.conn = conn
        self.registry = registry
        self.entities = EntityRepository(conn)
        self.targets = TargetRepository(conn)
        self.reviews = ReviewRepository(conn)
        self.resolver = ReviewerResolver(self.entities)
        self.cache = AggregateCache(registry, self.reviews, self.targets)

    # ── Registration ──────────────────────────────────────────────────────────

    def register_entity(
        self,
        entity_type: str,
        entity_id: Union[int, str],
        display_name: Optional[str] = None,
    ) -> EntityRef:
        """Register an entity that may act as a reviewer."""
        ref = self.entities.upsert(
            Entity(entity_type=entity_type, entity_id=entity_id, display_name=display_name)
        )
        logger.debug("Registered entity %s", ref)
        return ref

    def register_target(
        self,
        target_type: str,
        target_id: Union[int, str],
        display_name: Optional[str] = None,
    ) -> TargetRef:
        """Register a reviewable target, zero-initialising its cache fields.

        Registering an existing target is a no-op.

        Raises:
            KeyError: If ``target_type`` is not a registered reviewable type.
        """
        self.registry.get(target_type)
        target = ReviewableTarget(
            target_type=target_type, target_id=str(target_id), display_name=display_name
        )
        ref = target.ref
        if self.targets.exists(ref):
            return ref
        self.targets.insert(self.cache.init(target))
        logger.debug("Registered target %s", ref)
        return ref

    def destroy_target(self, target: TargetRef) -> bool:
        """Delete a target together with all of its reviews."""
        with self.targets.atomic():
            removed = self.targets.delete(target)
        if removed:
            logger.info("Destroyed target %s and its reviews", target)
        return removed

    # ── Type configuration ────────────────────────────────────────────────────

    def reviewable_type(self, target: Union[TargetRef, str]) -> ReviewableType:
        type_name = target.target_type if isinstance(target, TargetRef) else target
        return self.registry.get(type_name)

    def rating_scale(self, target: Union[TargetRef, str]) -> Scale:
        return self.reviewable_type(target).scale

    def rating_precision(self, target: Union[TargetRef, str]) -> int:
        return self.reviewable_type(target).precision

    def valid_rating(self, target: Union[TargetRef, str], value_or_values: Any) -> bool:
        """Return ``True`` if every given value is on the type's scale."""
        return self.rating_scale(target).contains(value_or_values)

    # ── Mutations ─────────────────────────────────────────────────────────────

    def submit(self, target: TargetRef, identifiers_and_fields: Identifiers) -> Review:
        """Create or update the caller's review of ``target``.

        Args:
            target: Reviewed object; must be registered.
            identifiers_and_fields: Reviewer identifier (``by``/``reviewer``/
                ``user``/``account``/``ip``) plus review content: ``rating``,
                ``body`` and any custom fields.

        Returns:
            The persisted review. Aggregate stats already reflect it.

        Raises:
            InvalidReviewerError: Reviewer missing, unknown or not allowed.
            InvalidReviewValueError: Rating not numeric or not on the scale.
            RecordError: Any other failure; nothing is written.
        """
        reviewer: Optional[ReviewerRef] = None
        try:
            with self.reviews.atomic():
                reviewable_type = self.reviewable_type(target)
                reviewer = self.resolver.resolve(identifiers_and_fields, reviewable_type)

                fields = permitted_fields(identifiers_and_fields)
                if "rating" in fields:
                    fields["rating"] = coerce_rating(fields["rating"], reviewable_type.scale)
                    rating = fields["rating"]
                    if rating is not None and not reviewable_type.scale.contains(rating):
                        raise InvalidReviewValueError(rating, reviewable_type.scale.values)

                if not self.targets.exists(target):
                    raise LookupError(f"Reviewable target {target} is not registered.")

                review = self.reviews.upsert(target, reviewer, fields)
                stats = self.cache.refresh(target)

        except (InvalidReviewerError, InvalidReviewValueError):
            raise
        except Exception as exc:
            raise RecordError(
                f"Could not create/update review of {target} by {reviewer}: {exc}",
                target=target,
                reviewer=reviewer,
            ) from exc

        logger.info(
            "Review submitted: %s by %s rating=%s (total=%d, average=%s)",
            target,
            reviewer,
            review.rating,
            stats.total_reviews,
            stats.average_rating,
        )
        return review

    def retract(self, target: TargetRef, identifiers: Identifiers) -> None:
        """Remove the caller's review of ``target``.

        Raises:
            InvalidReviewerError: Reviewer missing, unknown or not allowed.
            RecordError: No review existed, or removal failed.
        """
        reviewer: Optional[ReviewerRef] = None
        try:
            with self.reviews.atomic():
                reviewer = self.resolver.resolve(identifiers, self.reviewable_type(target))
                if not self.reviews.delete(target, reviewer):
                    raise LookupError(f"{reviewer} has no review of {target}.")
                stats = self.cache.refresh(target)

        except InvalidReviewerError:
            raise
        except Exception as exc:
            raise RecordError(
                f"Could not un-review {target} by {reviewer}: {exc}",
                target=target,
                reviewer=reviewer,
            ) from exc

        logger.info(
            "Review retracted: %s by %s (total=%d, average=%s)",
            target,
            reviewer,
            stats.total_reviews,
            stats.average_rating,
        )

    # ── Queries ───────────────────────────────────────────────────────────────

    def average_rating(self, target: TargetRef, recalculate: bool = False) -> float:
        """Average of non-null ratings, rounded to the type's precision.

        Served from the cache when the type caches it and ``recalculate`` is
        false; ``0.0`` when nothing is rated.
        """
        if not recalculate and self.cache.has_cache_fields(target.target_type).average:
            current = self.targets.get(target)
            if current is not None and current.cached_average_rating is not None:
                return current.cached_average_rating
        return self.cache.compute(target).average_rating

    def average_rating_by(self, target: TargetRef, identifiers: Identifiers) -> float:
        """Average rating ``target`` received from the identified reviewer."""
        reviewable_type = self.reviewable_type(target)
        reviewer = self.resolver.resolve(identifiers, reviewable_type)
        average = self.reviews.average_by(target, reviewer)
        return reviewable_type.scale.round(average) if average is not None else 0.0

    def total_reviews(self, target: TargetRef, recalculate: bool = False) -> int:
        """Number of reviews, from the cache when available."""
        if not recalculate and self.cache.has_cache_fields(target.target_type).total:
            current = self.targets.get(target)
            if current is not None and current.cached_total_reviews is not None:
                return current.cached_total_reviews
        return self.reviews.count(target)

    def stats(self, target: TargetRef, recalculate: bool = False) -> AggregateStats:
        return AggregateStats(
            total_reviews=self.total_reviews(target, recalculate),
            average_rating=self.average_rating(target, recalculate),
        )

    def is_reviewed(self, target: TargetRef) -> bool:
        return self.total_reviews(target) > 0

    def reviewed_by(self, target: TargetRef, identifiers: Identifiers) -> bool:
        return self.review_by(target, identifiers) is not None

    def review_by(self, target: TargetRef, identifiers: Identifiers) -> Optional[Review]:
        reviewer = self.resolver.resolve(identifiers, self.reviewable_type(target))
        return self.reviews.find(target, reviewer)

    def reviews_of(self, target: TargetRef) -> list[Review]:
        return self.reviews.list_for_target(target)

    def reviewers(self, target: TargetRef) -> list[ReviewerRef]:
        return self.reviews.reviewers(target)

    def reviewables_by(self, reviewer: ReviewerRef) -> list[TargetRef]:
        """Targets the reviewer has reviewed, in review order."""
        return [review.target for review in self.reviews.list_by_reviewer(reviewer)]

    def reviewed_targets(self, target_type: str) -> list[TargetRef]:
        """Targets of one type that have at least one review, ordered by id.

        Raises:
            KeyError: If ``target_type`` is not a registered reviewable type.
        """
        type_name = self.registry.get(target_type).type_name
        return [target.ref for target in self.targets.list_reviewed(type_name)]
