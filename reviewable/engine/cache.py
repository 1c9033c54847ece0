"""
Aggregate cache: ``cached_total_reviews`` / ``cached_average_rating``.

Types opt in per field through ``cache_fields`` in their config. For those
types the cache is write-through: ``refresh()`` runs after every submit and
retract, recomputing both aggregates from the review store (never by delta)
and writing only the columns whose value changed.
"""

from __future__ import annotations

import logging

from reviewable.db.repositories.review_repo import ReviewRepository
from reviewable.db.repositories.target_repo import TargetRepository
from reviewable.models.stats import AggregateStats, CacheFields
from reviewable.models.target import ReviewableTarget, TargetRef
from reviewable.registry import ReviewableRegistry

logger = logging.getLogger(__name__)


class AggregateCache:
    """Maintains cached aggregate columns on target rows."""

    def __init__(
        self,
        registry: ReviewableRegistry,
        reviews: ReviewRepository,
        targets: TargetRepository,
    ) -> None:
        self.registry = registry
        self.reviews = reviews
        self.targets = targets

    def has_cache_fields(self, target_type: str) -> CacheFields:
        """Which aggregate fields ``target_type`` persists."""
        return self.registry.get(target_type).cache_fields

    def compute(self, target: TargetRef) -> AggregateStats:
        """Recompute live stats for ``target`` from the review store."""
        scale = self.registry.get(target.target_type).scale
        average = self.reviews.average(target)
        return AggregateStats(
            total_reviews=self.reviews.count(target),
            average_rating=scale.round(average) if average is not None else 0.0,
        )

    def init(self, target: ReviewableTarget) -> ReviewableTarget:
        """Zero the cache fields ``target``'s type declares; run before first insert."""
        fields = self.has_cache_fields(target.target_type)
        return target.model_copy(
            update={
                "cached_total_reviews": 0 if fields.total else None,
                "cached_average_rating": 0.0 if fields.average else None,
            }
        )

    def refresh(self, target: TargetRef) -> AggregateStats:
        """Recompute stats and write changed cache columns back to the target row.

        Returns:
            The freshly computed stats (whether or not anything was written).

        Raises:
            LookupError: If the type caches fields but the target row is missing.
        """
        stats = self.compute(target)
        fields = self.has_cache_fields(target.target_type)
        if not fields.enabled:
            return stats

        current = self.targets.get(target)
        if current is None:
            raise LookupError(f"Reviewable target {target} is not registered.")

        new_total = stats.total_reviews if fields.total else None
        new_average = stats.average_rating if fields.average else None
        if new_total == current.cached_total_reviews:
            new_total = None
        if new_average == current.cached_average_rating:
            new_average = None

        if new_total is None and new_average is None:
            logger.debug("Cache for %s unchanged: %s", target, stats)
            return stats

        self.targets.update_cache(target, total_reviews=new_total, average_rating=new_average)
        logger.debug("Cache for %s refreshed: %s", target, stats)
        return stats
