"""
Aggregate statistics for a reviewable target.

``AggregateStats`` is derived data: it can always be recomputed from the
review set. ``CacheFields`` describes which aggregates a type persists on its
target rows.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, field_validator


class CacheFields(BaseModel):
    """Which cached aggregate columns a reviewable type maintains."""

    model_config = ConfigDict(frozen=True)

    total: bool = False
    average: bool = False

    @property
    def enabled(self) -> bool:
        return self.total or self.average


class AggregateStats(BaseModel):
    """Review count and rounded average rating for one target.

    Attributes:
        total_reviews: Number of reviews, rated or not.
        average_rating: Mean of non-null ratings, rounded to the type's
            precision; ``0.0`` when nothing is rated.
    """

    model_config = ConfigDict(frozen=True)

    total_reviews: int = 0
    average_rating: float = 0.0

    @field_validator("total_reviews")
    @classmethod
    def non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"total_reviews must be >= 0, got {v}.")
        return v
