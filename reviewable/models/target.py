"""
Reviewable targets.

``TargetRef`` identifies the reviewed object by type name and id.
``ReviewableTarget`` is the persisted target row, including the optional
cached aggregate fields. A cache field is ``None`` when the target's type
does not declare it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from reviewable.models.reviewer import _normalize_id, _normalize_type_name


class TargetRef(BaseModel):
    """Reference to a reviewable object, e.g. ``product:1``.

    Attributes:
        target_type: Lowercase reviewable type name (a key of the type registry).
        target_id: Target identifier, stored as text.
    """

    model_config = ConfigDict(frozen=True)

    target_type: str
    target_id: str

    @field_validator("target_type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return _normalize_type_name(v)

    @field_validator("target_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return _normalize_id(v)

    def __str__(self) -> str:
        return f"{self.target_type}#{self.target_id}"


class ReviewableTarget(BaseModel):
    """A persisted reviewable target with its cached aggregate fields.

    Attributes:
        target_type: Reviewable type name.
        target_id: Target identifier.
        display_name: Optional human-readable label.
        cached_total_reviews: Cached review count, or ``None`` if not cached.
        cached_average_rating: Cached average rating, or ``None`` if not cached.
        created_at: Registration timestamp.
        updated_at: Last cache write timestamp.
    """

    model_config = ConfigDict(frozen=True)

    target_type: str
    target_id: str
    display_name: Optional[str] = None
    cached_total_reviews: Optional[int] = None
    cached_average_rating: Optional[float] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def ref(self) -> TargetRef:
        return TargetRef(target_type=self.target_type, target_id=self.target_id)
