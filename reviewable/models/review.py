"""
Review model: one reviewer's opinion of one target.

A ``Review`` is immutable; the store returns a fresh instance after every
insert or update. ``extra`` holds caller-supplied custom fields (e.g.
``{"reviewer_mood": "angry"}``) and is persisted as JSON.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from reviewable.models.reviewer import ReviewerRef
from reviewable.models.target import TargetRef


class Review(BaseModel):
    """A persisted review.

    Attributes:
        review_id: Database PK; ``None`` before insertion.
        target: The reviewed object.
        reviewer: Entity or anonymous reviewer.
        rating: Rating on the target type's scale, or ``None`` for text-only reviews.
        body: Free-text review body.
        extra: Custom fields supplied by the caller.
        created_at: When the reviewer first reviewed the target.
        updated_at: When the review was last modified.
    """

    model_config = ConfigDict(frozen=True)

    review_id: Optional[int] = None
    target: TargetRef
    reviewer: ReviewerRef
    rating: Optional[float] = None
    body: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def reviewed_at(self) -> Optional[datetime]:
        return self.created_at

    @property
    def is_anonymous(self) -> bool:
        return self.reviewer.kind == "anonymous"
