"""
Exception taxonomy for the review engine.

  ReviewableError
    ├── InvalidConfigValueError : malformed scale/precision at type registration
    ├── InvalidReviewerError    : missing, malformed or unauthorized reviewer
    ├── InvalidReviewValueError : rating outside the configured scale
    └── RecordError             : any other failure during submit/retract

Caller-input errors (``InvalidReviewerError``, ``InvalidReviewValueError``)
propagate unchanged from the engine. Every other mutation failure is wrapped
in ``RecordError`` with the original exception chained as ``__cause__``.
"""

from __future__ import annotations

from typing import Any, Optional


class ReviewableError(Exception):
    """Base class for all review engine errors."""


class InvalidConfigValueError(ReviewableError):
    """Raised when a reviewable type's scale or precision is malformed."""


class InvalidReviewerError(ReviewableError):
    """Raised when the reviewer identifier is missing, malformed or not allowed."""


class InvalidReviewValueError(ReviewableError):
    """Raised when a rating is not a member of the type's scale.

    Attributes:
        value: The rejected rating value.
        scale: The permitted scale values.
    """

    def __init__(self, value: Any, scale: tuple[float, ...]) -> None:
        self.value = value
        self.scale = scale
        allowed = ", ".join(str(v) for v in scale)
        super().__init__(f"Invalid rating value: {value!r} not in [{allowed}].")


class RecordError(ReviewableError):
    """Raised when a review could not be created, updated or removed.

    Attributes:
        target:   The target the operation was attempted on.
        reviewer: The resolved reviewer, or ``None`` if resolution never ran.
    """

    def __init__(
        self,
        message: str,
        target: Optional[Any] = None,
        reviewer: Optional[Any] = None,
    ) -> None:
        self.target = target
        self.reviewer = reviewer
        super().__init__(message)
