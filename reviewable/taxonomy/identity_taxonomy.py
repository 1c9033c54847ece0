"""
Reviewer identity taxonomy.

``IdentitySource`` names the keys a caller may use to identify a reviewer.
``IDENTITY_PRIORITY`` is the contract for resolving them: explicit reference
first, then the generic entity aliases, then the anonymous IP.

``ReviewerKind`` is the discriminator of the ``ReviewerRef`` union.

``RESERVED_REVIEW_FIELDS`` are association/bookkeeping fields that callers can
never set through ``submit()``. Everything else in the submitted mapping is
treated as review content.

This module has NO imports from any other ``reviewable`` package.
"""

from enum import StrEnum


class IdentitySource(StrEnum):
    """Mapping keys that may carry a reviewer identifier."""

    BY = "by"
    """Explicit reviewer reference; highest priority."""

    REVIEWER = "reviewer"
    """Explicit reviewer reference (long form)."""

    USER = "user"
    """Generic entity alias."""

    ACCOUNT = "account"
    """Generic entity alias."""

    IP = "ip"
    """Anonymous reviewer identified by IP address; lowest priority."""


IDENTITY_PRIORITY: tuple[IdentitySource, ...] = (
    IdentitySource.BY,
    IdentitySource.REVIEWER,
    IdentitySource.USER,
    IdentitySource.ACCOUNT,
    IdentitySource.IP,
)


class ReviewerKind(StrEnum):
    """Discriminator for reviewer references."""

    ENTITY = "entity"
    ANONYMOUS = "anonymous"


RESERVED_REVIEW_FIELDS: frozenset[str] = frozenset(
    {source.value for source in IdentitySource}
    | {
        "review_id",
        "target",
        "target_type",
        "target_id",
        "reviewable_type",
        "reviewable_id",
        "reviewer_key",
        "reviewer_type",
        "reviewer_id",
        "created_at",
        "updated_at",
        "reviewed_at",
    }
)
