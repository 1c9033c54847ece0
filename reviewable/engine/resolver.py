"""
Reviewer identity resolution.

``ReviewerResolver.resolve()`` turns the identifiers a caller passes to the
engine into a ``ReviewerRef``:

  1. Probe the mapping in ``IDENTITY_PRIORITY`` order
     (``by`` → ``reviewer`` → ``user`` → ``account`` → ``ip``); the first
     non-empty value wins.
  2. IP-shaped values (``"10.0.0.1 "``, ``IPv6Address(...)``) become a trimmed
     ``AnonymousRef``, allowed only if the type has ``accept_ip``.
  3. ``EntityRef`` / ``Entity`` values must name a registered entity of an
     allowed reviewer type.
  4. Anything else is rejected as the wrong type.

All failures raise ``InvalidReviewerError``.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Mapping
from typing import Any, Optional

from reviewable.db.repositories.entity_repo import EntityRepository
from reviewable.errors import InvalidReviewerError
from reviewable.models.reviewer import AnonymousRef, Entity, EntityRef, ReviewerRef
from reviewable.registry import ReviewableType
from reviewable.taxonomy.identity_taxonomy import IDENTITY_PRIORITY

logger = logging.getLogger(__name__)


def is_ip(value: Any) -> bool:
    """Return ``True`` if ``value`` is an IP address or an IP-shaped string."""
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return True
    if not isinstance(value, str):
        return False
    try:
        ipaddress.ip_address(value.strip())
    except ValueError:
        return False
    return True


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def pick_identifier(identifiers: Optional[Mapping[str, Any]]) -> Any:
    """Return the highest-priority non-empty identifier value.

    Raises:
        InvalidReviewerError: If ``identifiers`` is empty or ``None``.
    """
    if not identifiers:
        raise InvalidReviewerError(
            "Argument can't be nil: no reviewer object or IP provided."
        )
    for source in IDENTITY_PRIORITY:
        value = identifiers.get(source.value)
        if not _is_blank(value):
            return value
    return None


class ReviewerResolver:
    """Resolves and authorizes reviewer identifiers against a reviewable type.

    Attributes:
        entities: Repository used to check that entity reviewers are registered.
    """

    def __init__(self, entities: EntityRepository) -> None:
        self.entities = entities

    def resolve(
        self,
        identifiers: Optional[Mapping[str, Any]],
        reviewable_type: ReviewableType,
    ) -> ReviewerRef:
        """Resolve ``identifiers`` to a reviewer allowed to review ``reviewable_type``.

        Raises:
            InvalidReviewerError: If no identifier is given, the value is of the
                wrong type or unregistered, or IP reviewing is disabled.
        """
        value = pick_identifier(identifiers)

        if is_ip(value):
            ref: ReviewerRef = AnonymousRef(ip=str(value))
            if not reviewable_type.accept_ip:
                raise InvalidReviewerError("Reviewing based on IP is disabled.")
            return ref

        if isinstance(value, Entity):
            value = value.ref

        if not isinstance(value, EntityRef):
            raise InvalidReviewerError(f"Reviewer is of wrong type: {value!r}.")

        if not reviewable_type.allows_reviewer_type(value.entity_type):
            raise InvalidReviewerError(
                f"Reviewer is of wrong type: {value.entity_type!r} may not review "
                f"{reviewable_type.type_name!r} (allowed: {list(reviewable_type.reviewer_types)})."
            )

        if not self.entities.exists(value):
            raise InvalidReviewerError(f"Reviewer is of wrong type: {value} is not registered.")

        return value
