"""
Reviewer references and registered entities.

A reviewer is either a registered domain entity (``EntityRef``) or an
anonymous IP address (``AnonymousRef``). Both carry a ``kind`` discriminator
so ``ReviewerRef`` validates as a tagged union, and a ``reviewer_key`` that
the review store uses as the uniqueness key of a ``(target, reviewer)`` pair.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from reviewable.taxonomy.identity_taxonomy import ReviewerKind


def _normalize_type_name(v: str) -> str:
    v = v.strip().lower()
    if not v or " " in v or ":" in v:
        raise ValueError(
            f"Type name '{v}' must be non-empty and contain no spaces or colons."
        )
    return v


def _normalize_id(v: Any) -> str:
    if isinstance(v, bool):
        raise ValueError(f"Identifier must be a string or integer, got {v!r}.")
    if isinstance(v, int):
        return str(v)
    if isinstance(v, str) and v.strip():
        return v.strip()
    raise ValueError(f"Identifier must be a non-empty string or integer, got {v!r}.")


class EntityRef(BaseModel):
    """Reference to a registered entity, e.g. ``user:7``.

    Attributes:
        kind: Always ``"entity"``.
        entity_type: Lowercase entity type name, e.g. ``"user"``.
        entity_id: Entity identifier, stored as text.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["entity"] = ReviewerKind.ENTITY.value
    entity_type: str
    entity_id: str

    @field_validator("entity_type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return _normalize_type_name(v)

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return _normalize_id(v)

    @property
    def reviewer_key(self) -> str:
        return f"entity:{self.entity_type}:{self.entity_id}"

    def __str__(self) -> str:
        return f"{self.entity_type}#{self.entity_id}"


class AnonymousRef(BaseModel):
    """Anonymous reviewer identified by an IP address.

    Attributes:
        kind: Always ``"anonymous"``.
        ip: Trimmed textual IP address.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["anonymous"] = ReviewerKind.ANONYMOUS.value
    ip: str

    @field_validator("ip", mode="before")
    @classmethod
    def strip_ip(cls, v: Any) -> str:
        return str(v).strip()

    @property
    def reviewer_key(self) -> str:
        return f"ip:{self.ip}"

    def __str__(self) -> str:
        return self.ip


ReviewerRef = Annotated[Union[EntityRef, AnonymousRef], Field(discriminator="kind")]


class Entity(BaseModel):
    """A registered entity that may act as a reviewer.

    Attributes:
        entity_type: Lowercase entity type name.
        entity_id: Entity identifier, stored as text.
        display_name: Optional human-readable label.
        created_at: Registration timestamp (set by the database).
    """

    model_config = ConfigDict(frozen=True)

    entity_type: str
    entity_id: str
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("entity_type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        return _normalize_type_name(v)

    @field_validator("entity_id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> str:
        return _normalize_id(v)

    @property
    def ref(self) -> EntityRef:
        return EntityRef(entity_type=self.entity_type, entity_id=self.entity_id)
