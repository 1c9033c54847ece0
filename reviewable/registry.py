"""
Reviewable type registry.

Turns the raw ``[types.<name>]`` blocks of ``AppConfig`` into immutable
``ReviewableType`` records (scale built and validated, aliases resolved,
defaults applied) exactly once, at startup. After ``freeze()`` the registry
is read-only; the engine receives it by reference and never consults config
again.

Usage
-----
    from reviewable.config import load_config
    from reviewable.registry import build_registry

    registry = build_registry(load_config().types)
    product = registry.get("product")
    product.scale.values      # (1.0, 2.0, 3.0, 4.0, 5.0)

Defaults (applied here, never at call time)
-------------------------------------------
    scale      1..5
    accept_ip  false
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Optional

from pydantic import BaseModel, ConfigDict

from reviewable.config import ReviewableTypeConfig
from reviewable.engine.scale import build_scale
from reviewable.errors import InvalidConfigValueError
from reviewable.models.scale import Scale
from reviewable.models.stats import CacheFields

logger = logging.getLogger(__name__)

DEFAULT_ACCEPT_IP = False


class ReviewableType(BaseModel):
    """Resolved, immutable configuration of one reviewable type.

    Attributes:
        type_name: Registry key, e.g. ``"product"``.
        scale: Built rating scale (values + precision).
        accept_ip: Whether anonymous IP reviewers are allowed.
        reviewer_types: Entity types allowed to review; empty = any registered type.
        cache_fields: Which aggregates are cached on target rows.
    """

    model_config = ConfigDict(frozen=True)

    type_name: str
    scale: Scale
    accept_ip: bool = DEFAULT_ACCEPT_IP
    reviewer_types: tuple[str, ...] = ()
    cache_fields: CacheFields = CacheFields()

    @property
    def precision(self) -> int:
        return self.scale.precision

    def allows_reviewer_type(self, entity_type: str) -> bool:
        return not self.reviewer_types or entity_type in self.reviewer_types


def resolve_type_config(type_name: str, raw: ReviewableTypeConfig) -> ReviewableType:
    """Build a ``ReviewableType`` from its raw config block.

    Raises:
        InvalidConfigValueError: If the scale or precision is malformed.
    """
    spec = raw.scale if raw.scale is not None else raw.values
    if spec is None:
        spec = raw.range

    precision = raw.total_precision
    if precision is None:
        precision = raw.average_precision

    accept_ip = raw.accept_ip
    if accept_ip is None:
        accept_ip = raw.anonymous if raw.anonymous is not None else DEFAULT_ACCEPT_IP

    try:
        scale = build_scale(spec, step=raw.step, steps=raw.steps, total_precision=precision)
    except InvalidConfigValueError as exc:
        raise InvalidConfigValueError(f"[types.{type_name}] {exc}") from exc

    return ReviewableType(
        type_name=type_name,
        scale=scale,
        accept_ip=accept_ip,
        reviewer_types=tuple(raw.reviewer_types),
        cache_fields=CacheFields(
            total="total_reviews" in raw.cache_fields,
            average="average_rating" in raw.cache_fields,
        ),
    )


class ReviewableRegistry:
    """Registry of reviewable types keyed by type name.

    Populate with ``register()``, then ``freeze()``; lookups work either way,
    registrations after freezing raise ``RuntimeError``.
    """

    def __init__(self) -> None:
        self._types: dict[str, ReviewableType] = {}
        self._frozen = False

    def register(self, reviewable_type: ReviewableType) -> ReviewableType:
        """Add a type to the registry.

        Raises:
            RuntimeError: If the registry is frozen.
            ValueError: If the type name is already registered.
        """
        if self._frozen:
            raise RuntimeError(
                f"Registry is frozen; cannot register type '{reviewable_type.type_name}'."
            )
        if reviewable_type.type_name in self._types:
            raise ValueError(f"Reviewable type '{reviewable_type.type_name}' already registered.")
        self._types[reviewable_type.type_name] = reviewable_type
        logger.debug(
            "Registered reviewable type %s: scale=%s precision=%d accept_ip=%s",
            reviewable_type.type_name,
            list(reviewable_type.scale.values),
            reviewable_type.precision,
            reviewable_type.accept_ip,
        )
        return reviewable_type

    def freeze(self) -> "ReviewableRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, type_name: str) -> ReviewableType:
        """Look up a type by name.

        Raises:
            KeyError: If the type is not registered.
        """
        key = type_name.strip().lower()
        if key not in self._types:
            raise KeyError(
                f"Reviewable type '{type_name}' not registered. "
                f"Registered types: {sorted(self._types)}"
            )
        return self._types[key]

    def is_reviewable(self, type_name: str) -> bool:
        return type_name.strip().lower() in self._types

    def list_types(self) -> list[ReviewableType]:
        return sorted(self._types.values(), key=lambda t: t.type_name)

    def __contains__(self, type_name: object) -> bool:
        return isinstance(type_name, str) and self.is_reviewable(type_name)

    def __len__(self) -> int:
        return len(self._types)


def build_registry(
    types: Mapping[str, ReviewableTypeConfig],
    registry: Optional[ReviewableRegistry] = None,
) -> ReviewableRegistry:
    """Resolve every configured type into a frozen registry.

    Args:
        types: ``AppConfig.types``, type name → raw config block.
        registry: Optional registry to populate; a new one by default.

    Returns:
        The frozen registry.

    Raises:
        InvalidConfigValueError: If any type's scale or precision is malformed.
    """
    if registry is None:
        registry = ReviewableRegistry()
    for name, raw in types.items():
        registry.register(resolve_type_config(name.strip().lower(), raw))
    logger.info("Reviewable registry built: %d type(s).", len(registry))
    return registry.freeze()
