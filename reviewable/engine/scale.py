"""
Scale construction.

``build_scale()`` turns the configured rating domain of a reviewable type into
an immutable ``Scale``:

  - An explicit enumeration (list, tuple, ``range``) is coerced to floats,
    de-duplicated and sorted.
  - A ``ScaleRange(first, last)``, or a ``{first, last}`` table as read from
    TOML, is expanded into evenly spaced values. With
    no explicit ``step``, the number of values is ``steps`` if given, else
    ``ceil(last - first) + 1``, one value per whole unit, so ``1.0..5.0``
    becomes ``[1.0, 2.0, 3.0, 4.0, 5.0]``.

Precision defaults to the number of fractional digits of the first scale value
(``1.0`` → 1, ``0.25`` → 2).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from decimal import Decimal
from numbers import Real
from typing import Any, Optional, Union

from reviewable.errors import InvalidConfigValueError
from reviewable.models.scale import SCALE_TOLERANCE, Scale, ScaleRange

logger = logging.getLogger(__name__)

DEFAULT_SCALE = ScaleRange(first=1, last=5)

ScaleSpec = Union[ScaleRange, Mapping[str, Any], range, Sequence[Any]]

_RANGE_KEYS = ("first", "last")


def build_scale(
    spec: Optional[ScaleSpec] = None,
    step: Optional[float] = None,
    steps: Optional[int] = None,
    total_precision: Optional[Any] = None,
) -> Scale:
    """Build a validated ``Scale`` from a range or an explicit enumeration.

    Args:
        spec: ``ScaleRange``, ``{first, last}`` mapping, ``range`` or
            sequence of numbers. ``None`` means the default ``1..5`` scale.
        step: Increment between range values; only used for range input.
        steps: Number of values a range expands to (``>= 2``).
        total_precision: Decimal places for averages; derived from the first
            value when ``None``.

    Returns:
        Immutable ``Scale``.

    Raises:
        InvalidConfigValueError: On non-numeric or non-finite values, a
            reversed range, an empty scale, a non-positive step, ``steps``
            that is not an integer ``>= 2`` or a precision that is not a
            non-negative integer.
    """
    if spec is None:
        spec = DEFAULT_SCALE
    elif isinstance(spec, Mapping):
        spec = _range_from_mapping(spec)

    if isinstance(spec, ScaleRange):
        values = _expand_range(spec, step, steps)
    elif isinstance(spec, (str, bytes)) or not isinstance(spec, (range, Sequence)):
        raise InvalidConfigValueError(
            f"Scale must be a range or a sequence of numeric values, got {spec!r}."
        )
    else:
        values = _coerce_values(spec)

    if not values:
        raise InvalidConfigValueError("Scale must contain at least one value.")

    if total_precision is None:
        total_precision = fractional_digits(values[0])
    if isinstance(total_precision, bool) or not isinstance(total_precision, int):
        raise InvalidConfigValueError(
            f"total_precision must be an integer, got {total_precision!r}."
        )
    if total_precision < 0:
        raise InvalidConfigValueError(
            f"total_precision must be >= 0, got {total_precision}."
        )

    scale = Scale(values=tuple(values), precision=total_precision)
    logger.debug("Built scale %s (precision=%d)", list(scale.values), scale.precision)
    return scale


def fractional_digits(value: float) -> int:
    """Return the number of decimal places in ``value``'s shortest repr.

    Whole floats count as one digit (``repr(1.0) == "1.0"``).
    """
    text = repr(float(value))
    if "e" in text or "E" in text:
        return max(0, -Decimal(text).as_tuple().exponent)
    return len(text.split(".")[1])


def _range_from_mapping(raw: Mapping[str, Any]) -> ScaleRange:
    unknown = set(raw) - set(_RANGE_KEYS)
    if unknown:
        raise InvalidConfigValueError(
            f"Scale range accepts only first and last, got extra key(s) {sorted(unknown)}."
        )
    bounds: list[float] = []
    for key in _RANGE_KEYS:
        if key not in raw:
            raise InvalidConfigValueError(f"Scale range is missing {key!r}.")
        value = raw[key]
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidConfigValueError(
                f"Scale range {key} must be a number, got {value!r}."
            )
        if not math.isfinite(value):
            raise InvalidConfigValueError(
                f"Scale range {key} must be finite, got {value!r}."
            )
        bounds.append(float(value))
    first, last = bounds
    if last < first:
        raise InvalidConfigValueError(
            f"Scale range last ({last}) must be >= first ({first})."
        )
    return ScaleRange(first=first, last=last)


def _expand_range(
    spec: ScaleRange,
    step: Optional[float],
    steps: Optional[int],
) -> list[float]:
    first, last = spec.first, spec.last
    span = last - first
    if not math.isfinite(span):
        raise InvalidConfigValueError(f"Scale range {first}..{last} is too wide.")
    if span == 0:
        return [float(first)]

    if step is None:
        if steps is None:
            steps = math.ceil(span) + 1
        if isinstance(steps, bool) or not isinstance(steps, int) or steps < 2:
            raise InvalidConfigValueError(
                f"steps must be an integer >= 2 for a range scale, got {steps!r}."
            )
        step = span / (steps - 1)

    if (
        isinstance(step, bool)
        or not isinstance(step, Real)
        or not math.isfinite(step)
        or step <= 0
    ):
        raise InvalidConfigValueError(f"step must be a positive number, got {step!r}.")

    count = math.floor(span / step + SCALE_TOLERANCE)
    values = [float(first + i * step) for i in range(count + 1)]
    # Snap accumulated float noise so values compare cleanly against user input.
    return [round(v, 12) for v in values]


def _coerce_values(raw: Union[range, Sequence[Any]]) -> list[float]:
    coerced: list[float] = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidConfigValueError(
                f"Scale must consist of numeric values only, got {value!r}."
            )
        if not math.isfinite(value):
            raise InvalidConfigValueError(f"Scale values must be finite, got {value!r}.")
        coerced.append(float(value))
    return sorted(set(coerced))
