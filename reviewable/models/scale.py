"""
Rating scale models.

``ScaleRange`` is the inclusive ``first..last`` input form of a scale;
``Scale`` is the built, immutable sequence of allowed ratings together with
the precision used to round averages. Construction and validation live in
``reviewable.engine.scale.build_scale()``.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from numbers import Real
from typing import Union

from pydantic import BaseModel, ConfigDict, model_validator

# Absolute tolerance for membership tests on generated float scales.
SCALE_TOLERANCE = 1e-9


class ScaleRange(BaseModel):
    """Inclusive numeric range a scale is expanded from.

    Attributes:
        first: Lowest rating.
        last: Highest rating.
    """

    model_config = ConfigDict(frozen=True)

    first: float
    last: float

    @model_validator(mode="after")
    def validate_ordering(self) -> "ScaleRange":
        if not (math.isfinite(self.first) and math.isfinite(self.last)):
            raise ValueError(
                f"Scale range bounds must be finite, got {self.first}..{self.last}."
            )
        if self.last < self.first:
            raise ValueError(
                f"Scale range last ({self.last}) must be >= first ({self.first})."
            )
        return self


class Scale(BaseModel):
    """Ordered, distinct allowed rating values plus average precision.

    Attributes:
        values: Strictly increasing allowed ratings.
        precision: Decimal places used when rounding averages.
    """

    model_config = ConfigDict(frozen=True)

    values: tuple[float, ...]
    precision: int

    @property
    def first(self) -> float:
        return self.values[0]

    @property
    def last(self) -> float:
        return self.values[-1]

    def contains(self, value_or_values: Union[float, Iterable[float]]) -> bool:
        """Return ``True`` if every given value is an allowed rating.

        Each element is checked on its own, so repeated values are fine as
        long as each one is on the scale.
        """
        if isinstance(value_or_values, Iterable) and not isinstance(value_or_values, str):
            candidates = list(value_or_values)
        else:
            candidates = [value_or_values]
        return all(self._has(v) for v in candidates)

    def round(self, value: float) -> float:
        """Round ``value`` to this scale's precision, halves away from zero.

        Goes through the shortest repr so ``2.25`` rounds to ``2.3`` rather
        than to the binary neighbour ``round()`` would pick.
        """
        quantum = Decimal(1).scaleb(-self.precision)
        rounded = Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP)
        return float(rounded)

    def _has(self, value: object) -> bool:
        if isinstance(value, bool) or not isinstance(value, Real):
            return False
        return any(
            math.isclose(float(value), allowed, rel_tol=0.0, abs_tol=SCALE_TOLERANCE)
            for allowed in self.values
        )
