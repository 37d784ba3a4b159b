"""Normalisation of self-reported recall quality ratings."""

from __future__ import annotations

import math
from decimal import Decimal
from numbers import Real
from typing import Any, Union

from .errors import ValidationError


MIN_QUALITY = 1
MAX_QUALITY = 5
PASSING_QUALITY = 3


def normalize_quality(raw: Any) -> Union[int, float]:
    """Clamp a numeric rating into ``[1, 5]``; reject anything that is not a finite number."""
    # bool is a Real subclass but "True" is not a rating
    if isinstance(raw, bool) or not isinstance(raw, (Real, Decimal)):
        raise ValidationError(f"Quality rating must be a number, got {type(raw).__name__}.")

    value = float(raw)
    if not math.isfinite(value):
        raise ValidationError(f"Quality rating must be finite, got {raw!r}.")

    value = float(max(MIN_QUALITY, min(MAX_QUALITY, value)))
    if value.is_integer():
        return int(value)
    return value


def is_passing(quality: Union[int, float]) -> bool:
    return quality >= PASSING_QUALITY
