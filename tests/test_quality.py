from __future__ import annotations

from decimal import Decimal
from fractions import Fraction

import pytest

from spaced_review.scheduling.errors import ValidationError
from spaced_review.scheduling.quality import is_passing, normalize_quality


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (0, 1),
        (-3, 1),
        (1, 1),
        (3, 3),
        (5, 5),
        (9, 5),
        (4.0, 4),
        (3.5, 3.5),
        (Decimal("2"), 2),
        (Fraction(7, 2), 3.5),
    ],
)
def test_normalize_quality_clamps_into_range(raw: object, expected: float) -> None:
    assert normalize_quality(raw) == expected


def test_integral_ratings_come_back_as_int() -> None:
    assert isinstance(normalize_quality(4.0), int)
    assert isinstance(normalize_quality(12), int)


@pytest.mark.parametrize("raw", ["4", None, True, False, [5], object()])
def test_non_numeric_ratings_are_rejected(raw: object) -> None:
    with pytest.raises(ValidationError):
        normalize_quality(raw)


@pytest.mark.parametrize("raw", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_ratings_are_rejected(raw: float) -> None:
    with pytest.raises(ValidationError):
        normalize_quality(raw)


def test_validation_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        normalize_quality("great")


def test_is_passing_threshold() -> None:
    assert is_passing(3)
    assert is_passing(4.5)
    assert not is_passing(2.9)
