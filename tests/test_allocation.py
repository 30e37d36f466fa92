"""Tests for proportional allocation with caps and floors."""
import math

import pytest

from custom_components.daily_energy_budget.allocation import (
    allocate_with_caps,
    allocate_with_caps_and_floors,
    normalize_weights,
    normalize_weights_with_fallback,
)


def test_normalize_weights_ignores_invalid_values():
    assert normalize_weights([1, -1, float("nan"), 3]) == [0.25, 0.0, 0.0, 0.75]


def test_normalize_weights_all_zero():
    assert normalize_weights([0, 0]) == [0.0, 0.0]
    assert normalize_weights_with_fallback([0, 0, 0, 0]) == [0.25, 0.25, 0.25, 0.25]


def test_allocation_without_caps_is_proportional():
    result = allocate_with_caps([1, 3], 8.0, [math.inf, math.inf])
    assert result == pytest.approx([2.0, 6.0])


def test_capped_bucket_overflow_is_redistributed():
    result = allocate_with_caps([1, 1, 2], 4.0, [math.inf, math.inf, 1.0])
    assert result == pytest.approx([1.5, 1.5, 1.0])
    assert sum(result) == pytest.approx(4.0)


def test_total_larger_than_caps_fills_every_cap():
    result = allocate_with_caps([1, 1], 10.0, [2.0, 3.0])
    assert result == pytest.approx([2.0, 3.0])


def test_zero_weights_split_evenly():
    result = allocate_with_caps([0, 0, 0], 3.0, [math.inf, 0.5, math.inf])
    assert result == pytest.approx([1.25, 0.5, 1.25])


def test_missing_and_nan_caps_are_unbounded():
    result = allocate_with_caps([1, 1], 2.0, [float("nan")])
    assert result == pytest.approx([1.0, 1.0])


def test_floors_are_allocated_first():
    result = allocate_with_caps_and_floors([0, 1], 4.0, [math.inf, math.inf], [1.0, 0.0])
    assert result == pytest.approx([1.0, 3.0])


def test_floors_above_total_are_scaled():
    result = allocate_with_caps_and_floors([1, 1], 2.0, [math.inf, math.inf], [2.0, 2.0])
    assert result == pytest.approx([1.0, 1.0])


def test_floors_clamped_to_caps():
    result = allocate_with_caps_and_floors([1, 1], 3.0, [0.5, math.inf], [2.0, 0.0])
    assert result[0] == pytest.approx(0.5)
    assert sum(result) == pytest.approx(3.0)


def test_nothing_to_allocate():
    assert allocate_with_caps_and_floors([1, 1], 0.0, [1, 1], [0, 0]) == [0.0, 0.0]
    assert allocate_with_caps_and_floors([], 5.0, [], []) == []
