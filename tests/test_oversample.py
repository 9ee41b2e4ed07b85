"""Tests for the oversample estimator."""

import numpy as np
import pytest

from hic_events.errors import EventFailure, PreconditionViolation
from hic_events.oversample import MAX_OVERSAMPLES, MIN_OVERSAMPLES, estimate


class TestEstimate:
    def test_fixed_points(self):
        assert estimate(1000) == 100
        assert estimate(1e6) == 2

    def test_unclamped_region(self):
        assert estimate(2e4) == 5
        assert estimate(1e4) == 10
        assert estimate(3e3) == 33

    def test_clamped_low_multiplicity(self):
        assert estimate(1.0) == MAX_OVERSAMPLES
        assert estimate(1e-300) == MAX_OVERSAMPLES

    def test_bounds_and_monotonic(self):
        mults = np.logspace(-3, 8, 500)
        values = [estimate(m) for m in mults]
        assert all(MIN_OVERSAMPLES <= v <= MAX_OVERSAMPLES for v in values)
        assert all(a >= b for a, b in zip(values, values[1:]))

    @pytest.mark.parametrize("bad", [0, -5.0, float("nan"), float("inf"), None, "many"])
    def test_invalid_multiplicity(self, bad):
        with pytest.raises(PreconditionViolation):
            estimate(bad)

    def test_precondition_is_event_failure(self):
        with pytest.raises(EventFailure):
            estimate(0)
