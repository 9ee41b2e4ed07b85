"""Number of particle-sampling trials per hydro event.

High-multiplicity events need fewer resamples to reach the same total particle
count, so the count scales as TARGET_PARTICLES / mult and is clamped to
[MIN_OVERSAMPLES, MAX_OVERSAMPLES].
"""

from __future__ import annotations

import math

from .errors import PreconditionViolation

TARGET_PARTICLES = 1e5
MIN_OVERSAMPLES = 2
MAX_OVERSAMPLES = 100


def estimate(multiplicity: float) -> int:
    """Return ``clamp(round(1e5 / multiplicity), 2, 100)``.

    Raises PreconditionViolation for non-positive or non-finite input.
    """
    try:
        mult = float(multiplicity)
    except (TypeError, ValueError) as exc:
        raise PreconditionViolation(f"multiplicity is not numeric: {multiplicity!r}") from exc
    if not math.isfinite(mult) or mult <= 0:
        raise PreconditionViolation(f"multiplicity must be positive and finite, got {multiplicity!r}")

    # Clamp before rounding so tiny multiplicities cannot overflow round().
    ratio = min(max(TARGET_PARTICLES / mult, MIN_OVERSAMPLES), MAX_OVERSAMPLES)
    return int(round(ratio))
