"""
Open-loop position estimate for the arm.

The arm has no position sensors. Where it "is" is tracked purely by
integrating how long each axis has been commanded in each direction
(dead reckoning), in milliseconds. The estimate is only as good as the
actuators' timing; it is resynchronized after homing and after every
pick-and-place cycle.
"""

import threading
from enum import Enum


class Axis(Enum):
    ROTATION = "rotation"
    LIFT = "lift"
    EXTENSION = "extension"


class PositionEstimator:
    """Base class for sources of the arm's per-axis position, in command milliseconds."""

    def accumulate(self, axis: Axis, signed_ms: float):
        """Add a signed command duration to an axis total."""
        raise NotImplementedError

    def read(self, axis: Axis) -> float:
        """Current total for an axis."""
        raise NotImplementedError

    def reset(self, axis: Axis, ms: float):
        """Overwrite an axis total at a known resynchronization point."""
        raise NotImplementedError


class DeadReckoningEstimator(PositionEstimator):
    """Running totals of signed command durations."""

    def __init__(self):
        self._lock = threading.Lock()
        self._totals = {axis: 0.0 for axis in Axis}

    def accumulate(self, axis: Axis, signed_ms: float):
        with self._lock:
            self._totals[axis] += signed_ms

    def read(self, axis: Axis) -> float:
        with self._lock:
            return self._totals[axis]

    def reset(self, axis: Axis, ms: float):
        with self._lock:
            self._totals[axis] = float(ms)

    def to_dict(self) -> dict:
        with self._lock:
            return {axis.value: total for axis, total in self._totals.items()}
