"""Motion control for the camera-guided arm."""

from .actuator import ActuatorClient, ActuatorError, MoveCommand, encode
from .controller import MotionController, Phase
from .position import Axis, DeadReckoningEstimator, PositionEstimator

__all__ = [
    "ActuatorClient",
    "ActuatorError",
    "MoveCommand",
    "encode",
    "MotionController",
    "Phase",
    "Axis",
    "DeadReckoningEstimator",
    "PositionEstimator",
]
