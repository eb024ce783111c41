"""
Motion controller for the camera-guided arm.

Runs on its own thread, one decision per tick:

    HOMING        once at startup
    SEEKING       no target visible: rotate forward and scan
    APPROACHING   target visible but off the pick-up zone: step toward it
    GRASPING      target in the pick-up zone: lower, grip, raise
    TRANSPORTING  rotate back toward home, extend to the drop point
    RELEASING     lower, release, raise
    RETURNING     retract to mid extension, rotate back to the last heading
    MANUAL        one operator step from the web GUI

GRASPING through RETURNING form the acquisition sequence, run back to back
within a single tick.

All positioning is open loop: the controller sleeps for durations derived
from the calibrated speeds and limits and keeps the running position
totals in a PositionEstimator.
"""

import logging
import math
import threading
import time
from enum import Enum
from typing import Callable, Optional

from common.calibration import Calibration, CalibrationStore
from common.telemetry import Channel, Mode, Role, TelemetryBus
from common.vision import Detection

from .actuator import ActuatorClient, ActuatorError, MoveCommand
from .position import Axis, DeadReckoningEstimator, PositionEstimator

logger = logging.getLogger(__name__)

# (rotation, lift, extension) direction per manual command
MANUAL_MOVES = {
    "F": (0, 0, 1),
    "B": (0, 0, -1),
    "R": (1, 0, 0),
    "L": (-1, 0, 0),
    "U": (0, 1, 0),
    "D": (0, -1, 0),
}

IDLE_WAIT_S = 0.01
HOMING_NOTICE = "Homing in progress, the arm will not respond until it finishes"
HOMING_DONE = "0"


class Phase(Enum):
    HOMING = "homing"
    SEEKING = "seeking"
    APPROACHING = "approaching"
    GRASPING = "grasping"
    TRANSPORTING = "transporting"
    RELEASING = "releasing"
    RETURNING = "returning"
    MANUAL = "manual"


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


class MotionController:
    """Homing, autonomous pick-and-place and manual teleoperation."""

    def __init__(
        self,
        calibrations: CalibrationStore,
        bus: TelemetryBus,
        actuator: ActuatorClient,
        detections: Callable[[], Optional[Detection]],
        estimator: Optional[PositionEstimator] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._calibrations = calibrations
        self._bus = bus
        self._writer = bus.writer(Role.CONTROLLER)
        self._actuator = actuator
        self._detections = detections
        self.estimator = estimator or DeadReckoningEstimator()
        self._sleep = sleep
        self._clock = clock
        self.phase: Optional[Phase] = None

    # Actuator helpers

    def _move(self, cal: Calibration, rotation: int, lift: int, extension: int, grip: bool) -> bool:
        """Send one command. Failures are logged and never retried."""
        command = MoveCommand(rotation, lift, extension, grip)
        try:
            self._actuator.send(cal.request_ip, command)
            return True
        except ActuatorError as e:
            logger.warning(f"Command not confirmed, position estimate may drift: {e}")
            return False

    def _hold(self, cal: Calibration, grip: bool) -> bool:
        return self._move(cal, 0, 0, 0, grip)

    def _wait(self, ms: float):
        if ms > 0:
            self._sleep(ms / 1000.0)

    def _elapsed_ms(self, start: float) -> float:
        return (self._clock() - start) * 1000.0

    # Homing

    def home(self):
        """Drive lift and extension to their ends, then park extension mid-way."""
        cal = self._calibrations.current()
        self.phase = Phase.HOMING
        self._writer.set(Channel.HOMING, HOMING_NOTICE)
        logger.info("Started homing sequence")
        try:
            self._move(cal, 0, cal.upwards_speed, cal.extension_speed, True)
            self._wait(max(cal.upwards_limit, cal.extension_limit))

            half_extension = cal.extension_limit // 2
            self._move(cal, 0, 0, -cal.extension_speed, True)
            self._wait(half_extension)

            self._hold(cal, False)

            self.estimator.reset(Axis.LIFT, cal.upwards_limit)
            self.estimator.reset(Axis.EXTENSION, half_extension)
        finally:
            self._writer.set(Channel.HOMING, HOMING_DONE)
        logger.info("Finished homing sequence")

    # Dispatch

    def tick(self) -> Optional[Phase]:
        """Run one control decision with a single calibration snapshot.

        Returns the phase that ran, or None if there was nothing to do.
        """
        cal = self._calibrations.current()
        if self._bus.mode() == Mode.AUTONOMOUS:
            return self.autonomous_tick(cal)
        return self.manual_tick(cal)

    def run(self, stop_event: threading.Event):
        """Home once, then tick until stop_event is set."""
        self.home()
        while not stop_event.is_set():
            if self.tick() is None:
                stop_event.wait(IDLE_WAIT_S)
        logger.info("Motion controller stopped")

    # Autonomous mode

    def target_offset(self, cal: Calibration, detection: Detection) -> tuple[float, float]:
        """Offset of the target from the pick-up zone center, in frame pixels."""
        center_x, center_y = detection.frame_center
        center_x += cal.center_offset_x
        center_y += cal.center_offset_y
        cx, cy = detection.centroid
        return (cx - center_x, cy - center_y)

    def select_phase(self, cal: Calibration, detection: Optional[Detection]) -> Phase:
        """Transition function for autonomous ticks."""
        if detection is None or not detection.found:
            return Phase.SEEKING
        dx, dy = self.target_offset(cal, detection)
        if math.hypot(dx, dy) <= cal.max_deviation:
            return Phase.GRASPING
        return Phase.APPROACHING

    def autonomous_tick(self, cal: Calibration) -> Phase:
        self.correct_rotation(cal)

        detection = self._detections()
        phase = self.select_phase(cal, detection)
        if phase is Phase.GRASPING:
            self.acquire(cal)
        elif phase is Phase.APPROACHING:
            self.phase = phase
            self.approach(cal, detection)
        else:
            self.phase = phase
            self.seek(cal)
        return phase

    def correct_rotation(self, cal: Calibration) -> bool:
        """Unwind the continuously rotating joint once it passes its limit."""
        if cal.rotation_limit <= 0:
            return False
        if self.estimator.read(Axis.ROTATION) <= cal.rotation_limit:
            return False

        correction = cal.rotation_limit % cal.rotation_revolution
        logger.info(f"Rotation limit exceeded, reversing for {correction}ms")
        self._move(cal, -cal.rotation_speed, 0, 0, True)
        self._wait(correction)
        self.estimator.accumulate(Axis.ROTATION, -correction)
        return True

    def approach(self, cal: Calibration, detection: Detection):
        """Step rotation and extension toward the target."""
        dx, dy = self.target_offset(cal, detection)
        rotation = -_sign(dx) if abs(dx) > cal.max_deviation else 0
        extension = _sign(dy) if abs(dy) > cal.max_deviation else 0

        start = self._clock()
        self._move(cal, rotation * cal.rotation_speed, 0, extension * cal.extension_speed, False)
        elapsed = self._elapsed_ms(start)

        self.estimator.accumulate(Axis.ROTATION, rotation * elapsed)
        self.estimator.accumulate(Axis.EXTENSION, extension * elapsed)

    def seek(self, cal: Calibration):
        """Rotate forward while nothing is in view."""
        start = self._clock()
        self._move(cal, cal.rotation_speed, 0, 0, False)
        self.estimator.accumulate(Axis.ROTATION, self._elapsed_ms(start))

    # Acquisition sequence

    def acquire(self, cal: Calibration):
        """Pick the target up, drop it at the extension limit, come back."""
        logger.info("Target in range, starting acquisition sequence")
        for phase, step in (
            (Phase.GRASPING, self.grasp),
            (Phase.TRANSPORTING, self.transport),
            (Phase.RELEASING, self.release),
            (Phase.RETURNING, self.return_to_heading),
        ):
            self.phase = phase
            step(cal)
        logger.info("Acquisition sequence finished")

    def _heading_ms(self, cal: Calibration) -> int:
        return int(self.estimator.read(Axis.ROTATION) / cal.rotation_revolution)

    def grasp(self, cal: Calibration):
        lift = self.estimator.read(Axis.LIFT)

        self._move(cal, 0, -cal.upwards_speed, 0, False)
        self._wait(lift)
        self._hold(cal, True)

        self._move(cal, 0, cal.upwards_speed, 0, True)
        self._wait(lift)
        self._hold(cal, True)

    def transport(self, cal: Calibration):
        self._move(cal, -cal.rotation_speed, 0, 0, True)
        self._wait(self._heading_ms(cal))

        self._move(cal, 0, 0, cal.extension_speed, True)
        self._wait(cal.extension_limit - self.estimator.read(Axis.EXTENSION))
        self._hold(cal, True)

    def release(self, cal: Calibration):
        lift = self.estimator.read(Axis.LIFT)

        self._move(cal, 0, -cal.upwards_speed, 0, True)
        self._wait(lift)
        self._hold(cal, False)

        self._move(cal, 0, cal.upwards_speed, 0, False)
        self._wait(lift)
        self._hold(cal, False)

    def return_to_heading(self, cal: Calibration):
        half_extension = cal.extension_limit // 2
        self._move(cal, 0, 0, -cal.extension_speed, False)
        self._wait(half_extension)
        self.estimator.reset(Axis.EXTENSION, half_extension)

        self._move(cal, cal.rotation_speed, 0, 0, True)
        self._wait(self._heading_ms(cal))
        self._hold(cal, False)

    # Manual mode

    def manual_tick(self, cal: Calibration) -> Optional[Phase]:
        """Execute one pending operator step, if any."""
        command = self._bus.take(Channel.MANUAL_COMMAND)
        if not command:
            return None

        logger.info(f"Received command: {command}")
        direction = MANUAL_MOVES.get(command)
        if direction is None:
            logger.warning(f"Ignoring unknown manual command {command!r}")
            return None

        self.phase = Phase.MANUAL
        rotation, lift, extension = direction
        start = self._clock()
        self._move(
            cal,
            rotation * cal.rotation_speed,
            lift * cal.upwards_speed,
            extension * cal.extension_speed,
            False,
        )
        self._wait(cal.manual_interval)
        elapsed = self._elapsed_ms(start)
        self._hold(cal, False)

        self.estimator.accumulate(Axis.ROTATION, rotation * cal.manual_interval)
        self.estimator.accumulate(Axis.EXTENSION, extension * cal.manual_interval)
        self.estimator.accumulate(Axis.LIFT, lift * elapsed)
        return Phase.MANUAL
