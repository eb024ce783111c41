"""
Camera daemon - captures frames, runs the target detector and publishes
the results to the telemetry bus.

The daemon owns the camera handle. The web GUI picks the camera through
the camera-index channel; switching releases the old handle before the new
one is opened.
"""

import logging
import threading
import time
from typing import Callable, Optional

import cv2

from common.calibration import CalibrationStore
from common.telemetry import Channel, Mode, Role, TelemetryBus
from common.vision import (
    DEFAULT_MIN_CONTOUR_SIZE,
    Detection,
    encode_frame,
    flip_frame,
    locate,
    scale_centroid,
)

from .devices import CameraDevice, list_devices

logger = logging.getLogger(__name__)

# Default settings
DEFAULT_FPS = 60
NO_CAMERA = -1
DEVICE_REFRESH_S = 2.0
IDLE_WAIT_S = 0.05
ERROR_BACKOFF_S = 0.1
STATS_INTERVAL_S = 10.0


class CameraError(Exception):
    """Camera could not be opened or read."""


class CameraDaemon:
    """Captures frames, locates the target and publishes telemetry."""

    def __init__(
        self,
        bus: TelemetryBus,
        calibrations: CalibrationStore,
        capture_factory: Callable[[int], cv2.VideoCapture] = cv2.VideoCapture,
        devices: Callable[[], list[CameraDevice]] = list_devices,
        fps: int = DEFAULT_FPS,
        min_contour_size: int = DEFAULT_MIN_CONTOUR_SIZE,
    ):
        self._bus = bus
        self._writer = bus.writer(Role.VISION)
        self._calibrations = calibrations
        self._capture_factory = capture_factory
        self._list_devices = devices
        self.fps = fps
        self.min_contour_size = min_contour_size

        self.cap: Optional[cv2.VideoCapture] = None
        self.active_index = NO_CAMERA
        self._rejected_index: Optional[int] = None
        self.devices: list[CameraDevice] = []

        self._detection: Optional[Detection] = None
        self._detection_lock = threading.Lock()

        self.running = False

        # Stats
        self.frame_count = 0
        self.start_time = 0
        self.last_stats_time = 0

    def refresh_devices(self) -> list[CameraDevice]:
        """Re-enumerate cameras and publish their names."""
        devices = self._list_devices()
        if devices != self.devices:
            # A newly attached camera may satisfy a previously rejected index
            self._rejected_index = None
        self.devices = devices
        self._writer.set(Channel.CAMERA_LIST, tuple(d.name for d in self.devices))
        return self.devices

    def select_camera(self, index: int) -> bool:
        """
        Make the camera at logical index active.

        An unknown index is rejected once and the active camera keeps running.

        Returns:
            True if a camera is open to read from

        Raises:
            CameraError: the device exists but could not be opened
        """
        if index == NO_CAMERA:
            return False
        if index == self.active_index and self.cap is not None:
            return True
        if index == self._rejected_index:
            return self.cap is not None

        if not 0 <= index < len(self.devices):
            self.refresh_devices()
        if not 0 <= index < len(self.devices):
            logger.error(f"Camera index {index} out of range ({len(self.devices)} cameras found)")
            self._rejected_index = index
            return self.cap is not None

        device = self.devices[index]
        self.release()

        logger.info(f"Opening camera {device.name} (driver index {device.driver_index})...")
        cap = self._capture_factory(device.driver_index)
        if not cap.isOpened():
            cap.release()
            raise CameraError(f"Failed to open camera {device.name}")

        cap.set(cv2.CAP_PROP_FPS, self.fps)
        self.cap = cap
        self.active_index = index
        self._rejected_index = None
        logger.info(f"Camera opened: {device.name}")
        return True

    def release(self):
        """Release the active camera handle, if any."""
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            logger.info(f"Released camera {self.active_index}")
        self.active_index = NO_CAMERA

    def latest_detection(self) -> Optional[Detection]:
        with self._detection_lock:
            return self._detection

    def _set_detection(self, detection: Detection):
        with self._detection_lock:
            self._detection = detection

    def step(self) -> bool:
        """
        One acquisition tick.

        Returns:
            False if no camera is selected

        Raises:
            CameraError: open, read or encode failure; telemetry is left as is
        """
        cal = self._calibrations.current()
        if not self.select_camera(self._bus.get(Channel.CAMERA_INDEX)):
            return False

        ret, frame = self.cap.read()
        if not ret or frame is None:
            raise CameraError("Failed to read webcam")

        frame = flip_frame(frame, cal)
        height, width = frame.shape[:2]

        output = frame
        if self._bus.mode() == Mode.AUTONOMOUS:
            output, centroid = locate(frame, cal, self.min_contour_size)
            self._set_detection(Detection(centroid, width, height))
            display_x, display_y = scale_centroid(centroid, (width, height), cal)
            self._writer.set(Channel.CENTROID_X, display_x)
            self._writer.set(Channel.CENTROID_Y, display_y)

        encoded = encode_frame(output)
        if encoded is None:
            raise CameraError("Failed to encode image")
        self._writer.set(Channel.IMAGE, encoded)

        self.frame_count += 1
        return True

    def run(self, stop_event: threading.Event):
        """Main capture loop."""
        self.running = True
        self.start_time = time.time()
        self.last_stats_time = self.start_time
        last_refresh = 0.0

        logger.info("Starting capture loop...")

        try:
            while self.running and not stop_event.is_set():
                now = time.time()
                if now - last_refresh >= DEVICE_REFRESH_S:
                    self.refresh_devices()
                    last_refresh = now

                try:
                    if not self.step():
                        stop_event.wait(IDLE_WAIT_S)
                        continue
                except CameraError as e:
                    logger.warning(str(e))
                    stop_event.wait(ERROR_BACKOFF_S)
                    continue

                # Log stats periodically
                now = time.time()
                if now - self.last_stats_time >= STATS_INTERVAL_S:
                    elapsed = now - self.start_time
                    fps = self.frame_count / elapsed
                    logger.info(f"Stats: {self.frame_count} frames, {fps:.1f} fps avg")
                    self.last_stats_time = now
        finally:
            self.stop()

    def stop(self):
        """Clean up resources."""
        self.running = False
        self.release()
        logger.info("Camera daemon stopped")
