"""Camera daemon - captures frames and publishes detections to the telemetry bus."""

from .devices import CameraDevice, list_devices
from .server import CameraDaemon, CameraError

__all__ = ["CameraDaemon", "CameraError", "CameraDevice", "list_devices"]
