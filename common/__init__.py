from .calibration import (
    Calibration,
    CalibrationError,
    CalibrationStore,
    load_calibration,
)

from .telemetry import (
    Channel,
    ChannelOwnershipError,
    Mode,
    Role,
    TelemetryBus,
    TelemetryProtocolError,
    parse_message,
)

from .vision import (
    Detection,
    NO_TARGET,
    contour_centroid,
    encode_frame,
    flip_frame,
    largest_contour,
    locate,
    scale_centroid,
)

__all__ = [
    # Calibration
    "Calibration",
    "CalibrationError",
    "CalibrationStore",
    "load_calibration",
    # Telemetry
    "Channel",
    "ChannelOwnershipError",
    "Mode",
    "Role",
    "TelemetryBus",
    "TelemetryProtocolError",
    "parse_message",
    # Vision
    "Detection",
    "NO_TARGET",
    "contour_centroid",
    "encode_frame",
    "flip_frame",
    "largest_contour",
    "locate",
    "scale_centroid",
]
