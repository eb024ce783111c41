"""
Vision utilities for locating the colored target in camera frames.

The detector is a fixed color segmentation: HLS range mask, blur,
threshold, contours. The target position is the mean of the boundary
points of the contour with the most points, which is only an
approximation of the region's center, but it is cheap and stable enough
for steering the arm.
"""

import base64
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .calibration import Calibration

# Sentinel centroid meaning "no target detected"
NO_TARGET = (-1, -1)

# Minimum boundary points for a contour to count as the target
DEFAULT_MIN_CONTOUR_SIZE = 100

BLUR_KERNEL = (15, 15)
BINARY_THRESHOLD = 200.0

# Debug overlay (BGR)
CENTER_COLOR = (255, 0, 0)
CENTER_THICKNESS = 50
CONTOUR_COLOR = (0, 0, 255)
CONTOUR_THICKNESS = 20


@dataclass(frozen=True)
class Detection:
    """Latest vision result, in native frame pixels."""
    centroid: tuple[int, int]
    frame_width: int
    frame_height: int

    @property
    def found(self) -> bool:
        return self.centroid != NO_TARGET

    @property
    def frame_center(self) -> tuple[float, float]:
        return (self.frame_width / 2.0, self.frame_height / 2.0)


def hls_bounds(calibration: Calibration) -> tuple[tuple, tuple]:
    """
    Convert calibrated detection ranges to OpenCV 8-bit HLS bounds.

    Hue is given in degrees (0-360) and OpenCV stores it halved (0-179).
    Lightness and saturation are given in percent and scaled to 0-255.
    """
    lower = (
        calibration.hue[0] / 2.0,
        calibration.lightness[0] / 100.0 * 255.0,
        calibration.saturation[0] / 100.0 * 255.0,
    )
    upper = (
        calibration.hue[1] / 2.0,
        calibration.lightness[1] / 100.0 * 255.0,
        calibration.saturation[1] / 100.0 * 255.0,
    )
    return lower, upper


def largest_contour(contours) -> int:
    """Index of the contour with the most boundary points (first one wins ties)."""
    best = 0
    for i, contour in enumerate(contours):
        if len(contour) > len(contours[best]):
            best = i
    return best


def contour_centroid(points) -> tuple[int, int]:
    """
    Integer mean of contour points.

    Args:
        points: OpenCV contour (N x 1 x 2) or any (N x 2) array of x, y

    Returns:
        (cx, cy), or NO_TARGET for an empty contour
    """
    pts = np.asarray(points).reshape(-1, 2)
    if len(pts) < 1:
        return NO_TARGET
    total_x = int(pts[:, 0].astype(np.int64).sum())
    total_y = int(pts[:, 1].astype(np.int64).sum())
    return (total_x // len(pts), total_y // len(pts))


def locate(
    frame: np.ndarray,
    calibration: Calibration,
    min_contour_size: int = DEFAULT_MIN_CONTOUR_SIZE,
) -> tuple[np.ndarray, tuple[int, int]]:
    """
    Find the calibrated color target in a BGR frame.

    The input frame is never modified. When no target is found the input
    frame is returned as-is together with NO_TARGET.

    Args:
        frame: BGR image (from OpenCV)
        calibration: active calibration (detection ranges)
        min_contour_size: minimum boundary point count of the target contour

    Returns:
        (annotated_frame, centroid)
    """
    # Convert to HLS
    working = cv2.cvtColor(frame, cv2.COLOR_BGR2HLS)

    # Apply mask
    lower, upper = hls_bounds(calibration)
    mask = cv2.inRange(working, np.array(lower), np.array(upper))
    removed_mask = cv2.merge([mask, mask, mask])
    working = cv2.bitwise_and(working, removed_mask)

    # Convert mask to gray
    gray = cv2.cvtColor(removed_mask, cv2.COLOR_HLS2BGR)
    gray = cv2.cvtColor(gray, cv2.COLOR_BGR2GRAY)

    # Smooth out speckles, then drop low-confidence blur edges
    gray = cv2.GaussianBlur(gray, BLUR_KERNEL, 0)
    _, binary = cv2.threshold(gray, BINARY_THRESHOLD, 255.0, cv2.THRESH_BINARY)

    contours, _ = cv2.findContours(binary, cv2.RETR_CCOMP, cv2.CHAIN_APPROX_NONE)
    if len(contours) == 0:
        return frame, NO_TARGET

    best = largest_contour(contours)
    if len(contours[best]) < min_contour_size:
        return frame, NO_TARGET

    centroid = contour_centroid(contours[best])
    if centroid == NO_TARGET:
        return frame, NO_TARGET

    cv2.circle(working, centroid, 1, CENTER_COLOR, CENTER_THICKNESS)
    cv2.drawContours(working, contours, best, CONTOUR_COLOR, CONTOUR_THICKNESS)

    return working, centroid


def flip_frame(frame: np.ndarray, calibration: Calibration) -> np.ndarray:
    """Apply the calibrated axis flips."""
    if calibration.flip_x_axis and calibration.flip_y_axis:
        return cv2.flip(frame, -1)
    if calibration.flip_x_axis:
        return cv2.flip(frame, 0)
    if calibration.flip_y_axis:
        return cv2.flip(frame, 1)
    return frame


def scale_centroid(
    centroid: tuple[int, int],
    frame_size: tuple[int, int],
    calibration: Calibration,
) -> tuple[int, int]:
    """Rescale a native-pixel centroid to the calibrated display resolution."""
    if centroid == NO_TARGET:
        return NO_TARGET
    width, height = frame_size
    cx, cy = centroid
    return (
        int(cx / width * calibration.resolution_x),
        int(cy / height * calibration.resolution_y),
    )


def encode_frame(frame: np.ndarray) -> Optional[str]:
    """PNG-encode a frame as base64 text, or None if encoding fails."""
    ok, buffer = cv2.imencode(".png", frame)
    if not ok:
        return None
    return base64.b64encode(buffer.tobytes()).decode("ascii")
