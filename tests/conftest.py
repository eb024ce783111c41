"""Pytest configuration."""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from common.calibration import Calibration  # noqa: E402

BASE_CALIBRATION = {
    "resolution_x": 640,
    "resolution_y": 480,
    "flip_x_axis": False,
    "flip_y_axis": False,
    "hue": [100, 140],
    "saturation": [50, 100],
    "lightness": [10, 90],
    "center_offset_x": 0,
    "center_offset_y": 0,
    "max_deviation": 20,
    "request_ip": "http://arm.local/move",
    "webgui_port": ":8080",
    "live_reload": False,
    "reload_interval": 10,
    "rotation_speed": 100,
    "upwards_speed": 150,
    "extension_speed": 120,
    "rotation_limit": 0,
    "rotation_revolution": 1000,
    "upwards_limit": 1000,
    "extension_limit": 800,
    "manual_interval": 200,
}


@pytest.fixture
def calibration_data():
    return dict(BASE_CALIBRATION)


@pytest.fixture
def make_calibration():
    def factory(**overrides) -> Calibration:
        data = dict(BASE_CALIBRATION)
        data.update(overrides)
        return Calibration.from_dict(data)
    return factory


class StaticCalibrations:
    """Stands in for CalibrationStore with a fixed snapshot."""

    def __init__(self, calibration: Calibration):
        self.calibration = calibration

    def current(self) -> Calibration:
        return self.calibration


@pytest.fixture
def static_store():
    return StaticCalibrations
