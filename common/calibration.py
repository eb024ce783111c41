"""
Calibration data and the hot-reloadable calibration store.

Calibrations live in a YAML file (calibrations.yml by default). Every
successful load produces a new immutable Calibration; the store swaps the
whole object at once, so a consumer that takes one snapshot per tick never
mixes limits or speeds from two different loads.

Durations and limits are in milliseconds. Detection bounds are in degrees
(hue) and percent (saturation, lightness).
"""

import logging
import threading
from dataclasses import dataclass, asdict, fields
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CALIBRATION_FILE = "calibrations.yml"


class CalibrationError(Exception):
    """Calibration file missing, unreadable or invalid."""


@dataclass(frozen=True)
class Calibration:
    """One loaded set of tunable parameters."""

    # Image settings
    resolution_x: int
    resolution_y: int
    flip_x_axis: bool
    flip_y_axis: bool

    # Detection rules
    hue: tuple[float, float]
    saturation: tuple[float, float]
    lightness: tuple[float, float]

    # Sensitivity settings
    center_offset_x: int
    center_offset_y: int
    max_deviation: float

    # Networking settings
    request_ip: str
    webgui_port: str

    # Reload settings
    live_reload: bool
    reload_interval: int

    # Speed settings
    rotation_speed: int
    upwards_speed: int
    extension_speed: int

    # Limit settings
    rotation_limit: int
    rotation_revolution: int
    upwards_limit: int
    extension_limit: int
    manual_interval: float

    @classmethod
    def from_dict(cls, data: dict) -> "Calibration":
        """Build and validate a calibration from a parsed document."""
        if not isinstance(data, dict):
            raise CalibrationError("Calibration document must be a mapping")

        missing = [f.name for f in fields(cls) if f.name not in data]
        if missing:
            raise CalibrationError(f"Missing calibration keys: {', '.join(missing)}")

        values = {}
        for f in fields(cls):
            raw = data[f.name]
            try:
                values[f.name] = _convert(f.type, raw)
            except (TypeError, ValueError) as e:
                raise CalibrationError(f"Invalid value for {f.name}: {raw!r} ({e})")

        cal = cls(**values)
        if cal.rotation_revolution <= 0:
            raise CalibrationError("rotation_revolution must be positive")
        if cal.reload_interval < 0:
            raise CalibrationError("reload_interval must not be negative")
        if cal.live_reload and cal.reload_interval == 0:
            raise CalibrationError("reload_interval must be positive when live_reload is set")
        return cal

    def to_dict(self) -> dict:
        result = asdict(self)
        for key in ("hue", "saturation", "lightness"):
            result[key] = list(result[key])
        return result


def _convert(kind, raw):
    if kind is bool:
        if not isinstance(raw, bool):
            raise TypeError("expected true or false")
        return raw
    if kind in (int, float):
        if isinstance(raw, bool):
            raise TypeError("expected a number")
        return kind(raw)
    if kind is str:
        return str(raw)
    # Detection ranges
    if not isinstance(raw, (list, tuple)) or len(raw) != 2:
        raise ValueError("expected a [low, high] pair")
    return (float(raw[0]), float(raw[1]))


def load_calibration(path) -> Calibration:
    """
    Load a calibration file.

    Raises:
        CalibrationError: file missing, not valid YAML, or invalid values
    """
    path = Path(path)
    try:
        text = path.read_text()
    except OSError as e:
        raise CalibrationError(f"Cannot read {path}: {e}")

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise CalibrationError(f"Cannot parse {path}: {e}")

    return Calibration.from_dict(data)


class CalibrationStore:
    """Holds the active calibration and reloads it from disk."""

    def __init__(self, path=DEFAULT_CALIBRATION_FILE):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._current: Optional[Calibration] = None
        self._version = 0
        self.loaded = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def load(self) -> Calibration:
        """Load the file and make it the active calibration.

        On failure the previous calibration (if any) stays active.
        """
        cal = load_calibration(self.path)
        with self._lock:
            self._current = cal
            self._version += 1
        self.loaded.set()
        return cal

    def current(self) -> Calibration:
        """Snapshot of the active calibration."""
        with self._lock:
            if self._current is None:
                raise CalibrationError("No calibration loaded")
            return self._current

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def watch(self, stop_event: threading.Event):
        """Reload loop.

        Keeps reloading every reload_interval ms while the active calibration
        has live_reload set; otherwise returns after the first good load.
        """
        while not stop_event.is_set():
            try:
                self.load()
                logger.debug(f"Loaded calibrations from {self.path} (v{self.version})")
            except CalibrationError as e:
                logger.error(f"Calibration reload failed, keeping previous: {e}")

            if not self.loaded.is_set():
                # Nothing good loaded yet; keep trying at a fixed pace
                stop_event.wait(1.0)
                continue

            cal = self.current()
            if not cal.live_reload:
                logger.info("Loaded calibrations in non-live mode")
                return
            stop_event.wait(cal.reload_interval / 1000.0)

    def start(self, stop_event: threading.Event) -> threading.Thread:
        """Run the reload loop in a background thread."""
        self._thread = threading.Thread(
            target=self.watch, args=(stop_event,), name="calibration-reload", daemon=True
        )
        self._thread.start()
        return self._thread
