"""
Camera device enumeration via v4l2-ctl.

`v4l2-ctl --list-devices` prints one block per device:

    HD Webcam: HD Webcam (usb-0000:00:14.0-1):
    	/dev/video0
    	/dev/video1
    	/dev/media0

The header line is the human readable name; the first /dev/videoN line
gives the driver index passed to cv2.VideoCapture. The GUI selects cameras
by their position in this list (the logical index), and the acquisition
loop maps it to the driver index.
"""

import logging
import re
import subprocess
from dataclasses import dataclass

logger = logging.getLogger(__name__)

LIST_COMMAND = ["v4l2-ctl", "--list-devices"]
LIST_TIMEOUT_S = 5.0

_VIDEO_NODE = re.compile(r"/dev/video(\d+)\s*$")


@dataclass(frozen=True)
class CameraDevice:
    name: str
    driver_index: int


def parse_device_list(text: str) -> list[CameraDevice]:
    """Parse v4l2-ctl output into camera devices, in listing order."""
    devices = []
    name = None
    for line in text.splitlines():
        if not line.strip():
            continue
        if not line[0].isspace():
            name = line.replace(":", "").strip()
            continue
        if name is None:
            continue
        match = _VIDEO_NODE.search(line)
        if match:
            devices.append(CameraDevice(name, int(match.group(1))))
            # Only the first video node of a device is its capture node
            name = None
    return devices


def list_devices() -> list[CameraDevice]:
    """Enumerate attached cameras. Returns [] if enumeration fails."""
    try:
        result = subprocess.run(
            LIST_COMMAND,
            capture_output=True,
            text=True,
            timeout=LIST_TIMEOUT_S,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning(f"Error executing {' '.join(LIST_COMMAND)}: {e}")
        return []

    # v4l2-ctl exits non-zero when some device nodes cannot be opened but
    # still lists the rest
    if result.returncode != 0 and not result.stdout:
        logger.warning(f"{' '.join(LIST_COMMAND)} failed: {result.stderr.strip()}")
        return []

    return parse_device_list(result.stdout)
