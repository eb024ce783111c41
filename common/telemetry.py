"""
Shared telemetry bus between the control core and the web GUI.

Each channel holds only the latest value written to it. Channels are a
closed enum; every channel has exactly one owning role, and writes go
through a ChannelWriter bound to that role.

Reads and writes of a single channel are atomic (one lock per channel).
There is no consistent snapshot across channels: a reader may see a new
centroid X next to an old centroid Y. That is fine for visual telemetry.

Wire format (websocket text frames): a three letter prefix followed by the
content, e.g. "CXD312" or "CTRU".
"""

import logging
import threading
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

MANUAL_COMMANDS = ("F", "B", "R", "L", "U", "D")


class TelemetryProtocolError(ValueError):
    """Inbound telemetry message could not be parsed or validated."""


class ChannelOwnershipError(PermissionError):
    """A role tried to write a channel it does not own."""


class Role(Enum):
    VISION = "vision"
    NETWORK = "network"
    CONTROLLER = "controller"


class Mode(str, Enum):
    AUTONOMOUS = "0"
    MANUAL = "1"


class Channel(Enum):
    """Telemetry channels: (wire prefix, owner, default value)."""

    IMAGE = ("CAM", Role.VISION, "")
    CAMERA_LIST = ("CAS", Role.VISION, ())
    CENTROID_X = ("CXD", Role.VISION, -1)
    CENTROID_Y = ("CYD", Role.VISION, -1)
    MODE = ("MAN", Role.NETWORK, Mode.MANUAL)
    CAMERA_INDEX = ("CON", Role.NETWORK, 0)
    MANUAL_COMMAND = ("CTR", Role.NETWORK, "")
    HOMING = ("HOM", Role.CONTROLLER, "0")

    def __init__(self, prefix: str, owner: Role, default: Any):
        self.prefix = prefix
        self.owner = owner
        self.default = default

    def format(self, value: Any) -> str:
        """Render a value as wire content."""
        if self is Channel.CAMERA_LIST:
            return "|".join(value)
        if isinstance(value, Mode):
            return value.value
        return str(value)


# The GUI selects a camera with the same prefix the image is published under.
INBOUND_PREFIXES = {
    "CAM": Channel.CAMERA_INDEX,
    "MAN": Channel.MODE,
    "CTR": Channel.MANUAL_COMMAND,
}


def parse_message(text: str) -> tuple[Channel, Any]:
    """
    Parse an inbound telemetry message into (channel, typed value).

    Raises:
        TelemetryProtocolError: unknown prefix or invalid content
    """
    if not isinstance(text, str) or len(text) < 3:
        raise TelemetryProtocolError(f"Message too short: {text!r}")

    prefix, content = text[:3], text[3:]
    channel = INBOUND_PREFIXES.get(prefix)
    if channel is None:
        raise TelemetryProtocolError(f"Unknown inbound prefix {prefix!r}")

    if channel is Channel.CAMERA_INDEX:
        try:
            index = int(content)
        except ValueError:
            raise TelemetryProtocolError(f"Camera index is not an integer: {content!r}")
        if index < -1:
            raise TelemetryProtocolError(f"Camera index out of range: {index}")
        return channel, index

    if channel is Channel.MODE:
        # Anything but "0" drops back to manual
        if content == Mode.AUTONOMOUS.value:
            return channel, Mode.AUTONOMOUS
        return channel, Mode.MANUAL

    if content and content not in MANUAL_COMMANDS:
        raise TelemetryProtocolError(f"Unknown manual command: {content!r}")
    return channel, content


class _Slot:
    __slots__ = ("lock", "value")

    def __init__(self, value: Any):
        self.lock = threading.Lock()
        self.value = value


class ChannelWriter:
    """Write handle for the channels owned by one role."""

    def __init__(self, bus: "TelemetryBus", role: Role):
        self._bus = bus
        self.role = role

    def set(self, channel: Channel, value: Any):
        if channel.owner is not self.role:
            raise ChannelOwnershipError(
                f"{self.role.value} may not write {channel.name} (owned by {channel.owner.value})"
            )
        self._bus._store(channel, value)


class TelemetryBus:
    """Latest-value table for all telemetry channels."""

    def __init__(self):
        self._slots = {channel: _Slot(channel.default) for channel in Channel}

    def writer(self, role: Role) -> ChannelWriter:
        return ChannelWriter(self, role)

    def get(self, channel: Channel) -> Any:
        slot = self._slots[channel]
        with slot.lock:
            return slot.value

    def take(self, channel: Channel) -> Any:
        """Read a channel and reset it to its default in one step."""
        slot = self._slots[channel]
        with slot.lock:
            value = slot.value
            slot.value = channel.default
            return value

    def _store(self, channel: Channel, value: Any):
        slot = self._slots[channel]
        with slot.lock:
            slot.value = value

    def messages(self) -> list[str]:
        """Outbound wire messages, one per channel, in channel order."""
        return [channel.prefix + channel.format(self.get(channel)) for channel in Channel]

    def apply_message(self, text: str) -> Channel:
        """Parse an inbound message and store it with the network role."""
        channel, value = parse_message(text)
        self.writer(Role.NETWORK).set(channel, value)
        logger.debug(f"Telemetry {channel.name} <- {value!r}")
        return channel

    def mode(self) -> Mode:
        return self.get(Channel.MODE)
