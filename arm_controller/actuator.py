"""
Actuator command encoding and transport.

The arm's controller board takes one HTTP POST per movement. The request
body is an empty JSON object; the movement itself travels in headers:

    R1/R2  rotation forward / reverse magnitude
    U1/U2  lift up / down magnitude
    E1/E2  extension out / in magnitude
    G1     gripper, 255 engaged, 0 released

For each axis one field carries the magnitude and the other is zero,
chosen by the sign of that axis' own value.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import requests

logger = logging.getLogger(__name__)

USER_AGENT = "colortrack-arm/0.1.0"
REQUEST_TIMEOUT_S = 5.0
GRIP_ENGAGED = 255
GRIP_RELEASED = 0


class ActuatorError(Exception):
    """Movement command was not confirmed by the arm controller."""


@dataclass(frozen=True)
class MoveCommand:
    """Desired actuator output for one control decision."""
    rotation: int = 0
    lift: int = 0
    extension: int = 0
    grip: bool = False

    def to_headers(self) -> dict[str, str]:
        return encode(self.rotation, self.lift, self.extension, self.grip)


STOP = MoveCommand()


def _split(value: int) -> tuple[str, str]:
    """Split a signed magnitude into (positive field, negative field)."""
    if value > 0:
        return str(value), "0"
    if value < 0:
        return "0", str(abs(value))
    return "0", "0"


def encode(rotation: int, lift: int, extension: int, grip: bool) -> dict[str, str]:
    """Encode a movement intent as controller request fields."""
    r1, r2 = _split(rotation)
    u1, u2 = _split(lift)
    e1, e2 = _split(extension)
    return {
        "R1": r1,
        "R2": r2,
        "U1": u1,
        "U2": u2,
        "E1": e1,
        "E2": e2,
        "G1": str(GRIP_ENGAGED if grip else GRIP_RELEASED),
    }


class ActuatorClient:
    """Sends movement commands to the arm controller over HTTP."""

    def __init__(self, session: Optional[requests.Session] = None):
        self._session = session or requests.Session()

    def send(self, endpoint: str, command: MoveCommand):
        """
        POST one command to the controller at endpoint.

        Raises:
            ActuatorError: transport failure or non-2xx response
        """
        headers = command.to_headers()
        headers["User-Agent"] = USER_AGENT
        try:
            resp = self._session.post(
                endpoint,
                data=b"{}",
                headers=headers,
                timeout=REQUEST_TIMEOUT_S,
            )
        except requests.RequestException as e:
            raise ActuatorError(f"Command {command} failed: {e}") from e

        if not 200 <= resp.status_code < 300:
            raise ActuatorError(
                f"Command {command} rejected with HTTP {resp.status_code}"
            )

    def close(self):
        self._session.close()
