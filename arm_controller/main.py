#!/usr/bin/env python3
"""
Arm controller entry point - wires the camera loop, motion controller,
calibration reload and web GUI together.

Usage:
    python -m arm_controller [--calibrations calibrations.yml] [--static static]

    Or after installing:
    colortrack-arm
"""

import argparse
import logging
import signal
import sys
import threading

from camera_daemon import CameraDaemon
from common.calibration import DEFAULT_CALIBRATION_FILE, CalibrationError, CalibrationStore
from common.telemetry import TelemetryBus
from webgui import WebGuiServer, create_app, parse_listen_address
from webgui.app import DEFAULT_STATIC_DIR

from .actuator import ActuatorClient
from .controller import MotionController

logger = logging.getLogger(__name__)


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Camera-guided arm controller with web telemetry"
    )
    parser.add_argument(
        "-c", "--calibrations",
        type=str,
        default=DEFAULT_CALIBRATION_FILE,
        help=f"Calibration file (default: {DEFAULT_CALIBRATION_FILE})"
    )
    parser.add_argument(
        "-s", "--static",
        type=str,
        default=str(DEFAULT_STATIC_DIR),
        help="Directory holding root.html and the GUI assets"
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    stop_event = threading.Event()

    # Calibrations must exist before anything moves
    calibrations = CalibrationStore(args.calibrations)
    logger.info("Waiting for calibrations file to load")
    try:
        cal = calibrations.load()
    except CalibrationError as e:
        logger.critical(f"Cannot start without calibrations: {e}")
        sys.exit(1)
    logger.info("Calibrations data loaded")
    logger.debug(f"Calibrations: {cal.to_dict()}")
    calibrations.start(stop_event)

    bus = TelemetryBus()

    try:
        host, port = parse_listen_address(cal.webgui_port)
    except ValueError as e:
        logger.critical(str(e))
        sys.exit(1)
    webgui = WebGuiServer(create_app(bus, args.static), host, port)
    if not webgui.start():
        logger.critical(f"Could not bind web GUI on {host}:{port}")
        sys.exit(1)

    camera = CameraDaemon(bus, calibrations)
    actuator = ActuatorClient()
    controller = MotionController(
        calibrations, bus, actuator, detections=camera.latest_detection
    )
    controller_thread = threading.Thread(
        target=controller.run, args=(stop_event,), name="motion-controller", daemon=True
    )
    controller_thread.start()

    # Handle signals for graceful shutdown
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        camera.run(stop_event)
    finally:
        stop_event.set()
        controller_thread.join(timeout=3.0)
        actuator.close()
        webgui.stop()


if __name__ == "__main__":
    main()
