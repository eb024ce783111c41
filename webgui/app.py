"""Web GUI - static control page plus the telemetry websocket.

Routes:
    /        root.html from the static directory
    /files/  everything else in the static directory
    /ws      telemetry: the server streams every channel as prefix+content
             text frames; the browser sends camera selection (CAM<n>),
             mode (MAN0 / MAN1) and manual steps (CTR<letter>)
"""

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Optional

import uvicorn
from starlette.applications import Starlette
from starlette.responses import FileResponse, PlainTextResponse
from starlette.routing import Mount, Route, WebSocketRoute
from starlette.staticfiles import StaticFiles
from starlette.websockets import WebSocket, WebSocketDisconnect

from common.telemetry import TelemetryBus, TelemetryProtocolError

logger = logging.getLogger(__name__)

DEFAULT_STATIC_DIR = Path(__file__).resolve().parent.parent / "static"
ROOT_PAGE = "root.html"
SEND_INTERVAL_S = 0.005
DEFAULT_HOST = "0.0.0.0"


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split ":8080" / "host:8080" / "8080" into (host, port)."""
    host, _, port = address.strip().rpartition(":")
    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"Invalid listen address {address!r}")
    if not 0 < port_number < 65536:
        raise ValueError(f"Invalid port in listen address {address!r}")
    return (host or DEFAULT_HOST, port_number)


async def homepage(request):
    page = Path(request.app.state.static_dir) / ROOT_PAGE
    if not page.is_file():
        return PlainTextResponse(f"Missing {page}", status_code=500)
    return FileResponse(page, media_type="text/html")


async def _read_commands(websocket: WebSocket, bus: TelemetryBus):
    """Apply inbound messages until the client goes away."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        text = message.get("text")
        if text is None:
            text = (message.get("bytes") or b"").decode("utf-8", "replace")
        try:
            bus.apply_message(text)
        except TelemetryProtocolError as e:
            logger.warning(f"Ignoring telemetry message: {e}")


async def _finish_reader(reader: asyncio.Task):
    """Cancel the command reader if still running and collect its outcome."""
    reader.cancel()
    await asyncio.wait([reader])
    if reader.cancelled():
        return
    error = reader.exception()
    if error is not None:
        logger.warning(f"Command reader failed: {error!r}")


async def telemetry_socket(websocket: WebSocket):
    """Stream all channels to one client while applying its commands."""
    bus: TelemetryBus = websocket.app.state.bus
    await websocket.accept()
    logger.info(f"New connection from {websocket.client}")

    reader = asyncio.create_task(_read_commands(websocket, bus))
    try:
        while not reader.done():
            for message in bus.messages():
                if reader.done():
                    break
                await websocket.send_text(message)
                await asyncio.sleep(SEND_INTERVAL_S)
    except (WebSocketDisconnect, RuntimeError, OSError) as e:
        logger.info(f"Failed to send telemetry: {e!r}")
    finally:
        await _finish_reader(reader)
        logger.info(f"Closed websocket connection from {websocket.client}")


def create_app(bus: TelemetryBus, static_dir=DEFAULT_STATIC_DIR) -> Starlette:
    app = Starlette(
        routes=[
            Route("/", homepage),
            Mount("/files", app=StaticFiles(directory=str(static_dir), check_dir=False), name="files"),
            WebSocketRoute("/ws", telemetry_socket),
        ],
    )
    app.state.bus = bus
    app.state.static_dir = str(static_dir)
    return app


class WebGuiServer:
    """Runs the web GUI under uvicorn in a background thread."""

    def __init__(self, app: Starlette, host: str, port: int):
        self.host = host
        self.port = port
        self.server = uvicorn.Server(
            uvicorn.Config(app, host=host, port=port, log_level="warning")
        )
        self._thread: Optional[threading.Thread] = None

    def start(self, timeout: float = 5.0) -> bool:
        """Start serving; returns False if the server did not come up."""
        self._thread = threading.Thread(target=self.server.run, name="webgui", daemon=True)
        self._thread.start()

        deadline = time.time() + timeout
        while time.time() < deadline:
            if self.server.started:
                logger.info(f"Started webserver on {self.host}:{self.port}")
                return True
            if not self._thread.is_alive():
                break
            time.sleep(0.05)
        return self.server.started

    def stop(self):
        self.server.should_exit = True
        if self._thread:
            self._thread.join(timeout=3.0)
        logger.info("Webserver stopped")
