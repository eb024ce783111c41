"""Web GUI and telemetry websocket."""

from .app import WebGuiServer, create_app, parse_listen_address

__all__ = ["WebGuiServer", "create_app", "parse_listen_address"]
