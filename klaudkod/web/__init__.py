"""Web server for the session protocol."""

from klaudkod.web.server import WebSocketConnection, create_app, serve

__all__ = ["WebSocketConnection", "create_app", "serve"]
