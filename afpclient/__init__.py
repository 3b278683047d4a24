"""Apple Filing Protocol client: DSI session, request builders, reply parsers and volume operations."""

__version__ = "0.8.2"