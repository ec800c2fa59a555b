"""Stream the live tail of a log file to browsers over WebSocket."""

__version__ = "1.0.0"
