"""Live transit vehicle tracking with incremental WebSocket updates."""

__version__ = "0.1.0"
