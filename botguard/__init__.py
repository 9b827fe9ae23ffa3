"""Behavioral bot detection: client-side telemetry collector and server-side enforcement."""

__version__ = "1.0.0"
