"""Offline-first session time tracking with cross-device sync."""

__version__ = "0.1.0"
