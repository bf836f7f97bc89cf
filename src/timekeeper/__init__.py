"""Timekeeper - desktop activity tracking with device-token cloud sync."""

__version__ = "0.3.0"
