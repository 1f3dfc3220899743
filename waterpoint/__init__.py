"""Waterpoint - water kiosk payment and dispensing gateway."""

__version__ = "0.1.0"
