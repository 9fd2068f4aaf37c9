"""Facial Gateway: relay between the dashboard and facial / access-control terminals."""

__version__ = "1.0.0"
