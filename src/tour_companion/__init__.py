"""Sync status, offline login and notification fan-out for the tour companion app."""

__version__ = "1.0.0"
