"""Synchronization engine for externally modified subscriber records."""

__version__ = "0.1.0"
