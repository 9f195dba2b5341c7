"""Slot-based role and permission engine."""

__version__ = "0.1.0"
