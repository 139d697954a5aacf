"""Conduit: one canonical message stream over interchangeable agent backends."""

__version__ = "0.1.0"
