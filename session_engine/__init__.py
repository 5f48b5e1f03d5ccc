"""Segments ordered activity events into labeled sessions and derives focus patterns."""

__version__ = "0.1.0"
