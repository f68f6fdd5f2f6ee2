"""Canonical category detection for collaboratively tagged myth plot points."""

__version__ = "0.1.0"
