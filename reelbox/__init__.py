"""Reelbox: pick a folder, list its videos, play them in an isolated web view."""

__version__ = "0.1.0"
