"""Forge — multi-agent writing analysis backend."""

__version__ = "0.1.0"
