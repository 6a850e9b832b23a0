"""Pamoja chat backend: encrypted conversation history and AI chat turns."""

__version__ = "1.0.0"
