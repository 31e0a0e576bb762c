"""Zenux Chat API: streaming relay and chat history service."""

__version__ = "0.1.0"
