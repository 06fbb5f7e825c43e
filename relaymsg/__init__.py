"""Encrypted messaging building blocks: crypto, relay storage, rate limiting, media framing and chat text."""

__version__ = "1.0.3"