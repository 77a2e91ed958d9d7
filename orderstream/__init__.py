"""
orderstream

Ingests order documents from a durable channel, persists them, and serves
them from a mirrored in-memory cache.
"""

__version__ = "1.0.0"
