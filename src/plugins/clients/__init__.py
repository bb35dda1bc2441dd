"""Remote API client plugins."""

from plugins.clients.base import RemoteClient

__all__ = ["RemoteClient"]
