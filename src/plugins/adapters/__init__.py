"""Resource adapter plugins."""

from plugins.adapters.base import ResourceAdapter

__all__ = ["ResourceAdapter"]
