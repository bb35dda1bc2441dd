"""
Plugin Registry - Discovery and registration of plugins.

This module provides the central registry for remote client factories and
resource adapters, handling discovery, registration, and instantiation.
"""

from importlib.metadata import entry_points
from typing import Any, Callable, Dict, Optional, Type

from plugins.adapters.base import ResourceAdapter
from plugins.base import Scope, logger
from plugins.clients.base import RemoteClient

ClientFactory = Callable[[Scope], Any]

CLIENTS_ENTRY_POINT_GROUP = "cloud_reconciler.clients"
ADAPTERS_ENTRY_POINT_GROUP = "cloud_reconciler.adapters"


class PluginRegistry:
    """
    Central registry for all plugins.

    Client factories are registered per provider name; adapters per resource
    kind. A kind can only be claimed by one adapter.
    """

    def __init__(self):
        # Client factories keyed by provider name
        self._client_factories: Dict[str, ClientFactory] = {}

        # Registered adapter classes (not instantiated)
        self._adapters: Dict[str, Type[ResourceAdapter]] = {}

        # Instantiated adapters
        self._adapter_instances: Dict[str, ResourceAdapter] = {}

    # Registration methods

    def register_client_factory(self, provider: str, factory: ClientFactory) -> None:
        """
        Register a client factory for a provider.

        Args:
            provider: Provider name (e.g. 'tencentcloud').
            factory: Callable building a RemoteClient for a Scope; may be a
                RemoteClient subclass or a (sync or async) function.
        """
        if provider in self._client_factories:
            logger.warning(f"Overwriting existing client factory: {provider}")

        self._client_factories[provider] = factory
        logger.info(f"Registered client factory: {provider}")

    def register_adapter(self, adapter_class: Type[ResourceAdapter]) -> None:
        """
        Register a resource adapter class.

        Args:
            adapter_class: The ResourceAdapter subclass to register

        Raises:
            ValueError: If the kind is already claimed by another adapter
        """
        temp_instance = adapter_class()
        kind = temp_instance.kind

        existing = self._adapters.get(kind)
        if existing is not None and existing is not adapter_class:
            raise ValueError(
                f"Resource kind '{kind}' is already claimed by "
                f"adapter '{existing.__name__}'. Cannot register "
                f"'{adapter_class.__name__}'."
            )

        self._adapters[kind] = adapter_class
        self._adapter_instances[kind] = temp_instance
        logger.info(f"Registered resource adapter: {kind} ({adapter_class.__name__})")

    # Lookup methods

    def get_client_factory(self, provider: str) -> ClientFactory:
        """
        Get the client factory for a provider.

        Raises:
            ValueError: If the provider is not registered
        """
        if provider not in self._client_factories:
            available = ", ".join(self._client_factories.keys()) or "none"
            raise ValueError(
                f"Unknown client provider: {provider}. Available providers: {available}"
            )
        return self._client_factories[provider]

    def get_adapter(self, kind: str) -> ResourceAdapter:
        """
        Get the adapter instance for a resource kind.

        Raises:
            ValueError: If no adapter handles the kind
        """
        if kind not in self._adapters:
            available = ", ".join(self._adapters.keys()) or "none"
            raise ValueError(
                f"Unknown resource kind: {kind}. Available kinds: {available}"
            )
        return self._adapter_instances[kind]

    def list_client_providers(self) -> list[str]:
        """List all registered provider names."""
        return list(self._client_factories.keys())

    def list_adapters(self) -> list[str]:
        """List all registered resource kinds."""
        return list(self._adapters.keys())

    def has_client_factory(self, provider: str) -> bool:
        return provider in self._client_factories

    def has_adapter(self, kind: str) -> bool:
        return kind in self._adapters


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry singleton."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def discover_plugins(registry: Optional[PluginRegistry] = None) -> PluginRegistry:
    """
    Register client factories and adapters installed as entry points.

    Entry points in 'cloud_reconciler.clients' are registered under their
    entry point name; entry points in 'cloud_reconciler.adapters' must load
    a ResourceAdapter subclass. Broken plugins are logged and skipped.
    """
    registry = registry or get_registry()

    for ep in entry_points(group=CLIENTS_ENTRY_POINT_GROUP):
        try:
            registry.register_client_factory(ep.name, ep.load())
        except Exception as e:
            logger.warning(f"Could not load client plugin {ep.name}: {e}")

    for ep in entry_points(group=ADAPTERS_ENTRY_POINT_GROUP):
        try:
            adapter_class = ep.load()
            if not (
                isinstance(adapter_class, type)
                and issubclass(adapter_class, ResourceAdapter)
            ):
                raise TypeError(f"{adapter_class!r} is not a ResourceAdapter")
            registry.register_adapter(adapter_class)
        except Exception as e:
            logger.warning(f"Could not load adapter plugin {ep.name}: {e}")

    return registry


__all__ = [
    "ClientFactory",
    "PluginRegistry",
    "RemoteClient",
    "discover_plugins",
    "get_registry",
    "reset_registry",
]
