"""
Plugin system for the reconciliation engine.

This package provides the interfaces for remote API clients and resource
adapters, and the registry that discovers them.
"""

from plugins.base import (
    CallClass,
    OperationHandle,
    OperationStatus,
    OperationStatusState,
    Partition,
    RemoteCall,
    Scope,
)
from plugins.registry import PluginRegistry, get_registry

__all__ = [
    "CallClass",
    "OperationHandle",
    "OperationStatus",
    "OperationStatusState",
    "Partition",
    "RemoteCall",
    "Scope",
    "PluginRegistry",
    "get_registry",
]
