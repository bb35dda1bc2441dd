"""
Resource Adapter Base - Abstract interface for per-resource glue code.

Adapters describe how one kind of remote object maps to remote calls. They
never issue calls themselves: the Reconciler runs every RemoteCall they
return through the retry, polling and routing machinery.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence

from differ import UpdatePlan
from plugins.base import Partition, RemoteCall, Scope


class ResourceAdapter(ABC):
    """
    Abstract base class for resource adapters.

    Adapters are discovered via Python entry points in the
    'cloud_reconciler.adapters' group, or registered directly with the
    PluginRegistry.
    """

    # Attributes fixed at creation; changing them is a permanent error
    create_only: FrozenSet[str] = frozenset()

    # Provider-computed attributes, never diffed against the desired state
    computed: FrozenSet[str] = frozenset()

    # Multi-valued fields diffed key by key, with their unmanaged keys
    multi_valued_fields: Mapping[str, FrozenSet[str]] = {}

    # Optional JSON schema for desired attributes
    schema: Optional[Dict[str, Any]] = None

    # Wait for the object to read back absent after a delete
    confirm_deletion: bool = False

    @property
    @abstractmethod
    def kind(self) -> str:
        """Unique resource kind handled by this adapter (e.g. 'mongodb_instance')."""
        pass

    @property
    @abstractmethod
    def identity_arity(self) -> int:
        """Number of components in this kind's composite identity."""
        pass

    def scope_for(self, attributes: Mapping[str, Any]) -> Optional[Scope]:
        """
        Scope the object lives in, or None for the router's default scope.

        Args:
            attributes: Desired attributes of the object.
        """
        return None

    @abstractmethod
    def create_call(self, attributes: Mapping[str, Any]) -> RemoteCall:
        """
        Build the creation call.

        Args:
            attributes: Desired attributes.

        Returns:
            The RemoteCall that creates the object.
        """
        pass

    @abstractmethod
    def identity_from_create(
        self,
        attributes: Mapping[str, Any],
        result: Mapping[str, Any],
        scope: Optional[Scope],
    ) -> List[str]:
        """
        Derive identity components from the creation result.

        Args:
            attributes: Desired attributes used for the creation.
            result: Final result of the creation call or its operation.
            scope: Scope the creation call was sent to, so regional kinds
                can encode it; None only when the router has no default.

        Returns:
            Ordered identity components.
        """
        pass

    def post_create_partitions(
        self, components: Sequence[str], attributes: Mapping[str, Any]
    ) -> List[Partition]:
        """Secondary calls issued after creation (e.g. tagging)."""
        return []

    @abstractmethod
    def read_call(self, components: Sequence[str]) -> RemoteCall:
        """
        Build the call that describes the object.

        A call without a scope goes to the scope of the surrounding
        operation (the creation scope right after a create).
        """
        pass

    @abstractmethod
    def parse_read(
        self, components: Sequence[str], result: Mapping[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Decode a describe result into observed attributes.

        Returns:
            Observed attributes, or None if the result shows the object is
            gone (an empty describe result).
        """
        pass

    @abstractmethod
    def update_partitions(
        self,
        components: Sequence[str],
        plan: UpdatePlan,
        desired: Mapping[str, Any],
    ) -> List[Partition]:
        """
        Build the ordered partitions implementing a non-empty UpdatePlan.

        Args:
            components: Identity components.
            plan: The computed changes.
            desired: Full desired attributes.

        Returns:
            Partitions, issued strictly in order.
        """
        pass

    @abstractmethod
    def delete_call(self, components: Sequence[str]) -> RemoteCall:
        """Build the deletion call."""
        pass
