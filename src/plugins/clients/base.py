"""
Remote Client Base - Abstract interface for a provider's control API.

A RemoteClient is bound to one Scope (region/account). The engine never
mutates a client's scope; cross-region work resolves a second client
through the ClientRouter instead.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Union

from plugins.base import OperationHandle, OperationStatus, Scope

CallResult = Union[Dict[str, Any], OperationHandle]


class RemoteClient(ABC):
    """
    Abstract base class for remote API clients.

    Implementations translate ``invoke`` into the provider's wire calls and
    raise ``errors.RemoteAPIError`` (or a network exception) on failure so
    the ErrorClassifier can categorize it.
    """

    def __init__(self, scope: Scope):
        self.scope = scope

    @abstractmethod
    async def invoke(self, action: str, payload: Dict[str, Any]) -> CallResult:
        """
        Issue one remote call.

        Args:
            action: Provider action name (e.g. 'CreateDBInstance').
            payload: Request parameters.

        Returns:
            The final response mapping, or an OperationHandle when the
            provider accepted the request and finishes it asynchronously.
        """
        pass

    @abstractmethod
    async def get_operation_status(self, handle: OperationHandle) -> OperationStatus:
        """
        Check the status of an asynchronous operation.

        Args:
            handle: Handle returned by a previous ``invoke``.

        Returns:
            OperationStatus that is running, succeeded (with the final result)
            or failed (with the provider reason).
        """
        pass

    async def cancel_operation(self, handle: OperationHandle) -> None:
        """
        Abort an in-flight operation.

        Only called for handles marked ``cancellable``. Most provider
        operations cannot be aborted once submitted.
        """
        raise NotImplementedError(
            f"{type(self).__name__} has no cancel endpoint for {handle.kind or 'operations'}"
        )

    async def close(self) -> None:
        """Release connections held by this client."""
        return None
