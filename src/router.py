"""
Regional Client Router - Scope-specific remote clients.

Returns one client per (region, account) scope, building each at most once.
A reconciliation that spans two scopes resolves two clients instead of
rewriting the region of a shared one.
"""

import asyncio
import inspect
import logging
from typing import Dict, List, Optional

from plugins.base import Scope
from plugins.clients.base import RemoteClient
from plugins.registry import ClientFactory

logger = logging.getLogger(__name__)


class ClientRouter:
    """
    Caches remote clients per Scope.

    The lock only guards the cache dictionary; client construction runs
    outside it, so resolving distinct scopes never waits on another scope's
    construction. Concurrent first resolutions of the same scope share one
    in-flight construction.

    Args:
        factory: Builds a RemoteClient for a Scope (sync or async).
        default_scope: Scope used when ``resolve`` gets no scope.
    """

    def __init__(self, factory: ClientFactory, default_scope: Optional[Scope] = None):
        self._factory = factory
        self.default_scope = default_scope
        self._clients: Dict[Scope, "asyncio.Future[RemoteClient]"] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def resolve(self, scope: Optional[Scope] = None) -> RemoteClient:
        """
        Get the client for ``scope``.

        Args:
            scope: Target scope, or None for the default scope.

        Returns:
            The cached (or newly built) RemoteClient.

        Raises:
            ValueError: If no scope is given and there is no default.
            RuntimeError: If the router has been closed.
        """
        scope = scope or self.default_scope
        if scope is None:
            raise ValueError("No scope given and the router has no default scope")

        while True:
            async with self._lock:
                if self._closed:
                    raise RuntimeError("ClientRouter is closed")
                future = self._clients.get(scope)
                owner = future is None
                if owner:
                    future = asyncio.get_running_loop().create_future()
                    self._clients[scope] = future

            if owner:
                await self._build(scope, future)

            try:
                # shield: a cancelled waiter must not cancel the shared construction
                return await asyncio.shield(future)
            except asyncio.CancelledError:
                if future.cancelled() and not owner:
                    # The constructing task was cancelled, not this one
                    continue
                raise

    async def _build(self, scope: Scope, future: "asyncio.Future[RemoteClient]") -> None:
        try:
            client = self._factory(scope)
            if inspect.isawaitable(client):
                client = await client
        except BaseException as e:
            # Failed constructions are not cached; the next resolve retries
            async with self._lock:
                if self._clients.get(scope) is future:
                    del self._clients[scope]
            if isinstance(e, asyncio.CancelledError):
                future.cancel()
                raise
            future.set_exception(e)
            logger.error(f"Failed to build client for scope {scope}: {e}")
            return

        async with self._lock:
            closed = self._closed
        if closed:
            # close() already ran and will never see this client
            try:
                await client.close()
            except Exception as e:
                logger.error(f"Error closing client for scope {scope}: {e}")
            future.set_exception(RuntimeError("ClientRouter is closed"))
            logger.info(f"Discarded client for scope {scope} built after close")
            return

        future.set_result(client)
        logger.info(f"Built remote client for scope {scope}")

    def scopes(self) -> List[Scope]:
        """Scopes with a successfully built client."""
        return [
            scope
            for scope, future in self._clients.items()
            if future.done() and not future.cancelled() and future.exception() is None
        ]

    async def close(self) -> None:
        """Close every built client; the router cannot be used afterwards."""
        async with self._lock:
            self._closed = True
            futures = list(self._clients.items())
            self._clients.clear()

        for scope, future in futures:
            if not future.done() or future.cancelled() or future.exception() is not None:
                continue
            try:
                await future.result().close()
            except Exception as e:
                logger.error(f"Error closing client for scope {scope}: {e}")
        logger.info("Closed all remote clients")
