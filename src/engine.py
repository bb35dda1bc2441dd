"""
Engine - Wires configuration, plugins and the shared machinery together.

One Engine owns the retrier, poller, rate limiter and event bus, plus one
ClientRouter per provider. Reconcilers built from it share those, so all
reconciliations of a process draw from the same client cache and limits.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

from config import Config, get_config, load_config
from errors import ErrorClassifier, parse_overrides
from events import EventBus
from log_context import configure_logging
from plugins.base import CallClass, Scope
from plugins.registry import PluginRegistry, discover_plugins, get_registry
from poller import OperationPoller
from ratelimit import ActionRateLimiter
from reconciler import Reconciler
from retry import Retrier
from router import ClientRouter
from timing import Clock, Sleeper

logger = logging.getLogger(__name__)


class Engine:
    """
    Composition root of the reconciliation engine.

    Args:
        config: Engine configuration; defaults to the global config.
        registry: Plugin registry; defaults to the global registry.
        sleeper: Performs backoff and polling waits.
        clock: Monotonic clock for default deadlines.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        registry: Optional[PluginRegistry] = None,
        sleeper: Optional[Sleeper] = None,
        clock: Clock = time.monotonic,
    ):
        self.config = config or get_config()
        self.registry = registry or get_registry()
        self.clock = clock

        self.rate_limiter = ActionRateLimiter(
            default_rate=self.config.rate_limit.default_rate,
            period=self.config.rate_limit.period,
            overrides=self.config.rate_limit.overrides,
        )
        self.classifier = ErrorClassifier(
            overrides=parse_overrides(self.config.classifier.code_overrides)
        )
        self.retrier = Retrier(
            classifier=self.classifier,
            policies={
                CallClass.READ: self.config.read_backoff.to_policy(),
                CallClass.WRITE: self.config.write_backoff.to_policy(),
            },
            rate_limiter=self.rate_limiter,
            sleeper=sleeper,
        )
        self.poller = OperationPoller(
            self.retrier,
            interval=self.config.poller.interval,
            max_interval=self.config.poller.max_interval,
            backoff_factor=self.config.poller.backoff_factor,
            timeout=self.config.poller.timeout,
        )
        self.event_bus = EventBus()

        self._routers: Dict[str, ClientRouter] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_env(cls, sleeper: Optional[Sleeper] = None) -> "Engine":
        """
        Process start-up: load the global config from the environment,
        install the log format and register installed plugins.
        """
        config = load_config()
        configure_logging(config.logging.log_level)
        registry = discover_plugins()
        logger.info(
            f"Engine starting with {len(registry.list_client_providers())} client "
            f"plugin(s) and {len(registry.list_adapters())} adapter(s)"
        )
        return cls(config=config, registry=registry, sleeper=sleeper)

    def _provider_name(self, provider: Optional[str]) -> str:
        name = provider or self.config.provider.provider
        if not name:
            raise ValueError("No provider given and PROVIDER is not configured")
        return name

    def _default_scope(self) -> Optional[Scope]:
        if not self.config.provider.default_region:
            return None
        return Scope(
            region=self.config.provider.default_region,
            account=self.config.provider.default_account,
        )

    async def router_for(self, provider: Optional[str] = None) -> ClientRouter:
        """
        Get (or build) the ClientRouter for a provider.

        Raises:
            ValueError: If the provider has no registered client factory.
        """
        name = self._provider_name(provider)
        async with self._lock:
            router = self._routers.get(name)
            if router is None:
                factory = self.registry.get_client_factory(name)
                router = ClientRouter(factory, default_scope=self._default_scope())
                self._routers[name] = router
                logger.info(f"Created client router for provider {name}")
        return router

    async def reconciler_for(self, kind: str, provider: Optional[str] = None) -> Reconciler:
        """
        Build a Reconciler for a resource kind.

        Raises:
            ValueError: If no adapter is registered for ``kind`` or the
                provider is unknown.
        """
        adapter = self.registry.get_adapter(kind)
        router = await self.router_for(provider)
        return Reconciler(
            adapter,
            router,
            self.retrier,
            self.poller,
            config=self.config.reconciler,
            event_bus=self.event_bus,
            clock=self.clock,
        )

    async def close(self) -> None:
        """Close every router and the clients they built."""
        async with self._lock:
            routers = list(self._routers.values())
            self._routers.clear()
        for router in routers:
            await router.close()

    async def __aenter__(self) -> "Engine":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
