"""
Reconciler - Create, read, update and delete remote objects for one kind.

Drives a ResourceAdapter's calls through the Retrier, OperationPoller and
ClientRouter. Calls within one invocation are issued strictly in sequence;
distinct invocations share nothing but the router's client cache.
"""

import asyncio
import copy
import logging
import time
from dataclasses import dataclass, field
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)

from config import ReconcilerConfig
from differ import UpdatePlan, diff
from errors import (
    ConflictError,
    ErrorCategory,
    NotFoundError,
    PartialFailureError,
    PermanentInvalidInputError,
    ReconcileError,
    TransientError,
)
from events import EventBus, EventType, ReconcileEvent
from identity import CompositeIdentityCodec
from log_context import log_context, log_elapsed
from plugins.adapters.base import ResourceAdapter
from plugins.base import CallClass, OperationHandle, RemoteCall, Scope
from plugins.clients.base import RemoteClient
from poller import OperationPoller
from retry import Retrier
from router import ClientRouter
from timing import Clock, Deadline
from validation import ensure_valid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceDescriptor:
    """
    Desired state of one remote object.

    The attribute mapping is deep-copied on construction so later changes
    by the caller never leak into an in-flight reconciliation.
    """

    kind: str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    create_only: FrozenSet[str] = frozenset()
    scope: Optional[Scope] = None

    def __post_init__(self):
        object.__setattr__(self, "attributes", copy.deepcopy(dict(self.attributes)))
        object.__setattr__(self, "create_only", frozenset(self.create_only))


@dataclass
class ObservedState:
    """Attributes of a remote object as last read back."""

    identity: str
    attributes: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CreateResult:
    """Identity and first observed state of a newly created object."""

    identity: str
    observed: ObservedState


@dataclass
class DriftResult:
    """Outcome of comparing desired attributes with the remote object."""

    has_drift: bool
    plan: UpdatePlan
    details: str = ""
    exists: bool = True


Desired = Union[ResourceDescriptor, Mapping[str, Any]]


class Reconciler:
    """
    CRUD façade for one resource kind.

    Args:
        adapter: Resource adapter for the kind.
        router: Resolves scope-specific remote clients.
        retrier: Runs every remote call.
        poller: Waits for operation handles.
        config: Default per-operation timeouts and identity separator.
        event_bus: Optional bus receiving reconciliation events.
        clock: Monotonic clock used for default deadlines.
    """

    def __init__(
        self,
        adapter: ResourceAdapter,
        router: ClientRouter,
        retrier: Retrier,
        poller: OperationPoller,
        config: Optional[ReconcilerConfig] = None,
        event_bus: Optional[EventBus] = None,
        clock: Clock = time.monotonic,
    ):
        self.adapter = adapter
        self.router = router
        self.retrier = retrier
        self.poller = poller
        self.config = config or ReconcilerConfig()
        self.event_bus = event_bus
        self.clock = clock
        self.codec = CompositeIdentityCodec(
            adapter.identity_arity, self.config.identity_separator
        )

    @property
    def kind(self) -> str:
        return self.adapter.kind

    # ==================== Public operations ====================

    async def create(
        self,
        descriptor: ResourceDescriptor,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CreateResult:
        """
        Create the remote object described by ``descriptor``.

        The created object is never rolled back: if a post-creation step or
        the first read fails, PartialFailureError carries the new identity so
        the caller can retry just the failed step.

        Args:
            descriptor: Desired state of the new object.
            deadline: Overall deadline; defaults to the configured create timeout.
            cancel_event: Caller cancellation signal.

        Returns:
            CreateResult with the encoded identity and observed state.

        Raises:
            PermanentInvalidInputError: Invalid attributes or identity components.
            PartialFailureError: The object exists but a later step failed.
            DeadlineExceededError: The deadline ran out before creation finished.
        """
        with log_context(), log_elapsed(f"create {self.kind}"):
            if descriptor.kind != self.kind:
                raise PermanentInvalidInputError(
                    f"Descriptor kind '{descriptor.kind}' does not match adapter "
                    f"kind '{self.kind}'"
                )
            attributes = descriptor.attributes
            ensure_valid(self.kind, attributes, self.adapter.schema)
            deadline = deadline or self._deadline(self.config.create_timeout)
            call = self.adapter.create_call(attributes)
            # Everything after the create goes where the object was created
            scope = call.scope or self._scope(descriptor, attributes)

            logger.info(f"Creating {self.kind}")
            result = await self._run_call(call, deadline, cancel_event, scope)
            components = self.adapter.identity_from_create(attributes, result, scope)
            identity = self.codec.encode(components)
            logger.info(f"Created {self.kind} {identity}")

            committed = ["create"]
            for partition in self.adapter.post_create_partitions(components, attributes):
                try:
                    await self._run_call(partition.call, deadline, cancel_event, scope)
                except ReconcileError as e:
                    raise await self._partial_failure(
                        identity, committed, partition.name, e
                    ) from e
                committed.append(partition.name)

            try:
                observed = await self._read_attributes(
                    components, deadline, cancel_event, scope, must_exist=True
                )
            except ReconcileError as e:
                raise await self._partial_failure(identity, committed, "read", e) from e

            await self._publish(EventType.CREATED, identity, {"committed": committed})
            return CreateResult(identity, ObservedState(identity, observed))

    async def read(
        self,
        identity: str,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Optional[ObservedState]:
        """
        Read the remote object.

        Returns:
            The observed state, or None if the object no longer exists.

        Raises:
            DecodeError: ``identity`` is malformed.
        """
        with log_context(), log_elapsed(f"read {self.kind} {identity}"):
            components = self.codec.decode(identity)
            deadline = deadline or self._deadline(self.config.read_timeout)
            observed = await self._read_attributes(components, deadline, cancel_event)
            if observed is None:
                logger.info(f"{self.kind} {identity} not found")
                return None
            return ObservedState(identity, observed)

    async def update(
        self,
        identity: str,
        desired: Desired,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ObservedState:
        """
        Converge the remote object towards ``desired``.

        Only the calls implied by the non-empty parts of the UpdatePlan are
        issued, in the order the adapter returns them.

        Raises:
            NotFoundError: The object does not exist.
            PermanentInvalidInputError: A create-only attribute would change.
            PartialFailureError: Some partitions committed before one failed.
        """
        with log_context(), log_elapsed(f"update {self.kind} {identity}"):
            components = self.codec.decode(identity)
            attributes, create_only = self._desired(desired)
            ensure_valid(self.kind, attributes, self.adapter.schema)
            deadline = deadline or self._deadline(self.config.update_timeout)
            scope = self._scope(desired, attributes)

            observed = await self._read_attributes(components, deadline, cancel_event, scope)
            if observed is None:
                raise NotFoundError(f"Cannot update {self.kind} {identity}: it does not exist")

            plan = self.plan(attributes, observed)
            if plan.is_empty:
                logger.info(f"{self.kind} {identity} is up to date")
                return ObservedState(identity, observed)

            changed = set(plan.attributes.to_add) | set(plan.attributes.to_modify)
            frozen = sorted(changed & create_only)
            if frozen:
                raise PermanentInvalidInputError(
                    f"Cannot change create-only attributes of {self.kind} "
                    f"{identity}: {', '.join(frozen)}"
                )

            logger.info(f"Updating {self.kind} {identity} ({plan.describe()})")
            committed: List[str] = []
            for partition in self.adapter.update_partitions(components, plan, attributes):
                try:
                    await self._run_call(partition.call, deadline, cancel_event, scope)
                except ReconcileError as e:
                    if not committed:
                        raise
                    raise await self._partial_failure(
                        identity, committed, partition.name, e
                    ) from e
                committed.append(partition.name)
                logger.debug(f"Committed partition {partition.name} of {identity}")

            try:
                refreshed = await self._read_attributes(
                    components, deadline, cancel_event, scope
                )
            except ReconcileError as e:
                raise await self._partial_failure(identity, committed, "read", e) from e
            if refreshed is None:
                raise NotFoundError(f"{self.kind} {identity} disappeared during update")

            await self._publish(
                EventType.UPDATED,
                identity,
                {"committed": committed, "changes": plan.describe()},
            )
            return ObservedState(identity, refreshed)

    async def delete(
        self,
        identity: str,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Delete the remote object. Deleting an absent object succeeds.

        Raises:
            ConflictError: The object's state forbids deletion.
        """
        with log_context(), log_elapsed(f"delete {self.kind} {identity}"):
            components = self.codec.decode(identity)
            deadline = deadline or self._deadline(self.config.delete_timeout)

            observed = await self._read_attributes(components, deadline, cancel_event)
            if observed is None:
                logger.info(f"{self.kind} {identity} already absent, nothing to delete")
                return

            logger.info(f"Deleting {self.kind} {identity}")
            try:
                await self._run_call(
                    self.adapter.delete_call(components), deadline, cancel_event
                )
            except NotFoundError:
                logger.info(f"{self.kind} {identity} vanished before deletion")
            except ConflictError as e:
                raise ConflictError(
                    f"{self.kind} {identity} cannot be deleted in its current state: {e}"
                ) from e

            if self.adapter.confirm_deletion:
                await self._confirm_deleted(components, deadline, cancel_event)

            await self._publish(EventType.DELETED, identity)

    async def detect_drift(
        self,
        identity: str,
        desired: Desired,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> DriftResult:
        """Compare ``desired`` with the remote object without changing it."""
        with log_context(), log_elapsed(f"detect drift {self.kind} {identity}"):
            components = self.codec.decode(identity)
            attributes, _ = self._desired(desired)
            deadline = deadline or self._deadline(self.config.read_timeout)

            observed = await self._read_attributes(components, deadline, cancel_event)
            if observed is None:
                result = DriftResult(
                    has_drift=True,
                    plan=UpdatePlan(),
                    details="object no longer exists",
                    exists=False,
                )
            else:
                plan = self.plan(attributes, observed)
                result = DriftResult(
                    has_drift=not plan.is_empty, plan=plan, details=plan.describe()
                )

            if result.has_drift:
                logger.info(f"Drift detected on {self.kind} {identity}: {result.details}")
                await self._publish(
                    EventType.DRIFT_DETECTED,
                    identity,
                    {"details": result.details, "exists": result.exists},
                )
            return result

    async def paginate(
        self,
        page_call: Callable[[int, int], RemoteCall],
        parse_page: Callable[[Mapping[str, Any]], Sequence[Any]],
        page_size: int = 100,
        deadline: Optional[Deadline] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[Any]:
        """
        List remote objects page by page.

        Args:
            page_call: Builds the describe call for ``(offset, limit)``.
            parse_page: Extracts the items from one describe result.
            page_size: Items requested per page.
            deadline: Overall deadline; defaults to the configured read timeout.
            cancel_event: Caller cancellation signal.

        Returns:
            Every item of every page, in order.
        """
        first = page_call(0, page_size)
        with log_context(), log_elapsed(f"list {first.action}"):
            deadline = deadline or self._deadline(self.config.read_timeout)
            client = await self.router.resolve(first.scope)

            async def fetch(offset: int, limit: int) -> Sequence[Any]:
                call = first if offset == 0 else page_call(offset, limit)
                return parse_page(await client.invoke(call.action, call.payload) or {})

            return await self.retrier.paginate(
                fetch,
                deadline=deadline,
                page_size=page_size,
                call_class=first.call_class,
                cancel_event=cancel_event,
                action=first.action,
            )

    def plan(self, desired: Mapping[str, Any], observed: Mapping[str, Any]) -> UpdatePlan:
        """
        Build the UpdatePlan turning ``observed`` into ``desired``.

        Computed attributes are ignored. Multi-valued fields get their own
        diff, with the adapter's unmanaged keys left alone; a multi-valued
        field absent from ``desired`` is not managed at all.
        """
        fields = self.adapter.multi_valued_fields
        skipped = set(self.adapter.computed) | set(fields)

        plan = UpdatePlan(
            attributes=diff(
                {k: v for k, v in desired.items() if k not in skipped},
                observed,
                unmanaged=skipped,
            )
        )
        for name, unmanaged in fields.items():
            if name not in desired:
                continue
            plan.fields[name] = diff(
                desired.get(name) or {},
                observed.get(name) or {},
                unmanaged=unmanaged,
            )
        return plan

    # ==================== Internals ====================

    def _deadline(self, timeout: Optional[float]) -> Deadline:
        return Deadline(timeout, clock=self.clock)

    def _scope(self, desired: Desired, attributes: Mapping[str, Any]) -> Optional[Scope]:
        """Explicit descriptor scope, then the adapter's, then the router default."""
        if isinstance(desired, ResourceDescriptor) and desired.scope is not None:
            return desired.scope
        return self.adapter.scope_for(attributes) or self.router.default_scope

    def _desired(self, desired: Desired):
        if isinstance(desired, ResourceDescriptor):
            return desired.attributes, frozenset(self.adapter.create_only) | desired.create_only
        return copy.deepcopy(dict(desired)), frozenset(self.adapter.create_only)

    async def _run_call(
        self,
        call: RemoteCall,
        deadline: Deadline,
        cancel_event: Optional[asyncio.Event],
        scope: Optional[Scope] = None,
    ) -> Dict[str, Any]:
        """Issue one call and, if it returns an operation handle, wait for it."""
        client = await self.router.resolve(call.scope or scope)
        result = await self.retrier.call(
            lambda: client.invoke(call.action, call.payload),
            deadline=deadline,
            call_class=call.call_class,
            cancel_event=cancel_event,
            action=call.action,
        )
        if isinstance(result, OperationHandle):
            handle_client = await self.router.resolve(result.scope)
            polled = await self.poller.wait(
                result, handle_client, deadline, cancel_event, call.timeout
            )
            return polled.result
        return dict(result or {})

    async def _describe(
        self, client: RemoteClient, call: RemoteCall, components: Sequence[str]
    ) -> Optional[Dict[str, Any]]:
        """One describe attempt; a not-found failure reads as absent."""
        try:
            result = await client.invoke(call.action, call.payload)
        except Exception as e:
            if self.retrier.classifier.classify(e) == ErrorCategory.NOT_FOUND:
                return None
            raise
        if isinstance(result, OperationHandle):
            raise PermanentInvalidInputError(
                f"{call.action} returned an operation handle; reads must be synchronous"
            )
        return self.adapter.parse_read(components, result or {})

    async def _read_attributes(
        self,
        components: Sequence[str],
        deadline: Deadline,
        cancel_event: Optional[asyncio.Event],
        scope: Optional[Scope] = None,
        must_exist: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Read observed attributes.

        With ``must_exist`` an absent object is retried as eventual
        consistency within the read budget instead of returning None.
        """
        call = self.adapter.read_call(components)
        client = await self.router.resolve(call.scope or scope)

        async def attempt():
            observed = await self._describe(client, call, components)
            if observed is None and must_exist:
                raise TransientError(f"{self.kind} {list(components)} not visible yet")
            return observed

        return await self.retrier.call(
            attempt,
            deadline=deadline,
            call_class=CallClass.READ,
            cancel_event=cancel_event,
            action=call.action,
        )

    async def _confirm_deleted(
        self,
        components: Sequence[str],
        deadline: Deadline,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        call = self.adapter.read_call(components)
        client = await self.router.resolve(call.scope)

        async def attempt():
            if await self._describe(client, call, components) is not None:
                raise TransientError(f"{self.kind} {list(components)} still exists")

        await self.retrier.call(
            attempt,
            deadline=deadline,
            call_class=CallClass.READ,
            cancel_event=cancel_event,
            action=call.action,
        )

    async def _partial_failure(
        self,
        identity: str,
        committed: Iterable[str],
        failed: str,
        cause: BaseException,
    ) -> PartialFailureError:
        committed = list(committed)
        logger.error(
            f"Partial failure on {self.kind} {identity}: committed {committed}, "
            f"{failed} failed: {cause}"
        )
        await self._publish(
            EventType.PARTIAL_FAILURE,
            identity,
            {"committed": committed, "failed": failed, "error": str(cause)},
        )
        return PartialFailureError(
            f"{self.kind} {identity}: {failed} failed after committing "
            f"{', '.join(committed)}: {cause}",
            committed=committed,
            failed=failed,
            identity=identity,
        )

    async def _publish(
        self, event_type: EventType, identity: str, data: Optional[Dict[str, Any]] = None
    ) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            ReconcileEvent(event_type=event_type, kind=self.kind, identity=identity, data=data or {})
        )
