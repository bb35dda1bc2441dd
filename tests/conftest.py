"""Pytest configuration and fixtures."""

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

import pytest

from backoff import BackoffPolicy
from config import ReconcilerConfig
from differ import UpdatePlan
from events import EventBus
from plugins.adapters.base import ResourceAdapter
from plugins.base import (
    CallClass,
    OperationHandle,
    OperationStatus,
    OperationStatusState,
    Partition,
    RemoteCall,
    Scope,
)
from plugins.clients.base import RemoteClient
from poller import OperationPoller
from reconciler import Reconciler
from retry import Retrier
from router import ClientRouter
from timing import Sleeper

DEFAULT_REGION = "ap-guangzhou"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleeper(Sleeper):
    """Sleeper that advances a FakeClock instead of waiting."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.waits: List[float] = []
        # Called with the wait index before each wait; may set a cancel event
        self.on_sleep = None

    @property
    def total(self) -> float:
        return sum(self.waits)

    async def sleep(self, seconds, cancel_event=None):
        if cancel_event is not None and cancel_event.is_set():
            return True
        if seconds <= 0:
            return False
        if self.on_sleep is not None:
            self.on_sleep(len(self.waits))
        if cancel_event is not None and cancel_event.is_set():
            return True
        self.waits.append(seconds)
        self.clock.advance(seconds)
        await asyncio.sleep(0)
        return False


class FakeCloud:
    """
    Scripted remote API shared by every FakeRemoteClient.

    Each action has a list of responses consumed in order; the last one is
    repeated once the list runs out. Exceptions in the list are raised.
    """

    def __init__(self):
        self._responses: Dict[str, List[Any]] = {}
        self._statuses: Dict[str, List[Any]] = {}
        self.calls: List[tuple] = []
        self.status_checks: List[tuple] = []
        self.cancelled: List[OperationHandle] = []
        self.clients: Dict[Scope, "FakeRemoteClient"] = {}
        self.built: Dict[Scope, int] = defaultdict(int)

    def script(self, action: str, *responses: Any) -> None:
        self._responses[action] = list(responses)

    def script_status(self, token: str, *statuses: Any) -> None:
        self._statuses[token] = list(statuses)

    def actions(self) -> List[str]:
        return [action for _, action, _ in self.calls]

    def client(self, scope: Scope) -> "FakeRemoteClient":
        self.built[scope] += 1
        client = FakeRemoteClient(scope, self)
        self.clients[scope] = client
        return client

    @staticmethod
    def _next(queue: List[Any], name: str) -> Any:
        if not queue:
            raise AssertionError(f"No scripted response for {name}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return response

    def respond(self, scope: Scope, action: str, payload: Dict[str, Any]) -> Any:
        self.calls.append((scope, action, dict(payload)))
        return self._next(self._responses.get(action, []), action)

    def status(self, handle: OperationHandle) -> Any:
        self.status_checks.append((handle.scope, handle.token))
        return self._next(self._statuses.get(handle.token, []), handle.token)


class FakeRemoteClient(RemoteClient):
    """RemoteClient backed by a FakeCloud."""

    def __init__(self, scope: Scope, cloud: FakeCloud):
        super().__init__(scope)
        self.cloud = cloud
        self.closed = False

    async def invoke(self, action, payload):
        return self.cloud.respond(self.scope, action, payload)

    async def get_operation_status(self, handle):
        return self.cloud.status(handle)

    async def cancel_operation(self, handle):
        self.cloud.cancelled.append(handle)

    async def close(self):
        self.closed = True


def running() -> OperationStatus:
    return OperationStatus(OperationStatusState.RUNNING)


def succeeded(**result) -> OperationStatus:
    return OperationStatus(OperationStatusState.SUCCEEDED, result=result)


def failed(reason: str) -> OperationStatus:
    return OperationStatus(OperationStatusState.FAILED, reason=reason)


def describe_response(
    instance_id: str = "ins-1",
    name: str = "web",
    zone: str = "ap-guangzhou-3",
    size: int = 2,
    tags: Optional[Dict[str, str]] = None,
    status: str = "RUNNING",
) -> Dict[str, Any]:
    return {
        "Instance": {
            "InstanceId": instance_id,
            "Name": name,
            "Zone": zone,
            "Size": size,
            "Status": status,
            "Tags": [{"Key": k, "Value": v} for k, v in (tags or {}).items()],
        }
    }


class TaggedInstanceAdapter(ResourceAdapter):
    """Sample adapter for a regional instance with tags."""

    create_only = frozenset({"zone"})
    computed = frozenset({"status"})
    multi_valued_fields = {"tags": frozenset({"project"})}

    @property
    def kind(self) -> str:
        return "tagged_instance"

    @property
    def identity_arity(self) -> int:
        return 2

    def scope_for(self, attributes):
        region = attributes.get("region")
        return Scope(region) if region else None

    def create_call(self, attributes):
        return RemoteCall(
            "CreateInstance",
            {
                "Name": attributes["name"],
                "Zone": attributes["zone"],
                "Size": attributes.get("size", 1),
            },
        )

    def identity_from_create(self, attributes, result, scope):
        return [scope.region, result["InstanceId"]]

    def post_create_partitions(self, components, attributes):
        tags = attributes.get("tags") or {}
        if not tags:
            return []
        return [
            Partition(
                "tags",
                RemoteCall("ModifyTags", {"Resource": components[1], "Replace": dict(tags)}),
            )
        ]

    def read_call(self, components):
        return RemoteCall(
            "DescribeInstance",
            {"InstanceId": components[1]},
            scope=Scope(components[0]),
            call_class=CallClass.READ,
        )

    def parse_read(self, components, result):
        instance = result.get("Instance")
        if not instance:
            return None
        return {
            "region": components[0],
            "name": instance["Name"],
            "zone": instance["Zone"],
            "size": instance["Size"],
            "status": instance["Status"],
            "tags": {t["Key"]: t["Value"] for t in instance.get("Tags", [])},
        }

    def update_partitions(
        self, components: Sequence[str], plan: UpdatePlan, desired: Mapping[str, Any]
    ) -> List[Partition]:
        scope = Scope(components[0])
        tags = plan.for_field("tags")
        partitions = []
        if tags.removed_keys():
            partitions.append(
                Partition(
                    "tags.remove",
                    RemoteCall(
                        "UnTagResources",
                        {"Resource": components[1], "Keys": sorted(tags.removed_keys())},
                        scope=scope,
                    ),
                )
            )
        if tags.replace_map():
            partitions.append(
                Partition(
                    "tags.replace",
                    RemoteCall(
                        "ModifyTags",
                        {"Resource": components[1], "Replace": tags.replace_map()},
                        scope=scope,
                    ),
                )
            )
        if not plan.attributes.is_empty:
            partitions.append(
                Partition(
                    "attributes.modify",
                    RemoteCall(
                        "ModifyInstance",
                        {"InstanceId": components[1], **plan.attributes.replace_map()},
                        scope=scope,
                    ),
                )
            )
        return partitions

    def delete_call(self, components):
        return RemoteCall(
            "DeleteInstance", {"InstanceId": components[1]}, scope=Scope(components[0])
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return RecordingSleeper(clock)


@pytest.fixture
def cloud():
    return FakeCloud()


@pytest.fixture
def retrier(sleeper):
    """Retrier without jitter so waits are exact."""
    return Retrier(
        policies={
            CallClass.READ: BackoffPolicy.read(jitter_factor=0),
            CallClass.WRITE: BackoffPolicy.write(jitter_factor=0),
        },
        sleeper=sleeper,
    )


@pytest.fixture
def poller(retrier):
    return OperationPoller(retrier, interval=3.0, timeout=1800.0)


@pytest.fixture
def router(cloud):
    return ClientRouter(cloud.client, default_scope=Scope(DEFAULT_REGION))


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def adapter():
    return TaggedInstanceAdapter()


@pytest.fixture
def reconciler(adapter, router, retrier, poller, event_bus, clock):
    return Reconciler(
        adapter,
        router,
        retrier,
        poller,
        config=ReconcilerConfig(),
        event_bus=event_bus,
        clock=clock,
    )
