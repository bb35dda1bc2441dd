"""
Core plugin types and dataclasses.

This module contains shared types used by remote clients, resource adapters
and the reconciliation engine.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)


class CallClass(Enum):
    """Retry class of a remote call; selects the backoff policy."""

    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Scope:
    """Administrative scope (region and account) a client is bound to."""

    region: str
    account: str = ""

    def __str__(self) -> str:
        if self.account:
            return f"{self.account}/{self.region}"
        return self.region


@dataclass(frozen=True)
class OperationHandle:
    """Reference to an in-flight asynchronous remote operation."""

    token: str
    scope: Scope
    kind: str = ""
    cancellable: bool = False


class OperationStatusState(Enum):
    """State reported by a single status check of an operation."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class OperationStatus:
    """Result of a status-check call against an OperationHandle."""

    state: OperationStatusState
    result: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state != OperationStatusState.RUNNING


@dataclass
class RemoteCall:
    """A single remote call an adapter wants the engine to issue."""

    action: str
    payload: Dict[str, Any] = field(default_factory=dict)
    scope: Optional[Scope] = None
    call_class: CallClass = CallClass.WRITE
    # Overall wait budget for an operation handle returned by this call
    timeout: Optional[float] = None


@dataclass
class Partition:
    """One independently-issued sub-call implementing part of a change."""

    name: str
    call: RemoteCall
