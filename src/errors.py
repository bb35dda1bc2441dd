"""
Error Classifier - Maps raw remote failures to a retry taxonomy.

Every failure raised by a remote call is classified into exactly one
ErrorCategory. The retry loop uses the category to decide whether and when
to try again; callers only ever see the surfaced exceptions defined here.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ErrorCategory(Enum):
    """Classification of a failed remote call."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    PERMANENT_INVALID_INPUT = "permanent_invalid_input"
    UNKNOWN = "unknown"


class RemoteAPIError(Exception):
    """Raw failure returned by a remote API client."""

    def __init__(
        self,
        code: str,
        message: str = "",
        status: Optional[int] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(f"[{code}] {message}" if message else code)
        self.code = code
        self.message = message
        self.status = status
        self.request_id = request_id


# ==================== Surfaced errors ====================


class ReconcileError(Exception):
    """Base class for every error surfaced by the engine."""

    category: Optional[ErrorCategory] = None


class TransientError(ReconcileError):
    """Retries exhausted on a recoverable condition."""

    category = ErrorCategory.TRANSIENT


class RateLimitedError(ReconcileError):
    """Retries exhausted while the provider kept throttling."""

    category = ErrorCategory.RATE_LIMITED


class ConflictError(ReconcileError):
    """The remote object's state forbids the operation."""

    category = ErrorCategory.CONFLICT


class NotFoundError(ReconcileError):
    """The remote object does not exist."""

    category = ErrorCategory.NOT_FOUND


class PermanentInvalidInputError(ReconcileError):
    """Malformed request, authorization failure or unsupported combination."""

    category = ErrorCategory.PERMANENT_INVALID_INPUT


class UnknownRemoteError(ReconcileError):
    """An unrecognized failure that recurred after its single retry."""

    category = ErrorCategory.UNKNOWN


class DeadlineExceededError(ReconcileError):
    """The caller-supplied overall deadline ran out."""


class DecodeError(ReconcileError):
    """A stored composite identity could not be decoded."""

    category = ErrorCategory.PERMANENT_INVALID_INPUT


class OperationFailedError(ReconcileError):
    """A polled remote operation reached a terminal failure state."""

    def __init__(self, message: str, handle: Any = None, reason: Optional[str] = None):
        super().__init__(message)
        self.handle = handle
        self.reason = reason


class OperationTimedOutError(DeadlineExceededError):
    """Polling gave up; the remote operation might still finish later."""

    def __init__(self, message: str, handle: Any = None):
        super().__init__(message)
        self.handle = handle


class OperationCancelledError(ReconcileError):
    """The caller cancelled the wait; remote side effects are not undone."""

    def __init__(self, message: str, handle: Any = None):
        super().__init__(message)
        self.handle = handle


class PartialFailureError(ReconcileError):
    """
    Some sub-steps of a multi-step Create/Update committed, others did not.

    Attributes:
        committed: Names of the partitions that were applied, in order.
        failed: Name of the partition that failed.
        identity: Encoded identity of the remote object, when known.
    """

    def __init__(
        self,
        message: str,
        committed: List[str],
        failed: str,
        identity: Optional[str] = None,
    ):
        super().__init__(message)
        self.committed = list(committed)
        self.failed = failed
        self.identity = identity

    @property
    def cause(self) -> Optional[BaseException]:
        return self.__cause__


_SURFACED: Dict[ErrorCategory, type] = {
    ErrorCategory.TRANSIENT: TransientError,
    ErrorCategory.RATE_LIMITED: RateLimitedError,
    ErrorCategory.CONFLICT: ConflictError,
    ErrorCategory.NOT_FOUND: NotFoundError,
    ErrorCategory.PERMANENT_INVALID_INPUT: PermanentInvalidInputError,
    ErrorCategory.UNKNOWN: UnknownRemoteError,
}


def error_for_category(
    category: ErrorCategory, message: str, cause: Optional[BaseException] = None
) -> ReconcileError:
    """
    Build the surfaced exception for a terminal failure in ``category``.

    ``cause`` becomes the exception's ``__cause__``, as ``raise ... from``
    would set it.
    """
    error = _SURFACED[category](message)
    error.__cause__ = cause
    return error


# ==================== Classifier ====================

# Provider error codes, matched exactly or by dotted prefix
# ("InternalError.DbError" falls back to "InternalError").
DEFAULT_CODE_TABLE: Dict[str, ErrorCategory] = {
    # Transient
    "InternalError": ErrorCategory.TRANSIENT,
    "ServiceUnavailable": ErrorCategory.TRANSIENT,
    "RequestTimeout": ErrorCategory.TRANSIENT,
    "ClientError.NetworkError": ErrorCategory.TRANSIENT,
    "ClientError.HttpStatusCodeError": ErrorCategory.TRANSIENT,
    "FailedOperation.InternalError": ErrorCategory.TRANSIENT,
    "ResourceUnavailable": ErrorCategory.TRANSIENT,
    # Throttling
    "RequestLimitExceeded": ErrorCategory.RATE_LIMITED,
    "LimitExceeded.ApiRateLimit": ErrorCategory.RATE_LIMITED,
    "Throttling": ErrorCategory.RATE_LIMITED,
    "ThrottlingException": ErrorCategory.RATE_LIMITED,
    # Object state forbids the operation right now
    "ResourceInUse": ErrorCategory.CONFLICT,
    "ResourceBusy": ErrorCategory.CONFLICT,
    "FailedOperation.TaskConflict": ErrorCategory.CONFLICT,
    "OperationDenied.InstanceStatusLimitError": ErrorCategory.CONFLICT,
    "UnsupportedOperation.InstanceStateError": ErrorCategory.CONFLICT,
    "InvalidInstanceState": ErrorCategory.CONFLICT,
    # Missing objects
    "ResourceNotFound": ErrorCategory.NOT_FOUND,
    "InvalidParameter.ResourceNotFound": ErrorCategory.NOT_FOUND,
    "InvalidParameterValue.NotFound": ErrorCategory.NOT_FOUND,
    # Never retried
    "InvalidParameter": ErrorCategory.PERMANENT_INVALID_INPUT,
    "InvalidParameterValue": ErrorCategory.PERMANENT_INVALID_INPUT,
    "MissingParameter": ErrorCategory.PERMANENT_INVALID_INPUT,
    "UnknownParameter": ErrorCategory.PERMANENT_INVALID_INPUT,
    "AuthFailure": ErrorCategory.PERMANENT_INVALID_INPUT,
    "UnauthorizedOperation": ErrorCategory.PERMANENT_INVALID_INPUT,
    "UnsupportedOperation": ErrorCategory.PERMANENT_INVALID_INPUT,
    "InvalidAction": ErrorCategory.PERMANENT_INVALID_INPUT,
    "LimitExceeded": ErrorCategory.PERMANENT_INVALID_INPUT,
}


class ErrorClassifier:
    """
    Total mapping from raw failures to an ErrorCategory.

    Lookup order for a RemoteAPIError: explicit overrides, the exact code
    table, dotted code prefixes (longest first), then the HTTP-like status.
    Python-level network failures are transient. Anything else is UNKNOWN.
    """

    def __init__(
        self,
        overrides: Optional[Dict[str, ErrorCategory]] = None,
        code_table: Optional[Dict[str, ErrorCategory]] = None,
    ):
        self._overrides = dict(overrides or {})
        self._table = dict(DEFAULT_CODE_TABLE if code_table is None else code_table)

    def classify(self, error: BaseException) -> ErrorCategory:
        """
        Classify a failure.

        Args:
            error: The exception raised by a remote call.

        Returns:
            Exactly one ErrorCategory.
        """
        if isinstance(error, ReconcileError) and error.category is not None:
            return error.category

        if isinstance(error, RemoteAPIError):
            return self.classify_code(error.code, error.status)

        if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
            return ErrorCategory.TRANSIENT
        if isinstance(error, OSError):
            return ErrorCategory.TRANSIENT

        return ErrorCategory.UNKNOWN

    def classify_code(self, code: str, status: Optional[int] = None) -> ErrorCategory:
        """Classify a provider error code with an optional HTTP-like status."""
        for table in (self._overrides, self._table):
            category = self._lookup(table, code)
            if category is not None:
                return category

        if status is not None:
            return self._classify_status(status)

        return ErrorCategory.UNKNOWN

    @staticmethod
    def _lookup(table: Dict[str, ErrorCategory], code: str) -> Optional[ErrorCategory]:
        if not code:
            return None
        if code in table:
            return table[code]
        parts = code.split(".")
        for end in range(len(parts) - 1, 0, -1):
            prefix = ".".join(parts[:end])
            if prefix in table:
                return table[prefix]
        return None

    @staticmethod
    def _classify_status(status: int) -> ErrorCategory:
        if status == 429:
            return ErrorCategory.RATE_LIMITED
        if status == 404:
            return ErrorCategory.NOT_FOUND
        if status == 409:
            return ErrorCategory.CONFLICT
        if status in (408, 504) or 500 <= status < 600:
            return ErrorCategory.TRANSIENT
        if 400 <= status < 500:
            return ErrorCategory.PERMANENT_INVALID_INPUT
        return ErrorCategory.UNKNOWN


def parse_overrides(raw: Dict[str, str]) -> Dict[str, ErrorCategory]:
    """
    Convert a code → category-name mapping into classifier overrides.

    Unknown category names are skipped with a warning.
    """
    overrides: Dict[str, ErrorCategory] = {}
    for code, name in raw.items():
        try:
            overrides[code] = ErrorCategory(str(name).lower())
        except ValueError:
            logger.warning(f"Ignoring override for {code}: unknown category {name!r}")
    return overrides
