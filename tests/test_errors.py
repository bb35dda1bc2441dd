"""Unit tests for errors.py - Error taxonomy and classifier."""

import asyncio

import pytest

from errors import (
    DEFAULT_CODE_TABLE,
    ConflictError,
    DeadlineExceededError,
    DecodeError,
    ErrorCategory,
    ErrorClassifier,
    NotFoundError,
    OperationTimedOutError,
    PartialFailureError,
    PermanentInvalidInputError,
    RateLimitedError,
    RemoteAPIError,
    TransientError,
    UnknownRemoteError,
    error_for_category,
    parse_overrides,
)


class TestErrorClassifier:
    """Tests for ErrorClassifier."""

    @pytest.fixture
    def classifier(self):
        return ErrorClassifier()

    @pytest.mark.parametrize(
        "code,expected",
        [
            ("InternalError", ErrorCategory.TRANSIENT),
            ("RequestLimitExceeded", ErrorCategory.RATE_LIMITED),
            ("LimitExceeded.ApiRateLimit", ErrorCategory.RATE_LIMITED),
            ("ResourceInUse", ErrorCategory.CONFLICT),
            ("FailedOperation.TaskConflict", ErrorCategory.CONFLICT),
            ("ResourceNotFound", ErrorCategory.NOT_FOUND),
            ("InvalidParameter", ErrorCategory.PERMANENT_INVALID_INPUT),
            ("AuthFailure", ErrorCategory.PERMANENT_INVALID_INPUT),
            ("LimitExceeded", ErrorCategory.PERMANENT_INVALID_INPUT),
        ],
    )
    def test_exact_codes(self, classifier, code, expected):
        assert classifier.classify(RemoteAPIError(code)) == expected

    def test_dotted_prefix_falls_back(self, classifier):
        error = RemoteAPIError("InternalError.DbError")
        assert classifier.classify(error) == ErrorCategory.TRANSIENT

    def test_longest_prefix_wins(self, classifier):
        error = RemoteAPIError("InvalidParameter.ResourceNotFound.Detail")
        assert classifier.classify(error) == ErrorCategory.NOT_FOUND

    def test_unrecognized_code_is_unknown(self, classifier):
        assert classifier.classify(RemoteAPIError("Weird.Code")) == ErrorCategory.UNKNOWN

    @pytest.mark.parametrize(
        "status,expected",
        [
            (429, ErrorCategory.RATE_LIMITED),
            (404, ErrorCategory.NOT_FOUND),
            (409, ErrorCategory.CONFLICT),
            (503, ErrorCategory.TRANSIENT),
            (408, ErrorCategory.TRANSIENT),
            (400, ErrorCategory.PERMANENT_INVALID_INPUT),
            (302, ErrorCategory.UNKNOWN),
        ],
    )
    def test_status_fallback(self, classifier, status, expected):
        assert classifier.classify(RemoteAPIError("Unmapped", status=status)) == expected

    def test_code_table_beats_status(self, classifier):
        error = RemoteAPIError("ResourceNotFound", status=500)
        assert classifier.classify(error) == ErrorCategory.NOT_FOUND

    def test_overrides_beat_table(self):
        classifier = ErrorClassifier(
            overrides={"ResourceInUse": ErrorCategory.TRANSIENT}
        )
        assert classifier.classify(RemoteAPIError("ResourceInUse")) == ErrorCategory.TRANSIENT

    def test_network_errors_are_transient(self, classifier):
        assert classifier.classify(ConnectionResetError()) == ErrorCategory.TRANSIENT
        assert classifier.classify(asyncio.TimeoutError()) == ErrorCategory.TRANSIENT
        assert classifier.classify(OSError("broken pipe")) == ErrorCategory.TRANSIENT

    def test_other_exceptions_are_unknown(self, classifier):
        assert classifier.classify(KeyError("x")) == ErrorCategory.UNKNOWN

    def test_engine_errors_keep_their_category(self, classifier):
        assert classifier.classify(ConflictError("busy")) == ErrorCategory.CONFLICT
        assert classifier.classify(DecodeError("bad")) == ErrorCategory.PERMANENT_INVALID_INPUT

    def test_every_table_code_maps_to_one_category(self, classifier):
        for code, category in DEFAULT_CODE_TABLE.items():
            assert classifier.classify(RemoteAPIError(code)) == category


class TestErrorForCategory:
    """Tests for error_for_category."""

    @pytest.mark.parametrize(
        "category,error_type",
        [
            (ErrorCategory.TRANSIENT, TransientError),
            (ErrorCategory.RATE_LIMITED, RateLimitedError),
            (ErrorCategory.CONFLICT, ConflictError),
            (ErrorCategory.NOT_FOUND, NotFoundError),
            (ErrorCategory.PERMANENT_INVALID_INPUT, PermanentInvalidInputError),
            (ErrorCategory.UNKNOWN, UnknownRemoteError),
        ],
    )
    def test_surfaced_types(self, category, error_type):
        error = error_for_category(category, "boom")
        assert isinstance(error, error_type)
        assert error.category == category
        assert str(error) == "boom"

    def test_cause_is_chained(self):
        original = RemoteAPIError("InternalError", "db down")
        error = error_for_category(ErrorCategory.TRANSIENT, "gave up", original)
        assert error.__cause__ is original

    def test_no_cause_by_default(self):
        assert error_for_category(ErrorCategory.CONFLICT, "busy").__cause__ is None


class TestErrorTypes:
    """Tests for the surfaced error types."""

    def test_remote_api_error_str(self):
        error = RemoteAPIError("InternalError", "db down", status=500, request_id="req-1")
        assert "InternalError" in str(error)
        assert error.request_id == "req-1"

    def test_operation_timeout_is_deadline_exceeded(self):
        error = OperationTimedOutError("timed out", handle="op-1")
        assert isinstance(error, DeadlineExceededError)
        assert error.handle == "op-1"

    def test_partial_failure_carries_committed(self):
        cause = TransientError("later step")
        try:
            raise PartialFailureError(
                "partial", committed=["tags.remove"], failed="modify", identity="a#b"
            ) from cause
        except PartialFailureError as e:
            assert e.committed == ["tags.remove"]
            assert e.failed == "modify"
            assert e.identity == "a#b"
            assert e.cause is cause


class TestParseOverrides:
    """Tests for parse_overrides."""

    def test_valid_names(self):
        overrides = parse_overrides({"Foo": "transient", "Bar": "CONFLICT"})
        assert overrides == {
            "Foo": ErrorCategory.TRANSIENT,
            "Bar": ErrorCategory.CONFLICT,
        }

    def test_unknown_names_are_skipped(self):
        assert parse_overrides({"Foo": "sometimes"}) == {}
