"""Unit tests for the error taxonomy."""

from concurrent.futures import CancelledError

import httpx
import pytest

from feed_mailer.errors import (
    CanceledError,
    ErrorCode,
    FailedPreconditionError,
    FeedMailerError,
    InternalError,
    InvalidArgumentError,
    UnimplementedError,
    error_code,
    error_message,
)


class TestErrorCode:
    """Tests for ErrorCode."""

    def test_str_is_camel_case(self):
        assert str(ErrorCode.INVALID_ARGUMENT) == "InvalidArgument"
        assert str(ErrorCode.DEADLINE_EXCEEDED) == "DeadlineExceeded"
        assert str(ErrorCode.OK) == "Ok"

    def test_codes_are_distinct(self):
        assert len({c.value for c in ErrorCode}) == len(ErrorCode)


class TestFeedMailerError:
    """Tests for FeedMailerError and its subclasses."""

    @pytest.mark.parametrize(
        "cls,code",
        [
            (InvalidArgumentError, ErrorCode.INVALID_ARGUMENT),
            (InternalError, ErrorCode.INTERNAL),
            (UnimplementedError, ErrorCode.UNIMPLEMENTED),
            (FailedPreconditionError, ErrorCode.FAILED_PRECONDITION),
            (CanceledError, ErrorCode.CANCELED),
        ],
    )
    def test_subclass_codes(self, cls, code):
        err = cls("boom")
        assert err.code == code
        assert error_code(err) == code

    def test_message_includes_cause(self):
        cause = ValueError("bad value")
        err = InternalError("save feeds failed", cause=cause)

        assert str(err) == "save feeds failed: bad value"
        assert err.__cause__ is cause
        assert err.message == "save feeds failed"

    def test_explicit_code_overrides_class_code(self):
        err = FeedMailerError("gone", code=ErrorCode.NOT_FOUND)
        assert error_code(err) == ErrorCode.NOT_FOUND


class TestErrorCodeLookup:
    """Tests for error_code and error_message."""

    def test_none_is_ok(self):
        assert error_code(None) == ErrorCode.OK
        assert error_message(None) == ""

    def test_unknown_for_foreign_errors(self):
        assert error_code(RuntimeError("x")) == ErrorCode.UNKNOWN
        assert error_message(RuntimeError("x")) == ""

    def test_cancellation_and_timeouts(self):
        assert error_code(CancelledError()) == ErrorCode.CANCELED
        assert error_code(TimeoutError()) == ErrorCode.DEADLINE_EXCEEDED
        assert error_code(httpx.ReadTimeout("slow")) == ErrorCode.DEADLINE_EXCEEDED

    def test_walks_cause_chain(self):
        try:
            try:
                raise InvalidArgumentError("invalid cron spec")
            except InvalidArgumentError as inner:
                raise RuntimeError("setup failed") from inner
        except RuntimeError as e:
            outer = e

        assert error_code(outer) == ErrorCode.INVALID_ARGUMENT
        assert error_message(outer) == "invalid cron spec"

    def test_walks_implicit_context(self):
        try:
            try:
                raise TimeoutError()
            except TimeoutError:
                raise RuntimeError("wrapped")
        except RuntimeError as e:
            outer = e

        assert error_code(outer) == ErrorCode.DEADLINE_EXCEEDED

    def test_first_categorised_error_wins(self):
        inner = InternalError("request feeds failed", cause=httpx.ConnectTimeout("t"))
        assert error_code(inner) == ErrorCode.INTERNAL
