"""Tests for the flowsched error hierarchy."""

import pytest

from flowsched.core.errors import (
    ConfigurationError,
    ErrorCategory,
    ExecutionError,
    ExecutionTimeoutError,
    FlowschedError,
    LockBackendError,
    NotFoundError,
    StoreError,
    categorize_error,
    error_message,
)


class TestFlowschedError:
    """Test base error behaviour."""

    def test_defaults_from_subclass(self):
        error = ConfigurationError("Cron schedule missing cron_expression")
        assert error.category is ErrorCategory.CONFIG
        assert error.retryable is False
        assert str(error) == "Cron schedule missing cron_expression"

    def test_with_context_returns_self(self):
        error = ExecutionError("boom")
        assert error.with_context(schedule_id="sch-1", run_id="run-1") is error
        assert error.context.schedule_id == "sch-1"
        assert error.context.run_id == "run-1"

    def test_cause_is_chained(self):
        cause = ValueError("bad")
        error = StoreError("Insert failed", cause=cause)
        assert error.cause is cause
        assert error.__cause__ is cause

    def test_to_dict(self):
        error = NotFoundError("Chatflow not found: f-1").with_context(target_id="f-1")
        data = error.to_dict()
        assert data["message"] == "Chatflow not found: f-1"
        assert data["category"] == "NOT_FOUND"
        assert data["retryable"] is False
        assert data["context"]["target_id"] == "f-1"

    @pytest.mark.parametrize(
        ("error_type", "category", "retryable"),
        [
            (ConfigurationError, ErrorCategory.CONFIG, False),
            (NotFoundError, ErrorCategory.NOT_FOUND, False),
            (ExecutionError, ErrorCategory.EXECUTION, True),
            (StoreError, ErrorCategory.DATABASE, False),
            (LockBackendError, ErrorCategory.NETWORK, True),
        ],
    )
    def test_categories(self, error_type, category, retryable):
        error = error_type("x")
        assert isinstance(error, FlowschedError)
        assert error.category is category
        assert error.retryable is retryable


class TestExecutionTimeoutError:
    """Timeouts are execution errors carrying the limit."""

    def test_is_execution_error(self):
        error = ExecutionTimeoutError(300)
        assert isinstance(error, ExecutionError)
        assert error.timeout == 300
        assert error.message == "Schedule execution timed out after 300s"

    def test_fractional_timeout(self):
        assert ExecutionTimeoutError(0.5).message == "Schedule execution timed out after 0.5s"


class TestHelpers:
    """Test error_message and categorize_error."""

    def test_error_message(self):
        assert error_message(ExecutionError("workflow failed")) == "workflow failed"
        assert error_message(RuntimeError("plain")) == "plain"
        assert error_message(KeyError()) == "KeyError"

    def test_categorize(self):
        assert categorize_error(StoreError("x")) is ErrorCategory.DATABASE
        assert categorize_error(TimeoutError()) is ErrorCategory.EXECUTION
        assert categorize_error(ConnectionRefusedError()) is ErrorCategory.NETWORK
        assert categorize_error(ValueError()) is ErrorCategory.UNKNOWN
