"""Tests for the error hierarchy and its classification helpers."""

from __future__ import annotations

import pytest

from contract_spine.core.errors import (
    AuthenticationError,
    BackendError,
    CircuitOpenError,
    ClientClosedError,
    ContractCallError,
    ErrorCategory,
    NetworkError,
    QueueFullError,
    RateLimitError,
    SchemaValidationError,
    SpineError,
    TimeoutError,
    TransientError,
    counts_as_backend_failure,
    is_retryable,
)
from contract_spine.core.validation import Violation


class TestCategoriesAndRetryability:
    @pytest.mark.parametrize(
        "error",
        [
            NetworkError("down"),
            TimeoutError(timeout=1.0),
            BackendError("500", status=500),
            RateLimitError(retry_after=2.0),
        ],
    )
    def test_transient_errors_are_retryable(self, error):
        assert isinstance(error, TransientError)
        assert error.retryable is True
        assert is_retryable(error)

    @pytest.mark.parametrize(
        "error",
        [
            QueueFullError(max_size=3),
            CircuitOpenError(retry_after=4.0),
            AuthenticationError("nope"),
            ContractCallError("rejected", status=400),
            ClientClosedError("closed"),
        ],
    )
    def test_non_transient_errors_are_not_retryable(self, error):
        assert is_retryable(error) is False

    def test_plain_exceptions_are_not_retryable(self):
        assert is_retryable(ValueError("x")) is False

    def test_queue_full_is_rate_limit_category(self):
        error = QueueFullError(max_size=10)
        assert isinstance(error, RateLimitError)
        assert error.category == ErrorCategory.RATE_LIMIT
        assert "max_queue_size=10" in error.message

    def test_circuit_open_exposes_remaining_cooldown(self):
        assert CircuitOpenError(retry_after=12.5).remaining_cooldown == 12.5
        assert CircuitOpenError().remaining_cooldown == 0.0

    def test_explicit_retryable_override(self):
        error = NetworkError("down", retryable=False)
        assert is_retryable(error) is False


class TestBackendFailureClassification:
    def test_transient_failures_count(self):
        assert counts_as_backend_failure(BackendError("x", status=503))
        assert counts_as_backend_failure(NetworkError("x"))
        assert counts_as_backend_failure(RateLimitError())

    def test_local_backpressure_does_not_count(self):
        assert not counts_as_backend_failure(QueueFullError(max_size=1))

    def test_non_transient_do_not_count(self):
        assert not counts_as_backend_failure(AuthenticationError("x"))
        assert not counts_as_backend_failure(ValueError("x"))


class TestSerialisation:
    def test_with_context_sets_known_fields_and_metadata(self):
        error = NetworkError("down").with_context(request_id="r1", attempt=2, region="eu")
        assert error.context.request_id == "r1"
        assert error.context.attempt == 2
        assert error.context.metadata == {"region": "eu"}

    def test_to_dict(self):
        cause = OSError("reset")
        error = RateLimitError(retry_after=3.0, cause=cause).with_context(endpoint="/x")
        data = error.to_dict()
        assert data["error_type"] == "RateLimitError"
        assert data["category"] == "RATE_LIMIT"
        assert data["retryable"] is True
        assert data["retry_after"] == 3.0
        assert data["context"] == {"endpoint": "/x"}
        assert data["cause"] == "reset"
        assert error.__cause__ is cause

    def test_schema_validation_error_lists_every_violation(self):
        violations = [
            Violation("health", "maximum", "150 exceeds maximum 100", 150),
            Violation("class", "required", "'class' is required"),
        ]
        error = SchemaValidationError("PlayerStats", violations)
        assert error.schema == "PlayerStats"
        assert "health" in error.message and "class" in error.message
        data = error.to_dict()
        assert [v["path"] for v in data["violations"]] == ["health", "class"]

    def test_repr(self):
        assert repr(SpineError("boom")) == "SpineError('boom', category=INTERNAL)"
