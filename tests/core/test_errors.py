"""Tests for the herald error hierarchy."""

from herald.core.errors import (
    ErrorCategory,
    EventValidationError,
    HandlerNotFoundError,
    HeraldError,
    ScheduleNotFoundError,
    StorageError,
    ValidationError,
    WebhookDeliveryError,
    categorize_error,
    is_retryable,
)


class TestHierarchy:
    def test_event_validation_is_validation(self):
        err = EventValidationError("bad", field="name", value="x")
        assert isinstance(err, ValidationError)
        assert err.category == ErrorCategory.VALIDATION
        assert err.retryable is False

    def test_webhook_delivery_is_retryable(self):
        err = WebhookDeliveryError("HTTP 500", status_code=500)
        assert err.retryable is True
        assert err.status_code == 500
        assert err.context.http_status == 500

    def test_handler_not_found_lists_available(self):
        err = HandlerNotFoundError("nope", available=["core.http_ping"])
        assert "nope" in str(err)
        assert "core.http_ping" in str(err)
        assert err.category == ErrorCategory.CONFIG

    def test_schedule_not_found(self):
        err = ScheduleNotFoundError("S1")
        assert err.schedule_id == "S1"
        assert err.category == ErrorCategory.ORCHESTRATION


class TestContext:
    def test_with_context_known_and_extra_keys(self):
        err = StorageError("enqueue failed").with_context(item_id="I1", table="core_event_queue")
        data = err.to_dict()

        assert data["error_type"] == "StorageError"
        assert data["category"] == "STORAGE"
        assert data["context"] == {"item_id": "I1", "table": "core_event_queue"}

    def test_cause_is_chained(self):
        cause = OSError("disk full")
        err = StorageError("write failed", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "disk full"

    def test_validation_to_dict_includes_field(self):
        data = ValidationError("bad url", field="url", value="").to_dict()
        assert data["field"] == "url"
        assert data["value"] == "''"


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(WebhookDeliveryError("x"))
        assert not is_retryable(StorageError("x"))
        assert is_retryable(TimeoutError())
        assert not is_retryable(RuntimeError())

    def test_categorize_error(self):
        assert categorize_error(HeraldError("x")) == ErrorCategory.INTERNAL
        assert categorize_error(ConnectionError()) == ErrorCategory.NETWORK
        assert categorize_error(ValueError()) == ErrorCategory.VALIDATION
        assert categorize_error(KeyError()) == ErrorCategory.UNKNOWN
