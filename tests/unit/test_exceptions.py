"""
Unit tests for the MDB_WRAPPER exception hierarchy.
"""

import pytest

from mdb_wrapper.constants import GENERIC_ERROR_MESSAGE
from mdb_wrapper.exceptions import (
    ConfigurationError,
    DataApiError,
    DataLayerError,
    DuplicateKeyError,
    MongoWrapperError,
    ReconnectionError,
    StoreConnectionError,
    TransactionMisuseError,
    UnsupportedOperationError,
    WrapperValidationError,
)


class TestMongoWrapperError:
    """Test base exception formatting."""

    def test_message_only(self):
        error = MongoWrapperError("Something failed")

        assert str(error) == "Something failed"
        assert error.context == {}
        assert isinstance(error, RuntimeError)

    def test_with_context(self):
        error = MongoWrapperError("Something failed", context={"collection": "users"})

        assert str(error) == "Something failed (context: collection=users)"


class TestHierarchy:
    """Test subclass relationships callers rely on."""

    @pytest.mark.parametrize(
        "error",
        [
            TransactionMisuseError("nested"),
            UnsupportedOperationError("bulk_write", "data_api"),
        ],
    )
    def test_caller_misuse(self, error):
        assert isinstance(error, WrapperValidationError)

    @pytest.mark.parametrize("cls", [DataLayerError, StoreConnectionError, DuplicateKeyError])
    def test_sanitized_errors_carry_generic_message(self, cls):
        error = cls()

        assert isinstance(error, DataLayerError)
        assert str(error) == GENERIC_ERROR_MESSAGE

    def test_store_errors_are_not_validation_errors(self):
        assert not isinstance(DataLayerError(), WrapperValidationError)
        assert not isinstance(ReconnectionError(3, None), WrapperValidationError)


class TestSpecificErrors:
    """Test attributes of specific errors."""

    def test_unsupported_operation(self):
        error = UnsupportedOperationError("cursor", "data_api")

        assert error.operation == "cursor"
        assert error.transport == "data_api"
        assert error.message == "'cursor' is not supported by the data_api transport"

    def test_reconnection_error(self):
        cause = ConnectionError("refused")
        error = ReconnectionError(4, cause)

        assert error.attempts == 4
        assert error.last_error is cause
        assert error.message == "Reconnection failed after 4 attempts: refused"

    def test_data_api_error(self):
        error = DataApiError(503, None, "unavailable")

        assert error.status == 503
        assert error.message == "503 (None): unavailable"

    def test_configuration_error(self):
        error = ConfigurationError("Missing URL", config_key="api_url")

        assert error.config_key == "api_url"
        assert error.context["config_key"] == "api_url"
