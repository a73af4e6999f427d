"""
Unit tests for custom exceptions.
"""
from core.exceptions import (
    BatchPaymentException,
    ConfigurationError,
    ExportError,
    InvalidLnurlError,
    LedgerError,
    LedgerTimeoutError,
    LnurlError,
    ParsingError,
)


def test_base_exception():
    """Test base exception class."""
    exc = BatchPaymentException("Test error", details={"key": "value"})
    assert str(exc) == "Test error"
    assert exc.message == "Test error"
    assert exc.details == {"key": "value"}


def test_exception_hierarchy():
    """Test exception inheritance."""
    assert issubclass(ParsingError, BatchPaymentException)
    assert issubclass(ConfigurationError, BatchPaymentException)
    assert issubclass(LedgerError, BatchPaymentException)
    assert issubclass(LedgerTimeoutError, LedgerError)
    assert issubclass(LnurlError, BatchPaymentException)
    assert issubclass(InvalidLnurlError, BatchPaymentException)
    assert issubclass(ExportError, BatchPaymentException)


def test_exception_with_details():
    """Test exception with details dictionary."""
    details = {"size_bytes": 6_000_000, "max_bytes": 5_242_880}
    exc = ParsingError("File too large", details=details)
    assert exc.message == "File too large"
    assert exc.details["size_bytes"] == 6_000_000


def test_exception_without_details():
    """Test exception without details."""
    exc = LedgerError("Ledger API returned 503")
    assert exc.message == "Ledger API returned 503"
    assert exc.details == {}


def test_lnurl_error_code():
    """Test LNURL errors carry a validation error code."""
    assert LnurlError("unreachable").code == "LNURL_UNREACHABLE"
    assert LnurlError("slow", code="TIMEOUT").code == "TIMEOUT"
