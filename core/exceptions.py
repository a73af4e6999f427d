"""
Custom exceptions for better error handling.

Only whole-batch failures are raised. Per-recipient failures travel as data
(see core.schema.ErrorDetail) so one recipient never aborts the others.
"""
from typing import Any, Dict, Optional


class BatchPaymentException(Exception):
    """Base exception for all batch payment errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize exception.

        Args:
            message: Error message
            details: Additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ParsingError(BatchPaymentException):
    """Raised when CSV input is malformed as a whole (oversize, headers, row limit)."""
    pass


class ConfigurationError(BatchPaymentException):
    """Raised when configuration is invalid."""
    pass


class LedgerError(BatchPaymentException):
    """Raised when the ledger GraphQL endpoint cannot be reached or answers non-2xx."""
    pass


class LedgerTimeoutError(LedgerError):
    """Raised when a ledger request exceeds the configured timeout."""
    pass


class LnurlError(BatchPaymentException):
    """Raised when an LNURL-pay service cannot be used."""

    def __init__(
        self,
        message: str,
        code: str = "LNURL_UNREACHABLE",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.code = code


class InvalidLnurlError(BatchPaymentException):
    """Raised when a bech32 LNURL cannot be decoded."""
    pass


class ExportError(BatchPaymentException):
    """Raised when report export fails."""
    pass
