"""
Pydantic schemas for the batch payment pipeline.
Defines recipients, validation results, fee estimates and payment outcomes.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RecipientKind(str, Enum):
    """How a recipient is addressed."""
    INTERNAL = "INTERNAL"        # account handle on the home ledger
    LN_ADDRESS = "LN_ADDRESS"    # user@domain (LUD-16)
    LNURL = "LNURL"              # bech32 lnurl1... (LUD-01/LUD-06)


SUPPORTED_CURRENCIES = ("SATS", "USD", "BTC")
DEFAULT_CURRENCY = "SATS"


class ParseErrorCode(str, Enum):
    MISSING_RECIPIENT = "MISSING_RECIPIENT"
    MISSING_AMOUNT = "MISSING_AMOUNT"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_CURRENCY = "INVALID_CURRENCY"


class ValidationErrorCode(str, Enum):
    INVALID_FORMAT = "INVALID_FORMAT"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    LNURL_UNREACHABLE = "LNURL_UNREACHABLE"
    LNURL_INVALID_RESPONSE = "LNURL_INVALID_RESPONSE"
    AMOUNT_BELOW_MIN = "AMOUNT_BELOW_MIN"
    AMOUNT_ABOVE_MAX = "AMOUNT_ABOVE_MAX"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"


class PaymentErrorCode(str, Enum):
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    NO_ROUTE = "NO_ROUTE"
    INVOICE_EXPIRED = "INVOICE_EXPIRED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"


class ErrorDetail(BaseModel):
    """Machine-readable code plus human-readable message."""
    code: str
    message: str

    @classmethod
    def of(cls, code: Union[Enum, str], message: str) -> "ErrorDetail":
        return cls(code=getattr(code, "value", code), message=message)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class ParsedRecipient(BaseModel):
    """A typed CSV row. Immutable; use with_amount_sats() for FX resolution."""
    model_config = ConfigDict(frozen=True)

    row_number: int
    original: str
    kind: RecipientKind
    normalized: str = Field(..., min_length=1)
    requested_amount: float = Field(..., gt=0)
    amount_sats: Optional[int] = Field(
        None,
        description="Amount in sats; None means the row needs live FX conversion",
    )
    currency: str = DEFAULT_CURRENCY
    memo: str = ""

    def with_amount_sats(self, amount_sats: int) -> "ParsedRecipient":
        """Return a copy carrying a resolved sat amount."""
        return self.model_copy(update={"amount_sats": amount_sats})


class RowError(BaseModel):
    row_number: int
    code: ParseErrorCode
    message: str


class ParseSummary(BaseModel):
    total: int = 0
    by_kind: Dict[str, int] = Field(default_factory=dict)
    parse_errors: int = 0


class ParseResult(BaseModel):
    """Output of the CSV parser."""
    success: bool
    records: List[ParsedRecipient] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    row_errors: List[RowError] = Field(default_factory=list)
    summary: ParseSummary = Field(default_factory=ParseSummary)


class QuickValidateResult(BaseModel):
    valid: bool
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class LnurlPayData(BaseModel):
    """LUD-06 payRequest parameters (amounts in millisatoshi)."""
    callback: str
    min_sendable: int
    max_sendable: int
    metadata: Optional[str] = None
    tag: Optional[str] = None
    comment_allowed: int = 0


class ValidationResult(BaseModel):
    """One per recipient. A valid result carries at most one settlement route."""
    recipient: ParsedRecipient
    valid: bool
    account_handle: Optional[str] = Field(None, description="Resolved handle on the home ledger")
    account_handle_id: Optional[str] = Field(None, description="Internal route (wallet id)")
    external_callback: Optional[LnurlPayData] = Field(None, description="External route")
    error: Optional[ErrorDetail] = None

    @model_validator(mode="after")
    def check_single_route(self):
        if self.account_handle_id and self.external_callback is not None:
            raise ValueError("A recipient cannot have both an internal and an external route")
        if not self.valid and self.error is None:
            raise ValueError("An invalid result must carry an error")
        return self

    @property
    def is_internal_route(self) -> bool:
        return bool(self.account_handle_id) or self.recipient.kind == RecipientKind.INTERNAL


class ValidationProgress(BaseModel):
    completed: int
    total: int
    percent: float


class ValidationSummary(BaseModel):
    total: int = 0
    valid: int = 0
    invalid: int = 0
    by_kind: Dict[str, int] = Field(default_factory=dict)
    error_groups: Dict[str, List[ValidationResult]] = Field(default_factory=dict)
    total_amount_sats: int = 0


class ValidationReport(BaseModel):
    results: List[ValidationResult] = Field(default_factory=list)
    summary: ValidationSummary = Field(default_factory=ValidationSummary)


# ---------------------------------------------------------------------------
# Fees and balance
# ---------------------------------------------------------------------------

class FeePolicy(BaseModel):
    """Heuristic fee parameters for external routes."""
    fee_rate: float = Field(default=0.003, ge=0)
    min_fee_sats: int = Field(default=1, ge=0)
    max_fee_rate: float = Field(default=0.01, ge=0)

    @classmethod
    def from_settings(cls, settings: Any) -> "FeePolicy":
        return cls(
            fee_rate=settings.fee_rate,
            min_fee_sats=settings.min_fee_sats,
            max_fee_rate=settings.max_fee_rate,
        )


class FeeEstimate(BaseModel):
    recipient: ParsedRecipient
    success: bool = True
    is_internal_route: bool = False
    fee_sats: int = 0
    fee_percent: float = 0.0
    is_estimate: bool = True
    error: Optional[str] = None


class FeeBreakdownEntry(BaseModel):
    count: int = 0
    amount_sats: int = 0
    fees_sats: int = 0
    average_fee_percent: float = 0.0


class FeeBreakdown(BaseModel):
    internal: FeeBreakdownEntry = Field(default_factory=FeeBreakdownEntry)
    external: FeeBreakdownEntry = Field(default_factory=FeeBreakdownEntry)


class FeeSummary(BaseModel):
    total_amount_sats: int = 0
    total_fees_sats: int = 0
    grand_total_sats: int = 0
    average_fee_percent: float = 0.0
    recipients_with_fees: int = 0
    recipients_failed: int = 0
    breakdown: FeeBreakdown = Field(default_factory=FeeBreakdown)
    details: List[FeeEstimate] = Field(default_factory=list)
    is_estimate: bool = True


class BalanceCheck(BaseModel):
    valid: bool
    required: int
    available: int
    shortfall: Optional[int] = None
    remaining: Optional[int] = None
    error: Optional[ErrorDetail] = None


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------

class PaymentAttempt(BaseModel):
    """What a single dispatch call reports."""
    success: bool
    status_label: Optional[str] = None
    fee_sats: Optional[int] = None
    error: Optional[ErrorDetail] = None


class PaymentOutcome(BaseModel):
    """Terminal record for one attempted recipient."""
    recipient: ParsedRecipient
    success: bool
    status_label: Optional[str] = None
    fee_sats: Optional[int] = None
    error: Optional[ErrorDetail] = None


class BatchState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    DONE = "DONE"


class BatchProgress(BaseModel):
    completed: int
    total: int
    successful: int
    failed: int
    percent: float


class BatchSummary(BaseModel):
    total_recipients: int = 0
    successful: int = 0
    failed: int = 0
    not_attempted: int = 0
    total_sent_sats: int = 0
    total_fees_sats: int = 0


class BatchResult(BaseModel):
    results: List[PaymentOutcome] = Field(default_factory=list)
    summary: BatchSummary = Field(default_factory=BatchSummary)
    cancelled: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
