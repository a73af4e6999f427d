"""
Recipient validation service.
Confirms each recipient is reachable and payable, using one protocol per kind.
"""
import asyncio
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from core.config import get_settings
from core.exceptions import InvalidLnurlError, LedgerError, LedgerTimeoutError, LnurlError
from core.logger import setup_logger
from core.schema import (
    ErrorDetail,
    LnurlPayData,
    ParsedRecipient,
    RecipientKind,
    ValidationErrorCode,
    ValidationProgress,
    ValidationReport,
    ValidationResult,
    ValidationSummary,
)
from lightning.client import LedgerClient
from lightning.lnurl import LnurlClient, lightning_address_url

logger = setup_logger(__name__)

HANDLE_PATTERN = re.compile(r"^[a-z0-9_]{3,50}$", re.IGNORECASE)

ProgressCallback = Callable[[ValidationProgress], None]
SleepFunc = Callable[[float], Awaitable[Any]]


def _invalid(recipient: ParsedRecipient, code: ValidationErrorCode, message: str) -> ValidationResult:
    return ValidationResult(recipient=recipient, valid=False, error=ErrorDetail.of(code, message))


def check_amount_bounds(recipient: ParsedRecipient, min_sendable: int, max_sendable: int) -> Optional[ErrorDetail]:
    """
    Check a known sat amount against LNURL-pay bounds (millisatoshi).

    Unknown amounts (USD rows awaiting conversion) are not checked.
    """
    if recipient.amount_sats is None:
        return None

    amount_msats = recipient.amount_sats * 1000
    if amount_msats < min_sendable:
        return ErrorDetail.of(
            ValidationErrorCode.AMOUNT_BELOW_MIN,
            f"Amount {recipient.amount_sats} sats below minimum {-(-min_sendable // 1000)} sats",
        )
    if amount_msats > max_sendable:
        return ErrorDetail.of(
            ValidationErrorCode.AMOUNT_ABOVE_MAX,
            f"Amount {recipient.amount_sats} sats above maximum {max_sendable // 1000} sats",
        )
    return None


def _pay_data(data: Dict[str, Any]) -> Optional[LnurlPayData]:
    """Build LnurlPayData from a payRequest response, or None if fields are missing."""
    if not data.get("callback") or data.get("minSendable") is None or data.get("maxSendable") is None:
        return None
    try:
        return LnurlPayData(
            callback=data["callback"],
            min_sendable=int(data["minSendable"]),
            max_sendable=int(data["maxSendable"]),
            metadata=data.get("metadata"),
            tag=data.get("tag"),
            comment_allowed=int(data.get("commentAllowed") or 0),
        )
    except (TypeError, ValueError):
        return None


class RecipientValidator:
    """Validates recipients through the ledger or LNURL-pay services."""

    def __init__(
        self,
        ledger: Optional[LedgerClient] = None,
        lnurl: Optional[LnurlClient] = None,
        home_domains: Optional[List[str]] = None,
        concurrency: Optional[int] = None,
        delay_seconds: Optional[float] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        """
        Initialize validator.

        Args:
            ledger: Ledger client for handle lookups
            lnurl: LNURL-pay client
            home_domains: Lightning Address domains served by the ledger
            concurrency: Recipients validated at once
            delay_seconds: Pause between batches
            sleep: Awaitable sleep (injected in tests)
        """
        settings = get_settings()
        self.ledger = ledger or LedgerClient()
        self.lnurl = lnurl or LnurlClient()
        self.home_domains = [d.lower() for d in (home_domains or settings.home_domain_list)]
        self.concurrency = concurrency or settings.validation_concurrency
        self.delay_seconds = (
            settings.validation_delay_ms / 1000 if delay_seconds is None else delay_seconds
        )
        self.sleep = sleep or asyncio.sleep

    # ------------------------------------------------------------------
    # Protocol adapters
    # ------------------------------------------------------------------

    def _handle_from(self, identifier: str) -> str:
        handle = identifier
        for domain in self.home_domains:
            suffix = f"@{domain}"
            if handle.endswith(suffix):
                handle = handle[: -len(suffix)]
                break
        if "@" in handle:
            handle = handle.split("@")[0]
        return handle.strip()

    def validate_internal(self, recipient: ParsedRecipient, handle: Optional[str] = None) -> ValidationResult:
        """
        Resolve an account handle to its default wallet (internal route).

        Args:
            recipient: Recipient being validated
            handle: Handle to look up (defaults to the recipient identifier)
        """
        username = handle or self._handle_from(recipient.normalized)

        if not HANDLE_PATTERN.match(username):
            return _invalid(recipient, ValidationErrorCode.INVALID_FORMAT, f'Invalid account handle format: "{username}"')

        try:
            response = self.ledger.account_default_wallet(username)
        except LedgerTimeoutError as e:
            return _invalid(recipient, ValidationErrorCode.TIMEOUT, f'Timed out validating "{username}": {e.message}')
        except LedgerError as e:
            return _invalid(recipient, ValidationErrorCode.NETWORK_ERROR, f'Failed to validate "{username}": {e.message}')

        errors = response.get("errors") or []
        if errors:
            message = errors[0].get("message", "")
            if "Invalid value for Username" in message:
                return _invalid(recipient, ValidationErrorCode.INVALID_FORMAT, f'Invalid account handle format: "{username}"')
            if "Account does not exist" in message or "CouldNotFindAccountFromUsername" in message:
                return _invalid(recipient, ValidationErrorCode.ACCOUNT_NOT_FOUND, f'Account "{username}" not found')
            return _invalid(recipient, ValidationErrorCode.NETWORK_ERROR, message or "Ledger lookup failed")

        wallet = (response.get("data") or {}).get("accountDefaultWallet") or {}
        if not wallet.get("id"):
            return _invalid(
                recipient,
                ValidationErrorCode.ACCOUNT_NOT_FOUND,
                f'Account "{username}" not found or has no wallet',
            )

        return ValidationResult(
            recipient=recipient,
            valid=True,
            account_handle=username,
            account_handle_id=wallet["id"],
        )

    def validate_ln_address(self, recipient: ParsedRecipient) -> ValidationResult:
        """Validate a Lightning Address, delegating home-domain addresses to the ledger."""
        address = recipient.normalized
        parts = address.split("@")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            return _invalid(recipient, ValidationErrorCode.INVALID_FORMAT, f'Invalid Lightning Address format: "{address}"')

        user, domain = parts[0], parts[1].lower()
        if domain in self.home_domains:
            return self.validate_internal(recipient, handle=user.lower())

        try:
            data = self.lnurl.fetch_pay_params(lightning_address_url(user, domain))
        except LnurlError as e:
            return ValidationResult(recipient=recipient, valid=False, error=ErrorDetail(code=e.code, message=e.message))

        if data.get("status") == "ERROR":
            return _invalid(recipient, ValidationErrorCode.LNURL_INVALID_RESPONSE, data.get("reason") or f"LNURL error from {domain}")

        pay_data = _pay_data(data)
        if pay_data is None:
            return _invalid(recipient, ValidationErrorCode.LNURL_INVALID_RESPONSE, f"Invalid LNURL response from {domain}")

        bounds_error = check_amount_bounds(recipient, pay_data.min_sendable, pay_data.max_sendable)
        if bounds_error:
            return ValidationResult(recipient=recipient, valid=False, error=bounds_error)

        return ValidationResult(recipient=recipient, valid=True, external_callback=pay_data)

    def validate_lnurl(self, recipient: ParsedRecipient) -> ValidationResult:
        """Decode a raw LNURL and validate its payRequest endpoint."""
        try:
            url = self.lnurl.decode(recipient.normalized)
        except InvalidLnurlError as e:
            return _invalid(recipient, ValidationErrorCode.INVALID_FORMAT, f"Invalid LNURL format: {e.message}")

        try:
            data = self.lnurl.fetch_pay_params(url)
        except LnurlError as e:
            return ValidationResult(recipient=recipient, valid=False, error=ErrorDetail(code=e.code, message=e.message))

        if data.get("status") == "ERROR":
            return _invalid(recipient, ValidationErrorCode.LNURL_INVALID_RESPONSE, data.get("reason") or "LNURL error")

        if data.get("tag") != "payRequest":
            return _invalid(recipient, ValidationErrorCode.INVALID_FORMAT, f"LNURL is not a pay request (tag: {data.get('tag')})")

        pay_data = _pay_data(data)
        if pay_data is None:
            return _invalid(recipient, ValidationErrorCode.LNURL_INVALID_RESPONSE, "Invalid LNURL pay request")

        bounds_error = check_amount_bounds(recipient, pay_data.min_sendable, pay_data.max_sendable)
        if bounds_error:
            return ValidationResult(recipient=recipient, valid=False, error=bounds_error)

        return ValidationResult(recipient=recipient, valid=True, external_callback=pay_data)

    def validate_recipient(self, recipient: ParsedRecipient) -> ValidationResult:
        """Run the adapter matching the recipient kind."""
        if recipient.kind == RecipientKind.INTERNAL:
            return self.validate_internal(recipient)
        if recipient.kind == RecipientKind.LN_ADDRESS:
            return self.validate_ln_address(recipient)
        if recipient.kind == RecipientKind.LNURL:
            return self.validate_lnurl(recipient)
        return _invalid(recipient, ValidationErrorCode.INVALID_FORMAT, f"Unknown recipient kind: {recipient.kind}")

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    async def _validate_batch(self, batch: List[ParsedRecipient]) -> List[ValidationResult]:
        loop = asyncio.get_running_loop()
        tasks = [loop.run_in_executor(None, self.validate_recipient, recipient) for recipient in batch]
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        results = []
        for recipient, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Row {recipient.row_number}: validation crashed: {outcome}")
                results.append(_invalid(recipient, ValidationErrorCode.NETWORK_ERROR, str(outcome) or "Validation failed"))
            else:
                results.append(outcome)
        return results

    async def validate_all(
        self,
        recipients: List[ParsedRecipient],
        on_progress: Optional[ProgressCallback] = None,
    ) -> ValidationReport:
        """
        Validate all recipients in bounded-width batches.

        A failing adapter never affects its siblings; the batch always
        completes with one result per recipient, in input order.

        Args:
            recipients: Parsed recipients
            on_progress: Called after every batch

        Returns:
            ValidationReport with results and summary
        """
        total = len(recipients)
        results: List[ValidationResult] = []
        logger.info(f"Validating {total} recipients (width {self.concurrency})")

        for start in range(0, total, self.concurrency):
            batch = recipients[start:start + self.concurrency]
            results.extend(await self._validate_batch(batch))

            if on_progress is not None:
                on_progress(ValidationProgress(
                    completed=len(results),
                    total=total,
                    percent=len(results) / total * 100,
                ))

            if start + self.concurrency < total and self.delay_seconds > 0:
                await self.sleep(self.delay_seconds)

        summary = summarize_validation(results)
        logger.info(f"Validation complete: {summary.valid} valid, {summary.invalid} invalid")
        for code, group in summary.error_groups.items():
            logger.warning(f"{len(group)} recipients failed with {code}")

        return ValidationReport(results=results, summary=summary)


def summarize_validation(results: List[ValidationResult]) -> ValidationSummary:
    """Group validation results by kind and error code."""
    valid = [r for r in results if r.valid]
    by_kind = {kind.value: 0 for kind in RecipientKind}
    for r in valid:
        by_kind[r.recipient.kind.value] += 1

    error_groups: Dict[str, List[ValidationResult]] = {}
    for r in results:
        if not r.valid:
            code = r.error.code if r.error else "UNKNOWN"
            error_groups.setdefault(code, []).append(r)

    return ValidationSummary(
        total=len(results),
        valid=len(valid),
        invalid=len(results) - len(valid),
        by_kind=by_kind,
        error_groups=error_groups,
        total_amount_sats=sum(r.recipient.amount_sats or 0 for r in valid),
    )
