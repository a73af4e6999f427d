"""
Sequential payment execution for validated recipients.

The ledger holds a per-account lock while a payment is in flight, so
concurrent sends from one wallet are rejected. Payments therefore run one
at a time in a single loop, with a fixed pause between attempts.
"""
import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from core.config import get_settings
from core.exceptions import BatchPaymentException, LedgerError, LedgerTimeoutError, LnurlError
from core.logger import mask_secret, setup_logger
from core.schema import (
    BatchProgress,
    BatchResult,
    BatchState,
    BatchSummary,
    ErrorDetail,
    PaymentAttempt,
    PaymentErrorCode,
    PaymentOutcome,
    RecipientKind,
    ValidationErrorCode,
    ValidationResult,
)
from lightning.client import LedgerClient
from lightning.lnurl import LnurlClient

logger = setup_logger(__name__)

ProgressCallback = Callable[[BatchProgress], None]
SleepFunc = Callable[[float], Awaitable[Any]]


def _failed(code: PaymentErrorCode, message: str) -> PaymentAttempt:
    return PaymentAttempt(success=False, error=ErrorDetail.of(code, message))


class PaymentExecutor:
    """
    Drives one batch through NOT_STARTED -> RUNNING -> DONE.

    An executor is single-use. cancel() is honoured between payments;
    recipients not yet attempted are left out of the results.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        sender_wallet_id: str,
        lnurl: Optional[LnurlClient] = None,
        home_ln_domain: Optional[str] = None,
        delay_seconds: Optional[float] = None,
        sleep: Optional[SleepFunc] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize executor.

        Args:
            ledger: Ledger client authenticated for the sending account
            sender_wallet_id: Wallet paying the batch
            lnurl: LNURL-pay client for invoice requests
            home_ln_domain: Domain used to address internal handles as Lightning Addresses
            delay_seconds: Pause between payments
            sleep: Awaitable sleep (injected in tests)
            clock: Monotonic clock used for timing
        """
        settings = get_settings()
        self.ledger = ledger
        self.sender_wallet_id = sender_wallet_id
        self.lnurl = lnurl or LnurlClient()
        self.home_ln_domain = home_ln_domain or settings.home_ln_domain
        self.delay_seconds = (
            settings.payment_delay_ms / 1000 if delay_seconds is None else delay_seconds
        )
        self.sleep = sleep or asyncio.sleep
        self.clock = clock
        self.state = BatchState.NOT_STARTED
        self._cancel_requested = False

    def cancel(self) -> None:
        """Ask the running batch to stop before its next payment."""
        self._cancel_requested = True

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def dispatch(self, result: ValidationResult) -> PaymentAttempt:
        """
        Settle one recipient.

        Rules, in order: internal route id -> internal transfer; internal
        handle -> Lightning Address on the home domain; external Lightning
        Address -> Lightning Address payment; LNURL -> invoice from the
        validated callback, then invoice payment.
        """
        recipient = result.recipient
        amount_sats = recipient.amount_sats
        if amount_sats is None:
            return _failed(PaymentErrorCode.PAYMENT_FAILED, "Amount has not been converted to sats")

        try:
            if result.account_handle_id:
                return self.ledger.intra_ledger_payment_send(
                    self.sender_wallet_id,
                    result.account_handle_id,
                    amount_sats,
                    memo=recipient.memo or None,
                )

            if recipient.kind == RecipientKind.INTERNAL:
                handle = result.account_handle or recipient.normalized
                attempt = self.ledger.ln_address_payment_send(
                    self.sender_wallet_id, f"{handle}@{self.home_ln_domain}", amount_sats
                )
                if attempt.success:
                    attempt = attempt.model_copy(update={"fee_sats": 0})
                return attempt

            if recipient.kind == RecipientKind.LN_ADDRESS:
                return self.ledger.ln_address_payment_send(
                    self.sender_wallet_id, recipient.normalized, amount_sats
                )

            if recipient.kind == RecipientKind.LNURL:
                if result.external_callback is None:
                    return _failed(PaymentErrorCode.PAYMENT_FAILED, "LNURL recipient has no validated callback")
                invoice = self.lnurl.request_invoice(result.external_callback.callback, amount_sats * 1000)
                return self.ledger.ln_invoice_payment_send(self.sender_wallet_id, invoice)

        except LedgerTimeoutError as e:
            return _failed(PaymentErrorCode.TIMEOUT, e.message)
        except LedgerError as e:
            return _failed(PaymentErrorCode.NETWORK_ERROR, e.message)
        except LnurlError as e:
            if e.code == ValidationErrorCode.TIMEOUT.value:
                return _failed(PaymentErrorCode.TIMEOUT, e.message)
            return _failed(PaymentErrorCode.PAYMENT_FAILED, e.message)

        logger.error(f"Row {recipient.row_number}: no dispatch rule for kind {recipient.kind}")
        return _failed(PaymentErrorCode.PAYMENT_FAILED, f"Unknown payment type: {recipient.kind}")

    async def _attempt(self, result: ValidationResult) -> PaymentOutcome:
        loop = asyncio.get_running_loop()
        try:
            attempt = await loop.run_in_executor(None, self.dispatch, result)
        except Exception as e:
            logger.error(f"Row {result.recipient.row_number}: payment crashed: {e}", exc_info=True)
            attempt = _failed(PaymentErrorCode.NETWORK_ERROR, str(e) or "Payment execution failed")

        return PaymentOutcome(
            recipient=result.recipient,
            success=attempt.success,
            status_label=attempt.status_label,
            fee_sats=attempt.fee_sats,
            error=attempt.error,
        )

    async def execute(
        self,
        results: Iterable[ValidationResult],
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchResult:
        """
        Pay every valid recipient, one at a time.

        Args:
            results: Validation results; invalid ones are skipped
            on_progress: Called after every attempt

        Returns:
            BatchResult with one outcome per attempted recipient

        Raises:
            BatchPaymentException: If this executor already ran
        """
        if self.state != BatchState.NOT_STARTED:
            raise BatchPaymentException("Batch executor can only run once", details={"state": self.state.value})

        self.state = BatchState.RUNNING
        payable: List[ValidationResult] = [r for r in results if r.valid]
        total = len(payable)
        started_at = datetime.now(timezone.utc)
        started = self.clock()

        logger.info(f"Executing {total} payments from wallet {mask_secret(self.sender_wallet_id)}")

        outcomes: List[PaymentOutcome] = []
        successful = 0
        failed = 0
        cancelled = False

        for index, result in enumerate(payable):
            if self._cancel_requested:
                cancelled = True
                logger.warning(f"Batch cancelled after {len(outcomes)}/{total} payments")
                break

            outcome = await self._attempt(result)
            outcomes.append(outcome)
            if outcome.success:
                successful += 1
            else:
                failed += 1
                logger.warning(
                    f"Row {outcome.recipient.row_number}: payment failed "
                    f"({outcome.error.code}): {outcome.error.message}"
                )

            if on_progress is not None:
                on_progress(BatchProgress(
                    completed=len(outcomes),
                    total=total,
                    successful=successful,
                    failed=failed,
                    percent=len(outcomes) / total * 100,
                ))

            if index < total - 1 and self.delay_seconds > 0:
                await self.sleep(self.delay_seconds)

        paid = [o for o in outcomes if o.success]
        summary = BatchSummary(
            total_recipients=total,
            successful=successful,
            failed=failed,
            not_attempted=total - len(outcomes),
            total_sent_sats=sum(o.recipient.amount_sats or 0 for o in paid),
            total_fees_sats=sum(o.fee_sats or 0 for o in paid),
        )

        self.state = BatchState.DONE
        duration_ms = int((self.clock() - started) * 1000)
        logger.info(
            f"Batch done: {successful} sent, {failed} failed, "
            f"{summary.total_sent_sats:,} sats + {summary.total_fees_sats:,} fees in {duration_ms} ms"
        )

        return BatchResult(
            results=outcomes,
            summary=summary,
            cancelled=cancelled,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc),
            duration_ms=duration_ms,
        )
