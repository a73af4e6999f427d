"""
Ledger GraphQL client.
Handles account lookups (retried) and payment mutations (never retried).
"""
from typing import Any, Dict, Optional

import requests
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.config import get_settings
from core.exceptions import LedgerError, LedgerTimeoutError
from core.logger import mask_secret, setup_logger
from core.schema import ErrorDetail, PaymentAttempt, PaymentErrorCode
from lightning.queries import (
    DEFAULT_WALLET_QUERY,
    INTRA_LEDGER_PAYMENT_SEND,
    LN_ADDRESS_PAYMENT_SEND,
    LN_INVOICE_PAYMENT_SEND,
)

logger = setup_logger(__name__)


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, LedgerError) and bool(error.details.get("transient"))


def map_payment_error(code: Optional[str], message: str) -> str:
    """
    Map a ledger payment error onto the payment error taxonomy.

    Args:
        code: Error code reported by the ledger (may be None)
        message: Error message reported by the ledger

    Returns:
        PaymentErrorCode value
    """
    text = (message or "").lower()
    if code == "INSUFFICIENT_BALANCE" or "insufficient balance" in text:
        return PaymentErrorCode.INSUFFICIENT_BALANCE.value
    if code == "ROUTE_FINDING_ERROR" or "route" in text:
        return PaymentErrorCode.NO_ROUTE.value
    if code in ("INVOICE_EXPIRED", "PAYMENT_REQUEST_EXPIRED") or "expired" in text:
        return PaymentErrorCode.INVOICE_EXPIRED.value
    return PaymentErrorCode.PAYMENT_FAILED.value


def parse_payment_payload(response: Dict[str, Any], field: str, internal: bool = False) -> PaymentAttempt:
    """
    Turn a payment mutation response into a PaymentAttempt.

    Args:
        response: Decoded GraphQL response
        field: Mutation field name (e.g. "lnAddressPaymentSend")
        internal: Intra-ledger transfer (always fee-free)

    Returns:
        PaymentAttempt
    """
    top_errors = response.get("errors") or []
    if top_errors:
        return PaymentAttempt(
            success=False,
            error=ErrorDetail.of(PaymentErrorCode.PAYMENT_FAILED, top_errors[0].get("message", "Payment failed")),
        )

    payload = (response.get("data") or {}).get(field) or {}

    errors = payload.get("errors") or []
    if errors:
        error = errors[0]
        message = error.get("message") or "Payment failed"
        return PaymentAttempt(
            success=False,
            status_label=payload.get("status"),
            error=ErrorDetail(code=map_payment_error(error.get("code"), message), message=message),
        )

    status = payload.get("status") or "SUCCESS"
    if status == "FAILURE":
        return PaymentAttempt(
            success=False,
            status_label=status,
            error=ErrorDetail.of(PaymentErrorCode.PAYMENT_FAILED, "Ledger reported payment failure"),
        )

    fee_sats: Optional[int] = 0 if internal else None
    transaction = payload.get("transaction") or {}
    if not internal and transaction.get("settlementFee") is not None:
        fee_sats = abs(int(transaction["settlementFee"]))

    return PaymentAttempt(success=True, status_label=status, fee_sats=fee_sats)


class LedgerClient:
    """Client for the ledger GraphQL endpoint."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_wait: float = 0.5,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize ledger client.

        Args:
            api_url: GraphQL endpoint (defaults to configured value)
            api_key: API key sent as X-API-KEY (defaults to configured value)
            timeout: Per-request timeout in seconds
            max_retries: Attempts for read-only queries
            retry_wait: Base backoff in seconds between attempts
            session: Optional requests session
        """
        settings = get_settings()
        self.api_url = api_url or settings.ledger_api_url
        self.api_key = api_key if api_key is not None else settings.ledger_api_key
        self.timeout = timeout or settings.http_timeout
        self.max_retries = max_retries or settings.http_max_retries
        self.retry_wait = retry_wait
        self.session = session or requests.Session()

        logger.debug(f"Ledger client for {self.api_url} (key {mask_secret(self.api_key)})")

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key
        return headers

    def execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST one GraphQL document.

        Returns:
            Decoded JSON response (may contain "errors")

        Raises:
            LedgerTimeoutError: On timeout
            LedgerError: On connection failure, non-2xx status or invalid JSON
        """
        try:
            response = self.session.post(
                self.api_url,
                json={"query": query, "variables": variables},
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()

        except requests.exceptions.Timeout as e:
            raise LedgerTimeoutError(
                f"Ledger request timeout after {self.timeout}s",
                details={"api_url": self.api_url, "timeout": self.timeout, "error": str(e), "transient": True},
            )

        except requests.exceptions.HTTPError as e:
            status_code = getattr(e.response, "status_code", None)
            raise LedgerError(
                f"Ledger API returned {status_code}",
                details={
                    "api_url": self.api_url,
                    "status_code": status_code,
                    "transient": status_code is not None and status_code >= 500,
                },
            )

        except requests.exceptions.RequestException as e:
            raise LedgerError(
                f"Failed to connect to ledger: {str(e)}",
                details={"api_url": self.api_url, "error": str(e), "transient": True},
            )

        # JSONDecodeError subclasses RequestException; keep it out of the transport handlers
        try:
            return response.json()
        except ValueError as e:
            raise LedgerError(
                "Ledger returned invalid JSON",
                details={"api_url": self.api_url, "error": str(e)},
            )

    def _execute_with_retry(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        for attempt in Retrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_wait, min=self.retry_wait, max=8),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"Retrying ledger query (attempt {attempt.retry_state.attempt_number})")
                return self.execute(query, variables)

    def account_default_wallet(self, username: str) -> Dict[str, Any]:
        """
        Look up the default wallet of an account handle.

        Args:
            username: Account handle

        Returns:
            Raw GraphQL response; data.accountDefaultWallet.id on success
        """
        return self._execute_with_retry(DEFAULT_WALLET_QUERY, {"username": username})

    def intra_ledger_payment_send(
        self,
        wallet_id: str,
        recipient_wallet_id: str,
        amount_sats: int,
        memo: Optional[str] = None,
    ) -> PaymentAttempt:
        """Zero-fee transfer between two wallets on the ledger."""
        payment_input = {
            "walletId": wallet_id,
            "recipientWalletId": recipient_wallet_id,
            "amount": amount_sats,
        }
        if memo:
            payment_input["memo"] = memo

        response = self.execute(INTRA_LEDGER_PAYMENT_SEND, {"input": payment_input})
        return parse_payment_payload(response, "intraLedgerPaymentSend", internal=True)

    def ln_address_payment_send(self, wallet_id: str, ln_address: str, amount_sats: int) -> PaymentAttempt:
        """Pay a Lightning Address."""
        response = self.execute(
            LN_ADDRESS_PAYMENT_SEND,
            {"input": {"walletId": wallet_id, "lnAddress": ln_address, "amount": amount_sats}},
        )
        return parse_payment_payload(response, "lnAddressPaymentSend")

    def ln_invoice_payment_send(self, wallet_id: str, payment_request: str) -> PaymentAttempt:
        """Pay a BOLT11 invoice."""
        response = self.execute(
            LN_INVOICE_PAYMENT_SEND,
            {"input": {"walletId": wallet_id, "paymentRequest": payment_request}},
        )
        return parse_payment_payload(response, "lnInvoicePaymentSend")
