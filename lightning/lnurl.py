"""
LNURL-pay HTTP client (LUD-06 / LUD-16).
Fetches payRequest metadata and requests invoices from callbacks.
"""
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.bech32 import decode_lnurl
from core.config import get_settings
from core.exceptions import LnurlError
from core.logger import setup_logger
from core.schema import ValidationErrorCode

logger = setup_logger(__name__)

_TRANSIENT_ERRORS = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


def lightning_address_url(user: str, domain: str) -> str:
    """LUD-16 well-known endpoint of a Lightning Address."""
    return f"https://{domain}/.well-known/lnurlp/{user}"


def build_callback_url(callback: str, amount_msats: int) -> str:
    """
    Set the amount query parameter on an LNURL-pay callback.

    Existing query parameters are preserved; an existing amount is replaced.
    """
    parts = urlsplit(callback)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "amount"]
    query.append(("amount", str(amount_msats)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class LnurlClient:
    """Client for third-party LNURL-pay services."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_wait: float = 0.5,
        verify_checksum: Optional[bool] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.timeout = timeout or settings.http_timeout
        self.max_retries = max_retries or settings.http_max_retries
        self.retry_wait = retry_wait
        self.verify_checksum = (
            settings.lnurl_verify_checksum if verify_checksum is None else verify_checksum
        )
        self.session = session or requests.Session()

    def decode(self, lnurl: str) -> str:
        """Decode a bech32 LNURL (raises InvalidLnurlError)."""
        return decode_lnurl(lnurl, verify=self.verify_checksum)

    def _get(self, url: str, retry: bool) -> requests.Response:
        attempts = self.max_retries if retry else 1
        for attempt in Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=self.retry_wait, min=self.retry_wait, max=8),
            retry=retry_if_exception_type(_TRANSIENT_ERRORS),
            reraise=True,
        ):
            with attempt:
                return self.session.get(
                    url,
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )

    def fetch_json(self, url: str, retry: bool = True) -> Dict[str, Any]:
        """
        GET a JSON document from an LNURL service.

        Args:
            url: Endpoint URL
            retry: Retry on connection errors and timeouts

        Returns:
            Decoded JSON object

        Raises:
            LnurlError: code TIMEOUT, LNURL_UNREACHABLE or LNURL_INVALID_RESPONSE
        """
        host = urlsplit(url).netloc or url
        try:
            response = self._get(url, retry)
        except requests.exceptions.Timeout:
            raise LnurlError(
                f"Timed out reaching {host} after {self.timeout}s",
                code=ValidationErrorCode.TIMEOUT.value,
                details={"url": url},
            )
        except requests.exceptions.RequestException as e:
            raise LnurlError(
                f"Failed to reach {host}: {e}",
                code=ValidationErrorCode.LNURL_UNREACHABLE.value,
                details={"url": url},
            )

        if not response.ok:
            raise LnurlError(
                f"Could not reach {host} (HTTP {response.status_code})",
                code=ValidationErrorCode.LNURL_UNREACHABLE.value,
                details={"url": url, "status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError:
            raise LnurlError(
                f"Invalid JSON from {host}",
                code=ValidationErrorCode.LNURL_INVALID_RESPONSE.value,
                details={"url": url},
            )

        if not isinstance(data, dict):
            raise LnurlError(
                f"Invalid LNURL response from {host}",
                code=ValidationErrorCode.LNURL_INVALID_RESPONSE.value,
                details={"url": url},
            )
        return data

    def fetch_pay_params(self, url: str) -> Dict[str, Any]:
        """Fetch LUD-06 payRequest metadata (read-only, retried)."""
        return self.fetch_json(url, retry=True)

    def request_invoice(self, callback: str, amount_msats: int) -> str:
        """
        Ask an LNURL-pay callback for a one-time invoice.

        Never retried: each call may mint a new invoice.

        Returns:
            BOLT11 payment request

        Raises:
            LnurlError: If the callback fails or returns no invoice
        """
        data = self.fetch_json(build_callback_url(callback, amount_msats), retry=False)

        if data.get("status") == "ERROR":
            raise LnurlError(
                data.get("reason") or "LNURL callback error",
                code=ValidationErrorCode.LNURL_INVALID_RESPONSE.value,
            )

        invoice = data.get("pr")
        if not invoice:
            raise LnurlError(
                "No invoice returned from LNURL callback",
                code=ValidationErrorCode.LNURL_INVALID_RESPONSE.value,
            )
        return invoice
