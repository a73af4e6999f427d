"""
Shared fixtures and in-memory fakes for the ledger and LNURL services.
"""
import threading
import time

import pytest

from core.bech32 import decode_lnurl
from core.config import reset_settings
from core.exceptions import LnurlError
from core.normalize import detect_recipient_kind, normalize_recipient
from core.schema import ParsedRecipient, PaymentAttempt, ValidationErrorCode

_ENV_VARS = (
    "PORT",
    "LOG_LEVEL",
    "LEDGER_API_URL",
    "LEDGER_API_KEY",
    "HOME_DOMAINS",
    "VALIDATION_CONCURRENCY",
    "PAYMENT_DELAY_MS",
    "VALIDATION_DELAY_MS",
    "FEE_RATE",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Fresh settings per test, with reports written under tmp_path."""
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("STORAGE_PATH", str(tmp_path / "files"))
    reset_settings()
    yield
    reset_settings()


class OverlapDetector:
    """Counts how many instrumented calls run at the same time."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __enter__(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        if self.latency:
            time.sleep(self.latency)
        return self

    def __exit__(self, *exc):
        with self._lock:
            self.active -= 1
        return False


class FakeSleep:
    """Awaitable sleep that only records the requested delays."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class FakeLedger:
    """In-memory ledger: handle lookups and payment mutations."""

    def __init__(self, wallets=None, latency: float = 0.0, external_fee: int = 2):
        self.wallets = dict(wallets or {})
        self.lookup_errors = {}
        self.payment_outcomes = {}
        self.external_fee = external_fee
        self.calls = []
        self.lookups = OverlapDetector(latency)
        self.payments = OverlapDetector(latency)

    def account_default_wallet(self, username):
        with self.lookups:
            self.calls.append(("lookup", username))
            if username in self.lookup_errors:
                raise self.lookup_errors[username]
            if username in self.wallets:
                return {"data": {"accountDefaultWallet": {"id": self.wallets[username], "walletCurrency": "BTC"}}}
            return {
                "errors": [{"message": "Account does not exist for username"}],
                "data": {"accountDefaultWallet": None},
            }

    def _pay(self, kind, target, amount_sats):
        with self.payments:
            self.calls.append((kind, target, amount_sats))
            outcome = self.payment_outcomes.get(target)
            if isinstance(outcome, Exception):
                raise outcome
            if outcome is not None:
                return outcome
            fee = 0 if kind == "intra" else self.external_fee
            return PaymentAttempt(success=True, status_label="SUCCESS", fee_sats=fee)

    def intra_ledger_payment_send(self, wallet_id, recipient_wallet_id, amount_sats, memo=None):
        return self._pay("intra", recipient_wallet_id, amount_sats)

    def ln_address_payment_send(self, wallet_id, ln_address, amount_sats):
        return self._pay("ln_address", ln_address, amount_sats)

    def ln_invoice_payment_send(self, wallet_id, payment_request):
        return self._pay("invoice", payment_request, None)

    @property
    def payment_calls(self):
        return [c for c in self.calls if c[0] != "lookup"]


def pay_params(callback="https://example.com/lnurlp/cb", min_sendable=1000, max_sendable=100_000_000_000):
    return {
        "tag": "payRequest",
        "callback": callback,
        "minSendable": min_sendable,
        "maxSendable": max_sendable,
        "metadata": '[["text/plain","pay"]]',
    }


class FakeLnurl:
    """In-memory LNURL-pay services keyed by URL."""

    def __init__(self, services=None, latency: float = 0.0):
        self.services = dict(services or {})
        self.errors = {}
        self.invoice_errors = {}
        self.invoice_calls = []
        self.fetches = OverlapDetector(latency)

    def decode(self, lnurl):
        return decode_lnurl(lnurl)

    def fetch_pay_params(self, url):
        with self.fetches:
            if url in self.errors:
                raise self.errors[url]
            if url not in self.services:
                raise LnurlError(
                    f"Could not reach {url} (HTTP 404)",
                    code=ValidationErrorCode.LNURL_UNREACHABLE.value,
                )
            return self.services[url]

    def request_invoice(self, callback, amount_msats):
        self.invoice_calls.append((callback, amount_msats))
        if callback in self.invoice_errors:
            raise self.invoice_errors[callback]
        return f"lnbc{amount_msats}n1fake"


def make_recipient(original, amount_sats=1000, row_number=2, currency="SATS", memo=""):
    kind = detect_recipient_kind(original)
    return ParsedRecipient(
        row_number=row_number,
        original=original,
        kind=kind,
        normalized=normalize_recipient(original, kind),
        requested_amount=float(amount_sats) if amount_sats else 1.0,
        amount_sats=amount_sats,
        currency=currency,
        memo=memo,
    )


@pytest.fixture
def fake_sleep():
    return FakeSleep()


@pytest.fixture
def ledger():
    return FakeLedger(wallets={"hermann": "wallet-hermann", "alice": "wallet-alice"})


@pytest.fixture
def lnurl():
    return FakeLnurl(services={
        "https://example.com/.well-known/lnurlp/user": pay_params("https://example.com/lnurlp/user/cb"),
    })
