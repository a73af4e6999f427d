"""
Unit tests for recipient validation.
"""
import asyncio

from conftest import FakeLedger, FakeLnurl, make_recipient, pay_params
from core.bech32 import encode_lnurl
from core.exceptions import LedgerError, LedgerTimeoutError, LnurlError
from core.schema import RecipientKind
from services.validation_service import RecipientValidator, check_amount_bounds, summarize_validation

HOME_DOMAINS = ["blink.sv", "pay.blink.sv"]


def _validator(ledger, lnurl, fake_sleep=None, concurrency=10):
    return RecipientValidator(
        ledger=ledger,
        lnurl=lnurl,
        home_domains=HOME_DOMAINS,
        concurrency=concurrency,
        delay_seconds=0.1,
        sleep=fake_sleep,
    )


def test_internal_handle_resolves_wallet(ledger, lnurl):
    result = _validator(ledger, lnurl).validate_recipient(make_recipient("hermann"))

    assert result.valid
    assert result.account_handle == "hermann"
    assert result.account_handle_id == "wallet-hermann"
    assert result.external_callback is None


def test_unknown_handle(ledger, lnurl):
    result = _validator(ledger, lnurl).validate_recipient(make_recipient("ghost"))

    assert not result.valid
    assert result.error.code == "ACCOUNT_NOT_FOUND"


def test_malformed_handle_is_not_looked_up(ledger, lnurl):
    result = _validator(ledger, lnurl).validate_recipient(make_recipient("a!"))

    assert result.error.code == "INVALID_FORMAT"
    assert ledger.calls == []


def test_handle_lookup_transport_errors(ledger, lnurl):
    ledger.wallets["slowpoke"] = "wallet-slow"
    ledger.lookup_errors["slowpoke"] = LedgerTimeoutError("timeout")
    ledger.lookup_errors["downtown"] = LedgerError("Ledger API returned 502")
    validator = _validator(ledger, lnurl)

    assert validator.validate_recipient(make_recipient("slowpoke")).error.code == "TIMEOUT"
    assert validator.validate_recipient(make_recipient("downtown")).error.code == "NETWORK_ERROR"


def test_home_domain_address_becomes_internal_route(ledger, lnurl):
    """Test home-domain Lightning Addresses resolve through the ledger."""
    recipient = make_recipient("Alice@Blink.sv")
    result = _validator(ledger, lnurl).validate_recipient(recipient)

    assert result.valid
    assert result.recipient.kind == RecipientKind.LN_ADDRESS
    assert result.account_handle_id == "wallet-alice"
    assert result.is_internal_route
    assert ("lookup", "alice") in ledger.calls


def test_external_address(ledger, lnurl):
    result = _validator(ledger, lnurl).validate_recipient(make_recipient("user@example.com", 500))

    assert result.valid
    assert result.account_handle_id is None
    assert result.external_callback.callback == "https://example.com/lnurlp/user/cb"
    assert not result.is_internal_route


def test_unreachable_address(ledger, lnurl):
    result = _validator(ledger, lnurl).validate_recipient(make_recipient("nobody@nowhere.test"))

    assert result.error.code == "LNURL_UNREACHABLE"


def test_lnurl_error_status(ledger, lnurl):
    lnurl.services["https://err.test/.well-known/lnurlp/bob"] = {"status": "ERROR", "reason": "Unknown user"}
    result = _validator(ledger, lnurl).validate_recipient(make_recipient("bob@err.test"))

    assert result.error.code == "LNURL_INVALID_RESPONSE"
    assert result.error.message == "Unknown user"


def test_address_timeout(ledger, lnurl):
    url = "https://slow.test/.well-known/lnurlp/bob"
    lnurl.errors[url] = LnurlError("Timed out", code="TIMEOUT")

    result = _validator(ledger, lnurl).validate_recipient(make_recipient("bob@slow.test"))

    assert result.error.code == "TIMEOUT"


def test_amount_bounds(ledger, lnurl):
    """Test amounts outside [minSendable, maxSendable] are rejected."""
    lnurl.services["https://tight.test/.well-known/lnurlp/bob"] = pay_params(min_sendable=10_000, max_sendable=50_000)
    validator = _validator(ledger, lnurl)

    low = validator.validate_recipient(make_recipient("bob@tight.test", 9))
    high = validator.validate_recipient(make_recipient("bob@tight.test", 51))
    edge = validator.validate_recipient(make_recipient("bob@tight.test", 50))

    assert low.error.code == "AMOUNT_BELOW_MIN"
    assert high.error.code == "AMOUNT_ABOVE_MAX"
    assert edge.valid


def test_bounds_skip_unconverted_amounts():
    recipient = make_recipient("bob@tight.test", None, currency="USD")
    assert check_amount_bounds(recipient, 10_000, 50_000) is None


def test_lnurl_pay_request(ledger, lnurl):
    url = "https://service.test/lnurlp/42"
    lnurl.services[url] = pay_params("https://service.test/cb/42")

    result = _validator(ledger, lnurl).validate_recipient(make_recipient(encode_lnurl(url).upper()))

    assert result.valid
    assert result.external_callback.callback == "https://service.test/cb/42"


def test_lnurl_wrong_tag(ledger, lnurl):
    url = "https://service.test/withdraw"
    lnurl.services[url] = {"tag": "withdrawRequest", "callback": "https://service.test/cb"}

    result = _validator(ledger, lnurl).validate_recipient(make_recipient(encode_lnurl(url)))

    assert result.error.code == "INVALID_FORMAT"


def test_undecodable_lnurl(ledger, lnurl):
    result = _validator(ledger, lnurl).validate_recipient(make_recipient("lnurl1notreallyanlnurl"))

    assert not result.valid
    assert result.error.code == "INVALID_FORMAT"


def test_validate_all_keeps_order_and_isolates_failures(ledger, lnurl, fake_sleep):
    """Test one crashing adapter never affects its siblings."""
    ledger.lookup_errors["crashy"] = RuntimeError("unexpected")
    recipients = [
        make_recipient("hermann", 1000, 2),
        make_recipient("crashy", 1000, 3),
        make_recipient("user@example.com", 500, 4),
        make_recipient("ghost", 100, 5),
    ]

    report = asyncio.run(_validator(ledger, lnurl, fake_sleep).validate_all(recipients))

    assert [r.recipient.row_number for r in report.results] == [2, 3, 4, 5]
    assert [r.valid for r in report.results] == [True, False, True, False]
    assert report.results[1].error.code == "NETWORK_ERROR"
    assert report.summary.valid == 2
    assert report.summary.invalid == 2
    assert report.summary.total_amount_sats == 1500
    assert set(report.summary.error_groups) == {"NETWORK_ERROR", "ACCOUNT_NOT_FOUND"}


def test_validate_all_bounded_width(fake_sleep):
    """Test no more than the configured number of lookups run at once."""
    ledger = FakeLedger(wallets={f"user{i}": f"wallet-{i}" for i in range(10)}, latency=0.02)
    recipients = [make_recipient(f"user{i}", 100, i + 2) for i in range(10)]
    progress = []

    report = asyncio.run(
        _validator(ledger, FakeLnurl(), fake_sleep, concurrency=3).validate_all(recipients, progress.append)
    )

    assert report.summary.valid == 10
    assert ledger.lookups.max_active <= 3
    assert [p.completed for p in progress] == [3, 6, 9, 10]
    assert progress[-1].percent == 100.0
    # A pause between batches, none after the last
    assert fake_sleep.calls == [0.1, 0.1, 0.1]


def test_validate_all_empty(ledger, lnurl, fake_sleep):
    report = asyncio.run(_validator(ledger, lnurl, fake_sleep).validate_all([]))
    assert report.results == []
    assert report.summary.total == 0
    assert fake_sleep.calls == []


def test_summarize_validation_by_kind(ledger, lnurl):
    validator = _validator(ledger, lnurl)
    results = [
        validator.validate_recipient(make_recipient("hermann")),
        validator.validate_recipient(make_recipient("user@example.com")),
    ]
    summary = summarize_validation(results)
    assert summary.by_kind == {"INTERNAL": 1, "LN_ADDRESS": 1, "LNURL": 0}
