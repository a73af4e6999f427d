"""
Unit tests for recipient classification and amount normalization.
"""
import pytest

from core.normalize import (
    apply_exchange_rate,
    clean_amount,
    decode_csv_string,
    detect_recipient_kind,
    normalize_recipient,
    to_sats,
)
from core.schema import ParsedRecipient, RecipientKind


@pytest.mark.parametrize("value,expected", [
    ("hermann", RecipientKind.INTERNAL),
    ("@hermann", RecipientKind.INTERNAL),
    ("user@getalby.com", RecipientKind.LN_ADDRESS),
    ("user@localhost", RecipientKind.INTERNAL),
    ("@example.com", RecipientKind.INTERNAL),
    ("lnurl1dp68gurn8ghj7", RecipientKind.LNURL),
    ("LNURL1DP68GURN8GHJ7", RecipientKind.LNURL),
    ("LnUrL1dp68gurn8ghj7", RecipientKind.LNURL),
])
def test_detect_recipient_kind(value, expected):
    """Test every string maps to exactly one kind."""
    assert detect_recipient_kind(value) == expected


def test_detect_recipient_kind_is_deterministic():
    for value in ("hermann", "user@getalby.com", "LNURL1ABC"):
        assert len({detect_recipient_kind(value) for _ in range(5)}) == 1


def test_normalize_internal_handle():
    """Test internal handles drop a leading @ and are lowercased."""
    assert normalize_recipient(" @Hermann ", RecipientKind.INTERNAL) == "hermann"


def test_normalize_ln_address_lowercases():
    assert normalize_recipient("User@GetAlby.COM", RecipientKind.LN_ADDRESS) == "user@getalby.com"


def test_normalize_lnurl_is_verbatim():
    """Test LNURL payloads keep their case."""
    assert normalize_recipient("LNURL1DP68", RecipientKind.LNURL) == "LNURL1DP68"


def test_decode_csv_string_repairs_utf7():
    """Test spreadsheet UTF-7 escapes of @ and _ are repaired."""
    assert decode_csv_string("user+AEA-getalby.com") == "user@getalby.com"
    assert decode_csv_string("first+AF8-last") == "first_last"
    assert detect_recipient_kind("user+AEA-getalby.com") == RecipientKind.LN_ADDRESS


@pytest.mark.parametrize("value,expected", [
    ("1000", 1000.0),
    ("1 000", 1000.0),
    ("1\xa0000", 1000.0),
    ("0.5", 0.5),
    ("abc", None),
    ("", None),
    ("0", None),
    ("-5", None),
    ("inf", None),
    ("nan", None),
    (None, None),
])
def test_clean_amount(value, expected):
    """Test amounts must be positive and finite."""
    assert clean_amount(value) == expected


def test_to_sats_rounds_half_up():
    assert to_sats("1000", "SATS") == 1000
    assert to_sats("1000.5", "SATS") == 1001
    assert to_sats("1000.4", "SATS") == 1000
    assert to_sats("0.4", "SATS") == 0


def test_to_sats_btc():
    """Test BTC amounts are multiplied by 10^8."""
    assert to_sats("1", "BTC") == 100_000_000
    assert to_sats("0.00001", "BTC") == 1000
    assert to_sats("0.00000001", "BTC") == 1


def test_to_sats_usd_is_deferred():
    """Test USD amounts wait for an exchange rate."""
    assert to_sats("25", "USD") is None


def _usd_recipient():
    return ParsedRecipient(
        row_number=2,
        original="alice",
        kind=RecipientKind.INTERNAL,
        normalized="alice",
        requested_amount=2.5,
        amount_sats=None,
        currency="USD",
    )


def test_apply_exchange_rate():
    """Test USD rows are resolved and SATS rows are left alone."""
    usd = _usd_recipient()
    sats = usd.model_copy(update={"currency": "SATS", "amount_sats": 700, "row_number": 3})

    resolved = apply_exchange_rate([usd, sats], sats_per_usd=1500)

    assert resolved[0].amount_sats == 3750
    assert resolved[1].amount_sats == 700
    assert usd.amount_sats is None


def test_apply_exchange_rate_rejects_non_positive_rate():
    with pytest.raises(ValueError):
        apply_exchange_rate([_usd_recipient()], sats_per_usd=0)
