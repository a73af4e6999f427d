"""
Unit tests for fee estimation and the balance guard.
"""
import pytest

from conftest import make_recipient, pay_params
from core.fees import calculate_fee_summary, check_balance, estimate_fee, validate_balance
from core.schema import ErrorDetail, FeePolicy, LnurlPayData, ValidationResult


def _external(amount_sats, original="user@example.com", row_number=3):
    data = pay_params()
    return ValidationResult(
        recipient=make_recipient(original, amount_sats, row_number),
        valid=True,
        external_callback=LnurlPayData(
            callback=data["callback"],
            min_sendable=data["minSendable"],
            max_sendable=data["maxSendable"],
        ),
    )


def _internal(amount_sats, original="hermann", row_number=2):
    return ValidationResult(
        recipient=make_recipient(original, amount_sats, row_number),
        valid=True,
        account_handle=original,
        account_handle_id=f"wallet-{original}",
    )


@pytest.mark.parametrize("amount", [1, 1000, 10_000, 5_000_000])
def test_internal_route_is_free(amount):
    """Test internal routes cost exactly 0 at any amount."""
    estimate = estimate_fee(_internal(amount))
    assert estimate.is_internal_route
    assert estimate.fee_sats == 0
    assert estimate.fee_percent == 0.0


def test_home_domain_address_with_wallet_id_is_free():
    """Test a home-domain Lightning Address resolved to a wallet is internal."""
    result = ValidationResult(
        recipient=make_recipient("alice@blink.sv", 10_000),
        valid=True,
        account_handle="alice",
        account_handle_id="wallet-alice",
    )
    assert estimate_fee(result).fee_sats == 0


def test_external_default_fee():
    """Test 10,000 sats at 0.3% is exactly 30 sats."""
    estimate = estimate_fee(_external(10_000))
    assert not estimate.is_internal_route
    assert estimate.fee_sats == 30
    assert estimate.fee_percent == pytest.approx(0.3)
    assert estimate.is_estimate


def test_external_fee_rounds_up():
    assert estimate_fee(_external(1001)).fee_sats == 4


def test_external_fee_floor_is_capped():
    """Test the floor applies, then the cap (floor 1, cap ceil(1% of 50) = 1)."""
    assert estimate_fee(_external(50)).fee_sats == 1
    policy = FeePolicy(fee_rate=0.003, min_fee_sats=10, max_fee_rate=0.01)
    assert estimate_fee(_external(500), policy).fee_sats == 5


def test_custom_policy():
    policy = FeePolicy(fee_rate=0.005, min_fee_sats=1, max_fee_rate=0.01)
    assert estimate_fee(_external(10_000), policy).fee_sats == 50


def test_invalid_recipient_estimate():
    result = ValidationResult(
        recipient=make_recipient("ghost"),
        valid=False,
        error=ErrorDetail(code="ACCOUNT_NOT_FOUND", message="not found"),
    )
    estimate = estimate_fee(result)
    assert not estimate.success
    assert estimate.error


def test_fee_summary():
    invalid = ValidationResult(
        recipient=make_recipient("ghost", 999, 4),
        valid=False,
        error=ErrorDetail(code="ACCOUNT_NOT_FOUND", message="not found"),
    )
    summary = calculate_fee_summary([_internal(1000), _external(10_000), invalid])

    assert summary.total_amount_sats == 11_000
    assert summary.total_fees_sats == 30
    assert summary.grand_total_sats == 11_030
    assert summary.recipients_with_fees == 2
    assert summary.breakdown.internal.count == 1
    assert summary.breakdown.internal.fees_sats == 0
    assert summary.breakdown.external.count == 1
    assert summary.breakdown.external.fees_sats == 30
    assert summary.breakdown.external.average_fee_percent == pytest.approx(0.3)
    assert len(summary.details) == 2
    assert summary.is_estimate


def test_balance_exactly_sufficient():
    """Test a balance equal to the requirement is enough."""
    check = validate_balance(10_030, 10_030)
    assert check.valid
    assert check.remaining == 0
    assert check.shortfall is None


def test_balance_short_by_one():
    check = validate_balance(10_030, 10_029)
    assert not check.valid
    assert check.shortfall == 1
    assert check.error.code == "INSUFFICIENT_BALANCE"


def test_check_balance_uses_grand_total():
    summary = calculate_fee_summary([_internal(1000), _external(10_000)])
    assert check_balance(summary, 11_030).valid
    check = check_balance(summary, 11_000)
    assert check.shortfall == 30
    assert "30 fees" in check.error.message
