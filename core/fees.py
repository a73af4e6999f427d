"""
Fee estimation and balance checks for batch payments.

Internal routes settle on the home ledger and cost nothing. External routes
get a flat-rate estimate clamped to [min_fee_sats, ceil(amount * max_fee_rate)].
These are estimates: real routing fees are only known once a payment settles.
"""
import math
from decimal import Decimal
from typing import Iterable, List, Optional

from core.logger import setup_logger
from core.schema import (
    BalanceCheck,
    ErrorDetail,
    FeeBreakdown,
    FeeBreakdownEntry,
    FeeEstimate,
    FeePolicy,
    FeeSummary,
    PaymentErrorCode,
    ValidationResult,
)

logger = setup_logger(__name__)


def _ceil_product(amount: int, rate: float) -> int:
    # Decimal keeps e.g. 10000 * 0.003 at exactly 30
    return int(math.ceil(Decimal(amount) * Decimal(str(rate))))


def estimate_fee(result: ValidationResult, policy: Optional[FeePolicy] = None) -> FeeEstimate:
    """
    Estimate the routing fee for one validated recipient.

    Args:
        result: Validation result
        policy: Fee parameters (defaults to FeePolicy())

    Returns:
        FeeEstimate (success=False for invalid recipients)
    """
    policy = policy or FeePolicy()
    recipient = result.recipient

    if not result.valid:
        return FeeEstimate(
            recipient=recipient,
            success=False,
            error="Recipient validation failed",
        )

    amount_sats = recipient.amount_sats or 0

    if result.is_internal_route:
        return FeeEstimate(
            recipient=recipient,
            is_internal_route=True,
            fee_sats=0,
            fee_percent=0.0,
        )

    fee_sats = _ceil_product(amount_sats, policy.fee_rate)
    fee_sats = max(fee_sats, policy.min_fee_sats)
    fee_sats = min(fee_sats, _ceil_product(amount_sats, policy.max_fee_rate))

    return FeeEstimate(
        recipient=recipient,
        is_internal_route=False,
        fee_sats=fee_sats,
        fee_percent=(fee_sats / amount_sats) * 100 if amount_sats > 0 else 0.0,
    )


def _percent(part: int, whole: int) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def calculate_fee_summary(
    results: Iterable[ValidationResult],
    policy: Optional[FeePolicy] = None,
) -> FeeSummary:
    """
    Aggregate fee estimates over all valid recipients.

    Args:
        results: Validation results (invalid ones are ignored)
        policy: Fee parameters

    Returns:
        FeeSummary with internal/external breakdown
    """
    estimates: List[FeeEstimate] = [estimate_fee(r, policy) for r in results if r.valid]

    successful = [e for e in estimates if e.success]
    internal = [e for e in successful if e.is_internal_route]
    external = [e for e in successful if not e.is_internal_route]

    internal_amount = sum(e.recipient.amount_sats or 0 for e in internal)
    external_amount = sum(e.recipient.amount_sats or 0 for e in external)
    external_fees = sum(e.fee_sats for e in external)

    total_amount = internal_amount + external_amount
    total_fees = external_fees

    summary = FeeSummary(
        total_amount_sats=total_amount,
        total_fees_sats=total_fees,
        grand_total_sats=total_amount + total_fees,
        average_fee_percent=_percent(total_fees, total_amount),
        recipients_with_fees=len(successful),
        recipients_failed=len(estimates) - len(successful),
        breakdown=FeeBreakdown(
            internal=FeeBreakdownEntry(count=len(internal), amount_sats=internal_amount, fees_sats=0),
            external=FeeBreakdownEntry(
                count=len(external),
                amount_sats=external_amount,
                fees_sats=external_fees,
                average_fee_percent=_percent(external_fees, external_amount),
            ),
        ),
        details=estimates,
    )

    logger.info(
        f"Fee estimate: {total_amount:,} sats + {total_fees:,} fees "
        f"({len(internal)} internal, {len(external)} external)"
    )
    return summary


def validate_balance(required_sats: int, balance_sats: int, fee_summary: Optional[FeeSummary] = None) -> BalanceCheck:
    """
    Compare the amount a batch needs with the available balance.

    A balance equal to the requirement is sufficient.

    Args:
        required_sats: Amount plus fees
        balance_sats: Available balance
        fee_summary: Optional summary used to itemize the error message

    Returns:
        BalanceCheck carrying shortfall or remaining
    """
    if balance_sats < required_sats:
        itemized = ""
        if fee_summary is not None:
            itemized = (
                f" ({fee_summary.total_amount_sats:,} + {fee_summary.total_fees_sats:,} fees)"
            )
        return BalanceCheck(
            valid=False,
            required=required_sats,
            available=balance_sats,
            shortfall=required_sats - balance_sats,
            error=ErrorDetail.of(
                PaymentErrorCode.INSUFFICIENT_BALANCE,
                f"Insufficient balance. Required: {required_sats:,} sats{itemized}. "
                f"Available: {balance_sats:,} sats.",
            ),
        )

    return BalanceCheck(
        valid=True,
        required=required_sats,
        available=balance_sats,
        remaining=balance_sats - required_sats,
    )


def check_balance(fee_summary: FeeSummary, balance_sats: int) -> BalanceCheck:
    """Balance guard over a fee summary's grand total."""
    return validate_balance(fee_summary.grand_total_sats, balance_sats, fee_summary)
