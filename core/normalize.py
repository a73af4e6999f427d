"""
Recipient classification and amount normalization.
Decides the recipient kind, canonicalizes identifiers and converts amounts to sats.
"""
import math
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional

from core.logger import setup_logger
from core.schema import ParsedRecipient, RecipientKind

logger = setup_logger(__name__)

SATS_PER_BTC = 100_000_000

# Spreadsheet tools sometimes save "@" and "_" as UTF-7 escapes
_UTF7_REPAIRS = (
    (re.compile(r"\+AEA-", re.IGNORECASE), "@"),
    (re.compile(r"\+AEA(?=[^-]|$)", re.IGNORECASE), "@"),
    (re.compile(r"\+AF8-", re.IGNORECASE), "_"),
    (re.compile(r"\+AF8(?=[^-]|$)", re.IGNORECASE), "_"),
)


def decode_csv_string(value: str) -> str:
    """
    Repair UTF-7 encodings of '@' and '_' emitted by some spreadsheet tools.

    Args:
        value: Raw cell value

    Returns:
        Repaired string
    """
    if not value:
        return value
    for pattern, replacement in _UTF7_REPAIRS:
        value = pattern.sub(replacement, value)
    return value


def detect_recipient_kind(recipient: str) -> RecipientKind:
    """
    Classify a recipient string.

    Order: lnurl prefix (any case), then user@dotted.domain, otherwise an
    internal handle. Every string maps to exactly one kind.
    """
    trimmed = decode_csv_string(recipient.strip())

    if trimmed.lower().startswith("lnurl"):
        return RecipientKind.LNURL

    if "@" in trimmed:
        parts = trimmed.split("@")
        if len(parts) == 2 and parts[0] and "." in parts[1]:
            return RecipientKind.LN_ADDRESS

    return RecipientKind.INTERNAL


def normalize_recipient(recipient: str, kind: RecipientKind) -> str:
    """
    Canonicalize a recipient identifier for its kind.

    LNURL payloads are bech32 and kept verbatim.
    """
    trimmed = decode_csv_string(recipient.strip())

    if kind == RecipientKind.INTERNAL:
        return re.sub(r"^@", "", trimmed).lower()
    if kind == RecipientKind.LN_ADDRESS:
        return trimmed.lower()
    if kind == RecipientKind.LNURL:
        return trimmed
    raise ValueError(f"Unhandled recipient kind: {kind}")


def clean_amount(value: Any) -> Optional[float]:
    """
    Clean and parse a positive amount.
    Removes spaces and non-breaking spaces before converting to float.

    Args:
        value: Raw amount value (string or number)

    Returns:
        Positive finite float, or None if the value is not a usable amount
    """
    if value is None:
        return None

    amount_str = str(value).strip().replace(" ", "").replace("\xa0", "")
    if not amount_str:
        return None

    try:
        result = float(amount_str)
    except (ValueError, TypeError):
        logger.debug(f"Failed to parse amount: '{value}'")
        return None

    if not math.isfinite(result) or result <= 0:
        return None
    return result


def to_sats(amount: str, currency: str) -> Optional[int]:
    """
    Convert a requested amount to integer sats.

    Args:
        amount: Amount as written in the CSV
        currency: SATS, BTC or USD

    Returns:
        Sats, or None for USD (resolved later against a live rate)
    """
    if currency == "USD":
        return None

    try:
        value = Decimal(str(amount).strip().replace(" ", "").replace("\xa0", ""))
    except InvalidOperation:
        return None

    if currency == "BTC":
        value = value * SATS_PER_BTC

    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def apply_exchange_rate(
    records: Iterable[ParsedRecipient],
    sats_per_usd: float,
) -> List[ParsedRecipient]:
    """
    Resolve USD rows to sats with a caller-supplied rate.

    Records that already carry sats are returned unchanged.

    Args:
        records: Parsed recipients
        sats_per_usd: Exchange rate (sats for one US dollar)

    Returns:
        New list with amount_sats filled for USD rows
    """
    if sats_per_usd <= 0:
        raise ValueError("Exchange rate must be positive")

    rate = Decimal(str(sats_per_usd))
    resolved = []
    for record in records:
        if record.amount_sats is None and record.currency == "USD":
            sats = int((Decimal(str(record.requested_amount)) * rate).quantize(
                Decimal(1), rounding=ROUND_HALF_UP
            ))
            record = record.with_amount_sats(sats)
        resolved.append(record)

    converted = sum(1 for r in resolved if r.currency == "USD")
    if converted:
        logger.info(f"Resolved {converted} USD amounts at {sats_per_usd} sats/USD")
    return resolved
