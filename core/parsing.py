"""
CSV parsing for batch payment files.
Format: recipient,amount[,currency][,memo] with a header row.
"""
import io
from typing import Any, Dict, List, Optional

import pandas as pd

from core.config import get_settings
from core.exceptions import ParsingError
from core.logger import setup_logger
from core.normalize import clean_amount, detect_recipient_kind, normalize_recipient, to_sats
from core.schema import (
    DEFAULT_CURRENCY,
    SUPPORTED_CURRENCIES,
    ParsedRecipient,
    ParseErrorCode,
    ParseResult,
    ParseSummary,
    QuickValidateResult,
    RecipientKind,
    RowError,
)

logger = setup_logger(__name__)

REQUIRED_COLUMNS = ("recipient", "amount")

TEMPLATE = """recipient,amount,currency,memo
hermann,1000,SATS,Payment to Blink user
user@getalby.com,500,SATS,Payment to external wallet
machankura@8333.mobi,2000,SATS,Payment to Machankura user"""


def generate_template() -> str:
    """Return the canonical three-row CSV example."""
    return TEMPLATE


def _limits(max_bytes: Optional[int], max_rows: Optional[int]):
    settings = get_settings()
    return (
        max_bytes if max_bytes is not None else settings.max_file_bytes,
        max_rows if max_rows is not None else settings.max_recipients,
    )


def _content_lines(content: str) -> List[str]:
    return [line for line in content.strip().splitlines() if line.strip()]


def quick_validate(
    content: str,
    max_bytes: Optional[int] = None,
    max_rows: Optional[int] = None,
) -> QuickValidateResult:
    """
    Cheap checks before a full parse.

    Args:
        content: Raw CSV text
        max_bytes: Size limit (defaults to configured value)
        max_rows: Data row limit (defaults to configured value)

    Returns:
        QuickValidateResult
    """
    max_bytes, max_rows = _limits(max_bytes, max_rows)

    if not content or not isinstance(content, str):
        return QuickValidateResult(valid=False, error="File is empty or invalid")

    if len(content.encode("utf-8")) > max_bytes:
        return QuickValidateResult(
            valid=False,
            error=f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
        )

    lines = _content_lines(content)
    if len(lines) < 2:
        return QuickValidateResult(valid=False, error="CSV must have a header and at least one data row")

    if len(lines) > max_rows + 1:
        return QuickValidateResult(valid=False, error=f"Maximum {max_rows} recipients per batch")

    header = lines[0].lower()
    if not all(column in header for column in REQUIRED_COLUMNS):
        return QuickValidateResult(valid=False, error='CSV must have "recipient" and "amount" columns')

    return QuickValidateResult(valid=True)


def _read_frame(content: str) -> pd.DataFrame:
    """
    Read CSV text into a string-typed DataFrame.

    Quoted fields may contain commas and doubled quotes. Rows with more
    fields than the header are truncated to the header width. Blank lines
    are kept as empty rows so the index tracks the physical line.
    """
    read_options = dict(
        dtype=str,
        keep_default_na=False,
        na_filter=False,
        skip_blank_lines=False,
        skipinitialspace=True,
        index_col=False,
        engine="python",
    )
    try:
        header = pd.read_csv(io.StringIO(content), nrows=0, **read_options)
        width = len(header.columns)
        df = pd.read_csv(
            io.StringIO(content),
            on_bad_lines=lambda fields: fields[:width],
            **read_options,
        )
    except pd.errors.EmptyDataError:
        raise ParsingError("CSV content is empty or invalid")
    except (pd.errors.ParserError, ValueError) as e:
        raise ParsingError("Malformed CSV content", details={"error": str(e)})

    df.columns = [str(column).strip().lower() for column in df.columns]
    df = df.fillna("")
    # Header is line 1
    df.index = range(2, len(df) + 2)
    return df


def drop_blank_rows(df: pd.DataFrame) -> pd.DataFrame:
    """Drop rows whose every cell is empty or whitespace."""
    if df.empty:
        return df
    blank = df.astype(str).apply(lambda column: column.str.strip() == "").all(axis=1)
    return df[~blank]


def safe_get_string(row: pd.Series, key: str, default: str = "") -> str:
    """
    Safely read a cell as a stripped string.

    Args:
        row: pandas Series
        key: Column key
        default: Value for absent columns or empty cells

    Returns:
        String value or default
    """
    value = row.get(key, default)
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return default
    value = str(value).strip()
    return value or default


def _row_error(row_errors: List[RowError], row_number: int, code: ParseErrorCode, message: str) -> None:
    row_errors.append(RowError(row_number=row_number, code=code, message=f"Row {row_number}: {message}"))


def _parse_row(row: pd.Series, row_number: int, row_errors: List[RowError]) -> Optional[ParsedRecipient]:
    recipient_raw = safe_get_string(row, "recipient")
    amount_raw = safe_get_string(row, "amount")
    currency = safe_get_string(row, "currency", DEFAULT_CURRENCY).upper()
    memo = safe_get_string(row, "memo")

    if not recipient_raw:
        _row_error(row_errors, row_number, ParseErrorCode.MISSING_RECIPIENT, "Missing recipient")
        return None

    if not amount_raw:
        _row_error(row_errors, row_number, ParseErrorCode.MISSING_AMOUNT, "Missing amount")
        return None

    amount = clean_amount(amount_raw)
    if amount is None:
        _row_error(row_errors, row_number, ParseErrorCode.INVALID_AMOUNT, f'Invalid amount "{amount_raw}"')
        return None

    if currency not in SUPPORTED_CURRENCIES:
        _row_error(
            row_errors,
            row_number,
            ParseErrorCode.INVALID_CURRENCY,
            f'Invalid currency "{currency}". Must be SATS, USD, or BTC',
        )
        return None

    amount_sats = to_sats(amount_raw, currency)
    if amount_sats is not None and amount_sats <= 0:
        _row_error(row_errors, row_number, ParseErrorCode.INVALID_AMOUNT, f'Invalid amount "{amount_raw}"')
        return None

    kind = detect_recipient_kind(recipient_raw)
    normalized = normalize_recipient(recipient_raw, kind)
    # "@" alone (or its UTF-7 form) normalizes to nothing
    if not normalized:
        _row_error(row_errors, row_number, ParseErrorCode.MISSING_RECIPIENT, f'Empty recipient "{recipient_raw}"')
        return None

    return ParsedRecipient(
        row_number=row_number,
        original=recipient_raw,
        kind=kind,
        normalized=normalized,
        requested_amount=amount,
        amount_sats=amount_sats,
        currency=currency,
        memo=memo,
    )


def count_by_kind(records: List[ParsedRecipient]) -> Dict[str, int]:
    counts = {kind.value: 0 for kind in RecipientKind}
    for record in records:
        counts[record.kind.value] += 1
    return counts


def parse_csv(
    content: Any,
    max_bytes: Optional[int] = None,
    max_rows: Optional[int] = None,
) -> ParseResult:
    """
    Parse batch payment CSV text into typed recipients.

    Whole-file problems raise ParsingError and nothing is returned. Row
    problems are collected in the result and the row is skipped.

    Args:
        content: Raw CSV text
        max_bytes: Size limit (defaults to configured value)
        max_rows: Data row limit (defaults to configured value)

    Returns:
        ParseResult with records, row errors and a summary by kind

    Raises:
        ParsingError: On oversize input, missing headers, too many rows or no data
    """
    max_bytes, max_rows = _limits(max_bytes, max_rows)

    if not content or not isinstance(content, str) or not content.strip():
        raise ParsingError("CSV content is empty or invalid")

    size = len(content.encode("utf-8"))
    if size > max_bytes:
        raise ParsingError(
            f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB",
            details={"size_bytes": size, "max_bytes": max_bytes},
        )

    df = _read_frame(content.lstrip("\ufeff").strip())

    missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
    if missing:
        raise ParsingError(
            f"Missing required headers: {', '.join(missing)}. Expected: recipient,amount,currency,memo",
            details={"missing_columns": missing, "found_columns": list(df.columns)},
        )

    df = drop_blank_rows(df)
    if len(df) == 0:
        raise ParsingError("CSV must have a header row and at least one data row")

    if len(df) > max_rows:
        raise ParsingError(
            f"Maximum {max_rows} recipients per batch",
            details={"rows": len(df), "max_rows": max_rows},
        )

    logger.info(f"Parsing {len(df)} CSV rows ({size} bytes)")

    records: List[ParsedRecipient] = []
    row_errors: List[RowError] = []

    for row_number, row in df.iterrows():
        record = _parse_row(row, int(row_number), row_errors)
        if record is not None:
            records.append(record)

    if row_errors:
        logger.warning(f"{len(row_errors)} CSV rows rejected")

    summary = ParseSummary(
        total=len(records),
        by_kind=count_by_kind(records),
        parse_errors=len(row_errors),
    )
    logger.info(f"Parsed {summary.total} recipients: {summary.by_kind}")

    return ParseResult(
        success=not row_errors,
        records=records,
        errors=[e.message for e in row_errors],
        row_errors=row_errors,
        summary=summary,
    )
