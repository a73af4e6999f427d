"""
Report exporters for executed batches.
Writes one row per attempted recipient as CSV or Excel.
"""
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd

from core.config import get_settings
from core.exceptions import ExportError
from core.logger import setup_logger
from core.schema import PaymentOutcome

logger = setup_logger(__name__)

REPORT_COLUMNS = [
    "row",
    "recipient",
    "kind",
    "amount_sats",
    "success",
    "status",
    "fee_sats",
    "error_code",
    "error",
]


def outcomes_to_frame(outcomes: List[PaymentOutcome]) -> pd.DataFrame:
    """
    Flatten payment outcomes into a report DataFrame.

    Args:
        outcomes: Outcomes in execution order

    Returns:
        DataFrame with REPORT_COLUMNS
    """
    rows = [
        {
            "row": o.recipient.row_number,
            "recipient": o.recipient.original,
            "kind": o.recipient.kind.value,
            "amount_sats": o.recipient.amount_sats,
            "success": o.success,
            "status": o.status_label or ("SUCCESS" if o.success else "FAILED"),
            "fee_sats": o.fee_sats,
            "error_code": o.error.code if o.error else "",
            "error": o.error.message if o.error else "",
        }
        for o in outcomes
    ]
    df = pd.DataFrame(rows, columns=REPORT_COLUMNS)
    # Nullable ints keep "0" instead of "0.0" when a column has gaps
    for column in ("amount_sats", "fee_sats"):
        df[column] = df[column].astype("Int64")
    return df


def export_results_csv(outcomes: List[PaymentOutcome], output_path: Optional[str] = None) -> str:
    """
    Render outcomes as CSV.

    Args:
        outcomes: Payment outcomes
        output_path: Optional file to write as well

    Returns:
        CSV text

    Raises:
        ExportError: If the file cannot be written
    """
    df = outcomes_to_frame(outcomes)
    content = df.to_csv(index=False)

    if output_path:
        try:
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            Path(output_path).write_text(content, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to write CSV report: {e}")
            raise ExportError("Failed to write CSV report", details={"output_path": output_path, "error": str(e)})
        logger.info(f"Wrote {len(df)} outcomes to {output_path}")

    return content


def export_results_excel(outcomes: List[PaymentOutcome], output_path: str, sheet_name: str = "Payments") -> str:
    """
    Export outcomes to an Excel workbook.

    Args:
        outcomes: Payment outcomes
        output_path: Output file path
        sheet_name: Worksheet name

    Returns:
        Path to created file

    Raises:
        ExportError: If export fails
    """
    df = outcomes_to_frame(outcomes)
    logger.info(f"Exporting {len(df)} outcomes to {output_path}")

    Path(output_path).parent.mkdir(parents=True, exist_ok=True)

    try:
        with pd.ExcelWriter(output_path, engine="xlsxwriter") as writer:
            df.to_excel(writer, sheet_name=sheet_name, index=False)

            workbook = writer.book
            worksheet = writer.sheets[sheet_name]

            # Highlight failed rows
            failed_format = workbook.add_format({"font_color": "#9C0006", "bg_color": "#FFC7CE"})
            success_col = REPORT_COLUMNS.index("success")
            if len(df):
                worksheet.conditional_format(
                    1, 0, len(df), len(REPORT_COLUMNS) - 1,
                    {
                        "type": "formula",
                        "criteria": f"=${chr(ord('A') + success_col)}2=FALSE",
                        "format": failed_format,
                    },
                )

            for idx, col in enumerate(df.columns):
                max_len = max(df[col].astype(str).map(len).max() if len(df) else 0, len(col))
                worksheet.set_column(idx, idx, min(max_len + 2, 60))

        logger.info(f"Successfully exported to {output_path}")
        return output_path

    except Exception as e:
        logger.error(f"Failed to export Excel: {e}")
        raise ExportError(
            "Failed to export to Excel",
            details={"output_path": output_path, "error": str(e)},
        )


def create_output_filename(job_id: str, extension: str = "csv", base_path: Optional[str] = None) -> str:
    """
    Create timestamped report filename.

    Args:
        job_id: Execution job id
        extension: "csv" or "xlsx"
        base_path: Base directory path (defaults to configured storage)

    Returns:
        Full output file path
    """
    if base_path is None:
        base_path = get_settings().temp_storage_path

    Path(base_path).mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    filename = f"batch_{job_id}_{timestamp}.{extension}"

    return str(Path(base_path) / filename)
