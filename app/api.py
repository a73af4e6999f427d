"""
FastAPI routes for batch validation and execution.
Thin API layer over BatchPaymentService.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import BaseModel, Field

from core.config import get_settings
from core.exceptions import BatchPaymentException, ConfigurationError, ExportError, ParsingError
from core.exporters import create_output_filename, export_results_csv, export_results_excel
from core.logger import setup_logger
from core.parsing import generate_template, quick_validate
from core.schema import BatchProgress, BatchResult, ValidationResult
from services.batch_service import BatchPaymentService
from services.payment_service import PaymentExecutor

logger = setup_logger(__name__)
settings = get_settings()

app = FastAPI(
    title="Lightning Batch Payments",
    description="Validate and pay CSV batches of Lightning recipients",
    version="1.0.0",
)

# In-memory job storage (lost on restart)
jobs: Dict[str, Dict[str, Any]] = {}
executors: Dict[str, PaymentExecutor] = {}
batch_results: Dict[str, BatchResult] = {}

batch_service = BatchPaymentService()


class ExecuteRequest(BaseModel):
    wallet_id: str = Field(..., min_length=1)
    api_key: Optional[str] = None
    validation_results: List[ValidationResult]
    confirm: bool = False


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "batch_payments",
        "version": "1.0.0",
    }


@app.get("/template")
async def download_template():
    """Return the example CSV."""
    return Response(
        content=generate_template(),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="batch-payment-template.csv"'},
    )


def validate_file_extension(filename: Optional[str]) -> None:
    """
    Validate the upload is a CSV file.

    Raises:
        HTTPException: If file extension is invalid
    """
    if not filename or not filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type: {filename}. Only .csv is supported.",
        )


@app.post("/validate")
async def validate_batch(
    file: UploadFile = File(...),
    balance_sats: Optional[int] = Form(None),
    sats_per_usd: Optional[float] = Form(None),
    api_key: Optional[str] = Form(None),
):
    """
    Parse and validate an uploaded CSV batch and estimate its fees.

    Returns:
        Parse errors, validation results and summary, fee summary, balance check
    """
    validate_file_extension(file.filename)
    logger.info(f"Received batch file: {file.filename}")

    raw = await file.read()
    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="File must be UTF-8 encoded text")

    precheck = quick_validate(content, settings.max_file_bytes, settings.max_recipients)
    if not precheck.valid:
        raise HTTPException(status_code=400, detail=precheck.error)

    try:
        prepared = await batch_service.prepare_batch(
            content,
            balance_sats=balance_sats,
            sats_per_usd=sats_per_usd,
            api_key=api_key,
        )
    except ParsingError as e:
        logger.warning(f"Rejected batch file {file.filename}: {e.message}")
        raise HTTPException(status_code=400, detail={"message": e.message, "details": e.details})

    parsed = prepared["parse"]
    report = prepared["validation"]
    summary = report.summary

    return {
        "success": True,
        "parse": {
            "total": parsed.summary.total,
            "by_kind": parsed.summary.by_kind,
            "errors": parsed.errors,
            "row_errors": parsed.row_errors,
        },
        "validation": {
            "results": report.results,
            "summary": {
                "total": summary.total,
                "valid": summary.valid,
                "invalid": summary.invalid,
                "by_kind": summary.by_kind,
                "errors_by_code": {code: len(group) for code, group in summary.error_groups.items()},
                "total_amount_sats": summary.total_amount_sats,
            },
        },
        "fees": prepared["fees"],
        "balance": prepared["balance"],
    }


async def run_batch_background(job_id: str, executor: PaymentExecutor, results: List[ValidationResult]) -> None:
    """
    Background task executing one confirmed batch.

    Args:
        job_id: Unique job identifier
        executor: Single-use executor for the job
        results: Validation results submitted by the client
    """
    def on_progress(progress: BatchProgress) -> None:
        jobs[job_id]["progress"] = progress.model_dump()
        jobs[job_id]["message"] = f"Paid {progress.completed}/{progress.total} recipients"

    try:
        jobs[job_id]["status"] = "running"
        jobs[job_id]["message"] = "Executing payments..."

        response = await batch_service.execute_batch(executor, results, confirm=True, on_progress=on_progress)
        result: BatchResult = response["result"]
        batch_results[job_id] = result

        jobs[job_id]["status"] = "cancelled" if result.cancelled else "completed"
        jobs[job_id]["message"] = (
            f"{result.summary.successful} sent, {result.summary.failed} failed"
            + (f", {result.summary.not_attempted} not attempted" if result.cancelled else "")
        )
        jobs[job_id]["result"] = result.model_dump(mode="json")

        logger.info(f"Job {job_id} finished: {jobs[job_id]['message']}")

    except BatchPaymentException as e:
        logger.error(f"Job {job_id} failed: {e.message}", exc_info=True)
        jobs[job_id]["status"] = "failed"
        jobs[job_id]["message"] = f"Execution failed: {e.message}"
        jobs[job_id]["error"] = e.message
        jobs[job_id]["error_details"] = e.details

    except Exception as e:
        logger.error(f"Job {job_id} failed with unexpected error: {e}", exc_info=True)
        jobs[job_id]["status"] = "failed"
        jobs[job_id]["message"] = f"Execution failed: {str(e)}"
        jobs[job_id]["error"] = str(e)

    finally:
        executors.pop(job_id, None)


@app.post("/execute", status_code=202)
async def execute_batch(request: ExecuteRequest, background_tasks: BackgroundTasks):
    """
    Execute a validated batch as a background job.

    Without confirm=true only the payable count is returned (200, READY).

    Returns:
        202 Accepted with job_id for status polling
    """
    try:
        readiness = await batch_service.execute_batch(
            executor=None,
            validation_results=request.validation_results,
            confirm=False,
        )
    except BatchPaymentException as e:
        raise HTTPException(status_code=400, detail=e.message)

    if not request.confirm:
        return JSONResponse(status_code=200, content={"success": True, **readiness})

    try:
        executor = batch_service.create_executor(request.wallet_id, request.api_key)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    job_id = str(uuid.uuid4())
    jobs[job_id] = {
        "job_id": job_id,
        "status": "queued",
        "message": f"{readiness['valid_recipients']} payments queued",
        "created_at": datetime.now(timezone.utc).isoformat(),
        "progress": BatchProgress(
            completed=0,
            total=readiness["valid_recipients"],
            successful=0,
            failed=0,
            percent=0.0,
        ).model_dump(),
    }
    executors[job_id] = executor

    background_tasks.add_task(run_batch_background, job_id, executor, request.validation_results)
    logger.info(f"Job {job_id} queued with {readiness['valid_recipients']} payments")

    return {
        "job_id": job_id,
        "status": "accepted",
        "message": "Execution started. Use job_id to check status.",
    }


def _get_job(job_id: str) -> Dict[str, Any]:
    if job_id not in jobs:
        raise HTTPException(status_code=404, detail="Job not found")
    return jobs[job_id]


@app.get("/status/{job_id}")
async def get_job_status(job_id: str):
    """
    Get status of an execution job.

    Returns:
        Job status, live progress and the result once finished
    """
    job = _get_job(job_id)

    response = {
        "job_id": job_id,
        "status": job["status"],
        "message": job["message"],
        "created_at": job.get("created_at"),
        "progress": job.get("progress"),
    }

    if job["status"] in ("completed", "cancelled") and "result" in job:
        response["result"] = job["result"]

    if job["status"] == "failed":
        response["error"] = job.get("error")
        if "error_details" in job:
            response["error_details"] = job["error_details"]

    return response


@app.post("/cancel/{job_id}")
async def cancel_job(job_id: str):
    """Request cooperative cancellation of a queued or running job."""
    job = _get_job(job_id)
    executor = executors.get(job_id)

    if executor is None or job["status"] not in ("queued", "running"):
        raise HTTPException(status_code=409, detail=f"Job is {job['status']} and cannot be cancelled")

    executor.cancel()
    job["message"] = "Cancellation requested"
    logger.info(f"Cancellation requested for job {job_id}")
    return {"job_id": job_id, "status": job["status"], "message": job["message"]}


@app.get("/download/{job_id}")
async def download_report(job_id: str, format: str = "csv"):
    """
    Download the report of a finished job.

    Args:
        job_id: Job identifier
        format: "csv" or "xlsx"
    """
    _get_job(job_id)
    result = batch_results.get(job_id)
    if result is None:
        raise HTTPException(status_code=409, detail="Job has no report yet")

    if format == "csv":
        return Response(
            content=export_results_csv(result.results),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="batch_{job_id}.csv"'},
        )

    if format == "xlsx":
        output_path = create_output_filename(job_id, "xlsx", settings.temp_storage_path)
        try:
            export_results_excel(result.results, output_path)
        except ExportError as e:
            raise HTTPException(status_code=500, detail=e.message)
        return FileResponse(
            path=output_path,
            filename=f"batch_{job_id}.xlsx",
            media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )

    raise HTTPException(status_code=400, detail="Invalid format. Use csv or xlsx.")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
