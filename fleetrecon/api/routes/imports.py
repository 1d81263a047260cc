"""Import endpoints.

Handles CSV uploads of payment and traffic-fine files, JSON re-submission
of rows (e.g. the failed rows of an earlier batch), background imports
with pollable status, and the per-batch import log.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from sqlalchemy.orm import Session

from fleetrecon.core.config import settings
from fleetrecon.core.database import get_db
from fleetrecon.core.errors import StructuralImportError
from fleetrecon.core.logging import get_logger
from fleetrecon.models.import_log import ImportLog
from fleetrecon.schemas.batch import BatchReport, ImportLogResponse, RowsImportRequest
from fleetrecon.schemas.records import RecordType
from fleetrecon.services.assignment.jobs import ImportJobRegistry
from fleetrecon.services.assignment.session import ImportSession
from fleetrecon.services.assignment.store import SqlRecordStore
from fleetrecon.services.ingestion.base_reader import ParsedBatch
from fleetrecon.services.ingestion.columns import check_headers
from fleetrecon.services.ingestion.csv_reader import CsvReader

logger = get_logger(__name__)

router = APIRouter()

_READER = CsvReader()


def get_job_registry(request: Request) -> ImportJobRegistry:
    """The background job registry owned by the running app."""
    return request.app.state.import_jobs


async def _read_upload(file: UploadFile, record_type: RecordType) -> ParsedBatch:
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    filename = file.filename or "unknown"
    logger.info(
        "Received upload: type=%s file=%s size=%d",
        record_type.value,
        filename,
        len(content),
    )
    try:
        return _READER.read(content, filename, record_type)
    except StructuralImportError as exc:
        raise HTTPException(status_code=400, detail=exc.to_dict())


# ── Import logs and jobs ─────────────────────────────────────────────


@router.get("/logs", response_model=list[ImportLogResponse])
def list_import_logs(
    record_type: Optional[RecordType] = Query(None, description="payment or fine"),
    status: Optional[str] = Query(
        None, description="completed or partially_completed"
    ),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
) -> list[ImportLog]:
    """List import logs, newest first."""
    query = db.query(ImportLog)
    if record_type is not None:
        query = query.filter(ImportLog.record_type == record_type.value)
    if status is not None:
        query = query.filter(ImportLog.status == status)

    offset = (page - 1) * limit
    return (
        query.order_by(ImportLog.created_at.desc(), ImportLog.started_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/logs/{batch_id}", response_model=ImportLogResponse)
def get_import_log(batch_id: UUID, db: Session = Depends(get_db)) -> ImportLog:
    """Retrieve the log of a single batch."""
    log = db.get(ImportLog, batch_id)
    if log is None:
        raise HTTPException(status_code=404, detail="Import log not found")
    return log


@router.get("/jobs")
def list_jobs(registry: ImportJobRegistry = Depends(get_job_registry)):
    """List all submitted background import jobs."""
    return {"jobs": registry.list_jobs()}


@router.get("/jobs/{job_id}")
def get_job(job_id: str, registry: ImportJobRegistry = Depends(get_job_registry)):
    """Poll a specific job's status by its ID."""
    job = registry.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job


# ── Imports ──────────────────────────────────────────────────────────


@router.post("/{record_type}", response_model=BatchReport)
async def import_file(
    record_type: RecordType,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
) -> BatchReport:
    """Import a CSV file of payments or traffic fines.

    Every row is validated, normalized, matched to an agreement and, when
    assigned, applied to that agreement's balance.  Row problems are
    reported in the response; only a bad header rejects the whole file.
    """
    batch = await _read_upload(file, record_type)
    session = ImportSession(SqlRecordStore(db), config=settings)
    try:
        return session.run(
            batch.rows,
            record_type,
            headers=batch.headers,
            source_file=batch.source_file,
        )
    except StructuralImportError as exc:
        raise HTTPException(status_code=400, detail=exc.to_dict())


@router.post("/{record_type}/rows", response_model=BatchReport)
def import_rows(
    record_type: RecordType,
    body: RowsImportRequest,
    db: Session = Depends(get_db),
) -> BatchReport:
    """Import rows sent as JSON, keyed by column name.

    This is how the ``failures[].raw_row`` values of an earlier report are
    re-submitted as a new batch.
    """
    logger.info(
        "Received %d %s rows (source=%s)",
        len(body.rows),
        record_type.value,
        body.source_file,
    )
    session = ImportSession(SqlRecordStore(db), config=settings)
    try:
        return session.run(body.rows, record_type, source_file=body.source_file)
    except StructuralImportError as exc:
        raise HTTPException(status_code=400, detail=exc.to_dict())


@router.post("/{record_type}/async")
async def import_file_async(
    record_type: RecordType,
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    registry: ImportJobRegistry = Depends(get_job_registry),
):
    """Submit a CSV import as a background job.

    The header is checked before queueing; returns immediately with a
    job_id that can be polled via GET /jobs/{id}.
    """
    batch = await _read_upload(file, record_type)
    try:
        check_headers(batch.headers, record_type)
    except StructuralImportError as exc:
        raise HTTPException(status_code=400, detail=exc.to_dict())

    job_id = registry.submit(batch, record_type, background_tasks)
    return {
        "job_id": job_id,
        "status": "pending",
        "message": f"Import of {batch.source_file} submitted",
    }
