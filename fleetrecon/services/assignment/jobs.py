"""Background import jobs.

An upload can be imported as a background task and polled for progress.
Jobs live in an ``ImportJobRegistry`` owned by the application (see
``app.state.import_jobs``), so each app instance, and each test, gets its
own registry.  Job state is in memory only and is lost on restart; the
import log table keeps the durable record of every finished batch.
"""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from fleetrecon.core.config import Settings, settings
from fleetrecon.core.logging import get_logger
from fleetrecon.schemas.batch import RowEvent
from fleetrecon.schemas.records import RecordType
from fleetrecon.services.assignment.session import ImportSession
from fleetrecon.services.assignment.store import SqlRecordStore
from fleetrecon.services.ingestion.base_reader import ParsedBatch

logger = get_logger(__name__)


class ImportJobRegistry:
    """Tracks import batches running as background tasks."""

    def __init__(
        self,
        db_factory: Callable[[], Session],
        config: Settings = settings,
    ) -> None:
        self.db_factory = db_factory
        self.config = config
        self._jobs: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        batch: ParsedBatch,
        record_type: RecordType,
        background_tasks: BackgroundTasks,
    ) -> str:
        """Queue ``batch`` for import and return its job id immediately."""
        record_type = RecordType(record_type)
        job_id = str(uuid.uuid4())
        with self._lock:
            self._jobs[job_id] = {
                "job_id": job_id,
                "status": "pending",
                "record_type": record_type.value,
                "source_file": batch.source_file,
                "total_rows": len(batch.rows),
                "processed_rows": 0,
                "batch_id": None,
                "report": None,
                "error": None,
                "submitted_at": datetime.now(timezone.utc).isoformat(),
            }
        background_tasks.add_task(self.run_job, job_id, batch, record_type)
        logger.info(
            "Import job %s queued: type=%s file=%s rows=%d",
            job_id,
            record_type.value,
            batch.source_file,
            len(batch.rows),
        )
        return job_id

    def run_job(self, job_id: str, batch: ParsedBatch, record_type: RecordType) -> None:
        """Background task body: run the import session and record the outcome."""
        self._update(job_id, status="running")

        def on_row(event: RowEvent) -> None:
            self._update(job_id, processed_rows=event.processed)

        db = self.db_factory()
        try:
            session = ImportSession(
                SqlRecordStore(db), config=self.config, progress=on_row
            )
            self._update(job_id, batch_id=str(session.batch_id))
            report = session.run(
                batch.rows,
                record_type,
                headers=batch.headers,
                source_file=batch.source_file,
            )
        except Exception as exc:
            # A background task has no caller to raise to; the job keeps the error.
            logger.exception("Import job %s failed", job_id)
            self._update(job_id, status="failed", error=str(exc))
            return
        finally:
            db.close()

        self._update(
            job_id,
            status="completed",
            report=report.model_dump(mode="json"),
        )

    def get_job(self, job_id: str) -> Optional[dict[str, Any]]:
        """Look up a job by id.  Returns None if not found."""
        with self._lock:
            job = self._jobs.get(job_id)
            return dict(job) if job is not None else None

    def list_jobs(self) -> list[dict[str, Any]]:
        """All tracked jobs, newest first, without their full reports."""
        with self._lock:
            jobs = [
                {k: v for k, v in job.items() if k != "report"}
                for job in self._jobs.values()
            ]
        return list(reversed(jobs))

    def _update(self, job_id: str, **fields: Any) -> None:
        with self._lock:
            self._jobs[job_id].update(fields)
