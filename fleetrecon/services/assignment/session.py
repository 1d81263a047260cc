"""Import session — runs one batch through the whole pipeline.

A session takes the rows of one uploaded file and, strictly in file order:
  1. Checks the header set once (a bad header rejects the whole batch).
  2. Validates and normalizes each row; rejected rows become issues.
  3. Asks the store for candidate agreements and lets the matcher pick one.
  4. Stores the record, and applies it to the agreement balance if assigned.
  5. Reports progress after every row and returns the finished report.

Think of it like a cashier working through a stack of receipts: a bad
receipt goes on the "problems" pile and the cashier moves on to the next
one; nothing on one receipt changes how another is handled.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional

from fleetrecon.core.config import Settings, settings
from fleetrecon.core.errors import NormalizationError, PersistenceError
from fleetrecon.core.logging import get_logger
from fleetrecon.schemas.batch import (
    AssignmentResult,
    BatchReport,
    ImportIssue,
    RowEvent,
    RowFailure,
    RowOutcome,
    SessionState,
)
from fleetrecon.schemas.records import RawRow, RecordType
from fleetrecon.services.assignment.balance import BalanceUpdater
from fleetrecon.services.assignment.matcher import AgreementMatcher
from fleetrecon.services.assignment.store import AgreementFilter, RecordStore
from fleetrecon.services.ingestion.columns import canonicalize_row, check_headers
from fleetrecon.services.ingestion.normalizer import normalize_row
from fleetrecon.services.ingestion.validator import validate_row

logger = get_logger(__name__)

ProgressCallback = Callable[[RowEvent], None]

PREVIOUSLY_ASSIGNED = "previously_assigned"
ALREADY_APPLIED = "already_applied"


class ImportSession:
    """Processes one batch of payment or fine rows.

    A session holds the state of exactly one batch (its id and report);
    create a new one for every file.
    """

    def __init__(
        self,
        store: RecordStore,
        config: Settings = settings,
        progress: Optional[ProgressCallback] = None,
        matcher: Optional[AgreementMatcher] = None,
    ) -> None:
        self.store = store
        self.config = config
        self.progress = progress
        self.matcher = matcher or AgreementMatcher(config.inactive_agreement_statuses)
        self.balance_updater = BalanceUpdater(store)
        self.batch_id = uuid.uuid4()
        self.state = SessionState.STARTED

    # ── Public API ───────────────────────────────────────────────────

    def run(
        self,
        rows: Iterable[RawRow],
        record_type: RecordType,
        headers: Optional[list[str]] = None,
        source_file: Optional[str] = None,
        *,
        today: Optional[date] = None,
    ) -> BatchReport:
        """Import a batch of rows.

        Args:
            rows: Raw rows in file order.
            record_type: ``payment`` or ``fine``.
            headers: The file's header line; defaults to every key seen in
                ``rows``.
            source_file: Original filename, kept in the import log.
            today: Reference date for the future-date check.

        Returns:
            The finished ``BatchReport``.

        Raises:
            StructuralImportError: The header set does not fit
                ``record_type``; no row has been processed.
        """
        if self.state is not SessionState.STARTED:
            raise RuntimeError("An ImportSession can only run one batch")

        record_type = RecordType(record_type)
        rows = list(rows)
        if headers is None:
            headers = list(dict.fromkeys(key for row in rows for key in row))
        check_headers(headers, record_type)

        report = BatchReport(
            batch_id=self.batch_id,
            record_type=record_type,
            source_file=source_file,
            status=SessionState.STARTED,
            started_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Import started: batch=%s type=%s file=%s rows=%d",
            self.batch_id,
            record_type.value,
            source_file,
            len(rows),
        )

        self._set_state(report, SessionState.PROCESSING)
        for row_index, raw_row in enumerate(rows, start=1):
            report.total_rows += 1
            outcome, external_ref = self._process_row(
                row_index, raw_row, record_type, report, today
            )
            if self.progress is not None:
                self.progress(
                    RowEvent(
                        batch_id=self.batch_id,
                        row_index=row_index,
                        outcome=outcome,
                        processed=report.total_rows,
                        external_ref=external_ref,
                    )
                )

        report.completed_at = datetime.now(timezone.utc)
        if report.issues or report.failures:
            self._set_state(report, SessionState.PARTIALLY_COMPLETED)
        else:
            self._set_state(report, SessionState.COMPLETED)

        logger.info(
            "Import finished: batch=%s status=%s valid=%d invalid=%d "
            "assigned=%d unassigned=%d duplicate=%d failed=%d",
            self.batch_id,
            report.status.value,
            report.valid_rows,
            report.invalid_rows,
            report.assigned_rows,
            report.unassigned_rows,
            report.duplicate_rows,
            report.failed_rows,
        )

        try:
            self.store.save_import_log(report)
        except PersistenceError:
            # The rows are already stored; only the audit entry is lost.
            logger.exception("Could not save import log for batch %s", self.batch_id)

        return report

    # ── Private helpers ──────────────────────────────────────────────

    def _set_state(self, report: BatchReport, state: SessionState) -> None:
        self.state = state
        report.status = state

    def _process_row(
        self,
        row_index: int,
        raw_row: RawRow,
        record_type: RecordType,
        report: BatchReport,
        today: Optional[date],
    ) -> tuple[RowOutcome, Optional[str]]:
        """Run one row through the pipeline and record its outcome."""
        row = canonicalize_row(raw_row, record_type)

        issue = validate_row(
            row, record_type, row_index, today=today, config=self.config
        )
        if issue is None:
            try:
                record = normalize_row(
                    row, record_type, row_index, dayfirst=self.config.date_dayfirst
                )
            except NormalizationError as exc:
                issue = ImportIssue(
                    row_index=row_index,
                    field_or_reason=exc.field_name,
                    message=str(exc),
                )
        if issue is not None:
            report.invalid_rows += 1
            report.issues.append(issue)
            logger.debug("Row %d rejected: %s", row_index, issue.message)
            return RowOutcome.REJECTED, None

        report.valid_rows += 1
        report.total_amount += record.amount

        try:
            candidates = self.store.find_agreements(AgreementFilter.for_record(record))
            result = self.matcher.assign(record, candidates)
            # Stored unassigned; it is linked only after its balance has moved.
            stored = self.store.insert_financial_record(
                record, AssignmentResult(record=record), self.batch_id
            )

            previous = stored.agreement_id
            if previous is not None and previous != result.agreement_id:
                # An earlier import or an operator already placed this record.
                result = AssignmentResult(
                    record=record,
                    agreement_id=previous,
                    confidence=stored.confidence,
                    amount_assigned=Decimal("0.00"),
                    reason=PREVIOUSLY_ASSIGNED,
                )
                outcome = RowOutcome.DUPLICATE
            elif result.is_assigned:
                update = self.balance_updater.apply_assignment(result, self.batch_id)
                if previous is None:
                    self.store.mark_assigned(stored.id, result)
                if update.applied:
                    outcome = RowOutcome.ASSIGNED
                else:
                    result = result.model_copy(
                        update={
                            "amount_assigned": Decimal("0.00"),
                            "reason": ALREADY_APPLIED,
                        }
                    )
                    outcome = RowOutcome.DUPLICATE
            else:
                outcome = RowOutcome.UNASSIGNED
        except PersistenceError as exc:
            report.failed_rows += 1
            report.failures.append(
                RowFailure(
                    row_index=row_index,
                    external_ref=record.external_ref,
                    message=str(exc),
                    raw_row=dict(raw_row),
                )
            )
            logger.warning(
                "Row %d (%s) failed to persist: %s", row_index, record.external_ref, exc
            )
            return RowOutcome.FAILED, record.external_ref

        if outcome is RowOutcome.ASSIGNED:
            report.assigned_rows += 1
            report.assigned_amount += result.amount_assigned
        elif outcome is RowOutcome.DUPLICATE:
            report.duplicate_rows += 1
        else:
            report.unassigned_rows += 1
        report.assignments.append(result)
        return outcome, record.external_ref
