"""Follow-up work on records an import could not finish.

Unassigned records wait in the store until an operator assigns them by
hand or a later matching pass (after new agreements were created) picks
them up.  Rows that failed to persist are re-submitted as a new batch;
nothing here runs automatically.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fleetrecon.core.config import Settings, settings
from fleetrecon.core.errors import (
    AssignmentConflictError,
    PersistenceError,
    RecordNotFoundError,
)
from fleetrecon.core.logging import get_logger
from fleetrecon.schemas.batch import (
    AssignmentResult,
    AutoAssignSummary,
    BatchReport,
    Confidence,
    ManualAssignResponse,
    RowFailure,
)
from fleetrecon.schemas.records import RecordType
from fleetrecon.services.assignment.balance import BalanceUpdater
from fleetrecon.services.assignment.matcher import AgreementMatcher
from fleetrecon.services.assignment.session import ImportSession, ProgressCallback
from fleetrecon.services.assignment.store import AgreementFilter, RecordStore

logger = get_logger(__name__)


def assign_manually(
    store: RecordStore,
    record_id: uuid.UUID,
    agreement_id: uuid.UUID,
    config: Settings = settings,
) -> ManualAssignResponse:
    """Assign an unassigned stored record to an agreement chosen by an operator.

    The balance moves through the same updater and dedup ledger as an
    import, so a manual assignment can never double-count a record.

    Raises:
        RecordNotFoundError: Unknown record or agreement.
        AssignmentConflictError: The record is already assigned, or the
            agreement can no longer receive assignments.
        PersistenceError: The store failed.
    """
    stored = store.get_record(record_id)
    if stored is None:
        raise RecordNotFoundError(f"Financial record {record_id} not found")
    if stored.agreement_id is not None:
        raise AssignmentConflictError(
            f"Record {stored.record.external_ref} is already assigned "
            f"to agreement {stored.agreement_id}"
        )

    agreement = store.get_agreement(agreement_id)
    if agreement is None:
        raise RecordNotFoundError(f"Agreement {agreement_id} not found")
    if not AgreementMatcher(config.inactive_agreement_statuses).is_live(agreement):
        raise AssignmentConflictError(
            f"Agreement {agreement.agreement_number} is {agreement.status}"
        )

    result = AssignmentResult(
        record=stored.record,
        agreement_id=agreement.id,
        agreement_number=agreement.agreement_number,
        customer_id=agreement.customer_id,
        amount_assigned=stored.record.amount,
        confidence=Confidence.MANUAL,
        reason="manual",
    )
    # Balance first: if marking fails the dedup ledger makes a retry safe.
    update = BalanceUpdater(store).apply_assignment(result)
    store.mark_assigned(record_id, result)

    logger.info(
        "Record %s manually assigned to agreement %s",
        stored.record.external_ref,
        agreement.agreement_number,
    )
    return ManualAssignResponse(
        record_id=record_id,
        agreement_id=agreement.id,
        agreement_number=agreement.agreement_number,
        confidence=Confidence.MANUAL,
        amount_assigned=result.amount_assigned,
        balance_before=update.balance_before,
        balance_after=update.balance_after,
        applied=update.applied,
    )


def auto_assign_pending(
    store: RecordStore,
    record_type: Optional[RecordType] = None,
    config: Settings = settings,
    limit: int = 500,
) -> AutoAssignSummary:
    """Run the matcher again over stored unassigned records.

    Records that still match nothing, or match ambiguously, stay pending.
    A store failure on one record is counted and the pass continues.
    """
    matcher = AgreementMatcher(config.inactive_agreement_statuses)
    updater = BalanceUpdater(store)
    summary = AutoAssignSummary()

    for stored in store.list_unassigned(record_type, limit=limit):
        summary.examined += 1
        try:
            criteria = AgreementFilter.for_record(stored.record)
            candidates = store.find_agreements(criteria)
            result = matcher.assign(stored.record, candidates)
            if not result.is_assigned:
                summary.still_unassigned += 1
                continue
            update = updater.apply_assignment(result)
            store.mark_assigned(stored.id, result)
        except PersistenceError as exc:
            summary.failed += 1
            logger.warning(
                "Auto-assign failed for record %s: %s", stored.record.external_ref, exc
            )
            continue

        summary.assigned += 1
        if update.applied:
            summary.assigned_amount += result.amount_assigned

    logger.info(
        "Auto-assign pass: examined=%d assigned=%d pending=%d failed=%d",
        summary.examined,
        summary.assigned,
        summary.still_unassigned,
        summary.failed,
    )
    return summary


def retry_failed_rows(
    store: RecordStore,
    failures: list[RowFailure],
    record_type: RecordType,
    source_file: Optional[str] = None,
    config: Settings = settings,
    progress: Optional[ProgressCallback] = None,
) -> BatchReport:
    """Re-submit the rows a previous batch failed to persist as a new batch.

    Rows that did make it through the first time are deduplicated by the
    store, so passing a whole report's rows is harmless.
    """
    if not failures:
        raise ValueError("No failed rows to retry")
    rows = [failure.raw_row for failure in failures]
    logger.info("Retrying %d failed %s rows", len(rows), RecordType(record_type).value)
    return ImportSession(store, config=config, progress=progress).run(
        rows, record_type, source_file=source_file
    )
