"""Record store: the persistence seam of the import pipeline.

The matcher, balance updater and import session only talk to a
``RecordStore``.  ``SqlRecordStore`` implements it over a SQLAlchemy
session; every write commits on its own, so one row's failure is rolled
back without touching rows already imported.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fleetrecon.core.errors import PersistenceError
from fleetrecon.core.logging import get_logger
from fleetrecon.models import (
    Agreement,
    BalanceApplication,
    Customer,
    FinancialRecordEntry,
    ImportLog,
    Vehicle,
)
from fleetrecon.schemas.agreement import AgreementCandidate
from fleetrecon.schemas.batch import AssignmentResult, BatchReport, Confidence
from fleetrecon.schemas.records import (
    FinancialRecord,
    FineCategory,
    FineRecord,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    RecordType,
)
from fleetrecon.services.ingestion.normalizer import normalize_name

logger = get_logger(__name__)

# (agreement_id, external_ref)
DedupKey = tuple[uuid.UUID, str]


@dataclass(frozen=True)
class AgreementFilter:
    """Which agreements a record could belong to.

    An agreement qualifies when its number or id is in ``refs``, or when it
    matches every supplied secondary key and covers ``on_date``.
    """

    refs: tuple[str, ...] = ()
    license_plate: Optional[str] = None
    customer_name: Optional[str] = None
    on_date: Optional[date] = None

    @classmethod
    def for_record(cls, record: FinancialRecord) -> AgreementFilter:
        return cls(
            refs=(record.agreement_ref,) if record.agreement_ref else (),
            license_plate=record.license_plate,
            customer_name=record.customer_name,
            on_date=record.occurred_on,
        )

    @property
    def has_secondary_keys(self) -> bool:
        return bool(self.license_plate or self.customer_name)


@dataclass(frozen=True)
class StoredRecord:
    """A persisted financial record and its current assignment."""

    id: uuid.UUID
    record: FinancialRecord
    agreement_id: Optional[uuid.UUID] = None
    confidence: Confidence = Confidence.NONE
    created: bool = True


class RecordStore(ABC):
    """Query/insert/update interface over the transactional record store."""

    @abstractmethod
    def find_agreements(self, criteria: AgreementFilter) -> list[AgreementCandidate]:
        """Return every agreement matching ``criteria`` (read-only)."""

    @abstractmethod
    def get_agreement(self, agreement_id: uuid.UUID) -> Optional[AgreementCandidate]:
        """Look up one agreement by id."""

    @abstractmethod
    def insert_financial_record(
        self,
        record: FinancialRecord,
        result: AssignmentResult,
        batch_id: Optional[uuid.UUID],
    ) -> StoredRecord:
        """Store a record as given, or return the one already under its ref.

        An existing record is returned unchanged; ``mark_assigned`` is the
        only way a stored record gains an agreement.
        """

    @abstractmethod
    def has_applied(self, dedup_key: DedupKey) -> bool:
        """True when the dedup key already moved the agreement's balance."""

    @abstractmethod
    def get_balance(self, agreement_id: uuid.UUID) -> Decimal:
        """Current balance of an agreement."""

    @abstractmethod
    def update_agreement_balance(
        self,
        agreement_id: uuid.UUID,
        delta: Decimal,
        dedup_key: DedupKey,
        batch_id: Optional[uuid.UUID] = None,
    ) -> Optional[tuple[Decimal, Decimal]]:
        """Apply ``delta`` once per dedup key.

        Returns:
            ``(balance_before, balance_after)``, or None when the dedup key
            was already applied.
        """

    @abstractmethod
    def mark_assigned(self, record_id: uuid.UUID, result: AssignmentResult) -> None:
        """Link a stored record to the agreement chosen in ``result``."""

    @abstractmethod
    def get_record(self, record_id: uuid.UUID) -> Optional[StoredRecord]:
        """Look up one stored record."""

    @abstractmethod
    def list_unassigned(
        self, record_type: Optional[RecordType] = None, limit: int = 500
    ) -> list[StoredRecord]:
        """Stored records still waiting for an agreement, oldest first."""

    @abstractmethod
    def save_import_log(self, report: BatchReport) -> None:
        """Persist the summary of a finished batch."""


class SqlRecordStore(RecordStore):
    """``RecordStore`` backed by the SQLAlchemy models."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # ── Agreements ───────────────────────────────────────────────────

    def find_agreements(self, criteria: AgreementFilter) -> list[AgreementCandidate]:
        conditions = []

        if criteria.refs:
            upper_refs = [r.strip().upper() for r in criteria.refs]
            ref_condition = func.upper(Agreement.agreement_number).in_(upper_refs)
            ids = [_as_uuid(r) for r in criteria.refs]
            ids = [i for i in ids if i is not None]
            if ids:
                ref_condition = or_(ref_condition, Agreement.id.in_(ids))
            conditions.append(ref_condition)

        if criteria.has_secondary_keys and criteria.on_date is not None:
            secondary = [
                Agreement.start_date <= criteria.on_date,
                or_(
                    Agreement.end_date.is_(None),
                    Agreement.end_date >= criteria.on_date,
                ),
            ]
            if criteria.license_plate:
                plate_column = func.upper(
                    func.replace(func.replace(Vehicle.license_plate, " ", ""), "-", "")
                )
                secondary.append(plate_column == criteria.license_plate)
            if criteria.customer_name:
                secondary.append(
                    func.lower(Customer.full_name)
                    == normalize_name(criteria.customer_name)
                )
            conditions.append(and_(*secondary))

        if not conditions:
            return []

        try:
            agreements = (
                self.db.query(Agreement)
                .outerjoin(Vehicle, Agreement.vehicle_id == Vehicle.id)
                .outerjoin(Customer, Agreement.customer_id == Customer.id)
                .filter(or_(*conditions))
                .order_by(Agreement.start_date)
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._read_failed("Agreement lookup", exc) from exc

        return [AgreementCandidate.from_agreement(a) for a in agreements]

    def get_agreement(self, agreement_id: uuid.UUID) -> Optional[AgreementCandidate]:
        try:
            agreement = self.db.get(Agreement, agreement_id)
        except SQLAlchemyError as exc:
            raise self._read_failed(f"Agreement {agreement_id} lookup", exc) from exc
        return AgreementCandidate.from_agreement(agreement) if agreement else None

    # ── Financial records ────────────────────────────────────────────

    def insert_financial_record(
        self,
        record: FinancialRecord,
        result: AssignmentResult,
        batch_id: Optional[uuid.UUID],
    ) -> StoredRecord:
        try:
            existing = self._find_entry(record.record_type, record.external_ref)
            if existing is not None:
                return self._to_stored(existing, created=False)

            entry = FinancialRecordEntry(
                id=uuid.uuid4(),
                record_type=record.record_type,
                external_ref=record.external_ref,
                amount=record.amount,
                occurred_on=record.occurred_on,
                kind=record.kind,
                status=(
                    record.status.value if isinstance(record, PaymentRecord) else None
                ),
                agreement_ref=record.agreement_ref,
                license_plate=record.license_plate,
                customer_name=record.customer_name,
                description=(
                    record.description
                    if isinstance(record, PaymentRecord)
                    else record.location
                ),
                violation_points=(
                    record.violation_points if isinstance(record, FineRecord) else None
                ),
                batch_id=batch_id,
                raw_data=record.raw_payload,
            )
            self._apply_result(entry, result)
            self.db.add(entry)
            self.db.commit()
            return self._to_stored(entry, created=True)
        except IntegrityError as exc:
            # Another import stored the same ref between our read and write.
            self.db.rollback()
            try:
                existing = self._find_entry(record.record_type, record.external_ref)
            except SQLAlchemyError as lookup_exc:
                raise self._read_failed(
                    f"Lookup of {record.external_ref}", lookup_exc
                ) from lookup_exc
            if existing is None:
                raise PersistenceError(
                    f"Cannot store {record.external_ref}: {exc.orig}"
                ) from exc
            return self._to_stored(existing, created=False)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(
                f"Cannot store {record.external_ref}: {exc}"
            ) from exc

    def mark_assigned(self, record_id: uuid.UUID, result: AssignmentResult) -> None:
        try:
            entry = self.db.get(FinancialRecordEntry, record_id)
            if entry is None:
                raise PersistenceError(f"Financial record {record_id} not found")
            self._apply_result(entry, result)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Cannot assign record {record_id}: {exc}") from exc

    def get_record(self, record_id: uuid.UUID) -> Optional[StoredRecord]:
        try:
            entry = self.db.get(FinancialRecordEntry, record_id)
        except SQLAlchemyError as exc:
            raise self._read_failed(f"Record {record_id} lookup", exc) from exc
        return self._to_stored(entry, created=False) if entry else None

    def list_unassigned(
        self, record_type: Optional[RecordType] = None, limit: int = 500
    ) -> list[StoredRecord]:
        query = self.db.query(FinancialRecordEntry).filter(
            FinancialRecordEntry.agreement_id.is_(None)
        )
        if record_type is not None:
            query = query.filter(
                FinancialRecordEntry.record_type == RecordType(record_type).value
            )
        try:
            entries = (
                query.order_by(
                    FinancialRecordEntry.occurred_on, FinancialRecordEntry.id
                )
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as exc:
            raise self._read_failed("Unassigned record listing", exc) from exc
        return [self._to_stored(e, created=False) for e in entries]

    # ── Balances ─────────────────────────────────────────────────────

    def has_applied(self, dedup_key: DedupKey) -> bool:
        try:
            return self._applied(dedup_key)
        except SQLAlchemyError as exc:
            raise self._read_failed(f"Dedup lookup of {dedup_key[1]}", exc) from exc

    def get_balance(self, agreement_id: uuid.UUID) -> Decimal:
        try:
            agreement = self.db.get(Agreement, agreement_id)
        except SQLAlchemyError as exc:
            raise self._read_failed(f"Balance read of {agreement_id}", exc) from exc
        if agreement is None:
            raise PersistenceError(f"Agreement {agreement_id} not found")
        return Decimal(agreement.balance or 0)

    def _applied(self, dedup_key: DedupKey) -> bool:
        agreement_id, external_ref = dedup_key
        return (
            self.db.query(BalanceApplication.id)
            .filter(
                BalanceApplication.agreement_id == agreement_id,
                BalanceApplication.external_ref == external_ref,
            )
            .first()
            is not None
        )

    def update_agreement_balance(
        self,
        agreement_id: uuid.UUID,
        delta: Decimal,
        dedup_key: DedupKey,
        batch_id: Optional[uuid.UUID] = None,
    ) -> Optional[tuple[Decimal, Decimal]]:
        try:
            # Re-read under a row lock right before writing.
            agreement = (
                self.db.query(Agreement)
                .filter(Agreement.id == agreement_id)
                .populate_existing()
                .with_for_update()
                .one_or_none()
            )
            if agreement is None:
                raise PersistenceError(f"Agreement {agreement_id} not found")
            if self._applied(dedup_key):
                self.db.rollback()
                return None

            before = Decimal(agreement.balance or 0)
            after = before + delta
            agreement.balance = after
            self.db.add(
                BalanceApplication(
                    id=uuid.uuid4(),
                    agreement_id=agreement_id,
                    external_ref=dedup_key[1],
                    delta=delta,
                    balance_after=after,
                    batch_id=batch_id,
                )
            )
            self.db.commit()
        except IntegrityError:
            # The unique dedup key lost a race with a concurrent import.
            self.db.rollback()
            logger.info("Dedup key %s applied concurrently, skipping", dedup_key)
            return None
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(
                f"Cannot update balance of agreement {agreement_id}: {exc}"
            ) from exc
        return before, after

    # ── Import logs ──────────────────────────────────────────────────

    def save_import_log(self, report: BatchReport) -> None:
        try:
            self.db.add(
                ImportLog(
                    id=report.batch_id,
                    record_type=report.record_type.value,
                    source_file=report.source_file,
                    status=report.status.value,
                    total_rows=report.total_rows,
                    valid_rows=report.valid_rows,
                    invalid_rows=report.invalid_rows,
                    assigned_rows=report.assigned_rows,
                    unassigned_rows=report.unassigned_rows,
                    duplicate_rows=report.duplicate_rows,
                    failed_rows=report.failed_rows,
                    total_amount=report.total_amount,
                    assigned_amount=report.assigned_amount,
                    issues=[i.model_dump() for i in report.issues]
                    + [
                        {
                            "row_index": f.row_index,
                            "field_or_reason": "persistence",
                            "message": f.message,
                        }
                        for f in report.failures
                    ],
                    started_at=report.started_at,
                    completed_at=report.completed_at or datetime.now(timezone.utc),
                )
            )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise PersistenceError(f"Cannot save import log: {exc}") from exc

    # ── Private helpers ──────────────────────────────────────────────

    def _read_failed(self, what: str, exc: SQLAlchemyError) -> PersistenceError:
        self.db.rollback()
        return PersistenceError(f"{what} failed: {exc}")

    def _find_entry(
        self, record_type: str, external_ref: str
    ) -> Optional[FinancialRecordEntry]:
        return (
            self.db.query(FinancialRecordEntry)
            .filter(
                FinancialRecordEntry.record_type == record_type,
                FinancialRecordEntry.external_ref == external_ref,
            )
            .one_or_none()
        )

    @staticmethod
    def _apply_result(entry: FinancialRecordEntry, result: AssignmentResult) -> None:
        entry.agreement_id = result.agreement_id if result.is_assigned else None
        entry.customer_id = result.customer_id if result.is_assigned else None
        entry.confidence = result.confidence.value
        entry.assignment_status = "assigned" if result.is_assigned else "unassigned"

    @staticmethod
    def _to_stored(entry: FinancialRecordEntry, created: bool) -> StoredRecord:
        return StoredRecord(
            id=entry.id,
            record=_entry_to_record(entry),
            agreement_id=entry.agreement_id,
            confidence=Confidence(entry.confidence),
            created=created,
        )


def _entry_to_record(entry: FinancialRecordEntry) -> FinancialRecord:
    """Rebuild the immutable domain record from its stored row."""
    common = {
        "external_ref": entry.external_ref,
        "amount": Decimal(entry.amount),
        "occurred_on": entry.occurred_on,
        "agreement_ref": entry.agreement_ref,
        "license_plate": entry.license_plate,
        "customer_name": entry.customer_name,
        "raw_payload": entry.raw_data or {},
    }
    if entry.record_type == RecordType.PAYMENT.value:
        return PaymentRecord(
            method=PaymentMethod(entry.kind or PaymentMethod.OTHER.value),
            status=PaymentStatus(entry.status or PaymentStatus.PENDING.value),
            description=entry.description,
            **common,
        )
    return FineRecord(
        category=FineCategory(entry.kind or FineCategory.OTHER.value),
        location=entry.description,
        violation_points=entry.violation_points or 0,
        **common,
    )


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(value.strip())
    except ValueError:
        return None
