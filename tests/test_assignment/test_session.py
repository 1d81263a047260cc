"""Import session tests against the SQLite-backed record store.

These run the whole pipeline: header check, validation, normalization,
matching, record storage and balance application.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from fleetrecon.core.errors import PersistenceError, StructuralImportError
from fleetrecon.models import BalanceApplication, FinancialRecordEntry, ImportLog
from fleetrecon.schemas.batch import Confidence, RowOutcome, SessionState
from fleetrecon.schemas.records import RecordType
from fleetrecon.services.assignment.pending import auto_assign_pending
from fleetrecon.services.assignment.session import ImportSession
from fleetrecon.services.assignment.store import SqlRecordStore

HEADERS = [
    "agreement_number",
    "license_plate",
    "amount",
    "payment_date",
    "transaction_id",
]


def _row(agreement="", plate="", amount="", on="", ref="") -> dict:
    return dict(zip(HEADERS, [agreement, plate, amount, on, ref]))


@pytest.fixture
def agreements(make_agreement):
    """Two active leases owing 1000.00 each."""
    owed = Decimal("1000.00")
    return {
        "AGR-1001": make_agreement(
            "AGR-1001", "11111", "Sara Ali", date(2024, 1, 1), balance=owed
        ),
        "AGR-1002": make_agreement(
            "AGR-1002",
            "22222",
            "Omar Saleh",
            date(2024, 1, 1),
            date(2024, 12, 31),
            balance=owed,
        ),
    }


def _run(store, rows, record_type=RecordType.PAYMENT, **kwargs):
    return ImportSession(store).run(rows, record_type, headers=HEADERS, **kwargs)


class TestThreeRowScenario:
    """Row 1 exact, row 2 missing its amount, row 3 matched by plate and date."""

    ROWS = [
        _row("AGR-1001", "", "500", "2024-03-01", "TXN-1"),
        _row("AGR-1001", "", "", "2024-03-02", "TXN-2"),
        _row("", "22222", "200", "2024-03-03", "TXN-3"),
    ]

    def test_report(self, store, agreements):
        report = _run(store, self.ROWS, source_file="march.csv")

        assert report.status is SessionState.PARTIALLY_COMPLETED
        assert report.total_rows == 3
        assert report.valid_rows == 2
        assert report.invalid_rows == 1
        assert [(i.row_index, i.field_or_reason) for i in report.issues] == [
            (2, "amount")
        ]
        assert [
            (a.agreement_number, a.amount_assigned, a.confidence)
            for a in report.assignments
        ] == [
            ("AGR-1001", Decimal("500.00"), Confidence.EXACT),
            ("AGR-1002", Decimal("200.00"), Confidence.HEURISTIC),
        ]
        assert report.assigned_rows == 2
        assert report.total_amount == Decimal("700.00")
        assert report.assigned_amount == Decimal("700.00")
        assert report.started_at.tzinfo is not None
        assert report.started_at <= report.completed_at

    def test_balances(self, store, agreements):
        _run(store, self.ROWS)

        assert agreements["AGR-1001"].balance == Decimal("500.00")
        assert agreements["AGR-1002"].balance == Decimal("800.00")

    def test_import_log(self, store, agreements, db_session):
        report = _run(store, self.ROWS, source_file="march.csv")

        log = db_session.get(ImportLog, report.batch_id)
        assert log is not None
        assert log.status == "partially_completed"
        assert log.source_file == "march.csv"
        assert (log.valid_rows, log.invalid_rows, log.assigned_rows) == (2, 1, 2)
        assert log.issues[0]["row_index"] == 2


class TestIdempotence:
    def test_same_ref_in_two_batches_applies_once(self, store, agreements):
        row = _row("AGR-1001", "", "250", "2024-04-01", "TXN-9")

        first = _run(store, [row])
        second = _run(store, [row])

        assert first.assigned_rows == 1
        assert second.assigned_rows == 0
        assert second.duplicate_rows == 1
        assert second.assigned_amount == Decimal("0.00")
        assert second.assignments[0].amount_assigned == Decimal("0.00")
        assert second.status is SessionState.COMPLETED
        assert agreements["AGR-1001"].balance == Decimal("750.00")

    def test_whole_batch_twice_changes_balances_once(self, store, agreements):
        rows = TestThreeRowScenario.ROWS

        _run(store, rows)
        after_first = {k: a.balance for k, a in agreements.items()}
        _run(store, rows)

        assert {k: a.balance for k, a in agreements.items()} == after_first

    def test_duplicate_within_one_batch(self, store, agreements, db_session):
        row = _row("AGR-1002", "", "100", "2024-04-01", "TXN-5")

        report = _run(store, [row, dict(row)])

        assert report.assigned_rows == 1
        assert report.duplicate_rows == 1
        assert db_session.query(BalanceApplication).count() == 1
        assert db_session.query(FinancialRecordEntry).count() == 1

    def test_rows_without_reference_dedup_by_fingerprint(self, store, agreements):
        row = _row("AGR-1001", "", "80", "2024-04-02", "")

        _run(store, [row])
        _run(store, [row])

        assert agreements["AGR-1001"].balance == Decimal("920.00")


class TestSumInvariant:
    def test_assigned_never_exceeds_validated(self, store, agreements):
        rows = [
            _row("AGR-1001", "", "100", "2024-02-01", "T-1"),
            _row("", "99999", "40", "2024-02-01", "T-2"),  # unassigned
            _row("AGR-1001", "", "100", "2024-02-01", "T-1"),  # duplicate
            _row("AGR-1002", "", "abc", "2024-02-01", "T-3"),  # rejected
        ]

        report = _run(store, rows)

        assigned = sum((a.amount_assigned for a in report.assignments), Decimal(0))
        assert assigned == report.assigned_amount == Decimal("100.00")
        assert assigned <= report.total_amount == Decimal("240.00")


class TestOutcomes:
    def test_unassigned_record_is_stored_for_review(self, store, agreements):
        report = _run(store, [_row("", "99999", "40", "2024-02-01", "T-X")])

        assert report.status is SessionState.COMPLETED
        assert report.unassigned_rows == 1
        assert report.unassigned[0].reason == "no_candidates"

        pending = store.list_unassigned(RecordType.PAYMENT)
        assert [p.record.external_ref for p in pending] == ["T-X"]
        assert pending[0].agreement_id is None

    def test_fine_raises_balance(self, store, agreements):
        rows = [
            {
                "license_plate": "11111",
                "violation_date": "2024-05-05",
                "fine_amount": "300",
                "violation_number": "V-100",
            }
        ]

        report = ImportSession(store).run(rows, RecordType.FINE)

        assert report.assignments[0].confidence is Confidence.HEURISTIC
        assert agreements["AGR-1001"].balance == Decimal("1300.00")

    def test_progress_events(self, store, agreements):
        events = []
        rows = TestThreeRowScenario.ROWS

        session = ImportSession(store, progress=events.append)
        session.run(rows, RecordType.PAYMENT, headers=HEADERS)

        assert [e.row_index for e in events] == [1, 2, 3]
        assert [e.processed for e in events] == [1, 2, 3]
        assert [e.outcome for e in events] == [
            RowOutcome.ASSIGNED,
            RowOutcome.REJECTED,
            RowOutcome.ASSIGNED,
        ]
        assert {e.batch_id for e in events} == {session.batch_id}

    def test_aliased_headers(self, store, agreements):
        rows = [{"Agreement No.": "AGR-1001", "Amount": "QAR 50", "Date": "05/03/2024"}]

        report = ImportSession(store).run(rows, RecordType.PAYMENT)

        assert report.assigned_rows == 1
        assert report.assignments[0].record.occurred_on == date(2024, 3, 5)


class TestStructuralErrors:
    def test_bad_header_rejects_batch(self, store, agreements, db_session):
        rows = [{"amount": "10", "payment_date": "2024-01-01"}]

        with pytest.raises(StructuralImportError):
            ImportSession(store).run(rows, RecordType.PAYMENT)

        assert db_session.query(FinancialRecordEntry).count() == 0
        assert db_session.query(ImportLog).count() == 0

    def test_session_runs_one_batch_only(self, store, agreements):
        session = ImportSession(store)
        session.run([_row("AGR-1001", "", "1", "2024-01-02", "T")], RecordType.PAYMENT)

        with pytest.raises(RuntimeError):
            session.run([], RecordType.PAYMENT, headers=HEADERS)


class _FlakyStore(SqlRecordStore):
    """Fails to store one chosen reference."""

    def __init__(self, db, failing_ref: str) -> None:
        super().__init__(db)
        self.failing_ref = failing_ref

    def insert_financial_record(self, record, result, batch_id):
        if record.external_ref == self.failing_ref:
            raise PersistenceError(f"could not store {record.external_ref}")
        return super().insert_financial_record(record, result, batch_id)


class TestPersistenceFailures:
    def test_failed_row_does_not_abort_batch(self, db_session, agreements):
        store = _FlakyStore(db_session, failing_ref="T-2")
        rows = [
            _row("AGR-1001", "", "10", "2024-02-01", "T-1"),
            _row("AGR-1001", "", "20", "2024-02-01", "T-2"),
            _row("AGR-1002", "", "30", "2024-02-01", "T-3"),
        ]

        report = _run(store, rows)

        assert report.status is SessionState.PARTIALLY_COMPLETED
        assert report.failed_rows == 1
        assert report.assigned_rows == 2
        failure = report.failures[0]
        assert (failure.row_index, failure.external_ref) == (2, "T-2")
        assert failure.raw_row == rows[1]
        assert agreements["AGR-1001"].balance == Decimal("990.00")
        assert agreements["AGR-1002"].balance == Decimal("970.00")

    def test_failed_balance_leaves_record_pending(self, db_session, agreements):
        class _NoBalanceStore(SqlRecordStore):
            def update_agreement_balance(self, *args, **kwargs):
                raise PersistenceError("deadlock detected")

        rows = [_row("AGR-1001", "", "100", "2024-02-01", "T-7")]
        report = _run(_NoBalanceStore(db_session), rows)

        assert report.failed_rows == 1
        entry = db_session.query(FinancialRecordEntry).one()
        assert entry.agreement_id is None
        assert entry.assignment_status == "unassigned"
        assert agreements["AGR-1001"].balance == Decimal("1000.00")

        store = SqlRecordStore(db_session)
        assert [p.record.external_ref for p in store.list_unassigned()] == ["T-7"]
        summary = auto_assign_pending(store)
        assert summary.assigned == 1
        assert agreements["AGR-1001"].balance == Decimal("900.00")

    def test_reimport_after_failed_balance_applies_it(self, db_session, agreements):
        class _NoBalanceStore(SqlRecordStore):
            def update_agreement_balance(self, *args, **kwargs):
                raise PersistenceError("deadlock detected")

        rows = [_row("AGR-1002", "", "60", "2024-02-01", "T-8")]
        _run(_NoBalanceStore(db_session), rows)

        report = _run(SqlRecordStore(db_session), rows)

        assert report.assigned_rows == 1
        assert agreements["AGR-1002"].balance == Decimal("940.00")
        assert db_session.query(FinancialRecordEntry).one().agreement_id == (
            agreements["AGR-1002"].id
        )

    def test_dropped_connection_on_dedup_read(self, db_session, agreements):
        class _DroppedConnectionStore(SqlRecordStore):
            def _applied(self, dedup_key):
                if dedup_key[1] == "T-2":
                    raise OperationalError(
                        "SELECT balance_applications.id", {}, Exception("closed")
                    )
                return super()._applied(dedup_key)

        rows = [
            _row("AGR-1001", "", "10", "2024-02-01", "T-1"),
            _row("AGR-1001", "", "20", "2024-02-01", "T-2"),
            _row("AGR-1002", "", "30", "2024-02-01", "T-3"),
        ]

        report = _run(_DroppedConnectionStore(db_session), rows)

        assert report.failed_rows == 1
        assert report.failures[0].external_ref == "T-2"
        assert "Dedup lookup" in report.failures[0].message
        assert report.assigned_rows == 2
        assert agreements["AGR-1001"].balance == Decimal("990.00")


class TestCellsBeyondRecordLimits:
    """Cells the record fields cannot hold reject their row, not the batch."""

    def test_oversized_amount(self, store, agreements):
        rows = [
            _row("AGR-1001", "", "12345678901234567", "2024-02-01", "T-BIG"),
            _row("AGR-1001", "", "10", "2024-02-01", "T-OK"),
        ]

        report = _run(store, rows)

        assert report.status is SessionState.PARTIALLY_COMPLETED
        assert [(i.row_index, i.field_or_reason) for i in report.issues] == [
            (1, "amount")
        ]
        assert report.assigned_rows == 1
        assert agreements["AGR-1001"].balance == Decimal("990.00")

    def test_overlong_reference(self, store, agreements):
        rows = [
            _row("AGR-1001", "", "10", "2024-02-01", "T" * 101),
            _row("AGR-1001", "", "10", "2024-02-01", "T-OK"),
        ]

        report = _run(store, rows)

        assert [(i.row_index, i.field_or_reason) for i in report.issues] == [
            (1, "transaction_id")
        ]
        assert report.assigned_rows == 1

    def test_unreadable_violation_points(self, store, agreements):
        def fine(ref: str, points: str) -> dict:
            return {
                "license_plate": "11111",
                "violation_date": "2024-05-05",
                "fine_amount": "300",
                "violation_number": ref,
                "violation_points": points,
            }

        report = ImportSession(store).run(
            [fine("V-1", "\u00b2"), fine("V-2", "2")], RecordType.FINE
        )

        assert [(i.row_index, i.field_or_reason) for i in report.issues] == [
            (1, "violation_points")
        ]
        assert report.assigned_rows == 1
        assert agreements["AGR-1001"].balance == Decimal("1300.00")
