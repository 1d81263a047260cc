"""Tests for row validation.

validate_row is pure, so every test builds a dict row and a reference
date; no database is involved.
"""

from datetime import date

import pytest

from fleetrecon.core.config import Settings
from fleetrecon.schemas.records import RecordType
from fleetrecon.services.ingestion.validator import validate_row

TODAY = date(2024, 6, 1)


def _payment(**overrides) -> dict:
    row = {
        "amount": "500",
        "payment_date": "2024-05-20",
        "agreement_number": "AGR-1001",
        "license_plate": "",
        "customer_name": "",
    }
    row.update(overrides)
    return row


def _fine(**overrides) -> dict:
    row = {
        "violation_date": "2024-05-20",
        "fine_amount": "300",
        "license_plate": "12345",
        "agreement_number": "",
        "violation_points": "",
    }
    row.update(overrides)
    return row


class TestValidRows:
    def test_valid_payment(self):
        assert validate_row(_payment(), RecordType.PAYMENT, 1, today=TODAY) is None

    def test_valid_fine(self):
        assert validate_row(_fine(), RecordType.FINE, 1, today=TODAY) is None

    def test_payment_identified_by_customer_only(self):
        row = _payment(agreement_number="", customer_name="Sara Ali")
        assert validate_row(row, RecordType.PAYMENT, 1, today=TODAY) is None

    def test_payment_up_to_window_in_future_is_accepted(self):
        row = _payment(payment_date="2024-07-01")  # 30 days ahead
        assert validate_row(row, RecordType.PAYMENT, 1, today=TODAY) is None


class TestRejectedRows:
    def test_missing_amount_references_row_index(self):
        issue = validate_row(_payment(amount=""), RecordType.PAYMENT, 2, today=TODAY)

        assert issue is not None
        assert issue.row_index == 2
        assert issue.field_or_reason == "amount"
        assert "Amount is required" in issue.message

    def test_absent_column_is_same_as_blank(self):
        row = _payment()
        del row["amount"]

        issue = validate_row(row, RecordType.PAYMENT, 5, today=TODAY)

        assert issue.row_index == 5
        assert issue.field_or_reason == "amount"

    def test_no_identifier(self):
        row = _fine(license_plate="")

        issue = validate_row(row, RecordType.FINE, 3, today=TODAY)

        assert issue.field_or_reason == "identifier"
        assert "license plate" in issue.message

    def test_all_problems_are_listed(self):
        row = _payment(amount="abc", payment_date="someday")

        issue = validate_row(row, RecordType.PAYMENT, 1, today=TODAY)

        assert issue.field_or_reason == "amount"
        assert "valid number" in issue.message
        assert "valid date" in issue.message

    @pytest.mark.parametrize("record_type", [RecordType.PAYMENT, RecordType.FINE])
    def test_negative_amount_is_rejected_by_default(self, record_type):
        row = _payment(amount="-50") if record_type is RecordType.PAYMENT else _fine(
            fine_amount="-50"
        )

        issue = validate_row(row, record_type, 1, today=TODAY)

        assert issue is not None
        assert "must not be negative" in issue.message

    def test_refund_accepted_when_configured(self):
        config = Settings(allow_payment_refunds=True)

        assert (
            validate_row(
                _payment(amount="(50.00)"), RecordType.PAYMENT, 1, today=TODAY, config=config
            )
            is None
        )

    def test_negative_fine_rejected_even_with_refunds(self):
        config = Settings(allow_payment_refunds=True)

        issue = validate_row(
            _fine(fine_amount="-1"), RecordType.FINE, 1, today=TODAY, config=config
        )

        assert issue.field_or_reason == "fine_amount"

    def test_fine_in_the_future(self):
        issue = validate_row(
            _fine(violation_date="2024-06-02"), RecordType.FINE, 1, today=TODAY
        )

        assert issue.field_or_reason == "violation_date"
        assert "future" in issue.message

    def test_payment_far_in_the_future(self):
        issue = validate_row(
            _payment(payment_date="2030-01-01"), RecordType.PAYMENT, 1, today=TODAY
        )

        assert "future" in issue.message

    def test_implausibly_old_date(self):
        issue = validate_row(
            _payment(payment_date="01/01/1999"), RecordType.PAYMENT, 1, today=TODAY
        )

        assert "implausibly old" in issue.message

    @pytest.mark.parametrize("points", ["two", "-1", "1.5", "\u00b2"])
    def test_violation_points_must_be_whole(self, points: str):
        issue = validate_row(
            _fine(violation_points=points), RecordType.FINE, 1, today=TODAY
        )

        assert issue.field_or_reason == "violation_points"

    @pytest.mark.parametrize("amount", ["12345678901234567", "-99999999999999"])
    def test_amount_beyond_storage_range(self, amount: str):
        config = Settings(allow_payment_refunds=True)

        issue = validate_row(
            _payment(amount=amount), RecordType.PAYMENT, 3, today=TODAY, config=config
        )

        assert issue.field_or_reason == "amount"
        assert "out of range" in issue.message

    def test_largest_storable_amount_is_accepted(self):
        row = _payment(amount="9999999999999.99")
        assert validate_row(row, RecordType.PAYMENT, 1, today=TODAY) is None

    def test_overlong_transaction_id(self):
        issue = validate_row(
            _payment(transaction_id="T" * 101), RecordType.PAYMENT, 1, today=TODAY
        )

        assert issue.field_or_reason == "transaction_id"
        assert "100 characters" in issue.message

    def test_overlong_violation_number(self):
        issue = validate_row(
            _fine(violation_number="V" * 101), RecordType.FINE, 1, today=TODAY
        )

        assert issue.field_or_reason == "violation_number"
