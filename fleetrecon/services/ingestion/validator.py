"""Row-level validation for payment and traffic-fine imports.

``validate_row`` is pure: it looks at one row and either lets it through
(returns ``None``) or explains why it cannot be imported.  It returns a
value instead of raising, so the import session simply records the issue
and moves on.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from fleetrecon.core.config import Settings, settings
from fleetrecon.schemas.batch import ImportIssue
from fleetrecon.schemas.records import RawRow, RecordType
from fleetrecon.services.ingestion.columns import ColumnSet, columns_for
from fleetrecon.services.ingestion.normalizer import normalize_amount, normalize_date

# Stored amounts are NUMERIC(15, 2): at most 13 digits before the point.
MAX_ABS_AMOUNT = Decimal("9999999999999.99")
MAX_REF_LENGTH = 100

_REF_COLUMNS: dict[RecordType, str] = {
    RecordType.PAYMENT: "transaction_id",
    RecordType.FINE: "violation_number",
}


def validate_row(
    row: RawRow,
    record_type: RecordType,
    row_index: int,
    *,
    today: Optional[date] = None,
    config: Settings = settings,
) -> Optional[ImportIssue]:
    """Check one raw row against the rules for its record type.

    Every problem in the row is collected; the returned issue names the
    first offending column and lists all messages.

    Args:
        row: Row keyed by canonical column names.
        record_type: ``payment`` or ``fine``.
        row_index: 1-based data row number.
        today: Reference date for the future-date check (defaults to today).
        config: Settings carrying the validation windows.

    Returns:
        None if the row is valid, otherwise an ``ImportIssue``.
    """
    record_type = RecordType(record_type)
    column_set = columns_for(record_type)
    today = today or date.today()
    problems: list[tuple[str, str]] = []

    for column in column_set.required:
        if not _filled(row, column):
            problems.append((column, f"{column_set.label(column)} is required"))

    if not any(_filled(row, column) for column in column_set.identifiers):
        labels = ", ".join(column_set.label(c).lower() for c in column_set.identifiers)
        problems.append(("identifier", f"One of {labels} is required"))

    if _filled(row, column_set.amount_column):
        problems.extend(_check_amount(row, record_type, column_set, config))

    if _filled(row, column_set.date_column):
        problems.extend(_check_date(row, record_type, column_set, today, config))

    ref_column = _REF_COLUMNS[record_type]
    if _filled(row, ref_column) and len(row[ref_column].strip()) > MAX_REF_LENGTH:
        problems.append(
            (
                ref_column,
                f"{column_set.label(ref_column)} is longer than "
                f"{MAX_REF_LENGTH} characters",
            )
        )

    if record_type is RecordType.FINE and _filled(row, "violation_points"):
        points = row["violation_points"].strip()
        if not points.isdecimal():
            problems.append(
                ("violation_points", "Violation points must be a whole number >= 0")
            )

    if not problems:
        return None
    return ImportIssue(
        row_index=row_index,
        field_or_reason=problems[0][0],
        message="; ".join(message for _, message in problems),
    )


def _check_amount(
    row: RawRow,
    record_type: RecordType,
    column_set: ColumnSet,
    config: Settings,
) -> list[tuple[str, str]]:
    column = column_set.amount_column
    amount = normalize_amount(row[column])
    if amount is None:
        return [(column, f"{column_set.label(column)} must be a valid number")]

    refunds_allowed = record_type is RecordType.PAYMENT and config.allow_payment_refunds
    if amount < 0 and not refunds_allowed:
        return [(column, f"{column_set.label(column)} must not be negative")]
    if abs(amount) > MAX_ABS_AMOUNT:
        return [(column, f"{column_set.label(column)} {amount} is out of range")]
    return []


def _check_date(
    row: RawRow,
    record_type: RecordType,
    column_set: ColumnSet,
    today: date,
    config: Settings,
) -> list[tuple[str, str]]:
    column = column_set.date_column
    label = column_set.label(column)
    parsed = normalize_date(row[column], dayfirst=config.date_dayfirst)
    if parsed is None:
        return [(column, f"{label} must be a valid date (YYYY-MM-DD or DD/MM/YYYY)")]

    max_future_days = (
        config.payment_max_future_days
        if record_type is RecordType.PAYMENT
        else config.fine_max_future_days
    )
    if parsed > today + timedelta(days=max_future_days):
        return [(column, f"{label} {parsed.isoformat()} is in the future")]
    if parsed.year < config.earliest_valid_year:
        return [(column, f"{label} {parsed.isoformat()} is implausibly old")]
    return []


def _filled(row: RawRow, column: str) -> bool:
    value = row.get(column)
    return value is not None and value.strip() != ""
