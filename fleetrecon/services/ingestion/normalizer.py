"""Normalizer utility functions for imported payment and fine rows.

These functions provide a single place to handle the messy reality of
back-office exports: dates in several layouts, amounts carrying currency
symbols and thousands separators, free-text statuses and fine charges,
plates typed with or without spaces.
"""

from __future__ import annotations

import hashlib
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

from dateutil import parser as dateutil_parser
from pydantic import ValidationError

from fleetrecon.core.errors import NormalizationError
from fleetrecon.core.logging import get_logger
from fleetrecon.schemas.records import (
    FinancialRecord,
    FineCategory,
    FineRecord,
    PaymentMethod,
    PaymentRecord,
    PaymentStatus,
    RawRow,
    RecordType,
)
from fleetrecon.services.ingestion.columns import columns_for

logger = get_logger(__name__)

CENTS = Decimal("0.01")

# Date formats we accept, ordered from most specific to least.  Slash and
# dash layouts with the year last are always read day-first.
_DATE_FORMATS: list[str] = [
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d/%m/%Y %H:%M:%S",
    "%d/%m/%Y %H:%M",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
]

# Same layouts for batches configured month-first.
_MONTH_FIRST_FORMATS: list[str] = [
    fmt.replace("%d/%m/%Y", "%m/%d/%Y")
    .replace("%d-%m-%Y", "%m-%d-%Y")
    .replace("%d.%m.%Y", "%m.%d.%Y")
    for fmt in _DATE_FORMATS
]

# Textual dates ("3 Mar 2024", "March 3, 2024") go to dateutil, but only
# when they name a month and carry a full year.
_TEXTUAL_DATE_RE = re.compile(r"(?=.*[A-Za-z]{3,})(?=.*\b\d{4}\b)")

_CURRENCY_TOKEN_RE = re.compile(r"[A-Za-z]{1,3}\$|[$€£¥₹]|\b[A-Za-z]{2,3}\b\.?")
_AMOUNT_RE = re.compile(r"^(?:\d[\d.,]*|[.,]\d+)$")
_GROUPED_RE = re.compile(r"^\d{1,3}([.,])\d{3}(?:\1\d{3})*$")

_PAYMENT_STATUS_MAP: dict[str, PaymentStatus] = {
    "pending": PaymentStatus.PENDING,
    "processing": PaymentStatus.PENDING,
    "waiting": PaymentStatus.PENDING,
    "on_hold": PaymentStatus.PENDING,
    "completed": PaymentStatus.COMPLETED,
    "complete": PaymentStatus.COMPLETED,
    "success": PaymentStatus.COMPLETED,
    "successful": PaymentStatus.COMPLETED,
    "done": PaymentStatus.COMPLETED,
    "paid": PaymentStatus.COMPLETED,
    "settled": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "fail": PaymentStatus.FAILED,
    "error": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "canceled": PaymentStatus.FAILED,
    "rejected": PaymentStatus.FAILED,
    "bounced": PaymentStatus.FAILED,
}

_PAYMENT_METHOD_MAP: dict[str, PaymentMethod] = {
    "cash": PaymentMethod.CASH,
    "bank_transfer": PaymentMethod.BANK_TRANSFER,
    "banktransfer": PaymentMethod.BANK_TRANSFER,
    "wire_transfer": PaymentMethod.BANK_TRANSFER,
    "wiretransfer": PaymentMethod.BANK_TRANSFER,
    "wire": PaymentMethod.BANK_TRANSFER,
    "transfer": PaymentMethod.BANK_TRANSFER,
    "cheque": PaymentMethod.CHEQUE,
    "check": PaymentMethod.CHEQUE,
    "credit_card": PaymentMethod.CREDIT_CARD,
    "debit_card": PaymentMethod.CREDIT_CARD,
    "card": PaymentMethod.CREDIT_CARD,
    "cc": PaymentMethod.CREDIT_CARD,
    "deposit": PaymentMethod.DEPOSIT,
    "invoice": PaymentMethod.INVOICE,
}

# Fine charges are free text; the first keyword found wins.
_FINE_CATEGORY_KEYWORDS: list[tuple[str, FineCategory]] = [
    ("speed", FineCategory.SPEEDING),
    ("radar", FineCategory.SPEEDING),
    ("park", FineCategory.PARKING),
    ("red light", FineCategory.RED_LIGHT),
    ("red signal", FineCategory.RED_LIGHT),
    ("traffic signal", FineCategory.RED_LIGHT),
    ("seat belt", FineCategory.SEATBELT),
    ("seatbelt", FineCategory.SEATBELT),
    ("mobile", FineCategory.MOBILE_PHONE),
    ("phone", FineCategory.MOBILE_PHONE),
]


def normalize_date(date_str: str, dayfirst: bool = True) -> Optional[date]:
    """Try the accepted date layouts and return a calendar date.

    Args:
        date_str: Raw date string from the import file.
        dayfirst: Batch-wide convention for ambiguous ``03/04/2024``.

    Returns:
        Parsed date, or None if no layout fits.
    """
    stripped = date_str.strip().strip("'\"")
    if not stripped:
        return None
    for fmt in _DATE_FORMATS if dayfirst else _MONTH_FIRST_FORMATS:
        try:
            return datetime.strptime(stripped, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(stripped.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    if _TEXTUAL_DATE_RE.match(stripped):
        try:
            return dateutil_parser.parse(stripped, dayfirst=dayfirst).date()
        except (ValueError, OverflowError):
            pass
    logger.debug("Could not parse date: %r", date_str)
    return None


def normalize_amount(value: Optional[str]) -> Optional[Decimal]:
    """Parse a money string into a Decimal rounded to cents.

    Currency symbols and codes, spaces and thousands separators are
    removed.  ``(12.00)``, ``-12.00`` and ``12.00-`` are all negative; the
    sign is kept.

    Args:
        value: Raw amount text, e.g. ``"QAR 1,250.50"``.

    Returns:
        The amount, or None if the text is not a number.
    """
    if value is None:
        return None
    text = str(value).strip().replace("−", "-")
    if not text:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]
    text = _CURRENCY_TOKEN_RE.sub("", text)
    text = re.sub(r"[\s '_]", "", text)
    if text.startswith(("-", "+")):
        negative = negative or text[0] == "-"
        text = text[1:]
    elif text.endswith("-"):
        negative = True
        text = text[:-1]

    if not _AMOUNT_RE.match(text):
        return None
    text = _strip_grouping(text)

    try:
        amount = Decimal(text).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # Unparseable, or too many digits to hold to the cent.
        return None
    return -amount if negative else amount


def _strip_grouping(text: str) -> str:
    """Resolve thousands vs decimal separators to a plain ``1234.56``.

    A single dot is always a decimal point; a single comma is a decimal
    comma unless it groups exactly three digits.
    """
    if "," in text and "." in text:
        decimal_sep = "," if text.rfind(",") > text.rfind(".") else "."
        group_sep = "." if decimal_sep == "," else ","
        return text.replace(group_sep, "").replace(decimal_sep, ".")
    if "," in text:
        if _GROUPED_RE.match(text):
            return text.replace(",", "")
        return text.replace(",", ".") if text.count(",") == 1 else text
    if text.count(".") > 1 and _GROUPED_RE.match(text):
        return text.replace(".", "")
    return text


def normalize_payment_status(status: Optional[str]) -> PaymentStatus:
    """Map a free-text payment status to pending/completed/failed.

    Unknown values become ``pending`` so the row still imports and shows
    up for review.
    """
    if not status or not status.strip():
        return PaymentStatus.PENDING
    key = _fold(status)
    if key in _PAYMENT_STATUS_MAP:
        return _PAYMENT_STATUS_MAP[key]
    logger.warning("Unknown payment status %r, defaulting to pending", status)
    return PaymentStatus.PENDING


def normalize_payment_method(method: Optional[str]) -> PaymentMethod:
    """Map a free-text payment method to the canonical enum; default ``other``."""
    if not method or not method.strip():
        return PaymentMethod.OTHER
    key = _fold(method)
    if key in _PAYMENT_METHOD_MAP:
        return _PAYMENT_METHOD_MAP[key]
    logger.warning("Unknown payment method %r, defaulting to other", method)
    return PaymentMethod.OTHER


def normalize_fine_category(charge: Optional[str]) -> FineCategory:
    """Classify a fine's charge text; default ``other``."""
    if not charge or not charge.strip():
        return FineCategory.OTHER
    text = " ".join(charge.lower().replace("-", " ").split())
    for keyword, category in _FINE_CATEGORY_KEYWORDS:
        if keyword in text:
            return category
    return FineCategory.OTHER


def normalize_reference(ref: str) -> str:
    """Strip whitespace and uppercase an agreement or transaction reference."""
    return ref.strip().upper()


def normalize_plate(plate: str) -> str:
    """'ab 12-345' -> 'AB12345'."""
    return re.sub(r"[\s\-]", "", plate).upper()


def normalize_name(name: str) -> str:
    """Casefold and collapse whitespace so names compare reliably."""
    return " ".join(name.split()).casefold()


def format_amount(amount: Decimal) -> str:
    """Canonical text form of an amount: ``1250.50``."""
    return f"{amount.quantize(CENTS, rounding=ROUND_HALF_UP):f}"


def format_date(day: date) -> str:
    """Canonical text form of a date: ISO ``YYYY-MM-DD``."""
    return day.isoformat()


def fingerprint_ref(
    record_type: RecordType,
    occurred_on: date,
    amount: Decimal,
    identifiers: list[Optional[str]],
) -> str:
    """Deterministic reference for rows whose source carries none.

    The same row imported twice yields the same reference, which keeps
    balance application idempotent.
    """
    parts = [
        RecordType(record_type).value,
        format_date(occurred_on),
        format_amount(amount),
    ]
    parts.extend(i or "" for i in identifiers)
    digest = hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()
    prefix = "PAY" if RecordType(record_type) is RecordType.PAYMENT else "FINE"
    return f"{prefix}-{digest[:16].upper()}"


def normalize_row(
    row: RawRow,
    record_type: RecordType,
    row_index: int,
    *,
    dayfirst: bool = True,
) -> FinancialRecord:
    """Convert a validated row into an immutable financial record.

    Args:
        row: Row keyed by canonical column names.
        record_type: Which variant to build.
        row_index: 1-based data row number, used in log messages.
        dayfirst: Batch-wide date convention.

    Returns:
        A ``PaymentRecord`` or ``FineRecord``.

    Raises:
        NormalizationError: The amount or date cannot be parsed even though
            validation let the row through, or a cell breaks a record
            field limit.
    """
    record_type = RecordType(record_type)
    column_set = columns_for(record_type)

    amount = normalize_amount(row.get(column_set.amount_column))
    if amount is None:
        raise NormalizationError(
            column_set.amount_column,
            f"Cannot read amount {row.get(column_set.amount_column)!r}",
        )
    occurred_on = normalize_date(row.get(column_set.date_column, ""), dayfirst)
    if occurred_on is None:
        raise NormalizationError(
            column_set.date_column,
            f"Cannot read date {row.get(column_set.date_column)!r}",
        )

    agreement_ref = _cell(row, "agreement_number")
    plate = _cell(row, "license_plate")
    customer_name = _cell(row, "customer_name")
    common = {
        "amount": amount,
        "occurred_on": occurred_on,
        "agreement_ref": normalize_reference(agreement_ref) if agreement_ref else None,
        "license_plate": normalize_plate(plate) if plate else None,
        "customer_name": " ".join(customer_name.split()) if customer_name else None,
        "raw_payload": dict(row),
    }
    identifiers = [
        common["agreement_ref"],
        common["license_plate"],
        normalize_name(customer_name) if customer_name else None,
    ]

    try:
        record = _build_record(
            record_type, row, amount, occurred_on, common, identifiers
        )
    except ValidationError as exc:
        error = exc.errors()[0]
        field_name = str(error["loc"][0]) if error["loc"] else "row"
        raise NormalizationError(field_name, f"{field_name}: {error['msg']}") from exc

    logger.debug(
        "Normalized row %d: %s ref=%s amount=%s",
        row_index,
        record_type.value,
        record.external_ref,
        record.amount,
    )
    return record


def _build_record(
    record_type: RecordType,
    row: RawRow,
    amount: Decimal,
    occurred_on: date,
    common: dict,
    identifiers: list[Optional[str]],
) -> FinancialRecord:
    if record_type is RecordType.PAYMENT:
        ref = _cell(row, "transaction_id")
        return PaymentRecord(
            external_ref=(
                normalize_reference(ref)
                if ref
                else fingerprint_ref(record_type, occurred_on, amount, identifiers)
            ),
            method=normalize_payment_method(row.get("payment_method")),
            status=normalize_payment_status(row.get("status")),
            description=_cell(row, "description"),
            **common,
        )

    ref = _cell(row, "violation_number")
    points = _cell(row, "violation_points")
    try:
        violation_points = int(points) if points else 0
    except ValueError as exc:
        raise NormalizationError(
            "violation_points", f"Cannot read violation points {points!r}"
        ) from exc
    return FineRecord(
        external_ref=(
            normalize_reference(ref)
            if ref
            else fingerprint_ref(record_type, occurred_on, amount, identifiers)
        ),
        category=normalize_fine_category(row.get("violation_charge")),
        location=_cell(row, "fine_location"),
        violation_points=violation_points,
        **common,
    )


def _cell(row: RawRow, column: str) -> Optional[str]:
    """Stripped cell text, or None when absent or blank."""
    value = row.get(column)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _fold(value: str) -> str:
    return re.sub(r"[\s\-]+", "_", value.strip().lower())
