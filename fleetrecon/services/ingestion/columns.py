"""Column catalogue for payment and traffic-fine imports.

Source files arrive with many spellings of the same header
(``Agreement_Number``, ``Agreement No.``, ``agreement number``).  Headers
are folded to a key and mapped onto one canonical column name, and each
record type declares which canonical columns it needs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from fleetrecon.core.errors import StructuralImportError
from fleetrecon.schemas.records import RecordType


@dataclass(frozen=True)
class ColumnSet:
    """Canonical columns accepted for one record type.

    Attributes:
        required: Columns every row must fill in.
        identifiers: Columns that link a row to an agreement; at least one
            must be present in the header and non-blank in each row.
        optional: Columns that may be present and blank.
        amount_column: Column holding the money amount.
        date_column: Column holding the occurrence date.
    """

    required: tuple[str, ...]
    identifiers: tuple[str, ...]
    optional: tuple[str, ...]
    amount_column: str
    date_column: str
    labels: dict[str, str] = field(default_factory=dict)

    @property
    def known(self) -> frozenset[str]:
        return frozenset(self.required + self.identifiers + self.optional)

    def label(self, column: str) -> str:
        """Human-readable column name for issue messages."""
        return self.labels.get(column, column.replace("_", " ").capitalize())


PAYMENT_COLUMNS = ColumnSet(
    required=("amount", "payment_date"),
    identifiers=("agreement_number", "license_plate", "customer_name"),
    optional=("transaction_id", "payment_method", "status", "description"),
    amount_column="amount",
    date_column="payment_date",
    labels={"agreement_number": "Agreement number", "payment_date": "Payment date"},
)

FINE_COLUMNS = ColumnSet(
    required=("violation_date", "fine_amount"),
    identifiers=("license_plate", "agreement_number"),
    optional=(
        "serial_number",
        "violation_number",
        "fine_location",
        "violation_charge",
        "violation_points",
        "customer_name",
    ),
    amount_column="fine_amount",
    date_column="violation_date",
    labels={"agreement_number": "Agreement number", "fine_amount": "Fine amount"},
)

_COLUMN_SETS: dict[RecordType, ColumnSet] = {
    RecordType.PAYMENT: PAYMENT_COLUMNS,
    RecordType.FINE: FINE_COLUMNS,
}

# Folded header -> canonical column.  Canonical names map to themselves
# implicitly.
_HEADER_ALIASES: dict[str, str] = {
    "agreement": "agreement_number",
    "agreement_no": "agreement_number",
    "agreemgent_number": "agreement_number",
    "lease_id": "agreement_number",
    "lease_number": "agreement_number",
    "contract_number": "agreement_number",
    "plate": "license_plate",
    "plate_number": "license_plate",
    "plate_no": "license_plate",
    "vehicle_plate": "license_plate",
    "customer": "customer_name",
    "customer_full_name": "customer_name",
    "full_name": "customer_name",
    "transaction_date": "payment_date",
    "paid_on": "payment_date",
    "transaction_ref": "transaction_id",
    "reference": "transaction_id",
    "txn_id": "transaction_id",
    "method": "payment_method",
    "payment_type": "payment_method",
    "payment_status": "status",
    "serial": "serial_number",
    "violation_no": "violation_number",
    "fine_number": "violation_number",
    "fine_date": "violation_date",
    "location": "fine_location",
    "charge": "violation_charge",
    "fine_type": "violation_charge",
    "fine": "fine_amount",
    "points": "violation_points",
}

# Headers whose meaning depends on the record type.
_TYPED_ALIASES: dict[RecordType, dict[str, str]] = {
    RecordType.PAYMENT: {"date": "payment_date", "amount": "amount"},
    RecordType.FINE: {"date": "violation_date", "amount": "fine_amount"},
}

_FOLD_RE = re.compile(r"[^a-z0-9]+")


def columns_for(record_type: RecordType) -> ColumnSet:
    """Return the column catalogue for ``record_type``."""
    return _COLUMN_SETS[RecordType(record_type)]


def fold_header(header: str) -> str:
    """'Agreement No.' -> 'agreement_no', ' Fine Amount ' -> 'fine_amount'."""
    return _FOLD_RE.sub("_", header.strip().lower()).strip("_")


def canonical_column(header: str, record_type: RecordType) -> str:
    """Map a raw header onto the canonical column name for ``record_type``.

    Unknown headers are returned folded, so they can still be reported.
    """
    folded = fold_header(header)
    typed = _TYPED_ALIASES[RecordType(record_type)]
    if folded in typed:
        return typed[folded]
    alias = _HEADER_ALIASES.get(folded)
    return alias if alias else folded


def canonicalize_row(row: dict, record_type: RecordType) -> dict[str, str]:
    """Re-key a row by canonical column names; ``None`` cells become ''."""
    out: dict[str, str] = {}
    for key, value in row.items():
        if key is None:
            continue
        out[canonical_column(str(key), record_type)] = (
            "" if value is None else str(value)
        )
    return out


def check_headers(headers: list[str], record_type: RecordType) -> list[str]:
    """Validate a batch header set before any row is processed.

    Args:
        headers: Raw header names from the file, in file order.
        record_type: Which catalogue to validate against.

    Returns:
        The canonical column names, in file order.

    Raises:
        StructuralImportError: A required column (or every identifier
            column) is missing, a header is unknown, or a column repeats.
    """
    record_type = RecordType(record_type)
    column_set = columns_for(record_type)
    canonical = [canonical_column(h, record_type) for h in headers if h is not None]
    present = set(canonical)

    missing = [c for c in column_set.required if c not in present]
    if not present.intersection(column_set.identifiers):
        missing.append(" or ".join(column_set.identifiers))
    unexpected = sorted(present - column_set.known)
    duplicated = sorted({c for c in canonical if canonical.count(c) > 1})

    if missing or unexpected or duplicated:
        raise StructuralImportError(
            record_type=record_type.value,
            missing=missing,
            unexpected=unexpected,
            detail=(
                f"duplicated columns: {', '.join(duplicated)}" if duplicated else None
            ),
        )
    return canonical
