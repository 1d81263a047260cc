"""Typed errors raised by the import pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


class ImportBatchError(Exception):
    """Base class for errors surfaced by an import batch."""

    code: str = "import_error"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


@dataclass
class StructuralImportError(ImportBatchError):
    """The batch header set does not fit the record type.

    Raised before any row is processed; the whole batch is rejected.
    """

    record_type: str
    missing: list[str] = field(default_factory=list)
    unexpected: list[str] = field(default_factory=list)
    detail: Optional[str] = None

    code = "structural_error"

    def __str__(self) -> str:
        parts: list[str] = []
        if self.detail:
            parts.append(self.detail)
        if self.missing:
            parts.append(f"missing columns: {', '.join(self.missing)}")
        if self.unexpected:
            parts.append(f"unexpected columns: {', '.join(self.unexpected)}")
        return f"Invalid {self.record_type} import header ({'; '.join(parts)})"

    def to_dict(self) -> dict[str, Any]:
        out = super().to_dict()
        out["missing"] = self.missing
        out["unexpected"] = self.unexpected
        return out


class NormalizationError(ImportBatchError):
    """A validated row could not be converted into a financial record."""

    code = "normalization_error"

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(message)
        self.field_name = field_name


class PersistenceError(ImportBatchError):
    """The record store failed to persist a row's changes."""

    code = "persistence_error"


class RecordNotFoundError(ImportBatchError):
    """A stored record or agreement referenced by an operator does not exist."""

    code = "not_found"


class AssignmentConflictError(ImportBatchError):
    """The requested assignment contradicts the record's current state."""

    code = "assignment_conflict"
