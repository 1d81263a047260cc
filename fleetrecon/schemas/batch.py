"""Pydantic schemas for import batches: issues, assignments and reports."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from fleetrecon.schemas.records import FinancialRecord, RawRow, RecordType


class Confidence(str, Enum):
    EXACT = "exact"
    HEURISTIC = "heuristic"
    MANUAL = "manual"
    NONE = "none"


class RowOutcome(str, Enum):
    """What happened to one row of a batch."""

    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"
    FAILED = "failed"


class SessionState(str, Enum):
    STARTED = "started"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIALLY_COMPLETED = "partially_completed"


class ImportIssue(BaseModel):
    """A row rejected by validation or normalization."""

    model_config = ConfigDict(frozen=True)

    row_index: int = Field(..., description="1-based data row number; 0 for the header")
    field_or_reason: str
    message: str


class AssignmentResult(BaseModel):
    """The Matcher's decision for one financial record."""

    model_config = ConfigDict(frozen=True)

    record: FinancialRecord
    agreement_id: Optional[UUID] = None
    agreement_number: Optional[str] = None
    customer_id: Optional[UUID] = None
    amount_assigned: Decimal = Decimal("0.00")
    confidence: Confidence = Confidence.NONE
    reason: Optional[str] = Field(
        None, description="Why the record was (not) assigned, for operator review"
    )

    @property
    def is_assigned(self) -> bool:
        return self.confidence is not Confidence.NONE and self.agreement_id is not None


class RowFailure(BaseModel):
    """A valid row whose changes could not be persisted."""

    row_index: int
    external_ref: Optional[str] = None
    message: str
    raw_row: RawRow = Field(
        default_factory=dict,
        description="Original row, so the failure can be re-submitted as a new batch",
    )


class RowEvent(BaseModel):
    """Progress notification emitted after each processed row."""

    batch_id: UUID
    row_index: int
    outcome: RowOutcome
    processed: int
    external_ref: Optional[str] = None


class BatchReport(BaseModel):
    """Everything an operator needs to act on one import batch."""

    batch_id: UUID
    record_type: RecordType
    source_file: Optional[str] = None
    status: SessionState
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    assigned_rows: int = 0
    unassigned_rows: int = 0
    duplicate_rows: int = 0
    failed_rows: int = 0
    total_amount: Decimal = Field(
        Decimal("0.00"), description="Sum of validated amounts"
    )
    assigned_amount: Decimal = Field(
        Decimal("0.00"), description="Sum of amounts applied to agreement balances"
    )
    issues: list[ImportIssue] = Field(default_factory=list)
    assignments: list[AssignmentResult] = Field(default_factory=list)
    failures: list[RowFailure] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def unassigned(self) -> list[AssignmentResult]:
        return [a for a in self.assignments if not a.is_assigned]


class RowsImportRequest(BaseModel):
    """JSON body for importing rows that were already parsed (e.g. a retry)."""

    rows: list[RawRow] = Field(..., description="Rows keyed by column name")
    source_file: Optional[str] = Field(None, max_length=255)


class ImportLogResponse(BaseModel):
    """Stored summary of a processed batch."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    record_type: str
    source_file: Optional[str] = None
    status: str
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    assigned_rows: int = 0
    unassigned_rows: int = 0
    duplicate_rows: int = 0
    failed_rows: int = 0
    total_amount: Optional[Decimal] = None
    assigned_amount: Optional[Decimal] = None
    issues: Optional[list[dict[str, Any]]] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class ManualAssignResponse(BaseModel):
    """Result of assigning a stored record to an agreement by hand."""

    record_id: UUID
    agreement_id: UUID
    agreement_number: Optional[str] = None
    confidence: Confidence
    amount_assigned: Decimal
    balance_before: Decimal
    balance_after: Decimal
    applied: bool = Field(
        ..., description="False when the record had already moved this balance"
    )


class AutoAssignSummary(BaseModel):
    """Outcome of a matching pass over stored unassigned records."""

    examined: int = 0
    assigned: int = 0
    still_unassigned: int = 0
    failed: int = 0
    assigned_amount: Decimal = Decimal("0.00")
