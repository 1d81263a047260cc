"""Pydantic schemas for imported financial records.

A record is a tagged variant on ``record_type`` so every step of the
pipeline can branch exhaustively over payments and fines.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# Column name -> raw cell text, as read from the uploaded file.
RawRow = dict[str, str]


class RecordType(str, Enum):
    PAYMENT = "payment"
    FINE = "fine"


class PaymentMethod(str, Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    CREDIT_CARD = "credit_card"
    DEPOSIT = "deposit"
    INVOICE = "invoice"
    OTHER = "other"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class FineCategory(str, Enum):
    SPEEDING = "speeding"
    PARKING = "parking"
    RED_LIGHT = "red_light"
    SEATBELT = "seatbelt"
    MOBILE_PHONE = "mobile_phone"
    OTHER = "other"


class _RecordBase(BaseModel):
    """Fields shared by every financial record."""

    model_config = ConfigDict(frozen=True)

    external_ref: str = Field(
        ...,
        max_length=100,
        description="Source reference, or a row fingerprint when the file has none",
    )
    amount: Decimal = Field(..., max_digits=15, decimal_places=2)
    occurred_on: date
    agreement_ref: Optional[str] = Field(
        None, description="Agreement number or id carried by the row"
    )
    license_plate: Optional[str] = None
    customer_name: Optional[str] = None
    raw_payload: dict[str, str] = Field(default_factory=dict)


class PaymentRecord(_RecordBase):
    """A customer payment against a rental agreement."""

    record_type: Literal["payment"] = "payment"
    method: PaymentMethod = PaymentMethod.OTHER
    status: PaymentStatus = PaymentStatus.PENDING
    description: Optional[str] = None

    @property
    def kind(self) -> str:
        return self.method.value


class FineRecord(_RecordBase):
    """A traffic fine issued against a fleet vehicle."""

    record_type: Literal["fine"] = "fine"
    category: FineCategory = FineCategory.OTHER
    location: Optional[str] = None
    violation_points: int = 0

    @property
    def kind(self) -> str:
        return self.category.value


FinancialRecord = Annotated[
    Union[PaymentRecord, FineRecord], Field(discriminator="record_type")
]


class FinancialRecordResponse(BaseModel):
    """A stored financial record as returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    record_type: str
    external_ref: str
    amount: Decimal
    occurred_on: date
    kind: Optional[str] = None
    status: Optional[str] = None
    agreement_ref: Optional[str] = None
    license_plate: Optional[str] = None
    customer_name: Optional[str] = None
    agreement_id: Optional[UUID] = None
    customer_id: Optional[UUID] = None
    assignment_status: str = Field(..., description="assigned | unassigned")
    confidence: str = Field(..., description="exact | heuristic | manual | none")
    batch_id: Optional[UUID] = None
    created_at: datetime


class ManualAssignRequest(BaseModel):
    """Request body to assign a stored record to an agreement by hand."""

    agreement_id: UUID
