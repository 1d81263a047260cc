"""Pydantic schemas for agreements as seen by the import pipeline."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AgreementCandidate(BaseModel):
    """Read-only view of an agreement that a record may be assigned to."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    agreement_number: str
    customer_id: Optional[UUID] = None
    customer_name: Optional[str] = None
    license_plate: Optional[str] = None
    start_date: date
    end_date: Optional[date] = Field(
        None, description="None while the agreement is open-ended"
    )
    status: str = "active"

    @classmethod
    def from_agreement(cls, agreement: Any) -> AgreementCandidate:
        """Build a candidate from an ``Agreement`` ORM row."""
        customer = getattr(agreement, "customer", None)
        vehicle = getattr(agreement, "vehicle", None)
        return cls(
            id=agreement.id,
            agreement_number=agreement.agreement_number,
            customer_id=agreement.customer_id,
            customer_name=customer.full_name if customer is not None else None,
            license_plate=vehicle.license_plate if vehicle is not None else None,
            start_date=agreement.start_date,
            end_date=agreement.end_date,
            status=agreement.status,
        )

    def covers(self, day: date) -> bool:
        """True when ``day`` falls inside ``[start_date, end_date]``."""
        if day < self.start_date:
            return False
        return self.end_date is None or day <= self.end_date


class BalanceApplicationResponse(BaseModel):
    """One entry of an agreement's balance ledger."""

    model_config = ConfigDict(from_attributes=True)

    external_ref: str
    delta: Decimal
    balance_after: Decimal
    batch_id: Optional[UUID] = None
    applied_at: datetime


class AgreementBalanceResponse(BaseModel):
    """Current balance of an agreement plus the ledger that produced it."""

    agreement_id: UUID
    agreement_number: str
    status: str
    balance: Decimal
    applications: list[BalanceApplicationResponse] = Field(default_factory=list)
