"""Financial record model: every validated payment or fine from an import."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleetrecon.core.database import Base


class FinancialRecordEntry(Base):
    """A payment or traffic fine that passed validation.

    Records are kept whether or not they could be assigned, so that
    unassigned ones stay visible for manual resolution.
    """

    __tablename__ = "financial_records"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    record_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        comment="payment | fine",
    )
    external_ref: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    occurred_on: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    kind: Mapped[Optional[str]] = mapped_column(
        String(30),
        comment="payment method or fine category",
    )
    status: Mapped[Optional[str]] = mapped_column(
        String(20),
        comment="payment status; NULL for fines",
    )
    agreement_ref: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    license_plate: Mapped[Optional[str]] = mapped_column(
        String(20),
    )
    customer_name: Mapped[Optional[str]] = mapped_column(
        String(200),
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
    )
    violation_points: Mapped[Optional[int]] = mapped_column(
        Integer,
    )
    agreement_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("agreements.id"),
        nullable=True,
        index=True,
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("customers.id"),
        nullable=True,
    )
    assignment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="unassigned",
        comment="assigned | unassigned",
    )
    confidence: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        default="none",
        comment="exact | heuristic | manual | none",
    )
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        nullable=True,
    )
    raw_data: Mapped[Optional[dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
        onupdate=func.now(),
    )

    # -- Relationships --
    agreement: Mapped[Optional[Agreement]] = relationship(
        "Agreement",
        lazy="select",
    )

    __table_args__ = (
        UniqueConstraint("record_type", "external_ref", name="uq_record_type_ref"),
    )

    def __repr__(self) -> str:
        return (
            f"<FinancialRecordEntry(record_type={self.record_type!r}, "
            f"external_ref={self.external_ref!r}, amount={self.amount}, "
            f"assignment_status={self.assignment_status!r})>"
        )
