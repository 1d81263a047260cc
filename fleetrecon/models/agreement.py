"""Rental agreement model: the target every payment and fine is assigned to."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fleetrecon.core.database import Base


class Agreement(Base):
    """A lease of one vehicle to one customer over a date range.

    ``agreement_number`` is assigned by people and may repeat across
    historical and active agreements; ``id`` is the unique key.
    ``balance`` is the running amount owed: fines raise it, payments
    lower it.
    """

    __tablename__ = "agreements"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    agreement_number: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )
    customer_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("customers.id"),
        nullable=True,
    )
    vehicle_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("vehicles.id"),
        nullable=True,
    )
    start_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    end_date: Mapped[Optional[date]] = mapped_column(
        Date,
        nullable=True,
        comment="NULL while the agreement is open-ended",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        comment="pending_payment | active | closed | cancelled | archived",
    )
    total_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2),
    )
    balance: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
        default=Decimal("0.00"),
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
    customer: Mapped[Optional[Customer]] = relationship(
        "Customer",
        lazy="joined",
    )
    vehicle: Mapped[Optional[Vehicle]] = relationship(
        "Vehicle",
        lazy="joined",
    )

    __table_args__ = (
        Index("ix_agreement_vehicle_dates", "vehicle_id", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<Agreement(agreement_number={self.agreement_number!r}, "
            f"status={self.status!r}, balance={self.balance})>"
        )
