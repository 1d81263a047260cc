"""Balance application model: the dedup ledger for agreement balances."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from fleetrecon.core.database import Base


class BalanceApplication(Base):
    """One applied balance change.

    The unique ``(agreement_id, external_ref)`` pair guarantees a record
    moves an agreement's balance at most once, however often it is
    imported.
    """

    __tablename__ = "balance_applications"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    agreement_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("agreements.id"),
        nullable=False,
    )
    external_ref: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    delta: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    balance_after: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        nullable=False,
    )
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        nullable=True,
    )
    applied_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("agreement_id", "external_ref", name="uq_balance_dedup_key"),
    )

    def __repr__(self) -> str:
        return (
            f"<BalanceApplication(agreement_id={self.agreement_id!r}, "
            f"external_ref={self.external_ref!r}, delta={self.delta})>"
        )
