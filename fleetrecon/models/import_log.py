"""Import log model: one summary row per processed batch."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from fleetrecon.core.database import Base


class ImportLog(Base):
    """Audit trail of an import batch, derived from its BatchReport."""

    __tablename__ = "import_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
        comment="Same value as the batch id",
    )
    record_type: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    source_file: Mapped[Optional[str]] = mapped_column(
        String(255),
    )
    status: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="completed | partially_completed",
    )
    total_rows: Mapped[int] = mapped_column(Integer, default=0)
    valid_rows: Mapped[int] = mapped_column(Integer, default=0)
    invalid_rows: Mapped[int] = mapped_column(Integer, default=0)
    assigned_rows: Mapped[int] = mapped_column(Integer, default=0)
    unassigned_rows: Mapped[int] = mapped_column(Integer, default=0)
    duplicate_rows: Mapped[int] = mapped_column(Integer, default=0)
    failed_rows: Mapped[int] = mapped_column(Integer, default=0)
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0.00"),
    )
    assigned_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2),
        default=Decimal("0.00"),
    )
    issues: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(
        JSON,
        nullable=True,
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<ImportLog(id={self.id!r}, record_type={self.record_type!r}, "
            f"status={self.status!r}, total_rows={self.total_rows})>"
        )
