"""Customer model: the renter an agreement belongs to."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from fleetrecon.core.database import Base


class Customer(Base):
    """A customer profile.

    Owned by the back office; the import pipeline only reads it to
    resolve customer names carried by payment rows.
    """

    __tablename__ = "customers"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    full_name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        index=True,
    )
    phone_number: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Customer(id={self.id!r}, full_name={self.full_name!r})>"
