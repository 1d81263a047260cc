"""Vehicle model: fleet cars referenced by agreements and traffic fines."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from fleetrecon.core.database import Base


class Vehicle(Base):
    """A fleet vehicle, identified on fine feeds by its license plate."""

    __tablename__ = "vehicles"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )
    license_plate: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True,
        comment="Stored normalized: uppercase, no spaces or hyphens",
    )
    make: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    model: Mapped[Optional[str]] = mapped_column(
        String(50),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Vehicle(license_plate={self.license_plate!r})>"
