"""Agreement balance endpoint."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from fleetrecon.core.database import get_db
from fleetrecon.models import Agreement, BalanceApplication
from fleetrecon.schemas.agreement import (
    AgreementBalanceResponse,
    BalanceApplicationResponse,
)

router = APIRouter()


@router.get("/{agreement_id}/balance", response_model=AgreementBalanceResponse)
def get_agreement_balance(
    agreement_id: UUID,
    db: Session = Depends(get_db),
) -> AgreementBalanceResponse:
    """Current balance of an agreement and every change applied to it."""
    agreement = db.get(Agreement, agreement_id)
    if agreement is None:
        raise HTTPException(status_code=404, detail="Agreement not found")

    applications = (
        db.query(BalanceApplication)
        .filter(BalanceApplication.agreement_id == agreement_id)
        .order_by(BalanceApplication.applied_at, BalanceApplication.id)
        .all()
    )
    return AgreementBalanceResponse(
        agreement_id=agreement.id,
        agreement_number=agreement.agreement_number,
        status=agreement.status,
        balance=agreement.balance,
        applications=[
            BalanceApplicationResponse.model_validate(a) for a in applications
        ],
    )
