"""Financial record endpoints.

Lists stored payments and fines (typically the unassigned ones waiting
for an operator), assigns a record by hand, and re-runs matching over
everything still pending.
"""

from __future__ import annotations

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from fleetrecon.core.config import settings
from fleetrecon.core.database import get_db
from fleetrecon.core.errors import (
    AssignmentConflictError,
    PersistenceError,
    RecordNotFoundError,
)
from fleetrecon.core.logging import get_logger
from fleetrecon.models.financial_record import FinancialRecordEntry
from fleetrecon.schemas.batch import AutoAssignSummary, ManualAssignResponse
from fleetrecon.schemas.records import (
    FinancialRecordResponse,
    ManualAssignRequest,
    RecordType,
)
from fleetrecon.services.assignment.pending import assign_manually, auto_assign_pending
from fleetrecon.services.assignment.store import SqlRecordStore

logger = get_logger(__name__)

router = APIRouter()


@router.get("", response_model=list[FinancialRecordResponse])
def list_records(
    record_type: Optional[RecordType] = Query(None, description="payment or fine"),
    assignment_status: Optional[str] = Query(
        None, description="assigned or unassigned"
    ),
    agreement_id: Optional[UUID] = Query(None, description="Filter by agreement"),
    license_plate: Optional[str] = Query(None, description="Filter by plate"),
    date_from: Optional[date] = Query(None, description="occurred_on >= date"),
    date_to: Optional[date] = Query(None, description="occurred_on <= date"),
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_db),
) -> list[FinancialRecordEntry]:
    """List stored financial records with optional filters and pagination."""
    query = db.query(FinancialRecordEntry)

    if record_type is not None:
        query = query.filter(FinancialRecordEntry.record_type == record_type.value)
    if assignment_status is not None:
        if assignment_status not in ("assigned", "unassigned"):
            raise HTTPException(
                status_code=400,
                detail=f"Invalid assignment_status: {assignment_status}",
            )
        query = query.filter(
            FinancialRecordEntry.assignment_status == assignment_status
        )
    if agreement_id is not None:
        query = query.filter(FinancialRecordEntry.agreement_id == agreement_id)
    if license_plate is not None:
        plate = license_plate.replace(" ", "").replace("-", "").upper()
        query = query.filter(FinancialRecordEntry.license_plate == plate)
    if date_from is not None:
        query = query.filter(FinancialRecordEntry.occurred_on >= date_from)
    if date_to is not None:
        query = query.filter(FinancialRecordEntry.occurred_on <= date_to)

    total = query.count()
    offset = (page - 1) * limit
    items = (
        query.order_by(
            FinancialRecordEntry.occurred_on.desc(), FinancialRecordEntry.external_ref
        )
        .offset(offset)
        .limit(limit)
        .all()
    )
    logger.info(
        "Records query: total=%d page=%d limit=%d returned=%d",
        total,
        page,
        limit,
        len(items),
    )
    return items


@router.post("/auto-assign", response_model=AutoAssignSummary)
def auto_assign(
    record_type: Optional[RecordType] = Query(None, description="payment or fine"),
    limit: int = Query(500, ge=1, le=5000, description="Max records to examine"),
    db: Session = Depends(get_db),
) -> AutoAssignSummary:
    """Re-run agreement matching over stored unassigned records."""
    return auto_assign_pending(
        SqlRecordStore(db), record_type, config=settings, limit=limit
    )


@router.post("/{record_id}/assign", response_model=ManualAssignResponse)
def assign_record(
    record_id: UUID,
    body: ManualAssignRequest,
    db: Session = Depends(get_db),
) -> ManualAssignResponse:
    """Assign an unassigned record to an agreement chosen by an operator."""
    try:
        return assign_manually(
            SqlRecordStore(db), record_id, body.agreement_id, config=settings
        )
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except AssignmentConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except PersistenceError as exc:
        logger.exception("Manual assignment of %s failed", record_id)
        raise HTTPException(status_code=500, detail=str(exc))
