"""Record-to-agreement assignment logic.

This module decides which rental agreement a payment or traffic fine
belongs to.  Think of it like a clerk sorting mail: a letter with an
agreement number goes straight to that file; one with only a plate or a
name goes to the single file whose vehicle, customer and lease dates all
fit; anything else stays on the desk for a person to sort.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional

from fleetrecon.core.config import settings
from fleetrecon.core.logging import get_logger
from fleetrecon.schemas.agreement import AgreementCandidate
from fleetrecon.schemas.batch import AssignmentResult, Confidence
from fleetrecon.schemas.records import FinancialRecord
from fleetrecon.services.ingestion.normalizer import (
    normalize_name,
    normalize_plate,
    normalize_reference,
)

logger = get_logger(__name__)

NO_IDENTIFIER = "no_identifier"
NO_CANDIDATES = "no_candidates"


class AgreementMatcher:
    """Assigns a financial record to at most one agreement.

    The algorithm, first success wins:
    1. Exact: the record's agreement ref equals one live agreement's
       number or id.  Several live agreements sharing the number are
       narrowed to the one whose lease covers the record date.
    2. Heuristic: exactly one live agreement matches every secondary key
       the record carries (plate, customer name) and covers its date.
    3. None: zero or several candidates.  A wrong assignment moves money
       to the wrong customer, so ties are never broken arbitrarily.
    """

    def __init__(self, inactive_statuses: Optional[Iterable[str]] = None) -> None:
        if inactive_statuses is None:
            inactive_statuses = settings.inactive_agreement_statuses
        self.inactive_statuses = {s.strip().lower() for s in inactive_statuses}

    def assign(
        self,
        record: FinancialRecord,
        candidates: list[AgreementCandidate],
    ) -> AssignmentResult:
        """Pick the agreement for ``record`` among ``candidates``.

        Args:
            record: A normalized payment or fine.
            candidates: Agreements returned by the store for this record.

        Returns:
            An ``AssignmentResult``; unassigned results carry
            ``amount_assigned=0`` and a reason.
        """
        live = [c for c in candidates if self.is_live(c)]

        exact = self._exact_match(record, live)
        if exact is not None:
            return self._assigned(record, exact, Confidence.EXACT)

        if not (record.license_plate or record.customer_name):
            reason = NO_CANDIDATES if record.agreement_ref else NO_IDENTIFIER
            return self._unassigned(record, reason)

        matches = [c for c in live if self._fits_secondary_keys(record, c)]
        if len(matches) == 1:
            return self._assigned(record, matches[0], Confidence.HEURISTIC)
        if not matches:
            return self._unassigned(record, NO_CANDIDATES)
        return self._unassigned(record, f"ambiguous:{len(matches)}")

    def is_live(self, candidate: AgreementCandidate) -> bool:
        return (candidate.status or "").strip().lower() not in self.inactive_statuses

    # ── Private helpers ──────────────────────────────────────────────

    @staticmethod
    def _exact_match(
        record: FinancialRecord,
        live: list[AgreementCandidate],
    ) -> Optional[AgreementCandidate]:
        if not record.agreement_ref:
            return None
        ref = normalize_reference(record.agreement_ref)
        hits = [
            c
            for c in live
            if normalize_reference(c.agreement_number) == ref
            or str(c.id).upper() == ref
        ]
        if len(hits) == 1:
            return hits[0]

        # Agreement numbers are reused; keep the lease running on that day.
        covering = [c for c in hits if c.covers(record.occurred_on)]
        if len(covering) == 1:
            return covering[0]
        if hits:
            logger.info(
                "Agreement ref %s matches %d live agreements, trying heuristics",
                ref,
                len(hits),
            )
        return None

    @staticmethod
    def _fits_secondary_keys(
        record: FinancialRecord,
        candidate: AgreementCandidate,
    ) -> bool:
        if not candidate.covers(record.occurred_on):
            return False
        if record.license_plate:
            if not candidate.license_plate:
                return False
            if normalize_plate(candidate.license_plate) != normalize_plate(
                record.license_plate
            ):
                return False
        if record.customer_name:
            if not candidate.customer_name:
                return False
            if normalize_name(candidate.customer_name) != normalize_name(
                record.customer_name
            ):
                return False
        return True

    @staticmethod
    def _assigned(
        record: FinancialRecord,
        candidate: AgreementCandidate,
        confidence: Confidence,
    ) -> AssignmentResult:
        return AssignmentResult(
            record=record,
            agreement_id=candidate.id,
            agreement_number=candidate.agreement_number,
            customer_id=candidate.customer_id,
            amount_assigned=record.amount,
            confidence=confidence,
        )

    @staticmethod
    def _unassigned(record: FinancialRecord, reason: str) -> AssignmentResult:
        logger.debug("Record %s left unassigned: %s", record.external_ref, reason)
        return AssignmentResult(
            record=record,
            amount_assigned=Decimal("0.00"),
            confidence=Confidence.NONE,
            reason=reason,
        )
