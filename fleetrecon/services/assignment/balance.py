"""Applies assigned records to agreement balances, at most once each."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from fleetrecon.core.logging import get_logger
from fleetrecon.schemas.batch import AssignmentResult, Confidence
from fleetrecon.schemas.records import RecordType
from fleetrecon.services.assignment.store import RecordStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class BalanceUpdate:
    """Outcome of one balance application.

    ``applied`` is False when the dedup key had already moved the balance;
    ``balance_before`` and ``balance_after`` are then both the current
    balance and ``delta`` is what would have been applied.
    """

    agreement_id: uuid.UUID
    external_ref: str
    delta: Decimal
    balance_before: Decimal
    balance_after: Decimal
    applied: bool


def balance_delta(result: AssignmentResult) -> Decimal:
    """Signed change to the amount owed: payments lower it, fines raise it."""
    if result.record.record_type == RecordType.PAYMENT.value:
        return -result.amount_assigned
    return result.amount_assigned


class BalanceUpdater:
    """Moves an agreement's balance by an assigned record's amount.

    The dedup key ``(agreement_id, external_ref)`` is checked before any
    mutation, and again by the store under a row lock, so re-importing a
    record never double-counts it.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def apply_assignment(
        self,
        result: AssignmentResult,
        batch_id: Optional[uuid.UUID] = None,
    ) -> BalanceUpdate:
        """Apply ``result`` to its agreement's balance.

        Raises:
            ValueError: ``result`` is not assigned.
            PersistenceError: The store could not read or write the balance.
        """
        if result.confidence is Confidence.NONE or result.agreement_id is None:
            raise ValueError(
                f"Record {result.record.external_ref} is not assigned to an agreement"
            )

        agreement_id = result.agreement_id
        external_ref = result.record.external_ref
        dedup_key = (agreement_id, external_ref)
        delta = balance_delta(result)

        if self.store.has_applied(dedup_key):
            return self._skipped(agreement_id, external_ref, delta)

        change = self.store.update_agreement_balance(
            agreement_id, delta, dedup_key, batch_id
        )
        if change is None:
            return self._skipped(agreement_id, external_ref, delta)

        before, after = change
        logger.info(
            "Applied %s to agreement %s: %s -> %s (ref=%s)",
            delta,
            agreement_id,
            before,
            after,
            external_ref,
        )
        return BalanceUpdate(
            agreement_id=agreement_id,
            external_ref=external_ref,
            delta=delta,
            balance_before=before,
            balance_after=after,
            applied=True,
        )

    def _skipped(
        self, agreement_id: uuid.UUID, external_ref: str, delta: Decimal
    ) -> BalanceUpdate:
        logger.info(
            "Ref %s already applied to agreement %s, balance unchanged",
            external_ref,
            agreement_id,
        )
        current = self.store.get_balance(agreement_id)
        return BalanceUpdate(
            agreement_id=agreement_id,
            external_ref=external_ref,
            delta=delta,
            balance_before=current,
            balance_after=current,
            applied=False,
        )
