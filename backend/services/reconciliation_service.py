"""Reconciliation service - merges a fetched batch into stored transactions."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from integrations.provider_protocol import BankTransaction as ProviderTransaction
from services.categorization_service import CategorizationService
from services.ports import PersistencePort, UpsertOutcome

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Outcome of reconciling one batch for one connection."""

    added: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)


class ReconciliationService:
    """Categorize and upsert fetched transactions, one commit per row.

    A failure on one transaction is recorded and the rest of the batch is
    still processed. Reconciling the same batch twice leaves the stored
    rows unchanged and reports only updates the second time.
    """

    def __init__(
        self,
        repository: PersistencePort,
        categorizer: Optional[CategorizationService] = None,
    ):
        self._repository = repository
        self._categorizer = categorizer or CategorizationService()

    def reconcile(
        self,
        connection_id: str,
        transactions: list[ProviderTransaction],
        cancelled: Optional[threading.Event] = None,
    ) -> ReconciliationResult:
        """Upsert ``transactions`` for a connection.

        Args:
            connection_id: Owning connection.
            transactions: Normalized rows from the bank client(s).
            cancelled: Checked before each row; once set, the remaining
                rows are left for the next sync.
        """
        result = ReconciliationResult()
        for txn in transactions:
            if cancelled is not None and cancelled.is_set():
                logger.info(
                    "Reconciliation for connection %s stopped early: %d rows left",
                    connection_id, len(transactions) - result.added - result.updated - len(result.errors),
                )
                break

            try:
                category = self._categorizer.categorize(
                    txn.cleaned_description or txn.description, txn.category
                )
                outcome = self._repository.upsert_transaction(connection_id, txn, category)
            except Exception as e:
                logger.warning(
                    "Failed to save transaction %s for connection %s: %s",
                    txn.external_id, connection_id, e,
                )
                result.errors.append(f"Failed to save transaction {txn.external_id}: {e}")
                continue

            if outcome == UpsertOutcome.INSERTED:
                result.added += 1
            else:
                result.updated += 1

        logger.debug(
            "Connection %s reconciled: %d added, %d updated, %d errors",
            connection_id, result.added, result.updated, len(result.errors),
        )
        return result
