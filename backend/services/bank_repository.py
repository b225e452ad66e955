"""Bank repository - SQLAlchemy implementation of the PersistencePort.

Each method opens its own short-lived session from the injected
sessionmaker and commits before returning, so sync worker threads never
share a Session and every transaction upsert is durable on its own.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from database import get_session_local
from integrations.provider_protocol import BankTransaction as ProviderTransaction
from integrations.provider_protocol import TransactionCategory, TransactionDirection
from models import BankConnection, BankTransaction
from services.ports import UpsertOutcome

logger = logging.getLogger(__name__)


class BankRepository:
    """Storage for bank connections and their transactions."""

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        """Initialize with an optional sessionmaker for dependency injection.

        Args:
            session_factory: Factory for new sessions. Defaults to the
                application's sessionmaker.
        """
        self._session_factory = session_factory or get_session_local()

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def load_active_connections(self, owner_id: str) -> list[BankConnection]:
        with self._session_factory() as db:
            return (
                db.query(BankConnection)
                .filter(
                    BankConnection.owner_id == owner_id,
                    BankConnection.is_active.is_(True),
                )
                .order_by(BankConnection.created_at)
                .all()
            )

    def load_connection(self, owner_id: str, connection_id: str) -> BankConnection | None:
        with self._session_factory() as db:
            return (
                db.query(BankConnection)
                .filter(
                    BankConnection.id == connection_id,
                    BankConnection.owner_id == owner_id,
                )
                .first()
            )

    def list_connections(self, owner_id: str) -> list[BankConnection]:
        with self._session_factory() as db:
            return (
                db.query(BankConnection)
                .filter(BankConnection.owner_id == owner_id)
                .order_by(BankConnection.created_at.desc())
                .all()
            )

    def find_connection(
        self, owner_id: str, provider_name: str, account_number: str
    ) -> BankConnection | None:
        with self._session_factory() as db:
            return (
                db.query(BankConnection)
                .filter_by(
                    owner_id=owner_id,
                    provider_name=provider_name,
                    external_account_number=account_number,
                )
                .first()
            )

    def save_connection(self, connection: BankConnection) -> BankConnection:
        with self._session_factory() as db:
            stored = db.merge(connection)
            db.commit()
            db.refresh(stored)
            logger.debug("Saved connection %s", stored.id)
            return stored

    def update_connection_tokens(
        self,
        connection_id: str,
        encrypted_access_token: str,
        encrypted_refresh_token: str,
        access_token_expires_at: datetime,
    ) -> None:
        with self._session_factory() as db:
            db.query(BankConnection).filter(BankConnection.id == connection_id).update(
                {
                    BankConnection.encrypted_access_token: encrypted_access_token,
                    BankConnection.encrypted_refresh_token: encrypted_refresh_token,
                    BankConnection.access_token_expires_at: access_token_expires_at,
                    BankConnection.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
            db.commit()

    def mark_synced(self, connection_id: str, synced_at: datetime) -> None:
        with self._session_factory() as db:
            db.query(BankConnection).filter(BankConnection.id == connection_id).update(
                {
                    BankConnection.last_sync_at: synced_at,
                    BankConnection.updated_at: datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
            db.commit()

    def delete_connection_cascade(self, connection_id: str) -> bool:
        """Delete a connection and all its transactions in one commit."""
        with self._session_factory() as db:
            removed = (
                db.query(BankTransaction)
                .filter(BankTransaction.bank_connection_id == connection_id)
                .delete(synchronize_session=False)
            )
            deleted = (
                db.query(BankConnection)
                .filter(BankConnection.id == connection_id)
                .delete(synchronize_session=False)
            )
            db.commit()
        if deleted:
            logger.info(
                "Deleted connection %s with %d transactions", connection_id, removed
            )
        return bool(deleted)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def upsert_transaction(
        self,
        connection_id: str,
        transaction: ProviderTransaction,
        category: TransactionCategory,
    ) -> UpsertOutcome:
        """Insert a transaction, or update its mutable fields if already stored.

        Only amount, description, category, merchant and running balance are
        rewritten on update; the dedup key and ``occurred_at`` never change.
        A category the owner assigned by hand (``category_locked``) is kept.

        Raises:
            LookupError: If the insert failed for a reason other than a
                duplicate key (e.g. the connection was deleted mid-sync).
        """
        mutable = {
            BankTransaction.amount: transaction.amount,
            BankTransaction.description: transaction.description,
            BankTransaction.category: case(
                (BankTransaction.category_locked.is_(True), BankTransaction.category),
                else_=category.value,
            ),
            BankTransaction.normalized_merchant: transaction.merchant,
            BankTransaction.running_balance: transaction.running_balance,
        }

        with self._session_factory() as db:
            if self._update_existing(db, connection_id, transaction.external_id, mutable):
                db.commit()
                return UpsertOutcome.UPDATED

            db.add(
                BankTransaction(
                    bank_connection_id=connection_id,
                    external_id=transaction.external_id,
                    amount=transaction.amount,
                    direction=transaction.direction.value,
                    description=transaction.description,
                    normalized_merchant=transaction.merchant,
                    category=category.value,
                    occurred_at=transaction.occurred_at,
                    running_balance=transaction.running_balance,
                    currency=transaction.currency,
                )
            )
            try:
                db.commit()
            except IntegrityError:
                # Lost an insert race to another writer with the same key
                db.rollback()
                if not self._update_existing(
                    db, connection_id, transaction.external_id, mutable
                ):
                    raise LookupError(
                        f"connection {connection_id} no longer accepts transactions"
                    ) from None
                db.commit()
                logger.debug(
                    "Updated transaction %s (concurrent insert)", transaction.external_id
                )
                return UpsertOutcome.UPDATED
            return UpsertOutcome.INSERTED

    @staticmethod
    def _update_existing(db, connection_id: str, external_id: str, values: dict) -> bool:
        updated = (
            db.query(BankTransaction)
            .filter(
                BankTransaction.bank_connection_id == connection_id,
                BankTransaction.external_id == external_id,
            )
            .update(
                {**values, BankTransaction.updated_at: datetime.now(timezone.utc)},
                synchronize_session=False,
            )
        )
        return updated > 0

    def load_transaction(self, owner_id: str, transaction_id: str) -> BankTransaction | None:
        with self._session_factory() as db:
            return (
                db.query(BankTransaction)
                .join(BankConnection, BankTransaction.bank_connection_id == BankConnection.id)
                .filter(
                    BankTransaction.id == transaction_id,
                    BankConnection.owner_id == owner_id,
                )
                .first()
            )

    def set_transaction_category(
        self, owner_id: str, transaction_ids: list[str], category: TransactionCategory
    ) -> int:
        """Assign a category by hand and lock it against later syncs.

        Ids that do not exist or belong to another owner are skipped.

        Returns:
            Number of transactions updated.
        """
        with self._session_factory() as db:
            owned = select(BankConnection.id).where(BankConnection.owner_id == owner_id)
            updated = (
                db.query(BankTransaction)
                .filter(
                    BankTransaction.id.in_(transaction_ids),
                    BankTransaction.bank_connection_id.in_(owned),
                )
                .update(
                    {
                        BankTransaction.category: category.value,
                        BankTransaction.category_locked: True,
                        BankTransaction.updated_at: datetime.now(timezone.utc),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
        logger.debug("Recategorized %d transactions as %s", updated, category.value)
        return updated

    def delete_transactions_for_connection(self, connection_id: str) -> int:
        with self._session_factory() as db:
            removed = (
                db.query(BankTransaction)
                .filter(BankTransaction.bank_connection_id == connection_id)
                .delete(synchronize_session=False)
            )
            db.commit()
            return removed

    def list_transactions(
        self,
        owner_id: str,
        connection_id: str | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
        direction: TransactionDirection | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BankTransaction], int]:
        """Return a page of an owner's transactions (newest first) and the total."""
        with self._session_factory() as db:
            query = (
                db.query(BankTransaction)
                .join(BankConnection, BankTransaction.bank_connection_id == BankConnection.id)
                .filter(BankConnection.owner_id == owner_id)
            )
            if connection_id:
                query = query.filter(BankTransaction.bank_connection_id == connection_id)
            if from_date:
                query = query.filter(
                    BankTransaction.occurred_at >= datetime.combine(from_date, time.min)
                )
            if to_date:
                # to_date is inclusive
                query = query.filter(
                    BankTransaction.occurred_at
                    < datetime.combine(to_date + timedelta(days=1), time.min)
                )
            if direction:
                query = query.filter(BankTransaction.direction == TransactionDirection(direction).value)

            total = query.with_entities(func.count(BankTransaction.id)).scalar() or 0
            rows = (
                query.order_by(BankTransaction.occurred_at.desc(), BankTransaction.id)
                .offset(offset)
                .limit(limit)
                .all()
            )
            return rows, total
