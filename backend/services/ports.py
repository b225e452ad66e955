"""Interfaces the sync engine depends on.

The engine reaches storage and its cryptographic helpers only through
these protocols, so tests can swap in fakes and the engine never
imports a session or a key directly.
"""

from datetime import date, datetime
from enum import Enum
from typing import Callable, Protocol

from integrations.provider_protocol import BankTransaction as ProviderTransaction
from integrations.provider_protocol import TransactionCategory, TransactionDirection
from models import BankConnection, BankTransaction

# Returns the current UTC time; injected so tests can move time forward
Clock = Callable[[], datetime]


class UpsertOutcome(str, Enum):
    """What an upsert did to the stored transaction."""

    INSERTED = "inserted"
    UPDATED = "updated"


class SecretsPort(Protocol):
    """Symmetric cipher for OAuth tokens at rest."""

    def encrypt(self, plaintext: str) -> str:
        ...

    def decrypt(self, ciphertext: str) -> str:
        """Raises ValueError if the ciphertext was not produced by this key."""
        ...


class StateSigner(Protocol):
    """Issues and checks the opaque OAuth ``state`` parameter."""

    def sign_state(self, owner_id: str, provider_name: str) -> str:
        ...

    def verify_state(self, state: str) -> dict:
        """Return ``{"owner_id", "provider_name"}``; ValueError if forged or expired."""
        ...


class PersistencePort(Protocol):
    """Storage for connections and their transactions.

    Every method runs in its own database transaction and commits before
    returning; returned rows are detached snapshots.
    """

    def load_active_connections(self, owner_id: str) -> list[BankConnection]:
        ...

    def load_connection(self, owner_id: str, connection_id: str) -> BankConnection | None:
        """Return the connection if it exists and belongs to ``owner_id``."""
        ...

    def list_connections(self, owner_id: str) -> list[BankConnection]:
        """All connections of an owner, active or not, newest first."""
        ...

    def find_connection(
        self, owner_id: str, provider_name: str, account_number: str
    ) -> BankConnection | None:
        """Look up a connection by its natural key."""
        ...

    def save_connection(self, connection: BankConnection) -> BankConnection:
        """Insert or update a connection row and return the stored state."""
        ...

    def update_connection_tokens(
        self,
        connection_id: str,
        encrypted_access_token: str,
        encrypted_refresh_token: str,
        access_token_expires_at: datetime,
    ) -> None:
        """Overwrite only the token columns of a connection."""
        ...

    def mark_synced(self, connection_id: str, synced_at: datetime) -> None:
        """Set ``last_sync_at`` without touching any other column."""
        ...

    def delete_connection_cascade(self, connection_id: str) -> bool:
        """Delete a connection and its transactions atomically."""
        ...

    def upsert_transaction(
        self,
        connection_id: str,
        transaction: ProviderTransaction,
        category: TransactionCategory,
    ) -> UpsertOutcome:
        """Insert keyed by ``(connection_id, external_id)`` or update mutable fields.

        A locked (hand-assigned) category survives the update.
        """
        ...

    def load_transaction(self, owner_id: str, transaction_id: str) -> BankTransaction | None:
        """Return the transaction if its connection belongs to ``owner_id``."""
        ...

    def set_transaction_category(
        self, owner_id: str, transaction_ids: list[str], category: TransactionCategory
    ) -> int:
        """Recategorize the owner's listed transactions and lock the category."""
        ...

    def delete_transactions_for_connection(self, connection_id: str) -> int:
        ...

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
        """Page of an owner's transactions, newest first, plus the total count."""
        ...
