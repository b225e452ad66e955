"""Bank sync service - connect, sync and disconnect bank connections.

Orchestrates the bank clients, the token manager and the reconciliation
service. Connections are synced concurrently on a thread pool; each one
fails independently and its failure becomes a ``"{provider}: {reason}"``
entry in the returned :class:`SyncResult` instead of an exception.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from config import settings
from integrations.exceptions import ProviderError
from integrations.parsing_utils import ensure_utc
from integrations.provider_protocol import (
    BankAccount,
    BankProviderClient,
    ProviderName,
    TransactionCategory,
    TransactionDirection,
)
from integrations.provider_registry import (
    ProviderRegistry,
    get_provider_registry,
    parse_provider_name,
)
from models import BankConnection, BankTransaction, generate_uuid
from services.exceptions import NotFoundError, ValidationError
from services.ports import Clock, PersistencePort, SecretsPort, StateSigner
from services.reconciliation_service import ReconciliationService
from services.token_manager import TokenManager

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SyncResult:
    """Aggregated outcome of syncing one or more connections."""

    accounts_updated: int = 0
    transactions_added: int = 0
    transactions_updated: int = 0
    errors: list[str] = field(default_factory=list)

    def merge(self, other: "SyncResult") -> None:
        self.accounts_updated += other.accounts_updated
        self.transactions_added += other.transactions_added
        self.transactions_updated += other.transactions_updated
        self.errors.extend(other.errors)


@dataclass
class ConnectResult:
    """A newly authorized connection and the accounts the bank returned."""

    connection_id: str
    accounts: list[BankAccount]


class BankSyncService:
    """Service for connecting and syncing bank accounts."""

    def __init__(
        self,
        repository: Optional[PersistencePort] = None,
        secrets: Optional[SecretsPort] = None,
        state_signer: Optional[StateSigner] = None,
        provider_registry: Optional[ProviderRegistry] = None,
        token_manager: Optional[TokenManager] = None,
        reconciler: Optional[ReconciliationService] = None,
        clock: Optional[Clock] = None,
        max_workers: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        lookback_days: Optional[int] = None,
    ):
        """Initialize with optional collaborators for dependency injection.

        Anything left as None is built from application settings on
        first use.
        """
        self._repository = repository
        self._secrets = secrets
        self._state_signer = state_signer
        self._registry = provider_registry
        self._token_manager = token_manager
        self._reconciler = reconciler
        self._clock = clock or _utcnow
        self._max_workers = max_workers or settings.SYNC_MAX_WORKERS
        self._timeout = timeout_seconds or settings.SYNC_TIMEOUT_SECONDS
        self._lookback = timedelta(days=lookback_days or settings.SYNC_LOOKBACK_DAYS)

    @property
    def repository(self) -> PersistencePort:
        if self._repository is None:
            from services.bank_repository import BankRepository

            self._repository = BankRepository()
        return self._repository

    @property
    def secrets(self) -> SecretsPort:
        if self._secrets is None:
            from services.token_encryption import TokenEncryption

            self._secrets = TokenEncryption(clock=self._clock)
        return self._secrets

    @property
    def state_signer(self) -> StateSigner:
        if self._state_signer is None:
            from services.token_encryption import TokenEncryption

            # The default token cipher signs states too; an injected one may not
            if isinstance(self.secrets, TokenEncryption):
                self._state_signer = self.secrets
            else:
                self._state_signer = TokenEncryption(clock=self._clock)
        return self._state_signer

    @property
    def registry(self) -> ProviderRegistry:
        """Get the provider registry, creating default if not provided."""
        if self._registry is None:
            self._registry = get_provider_registry()
        return self._registry

    @property
    def token_manager(self) -> TokenManager:
        if self._token_manager is None:
            self._token_manager = TokenManager(
                self.repository, self.secrets, self.registry, clock=self._clock
            )
        return self._token_manager

    @property
    def reconciler(self) -> ReconciliationService:
        if self._reconciler is None:
            self._reconciler = ReconciliationService(self.repository)
        return self._reconciler

    def close(self) -> None:
        """Release the bank clients' HTTP pools, if the registry was built."""
        if self._registry is not None:
            self._registry.close()

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def _resolve_client(self, provider_name: str) -> tuple[ProviderName, BankProviderClient]:
        try:
            name = parse_provider_name(provider_name)
        except ValueError as e:
            raise ValidationError(str(e)) from None
        try:
            return name, self.registry.get_provider(name.value)
        except ValueError as e:
            raise ValidationError(str(e)) from None

    def get_authorization_url(self, owner_id: str, provider_name: str, redirect_uri: str) -> str:
        """Build the bank's OAuth URL with a signed ``state`` for this owner."""
        name, client = self._resolve_client(provider_name)
        state = self.state_signer.sign_state(owner_id, name.value)
        return client.get_authorization_url(state, redirect_uri)

    def get_authorization_urls(self, owner_id: str, redirect_uri: str) -> dict[str, str]:
        """Authorization URLs for every configured bank, keyed by bank name."""
        return {
            name: self.get_authorization_url(owner_id, name, redirect_uri)
            for name in self.registry.list_providers()
        }

    def verify_state(
        self,
        state: str,
        owner_id: Optional[str] = None,
        provider_name: Optional[str] = None,
    ) -> dict:
        """Decode an OAuth ``state`` from a callback.

        When ``owner_id`` or ``provider_name`` is given, the state must have
        been issued for that owner and bank.

        Raises:
            ValidationError: Missing, forged, corrupted, expired or
                mismatched state.
        """
        if not state:
            raise ValidationError("OAuth state is required")
        try:
            claims = self.state_signer.verify_state(state)
        except ValueError as e:
            raise ValidationError(str(e)) from None

        if owner_id is not None and claims.get("owner_id") != owner_id:
            raise ValidationError("OAuth state does not match this request")
        if provider_name is not None:
            try:
                expected = parse_provider_name(provider_name).value
            except ValueError as e:
                raise ValidationError(str(e)) from None
            if claims.get("provider_name") != expected:
                raise ValidationError("OAuth state does not match this request")
        return claims

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(
        self,
        owner_id: str,
        provider_name: str,
        authorization_code: str,
        redirect_uri: Optional[str] = None,
    ) -> ConnectResult:
        """Exchange an authorization code and store a connection.

        The connection is bound to the first account the bank returns.
        Connecting an account that is already stored replaces its tokens
        and re-activates it.

        Raises:
            ValidationError: Unsupported bank, missing code, or the bank
                returned no accounts.
            ProviderError: The bank rejected the code or failed.
        """
        if not authorization_code:
            raise ValidationError("authorization_code is required")
        name, client = self._resolve_client(provider_name)

        grant = client.authenticate(authorization_code, redirect_uri)
        accounts = client.get_accounts(grant.access_token)
        if not accounts:
            raise ValidationError(f"{name.value} returned no accounts for this authorization")

        primary = accounts[0]
        connection = self.repository.find_connection(owner_id, name.value, primary.account_number)
        if connection is None:
            connection = BankConnection(
                id=generate_uuid(),
                owner_id=owner_id,
                provider_name=name.value,
                external_account_number=primary.account_number,
            )
        else:
            logger.info("Re-authorizing existing connection %s (%s)", connection.id, name.value)

        connection.external_account_type = primary.account_type.value
        connection.account_name = primary.account_name
        connection.currency = primary.currency
        connection.is_active = True
        connection.encrypted_access_token = self.secrets.encrypt(grant.access_token)
        connection.encrypted_refresh_token = self.secrets.encrypt(grant.refresh_token)
        connection.access_token_expires_at = self._clock() + timedelta(seconds=grant.expires_in)

        saved = self.repository.save_connection(connection)
        self.token_manager.cache_token(owner_id, saved.id, grant.access_token, grant.expires_in)
        logger.info(
            "Connected %s account for owner %s (connection %s, %d accounts returned)",
            name.value, owner_id, saved.id, len(accounts),
        )
        return ConnectResult(connection_id=saved.id, accounts=accounts)

    def disconnect(self, owner_id: str, connection_id: str) -> None:
        """Delete a connection and all of its transactions.

        Raises:
            NotFoundError: No such connection for this owner.
        """
        connection = self._require_connection(owner_id, connection_id)
        self.token_manager.invalidate(owner_id, connection.id)
        self.repository.delete_connection_cascade(connection.id)
        logger.info("Disconnected %s connection %s", connection.provider_name, connection.id)

    def refresh_connection(self, owner_id: str, connection_id: str) -> None:
        """Force a token refresh for one connection.

        Raises:
            NotFoundError: No such connection for this owner.
            ProviderError: The bank refused the refresh.
        """
        connection = self._require_connection(owner_id, connection_id)
        self.token_manager.refresh(connection)

    def list_connections(self, owner_id: str) -> list[BankConnection]:
        return self.repository.list_connections(owner_id)

    def get_connection(self, owner_id: str, connection_id: str) -> BankConnection:
        """Raises NotFoundError unless the owner holds this connection."""
        return self._require_connection(owner_id, connection_id)

    def _require_connection(self, owner_id: str, connection_id: str) -> BankConnection:
        connection = self.repository.load_connection(owner_id, connection_id)
        if connection is None:
            raise NotFoundError(f"Bank connection {connection_id} not found")
        return connection

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(
        self,
        owner_id: str,
        connection_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> SyncResult:
        """Sync one connection, or every active connection of the owner.

        Never raises for bank or storage failures: each failed connection
        contributes one error string and the others still complete.

        Args:
            owner_id: Owner whose connections are synced.
            connection_id: Restrict the sync to this connection.
            timeout: Overall deadline in seconds. Connections still running
                at the deadline are abandoned and reported as timed out.

        Raises:
            NotFoundError: ``connection_id`` is not one of the owner's.
            ValidationError: ``connection_id`` names an inactive connection.
        """
        if connection_id is not None:
            connection = self._require_connection(owner_id, connection_id)
            if not connection.is_active:
                raise ValidationError(f"Bank connection {connection_id} is inactive")
            targets = [connection]
        else:
            targets = self.repository.load_active_connections(owner_id)

        result = SyncResult()
        if not targets:
            logger.info("No active bank connections for owner %s", owner_id)
            return result

        deadline = timeout if timeout is not None else self._timeout
        cancelled = threading.Event()
        executor = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(targets)),
            thread_name_prefix="bank-sync",
        )
        try:
            futures = [
                executor.submit(self._sync_connection, connection, cancelled)
                for connection in targets
            ]
            _, not_done = wait(futures, timeout=deadline)
            if not_done:
                cancelled.set()
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        for connection, future in zip(targets, futures):
            if future in not_done:
                logger.warning(
                    "Sync of %s connection %s timed out after %ss",
                    connection.provider_name, connection.id, deadline,
                )
                result.errors.append(
                    f"{connection.provider_name}: sync timed out after {deadline:g}s"
                )
            else:
                result.merge(future.result())

        logger.info(
            "Sync complete for owner %s: %d connections, %d accounts, "
            "%d added, %d updated, %d errors",
            owner_id, len(targets), result.accounts_updated,
            result.transactions_added, result.transactions_updated, len(result.errors),
        )
        return result

    def _sync_window(self, connection: BankConnection, now: datetime) -> tuple[date, date]:
        start = now - self._lookback
        if connection.last_sync_at is not None:
            start = max(start, ensure_utc(connection.last_sync_at))
        return start.date(), now.date()

    def _sync_connection(
        self, connection: BankConnection, cancelled: threading.Event
    ) -> SyncResult:
        """Sync a single connection. Failures are returned, not raised."""
        result = SyncResult()
        provider_name = connection.provider_name
        try:
            client = self.registry.get_provider(provider_name)
            token = self.token_manager.get_valid_token(connection)
            now = self._clock()
            from_date, to_date = self._sync_window(connection, now)

            accounts = client.get_accounts(token)
            account = next(
                (a for a in accounts if a.account_number == connection.external_account_number),
                None,
            )
            if account is None:
                raise ValidationError(
                    f"account {connection.external_account_number} is no longer "
                    f"returned by the bank"
                )
            if cancelled.is_set():
                return result

            transactions = [
                *client.get_transactions(token, account.account_number, from_date, to_date),
                *client.get_supplementary_transactions(token, from_date, to_date),
            ]
            logger.info(
                "%s connection %s: %d transactions fetched for %s..%s",
                provider_name, connection.id, len(transactions), from_date, to_date,
            )

            reconciled = self.reconciler.reconcile(connection.id, transactions, cancelled)
            result.accounts_updated = 1
            result.transactions_added = reconciled.added
            result.transactions_updated = reconciled.updated
            result.errors.extend(reconciled.errors)

            if cancelled.is_set():
                return result
            self.repository.mark_synced(connection.id, now)
        except ProviderError as e:
            logger.warning("%s sync failed for connection %s: %s", provider_name, connection.id, e)
            result.errors.append(f"{provider_name}: {e}")
        except Exception as e:
            # Safety net for unexpected errors
            logger.error(
                "Unexpected error syncing %s connection %s: %s",
                provider_name, connection.id, e, exc_info=True,
            )
            result.errors.append(f"{provider_name}: {e}")
        return result

    # ------------------------------------------------------------------
    # Read-only projection
    # ------------------------------------------------------------------

    def get_transactions(
        self,
        owner_id: str,
        connection_id: Optional[str] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        direction: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[BankTransaction], int]:
        """Stored transactions for an owner, newest first, plus the total count.

        Raises:
            ValidationError: Bad paging, date range or direction.
            NotFoundError: ``connection_id`` is not one of the owner's.
        """
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        if from_date and to_date and from_date > to_date:
            raise ValidationError("from_date must not be after to_date")

        parsed_direction = None
        if direction:
            try:
                parsed_direction = TransactionDirection(direction.upper())
            except ValueError:
                raise ValidationError(f"Unknown direction: {direction}") from None

        if connection_id is not None:
            self._require_connection(owner_id, connection_id)

        return self.repository.list_transactions(
            owner_id,
            connection_id=connection_id,
            from_date=from_date,
            to_date=to_date,
            direction=parsed_direction,
            limit=limit,
            offset=offset,
        )

    def get_transaction(self, owner_id: str, transaction_id: str) -> BankTransaction:
        """Raises NotFoundError unless the transaction is on one of the owner's connections."""
        transaction = self.repository.load_transaction(owner_id, transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        return transaction

    # ------------------------------------------------------------------
    # Manual categorization
    # ------------------------------------------------------------------

    def categorize_transaction(
        self, owner_id: str, transaction_id: str, category: str
    ) -> BankTransaction:
        """Assign a category to one transaction; later syncs keep it.

        Raises:
            ValidationError: Unknown category.
            NotFoundError: No such transaction for this owner.
        """
        parsed = self._parse_category(category)
        if not self.repository.set_transaction_category(owner_id, [transaction_id], parsed):
            raise NotFoundError(f"Transaction {transaction_id} not found")
        logger.info("Transaction %s recategorized as %s", transaction_id, parsed.value)
        return self.get_transaction(owner_id, transaction_id)

    def categorize_transactions(
        self, owner_id: str, transaction_ids: list[str], category: str
    ) -> int:
        """Assign one category to many transactions.

        Ids that are unknown or belong to another owner are skipped.

        Returns:
            Number of transactions updated.

        Raises:
            ValidationError: Unknown category or no ids given.
        """
        parsed = self._parse_category(category)
        ids = list(dict.fromkeys(i for i in transaction_ids if i))
        if not ids:
            raise ValidationError("transaction_ids must not be empty")
        updated = self.repository.set_transaction_category(owner_id, ids, parsed)
        logger.info(
            "Recategorized %d of %d transactions as %s for owner %s",
            updated, len(ids), parsed.value, owner_id,
        )
        return updated

    @staticmethod
    def _parse_category(category: str) -> TransactionCategory:
        try:
            return TransactionCategory((category or "").strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown category: {category}") from None
