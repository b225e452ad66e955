"""Token manager - per-connection OAuth access token lifecycle.

Serves access tokens from an in-process cache and refreshes them through
the owning bank client when they are about to expire. The cache is a
best-effort layer over ``bank_connections.access_token_expires_at``, so a
restarted process reuses still-valid stored tokens instead of refreshing.

Concurrency: at most one refresh runs per connection. Callers that lose
the race block on the connection's lock and then read the winner's
cached token.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import settings
from integrations.exceptions import ProviderAuthExpiredError
from integrations.parsing_utils import ensure_utc
from integrations.provider_registry import ProviderRegistry
from models import BankConnection
from services.exceptions import NotFoundError
from services.ports import Clock, PersistencePort, SecretsPort

logger = logging.getLogger(__name__)

CacheKey = tuple[str, str]  # (owner_id, connection_id)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedToken:
    """A plaintext access token and the instant it stops being served."""

    access_token: str
    valid_until: datetime

    def __repr__(self) -> str:
        return f"CachedToken(valid_until={self.valid_until.isoformat()})"


class TokenManager:
    """Hands out valid access tokens for bank connections."""

    def __init__(
        self,
        repository: PersistencePort,
        secrets: SecretsPort,
        registry: ProviderRegistry,
        clock: Optional[Clock] = None,
        safety_margin_seconds: Optional[int] = None,
    ):
        self._repository = repository
        self._secrets = secrets
        self._registry = registry
        self._clock = clock or _utcnow
        margin = (
            safety_margin_seconds
            if safety_margin_seconds is not None
            else settings.TOKEN_SAFETY_MARGIN_SECONDS
        )
        self._margin = timedelta(seconds=margin)

        self._cache: dict[CacheKey, CachedToken] = {}
        self._cache_lock = threading.Lock()
        self._locks: dict[CacheKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def cache_token(
        self, owner_id: str, connection_id: str, token: str, expires_in: int
    ) -> None:
        """Cache a token for ``expires_in`` seconds minus the safety margin."""
        ttl = max(timedelta(seconds=expires_in) - self._margin, timedelta(0))
        self._put((owner_id, connection_id), token, self._clock() + ttl)

    def invalidate(self, owner_id: str, connection_id: str) -> None:
        """Drop the cached token and the idle refresh lock for a connection."""
        key = (owner_id, connection_id)
        with self._cache_lock:
            self._cache.pop(key, None)
        with self._locks_guard:
            lock = self._locks.get(key)
            # A held lock stays so waiters keep sharing it
            if lock is not None and not lock.locked():
                del self._locks[key]

    def _put(self, key: CacheKey, token: str, valid_until: datetime) -> None:
        with self._cache_lock:
            self._cache[key] = CachedToken(access_token=token, valid_until=valid_until)

    def _cached(self, key: CacheKey) -> Optional[str]:
        with self._cache_lock:
            entry = self._cache.get(key)
        if entry is not None and entry.valid_until > self._clock():
            return entry.access_token
        return None

    def _lock_for(self, key: CacheKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get_valid_token(self, connection: BankConnection) -> str:
        """Return an access token that is valid beyond the safety margin.

        Raises:
            NotFoundError: The connection was deleted meanwhile.
            ProviderError: The bank refused the refresh. The connection is
                left active; the next sync retries.
        """
        key = (connection.owner_id, connection.id)
        token = self._cached(key)
        if token is not None:
            return token

        with self._lock_for(key):
            # Another thread may have refreshed while we waited
            token = self._cached(key)
            if token is not None:
                return token

            current = self._reload(connection)
            stored = self._stored_token(current)
            if stored is not None:
                return stored
            return self._refresh_locked(current)

    def refresh(self, connection: BankConnection) -> str:
        """Force a refresh regardless of cached or stored expiry."""
        key = (connection.owner_id, connection.id)
        with self._lock_for(key):
            current = self._reload(connection)
            return self._refresh_locked(current)

    # ------------------------------------------------------------------
    # Internals (caller holds the connection lock)
    # ------------------------------------------------------------------

    def _reload(self, connection: BankConnection) -> BankConnection:
        current = self._repository.load_connection(connection.owner_id, connection.id)
        if current is None:
            raise NotFoundError(f"Bank connection {connection.id} not found")
        return current

    def _stored_token(self, connection: BankConnection) -> Optional[str]:
        """Use the persisted access token if it outlives the safety margin."""
        if not connection.encrypted_access_token or connection.access_token_expires_at is None:
            return None
        valid_until = ensure_utc(connection.access_token_expires_at) - self._margin
        if valid_until <= self._clock():
            return None

        token = self._secrets.decrypt(connection.encrypted_access_token)
        self._put((connection.owner_id, connection.id), token, valid_until)
        logger.debug("Reusing stored access token for connection %s", connection.id)
        return token

    def _refresh_locked(self, connection: BankConnection) -> str:
        if not connection.encrypted_refresh_token:
            raise ProviderAuthExpiredError(
                "No refresh token stored - re-authorization required",
                provider_name=connection.provider_name,
            )

        refresh_token = self._secrets.decrypt(connection.encrypted_refresh_token)
        client = self._registry.get_provider(connection.provider_name)
        grant = client.refresh_access_token(refresh_token)

        expires_at = self._clock() + timedelta(seconds=grant.expires_in)
        self._repository.update_connection_tokens(
            connection.id,
            encrypted_access_token=self._secrets.encrypt(grant.access_token),
            encrypted_refresh_token=self._secrets.encrypt(grant.refresh_token),
            access_token_expires_at=expires_at,
        )
        self.cache_token(connection.owner_id, connection.id, grant.access_token, grant.expires_in)
        logger.info(
            "Refreshed access token for connection %s (%s)",
            connection.id, connection.provider_name,
        )
        return grant.access_token
