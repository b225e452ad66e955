"""Tests for the per-connection token manager."""

import threading
from datetime import timedelta

import pytest

from integrations.exceptions import ProviderAuthExpiredError, ProviderUnavailableError
from integrations.parsing_utils import ensure_utc
from integrations.provider_protocol import TokenGrant
from services.exceptions import NotFoundError
from tests.fixtures import OWNER_ID, create_connection


class TestStoredToken:
    def test_reuses_valid_stored_token(self, token_manager, connection, mock_dbs_client):
        assert token_manager.get_valid_token(connection) == "access-stored"
        assert mock_dbs_client.refresh_calls == 0

    def test_stored_token_inside_safety_margin_is_refreshed(
        self, db, secrets, clock, token_manager, mock_dbs_client
    ):
        # Expires in 4 minutes, inside the 5 minute margin
        conn = create_connection(db, secrets, expires_at=clock() + timedelta(minutes=4))

        assert token_manager.get_valid_token(conn) == "access-2"
        assert mock_dbs_client.refresh_calls == 1

    def test_unknown_expiry_is_refreshed(self, db, secrets, token_manager, mock_dbs_client):
        conn = create_connection(db, secrets, expires_at=None)

        assert token_manager.get_valid_token(conn) == "access-2"
        assert mock_dbs_client.refresh_calls == 1


class TestRefresh:
    def test_expired_token_refreshed_and_persisted(
        self, token_manager, expired_connection, mock_dbs_client, repository, secrets, clock
    ):
        token = token_manager.get_valid_token(expired_connection)

        assert token == "access-2"
        assert mock_dbs_client.refresh_tokens_seen == ["refresh-stored"]

        stored = repository.load_connection(OWNER_ID, expired_connection.id)
        assert secrets.decrypt(stored.encrypted_access_token) == "access-2"
        assert secrets.decrypt(stored.encrypted_refresh_token) == "refresh-2"
        assert ensure_utc(stored.access_token_expires_at) == clock() + timedelta(seconds=3600)
        assert "access-2" not in stored.encrypted_access_token

    def test_refreshed_token_served_from_cache(
        self, token_manager, expired_connection, mock_dbs_client
    ):
        token_manager.get_valid_token(expired_connection)
        token_manager.get_valid_token(expired_connection)

        assert mock_dbs_client.refresh_calls == 1

    def test_cache_expires_after_ttl_minus_margin(
        self, token_manager, expired_connection, mock_dbs_client, clock
    ):
        token_manager.get_valid_token(expired_connection)

        clock.advance(3299)
        token_manager.get_valid_token(expired_connection)
        assert mock_dbs_client.refresh_calls == 1

        clock.advance(2)
        token_manager.get_valid_token(expired_connection)
        assert mock_dbs_client.refresh_calls == 2

    def test_force_refresh(self, token_manager, connection, mock_dbs_client):
        assert token_manager.refresh(connection) == "access-2"
        assert mock_dbs_client.refresh_calls == 1

    def test_zero_expiry_never_cached(self, token_manager, expired_connection, mock_dbs_client):
        mock_dbs_client.refresh_grant = TokenGrant("short", "refresh-2", 0)

        token_manager.get_valid_token(expired_connection)
        token_manager.get_valid_token(expired_connection)

        assert mock_dbs_client.refresh_calls == 2

    def test_failed_refresh_propagates_and_keeps_connection(
        self, token_manager, expired_connection, mock_dbs_client, repository, secrets
    ):
        mock_dbs_client.failures["refresh_access_token"] = ProviderAuthExpiredError(
            "Authentication failed - token may be expired", provider_name="DBS", status_code=400
        )

        with pytest.raises(ProviderAuthExpiredError):
            token_manager.get_valid_token(expired_connection)

        stored = repository.load_connection(OWNER_ID, expired_connection.id)
        assert stored.is_active is True
        assert secrets.decrypt(stored.encrypted_refresh_token) == "refresh-stored"

    def test_transient_refresh_failure_is_retried_next_call(
        self, token_manager, expired_connection, mock_dbs_client
    ):
        mock_dbs_client.failures["refresh_access_token"] = ProviderUnavailableError(
            "down", provider_name="DBS", status_code=503
        )
        with pytest.raises(ProviderUnavailableError):
            token_manager.get_valid_token(expired_connection)

        del mock_dbs_client.failures["refresh_access_token"]
        assert token_manager.get_valid_token(expired_connection) == "access-2"

    def test_missing_refresh_token(self, db, secrets, clock, token_manager, mock_dbs_client):
        conn = create_connection(
            db, secrets, refresh_token=None, expires_at=clock() - timedelta(minutes=1)
        )

        with pytest.raises(ProviderAuthExpiredError, match="re-authorization required"):
            token_manager.get_valid_token(conn)
        assert mock_dbs_client.refresh_calls == 0

    def test_deleted_connection(self, token_manager, expired_connection, repository):
        repository.delete_connection_cascade(expired_connection.id)

        with pytest.raises(NotFoundError):
            token_manager.get_valid_token(expired_connection)


class TestConcurrency:
    def test_single_refresh_under_contention(
        self, token_manager, expired_connection, mock_dbs_client
    ):
        mock_dbs_client.refresh_delay = 0.1
        results = []
        errors = []
        start = threading.Barrier(8)

        def worker():
            start.wait()
            try:
                results.append(token_manager.get_valid_token(expired_connection))
            except Exception as e:  # pragma: no cover - surfaced by the assert below
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert results == ["access-2"] * 8
        assert mock_dbs_client.refresh_calls == 1

    def test_separate_connections_refresh_independently(
        self, db, secrets, clock, token_manager, mock_dbs_client
    ):
        expired = clock() - timedelta(minutes=1)
        first = create_connection(db, secrets, account_number="111", expires_at=expired)
        second = create_connection(db, secrets, account_number="222", expires_at=expired)

        token_manager.get_valid_token(first)
        token_manager.get_valid_token(second)

        assert mock_dbs_client.refresh_calls == 2


class TestCacheManagement:
    def test_cache_token_and_invalidate(self, token_manager, connection):
        token_manager.cache_token(OWNER_ID, connection.id, "cached-token", 3600)
        assert token_manager.get_valid_token(connection) == "cached-token"

        token_manager.invalidate(OWNER_ID, connection.id)

        assert token_manager.get_valid_token(connection) == "access-stored"

    def test_cache_is_scoped_by_owner(self, token_manager, connection):
        token_manager.cache_token("someone-else", connection.id, "other-token", 3600)

        assert token_manager.get_valid_token(connection) == "access-stored"

    def test_cached_token_repr_hides_token(self, token_manager, connection):
        token_manager.get_valid_token(connection)
        entry = token_manager._cache[(OWNER_ID, connection.id)]

        assert "access-stored" not in repr(entry)

    def test_invalidate_releases_refresh_lock(self, token_manager, connection):
        token_manager.get_valid_token(connection)
        assert (OWNER_ID, connection.id) in token_manager._locks

        token_manager.invalidate(OWNER_ID, connection.id)

        assert (OWNER_ID, connection.id) not in token_manager._locks

    def test_invalidate_keeps_lock_while_held(self, token_manager, connection):
        key = (OWNER_ID, connection.id)
        lock = token_manager._lock_for(key)

        with lock:
            token_manager.invalidate(OWNER_ID, connection.id)

        assert token_manager._lock_for(key) is lock
