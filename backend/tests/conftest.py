"""Pytest configuration and fixtures."""

import pytest
from cryptography.fernet import Fernet
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from api.banking import get_bank_sync_service
from database import Base, create_db_engine
from main import app
from services.bank_repository import BankRepository
from services.bank_sync_service import BankSyncService
from services.token_encryption import TokenEncryption
from services.token_manager import TokenManager
# Pytest fixtures - imported to make them available to tests
from tests.fixtures import connection, expired_connection  # noqa: F401
from tests.fixtures.mocks import (
    FakeClock,
    MockBankClient,
    MockProviderRegistry,
    SAMPLE_DBS_ACCOUNTS,
    SAMPLE_DBS_TRANSACTIONS,
)


@pytest.fixture(name="engine")
def engine_fixture(tmp_path):
    """File-backed SQLite database.

    Sync workers use their own connections from several threads, which a
    single shared in-memory connection cannot support.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )


@pytest.fixture(name="db")
def db_fixture(session_factory):
    """A session for arranging and inspecting rows directly."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(name="repository")
def repository_fixture(session_factory):
    return BankRepository(session_factory)


@pytest.fixture(name="clock")
def clock_fixture():
    return FakeClock()


@pytest.fixture(name="secrets")
def secrets_fixture(clock):
    return TokenEncryption(key=Fernet.generate_key().decode(), clock=clock)


@pytest.fixture(name="mock_dbs_client")
def mock_dbs_client_fixture():
    """A DBS mock with one account and three sample transactions."""
    return MockBankClient(
        "DBS",
        accounts=list(SAMPLE_DBS_ACCOUNTS),
        transactions=list(SAMPLE_DBS_TRANSACTIONS),
    )


@pytest.fixture(name="mock_provider_registry")
def mock_provider_registry_fixture(mock_dbs_client):
    return MockProviderRegistry({"DBS": mock_dbs_client})


@pytest.fixture(name="token_manager")
def token_manager_fixture(repository, secrets, mock_provider_registry, clock):
    return TokenManager(repository, secrets, mock_provider_registry, clock=clock)


@pytest.fixture(name="sync_service")
def sync_service_fixture(repository, secrets, mock_provider_registry, token_manager, clock):
    return BankSyncService(
        repository=repository,
        secrets=secrets,
        state_signer=secrets,
        provider_registry=mock_provider_registry,
        token_manager=token_manager,
        clock=clock,
    )


@pytest.fixture(name="client")
def client_fixture(sync_service):
    """Create a test client wired to the test database and mock banks."""
    app.dependency_overrides[get_bank_sync_service] = lambda: sync_service
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
