"""Test fixtures and sample data."""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from models import BankConnection, BankTransaction

OWNER_ID = "driver-1"
OTHER_OWNER_ID = "driver-2"


def create_connection(
    db: Session,
    secrets,
    owner_id: str = OWNER_ID,
    provider_name: str = "DBS",
    account_number: str = "123-456789-0",
    access_token: str | None = "access-stored",
    refresh_token: str | None = "refresh-stored",
    expires_at: datetime | None = None,
    last_sync_at: datetime | None = None,
    is_active: bool = True,
) -> BankConnection:
    """Insert a connection with encrypted tokens and return it.

    Args:
        db: Database session
        secrets: SecretsPort used to encrypt the tokens
        expires_at: Stored access token expiry; None means "unknown"
    """
    connection = BankConnection(
        owner_id=owner_id,
        provider_name=provider_name,
        external_account_number=account_number,
        external_account_type="SAVINGS",
        account_name=f"{provider_name} Account",
        currency="SGD",
        is_active=is_active,
        last_sync_at=last_sync_at,
        encrypted_access_token=secrets.encrypt(access_token) if access_token else None,
        encrypted_refresh_token=secrets.encrypt(refresh_token) if refresh_token else None,
        access_token_expires_at=expires_at,
    )
    db.add(connection)
    db.commit()
    db.refresh(connection)
    return connection


def add_stored_transaction(
    db: Session,
    connection: BankConnection,
    external_id: str,
    amount: str = "10.00",
    description: str = "OLD DESCRIPTION",
    category: str = "OTHER",
    occurred_at: datetime | None = None,
    direction: str = "CREDIT",
) -> BankTransaction:
    txn = BankTransaction(
        bank_connection_id=connection.id,
        external_id=external_id,
        amount=amount,
        direction=direction,
        description=description,
        category=category,
        occurred_at=occurred_at or datetime(2024, 6, 1, 8, 0),
    )
    db.add(txn)
    db.commit()
    db.refresh(txn)
    return txn


@pytest.fixture
def connection(db, secrets, clock):
    """A DBS connection whose stored access token is still valid for an hour."""
    return create_connection(db, secrets, expires_at=clock() + timedelta(hours=1))


@pytest.fixture
def expired_connection(db, secrets, clock):
    """A DBS connection whose stored access token expired a minute ago."""
    return create_connection(db, secrets, expires_at=clock() - timedelta(minutes=1))
