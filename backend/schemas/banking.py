"""Pydantic schemas for bank connections, sync and transactions."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class ConnectRequest(BaseModel):
    """Request body for completing an OAuth authorization."""

    provider_name: str = Field(..., min_length=1)
    authorization_code: str = Field(..., min_length=1)
    redirect_uri: Optional[str] = None
    state: str = Field(..., min_length=1)


class BankAccountResponse(BaseModel):
    """An account as reported by the bank at connect time."""

    account_number: str
    account_type: str
    balance: Decimal
    currency: str
    account_name: str

    model_config = {"from_attributes": True}


class ConnectResponse(BaseModel):
    """Response for a successful connect."""

    connection_id: str
    accounts: list[BankAccountResponse]


class SyncRequest(BaseModel):
    """Request body for a sync; omit connection_id to sync everything."""

    connection_id: Optional[str] = None


class SyncResultResponse(BaseModel):
    """Aggregated sync outcome. Partial failures are listed in ``errors``."""

    accounts_updated: int
    transactions_added: int
    transactions_updated: int
    errors: list[str]

    model_config = {"from_attributes": True}


class BankConnectionResponse(BaseModel):
    """A stored connection. Token columns are never exposed."""

    id: str
    provider_name: str
    external_account_number: str
    external_account_type: str
    account_name: Optional[str] = None
    currency: Optional[str] = None
    is_active: bool
    last_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class BankTransactionResponse(BaseModel):
    """A stored bank transaction."""

    id: str
    bank_connection_id: str
    external_id: str
    amount: Decimal
    direction: str
    description: str
    normalized_merchant: Optional[str] = None
    category: str
    category_locked: bool = False
    occurred_at: datetime
    running_balance: Optional[Decimal] = None
    currency: Optional[str] = None

    model_config = {"from_attributes": True}


class TransactionListResponse(BaseModel):
    """A page of transactions plus the unpaged total."""

    transactions: list[BankTransactionResponse]
    total: int


class CategorizeRequest(BaseModel):
    """Request body for assigning a category to one transaction."""

    category: str = Field(..., min_length=1)


class BulkCategorizeRequest(BaseModel):
    """Request body for assigning one category to many transactions."""

    transaction_ids: list[str] = Field(..., min_length=1)
    category: str = Field(..., min_length=1)


class BulkCategorizeResponse(BaseModel):
    """How many of the requested transactions were recategorized."""

    updated_count: int
