"""Pydantic request/response schemas."""

from schemas.banking import (
    BankAccountResponse,
    BankConnectionResponse,
    BankTransactionResponse,
    ConnectRequest,
    ConnectResponse,
    SyncRequest,
    SyncResultResponse,
    TransactionListResponse,
)

__all__ = [
    "BankAccountResponse",
    "BankConnectionResponse",
    "BankTransactionResponse",
    "ConnectRequest",
    "ConnectResponse",
    "SyncRequest",
    "SyncResultResponse",
    "TransactionListResponse",
]
