"""Banking API endpoints - connect, sync, disconnect and browse transactions."""

import logging
from datetime import date
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response

from integrations.exceptions import ProviderAuthError, ProviderError
from schemas.banking import (
    BankAccountResponse,
    BankConnectionResponse,
    BankTransactionResponse,
    BulkCategorizeRequest,
    BulkCategorizeResponse,
    CategorizeRequest,
    ConnectRequest,
    ConnectResponse,
    SyncRequest,
    SyncResultResponse,
    TransactionListResponse,
)
from services.bank_sync_service import BankSyncService
from services.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/banking", tags=["banking"])


@lru_cache
def _default_service() -> BankSyncService:
    # One instance per process so the token cache is shared by all requests
    return BankSyncService()


def get_bank_sync_service() -> BankSyncService:
    """Dependency returning the process-wide BankSyncService."""
    return _default_service()


def close_bank_sync_service() -> None:
    """Close the process-wide service if a request ever created it."""
    if _default_service.cache_info().currsize:
        _default_service().close()
        _default_service.cache_clear()


def get_owner_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Identify the caller from the ``X-User-Id`` header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return x_user_id.strip()


def _to_http_error(e: Exception) -> HTTPException:
    """Map engine and provider errors to HTTP status codes."""
    if isinstance(e, ValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, NotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, ProviderAuthError):
        return HTTPException(
            status_code=502,
            detail=f"{e.provider_name} authorization failed: {e}",
        )
    if isinstance(e, ProviderError):
        return HTTPException(status_code=502, detail=f"{e.provider_name}: {e}")
    return HTTPException(status_code=500, detail=str(e))


@router.get("/authorization-urls", response_model=dict[str, str])
def get_authorization_urls(
    redirect_uri: str = Query(..., min_length=1),
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """OAuth authorization URLs for every configured bank."""
    return service.get_authorization_urls(owner_id, redirect_uri)


@router.post("/connect", response_model=ConnectResponse, status_code=201)
def connect_bank(
    body: ConnectRequest,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Complete an OAuth authorization and store the connection.

    Raises:
        HTTPException:
            - 400 Bad Request: Unsupported bank, bad state, no accounts
            - 502 Bad Gateway: The bank rejected the code or failed
    """
    try:
        service.verify_state(body.state, owner_id, body.provider_name)
        result = service.connect(
            owner_id, body.provider_name, body.authorization_code, body.redirect_uri
        )
    except (ValidationError, NotFoundError, ProviderError) as e:
        logger.warning("Connect to %s failed: %s", body.provider_name, e)
        raise _to_http_error(e) from e

    return ConnectResponse(
        connection_id=result.connection_id,
        accounts=[
            BankAccountResponse(
                account_number=a.account_number,
                account_type=a.account_type.value,
                balance=a.balance,
                currency=a.currency,
                account_name=a.account_name,
            )
            for a in result.accounts
        ],
    )


@router.post("/sync", response_model=SyncResultResponse)
def sync_banks(
    body: Optional[SyncRequest] = None,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Sync one connection, or all active connections.

    Always returns 200 with the aggregated result; per-bank failures are
    listed in ``errors``.
    """
    connection_id = body.connection_id if body else None
    try:
        result = service.sync(owner_id, connection_id=connection_id)
    except (ValidationError, NotFoundError) as e:
        raise _to_http_error(e) from e
    return SyncResultResponse(
        accounts_updated=result.accounts_updated,
        transactions_added=result.transactions_added,
        transactions_updated=result.transactions_updated,
        errors=result.errors,
    )


@router.get("/connections", response_model=list[BankConnectionResponse])
def list_connections(
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """List the caller's bank connections."""
    return service.list_connections(owner_id)


@router.get("/connections/{connection_id}", response_model=BankConnectionResponse)
def get_connection(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Get one of the caller's bank connections."""
    try:
        return service.get_connection(owner_id, connection_id)
    except NotFoundError as e:
        raise _to_http_error(e) from e


@router.delete("/connections/{connection_id}", status_code=204)
def disconnect_bank(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Delete a connection and all of its transactions."""
    try:
        service.disconnect(owner_id, connection_id)
    except NotFoundError as e:
        raise _to_http_error(e) from e
    return Response(status_code=204)


@router.post("/connections/{connection_id}/refresh", status_code=204)
def refresh_connection(
    connection_id: str,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Force an access token refresh for one connection."""
    try:
        service.refresh_connection(owner_id, connection_id)
    except (ValidationError, NotFoundError, ProviderError) as e:
        raise _to_http_error(e) from e
    return Response(status_code=204)


@router.get("/transactions", response_model=TransactionListResponse)
def list_transactions(
    connection_id: Optional[str] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    direction: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Stored transactions, newest first."""
    try:
        rows, total = service.get_transactions(
            owner_id,
            connection_id=connection_id,
            from_date=from_date,
            to_date=to_date,
            direction=direction,
            limit=limit,
            offset=offset,
        )
    except (ValidationError, NotFoundError) as e:
        raise _to_http_error(e) from e
    return TransactionListResponse(
        transactions=[BankTransactionResponse.model_validate(row) for row in rows],
        total=total,
    )


@router.post("/transactions/categorize", response_model=BulkCategorizeResponse)
def categorize_transactions(
    body: BulkCategorizeRequest,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Assign one category to many transactions; unknown ids are skipped."""
    try:
        updated = service.categorize_transactions(owner_id, body.transaction_ids, body.category)
    except ValidationError as e:
        raise _to_http_error(e) from e
    return BulkCategorizeResponse(updated_count=updated)


@router.get("/transactions/{transaction_id}", response_model=BankTransactionResponse)
def get_transaction(
    transaction_id: str,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Get one stored transaction."""
    try:
        return service.get_transaction(owner_id, transaction_id)
    except NotFoundError as e:
        raise _to_http_error(e) from e


@router.patch("/transactions/{transaction_id}/category", response_model=BankTransactionResponse)
def categorize_transaction(
    transaction_id: str,
    body: CategorizeRequest,
    owner_id: str = Depends(get_owner_id),
    service: BankSyncService = Depends(get_bank_sync_service),
):
    """Set a transaction's category. Later syncs keep it."""
    try:
        return service.categorize_transaction(owner_id, transaction_id, body.category)
    except (ValidationError, NotFoundError) as e:
        raise _to_http_error(e) from e
