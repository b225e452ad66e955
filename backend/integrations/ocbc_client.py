"""OCBC Bank API client.

Implements the BankProviderClient protocol against the OCBC API:
OAuth2 token exchange, account listing, transaction history and the
Pay Anyone transfer feed.
"""

import logging
import re
from datetime import date

import httpx

from config import settings
from integrations.base_bank_client import BaseBankClient, first_present
from integrations.provider_protocol import (
    AccountType,
    BankAccount,
    BankTransaction,
    ProviderName,
    TransactionCategory,
    TransactionDirection,
)

logger = logging.getLogger(__name__)


class OCBCClient(BaseBankClient):
    """OCBC client."""

    PROVIDER = ProviderName.OCBC
    TOKEN_PATH = "/oauth2/token"
    SCOPES = ("account_info", "transactions", "balance_inquiry")
    PAGE_SIZE = 200
    API_HEADERS = {"X-API-Version": "1.0", "Accept": "application/json"}
    # OCBC's token endpoint wants this literal when no redirect was used
    DEFAULT_REDIRECT_URI = "postmessage"

    ACCOUNT_TYPE_ALIASES = {
        "CASA": AccountType.SAVINGS,
        "FD": AccountType.FIXED_DEPOSIT,
        "TD": AccountType.FIXED_DEPOSIT,
        "CREDITCARD": AccountType.CREDIT_CARD,
    }

    DESCRIPTION_CLEANUP = (
        (re.compile(r"^(TXN|TRF|PAY|DPT|WDL|FEE)\s*[-:]?\s*", re.IGNORECASE), ""),
        (re.compile(r"\s+REF:\s*\w+$", re.IGNORECASE), ""),
        (re.compile(r"\s+\d{2}/\d{2}/\d{2}$"), ""),
    )
    MERCHANT_PATTERNS = (
        re.compile(r"^([A-Z\s&]+?)\s+(?:SG|SINGAPORE)\b", re.IGNORECASE),
        re.compile(r"^([A-Z\s&]+?)\s+\d+", re.IGNORECASE),
        re.compile(r"^([A-Z\s&]{3,})", re.IGNORECASE),
    )
    MIN_MERCHANT_LENGTH = 2

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
    ):
        super().__init__(
            client_id=client_id or settings.OCBC_CLIENT_ID,
            client_secret=client_secret or settings.OCBC_CLIENT_SECRET,
            base_url=base_url or settings.OCBC_API_BASE_URL,
            timeout=settings.PROVIDER_HTTP_TIMEOUT,
            http_client=http_client,
        )

    def _extra_authorize_params(self, redirect_uri: str | None) -> dict[str, str]:
        return {"redirect_uri": redirect_uri or self.DEFAULT_REDIRECT_URI}

    def get_accounts(self, access_token: str) -> list[BankAccount]:
        body = self._get("/api/v1/accounts", access_token)
        accounts = []
        for row in self._rows(body, "data", "accounts"):
            account = self._map_account_row(
                row,
                number_keys=("accountNumber", "maskedAccountNumber"),
                type_keys=("accountType", "productType"),
                balance_keys=("currentBalance", "availableBalance", "balance"),
                name_keys=("accountName", "nickName"),
                default_name="OCBC Account",
            )
            if account is not None:
                accounts.append(account)
        logger.debug("OCBC: %d accounts returned", len(accounts))
        return accounts

    def get_transactions(
        self,
        access_token: str,
        account_number: str,
        from_date: date,
        to_date: date,
    ) -> list[BankTransaction]:
        body = self._get(
            f"/api/v1/accounts/{account_number}/transactions",
            access_token,
            params={
                "startDate": self.format_date(from_date),
                "endDate": self.format_date(to_date),
                "pageSize": self.PAGE_SIZE,
            },
        )
        transactions = []
        for row in self._rows(body, "data", "transactions"):
            txn = self.build_transaction(
                row,
                external_id=first_present(row, "transactionId", "id", "reference"),
                amount_raw=first_present(row, "amount", "transactionAmount"),
                indicator=first_present(row, "debitCreditIndicator", "transactionType"),
                description_raw=first_present(row, "description", "transactionDescription", default=""),
                date_raw=first_present(row, "transactionDate", "valueDate"),
            )
            if txn is not None:
                transactions.append(txn)
        return transactions

    def get_supplementary_transactions(
        self,
        access_token: str,
        from_date: date,
        to_date: date,
    ) -> list[BankTransaction]:
        """Pay Anyone transfers (always money out)."""
        return self._best_effort_feed(
            "Pay Anyone", lambda: self._get_pay_anyone_transactions(access_token, from_date, to_date)
        )

    def _get_pay_anyone_transactions(
        self, access_token: str, from_date: date, to_date: date
    ) -> list[BankTransaction]:
        body = self._get(
            "/api/v1/pay-anyone/transactions",
            access_token,
            params={
                "startDate": self.format_date(from_date),
                "endDate": self.format_date(to_date),
            },
        )
        transactions = []
        for row in self._rows(body, "data", "transactions"):
            recipient = row.get("recipientName")
            txn = self.build_transaction(
                row,
                external_id=first_present(row, "transactionId", "id"),
                amount_raw=row.get("amount"),
                indicator=TransactionDirection.DEBIT.value,
                description_raw=first_present(row, "description", "recipientName", default=""),
                date_raw=first_present(row, "transactionDate", "date"),
                external_id_prefix="payanyone_",
                description_prefix="Pay Anyone - ",
                merchant=recipient,
                category=TransactionCategory.DIGITAL_PAYMENT,
            )
            if txn is not None:
                transactions.append(txn)
        return transactions
