"""DBS Bank API client.

Implements the BankProviderClient protocol against the DBS open banking
API: OAuth token exchange, account listing, per-account transaction
history and the PayLah! wallet feed.
"""

import logging
import re
from datetime import date

import httpx

from config import settings
from integrations.base_bank_client import BaseBankClient, first_present
from integrations.provider_protocol import (
    BankAccount,
    BankTransaction,
    ProviderName,
    TransactionCategory,
)

logger = logging.getLogger(__name__)


class DBSClient(BaseBankClient):
    """DBS / POSB client."""

    PROVIDER = ProviderName.DBS
    TOKEN_PATH = "/oauth/token"
    SCOPES = ("accounts", "transactions", "balance")
    PAGE_SIZE = 500

    DESCRIPTION_CLEANUP = (
        (re.compile(r"^(POS|ATM|IBG|FAST|NETS|VISA|MASTERCARD)\s*", re.IGNORECASE), ""),
        (re.compile(r"\s+(SG|SINGAPORE)\s*$", re.IGNORECASE), ""),
        (re.compile(r"\s*\d{2}/\d{2}\s*$"), ""),
    )
    MERCHANT_PATTERNS = (re.compile(r"^([A-Za-z\s&]+)"),)
    MIN_MERCHANT_LENGTH = 2

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        base_url: str | None = None,
        http_client: httpx.Client | None = None,
    ):
        super().__init__(
            client_id=client_id or settings.DBS_CLIENT_ID,
            client_secret=client_secret or settings.DBS_CLIENT_SECRET,
            base_url=base_url or settings.DBS_API_BASE_URL,
            timeout=settings.PROVIDER_HTTP_TIMEOUT,
            http_client=http_client,
        )

    def get_accounts(self, access_token: str) -> list[BankAccount]:
        body = self._get("/accounts", access_token)
        accounts = []
        for row in self._rows(body, "accounts", "data"):
            account = self._map_account_row(
                row,
                number_keys=("accountNumber", "account_number"),
                type_keys=("accountType", "account_type"),
                balance_keys=("balance", "availableBalance"),
                name_keys=("accountName", "name"),
                default_name="DBS Account",
            )
            if account is not None:
                accounts.append(account)
        logger.debug("DBS: %d accounts returned", len(accounts))
        return accounts

    def get_transactions(
        self,
        access_token: str,
        account_number: str,
        from_date: date,
        to_date: date,
    ) -> list[BankTransaction]:
        body = self._get(
            f"/accounts/{account_number}/transactions",
            access_token,
            params={
                "fromDate": self.format_date(from_date),
                "toDate": self.format_date(to_date),
                "limit": self.PAGE_SIZE,
            },
        )
        transactions = []
        for row in self._rows(body, "transactions", "data"):
            txn = self.build_transaction(
                row,
                external_id=first_present(row, "transactionId", "id", "referenceNumber"),
                amount_raw=first_present(row, "amount", "transactionAmount"),
                indicator=first_present(row, "transactionType", "type"),
                description_raw=first_present(row, "description", "narrative", "particulars", default=""),
                date_raw=first_present(row, "transactionDate", "date"),
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
        """PayLah! wallet transactions, when the customer has PayLah!."""
        return self._best_effort_feed(
            "PayLah!", lambda: self._get_paylah_transactions(access_token, from_date, to_date)
        )

    def _get_paylah_transactions(
        self, access_token: str, from_date: date, to_date: date
    ) -> list[BankTransaction]:
        body = self._get(
            "/paylah/transactions",
            access_token,
            params={
                "fromDate": self.format_date(from_date),
                "toDate": self.format_date(to_date),
            },
        )
        transactions = []
        for row in self._rows(body, "transactions", "data"):
            txn = self.build_transaction(
                row,
                external_id=first_present(row, "transactionId", "id"),
                amount_raw=row.get("amount"),
                indicator=row.get("type"),
                description_raw=row.get("description", ""),
                date_raw=first_present(row, "transactionDate", "date"),
                external_id_prefix="paylah_",
                description_prefix="PayLah! - ",
                merchant=row.get("merchant"),
                category=TransactionCategory.DIGITAL_PAYMENT,
            )
            if txn is not None:
                transactions.append(txn)
        return transactions
